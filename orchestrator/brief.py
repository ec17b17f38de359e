"""Render a segment descriptor as the text brief handed to the generator."""
from typing import List

from orchestrator.models import SegmentDescriptor


def _seconds(value: float) -> str:
    return f"{value:g}"


def build_segment_brief(segment: SegmentDescriptor) -> str:
    lines: List[str] = [f"SEGMENT {segment.segment_number} - {segment.narrative_beat}"]
    if segment.narrative_transition:
        lines.append(f"TRANSITION: {segment.narrative_transition}")
    if segment.visual_continuity_notes:
        lines.append(f"CONTINUITY NOTES: {segment.visual_continuity_notes}")
    if segment.settings_in_segment:
        lines.append("SETTING: " + ", ".join(segment.settings_in_segment))
    if segment.time_of_day:
        lines.append(f"TIME OF DAY: {segment.time_of_day}")
    if segment.characters_in_segment:
        lines.append("CHARACTERS: " + ", ".join(segment.characters_in_segment))
    if segment.dialogue_lines:
        lines.append("DIALOGUE:")
        for dialogue in segment.dialogue_lines:
            lines.append(f'- {dialogue.character}: "{dialogue.text()}"')
    if segment.action_beats:
        lines.append("ACTION:")
        for beat in segment.action_beats:
            lines.append(f"- {beat}")
    lines.append(f"TARGET DURATION: {_seconds(segment.estimated_duration)} seconds")
    return "\n".join(lines)
