"""Markdown renderings for human review of plans and reports."""
from typing import Any, Dict, List, Sequence

from .continuity import quality_label
from .models import SegmentDescriptor


def render_segment_plan_markdown(segments: Sequence[SegmentDescriptor], title: str = "") -> str:
    lines: List[str] = [f"# Segment plan{': ' + title if title else ''}\n"]
    total = sum(s.estimated_duration for s in segments)
    lines.append(f"{len(segments)} segments, {total:g}s estimated\n")
    for segment in segments:
        lines.append(f"## Segment {segment.segment_number} ({segment.start_timestamp:g}s - {segment.end_timestamp:g}s)")
        lines.append(f"**Beat:** {segment.narrative_beat}")
        if segment.narrative_transition:
            lines.append(f"**Transition:** {segment.narrative_transition}")
        lines.append("**Scenes:** " + ", ".join(segment.scene_ids))
        lines.append("**Characters:** " + ", ".join(segment.characters_in_segment))
        if segment.forced_split:
            lines.append("**Forced split:** yes")
        if segment.visual_continuity_notes:
            lines.append(f"**Notes:** {segment.visual_continuity_notes}")
        for dialogue in segment.dialogue_lines:
            lines.append(f"- **{dialogue.character}**: {dialogue.text()}")
        for beat in segment.action_beats:
            lines.append(f"- _{beat}_")
        lines.append("")
    return "\n".join(lines)


def render_continuity_report_markdown(report: Dict[str, Any]) -> str:
    lines: List[str] = ["# Continuity report\n"]
    average = report.get("average_score")
    lines.append(f"- Segments: {report.get('total_segments', 0)}")
    lines.append(f"- Validated: {report.get('validated_segments', 0)}")
    if average is None:
        lines.append("- Average score: n/a")
    else:
        lines.append(f"- Average score: {average} ({quality_label(int(average))})")
    lines.append(f"- Segments below threshold: {report.get('segments_with_issues', 0)}")
    lines.append("")
    counts = {k: v for k, v in (report.get("issues_by_type") or {}).items() if v}
    if counts:
        lines.append("## Issues by type")
        for kind, count in sorted(counts.items()):
            lines.append(f"- {kind}: {count}")
        lines.append("")
    for validation in report.get("validations") or []:
        issues = validation.get("issues") or []
        if not issues:
            continue
        lines.append(f"## Segment {validation.get('segment_number')} - score {validation.get('overall_score')}")
        for issue in issues:
            lines.append(f"- [{issue.get('severity')}] {issue.get('type')}: {issue.get('description')}")
        lines.append("")
    return "\n".join(lines)
