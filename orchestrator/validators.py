"""Hard validators for episode input and segment plans."""
from collections import Counter
from typing import Any, Dict, List, Sequence

from .models import Episode, SegmentDescriptor


def validate_episode_payload(payload: Dict[str, Any]) -> List[str]:
    """Shape checks on raw episode JSON before it is parsed."""
    errors: List[str] = []
    scenes = payload.get("scenes")
    if scenes is None:
        scenes = (payload.get("structured_screenplay") or {}).get("scenes")
    if not isinstance(scenes, list):
        return ["scenes_missing"]
    for idx, scene in enumerate(scenes):
        if not isinstance(scene, dict):
            errors.append(f"scene_not_object:{idx}")
            continue
        for key in ("dialogue", "action", "characters"):
            value = scene.get(key)
            if value is not None and not isinstance(value, list):
                errors.append(f"scene_{key}_not_list:{scene.get('scene_id') or idx}")
        for line in scene.get("dialogue") or []:
            if not isinstance(line, dict):
                errors.append(f"dialogue_not_object:{scene.get('scene_id') or idx}")
                break
            if not (line.get("character") or line.get("speaker")):
                errors.append(f"dialogue_missing_character:{scene.get('scene_id') or idx}")
        duration = scene.get("duration_estimate")
        if duration is not None:
            try:
                if float(duration) < 0:
                    errors.append(f"negative_duration_estimate:{scene.get('scene_id') or idx}")
            except (TypeError, ValueError):
                errors.append(f"invalid_duration_estimate:{scene.get('scene_id') or idx}")
    return errors


def validate_episode(episode: Episode) -> List[str]:
    errors: List[str] = []
    if not episode.scenes:
        errors.append("no_scenes")
    ids = [scene.scene_id for scene in episode.scenes]
    for idx, scene_id in enumerate(ids):
        if not scene_id:
            errors.append(f"missing_scene_id:{idx}")
    for scene_id, count in Counter(i for i in ids if i).items():
        if count > 1:
            errors.append(f"duplicate_scene_id:{scene_id}")
    return errors


def validate_segment_plan(segments: Sequence[SegmentDescriptor], episode: Episode) -> List[str]:
    errors: List[str] = []
    numbers = [s.segment_number for s in segments]
    if numbers != list(range(1, len(segments) + 1)):
        errors.append("segment_numbers_not_contiguous")
    for segment in segments:
        if segment.estimated_duration < 0:
            errors.append(f"negative_duration:{segment.segment_number}")
        if segment.end_timestamp < segment.start_timestamp:
            errors.append(f"timestamps_reversed:{segment.segment_number}")
        if not segment.scene_ids:
            errors.append(f"no_scenes:{segment.segment_number}")
    for prev, cur in zip(segments, segments[1:]):
        if abs(cur.start_timestamp - prev.end_timestamp) > 0.01:
            errors.append(f"timeline_gap:{cur.segment_number}")

    covering: Dict[str, List[SegmentDescriptor]] = {}
    for segment in segments:
        for scene_id in segment.scene_ids:
            covering.setdefault(scene_id, []).append(segment)
    for scene in episode.scenes:
        owners = covering.get(scene.scene_id, [])
        if not owners:
            errors.append(f"scene_not_covered:{scene.scene_id}")
        elif len(owners) > 1 and not all(s.forced_split for s in owners):
            errors.append(f"scene_covered_twice:{scene.scene_id}")
    return errors
