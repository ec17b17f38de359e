"""Split an episode's scenes into duration-bounded generation segments."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from orchestrator.models import DialogueLine, Episode, Scene, SegmentDescriptor


WORDS_PER_SECOND = 2.5
ACTION_BEAT_SECONDS = 2.0
MIN_SCENE_SECONDS = 3.0
MAX_SEGMENT_SECONDS = 15.0
BEAT_PREVIEW_CHARS = 100
DIALOGUE_PREVIEW_CHARS = 60
UNKNOWN_LOCATION = "UNKNOWN LOCATION"


@dataclass
class SegmentationOptions:
    """Duration bounds in seconds.

    When only ``target_duration`` is given the bounds default to
    ``max(target - 2, 3)`` and ``min(target + 2, 15)``.
    """

    target_duration: float = 10.0
    min_duration: Optional[float] = None
    max_duration: Optional[float] = None
    prefer_scene_boundaries: bool = True

    def __post_init__(self) -> None:
        if self.target_duration <= 0:
            raise ValueError("target_duration must be positive")
        if self.min_duration is None:
            self.min_duration = max(self.target_duration - 2, MIN_SCENE_SECONDS)
        if self.max_duration is None:
            self.max_duration = min(self.target_duration + 2, MAX_SEGMENT_SECONDS)
        if not 0 < self.min_duration <= self.max_duration:
            raise ValueError(
                f"invalid duration bounds: min={self.min_duration} max={self.max_duration}"
            )


@dataclass
class _Unit:
    kind: str
    text: str
    character: str
    seconds: float


@dataclass
class _Piece:
    scene: Scene
    dialogue: List[DialogueLine] = field(default_factory=list)
    action: List[str] = field(default_factory=list)
    duration: float = 0.0
    timeline: float = 0.0
    part: int = 1
    parts: int = 1
    note: str = ""

    @property
    def split(self) -> bool:
        return self.parts > 1


def dialogue_seconds(text: str) -> float:
    return len(text.split()) / WORDS_PER_SECOND


def estimate_scene_duration(scene: Scene) -> float:
    """Content duration used for packing, never below MIN_SCENE_SECONDS."""
    words = sum(len(line.split()) for d in scene.dialogue for line in d.lines)
    seconds = words / WORDS_PER_SECOND + len(scene.action) * ACTION_BEAT_SECONDS
    return max(seconds, MIN_SCENE_SECONDS)


def scene_timeline_duration(scene: Scene) -> float:
    content = estimate_scene_duration(scene)
    if scene.duration_estimate is not None and scene.duration_estimate > content:
        return float(scene.duration_estimate)
    return content


def segment_episode(
    episode: Union[Episode, Sequence[Scene]],
    options: Optional[SegmentationOptions] = None,
) -> List[SegmentDescriptor]:
    """Greedily pack scenes into segments.

    Scenes are appended while the projected duration stays within
    ``max_duration``; on overflow the segment closes at the scene boundary.
    A scene is cut mid-scene only when it alone exceeds ``max_duration``,
    or, with ``prefer_scene_boundaries=False``, to top up a segment that
    would otherwise close below ``min_duration``. An empty scene list
    returns an empty list.
    """
    options = options or SegmentationOptions()
    scenes = list(episode.scenes if isinstance(episode, Episode) else episode)
    episode_id = episode.episode_id if isinstance(episode, Episode) else None

    groups: List[List[_Piece]] = []
    current: List[_Piece] = []

    def flush() -> None:
        nonlocal current
        if current:
            groups.append(current)
        current = []

    for scene in scenes:
        duration = estimate_scene_duration(scene)
        if duration > options.max_duration:
            flush()
            chunks = _split_scene(scene, options)
            for chunk in chunks[:-1]:
                groups.append([chunk])
            current = [chunks[-1]]
            continue
        piece = _whole_piece(scene)
        filled = _duration(current)
        if current and filled + duration > options.max_duration:
            if filled < options.min_duration and not options.prefer_scene_boundaries:
                head, tail = _top_up(scene, options, filled)
                if head is not None:
                    current.append(head)
                    flush()
                    current = [tail]
                    continue
            flush()
        current.append(piece)
    flush()

    segments: List[SegmentDescriptor] = []
    clock = 0.0
    previous: Optional[_Piece] = None
    for number, pieces in enumerate(groups, start=1):
        segment = _build_segment(number, pieces, clock, previous)
        segment.episode_id = episode_id
        segments.append(segment)
        clock = segment.end_timestamp
        previous = pieces[-1]
    return segments


def total_duration(segments: Iterable[SegmentDescriptor]) -> float:
    return round(sum(s.estimated_duration for s in segments), 2)


def _duration(pieces: Sequence[_Piece]) -> float:
    return sum(p.duration for p in pieces)


def _whole_piece(scene: Scene) -> _Piece:
    return _Piece(
        scene=scene,
        dialogue=list(scene.dialogue),
        action=list(scene.action),
        duration=estimate_scene_duration(scene),
        timeline=scene_timeline_duration(scene),
    )


def _scene_units(scene: Scene) -> List[_Unit]:
    lines: List[Tuple[str, str]] = [
        (d.character, line) for d in scene.dialogue for line in d.lines if line and line.strip()
    ]
    units: List[_Unit] = []
    for idx in range(max(len(scene.action), len(lines))):
        if idx < len(scene.action):
            units.append(_Unit("action", scene.action[idx], "", ACTION_BEAT_SECONDS))
        if idx < len(lines):
            character, text = lines[idx]
            units.append(_Unit("dialogue", text, character, dialogue_seconds(text)))
    return units


def _piece_from_units(scene: Scene, units: Sequence[_Unit]) -> _Piece:
    dialogue: List[DialogueLine] = []
    action: List[str] = []
    for unit in units:
        if unit.kind == "action":
            action.append(unit.text)
        elif dialogue and dialogue[-1].character == unit.character:
            dialogue[-1].lines.append(unit.text)
        else:
            dialogue.append(DialogueLine(character=unit.character, lines=[unit.text]))
    return _Piece(
        scene=scene,
        dialogue=dialogue,
        action=action,
        duration=sum(u.seconds for u in units),
    )


def _chunk_units(units: Sequence[_Unit], target: float, limit: float) -> List[List[_Unit]]:
    chunks: List[List[_Unit]] = []
    chunk: List[_Unit] = []
    filled = 0.0
    for unit in units:
        if chunk and (filled >= target or filled + unit.seconds > limit):
            chunks.append(chunk)
            chunk, filled = [], 0.0
        chunk.append(unit)
        filled += unit.seconds
    if chunk:
        chunks.append(chunk)
    return chunks


def _split_scene(scene: Scene, options: SegmentationOptions) -> List[_Piece]:
    units = _scene_units(scene)
    if len(units) < 2:
        piece = _whole_piece(scene)
        piece.note = f"Scene {scene.scene_id} exceeds maximum duration and cannot be split"
        return [piece]
    chunks = _chunk_units(units, options.target_duration, options.max_duration)
    pieces = [_piece_from_units(scene, chunk) for chunk in chunks]
    _finish_split(scene, pieces, options)
    return pieces


def _top_up(scene: Scene, options: SegmentationOptions, filled: float) -> Tuple[Optional[_Piece], Optional[_Piece]]:
    units = _scene_units(scene)
    room = options.max_duration - filled
    wanted = options.target_duration - filled
    taken = 0.0
    cut = 0
    for unit in units:
        if taken >= wanted or taken + unit.seconds > room:
            break
        taken += unit.seconds
        cut += 1
    if cut == 0 or cut >= len(units):
        return None, None
    pieces = [_piece_from_units(scene, units[:cut]), _piece_from_units(scene, units[cut:])]
    _finish_split(scene, pieces, options)
    return pieces[0], pieces[1]


def _finish_split(scene: Scene, pieces: List[_Piece], options: SegmentationOptions) -> None:
    content = sum(p.duration for p in pieces) or 1.0
    timeline = scene_timeline_duration(scene)
    scale = max(timeline / content, 1.0)
    for idx, piece in enumerate(pieces, start=1):
        piece.part = idx
        piece.parts = len(pieces)
        piece.timeline = piece.duration * scale
        piece.note = f"Forced mid-scene split (part {idx}/{len(pieces)} of scene {scene.scene_id})"
        if piece.duration > options.max_duration:
            piece.note += "; single beat exceeds maximum duration"


def _location(scene: Scene) -> str:
    return (scene.location or UNKNOWN_LOCATION).upper()


def _truncate(text: str, limit: int) -> str:
    text = " ".join(text.split())
    if len(text) > limit:
        return text[:limit] + "..."
    return text


def _narrative_beat(piece: _Piece) -> str:
    location = _location(piece.scene)
    if piece.action:
        return f"{location}: {_truncate(piece.action[0], BEAT_PREVIEW_CHARS)}"
    for dialogue in piece.dialogue:
        text = dialogue.text()
        if text:
            preview = _truncate(text, DIALOGUE_PREVIEW_CHARS)
            return f'{location}: {dialogue.character} - "{preview}"'
    if piece.scene.description:
        return f"{location}: {_truncate(piece.scene.description, BEAT_PREVIEW_CHARS)}"
    return location


def _transition(previous: _Piece, current: _Piece) -> str:
    if previous.scene.scene_id == current.scene.scene_id:
        return "Continues seamlessly from previous segment"
    prev_loc = previous.scene.location or UNKNOWN_LOCATION
    cur_loc = current.scene.location or UNKNOWN_LOCATION
    if prev_loc.strip().lower() != cur_loc.strip().lower():
        return f"Transitions from {prev_loc} to {cur_loc}"
    prev_time = previous.scene.time_of_day
    cur_time = current.scene.time_of_day
    if prev_time and cur_time and prev_time.lower() != cur_time.lower():
        return f"Time shifts from {prev_time} to {cur_time} in {cur_loc}"
    return f"New beat in {cur_loc}"


def _unique(values: Iterable[str]) -> List[str]:
    seen: List[str] = []
    for value in values:
        value = (value or "").strip()
        if value and value not in seen:
            seen.append(value)
    return seen


def _build_segment(
    number: int,
    pieces: List[_Piece],
    start: float,
    previous: Optional[_Piece],
) -> SegmentDescriptor:
    dialogue = [DialogueLine(d.character, list(d.lines)) for p in pieces for d in p.dialogue]
    action = [a for p in pieces for a in p.action]
    characters = _unique(
        [c for p in pieces for c in p.scene.characters] + [d.character for d in dialogue]
    )
    settings = _unique(p.scene.location for p in pieces)
    time_of_day = pieces[-1].scene.time_of_day
    duration = round(_duration(pieces), 2)
    span = round(sum(p.timeline for p in pieces), 2)

    notes = [
        f"Location: {', '.join(settings) or UNKNOWN_LOCATION} | "
        f"Time: {time_of_day or 'unspecified'} | "
        f"Characters: {', '.join(characters) or 'none'}"
    ]
    notes.extend(p.note for p in pieces if p.note)

    return SegmentDescriptor(
        segment_number=number,
        scene_ids=_unique(p.scene.scene_id for p in pieces),
        start_timestamp=round(start, 2),
        end_timestamp=round(start + span, 2),
        estimated_duration=duration,
        narrative_beat=_narrative_beat(pieces[0]),
        narrative_transition=_transition(previous, pieces[0]) if previous else None,
        dialogue_lines=dialogue,
        action_beats=action,
        characters_in_segment=characters,
        settings_in_segment=settings,
        time_of_day=time_of_day,
        visual_continuity_notes=" | ".join(notes) if len(notes) > 1 else notes[0],
        forced_split=any(p.split for p in pieces),
    )
