"""Typed records shared by the segment pipeline."""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


GROUP_PENDING = "pending"
GROUP_GENERATING = "generating"
GROUP_PARTIAL = "partial"
GROUP_COMPLETE = "complete"
GROUP_ERROR = "error"
GROUP_STATUSES = (GROUP_PENDING, GROUP_GENERATING, GROUP_PARTIAL, GROUP_COMPLETE, GROUP_ERROR)

ISSUE_CHARACTER_APPEARANCE = "character_appearance_mismatch"
ISSUE_SETTING = "setting_mismatch"
ISSUE_LIGHTING = "lighting_mismatch"
ISSUE_CONTINUITY_BREAK = "continuity_break"
ISSUE_MISSING_TRANSITION = "missing_transition"
ISSUE_TYPES = (
    ISSUE_CHARACTER_APPEARANCE,
    ISSUE_SETTING,
    ISSUE_LIGHTING,
    ISSUE_CONTINUITY_BREAK,
    ISSUE_MISSING_TRANSITION,
)

SEVERITY_LOW = "low"
SEVERITY_MEDIUM = "medium"
SEVERITY_HIGH = "high"
SEVERITY_CRITICAL = "critical"
SEVERITIES = (SEVERITY_LOW, SEVERITY_MEDIUM, SEVERITY_HIGH, SEVERITY_CRITICAL)

CHARACTER_ATTRIBUTES = ("appearance", "wardrobe", "position")
SCALAR_ATTRIBUTES = ("setting", "time_of_day", "lighting", "camera", "tone", "final_frame")


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def new_id() -> str:
    return str(uuid.uuid4())


@dataclass
class DialogueLine:
    character: str
    lines: List[str] = field(default_factory=list)

    def text(self) -> str:
        return " ".join(line.strip() for line in self.lines if line and line.strip())

    def to_dict(self) -> Dict[str, Any]:
        return {"character": self.character, "lines": list(self.lines)}

    @classmethod
    def from_dict(cls, data: Any) -> "DialogueLine":
        if isinstance(data, DialogueLine):
            return data
        data = data or {}
        lines = data.get("lines")
        if lines is None and data.get("text") is not None:
            lines = [data.get("text")]
        if isinstance(lines, str):
            lines = [lines]
        return cls(
            character=str(data.get("character") or data.get("speaker") or "").strip(),
            lines=[str(line) for line in (lines or [])],
        )


@dataclass
class Scene:
    scene_id: str
    location: str = ""
    time_of_day: str = ""
    description: str = ""
    characters: List[str] = field(default_factory=list)
    dialogue: List[DialogueLine] = field(default_factory=list)
    action: List[str] = field(default_factory=list)
    duration_estimate: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scene_id": self.scene_id,
            "location": self.location,
            "time_of_day": self.time_of_day,
            "description": self.description,
            "characters": list(self.characters),
            "dialogue": [d.to_dict() for d in self.dialogue],
            "action": list(self.action),
            "duration_estimate": self.duration_estimate,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Scene":
        duration = data.get("duration_estimate")
        return cls(
            scene_id=str(data.get("scene_id") or "").strip(),
            location=str(data.get("location") or "").strip(),
            time_of_day=str(data.get("time_of_day") or "").strip(),
            description=str(data.get("description") or "").strip(),
            characters=[str(c).strip() for c in (data.get("characters") or []) if str(c).strip()],
            dialogue=[DialogueLine.from_dict(d) for d in (data.get("dialogue") or [])],
            action=[str(a) for a in (data.get("action") or []) if str(a).strip()],
            duration_estimate=float(duration) if duration is not None else None,
        )


@dataclass
class Episode:
    episode_id: str
    title: str = ""
    series_id: Optional[str] = None
    scenes: List[Scene] = field(default_factory=list)
    screenplay_text: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Episode":
        screenplay = data.get("structured_screenplay") or {}
        scenes = data.get("scenes")
        if scenes is None:
            scenes = screenplay.get("scenes") or []
        return cls(
            episode_id=str(data.get("episode_id") or data.get("id") or "").strip() or new_id(),
            title=str(data.get("title") or screenplay.get("title") or "").strip(),
            series_id=data.get("series_id"),
            scenes=[Scene.from_dict(s) for s in scenes],
            screenplay_text=str(data.get("screenplay_text") or ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "episode_id": self.episode_id,
            "title": self.title,
            "series_id": self.series_id,
            "scenes": [s.to_dict() for s in self.scenes],
            "screenplay_text": self.screenplay_text,
        }


@dataclass
class CharacterState:
    appearance: str = ""
    wardrobe: str = ""
    position: str = ""

    def is_empty(self) -> bool:
        return not any(getattr(self, attr) for attr in CHARACTER_ATTRIBUTES)

    def to_dict(self) -> Dict[str, str]:
        return {attr: getattr(self, attr) for attr in CHARACTER_ATTRIBUTES if getattr(self, attr)}

    @classmethod
    def from_dict(cls, data: Any) -> "CharacterState":
        if isinstance(data, str):
            return cls(position=data.strip())
        if not isinstance(data, dict):
            return cls()
        return cls(**{attr: str(data.get(attr) or "").strip() for attr in CHARACTER_ATTRIBUTES})


@dataclass
class VisualState:
    """Best-effort snapshot of what the end of a generated segment looks like.

    Empty strings mean "unknown". Instances are treated as values: the
    pipeline replaces them, it never patches one in place.
    """

    characters: Dict[str, CharacterState] = field(default_factory=dict)
    setting: str = ""
    time_of_day: str = ""
    lighting: str = ""
    camera: str = ""
    tone: str = ""
    final_frame: str = ""
    key_elements: List[str] = field(default_factory=list)
    extracted_at: str = ""

    def is_empty(self) -> bool:
        if any(getattr(self, attr) for attr in SCALAR_ATTRIBUTES):
            return False
        if self.key_elements:
            return False
        return all(c.is_empty() for c in self.characters.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "characters": {name: c.to_dict() for name, c in self.characters.items()},
            "setting": self.setting,
            "time_of_day": self.time_of_day,
            "lighting": self.lighting,
            "camera": self.camera,
            "tone": self.tone,
            "final_frame": self.final_frame,
            "key_elements": list(self.key_elements),
            "extracted_at": self.extracted_at,
        }

    @classmethod
    def from_dict(cls, data: Any) -> Optional["VisualState"]:
        if isinstance(data, VisualState):
            return data
        if not isinstance(data, dict):
            return None
        characters = data.get("characters")
        if not isinstance(characters, dict):
            characters = {}
        elements = data.get("key_elements")
        if not isinstance(elements, list):
            elements = []
        return cls(
            characters={str(k): CharacterState.from_dict(v) for k, v in characters.items()},
            setting=str(data.get("setting") or "").strip(),
            time_of_day=str(data.get("time_of_day") or "").strip(),
            lighting=str(data.get("lighting") or "").strip(),
            camera=str(data.get("camera") or "").strip(),
            tone=str(data.get("tone") or "").strip(),
            final_frame=str(data.get("final_frame") or "").strip(),
            key_elements=[str(e) for e in elements if e is not None and str(e).strip()],
            extracted_at=str(data.get("extracted_at") or ""),
        )


@dataclass
class SegmentDescriptor:
    segment_number: int
    scene_ids: List[str]
    start_timestamp: float
    end_timestamp: float
    estimated_duration: float
    narrative_beat: str
    narrative_transition: Optional[str] = None
    dialogue_lines: List[DialogueLine] = field(default_factory=list)
    action_beats: List[str] = field(default_factory=list)
    characters_in_segment: List[str] = field(default_factory=list)
    settings_in_segment: List[str] = field(default_factory=list)
    time_of_day: str = ""
    visual_continuity_notes: Optional[str] = None
    forced_split: bool = False
    final_visual_state: Optional[VisualState] = None
    segment_id: str = field(default_factory=new_id)
    episode_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "segment_id": self.segment_id,
            "episode_id": self.episode_id,
            "segment_number": self.segment_number,
            "scene_ids": list(self.scene_ids),
            "start_timestamp": self.start_timestamp,
            "end_timestamp": self.end_timestamp,
            "estimated_duration": self.estimated_duration,
            "narrative_beat": self.narrative_beat,
            "narrative_transition": self.narrative_transition,
            "dialogue_lines": [d.to_dict() for d in self.dialogue_lines],
            "action_beats": list(self.action_beats),
            "characters_in_segment": list(self.characters_in_segment),
            "settings_in_segment": list(self.settings_in_segment),
            "time_of_day": self.time_of_day,
            "visual_continuity_notes": self.visual_continuity_notes,
            "forced_split": self.forced_split,
            "final_visual_state": self.final_visual_state.to_dict() if self.final_visual_state else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SegmentDescriptor":
        return cls(
            segment_id=str(data.get("segment_id") or new_id()),
            episode_id=data.get("episode_id"),
            segment_number=int(data["segment_number"]),
            scene_ids=list(data.get("scene_ids") or []),
            start_timestamp=float(data.get("start_timestamp") or 0.0),
            end_timestamp=float(data.get("end_timestamp") or 0.0),
            estimated_duration=float(data.get("estimated_duration") or 0.0),
            narrative_beat=str(data.get("narrative_beat") or ""),
            narrative_transition=data.get("narrative_transition"),
            dialogue_lines=[DialogueLine.from_dict(d) for d in (data.get("dialogue_lines") or [])],
            action_beats=list(data.get("action_beats") or []),
            characters_in_segment=list(data.get("characters_in_segment") or []),
            settings_in_segment=list(data.get("settings_in_segment") or []),
            time_of_day=str(data.get("time_of_day") or ""),
            visual_continuity_notes=data.get("visual_continuity_notes"),
            forced_split=bool(data.get("forced_split")),
            final_visual_state=VisualState.from_dict(data.get("final_visual_state")),
        )


@dataclass
class ContinuityIssue:
    type: str
    severity: str
    description: str
    previous_state: str = ""
    current_state: str = ""
    suggestion: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "severity": self.severity,
            "description": self.description,
            "previous_state": self.previous_state,
            "current_state": self.current_state,
            "suggestion": self.suggestion,
        }


@dataclass
class ContinuityValidationResult:
    is_valid: bool
    overall_score: int
    issues: List[ContinuityIssue] = field(default_factory=list)
    auto_correction: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "overall_score": self.overall_score,
            "issues": [i.to_dict() for i in self.issues],
            "auto_correction": self.auto_correction,
        }


@dataclass
class SegmentGroup:
    group_id: str
    episode_id: str
    total_segments: int
    title: str = ""
    completed_segments: int = 0
    status: str = GROUP_PENDING
    error_message: Optional[str] = None
    generation_started_at: Optional[str] = None
    generation_completed_at: Optional[str] = None
    created_at: str = field(default_factory=now_iso)
    updated_at: str = field(default_factory=now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "group_id": self.group_id,
            "episode_id": self.episode_id,
            "title": self.title,
            "total_segments": self.total_segments,
            "completed_segments": self.completed_segments,
            "status": self.status,
            "error_message": self.error_message,
            "generation_started_at": self.generation_started_at,
            "generation_completed_at": self.generation_completed_at,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class GenerationRequest:
    brief: str
    platform: str = "tiktok"
    series_context: str = ""
    character_context: str = ""
    continuity_context: str = ""
    characters: List[Dict[str, Any]] = field(default_factory=list)
    settings: List[Dict[str, Any]] = field(default_factory=list)
    prior_state: Optional[VisualState] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "brief": self.brief,
            "platform": self.platform,
            "series_context": self.series_context,
            "character_context": self.character_context,
            "continuity_context": self.continuity_context,
            "characters": list(self.characters),
            "settings": list(self.settings),
            "prior_state": self.prior_state.to_dict() if self.prior_state else None,
        }


@dataclass
class GenerationResult:
    optimized_prompt: str
    discussion: List[Dict[str, Any]] = field(default_factory=list)
    detailed_breakdown: Dict[str, Any] = field(default_factory=dict)
    character_count: int = 0
    tags: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GenerationResult":
        prompt = str(data.get("optimized_prompt") or data.get("prompt") or "")
        discussion = data.get("discussion")
        if isinstance(discussion, str):
            discussion = [{"agent": "generator", "message": discussion}]
        tags = data.get("tags")
        if tags is None:
            tags = data.get("hashtags")
        return cls(
            optimized_prompt=prompt,
            discussion=[d for d in (discussion or []) if isinstance(d, dict)],
            detailed_breakdown=data.get("detailed_breakdown") if isinstance(data.get("detailed_breakdown"), dict) else {},
            character_count=int(data.get("character_count") or len(prompt)),
            tags=[t for t in (tags or []) if isinstance(t, str)],
        )


@dataclass
class GeneratedArtifact:
    group_id: str
    segment_id: str
    segment_number: int
    episode_id: str
    title: str
    brief: str
    optimized_prompt: str
    platform: str = "tiktok"
    discussion: List[Dict[str, Any]] = field(default_factory=list)
    detailed_breakdown: Dict[str, Any] = field(default_factory=dict)
    character_count: int = 0
    tags: List[str] = field(default_factory=list)
    anchor_point: bool = False
    status: str = "generated"
    artifact_id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "artifact_id": self.artifact_id,
            "group_id": self.group_id,
            "segment_id": self.segment_id,
            "segment_number": self.segment_number,
            "episode_id": self.episode_id,
            "title": self.title,
            "brief": self.brief,
            "optimized_prompt": self.optimized_prompt,
            "platform": self.platform,
            "discussion": list(self.discussion),
            "detailed_breakdown": dict(self.detailed_breakdown),
            "character_count": self.character_count,
            "tags": list(self.tags),
            "anchor_point": self.anchor_point,
            "status": self.status,
            "created_at": self.created_at,
        }


@dataclass
class PipelineResult:
    artifacts: List[GeneratedArtifact]
    segment_group: SegmentGroup
    continuity_report: Dict[str, Any]
    anchor_points_used: int = 0
    error: Optional[Dict[str, Any]] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "artifacts": [a.to_dict() for a in self.artifacts],
            "segment_group": self.segment_group.to_dict(),
            "continuity_report": self.continuity_report,
            "anchor_points_used": self.anchor_points_used,
            "error": self.error,
        }
