"""Score a proposed segment brief against the current visual state."""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from orchestrator.models import (
    ISSUE_CHARACTER_APPEARANCE,
    ISSUE_CONTINUITY_BREAK,
    ISSUE_LIGHTING,
    ISSUE_MISSING_TRANSITION,
    ISSUE_SETTING,
    ISSUE_TYPES,
    SEVERITIES,
    SEVERITY_CRITICAL,
    SEVERITY_HIGH,
    SEVERITY_LOW,
    SEVERITY_MEDIUM,
    CharacterState,
    ContinuityIssue,
    ContinuityValidationResult,
    VisualState,
)
from orchestrator.visual_state import Section, parse_sections, read_labelled_state, split_named_item


SEVERITY_WEIGHTS: Dict[str, int] = {
    SEVERITY_LOW: 5,
    SEVERITY_MEDIUM: 15,
    SEVERITY_HIGH: 30,
    SEVERITY_CRITICAL: 50,
}
VALIDITY_FLOOR = 75
STRICT_VALIDITY_FLOOR = 90

SEAMLESS_MARKER = "continues seamlessly"

POSITION_OPPOSITES = (("left", "right"), ("foreground", "background"), ("inside", "outside"), ("ground", "air"))
LIGHTING_OPPOSITES = (("day", "night"), ("daylight", "moonlight"), ("sunrise", "sunset"), ("dawn", "dusk"), ("bright", "dark"))
TIME_OPPOSITES = (("day", "night"), ("morning", "night"), ("morning", "evening"), ("dawn", "dusk"), ("noon", "midnight"))
TONE_OPPOSITES = (("tense", "relaxed"), ("happy", "sad"), ("calm", "chaotic"), ("joyful", "somber"))
CAMERA_OPPOSITES = (("close-up", "wide"), ("low angle", "high angle"))

# Lines added by auto-correction go before this label when it is present.
TAIL_LABEL = "TARGET DURATION"


@dataclass
class ValidationOptions:
    auto_correct: bool = True
    strict_mode: bool = False
    allowed_discrepancies: Sequence[str] = ()


@dataclass
class _Finding:
    issue: ContinuityIssue
    fix: Tuple[Any, ...] = ()


@dataclass
class _Brief:
    text: str
    sections: Dict[str, Section]
    state: VisualState
    transition: str = ""
    names: List[str] = field(default_factory=list)

    @property
    def seamless(self) -> bool:
        return SEAMLESS_MARKER in self.transition.lower()

    @property
    def scene_change(self) -> bool:
        return bool(self.transition) and not self.seamless


def quality_label(score: int) -> str:
    if score >= 90:
        return "excellent"
    if score >= 75:
        return "good"
    if score >= 60:
        return "fair"
    return "poor"


def _norm(value: str) -> str:
    return " ".join(re.sub(r"[^a-z0-9\- ]", " ", (value or "").lower()).split())


def _differs(previous: str, current: str) -> bool:
    a, b = _norm(previous), _norm(current)
    if not a or not b:
        return False
    return a not in b and b not in a


def _has_word(text: str, word: str) -> bool:
    return re.search(r"(?<![a-z])" + re.escape(word) + r"(?![a-z])", text) is not None


def _opposed(previous: str, current: str, pairs: Sequence[Tuple[str, str]]) -> bool:
    a, b = _norm(previous), _norm(current)
    for left, right in pairs:
        if _has_word(a, left) and _has_word(b, right) and not _has_word(b, left):
            return True
        if _has_word(a, right) and _has_word(b, left) and not _has_word(b, right):
            return True
    return False


def _read_brief(text: str) -> _Brief:
    sections = parse_sections(text)
    proposed = read_labelled_state(text, sections)
    transition = sections["TRANSITION"].text() if "TRANSITION" in sections else ""
    names: List[str] = list(proposed.characters)
    if "CHARACTERS" in sections:
        names.extend(n.strip() for n in sections["CHARACTERS"].text().split(",") if n.strip())
    if "DIALOGUE" in sections:
        for item in sections["DIALOGUE"].items:
            speaker, _ = split_named_item(item)
            if speaker:
                names.append(speaker)
    return _Brief(text=text, sections=sections, state=proposed, transition=transition, names=names)


def _mentions(brief: _Brief, name: str) -> bool:
    if any(n.lower() == name.lower() for n in brief.names):
        return True
    return re.search(r"\b" + re.escape(name) + r"\b", brief.text, re.IGNORECASE) is not None


def _proposed_character(brief: _Brief, name: str) -> Optional[CharacterState]:
    for candidate, character in brief.state.characters.items():
        if candidate.lower() == name.lower():
            return character
    return None


def _issue(kind: str, severity: str, description: str, previous: str = "", current: str = "", suggestion: str = "") -> ContinuityIssue:
    return ContinuityIssue(
        type=kind,
        severity=severity,
        description=description,
        previous_state=previous,
        current_state=current,
        suggestion=suggestion,
    )


def _check_characters(state: VisualState, brief: _Brief, strict: bool) -> List[_Finding]:
    findings: List[_Finding] = []
    for name, previous in state.characters.items():
        if previous.is_empty():
            continue
        if not _mentions(brief, name):
            if not brief.transition:
                findings.append(_Finding(
                    _issue(
                        ISSUE_CONTINUITY_BREAK,
                        SEVERITY_MEDIUM,
                        f"{name} was on screen in the previous segment but is absent without a transition",
                        previous=previous.position or previous.appearance,
                        suggestion=f"Add a transition explaining where {name} went or keep {name} in frame",
                    ),
                    ("character", "CHARACTER POSITIONS", name, previous.position) if previous.position else (),
                ))
            continue
        current = _proposed_character(brief, name) or CharacterState()
        for attr in ("appearance", "wardrobe"):
            before, after = getattr(previous, attr), getattr(current, attr)
            if before and after and _differs(before, after):
                findings.append(_Finding(
                    _issue(
                        ISSUE_CHARACTER_APPEARANCE,
                        SEVERITY_CRITICAL if strict else SEVERITY_HIGH,
                        f"{name}'s {attr} changes between segments",
                        previous=before,
                        current=after,
                        suggestion=f"Keep {name}'s {attr} as: {before}",
                    ),
                    ("character", _character_label(attr), name, before),
                ))
        if (previous.appearance or previous.wardrobe) and not (current.appearance or current.wardrobe):
            described = previous.appearance or previous.wardrobe
            attr = "appearance" if previous.appearance else "wardrobe"
            findings.append(_Finding(
                _issue(
                    ISSUE_CHARACTER_APPEARANCE,
                    SEVERITY_LOW,
                    f"{name} appears without a description of their look",
                    previous=described,
                    suggestion=f"Describe {name} as: {described}",
                ),
                ("character", _character_label(attr), name, described),
            ))
        if previous.position and current.position and not brief.scene_change:
            if _opposed(previous.position, current.position, POSITION_OPPOSITES):
                findings.append(_Finding(
                    _issue(
                        ISSUE_CONTINUITY_BREAK,
                        SEVERITY_MEDIUM,
                        f"{name} jumps position without a transition",
                        previous=previous.position,
                        current=current.position,
                        suggestion=f"Start {name} at: {previous.position}",
                    ),
                    ("character", "CHARACTER POSITIONS", name, previous.position),
                ))
    return findings


def _character_label(attr: str) -> str:
    return {"appearance": "CHARACTER APPEARANCE", "wardrobe": "WARDROBE"}.get(attr, "CHARACTER POSITIONS")


def _check_setting(state: VisualState, brief: _Brief) -> List[_Finding]:
    before, after = state.setting, brief.state.setting
    if not _differs(before, after):
        return []
    if not brief.transition:
        return [_Finding(
            _issue(
                ISSUE_MISSING_TRANSITION,
                SEVERITY_MEDIUM,
                "Setting changes without a transition",
                previous=before,
                current=after,
                suggestion=f"Add a transition from {before} to {after}",
            ),
            ("transition", f"Transitions from {before} to {after}"),
        )]
    if brief.seamless:
        return [_Finding(
            _issue(
                ISSUE_SETTING,
                SEVERITY_HIGH,
                "Setting differs although the segment continues seamlessly",
                previous=before,
                current=after,
                suggestion=f"Keep the setting as: {before}",
            ),
            ("set", "SETTING", before),
        )]
    return []


def _check_scalar(
    state: VisualState,
    brief: _Brief,
    attr: str,
    label: str,
    pairs: Sequence[Tuple[str, str]],
    kind: str,
    severity: str,
    minor_severity: Optional[str] = None,
) -> List[_Finding]:
    before, after = getattr(state, attr), getattr(brief.state, attr)
    if brief.scene_change or not _differs(before, after):
        return []
    readable = label.lower()
    if _opposed(before, after, pairs):
        return [_Finding(
            _issue(
                kind,
                severity,
                f"{label.capitalize()} contradicts the previous segment without a transition",
                previous=before,
                current=after,
                suggestion=f"Keep {readable} as: {before}, or add a transition",
            ),
            ("set", label, before),
        )]
    if minor_severity:
        return [_Finding(
            _issue(
                kind,
                minor_severity,
                f"{label.capitalize()} shifts slightly from the previous segment",
                previous=before,
                current=after,
                suggestion=f"Match {readable}: {before}",
            ),
            ("set", label, before),
        )]
    return []


def _collect(state: VisualState, brief: _Brief, strict: bool) -> List[_Finding]:
    findings = _check_characters(state, brief, strict)
    findings.extend(_check_setting(state, brief))
    findings.extend(_check_scalar(state, brief, "lighting", "LIGHTING", LIGHTING_OPPOSITES, ISSUE_LIGHTING, SEVERITY_HIGH, SEVERITY_LOW))
    findings.extend(_check_scalar(state, brief, "time_of_day", "TIME OF DAY", TIME_OPPOSITES, ISSUE_LIGHTING, SEVERITY_HIGH))
    findings.extend(_check_scalar(state, brief, "tone", "MOOD/ATMOSPHERE", TONE_OPPOSITES, ISSUE_CONTINUITY_BREAK, SEVERITY_MEDIUM))
    findings.extend(_check_scalar(state, brief, "camera", "CAMERA", CAMERA_OPPOSITES, ISSUE_CONTINUITY_BREAK, SEVERITY_LOW))
    return findings


def score_issues(issues: Sequence[ContinuityIssue]) -> int:
    penalty = sum(SEVERITY_WEIGHTS.get(issue.severity, 0) for issue in issues)
    return max(0, 100 - penalty)


def validate_continuity(
    state: Union[VisualState, Dict[str, Any], None],
    brief: str,
    options: Optional[ValidationOptions] = None,
) -> ContinuityValidationResult:
    """Validate ``brief`` against the state left by the previous segment.

    A missing, malformed or empty state is treated as the first segment and
    is always valid.
    """
    options = options or ValidationOptions()
    try:
        current = VisualState.from_dict(state) if state is not None else None
    except (TypeError, ValueError, AttributeError):
        current = None
    if current is None or current.is_empty():
        return ContinuityValidationResult(is_valid=True, overall_score=100)

    findings = _collect(current, _read_brief(brief or ""), options.strict_mode)
    allowed = set(options.allowed_discrepancies or ())
    findings = [f for f in findings if f.issue.type not in allowed]
    issues = [f.issue for f in findings]

    score = score_issues(issues)
    floor = STRICT_VALIDITY_FLOOR if options.strict_mode else VALIDITY_FLOOR
    is_valid = score >= floor and not any(i.severity == SEVERITY_CRITICAL for i in issues)

    correction = None
    if options.auto_correct and findings:
        corrected = auto_correct_brief(brief or "", [f.fix for f in findings if f.fix])
        if corrected != (brief or ""):
            correction = corrected
    return ContinuityValidationResult(
        is_valid=is_valid,
        overall_score=score,
        issues=issues,
        auto_correction=correction,
    )


def validate_segment_chain(
    chain: Sequence[Tuple[Optional[VisualState], str]],
    options: Optional[ValidationOptions] = None,
) -> List[ContinuityValidationResult]:
    """Validate each brief against the state produced by the previous entry.

    ``chain`` holds ``(state, brief)`` pairs in segment order; one result is
    returned per entry after the first.
    """
    results: List[ContinuityValidationResult] = []
    for idx in range(1, len(chain)):
        previous_state = chain[idx - 1][0]
        results.append(validate_continuity(previous_state, chain[idx][1], options))
    return results


def _label_index(lines: List[str], label: str) -> int:
    prefix = label + ":"
    for idx, line in enumerate(lines):
        if line.strip().upper().startswith(prefix):
            return idx
    return -1


def _insert_at(lines: List[str]) -> int:
    idx = _label_index(lines, TAIL_LABEL)
    return idx if idx >= 0 else len(lines)


def _apply_set(lines: List[str], label: str, value: str) -> None:
    idx = _label_index(lines, label)
    if idx >= 0:
        lines[idx] = f"{label}: {value}"
    else:
        lines.insert(_insert_at(lines), f"{label}: {value}")


def _apply_character(lines: List[str], label: str, name: str, value: str) -> None:
    entry = f"- {name}: {value}"
    idx = _label_index(lines, label)
    if idx < 0:
        at = _insert_at(lines)
        lines[at:at] = [f"{label}:", entry]
        return
    end = idx + 1
    while end < len(lines) and lines[end].lstrip().startswith("-"):
        item_name, _ = split_named_item(lines[end].lstrip()[1:])
        if item_name.lower() == name.lower():
            lines[end] = entry
            return
        end += 1
    lines.insert(end, entry)


def auto_correct_brief(brief: str, fixes: Sequence[Tuple[Any, ...]]) -> str:
    """Deterministically patch ``brief`` with values carried from the current state."""
    lines = brief.splitlines()
    for fix in fixes:
        kind = fix[0]
        if kind == "set":
            _apply_set(lines, fix[1], fix[2])
        elif kind == "character":
            _apply_character(lines, fix[1], fix[2], fix[3])
        elif kind == "transition" and _label_index(lines, "TRANSITION") < 0:
            lines.insert(1 if lines else 0, f"TRANSITION: {fix[1]}")
    return "\n".join(lines)


def build_continuity_report(
    validations: Sequence[Tuple[int, ContinuityValidationResult]],
    total_segments: int,
) -> Dict[str, Any]:
    by_type: Dict[str, int] = {kind: 0 for kind in ISSUE_TYPES}
    by_severity: Dict[str, int] = {severity: 0 for severity in SEVERITIES}
    entries: List[Dict[str, Any]] = []
    for number, result in validations:
        for issue in result.issues:
            by_type[issue.type] = by_type.get(issue.type, 0) + 1
            by_severity[issue.severity] = by_severity.get(issue.severity, 0) + 1
        entry = {"segment_number": number}
        entry.update(result.to_dict())
        entry["quality"] = quality_label(result.overall_score)
        entries.append(entry)
    scores = [result.overall_score for _, result in validations]
    return {
        "total_segments": total_segments,
        "validated_segments": len(entries),
        "average_score": round(sum(scores) / len(scores)) if scores else None,
        "issues_by_type": by_type,
        "issues_by_severity": by_severity,
        "segments_with_issues": sum(1 for _, result in validations if not result.is_valid),
        "validations": entries,
    }
