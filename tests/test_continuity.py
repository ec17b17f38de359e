from __future__ import annotations

from orchestrator.continuity import (
    ValidationOptions,
    build_continuity_report,
    quality_label,
    score_issues,
    validate_continuity,
    validate_segment_chain,
)
from orchestrator.models import CharacterState, ContinuityIssue, VisualState
from orchestrator.visual_state import extract_visual_state


GENERATED = """
Ana pours tea while the light fades.
SETTING: Kitchen
TIME OF DAY: evening
LIGHTING: warm golden hour light
CAMERA: medium shot
MOOD/ATMOSPHERE: calm
CHARACTER POSITIONS:
- Ana: by the window, left of frame
CHARACTER APPEARANCE:
- Ana: red coat, short black hair
FINAL FRAME: Ana holds the cup by the window.
""".strip()

MATCHING_BRIEF = """
SEGMENT 2 - KITCHEN: Ana sips her tea
TRANSITION: Continues seamlessly from previous segment
SETTING: Kitchen
TIME OF DAY: evening
LIGHTING: warm golden hour light
CAMERA: medium shot
MOOD/ATMOSPHERE: calm
CHARACTER POSITIONS:
- Ana: by the window, left of frame
CHARACTER APPEARANCE:
- Ana: red coat, short black hair
ACTION:
- Ana sips her tea
TARGET DURATION: 10 seconds
""".strip()


def test_first_segment_is_always_valid():
    result = validate_continuity(None, "SEGMENT 1 - KITCHEN: anything")
    assert result.is_valid
    assert result.overall_score == 100
    assert result.issues == []
    assert validate_continuity({"not": "a state"}, "SEGMENT 1").overall_score == 100
    assert validate_continuity(VisualState(), "SEGMENT 1").is_valid


def test_extracted_state_matches_repeated_brief():
    state = extract_visual_state(GENERATED, ["Ana"])
    result = validate_continuity(state, MATCHING_BRIEF)
    assert result.issues == []
    assert result.overall_score == 100
    assert result.is_valid
    assert result.auto_correction is None


def test_lighting_contradiction_without_transition():
    state = VisualState(lighting="bright daylight")
    brief = "SEGMENT 2 - KITCHEN: Ana waits\nLIGHTING: dark night\nTARGET DURATION: 10 seconds"
    result = validate_continuity(state, brief)
    assert [(i.type, i.severity) for i in result.issues] == [("lighting_mismatch", "high")]
    assert result.overall_score == 70
    assert not result.is_valid
    assert "LIGHTING: bright daylight" in result.auto_correction.splitlines()


def test_scene_change_transition_allows_lighting_change():
    state = VisualState(lighting="bright daylight")
    brief = "SEGMENT 2 - GARDEN: night falls\nTRANSITION: Transitions from Kitchen to Garden\nLIGHTING: dark night"
    assert validate_continuity(state, brief).issues == []


def test_setting_change_needs_transition():
    state = VisualState(setting="Kitchen")
    brief = "SEGMENT 2 - GARDEN: Ana waters plants\nSETTING: Garden\nTARGET DURATION: 10 seconds"
    result = validate_continuity(state, brief)
    assert [(i.type, i.severity) for i in result.issues] == [("missing_transition", "medium")]
    assert result.overall_score == 85
    assert result.is_valid
    assert result.auto_correction.splitlines()[1] == "TRANSITION: Transitions from Kitchen to Garden"


def test_setting_change_contradicts_seamless_transition():
    state = VisualState(setting="Kitchen")
    brief = "SEGMENT 2\nTRANSITION: Continues seamlessly from previous segment\nSETTING: Garden"
    result = validate_continuity(state, brief)
    assert [(i.type, i.severity) for i in result.issues] == [("setting_mismatch", "high")]


def test_undescribed_character_gets_appearance_injected():
    state = VisualState(characters={"Ana": CharacterState(appearance="red coat")})
    brief = (
        "SEGMENT 2 - KITCHEN: Ana sits\n"
        "TRANSITION: Continues seamlessly from previous segment\n"
        "CHARACTERS: Ana\n"
        "TARGET DURATION: 10 seconds"
    )
    result = validate_continuity(state, brief)
    assert [(i.type, i.severity) for i in result.issues] == [("character_appearance_mismatch", "low")]
    assert result.overall_score == 95
    lines = result.auto_correction.splitlines()
    assert lines[-3:] == ["CHARACTER APPEARANCE:", "- Ana: red coat", "TARGET DURATION: 10 seconds"]


def test_appearance_contradiction_is_critical_in_strict_mode():
    state = VisualState(characters={"Ana": CharacterState(appearance="red coat")})
    brief = "SEGMENT 2\nCHARACTER APPEARANCE:\n- Ana: blue jacket"
    normal = validate_continuity(state, brief)
    assert [i.severity for i in normal.issues] == ["high"]
    strict = validate_continuity(state, brief, ValidationOptions(strict_mode=True))
    assert [i.severity for i in strict.issues] == ["critical"]
    assert not strict.is_valid


def test_missing_character_without_transition_is_a_break():
    state = VisualState(characters={"Ben": CharacterState(position="doorway")})
    result = validate_continuity(state, "SEGMENT 2 - KITCHEN: Ana sits alone")
    assert [(i.type, i.severity) for i in result.issues] == [("continuity_break", "medium")]
    assert "- Ben: doorway" in result.auto_correction


def test_position_jump_and_tone_flip():
    state = VisualState(tone="calm", characters={"Ana": CharacterState(position="left of frame")})
    brief = "SEGMENT 2\nMOOD/ATMOSPHERE: chaotic\nCHARACTER POSITIONS:\n- Ana: right of frame"
    types = sorted(i.type for i in validate_continuity(state, brief).issues)
    assert types == ["continuity_break", "continuity_break"]


def test_allowed_discrepancies_are_ignored():
    state = VisualState(lighting="bright daylight")
    brief = "SEGMENT 2\nLIGHTING: dark night"
    result = validate_continuity(state, brief, ValidationOptions(allowed_discrepancies=["lighting_mismatch"]))
    assert result.issues == []
    assert result.overall_score == 100


def test_auto_correct_disabled_leaves_brief_untouched():
    state = VisualState(lighting="bright daylight")
    result = validate_continuity(state, "SEGMENT 2\nLIGHTING: dark night", ValidationOptions(auto_correct=False))
    assert result.issues
    assert result.auto_correction is None


def test_critical_issue_never_raises_score():
    high = ContinuityIssue("lighting_mismatch", "high", "x")
    critical = ContinuityIssue("character_appearance_mismatch", "critical", "y")
    assert score_issues([]) == 100
    assert score_issues([high, critical]) < score_issues([high])
    assert score_issues([critical] * 5) == 0


def test_quality_labels():
    assert quality_label(95) == "excellent"
    assert quality_label(80) == "good"
    assert quality_label(60) == "fair"
    assert quality_label(10) == "poor"


def test_segment_chain_validates_against_previous_state():
    kitchen = VisualState(setting="Kitchen")
    chain = [
        (kitchen, "SEGMENT 1\nSETTING: Kitchen"),
        (VisualState(setting="Garden"), "SEGMENT 2\nSETTING: Garden"),
        (None, "SEGMENT 3\nTRANSITION: Transitions from Garden to Street\nSETTING: Street"),
    ]
    results = validate_segment_chain(chain)
    assert len(results) == 2
    assert [i.type for i in results[0].issues] == ["missing_transition"]
    assert results[1].issues == []


def test_report_aggregates_validations():
    state = VisualState(lighting="bright daylight")
    bad = validate_continuity(state, "SEGMENT 2\nLIGHTING: dark night")
    good = validate_continuity(None, "SEGMENT 1")
    report = build_continuity_report([(1, good), (2, bad)], total_segments=4)
    assert report["total_segments"] == 4
    assert report["validated_segments"] == 2
    assert report["average_score"] == 85
    assert report["issues_by_type"]["lighting_mismatch"] == 1
    assert report["issues_by_severity"]["high"] == 1
    assert report["segments_with_issues"] == 1
    assert report["validations"][1]["segment_number"] == 2
    assert build_continuity_report([], total_segments=3)["average_score"] is None


def test_malformed_state_shapes_never_raise():
    for state in (
        {"characters": {"Ana": 5}, "setting": "Kitchen"},
        {"setting": "Kitchen", "key_elements": 7},
        {"characters": ["Ana"], "lighting": None},
        "not a state",
    ):
        result = validate_continuity(state, "SEGMENT 2 - KITCHEN: Ana waits")
        assert result.is_valid
        assert result.overall_score == 100


def test_malformed_entries_are_dropped_when_reading_state():
    state = VisualState.from_dict({"characters": {"Ana": 5, "Ben": "doorway"}, "key_elements": 7})
    assert state.characters["Ana"].is_empty()
    assert state.characters["Ben"].position == "doorway"
    assert state.key_elements == []
