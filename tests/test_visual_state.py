from __future__ import annotations

import pytest

from orchestrator.models import CharacterState, VisualState
from orchestrator.visual_state import (
    CONTEXT_FOOTER,
    CONTEXT_HEADER,
    VisualStateExtractor,
    build_continuity_context,
    extract_visual_state,
    is_visual_state_valid,
    merge_visual_states,
    parse_sections,
)


GENERATED = """
Ana walks to the window as the sun sets.
SETTING: Kitchen
TIME OF DAY: evening
LIGHTING: warm golden hour light
CAMERA: medium shot
MOOD/ATMOSPHERE: calm
CHARACTER POSITIONS:
- Ana: by the window, left of frame
CHARACTER APPEARANCE:
- Ana: red coat, short black hair
KEY ELEMENTS: steaming mug, potted basil
FINAL FRAME: Ana looks out of the window at the orange sky.
""".strip()


def test_parse_sections_collects_bullets():
    sections = parse_sections(GENERATED)
    assert sections["LIGHTING"].inline == "warm golden hour light"
    assert sections["CHARACTER POSITIONS"].items == ["Ana: by the window, left of frame"]


def test_extract_reads_labelled_footer():
    state = extract_visual_state(GENERATED, ["Ana"])
    assert state.setting == "Kitchen"
    assert state.time_of_day == "evening"
    assert state.lighting == "warm golden hour light"
    assert state.camera == "medium shot"
    assert state.tone == "calm"
    assert state.characters["Ana"].position == "by the window, left of frame"
    assert state.characters["Ana"].appearance == "red coat, short black hair"
    assert state.key_elements == ["steaming mug", "potted basil"]
    assert state.final_frame == "Ana looks out of the window at the orange sky."
    assert state.extracted_at


def test_extract_maps_labels_to_known_character_ids():
    state = extract_visual_state(GENERATED, ["ANA"])
    assert "ANA" in state.characters


def test_extract_falls_back_to_keywords():
    text = "Wide shot of a neon-lit street at night. Ben stands on the left, looking tense."
    state = extract_visual_state(text, ["Ben"])
    assert state.camera == "wide shot"
    assert state.lighting == "neon"
    assert state.tone == "tense"
    assert state.time_of_day == "night"
    assert state.characters["Ben"].position == "left"
    assert state.final_frame == "Ben stands on the left, looking tense."


def test_extract_never_raises():
    state = extract_visual_state(None, None)
    assert state.is_empty()

    def broken(_text, _ids):
        raise RuntimeError("model offline")

    state = extract_visual_state(GENERATED, ["Ana"], delegate=broken)
    assert state.lighting == "warm golden hour light"


def test_delegate_values_win():
    state = extract_visual_state(GENERATED, ["Ana"], delegate=lambda _t, _ids: {"lighting": "moonlight"})
    assert state.lighting == "moonlight"
    assert state.camera == "medium shot"


def test_extractor_heuristic_mode_by_default(monkeypatch):
    monkeypatch.delenv("VISUAL_STATE_MODE", raising=False)
    extractor = VisualStateExtractor()
    assert extractor.delegate is None
    assert extractor(GENERATED, ["Ana"]).setting == "Kitchen"


def test_merge_single_state_is_identity():
    state = VisualState(lighting="day")
    assert merge_visual_states([state]) is state


def test_merge_empty_window_raises():
    with pytest.raises(ValueError):
        merge_visual_states([])


def test_merge_prefers_recent_values_and_keeps_absent_characters():
    first = VisualState(
        lighting="daylight",
        characters={"Ana": CharacterState(appearance="red coat", position="left")},
        key_elements=["mug"],
    )
    second = VisualState(
        lighting="night",
        characters={"Ana": CharacterState(position="right"), "Ben": CharacterState(position="door")},
        key_elements=["mug", "lamp"],
    )
    third = VisualState(setting="Park")
    merged = merge_visual_states([first, second, third])
    assert merged.lighting == "night"
    assert merged.setting == "Park"
    assert merged.characters["Ana"].appearance == "red coat"
    assert merged.characters["Ana"].position == "right"
    assert merged.characters["Ben"].position == "door"
    assert merged.key_elements == ["mug", "lamp"]


def test_merge_is_deterministic():
    states = [VisualState(lighting="a", camera="x"), VisualState(lighting="b")]
    assert merge_visual_states(states).to_dict() == merge_visual_states(states).to_dict()


def test_state_validity():
    assert not is_visual_state_valid(None)
    assert not is_visual_state_valid(VisualState(final_frame="short", lighting="day", camera="wide"))
    assert is_visual_state_valid(
        VisualState(final_frame="Ana looks out of the window.", lighting="day", camera="wide")
    )


def test_continuity_context_block():
    state = extract_visual_state(GENERATED, ["Ana"])
    block = build_continuity_context(state)
    lines = block.splitlines()
    assert lines[0] == CONTEXT_HEADER
    assert lines[-1] == CONTEXT_FOOTER
    assert "PREVIOUS SEGMENT ENDED WITH: Ana looks out of the window at the orange sky." in lines
    assert "LIGHTING: warm golden hour light" in lines
    assert "- Ana: red coat, short black hair" in lines
    assert any(line.startswith("CRITICAL: Maintain visual continuity") for line in lines)
    assert build_continuity_context(None) == ""
    assert build_continuity_context(VisualState()) == ""
