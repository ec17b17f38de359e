from __future__ import annotations

from orchestrator.models import Episode, Scene
from orchestrator.segmenter import SegmentationOptions, segment_episode
from orchestrator.validators import validate_episode, validate_episode_payload, validate_segment_plan


def test_episode_payload_shape_errors():
    assert validate_episode_payload({}) == ["scenes_missing"]
    errors = validate_episode_payload(
        {
            "scenes": [
                "oops",
                {"scene_id": "s2", "action": "not a list"},
                {"scene_id": "s3", "dialogue": [{"lines": ["hi"]}]},
                {"scene_id": "s4", "duration_estimate": -1},
                {"scene_id": "s5", "duration_estimate": "soon"},
            ]
        }
    )
    assert errors == [
        "scene_not_object:0",
        "scene_action_not_list:s2",
        "dialogue_missing_character:s3",
        "negative_duration_estimate:s4",
        "invalid_duration_estimate:s5",
    ]


def test_structured_screenplay_payload_is_accepted():
    payload = {"structured_screenplay": {"scenes": [{"scene_id": "s1", "action": ["x"]}]}}
    assert validate_episode_payload(payload) == []
    assert Episode.from_dict(payload).scenes[0].scene_id == "s1"


def test_episode_errors():
    episode = Episode(episode_id="e", scenes=[Scene("s1"), Scene("s1"), Scene("")])
    assert validate_episode(episode) == ["missing_scene_id:2", "duplicate_scene_id:s1"]
    assert validate_episode(Episode(episode_id="e")) == ["no_scenes"]


def test_segment_plan_from_segmenter_is_clean():
    scenes = [Scene(f"s{i}", location="Kitchen", action=["a"] * (i + 2)) for i in range(1, 8)]
    scenes.append(Scene("big", location="Roof", action=["b"] * 12))
    episode = Episode(episode_id="e", scenes=scenes)
    segments = segment_episode(episode, SegmentationOptions(10))
    assert validate_segment_plan(segments, episode) == []


def test_segment_plan_detects_gaps_and_coverage():
    episode = Episode(episode_id="e", scenes=[Scene("s1", action=["a"] * 5), Scene("s2", action=["a"] * 5)])
    segments = segment_episode(episode, SegmentationOptions(10, 8, 12))
    segments[1].start_timestamp += 1
    segments[1].scene_ids = ["s1"]
    errors = validate_segment_plan(segments, episode)
    assert "timeline_gap:2" in errors
    assert "scene_not_covered:s2" in errors
    assert "scene_covered_twice:s1" in errors
