from __future__ import annotations

import pytest

from orchestrator.models import DialogueLine, Episode, Scene
from orchestrator.segmenter import (
    SegmentationOptions,
    estimate_scene_duration,
    segment_episode,
    total_duration,
)


def _scene(scene_id: str, location: str = "Kitchen", time_of_day: str = "day", beats: int = 0, lines=None, characters=None, **kw) -> Scene:
    return Scene(
        scene_id=scene_id,
        location=location,
        time_of_day=time_of_day,
        characters=characters if characters is not None else ["Ana"],
        action=[f"{scene_id} beat {i + 1}" for i in range(beats)],
        dialogue=lines or [],
        **kw,
    )


def _episode(scenes) -> Episode:
    return Episode(episode_id="ep-1", title="Pilot", scenes=list(scenes))


def test_options_scale_from_target():
    opts = SegmentationOptions()
    assert (opts.min_duration, opts.max_duration) == (8, 12)
    opts = SegmentationOptions(target_duration=14)
    assert (opts.min_duration, opts.max_duration) == (12, 15)
    opts = SegmentationOptions(target_duration=4)
    assert (opts.min_duration, opts.max_duration) == (3, 6)


def test_options_reject_inverted_bounds():
    with pytest.raises(ValueError):
        SegmentationOptions(target_duration=10, min_duration=12, max_duration=8)


def test_scene_duration_estimate():
    scene = _scene("s1", beats=2, lines=[DialogueLine("Ana", ["one two three four five"])])
    assert estimate_scene_duration(scene) == pytest.approx(6.0)
    assert estimate_scene_duration(_scene("s2")) == 3


def test_empty_episode_yields_no_segments():
    assert segment_episode(_episode([])) == []


def test_short_episode_is_one_segment():
    segments = segment_episode(_episode([_scene("s1"), _scene("s2")]))
    assert len(segments) == 1
    assert segments[0].scene_ids == ["s1", "s2"]
    assert segments[0].estimated_duration == 6
    assert segments[0].narrative_transition is None


def test_closes_at_scene_boundary_before_overflow():
    scenes = [_scene(f"s{i}", beats=2) for i in range(1, 7)]
    segments = segment_episode(_episode(scenes), SegmentationOptions(10, 8, 12))
    assert [s.scene_ids for s in segments] == [["s1", "s2", "s3"], ["s4", "s5", "s6"]]
    assert [s.estimated_duration for s in segments] == [12, 12]
    assert [s.segment_number for s in segments] == [1, 2]
    assert segments[1].start_timestamp == segments[0].end_timestamp == 12


def test_six_scenes_stay_within_bounds():
    locations = ["Kitchen", "Garden", "Street", "Office", "Park", "Roof"]
    scenes = [_scene(f"s{i + 1}", location=loc, beats=5) for i, loc in enumerate(locations)]
    segments = segment_episode(_episode(scenes), SegmentationOptions(10, 8, 12))
    assert len(segments) == 6
    for segment in segments[:-1]:
        assert 8 <= segment.estimated_duration <= 12
    assert segments[1].narrative_transition == "Transitions from Kitchen to Garden"
    assert total_duration(segments) == 60


def test_every_scene_covered_exactly_once_without_splits():
    scenes = [_scene(f"s{i}", beats=i % 4 + 1) for i in range(1, 10)]
    segments = segment_episode(_episode(scenes))
    covered = [sid for s in segments for sid in s.scene_ids]
    assert sorted(covered) == sorted(s.scene_id for s in scenes)
    assert not any(s.forced_split for s in segments)


def test_oversized_scene_is_split_and_flagged():
    segments = segment_episode(_episode([_scene("s1", beats=10)]), SegmentationOptions(10, 8, 12))
    assert len(segments) == 2
    assert all(s.scene_ids == ["s1"] for s in segments)
    assert all(s.forced_split for s in segments)
    assert "Forced mid-scene split (part 1/2 of scene s1)" in segments[0].visual_continuity_notes
    assert segments[1].narrative_transition == "Continues seamlessly from previous segment"
    assert [s.estimated_duration for s in segments] == [10, 10]


def test_split_tail_absorbs_next_scene():
    scenes = [_scene("s1", beats=7), _scene("s2", beats=1)]
    segments = segment_episode(_episode(scenes), SegmentationOptions(10, 8, 12))
    assert [s.scene_ids for s in segments] == [["s1"], ["s1", "s2"]]
    assert segments[1].estimated_duration == 7


def test_mid_scene_top_up_when_boundaries_not_preferred():
    scenes = [_scene("a", beats=3), _scene("b", location="Garden", beats=4)]
    preferred = segment_episode(_episode(scenes), SegmentationOptions(10, 8, 12))
    assert [s.scene_ids for s in preferred] == [["a"], ["b"]]

    topped = segment_episode(
        _episode(scenes),
        SegmentationOptions(10, 8, 12, prefer_scene_boundaries=False),
    )
    assert [s.scene_ids for s in topped] == [["a", "b"], ["b"]]
    assert topped[0].estimated_duration == 10
    assert topped[0].forced_split and topped[1].forced_split


def test_segmentation_is_deterministic():
    scenes = [_scene(f"s{i}", beats=i % 5 + 1) for i in range(1, 12)]
    first = segment_episode(_episode(scenes))
    second = segment_episode(_episode(scenes))
    shape = lambda segs: [(s.scene_ids, s.estimated_duration, s.start_timestamp, s.end_timestamp) for s in segs]
    assert shape(first) == shape(second)


def test_narrative_beat_formats():
    action = segment_episode([Scene(scene_id="s1", location="Kitchen", action=["Ana pours coffee"])])
    assert action[0].narrative_beat == "KITCHEN: Ana pours coffee"

    long_action = "x" * 150
    beat = segment_episode([Scene(scene_id="s1", location="Kitchen", action=[long_action])])[0].narrative_beat
    assert beat == "KITCHEN: " + "x" * 100 + "..."

    spoken = segment_episode([Scene(scene_id="s1", location="Kitchen", dialogue=[DialogueLine("Ana", ["Good morning"])])])
    assert spoken[0].narrative_beat == 'KITCHEN: Ana - "Good morning"'


def test_time_shift_transition_in_same_location():
    scenes = [
        _scene("s1", time_of_day="morning", beats=5),
        _scene("s2", time_of_day="night", beats=5),
        _scene("s3", time_of_day="night", beats=5),
    ]
    segments = segment_episode(_episode(scenes))
    assert segments[1].narrative_transition == "Time shifts from morning to night in Kitchen"
    assert segments[2].narrative_transition == "New beat in Kitchen"


def test_duration_estimate_moves_timestamps_only():
    scenes = [_scene("s1", beats=2, duration_estimate=9.0), _scene("s2", beats=5)]
    segments = segment_episode(_episode(scenes))
    assert segments[0].estimated_duration == 4
    assert segments[0].end_timestamp == 9
    assert segments[1].start_timestamp == 9


def test_continuity_notes_and_characters():
    scene = _scene("s1", beats=1, lines=[DialogueLine("Ben", ["hello there"])], characters=["Ana"])
    segment = segment_episode(_episode([scene]))[0]
    assert segment.characters_in_segment == ["Ana", "Ben"]
    assert segment.visual_continuity_notes == "Location: Kitchen | Time: day | Characters: Ana, Ben"
    assert segment.episode_id == "ep-1"
