"""
Segment service: plan an episode into segments and run generation for a group.
Dependency-free; mcp_server.py exposes it over MCP.
"""
import json
import threading
from typing import Any, Dict, Optional, Set

from orchestrator.bibles import load_series_bible
from orchestrator.errors import (
    GroupAlreadyCompleteError,
    GroupNotFoundError,
    RunInProgressError,
    SegmentationError,
    format_exception,
)
from orchestrator.models import GROUP_COMPLETE, GROUP_ERROR, GROUP_GENERATING, Episode, SegmentGroup, new_id
from orchestrator.pipeline import BatchOrchestrator, RunConfig, SegmentGenerator
from orchestrator.segmenter import SegmentationOptions, segment_episode
from orchestrator.validators import validate_episode, validate_episode_payload, validate_segment_plan

from .db import SegmentStore, SQLiteArtifactRepo, SQLiteSegmentGroupRepo, SQLiteSegmentRepo


class SegmentService:
    def __init__(
        self,
        db_path: Optional[str] = None,
        generator: Optional[SegmentGenerator] = None,
        logger: Any = None,
    ) -> None:
        self.store = SegmentStore(db_path=db_path)
        self.groups = SQLiteSegmentGroupRepo(self.store)
        self.segments = SQLiteSegmentRepo(self.store)
        self.artifacts = SQLiteArtifactRepo(self.store)
        self._generator = generator
        self.logger = logger
        self._admission = threading.Lock()
        self._active: Set[str] = set()

    @property
    def generator(self) -> SegmentGenerator:
        if self._generator is None:
            from orchestrator.mcp_clients import GeneratorClient

            self._generator = GeneratorClient()
        return self._generator

    def create_segment_group(
        self,
        episode: Dict[str, Any],
        target_duration: float = 10.0,
        min_duration: Optional[float] = None,
        max_duration: Optional[float] = None,
        prefer_scene_boundaries: bool = True,
    ) -> Dict[str, Any]:
        errors = validate_episode_payload(episode)
        if errors:
            raise SegmentationError("invalid episode input", {"errors": errors})
        parsed = Episode.from_dict(episode)
        errors = validate_episode(parsed)
        if errors:
            raise SegmentationError("invalid episode input", {"errors": errors})
        options = SegmentationOptions(
            target_duration=target_duration,
            min_duration=min_duration,
            max_duration=max_duration,
            prefer_scene_boundaries=prefer_scene_boundaries,
        )
        segments = segment_episode(parsed, options)
        if not segments:
            raise SegmentationError("episode produced no segments", {"episode_id": parsed.episode_id})
        errors = validate_segment_plan(segments, parsed)
        if errors:
            raise SegmentationError("segment plan failed validation", {"errors": errors})

        group = SegmentGroup(
            group_id=new_id(),
            episode_id=parsed.episode_id,
            title=parsed.title,
            total_segments=len(segments),
        )
        self.groups.create(group)
        self.segments.save_all(group.group_id, segments)
        return {"group": group.to_dict(), "segments": [s.to_dict() for s in segments]}

    def list_segment_groups(self, episode_id: Optional[str] = None) -> Dict[str, Any]:
        return {"groups": [g.to_dict() for g in self.groups.list(episode_id=episode_id)]}

    def get_segment_group(self, group_id: str) -> Dict[str, Any]:
        group = self._require(group_id)
        return {
            "group": group.to_dict(),
            "segments": [s.to_dict() for s in self.segments.list_for_group(group_id)],
            "artifacts": [a.to_dict() for a in self.artifacts.list_for_group(group_id)],
            "continuity_report": self.store.get_report(group_id),
        }

    def continuity_report(self, group_id: str) -> Dict[str, Any]:
        group = self._require(group_id)
        return {"group": group.to_dict(), "continuity_report": self.store.get_report(group_id)}

    def generate_segments(
        self,
        group_id: str,
        platform: Optional[str] = None,
        anchor_point_interval: Optional[int] = None,
        validate_continuity: Optional[bool] = None,
        strict_mode: Optional[bool] = None,
        apply_auto_correction: Optional[bool] = None,
        force: bool = False,
        cancel_event: Optional[threading.Event] = None,
    ) -> Dict[str, Any]:
        config = RunConfig.from_env(
            platform=platform,
            anchor_point_interval=anchor_point_interval,
            validate_continuity=validate_continuity,
            strict_mode=strict_mode,
            apply_auto_correction=apply_auto_correction,
        )
        self._admit(group_id, force)
        try:
            orchestrator = BatchOrchestrator(
                generator=self.generator,
                groups=self.groups,
                segments=self.segments,
                artifacts=self.artifacts,
                logger=self.logger,
                series_bible=load_series_bible(),
            )
            result = orchestrator.run(group_id, config, cancel_event=cancel_event)
        except Exception as exc:
            self._mark_failed(group_id, exc)
            raise
        finally:
            with self._admission:
                self._active.discard(group_id)
        self.store.save_report(group_id, result.continuity_report)
        return result.to_dict()

    def _require(self, group_id: str) -> SegmentGroup:
        group = self.groups.get(group_id)
        if group is None:
            raise GroupNotFoundError(f"segment group not found: {group_id}", {"group_id": group_id})
        return group

    def _admit(self, group_id: str, force: bool) -> None:
        with self._admission:
            group = self._require(group_id)
            if group.status == GROUP_COMPLETE:
                raise GroupAlreadyCompleteError(
                    f"segment group {group_id} is already complete", {"group_id": group_id}
                )
            if group_id in self._active:
                raise RunInProgressError(
                    f"segment group {group_id} is already generating", {"group_id": group_id}
                )
            # A stored generating status may come from another process.
            if group.status == GROUP_GENERATING and not force:
                raise RunInProgressError(
                    f"segment group {group_id} is marked generating; pass force to take over",
                    {"group_id": group_id},
                )
            group.status = GROUP_GENERATING
            self.groups.update(group)
            self._active.add(group_id)

    def _mark_failed(self, group_id: str, exc: BaseException) -> None:
        group = self.groups.get(group_id)
        if group is None:
            return
        group.status = GROUP_ERROR
        group.error_message = f"Run aborted: {format_exception(exc)}"
        self.groups.update(group)


def _example() -> None:
    service = SegmentService()
    res = service.create_segment_group(
        {
            "title": "Pilot",
            "scenes": [
                {"scene_id": "s1", "location": "Kitchen", "time_of_day": "morning", "action": ["Ana pours coffee"]},
            ],
        }
    )
    print(json.dumps(res, indent=2))


if __name__ == "__main__":
    _example()
