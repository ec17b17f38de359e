"""Batch orchestrator: generate an episode's segments in order while carrying visual state."""
from __future__ import annotations

import json
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Set, Tuple

from .bibles import bible_character_names, build_generation_context
from .brief import build_segment_brief
from .continuity import ValidationOptions, build_continuity_report, quality_label, validate_continuity
from .errors import GenerationFailure, GroupNotFoundError, PersistenceFailure, PipelineError, SegmentationError, SegmentTimeout, format_exception
from .models import (
    GROUP_COMPLETE,
    GROUP_ERROR,
    GROUP_GENERATING,
    GROUP_PARTIAL,
    ContinuityValidationResult,
    GeneratedArtifact,
    GenerationRequest,
    GenerationResult,
    PipelineResult,
    SegmentDescriptor,
    SegmentGroup,
    VisualState,
    now_iso,
)
from .repositories import ArtifactRepo, SegmentGroupRepo, SegmentRepo
from .run_logger import RunLogger
from .visual_state import VisualStateExtractor, build_continuity_context, merge_visual_states


MIN_ANCHOR_INTERVAL = 2
MAX_ANCHOR_INTERVAL = 5


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class RunConfig:
    platform: str = "tiktok"
    anchor_point_interval: int = 3
    validate_continuity: bool = True
    auto_correct: bool = True
    apply_auto_correction: bool = False
    strict_mode: bool = False
    segment_timeout_sec: float = 300.0
    allowed_discrepancies: List[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not MIN_ANCHOR_INTERVAL <= int(self.anchor_point_interval) <= MAX_ANCHOR_INTERVAL:
            raise ValueError(
                f"anchor_point_interval must be between {MIN_ANCHOR_INTERVAL} and {MAX_ANCHOR_INTERVAL}, "
                f"got {self.anchor_point_interval}"
            )
        self.anchor_point_interval = int(self.anchor_point_interval)

    @classmethod
    def from_env(cls, **overrides: Any) -> "RunConfig":
        values: Dict[str, Any] = {
            "platform": os.getenv("SEGMENT_PLATFORM", "tiktok"),
            "anchor_point_interval": int(os.getenv("ANCHOR_POINT_INTERVAL", "3")),
            "validate_continuity": _env_flag("VALIDATE_CONTINUITY", True),
            "apply_auto_correction": _env_flag("APPLY_AUTO_CORRECTION", False),
            "strict_mode": _env_flag("CONTINUITY_STRICT_MODE", False),
            "segment_timeout_sec": float(os.getenv("SEGMENT_TIMEOUT_SEC", "300")),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def validation_options(self) -> ValidationOptions:
        return ValidationOptions(
            auto_correct=self.auto_correct,
            strict_mode=self.strict_mode,
            allowed_discrepancies=tuple(self.allowed_discrepancies),
        )


class SegmentGenerator(Protocol):
    def generate(self, request: GenerationRequest) -> GenerationResult: ...


def is_anchor_point(segment_number: int, interval: int) -> bool:
    return segment_number % interval == 0


def rebuild_continuity(
    segments: Sequence[SegmentDescriptor],
    completed: Set[int],
    next_number: int,
    interval: int,
) -> Tuple[Optional[VisualState], List[VisualState]]:
    """Current state and anchor window as they stood before ``next_number``."""
    done = [s for s in segments if s.segment_number in completed and s.segment_number < next_number]
    state: Optional[VisualState] = None
    for segment in done:
        if segment.final_visual_state is not None and not segment.final_visual_state.is_empty():
            state = segment.final_visual_state
    window_start = max(1, ((next_number - 1) // interval) * interval)
    window = [
        s.final_visual_state
        for s in done
        if s.segment_number >= window_start
        and s.final_visual_state is not None
        and not s.final_visual_state.is_empty()
    ]
    return state, window


class BatchOrchestrator:
    def __init__(
        self,
        generator: SegmentGenerator,
        groups: SegmentGroupRepo,
        segments: SegmentRepo,
        artifacts: ArtifactRepo,
        extractor: Optional[Callable[[str, Sequence[str]], VisualState]] = None,
        logger: Any = None,
        series_bible: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.generator = generator
        self.groups = groups
        self.segments = segments
        self.artifacts = artifacts
        self.extractor = extractor or VisualStateExtractor()
        self.logger = logger
        self.series_bible = series_bible or {}

    def run(
        self,
        group_id: str,
        config: Optional[RunConfig] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> PipelineResult:
        config = config or RunConfig.from_env()
        group = self.groups.get(group_id)
        if group is None:
            raise GroupNotFoundError(f"segment group not found: {group_id}", {"group_id": group_id})
        segments = self.segments.list_for_group(group_id)
        if not segments:
            raise SegmentationError(f"segment group {group_id} has no segments", {"group_id": group_id})
        logger = self.logger or RunLogger.for_group(group_id)

        artifacts = self.artifacts.list_for_group(group_id)
        completed = {a.segment_number for a in artifacts}
        pending = [s for s in segments if s.segment_number not in completed]
        interval = config.anchor_point_interval
        state: Optional[VisualState] = None
        window: List[VisualState] = []
        if pending and completed:
            state, window = rebuild_continuity(segments, completed, pending[0].segment_number, interval)
            logger.log(
                f"resume group:{group_id} from_segment:{pending[0].segment_number} "
                f"completed:{len(completed)} window:{len(window)}"
            )

        group.status = GROUP_GENERATING
        group.generation_started_at = now_iso()
        group.generation_completed_at = None
        group.error_message = None
        group.completed_segments = len(completed)
        self._update_group(group)
        logger.log(f"run_start group:{group_id} segments:{len(segments)} pending:{len(pending)} interval:{interval}")
        logger.save_step("run", {"status": "started", "group_id": group_id, "pending": len(pending)})

        validations: List[Tuple[int, ContinuityValidationResult]] = []
        anchors_used = 0
        error: Optional[Dict[str, Any]] = None
        options = config.validation_options()
        known_characters = bible_character_names(self.series_bible)

        for segment in pending:
            number = segment.segment_number
            step = f"segment_{number:03d}"
            if cancel_event is not None and cancel_event.is_set():
                error = {
                    "stage": "cancelled",
                    "failed_segment": number,
                    "message": f"Cancelled before segment {number}",
                    "retryable": True,
                }
                logger.log(f"segment:{number} cancelled")
                break
            try:
                brief = build_segment_brief(segment)
                anchor = False
                if is_anchor_point(number, interval) and window:
                    state = merge_visual_states(window)
                    logger.log(f"segment:{number} anchor_refresh states={len(window)}")
                    window = []
                    anchors_used += 1
                    anchor = True

                if config.validate_continuity:
                    result = validate_continuity(state, brief, options)
                    validations.append((number, result))
                    logger.log(
                        f"segment:{number} continuity score={result.overall_score} "
                        f"quality={quality_label(result.overall_score)} issues={len(result.issues)}"
                    )
                    logger.write_json(os.path.join(logger.step_dir(step), "validation.json"), result.to_dict())
                    if config.apply_auto_correction and result.auto_correction:
                        brief = result.auto_correction
                        logger.log(f"segment:{number} brief_auto_corrected")

                request = self._build_request(segment, brief, state, config)
                generated = self._generate(request, number, config.segment_timeout_sec)
                artifact = self._persist(group, segment, brief, generated, anchor, config, artifacts, completed)
                logger.save_step(step, {"status": "completed", "anchor_point": anchor, "artifact_id": artifact.artifact_id})

                extracted = self._extract(segment, generated, known_characters, logger)
                if extracted is not None:
                    state = extracted
                    window.append(extracted)
            except PipelineError as exc:
                error = {
                    "stage": exc.stage,
                    "failed_segment": number,
                    "message": exc.message,
                    "retryable": exc.retryable,
                }
                logger.log("stage_failure:" + json.dumps(error, ensure_ascii=True))
                logger.save_step(step, {"status": "failed", "error": error})
                break
            except Exception as exc:
                error = {
                    "stage": "pipeline",
                    "failed_segment": number,
                    "message": f"Failed at segment {number}: {format_exception(exc)}",
                    "retryable": False,
                }
                logger.log("stage_failure:" + json.dumps(error, ensure_ascii=True))
                logger.save_step(step, {"status": "failed", "error": error})
                break

        report = build_continuity_report(validations, group.total_segments)
        logger.write_json(os.path.join(logger.step_dir("continuity"), "report.json"), report)
        self._finish(group, error, logger)
        return PipelineResult(
            artifacts=artifacts,
            segment_group=group,
            continuity_report=report,
            anchor_points_used=anchors_used,
            error=error,
        )

    def _build_request(
        self,
        segment: SegmentDescriptor,
        brief: str,
        state: Optional[VisualState],
        config: RunConfig,
    ) -> GenerationRequest:
        series_context, character_context, characters, settings = build_generation_context(self.series_bible, segment)
        return GenerationRequest(
            brief=brief,
            platform=config.platform,
            series_context=series_context,
            character_context=character_context,
            continuity_context=build_continuity_context(state),
            characters=characters,
            settings=settings,
            prior_state=state,
        )

    def _generate(self, request: GenerationRequest, number: int, timeout_sec: float) -> GenerationResult:
        try:
            if timeout_sec and timeout_sec > 0:
                generated = self._call_with_deadline(request, number, timeout_sec)
            else:
                generated = self.generator.generate(request)
        except SegmentTimeout:
            raise
        except Exception as exc:
            raise GenerationFailure(f"Failed at segment {number}: {format_exception(exc)}") from exc
        if not generated.optimized_prompt.strip():
            raise GenerationFailure(f"Failed at segment {number}: generator returned an empty prompt")
        return generated

    def _call_with_deadline(self, request: GenerationRequest, number: int, timeout_sec: float) -> GenerationResult:
        executor = ThreadPoolExecutor(max_workers=1)
        try:
            future = executor.submit(self.generator.generate, request)
            try:
                return future.result(timeout=timeout_sec)
            except FutureTimeoutError as exc:
                raise SegmentTimeout(
                    f"Failed at segment {number}: generator exceeded {timeout_sec:g}s deadline"
                ) from exc
        finally:
            executor.shutdown(wait=False)

    def _persist(
        self,
        group: SegmentGroup,
        segment: SegmentDescriptor,
        brief: str,
        generated: GenerationResult,
        anchor: bool,
        config: RunConfig,
        artifacts: List[GeneratedArtifact],
        completed: Set[int],
    ) -> GeneratedArtifact:
        """Store the artifact, then advance the group.

        The artifact is recorded in ``artifacts`` as soon as it is saved, so
        a failing group update still returns it.
        """
        artifact = GeneratedArtifact(
            group_id=group.group_id,
            segment_id=segment.segment_id,
            segment_number=segment.segment_number,
            episode_id=group.episode_id,
            title=f"{group.title or group.episode_id} - Segment {segment.segment_number}",
            brief=brief,
            optimized_prompt=generated.optimized_prompt,
            platform=config.platform,
            discussion=generated.discussion,
            detailed_breakdown=generated.detailed_breakdown,
            character_count=generated.character_count,
            tags=generated.tags,
            anchor_point=anchor,
        )
        try:
            self.artifacts.save(artifact)
        except Exception as exc:
            raise PersistenceFailure(
                f"Failed at segment {segment.segment_number}: {format_exception(exc)}"
            ) from exc
        artifacts.append(artifact)
        completed.add(segment.segment_number)
        group.completed_segments = len(completed)
        if group.completed_segments < group.total_segments:
            group.status = GROUP_PARTIAL
        try:
            self.groups.update(group)
        except Exception as exc:
            raise PersistenceFailure(
                f"Failed at segment {segment.segment_number}: group update failed: {format_exception(exc)}"
            ) from exc
        return artifact

    def _extract(
        self,
        segment: SegmentDescriptor,
        generated: GenerationResult,
        known_characters: List[str],
        logger: Any,
    ) -> Optional[VisualState]:
        number = segment.segment_number
        character_ids = list(dict.fromkeys(segment.characters_in_segment + known_characters))
        try:
            state = self.extractor(generated.optimized_prompt, character_ids)
        except Exception as exc:
            logger.log(f"segment:{number} extraction_failed {format_exception(exc)}")
            return None
        if state is None or state.is_empty():
            logger.log(f"segment:{number} extraction_empty keeping previous state")
            return None
        try:
            self.segments.set_final_visual_state(segment.segment_id, state)
        except Exception as exc:
            logger.log(f"segment:{number} visual_state_write_failed {format_exception(exc)}")
            return None
        segment.final_visual_state = state
        return state

    def _finish(self, group: SegmentGroup, error: Optional[Dict[str, Any]], logger: Any) -> None:
        if error is None and group.completed_segments >= group.total_segments:
            group.status = GROUP_COMPLETE
            group.generation_completed_at = now_iso()
        elif error is not None and error["stage"] == "cancelled" and group.completed_segments > 0:
            group.status = GROUP_PARTIAL
            group.error_message = error["message"]
        else:
            group.status = GROUP_ERROR
            if error is not None:
                group.error_message = error["message"]
        try:
            self._update_group(group)
        except PersistenceFailure as exc:
            logger.log(f"group_update_failed {format_exception(exc)}")
        logger.log(
            f"run_end group:{group.group_id} status:{group.status} "
            f"completed:{group.completed_segments}/{group.total_segments}"
        )
        logger.save_step("run", {"status": group.status, "completed_segments": group.completed_segments})

    def _update_group(self, group: SegmentGroup) -> None:
        try:
            self.groups.update(group)
        except Exception as exc:
            raise PersistenceFailure(f"Could not update segment group {group.group_id}: {format_exception(exc)}") from exc
