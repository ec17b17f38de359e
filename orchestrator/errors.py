"""Pipeline exceptions. Each carries a JSON-serialisable payload."""
import json
from typing import Any, Dict, List, Optional


class PipelineError(RuntimeError):
    stage = "pipeline"
    retryable = False

    def __init__(self, message: str, payload: Optional[Dict[str, Any]] = None) -> None:
        self.message = message
        self.payload: Dict[str, Any] = {"stage": self.stage, "message": message}
        if payload:
            self.payload.update(payload)
        super().__init__(json.dumps(self.payload, ensure_ascii=True))


class SegmentationError(PipelineError):
    stage = "segmentation"


class GenerationFailure(PipelineError):
    stage = "generation"


class SegmentTimeout(GenerationFailure):
    retryable = True


class PersistenceFailure(PipelineError):
    stage = "persistence"


class RunInProgressError(PipelineError):
    stage = "admission"


class GroupAlreadyCompleteError(PipelineError):
    stage = "admission"


class GroupNotFoundError(PipelineError):
    stage = "lookup"


def exc_summary(err: BaseException) -> str:
    msg = str(err).strip()
    if isinstance(err, PipelineError):
        msg = err.message
    if not msg:
        msg = repr(err)
    return f"{type(err).__name__}: {msg}"


def _flatten_exceptions(err: BaseException) -> List[BaseException]:
    if isinstance(err, BaseExceptionGroup):
        flattened: List[BaseException] = []
        for sub in err.exceptions:
            flattened.extend(_flatten_exceptions(sub))
        return flattened
    return [err]


def format_exception(err: BaseException) -> str:
    if isinstance(err, BaseExceptionGroup):
        subs = "; ".join(exc_summary(sub) for sub in _flatten_exceptions(err))
        if subs:
            return f"{exc_summary(err)} | sub-exceptions: {subs}"
    return exc_summary(err)
