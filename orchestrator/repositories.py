"""Storage seams used by the batch orchestrator."""
from typing import List, Optional, Protocol, Sequence

from orchestrator.models import GeneratedArtifact, SegmentDescriptor, SegmentGroup, VisualState


class SegmentGroupRepo(Protocol):
    def create(self, group: SegmentGroup) -> SegmentGroup: ...

    def get(self, group_id: str) -> Optional[SegmentGroup]: ...

    def update(self, group: SegmentGroup) -> SegmentGroup: ...


class SegmentRepo(Protocol):
    def save_all(self, group_id: str, segments: Sequence[SegmentDescriptor]) -> None: ...

    def list_for_group(self, group_id: str) -> List[SegmentDescriptor]: ...

    def set_final_visual_state(self, segment_id: str, state: VisualState) -> None: ...


class ArtifactRepo(Protocol):
    def save(self, artifact: GeneratedArtifact) -> GeneratedArtifact: ...

    def list_for_group(self, group_id: str) -> List[GeneratedArtifact]: ...
