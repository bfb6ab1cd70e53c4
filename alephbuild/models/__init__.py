"""aleph-build data models — all Pydantic v2, all frozen (immutable)."""

from alephbuild.models.artifacts import (
    BUILDABLE_KINDS,
    ArtifactDescriptor,
    ArtifactKind,
    PublishedRef,
    StagedArtifact,
    StoredFile,
)
from alephbuild.models.modes import (
    BuildMode,
    BuildProfile,
    BuildRequest,
    OptimizationProfile,
)
from alephbuild.models.runs import (
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    FailureReport,
    PipelineRun,
    RunState,
    StageTransition,
)
from alephbuild.models.toolchain import WASM_TARGET, ToolchainSpec

__all__ = [
    # modes
    "BuildMode",
    "BuildProfile",
    "BuildRequest",
    "OptimizationProfile",
    # artifacts
    "ArtifactKind",
    "ArtifactDescriptor",
    "BUILDABLE_KINDS",
    "PublishedRef",
    "StagedArtifact",
    "StoredFile",
    # runs
    "RunState",
    "StageTransition",
    "VALID_TRANSITIONS",
    "TERMINAL_STATES",
    "FailureReport",
    "PipelineRun",
    # toolchain
    "ToolchainSpec",
    "WASM_TARGET",
]
