"""Run state machine and run record models."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from alephbuild.core.failures import PipelineFailure
from alephbuild.models.artifacts import ArtifactDescriptor, ArtifactKind, PublishedRef
from alephbuild.models.modes import BuildProfile, BuildRequest


class RunState(str, Enum):
    """Lifecycle of a single pipeline run."""

    INIT = "init"
    TOOLCHAIN_READY = "toolchain_ready"
    BUILDING = "building"
    PACKAGING = "packaging"
    PUBLISHING = "publishing"
    DONE = "done"
    FAILED = "failed"


# Valid run transitions, enforced by RunStateMachine.
# FAILED is reachable from every non-terminal state; DONE and FAILED are terminal.
VALID_TRANSITIONS: dict[RunState, set[RunState]] = {
    RunState.INIT: {RunState.TOOLCHAIN_READY, RunState.FAILED},
    RunState.TOOLCHAIN_READY: {RunState.BUILDING, RunState.FAILED},
    RunState.BUILDING: {RunState.PACKAGING, RunState.PUBLISHING, RunState.FAILED},
    RunState.PACKAGING: {RunState.PUBLISHING, RunState.FAILED},
    RunState.PUBLISHING: {RunState.DONE, RunState.FAILED},
    RunState.DONE: set(),  # terminal
    RunState.FAILED: set(),  # terminal
}

TERMINAL_STATES: frozenset[RunState] = frozenset({RunState.DONE, RunState.FAILED})


class StageTransition(BaseModel):
    """Records a single run state transition."""

    model_config = ConfigDict(frozen=True)

    from_state: RunState
    to_state: RunState
    at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    detail: str = ""


class FailureReport(BaseModel):
    """Which stage failed, for which artifact kind, and why."""

    model_config = ConfigDict(frozen=True)

    failure_kind: str  # e.g. "BuildFailure"
    stage: str
    artifact_kind: ArtifactKind | None = None
    message: str

    @classmethod
    def from_failure(cls, failure: PipelineFailure) -> FailureReport:
        return cls(
            failure_kind=failure.failure_kind,
            stage=failure.stage,
            artifact_kind=failure.artifact_kind,
            message=failure.message,
        )


class PipelineRun(BaseModel):
    """Terminal record of one run.

    ``outputs`` maps output keys (``artifact-name-binary`` etc.) to
    published names and is only populated when the run reached DONE.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    run_id: str
    request: BuildRequest
    profile: BuildProfile
    state: RunState
    transitions: list[StageTransition] = []
    descriptors: list[ArtifactDescriptor] = []
    published: list[PublishedRef] = []
    outputs: dict[str, str] = {}
    failure: FailureReport | None = None
    error: PipelineFailure | None = Field(default=None, exclude=True, repr=False)

    @property
    def succeeded(self) -> bool:
        return self.state == RunState.DONE

    def raise_for_failure(self) -> None:
        """Re-raise the originating failure of a FAILED run."""
        if self.error is not None:
            raise self.error
