"""Failure taxonomy for pipeline runs.

Every failure is fatal to the enclosing run. Each carries the stage it was
raised in and, where one applies, the artifact kind being produced, so a
failed non-interactive run can be root-caused from its report alone.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from alephbuild.models.artifacts import ArtifactKind


class PipelineFailure(RuntimeError):
    """Base class for all run-fatal failures."""

    default_stage: str = "unknown"

    def __init__(
        self,
        message: str,
        *,
        stage: str | None = None,
        artifact_kind: ArtifactKind | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.stage = stage or self.default_stage
        self.artifact_kind = artifact_kind

    @property
    def failure_kind(self) -> str:
        return type(self).__name__

    def __str__(self) -> str:
        where = self.stage
        if self.artifact_kind is not None:
            where = f"{where}/{self.artifact_kind.value}"
        return f"[{where}] {self.message}"


class ConfigurationFailure(PipelineFailure):
    """Invalid or missing invocation input, caught before any stage runs."""

    default_stage = "init"


class ToolchainFailure(PipelineFailure):
    """The compiler toolchain could not be acquired."""

    default_stage = "toolchain"


class BuildFailure(PipelineFailure):
    """Toolchain invocation failed or its expected output is missing."""

    default_stage = "building"


class PackagingFailure(PipelineFailure):
    """Container image construction failed or the input binary is missing."""

    default_stage = "packaging"


class PublishFailure(PipelineFailure):
    """No files at the expected path, or the store write failed."""

    default_stage = "publishing"


class RunCancelled(PipelineFailure):
    """The run was cancelled by its caller while a stage was in flight."""
