"""Artifact models — descriptors handed between stages and published refs.

Descriptors are created by the naming service and consumed by the
publisher. They are never mutated after creation.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


class ArtifactKind(str, Enum):
    """The artifact kinds a run can produce."""

    BINARY = "binary"
    RUNTIME_BLOB = "runtime_blob"
    IMAGE = "image"


# Kinds produced by a toolchain invocation; IMAGE is derived from BINARY.
BUILDABLE_KINDS: tuple[ArtifactKind, ...] = (
    ArtifactKind.BINARY,
    ArtifactKind.RUNTIME_BLOB,
)


class ArtifactDescriptor(BaseModel):
    """A named, built artifact awaiting publication.

    ``path`` is either a concrete file or a glob pattern; the publisher
    resolves it and treats zero matches as a failure.
    """

    model_config = ConfigDict(frozen=True)

    kind: ArtifactKind
    name: str = Field(min_length=1)
    path: Path
    retention_days: int = Field(default=7, ge=0)


class StoredFile(BaseModel):
    """One file inside a published artifact."""

    model_config = ConfigDict(frozen=True)

    filename: str
    sha256: str
    size_bytes: int = 0


class PublishedRef(BaseModel):
    """Reference returned by the artifact store for a published artifact.

    ``digest`` covers the stored files only, so re-publishing identical
    content under the same name yields the same digest.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    kind: ArtifactKind | None = None
    retention_days: int
    files: list[StoredFile]
    digest: str  # "sha256:<hex>"
    published_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    expires_at: datetime


class StagedArtifact(BaseModel):
    """An artifact written to the store but not yet visible under its name.

    ``commit`` makes a batch of staged artifacts live together; ``discard``
    drops any that were never committed.
    """

    model_config = ConfigDict(frozen=True)

    ref: PublishedRef
    staging_path: Path
