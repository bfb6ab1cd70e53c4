"""Artifact naming — stable, collision-free names per (kind, profile).

Names are the addressing key for publication and for downstream consumers
fetching by name, so they depend only on the kind and the profile suffix.
"""

from __future__ import annotations

from pathlib import Path

from alephbuild.models.artifacts import ArtifactDescriptor, ArtifactKind
from alephbuild.models.modes import BuildProfile

DEFAULT_PRODUCT = "aleph-node"

# Runtime blobs are only built by production runs and are not mode-suffixed.
RUNTIME_ARTIFACT_NAME = "aleph-production-runtime"

# Output keys exposed to callers, per kind.
OUTPUT_KEYS: dict[ArtifactKind, str] = {
    ArtifactKind.BINARY: "artifact-name-binary",
    ArtifactKind.IMAGE: "artifact-name-image",
    ArtifactKind.RUNTIME_BLOB: "aleph-runtime-artifact-name",
}


def artifact_name(
    kind: ArtifactKind, profile: BuildProfile, product: str = DEFAULT_PRODUCT
) -> str:
    """Return the published name for an artifact of *kind* built with *profile*."""
    if kind == ArtifactKind.BINARY:
        return f"{product}-{profile.artifact_suffix}"
    if kind == ArtifactKind.IMAGE:
        return f"{product}-image-{profile.artifact_suffix}"
    if kind == ArtifactKind.RUNTIME_BLOB:
        return RUNTIME_ARTIFACT_NAME
    raise ValueError(f"Unknown artifact kind: {kind!r}")


def describe(
    kind: ArtifactKind,
    profile: BuildProfile,
    path: Path,
    *,
    retention_days: int = 7,
    product: str = DEFAULT_PRODUCT,
) -> ArtifactDescriptor:
    """Build the descriptor for a produced artifact."""
    return ArtifactDescriptor(
        kind=kind,
        name=artifact_name(kind, profile, product),
        path=path,
        retention_days=retention_days,
    )


def output_mapping(descriptors: list[ArtifactDescriptor]) -> dict[str, str]:
    """Map output keys to published names for a run's descriptors."""
    return {OUTPUT_KEYS[d.kind]: d.name for d in descriptors}
