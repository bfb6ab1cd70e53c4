"""Artifact publisher — uploads named artifacts and fails loudly on absence.

A missing artifact after a successful build is a pipeline defect, never an
empty success, so zero matching files is always a ``PublishFailure``.
A run's artifacts are published as one unit: every descriptor is staged
first and the batch is committed together, so a failure leaves the store
as it was before the run.
"""

from __future__ import annotations

import logging

from alephbuild.core.artifact_store import ArtifactStore, NoFilesFoundError, resolve_matches
from alephbuild.core.failures import PublishFailure
from alephbuild.models.artifacts import ArtifactDescriptor, PublishedRef, StagedArtifact

logger = logging.getLogger(__name__)


class ArtifactPublisher:
    """Publishes descriptors into an ``ArtifactStore``.

    Parameters
    ----------
    store:
        Destination store. Re-publishing a name overwrites it.
    """

    def __init__(self, store: ArtifactStore) -> None:
        self._store = store

    @property
    def store(self) -> ArtifactStore:
        return self._store

    @staticmethod
    def _check_files(descriptor: ArtifactDescriptor) -> None:
        try:
            matches = resolve_matches(descriptor.path)
        except ValueError as exc:
            raise PublishFailure(str(exc), artifact_kind=descriptor.kind) from exc
        if not matches:
            raise PublishFailure(
                f"No files found at {descriptor.path} for artifact {descriptor.name!r}",
                artifact_kind=descriptor.kind,
            )

    def preflight(self, descriptors: list[ArtifactDescriptor]) -> None:
        """Check every descriptor has files before anything is written."""
        names = [d.name for d in descriptors]
        if len(set(names)) != len(names):
            raise PublishFailure(f"Duplicate artifact names in run: {names}")
        for descriptor in descriptors:
            self._check_files(descriptor)

    def _stage(self, descriptor: ArtifactDescriptor) -> StagedArtifact:
        try:
            return self._store.stage(
                descriptor.name,
                descriptor.path,
                descriptor.retention_days,
                kind=descriptor.kind,
            )
        except NoFilesFoundError as exc:
            raise PublishFailure(str(exc), artifact_kind=descriptor.kind) from exc
        except (OSError, ValueError) as exc:
            raise PublishFailure(
                f"Store write failed for {descriptor.name!r}: {exc}",
                artifact_kind=descriptor.kind,
            ) from exc

    def publish_all(self, descriptors: list[ArtifactDescriptor]) -> list[PublishedRef]:
        """Publish every descriptor, or none of them.

        Raises ``PublishFailure`` if any descriptor has no files or the
        store fails; the store then holds exactly what it held before.
        """
        self.preflight(descriptors)
        staged: list[StagedArtifact] = []
        try:
            for descriptor in descriptors:
                staged.append(self._stage(descriptor))
            try:
                refs = self._store.commit(staged)
            except OSError as exc:
                raise PublishFailure(f"Store commit failed: {exc}") from exc
        finally:
            self._store.discard(staged)

        for descriptor in descriptors:
            logger.info("Published %s as %s", descriptor.kind.value, descriptor.name)
        return refs

    def publish(self, descriptor: ArtifactDescriptor) -> PublishedRef:
        """Publish one descriptor.

        Raises ``PublishFailure`` if no file exists at ``descriptor.path``
        or the store write fails.
        """
        return self.publish_all([descriptor])[0]
