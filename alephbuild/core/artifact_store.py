"""Name-addressed, retention-governed artifact store.

Storage layout::

    {base_path}/{name}/manifest.json
    {base_path}/{name}/files/{filename}

Each entry is assembled in a hidden temp directory and swapped into place,
so re-publishing a name replaces the previous entry instead of adding a
second copy, and readers never see a half-written entry. A batch of staged
entries is committed together: if one swap fails, the entries already
swapped are put back to what they were before the batch. Read-by-name is
the only lookup.
"""

from __future__ import annotations

import glob
import json
import logging
import os
import re
import shutil
import threading
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Protocol, runtime_checkable

from alephbuild.core.hasher import canonical_json_bytes, combined_digest, sha256_file
from alephbuild.models.artifacts import ArtifactKind, PublishedRef, StagedArtifact, StoredFile

logger = logging.getLogger(__name__)

_MANIFEST = "manifest.json"
_FILES_DIR = "files"
_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
_GLOB_CHARS = frozenset("*?[")


class NoFilesFoundError(FileNotFoundError):
    """Raised when a write's source path matches no files."""


class ArtifactNotFoundError(LookupError):
    """Raised when no live artifact is published under a name."""


@runtime_checkable
class ArtifactStore(Protocol):
    """Protocol for artifact storage backends."""

    def write(
        self,
        name: str,
        path: Path | str,
        retention_days: int,
        *,
        kind: ArtifactKind | None = None,
    ) -> PublishedRef:
        """Publish the file(s) at *path* under *name*.

        Raises ``NoFilesFoundError`` when *path* matches no files.
        """
        ...

    def stage(
        self,
        name: str,
        path: Path | str,
        retention_days: int,
        *,
        kind: ArtifactKind | None = None,
    ) -> StagedArtifact:
        """Copy the file(s) at *path* into the store without publishing them."""
        ...

    def commit(self, staged: list[StagedArtifact]) -> list[PublishedRef]:
        """Publish every staged artifact, or none of them if one fails."""
        ...

    def discard(self, staged: list[StagedArtifact]) -> None:
        ...

    def delete(self, name: str) -> bool:
        ...

    def read(self, name: str) -> list[Path]:
        """Return the stored files of *name*."""
        ...

    def describe(self, name: str) -> PublishedRef:
        ...

    def list_refs(self, *, include_expired: bool = False) -> list[PublishedRef]:
        ...

    def purge_expired(self, now: datetime | None = None) -> list[str]:
        ...


def resolve_matches(path: Path | str) -> dict[str, Path]:
    """Resolve a file path, directory or glob pattern to ``{filename: path}``.

    Plain files and glob matches are keyed by basename, directory contents
    by their path relative to the directory.
    """
    text = str(path)
    candidate = Path(text)
    if any(ch in text for ch in _GLOB_CHARS):
        files = [Path(p) for p in sorted(glob.glob(text, recursive=True))]
        pairs = [(p.name, p) for p in files if p.is_file()]
    elif candidate.is_dir():
        pairs = [
            (p.relative_to(candidate).as_posix(), p)
            for p in sorted(candidate.rglob("*"))
            if p.is_file()
        ]
    elif candidate.is_file():
        pairs = [(candidate.name, candidate)]
    else:
        pairs = []

    matches: dict[str, Path] = {}
    for filename, source in pairs:
        if filename in matches:
            raise ValueError(
                f"Ambiguous artifact contents: {filename!r} matched more than once"
            )
        matches[filename] = source
    return matches


class LocalArtifactStore:
    """Filesystem artifact store keyed by artifact name.

    Parameters
    ----------
    base_path:
        Root directory for stored artifacts.
    """

    def __init__(self, base_path: Path) -> None:
        self._base = Path(base_path)
        self._base.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    @property
    def base_path(self) -> Path:
        return self._base

    @staticmethod
    def _check_name(name: str) -> None:
        if not _NAME_RE.match(name):
            raise ValueError(f"Invalid artifact name: {name!r}")

    def _entry_dir(self, name: str) -> Path:
        return self._base / name

    def _hidden_sibling(self, name: str, tag: str) -> Path:
        return self._base / f".{name}.{tag}-{uuid.uuid4().hex}"

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def write(
        self,
        name: str,
        path: Path | str,
        retention_days: int,
        *,
        kind: ArtifactKind | None = None,
    ) -> PublishedRef:
        """Publish the file(s) at *path* under *name*, replacing any prior entry."""
        staged = self.stage(name, path, retention_days, kind=kind)
        try:
            return self.commit([staged])[0]
        finally:
            self.discard([staged])

    def stage(
        self,
        name: str,
        path: Path | str,
        retention_days: int,
        *,
        kind: ArtifactKind | None = None,
    ) -> StagedArtifact:
        """Copy the file(s) at *path* into a hidden staging entry for *name*.

        Nothing is visible under *name* until the result is committed.
        """
        self._check_name(name)
        if retention_days < 0:
            raise ValueError(f"retention_days must be >= 0, got {retention_days}")

        matches = resolve_matches(path)
        if not matches:
            raise NoFilesFoundError(f"No files found at {path} for artifact {name!r}")

        staging = self._hidden_sibling(name, "tmp")
        files_dir = staging / _FILES_DIR
        try:
            stored: list[StoredFile] = []
            digests: dict[str, str] = {}
            for filename, source in matches.items():
                target = files_dir / filename
                target.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(source, target)
                sha = sha256_file(target)
                digests[filename] = sha
                stored.append(
                    StoredFile(
                        filename=filename,
                        sha256=sha,
                        size_bytes=target.stat().st_size,
                    )
                )

            published_at = datetime.now(timezone.utc)
            ref = PublishedRef(
                name=name,
                kind=kind,
                retention_days=retention_days,
                files=stored,
                digest=combined_digest(digests),
                published_at=published_at,
                expires_at=published_at + timedelta(days=retention_days),
            )
            (staging / _MANIFEST).write_bytes(
                canonical_json_bytes(ref.model_dump(mode="json"))
            )
        except BaseException:
            shutil.rmtree(staging, ignore_errors=True)
            raise
        return StagedArtifact(ref=ref, staging_path=staging)

    def commit(self, staged: list[StagedArtifact]) -> list[PublishedRef]:
        """Swap every staged entry into place as one unit.

        If any swap fails, the entries swapped so far are restored to their
        previous contents (or removed if they had none) and the error
        propagates.
        """
        swapped: list[tuple[str, Path | None]] = []
        with self._lock:
            try:
                for item in staged:
                    retired = self._swap_in(item.ref.name, item.staging_path)
                    swapped.append((item.ref.name, retired))
            except BaseException:
                for name, retired in reversed(swapped):
                    self._roll_back(name, retired)
                raise

        for _, retired in swapped:
            if retired is not None:
                shutil.rmtree(retired, ignore_errors=True)
        for item in staged:
            logger.info(
                "Published %s (%d file(s), retention=%dd, digest=%s)",
                item.ref.name,
                len(item.ref.files),
                item.ref.retention_days,
                item.ref.digest[:19],
            )
        return [item.ref for item in staged]

    def discard(self, staged: list[StagedArtifact]) -> None:
        """Remove staging entries that were never committed."""
        for item in staged:
            if item.staging_path.exists():
                shutil.rmtree(item.staging_path, ignore_errors=True)

    def delete(self, name: str) -> bool:
        """Remove the entry for *name*. Returns whether one existed."""
        self._check_name(name)
        entry = self._entry_dir(name)
        with self._lock:
            if not entry.exists():
                return False
            retired = self._hidden_sibling(name, "old")
            os.replace(entry, retired)
        shutil.rmtree(retired, ignore_errors=True)
        return True

    def _swap_in(self, name: str, staging: Path) -> Path | None:
        """Move *staging* into place. Returns the retired previous entry, if any.

        Caller holds ``self._lock``.
        """
        entry = self._entry_dir(name)
        retired = None
        if entry.exists():
            retired = self._hidden_sibling(name, "old")
            os.replace(entry, retired)
        try:
            os.replace(staging, entry)
        except BaseException:
            if retired is not None:
                os.replace(retired, entry)
            raise
        return retired

    def _roll_back(self, name: str, retired: Path | None) -> None:
        entry = self._entry_dir(name)
        shutil.rmtree(entry, ignore_errors=True)
        if retired is not None:
            os.replace(retired, entry)
        logger.warning("Rolled back %s", name)

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def describe(self, name: str, *, now: datetime | None = None) -> PublishedRef:
        """Return the manifest of the live artifact *name*."""
        self._check_name(name)
        manifest = self._entry_dir(name) / _MANIFEST
        if not manifest.is_file():
            raise ArtifactNotFoundError(f"Artifact not found: {name}")
        ref = PublishedRef.model_validate(json.loads(manifest.read_bytes()))
        if ref.expires_at <= (now or datetime.now(timezone.utc)):
            raise ArtifactNotFoundError(f"Artifact expired: {name}")
        return ref

    def read(self, name: str) -> list[Path]:
        ref = self.describe(name)
        files_dir = self._entry_dir(name) / _FILES_DIR
        return [files_dir / f.filename for f in ref.files]

    def exists(self, name: str) -> bool:
        try:
            self.describe(name)
        except (ArtifactNotFoundError, ValueError):
            return False
        return True

    def fetch(self, name: str, dest: Path) -> list[Path]:
        """Copy the files of *name* into directory *dest*."""
        ref = self.describe(name)
        dest = Path(dest)
        copied: list[Path] = []
        for stored in ref.files:
            target = dest / stored.filename
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(self._entry_dir(name) / _FILES_DIR / stored.filename, target)
            copied.append(target)
        return copied

    def list_refs(self, *, include_expired: bool = False) -> list[PublishedRef]:
        """Return manifests of all stored artifacts, sorted by name."""
        now = datetime.now(timezone.utc)
        refs: list[PublishedRef] = []
        for entry in sorted(self._base.iterdir()):
            manifest = entry / _MANIFEST
            if entry.name.startswith(".") or not manifest.is_file():
                continue
            ref = PublishedRef.model_validate(json.loads(manifest.read_bytes()))
            if include_expired or ref.expires_at > now:
                refs.append(ref)
        return refs

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def purge_expired(self, now: datetime | None = None) -> list[str]:
        """Delete every artifact past its retention. Returns the names removed."""
        now = now or datetime.now(timezone.utc)
        removed: list[str] = []
        for ref in self.list_refs(include_expired=True):
            if ref.expires_at <= now and self.delete(ref.name):
                removed.append(ref.name)
        if removed:
            logger.info("Purged %d expired artifact(s): %s", len(removed), removed)
        return removed
