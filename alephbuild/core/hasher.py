"""Canonical hashing helpers for cache keys, artifact digests and run records."""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

from alephbuild.models.artifacts import ArtifactKind
from alephbuild.models.modes import BuildProfile

_CHUNK_SIZE = 1 << 20


def canonical_json_bytes(obj: Any) -> bytes:
    """Produce canonical JSON bytes — deterministic, sorted, compact.

    - sorted keys
    - no whitespace separators (",", ":")
    - ensure_ascii=True
    - UTF-8 encoding
    """
    return json.dumps(
        obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True
    ).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def sha256_file(path: Path) -> str:
    """Return the SHA-256 hex digest of a file, read in chunks."""
    digest = hashlib.sha256()
    with Path(path).open("rb") as fh:
        for chunk in iter(lambda: fh.read(_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def content_address(obj: Any) -> str:
    """Content-address a JSON-serializable object as "sha256:<hex>"."""
    return f"sha256:{sha256_hex(canonical_json_bytes(obj))}"


def combined_digest(file_digests: dict[str, str]) -> str:
    """Digest over a set of (filename -> sha256) pairs, order-independent."""
    return content_address(sorted(file_digests.items()))


def compute_cache_key(ref: str, kind: ArtifactKind, profile: BuildProfile) -> str:
    """SHA-256 of canonical(ref + kind + profile).

    Identical inputs always map to the same build cache entry.
    """
    payload = {
        "ref": ref,
        "kind": kind.value,
        "optimization_profile": profile.optimization_profile.value,
        "feature_flags": sorted(profile.feature_flags),
    }
    return sha256_hex(canonical_json_bytes(payload))
