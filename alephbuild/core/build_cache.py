"""Shared build output cache with keyed-entry locking.

Storage layout: {base_path}/{key[0:2]}/{key}

Readers never lock: an entry only becomes visible through an atomic
``os.replace`` of a fully written temp file. Writers serialize per key,
never on the whole cache. A writer that is interrupted removes its temp
file; ``sweep()`` clears temp files left behind by killed processes.
"""

from __future__ import annotations

import logging
import os
import shutil
import threading
import time
import uuid
import weakref
from pathlib import Path

logger = logging.getLogger(__name__)

_TMP_MARKER = ".tmp-"


class BuildCache:
    """Keyed cache of built outputs, safe for concurrent runs.

    Parameters
    ----------
    base_path:
        Root directory for cache entries.
    """

    def __init__(self, base_path: Path) -> None:
        self._base = Path(base_path)
        self._base.mkdir(parents=True, exist_ok=True)
        self._registry_lock = threading.Lock()
        # Entries disappear once no writer holds the lock.
        self._key_locks: weakref.WeakValueDictionary[str, threading.Lock] = (
            weakref.WeakValueDictionary()
        )

    @property
    def base_path(self) -> Path:
        return self._base

    def _entry_path(self, key: str) -> Path:
        return self._base / key[:2] / key

    def _lock_for(self, key: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = self._key_locks[key] = threading.Lock()
            return lock

    @staticmethod
    def _tmp_sibling(path: Path) -> Path:
        return path.with_name(f".{path.name}{_TMP_MARKER}{uuid.uuid4().hex}")

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def contains(self, key: str) -> bool:
        return self._entry_path(key).is_file()

    def restore(self, key: str, dest: Path) -> bool:
        """Copy the entry for *key* to *dest*. Returns False on a miss."""
        entry = self._entry_path(key)
        if not entry.is_file():
            return False
        dest = Path(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._tmp_sibling(dest)
        try:
            shutil.copyfile(entry, tmp)
            shutil.copymode(entry, tmp)
            os.replace(tmp, dest)
        except FileNotFoundError:
            # Entry vanished between the check and the copy (e.g. cache cleared).
            return False
        finally:
            tmp.unlink(missing_ok=True)
        logger.debug("Build cache hit %s -> %s", key[:12], dest)
        return True

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def store(self, key: str, source: Path) -> Path:
        """Store a copy of *source* under *key* and return the entry path.

        Re-storing an existing key replaces the entry atomically.
        """
        entry = self._entry_path(key)
        entry.parent.mkdir(parents=True, exist_ok=True)
        with self._lock_for(key):
            tmp = self._tmp_sibling(entry)
            try:
                shutil.copyfile(source, tmp)
                shutil.copymode(source, tmp)
                os.replace(tmp, entry)
            finally:
                tmp.unlink(missing_ok=True)
        logger.debug("Build cache stored %s", key[:12])
        return entry

    def evict(self, key: str) -> bool:
        """Remove the entry for *key*. Returns whether one existed."""
        with self._lock_for(key):
            entry = self._entry_path(key)
            if not entry.exists():
                return False
            entry.unlink()
            return True

    def sweep(self, max_age_seconds: float = 3600.0) -> int:
        """Delete orphaned temp files older than *max_age_seconds*.

        Younger temp files may belong to a writer that is still running.
        Returns the number removed.
        """
        cutoff = time.time() - max_age_seconds
        removed = 0
        for path in self._base.rglob(f".*{_TMP_MARKER}*"):
            try:
                if path.stat().st_mtime > cutoff:
                    continue
                path.unlink()
            except FileNotFoundError:
                continue
            removed += 1
        if removed:
            logger.info("Build cache sweep removed %d partial entries", removed)
        return removed
