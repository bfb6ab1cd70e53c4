"""Tests for BuildCache — atomic entries, per-key locking and sweeping."""

from __future__ import annotations

import gc
import os
import threading
import time
from pathlib import Path

import pytest

from alephbuild.core.build_cache import BuildCache

KEY = "ab" + "0" * 62


def _src(tmp_path: Path, data: bytes = b"built output") -> Path:
    path = tmp_path / "out" / "aleph-node"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return path


class TestBuildCache:
    def test_miss(self, tmp_path: Path):
        cache = BuildCache(tmp_path / "cache")
        assert cache.contains(KEY) is False
        assert cache.restore(KEY, tmp_path / "dest") is False
        assert not (tmp_path / "dest").exists()

    def test_store_and_restore(self, tmp_path: Path):
        cache = BuildCache(tmp_path / "cache")
        entry = cache.store(KEY, _src(tmp_path))
        assert entry == tmp_path / "cache" / "ab" / KEY
        assert cache.contains(KEY)

        dest = tmp_path / "checkout" / "target" / "release" / "aleph-node"
        assert cache.restore(KEY, dest) is True
        assert dest.read_bytes() == b"built output"

    def test_restore_keeps_mode(self, tmp_path: Path):
        src = _src(tmp_path)
        src.chmod(0o755)
        cache = BuildCache(tmp_path / "cache")
        cache.store(KEY, src)
        dest = tmp_path / "dest"
        cache.restore(KEY, dest)
        assert os.access(dest, os.X_OK)

    def test_restore_overwrites_stale_output(self, tmp_path: Path):
        cache = BuildCache(tmp_path / "cache")
        cache.store(KEY, _src(tmp_path, b"fresh"))
        dest = tmp_path / "dest"
        dest.write_bytes(b"stale")
        cache.restore(KEY, dest)
        assert dest.read_bytes() == b"fresh"

    def test_evict(self, tmp_path: Path):
        cache = BuildCache(tmp_path / "cache")
        cache.store(KEY, _src(tmp_path))
        assert cache.evict(KEY) is True
        assert cache.evict(KEY) is False
        assert cache.contains(KEY) is False

    def test_failed_store_leaves_no_temp_file(self, tmp_path: Path):
        cache = BuildCache(tmp_path / "cache")
        with pytest.raises(FileNotFoundError):
            cache.store(KEY, tmp_path / "does-not-exist")
        assert cache.contains(KEY) is False
        assert [p for p in cache.base_path.rglob("*") if p.is_file()] == []

    def test_concurrent_writers_same_key(self, tmp_path: Path):
        cache = BuildCache(tmp_path / "cache")
        sources = []
        for i in range(8):
            p = tmp_path / f"src{i}"
            p.write_bytes(b"payload-%d" % i * 1000)
            sources.append(p)

        threads = [threading.Thread(target=cache.store, args=(KEY, s)) for s in sources]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        data = (tmp_path / "cache" / "ab" / KEY).read_bytes()
        assert data in {s.read_bytes() for s in sources}
        assert [p.name for p in (tmp_path / "cache" / "ab").iterdir()] == [KEY]

    def test_key_locks_released_after_writes(self, tmp_path: Path):
        cache = BuildCache(tmp_path / "cache")
        src = _src(tmp_path)
        for i in range(50):
            cache.store(f"{i:02d}" + "f" * 62, src)
        cache.evict(KEY)
        gc.collect()
        assert len(cache._key_locks) == 0

    def test_same_key_shares_lock_while_held(self, tmp_path: Path):
        cache = BuildCache(tmp_path / "cache")
        held = cache._lock_for(KEY)
        assert cache._lock_for(KEY) is held



class TestSweep:
    def test_removes_old_temp_files_only(self, tmp_path: Path):
        cache = BuildCache(tmp_path / "cache")
        cache.store(KEY, _src(tmp_path))
        shard = tmp_path / "cache" / "ab"
        orphan = shard / f".{KEY}.tmp-deadbeef"
        orphan.write_bytes(b"partial")
        old = time.time() - 7200
        os.utime(orphan, (old, old))
        fresh = shard / f".{KEY}.tmp-cafebabe"
        fresh.write_bytes(b"in progress")

        assert cache.sweep(max_age_seconds=3600) == 1
        assert not orphan.exists()
        assert fresh.exists()
        assert cache.contains(KEY)
