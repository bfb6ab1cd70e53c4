"""Shared test fixtures for aleph-build."""

from __future__ import annotations

import threading
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from alephbuild.config import BuildSettings
from alephbuild.core.artifact_store import LocalArtifactStore
from alephbuild.core.build_cache import BuildCache
from alephbuild.core.executor import BuildExecutor
from alephbuild.core.orchestrator import Orchestrator
from alephbuild.core.packaging import PackagingStage
from alephbuild.core.publisher import ArtifactPublisher
from alephbuild.core.run_archive import RunArchive
from alephbuild.core.runner import CommandCancelledError, CommandResult
from alephbuild.models.toolchain import ToolchainSpec


# ---------------------------------------------------------------------------
# Collaborator fakes: no live cargo, rustup or docker in tests
# ---------------------------------------------------------------------------


class FakeRunner:
    """Records every command and writes the files the real tool would.

    ``fail_on`` maps a substring of the command line to an exit code.
    ``skip_output`` lists substrings whose commands succeed without writing
    anything. ``block_on`` lists substrings whose commands hang until
    cancelled.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, ...]] = []
        self.envs: list[dict[str, str]] = []
        self.cwds: list[Path | None] = []
        self.fail_on: dict[str, int] = {}
        self.skip_output: set[str] = set()
        self.block_on: set[str] = set()
        self.started = threading.Event()
        self._lock = threading.Lock()

    def commands(self, tool: str) -> list[tuple[str, ...]]:
        return [c for c in self.calls if Path(c[0]).name == tool]

    def run(self, args, *, cwd=None, env=None, cancel=None) -> CommandResult:
        argv = tuple(str(a) for a in args)
        with self._lock:
            self.calls.append(argv)
            self.envs.append(dict(env or {}))
            self.cwds.append(Path(cwd) if cwd is not None else None)
        line = " ".join(argv)

        if any(p in line for p in self.block_on):
            self.started.set()
            if (cancel or threading.Event()).wait(timeout=5.0):
                raise CommandCancelledError(f"Cancelled while running {line}")
            return CommandResult(args=argv, exit_code=1, output="fake hang expired")

        for pattern, code in self.fail_on.items():
            if pattern in line:
                return CommandResult(
                    args=argv, exit_code=code, output=f"error: simulated failure in {line}"
                )

        if not any(p in line for p in self.skip_output):
            self._write_outputs(argv, Path(cwd) if cwd is not None else Path("."))
        return CommandResult(args=argv, exit_code=0, output="ok")

    @staticmethod
    def _write_outputs(argv: tuple[str, ...], cwd: Path) -> None:
        tool = Path(argv[0]).name
        if tool == "cargo" and "-p" in argv:
            package = argv[argv.index("-p") + 1]
            if "--release" in argv:
                profile = "release"
            else:
                profile = argv[argv.index("--profile") + 1]
            if package == "aleph-node":
                out = cwd / "target" / profile / "aleph-node"
            else:
                out = (
                    cwd / "target" / profile / "wbuild" / "aleph-runtime"
                    / "aleph_runtime.compact.compressed.wasm"
                )
            out.parent.mkdir(parents=True, exist_ok=True)
            out.write_bytes(f"fake {package} built with {profile}".encode())
        elif tool == "docker" and argv[1] == "save":
            archive = cwd / argv[argv.index("-o") + 1]
            archive.write_bytes(b"fake image archive")


class FakeToolchain:
    """ToolchainProvider that records requests and optionally raises."""

    def __init__(self, error: BaseException | None = None) -> None:
        self.error = error
        self.requests: list[ToolchainSpec] = []

    def ensure(self, spec, checkout_path, cancel=None) -> None:
        self.requests.append(spec)
        if self.error is not None:
            raise self.error


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def store(tmp_dir: Path) -> LocalArtifactStore:
    """Provide a fresh LocalArtifactStore in a temp directory."""
    return LocalArtifactStore(tmp_dir / "store")


@pytest.fixture
def checkout(tmp_dir: Path) -> Path:
    """Provide an empty source checkout with a Dockerfile."""
    root = tmp_dir / "checkout"
    (root / "docker").mkdir(parents=True)
    (root / "docker" / "Dockerfile").write_text("FROM scratch\n")
    return root


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def fake_toolchain() -> FakeToolchain:
    return FakeToolchain()


@pytest.fixture
def make_settings(tmp_dir: Path) -> Callable[..., BuildSettings]:
    """Factory fixture: BuildSettings with every path inside the temp dir."""

    def _factory(**overrides: Any) -> BuildSettings:
        defaults: dict[str, Any] = {
            "artifact_store_path": tmp_dir / "store",
            "cache_path": tmp_dir / "cache",
            "runs_path": tmp_dir / "runs",
        }
        defaults.update(overrides)
        return BuildSettings(**defaults)

    return _factory


@pytest.fixture
def make_orchestrator(
    make_settings: Callable[..., BuildSettings],
    fake_runner: FakeRunner,
    fake_toolchain: FakeToolchain,
) -> Callable[..., Orchestrator]:
    """Factory fixture: an Orchestrator wired to the fakes and temp paths."""

    def _factory(*, cache: bool = False, store: Any = None, **overrides: Any) -> Orchestrator:
        settings = make_settings(**overrides)
        return Orchestrator(
            toolchain=fake_toolchain,
            executor=BuildExecutor(
                fake_runner,
                cache=BuildCache(settings.cache_path) if cache else None,
            ),
            packager=PackagingStage(fake_runner),
            publisher=ArtifactPublisher(
                store or LocalArtifactStore(settings.artifact_store_path)
            ),
            settings=settings,
            archive=RunArchive(settings.runs_path),
        )

    return _factory
