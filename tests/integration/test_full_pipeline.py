"""End-to-end integration tests — full runs through init → done.

These tests exercise the Orchestrator, RunStateMachine, BuildExecutor,
PackagingStage, ArtifactPublisher, LocalArtifactStore, BuildCache and
RunArchive working together, with fakes standing in for cargo, rustup
and docker.
"""

from __future__ import annotations

import os
import threading
import time
from pathlib import Path

import pytest

from alephbuild.core import orchestrator as orchestrator_module
from alephbuild.core.artifact_store import LocalArtifactStore
from alephbuild.core.build_cache import BuildCache
from alephbuild.core.executor import BuildExecutor
from alephbuild.core.failures import ConfigurationFailure, ToolchainFailure
from alephbuild.core.mode_resolver import resolve
from alephbuild.core.orchestrator import Orchestrator, cache_key_for, new_run_id
from alephbuild.core.packaging import PackagingStage
from alephbuild.core.publisher import ArtifactPublisher
from alephbuild.core.run_archive import RunArchive
from alephbuild.core.toolchain import RustupToolchainProvider
from alephbuild.models.artifacts import ArtifactKind
from alephbuild.models.modes import BuildMode, BuildRequest
from alephbuild.models.runs import RunState
from alephbuild.models.toolchain import WASM_TARGET

SHA = "0123456789abcdef0123456789abcdef01234567"


def _states(run) -> list[RunState]:
    return [t.to_state for t in run.transitions]


class TestScenarios:
    """The three reference runs: test build, production build, no toolchain."""

    def test_test_mode_publishes_binary_only(
        self, make_orchestrator, fake_runner, checkout: Path, store: LocalArtifactStore
    ):
        run = make_orchestrator().run(BuildRequest.create("abc123", False), checkout)

        assert run.state == RunState.DONE
        assert run.succeeded
        assert _states(run) == [
            RunState.TOOLCHAIN_READY,
            RunState.BUILDING,
            RunState.PUBLISHING,
            RunState.DONE,
        ]
        assert run.outputs == {"artifact-name-binary": "aleph-node-test"}
        assert fake_runner.commands("cargo") == [
            ("cargo", "build", "--release", "-p", "aleph-node", "--features", "only_legacy"),
        ]
        assert fake_runner.commands("docker") == []
        assert [r.name for r in store.list_refs()] == ["aleph-node-test"]

    def test_production_publishes_all_three(
        self,
        make_orchestrator,
        fake_runner,
        fake_toolchain,
        checkout: Path,
        store: LocalArtifactStore,
    ):
        run = make_orchestrator().run(BuildRequest.create("abc123", True), checkout)

        assert run.state == RunState.DONE
        assert _states(run) == [
            RunState.TOOLCHAIN_READY,
            RunState.BUILDING,
            RunState.PACKAGING,
            RunState.PUBLISHING,
            RunState.DONE,
        ]
        assert run.outputs == {
            "artifact-name-binary": "aleph-node-production",
            "artifact-name-image": "aleph-node-image-production",
            "aleph-runtime-artifact-name": "aleph-production-runtime",
        }
        assert fake_toolchain.requests[0].targets == (WASM_TARGET,)
        assert sorted(fake_runner.commands("cargo")) == sorted([
            ("cargo", "build", "--profile", "production", "-p", "aleph-node"),
            ("cargo", "build", "--profile", "production", "-p", "aleph-runtime"),
        ])
        assert [c[1] for c in fake_runner.commands("docker")] == ["build", "save"]

        assert [p.name for p in store.read("aleph-node-image-production")] == ["aleph-node.tar"]
        assert [p.name for p in store.read("aleph-production-runtime")] == [
            "aleph_runtime.compact.compressed.wasm"
        ]
        assert store.read("aleph-node-production")[0].read_bytes() == (
            b"fake aleph-node built with production"
        )
        assert [d.kind for d in run.descriptors] == [
            ArtifactKind.BINARY,
            ArtifactKind.RUNTIME_BLOB,
            ArtifactKind.IMAGE,
        ]
        assert all(r.retention_days == 7 for r in run.published)

    def test_toolchain_failure_never_builds(
        self, make_orchestrator, fake_runner, fake_toolchain, checkout: Path
    ):
        fake_toolchain.error = ToolchainFailure("rustup: command not found")
        run = make_orchestrator().run(BuildRequest.create("abc123", True), checkout)

        assert run.state == RunState.FAILED
        assert [(t.from_state, t.to_state) for t in run.transitions] == [
            (RunState.INIT, RunState.FAILED)
        ]
        assert fake_runner.calls == []
        assert run.outputs == {}
        assert run.failure.failure_kind == "ToolchainFailure"
        assert run.failure.stage == "toolchain"
        with pytest.raises(ToolchainFailure):
            run.raise_for_failure()


class TestAllOrNothing:
    def test_failed_runtime_build_publishes_nothing(
        self, make_orchestrator, fake_runner, checkout: Path, store: LocalArtifactStore
    ):
        fake_runner.fail_on["-p aleph-runtime"] = 101
        run = make_orchestrator().run(BuildRequest.create("abc123", True), checkout)

        assert run.state == RunState.FAILED
        assert RunState.PUBLISHING not in _states(run)
        assert run.failure.failure_kind == "BuildFailure"
        assert run.failure.stage == "building"
        assert run.failure.artifact_kind == ArtifactKind.RUNTIME_BLOB
        assert run.descriptors == []
        assert run.published == []
        assert store.list_refs(include_expired=True) == []
        assert fake_runner.commands("docker") == []

    def test_failed_build_cancels_sibling(
        self, make_orchestrator, fake_runner, checkout: Path, store: LocalArtifactStore
    ):
        fake_runner.fail_on["-p aleph-node"] = 1
        fake_runner.block_on.add("-p aleph-runtime")
        run = make_orchestrator().run(BuildRequest.create("abc123", True), checkout)

        assert run.state == RunState.FAILED
        # the root cause wins over the cancelled sibling
        assert run.failure.failure_kind == "BuildFailure"
        assert run.failure.artifact_kind == ArtifactKind.BINARY
        assert store.list_refs(include_expired=True) == []

    def test_packaging_failure_publishes_nothing(
        self, make_orchestrator, fake_runner, checkout: Path, store: LocalArtifactStore
    ):
        fake_runner.fail_on["docker build"] = 1
        run = make_orchestrator().run(BuildRequest.create("abc123", True), checkout)

        assert run.state == RunState.FAILED
        assert _states(run)[-2:] == [RunState.PACKAGING, RunState.FAILED]
        assert run.failure.failure_kind == "PackagingFailure"
        assert run.failure.artifact_kind == ArtifactKind.IMAGE
        assert store.list_refs(include_expired=True) == []

    def test_store_failure_fails_run(
        self, make_orchestrator, checkout: Path, tmp_dir: Path
    ):
        class _ImageRejectingStore(LocalArtifactStore):
            def stage(self, name, path, retention_days, *, kind=None):
                if kind == ArtifactKind.IMAGE:
                    raise OSError("quota exceeded")
                return super().stage(name, path, retention_days, kind=kind)

        store = _ImageRejectingStore(tmp_dir / "store")
        orch = make_orchestrator(store=store)
        run = orch.run(BuildRequest.create("abc123", True), checkout)

        assert run.state == RunState.FAILED
        assert run.failure.failure_kind == "PublishFailure"
        assert run.failure.stage == "publishing"
        assert run.failure.artifact_kind == ArtifactKind.IMAGE
        assert run.outputs == {}
        assert run.published == []
        assert store.list_refs(include_expired=True) == []
        assert list(store.base_path.iterdir()) == []

    def test_failed_commit_restores_previous_release(
        self, make_orchestrator, checkout: Path, tmp_dir: Path
    ):
        class _ImageSwapFailingStore(LocalArtifactStore):
            fail = False

            def _swap_in(self, name, staging):
                if self.fail and name == "aleph-node-image-production":
                    raise OSError("device busy")
                return super()._swap_in(name, staging)

        store = _ImageSwapFailingStore(tmp_dir / "store")
        orch = make_orchestrator(store=store)
        first = orch.run(BuildRequest.create("abc123", True), checkout)
        assert first.succeeded
        before = {r.name: r.published_at for r in store.list_refs()}

        store.fail = True
        second = orch.run(BuildRequest.create("abc123", True), checkout)

        assert second.state == RunState.FAILED
        assert second.failure.failure_kind == "PublishFailure"
        assert second.published == []
        assert {r.name: r.published_at for r in store.list_refs()} == before
        assert [p.name for p in store.base_path.iterdir() if p.name.startswith(".")] == []


class TestCancellation:
    def test_cancel_while_building(
        self, make_orchestrator, fake_runner, checkout: Path, store: LocalArtifactStore
    ):
        fake_runner.block_on.add("-p aleph-runtime")
        cancel = threading.Event()
        orch = make_orchestrator()

        def _cancel_once_started():
            fake_runner.started.wait(timeout=5.0)
            cancel.set()

        canceller = threading.Thread(target=_cancel_once_started)
        canceller.start()
        run = orch.run(BuildRequest.create("abc123", True), checkout, cancel=cancel)
        canceller.join()

        assert run.state == RunState.FAILED
        assert run.failure.failure_kind == "RunCancelled"
        assert run.failure.stage == "building"
        assert store.list_refs(include_expired=True) == []

    def test_interrupt_stops_builds_and_records_run(
        self, make_orchestrator, fake_runner, checkout: Path, tmp_dir: Path, monkeypatch
    ):
        fake_runner.block_on.add("-p aleph-runtime")

        def _interrupted_wait(*args, **kwargs):
            fake_runner.started.wait(timeout=5.0)
            raise KeyboardInterrupt

        monkeypatch.setattr(orchestrator_module, "wait", _interrupted_wait)
        cancel = threading.Event()
        started = time.monotonic()
        with pytest.raises(KeyboardInterrupt):
            make_orchestrator().run(
                BuildRequest.create("abc123", True),
                checkout,
                cancel=cancel,
                run_id="ab-interrupted",
            )

        # the blocked sibling was released instead of waiting out its hang
        assert time.monotonic() - started < 4.0
        assert cancel.is_set()
        loaded = RunArchive(tmp_dir / "runs").load("ab-interrupted")
        assert loaded.state == RunState.FAILED
        assert loaded.failure.failure_kind == "RunCancelled"
        assert loaded.failure.stage == "building"
        assert loaded.published == []

    def test_interrupt_during_toolchain(
        self, make_orchestrator, fake_toolchain, checkout: Path, tmp_dir: Path
    ):
        fake_toolchain.error = KeyboardInterrupt()
        with pytest.raises(KeyboardInterrupt):
            make_orchestrator().run(
                BuildRequest.create("abc123", False), checkout, run_id="ab-interrupted-early"
            )
        loaded = RunArchive(tmp_dir / "runs").load("ab-interrupted-early")
        assert [t.to_state for t in loaded.transitions] == [RunState.FAILED]
        assert loaded.failure.stage == "toolchain"

    def test_cancel_before_start(self, make_orchestrator, fake_toolchain, checkout: Path):

        cancel = threading.Event()
        cancel.set()
        run = make_orchestrator().run(
            BuildRequest.create("abc123", False), checkout, cancel=cancel
        )
        assert run.failure.failure_kind == "RunCancelled"
        assert run.failure.stage == "toolchain"
        assert fake_toolchain.requests == []


class TestRunBoundaries:
    def test_missing_checkout(self, make_orchestrator, fake_toolchain, tmp_dir: Path):
        run = make_orchestrator().run(BuildRequest.create("abc123", False), tmp_dir / "nope")
        assert run.state == RunState.FAILED
        assert run.failure.failure_kind == "ConfigurationFailure"
        assert fake_toolchain.requests == []
        with pytest.raises(ConfigurationFailure):
            run.raise_for_failure()

    def test_unexpected_error_propagates(self, make_orchestrator, fake_toolchain, checkout: Path):
        fake_toolchain.error = KeyError("bug")
        with pytest.raises(KeyError):
            make_orchestrator().run(BuildRequest.create("abc123", False), checkout)

    def test_run_is_archived(self, make_orchestrator, checkout: Path, tmp_dir: Path):
        orch = make_orchestrator()
        run = orch.run(BuildRequest.create("abc123", False), checkout, run_id="ab-fixed")
        loaded = RunArchive(tmp_dir / "runs").load("ab-fixed")
        assert loaded.outputs == run.outputs
        assert loaded.state == RunState.DONE

    def test_test_image_opt_in(self, make_orchestrator, fake_runner, checkout: Path):
        run = make_orchestrator(package_test_image=True).run(
            BuildRequest.create("abc123", False), checkout
        )
        assert run.outputs == {
            "artifact-name-binary": "aleph-node-test",
            "artifact-name-image": "aleph-node-image-test",
        }
        assert RunState.PACKAGING in _states(run)

    def test_names_are_independent_of_run(self, make_orchestrator, checkout: Path):
        orch = make_orchestrator()
        first = orch.run(BuildRequest.create("abc123", True), checkout)
        second = orch.run(BuildRequest.create("abc123", True), checkout)
        assert first.run_id != second.run_id
        assert first.outputs == second.outputs

    def test_run_id_shape(self):
        run_id = new_run_id(BuildRequest.create("feature/x y", True))
        assert run_id.startswith("ab-feature-x-y-production-")


class TestBuildCacheAcrossRuns:
    def test_second_run_for_same_commit_is_served_from_cache(
        self, make_orchestrator, fake_runner, checkout: Path
    ):
        orch = make_orchestrator(cache=True)
        orch.run(BuildRequest.create(SHA, False), checkout)
        (checkout / "target").rename(checkout / "target-old")
        run = orch.run(BuildRequest.create(SHA, False), checkout)

        assert run.state == RunState.DONE
        assert len(fake_runner.commands("cargo")) == 1
        assert (checkout / "target" / "release" / "aleph-node").is_file()

    def test_branch_names_are_never_cached(self):
        profile = resolve(BuildMode.TEST)
        assert cache_key_for(BuildRequest.create("main", False), ArtifactKind.BINARY, profile) is None
        assert cache_key_for(BuildRequest.create(SHA, False), ArtifactKind.BINARY, profile)


class TestDefaultWiring:
    def test_from_settings_with_fake_runner(self, make_settings, fake_runner, checkout: Path):
        settings = make_settings(compiler_wrapper="sccache")
        orch = Orchestrator.from_settings(settings, runner=fake_runner)

        assert isinstance(orch.toolchain, RustupToolchainProvider)
        assert isinstance(orch.executor, BuildExecutor)
        assert isinstance(orch.packager, PackagingStage)
        assert isinstance(orch.publisher, ArtifactPublisher)
        assert orch.publisher.store.base_path == settings.artifact_store_path
        assert settings.cache_path.is_dir()

        run = orch.run(BuildRequest.create("abc123", True), checkout)
        assert run.state == RunState.DONE
        assert fake_runner.calls[:2] == [
            ("rustup", "show", "active-toolchain"),
            ("rustup", "target", "add", WASM_TARGET),
        ]
        cargo_envs = [
            env for call, env in zip(fake_runner.calls, fake_runner.envs) if call[0] == "cargo"
        ]
        assert all(env.get("RUSTC_WRAPPER") == "sccache" for env in cargo_envs)
        assert len(RunArchive(settings.runs_path).list_runs()) == 1

    def test_cache_disabled(self, make_settings, fake_runner):
        settings = make_settings(enable_cache=False)
        Orchestrator.from_settings(settings, runner=fake_runner)
        assert not settings.cache_path.exists()

    def test_orphaned_cache_temp_files_swept(self, make_settings, fake_runner):
        settings = make_settings()
        BuildCache(settings.cache_path)
        shard = settings.cache_path / "ab"
        shard.mkdir()
        orphan = shard / ".ab00.tmp-deadbeef"
        orphan.write_bytes(b"partial")
        old = time.time() - 7200
        os.utime(orphan, (old, old))

        Orchestrator.from_settings(settings, runner=fake_runner)
        assert not orphan.exists()
