"""Pipeline orchestrator — the central coordinator for build-and-release runs.

The Orchestrator wires together the toolchain provider, build executor,
packaging stage, publisher and run archive, and drives one run through

    init -> toolchain_ready -> building -> packaging -> publishing -> done

with ``failed`` reachable from every non-terminal state. Runs are
all-or-nothing: nothing is published unless every planned artifact was
built, and the planned set is then published as one unit. The
orchestrator never retries; retry policy belongs to its callers.
"""

from __future__ import annotations

import logging
import re
import threading
import uuid
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from datetime import datetime, timezone
from pathlib import Path

from alephbuild.config import BuildSettings
from alephbuild.core.artifact_store import LocalArtifactStore
from alephbuild.core.build_cache import BuildCache
from alephbuild.core.executor import BuildExecutor
from alephbuild.core.failures import (
    BuildFailure,
    ConfigurationFailure,
    PipelineFailure,
    RunCancelled,
)
from alephbuild.core.hasher import compute_cache_key
from alephbuild.core.mode_resolver import planned_kinds, resolve
from alephbuild.core.naming import describe, output_mapping
from alephbuild.core.packaging import PackagingStage
from alephbuild.core.publisher import ArtifactPublisher
from alephbuild.core.run_archive import RunArchive
from alephbuild.core.run_machine import RunStateMachine
from alephbuild.core.runner import CommandRunner, SubprocessRunner
from alephbuild.core.toolchain import (
    RustupToolchainProvider,
    ToolchainProvider,
    toolchain_spec_for,
)
from alephbuild.models.artifacts import (
    BUILDABLE_KINDS,
    ArtifactDescriptor,
    ArtifactKind,
    PublishedRef,
)
from alephbuild.models.modes import BuildProfile, BuildRequest
from alephbuild.models.runs import FailureReport, PipelineRun, RunState

logger = logging.getLogger(__name__)

# Publication order within a run.
_PUBLISH_ORDER: tuple[ArtifactKind, ...] = (
    ArtifactKind.BINARY,
    ArtifactKind.RUNTIME_BLOB,
    ArtifactKind.IMAGE,
)

# Stage running while the machine sits in each non-terminal state.
_STAGE_IN_FLIGHT: dict[RunState, str] = {
    RunState.INIT: "toolchain",
    RunState.TOOLCHAIN_READY: "building",
    RunState.BUILDING: "building",
    RunState.PACKAGING: "packaging",
    RunState.PUBLISHING: "publishing",
}

_POLL_INTERVAL = 0.2
_COMMIT_SHA_RE = re.compile(r"^(?:[0-9a-f]{40}|[0-9a-f]{64})$")


def new_run_id(request: BuildRequest) -> str:
    """Readable, unique run identifier. Artifact names never depend on it."""
    ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    ref = re.sub(r"[^A-Za-z0-9._-]", "-", request.ref)[:24]
    return f"ab-{ref}-{request.mode.value}-{ts}-{uuid.uuid4().hex[:4]}"


def cache_key_for(request: BuildRequest, kind: ArtifactKind, profile: BuildProfile) -> str | None:
    """Build cache key, or None when the ref does not pin a snapshot.

    Only full commit hashes are cached; branch and tag names move.
    """
    if not _COMMIT_SHA_RE.match(request.ref):
        return None
    return compute_cache_key(request.ref, kind, profile)


class Orchestrator:
    """Central pipeline orchestrator.

    Parameters
    ----------
    toolchain:
        Acquires the compiler toolchain before building.
    executor:
        Builds the binary and runtime blob.
    packager:
        Packages the binary into a container image archive.
    publisher:
        Publishes artifacts into the artifact store.
    settings:
        Operational settings. Uses defaults if not provided.
    archive:
        Optional run archive; finished runs are recorded there.
    """

    def __init__(
        self,
        toolchain: ToolchainProvider,
        executor: BuildExecutor,
        packager: PackagingStage,
        publisher: ArtifactPublisher,
        *,
        settings: BuildSettings | None = None,
        archive: RunArchive | None = None,
    ) -> None:
        self.settings = settings or BuildSettings()
        self.toolchain = toolchain
        self.executor = executor
        self.packager = packager
        self.publisher = publisher
        self.archive = archive

    @classmethod
    def from_settings(
        cls,
        settings: BuildSettings | None = None,
        *,
        runner: CommandRunner | None = None,
    ) -> Orchestrator:
        """Wire the default subprocess-backed collaborators from *settings*."""
        settings = settings or BuildSettings()
        runner = runner or SubprocessRunner(timeout=settings.command_timeout_seconds)

        cache = None
        if settings.enable_cache:
            cache = BuildCache(settings.cache_path)
            cache.sweep()

        return cls(
            toolchain=RustupToolchainProvider(runner, rustup_bin=settings.rustup_bin),
            executor=BuildExecutor(
                runner,
                cargo_bin=settings.cargo_bin,
                compiler_wrapper=settings.compiler_wrapper,
                cache=cache,
            ),
            packager=PackagingStage(runner, docker_bin=settings.docker_bin),
            publisher=ArtifactPublisher(LocalArtifactStore(settings.artifact_store_path)),
            settings=settings,
            archive=RunArchive(settings.runs_path),
        )

    # ------------------------------------------------------------------
    # Run lifecycle
    # ------------------------------------------------------------------

    def run(
        self,
        request: BuildRequest,
        checkout_path: Path,
        *,
        cancel: threading.Event | None = None,
        run_id: str | None = None,
    ) -> PipelineRun:
        """Execute one run for *request* against the checkout at *checkout_path*.

        Always returns a ``PipelineRun`` in state DONE or FAILED; pipeline
        failures are reported on it rather than raised. Unexpected errors
        fail the run and propagate. ``KeyboardInterrupt`` stops in-flight
        builds, records the run as cancelled and propagates.
        """
        run_id = run_id or new_run_id(request)
        machine = RunStateMachine(run_id)
        profile = resolve(request.mode)
        kinds = planned_kinds(
            request.mode, package_test_image=self.settings.package_test_image
        )
        checkout = Path(checkout_path)
        descriptors: list[ArtifactDescriptor] = []
        published: list[PublishedRef] = []

        logger.info(
            "Run %s: ref=%s mode=%s kinds=%s",
            run_id,
            request.ref,
            request.mode.value,
            sorted(k.value for k in kinds),
        )

        try:
            if not checkout.is_dir():
                raise ConfigurationFailure(f"Checkout not found: {checkout}")

            # init -> toolchain_ready
            self._check_cancel(cancel, "toolchain")
            spec = toolchain_spec_for(kinds, channel=self.settings.toolchain_channel)
            self.toolchain.ensure(spec, checkout, cancel)
            machine.transition(RunState.TOOLCHAIN_READY)

            # toolchain_ready -> building
            self._check_cancel(cancel, "building")
            machine.transition(
                RunState.BUILDING,
                detail=", ".join(k.value for k in BUILDABLE_KINDS if k in kinds),
            )
            built = self._build_all(request, profile, kinds, checkout, cancel)

            # building -> packaging (image planned only)
            if ArtifactKind.IMAGE in kinds:
                self._check_cancel(cancel, "packaging")
                machine.transition(RunState.PACKAGING)
                built[ArtifactKind.IMAGE] = self.packager.package(
                    built[ArtifactKind.BINARY], checkout, cancel=cancel
                )

            # -> publishing
            self._check_cancel(cancel, "publishing")
            machine.transition(RunState.PUBLISHING)
            descriptors = [
                describe(
                    kind,
                    profile,
                    built[kind],
                    retention_days=self.settings.retention_days,
                    product=self.settings.product_name,
                )
                for kind in _PUBLISH_ORDER
                if kind in built
            ]
            published = self.publisher.publish_all(descriptors)

            machine.transition(RunState.DONE)
        except PipelineFailure as failure:
            machine.transition(RunState.FAILED, detail=str(failure))
            return self._finish(
                machine, request, profile, descriptors, published, failure=failure
            )
        except KeyboardInterrupt:
            if cancel is not None:
                cancel.set()
            if not machine.is_terminal:
                interrupted = RunCancelled(
                    "Run interrupted",
                    stage=_STAGE_IN_FLIGHT.get(machine.state, machine.state.value),
                )
                machine.transition(RunState.FAILED, detail=str(interrupted))
                self._finish(
                    machine, request, profile, descriptors, [], failure=interrupted
                )
            raise
        except Exception as exc:
            if not machine.is_terminal:
                machine.transition(RunState.FAILED, detail=f"unexpected error: {exc}")
            raise

        return self._finish(machine, request, profile, descriptors, published)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _build_all(
        self,
        request: BuildRequest,
        profile: BuildProfile,
        kinds: frozenset[ArtifactKind],
        checkout: Path,
        cancel: threading.Event | None,
    ) -> dict[ArtifactKind, Path]:
        """Build every planned buildable kind in parallel.

        The first failure cancels the sibling builds; the run then fails
        with that failure and none of the outputs are used.
        """
        buildable = [k for k in BUILDABLE_KINDS if k in kinds]
        build_cancel = threading.Event()
        workers = max(1, min(self.settings.max_parallel_builds, len(buildable)))

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="build") as pool:
            futures: dict[Future, ArtifactKind] = {
                pool.submit(
                    self.executor.build,
                    kind,
                    profile,
                    checkout,
                    cache_key=cache_key_for(request, kind, profile),
                    cancel=build_cancel,
                ): kind
                for kind in buildable
            }
            pending = set(futures)
            try:
                while pending:
                    done, pending = wait(
                        pending, timeout=_POLL_INTERVAL, return_when=FIRST_EXCEPTION
                    )
                    if cancel is not None and cancel.is_set():
                        build_cancel.set()
                    if any(f.exception() is not None for f in done):
                        build_cancel.set()
            except BaseException:
                # Leaving the pool joins the workers; stop them first.
                build_cancel.set()
                raise

        errors = [
            (kind, f.exception()) for f, kind in futures.items() if f.exception() is not None
        ]
        if errors:
            # Prefer the root cause over siblings stopped because of it.
            kind, error = next(
                ((k, e) for k, e in errors if not isinstance(e, RunCancelled)), errors[0]
            )
            if isinstance(error, PipelineFailure):
                raise error
            raise BuildFailure(f"Unexpected build error: {error}", artifact_kind=kind) from error

        self._check_cancel(cancel, "building")
        return {kind: f.result() for f, kind in futures.items()}

    @staticmethod
    def _check_cancel(cancel: threading.Event | None, stage: str) -> None:
        if cancel is not None and cancel.is_set():
            raise RunCancelled("Run cancelled", stage=stage)

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    def _finish(
        self,
        machine: RunStateMachine,
        request: BuildRequest,
        profile: BuildProfile,
        descriptors: list[ArtifactDescriptor],
        published: list[PublishedRef],
        *,
        failure: PipelineFailure | None = None,
    ) -> PipelineRun:
        succeeded = machine.state == RunState.DONE
        run = PipelineRun(
            run_id=machine.run_id,
            request=request,
            profile=profile,
            state=machine.state,
            transitions=machine.transitions,
            descriptors=descriptors,
            published=published,
            outputs=output_mapping(descriptors) if succeeded else {},
            failure=FailureReport.from_failure(failure) if failure else None,
            error=failure,
        )

        if succeeded:
            logger.info("Run %s done: %s", run.run_id, run.outputs)
        else:
            logger.error(
                "Run %s failed in %s%s: %s",
                run.run_id,
                failure.stage if failure else "unknown",
                f" ({failure.artifact_kind.value})"
                if failure and failure.artifact_kind
                else "",
                failure.message if failure else "",
            )

        if self.archive is not None:
            self.archive.record(run)
        return run
