"""Build executor — one toolchain invocation per artifact kind.

The output location of every kind is a pure function of ``(kind, profile)``
relative to the checkout. Builds of different kinds share nothing mutable
except the optional build cache, which is never needed for correctness.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path

from alephbuild.core.build_cache import BuildCache
from alephbuild.core.failures import BuildFailure, RunCancelled
from alephbuild.core.runner import CommandCancelledError, CommandRunner, SubprocessRunner
from alephbuild.models.artifacts import ArtifactKind
from alephbuild.models.modes import BuildProfile, OptimizationProfile

logger = logging.getLogger(__name__)

NODE_PACKAGE = "aleph-node"
RUNTIME_PACKAGE = "aleph-runtime"
RUNTIME_BLOB_FILENAME = "aleph_runtime.compact.compressed.wasm"


def output_path(kind: ArtifactKind, profile: BuildProfile, checkout_path: Path) -> Path:
    """Where the build of *kind* under *profile* leaves its output file."""
    target = Path(checkout_path) / "target"
    if kind == ArtifactKind.BINARY:
        return target / profile.optimization_profile.value / NODE_PACKAGE
    if kind == ArtifactKind.RUNTIME_BLOB:
        # The runtime is always compiled with the production profile.
        return (
            target
            / OptimizationProfile.PRODUCTION.value
            / "wbuild"
            / RUNTIME_PACKAGE
            / RUNTIME_BLOB_FILENAME
        )
    raise ValueError(f"{kind.value} is not produced by the toolchain")


class BuildExecutor:
    """Invokes cargo for one artifact kind at a time.

    Parameters
    ----------
    runner:
        Command runner used to invoke cargo.
    cargo_bin:
        cargo executable name or path.
    compiler_wrapper:
        Optional compiler wrapper (e.g. ``sccache``) exported as RUSTC_WRAPPER.
    cache:
        Optional shared build cache.
    """

    def __init__(
        self,
        runner: CommandRunner | None = None,
        *,
        cargo_bin: str = "cargo",
        compiler_wrapper: str = "",
        cache: BuildCache | None = None,
    ) -> None:
        self._runner = runner or SubprocessRunner()
        self._cargo = cargo_bin
        self._wrapper = compiler_wrapper
        self._cache = cache

    def command_for(self, kind: ArtifactKind, profile: BuildProfile) -> list[str]:
        """cargo invocation that builds *kind* under *profile*."""
        if kind == ArtifactKind.BINARY:
            args = [self._cargo, "build"]
            if profile.optimization_profile == OptimizationProfile.RELEASE:
                args.append("--release")
            else:
                args += ["--profile", profile.optimization_profile.value]
            args += ["-p", NODE_PACKAGE]
            if profile.feature_flags:
                args += ["--features", ",".join(sorted(profile.feature_flags))]
            return args
        if kind == ArtifactKind.RUNTIME_BLOB:
            return [
                self._cargo, "build",
                "--profile", OptimizationProfile.PRODUCTION.value,
                "-p", RUNTIME_PACKAGE,
            ]
        raise ValueError(f"{kind.value} is not produced by the toolchain")

    def environment(self) -> dict[str, str]:
        env = {"RUST_BACKTRACE": "full"}
        if self._wrapper:
            env["RUSTC_WRAPPER"] = self._wrapper
        return env

    def build(
        self,
        kind: ArtifactKind,
        profile: BuildProfile,
        checkout_path: Path,
        *,
        cache_key: str | None = None,
        cancel: threading.Event | None = None,
    ) -> Path:
        """Build *kind* and return the path of its output file.

        Raises ``BuildFailure`` if the toolchain exits non-zero or the
        expected output is missing afterwards. Never retries.
        """
        expected = output_path(kind, profile, checkout_path)

        if self._cache is not None and cache_key is not None:
            if self._cache.restore(cache_key, expected):
                logger.info("%s restored from build cache", kind.value)
                return expected

        args = self.command_for(kind, profile)
        try:
            result = self._runner.run(
                args, cwd=Path(checkout_path), env=self.environment(), cancel=cancel
            )
        except CommandCancelledError as exc:
            raise RunCancelled(str(exc), stage="building", artifact_kind=kind) from exc
        except OSError as exc:
            raise BuildFailure(
                f"Cannot launch {args[0]}: {exc}", artifact_kind=kind
            ) from exc

        if not result.ok:
            raise BuildFailure(
                f"Build failed: {result.describe()}\n{result.output}",
                artifact_kind=kind,
            )
        if not expected.is_file():
            raise BuildFailure(
                f"Build succeeded but expected output is missing: {expected}",
                artifact_kind=kind,
            )

        if self._cache is not None and cache_key is not None:
            self._cache.store(cache_key, expected)

        logger.info("Built %s -> %s", kind.value, expected)
        return expected
