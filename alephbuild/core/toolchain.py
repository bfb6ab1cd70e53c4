"""Toolchain acquisition — makes the compiler available before any build.

``ToolchainProvider`` is the injected collaborator; ``RustupToolchainProvider``
is the default backend and only shells out to rustup.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Protocol, runtime_checkable

from alephbuild.core.failures import RunCancelled, ToolchainFailure
from alephbuild.core.runner import CommandCancelledError, CommandRunner, SubprocessRunner
from alephbuild.models.artifacts import ArtifactKind
from alephbuild.models.toolchain import WASM_TARGET, ToolchainSpec

logger = logging.getLogger(__name__)


@runtime_checkable
class ToolchainProvider(Protocol):
    """Protocol for toolchain acquisition backends."""

    def ensure(
        self,
        spec: ToolchainSpec,
        checkout_path: Path,
        cancel: threading.Event | None = None,
    ) -> None:
        """Make the toolchain described by *spec* available.

        Raises ``ToolchainFailure`` if it cannot be acquired.
        """
        ...


def toolchain_spec_for(
    kinds: frozenset[ArtifactKind] | set[ArtifactKind],
    channel: str | None = None,
    components: tuple[str, ...] = (),
) -> ToolchainSpec:
    """The toolchain a run producing *kinds* needs.

    Runtime blobs cross-compile to web-assembly, so they add the wasm target.
    """
    targets = (WASM_TARGET,) if ArtifactKind.RUNTIME_BLOB in kinds else ()
    return ToolchainSpec(channel=channel, targets=targets, components=components)


class RustupToolchainProvider:
    """Installs the requested channel, targets and components with rustup.

    Parameters
    ----------
    runner:
        Command runner used to invoke rustup.
    rustup_bin:
        rustup executable name or path.
    """

    def __init__(
        self, runner: CommandRunner | None = None, rustup_bin: str = "rustup"
    ) -> None:
        self._runner = runner or SubprocessRunner()
        self._rustup = rustup_bin

    def command_for(self, spec: ToolchainSpec) -> list[str]:
        """rustup invocation for *spec*.

        Without an explicit channel, ``rustup show active-toolchain``
        installs the toolchain pinned by the checkout; targets and
        components are then added to that toolchain.
        """
        if spec.channel is None:
            return [self._rustup, "show", "active-toolchain"]
        args = [self._rustup, "toolchain", "install", spec.channel, "--profile", "minimal"]
        for target in spec.targets:
            args += ["--target", target]
        for component in spec.components:
            args += ["--component", component]
        return args

    def ensure(
        self,
        spec: ToolchainSpec,
        checkout_path: Path,
        cancel: threading.Event | None = None,
    ) -> None:
        commands = [self.command_for(spec)]
        if spec.channel is None:
            if spec.targets:
                commands.append([self._rustup, "target", "add", *spec.targets])
            if spec.components:
                commands.append([self._rustup, "component", "add", *spec.components])

        for args in commands:
            try:
                result = self._runner.run(args, cwd=checkout_path, cancel=cancel)
            except CommandCancelledError as exc:
                raise RunCancelled(str(exc), stage="toolchain") from exc
            except OSError as exc:
                raise ToolchainFailure(f"Cannot launch {args[0]}: {exc}") from exc
            if not result.ok:
                raise ToolchainFailure(
                    f"Toolchain acquisition failed: {result.describe()}\n{result.output}"
                )

        logger.info(
            "Toolchain ready (channel=%s, targets=%s, components=%s)",
            spec.channel or "pinned",
            list(spec.targets),
            list(spec.components),
        )
