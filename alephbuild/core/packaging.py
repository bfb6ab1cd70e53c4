"""Packaging stage — wraps the node binary in a container image archive.

The Dockerfile expects the binary at ``target/release/aleph-node``
regardless of the profile it was built with, so the binary is staged there
before the image is built and saved to a single tar archive.
"""

from __future__ import annotations

import logging
import os
import shutil
import stat
import threading
from pathlib import Path

from alephbuild.core.failures import PackagingFailure, RunCancelled
from alephbuild.core.runner import CommandCancelledError, CommandRunner, SubprocessRunner
from alephbuild.models.artifacts import ArtifactKind

logger = logging.getLogger(__name__)

IMAGE_TAG = "aleph-node:latest"
IMAGE_ARCHIVE = "aleph-node.tar"
DOCKERFILE = Path("docker") / "Dockerfile"
INSTALL_LOCATION = Path("target") / "release" / "aleph-node"


class PackagingStage:
    """Builds and saves the node container image.

    Parameters
    ----------
    runner:
        Command runner used to invoke the container engine.
    docker_bin:
        docker executable name or path.
    """

    def __init__(
        self, runner: CommandRunner | None = None, *, docker_bin: str = "docker"
    ) -> None:
        self._runner = runner or SubprocessRunner()
        self._docker = docker_bin

    def commands(self, archive: Path) -> list[list[str]]:
        return [
            [self._docker, "build", "--tag", IMAGE_TAG, "-f", f"./{DOCKERFILE.as_posix()}", "."],
            [self._docker, "save", "-o", str(archive), IMAGE_TAG],
        ]

    @staticmethod
    def _make_executable(path: Path) -> None:
        mode = path.stat().st_mode
        path.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)

    def stage_binary(self, binary_path: Path, workdir: Path) -> Path:
        """Place an executable copy of the binary at the install location."""
        binary_path = Path(binary_path)
        if not binary_path.is_file():
            raise PackagingFailure(
                f"Binary to package is missing: {binary_path}",
                artifact_kind=ArtifactKind.IMAGE,
            )
        self._make_executable(binary_path)
        if not os.access(binary_path, os.X_OK):
            raise PackagingFailure(
                f"Binary is not executable: {binary_path}",
                artifact_kind=ArtifactKind.IMAGE,
            )

        installed = Path(workdir) / INSTALL_LOCATION
        if installed.resolve() != binary_path.resolve():
            installed.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(binary_path, installed)
        return installed

    def package(
        self,
        binary_path: Path,
        workdir: Path,
        *,
        cancel: threading.Event | None = None,
    ) -> Path:
        """Build the image around *binary_path* and return the archive path.

        Raises ``PackagingFailure`` if the binary is missing or any image
        step fails.
        """
        workdir = Path(workdir)
        self.stage_binary(binary_path, workdir)
        archive = workdir / IMAGE_ARCHIVE

        for args in self.commands(archive):
            try:
                result = self._runner.run(args, cwd=workdir, cancel=cancel)
            except CommandCancelledError as exc:
                raise RunCancelled(
                    str(exc), stage="packaging", artifact_kind=ArtifactKind.IMAGE
                ) from exc
            except OSError as exc:
                raise PackagingFailure(
                    f"Cannot launch {args[0]}: {exc}",
                    artifact_kind=ArtifactKind.IMAGE,
                ) from exc
            if not result.ok:
                raise PackagingFailure(
                    f"Image step failed: {result.describe()}\n{result.output}",
                    artifact_kind=ArtifactKind.IMAGE,
                )

        if not archive.is_file():
            raise PackagingFailure(
                f"Image archive was not written: {archive}",
                artifact_kind=ArtifactKind.IMAGE,
            )
        logger.info("Packaged %s into %s", IMAGE_TAG, archive)
        return archive
