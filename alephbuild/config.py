"""Operational settings — env-driven, never part of a run's semantics.

Centralized config using pydantic-settings. Reads from a .env file and
ALEPHBUILD_* environment variables. Nothing here selects the build mode:
that comes only from the explicit ``BuildRequest`` passed to a run.
"""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class BuildSettings(BaseSettings):
    """Pipeline settings with environment variable overrides.

    Examples
    --------
    Override via environment::

        export ALEPHBUILD_LOG_LEVEL=DEBUG
        export ALEPHBUILD_COMPILER_WRAPPER=sccache
        export ALEPHBUILD_ARTIFACT_STORE_PATH=/data/artifacts

    Or via .env file::

        ALEPHBUILD_MAX_PARALLEL_BUILDS=4
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="ALEPHBUILD_",
        env_file_encoding="utf-8",
    )

    log_level: str = "INFO"
    product_name: str = "aleph-node"

    # Storage paths
    artifact_store_path: Path = Path(".alephbuild/artifacts")
    cache_path: Path = Path(".alephbuild/cache")
    runs_path: Path = Path(".alephbuild/runs")

    # Publication
    retention_days: int = 7

    # Building
    max_parallel_builds: int = 2
    enable_cache: bool = True
    package_test_image: bool = False
    command_timeout_seconds: float | None = None

    # External tools
    cargo_bin: str = "cargo"
    rustup_bin: str = "rustup"
    docker_bin: str = "docker"
    compiler_wrapper: str = ""  # e.g. "sccache", exported as RUSTC_WRAPPER
    toolchain_channel: str | None = None  # None: use the checkout's pinned toolchain


# Module-level singleton: import as `from alephbuild.config import settings`
settings = BuildSettings()
