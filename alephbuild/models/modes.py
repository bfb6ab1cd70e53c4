"""Build mode, request and profile models.

``BuildMode`` is the sole axis of behavioural variation. A ``BuildRequest``
is immutable once a run starts, and its ``BuildProfile`` is computed once
by the mode resolver and then passed through every stage.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from alephbuild.core.failures import ConfigurationFailure


class BuildMode(str, Enum):
    """Fast-iteration test build or optimized production build."""

    TEST = "test"
    PRODUCTION = "production"

    @classmethod
    def from_flag(cls, production: bool) -> BuildMode:
        """Map the boolean ``production`` invocation input to a mode."""
        if not isinstance(production, bool):
            raise ConfigurationFailure(
                f"production must be a boolean, got {production!r}"
            )
        return cls.PRODUCTION if production else cls.TEST


class OptimizationProfile(str, Enum):
    """Compiler optimization profiles selectable by a build."""

    RELEASE = "release"
    PRODUCTION = "production"


class BuildRequest(BaseModel):
    """The exact source snapshot and mode a run builds."""

    model_config = ConfigDict(frozen=True)

    ref: str = Field(min_length=1)
    mode: BuildMode

    @classmethod
    def create(cls, ref: str | None, production: bool | None) -> BuildRequest:
        """Validate raw invocation inputs into a request.

        Raises ``ConfigurationFailure`` for a missing or blank ``ref`` or a
        missing ``production`` flag.
        """
        if ref is None or not str(ref).strip():
            raise ConfigurationFailure("ref is required and must be non-empty")
        if production is None:
            raise ConfigurationFailure("production flag is required")
        mode = BuildMode.from_flag(production)
        try:
            return cls(ref=str(ref).strip(), mode=mode)
        except ValidationError as exc:
            raise ConfigurationFailure(f"invalid build request: {exc}") from exc


class BuildProfile(BaseModel):
    """Concrete compiler settings and naming suffix derived from a mode."""

    model_config = ConfigDict(frozen=True)

    mode: BuildMode
    optimization_profile: OptimizationProfile
    feature_flags: frozenset[str] = frozenset()
    artifact_suffix: str
