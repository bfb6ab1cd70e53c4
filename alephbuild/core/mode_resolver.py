"""Build mode resolution — the single place a mode becomes compiler settings.

Stages never branch on the mode themselves; they read the ``BuildProfile``
produced here.
"""

from __future__ import annotations

from alephbuild.core.failures import ConfigurationFailure
from alephbuild.models.artifacts import ArtifactKind
from alephbuild.models.modes import BuildMode, BuildProfile, OptimizationProfile

_PROFILES: dict[BuildMode, BuildProfile] = {
    BuildMode.PRODUCTION: BuildProfile(
        mode=BuildMode.PRODUCTION,
        optimization_profile=OptimizationProfile.PRODUCTION,
        feature_flags=frozenset(),
        artifact_suffix="production",
    ),
    BuildMode.TEST: BuildProfile(
        mode=BuildMode.TEST,
        optimization_profile=OptimizationProfile.RELEASE,
        feature_flags=frozenset({"only_legacy"}),
        artifact_suffix="test",
    ),
}


def resolve(mode: BuildMode) -> BuildProfile:
    """Return the build profile for *mode*.

    Raises ``ConfigurationFailure`` for anything that is not a ``BuildMode``.
    """
    if not isinstance(mode, BuildMode):
        raise ConfigurationFailure(f"unknown build mode: {mode!r}")
    return _PROFILES[mode]


def planned_kinds(
    mode: BuildMode, *, package_test_image: bool = False
) -> frozenset[ArtifactKind]:
    """Artifact kinds a run in *mode* produces.

    The runtime blob is only built in production. Test binaries are only
    packaged into an image when *package_test_image* is set.
    """
    if not isinstance(mode, BuildMode):
        raise ConfigurationFailure(f"unknown build mode: {mode!r}")
    if mode == BuildMode.PRODUCTION:
        return frozenset(
            {ArtifactKind.BINARY, ArtifactKind.RUNTIME_BLOB, ArtifactKind.IMAGE}
        )
    if package_test_image:
        return frozenset({ArtifactKind.BINARY, ArtifactKind.IMAGE})
    return frozenset({ArtifactKind.BINARY})
