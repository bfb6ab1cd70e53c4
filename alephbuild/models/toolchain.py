"""Toolchain request model."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

# Cross-compilation target required by runtime builds.
WASM_TARGET = "wasm32-unknown-unknown"


class ToolchainSpec(BaseModel):
    """What a run needs from the compiler toolchain.

    ``channel`` of None means the channel pinned by the checkout itself.
    The toolchain is consumed only for availability; its internals are opaque.
    """

    model_config = ConfigDict(frozen=True)

    channel: str | None = None
    targets: tuple[str, ...] = ()
    components: tuple[str, ...] = ()
