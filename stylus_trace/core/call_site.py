"""
Call-site identity.

A call site is named by the sequence of frame names from the root frame
down to the frame itself.  Nothing positional (trace step, ink counter,
event index) participates, so two independent captures of the same
contract logic produce equal identities.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

SEPARATOR = ";"


@dataclass(frozen=True, order=True)
class CallSite:
    """Hashable, ordered path of frame names."""

    path: Tuple[str, ...]

    def __post_init__(self) -> None:
        if not self.path:
            raise ValueError("call site path must not be empty")

    @property
    def name(self) -> str:
        return self.path[-1]

    @property
    def identity(self) -> str:
        """Folded-stack form, e.g. ``entrypoint;storage_load_bytes32``."""
        return SEPARATOR.join(self.path)

    def child(self, name: str) -> CallSite:
        return CallSite(self.path + (name,))

    @classmethod
    def root(cls, name: str) -> CallSite:
        return cls((name,))

    def __str__(self) -> str:
        return self.identity
