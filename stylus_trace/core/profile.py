"""
Profile model — one captured transaction as a tree of owned Frames.

A raw trace tree (plain nested mappings handed over by the capture
collaborator) is validated and frozen into ``Frame`` objects.  Aggregate
totals are computed bottom-up from Frame self-costs and are therefore
always equal to the sum over the tree.

Raw node shape::

    {
        "name": "user_entrypoint",
        "gas": 1200,                          # self gas, optional
        "hostio": {"storage_load_bytes32": 2},  # self hostio counts, optional
        "children": [ ...nodes... ],          # optional
    }
"""
from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Mapping, Optional, Set, Tuple

from stylus_trace.core.call_site import SEPARATOR, CallSite
from stylus_trace.errors import MalformedTrace

logger = logging.getLogger(__name__)

# Stylus meters execution in ink: 1 gas == 10,000 ink.
INK_PER_GAS = 10_000


def to_display_units(gas: int, ink: bool) -> int:
    """Scale a gas figure for display."""
    return gas * INK_PER_GAS if ink else gas


# ── Frame tree ───────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Frame:
    """One node of the call tree.  Children are owned exclusively."""
    call_site: CallSite
    gas: int = 0
    hostio: Dict[str, int] = field(default_factory=dict)
    children: Tuple[Frame, ...] = ()

    @property
    def name(self) -> str:
        return self.call_site.name

    def cumulative_gas(self) -> int:
        return self.gas + sum(c.cumulative_gas() for c in self.children)

    def cumulative_hostio(self) -> Dict[str, int]:
        totals: Counter = Counter(self.hostio)
        for child in self.children:
            totals.update(child.cumulative_hostio())
        return dict(totals)

    def walk(self) -> Iterator[Frame]:
        """Pre-order traversal, children in stored order."""
        yield self
        for child in self.children:
            yield from child.walk()


@dataclass(frozen=True)
class FrameStat:
    """A frame together with its self + descendant cost."""
    call_site: CallSite
    frame: Frame
    depth: int
    cumulative_gas: int
    cumulative_hostio: Dict[str, int]


@dataclass(frozen=True)
class ProfileMeta:
    """Capture metadata."""
    transaction_hash: str
    captured_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc),
    )
    ink: bool = False
    tracer: Optional[str] = None


# ── Profile ──────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Profile:
    """
    Top-level capture artifact.

    Prefer ``Profile.from_root`` or ``build_profile``; direct
    construction checks that the given totals match the tree.
    """
    root: Frame
    total_gas: int
    hostio_totals: Dict[str, int]
    meta: ProfileMeta

    def __post_init__(self) -> None:
        gas, hostio = _sum_tree(self.root)
        if gas != self.total_gas:
            raise MalformedTrace(
                f"total_gas={self.total_gas} != sum of frame gas ({gas})"
            )
        declared = {k: v for k, v in self.hostio_totals.items() if v}
        if hostio != declared:
            raise MalformedTrace(
                f"hostio_totals {declared} != sum of frame hostio {hostio}"
            )

    @classmethod
    def from_root(cls, root: Frame, meta: ProfileMeta) -> Profile:
        gas, hostio = _sum_tree(root)
        return cls(root=root, total_gas=gas, hostio_totals=hostio, meta=meta)

    @property
    def total_hostio_calls(self) -> int:
        return sum(self.hostio_totals.values())

    def frames(self) -> Iterator[FrameStat]:
        """Iterate every frame with its cumulative cost."""
        yield from _stats(self.root, 0)

    def call_sites(self) -> Set[str]:
        return {f.call_site.identity for f in self.root.walk()}

    def hot_paths(self, n: int = 20) -> List[Frame]:
        """Top *n* frames by self gas (ties broken by identity)."""
        frames = [f for f in self.root.walk() if f.gas > 0]
        frames.sort(key=lambda f: (-f.gas, f.call_site.identity))
        return frames[:n]


def _sum_tree(root: Frame) -> Tuple[int, Dict[str, int]]:
    gas = 0
    hostio: Counter = Counter()
    for frame in root.walk():
        gas += frame.gas
        hostio.update(frame.hostio)
    return gas, {k: v for k, v in sorted(hostio.items()) if v}


def _stats(frame: Frame, depth: int) -> Iterator[FrameStat]:
    """Post-order accumulation, pre-order emission."""
    child_stats: List[List[FrameStat]] = [
        list(_stats(c, depth + 1)) for c in frame.children
    ]
    cum_gas = frame.gas
    cum_hostio: Counter = Counter(frame.hostio)
    for stats in child_stats:
        head = stats[0]
        cum_gas += head.cumulative_gas
        cum_hostio.update(head.cumulative_hostio)

    yield FrameStat(
        call_site=frame.call_site,
        frame=frame,
        depth=depth,
        cumulative_gas=cum_gas,
        cumulative_hostio=dict(cum_hostio),
    )
    for stats in child_stats:
        yield from stats


# ── Construction from a raw trace tree ───────────────────────────────────────

def build_profile(raw_tree: Mapping[str, Any], meta: ProfileMeta) -> Profile:
    """
    Validate *raw_tree* and freeze it into a Profile.

    Raises
    ------
    MalformedTrace
        On cycles or shared nodes, duplicate sibling names (which would
        give two frames the same call site), negative or non-integer
        costs, and missing or invalid names.
    """
    root = _build_frame(raw_tree, None, set())
    profile = Profile.from_root(root, meta)
    logger.debug(
        "built profile for %s: %d frames, gas=%d, hostio calls=%d",
        meta.transaction_hash,
        sum(1 for _ in root.walk()),
        profile.total_gas,
        profile.total_hostio_calls,
    )
    return profile


def _build_frame(
    node: Any,
    parent: Optional[CallSite],
    seen: Set[int],
) -> Frame:
    where = parent.identity if parent else "<root>"
    if not isinstance(node, Mapping):
        raise MalformedTrace(
            f"frame must be a mapping, got {type(node).__name__}", where,
        )
    if id(node) in seen:
        raise MalformedTrace("cycle or shared frame in trace tree", where)
    seen.add(id(node))

    name = node.get("name")
    if not isinstance(name, str) or not name:
        raise MalformedTrace("frame is missing a name", where)
    if SEPARATOR in name:
        raise MalformedTrace(
            f"frame name {name!r} contains reserved separator {SEPARATOR!r}",
            where,
        )

    call_site = parent.child(name) if parent else CallSite.root(name)
    path = call_site.identity

    gas = _cost(node.get("gas", 0), "gas", path)

    raw_hostio = node.get("hostio") or {}
    if not isinstance(raw_hostio, Mapping):
        raise MalformedTrace("hostio must be a mapping of name to count", path)
    hostio: Dict[str, int] = {}
    for hname, count in sorted(raw_hostio.items(), key=lambda kv: str(kv[0])):
        if not isinstance(hname, str) or not hname:
            raise MalformedTrace("hostio name must be a non-empty string", path)
        count = _cost(count, f"hostio.{hname}", path)
        if count:
            hostio[hname] = count

    raw_children = node.get("children") or []
    if isinstance(raw_children, (str, bytes, Mapping)) or not hasattr(
        raw_children, "__iter__"
    ):
        raise MalformedTrace("children must be a sequence of frames", path)

    children: List[Frame] = []
    sibling_names: Set[str] = set()
    for raw_child in raw_children:
        child = _build_frame(raw_child, call_site, seen)
        if child.name in sibling_names:
            raise MalformedTrace(
                f"duplicate call site {child.call_site.identity!r}", path,
            )
        sibling_names.add(child.name)
        children.append(child)

    return Frame(
        call_site=call_site,
        gas=gas,
        hostio=hostio,
        children=tuple(children),
    )


def _cost(value: Any, label: str, path: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise MalformedTrace(
            f"{label} must be an integer, got {value!r}", path,
        )
    if value < 0:
        raise MalformedTrace(f"{label} is negative ({value})", path)
    return value
