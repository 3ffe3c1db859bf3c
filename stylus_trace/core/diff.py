"""
Diff engine — structured delta between a baseline and a current Profile.

Frames are matched across the two trees by call-site identity.  Each
matched, added, or removed call site yields one gas entry plus one entry
per hostio name seen on either side.  Aggregate deltas are taken from
the Profile totals directly, never by summing entries, so a change in
tree shape (e.g. different inlining) cannot double-count.

Percentages follow ``(current - baseline) * 100 / baseline``.  A zero
baseline with a non-zero current is *new* cost: ``percent`` is ``None``
and ``is_new`` is set.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple

from stylus_trace.core.profile import Frame, Profile, ProfileMeta

logger = logging.getLogger(__name__)


class MetricFamily(str, Enum):
    GAS = "gas"
    HOSTIO = "hostio"


class EntryStatus(str, Enum):
    ADDED = "added"
    REMOVED = "removed"
    CHANGED = "changed"
    UNCHANGED = "unchanged"


def percent_change(baseline: int, current: int) -> Optional[float]:
    """Percentage change, or ``None`` for new (unbounded) cost."""
    if baseline > 0:
        return (current - baseline) * 100.0 / baseline
    if current > 0:
        return None
    return 0.0


@dataclass(frozen=True)
class AggregateDelta:
    """Delta of one Profile-level total."""
    metric: str
    baseline: int
    current: int

    @property
    def delta(self) -> int:
        return self.current - self.baseline

    @property
    def percent(self) -> Optional[float]:
        return percent_change(self.baseline, self.current)

    @property
    def is_new(self) -> bool:
        return self.baseline == 0 and self.current > 0


@dataclass(frozen=True)
class DiffEntry:
    """Delta of one metric at one call site."""
    call_site: str
    family: MetricFamily
    metric: str          # "gas" or a hostio name
    baseline: int
    current: int
    status: EntryStatus

    @property
    def delta(self) -> int:
        return self.current - self.baseline

    @property
    def percent(self) -> Optional[float]:
        return percent_change(self.baseline, self.current)

    @property
    def is_new(self) -> bool:
        return self.baseline == 0 and self.current > 0

    @property
    def magnitude(self) -> float:
        """Absolute percentage, ``inf`` for new cost.  Sorting only."""
        if self.is_new:
            return math.inf
        return abs(self.percent or 0.0)


@dataclass(frozen=True)
class Diff:
    """Comparison of *current* against *baseline*."""
    baseline_meta: ProfileMeta
    current_meta: ProfileMeta
    gas: AggregateDelta
    hostio: AggregateDelta
    hostio_by_name: Tuple[AggregateDelta, ...] = ()
    entries: Tuple[DiffEntry, ...] = ()

    def entries_for(self, family: MetricFamily) -> List[DiffEntry]:
        return [e for e in self.entries if e.family == family]

    @property
    def changed_entries(self) -> List[DiffEntry]:
        return [e for e in self.entries if e.delta != 0]


# ── Public API ───────────────────────────────────────────────────────────────

def compute_diff(baseline: Profile, current: Profile) -> Diff:
    """
    Compare two profiles.

    Parameters
    ----------
    baseline : Profile
        Reference capture.
    current : Profile
        Capture under test.

    Returns
    -------
    Diff
        Aggregate deltas and per-call-site entries ordered by descending
        percentage magnitude, then descending absolute delta, then
        call-site identity and metric.
    """
    base_index = _index(baseline.root)
    cur_index = _index(current.root)

    entries: List[DiffEntry] = []
    for identity in sorted(set(base_index) | set(cur_index)):
        b = base_index.get(identity)
        c = cur_index.get(identity)
        presence = _presence(b, c)

        entries.append(_entry(
            identity, MetricFamily.GAS, "gas",
            b.gas if b else 0, c.gas if c else 0,
            presence,
        ))

        b_hostio = b.hostio if b else {}
        c_hostio = c.hostio if c else {}
        for hname in sorted(set(b_hostio) | set(c_hostio)):
            entries.append(_entry(
                identity, MetricFamily.HOSTIO, hname,
                b_hostio.get(hname, 0), c_hostio.get(hname, 0),
                presence,
            ))

    entries.sort(key=_sort_key)

    hostio_names = sorted(set(baseline.hostio_totals) | set(current.hostio_totals))
    diff = Diff(
        baseline_meta=baseline.meta,
        current_meta=current.meta,
        gas=AggregateDelta("gas", baseline.total_gas, current.total_gas),
        hostio=AggregateDelta(
            "hostio", baseline.total_hostio_calls, current.total_hostio_calls,
        ),
        hostio_by_name=tuple(
            AggregateDelta(
                name,
                baseline.hostio_totals.get(name, 0),
                current.hostio_totals.get(name, 0),
            )
            for name in hostio_names
        ),
        entries=tuple(entries),
    )
    logger.debug(
        "diff %s -> %s: %d entries, gas %+d",
        baseline.meta.transaction_hash,
        current.meta.transaction_hash,
        len(entries),
        diff.gas.delta,
    )
    return diff


# ── Helpers ──────────────────────────────────────────────────────────────────

def _index(root: Frame) -> Dict[str, Frame]:
    return {f.call_site.identity: f for f in root.walk()}


def _presence(b: Optional[Frame], c: Optional[Frame]) -> Optional[EntryStatus]:
    if b is None:
        return EntryStatus.ADDED
    if c is None:
        return EntryStatus.REMOVED
    return None


def _entry(
    identity: str,
    family: MetricFamily,
    metric: str,
    baseline: int,
    current: int,
    presence: Optional[EntryStatus],
) -> DiffEntry:
    if presence is not None:
        status = presence
    elif baseline == current:
        status = EntryStatus.UNCHANGED
    else:
        status = EntryStatus.CHANGED
    return DiffEntry(
        call_site=identity,
        family=family,
        metric=metric,
        baseline=baseline,
        current=current,
        status=status,
    )


def _sort_key(e: DiffEntry) -> Tuple[float, int, str, str, str]:
    return (-e.magnitude, -abs(e.delta), e.call_site, e.family.value, e.metric)
