"""
Gate decision — apply threshold rules to a Diff.

Every rule is evaluated independently and all violations are reported
together.  A run without a baseline (``diff is None``) or without rules
is not gated and passes.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence, Tuple

from stylus_trace.core.diff import AggregateDelta, Diff, DiffEntry, MetricFamily
from stylus_trace.policy.thresholds import RuleScope, ThresholdRule

logger = logging.getLogger(__name__)


class GateStatus(str, Enum):
    PASS = "PASS"
    FAIL = "FAIL"


@dataclass(frozen=True)
class Violation:
    """One rule whose limit was exceeded."""
    rule: ThresholdRule
    actual_percent: Optional[float]      # None: new (unbounded) cost
    call_site: Optional[str] = None      # per-call-site rules only
    metric: Optional[str] = None

    @property
    def limit(self) -> float:
        return self.rule.limit

    @property
    def is_new(self) -> bool:
        return self.actual_percent is None


@dataclass(frozen=True)
class Verdict:
    status: GateStatus
    violations: Tuple[Violation, ...] = ()
    gated: bool = True
    rules_evaluated: int = 0

    @property
    def passed(self) -> bool:
        return self.status == GateStatus.PASS


# ── Public API ───────────────────────────────────────────────────────────────

def evaluate(diff: Optional[Diff], rules: Sequence[ThresholdRule]) -> Verdict:
    """
    Decide pass/fail for *diff* under *rules*.

    Parameters
    ----------
    diff : Diff or None
        ``None`` when no baseline was available (capture-only run).
    rules : Sequence[ThresholdRule]
        Resolved rules; an empty sequence means diff-only.

    Returns
    -------
    Verdict
    """
    if diff is None:
        logger.info("no baseline: gating skipped")
        return Verdict(status=GateStatus.PASS, gated=False)
    if not rules:
        logger.info("no threshold rules: diff only")
        return Verdict(status=GateStatus.PASS, gated=False)

    violations: List[Violation] = []
    for rule in rules:
        if rule.scope == RuleScope.AGGREGATE:
            found = _check_aggregate(rule, _aggregate_for(diff, rule.metric_family))
        else:
            found = _check_entries(rule, diff.entries_for(rule.metric_family))
        if found is not None:
            logger.debug("rule %s violated: %s", rule.key, found)
            violations.append(found)

    status = GateStatus.FAIL if violations else GateStatus.PASS
    return Verdict(
        status=status,
        violations=tuple(violations),
        gated=True,
        rules_evaluated=len(rules),
    )


# ── Helpers ──────────────────────────────────────────────────────────────────

def exceeds(percent: Optional[float], is_new: bool, limit: float) -> bool:
    """True when an observed change breaks *limit*."""
    if is_new:
        return True
    return percent is not None and percent > limit


def _aggregate_for(diff: Diff, family: MetricFamily) -> AggregateDelta:
    return diff.gas if family == MetricFamily.GAS else diff.hostio


def _check_aggregate(
    rule: ThresholdRule,
    agg: AggregateDelta,
) -> Optional[Violation]:
    if not exceeds(agg.percent, agg.is_new, rule.limit):
        return None
    return Violation(rule=rule, actual_percent=agg.percent, metric=agg.metric)


def _check_entries(
    rule: ThresholdRule,
    entries: List[DiffEntry],
) -> Optional[Violation]:
    # entries are already ordered worst-first
    for entry in entries:
        if exceeds(entry.percent, entry.is_new, rule.limit):
            return Violation(
                rule=rule,
                actual_percent=entry.percent,
                call_site=entry.call_site,
                metric=entry.metric,
            )
    return None
