"""
Plain-text summaries of a Profile, a Diff, and a Verdict.

Rendering is read-only.  Gas figures are scaled to ink when requested;
hostio counts are never scaled.
"""
from __future__ import annotations

from typing import List, Optional

from stylus_trace.core.diff import AggregateDelta, Diff, DiffEntry, MetricFamily
from stylus_trace.core.profile import Profile, to_display_units
from stylus_trace.policy.verdict import Verdict, Violation

RULE = "─" * 78


def format_percent(percent: Optional[float], is_new: bool = False) -> str:
    if is_new:
        return "new"
    if percent is None:
        return "n/a"
    return f"{percent:+.2f}%"


def _unit(ink: bool) -> str:
    return "ink" if ink else "gas"


def _fmt(value: int) -> str:
    return f"{value:,}"


def _truncate(text: str, width: int) -> str:
    if len(text) <= width:
        return text
    return "…" + text[-(width - 1):]


# ── Profile ──────────────────────────────────────────────────────────────────

def render_profile_summary(
    profile: Profile,
    *,
    ink: bool = False,
    top_paths: int = 20,
) -> str:
    unit = _unit(ink)
    total = to_display_units(profile.total_gas, ink)
    lines: List[str] = [
        f"Transaction: {profile.meta.transaction_hash}",
        f"Captured:    {profile.meta.captured_at.isoformat()}",
        f"Total {unit}:   {_fmt(total)}",
        f"HostIO calls: {_fmt(profile.total_hostio_calls)}",
        RULE,
    ]

    if profile.hostio_totals:
        lines.append("HostIO breakdown:")
        for name, count in sorted(
            profile.hostio_totals.items(), key=lambda kv: (-kv[1], kv[0]),
        ):
            lines.append(f"  {name:<40} {count:>10,}")
        lines.append(RULE)

    hot = profile.hot_paths(top_paths)
    if hot:
        lines.append(f"Top {len(hot)} hot paths (self {unit}):")
        for frame in hot:
            share = frame.gas / profile.total_gas * 100.0 if profile.total_gas else 0.0
            lines.append(
                f"  {_truncate(frame.call_site.identity, 50):<50} "
                f"{_fmt(to_display_units(frame.gas, ink)):>16} {share:6.2f}%"
            )
    return "\n".join(lines)


# ── Diff ─────────────────────────────────────────────────────────────────────

def _aggregate_line(label: str, agg: AggregateDelta, scale: bool, ink: bool) -> str:
    b = to_display_units(agg.baseline, ink) if scale else agg.baseline
    c = to_display_units(agg.current, ink) if scale else agg.current
    return (
        f"{label:<14} {_fmt(b):>16} → {_fmt(c):>16}  "
        f"({format_percent(agg.percent, agg.is_new)})"
    )


def _entry_row(entry: DiffEntry, ink: bool) -> str:
    scale = entry.family == MetricFamily.GAS
    b = to_display_units(entry.baseline, ink) if scale else entry.baseline
    c = to_display_units(entry.current, ink) if scale else entry.current
    metric = _unit(ink) if scale else entry.metric
    return (
        f"{_truncate(entry.call_site, 40):<40} {_truncate(metric, 22):<22} "
        f"{_fmt(b):>14} {_fmt(c):>14} {format_percent(entry.percent, entry.is_new):>10}"
    )


def render_diff_summary(
    diff: Diff,
    *,
    ink: bool = False,
    limit: Optional[int] = None,
) -> str:
    """
    Render aggregate deltas and the per-call-site table.

    Only entries that changed are listed; *limit* caps the row count.
    """
    unit = _unit(ink)
    lines: List[str] = [
        f"Baseline: {diff.baseline_meta.transaction_hash}",
        f"Target:   {diff.current_meta.transaction_hash}",
        RULE,
        _aggregate_line(f"Total {unit}", diff.gas, True, ink),
        _aggregate_line("HostIO calls", diff.hostio, False, ink),
    ]
    changed_hostio = [a for a in diff.hostio_by_name if a.delta != 0]
    for agg in changed_hostio:
        lines.append("  " + _aggregate_line(agg.metric, agg, False, ink))

    rows = diff.changed_entries
    shown = rows if limit is None else rows[:limit]
    lines.append(RULE)
    if not shown:
        lines.append("No per-call-site changes.")
        return "\n".join(lines)

    lines.append(
        f"{'Call site':<40} {'Metric':<22} {'Baseline':>14} {'Current':>14} {'Δ%':>10}"
    )
    for entry in shown:
        lines.append(_entry_row(entry, ink))
    if len(shown) < len(rows):
        lines.append(f"… {len(rows) - len(shown)} more changed entries")
    return "\n".join(lines)


# ── Verdict ──────────────────────────────────────────────────────────────────

def _violation_line(v: Violation) -> str:
    where = f" at {v.call_site} [{v.metric}]" if v.call_site else ""
    return (
        f"  ✗ {v.rule.key} ({v.rule.scope.value}){where}: "
        f"actual {format_percent(v.actual_percent, v.is_new)} "
        f"> limit {v.limit:.2f}%"
    )


def render_verdict(verdict: Verdict) -> str:
    if not verdict.gated:
        return "Gate: PASS (not evaluated: no baseline or no thresholds)"
    if verdict.passed:
        return f"Gate: PASS ({verdict.rules_evaluated} rule(s) evaluated)"
    lines = [
        f"Gate: FAIL ({len(verdict.violations)} of "
        f"{verdict.rules_evaluated} rule(s) violated)"
    ]
    lines.extend(_violation_line(v) for v in verdict.violations)
    return "\n".join(lines)
