"""
Writer — serialize comparison outputs and auxiliary artifacts.

Filesystem layout (bare file names given on the command line)::

    artifacts/capture/profile.json
    artifacts/capture/flamegraph.svg
    artifacts/capture/flamegraph.folded
    artifacts/diff/diff_report.json
    artifacts/diff/diff.svg
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Iterable, Sequence, Union

from stylus_trace.core.diff import AggregateDelta, Diff, DiffEntry
from stylus_trace.errors import CodecError
from stylus_trace.io.schema import (
    AggregateDeltaModel,
    DiffEntryModel,
    DiffReport,
    RuleModel,
    VerdictModel,
    ViolationModel,
)
from stylus_trace.policy.thresholds import ThresholdRule
from stylus_trace.policy.verdict import Verdict


def resolve_artifact_path(
    path: Union[str, Path],
    category: str,
    root: Path = Path("artifacts"),
) -> Path:
    """
    Place a bare file name under ``<root>/<category>/``; keep other paths.

    Pass the raw command-line string: ``./profile.json`` names the current
    directory explicitly and is kept, although ``Path`` drops the ``./``.
    """
    raw = str(path)
    resolved = Path(raw)
    explicit_dir = raw.startswith(("./", ".\\"))
    if resolved.parent == Path(".") and not explicit_dir:
        return root / category / resolved
    return resolved


# ── Diff report ──────────────────────────────────────────────────────────────

def _aggregate_model(agg: AggregateDelta) -> AggregateDeltaModel:
    return AggregateDeltaModel(
        metric=agg.metric,
        baseline=agg.baseline,
        current=agg.current,
        delta=agg.delta,
        percent=agg.percent,
        is_new=agg.is_new,
    )


def _entry_model(entry: DiffEntry) -> DiffEntryModel:
    return DiffEntryModel(
        call_site=entry.call_site,
        family=entry.family.value,
        metric=entry.metric,
        baseline=entry.baseline,
        current=entry.current,
        delta=entry.delta,
        percent=entry.percent,
        is_new=entry.is_new,
        status=entry.status.value,
    )


def _rule_model(rule: ThresholdRule) -> RuleModel:
    return RuleModel(
        key=rule.key,
        scope=rule.scope.value,
        description=rule.description,
        limit=rule.limit,
        source=rule.source.value,
    )


def build_diff_report(
    diff: Diff,
    verdict: Verdict,
    rules: Sequence[ThresholdRule],
) -> DiffReport:
    return DiffReport(
        baseline_transaction=diff.baseline_meta.transaction_hash,
        target_transaction=diff.current_meta.transaction_hash,
        gas=_aggregate_model(diff.gas),
        hostio=_aggregate_model(diff.hostio),
        hostio_by_name=[_aggregate_model(a) for a in diff.hostio_by_name],
        entries=[_entry_model(e) for e in diff.entries],
        verdict=VerdictModel(
            status=verdict.status.value,
            gated=verdict.gated,
            rules=[_rule_model(r) for r in rules],
            violations=[
                ViolationModel(
                    rule=_rule_model(v.rule),
                    actual_percent=v.actual_percent,
                    is_new=v.is_new,
                    call_site=v.call_site,
                    metric=v.metric,
                )
                for v in verdict.violations
            ],
        ),
    )


def write_diff_report(report: DiffReport, path: Path) -> Path:
    text = json.dumps(
        report.model_dump(mode="json"),
        indent=2,
        sort_keys=True,
    )
    return write_text(text + "\n", path)


# ── Text artifacts ───────────────────────────────────────────────────────────

def write_text(text: str, path: Path) -> Path:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
    except OSError as exc:
        raise CodecError(f"cannot write: {exc}", path=path) from exc
    return path


def write_folded(lines: Iterable[str], path: Path) -> Path:
    return write_text("".join(f"{line}\n" for line in lines), path)
