"""
Threshold configuration — regression limits loaded from TOML.

File layout::

    [gas]
    max_increase_percent = 5.0

    [hostio]
    max_total_calls_increase_percent = 10.0
    max_call_site_increase_percent = 50.0

    [hot_paths]
    max_increase_percent = 20.0

Each known (family, field) pair has a fixed scope: ``aggregate`` rules
compare Profile-level totals, ``per_call_site`` rules compare individual
diff entries and report the worst one.  Unknown families or fields are
rejected so a typo can never silently disable gating.
"""
from __future__ import annotations

import logging
import math
import tomllib
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from stylus_trace.core.diff import MetricFamily
from stylus_trace.errors import ConfigError

logger = logging.getLogger(__name__)


class RuleScope(str, Enum):
    AGGREGATE = "aggregate"
    PER_CALL_SITE = "per_call_site"


class RuleSource(str, Enum):
    FILE = "file"
    OVERRIDE = "override"


@dataclass(frozen=True)
class RuleSpec:
    """What a known config field measures."""
    family: MetricFamily
    scope: RuleScope
    description: str


# (family tag, field) → spec.  New families follow max_<metric>_percent.
KNOWN_RULES: Dict[Tuple[str, str], RuleSpec] = {
    ("gas", "max_increase_percent"): RuleSpec(
        MetricFamily.GAS, RuleScope.AGGREGATE, "total gas",
    ),
    ("hostio", "max_total_calls_increase_percent"): RuleSpec(
        MetricFamily.HOSTIO, RuleScope.AGGREGATE, "total hostio calls",
    ),
    ("hostio", "max_call_site_increase_percent"): RuleSpec(
        MetricFamily.HOSTIO, RuleScope.PER_CALL_SITE, "hostio calls per call site",
    ),
    ("hot_paths", "max_increase_percent"): RuleSpec(
        MetricFamily.GAS, RuleScope.PER_CALL_SITE, "gas per call site",
    ),
}

KNOWN_FAMILIES = frozenset(family for family, _ in KNOWN_RULES)


@dataclass(frozen=True)
class ThresholdRule:
    """One regression limit."""
    family: str
    field: str
    limit: float
    source: RuleSource = RuleSource.FILE

    def __post_init__(self) -> None:
        if (self.family, self.field) not in KNOWN_RULES:
            raise ConfigError(
                "unknown threshold", field=f"{self.family}.{self.field}",
            )

    @property
    def key(self) -> str:
        return f"{self.family}.{self.field}"

    @property
    def spec(self) -> RuleSpec:
        return KNOWN_RULES[(self.family, self.field)]

    @property
    def scope(self) -> RuleScope:
        return self.spec.scope

    @property
    def description(self) -> str:
        return self.spec.description

    @property
    def metric_family(self) -> MetricFamily:
        return self.spec.family


# ── Parsing ──────────────────────────────────────────────────────────────────

def parse_thresholds(
    data: Mapping[str, Any],
    path: Optional[Path] = None,
) -> List[ThresholdRule]:
    """
    Turn a decoded config document into rules.

    Families not present impose no limit.

    Raises
    ------
    ConfigError
        Unknown family or field, or a non-numeric / negative /
        non-finite limit.  Duplicated keys are rejected by the TOML
        parser in ``load_thresholds``.
    """
    rules: List[ThresholdRule] = []

    for family, section in data.items():
        if family not in KNOWN_FAMILIES:
            raise ConfigError(
                f"unknown metric family (expected one of "
                f"{', '.join(sorted(KNOWN_FAMILIES))})",
                path=path, field=str(family),
            )
        if not isinstance(section, Mapping):
            raise ConfigError("expected a table of limits", path=path, field=family)

        for fname, value in section.items():
            key = f"{family}.{fname}"
            if (family, fname) not in KNOWN_RULES:
                raise ConfigError("unknown threshold field", path=path, field=key)
            rules.append(ThresholdRule(
                family=family,
                field=fname,
                limit=_limit(value, key, path),
            ))

    return rules


def load_thresholds(path: Path) -> List[ThresholdRule]:
    """
    Load rules from a TOML file.

    A missing file is not an error: it yields no rules.
    """
    if not path.exists():
        logger.info("no threshold config at %s; gating on overrides only", path)
        return []
    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except (tomllib.TOMLDecodeError, UnicodeDecodeError) as exc:
        raise ConfigError(f"invalid TOML: {exc}", path=path) from exc
    except OSError as exc:
        raise ConfigError(f"cannot read: {exc}", path=path) from exc

    rules = parse_thresholds(data, path=path)
    logger.info("loaded %d threshold rule(s) from %s", len(rules), path)
    return rules


# ── Override resolution ──────────────────────────────────────────────────────

def resolve_rules(
    file_rules: List[ThresholdRule],
    *,
    threshold_percent: Optional[float] = None,
    gas_threshold: Optional[float] = None,
    hostio_threshold: Optional[float] = None,
) -> List[ThresholdRule]:
    """
    Combine file rules with command-line overrides.

    * ``gas_threshold`` / ``hostio_threshold`` focus the run: only those
      aggregate rules are gated and file rules are ignored.
    * ``threshold_percent`` sets the gas aggregate, hostio aggregate and
      hot-path limits, replacing the file values for those fields.
    * With neither, the file rules are used as-is (possibly none, in
      which case the run is diff-only).
    """
    if gas_threshold is not None or hostio_threshold is not None:
        focused: List[ThresholdRule] = []
        if gas_threshold is not None:
            focused.append(_override("gas", "max_increase_percent", gas_threshold))
        if hostio_threshold is not None:
            focused.append(_override(
                "hostio", "max_total_calls_increase_percent", hostio_threshold,
            ))
        return focused

    if threshold_percent is None:
        return list(file_rules)

    overrides = [
        _override("gas", "max_increase_percent", threshold_percent),
        _override("hostio", "max_total_calls_increase_percent", threshold_percent),
        _override("hot_paths", "max_increase_percent", threshold_percent),
    ]
    replaced = {(r.family, r.field) for r in overrides}
    kept = [r for r in file_rules if (r.family, r.field) not in replaced]
    return overrides + kept


def _override(family: str, fname: str, value: float) -> ThresholdRule:
    key = f"{family}.{fname}"
    return ThresholdRule(
        family=family,
        field=fname,
        limit=_limit(value, key, None),
        source=RuleSource.OVERRIDE,
    )


def _limit(value: Any, key: str, path: Optional[Path]) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"limit must be a number, got {value!r}", path=path, field=key)
    limit = float(value)
    if not math.isfinite(limit):
        raise ConfigError("limit must be finite", path=path, field=key)
    if limit < 0:
        raise ConfigError(f"limit must be non-negative, got {limit}", path=path, field=key)
    return limit
