"""
Schema — Pydantic models for stylus_trace JSON artifacts.

Two output files:
  1. profile.json       — one captured Profile (also used as baseline).
  2. diff_report.json   — Diff + Verdict of a comparison.

Runtime contract fields (present in every output):
  package_name, tool_version, schema_version.
"""
from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt

from stylus_trace import PACKAGE_NAME, SCHEMA_VERSION, TOOL_VERSION


# ── Profile ──────────────────────────────────────────────────────────────────

class FrameModel(BaseModel):
    """One call-tree frame.  Costs are self costs, always in gas."""
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    gas: NonNegativeInt = 0
    hostio: Dict[str, NonNegativeInt] = Field(default_factory=dict)
    children: List[FrameModel] = Field(default_factory=list)


class HotPathModel(BaseModel):
    """Informational: a top frame by self gas at capture time."""
    call_site: str
    gas: int
    percent_of_total: float


class ProfileDocument(BaseModel):
    """
    profile.json — one capture.

    ``total_gas`` and ``hostio_totals`` are redundant with the frame tree
    and are checked against it on decode.
    """
    package_name: str = PACKAGE_NAME
    tool_version: str = TOOL_VERSION
    schema_version: str = SCHEMA_VERSION

    transaction_hash: str
    captured_at: datetime
    tracer: Optional[str] = None
    display_unit: Literal["gas", "ink"] = "gas"

    total_gas: NonNegativeInt
    hostio_totals: Dict[str, NonNegativeInt] = Field(default_factory=dict)
    total_hostio_calls: NonNegativeInt = 0
    hot_paths: List[HotPathModel] = Field(default_factory=list)

    root: FrameModel


# ── Diff report ──────────────────────────────────────────────────────────────

class AggregateDeltaModel(BaseModel):
    metric: str
    baseline: int
    current: int
    delta: int
    percent: Optional[float] = None
    is_new: bool = False


class DiffEntryModel(BaseModel):
    call_site: str
    family: str              # gas | hostio
    metric: str
    baseline: int
    current: int
    delta: int
    percent: Optional[float] = None
    is_new: bool = False
    status: str              # added | removed | changed | unchanged


class RuleModel(BaseModel):
    key: str
    scope: str               # aggregate | per_call_site
    description: str         # what the rule measures
    limit: float
    source: str              # file | override


class ViolationModel(BaseModel):
    rule: RuleModel
    actual_percent: Optional[float] = None
    is_new: bool = False
    call_site: Optional[str] = None
    metric: Optional[str] = None


class VerdictModel(BaseModel):
    status: str              # PASS | FAIL
    gated: bool
    rules: List[RuleModel] = Field(default_factory=list)
    violations: List[ViolationModel] = Field(default_factory=list)


class DiffReport(BaseModel):
    """
    diff_report.json — comparison of a target profile against a baseline.
    """
    package_name: str = PACKAGE_NAME
    tool_version: str = TOOL_VERSION
    schema_version: str = SCHEMA_VERSION

    baseline_transaction: str
    target_transaction: str
    gas: AggregateDeltaModel
    hostio: AggregateDeltaModel
    hostio_by_name: List[AggregateDeltaModel] = Field(default_factory=list)
    entries: List[DiffEntryModel] = Field(default_factory=list)
    verdict: VerdictModel


FrameModel.model_rebuild()
