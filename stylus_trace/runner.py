"""
Runner — top-level orchestration: capture → profile → diff → verdict.

This module ties capture, the core model, policy, and IO together into
``run_capture`` and ``run_diff``, which can be called from the CLI or
programmatically.  All inputs that can fail fatally (threshold config,
baseline) are loaded before any capture or gating happens.

Exit codes (``main``):
    0  pass, or capture-only run without a baseline
    1  regression: at least one threshold violated
    2  operational failure (capture / trace / codec / config)
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

from stylus_trace import PACKAGE_NAME, SCHEMA_VERSION, TOOL_VERSION, __version__
from stylus_trace.capture.rpc import RawCapture, capture_trace_sync
from stylus_trace.capture.stylus_tracer import events_to_tree
from stylus_trace.config import Settings, get_settings
from stylus_trace.core.diff import Diff, compute_diff
from stylus_trace.core.profile import Profile, ProfileMeta, build_profile
from stylus_trace.errors import ConfigError, StylusTraceError
from stylus_trace.io.codec import load_baseline, read_profile, write_profile
from stylus_trace.io.schema import ProfileDocument
from stylus_trace.io.writer import (
    build_diff_report,
    resolve_artifact_path,
    write_diff_report,
    write_folded,
    write_text,
)
from stylus_trace.policy.thresholds import ThresholdRule, load_thresholds, resolve_rules
from stylus_trace.policy.verdict import Verdict, evaluate
from stylus_trace.report.flamegraph import (
    folded_stacks,
    render_diff_flamegraph_svg,
    render_flamegraph_svg,
)
from stylus_trace.report.summary import (
    render_diff_summary,
    render_profile_summary,
    render_verdict,
)

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_REGRESSION = 1
EXIT_ERROR = 2

CaptureFn = Callable[..., RawCapture]


@dataclass(frozen=True)
class Thresholds:
    """Where gating limits come from for one run."""
    config_path: Optional[Path] = None
    threshold_percent: Optional[float] = None
    gas_threshold: Optional[float] = None
    hostio_threshold: Optional[float] = None

    def load(self) -> List[ThresholdRule]:
        file_rules = load_thresholds(self.config_path) if self.config_path else []
        return resolve_rules(
            file_rules,
            threshold_percent=self.threshold_percent,
            gas_threshold=self.gas_threshold,
            hostio_threshold=self.hostio_threshold,
        )


@dataclass
class RunOutcome:
    profile: Profile
    baseline: Optional[Profile]
    diff: Optional[Diff]
    verdict: Verdict
    rules: List[ThresholdRule] = field(default_factory=list)
    written: List[Path] = field(default_factory=list)


# ── Building blocks ──────────────────────────────────────────────────────────

def profile_from_capture(raw: RawCapture, *, ink: bool = False) -> Profile:
    """Turn a raw capture into a Profile."""
    tree = events_to_tree(raw.events, raw.gas_used)
    meta = ProfileMeta(
        transaction_hash=raw.transaction_hash,
        ink=ink,
        tracer=raw.tracer,
    )
    return build_profile(tree, meta)


def compare(
    baseline: Optional[Profile],
    current: Profile,
    rules: Sequence[ThresholdRule],
) -> Tuple[Optional[Diff], Verdict]:
    """Diff *current* against *baseline* (if any) and gate it."""
    diff = compute_diff(baseline, current) if baseline is not None else None
    return diff, evaluate(diff, rules)


# ── Public API ───────────────────────────────────────────────────────────────

def run_capture(
    tx_hash: str,
    *,
    rpc_url: str,
    output: Path,
    tracer: str = "stylusTracer",
    timeout: float = 30.0,
    flamegraph: Optional[Path] = None,
    title: Optional[str] = None,
    width: int = 1200,
    top_paths: int = 20,
    ink: bool = False,
    baseline_path: Optional[Path] = None,
    thresholds: Thresholds = Thresholds(),
    capture: CaptureFn = capture_trace_sync,
) -> RunOutcome:
    """
    Capture *tx_hash*, persist its profile, and gate it against a baseline.

    Parameters
    ----------
    output : Path
        Where to write profile.json.
    flamegraph : Path, optional
        Where to write the SVG; a ``.folded`` file is written beside it.
    baseline_path : Path, optional
        Baseline profile.  Absent file → capture-only run.
    capture : callable
        Capture collaborator, ``capture(tx_hash, rpc_url, tracer=, timeout=)``.
    """
    rules = thresholds.load()
    baseline = load_baseline(baseline_path) if baseline_path else None

    raw = capture(tx_hash, rpc_url, tracer=tracer, timeout=timeout)
    profile = profile_from_capture(raw, ink=ink)

    written = [write_profile(profile, output, top_paths=top_paths)]
    logger.info("wrote profile to %s", output)

    if flamegraph is not None:
        svg = render_flamegraph_svg(
            profile,
            title=title or f"Stylus Flame Graph: {tx_hash}",
            width=width,
            ink=ink,
        )
        written.append(write_text(svg, flamegraph))
        written.append(write_folded(
            folded_stacks(profile, ink=ink), flamegraph.with_suffix(".folded"),
        ))
        logger.info("wrote flamegraph to %s", flamegraph)

    diff, verdict = compare(baseline, profile, rules)
    return RunOutcome(
        profile=profile,
        baseline=baseline,
        diff=diff,
        verdict=verdict,
        rules=rules,
        written=written,
    )


def run_diff(
    baseline_path: Path,
    target_path: Path,
    *,
    thresholds: Thresholds = Thresholds(),
    output: Optional[Path] = None,
    flamegraph: Optional[Path] = None,
    width: int = 1200,
    ink: bool = False,
) -> RunOutcome:
    """
    Compare two stored profiles.

    The target must exist.  A missing baseline is reported and the run
    is not gated.
    """
    rules = thresholds.load()
    baseline = load_baseline(baseline_path)
    if baseline is None:
        logger.warning("baseline %s not found; nothing to compare", baseline_path)
    target = read_profile(target_path)

    diff, verdict = compare(baseline, target, rules)
    written: List[Path] = []
    if diff is not None and output is not None:
        written.append(write_diff_report(build_diff_report(diff, verdict, rules), output))
        logger.info("wrote diff report to %s", output)
    if baseline is not None and flamegraph is not None:
        svg = render_diff_flamegraph_svg(baseline, target, width=width, ink=ink)
        written.append(write_text(svg, flamegraph))
        logger.info("wrote diff flamegraph to %s", flamegraph)

    return RunOutcome(
        profile=target,
        baseline=baseline,
        diff=diff,
        verdict=verdict,
        rules=rules,
        written=written,
    )


def exit_code(verdict: Verdict) -> int:
    return EXIT_OK if verdict.passed else EXIT_REGRESSION


# ── CLI ──────────────────────────────────────────────────────────────────────

def _add_threshold_args(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "-p", "--threshold-percent",
        type=float, default=None,
        help="Single increase limit (%%) for total gas, total hostio calls and hot paths",
    )
    p.add_argument(
        "--gas-threshold",
        type=float, default=None,
        help="Gate only on total gas increase (%%); ignores the config file",
    )
    p.add_argument(
        "--hostio-threshold",
        type=float, default=None,
        help="Gate only on total hostio call increase (%%); ignores the config file",
    )


def build_parser(settings: Settings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="stylus-trace",
        description="stylus-trace — gas/hostio profiling and regression gating for Stylus",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    cap = sub.add_parser("capture", help="Capture and profile a transaction")
    cap.add_argument("-t", "--tx", required=True, help="Transaction hash to profile")
    cap.add_argument("-r", "--rpc", default=settings.RPC_URL, help="RPC endpoint URL")
    cap.add_argument(
        "-o", "--output", default="profile.json",
        help="Profile JSON path (bare names go to artifacts/capture/)",
    )
    cap.add_argument(
        "-f", "--flamegraph", nargs="?", const="flamegraph.svg",
        default=None, help="Write an SVG flamegraph",
    )
    cap.add_argument("--top-paths", type=int, default=settings.TOP_PATHS)
    cap.add_argument("--title", default=None, help="Flamegraph title")
    cap.add_argument("--width", type=int, default=settings.FLAMEGRAPH_WIDTH)
    cap.add_argument("--summary", action="store_true", help="Print a profile summary")
    cap.add_argument("--ink", action="store_true", help="Display Stylus ink (gas × 10,000)")
    cap.add_argument("--tracer", default=settings.TRACER)
    cap.add_argument("--timeout", type=float, default=settings.RPC_TIMEOUT)
    cap.add_argument("--baseline", default=None, help="Baseline profile to gate against")
    cap.add_argument("--threshold-config", type=Path, default=None, help="Threshold TOML file")
    _add_threshold_args(cap)

    dif = sub.add_parser("diff", help="Compare two profiles and detect regressions")
    dif.add_argument("baseline", help="Baseline profile JSON")
    dif.add_argument("target", help="Target profile JSON")
    dif.add_argument("-t", "--threshold", type=Path, default=None, help="Threshold TOML file")
    _add_threshold_args(dif)
    dif.add_argument(
        "--no-summary", dest="summary", action="store_false",
        help="Do not print the diff summary",
    )
    dif.add_argument(
        "-o", "--output", default="diff_report.json",
        help="Diff report JSON path (bare names go to artifacts/diff/)",
    )
    dif.add_argument(
        "-f", "--flamegraph", nargs="?", const="diff.svg",
        default=None, help="Write a differential SVG flamegraph",
    )
    dif.add_argument("--width", type=int, default=settings.FLAMEGRAPH_WIDTH)
    dif.add_argument("--ink", action="store_true", help="Display Stylus ink (gas × 10,000)")

    val = sub.add_parser("validate", help="Validate a profile JSON file")
    val.add_argument("-f", "--file", type=Path, required=True)

    sch = sub.add_parser("schema", help="Display profile schema information")
    sch.add_argument("--show", action="store_true", help="Print the full JSON schema")

    sub.add_parser("version", help="Display version information")
    return parser


def _print_outcome(
    outcome: RunOutcome,
    *,
    ink: bool,
    profile_summary: bool,
    diff_summary: bool,
    top_paths: int,
) -> None:
    if profile_summary:
        print(render_profile_summary(outcome.profile, ink=ink, top_paths=top_paths))
    if diff_summary and outcome.diff is not None:
        print(render_diff_summary(outcome.diff, ink=ink))
    print(render_verdict(outcome.verdict))
    for path in outcome.written:
        print(f"Wrote {path}")


def _dispatch(args: argparse.Namespace, settings: Settings) -> int:
    artifacts = Path(settings.ARTIFACTS_DIR)

    if args.command == "capture":
        outcome = run_capture(
            args.tx,
            rpc_url=args.rpc,
            output=resolve_artifact_path(args.output, "capture", artifacts),
            tracer=args.tracer,
            timeout=args.timeout,
            flamegraph=(
                resolve_artifact_path(args.flamegraph, "capture", artifacts)
                if args.flamegraph else None
            ),
            title=args.title,
            width=args.width,
            top_paths=args.top_paths,
            ink=args.ink,
            baseline_path=(
                resolve_artifact_path(args.baseline, "capture", artifacts)
                if args.baseline else None
            ),
            thresholds=Thresholds(
                config_path=args.threshold_config,
                threshold_percent=args.threshold_percent,
                gas_threshold=args.gas_threshold,
                hostio_threshold=args.hostio_threshold,
            ),
        )
        _print_outcome(
            outcome,
            ink=args.ink,
            profile_summary=args.summary,
            diff_summary=True,
            top_paths=args.top_paths,
        )
        return exit_code(outcome.verdict)

    if args.command == "diff":
        outcome = run_diff(
            resolve_artifact_path(args.baseline, "capture", artifacts),
            resolve_artifact_path(args.target, "capture", artifacts),
            thresholds=Thresholds(
                config_path=args.threshold,
                threshold_percent=args.threshold_percent,
                gas_threshold=args.gas_threshold,
                hostio_threshold=args.hostio_threshold,
            ),
            output=resolve_artifact_path(args.output, "diff", artifacts),
            flamegraph=(
                resolve_artifact_path(args.flamegraph, "diff", artifacts)
                if args.flamegraph else None
            ),
            width=args.width,
            ink=args.ink,
        )
        _print_outcome(
            outcome,
            ink=args.ink,
            profile_summary=False,
            diff_summary=args.summary,
            top_paths=settings.TOP_PATHS,
        )
        return exit_code(outcome.verdict)

    if args.command == "validate":
        profile = read_profile(args.file)
        print(f"✓ {args.file} is a valid profile")
        print(f"  transaction: {profile.meta.transaction_hash}")
        print(f"  total gas:   {profile.total_gas:,}")
        print(f"  hostio calls: {profile.total_hostio_calls:,}")
        print(f"  call sites:  {len(profile.call_sites())}")
        return EXIT_OK

    if args.command == "schema":
        print(f"{PACKAGE_NAME} profile schema v{SCHEMA_VERSION} (tool {TOOL_VERSION})")
        if args.show:
            print(json.dumps(ProfileDocument.model_json_schema(), indent=2, sort_keys=True))
        return EXIT_OK

    print(f"{PACKAGE_NAME} {__version__} (schema {SCHEMA_VERSION})")
    return EXIT_OK


def main(argv: Optional[Sequence[str]] = None) -> int:
    """CLI entry point for stylus-trace."""
    try:
        settings = get_settings()
    except ConfigError as exc:
        logger.error("%s: %s", type(exc).__name__, exc)
        return EXIT_ERROR
    args = build_parser(settings).parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        return _dispatch(args, settings)
    except StylusTraceError as exc:
        logger.error("%s: %s", type(exc).__name__, exc)
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
