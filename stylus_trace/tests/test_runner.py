"""
Tests for stylus_trace.runner — orchestration and CLI exit codes.
"""
import json
from pathlib import Path

import pytest

from stylus_trace.capture.rpc import RawCapture
from stylus_trace.errors import CodecError, ConfigError
from stylus_trace.io.codec import read_profile, write_profile
from stylus_trace.io.writer import resolve_artifact_path
from stylus_trace.runner import (
    EXIT_ERROR,
    EXIT_OK,
    EXIT_REGRESSION,
    Thresholds,
    main,
    run_capture,
    run_diff,
)


EVENTS = [
    {"name": "storage_load_bytes32", "startInk": 1_000_000, "endInk": 980_000},
    {"name": "emit_log", "startInk": 900_000, "endInk": 800_000},
]


class FakeCapture:
    """Stands in for the RPC collaborator."""

    def __init__(self, events=EVENTS, gas_used=1_000):
        self.events = events
        self.gas_used = gas_used
        self.calls = []

    def __call__(self, tx_hash, rpc_url, *, tracer, timeout):
        self.calls.append((tx_hash, rpc_url, tracer, timeout))
        return RawCapture(
            transaction_hash=tx_hash,
            events=self.events,
            gas_used=self.gas_used,
            tracer=tracer,
        )


@pytest.fixture
def profiles(tmp_path, base_profile, changed_profile):
    base = write_profile(base_profile, tmp_path / "base.json")
    target = write_profile(changed_profile, tmp_path / "target.json")
    return base, target


# ── run_capture ──────────────────────────────────────────────────────────────

class TestRunCapture:

    def test_capture_only_run(self, tmp_path):
        capture = FakeCapture()
        outcome = run_capture(
            "0x1",
            rpc_url="http://node",
            output=tmp_path / "profile.json",
            baseline_path=tmp_path / "missing.json",
            thresholds=Thresholds(threshold_percent=0.0),
            capture=capture,
        )
        assert capture.calls == [("0x1", "http://node", "stylusTracer", 30.0)]
        assert outcome.baseline is None
        assert outcome.diff is None
        assert outcome.verdict.passed
        assert not outcome.verdict.gated
        assert outcome.profile.total_gas == 1_000
        assert read_profile(tmp_path / "profile.json").total_gas == 1_000

    def test_profile_reusable_as_baseline(self, tmp_path):
        first = tmp_path / "first.json"
        run_capture("0x1", rpc_url="http://node", output=first, capture=FakeCapture())

        outcome = run_capture(
            "0x2",
            rpc_url="http://node",
            output=tmp_path / "second.json",
            baseline_path=first,
            thresholds=Thresholds(gas_threshold=5.0),
            capture=FakeCapture(gas_used=1_100),
        )
        assert outcome.diff is not None
        assert outcome.diff.gas.percent == pytest.approx(10.0)
        assert not outcome.verdict.passed

    def test_flamegraph_artifacts(self, tmp_path):
        svg = tmp_path / "fg" / "flamegraph.svg"
        outcome = run_capture(
            "0x1",
            rpc_url="http://node",
            output=tmp_path / "profile.json",
            flamegraph=svg,
            capture=FakeCapture(),
        )
        assert svg in outcome.written
        assert svg.read_text(encoding="utf-8").startswith("<?xml")
        folded = svg.with_suffix(".folded").read_text(encoding="utf-8").splitlines()
        assert "entrypoint;emit_log 10" in folded

    def test_bad_config_aborts_before_capture(self, write_toml, tmp_path):
        capture = FakeCapture()
        with pytest.raises(ConfigError):
            run_capture(
                "0x1",
                rpc_url="http://node",
                output=tmp_path / "profile.json",
                thresholds=Thresholds(config_path=write_toml("[gas]\nmax = 1\n")),
                capture=capture,
            )
        assert capture.calls == []
        assert not (tmp_path / "profile.json").exists()

    def test_corrupt_baseline_aborts_before_capture(self, tmp_path):
        baseline = tmp_path / "baseline.json"
        baseline.write_text("{}", encoding="utf-8")
        capture = FakeCapture()
        with pytest.raises(CodecError):
            run_capture(
                "0x1",
                rpc_url="http://node",
                output=tmp_path / "profile.json",
                baseline_path=baseline,
                capture=capture,
            )
        assert capture.calls == []


# ── run_diff ─────────────────────────────────────────────────────────────────

class TestRunDiff:

    def test_writes_report(self, tmp_path, profiles):
        out = tmp_path / "diff_report.json"
        outcome = run_diff(*profiles, thresholds=Thresholds(gas_threshold=20.0), output=out)
        assert outcome.verdict.passed
        report = json.loads(out.read_text(encoding="utf-8"))
        assert report["baseline_transaction"] == "0xbase"
        assert report["target_transaction"] == "0xtarget"
        assert report["gas"]["delta"] == 300
        assert report["verdict"]["status"] == "PASS"
        assert report["verdict"]["rules"][0]["source"] == "override"
        assert report["verdict"]["rules"][0]["description"] == "total gas"
        new = [e for e in report["entries"] if e["is_new"]]
        assert {e["call_site"] for e in new} == {"entrypoint;emit_log"}
        assert all(e["percent"] is None for e in new)

    def test_missing_baseline_not_gated(self, tmp_path, profiles):
        _, target = profiles
        out = tmp_path / "diff_report.json"
        outcome = run_diff(tmp_path / "nope.json", target, output=out)
        assert outcome.diff is None
        assert not outcome.verdict.gated
        assert not out.exists()

    def test_missing_target_is_error(self, tmp_path, profiles):
        base, _ = profiles
        with pytest.raises(CodecError):
            run_diff(base, tmp_path / "nope.json")

    def test_diff_flamegraph(self, tmp_path, profiles):
        svg = tmp_path / "diff.svg"
        run_diff(*profiles, flamegraph=svg)
        assert "[new]" in svg.read_text(encoding="utf-8")


# ── CLI ──────────────────────────────────────────────────────────────────────

class TestMain:

    def test_diff_regression_exit_code(self, tmp_path, profiles, capsys):
        out = tmp_path / "report.json"
        code = main(["diff", *map(str, profiles), "-o", str(out), "--gas-threshold", "5"])
        assert code == EXIT_REGRESSION
        assert "Gate: FAIL" in capsys.readouterr().out
        assert json.loads(out.read_text(encoding="utf-8"))["verdict"]["status"] == "FAIL"

    def test_diff_pass_exit_code(self, tmp_path, profiles, capsys):
        out = tmp_path / "report.json"
        code = main(["diff", *map(str, profiles), "-o", str(out), "--gas-threshold", "20"])
        assert code == EXIT_OK
        assert "Gate: PASS" in capsys.readouterr().out

    def test_diff_with_threshold_file(self, tmp_path, profiles, write_toml):
        config = write_toml("[hostio]\nmax_total_calls_increase_percent = 10.0\n")
        out = tmp_path / "report.json"
        code = main(["diff", *map(str, profiles), "-t", str(config), "-o", str(out)])
        assert code == EXIT_REGRESSION

    def test_diff_without_thresholds_passes(self, tmp_path, profiles, capsys):
        code = main(["diff", *map(str, profiles), "-o", str(tmp_path / "r.json")])
        assert code == EXIT_OK
        assert "not evaluated" in capsys.readouterr().out

    def test_no_summary(self, tmp_path, profiles, capsys):
        main(["diff", *map(str, profiles), "--no-summary", "-o", str(tmp_path / "r.json")])
        assert "Baseline:" not in capsys.readouterr().out

    def test_invalid_config_exit_code(self, tmp_path, profiles, write_toml):
        config = write_toml("[gas]\nmax_increase_percent = -1\n")
        code = main(["diff", *map(str, profiles), "-t", str(config), "-o", str(tmp_path / "r.json")])
        assert code == EXIT_ERROR

    def test_corrupt_target_exit_code(self, tmp_path, profiles):
        base, _ = profiles
        bad = tmp_path / "bad.json"
        bad.write_text("not json", encoding="utf-8")
        assert main(["diff", str(base), str(bad), "-o", str(tmp_path / "r.json")]) == EXIT_ERROR

    def test_unwritable_report_exit_code(self, tmp_path, profiles):
        blocker = tmp_path / "blocker"
        blocker.write_text("", encoding="utf-8")
        out = blocker / "r.json"
        assert main(["diff", *map(str, profiles), "-o", str(out)]) == EXIT_ERROR

    def test_invalid_environment_exit_code(self, monkeypatch):
        monkeypatch.setenv("STYLUS_TRACE_TOP_PATHS", "lots")
        assert main(["version"]) == EXIT_ERROR

    def test_diff_ink_flamegraph(self, tmp_path, profiles):
        svg = tmp_path / "diff.svg"
        code = main(["diff", *map(str, profiles), "--ink", "-f", str(svg),
                     "-o", str(tmp_path / "r.json")])
        assert code == EXIT_OK
        assert "ink before:" in svg.read_text(encoding="utf-8")

    def test_validate(self, profiles, capsys):
        base, _ = profiles
        assert main(["validate", "-f", str(base)]) == EXIT_OK
        out = capsys.readouterr().out
        assert "valid profile" in out
        assert "1,800" in out

    def test_validate_corrupt(self, tmp_path):
        bad = tmp_path / "bad.json"
        bad.write_text('{"schema_version": "1.0"}', encoding="utf-8")
        assert main(["validate", "-f", str(bad)]) == EXIT_ERROR

    def test_schema_show(self, capsys):
        assert main(["schema", "--show"]) == EXIT_OK
        out = capsys.readouterr().out
        schema = json.loads(out[out.index("{"):])
        assert "root" in schema["properties"]

    def test_version(self, capsys):
        assert main(["version"]) == EXIT_OK
        assert "stylus_trace 0.1.0" in capsys.readouterr().out


class TestArtifactPaths:

    def test_bare_name_goes_under_category(self, tmp_path):
        assert resolve_artifact_path(Path("profile.json"), "capture", tmp_path) == (
            tmp_path / "capture" / "profile.json"
        )

    def test_bare_string_goes_under_category(self, tmp_path):
        assert resolve_artifact_path("profile.json", "capture", tmp_path) == (
            tmp_path / "capture" / "profile.json"
        )

    def test_dot_slash_stays_in_working_directory(self, tmp_path):
        assert resolve_artifact_path("./profile.json", "capture", tmp_path) == Path("profile.json")

    def test_explicit_path_kept(self, tmp_path):
        path = tmp_path / "x" / "diff_report.json"
        assert resolve_artifact_path(path, "diff", tmp_path) == path
