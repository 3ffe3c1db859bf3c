"""
Tests for stylus_trace.core.diff — call-site matching and deltas.
"""
import math

import pytest

from stylus_trace.core.diff import (
    EntryStatus,
    MetricFamily,
    compute_diff,
    percent_change,
)


def _entry(diff, call_site, metric="gas"):
    matches = [e for e in diff.entries if e.call_site == call_site and e.metric == metric]
    assert len(matches) == 1
    return matches[0]


class TestPercentChange:

    def test_increase(self):
        assert percent_change(100_000, 106_000) == pytest.approx(6.0)

    def test_decrease(self):
        assert percent_change(200, 150) == pytest.approx(-25.0)

    def test_new_cost_has_no_percentage(self):
        assert percent_change(0, 10) is None

    def test_both_zero(self):
        assert percent_change(0, 0) == 0.0


class TestComputeDiff:

    def test_self_diff_is_all_zero(self, base_profile):
        diff = compute_diff(base_profile, base_profile)
        assert diff.gas.delta == 0
        assert diff.hostio.delta == 0
        assert diff.changed_entries == []
        assert all(e.status == EntryStatus.UNCHANGED for e in diff.entries)
        assert all(e.percent == 0.0 for e in diff.entries)

    def test_aggregates(self, base_profile, changed_profile):
        diff = compute_diff(base_profile, changed_profile)
        assert (diff.gas.baseline, diff.gas.current) == (1800, 2100)
        assert diff.gas.percent == pytest.approx(300 / 1800 * 100)
        assert (diff.hostio.baseline, diff.hostio.current) == (4, 5)
        assert diff.hostio.percent == pytest.approx(25.0)

    def test_hostio_by_name(self, base_profile, changed_profile):
        diff = compute_diff(base_profile, changed_profile)
        by_name = {a.metric: a for a in diff.hostio_by_name}
        assert sorted(by_name) == ["call_contract", "emit_log", "storage_load_bytes32"]
        assert by_name["emit_log"].is_new
        assert by_name["storage_load_bytes32"].delta == 0

    def test_changed_entry(self, base_profile, changed_profile):
        entry = _entry(compute_diff(base_profile, changed_profile), "entrypoint;call_contract")
        assert entry.status == EntryStatus.CHANGED
        assert entry.family == MetricFamily.GAS
        assert entry.delta == 200
        assert entry.percent == pytest.approx(40.0)

    def test_added_entry_is_new(self, base_profile, changed_profile):
        diff = compute_diff(base_profile, changed_profile)
        gas = _entry(diff, "entrypoint;emit_log")
        calls = _entry(diff, "entrypoint;emit_log", "emit_log")
        for entry in (gas, calls):
            assert entry.status == EntryStatus.ADDED
            assert entry.baseline == 0
            assert entry.percent is None
            assert entry.is_new
            assert entry.magnitude == math.inf
        assert calls.family == MetricFamily.HOSTIO

    def test_removed_entry(self, base_profile, changed_profile):
        diff = compute_diff(changed_profile, base_profile)
        entry = _entry(diff, "entrypoint;emit_log")
        assert entry.status == EntryStatus.REMOVED
        assert entry.current == 0
        assert entry.percent == pytest.approx(-100.0)
        assert not entry.is_new

    def test_hostio_entries_per_name(self, base_profile, changed_profile):
        diff = compute_diff(base_profile, changed_profile)
        hostio = diff.entries_for(MetricFamily.HOSTIO)
        assert {(e.call_site, e.metric) for e in hostio} == {
            ("entrypoint;storage_load_bytes32", "storage_load_bytes32"),
            ("entrypoint;call_contract", "call_contract"),
            ("entrypoint;call_contract;storage_load_bytes32", "storage_load_bytes32"),
            ("entrypoint;emit_log", "emit_log"),
        }

    def test_every_call_site_present(self, base_profile, changed_profile):
        diff = compute_diff(base_profile, changed_profile)
        gas_sites = {e.call_site for e in diff.entries_for(MetricFamily.GAS)}
        assert gas_sites == base_profile.call_sites() | changed_profile.call_sites()

    def test_meta_carried(self, base_profile, changed_profile):
        diff = compute_diff(base_profile, changed_profile)
        assert diff.baseline_meta.transaction_hash == "0xbase"
        assert diff.current_meta.transaction_hash == "0xtarget"


class TestOrdering:

    def test_new_entries_first_then_by_magnitude(self, base_profile, changed_profile):
        diff = compute_diff(base_profile, changed_profile)
        first, second, third = diff.entries[:3]
        assert {first.call_site, second.call_site} == {"entrypoint;emit_log"}
        assert (third.call_site, third.metric) == ("entrypoint;call_contract", "gas")

    def test_deterministic(self, base_profile, changed_profile):
        a = compute_diff(base_profile, changed_profile)
        b = compute_diff(base_profile, changed_profile)
        assert a.entries == b.entries

    def test_independent_of_sibling_order(self, make_profile, base_tree, changed_tree):
        reordered = dict(changed_tree, children=list(reversed(changed_tree["children"])))
        a = compute_diff(make_profile(base_tree), make_profile(changed_tree))
        b = compute_diff(make_profile(base_tree), make_profile(reordered))
        assert a.entries == b.entries


class TestAggregatesIndependentOfShape:

    def test_inlining_does_not_double_count(self, make_profile):
        # Same total work; current inlines the helper into its caller.
        baseline = make_profile({
            "name": "entrypoint",
            "children": [
                {"name": "helper", "gas": 50, "children": [{"name": "leaf", "gas": 50}]},
            ],
        })
        current = make_profile({
            "name": "entrypoint",
            "children": [{"name": "helper", "gas": 100}],
        })
        diff = compute_diff(baseline, current)
        assert diff.gas.delta == 0
        assert diff.gas.percent == 0.0
        assert _entry(diff, "entrypoint;helper").delta == 50
        assert _entry(diff, "entrypoint;helper;leaf").status == EntryStatus.REMOVED
