"""
Shared pytest fixtures for stylus_trace tests.

All fixtures are pure-Python — no node, no network.  Raw trace trees are
plain dicts in the shape handed over by the capture collaborator.
"""
import copy
from datetime import datetime, timezone

import pytest

from stylus_trace.core.profile import ProfileMeta, build_profile


CAPTURED_AT = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


# ── Raw trees ────────────────────────────────────────────────────────────────

# total gas 1,800; hostio storage_load_bytes32=3, call_contract=1
BASE_TREE = {
    "name": "entrypoint",
    "gas": 1000,
    "children": [
        {
            "name": "storage_load_bytes32",
            "gas": 200,
            "hostio": {"storage_load_bytes32": 2},
        },
        {
            "name": "call_contract",
            "gas": 500,
            "hostio": {"call_contract": 1},
            "children": [
                {
                    "name": "storage_load_bytes32",
                    "gas": 100,
                    "hostio": {"storage_load_bytes32": 1},
                },
            ],
        },
    ],
}

# BASE_TREE with a costlier call_contract and a new emit_log frame
# total gas 2,100; hostio storage_load_bytes32=3, call_contract=1, emit_log=1
CHANGED_TREE = {
    "name": "entrypoint",
    "gas": 1000,
    "children": [
        {
            "name": "storage_load_bytes32",
            "gas": 200,
            "hostio": {"storage_load_bytes32": 2},
        },
        {
            "name": "call_contract",
            "gas": 700,
            "hostio": {"call_contract": 1},
            "children": [
                {
                    "name": "storage_load_bytes32",
                    "gas": 100,
                    "hostio": {"storage_load_bytes32": 1},
                },
            ],
        },
        {
            "name": "emit_log",
            "gas": 100,
            "hostio": {"emit_log": 1},
        },
    ],
}


# ── Fixtures ─────────────────────────────────────────────────────────────────

@pytest.fixture
def base_tree():
    return copy.deepcopy(BASE_TREE)


@pytest.fixture
def changed_tree():
    return copy.deepcopy(CHANGED_TREE)


@pytest.fixture
def make_profile():
    """Factory: raw tree → Profile with fixed capture metadata."""
    def _make(tree, tx="0xbase", ink=False, tracer="stylusTracer"):
        meta = ProfileMeta(
            transaction_hash=tx,
            captured_at=CAPTURED_AT,
            ink=ink,
            tracer=tracer,
        )
        return build_profile(copy.deepcopy(tree), meta)
    return _make


@pytest.fixture
def base_profile(make_profile, base_tree):
    return make_profile(base_tree, tx="0xbase")


@pytest.fixture
def changed_profile(make_profile, changed_tree):
    return make_profile(changed_tree, tx="0xtarget")


@pytest.fixture
def gas_pair(make_profile):
    """Factory: two single-frame profiles with the given total gas."""
    def _pair(baseline_gas, current_gas):
        return (
            make_profile({"name": "entrypoint", "gas": baseline_gas}, tx="0xbase"),
            make_profile({"name": "entrypoint", "gas": current_gas}, tx="0xtarget"),
        )
    return _pair


@pytest.fixture
def write_toml(tmp_path):
    """Factory: write TOML text to a file and return its path."""
    def _write(text, name="thresholds.toml"):
        path = tmp_path / name
        path.write_text(text, encoding="utf-8")
        return path
    return _write
