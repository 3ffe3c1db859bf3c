"""
stylusTracer output → raw trace tree.

The node's ``stylusTracer`` returns a flat list of hostio events::

    {"name": "storage_load_bytes32", "args": "0x..", "outs": "0x..",
     "startInk": 846000, "endInk": 826000}

Contract calls (``call_contract`` and friends) may carry the callee's
events in a nested ``steps`` list.  Same-named events under one parent
fold into a single frame so that call-site identity depends only on the
names along the path, never on event position.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Sequence

from stylus_trace.core.profile import INK_PER_GAS
from stylus_trace.errors import MalformedTrace

logger = logging.getLogger(__name__)

ROOT_NAME = "entrypoint"


@dataclass
class _Node:
    name: str
    ink: int = 0            # cumulative, as reported by the tracer
    calls: int = 0
    children: Dict[str, _Node] = field(default_factory=dict)


def _ink(value: Any, label: str, where: str) -> int:
    if isinstance(value, bool):
        raise MalformedTrace(f"{label} must be an integer, got {value!r}", where)
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 16) if value.lower().startswith("0x") else int(value)
        except ValueError:
            pass
    raise MalformedTrace(f"{label} must be an integer, got {value!r}", where)


def _fold(parent: _Node, events: Sequence[Any], where: str) -> int:
    """Fold *events* into *parent*'s children; return their total ink."""
    total = 0
    for i, event in enumerate(events):
        at = f"{where}[{i}]"
        if not isinstance(event, Mapping):
            raise MalformedTrace("trace event must be an object", at)
        name = event.get("name")
        if not isinstance(name, str) or not name:
            raise MalformedTrace("trace event has no name", at)

        start = _ink(event.get("startInk", 0), "startInk", at)
        end = _ink(event.get("endInk", 0), "endInk", at)
        cost = start - end
        if cost < 0:
            raise MalformedTrace(
                f"endInk {end} exceeds startInk {start} for {name!r}", at,
            )

        node = parent.children.setdefault(name, _Node(name))
        node.ink += cost
        node.calls += 1
        total += cost

        steps = event.get("steps")
        if steps:
            if not isinstance(steps, Sequence) or isinstance(steps, (str, bytes)):
                raise MalformedTrace("steps must be a list of events", at)
            _fold(node, steps, f"{at}.steps")
    return total


def _to_raw(node: _Node, where: str, is_root: bool = False) -> Dict[str, Any]:
    children = [
        _to_raw(c, f"{where};{c.name}") for c in node.children.values()
    ]
    nested_ink = sum(c.ink for c in node.children.values())
    self_ink = node.ink - nested_ink
    if self_ink < 0:
        raise MalformedTrace(
            f"nested events cost {nested_ink} ink, more than the enclosing "
            f"call ({node.ink})",
            where,
        )
    raw: Dict[str, Any] = {
        "name": node.name,
        "gas": round(self_ink / INK_PER_GAS),
        "children": children,
    }
    if not is_root:
        raw["hostio"] = {node.name: node.calls}
    return raw


def events_to_tree(
    events: Sequence[Any],
    gas_used: Optional[int] = None,
    *,
    root_name: str = ROOT_NAME,
) -> Dict[str, Any]:
    """
    Build a raw trace tree from stylusTracer events.

    Parameters
    ----------
    events : Sequence
        Decoded ``debug_traceTransaction`` result.
    gas_used : int, optional
        Receipt ``gasUsed``.  Whatever is not attributed to a hostio is
        charged to the root frame as its self gas.

    Raises
    ------
    MalformedTrace
        Non-list input, unnamed events, or inconsistent ink counters.
    """
    if not isinstance(events, Sequence) or isinstance(events, (str, bytes)):
        raise MalformedTrace("stylusTracer result must be a list of events")

    root = _Node(root_name)
    root.ink = _fold(root, events, root_name)
    tree = _to_raw(root, root_name, is_root=True)

    attributed = _sum_gas(tree)
    if gas_used is not None:
        remainder = gas_used - attributed
        if remainder < 0:
            logger.warning(
                "hostio gas (%d) exceeds receipt gasUsed (%d); root self gas set to 0",
                attributed, gas_used,
            )
            remainder = 0
        tree["gas"] = remainder

    logger.debug(
        "folded %d top-level events into %d frames", len(events), _count(tree),
    )
    return tree


def _sum_gas(node: Mapping[str, Any]) -> int:
    return node["gas"] + sum(_sum_gas(c) for c in node["children"])


def _count(node: Mapping[str, Any]) -> int:
    return 1 + sum(_count(c) for c in node["children"])

