"""
Flamegraph output derived from the Frame tree.

* ``folded_stacks`` — Brendan Gregg folded format, one
  ``root;child;leaf weight`` line per frame with non-zero self gas.
  Feed it to any flamegraph renderer.
* ``render_flamegraph_svg`` — self-contained SVG, width ∝ cumulative gas.
* ``render_diff_flamegraph_svg`` — merged tree of two profiles, colored
  red where the target costs more and blue where it costs less.
"""
from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import Dict, List, Tuple

from stylus_trace.core.profile import Frame, Profile, to_display_units

FRAME_HEIGHT = 16
FONT_SIZE = 11
CHAR_WIDTH = 6.5
MIN_WIDTH_PX = 0.1
MARGIN = 10


# ── Folded stacks ────────────────────────────────────────────────────────────

def folded_stacks(profile: Profile, *, ink: bool = False) -> List[str]:
    """One line per frame with self cost, in tree order."""
    return [
        f"{f.call_site.identity} {to_display_units(f.gas, ink)}"
        for f in profile.root.walk()
        if f.gas > 0
    ]


# ── SVG helpers ──────────────────────────────────────────────────────────────

def xml_escape(s: str) -> str:
    return (s.replace("&", "&amp;")
             .replace("<", "&lt;")
             .replace(">", "&gt;")
             .replace('"', "&quot;"))


def _warm_color(name: str) -> Tuple[int, int, int]:
    """Stable warm palette keyed by frame name."""
    h = hashlib.md5(name.encode("utf-8")).digest()
    return 205 + h[0] % 50, 80 + h[1] % 120, 40 + h[2] % 40


def _label(out: List[str], name: str, x: float, y: float, width: float) -> None:
    text_width = len(name) * CHAR_WIDTH
    if width > text_width + 6:
        text = xml_escape(name)
    elif width > 20:
        max_chars = int((width - 6) / CHAR_WIDTH) - 2
        if max_chars <= 0:
            return
        text = xml_escape(name[:max_chars]) + ".."
    else:
        return
    out.append(
        f'<text x="{x + 3:.1f}" y="{y + FRAME_HEIGHT - 4:.1f}" '
        f'font-size="{FONT_SIZE}" font-family="monospace" fill="#000">'
        f'{text}</text>'
    )


def _header(out: List[str], title: str, width: int, height: int) -> None:
    out.append('<?xml version="1.0" standalone="no"?>')
    out.append(
        f'<svg xmlns="http://www.w3.org/2000/svg" width="{width}" '
        f'height="{height}" viewBox="0 0 {width} {height}">'
    )
    out.append('<rect width="100%" height="100%" fill="#f8f8f8" />')
    out.append(
        f'<text x="{width // 2}" y="20" font-size="16" font-family="sans-serif" '
        f'text-anchor="middle" fill="#333">{xml_escape(title)}</text>'
    )


def _depth(frame: Frame) -> int:
    if not frame.children:
        return 0
    return 1 + max(_depth(c) for c in frame.children)


# ── Profile flamegraph ───────────────────────────────────────────────────────

def render_flamegraph_svg(
    profile: Profile,
    *,
    title: str = "Stylus Flame Graph",
    width: int = 1200,
    ink: bool = False,
) -> str:
    unit = "ink" if ink else "gas"
    depth = _depth(profile.root)
    height = (depth + 2) * FRAME_HEIGHT + 60
    total = max(profile.total_gas, 1)

    out: List[str] = []
    _header(out, title, width, height)
    cumulative = {s.call_site: s.cumulative_gas for s in profile.frames()}

    def render(frame: Frame, level: int, x: float, w: float) -> None:
        if w < MIN_WIDTH_PX:
            return
        y = height - 20 - (level + 1) * FRAME_HEIGHT
        cum = cumulative[frame.call_site]
        r, g, b = _warm_color(frame.name)
        name = xml_escape(frame.name)
        share = cum / total * 100.0
        out.append('<g class="fg">')
        out.append(
            f'<title>{name} ({to_display_units(cum, ink):,} {unit}, '
            f'{share:.2f}%)</title>'
        )
        out.append(
            f'<rect x="{x:.1f}" y="{y:.1f}" width="{w:.1f}" '
            f'height="{FRAME_HEIGHT - 1}" fill="rgb({r},{g},{b})" '
            f'rx="1" ry="1" data-name="{name}" />'
        )
        _label(out, frame.name, x, y, w)
        out.append('</g>')

        child_x = x
        parent = cum if cum > 0 else 1
        for child in frame.children:
            child_w = w * (cumulative[child.call_site] / parent)
            render(child, level + 1, child_x, child_w)
            child_x += child_w

    render(profile.root, 0, MARGIN, width - 2 * MARGIN)
    out.append('</svg>')
    return "\n".join(out) + "\n"


# ── Differential flamegraph ──────────────────────────────────────────────────

@dataclass
class _DiffNode:
    name: str
    before: int = 0
    after: int = 0
    children: Dict[str, _DiffNode] = field(default_factory=dict)

    @property
    def width_weight(self) -> int:
        return max(self.before, self.after)


def _merge(node: _DiffNode, frame: Frame, side: str) -> int:
    cum = frame.gas
    for child in frame.children:
        sub = node.children.setdefault(child.name, _DiffNode(child.name))
        cum += _merge(sub, child, side)
    if side == "before":
        node.before += cum
    else:
        node.after += cum
    return cum


def delta_color(before: int, after: int, total_before: int, total_after: int) -> Tuple[int, int, int]:
    """Red for a larger share in *after*, blue for smaller, gray if equal."""
    rate_b = before / total_before if total_before > 0 else 0.0
    rate_a = after / total_after if total_after > 0 else 0.0
    diff = rate_a - rate_b
    if abs(diff) < 0.001 and before and after:
        return 200, 200, 200
    if not before and after:
        diff = max(diff, 0.3)
    intensity = min(abs(diff) / 0.3, 1.0)
    if diff > 0:
        r = 200 + int(55 * intensity)
        g = 200 - int(140 * intensity)
        b = 200 - int(140 * intensity)
    else:
        r = 200 - int(140 * intensity)
        g = 200 - int(80 * intensity)
        b = 200 + int(55 * intensity)
    return max(0, min(255, r)), max(0, min(255, g)), max(0, min(255, b))


def render_diff_flamegraph_svg(
    baseline: Profile,
    current: Profile,
    *,
    title: str = "Differential Flame Graph",
    width: int = 1200,
    ink: bool = False,
) -> str:
    """Merged flamegraph of *baseline* vs *current* by call-site identity."""
    unit = "ink" if ink else "gas"
    roots: Dict[str, _DiffNode] = {}
    for profile, side in ((baseline, "before"), (current, "after")):
        node = roots.setdefault(profile.root.name, _DiffNode(profile.root.name))
        _merge(node, profile.root, side)

    # Roots with different names sit side by side under a synthetic "all".
    if len(roots) == 1:
        top = next(iter(roots.values()))
    else:
        top = _DiffNode("all", children=roots)
        top.before = sum(r.before for r in roots.values())
        top.after = sum(r.after for r in roots.values())

    total_before = max(baseline.total_gas, 1)
    total_after = max(current.total_gas, 1)

    def depth(node: _DiffNode) -> int:
        if not node.children:
            return 0
        return 1 + max(depth(c) for c in node.children.values())

    height = (depth(top) + 2) * FRAME_HEIGHT + 60
    out: List[str] = []
    _header(out, title, width, height)

    def render(node: _DiffNode, level: int, x: float, w: float) -> None:
        if w < MIN_WIDTH_PX:
            return
        y = height - 20 - (level + 1) * FRAME_HEIGHT
        if level == 0:
            r, g, b = 200, 200, 200
        else:
            r, g, b = delta_color(node.before, node.after, total_before, total_after)
        before = to_display_units(node.before, ink)
        after = to_display_units(node.after, ink)
        delta = after - before
        if node.before:
            pct = f"{(node.after - node.before) * 100.0 / node.before:+.1f}%"
        else:
            pct = "new" if node.after else "+0.0%"
        name = xml_escape(node.name)
        out.append('<g class="fg">')
        out.append(
            f'<title>{name} ({unit} before: {before:,}, after: {after:,}, '
            f'delta: {delta:+,} [{pct}])</title>'
        )
        out.append(
            f'<rect x="{x:.1f}" y="{y:.1f}" width="{w:.1f}" '
            f'height="{FRAME_HEIGHT - 1}" fill="rgb({r},{g},{b})" '
            f'rx="1" ry="1" data-name="{name}" />'
        )
        _label(out, node.name, x, y, w)
        out.append('</g>')

        # Children of a reshaped frame can outweigh it (one removed, one added).
        children = sorted(node.children.values(), key=lambda c: c.name)
        parent = max(node.width_weight, sum(c.width_weight for c in children), 1)
        child_x = x
        for child in children:
            child_w = w * (child.width_weight / parent)
            render(child, level + 1, child_x, child_w)
            child_x += child_w

    render(top, 0, MARGIN, width - 2 * MARGIN)
    out.append('</svg>')
    return "\n".join(out) + "\n"
