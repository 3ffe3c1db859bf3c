"""
Codec — Profile ↔ profile.json bytes.

``decode(encode(p))`` preserves totals, tree shape and call-site
identities.  Baseline loading distinguishes an absent file (no baseline,
returns ``None``) from a present but unreadable one (``CodecError``).
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional, Tuple

from pydantic import ValidationError

from stylus_trace import SCHEMA_VERSION
from stylus_trace.core.call_site import SEPARATOR, CallSite
from stylus_trace.core.profile import Frame, Profile, ProfileMeta
from stylus_trace.errors import CodecError, MalformedTrace
from stylus_trace.io.schema import FrameModel, HotPathModel, ProfileDocument

logger = logging.getLogger(__name__)


def _parse_version(v: str) -> Tuple[int, ...]:
    return tuple(int(p) for p in v.split("."))


_SUPPORTED_SCHEMA = _parse_version(SCHEMA_VERSION)


# ── Encode ───────────────────────────────────────────────────────────────────

def _frame_model(frame: Frame) -> FrameModel:
    return FrameModel(
        name=frame.name,
        gas=frame.gas,
        hostio=dict(frame.hostio),
        children=[_frame_model(c) for c in frame.children],
    )


def to_document(profile: Profile, *, top_paths: int = 20) -> ProfileDocument:
    total = profile.total_gas
    return ProfileDocument(
        transaction_hash=profile.meta.transaction_hash,
        captured_at=profile.meta.captured_at,
        tracer=profile.meta.tracer,
        display_unit="ink" if profile.meta.ink else "gas",
        total_gas=total,
        hostio_totals=dict(profile.hostio_totals),
        total_hostio_calls=profile.total_hostio_calls,
        hot_paths=[
            HotPathModel(
                call_site=f.call_site.identity,
                gas=f.gas,
                percent_of_total=round(f.gas / total * 100.0, 4) if total else 0.0,
            )
            for f in profile.hot_paths(top_paths)
        ],
        root=_frame_model(profile.root),
    )


def encode(profile: Profile, *, top_paths: int = 20) -> bytes:
    """Serialize *profile* to UTF-8 JSON bytes."""
    doc = to_document(profile, top_paths=top_paths)
    text = json.dumps(doc.model_dump(mode="json"), indent=2, sort_keys=True)
    return (text + "\n").encode("utf-8")


# ── Decode ───────────────────────────────────────────────────────────────────

def _check_version(sv: str) -> None:
    try:
        parsed = _parse_version(sv)
    except ValueError as exc:
        raise CodecError(f"invalid schema_version {sv!r}") from exc
    if parsed[0] != _SUPPORTED_SCHEMA[0] or parsed > _SUPPORTED_SCHEMA:
        raise CodecError(
            f"schema_version {sv} is not supported (reader is {SCHEMA_VERSION})"
        )


def _frame(model: FrameModel, parent: Optional[CallSite]) -> Frame:
    if SEPARATOR in model.name:
        raise CodecError(f"frame name {model.name!r} contains {SEPARATOR!r}")
    call_site = parent.child(model.name) if parent else CallSite.root(model.name)
    names = [c.name for c in model.children]
    if len(names) != len(set(names)):
        raise CodecError(f"duplicate child frames under {call_site.identity!r}")
    return Frame(
        call_site=call_site,
        gas=model.gas,
        hostio={k: v for k, v in sorted(model.hostio.items()) if v},
        children=tuple(_frame(c, call_site) for c in model.children),
    )


def from_document(doc: ProfileDocument) -> Profile:
    _check_version(doc.schema_version)
    meta = ProfileMeta(
        transaction_hash=doc.transaction_hash,
        captured_at=doc.captured_at,
        ink=doc.display_unit == "ink",
        tracer=doc.tracer,
    )
    root = _frame(doc.root, None)
    try:
        return Profile(
            root=root,
            total_gas=doc.total_gas,
            hostio_totals=dict(doc.hostio_totals),
            meta=meta,
        )
    except MalformedTrace as exc:
        raise CodecError(f"inconsistent totals: {exc}") from exc


def decode(data: bytes) -> Profile:
    """
    Parse profile.json bytes.

    Raises
    ------
    CodecError
        Empty, truncated, non-JSON or schema-mismatched input, or totals
        that disagree with the frame tree.
    """
    if not data or not data.strip():
        raise CodecError("empty profile")
    try:
        raw = json.loads(data)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise CodecError(f"not valid JSON: {exc}") from exc
    if not isinstance(raw, dict):
        raise CodecError("profile must be a JSON object")

    _check_version(str(raw.get("schema_version", "0.0")))
    try:
        doc = ProfileDocument.model_validate(raw)
    except ValidationError as exc:
        raise CodecError(f"schema mismatch: {exc}") from exc
    return from_document(doc)


# ── Files ────────────────────────────────────────────────────────────────────

def read_profile(path: Path) -> Profile:
    """Read a profile that must exist."""
    try:
        data = path.read_bytes()
    except FileNotFoundError as exc:
        raise CodecError("profile not found", path=path) from exc
    except OSError as exc:
        raise CodecError(f"cannot read: {exc}", path=path) from exc
    try:
        return decode(data)
    except CodecError as exc:
        raise CodecError(str(exc), path=path) from exc


def load_baseline(path: Path) -> Optional[Profile]:
    """
    Load a baseline profile.

    Returns ``None`` when *path* does not exist: the run then has no
    baseline and gating is skipped.
    """
    if not path.exists():
        logger.info("no baseline at %s", path)
        return None
    profile = read_profile(path)
    logger.info(
        "loaded baseline %s from %s (gas=%d)",
        profile.meta.transaction_hash, path, profile.total_gas,
    )
    return profile


def write_profile(profile: Profile, path: Path, *, top_paths: int = 20) -> Path:
    """Write *profile* to *path*, creating parent directories."""
    data = encode(profile, top_paths=top_paths)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
    except OSError as exc:
        raise CodecError(f"cannot write: {exc}", path=path) from exc
    return path
