"""
Error taxonomy for stylus_trace.

Every operational failure derives from ``StylusTraceError`` so the CLI
can map it to a single exit status.  Regressions are *not* exceptions:
they are reported through ``policy.verdict.Verdict``.
"""
from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Optional


class StylusTraceError(Exception):
    """Base class for fatal, non-regression failures."""


class CaptureErrorKind(str, Enum):
    CONNECTIVITY = "connectivity"
    UNKNOWN_TRANSACTION = "unknown_transaction"
    MALFORMED_TRACE = "malformed_trace"
    TIMEOUT = "timeout"
    RPC_ERROR = "rpc_error"


class CaptureError(StylusTraceError):
    """Trace capture against the node failed."""

    def __init__(
        self,
        message: str,
        kind: CaptureErrorKind,
        transaction_hash: Optional[str] = None,
    ):
        self.kind = kind
        self.transaction_hash = transaction_hash
        prefix = f"[{kind.value}]"
        if transaction_hash:
            prefix += f" tx {transaction_hash}"
        super().__init__(f"{prefix}: {message}")


class MalformedTrace(StylusTraceError):
    """Raw trace tree violates the Frame tree contract."""

    def __init__(self, message: str, path: Optional[str] = None):
        self.path = path
        if path:
            message = f"{message} (at {path!r})"
        super().__init__(message)


class CodecError(StylusTraceError):
    """A profile or report artifact cannot be read, decoded or written."""

    def __init__(self, message: str, path: Optional[Path] = None):
        self.path = path
        if path is not None:
            message = f"{path}: {message}"
        super().__init__(message)


class ConfigError(StylusTraceError):
    """Threshold configuration is invalid.  Gating fails closed."""

    def __init__(
        self,
        message: str,
        path: Optional[Path] = None,
        field: Optional[str] = None,
    ):
        self.path = path
        self.field = field
        if field:
            message = f"{field}: {message}"
        if path is not None:
            message = f"{path}: {message}"
        super().__init__(message)
