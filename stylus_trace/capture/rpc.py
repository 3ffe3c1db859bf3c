"""
Trace capture over JSON-RPC.

Talks to an Arbitrum node's debug namespace::

    debug_traceTransaction(tx, {"tracer": "stylusTracer"})
    eth_getTransactionReceipt(tx)

Failures are reported as ``CaptureError`` with a ``kind`` the CLI can
show; nothing here retries.  The whole capture runs under a single
caller-supplied timeout and honours task cancellation.
"""
from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass
from typing import Any, List, Optional

import httpx

from stylus_trace.errors import CaptureError, CaptureErrorKind

log = logging.getLogger(__name__)

DEFAULT_TRACER = "stylusTracer"

_ids = itertools.count(1)


@dataclass(frozen=True)
class RawCapture:
    """Un-interpreted capture result."""
    transaction_hash: str
    events: List[Any]
    gas_used: Optional[int]
    tracer: str


# ─── JSON-RPC helpers ────────────────────────────────────────────────────────

async def _rpc_call(
    client: httpx.AsyncClient,
    rpc_url: str,
    method: str,
    params: List[Any],
    tx_hash: str,
) -> Any:
    body = {"jsonrpc": "2.0", "id": next(_ids), "method": method, "params": params}
    try:
        resp = await client.post(rpc_url, json=body)
    except httpx.TimeoutException as exc:
        raise CaptureError(
            f"{method} timed out: {exc}", CaptureErrorKind.TIMEOUT, tx_hash,
        ) from exc
    except httpx.TransportError as exc:
        raise CaptureError(
            f"cannot reach {rpc_url}: {exc}", CaptureErrorKind.CONNECTIVITY, tx_hash,
        ) from exc

    if resp.status_code >= 400:
        raise CaptureError(
            f"{method} returned HTTP {resp.status_code}",
            CaptureErrorKind.RPC_ERROR, tx_hash,
        )
    try:
        payload = resp.json()
    except ValueError as exc:
        raise CaptureError(
            f"{method} returned a non-JSON body",
            CaptureErrorKind.MALFORMED_TRACE, tx_hash,
        ) from exc

    if not isinstance(payload, dict):
        raise CaptureError(
            f"{method} returned an unexpected payload",
            CaptureErrorKind.MALFORMED_TRACE, tx_hash,
        )
    error = payload.get("error")
    if error:
        message = str(error.get("message", error)) if isinstance(error, dict) else str(error)
        kind = (
            CaptureErrorKind.UNKNOWN_TRANSACTION
            if "not found" in message.lower()
            else CaptureErrorKind.RPC_ERROR
        )
        raise CaptureError(f"{method}: {message}", kind, tx_hash)
    return payload.get("result")


def _parse_quantity(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, int):
        return value
    try:
        return int(str(value), 16)
    except ValueError:
        return None


async def _capture(
    client: httpx.AsyncClient,
    tx_hash: str,
    rpc_url: str,
    tracer: str,
) -> RawCapture:
    receipt = await _rpc_call(
        client, rpc_url, "eth_getTransactionReceipt", [tx_hash], tx_hash,
    )
    if receipt is None:
        raise CaptureError(
            "transaction receipt not found",
            CaptureErrorKind.UNKNOWN_TRANSACTION, tx_hash,
        )
    gas_used = _parse_quantity(receipt.get("gasUsed")) if isinstance(receipt, dict) else None

    events = await _rpc_call(
        client, rpc_url, "debug_traceTransaction",
        [tx_hash, {"tracer": tracer}], tx_hash,
    )
    if not isinstance(events, list):
        raise CaptureError(
            f"{tracer} returned {type(events).__name__}, expected a list "
            f"(is the node running with Stylus tracing enabled?)",
            CaptureErrorKind.MALFORMED_TRACE, tx_hash,
        )
    log.info("captured %d top-level events for %s", len(events), tx_hash)
    return RawCapture(
        transaction_hash=tx_hash,
        events=events,
        gas_used=gas_used,
        tracer=tracer,
    )


# ─── Public API ──────────────────────────────────────────────────────────────

async def capture_trace(
    tx_hash: str,
    rpc_url: str,
    *,
    tracer: str = DEFAULT_TRACER,
    timeout: float = 30.0,
    client: Optional[httpx.AsyncClient] = None,
) -> RawCapture:
    """
    Fetch the raw stylusTracer trace and receipt for *tx_hash*.

    Parameters
    ----------
    tx_hash : str
        Transaction hash (``0x``-prefixed).
    rpc_url : str
        Node JSON-RPC endpoint.
    tracer : str
        Tracer name passed to ``debug_traceTransaction``.
    timeout : float
        Overall deadline in seconds for the capture.
    client : httpx.AsyncClient, optional
        Injected client (tests use ``httpx.MockTransport``).

    Raises
    ------
    CaptureError
    """
    log.info("capturing %s from %s (tracer=%s)", tx_hash, rpc_url, tracer)

    async def run(c: httpx.AsyncClient) -> RawCapture:
        try:
            return await asyncio.wait_for(_capture(c, tx_hash, rpc_url, tracer), timeout)
        except asyncio.TimeoutError as exc:
            raise CaptureError(
                f"capture exceeded {timeout:.1f}s",
                CaptureErrorKind.TIMEOUT, tx_hash,
            ) from exc

    if client is not None:
        return await run(client)
    async with httpx.AsyncClient(timeout=timeout) as owned:
        return await run(owned)


def capture_trace_sync(tx_hash: str, rpc_url: str, **kwargs: Any) -> RawCapture:
    """Blocking wrapper for CLI use."""
    return asyncio.run(capture_trace(tx_hash, rpc_url, **kwargs))
