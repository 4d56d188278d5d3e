"""JSON-RPC transport for substrate nodes.

The client in this module is the default connection handle used by
:class:`polkapay.connection.ConnectionManager`. It speaks plain JSON-RPC 2.0
over HTTP(S) and exposes only what the manager needs to verify liveness: the
finalized head and its header. Storage reads, fees and submission go through
the typed surface, not here.
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any, Dict, Optional

import requests
from requests import RequestException, Response


logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0


class RPCError(RuntimeError):
    """Raised when the node responds with a JSON-RPC error object."""

    def __init__(self, code: int, message: str, data: Any = None) -> None:
        detail = f"RPC error {code}: {message}"
        if data:
            detail = f"{detail} ({data})"
        super().__init__(detail)
        self.code = code
        self.message = message
        self.data = data


class RPCTransportError(RuntimeError):
    """Raised when the RPC endpoint is unreachable or returns malformed data."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def format_rpc_hint(error_obj: dict[str, Any] | RPCError | None) -> str | None:
    """Return a human-friendly hint for common substrate JSON-RPC errors."""

    if error_obj is None:
        return None

    code = None
    message = ""
    if isinstance(error_obj, RPCError):
        code = error_obj.code
        message = f"{error_obj.message} {error_obj.data or ''}"
    elif isinstance(error_obj, dict):
        code = error_obj.get("code")
        message = f"{error_obj.get('message', '')} {error_obj.get('data', '')}"
    lowered = message.lower()

    if code == 1010 and "pay some fees" in lowered:
        return (
            "The sender cannot pay the transaction fee. Fund the account with the native "
            "asset (DOT on Polkadot AssetHub) before sending asset transfers."
        )
    if code == 1010 and ("outdated" in lowered or "stale" in lowered):
        return "The nonce was already used; wait for pending transactions to finalize and retry."
    if code == 1010:
        return "The node rejected the transaction as invalid; check the destination, amount and sender balance."
    if code == 1011:
        return "The node could not validate the transaction; it may be waiting on an earlier nonce."
    if code == 1012:
        return "The transaction is temporarily banned by the node; wait a few blocks before resubmitting."
    if code == 1013:
        return "The transaction is already in the pool; watch the existing submission instead of resending."
    if code == 1014:
        return "A transaction with the same nonce and higher priority is pending; raise the tip or wait."
    if code == -32601:
        return "The node does not expose this RPC method; check that the endpoint is a full substrate node."
    return None


class SubstrateRPCClient:
    """Typed JSON-RPC client for substrate-based nodes.

    Each helper maps directly to a node RPC method and returns the parsed
    ``result`` member. The client also satisfies the connection handle
    interface (:meth:`get_finalized_block_header` and :meth:`destroy`).
    """

    def __init__(self, endpoint: str, timeout: float = DEFAULT_TIMEOUT_SECONDS) -> None:
        self.endpoint = endpoint
        self.timeout = timeout
        self._session: requests.Session | None = requests.Session()

    @property
    def closed(self) -> bool:
        return self._session is None

    def call(self, method: str, params: Optional[list[Any]] = None) -> Any:
        """Perform a JSON-RPC request."""

        if self._session is None:
            raise RPCTransportError("RPC client has been destroyed; create a new connection")

        payload = {
            "jsonrpc": "2.0",
            "id": str(uuid.uuid4()),
            "method": method,
            "params": params or [],
        }
        logger.debug("RPC call %s params=%s", method, params)
        try:
            response = self._session.post(
                self.endpoint,
                data=json.dumps(payload),
                headers={"content-type": "application/json"},
                timeout=self.timeout,
            )
        except RequestException as exc:
            logger.error(
                "RPC connection failed: %s",
                exc,
                exc_info=logger.isEnabledFor(logging.DEBUG),
            )
            raise RPCTransportError(
                f"RPC connection to {self.endpoint} failed. Ensure the node is reachable and "
                "POLKAPAY_RPC_ENDPOINT (or ~/.polkapay.yaml) points to an HTTP(S) RPC endpoint."
            ) from exc
        try:
            self._raise_for_status(response)
        except requests.HTTPError as exc:
            raise RPCTransportError(
                "RPC server returned an HTTP error; check the endpoint URL and POLKAPAY_RPC_* settings.",
                status_code=response.status_code,
            ) from exc
        try:
            result = response.json()
        except ValueError as exc:
            logger.debug("RPC JSON parse error: %s", response.text, exc_info=True)
            raise RPCTransportError("RPC server returned malformed JSON") from exc
        if not isinstance(result, dict):
            raise RPCTransportError("RPC server returned an unexpected payload")
        if result.get("error"):
            error = result["error"]
            raise RPCError(
                error.get("code", -1), error.get("message", "unknown"), error.get("data")
            )
        return result.get("result")

    def _raise_for_status(self, response: Response) -> None:
        if not response.ok:
            logger.error("RPC HTTP error %s from %s", response.status_code, response.url)
            logger.debug("RPC error body: %s", response.text)
            if response.status_code == 429:
                raise RPCTransportError(
                    "Rate limited by the RPC provider (429). Use a dedicated endpoint or slow down requests.",
                    status_code=response.status_code,
                )
        response.raise_for_status()

    # Connection handle interface ------------------------------------------

    def get_finalized_block_header(self) -> Dict[str, Any]:
        """Return ``{"number": int, "hash": str}`` for the finalized head."""

        block_hash = self.chain_get_finalized_head()
        header = self.chain_get_header(block_hash)
        if not isinstance(header, dict) or "number" not in header:
            raise RPCTransportError(f"Node returned no header for finalized block {block_hash}")
        return {"number": _parse_block_number(header["number"]), "hash": block_hash}

    def destroy(self) -> None:
        """Release the underlying HTTP session."""

        if self._session is not None:
            self._session.close()
            self._session = None

    # Convenience wrappers -------------------------------------------------

    def chain_get_finalized_head(self) -> str:
        return self.call("chain_getFinalizedHead")

    def chain_get_header(self, block_hash: str | None = None) -> Dict[str, Any]:
        return self.call("chain_getHeader", [block_hash] if block_hash else [])


def _parse_block_number(raw: Any) -> int:
    if isinstance(raw, int):
        return raw
    text = str(raw)
    return int(text, 16) if text.startswith("0x") else int(text)


def connect(endpoint: str, timeout: float = DEFAULT_TIMEOUT_SECONDS) -> SubstrateRPCClient:
    """Transport factory used by the connection manager."""

    return SubstrateRPCClient(endpoint, timeout=timeout)
