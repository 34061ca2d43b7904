"""Read-only JSON-RPC client for the ClawVault escrow contract.

Every view call is an ``eth_call`` against the configured RPC endpoint,
bounded by a timeout and retried with exponential backoff (tenacity) on
transport errors, timeouts and 5xx responses. Anything that still fails is
raised as LedgerUnreachableError.
"""

from __future__ import annotations

import itertools
from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from clawvault.domain.exceptions import EscrowNotFoundError, LedgerUnreachableError
from clawvault.ledger import abi
from clawvault.logging_config import get_logger

logger = get_logger(__name__)

ZERO_ADDRESS = "0x" + "00" * 20


class _TransientRpcError(Exception):
    """A failure worth retrying (5xx, transport error, timeout)."""


class ContractClient:
    """Typed view calls on the escrow contract."""

    def __init__(
        self,
        rpc_url: str,
        contract_address: str,
        timeout: float = 10.0,
        max_attempts: int = 3,
        backoff: float = 0.5,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.contract_address = contract_address
        self._max_attempts = max_attempts
        self._backoff = backoff
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            timeout=timeout,
            headers={"Content-Type": "application/json"},
        )
        self._ids = itertools.count(1)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    async def get_escrow(self, escrow_id: int) -> dict:
        data = await self.call(abi.GET_ESCROW, escrow_id)
        if not data:
            raise EscrowNotFoundError(str(escrow_id))
        try:
            escrow = abi.decode_escrow(data)
        except abi.AbiDecodeError as err:
            raise LedgerUnreachableError(
                f"Malformed getEscrow response: {err}", method=abi.GET_ESCROW
            ) from err
        # Unknown ids come back as an all-zero struct.
        if escrow["buyer"] == ZERO_ADDRESS:
            raise EscrowNotFoundError(str(escrow_id))
        return escrow

    async def get_stats(self) -> tuple[int, int, int, int]:
        """(total created, total volume, total fees, next id), raw units."""
        data = await self.call(abi.GET_STATS)
        return self._decode(abi.GET_STATS, lambda: abi.decode_uints(data, 4))  # type: ignore[return-value]

    async def fee_bps(self) -> int:
        data = await self.call(abi.FEE_BPS)
        return self._decode(abi.FEE_BPS, lambda: abi.decode_uint(abi.word_at(data, 0)))

    async def next_escrow_id(self) -> int:
        data = await self.call(abi.NEXT_ESCROW_ID)
        return self._decode(abi.NEXT_ESCROW_ID, lambda: abi.decode_uint(abi.word_at(data, 0)))

    async def can_reclaim(self, escrow_id: int) -> bool:
        data = await self.call(abi.CAN_RECLAIM, escrow_id)
        return self._decode(abi.CAN_RECLAIM, lambda: abi.decode_bool(abi.word_at(data, 0)))

    async def can_claim_by_timeout(self, escrow_id: int) -> bool:
        data = await self.call(abi.CAN_CLAIM_BY_TIMEOUT, escrow_id)
        return self._decode(
            abi.CAN_CLAIM_BY_TIMEOUT, lambda: abi.decode_bool(abi.word_at(data, 0))
        )

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def call(self, signature: str, *args: object) -> bytes:
        """``eth_call`` the contract and return the raw return data."""
        if not self.contract_address:
            raise LedgerUnreachableError("escrow_contract_address is not configured", signature)
        params = [{"to": self.contract_address, "data": abi.encode_call(signature, *args)}, "latest"]
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(_TransientRpcError),
                stop=stop_after_attempt(self._max_attempts),
                wait=wait_exponential(multiplier=self._backoff, max=5),
                reraise=True,
            ):
                with attempt:
                    result = await self._rpc("eth_call", params, signature)
        except _TransientRpcError as err:
            logger.error(
                "ledger.rpc_unreachable",
                method=signature,
                attempts=self._max_attempts,
                error=str(err),
            )
            raise LedgerUnreachableError(
                f"Ledger unreachable after {self._max_attempts} attempts: {err}", signature
            ) from err
        if not isinstance(result, str):
            return b""
        return self._decode(signature, lambda: abi.hex_to_bytes(result))

    async def _rpc(self, method: str, params: list, label: str) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            resp = await self._http.post(self.rpc_url, json=payload)
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            logger.warning("ledger.rpc_transport_error", method=label, error=str(exc))
            raise _TransientRpcError(str(exc)) from exc

        if resp.status_code >= 500:
            logger.warning("ledger.rpc_server_error", method=label, status=resp.status_code)
            raise _TransientRpcError(f"RPC server error {resp.status_code}")
        if not resp.is_success:
            raise LedgerUnreachableError(f"RPC rejected request: HTTP {resp.status_code}", label)

        try:
            body = resp.json()
        except ValueError as err:
            raise LedgerUnreachableError("RPC returned a non-JSON body", label) from err

        if body.get("error"):
            error = body["error"]
            message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            logger.warning("ledger.rpc_error", method=label, error=message)
            raise LedgerUnreachableError(f"RPC error: {message}", label)
        return body.get("result")

    @staticmethod
    def _decode(method: str, fn):  # noqa: ANN001, ANN205
        try:
            return fn()
        except abi.AbiDecodeError as err:
            raise LedgerUnreachableError(f"Malformed {method} response: {err}", method) from err
