"""
JSON-RPC submitter for EVM-style backends.

Maps transport failures, HTTP status codes and JSON-RPC error objects onto
tagged OperationErrors at the boundary, so nothing above this layer has to
inspect backend error text.
"""

import asyncio
import itertools
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, List, Optional

import httpx

from txguard.core.policy.fee_policy import SubmissionRequest
from txguard.core.recovery.errors import (
    AttemptTimeoutError,
    InsufficientFundsError,
    NetworkError,
    OperationError,
    RateLimitError,
    TransactionRevertedError,
    UnknownOperationError,
    UserDeclinedError,
)

from .base import Submitter

if TYPE_CHECKING:
    from txguard.config import Settings

logger = logging.getLogger(__name__)

# JSON-RPC / EIP-1193 error codes
USER_REJECTED_CODE = 4001
EXECUTION_REVERTED_CODE = 3
LIMIT_EXCEEDED_CODE = -32005
SERVER_ERROR_CODE = -32000
INTERNAL_ERROR_CODE = -32603


@dataclass
class RpcSubmitterConfig:
    rpc_url: str
    timeout_seconds: float = 30.0
    receipt_poll_interval_seconds: float = 2.0
    receipt_timeout_seconds: float = 120.0
    wait_for_receipt: bool = True

    @classmethod
    def from_settings(cls, settings: Optional["Settings"] = None) -> "RpcSubmitterConfig":
        if settings is None:
            from txguard.config import settings
        return cls(
            rpc_url=settings.rpc_url,
            timeout_seconds=settings.rpc_timeout_seconds,
            receipt_poll_interval_seconds=settings.receipt_poll_interval_seconds,
            receipt_timeout_seconds=settings.receipt_timeout_seconds,
        )


def translate_rpc_error(error: Dict[str, Any]) -> OperationError:
    """Turn a JSON-RPC error object into a tagged OperationError."""
    code = error.get("code")
    message = str(error.get("message") or "RPC error")
    lowered = message.lower()
    details = {"rpc_code": code}
    if "data" in error:
        details["rpc_data"] = error["data"]

    if code == USER_REJECTED_CODE or "user rejected" in lowered or "user denied" in lowered:
        return UserDeclinedError(message, details=details)
    if code in (LIMIT_EXCEEDED_CODE, 429) or "rate limit" in lowered:
        return RateLimitError(message, details=details)
    if "insufficient funds" in lowered:
        return InsufficientFundsError(message, details=details)
    if code == EXECUTION_REVERTED_CODE or "execution reverted" in lowered:
        return TransactionRevertedError(message, details=details)
    if code == INTERNAL_ERROR_CODE:
        return NetworkError(message, details=details)
    return UnknownOperationError(message, details=details)


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


class RpcSubmitter(Submitter):
    """
    Submits transactions through ``eth_sendTransaction`` and optionally
    polls for the receipt.

    The submitter owns its httpx client unless one is passed in.
    """

    name = "rpc"

    def __init__(
        self,
        config: Optional[RpcSubmitterConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config or RpcSubmitterConfig.from_settings()
        if not self.config.rpc_url:
            raise ValueError("rpc_url is required")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=self.config.timeout_seconds)
        self._ids = itertools.count(1)

    async def _call(self, method: str, params: List[Any]) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": next(self._ids),
        }

        try:
            response = await self._client.post(self.config.rpc_url, json=payload)
        except httpx.TimeoutException as exc:
            raise AttemptTimeoutError(
                f"{method} timed out", timeout_seconds=self.config.timeout_seconds
            ) from exc
        except httpx.TransportError as exc:
            raise NetworkError(f"{method} transport error: {exc}") from exc

        if response.status_code == 429:
            raise RateLimitError(
                f"{method} rate limited",
                retry_after=_parse_retry_after(response.headers.get("Retry-After")),
            )
        if response.status_code >= 500:
            raise NetworkError(
                f"{method} failed with HTTP {response.status_code}",
                details={"status_code": response.status_code},
            )
        if response.status_code >= 400:
            raise UnknownOperationError(
                f"{method} failed with HTTP {response.status_code}",
                details={"status_code": response.status_code},
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise UnknownOperationError(f"{method} returned malformed JSON") from exc

        if not isinstance(body, dict):
            raise UnknownOperationError(f"{method} returned an unexpected response")
        if body.get("error"):
            raise translate_rpc_error(body["error"])

        return body.get("result")

    async def get_gas_price(self) -> int:
        """Current baseline fee per unit in wei."""
        result = await self._call("eth_gasPrice", [])
        return int(result, 16)

    async def submit(self, request: SubmissionRequest) -> Dict[str, Any]:
        tx = dict(request.payload)
        if request.fee_per_unit is not None:
            tx["gasPrice"] = hex(request.fee_per_unit)

        tx_hash = await self._call("eth_sendTransaction", [tx])
        logger.info(f"Submitted transaction {tx_hash}")

        if not self.config.wait_for_receipt:
            return {"transactionHash": tx_hash}
        return await self.wait_for_receipt(tx_hash)

    async def wait_for_receipt(self, tx_hash: str) -> Dict[str, Any]:
        """
        Poll for a receipt until it appears or the receipt timeout passes.

        Raises:
            TransactionRevertedError: If the receipt status is 0x0.
            AttemptTimeoutError: If no receipt arrives in time.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.receipt_timeout_seconds

        while True:
            receipt = await self._call("eth_getTransactionReceipt", [tx_hash])
            if receipt:
                if receipt.get("status") == "0x0":
                    raise TransactionRevertedError(
                        f"Transaction {tx_hash} reverted", tx_hash=tx_hash
                    )
                logger.info(f"Transaction {tx_hash} confirmed in block {receipt.get('blockNumber')}")
                return receipt

            if loop.time() >= deadline:
                raise AttemptTimeoutError(
                    f"No receipt for {tx_hash} after {self.config.receipt_timeout_seconds}s",
                    timeout_seconds=self.config.receipt_timeout_seconds,
                )
            await asyncio.sleep(self.config.receipt_poll_interval_seconds)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
