"""Starknet oracle client for the fiat/crypto exchange rate."""

import logging
from decimal import Decimal
from typing import Any, List, Optional

import httpx
from web3 import Web3

from qrpay.core.errors import UpstreamError, UpstreamTimeoutError

logger = logging.getLogger(__name__)

# Starknet selectors are keccak-256 truncated to 250 bits
_SELECTOR_MASK = (1 << 250) - 1


def starknet_selector(function_name: str) -> str:
    """Compute the entry point selector for a Cairo function name."""
    digest = int.from_bytes(Web3.keccak(text=function_name), "big")
    return hex(digest & _SELECTOR_MASK)


class StarknetOracleClient:
    """JSON-RPC client for the on-chain quote contract."""

    def __init__(
        self,
        rpc_url: str,
        oracle_address: str,
        quote_function: str = "quote_ars_to_usdt",
        scale: int = 10 ** 18,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.rpc_url = rpc_url
        self.oracle_address = oracle_address
        self.quote_function = quote_function
        self.scale = scale
        self.timeout = timeout
        self._transport = transport
        self._request_id = 0

    async def _call(self, function_name: str, calldata: List[str]) -> List[Any]:
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": "starknet_call",
            "params": [
                {
                    "contract_address": self.oracle_address,
                    "entry_point_selector": starknet_selector(function_name),
                    "calldata": calldata,
                },
                "latest",
            ],
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(self.rpc_url, json=payload)
                resp.raise_for_status()
                data = resp.json()
        except httpx.TimeoutException as e:
            raise UpstreamTimeoutError(
                f"Oracle call {function_name} timed out after {self.timeout}s"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise UpstreamError(f"Oracle call {function_name} failed: {e}") from e

        if data.get("error"):
            message = data["error"].get("message", data["error"])
            raise UpstreamError(f"Oracle RPC error: {message}")

        result = data.get("result")
        if not isinstance(result, list) or not result:
            raise UpstreamError(f"Oracle returned an empty result for {function_name}")
        return result

    async def fetch_rate(self) -> Decimal:
        """
        Quote one fiat unit and return the rate as fiat per crypto unit.

        The contract returns the crypto amount for the scaled fiat input as a
        fixed-point felt. A zero quote yields a rate of 0, which callers must
        reject.

        Raises:
            UpstreamTimeoutError: If the RPC does not answer within the timeout
            UpstreamError: On transport, HTTP or RPC errors
        """
        result = await self._call(self.quote_function, [hex(self.scale)])

        try:
            crypto_per_fiat = Decimal(int(str(result[0]), 16)) / Decimal(self.scale)
        except ValueError as e:
            raise UpstreamError(f"Oracle returned a non-numeric felt: {result[0]!r}") from e

        if crypto_per_fiat <= 0:
            logger.warning(f"Oracle {self.oracle_address} quoted zero for one fiat unit")
            return Decimal("0")

        rate = Decimal(1) / crypto_per_fiat
        logger.debug(f"Oracle rate: 1 crypto = {rate} fiat (raw={result[0]})")
        return rate
