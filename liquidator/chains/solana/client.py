"""Solana JSON-RPC client with fallback support."""
import logging
import ssl
from typing import Any

import aiohttp
import certifi

from ...config import ChainConfig

logger = logging.getLogger(__name__)

# getMultipleAccounts accepts at most this many keys per request.
MAX_MULTIPLE_ACCOUNTS = 100


class RpcError(RuntimeError):
    """The node answered with a JSON-RPC error object."""

    def __init__(self, error: dict[str, Any]) -> None:
        super().__init__(f"RPC Error: {error}")
        self.code = error.get("code")
        self.data = error.get("data")


class SolanaClient:
    """Solana RPC client with automatic endpoint fallback."""

    def __init__(self, config: ChainConfig) -> None:
        self.endpoints = list(config.rpc_endpoints)
        self.timeout = config.rpc_timeout
        self.commitment = config.commitment
        self.current_rpc_index = 0

    async def rpc_call(self, method: str, params: list[Any]) -> Any:
        """Make RPC call with fallback to alternative endpoints.

        A JSON-RPC error from a healthy node is returned to the caller as
        :class:`RpcError` without trying the other endpoints; only transport
        failures rotate.
        """
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}

        ssl_context = ssl.create_default_context(cafile=certifi.where())

        last_error: Exception | None = None
        for attempt in range(len(self.endpoints)):
            rpc_index = (self.current_rpc_index + attempt) % len(self.endpoints)
            rpc_url = self.endpoints[rpc_index]

            try:
                connector = aiohttp.TCPConnector(ssl=ssl_context)
                async with aiohttp.ClientSession(connector=connector) as session:
                    async with session.post(
                        rpc_url,
                        json=payload,
                        timeout=aiohttp.ClientTimeout(total=self.timeout),
                    ) as response:
                        result = await response.json()
            except Exception as e:
                last_error = e
                logger.warning("RPC endpoint %s failed: %s", rpc_url, e)
                if attempt < len(self.endpoints) - 1:
                    logger.info("Trying next endpoint...")
                continue

            if rpc_index != self.current_rpc_index:
                logger.info("Switched to RPC endpoint: %s", rpc_url)
                self.current_rpc_index = rpc_index

            if "error" in result:
                raise RpcError(result["error"])
            return result.get("result")

        raise RuntimeError(f"All RPC endpoints failed. Last error: {last_error}")

    async def get_health(self) -> str:
        return await self.rpc_call("getHealth", [])

    async def get_slot(self) -> int:
        return int(await self.rpc_call("getSlot", [{"commitment": self.commitment}]))

    async def get_multiple_accounts(
        self, addresses: list[str]
    ) -> list[dict[str, Any] | None]:
        """Fetch decoded account data; missing accounts come back as ``None``."""
        accounts: list[dict[str, Any] | None] = []
        for start in range(0, len(addresses), MAX_MULTIPLE_ACCOUNTS):
            chunk = addresses[start : start + MAX_MULTIPLE_ACCOUNTS]
            result = await self.rpc_call(
                "getMultipleAccounts",
                [chunk, {"encoding": "jsonParsed", "commitment": self.commitment}],
            )
            accounts.extend((result or {}).get("value", []))
        return accounts

    async def get_program_accounts(
        self,
        program_id: str,
        filters: list[dict[str, Any]] | None = None,
        with_data: bool = True,
    ) -> list[dict[str, Any]]:
        """List accounts owned by ``program_id``; ``with_data=False`` returns keys only."""
        options: dict[str, Any] = {
            "encoding": "jsonParsed",
            "commitment": self.commitment,
            "filters": filters or [],
        }
        if not with_data:
            options["dataSlice"] = {"offset": 0, "length": 0}
        result = await self.rpc_call("getProgramAccounts", [program_id, options])
        return result or []

    async def simulate_transaction(self, payload: str) -> dict[str, Any]:
        result = await self.rpc_call(
            "simulateTransaction",
            [
                payload,
                {
                    "encoding": "base64",
                    "commitment": self.commitment,
                    "replaceRecentBlockhash": False,
                },
            ],
        )
        return (result or {}).get("value", {})

    async def send_transaction(self, payload: str) -> str:
        """Broadcast a signed transaction; preflight already ran as a simulation."""
        return await self.rpc_call(
            "sendTransaction",
            [
                payload,
                {
                    "encoding": "base64",
                    "skipPreflight": True,
                    "maxRetries": 0,
                },
            ],
        )
