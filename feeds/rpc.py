"""
Minimal Solana JSON-RPC client over HTTP.

Uses raw JSON-RPC via aiohttp (no solana-py dependency). Only the
calls the monitors need: getTransaction (jsonParsed) and getSlot.
"""
import logging

import aiohttp

from feeds.constants import COMMITMENT, REQUEST_TIMEOUT_S, RPC_RATE_LIMIT_CODE

logger = logging.getLogger("solana_rpc")


class RpcError(Exception):
    """JSON-RPC error object, bad HTTP status or unreadable body."""

    def __init__(self, message: str, code: int | None = None):
        super().__init__(message)
        self.code = code


class RateLimitedError(RpcError):
    """Provider answered 429 (HTTP status or JSON-RPC error code)."""


class SolanaRpcClient:
    """Async Solana HTTP RPC client with a lazily created session."""

    def __init__(self, http_url: str, timeout: float = REQUEST_TIMEOUT_S):
        self.http_url = http_url
        self.timeout = timeout
        self._session: aiohttp.ClientSession | None = None
        self._request_id = 0

    async def _ensure_session(self):
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                connector=aiohttp.TCPConnector(limit_per_host=3),
            )

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()

    async def call(self, method: str, params: list | None = None):
        """POST one JSON-RPC request and return its ``result`` (may be None)."""
        await self._ensure_session()
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params or [],
        }
        async with self._session.post(self.http_url, json=payload) as resp:
            if resp.status == RPC_RATE_LIMIT_CODE:
                raise RateLimitedError(f"{method}: HTTP 429", code=RPC_RATE_LIMIT_CODE)
            if resp.status != 200:
                raise RpcError(f"{method}: HTTP {resp.status}", code=resp.status)
            try:
                data = await resp.json(content_type=None)
            except ValueError as e:
                raise RpcError(f"{method}: invalid JSON body ({e})") from e

        return self._unwrap(method, data)

    @staticmethod
    def _unwrap(method: str, data):
        if not isinstance(data, dict):
            raise RpcError(f"{method}: unexpected response {type(data).__name__}")
        error = data.get("error")
        if error is not None:
            code = error.get("code") if isinstance(error, dict) else None
            message = error.get("message", "") if isinstance(error, dict) else str(error)
            if code == RPC_RATE_LIMIT_CODE:
                raise RateLimitedError(f"{method}: {message}", code=code)
            raise RpcError(f"{method}: {message} (code={code})", code=code)
        return data.get("result")

    async def get_transaction(self, signature: str) -> dict | None:
        """Fetch a confirmed transaction with jsonParsed encoding."""
        return await self.call(
            "getTransaction",
            [
                signature,
                {
                    "encoding": "jsonParsed",
                    "commitment": COMMITMENT,
                    "maxSupportedTransactionVersion": 0,
                },
            ],
        )

    async def get_slot(self) -> int:
        return await self.call("getSlot", [{"commitment": COMMITMENT}])
