"""
Relay client
Posts pre-signed, base64-encoded transactions to a relay service that
forwards them to the network in exchange for a tip
"""

import asyncio
from typing import Any, Dict, List, Optional

import aiohttp

from organic_trader.core.config import RelayConfig
from organic_trader.core.logger import get_logger


logger = get_logger(__name__)


class RelayError(Exception):
    """Relay could not be reached or returned an unreadable response"""


class RelayClient:
    """
    HTTP client for the relay submit-batch endpoint

    Request body:  {"id", "method", "transactions": [base64 tx, ...]}
    Response body: {"success": bool, "data": {"signatures": [...]}, "message": str}

    Retrying is left to the caller so each strategy owns its own policy.
    """

    def __init__(self, config: RelayConfig):
        self.config = config
        self._session: Optional[aiohttp.ClientSession] = None

        if not config.api_key:
            logger.warning("relay_api_key_missing", url=config.url)

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.timeout_s)
            )
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def submit_batch(self, transactions_b64: List[str]) -> Dict[str, Any]:
        """
        Submit transactions to the relay

        Args:
            transactions_b64: Serialized, signed, base64 transactions

        Returns:
            Parsed relay response

        Raises:
            RelayError: On transport failure or a non-JSON response
        """
        payload = {
            "id": 1,
            "method": "POST",
            "transactions": transactions_b64
        }
        headers = {
            "Content-Type": "application/json",
            "Authorization": self.config.api_key
        }

        session = await self._get_session()
        try:
            async with session.post(self.config.url, json=payload, headers=headers) as response:
                result = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise RelayError(f"Relay request failed: {e}") from e

        if not isinstance(result, dict):
            raise RelayError(f"Unexpected relay response: {result!r}")

        logger.debug("relay_response", success=result.get("success"), message=result.get("message"))
        return result
