"""
Solana JSON-RPC client
Thin aiohttp adapter exposing the calls the delivery layer needs:
latest blockhash, send with options, send and confirm
"""

import asyncio
import base64
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import aiohttp
from solders.hash import Hash
from solders.transaction import Transaction

from organic_trader.core.config import RPCConfig
from organic_trader.core.logger import get_logger
from organic_trader.core.metrics import get_metrics, LatencyTimer


logger = get_logger(__name__)
metrics = get_metrics()


class RPCError(Exception):
    """RPC endpoint returned an error or could not be reached"""


@dataclass
class SendOptions:
    """Options forwarded to sendTransaction"""
    skip_preflight: bool = False
    preflight_commitment: str = "confirmed"
    max_retries: Optional[int] = None

    def to_params(self) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "skipPreflight": self.skip_preflight,
            "preflightCommitment": self.preflight_commitment,
            "encoding": "base64",
        }
        if self.max_retries is not None:
            params["maxRetries"] = self.max_retries
        return params


class SolanaRPCClient:
    """
    Solana HTTP JSON-RPC client

    Usage:
        client = SolanaRPCClient(RPCConfig(url="https://api.mainnet-beta.solana.com"))
        blockhash = await client.latest_blockhash()
        signature = await client.send_with_config(signed_tx, SendOptions(skip_preflight=True))
        await client.close()
    """

    def __init__(self, config: RPCConfig):
        self.config = config
        self._session: Optional[aiohttp.ClientSession] = None
        self._request_id = 0

        logger.info("solana_rpc_client_initialized", url=config.url, commitment=config.commitment)

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

    async def call(self, method: str, params: List[Any]) -> Any:
        """
        Make a JSON-RPC call and return its "result"

        Raises:
            RPCError: On transport failure or an RPC error payload
        """
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params
        }

        session = await self._get_session()
        try:
            with LatencyTimer(metrics, "rpc_call", labels={"method": method}):
                async with session.post(self.config.url, json=payload) as response:
                    result = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            metrics.increment_counter("rpc_errors", labels={"method": method})
            raise RPCError(f"{method} request failed: {e}") from e

        if "error" in result:
            metrics.increment_counter("rpc_errors", labels={"method": method})
            error = result["error"]
            message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            raise RPCError(f"RPC error: {message}")

        return result.get("result")

    async def latest_blockhash(self) -> Hash:
        result = await self.call("getLatestBlockhash", [{"commitment": self.config.commitment}])
        return Hash.from_string(result["value"]["blockhash"])

    async def send_with_config(self, tx: Transaction, options: SendOptions) -> str:
        """Submit a signed transaction, returns its signature"""
        tx_base64 = base64.b64encode(bytes(tx)).decode('utf-8')
        return await self.call("sendTransaction", [tx_base64, options.to_params()])

    async def send(self, tx: Transaction) -> str:
        return await self.send_with_config(
            tx, SendOptions(preflight_commitment=self.config.commitment)
        )

    async def send_and_confirm(self, tx: Transaction) -> str:
        """
        Submit a transaction and poll until it reaches the configured commitment

        Raises:
            RPCError: If the transaction failed on chain
            TimeoutError: If it is not confirmed in time
        """
        signature = await self.send(tx)
        await self.wait_for_confirmation(signature)
        return signature

    async def wait_for_confirmation(self, signature: str) -> Dict[str, Any]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.confirmation_timeout_s
        wanted = ("confirmed", "finalized") if self.config.commitment != "finalized" else ("finalized",)

        while loop.time() < deadline:
            status = await self.get_signature_status(signature)
            if status:
                if status.get("err"):
                    raise RPCError(f"Transaction {signature} failed: {status['err']}")
                if status.get("confirmationStatus") in wanted:
                    return status
            await asyncio.sleep(self.config.confirmation_poll_interval_s)

        metrics.increment_counter("transaction_confirmations_timeout")
        raise TimeoutError(
            f"Transaction {signature} not confirmed after {self.config.confirmation_timeout_s}s"
        )

    async def get_signature_status(self, signature: str) -> Optional[Dict[str, Any]]:
        result = await self.call(
            "getSignatureStatuses",
            [[signature], {"searchTransactionHistory": True}]
        )
        value = (result or {}).get("value") or []
        return value[0] if value else None
