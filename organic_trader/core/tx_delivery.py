"""
Transaction Delivery for the organic trader
Signs swap instructions and gets them to the network through one of several
strategies trading latency for certainty

None of the strategies is idempotent. A DeliveryError means the delivery
state is unknown: the network may still have accepted the transaction.
"""

import asyncio
import base64
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from solders.hash import Hash
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction

from organic_trader.clients.relay_client import RelayClient
from organic_trader.clients.solana_rpc import SendOptions, SolanaRPCClient
from organic_trader.core.config import DeliveryConfig, RelayConfig
from organic_trader.core.logger import get_logger
from organic_trader.core.metrics import get_metrics, LatencyTimer


logger = get_logger(__name__)
metrics = get_metrics()


class DeliveryStrategy(Enum):
    STANDARD = "standard"                # send and wait for confirmation
    FAST = "fast"                        # skip preflight, no confirmation wait
    URGENT = "urgent"                    # preflight on, repeated full attempts
    RELAY = "relay"                      # tipped submission through the relay
    SKIP_SIMULATION = "skip_simulation"  # raw on-chain send, no retries


@dataclass
class DeliveryResult:
    """Successful delivery"""
    strategy: DeliveryStrategy
    signatures: List[str]
    attempts: int
    elapsed_ms: float

    @property
    def signature(self) -> str:
        return self.signatures[0]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "strategy": self.strategy.value,
            "signatures": self.signatures,
            "attempts": self.attempts,
            "elapsed_ms": self.elapsed_ms
        }


class DeliveryError(Exception):
    """All attempts of a strategy were exhausted"""

    def __init__(
        self,
        strategy: DeliveryStrategy,
        message: str,
        attempts: int,
        last_error: Optional[str] = None
    ):
        super().__init__(message)
        self.strategy = strategy
        self.attempts = attempts
        self.last_error = last_error


@dataclass
class _Attempts:
    count: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def last_error(self) -> Optional[str]:
        return self.errors[-1] if self.errors else None


class TransactionDelivery:
    """
    Tiered transaction submission

    Strategies:
    - standard: one send_and_confirm, failures surface immediately
    - fast: skip preflight, processed commitment, RPC-side retries, no wait
      (buys, where a miss is tolerable)
    - urgent: preflight on, more RPC-side retries, several full attempts with
      a fixed backoff (sells, where a miss is not acceptable)
    - relay: prepend a tip transfer and post the base64 transaction to the
      relay, retrying until it reports signatures
    - skip_simulation: send with preflight off and no retries, surfaces the
      raw on-chain error

    Usage:
        delivery = TransactionDelivery(rpc_client, relay_client, relay_config)
        result = await delivery.deliver(DeliveryStrategy.URGENT, keypair, instructions)
        print(result.signature, result.attempts)
    """

    def __init__(
        self,
        rpc_client: SolanaRPCClient,
        relay_client: Optional[RelayClient] = None,
        relay_config: Optional[RelayConfig] = None,
        config: Optional[DeliveryConfig] = None,
        sleep_func: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        """
        Args:
            rpc_client: RPC capability (latest_blockhash, send_*)
            relay_client: Relay client, required for the relay strategy
            relay_config: Relay tip and retry settings
            config: Retry policy of the RPC strategies
            sleep_func: Awaitable sleep used between attempts
        """
        self.rpc_client = rpc_client
        self.relay_client = relay_client
        self.relay_config = relay_config or RelayConfig()
        self.config = config or DeliveryConfig()
        self._sleep = sleep_func

        self._tip_account = Pubkey.from_string(self.relay_config.tip_account)

        logger.info(
            "transaction_delivery_initialized",
            relay_enabled=relay_client is not None,
            urgent_max_attempts=self.config.urgent_max_attempts,
            urgent_max_retries=self.config.urgent_max_retries
        )

    async def deliver(
        self,
        strategy: DeliveryStrategy,
        keypair: Keypair,
        instructions: Sequence[Instruction],
        recent_blockhash: Optional[Hash] = None
    ) -> DeliveryResult:
        """Dispatch to the strategy's send method"""
        senders = {
            DeliveryStrategy.STANDARD: self.send_standard,
            DeliveryStrategy.FAST: self.send_fast,
            DeliveryStrategy.URGENT: self.send_urgent,
            DeliveryStrategy.RELAY: self.send_relay,
            DeliveryStrategy.SKIP_SIMULATION: self.send_skip_simulation,
        }
        return await senders[strategy](keypair, instructions, recent_blockhash)

    def build_signed_transaction(
        self,
        keypair: Keypair,
        instructions: Sequence[Instruction],
        recent_blockhash: Hash
    ) -> Transaction:
        return Transaction.new_signed_with_payer(
            list(instructions), keypair.pubkey(), [keypair], recent_blockhash
        )

    def build_tip_instruction(self, payer: Pubkey) -> Instruction:
        return transfer(TransferParams(
            from_pubkey=payer,
            to_pubkey=self._tip_account,
            lamports=self.relay_config.tip_lamports
        ))

    async def send_standard(
        self,
        keypair: Keypair,
        instructions: Sequence[Instruction],
        recent_blockhash: Optional[Hash] = None
    ) -> DeliveryResult:
        """Send and block until confirmed, single attempt"""
        strategy = DeliveryStrategy.STANDARD
        start = time.perf_counter()

        with LatencyTimer(metrics, "tx_delivery", labels={"strategy": strategy.value}):
            blockhash = await self._resolve_blockhash(strategy, recent_blockhash)
            tx = self.build_signed_transaction(keypair, instructions, blockhash)
            try:
                signature = await self.rpc_client.send_and_confirm(tx)
            except Exception as e:
                raise self._failed(strategy, f"Transaction failed: {e}", _Attempts(1, [str(e)]))

        return self._succeeded(strategy, [str(signature)], 1, start)

    async def send_fast(
        self,
        keypair: Keypair,
        instructions: Sequence[Instruction],
        recent_blockhash: Optional[Hash] = None
    ) -> DeliveryResult:
        """Skip preflight and return as soon as the RPC accepts the transaction"""
        options = SendOptions(
            skip_preflight=True,
            preflight_commitment="processed",
            max_retries=self.config.fast_max_retries
        )
        return await self._send_once(DeliveryStrategy.FAST, keypair, instructions, recent_blockhash, options)

    async def send_skip_simulation(
        self,
        keypair: Keypair,
        instructions: Sequence[Instruction],
        recent_blockhash: Optional[Hash] = None
    ) -> DeliveryResult:
        """Bypass simulation entirely to observe the real on-chain outcome"""
        options = SendOptions(skip_preflight=True, preflight_commitment="finalized", max_retries=0)
        return await self._send_once(
            DeliveryStrategy.SKIP_SIMULATION, keypair, instructions, recent_blockhash, options
        )

    async def _send_once(
        self,
        strategy: DeliveryStrategy,
        keypair: Keypair,
        instructions: Sequence[Instruction],
        recent_blockhash: Optional[Hash],
        options: SendOptions
    ) -> DeliveryResult:
        start = time.perf_counter()

        with LatencyTimer(metrics, "tx_delivery", labels={"strategy": strategy.value}):
            blockhash = await self._resolve_blockhash(strategy, recent_blockhash)
            tx = self.build_signed_transaction(keypair, instructions, blockhash)

            if strategy is DeliveryStrategy.SKIP_SIMULATION:
                logger.info("sending_without_simulation", tx_size_bytes=len(bytes(tx)))

            try:
                signature = await self.rpc_client.send_with_config(tx, options)
            except Exception as e:
                raise self._failed(strategy, f"{strategy.value} transaction failed: {e}", _Attempts(1, [str(e)]))

        return self._succeeded(strategy, [str(signature)], 1, start)

    async def send_urgent(
        self,
        keypair: Keypair,
        instructions: Sequence[Instruction],
        recent_blockhash: Optional[Hash] = None
    ) -> DeliveryResult:
        """
        Keep resending until the RPC accepts the transaction

        Each attempt asks the RPC for urgent_max_retries network retries with
        preflight verification on. Up to urgent_max_attempts attempts are made
        with urgent_backoff_ms between them.

        Raises:
            DeliveryError: Carrying the last observed error once every attempt failed
        """
        strategy = DeliveryStrategy.URGENT
        start = time.perf_counter()
        options = SendOptions(
            skip_preflight=False,
            preflight_commitment="processed",
            max_retries=self.config.urgent_max_retries
        )
        max_attempts = self.config.urgent_max_attempts
        attempts = _Attempts()

        with LatencyTimer(metrics, "tx_delivery", labels={"strategy": strategy.value}):
            blockhash = await self._resolve_blockhash(strategy, recent_blockhash)
            tx = self.build_signed_transaction(keypair, instructions, blockhash)

            for attempt in range(1, max_attempts + 1):
                attempts.count = attempt
                logger.info("urgent_send_attempt", attempt=attempt, max_attempts=max_attempts)
                try:
                    signature = await self.rpc_client.send_with_config(tx, options)
                    return self._succeeded(strategy, [str(signature)], attempt, start)
                except Exception as e:
                    attempts.errors.append(str(e))
                    logger.warning(
                        "urgent_send_attempt_failed",
                        attempt=attempt,
                        max_attempts=max_attempts,
                        error=str(e)
                    )

                if attempt < max_attempts:
                    await self._sleep(self.config.urgent_backoff_ms / 1000)

        raise self._failed(
            strategy,
            attempts.last_error or f"All {max_attempts} urgent attempts failed",
            attempts
        )

    async def send_relay(
        self,
        keypair: Keypair,
        instructions: Sequence[Instruction],
        recent_blockhash: Optional[Hash] = None
    ) -> DeliveryResult:
        """
        Tip the relay and submit through it

        A tip transfer to the relay account is prepended, the transaction is
        signed, serialized and base64 encoded, then posted up to max_retries
        times with retry_delay_ms between tries. An attempt only counts as
        delivered when the relay reports success and returns at least one
        signature.

        Raises:
            DeliveryError: If no relay client is configured or every try failed
        """
        strategy = DeliveryStrategy.RELAY
        if self.relay_client is None:
            raise DeliveryError(strategy, "Relay client not configured", attempts=0)

        start = time.perf_counter()
        max_retries = self.relay_config.max_retries
        attempts = _Attempts()

        with LatencyTimer(metrics, "tx_delivery", labels={"strategy": strategy.value}):
            blockhash = await self._resolve_blockhash(strategy, recent_blockhash)
            tip = self.build_tip_instruction(keypair.pubkey())
            tx = self.build_signed_transaction(keypair, [tip, *instructions], blockhash)
            tx_base64 = base64.b64encode(bytes(tx)).decode('utf-8')

            for attempt in range(1, max_retries + 1):
                attempts.count = attempt
                try:
                    response = await self.relay_client.submit_batch([tx_base64])
                    signatures = self._relay_signatures(response)
                    if signatures:
                        return self._succeeded(strategy, signatures, attempt, start)
                    attempts.errors.append(self._relay_rejection(response))
                except Exception as e:
                    attempts.errors.append(str(e))

                logger.warning(
                    "relay_attempt_failed",
                    attempt=attempt,
                    max_retries=max_retries,
                    error=attempts.last_error
                )
                if attempt < max_retries:
                    await self._sleep(self.relay_config.retry_delay_ms / 1000)

        raise self._failed(
            strategy,
            attempts.last_error or f"Failed to send transaction after {max_retries} attempts",
            attempts
        )

    @staticmethod
    def _relay_signatures(response: Dict[str, Any]) -> List[str]:
        if not response.get("success"):
            return []
        data = response.get("data") or {}
        return [str(s) for s in (data.get("signatures") or []) if s]

    @staticmethod
    def _relay_rejection(response: Dict[str, Any]) -> str:
        if not response.get("success"):
            return f"Relay API error: {response.get('message') or 'Unknown error'}"
        data = response.get("data") or {}
        if "signatures" not in data:
            return "No signatures found in response data"
        return "Signatures array is empty"

    async def _resolve_blockhash(self, strategy: DeliveryStrategy, recent_blockhash: Optional[Hash]) -> Hash:
        if recent_blockhash is not None:
            return recent_blockhash
        try:
            return await self.rpc_client.latest_blockhash()
        except Exception as e:
            raise self._failed(strategy, f"Failed to get recent blockhash: {e}", _Attempts(0, [str(e)]))

    def _succeeded(
        self,
        strategy: DeliveryStrategy,
        signatures: List[str],
        attempts: int,
        start: float
    ) -> DeliveryResult:
        result = DeliveryResult(
            strategy=strategy,
            signatures=signatures,
            attempts=attempts,
            elapsed_ms=(time.perf_counter() - start) * 1000
        )
        metrics.increment_counter("transactions_delivered", labels={"strategy": strategy.value})
        logger.info("transaction_delivered", **result.to_dict())
        return result

    def _failed(self, strategy: DeliveryStrategy, message: str, attempts: _Attempts) -> DeliveryError:
        metrics.increment_counter("transactions_delivery_failed", labels={"strategy": strategy.value})
        logger.error(
            "transaction_delivery_failed",
            strategy=strategy.value,
            attempts=attempts.count,
            error=message
        )
        return DeliveryError(strategy, message, attempts=attempts.count, last_error=attempts.last_error)
