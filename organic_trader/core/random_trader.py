"""
Random Trader - organic buy/sell orchestrator
Runs independent buy and sell loops against a single pool, sizing and timing
each trade from the wallet pool, volume waves and price monitor
"""

import asyncio
import random
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, Tuple, Union

from organic_trader.core.config import TraderConfig
from organic_trader.core.logger import get_logger, trade_context
from organic_trader.core.metrics import get_metrics
from organic_trader.core.price_monitor import PriceMonitor
from organic_trader.core.swap import SwapBuildError, SwapDirection, SwapInType, SwapQuote, SwapRequest
from organic_trader.core.tx_delivery import (
    DeliveryError,
    DeliveryResult,
    DeliveryStrategy,
    TransactionDelivery,
)
from organic_trader.core.volume_waves import OrganicWavePattern, VolumeWaveManager
from organic_trader.core.wallet_pool import RandomizationConfig, TradeType, WalletPool


logger = get_logger(__name__)
metrics = get_metrics()


RECENT_TRADES_WINDOW = 10


class TraderAlreadyRunningError(RuntimeError):
    """start() called on a trader that is already running"""


class RandomTrader:
    """
    Organic volume orchestrator

    Two uncoordinated loops (buy and sell) each:
    1. wait a generated interval (wallet pool tiers, volume wave, throttle)
    2. exit if the trader was stopped
    3. size the trade progressively: U(min, max) * factor^min(count, max_steps)
    4. pick a wallet (sells skip the cycle when none has held long enough)
    5. ask the instruction builder for the swap and record the observed price
    6. deliver it, bumping the side's progressive counter on success

    Failures are logged and the loop moves on to its next cycle.

    The running flag and each progressive counter sit behind their own lock;
    the wallet pool, price monitor and wave pattern share one lock each.
    No lock is held while building or delivering a transaction.

    Usage:
        trader = RandomTrader(builder, delivery, pool, monitor, waves, trader_config)
        task = asyncio.create_task(trader.start())
        ...
        await trader.stop()
    """

    def __init__(
        self,
        instruction_builder: Any,
        delivery: TransactionDelivery,
        wallet_pool: WalletPool,
        price_monitor: PriceMonitor,
        wave_pattern: Union[OrganicWavePattern, VolumeWaveManager],
        trader_config: TraderConfig,
        randomization_config: Optional[RandomizationConfig] = None,
        rng: Optional[random.Random] = None,
        sleep_func: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        """
        Args:
            instruction_builder: Object with `async build_swap(SwapRequest) -> SwapQuote`
            delivery: Transaction delivery strategies
            wallet_pool: Funding wallets
            price_monitor: Pool price history and throttle
            wave_pattern: Volume wave pacing (organic or plain)
            trader_config: Amount ranges, progressive factor, strategies
            randomization_config: Base intervals, tiered amount range, buy ratio
            rng: Random source
            sleep_func: Awaitable sleep used for loop intervals
        """
        self.instruction_builder = instruction_builder
        self.delivery = delivery
        self.wallet_pool = wallet_pool
        self.price_monitor = price_monitor
        self.wave_pattern = wave_pattern
        self.config = trader_config
        self.randomization = randomization_config or RandomizationConfig()
        self._rng = rng or random.Random()
        self._sleep = sleep_func

        self.buy_strategy = DeliveryStrategy(trader_config.buy_strategy)
        self.sell_strategy = DeliveryStrategy(trader_config.sell_strategy)

        self._running = False
        self._running_lock = asyncio.Lock()
        self._loops: Optional[asyncio.Future] = None
        self._buy_count = 0
        self._buy_count_lock = asyncio.Lock()
        self._sell_count = 0
        self._sell_count_lock = asyncio.Lock()

        self._pool_lock = asyncio.Lock()
        self._monitor_lock = asyncio.Lock()
        self._wave_lock = asyncio.Lock()

        self._recent_trades: Deque[TradeType] = deque(maxlen=RECENT_TRADES_WINDOW)
        self._recent_trades_lock = asyncio.Lock()

        logger.info(
            "random_trader_initialized",
            target_mint=trader_config.target_mint,
            buy_strategy=self.buy_strategy.value,
            sell_strategy=self.sell_strategy.value,
            wallet_count=wallet_pool.wallet_count()
        )

    async def start(self) -> None:
        """
        Run the buy and sell loops until stop() is called

        Raises:
            TraderAlreadyRunningError: If the trader is running, or was stopped
                while its loops are still finishing their current wait
        """
        async with self._running_lock:
            if self._running:
                raise TraderAlreadyRunningError("Random trader is already running")
            if self._loops is not None and not self._loops.done():
                raise TraderAlreadyRunningError("Random trader loops from the previous run are still winding down")
            self._running = True
            self._loops = asyncio.gather(self._buy_loop(), self._sell_loop())

        logger.info(
            "random_trader_started",
            min_buy_amount=self.config.min_buy_amount,
            max_buy_amount=self.config.max_buy_amount,
            min_sell_percentage=self.config.min_sell_percentage,
            max_sell_percentage=self.config.max_sell_percentage
        )

        try:
            await self._loops
        finally:
            async with self._running_lock:
                self._running = False
            logger.info("random_trader_stopped", progressive_counts=await self.get_progressive_counts())

    async def stop(self) -> None:
        """Ask both loops to exit; an in-flight delivery still runs to completion"""
        async with self._running_lock:
            self._running = False
        logger.info("random_trader_stop_requested")

    async def is_running(self) -> bool:
        async with self._running_lock:
            return self._running

    async def reset_progressive_counters(self) -> None:
        async with self._buy_count_lock:
            self._buy_count = 0
        async with self._sell_count_lock:
            self._sell_count = 0
        logger.info("progressive_counters_reset")

    async def get_progressive_counts(self) -> Dict[str, int]:
        async with self._buy_count_lock:
            buys = self._buy_count
        async with self._sell_count_lock:
            sells = self._sell_count
        return {"buy": buys, "sell": sells}

    async def _buy_loop(self) -> None:
        while True:
            interval_ms = await self._next_interval(self.randomization.base_buy_interval_ms, throttled=True)
            logger.debug("next_buy_scheduled", interval_ms=interval_ms)
            await self._sleep(interval_ms / 1000)

            if not await self.is_running():
                break
            if self.config.ratio_steering and not await self._steer_towards(TradeType.BUY):
                continue

            await self._run_cycle(TradeType.BUY, self.execute_buy)

    async def _sell_loop(self) -> None:
        while True:
            interval_ms = await self._next_interval(self.randomization.base_sell_interval_ms, throttled=False)
            logger.debug("next_sell_scheduled", interval_ms=interval_ms)
            await self._sleep(interval_ms / 1000)

            if not await self.is_running():
                break
            if self.config.ratio_steering and not await self._steer_towards(TradeType.SELL):
                continue

            await self._run_cycle(TradeType.SELL, self.execute_sell)

    async def _run_cycle(self, side: TradeType, cycle: Callable[[], Awaitable[Any]]) -> None:
        try:
            await cycle()
        except Exception as e:
            metrics.increment_counter("trades_failed", labels={"side": side.value, "stage": "cycle"})
            logger.error("trade_cycle_error", side=side.value, error=str(e), exc_info=True)

    async def _next_interval(self, base_interval_ms: int, throttled: bool) -> int:
        async with self._pool_lock:
            interval_ms = self.wallet_pool.generate_interval(base_interval_ms)
        async with self._wave_lock:
            interval_ms = self.wave_pattern.next_interval(interval_ms)
        if throttled:
            async with self._monitor_lock:
                interval_ms = int(interval_ms * self.price_monitor.throttle_multiplier())
        return interval_ms

    async def _steer_towards(self, side: TradeType) -> bool:
        """True when the buy ratio steering wants this side to trade now"""
        async with self._recent_trades_lock:
            recent = list(self._recent_trades)
        async with self._pool_lock:
            wants_buy = self.wallet_pool.should_buy_next(recent, self.randomization.buy_sell_ratio)

        if wants_buy == (side is TradeType.BUY):
            return True

        metrics.increment_counter("trade_cycles_skipped", labels={"side": side.value, "reason": "ratio_steering"})
        logger.debug("trade_cycle_skipped_by_ratio", side=side.value, recent_trades=len(recent))
        return False

    async def _progressive_multiplier(self, lock: asyncio.Lock, side: TradeType) -> Tuple[int, float]:
        async with lock:
            count = self._buy_count if side is TradeType.BUY else self._sell_count
        steps = min(count, self.config.max_progressive_steps)
        return steps, self.config.progressive_increase_factor ** steps

    async def _wave_amount_multiplier(self) -> float:
        async with self._wave_lock:
            return self.wave_pattern.amount_multiplier()

    async def execute_buy(self) -> Optional[DeliveryResult]:
        """
        Run one buy cycle

        Returns:
            Delivery result, or None if the cycle failed
        """
        steps, progressive = await self._progressive_multiplier(self._buy_count_lock, TradeType.BUY)

        if self.config.use_tiered_amounts:
            async with self._pool_lock:
                base_amount = self.wallet_pool.generate_amount(
                    self.randomization.min_amount_sol, self.randomization.max_amount_sol
                )
        else:
            base_amount = self._rng.uniform(self.config.min_buy_amount, self.config.max_buy_amount)

        buy_amount = base_amount * progressive * await self._wave_amount_multiplier()

        async with self._pool_lock:
            wallet = self.wallet_pool.select_for_trade()

        logger.info(
            "random_buy_started",
            amount_sol=round(buy_amount, 6),
            progressive_step=steps + 1,
            max_progressive_steps=self.config.max_progressive_steps,
            wallet=str(wallet.pubkey)
        )

        request = SwapRequest(
            mint=self.config.target_mint,
            direction=SwapDirection.BUY,
            in_type=SwapInType.QTY,
            amount_in=buy_amount,
            slippage_bps=self.config.slippage_bps,
            max_buy_amount=buy_amount,
            owner=wallet.keypair
        )

        result = await self._execute(request, self.buy_strategy, volume_sol=buy_amount)
        if result is None:
            return None

        async with self._buy_count_lock:
            self._buy_count += 1
        async with self._pool_lock:
            self.wallet_pool.record_buy(wallet.pubkey)
        await self._remember(TradeType.BUY)

        metrics.increment_counter("trades_executed", labels={"side": "buy"})
        logger.info(
            "random_buy_successful",
            amount_sol=round(buy_amount, 6),
            signature=result.signature,
            attempts=result.attempts,
            elapsed_ms=round(result.elapsed_ms, 2)
        )
        return result

    async def execute_sell(self) -> Optional[DeliveryResult]:
        """
        Run one sell cycle

        Returns:
            Delivery result, or None if no wallet could sell or the cycle failed
        """
        async with self._pool_lock:
            wallet = self.wallet_pool.select_for_sell(
                self.config.min_sell_delay_hours, self.config.max_sell_delay_hours
            )

        if wallet is None:
            metrics.increment_counter("trade_cycles_skipped", labels={"side": "sell", "reason": "no_eligible_wallet"})
            logger.info("random_sell_skipped", reason="no_eligible_wallet")
            return None

        steps, progressive = await self._progressive_multiplier(self._sell_count_lock, TradeType.SELL)
        base_percentage = self._rng.uniform(self.config.min_sell_percentage, self.config.max_sell_percentage)
        sell_percentage = min(base_percentage * progressive * await self._wave_amount_multiplier(), 1.0)

        logger.info(
            "random_sell_started",
            percentage=round(sell_percentage * 100, 2),
            progressive_step=steps + 1,
            max_progressive_steps=self.config.max_progressive_steps,
            wallet=str(wallet.pubkey),
            profile=wallet.profile.value
        )

        request = SwapRequest(
            mint=self.config.target_mint,
            direction=SwapDirection.SELL,
            in_type=SwapInType.PCT,
            amount_in=sell_percentage,
            slippage_bps=self.config.slippage_bps,
            max_buy_amount=0.0,
            owner=wallet.keypair
        )

        result = await self._execute(request, self.sell_strategy, volume_sol=0.0)
        if result is None:
            return None

        async with self._sell_count_lock:
            self._sell_count += 1
        await self._remember(TradeType.SELL)

        metrics.increment_counter("trades_executed", labels={"side": "sell"})
        logger.info(
            "random_sell_successful",
            percentage=round(sell_percentage * 100, 2),
            signature=result.signature,
            attempts=result.attempts,
            elapsed_ms=round(result.elapsed_ms, 2)
        )
        return result

    async def _execute(
        self,
        request: SwapRequest,
        strategy: DeliveryStrategy,
        volume_sol: float
    ) -> Optional[DeliveryResult]:
        """Build and deliver a swap, logging and swallowing per-cycle failures"""
        side = request.direction.value

        with trade_context(side, strategy.value, str(request.owner.pubkey())):
            try:
                quote: SwapQuote = await self.instruction_builder.build_swap(request)
            except SwapBuildError as e:
                metrics.increment_counter("trades_failed", labels={"side": side, "stage": "build"})
                logger.error("swap_build_failed", amount_in=request.amount_in, error=str(e))
                return None
            except Exception as e:
                metrics.increment_counter("trades_failed", labels={"side": side, "stage": "build"})
                logger.error("swap_build_error", amount_in=request.amount_in, error=str(e), exc_info=True)
                return None

            async with self._monitor_lock:
                self.price_monitor.record(quote.price, volume_sol)

            try:
                return await self.delivery.deliver(strategy, quote.keypair, quote.instructions)
            except DeliveryError as e:
                metrics.increment_counter("trades_failed", labels={"side": side, "stage": "delivery"})
                logger.error("trade_delivery_failed", amount_in=request.amount_in, attempts=e.attempts, error=str(e))
            except Exception as e:
                metrics.increment_counter("trades_failed", labels={"side": side, "stage": "delivery"})
                logger.error("trade_delivery_error", amount_in=request.amount_in, error=str(e), exc_info=True)
            return None

    async def _remember(self, side: TradeType) -> None:
        async with self._recent_trades_lock:
            self._recent_trades.append(side)
