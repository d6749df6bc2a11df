"""
Organic trader wiring
Builds configuration, wallets, waves, price monitor and delivery into a
RandomTrader and runs it until stopped

The swap instruction builder is supplied by the caller as a factory:

    def make_builder(bot_config: BotConfig, rpc_client: SolanaRPCClient) -> builder

where builder exposes `async build_swap(SwapRequest) -> SwapQuote`.

Usage:
    asyncio.run(run("config/config.yml", make_builder))
"""

import random
from dataclasses import dataclass
from typing import Any, Callable, Optional

from organic_trader.clients.relay_client import RelayClient
from organic_trader.clients.solana_rpc import SolanaRPCClient
from organic_trader.core.config import BotConfig, ConfigurationManager
from organic_trader.core.logger import get_logger, setup_logging
from organic_trader.core.metrics import get_metrics, init_metrics
from organic_trader.core.price_monitor import PriceMonitor
from organic_trader.core.random_trader import RandomTrader
from organic_trader.core.tx_delivery import TransactionDelivery
from organic_trader.core.volume_waves import OrganicWavePattern, VolumeWaveManager
from organic_trader.core.wallet_pool import WalletPool


logger = get_logger(__name__)

BuilderFactory = Callable[[BotConfig, SolanaRPCClient], Any]


@dataclass
class TraderApp:
    """A wired trader plus the network clients it owns"""
    trader: RandomTrader
    rpc_client: SolanaRPCClient
    relay_client: Optional[RelayClient] = None

    async def close(self) -> None:
        await self.rpc_client.close()
        if self.relay_client is not None:
            await self.relay_client.close()


def build_trader(
    bot_config: BotConfig,
    instruction_builder: Any,
    rpc_client: Optional[SolanaRPCClient] = None,
    relay_client: Optional[RelayClient] = None,
    wallet_pool: Optional[WalletPool] = None,
    rng: Optional[random.Random] = None
) -> TraderApp:
    """
    Construct every component explicitly and hand them to a RandomTrader

    Args:
        bot_config: Loaded configuration
        instruction_builder: Swap instruction builder
        rpc_client: RPC client (built from rpc config if omitted)
        relay_client: Relay client (built when either side uses the relay strategy)
        wallet_pool: Wallet pool (loaded from the wallet directory if omitted)
        rng: Random source shared by every component

    Raises:
        WalletPoolError: If no wallet could be loaded
    """
    rng = rng or random.Random()
    trader_config = bot_config.trader_config

    rpc_client = rpc_client or SolanaRPCClient(bot_config.rpc_config)
    if relay_client is None and "relay" in (trader_config.buy_strategy, trader_config.sell_strategy):
        relay_client = RelayClient(bot_config.relay_config)

    if wallet_pool is None:
        wallet_pool = WalletPool.from_directory(bot_config.wallet_config.directory, rng=rng)

    monitor_config = bot_config.price_monitor_config
    price_monitor = PriceMonitor(
        max_history_size=monitor_config.max_history_size,
        price_change_threshold=monitor_config.price_change_threshold,
        throttle_duration_s=monitor_config.throttle_duration_minutes * 60
    )

    wave_config = bot_config.wave_config
    if wave_config.organic:
        wave_pattern = OrganicWavePattern(wave_config.active_hours, wave_config.slow_hours, rng=rng)
    else:
        wave_pattern = VolumeWaveManager(wave_config.active_hours, wave_config.slow_hours, rng=rng)

    delivery = TransactionDelivery(
        rpc_client,
        relay_client=relay_client,
        relay_config=bot_config.relay_config,
        config=bot_config.delivery_config
    )

    trader = RandomTrader(
        instruction_builder=instruction_builder,
        delivery=delivery,
        wallet_pool=wallet_pool,
        price_monitor=price_monitor,
        wave_pattern=wave_pattern,
        trader_config=trader_config,
        randomization_config=bot_config.randomization_config,
        rng=rng
    )

    return TraderApp(trader=trader, rpc_client=rpc_client, relay_client=relay_client)


async def run(config_path: str, builder_factory: BuilderFactory) -> None:
    """Load configuration, start trading and clean up on exit"""
    bot_config = ConfigurationManager(config_path).load_config()

    log_config = bot_config.log_config
    setup_logging(level=log_config.level, format=log_config.format, output_file=log_config.output_file)
    init_metrics(bot_config.metrics_config.max_samples)

    rpc_client = SolanaRPCClient(bot_config.rpc_config)
    app = build_trader(bot_config, builder_factory(bot_config, rpc_client), rpc_client=rpc_client)

    try:
        await app.trader.start()
    finally:
        await app.close()
        logger.info("final_metrics", **get_metrics().export_metrics())
