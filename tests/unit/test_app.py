"""
Unit tests for application wiring (app.py)
"""

from unittest.mock import AsyncMock, MagicMock, patch

import base58
import pytest
import yaml
from solders.keypair import Keypair

from organic_trader.app import TraderApp, build_trader, run
from organic_trader.clients.relay_client import RelayClient
from organic_trader.clients.solana_rpc import SolanaRPCClient
from organic_trader.core.config import BotConfig, RPCConfig, TraderConfig, WaveConfig
from organic_trader.core.random_trader import RandomTrader
from organic_trader.core.tx_delivery import DeliveryStrategy
from organic_trader.core.volume_waves import OrganicWavePattern, VolumeWaveManager
from organic_trader.core.wallet_pool import WalletPool, WalletPoolError


@pytest.fixture
def bot_config():
    return BotConfig(
        rpc_config=RPCConfig(url="https://rpc.test"),
        trader_config=TraderConfig(target_mint="Mint111")
    )


@pytest.fixture
def wallet_pool(keypairs, rng, clock):
    return WalletPool(keypairs, rng=rng, clock=clock)


def test_build_trader_wires_components(bot_config, wallet_pool, rng):
    """Test the trader receives the configured components"""
    rpc_client = MagicMock()
    builder = AsyncMock()

    app = build_trader(bot_config, builder, rpc_client=rpc_client, wallet_pool=wallet_pool, rng=rng)

    assert isinstance(app, TraderApp)
    trader = app.trader
    assert trader.instruction_builder is builder
    assert trader.wallet_pool is wallet_pool
    assert trader.delivery.rpc_client is rpc_client
    assert trader.buy_strategy == DeliveryStrategy.FAST
    assert trader.sell_strategy == DeliveryStrategy.URGENT
    assert isinstance(trader.wave_pattern, OrganicWavePattern)
    assert trader.price_monitor.throttle_duration_s == 30 * 60
    assert app.relay_client is None


def test_build_trader_plain_waves(bot_config, wallet_pool):
    """Test organic waves can be turned off"""
    bot_config.wave_config = WaveConfig(organic=False)

    app = build_trader(bot_config, AsyncMock(), rpc_client=MagicMock(), wallet_pool=wallet_pool)

    assert isinstance(app.trader.wave_pattern, VolumeWaveManager)


def test_build_trader_creates_relay_client(bot_config, wallet_pool):
    """Test a relay client is created when a side uses the relay"""
    bot_config.trader_config.buy_strategy = "relay"

    app = build_trader(bot_config, AsyncMock(), rpc_client=MagicMock(), wallet_pool=wallet_pool)

    assert isinstance(app.relay_client, RelayClient)
    assert app.trader.delivery.relay_client is app.relay_client


def test_build_trader_loads_wallet_directory(bot_config, tmp_path):
    """Test wallets are loaded from the configured directory"""
    bot_config.wallet_config.directory = str(tmp_path / "missing")

    with pytest.raises(WalletPoolError):
        build_trader(bot_config, AsyncMock(), rpc_client=MagicMock())


@pytest.mark.asyncio
async def test_trader_app_close():
    """Test closing the app closes its clients"""
    rpc_client = AsyncMock()
    relay_client = AsyncMock()

    await TraderApp(trader=MagicMock(), rpc_client=rpc_client, relay_client=relay_client).close()

    rpc_client.close.assert_awaited_once()
    relay_client.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_run_builds_starts_and_closes(tmp_path, test_config_dict):
    """Test run wires everything from the config file and cleans up"""
    wallet_dir = tmp_path / "wallet"
    wallet_dir.mkdir()
    (wallet_dir / "wallet1.txt").write_text(base58.b58encode(bytes(Keypair())).decode())
    test_config_dict["wallets"]["directory"] = str(wallet_dir)

    config_file = tmp_path / "config.yml"
    with open(config_file, 'w') as f:
        yaml.dump(test_config_dict, f)

    builder_factory = MagicMock(return_value=AsyncMock())

    with patch.object(RandomTrader, "start", new=AsyncMock()) as start, \
            patch.object(SolanaRPCClient, "close", new=AsyncMock()) as close:
        await run(str(config_file), builder_factory)

    start.assert_awaited_once()
    close.assert_awaited_once()
    bot_config, rpc_client = builder_factory.call_args.args
    assert bot_config.trader_config.target_mint == test_config_dict["trader"]["target_mint"]
    assert isinstance(rpc_client, SolanaRPCClient)
