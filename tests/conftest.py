"""
Pytest configuration and shared fixtures
These fixtures are available to all test files
"""

import random
from typing import Any, Dict

import pytest
from solders.keypair import Keypair

from organic_trader.core.metrics import get_metrics


class FakeClock:
    """Manually advanced monotonic clock"""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Async sleep replacement that records requested delays and returns immediately"""

    def __init__(self):
        self.calls = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def rng() -> random.Random:
    """Seeded random source for reproducible draws"""
    return random.Random(1234)


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def keypairs():
    """Create test keypairs"""
    return [Keypair() for _ in range(3)]


@pytest.fixture(autouse=True)
def reset_metrics():
    """Clear the process-wide metrics collector around every test"""
    collector = get_metrics()
    collector.reset()
    yield collector
    collector.reset()


@pytest.fixture
def test_config_dict() -> Dict[str, Any]:
    """
    Sample configuration dictionary for testing

    Returns valid config that can be modified per test
    """
    return {
        "rpc": {
            "url": "https://api.devnet.solana.com",
            "timeout_s": 5
        },
        "trader": {
            "target_mint": "So11111111111111111111111111111111111111112",
            "min_buy_amount": 0.002,
            "max_buy_amount": 0.02,
            "buy_strategy": "fast",
            "sell_strategy": "urgent"
        },
        "relay": {
            "api_key": "test-key",
            "tip_lamports": 50_000
        },
        "randomization": {
            "mode": "conservative",
            "base_buy_interval_ms": 20_000
        },
        "waves": {
            "active_hours": 3,
            "slow_hours": 1.5
        },
        "price_monitor": {
            "price_change_threshold": 0.08
        },
        "wallets": {
            "directory": "./wallet"
        },
        "logging": {
            "level": "DEBUG",
            "format": "json",
            "output_file": None
        },
        "metrics": {
            "max_samples": 500
        }
    }


@pytest.fixture
def test_config_file(test_config_dict, tmp_path):
    """
    Create a temporary config file for testing

    Returns path to temporary YAML config file
    """
    import yaml

    config_file = tmp_path / "test_config.yml"
    with open(config_file, 'w') as f:
        yaml.dump(test_config_dict, f)

    return str(config_file)


def pytest_configure(config):
    """Register custom pytest markers"""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test (requires network)"
    )
