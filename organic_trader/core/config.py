"""
Configuration Manager for the organic trader
Loads configuration from YAML files with environment variable support
"""

import os
import re
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from organic_trader.core.wallet_pool import RandomizationConfig


DELIVERY_STRATEGIES = ("standard", "fast", "urgent", "relay", "skip_simulation")


@dataclass
class RPCConfig:
    """Solana JSON-RPC endpoint"""
    url: str
    timeout_s: float = 10.0
    commitment: str = "confirmed"
    confirmation_timeout_s: float = 30.0
    confirmation_poll_interval_s: float = 0.5


@dataclass
class RelayConfig:
    """Relay service that forwards pre-signed transactions with a tip"""
    url: str = "http://ny.flashblock.trade/api/v2/submit-batch"
    api_key: str = ""
    tip_account: str = "FLaShB3iXXTWE1vu9wQsChUKq3HFtpMAhb8kAh1pf1wi"
    tip_lamports: int = 100_000
    max_retries: int = 3
    retry_delay_ms: int = 500
    timeout_s: float = 10.0


@dataclass
class DeliveryConfig:
    """Retry policy of the delivery strategies"""
    fast_max_retries: int = 3
    urgent_max_retries: int = 5
    urgent_max_attempts: int = 3
    urgent_backoff_ms: int = 200


@dataclass
class TraderConfig:
    """Buy/sell loop parameters"""
    target_mint: str
    min_buy_amount: float = 0.001
    max_buy_amount: float = 0.01
    min_sell_percentage: float = 0.1
    max_sell_percentage: float = 0.5
    progressive_increase_factor: float = 1.2
    max_progressive_steps: int = 10
    slippage_bps: int = 1000
    min_sell_delay_hours: int = 0
    max_sell_delay_hours: int = 168
    buy_strategy: str = "fast"
    sell_strategy: str = "urgent"
    use_tiered_amounts: bool = False
    ratio_steering: bool = False


@dataclass
class WaveConfig:
    active_hours: float = 2.0
    slow_hours: float = 1.0
    organic: bool = True


@dataclass
class PriceMonitorConfig:
    max_history_size: int = 100
    price_change_threshold: float = 0.05
    throttle_duration_minutes: float = 30.0


@dataclass
class WalletConfig:
    directory: str = "./wallet"


@dataclass
class LogConfig:
    """Logging configuration"""
    level: str = "INFO"
    format: str = "json"
    output_file: Optional[str] = None


@dataclass
class MetricsConfig:
    max_samples: int = 10_000


@dataclass
class BotConfig:
    """Complete trader configuration"""
    rpc_config: RPCConfig
    trader_config: TraderConfig
    relay_config: RelayConfig = field(default_factory=RelayConfig)
    delivery_config: DeliveryConfig = field(default_factory=DeliveryConfig)
    randomization_config: RandomizationConfig = field(default_factory=RandomizationConfig)
    wave_config: WaveConfig = field(default_factory=WaveConfig)
    price_monitor_config: PriceMonitorConfig = field(default_factory=PriceMonitorConfig)
    wallet_config: WalletConfig = field(default_factory=WalletConfig)
    log_config: LogConfig = field(default_factory=LogConfig)
    metrics_config: MetricsConfig = field(default_factory=MetricsConfig)


RANDOMIZATION_PRESETS = {
    "default": RandomizationConfig,
    "stealth": RandomizationConfig.stealth_mode,
    "conservative": RandomizationConfig.conservative_mode,
}


class ConfigurationManager:
    """Manages trader configuration from YAML files and environment variables"""

    def __init__(self, config_path: str):
        """
        Args:
            config_path: Path to YAML configuration file
        """
        self.config_path = Path(config_path)
        self._config_data: Optional[Dict[str, Any]] = None
        self._bot_config: Optional[BotConfig] = None

    def load_config(self) -> BotConfig:
        """
        Load and validate configuration from file

        Returns:
            BotConfig: Validated configuration object

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config is invalid
        """
        if not self.config_path.exists():
            raise FileNotFoundError(
                f"Configuration file not found: {self.config_path}"
            )

        with open(self.config_path, 'r') as f:
            raw_config = yaml.safe_load(f) or {}

        self._config_data = self._substitute_env_vars(raw_config)
        self._bot_config = self._parse_config(self._config_data)

        return self._bot_config

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value by dot-notation key

        Args:
            key: Dot-notation key (e.g., "trader.target_mint")
            default: Default value if key not found
        """
        if self._config_data is None:
            raise RuntimeError("Configuration not loaded. Call load_config() first.")

        value: Any = self._config_data
        for k in key.split('.'):
            if not isinstance(value, dict):
                return default
            value = value.get(k)
            if value is None:
                return default

        return value

    def _substitute_env_vars(self, config: Any) -> Any:
        """
        Recursively substitute ${VAR_NAME} references with environment values

        Raises:
            ValueError: If a referenced variable is not set
        """
        if isinstance(config, dict):
            return {k: self._substitute_env_vars(v) for k, v in config.items()}
        if isinstance(config, list):
            return [self._substitute_env_vars(item) for item in config]
        if isinstance(config, str):
            def replace_var(match):
                var_name = match.group(1)
                value = os.getenv(var_name)
                if value is None:
                    raise ValueError(
                        f"Environment variable {var_name} not found"
                    )
                return value

            return re.sub(r'\$\{([^}]+)\}', replace_var, config)
        return config

    def _parse_config(self, config: Dict[str, Any]) -> BotConfig:
        """
        Parse raw configuration into typed objects

        Raises:
            ValueError: If configuration is invalid
        """
        rpc_data = config.get('rpc') or {}
        if not rpc_data.get('url'):
            raise ValueError("No RPC url configured (rpc.url)")

        trader_data = config.get('trader') or {}
        if not trader_data.get('target_mint'):
            raise ValueError("No target mint configured (trader.target_mint)")

        trader_config = _build(TraderConfig, trader_data, 'trader')
        for side, strategy in (("buy", trader_config.buy_strategy), ("sell", trader_config.sell_strategy)):
            if strategy not in DELIVERY_STRATEGIES:
                raise ValueError(
                    f"Unknown {side} delivery strategy '{strategy}', expected one of {DELIVERY_STRATEGIES}"
                )
        if trader_config.min_buy_amount > trader_config.max_buy_amount:
            raise ValueError("trader.min_buy_amount must not exceed trader.max_buy_amount")
        if trader_config.min_sell_percentage > trader_config.max_sell_percentage:
            raise ValueError("trader.min_sell_percentage must not exceed trader.max_sell_percentage")
        for key in ('min_sell_delay_hours', 'max_sell_delay_hours'):
            hours = getattr(trader_config, key)
            if isinstance(hours, bool) or not isinstance(hours, int) or hours < 0:
                raise ValueError(f"trader.{key} must be a whole number of hours, got {hours!r}")

        randomization_data = dict(config.get('randomization') or {})
        mode = randomization_data.pop('mode', 'default')
        if mode not in RANDOMIZATION_PRESETS:
            raise ValueError(f"Unknown randomization mode '{mode}'")
        randomization_config = RANDOMIZATION_PRESETS[mode]()
        for key, value in randomization_data.items():
            if not hasattr(randomization_config, key):
                raise ValueError(f"Unknown option 'randomization.{key}'")
            setattr(randomization_config, key, value)

        log_data = config.get('logging') or {}
        log_config = LogConfig(
            level=log_data.get('level', 'INFO'),
            format=log_data.get('format', 'json'),
            output_file=log_data.get('output_file')
        )

        return BotConfig(
            rpc_config=_build(RPCConfig, rpc_data, 'rpc'),
            trader_config=trader_config,
            relay_config=_build(RelayConfig, config.get('relay') or {}, 'relay'),
            delivery_config=_build(DeliveryConfig, config.get('delivery') or {}, 'delivery'),
            randomization_config=randomization_config,
            wave_config=_build(WaveConfig, config.get('waves') or {}, 'waves'),
            price_monitor_config=_build(PriceMonitorConfig, config.get('price_monitor') or {}, 'price_monitor'),
            wallet_config=_build(WalletConfig, config.get('wallets') or {}, 'wallets'),
            log_config=log_config,
            metrics_config=_build(MetricsConfig, config.get('metrics') or {}, 'metrics')
        )


def _build(cls, data: Dict[str, Any], section: str):
    """Instantiate a config dataclass, rejecting unknown keys"""
    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        raise ValueError(f"Unknown option(s) in '{section}': {', '.join(sorted(unknown))}")
    return cls(**data)
