"""
Wallet Pool for the organic trader
Holds the funding wallets, their behavioral profiles and usage history, and
generates the randomized intervals/amounts that make trading look organic
"""

import os
import random
import time
from collections import Counter
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

import base58
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from organic_trader.core.logger import get_logger
from organic_trader.core.metrics import get_metrics


logger = get_logger(__name__)
metrics = get_metrics()


MIN_INTERVAL_MS = 1000
MIN_SECRET_KEY_LENGTH = 85
SECRET_KEY_BYTES = 64
SECONDS_PER_HOUR = 3600


class WalletPoolError(Exception):
    """Wallet pool could not be initialized (fatal at startup)"""


class TradeType(Enum):
    BUY = "buy"
    SELL = "sell"


@dataclass(frozen=True)
class ProfileTraits:
    """Fixed behavioral constants of a wallet profile"""
    sell_probability: float
    min_hold_hours: int
    max_hold_hours: int
    amount_multiplier: float
    frequency_multiplier: float


class WalletProfile(Enum):
    FREQUENT_SELLER = "frequent_seller"
    LONG_TERM_HOLDER = "long_term_holder"
    BALANCED_TRADER = "balanced_trader"
    AGGRESSIVE = "aggressive"
    CONSERVATIVE = "conservative"

    @property
    def traits(self) -> ProfileTraits:
        return PROFILE_TRAITS[self]

    @classmethod
    def random_profile(cls, rng: Optional[random.Random] = None) -> "WalletProfile":
        """Draw a profile using the 20/15/35/15/15 distribution"""
        roll = (rng or random).random()
        cumulative = 0.0
        for profile, weight in PROFILE_DISTRIBUTION:
            cumulative += weight
            if roll < cumulative:
                return profile
        return PROFILE_DISTRIBUTION[-1][0]


PROFILE_TRAITS: Dict[WalletProfile, ProfileTraits] = {
    WalletProfile.FREQUENT_SELLER: ProfileTraits(0.45, 6, 48, 0.8, 0.7),
    WalletProfile.LONG_TERM_HOLDER: ProfileTraits(0.15, 72, 168, 1.2, 2.0),
    WalletProfile.BALANCED_TRADER: ProfileTraits(0.30, 24, 96, 1.0, 1.0),
    WalletProfile.AGGRESSIVE: ProfileTraits(0.35, 4, 24, 1.5, 0.5),
    WalletProfile.CONSERVATIVE: ProfileTraits(0.25, 48, 120, 0.6, 1.5),
}

PROFILE_DISTRIBUTION = [
    (WalletProfile.FREQUENT_SELLER, 0.20),
    (WalletProfile.LONG_TERM_HOLDER, 0.15),
    (WalletProfile.BALANCED_TRADER, 0.35),
    (WalletProfile.AGGRESSIVE, 0.15),
    (WalletProfile.CONSERVATIVE, 0.15),
]


@dataclass
class WalletInfo:
    """A funding wallet with its profile and trading history"""
    keypair: Keypair
    profile: WalletProfile
    created_at: float
    usage_count: int = 0
    last_buy_time: Optional[float] = None
    last_sell_time: Optional[float] = None
    total_buys: int = 0
    total_sells: int = 0

    @property
    def pubkey(self) -> Pubkey:
        return self.keypair.pubkey()

    def can_sell(
        self,
        min_global_delay_hours: int,
        max_global_delay_hours: int,
        now: float,
        rng: random.Random
    ) -> bool:
        """
        Check whether this wallet has held long enough to sell

        The required hold is re-drawn on every check between the stricter of
        the profile and global bounds, so eligibility has no fixed cutoff.
        Bounds are whole hours; fractional global bounds are truncated.
        """
        if self.last_buy_time is None:
            return False

        min_delay = max(self.profile.traits.min_hold_hours, int(min_global_delay_hours))
        max_delay = min(self.profile.traits.max_hold_hours, int(max_global_delay_hours))
        required_delay = rng.randint(min_delay, max(min_delay, max_delay))

        hours_since_buy = (now - self.last_buy_time) / SECONDS_PER_HOUR
        return hours_since_buy >= required_delay

    def record_buy(self, now: float) -> None:
        self.usage_count += 1
        self.total_buys += 1
        self.last_buy_time = now

    def record_sell(self, now: float) -> None:
        self.usage_count += 1
        self.total_sells += 1
        self.last_sell_time = now

    def to_dict(self) -> dict:
        return {
            "pubkey": str(self.pubkey),
            "profile": self.profile.value,
            "usage_count": self.usage_count,
            "total_buys": self.total_buys,
            "total_sells": self.total_sells,
            "last_buy_time": self.last_buy_time,
            "last_sell_time": self.last_sell_time
        }


@dataclass
class RandomizationConfig:
    """Knobs for the organic randomization of amounts and intervals"""
    min_amount_sol: float = 0.03
    max_amount_sol: float = 0.55
    base_buy_interval_ms: int = 600_000
    base_sell_interval_ms: int = 900_000
    buy_sell_ratio: float = 0.7

    @classmethod
    def stealth_mode(cls) -> "RandomizationConfig":
        """Slower cadence; buy range read from MIN/MAX_STEALTH_BUY_RATIO"""
        return cls(
            min_amount_sol=_env_float("MIN_STEALTH_BUY_RATIO", 0.5),
            max_amount_sol=_env_float("MAX_STEALTH_BUY_RATIO", 0.9),
            base_buy_interval_ms=1_200_000,
            base_sell_interval_ms=1_800_000,
            buy_sell_ratio=0.7,
        )

    @classmethod
    def conservative_mode(cls) -> "RandomizationConfig":
        return cls(
            min_amount_sol=0.05,
            max_amount_sol=0.3,
            base_buy_interval_ms=30_000,
            base_sell_interval_ms=45_000,
            buy_sell_ratio=0.65,
        )


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.environ[name])
    except (KeyError, ValueError):
        return default


class WalletPool:
    """
    Pool of funding wallets with usage-balanced, profile-aware selection

    Features:
    - Weighted selection favoring less-used wallets
    - Sell eligibility from per-profile randomized hold times
    - Three-tier interval and amount distributions
    - Buy/sell ratio steering from recent trade history

    All methods are synchronous; callers sharing a pool between tasks guard
    it with a single lock held only around each call.

    Usage:
        pool = WalletPool.from_directory("./wallet")
        wallet = pool.select_for_trade()
        ...
        pool.record_buy(wallet.pubkey)
    """

    def __init__(
        self,
        keypairs: Sequence[Keypair],
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize wallet pool

        Args:
            keypairs: Signing keypairs, one per funding wallet
            rng: Random source (seed it for reproducible tests)
            clock: Monotonic time source in seconds

        Raises:
            WalletPoolError: If no keypairs were given
        """
        if not keypairs:
            raise WalletPoolError("No valid wallets available for the wallet pool")

        self._rng = rng or random.Random()
        self._clock = clock

        now = self._clock()
        self.wallets: List[WalletInfo] = [
            WalletInfo(
                keypair=keypair,
                profile=WalletProfile.random_profile(self._rng),
                created_at=now
            )
            for keypair in keypairs
        ]

        metrics.set_gauge("wallet_pool_size", len(self.wallets))
        logger.info(
            "wallet_pool_initialized",
            wallet_count=len(self.wallets),
            profiles={p.value: c for p, c in self.get_profile_stats().items()}
        )

    @classmethod
    def from_directory(
        cls,
        wallet_dir: str,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.monotonic
    ) -> "WalletPool":
        """
        Load every "*.txt" base58 secret key in a directory

        Files that fail to parse are logged and skipped.

        Raises:
            WalletPoolError: If the directory is missing or holds no valid key
        """
        directory = Path(wallet_dir)
        if not directory.is_dir():
            raise WalletPoolError(f"Wallet directory not found: {wallet_dir}")

        keypairs = []
        for path in sorted(directory.glob("*.txt")):
            try:
                keypairs.append(load_keypair_file(path))
                logger.info("wallet_loaded", file=path.name, pubkey=str(keypairs[-1].pubkey()))
            except ValueError as e:
                logger.error("wallet_load_failed", file=path.name, error=str(e))

        if not keypairs:
            raise WalletPoolError(f"No valid wallets found in {wallet_dir}")

        return cls(keypairs, rng=rng, clock=clock)

    def select_for_trade(self) -> WalletInfo:
        """
        Pick a wallet, favoring the least used ones

        Weight of each wallet is (max_usage + 1 - usage). When every wallet
        has the same usage the pick is uniform. Increments the chosen
        wallet's usage counter.
        """
        usages = [w.usage_count for w in self.wallets]
        max_usage = max(usages)

        if max_usage == min(usages):
            wallet = self._rng.choice(self.wallets)
        else:
            weights = [max_usage + 1 - usage for usage in usages]
            wallet = self._rng.choices(self.wallets, weights=weights, k=1)[0]

        wallet.usage_count += 1

        logger.debug(
            "wallet_selected_for_trade",
            pubkey=str(wallet.pubkey),
            profile=wallet.profile.value,
            usage_count=wallet.usage_count
        )
        return wallet

    def select_for_sell(self, min_global_delay_hours: int, max_global_delay_hours: int) -> Optional[WalletInfo]:
        """
        Pick a random wallet that has held long enough to sell

        Args:
            min_global_delay_hours: Global lower bound on hold time
            max_global_delay_hours: Global upper bound on hold time

        Returns:
            The chosen wallet (sell already recorded), or None if none is eligible
        """
        now = self._clock()
        eligible = [
            w for w in self.wallets
            if w.can_sell(min_global_delay_hours, max_global_delay_hours, now, self._rng)
        ]

        if not eligible:
            return None

        self._rng.shuffle(eligible)
        wallet = eligible[0]
        wallet.record_sell(now)

        logger.info(
            "wallet_selected_for_sell",
            pubkey=str(wallet.pubkey),
            profile=wallet.profile.value,
            eligible_count=len(eligible)
        )
        return wallet

    def record_buy(self, pubkey: Pubkey) -> bool:
        """Record a completed buy, returns False if the wallet is unknown"""
        wallet = self.get_wallet(pubkey)
        if wallet is None:
            return False
        wallet.record_buy(self._clock())
        return True

    def get_wallet(self, pubkey: Pubkey) -> Optional[WalletInfo]:
        for wallet in self.wallets:
            if wallet.pubkey == pubkey:
                return wallet
        return None

    def wallet_count(self) -> int:
        return len(self.wallets)

    def get_usage_stats(self) -> Dict[str, int]:
        return {str(w.pubkey): w.usage_count for w in self.wallets}

    def get_profile_stats(self) -> Dict[WalletProfile, int]:
        return dict(Counter(w.profile for w in self.wallets))

    def reset_usage_stats(self) -> None:
        for wallet in self.wallets:
            wallet.usage_count = 0
        logger.info("wallet_usage_stats_reset", wallet_count=len(self.wallets))

    def get_least_used_wallets(self, count: int) -> List[WalletInfo]:
        return sorted(self.wallets, key=lambda w: w.usage_count)[:count]

    def generate_interval(self, base_interval_ms: int) -> int:
        """
        Draw a trading interval from a three-tier mixture

        - 70%: 0.5x to 2x base
        - 20%: 2x to 5x base
        - 10%: 5x to 10x base (realistic pauses)

        The result is jittered by +/-10% and floored at one second.
        """
        roll = self._rng.random()
        if roll < 0.7:
            multiplier = 0.5 + self._rng.random() * 1.5
        elif roll < 0.9:
            multiplier = 2.0 + self._rng.random() * 3.0
        else:
            multiplier = 5.0 + self._rng.random() * 5.0

        jitter = 0.9 + self._rng.random() * 0.2
        return max(int(base_interval_ms * multiplier * jitter), MIN_INTERVAL_MS)

    def generate_amount(self, min_amount: float, max_amount: float) -> float:
        """
        Draw a trade amount, skewed toward the low end of the range

        - 60%: bottom 40% of the range
        - 30%: middle 40%
        - 10%: top 20%

        Rounded to 3 decimals.
        """
        span = max_amount - min_amount
        roll = self._rng.random()
        if roll < 0.6:
            amount = min_amount + span * 0.4 * self._rng.random()
        elif roll < 0.9:
            amount = min_amount + span * (0.4 + 0.4 * self._rng.random())
        else:
            amount = min_amount + span * (0.8 + 0.2 * self._rng.random())

        return round(amount, 3)

    def should_buy_next(self, recent_trades: Sequence[TradeType], target_buy_ratio: float) -> bool:
        """
        Decide the direction of the next trade to steer toward a buy ratio

        Looks at up to the last 10 trades. Below target the buy probability is
        raised to target+0.1; above target+0.1 it drops to target-0.2.
        """
        window = list(recent_trades)[-10:]
        if not window:
            return True

        buy_ratio = sum(1 for t in window if t is TradeType.BUY) / len(window)

        if buy_ratio < target_buy_ratio:
            probability = target_buy_ratio + 0.1
        elif buy_ratio > target_buy_ratio + 0.1:
            probability = target_buy_ratio - 0.2
        else:
            probability = target_buy_ratio

        return self._rng.random() < min(max(probability, 0.0), 1.0)


def load_keypair_file(path: Path) -> Keypair:
    """
    Read a base58-encoded secret key from a wallet file

    Raises:
        ValueError: If the key is too short or not a valid keypair
    """
    secret = path.read_text().strip()
    if len(secret) < MIN_SECRET_KEY_LENGTH:
        raise ValueError(f"Invalid private key length: {len(secret)}")

    key_bytes = base58.b58decode(secret)
    if len(key_bytes) != SECRET_KEY_BYTES:
        raise ValueError(f"Decoded key is {len(key_bytes)} bytes, expected {SECRET_KEY_BYTES}")
    return Keypair.from_bytes(key_bytes)
