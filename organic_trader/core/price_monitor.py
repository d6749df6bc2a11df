"""
Price monitor for the target pool
Keeps a bounded price history and throttles trading after sharp price rises
"""

import statistics
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

from organic_trader.core.logger import get_logger


logger = get_logger(__name__)


RETENTION_SECONDS = 24 * 60 * 60
DETECTION_WINDOW_SECONDS = 10 * 60
DEFAULT_THROTTLE_SECONDS = 30 * 60
THROTTLE_MULTIPLIER = 3.0

TREND_WINDOW = 5
VOLATILITY_WINDOW = 10


class PriceTrend(Enum):
    STRONG_UPWARD = "strong_upward"
    UPWARD = "upward"
    NEUTRAL = "neutral"
    DOWNWARD = "downward"
    STRONG_DOWNWARD = "strong_downward"


@dataclass
class PricePoint:
    """Single observed pool price"""
    price: float
    timestamp: float  # monotonic seconds
    volume_sol: float


@dataclass
class PriceStats:
    """Summary of the stored price history"""
    current_price: float = 0.0
    min_price: float = 0.0
    max_price: float = 0.0
    avg_price: float = 0.0
    volatility: float = 0.0
    trend: PriceTrend = PriceTrend.NEUTRAL
    data_points: int = 0

    def to_dict(self) -> dict:
        return {
            "current_price": self.current_price,
            "min_price": self.min_price,
            "max_price": self.max_price,
            "avg_price": self.avg_price,
            "volatility": self.volatility,
            "trend": self.trend.value,
            "data_points": self.data_points
        }


class PriceMonitor:
    """
    Detects sharp price rises and exposes a trading throttle

    Throttling is a two-state machine. It switches on when the price rise
    between the earliest and latest point of the last 10 minutes exceeds
    price_change_threshold. It switches off once throttle_duration_s has
    passed since activation without a fresh breach; the price does not need
    to come back down.

    Usage:
        monitor = PriceMonitor(max_history_size=100, price_change_threshold=0.05)
        monitor.record(price, volume_sol)
        interval_ms *= monitor.throttle_multiplier()
    """

    def __init__(
        self,
        max_history_size: int = 100,
        price_change_threshold: float = 0.05,
        throttle_duration_s: float = DEFAULT_THROTTLE_SECONDS,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Args:
            max_history_size: Maximum number of stored price points
            price_change_threshold: Fractional rise that triggers throttling (0.05 = 5%)
            throttle_duration_s: Cool-down before throttling can end
            clock: Monotonic time source in seconds
        """
        self.max_history_size = max_history_size
        self.price_change_threshold = price_change_threshold
        self.throttle_duration_s = throttle_duration_s
        self._clock = clock

        self._history: deque = deque()
        self._is_throttling = False
        self._throttle_started_at: Optional[float] = None

        logger.info(
            "price_monitor_initialized",
            max_history_size=max_history_size,
            price_change_threshold=price_change_threshold,
            throttle_duration_s=throttle_duration_s
        )

    @property
    def history(self) -> List[PricePoint]:
        return list(self._history)

    def record(self, price: float, volume_sol: float = 0.0) -> None:
        """
        Add a price observation and re-evaluate throttling

        Args:
            price: Observed pool price
            volume_sol: Volume traded with this observation
        """
        now = self._clock()
        self._history.append(PricePoint(price=price, timestamp=now, volume_sol=volume_sol))

        self._evict_expired(now)
        while len(self._history) > self.max_history_size:
            self._history.popleft()

        self._update_throttling(now)

    add_price_point = record

    def cleanup_old_data(self) -> int:
        """Drop points older than the retention horizon, returns how many were removed"""
        before = len(self._history)
        self._evict_expired(self._clock())
        return before - len(self._history)

    def _evict_expired(self, now: float) -> None:
        cutoff = now - RETENTION_SECONDS
        while self._history and self._history[0].timestamp < cutoff:
            self._history.popleft()

    def _update_throttling(self, now: float) -> None:
        window_start = now - DETECTION_WINDOW_SECONDS
        recent = [p for p in self._history if p.timestamp > window_start]

        if len(recent) < 2:
            return

        earliest = recent[0].price
        latest = recent[-1].price
        if earliest <= 0:
            return

        change_pct = (latest - earliest) / earliest

        if change_pct > self.price_change_threshold:
            if not self._is_throttling:
                self._is_throttling = True
                self._throttle_started_at = now
                logger.warning(
                    "price_spike_throttle_activated",
                    change_pct=round(change_pct * 100, 2),
                    window_points=len(recent),
                    throttle_duration_s=self.throttle_duration_s
                )
        elif self._is_throttling and self._throttle_started_at is not None:
            if now - self._throttle_started_at > self.throttle_duration_s:
                self._is_throttling = False
                self._throttle_started_at = None
                logger.info("price_throttle_ended", change_pct=round(change_pct * 100, 2))

    def is_throttled(self) -> bool:
        return self._is_throttling

    def throttle_multiplier(self) -> float:
        """Interval multiplier: 3.0 while throttled, 1.0 otherwise"""
        return THROTTLE_MULTIPLIER if self._is_throttling else 1.0

    def trend(self) -> PriceTrend:
        """Classify the change across the last five observations"""
        if len(self._history) < TREND_WINDOW:
            return PriceTrend.NEUTRAL

        window = list(self._history)[-TREND_WINDOW:]
        first, last = window[0].price, window[-1].price
        if first <= 0:
            return PriceTrend.NEUTRAL

        change_pct = (last - first) / first
        if change_pct > 0.05:
            return PriceTrend.STRONG_UPWARD
        if change_pct > 0.02:
            return PriceTrend.UPWARD
        if change_pct < -0.05:
            return PriceTrend.STRONG_DOWNWARD
        if change_pct < -0.02:
            return PriceTrend.DOWNWARD
        return PriceTrend.NEUTRAL

    def volatility(self) -> float:
        """Coefficient of variation over the last ten observations"""
        if len(self._history) < 3:
            return 0.0

        prices = [p.price for p in list(self._history)[-VOLATILITY_WINDOW:]]
        mean = statistics.fmean(prices)
        if mean == 0:
            return 0.0
        return statistics.pstdev(prices) / mean

    def stats(self) -> PriceStats:
        if not self._history:
            return PriceStats()

        prices = [p.price for p in self._history]
        return PriceStats(
            current_price=prices[-1],
            min_price=min(prices),
            max_price=max(prices),
            avg_price=statistics.fmean(prices),
            volatility=self.volatility(),
            trend=self.trend(),
            data_points=len(prices)
        )
