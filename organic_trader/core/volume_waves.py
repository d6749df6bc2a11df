"""
Volume waves for the organic trader
Long-horizon phase machine (Active/Slow/Burst/Dormant) that scales trading
cadence and size, plus an organic wrapper with daily and weekly rhythms
"""

import random
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional

from organic_trader.core.logger import get_logger
from organic_trader.core.metrics import get_metrics


logger = get_logger(__name__)
metrics = get_metrics()


BURST_DURATION_S = 15 * 60
DORMANT_DURATION_S = 60 * 60


class TradingPhase(Enum):
    ACTIVE = "active"    # normal activity
    SLOW = "slow"        # reduced activity
    BURST = "burst"      # short spike of activity
    DORMANT = "dormant"  # long pause


@dataclass
class PhaseMultipliers:
    """Frequency multipliers scale intervals (higher = slower), amount multipliers scale size"""
    active_frequency: float = 1.0
    active_amount: float = 1.0
    slow_frequency: float = 2.5
    slow_amount: float = 0.7
    burst_frequency: float = 0.3
    burst_amount: float = 1.5
    dormant_frequency: float = 4.0
    dormant_amount: float = 0.3

    def frequency(self, phase: TradingPhase) -> float:
        return getattr(self, f"{phase.value}_frequency")

    def amount(self, phase: TradingPhase) -> float:
        return getattr(self, f"{phase.value}_amount")


@dataclass
class VolumeWaveInfo:
    current_phase: TradingPhase
    time_in_phase_s: float
    time_remaining_s: float
    frequency_multiplier: float
    amount_multiplier: float

    def to_dict(self) -> dict:
        return {
            "current_phase": self.current_phase.value,
            "time_in_phase_s": self.time_in_phase_s,
            "time_remaining_s": self.time_remaining_s,
            "frequency_multiplier": self.frequency_multiplier,
            "amount_multiplier": self.amount_multiplier
        }


def hour_of_day_multiplier(hour: int) -> float:
    """Interval multiplier for a local hour (lower = busier)"""
    hour %= 24
    if hour <= 5:
        return 1.5   # very early morning
    if hour <= 9:
        return 0.8   # morning
    if hour <= 11:
        return 1.2   # late morning
    if hour <= 14:
        return 0.9   # lunch
    if hour <= 17:
        return 0.7   # afternoon
    if hour <= 20:
        return 1.1   # evening
    return 1.3       # night


class VolumeWaveManager:
    """
    Phase state machine that modulates trading over hour-scale horizons

    Transitions fire lazily from current_phase() once the phase's dwell
    time has elapsed, at most one per call:

        Active  -> Burst (15%) or Slow
        Slow    -> Dormant (10%) or Active
        Burst   -> Slow
        Dormant -> Active
    """

    def __init__(
        self,
        active_hours: float,
        slow_hours: float,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = datetime.now,
        multipliers: Optional[PhaseMultipliers] = None
    ):
        """
        Args:
            active_hours: Dwell time of the Active phase
            slow_hours: Dwell time of the Slow phase
            rng: Random source
            clock: Monotonic time source in seconds (dwell tracking)
            now: Wall-clock source (hour-of-day lookup)
            multipliers: Per-phase multipliers (defaults if omitted)
        """
        self._rng = rng or random.Random()
        self._clock = clock
        self._now = now
        self.active_duration_s = active_hours * 3600
        self.slow_duration_s = slow_hours * 3600
        self.multipliers = multipliers or PhaseMultipliers()

        self._phase = TradingPhase.ACTIVE if self._rng.random() < 0.6 else TradingPhase.SLOW
        self._phase_started_at = self._clock()

        logger.info(
            "volume_wave_manager_initialized",
            initial_phase=self._phase.value,
            active_hours=active_hours,
            slow_hours=slow_hours
        )

    def phase_duration_s(self, phase: TradingPhase) -> float:
        if phase is TradingPhase.ACTIVE:
            return self.active_duration_s
        if phase is TradingPhase.SLOW:
            return self.slow_duration_s
        if phase is TradingPhase.BURST:
            return BURST_DURATION_S
        return DORMANT_DURATION_S

    def current_phase(self) -> TradingPhase:
        """Return the current phase, advancing it first if its dwell time is over"""
        elapsed = self._clock() - self._phase_started_at
        if elapsed >= self.phase_duration_s(self._phase):
            self._switch_phase()
        return self._phase

    def _switch_phase(self) -> None:
        old_phase = self._phase

        if old_phase is TradingPhase.ACTIVE:
            new_phase = TradingPhase.BURST if self._rng.random() < 0.15 else TradingPhase.SLOW
        elif old_phase is TradingPhase.SLOW:
            new_phase = TradingPhase.DORMANT if self._rng.random() < 0.10 else TradingPhase.ACTIVE
        elif old_phase is TradingPhase.BURST:
            new_phase = TradingPhase.SLOW
        else:
            new_phase = TradingPhase.ACTIVE

        self._phase = new_phase
        self._phase_started_at = self._clock()

        metrics.increment_counter("volume_wave_transitions", labels={"to": new_phase.value})
        logger.info(
            "volume_wave_phase_transition",
            from_phase=old_phase.value,
            to_phase=new_phase.value,
            duration_s=self.phase_duration_s(new_phase)
        )

    def frequency_multiplier(self) -> float:
        return self.multipliers.frequency(self._phase)

    def amount_multiplier(self) -> float:
        return self.multipliers.amount(self._phase)

    def wave_info(self) -> VolumeWaveInfo:
        elapsed = self._clock() - self._phase_started_at
        remaining = max(0.0, self.phase_duration_s(self._phase) - elapsed)
        return VolumeWaveInfo(
            current_phase=self._phase,
            time_in_phase_s=elapsed,
            time_remaining_s=remaining,
            frequency_multiplier=self.frequency_multiplier(),
            amount_multiplier=self.amount_multiplier()
        )

    def set_activity_multipliers(self, multipliers: PhaseMultipliers) -> None:
        self.multipliers = multipliers
        logger.info("volume_wave_multipliers_updated")

    def force_phase(self, phase: TradingPhase) -> None:
        """Jump straight to a phase and restart its dwell timer"""
        old_phase = self._phase
        self._phase = phase
        self._phase_started_at = self._clock()
        logger.info("volume_wave_phase_forced", from_phase=old_phase.value, to_phase=phase.value)

    def natural_interval(self, base_interval_ms: int, hour_offset: int = 0) -> int:
        """
        Scale an interval by phase, hour of day and a +/-20% jitter

        Args:
            base_interval_ms: Interval before wave scaling
            hour_offset: Hours added to the local hour before the lookup
        """
        time_multiplier = hour_of_day_multiplier(self._now().hour + hour_offset)
        random_variation = 0.8 + self._rng.random() * 0.4
        return int(base_interval_ms * self.frequency_multiplier() * time_multiplier * random_variation)

    def next_interval(self, base_interval_ms: int) -> int:
        """Advance the phase machine, then return the natural interval"""
        self.current_phase()
        return self.natural_interval(base_interval_ms)


class WeeklyPattern:
    """Per-weekday interval multipliers, drawn once (weekends quieter)"""

    def __init__(self, day_multipliers: List[float]):
        if len(day_multipliers) != 7:
            raise ValueError("Weekly pattern needs exactly 7 day multipliers")
        self.day_multipliers = list(day_multipliers)

    @classmethod
    def generate_random(cls, rng: Optional[random.Random] = None) -> "WeeklyPattern":
        rng = rng or random.Random()
        weekdays = [0.8 + rng.random() * 0.4 for _ in range(5)]
        weekend = [1.2 + rng.random() * 0.6 for _ in range(2)]
        return cls(weekdays + weekend)

    def multiplier_for(self, moment: datetime) -> float:
        # Monday=0 .. Sunday=6
        return self.day_multipliers[moment.weekday()]


class OrganicWavePattern:
    """
    Volume waves with a randomized daily offset and a weekly rhythm on top

    Usage:
        waves = OrganicWavePattern(active_hours=2, slow_hours=1)
        interval_ms = waves.next_interval(base_interval_ms)
    """

    def __init__(
        self,
        active_hours: float,
        slow_hours: float,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = datetime.now
    ):
        self._rng = rng or random.Random()
        self._now = now
        self.volume_manager = VolumeWaveManager(
            active_hours, slow_hours, rng=self._rng, clock=clock, now=now
        )
        self.daily_cycle_offset_hours = self._rng.randrange(24)
        self.weekly_pattern = WeeklyPattern.generate_random(self._rng)

    def current_phase(self) -> TradingPhase:
        return self.volume_manager.current_phase()

    def organic_interval(self, base_interval_ms: int) -> int:
        self.volume_manager.current_phase()
        with_phase = self.volume_manager.natural_interval(
            base_interval_ms, hour_offset=self.daily_cycle_offset_hours
        )
        return int(with_phase * self.weekly_pattern.multiplier_for(self._now()))

    next_interval = organic_interval

    def amount_multiplier(self) -> float:
        return self.volume_manager.amount_multiplier()

    def frequency_multiplier(self) -> float:
        return self.volume_manager.frequency_multiplier()

    def info(self) -> VolumeWaveInfo:
        return self.volume_manager.wave_info()

    wave_info = info
