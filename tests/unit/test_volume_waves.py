"""
Unit tests for Volume Waves (core/volume_waves.py)

Tests:
- Phase dwell and lazy transitions
- Transition table
- Interval scaling (phase, hour of day, weekday)
"""

import random
from datetime import datetime
from unittest.mock import MagicMock

import pytest

from organic_trader.core.volume_waves import (
    BURST_DURATION_S,
    DORMANT_DURATION_S,
    OrganicWavePattern,
    PhaseMultipliers,
    TradingPhase,
    VolumeWaveManager,
    WeeklyPattern,
    hour_of_day_multiplier,
)


# Monday 14:00
FIXED_NOW = datetime(2024, 3, 4, 14, 0, 0)


def scripted_rng(*values):
    """Random source whose random() returns the given values then 0.5"""
    rng = MagicMock(spec=random.Random)
    sequence = list(values)
    rng.random.side_effect = lambda: sequence.pop(0) if sequence else 0.5
    rng.randrange.return_value = 0
    return rng


def make_manager(clock, *rolls, active_hours=2.0, slow_hours=1.0):
    return VolumeWaveManager(
        active_hours,
        slow_hours,
        rng=scripted_rng(*rolls),
        clock=clock,
        now=lambda: FIXED_NOW
    )


# =============================================================================
# INITIAL PHASE
# =============================================================================

def test_initial_phase_active(clock):
    """Test a roll below 0.6 starts Active"""
    assert make_manager(clock, 0.59).current_phase() == TradingPhase.ACTIVE


def test_initial_phase_slow(clock):
    """Test a roll at or above 0.6 starts Slow"""
    assert make_manager(clock, 0.6).current_phase() == TradingPhase.SLOW


def test_initial_phase_split_over_seeds(clock):
    """Test roughly 60% of managers start Active"""
    active = sum(
        VolumeWaveManager(2, 1, rng=random.Random(seed), clock=clock).current_phase() == TradingPhase.ACTIVE
        for seed in range(2_000)
    )
    assert active / 2_000 == pytest.approx(0.6, abs=0.04)


# =============================================================================
# TRANSITIONS
# =============================================================================

def test_no_transition_before_dwell(clock):
    """Test the phase holds until its dwell time is over"""
    manager = make_manager(clock, 0.1)
    clock.advance(2 * 3600 - 1)

    assert manager.current_phase() == TradingPhase.ACTIVE


def test_active_to_burst(clock):
    """Test Active moves to Burst on a roll below 0.15"""
    manager = make_manager(clock, 0.1, 0.14)
    clock.advance(2 * 3600)

    assert manager.current_phase() == TradingPhase.BURST


def test_active_to_slow(clock):
    """Test Active moves to Slow otherwise"""
    manager = make_manager(clock, 0.1, 0.15)
    clock.advance(2 * 3600)

    assert manager.current_phase() == TradingPhase.SLOW


def test_active_only_lands_in_burst_or_slow(clock):
    """Test Active never transitions anywhere but Burst or Slow"""
    for seed in range(200):
        manager = VolumeWaveManager(2, 1, rng=random.Random(seed), clock=clock)
        manager.force_phase(TradingPhase.ACTIVE)
        clock.advance(2 * 3600)
        assert manager.current_phase() in (TradingPhase.BURST, TradingPhase.SLOW)


def test_slow_to_dormant_or_active(clock):
    """Test Slow moves to Dormant below 0.10, Active otherwise"""
    dormant = make_manager(clock, 0.9, 0.05)
    active = make_manager(clock, 0.9, 0.10)
    clock.advance(3600)

    assert dormant.current_phase() == TradingPhase.DORMANT
    assert active.current_phase() == TradingPhase.ACTIVE


def test_burst_always_to_slow(clock):
    """Test Burst lasts 15 minutes and always drops to Slow"""
    manager = make_manager(clock, 0.1)
    manager.force_phase(TradingPhase.BURST)

    clock.advance(BURST_DURATION_S - 1)
    assert manager.current_phase() == TradingPhase.BURST

    clock.advance(1)
    assert manager.current_phase() == TradingPhase.SLOW


def test_dormant_always_to_active(clock):
    """Test Dormant lasts an hour and always returns to Active"""
    manager = make_manager(clock, 0.1)
    manager.force_phase(TradingPhase.DORMANT)
    clock.advance(DORMANT_DURATION_S)

    assert manager.current_phase() == TradingPhase.ACTIVE


def test_one_transition_per_call(clock):
    """Test a long gap still advances the machine a single step per call"""
    manager = make_manager(clock, 0.1, 0.9, 0.9)
    clock.advance(10 * 3600)

    assert manager.current_phase() == TradingPhase.SLOW
    # Dwell restarted on transition, so the next call transitions again
    # only after the Slow dwell
    assert manager.current_phase() == TradingPhase.SLOW
    clock.advance(3600)
    assert manager.current_phase() == TradingPhase.ACTIVE


def test_transition_counted(clock, reset_metrics):
    """Test transitions are counted per target phase"""
    manager = make_manager(clock, 0.1, 0.9)
    clock.advance(2 * 3600)
    manager.current_phase()

    assert reset_metrics.get_counter("volume_wave_transitions", labels={"to": "slow"}) == 1


# =============================================================================
# MULTIPLIERS AND INFO
# =============================================================================

@pytest.mark.parametrize("phase, frequency, amount", [
    (TradingPhase.ACTIVE, 1.0, 1.0),
    (TradingPhase.SLOW, 2.5, 0.7),
    (TradingPhase.BURST, 0.3, 1.5),
    (TradingPhase.DORMANT, 4.0, 0.3),
])
def test_phase_multipliers(clock, phase, frequency, amount):
    """Test default phase multipliers"""
    manager = make_manager(clock, 0.1)
    manager.force_phase(phase)

    assert manager.frequency_multiplier() == frequency
    assert manager.amount_multiplier() == amount


def test_set_activity_multipliers(clock):
    """Test custom multipliers replace the defaults"""
    manager = make_manager(clock, 0.1)
    manager.set_activity_multipliers(PhaseMultipliers(active_frequency=2.0, active_amount=0.5))

    assert manager.frequency_multiplier() == 2.0
    assert manager.amount_multiplier() == 0.5


def test_wave_info(clock):
    """Test wave info reports time in and remaining in the phase"""
    manager = make_manager(clock, 0.1)
    clock.advance(1800)

    info = manager.wave_info()

    assert info.current_phase == TradingPhase.ACTIVE
    assert info.time_in_phase_s == 1800
    assert info.time_remaining_s == 2 * 3600 - 1800
    assert info.to_dict()["current_phase"] == "active"


# =============================================================================
# INTERVALS
# =============================================================================

@pytest.mark.parametrize("hour, expected", [
    (0, 1.5), (5, 1.5), (6, 0.8), (9, 0.8), (10, 1.2), (11, 1.2),
    (12, 0.9), (14, 0.9), (15, 0.7), (17, 0.7), (18, 1.1), (20, 1.1),
    (21, 1.3), (23, 1.3), (26, 1.5),
])
def test_hour_of_day_multiplier(hour, expected):
    """Test the hour-of-day table (hours wrap at 24)"""
    assert hour_of_day_multiplier(hour) == expected


def test_natural_interval_composition(clock):
    """Test interval = base x phase x hour x jitter"""
    # init roll, then jitter roll 0.5 -> variation 1.0
    manager = make_manager(clock, 0.1, 0.5)
    manager.force_phase(TradingPhase.SLOW)

    # 14:00 -> 0.9, slow -> 2.5
    assert manager.natural_interval(10_000) == int(10_000 * 2.5 * 0.9 * 1.0)


def test_natural_interval_jitter_bounds(clock):
    """Test jitter stays within +/-20%"""
    manager = VolumeWaveManager(2, 1, rng=random.Random(4), clock=clock, now=lambda: FIXED_NOW)
    manager.force_phase(TradingPhase.ACTIVE)

    for _ in range(500):
        interval = manager.natural_interval(10_000)
        assert 10_000 * 0.9 * 0.8 - 1 <= interval <= 10_000 * 0.9 * 1.2


def test_weekly_pattern_requires_seven_days():
    """Test weekly pattern validation"""
    with pytest.raises(ValueError):
        WeeklyPattern([1.0] * 6)


def test_weekly_pattern_generation():
    """Test weekdays are busier than weekends"""
    pattern = WeeklyPattern.generate_random(random.Random(8))

    assert all(0.8 <= m <= 1.2 for m in pattern.day_multipliers[:5])
    assert all(1.2 <= m <= 1.8 for m in pattern.day_multipliers[5:])
    assert pattern.multiplier_for(FIXED_NOW) == pattern.day_multipliers[0]


def test_organic_interval_applies_offset_and_weekday(clock):
    """Test organic interval layers daily offset and weekday multiplier"""
    waves = OrganicWavePattern(2, 1, rng=random.Random(6), clock=clock, now=lambda: FIXED_NOW)
    waves.volume_manager.force_phase(TradingPhase.ACTIVE)
    waves.weekly_pattern = WeeklyPattern([2.0] * 7)

    hour_mult = hour_of_day_multiplier(FIXED_NOW.hour + waves.daily_cycle_offset_hours)
    for _ in range(200):
        interval = waves.organic_interval(10_000)
        assert 10_000 * hour_mult * 0.8 * 2.0 - 2 <= interval <= 10_000 * hour_mult * 1.2 * 2.0

    assert 0 <= waves.daily_cycle_offset_hours < 24
    assert waves.info().current_phase == TradingPhase.ACTIVE
