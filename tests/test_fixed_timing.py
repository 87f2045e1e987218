import json
import random

import pytest

from signalflow.signals.fixed import FixedTimingStrategy


pytestmark = pytest.mark.unit


@pytest.fixture
def strategy(crossroads):
    fixed = FixedTimingStrategy(random.Random(1))
    fixed.update_config({"base_duration": 1.0, "variation_percentage": 0})
    fixed.initialize(crossroads)
    return fixed


def test_zero_delta_does_not_change_phase_and_overshoot_switches(strategy):
    first = strategy.update(0.9)
    assert strategy.current_phase == 0

    assert strategy.update(0) == first
    assert strategy.current_phase == 0

    second = strategy.update(0.2)
    assert strategy.current_phase == 1
    assert second != first


def test_phase_table_matrices(strategy):
    assert strategy.current_signal_states() == [[1, 0, 0], [0, 0, 0], [1, 0, 0], [0, 0, 0]]
    strategy.update(1.0)
    assert strategy.current_signal_states() == [[0, 1, 1], [0, 0, 0], [0, 1, 1], [0, 0, 0]]
    strategy.update(1.0)
    assert strategy.current_signal_states() == [[0, 0, 0], [1, 0, 0], [0, 0, 0], [1, 0, 0]]
    strategy.update(1.0)
    assert strategy.current_signal_states() == [[0, 0, 0], [0, 1, 1], [0, 0, 0], [0, 1, 1]]
    strategy.update(1.0)
    assert strategy.current_phase == 0


def test_small_steps_complete_a_phase_despite_float_accumulation(strategy):
    for _ in range(9):
        strategy.update(0.1)
    assert strategy.current_phase == 0

    strategy.update(0.1)
    assert strategy.current_phase == 1
    assert strategy.time_in_phase == 0.0


def test_at_most_one_phase_change_per_update(crossroads):
    fixed = FixedTimingStrategy(random.Random(2))
    fixed.update_config({"base_duration": 0.1, "variation_percentage": 0})
    fixed.initialize(crossroads)

    fixed.update(1.0)

    assert fixed.current_phase == 1


def test_phase_stays_in_range_and_phases_respect_their_target(crossroads):
    rng = random.Random(11)
    fixed = FixedTimingStrategy(rng)
    fixed.update_config({"base_duration": 2.0, "variation_percentage": 10})
    fixed.initialize(crossroads)

    accumulated = 0.0
    target = fixed.next_phase_change_time
    for _ in range(500):
        delta = rng.choice([0.0, 0.05, 0.3, 1.0])
        phase = fixed.current_phase
        fixed.update(delta)
        accumulated += delta
        assert 0 <= fixed.current_phase < fixed.total_phases
        if fixed.current_phase != phase:
            assert target - 1e-9 <= accumulated < target + 1.0
            accumulated = 0.0
            target = fixed.next_phase_change_time


def test_duration_variation_is_symmetric_and_zero_is_honoured(crossroads):
    fixed = FixedTimingStrategy(random.Random(3))
    fixed.update_config({"base_duration": 10.0, "variation_percentage": 20})

    fixed.flip_multiplier = 0.0
    assert fixed.phase_duration_for_current_phase() == pytest.approx(8.0)
    fixed.flip_multiplier = 1.0
    assert fixed.phase_duration_for_current_phase() == pytest.approx(12.0)

    fixed.update_config({"variation_percentage": 0})
    assert fixed.phase_duration_for_current_phase() == pytest.approx(10.0)


def test_two_road_intersection_collapses_to_single_phase(junction_factory):
    fixed = FixedTimingStrategy(random.Random(4))
    fixed.initialize(junction_factory("EW"))

    assert fixed.total_phases == 1
    assert fixed.current_signal_states() == [[1, 1, 1]] * 4
    fixed.update(1.0)
    fixed.update(1.0)
    assert fixed.current_phase == 0


def test_negative_delta_is_rejected(strategy):
    with pytest.raises(ValueError):
        strategy.update(-0.1)


def test_timing_statistics_track_actual_durations(strategy):
    strategy.update(0.6)
    strategy.update(0.6)

    stats = strategy.timing_statistics()

    assert stats["phase_durations"][0] == pytest.approx(1.2)
    assert stats["phase_target_durations"][0] == pytest.approx(1.0)
    assert stats["max_deviation"] == pytest.approx(0.2)


def test_round_trip_preserves_state_and_future_behaviour(crossroads, strategy):
    strategy.update(1.0)
    strategy.update(0.4)
    data = json.loads(json.dumps(strategy.to_dict()))

    restored = FixedTimingStrategy.from_dict(data, crossroads)

    assert restored.to_dict() == strategy.to_dict()
    for delta in (0.3, 0.3, 0.3, 0.0, 0.5):
        assert restored.update(delta) == strategy.update(delta)
        assert restored.current_phase == strategy.current_phase


def test_snapshot_uses_snake_case_keys(strategy):
    data = strategy.to_dict()

    assert data["strategy_type"] == "fixed-timing"
    for key in ("current_phase", "time_in_phase", "total_phases", "phase_duration", "config_options"):
        assert key in data
    assert data["config_options"]["base_duration"] == 1.0


def test_config_options_are_copies(strategy):
    options = strategy.get_config_options()
    options["base_duration"] = 99

    assert strategy.get_config_options()["base_duration"] == 1.0


def test_string_options_are_converted(strategy):
    strategy.update_config({"base_duration": "2", "enable_logging": "false"})

    assert strategy.config.base_duration == 2.0
    assert isinstance(strategy.config.base_duration, float)
    assert strategy.config.enable_logging is False


@pytest.mark.parametrize(
    "options",
    [
        {"variation_percentage": 10, "base_duration": "abc"},
        {"variation_percentage": 10, "base_duration": None},
        {"variation_percentage": 10, "base_duration": float("nan")},
        {"variation_percentage": 10, "base_duration": True},
        {"variation_percentage": 10, "enable_logging": "maybe"},
    ],
)
def test_invalid_option_is_rejected_and_nothing_is_applied(strategy, options):
    before = strategy.get_config_options()

    with pytest.raises(ValueError):
        strategy.update_config(options)

    assert strategy.get_config_options() == before
    strategy.update(1.0)
    assert strategy.current_phase == 1
