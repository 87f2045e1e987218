import json

import pytest

from signalflow.signals.adaptive import AdaptiveTimingStrategy
from signalflow.signals.base import TrafficState


pytestmark = pytest.mark.unit


def states(queues=(0, 0, 0, 0), waits=(0, 0, 0, 0)):
    return [
        TrafficState(queue_length=q, average_wait_time=w, max_wait_time=w)
        for q, w in zip(queues, waits)
    ]


def run_until_switch(strategy, traffic, limit=120):
    """Feed one-second ticks and return the elapsed seconds at the phase change."""

    phase = strategy.current_phase
    for second in range(1, limit + 1):
        strategy.update(1.0, traffic)
        if strategy.current_phase != phase:
            return second
    return None


@pytest.fixture
def adaptive(crossroads):
    strategy = AdaptiveTimingStrategy()
    strategy.initialize(crossroads)
    return strategy


@pytest.fixture
def north_south_forward(adaptive):
    """Strategy in phase 1 (N/S forward) whose next phase serves East and West."""

    adaptive.advance_to_next_phase()
    assert adaptive.current_phase == 1
    assert adaptive.next_phase_change_time == pytest.approx(30.0)
    return adaptive


def test_without_traffic_states_it_is_a_plain_timer(adaptive):
    assert run_until_switch(adaptive, None) == 30


@pytest.mark.parametrize(
    "demand, expected",
    [(0, 30.0), (10, 37.5), (20, 45.0), (200, 45.0)],
)
def test_target_duration_scales_with_demand(adaptive, demand, expected):
    assert adaptive.target_duration(demand) == pytest.approx(expected)


def test_target_duration_is_clamped(adaptive):
    adaptive.update_config({"base_duration": 4, "traffic_sensitivity": 1.0, "max_phase_duration": 20})

    assert adaptive.target_duration(0) == pytest.approx(10.0)
    assert adaptive.target_duration(1000) == pytest.approx(20.0)


def test_demand_counts_only_the_phase_approaches(adaptive):
    adaptive.update(0, states(queues=(4, 10, 2, 0), waits=(1, 50, 3, 0)))

    assert adaptive.demand_for_phase(0) == pytest.approx(4 + 1 + 2 + 3)
    assert adaptive.demand_for_phase(2) == pytest.approx(10 + 50)


def test_weights_apply_to_demand(adaptive):
    adaptive.update_config({"queue_weight": 2, "wait_time_weight": 0.5})
    adaptive.update(0, states(queues=(3, 0, 0, 0), waits=(4, 0, 0, 0)))

    assert adaptive.demand_for_phase(0) == pytest.approx(2 * 3 + 0.5 * 4)


def test_early_switch_when_next_phase_has_more_than_double_demand(north_south_forward):
    traffic = states(queues=(2, 10, 0, 10))

    assert run_until_switch(north_south_forward, traffic) == 23


def test_empty_phase_gives_way_once_minimum_has_elapsed(north_south_forward):
    traffic = states(queues=(0, 3, 0, 3))

    assert run_until_switch(north_south_forward, traffic) == 10
    assert north_south_forward.current_phase == 2


def test_empty_phase_holds_when_nobody_waits_next(north_south_forward):
    assert run_until_switch(north_south_forward, states()) == 30


def test_jumps_to_busiest_phase_when_it_dominates(adaptive):
    # phase 0 and phase 1 each see demand 1, phase 2 sees 10
    traffic = states(queues=(1, 10, 0, 0))

    assert run_until_switch(adaptive, traffic) == 23
    assert adaptive.current_phase == 2
    assert adaptive.phase_changes == 1
    assert adaptive.next_phase_change_time == pytest.approx(37.5)


def test_jump_is_not_sticky(adaptive):
    adaptive.update(1.0, states(queues=(1, 10, 0, 0)))
    adaptive._jump_phase = 3

    adaptive.advance_to_next_phase()
    adaptive.advance_to_next_phase()

    assert adaptive.current_phase == 0


def test_never_switches_before_minimum_duration(crossroads):
    strategy = AdaptiveTimingStrategy()
    strategy.update_config({"base_duration": 4, "min_phase_duration": 10})
    strategy.initialize(crossroads)
    strategy.advance_to_next_phase()

    assert run_until_switch(strategy, states(queues=(0, 20, 0, 20))) == 10


def test_extends_phase_while_its_own_demand_dominates(north_south_forward):
    traffic = states(queues=(10, 0, 0, 0))

    # target 30 s plus 0.5 * base * min(1, (10 - 0) / 10) = 15 s
    assert run_until_switch(north_south_forward, traffic) == 45


def test_extension_never_passes_maximum_duration(north_south_forward):
    north_south_forward.update_config({"max_phase_duration": 35})

    assert run_until_switch(north_south_forward, states(queues=(10, 0, 0, 0))) == 35


def test_switches_at_target_when_demands_are_comparable(north_south_forward):
    traffic = states(queues=(10, 13, 0, 0))

    assert run_until_switch(north_south_forward, traffic) == 30


def test_zero_delta_never_switches(north_south_forward):
    north_south_forward.time_in_phase = 100.0

    north_south_forward.update(0, states(queues=(0, 10, 0, 10)))

    assert north_south_forward.current_phase == 1


def test_next_target_uses_demand_of_the_new_phase(north_south_forward):
    traffic = states(queues=(0, 5, 0, 5))
    run_until_switch(north_south_forward, traffic)

    assert north_south_forward.current_phase == 2
    assert north_south_forward.next_phase_change_time == pytest.approx(37.5)


def test_performance_analytics_keep_bounded_history(adaptive):
    for _ in range(12):
        run_until_switch(adaptive, None)

    analytics = adaptive.performance_analytics()

    assert analytics["phase_changes"] == 12
    assert len(adaptive.phase_duration_history) == 10
    assert analytics["phase_duration_avg"] == pytest.approx(30.0)
    assert analytics["adaptation_rate"] == pytest.approx(0.0)
    assert analytics["demand_by_phase"] == [0.0, 0.0, 0.0, 0.0]


def test_reset_clears_history_and_metrics(adaptive):
    adaptive.update(1.0, states(queues=(3, 3, 3, 3)))
    run_until_switch(adaptive, None)

    adaptive.reset()

    assert adaptive.phase_changes == 0
    assert adaptive.queue_lengths == [0.0] * 4
    assert adaptive.current_phase == 0


def test_round_trip_restores_metrics_and_target(crossroads, north_south_forward):
    traffic = states(queues=(2, 7, 1, 4), waits=(5, 0, 0, 9))
    for _ in range(12):
        north_south_forward.update(1.0, traffic)
    data = json.loads(json.dumps(north_south_forward.to_dict()))

    restored = AdaptiveTimingStrategy.from_dict(data, crossroads)

    assert restored.to_dict() == north_south_forward.to_dict()
    for _ in range(40):
        assert restored.update(1.0, traffic) == north_south_forward.update(1.0, traffic)
