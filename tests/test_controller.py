import random

import pytest

from signalflow.agents.vehicle import Car
from signalflow.metrics.collector import FLOW_WINDOW, MetricsCollector
from signalflow.signals.controller import TrafficLightController


pytestmark = pytest.mark.unit


def north_lane(intersection):
    return next(road for road in intersection.in_roads if road.id == "N_in").rightmost_lane


@pytest.fixture
def controller(crossroads, manager):
    return crossroads.attach_control(manager)


def test_controller_uses_selected_strategy(crossroads, manager):
    manager.select_strategy("traffic-enforcer")

    controller = TrafficLightController(crossroads, manager)

    assert controller.strategy_type == "traffic-enforcer"
    assert controller.strategy.intersection is crossroads
    assert controller.state == [[0, 0, 0]] * 4


def test_u_turn_follows_left_signal(controller):
    controller._state = [[1, 0, 0], [0, 1, 1], [0, 0, 0], [0, 0, 0]]

    assert controller.allows(0, 3)
    assert not controller.allows(1, 3)
    assert controller.allows(1, 2)


def test_state_is_a_copy(controller):
    controller.state[0][0] = 7

    assert 7 not in controller.state[0]


def test_sample_reports_queued_cars_and_waits(crossroads, controller):
    lane = north_lane(crossroads)
    queued = Car("queued", rng=random.Random(1))
    queued.place(lane, 90.0)
    queued.wait_time = 12.0
    moving = Car("moving", velocity=8.0, rng=random.Random(2))
    moving.place(lane, 85.0)
    far = Car("far", rng=random.Random(3))
    far.place(lane, 10.0)

    states = controller.sampler.sample(5.0, controller.state)

    assert states[0].queue_length == 1
    assert states[0].average_wait_time == pytest.approx(12.0)
    assert states[0].max_wait_time == pytest.approx(12.0)
    assert [s.queue_length for s in states[1:]] == [0, 0, 0]
    assert states[0].signal_state == controller.state[0]


def test_flow_rate_uses_sliding_window(controller):
    controller.record_crossing(2)
    controller.time = 30.0
    controller.record_crossing(2)
    controller.record_crossing(1)

    assert controller.sampler.flow_rate(2, 30.0) == pytest.approx(2.0)
    assert controller.sampler.flow_rate(2, FLOW_WINDOW + 10.0) == pytest.approx(1.0)
    assert controller.sampler.flow_rate(1, 200.0) == 0.0


def test_on_tick_feeds_strategy(crossroads, manager):
    manager.select_strategy("adaptive-timing")
    controller = crossroads.attach_control(manager)
    car = Car("c1", rng=random.Random(4))
    car.place(north_lane(crossroads), 90.0)

    controller.on_tick(1.0)

    assert controller.time == pytest.approx(1.0)
    assert controller.traffic_states[0].queue_length == 1
    assert controller.strategy.queue_lengths[0] == 1


def test_set_strategy_and_reset(controller):
    controller.on_tick(1.0)

    controller.set_strategy("all-red-flashing")
    controller.reset()

    assert controller.strategy_type == "all-red-flashing"
    assert controller.time == 0.0
    assert not controller.sampler.crossings


def test_controller_round_trip(crossroads, manager, controller):
    for _ in range(7):
        controller.on_tick(1.0)

    restored = TrafficLightController.from_dict(controller.to_dict(), crossroads, manager)

    assert restored.time == controller.time
    assert restored.state == controller.state
    assert restored.to_dict() == controller.to_dict()


def test_metrics_collector_rolls_up_cars(crossroads, controller):
    lane = north_lane(crossroads)
    stopped = Car("stopped", rng=random.Random(5))
    stopped.place(lane, 90.0)
    stopped.wait_time = 4.0
    cruising = Car("cruising", velocity=10.0, rng=random.Random(6))
    cruising.place(lane, 20.0)
    controller.on_tick(1.0)
    collector = MetricsCollector(history_size=2)

    snapshot = collector.sample(1.0, [stopped, cruising], [crossroads])

    assert snapshot.cars == 2
    assert snapshot.stopped_cars == 1
    assert snapshot.average_speed == pytest.approx(5.0)
    assert snapshot.average_wait_time == pytest.approx(4.0)
    assert snapshot.max_queue_length == 1
    assert snapshot.queue_lengths == {"centre": 1}

    collector.sample(2.0, [], [crossroads])
    collector.sample(3.0, [], [crossroads])
    assert [s.time for s in collector.recent()] == [2.0, 3.0]
