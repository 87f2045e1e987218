import math
import random

import pytest

from signalflow.agents.vehicle import Car
from signalflow.errors import DuplicateEntityError


pytestmark = pytest.mark.unit


def incoming(intersection, road_id):
    return next(road for road in intersection.in_roads if road.id == road_id)


def outgoing(intersection, road_id):
    return next(road for road in intersection.roads if road.id == road_id)


@pytest.fixture
def red_junction(crossroads, manager):
    manager.select_strategy("all-red-flashing")
    crossroads.attach_control(manager)
    return crossroads


@pytest.fixture
def green_corridor(junction_factory, manager):
    # Two connected sides collapse fixed timing to a single all-green phase.
    centre = junction_factory("NS")
    centre.attach_control(manager)
    return centre


def test_idm_acceleration_free_road():
    car = Car("c1", speed_limit=20.0, patience=1.0, velocity=10.0)

    assert car.compute_acceleration(math.inf) == pytest.approx(0.9375, rel=1e-4)


def test_idm_acceleration_with_leader():
    follower = Car("c1", speed_limit=20.0, velocity=10.0)
    gap, leader_velocity = 10.5, 8.0

    accel = follower.compute_acceleration(gap, leader_velocity)

    relative_speed = follower.velocity - leader_velocity
    s_star = follower.minimum_spacing + max(
        0.0,
        follower.velocity * follower.desired_time_headway
        + (follower.velocity * relative_speed)
        / (2 * math.sqrt(follower.acceleration_max * follower.deceleration_comfortable)),
    )
    expected = follower.acceleration_max * (
        1 - (follower.velocity / follower.desired_speed()) ** follower.delta - (s_star / gap) ** 2
    )
    assert accel == pytest.approx(expected, rel=1e-4)


def test_turn_directions(crossroads):
    north_in = incoming(crossroads, "N_in")

    assert north_in.turn_direction(outgoing(crossroads, "E_out")) == 0
    assert north_in.turn_direction(outgoing(crossroads, "S_out")) == 1
    assert north_in.turn_direction(outgoing(crossroads, "W_out")) == 2
    assert north_in.turn_direction(outgoing(crossroads, "N_out")) == 3


def test_next_road_avoids_u_turns(crossroads):
    lane = incoming(crossroads, "N_in").rightmost_lane
    rng = random.Random(0)

    for index in range(30):
        car = Car(f"c{index}", rng=rng)
        car.place(lane, 0.0)
        assert car.next_road.id != "N_out"
        assert car.movement in (0, 1, 2)
        car.release()


def test_placing_the_same_car_twice_on_a_lane_fails(crossroads):
    lane = incoming(crossroads, "N_in").rightmost_lane
    car = Car("c1")
    car.place(lane, 0.0)

    with pytest.raises(DuplicateEntityError):
        Car("c1").place(lane, 10.0)

    car.release()
    assert lane.cars_positions == {}


def test_car_stops_at_red_and_accumulates_wait(red_junction):
    lane = incoming(red_junction, "N_in").rightmost_lane
    car = Car("c1", velocity=10.0, rng=random.Random(1))
    car.place(lane, 60.0)

    for _ in range(120):
        car.move(0.5)

    assert car.road.id == "N_in"
    assert car.distance_to_stop_line() >= -1e-9
    assert car.velocity == pytest.approx(0.0, abs=1.0)
    assert car.wait_time > 0
    assert car.crossings == 0


def test_follower_keeps_behind_stopped_leader(red_junction):
    lane = incoming(red_junction, "N_in").rightmost_lane
    leader = Car("leader", velocity=8.0, rng=random.Random(2))
    follower = Car("follower", velocity=12.0, rng=random.Random(3))
    leader.place(lane, 50.0)
    follower.place(lane, 20.0)

    for _ in range(200):
        leader.move(0.25)
        follower.move(0.25)
        assert leader.position - follower.position >= follower.length - 1e-9

    assert lane.cars() == [leader, follower]


def test_car_crosses_on_green_and_records_crossing(green_corridor):
    north_in = incoming(green_corridor, "N_in")
    car = Car("c1", trip_budget=3, velocity=10.0, rng=random.Random(4))
    car.place(north_in.rightmost_lane, 90.0)
    assert car.next_road.id == "S_out"

    car.move(1.0)

    assert car.road.id == "S_out"
    assert car.trip_budget == 2
    assert car.crossings == 1
    assert car.wait_time == 0.0
    assert [approach for _, approach in green_corridor.control.sampler.crossings] == [0]
    assert north_in.rightmost_lane.cars_positions == {}


def test_left_turn_enters_leftmost_lane(crossroads):
    north_in = incoming(crossroads, "N_in")
    east_out = outgoing(crossroads, "E_out")
    car = Car("c1", velocity=10.0)
    car.place(north_in.rightmost_lane, 90.0)
    car.next_road = east_out

    car.move(1.0)

    assert car.lane is east_out.leftmost_lane


def test_car_dies_at_end_of_trip(crossroads):
    lane = incoming(crossroads, "N_in").rightmost_lane
    car = Car("c1", trip_budget=0, velocity=10.0)
    car.place(lane, 90.0)
    assert car.next_road is None

    car.move(1.0)

    assert car.alive is False
    car.move(1.0)
    assert car.alive is False


def test_to_dict_reports_road_and_lane(crossroads):
    lane = incoming(crossroads, "W_in").leftmost_lane
    car = Car("c1", velocity=3.0)
    car.place(lane, 12.0)

    data = car.to_dict()

    assert data["road"] == "W_in"
    assert data["lane"] == 1
    assert data["position"] == pytest.approx(12.0)
