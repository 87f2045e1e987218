import pytest

from signalflow.map.generator import GridConfig, generate_grid_network


pytestmark = pytest.mark.unit


def test_grid_has_two_roads_per_adjacent_pair():
    network = generate_grid_network(GridConfig(rows=2, cols=3, block_length=50.0, seed=1))

    assert len(network["intersections"]) == 6
    pairs = {(road["source"], road["target"]) for road in network["roads"]}
    assert len(pairs) == len(network["roads"]) == 14
    assert ("n_0_0", "n_0_1") in pairs and ("n_0_1", "n_0_0") in pairs
    assert ("n_0_0", "n_1_0") in pairs and ("n_1_0", "n_0_0") in pairs
    assert ("n_0_0", "n_1_1") not in pairs


def test_positions_follow_rows_and_columns():
    network = generate_grid_network(GridConfig(rows=2, cols=2, block_length=80.0))

    positions = {node["id"]: (node["x"], node["y"]) for node in network["intersections"]}

    assert positions["n_1_0"] == (0.0, 80.0)
    assert positions["n_0_1"] == (80.0, 0.0)


def test_seed_fixes_road_order():
    first = generate_grid_network(GridConfig(seed=3))
    second = generate_grid_network(GridConfig(seed=3))

    assert [r["id"] for r in first["roads"]] == [r["id"] for r in second["roads"]]
