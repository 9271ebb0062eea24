import math

import pytest

from cost_curve.csv_parser import Record, parse_csv_text
from cost_curve.layout import (
    ChartArea,
    Quartiles,
    compute_cumulative_layout,
    compute_quartile_markers,
    compute_quartiles,
    compute_statistics,
    compute_weighted_average_line,
    quartile_position,
    weighted_average_cost,
)

AREA = ChartArea()


def _example_records():
    return parse_csv_text(
        'name,production,cost,highlight\n"A",100,10,0\n"B",200,20,1\n"C",50,5,0'
    ).records


@pytest.mark.parametrize(
    "costs,expected",
    [
        ([5, 10, 20], (5, 10, 20)),
        ([1, 2, 3, 4], (2, 3, 4)),
        ([7], (7, 7, 7)),
        # Input order does not matter
        ([20, 5, 10], (5, 10, 20)),
    ],
)
def test_quartiles_are_order_statistics(costs, expected):
    q = compute_quartiles(costs)
    assert (q.q1, q.median, q.q3) == expected


def test_quartiles_of_empty_input_are_zero():
    assert compute_quartiles([]) == Quartiles(0.0, 0.0, 0.0)


def test_quartile_markers_example_positions():
    layout, total, _ = compute_cumulative_layout(_example_records())
    markers = compute_quartile_markers(
        layout, compute_quartiles([r.cost for r in layout]), total, AREA
    )

    assert [m.key for m in markers] == ["q1", "median", "q3"]
    assert [m.value for m in markers] == [5.0, 10.0, 20.0]
    assert markers[0].x == pytest.approx(80.0)
    assert markers[1].x == pytest.approx(50 / 350 * AREA.plot_width + 80)
    assert markers[2].x == pytest.approx(150 / 350 * AREA.plot_width + 80)


def test_quartile_value_above_every_cost_is_not_mapped():
    layout, total, _ = compute_cumulative_layout(_example_records())
    assert quartile_position(layout, 100.0) is None

    markers = compute_quartile_markers(layout, Quartiles(100.0, 5.0, 100.0), total, AREA)
    assert markers[0].x is None
    assert markers[1].x == pytest.approx(80.0)
    assert markers[2].x is None


def test_quartile_position_resolves_ties_to_first_record():
    records = [
        Record("x", 10.0, 5.0, False, 0),
        Record("y", 20.0, 5.0, False, 1),
        Record("z", 30.0, 8.0, False, 2),
    ]
    layout, _, _ = compute_cumulative_layout(records)
    assert quartile_position(layout, 5.0) == 0.0
    assert quartile_position(layout, 6.0) == 30.0


def test_weighted_average_example():
    # (10*100 + 20*200 + 5*50) / 350
    assert weighted_average_cost(_example_records()) == pytest.approx(15.0)


def test_weighted_average_is_bounded_by_cost_range():
    records = parse_csv_text(
        "h\n" + "\n".join(f"r{i},{i % 7 + 1},{(i * 31) % 23 + 2},0" for i in range(30))
    ).records
    avg = weighted_average_cost(records)
    costs = [r.cost for r in records]
    assert min(costs) <= avg <= max(costs)


def test_weighted_average_undefined_without_production():
    assert math.isnan(weighted_average_cost([]))
    assert compute_weighted_average_line(float("nan"), 20.0, AREA) is None


def test_weighted_average_line_example():
    line = compute_weighted_average_line(15.0, 20.0, AREA)
    assert line.label == "Ave: $15.00"
    assert line.y == pytest.approx(AREA.plot_bottom - 15 / 20 * AREA.plot_height)


def test_compute_statistics_example():
    stats = compute_statistics(_example_records())
    assert stats.total_production == 350.0
    assert stats.max_cost == 20.0
    assert stats.quartiles == Quartiles(5.0, 10.0, 20.0)
    assert stats.weighted_average_cost == pytest.approx(15.0)
