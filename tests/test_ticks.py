import logging

import pytest

from cost_curve.layout import (
    MAX_TICKS,
    ChartArea,
    compute_cost_ticks,
    compute_production_ticks,
)

AREA = ChartArea()


@pytest.mark.parametrize(
    "max_cost,expected",
    [
        (20, [0, 500]),
        (500, [0, 500]),
        (1000, [0, 500, 1000]),
        (1001, [0, 500, 1000, 1500]),
    ],
)
def test_cost_ticks_cover_max_cost(max_cost, expected):
    ticks = compute_cost_ticks(max_cost, AREA)
    assert [t.value for t in ticks] == expected
    assert ticks[-1].value >= max_cost


def test_cost_tick_positions():
    ticks = compute_cost_ticks(1000, AREA)
    assert [t.position for t in ticks] == pytest.approx([520.0, 280.0, 40.0])


def test_cost_ticks_empty_without_cost_scale():
    assert compute_cost_ticks(0, AREA) == []


@pytest.mark.parametrize(
    "total,expected",
    [
        (350, [0]),
        (10000, [0, 10000]),
        (25000, [0, 10000, 20000]),
    ],
)
def test_production_ticks_stop_at_last_multiple(total, expected):
    assert [t.value for t in compute_production_ticks(total, AREA)] == expected


def test_production_tick_positions():
    ticks = compute_production_ticks(25000, AREA)
    assert ticks[0].position == pytest.approx(80.0)
    assert ticks[1].position == pytest.approx(10000 / 25000 * 1090 + 80)


def test_production_ticks_empty_without_production():
    assert compute_production_ticks(0, AREA) == []


def test_ticks_follow_custom_area():
    area = ChartArea(width=600, height=300, margin_left=50, margin_right=10)
    ticks = compute_production_ticks(20000, area)
    assert [t.position for t in ticks] == pytest.approx([50.0, 320.0, 590.0])


def test_cost_ticks_at_limit_are_kept():
    assert len(compute_cost_ticks(499500, AREA)) == MAX_TICKS


def test_absurd_tick_counts_are_refused_with_warning(caplog):
    with caplog.at_level(logging.WARNING):
        assert compute_cost_ticks(500000, AREA) == []
        assert compute_cost_ticks(1e20, AREA) == []
        assert compute_production_ticks(1e12, AREA) == []
    assert sum("ticks" in r.getMessage() for r in caplog.records) == 3
