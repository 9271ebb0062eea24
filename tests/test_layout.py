import math

import pytest

from cost_curve.csv_parser import Record, parse_csv_text
from cost_curve.layout import (
    ChartArea,
    ChartConfig,
    build_chart_geometry,
    compute_bars,
    compute_cumulative_layout,
    describe_bar,
    format_number,
    layout_to_frame,
)

AREA = ChartArea()
PLOT_W = 1200 - 80 - 30
PLOT_H = 600 - 40 - 80
BOTTOM = 600 - 80


def _example_records():
    return parse_csv_text(
        'name,production,cost,highlight\n"A",100,10,0\n"B",200,20,1\n"C",50,5,0'
    ).records


def test_chart_area_derived_dimensions():
    assert AREA.plot_width == PLOT_W
    assert AREA.plot_height == PLOT_H
    assert AREA.plot_bottom == BOTTOM
    assert AREA.plot_right == 1170


def test_cumulative_layout_example():
    layout, total, max_cost = compute_cumulative_layout(_example_records())

    assert [item.name for item in layout] == ["C", "A", "B"]
    assert [item.cumulative_production for item in layout] == [0.0, 50.0, 150.0]
    assert total == 350.0
    assert max_cost == 20.0


def test_cumulative_layout_is_non_decreasing_and_closes_on_total():
    records = parse_csv_text(
        "h\n" + "\n".join(f"r{i},{(i * 37) % 11 + 0.5},{(i * 13) % 17 + 1},0" for i in range(40))
    ).records
    layout, total, _ = compute_cumulative_layout(records)

    cumulative = [item.cumulative_production for item in layout]
    assert all(a <= b for a, b in zip(cumulative, cumulative[1:]))
    assert layout[-1].cumulative_production + layout[-1].production == total


def test_bar_geometry_example():
    geometry = build_chart_geometry(_example_records(), area=AREA)
    c_bar, a_bar, b_bar = geometry.bars

    assert c_bar.x == pytest.approx(80.0)
    assert c_bar.width == pytest.approx(50 / 350 * PLOT_W - 1)
    assert c_bar.height == pytest.approx(5 / 20 * PLOT_H)
    assert c_bar.y == pytest.approx(BOTTOM - 120.0)

    assert a_bar.x == pytest.approx(50 / 350 * PLOT_W + 80)
    assert b_bar.x == pytest.approx(150 / 350 * PLOT_W + 80)
    assert b_bar.y == pytest.approx(40.0)
    assert b_bar.height == pytest.approx(PLOT_H)


def test_bar_fill_follows_config_colors():
    config = ChartConfig(bar_color="#111111", highlight_color="#ff0000")
    geometry = build_chart_geometry(_example_records(), config=config)
    assert [bar.fill for bar in geometry.bars] == ["#111111", "#111111", "#ff0000"]


def test_tiny_production_bar_keeps_minimum_width():
    records = [
        Record("tiny", 0.001, 1.0, False, 0),
        Record("huge", 1000.0, 2.0, False, 1),
    ]
    geometry = build_chart_geometry(records)
    assert geometry.bars[0].width == 1.0


def test_degenerate_scales_produce_no_bars():
    layout, _, _ = compute_cumulative_layout(_example_records())
    assert compute_bars(layout, 0.0, 20.0, AREA) == []
    assert compute_bars(layout, 350.0, 0.0, AREA) == []


def test_empty_records_give_empty_geometry():
    geometry = build_chart_geometry([])

    assert geometry.is_empty
    assert geometry.records == []
    assert geometry.cost_ticks == []
    assert geometry.production_ticks == []
    assert geometry.highlight_labels == []
    assert geometry.weighted_average_line is None
    assert geometry.reference_price_line is None
    assert all(m.x is None for m in geometry.quartile_markers)
    assert geometry.statistics.total_production == 0.0
    assert math.isnan(geometry.statistics.weighted_average_cost)


def test_geometry_never_contains_nan_or_inf():
    geometry = build_chart_geometry(_example_records(), reference_price=12.0)
    values = []
    for bar in geometry.bars:
        values += [bar.x, bar.y, bar.width, bar.height]
    values += [t.position for t in geometry.cost_ticks + geometry.production_ticks]
    values += [m.x for m in geometry.quartile_markers if m.x is not None]
    values += [geometry.weighted_average_line.y, geometry.reference_price_line.y]
    assert all(math.isfinite(v) for v in values)


def test_layout_is_idempotent_and_does_not_mutate_input():
    records = _example_records()
    snapshot = list(records)

    first = build_chart_geometry(records, area=AREA, reference_price=15.5)
    second = build_chart_geometry(records, area=AREA, reference_price=15.5)

    assert first == second
    assert records == snapshot


def test_highlight_labels_sit_on_highlighted_bars():
    geometry = build_chart_geometry(_example_records())
    (label,) = geometry.highlight_labels
    assert label.name == "B"
    assert label.x == pytest.approx(150 / 350 * PLOT_W + 80)
    assert label.bar_top == pytest.approx(40.0)


def test_reference_price_line_and_suppression():
    records = _example_records()
    line = build_chart_geometry(records, reference_price=10.0).reference_price_line
    assert line.y == pytest.approx(BOTTOM - 10 / 20 * PLOT_H)
    assert line.label == "Current price: $10.00"

    for bad in (None, 0.0, -1.0, float("nan"), float("inf")):
        assert build_chart_geometry(records, reference_price=bad).reference_price_line is None


def test_describe_bar_is_a_transient_lookup():
    geometry = build_chart_geometry(_example_records())
    assert describe_bar(geometry, 0) == "C - Cost: $5.00/oz, Production: 50 koz"
    assert describe_bar(geometry, None) is None
    assert describe_bar(geometry, 3) is None
    assert describe_bar(geometry, -1) is None

    big = build_chart_geometry([Record("Big", 1234.0, 1500.5, True, 0)])
    assert describe_bar(big, 0) == "Big - Cost: $1,500.50/oz, Production: 1,234 koz"


def test_format_number():
    assert format_number(0) == "0"
    assert format_number(None) == "0"
    assert format_number(float("nan")) == "0"
    assert format_number(1234.5, 2, "$") == "$1,234.50"
    assert format_number(25000, 0) == "25,000"


def test_layout_to_frame_columns_and_rows():
    df = layout_to_frame(build_chart_geometry(_example_records()))
    assert list(df["name"]) == ["C", "A", "B"]
    assert list(df["cumulative_production"]) == [0.0, 50.0, 150.0]
    assert {"x", "y", "width", "height", "sequence_id"} <= set(df.columns)

    empty = layout_to_frame(build_chart_geometry([]))
    assert empty.empty
    assert "cumulative_production" in empty.columns


def test_layout_to_frame_pairs_bars_by_position():
    # Direct callers may reuse sequence ids; rows must still get their own bar
    records = [
        Record("low", 10.0, 1.0, False, 7),
        Record("mid", 20.0, 2.0, False, 7),
        Record("high", 30.0, 3.0, True, 7),
    ]
    geometry = build_chart_geometry(records)
    df = layout_to_frame(geometry)

    assert list(df["name"]) == ["low", "mid", "high"]
    assert list(df["x"]) == pytest.approx([bar.x for bar in geometry.bars])
    assert list(df["height"]) == pytest.approx([bar.height for bar in geometry.bars])


def test_huge_cost_outlier_does_not_explode_ticks():
    records = [Record("typo", 10.0, 1e20, False, 0), Record("ok", 10.0, 5.0, False, 1)]
    geometry = build_chart_geometry(records)
    assert len(geometry.bars) == 2
    assert geometry.cost_ticks == []
