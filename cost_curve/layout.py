#!/usr/bin/env python3
"""
Cost curve layout engine.

Pure functions that turn a cost-sorted Record list into chart geometry:

- compute_cumulative_layout()  running cumulative production per record
- compute_bars()               bar rectangles in chart coordinates
- compute_quartiles()          order-statistic Q1/median/Q3 of costs
- weighted_average_cost()      production-weighted mean cost
- compute_cost_ticks() / compute_production_ticks()   axis ticks
- build_chart_geometry()       all of the above in one ChartGeometry

Coordinates follow the drawing surface convention: x grows to the right and
y grows downwards from the top edge of the chart area. Degenerate inputs
(no records, zero total production, zero max cost) yield empty lists or None
overlays; no NaN or infinity ever reaches a geometry field.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

try:
    from .csv_parser import Record
except ImportError:
    from csv_parser import Record  # type: ignore

logger = logging.getLogger(__name__)

COST_TICK_STEP = 500
PRODUCTION_TICK_STEP = 10000
BAR_PADDING = 1.0
MIN_BAR_WIDTH = 1.0
MAX_TICKS = 1000

QUARTILE_FRACTIONS = (("q1", 0.25), ("median", 0.5), ("q3", 0.75))


@dataclass(frozen=True)
class ChartArea:
    """Logical drawing area and margins; the inner rectangle is the plot."""

    width: float = 1200
    height: float = 600
    margin_top: float = 40
    margin_right: float = 30
    margin_bottom: float = 80
    margin_left: float = 80

    @property
    def plot_width(self) -> float:
        return self.width - self.margin_left - self.margin_right

    @property
    def plot_height(self) -> float:
        return self.height - self.margin_top - self.margin_bottom

    @property
    def plot_bottom(self) -> float:
        return self.height - self.margin_bottom

    @property
    def plot_right(self) -> float:
        return self.width - self.margin_right


@dataclass
class ChartConfig:
    """
    Display configuration for one chart.

    Colors feed into bar fills computed by the layout engine; the show_* toggles
    are consulted by the renderer. Passed explicitly, never read from globals.
    """

    bar_color: str = "#8884d8"
    highlight_color: str = "#0044cc"
    show_horizontal_lines: bool = True
    show_quartiles: bool = False
    show_weighted_average: bool = True
    show_reference_price: bool = True
    show_production_ticks: bool = True
    show_highlight_labels: bool = True


@dataclass(frozen=True)
class LayoutRecord:
    name: str
    production: float
    cost: float
    highlight: bool
    sequence_id: int
    cumulative_production: float


@dataclass(frozen=True)
class Quartiles:
    q1: float = 0.0
    median: float = 0.0
    q3: float = 0.0

    def items(self) -> List[Tuple[str, float]]:
        return [("q1", self.q1), ("median", self.median), ("q3", self.q3)]


@dataclass(frozen=True)
class ChartStatistics:
    total_production: float
    max_cost: float
    quartiles: Quartiles
    # NaN when total production is zero
    weighted_average_cost: float


@dataclass(frozen=True)
class Bar:
    x: float
    y: float
    width: float
    height: float
    fill: str
    record: LayoutRecord


@dataclass(frozen=True)
class Tick:
    value: float
    position: float


@dataclass(frozen=True)
class QuartileMarker:
    key: str
    value: float
    # None when no record reaches the quartile cost; the marker is skipped
    x: Optional[float]


@dataclass(frozen=True)
class HorizontalLine:
    label: str
    value: float
    y: float


@dataclass(frozen=True)
class HighlightLabel:
    name: str
    cost: float
    x: float
    bar_top: float


@dataclass(frozen=True)
class ChartGeometry:
    area: ChartArea
    records: List[LayoutRecord]
    statistics: ChartStatistics
    bars: List[Bar] = field(default_factory=list)
    cost_ticks: List[Tick] = field(default_factory=list)
    production_ticks: List[Tick] = field(default_factory=list)
    quartile_markers: List[QuartileMarker] = field(default_factory=list)
    weighted_average_line: Optional[HorizontalLine] = None
    reference_price_line: Optional[HorizontalLine] = None
    highlight_labels: List[HighlightLabel] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.bars


def format_number(value: Optional[float], decimals: int = 2, prefix: str = "") -> str:
    """
    Grouped fixed-point formatting used for labels and tooltips.

    Zero, NaN and None all render as "0".
    """
    if value is None or value == 0 or (isinstance(value, float) and math.isnan(value)):
        return "0"
    return f"{prefix}{value:,.{decimals}f}"


def compute_cumulative_layout(
    records: Sequence[Record],
) -> Tuple[List[LayoutRecord], float, float]:
    """
    Fold over cost-sorted records tracking the running production total.

    Each LayoutRecord carries the total *before* its own production is added, so
    the first record sits at 0. Returns (layout, total_production, max_cost).
    """
    cumulative = 0.0
    max_cost = 0.0
    layout: List[LayoutRecord] = []
    for r in records:
        layout.append(
            LayoutRecord(
                name=r.name,
                production=r.production,
                cost=r.cost,
                highlight=r.highlight,
                sequence_id=r.sequence_id,
                cumulative_production=cumulative,
            )
        )
        cumulative += r.production
        max_cost = max(max_cost, r.cost)
    return layout, cumulative, max_cost


def _x_for_production(value: float, total_production: float, area: ChartArea) -> float:
    return (value / total_production) * area.plot_width + area.margin_left


def _y_for_cost(value: float, max_cost: float, area: ChartArea) -> float:
    return area.plot_bottom - (value / max_cost) * area.plot_height


def compute_bars(
    layout: Sequence[LayoutRecord],
    total_production: float,
    max_cost: float,
    area: ChartArea,
    config: Optional[ChartConfig] = None,
) -> List[Bar]:
    """
    Bar rectangles for each layout record.

    Bars are separated by a 1-unit gap and never narrower than 1 unit. With zero
    total production or zero max cost there is nothing to scale against, so no
    bars are produced.
    """
    if total_production <= 0 or max_cost <= 0:
        return []
    config = config or ChartConfig()
    bars: List[Bar] = []
    for item in layout:
        height = (item.cost / max_cost) * area.plot_height
        width = max(
            (item.production / total_production) * area.plot_width - BAR_PADDING,
            MIN_BAR_WIDTH,
        )
        bars.append(
            Bar(
                x=_x_for_production(item.cumulative_production, total_production, area),
                y=area.plot_bottom - height,
                width=width,
                height=height,
                fill=config.highlight_color if item.highlight else config.bar_color,
                record=item,
            )
        )
    return bars


def compute_quartiles(costs: Sequence[float]) -> Quartiles:
    """
    Order-statistic quartiles: the sorted cost at index floor(n * p).

    No interpolation is performed. An empty input yields 0 for every quartile.
    """
    sorted_costs = np.sort(np.asarray(costs, dtype=float))
    n = len(sorted_costs)
    values = {}
    for key, p in QUARTILE_FRACTIONS:
        values[key] = float(sorted_costs[math.floor(n * p)]) if n else 0.0
    return Quartiles(**values)


def quartile_position(layout: Sequence[LayoutRecord], value: float) -> Optional[float]:
    """
    Cumulative production of the first record (cost order) with cost >= value.

    Linear scan with first-match semantics; ties resolve to the earliest record.
    """
    for item in layout:
        if item.cost >= value:
            return item.cumulative_production
    return None


def compute_quartile_markers(
    layout: Sequence[LayoutRecord],
    quartiles: Quartiles,
    total_production: float,
    area: ChartArea,
) -> List[QuartileMarker]:
    markers: List[QuartileMarker] = []
    for key, value in quartiles.items():
        position = quartile_position(layout, value)
        if position is None or total_production <= 0:
            x = None
        else:
            x = _x_for_production(position, total_production, area)
        markers.append(QuartileMarker(key=key, value=value, x=x))
    return markers


def weighted_average_cost(records: Sequence[Record]) -> float:
    """
    Production-weighted mean cost over the raw record list.

    Returns NaN when total production is zero (including an empty list).
    """
    if not records:
        return float("nan")
    production = np.array([r.production for r in records], dtype=float)
    cost = np.array([r.cost for r in records], dtype=float)
    total = production.sum()
    if total == 0:
        return float("nan")
    return float((cost * production).sum() / total)


def _statistics_from_layout(
    records: Sequence[Record],
    layout: Sequence[LayoutRecord],
    total_production: float,
    max_cost: float,
) -> ChartStatistics:
    # Weighted average is taken from the raw records, not the layout
    return ChartStatistics(
        total_production=total_production,
        max_cost=max_cost,
        quartiles=compute_quartiles([item.cost for item in layout]),
        weighted_average_cost=weighted_average_cost(records),
    )


def compute_statistics(records: Sequence[Record]) -> ChartStatistics:
    layout, total_production, max_cost = compute_cumulative_layout(records)
    return _statistics_from_layout(records, layout, total_production, max_cost)


def compute_cost_ticks(max_cost: float, area: ChartArea) -> List[Tick]:
    """
    Cost gridline ticks every 500 units from 0 up to the first multiple of 500
    at or above max_cost, so the top gridline never sits below the tallest bar.

    More than MAX_TICKS ticks (a stray huge cost) yields no ticks and a warning.
    """
    if max_cost <= 0:
        return []
    count = math.ceil(max_cost / COST_TICK_STEP)
    if count + 1 > MAX_TICKS:
        logger.warning(
            "Max cost %s needs %d cost ticks (limit %d); gridlines omitted",
            max_cost,
            count + 1,
            MAX_TICKS,
        )
        return []
    ticks = []
    for i in range(count + 1):
        value = COST_TICK_STEP * i
        ticks.append(Tick(value=value, position=_y_for_cost(value, max_cost, area)))
    return ticks


def compute_production_ticks(total_production: float, area: ChartArea) -> List[Tick]:
    """
    Production ticks every 10000 units from 0 up to the largest multiple of
    10000 not exceeding total_production. Capped at MAX_TICKS like the cost ticks.
    """
    if total_production <= 0:
        return []
    steps = math.floor(total_production / PRODUCTION_TICK_STEP)
    if steps + 1 > MAX_TICKS:
        logger.warning(
            "Total production %s needs %d production ticks (limit %d); ticks omitted",
            total_production,
            steps + 1,
            MAX_TICKS,
        )
        return []
    ticks = []
    for i in range(steps + 1):
        value = PRODUCTION_TICK_STEP * i
        ticks.append(
            Tick(
                value=value,
                position=_x_for_production(value, total_production, area),
            )
        )
    return ticks


def _horizontal_line(
    label_prefix: str, value: Optional[float], max_cost: float, area: ChartArea
) -> Optional[HorizontalLine]:
    if value is None or max_cost <= 0:
        return None
    if not math.isfinite(value) or value <= 0:
        return None
    return HorizontalLine(
        label=f"{label_prefix}: ${value:.2f}",
        value=value,
        y=_y_for_cost(value, max_cost, area),
    )


def compute_weighted_average_line(
    average: float, max_cost: float, area: ChartArea
) -> Optional[HorizontalLine]:
    """None when the average is undefined (NaN) or there is no cost scale."""
    return _horizontal_line("Ave", average, max_cost, area)


def compute_reference_price_line(
    price: Optional[float], max_cost: float, area: ChartArea
) -> Optional[HorizontalLine]:
    """None when no usable price is available."""
    return _horizontal_line("Current price", price, max_cost, area)


def compute_highlight_labels(
    layout: Sequence[LayoutRecord],
    total_production: float,
    max_cost: float,
    area: ChartArea,
) -> List[HighlightLabel]:
    if total_production <= 0 or max_cost <= 0:
        return []
    return [
        HighlightLabel(
            name=item.name,
            cost=item.cost,
            x=_x_for_production(item.cumulative_production, total_production, area),
            bar_top=_y_for_cost(item.cost, max_cost, area),
        )
        for item in layout
        if item.highlight
    ]


def build_chart_geometry(
    records: Sequence[Record],
    area: Optional[ChartArea] = None,
    config: Optional[ChartConfig] = None,
    reference_price: Optional[float] = None,
) -> ChartGeometry:
    """
    Full layout pass for a cost-sorted record list.

    Pure: equal inputs always give equal geometry, and the input list is never
    modified.
    """
    area = area or ChartArea()
    config = config or ChartConfig()

    layout, total_production, max_cost = compute_cumulative_layout(records)
    statistics = _statistics_from_layout(records, layout, total_production, max_cost)

    return ChartGeometry(
        area=area,
        records=layout,
        statistics=statistics,
        bars=compute_bars(layout, total_production, max_cost, area, config),
        cost_ticks=compute_cost_ticks(max_cost, area),
        production_ticks=compute_production_ticks(total_production, area),
        quartile_markers=compute_quartile_markers(
            layout, statistics.quartiles, total_production, area
        ),
        weighted_average_line=compute_weighted_average_line(
            statistics.weighted_average_cost, max_cost, area
        ),
        reference_price_line=compute_reference_price_line(
            reference_price, max_cost, area
        ),
        highlight_labels=compute_highlight_labels(
            layout, total_production, max_cost, area
        ),
    )


def describe_bar(geometry: ChartGeometry, index: Optional[int]) -> Optional[str]:
    """
    Inspection text for the bar at ``index`` (the transient selection).

    Returns None for no selection or an out-of-range index.
    """
    if index is None or index < 0 or index >= len(geometry.records):
        return None
    item = geometry.records[index]
    return (
        f"{item.name} - Cost: {format_number(item.cost, 2, '$')}/oz, "
        f"Production: {format_number(item.production, 0)} koz"
    )


def layout_to_frame(geometry: ChartGeometry) -> pd.DataFrame:
    """Tabulate layout records with their bar geometry (one row per bar)."""
    columns = [
        "sequence_id",
        "name",
        "production",
        "cost",
        "highlight",
        "cumulative_production",
        "x",
        "y",
        "width",
        "height",
    ]
    # Bars are built one per record in record order, or not at all
    bars = geometry.bars or [None] * len(geometry.records)
    rows = []
    for item, bar in zip(geometry.records, bars):
        rows.append(
            {
                "sequence_id": item.sequence_id,
                "name": item.name,
                "production": item.production,
                "cost": item.cost,
                "highlight": item.highlight,
                "cumulative_production": item.cumulative_production,
                "x": bar.x if bar else np.nan,
                "y": bar.y if bar else np.nan,
                "width": bar.width if bar else np.nan,
                "height": bar.height if bar else np.nan,
            }
        )
    return pd.DataFrame(rows, columns=columns)
