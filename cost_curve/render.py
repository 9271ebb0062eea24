"""
Matplotlib renderer for cost curve geometry.

The figure is sized so one logical chart unit is one pixel and the y axis is
inverted, so the geometry computed by the layout engine is drawn as-is.
"""

import logging
from pathlib import Path
from typing import Optional, Union

# Force a non-interactive backend before pyplot is imported so rendering works
# in headless environments (CLI runs, the Gradio worker, tests).
import matplotlib

matplotlib.use("Agg", force=True)
import matplotlib.pyplot as plt
from matplotlib.patches import Rectangle

try:
    from .layout import ChartConfig, ChartGeometry, describe_bar, format_number
except ImportError:
    from layout import ChartConfig, ChartGeometry, describe_bar, format_number  # type: ignore

logger = logging.getLogger(__name__)

DPI = 100
SUPPORTED_FORMATS = ("png", "svg")
QUARTILE_COLOR = "#FF6B6B"
GRID_COLOR = "lightgray"
REFERENCE_PRICE_COLOR = "gold"
FONT_SIZE = 10


def _resolve_format(output_path: Path, fmt: Optional[str]) -> str:
    chosen = (fmt or output_path.suffix.lstrip(".") or "png").lower()
    if chosen not in SUPPORTED_FORMATS:
        raise ValueError(
            f"Unsupported image format {chosen!r}; expected one of {SUPPORTED_FORMATS}"
        )
    return chosen


def _draw_axes(ax, geometry: ChartGeometry) -> None:
    area = geometry.area
    ax.plot(
        [area.margin_left, area.plot_right],
        [area.plot_bottom, area.plot_bottom],
        color="black",
        linewidth=1,
    )
    ax.plot(
        [area.margin_left, area.margin_left],
        [area.margin_top, area.plot_bottom],
        color="black",
        linewidth=1,
    )
    ax.text(
        area.width / 2,
        area.height - 10,
        "Cumulative Production (koz)",
        ha="center",
        va="bottom",
        fontsize=FONT_SIZE,
    )
    ax.text(
        25,
        area.height / 2,
        "Cost ($/oz)",
        ha="center",
        va="center",
        rotation=90,
        fontsize=FONT_SIZE,
    )


def _draw_cost_grid(ax, geometry: ChartGeometry) -> None:
    area = geometry.area
    for tick in geometry.cost_ticks:
        ax.plot(
            [area.margin_left, area.plot_right],
            [tick.position, tick.position],
            color=GRID_COLOR,
            linewidth=1,
            zorder=0,
        )
        ax.text(
            area.margin_left - 10,
            tick.position,
            format_number(tick.value, 0, "$"),
            ha="right",
            va="center",
            fontsize=FONT_SIZE,
        )


def _draw_production_ticks(ax, geometry: ChartGeometry) -> None:
    area = geometry.area
    for tick in geometry.production_ticks:
        ax.plot(
            [tick.position, tick.position],
            [area.plot_bottom, area.plot_bottom + 5],
            color="black",
            linewidth=1,
        )
        ax.text(
            tick.position,
            area.plot_bottom + 20,
            f"{int(tick.value):,}",
            ha="center",
            va="center",
            fontsize=FONT_SIZE,
        )


def _draw_bars(ax, geometry: ChartGeometry) -> None:
    for bar in geometry.bars:
        ax.add_patch(
            Rectangle(
                (bar.x, bar.y),
                bar.width,
                bar.height,
                facecolor=bar.fill,
                edgecolor="none",
                zorder=1,
            )
        )


def _draw_highlight_labels(ax, geometry: ChartGeometry, config: ChartConfig) -> None:
    area = geometry.area
    for label in geometry.highlight_labels:
        ax.text(
            label.x,
            area.plot_bottom + 40,
            label.name,
            ha="center",
            va="center",
            color=config.highlight_color,
            fontsize=FONT_SIZE,
        )
        ax.text(
            label.x,
            label.bar_top - 10,
            f"{format_number(label.cost, 2, '$')}/oz",
            ha="center",
            va="bottom",
            color=config.highlight_color,
            fontweight="bold",
            fontsize=FONT_SIZE,
            bbox=dict(facecolor="white", edgecolor="none", pad=1),
        )


def _draw_quartiles(ax, geometry: ChartGeometry) -> None:
    area = geometry.area
    for marker in geometry.quartile_markers:
        if marker.x is None:
            continue
        ax.plot(
            [marker.x, marker.x],
            [area.margin_top, area.plot_bottom],
            color=QUARTILE_COLOR,
            linewidth=2,
            linestyle=(0, (5, 5)),
            zorder=2,
        )
        ax.text(
            marker.x,
            area.margin_top - 10,
            f"{marker.key.upper()}: {format_number(marker.value, 2, '$')}",
            ha="center",
            va="bottom",
            color=QUARTILE_COLOR,
            fontweight="bold",
            fontsize=FONT_SIZE,
        )


def _draw_horizontal_line(ax, geometry: ChartGeometry, line, color: str) -> None:
    area = geometry.area
    ax.plot(
        [area.margin_left, area.plot_right],
        [line.y, line.y],
        color=color,
        linewidth=2,
        linestyle=(0, (5, 5)),
        zorder=2,
    )
    ax.text(
        area.plot_right - 5,
        line.y - 5,
        line.label,
        ha="right",
        va="bottom",
        color=color,
        fontsize=FONT_SIZE,
    )


def render_chart(
    geometry: ChartGeometry,
    config: ChartConfig,
    output_path: Union[str, Path],
    fmt: Optional[str] = None,
    selected_index: Optional[int] = None,
) -> str:
    """
    Draw the chart and write it to ``output_path``; returns the path.

    Overlays are drawn only when their ChartConfig toggle is on and the layout
    engine produced them (suppressed overlays are None / skipped markers).
    ``selected_index`` optionally draws the inspection caption for one bar.
    """
    output_path = Path(output_path)
    image_format = _resolve_format(output_path, fmt)
    area = geometry.area

    fig = plt.figure(figsize=(area.width / DPI, area.height / DPI), dpi=DPI)
    try:
        ax = fig.add_axes([0, 0, 1, 1])
        ax.set_xlim(0, area.width)
        ax.set_ylim(area.height, 0)
        ax.axis("off")
        fig.patch.set_facecolor("white")

        if config.show_horizontal_lines:
            _draw_cost_grid(ax, geometry)
        _draw_bars(ax, geometry)
        if config.show_highlight_labels:
            _draw_highlight_labels(ax, geometry, config)
        _draw_axes(ax, geometry)
        if config.show_production_ticks:
            _draw_production_ticks(ax, geometry)
        if config.show_quartiles:
            _draw_quartiles(ax, geometry)

        caption = describe_bar(geometry, selected_index)
        if caption:
            ax.text(
                area.width / 2,
                50,
                caption,
                ha="center",
                va="center",
                color="black",
                fontweight="bold",
                fontsize=FONT_SIZE,
            )

        if config.show_weighted_average and geometry.weighted_average_line:
            _draw_horizontal_line(ax, geometry, geometry.weighted_average_line, "black")
        if config.show_reference_price and geometry.reference_price_line:
            _draw_horizontal_line(
                ax, geometry, geometry.reference_price_line, REFERENCE_PRICE_COLOR
            )

        output_path.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(output_path, format=image_format, dpi=DPI, facecolor="white")
        logger.debug("Rendered %d bar(s) to %s", len(geometry.bars), output_path)
    finally:
        plt.close(fig)
    return str(output_path)
