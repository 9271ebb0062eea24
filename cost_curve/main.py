#!/usr/bin/env python3
"""
Cost Curve Visualizer - pipeline and command line entry point.

The pipeline is a sequence of pure steps:
- load_records()          CSV file -> ParseResult (cost-sorted records + diagnostics)
- build_chart_geometry()  records -> ChartGeometry (see layout.py)
- render_chart()          geometry -> PNG/SVG file (see render.py)

_orchestrate() wires them together for one CLI run and writes the run
artifacts (image, layout CSV, text report, manifest) into output/<timestamp>/.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

import pandas as pd

# Support both package and script execution modes
try:
    # When run as a package: python -m cost_curve.main
    from .csv_parser import ParseResult, load_csv_file
    from .layout import (
        ChartArea,
        ChartConfig,
        ChartGeometry,
        build_chart_geometry,
        format_number,
        layout_to_frame,
    )
    from .price import DEFAULT_PRICE_URL, DEFAULT_TIMEOUT, lookup_reference_price
    from .render import render_chart
    from .utils import (
        build_effective_parameters,
        canonical_json_hash,
        ensure_run_dir,
        normalize_abs_posix,
        utc_timestamp_seconds,
        write_manifest,
        write_text_report,
    )
except ImportError:
    # When run directly: python cost_curve/main.py
    from csv_parser import ParseResult, load_csv_file
    from layout import (
        ChartArea,
        ChartConfig,
        ChartGeometry,
        build_chart_geometry,
        format_number,
        layout_to_frame,
    )
    from price import DEFAULT_PRICE_URL, DEFAULT_TIMEOUT, lookup_reference_price
    from render import render_chart
    from utils import (
        build_effective_parameters,
        canonical_json_hash,
        ensure_run_dir,
        normalize_abs_posix,
        utc_timestamp_seconds,
        write_manifest,
        write_text_report,
    )

# Root logging setup for CLI and UI runs
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@dataclass
class LoadParams:
    """
    Parameters used when loading the input CSV.

    Attributes:
        csv_path: Path to the CSV file (header + name,production,cost,highlight rows).
    """

    csv_path: Optional[Path]


@dataclass
class PriceParams:
    """
    Reference price overlay source.

    Attributes:
        fetch: Look the price up over HTTP when no manual price is given.
        api_key: API key for the price service (COST_CURVE_PRICE_API_KEY by default).
        url: Price service endpoint (COST_CURVE_PRICE_URL by default).
        timeout: Request timeout in seconds.
        manual_price: Fixed price to draw instead of fetching one.
    """

    fetch: bool = False
    api_key: Optional[str] = None
    url: str = DEFAULT_PRICE_URL
    timeout: float = DEFAULT_TIMEOUT
    manual_price: Optional[float] = None


@dataclass
class OutputParams:
    output_format: str = "png"
    output_root: Path = Path("output")
    # Include the parser diagnostics and the full layout table in the report
    verbose_report: bool = False


def get_default_params() -> Tuple[LoadParams, ChartConfig, PriceParams, OutputParams]:
    """
    Build the policy defaults used by both the CLI and the Gradio UI.

    Environment-dependent defaults (price API key / URL) are resolved here so the
    rest of the pipeline only ever sees explicit parameter objects.
    """
    load = LoadParams(csv_path=None)
    chart = ChartConfig()
    price = PriceParams(
        fetch=False,
        api_key=os.getenv("COST_CURVE_PRICE_API_KEY") or None,
        url=os.getenv("COST_CURVE_PRICE_URL", DEFAULT_PRICE_URL),
        timeout=DEFAULT_TIMEOUT,
        manual_price=None,
    )
    output = OutputParams()
    return load, chart, price, output


def load_records(params: LoadParams) -> ParseResult:
    """
    Load and parse the CSV named by params.

    Never raises for bad content: a missing, unreadable or empty file gives an empty
    ParseResult (logged once by load_csv_file), which renders as an empty chart.
    """
    if params.csv_path is None:
        raise ValueError("No CSV path given")
    return load_csv_file(params.csv_path)


def resolve_reference_price(params: PriceParams) -> Optional[float]:
    """Manual price wins; otherwise fetch when enabled. None means no overlay."""
    if params.manual_price is not None:
        return params.manual_price
    if not params.fetch:
        return None
    return lookup_reference_price(
        params.api_key, url=params.url, timeout=params.timeout
    )


def build_run_identity(
    load: LoadParams, chart: ChartConfig, output: OutputParams
) -> tuple[str, str, str, dict]:
    """
    Returns (abs_input_posix, short_hash, full_hash, effective_params)

    The price source is left out of the hash on purpose: the same input and
    display settings identify the same chart regardless of the day's price.
    """
    abs_input_posix = normalize_abs_posix(load.csv_path)
    effective_params = build_effective_parameters(
        load=load, chart=chart, output=output
    )
    canonical_payload = {
        "absolute_input_path": abs_input_posix,
        "effective_parameters": effective_params,
    }
    short_hash, full_hash = canonical_json_hash(canonical_payload)
    return abs_input_posix, short_hash, full_hash, effective_params


def build_manifest_dict(
    abs_input_posix: str,
    counts: dict,
    effective_params: dict,
    hashes: tuple[str, str],
    artifact_paths: list[str],
    reference_price: Optional[float] = None,
) -> dict:
    short_hash, full_hash = hashes
    return {
        "version": "1",
        "timestamp_utc": utc_timestamp_seconds(),
        "absolute_input_path": abs_input_posix,
        "total_input_lines": int(counts.get("total_input_lines", 0)),
        "parsed_record_count": int(counts.get("parsed_record_count", 0)),
        "dropped_row_count": int(counts.get("dropped_row_count", 0)),
        "effective_parameters": effective_params,
        "reference_price": reference_price,
        "canonical_hash": full_hash,
        "canonical_hash_short": short_hash,
        "artifacts": {"chart": artifact_paths},
    }


def assemble_text_report(
    parsed: ParseResult,
    geometry: ChartGeometry,
    reference_price: Optional[float] = None,
    verbose: bool = False,
) -> str:
    """
    Readable summary of one run: row counts, chart statistics, quartile
    positions, overlays and a preview of the layout table.
    """
    stats = geometry.statistics
    parts: list[str] = []

    parts.append(
        "Rows\n"
        f"  lines read (incl. header): {parsed.total_lines}\n"
        f"  rows with >= 4 fields:     {parsed.candidate_rows}\n"
        f"  records charted:           {len(parsed.records)}\n"
        f"  rows dropped:              {parsed.dropped_rows}"
    )

    if pd.notna(stats.weighted_average_cost):
        wac = f"{format_number(stats.weighted_average_cost, 2, '$')}/oz"
    else:
        wac = "n/a"
    parts.append(
        "Statistics\n"
        f"  total production:      {format_number(stats.total_production, 0)} koz\n"
        f"  max cost:              {format_number(stats.max_cost, 2, '$')}/oz\n"
        f"  weighted average cost: {wac}"
    )

    q_lines = ["Quartiles (order statistic)"]
    for marker in geometry.quartile_markers:
        where = "not mapped" if marker.x is None else f"x={marker.x:.1f}"
        q_lines.append(
            f"  {marker.key.upper():<6} {format_number(marker.value, 2, '$'):>12}  ({where})"
        )
    parts.append("\n".join(q_lines))

    if reference_price is None:
        parts.append("Reference price: not available")
    elif geometry.reference_price_line is None:
        parts.append(f"Reference price: {reference_price} (not drawable)")
    else:
        parts.append(f"Reference price: {geometry.reference_price_line.label}")

    df = layout_to_frame(geometry)
    if df.empty:
        parts.append("Layout:\n(no rows)")
    elif verbose or len(df) <= 10:
        with pd.option_context("display.max_rows", None, "display.max_columns", None):
            parts.append("Layout:\n" + df.to_string(index=False))
    else:
        parts.append(
            "Layout (head/tail):\n"
            + df.head(5).to_string(index=False)
            + "\n...\n"
            + df.tail(5).to_string(index=False, header=False)
        )

    if verbose:
        parts.append("Parser diagnostics:\n" + parsed.debug_text())

    return "\n\n".join(parts) + "\n"


def _orchestrate(
    params_load: LoadParams,
    chart_config: ChartConfig,
    params_price: PriceParams,
    params_output: OutputParams,
    area: Optional[ChartArea] = None,
) -> Path:
    """
    Run the full pipeline once and write the run artifacts.
    Kept separate from main() so tests can drive a run without argv.
    Returns the run directory.
    """
    parsed = load_records(params_load)

    run_output_dir = ensure_run_dir(".", str(params_output.output_root))
    abs_input_posix, short_hash, full_hash, effective_params = build_run_identity(
        params_load, chart_config, params_output
    )

    reference_price = resolve_reference_price(params_price)
    geometry = build_chart_geometry(
        parsed.records,
        area=area or ChartArea(),
        config=chart_config,
        reference_price=reference_price,
    )

    chart_path = run_output_dir / f"cost_curve-{short_hash}.{params_output.output_format}"
    render_chart(geometry, chart_config, chart_path, fmt=params_output.output_format)

    layout_csv = run_output_dir / f"layout-{short_hash}.csv"
    layout_to_frame(geometry).to_csv(layout_csv, index=False)

    counts = {
        "total_input_lines": parsed.total_lines,
        "parsed_record_count": len(parsed.records),
        "dropped_row_count": parsed.dropped_rows,
    }
    manifest = build_manifest_dict(
        abs_input_posix=abs_input_posix,
        counts=counts,
        effective_params=effective_params,
        hashes=(short_hash, full_hash),
        artifact_paths=[str(chart_path), str(layout_csv)],
        reference_price=reference_price,
    )
    write_manifest(run_output_dir / f"manifest-{short_hash}.json", manifest)

    report = assemble_text_report(
        parsed, geometry, reference_price, params_output.verbose_report
    )
    write_text_report(report, run_output_dir, short_hash)

    print(report)
    return run_output_dir


def _build_cli_parser():
    import argparse

    parser = argparse.ArgumentParser(
        prog="cost-curve",
        description="Cost curve chart from CSV (parse -> layout -> render).",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--print-defaults",
        action="store_true",
        help="Print default parameter values and exit.",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Show full tracebacks for debugging (also COST_CURVE_DEBUG=1).",
    )

    g_load = parser.add_argument_group("LoadParams")
    g_load.add_argument(
        "--csv-path",
        type=str,
        required=True,
        help="CSV with header and name,production,cost,highlight rows (required).",
    )

    g_chart = parser.add_argument_group("ChartConfig")
    g_chart.add_argument("--bar-color", type=str, help="Fill color for regular bars.")
    g_chart.add_argument(
        "--highlight-color", type=str, help="Fill color for highlighted bars and labels."
    )
    g_chart.add_argument(
        "--horizontal-lines",
        dest="show_horizontal_lines",
        action="store_true",
        default=None,
        help="Draw cost gridlines.",
    )
    g_chart.add_argument(
        "--no-horizontal-lines",
        dest="show_horizontal_lines",
        action="store_false",
        help="Hide cost gridlines.",
    )
    g_chart.add_argument(
        "--quartiles",
        dest="show_quartiles",
        action="store_true",
        default=None,
        help="Draw Q1/median/Q3 markers.",
    )
    g_chart.add_argument(
        "--no-weighted-average",
        dest="show_weighted_average",
        action="store_false",
        default=None,
        help="Hide the weighted average cost line.",
    )
    g_chart.add_argument(
        "--no-reference-price",
        dest="show_reference_price",
        action="store_false",
        default=None,
        help="Hide the reference price line.",
    )
    g_chart.add_argument(
        "--no-production-ticks",
        dest="show_production_ticks",
        action="store_false",
        default=None,
        help="Hide cumulative production tick marks.",
    )
    g_chart.add_argument(
        "--no-highlight-labels",
        dest="show_highlight_labels",
        action="store_false",
        default=None,
        help="Hide name/cost labels of highlighted records.",
    )

    g_price = parser.add_argument_group("PriceParams")
    g_price.add_argument(
        "--reference-price",
        type=float,
        help="Draw this reference price instead of looking one up.",
    )
    g_price.add_argument(
        "--fetch-price",
        action="store_true",
        help="Look up the current reference price (needs COST_CURVE_PRICE_API_KEY).",
    )

    g_out = parser.add_argument_group("OutputParams")
    g_out.add_argument(
        "--output-format", choices=["png", "svg"], help="Chart image format."
    )
    g_out.add_argument(
        "--verbose-report",
        action="store_true",
        help="Include parser diagnostics and the full layout table in the report.",
    )

    return parser


def _args_to_params(
    args,
) -> tuple[LoadParams, ChartConfig, PriceParams, OutputParams]:
    """
    Build parameter objects from parsed CLI args.
    Flags left unset (None) fall back to get_default_params().
    """
    d_load, d_chart, d_price, d_output = get_default_params()

    def get_arg_or_default(arg_name, default):
        value = getattr(args, arg_name, None)
        return value if value is not None else default

    csv_path = (
        Path(args.csv_path).resolve()
        if getattr(args, "csv_path", None)
        else d_load.csv_path
    )
    load = LoadParams(csv_path=csv_path)

    chart = ChartConfig(
        bar_color=get_arg_or_default("bar_color", d_chart.bar_color),
        highlight_color=get_arg_or_default("highlight_color", d_chart.highlight_color),
        show_horizontal_lines=get_arg_or_default(
            "show_horizontal_lines", d_chart.show_horizontal_lines
        ),
        show_quartiles=get_arg_or_default("show_quartiles", d_chart.show_quartiles),
        show_weighted_average=get_arg_or_default(
            "show_weighted_average", d_chart.show_weighted_average
        ),
        show_reference_price=get_arg_or_default(
            "show_reference_price", d_chart.show_reference_price
        ),
        show_production_ticks=get_arg_or_default(
            "show_production_ticks", d_chart.show_production_ticks
        ),
        show_highlight_labels=get_arg_or_default(
            "show_highlight_labels", d_chart.show_highlight_labels
        ),
    )

    manual_price = getattr(args, "reference_price", None)
    if manual_price is not None and manual_price <= 0:
        raise ValueError("Invalid --reference-price: must be a positive number")
    price = PriceParams(
        fetch=bool(getattr(args, "fetch_price", False)) or d_price.fetch,
        api_key=d_price.api_key,
        url=d_price.url,
        timeout=d_price.timeout,
        manual_price=manual_price,
    )

    output = OutputParams(
        output_format=get_arg_or_default("output_format", d_output.output_format),
        output_root=d_output.output_root,
        verbose_report=bool(getattr(args, "verbose_report", False))
        or d_output.verbose_report,
    )

    return load, chart, price, output


def _defaults_payload() -> dict:
    d_load, d_chart, d_price, d_output = get_default_params()
    return {
        "LoadParams": {
            "csv_path": None if d_load.csv_path is None else str(d_load.csv_path)
        },
        "ChartConfig": build_effective_parameters(chart=d_chart)["chart"],
        "PriceParams": {
            "fetch": d_price.fetch,
            # Never echo the key itself
            "api_key_configured": bool(d_price.api_key),
            "url": d_price.url,
            "timeout": d_price.timeout,
            "manual_price": d_price.manual_price,
        },
        "OutputParams": {
            "output_format": d_output.output_format,
            "output_root": str(d_output.output_root),
            "verbose_report": d_output.verbose_report,
        },
        "ChartArea": build_effective_parameters(area=ChartArea())["area"],
    }


def main(argv: Optional[List[str]] = None) -> None:
    """
    Console entry point for `cost-curve`.
    """
    import json
    import sys

    argv = sys.argv[1:] if argv is None else argv

    # --print-defaults does not require --csv-path
    if "--print-defaults" in argv:
        print(json.dumps(_defaults_payload(), indent=2))
        return

    parser = _build_cli_parser()
    args = parser.parse_args(argv)
    debug_mode = bool(
        getattr(args, "debug", False) or os.getenv("COST_CURVE_DEBUG", "") == "1"
    )
    if debug_mode:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        params_load, chart_config, params_price, params_output = _args_to_params(args)
        _orchestrate(params_load, chart_config, params_price, params_output)
    except (FileNotFoundError, ValueError, TypeError) as e:
        # Bad arguments or paths: short message, no traceback
        logger.info("User-facing error: %s", e)
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    except Exception as e:
        # Anything else is a bug; the traceback goes to stderr only in debug mode
        logger.exception("Unhandled exception during execution")
        if debug_mode:
            import traceback

            traceback.print_exc()
        else:
            print(f"Unexpected error: {e}", file=sys.stderr)
            print(
                "Run with --debug or set COST_CURVE_DEBUG=1 to see the full traceback.",
                file=sys.stderr,
            )
        sys.exit(1)


if __name__ == "__main__":
    main()
