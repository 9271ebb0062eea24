"""Gradio UI wrapper for the cost curve pipeline.

Upload a CSV, pick colors and overlays, and get the rendered chart back as a
PNG plus a ZIP with the report, layout table and manifest.
"""

import os
import shutil
import time
import traceback
from pathlib import Path
from typing import List, Optional, Sequence

# Backend selection is enforced in render.py at import time; do not set
# MPLBACKEND here.

try:
    from .csv_parser import Record, load_csv_file
    from .layout import ChartConfig, build_chart_geometry, describe_bar, layout_to_frame
    from .main import (
        LoadParams,
        OutputParams,
        assemble_text_report,
        build_manifest_dict,
        build_run_identity,
        get_default_params,
    )
    from .price import PriceQuote, start_price_lookup
    from .render import render_chart
    from .utils import create_zip, ensure_run_dir, write_manifest, write_text_report
except ImportError:
    from csv_parser import Record, load_csv_file  # type: ignore
    from layout import ChartConfig, build_chart_geometry, describe_bar, layout_to_frame  # type: ignore
    from main import (  # type: ignore
        LoadParams,
        OutputParams,
        assemble_text_report,
        build_manifest_dict,
        build_run_identity,
        get_default_params,
    )
    from price import PriceQuote, start_price_lookup  # type: ignore
    from render import render_chart  # type: ignore
    from utils import create_zip, ensure_run_dir, write_manifest, write_text_report  # type: ignore

import logging

import gradio as gr

logger = logging.getLogger(__name__)

RUN_ROOT = Path("output_gradio")


def _looks_like_run_ts(name: str) -> bool:
    # YYYYmmddTHHMMSS...
    return (
        len(name) >= 15
        and name[0:8].isdigit()
        and name[8] == "T"
        and name[9:15].isdigit()
    )


def _safe_is_subpath(child: Path, parent: Path) -> bool:
    """
    Return True if `child.resolve()` is located inside `parent.resolve()`.
    Conservative: on any error return False to avoid accidental deletes.
    """
    try:
        parent_r = parent.resolve()
        child_r = child.resolve()
        return os.path.commonpath([str(parent_r), str(child_r)]) == str(parent_r)
    except (OSError, ValueError):
        return False


def _prune_old_runs(run_root: Path, keep: Optional[int] = None) -> None:
    """
    Retention helper: keep only the newest `keep` subdirectories under `run_root`.

    - `keep` defaults to COST_CURVE_RETENTION_KEEP (10); keep <= 0 disables pruning.
    - Timestamp-named run dirs are ordered by name, anything else by mtime.
    - Symlinks and dirs resolving outside run_root are never deleted.
    - Deletion failures are logged at WARNING and retried on a later run.
    """
    if keep is None:
        try:
            keep = int(os.getenv("COST_CURVE_RETENTION_KEEP", "10"))
        except ValueError:
            keep = 10
    if keep <= 0:
        logger.debug("retention keep <=0 (%s) -> skipping prune", keep)
        return

    if not run_root.exists() or not run_root.is_dir():
        return

    subdirs = [p for p in run_root.iterdir() if p.is_dir()]
    if all(_looks_like_run_ts(p.name) for p in subdirs):
        subdirs_sorted = sorted(subdirs, key=lambda p: p.name, reverse=True)
    else:
        subdirs_sorted = sorted(subdirs, key=lambda p: p.stat().st_mtime, reverse=True)

    for d in subdirs_sorted[keep:]:
        if d.is_symlink():
            logger.warning("Skipping symlink during prune: %s", d)
            continue
        if not _safe_is_subpath(d, run_root):
            logger.warning("Skipping prune of %s - resolved outside run_root", d)
            continue
        try:
            shutil.rmtree(d)
            logger.info("Pruned old run dir: %s", d)
        except OSError as e:
            logger.warning("Failed to prune %s: %s", d, e)


def _chart_config_from_ui(
    bar_color: Optional[str],
    highlight_color: Optional[str],
    show_horizontal_lines: bool,
    show_quartiles: bool,
    show_weighted_average: bool,
    show_reference_price: bool,
    show_production_ticks: bool,
    show_highlight_labels: bool,
) -> ChartConfig:
    defaults = get_default_params()[1]
    return ChartConfig(
        bar_color=bar_color or defaults.bar_color,
        highlight_color=highlight_color or defaults.highlight_color,
        show_horizontal_lines=bool(show_horizontal_lines),
        show_quartiles=bool(show_quartiles),
        show_weighted_average=bool(show_weighted_average),
        show_reference_price=bool(show_reference_price),
        show_production_ticks=bool(show_production_ticks),
        show_highlight_labels=bool(show_highlight_labels),
    )


def _run_pipeline(
    uploaded_file_path: Optional[str],
    chart_config: ChartConfig,
    reference_price: Optional[float] = None,
):
    """
    Execute the pipeline for one upload.

    Returns (image_path, zip_path, report_text, debug_text, records). On failure
    image_path and zip_path are None and report_text carries the error.
    """
    t0 = time.time()
    logger.info("_run_pipeline START - uploaded_file_path=%r", uploaded_file_path)

    if not uploaded_file_path:
        msg = "Error: No CSV file uploaded. Please upload a CSV file."
        return None, None, msg, "", []

    try:
        lp = LoadParams(csv_path=Path(uploaded_file_path).resolve())
        op = OutputParams()

        parsed = load_csv_file(lp.csv_path)
        logger.debug("load_csv_file returned %d records", len(parsed.records))

        geometry = build_chart_geometry(
            parsed.records, config=chart_config, reference_price=reference_price
        )

        abs_input_posix, short_hash, full_hash, effective_params = build_run_identity(
            lp, chart_config, op
        )
        run_dir = ensure_run_dir(".", str(RUN_ROOT))

        image_path = run_dir / f"cost_curve-{short_hash}.png"
        render_chart(geometry, chart_config, image_path, fmt="png")

        layout_csv = run_dir / f"layout-{short_hash}.csv"
        layout_to_frame(geometry).to_csv(layout_csv, index=False)

        report_text = assemble_text_report(parsed, geometry, reference_price)
        report_path = write_text_report(report_text, run_dir, short_hash)

        manifest_path = run_dir / f"manifest-{short_hash}.json"
        write_manifest(
            manifest_path,
            build_manifest_dict(
                abs_input_posix=abs_input_posix,
                counts={
                    "total_input_lines": parsed.total_lines,
                    "parsed_record_count": len(parsed.records),
                    "dropped_row_count": parsed.dropped_rows,
                },
                effective_params=effective_params,
                hashes=(short_hash, full_hash),
                artifact_paths=[str(image_path), str(layout_csv)],
                reference_price=reference_price,
            ),
        )

        _prune_old_runs(RUN_ROOT)

        # gr.File copies the archive when the handler returns; write it fully first
        zip_path = str(run_dir / f"cost_curve-{short_hash}.zip")
        create_zip(
            zip_path, [image_path, layout_csv, report_path, manifest_path]
        )

        logger.info(
            "_run_pipeline COMPLETE (duration_ms=%.1f)", (time.time() - t0) * 1000
        )
        return str(image_path), zip_path, report_text, parsed.debug_text(), parsed.records

    except Exception as e:
        tb = traceback.format_exc()
        msg = f"Error running pipeline\n{e}\n{tb}"
        logger.debug("_run_pipeline EXCEPTION: %s\n%s", e, tb)
        return None, None, msg, "", []


def _bar_choices(records: Sequence[Record]) -> List[str]:
    # Records are already cost-sorted, so the position is the bar index
    return [f"{idx}: {r.name}" for idx, r in enumerate(records)]


def _inspect_bar(
    records: Sequence[Record], choice: Optional[str], chart_config: ChartConfig
) -> str:
    if not records or not choice:
        return ""
    try:
        index = int(str(choice).split(":", 1)[0])
    except ValueError:
        return ""
    geometry = build_chart_geometry(records, config=chart_config)
    return describe_bar(geometry, index) or ""


def _price_text(quote: PriceQuote) -> str:
    if quote.value is None:
        return "Current price: not available"
    return f"Current Gold Price: ${quote.value:.2f} per oz"


def _build_ui(price_quote: Optional[PriceQuote] = None):
    # Fire-and-forget lookup at startup; the overlay appears once it resolves
    quote = price_quote if price_quote is not None else start_price_lookup()
    _, d_chart, _, _ = get_default_params()

    with gr.Blocks() as demo:
        gr.Markdown("### Cost Curve Visualizer")
        with gr.Row():
            file_input = gr.File(label="Upload CSV file", file_types=[".csv"])
        with gr.Row():
            bar_color = gr.ColorPicker(label="Bar Color", value=d_chart.bar_color)
            highlight_color = gr.ColorPicker(
                label="Highlight Color", value=d_chart.highlight_color
            )
        with gr.Row():
            show_lines = gr.Checkbox(
                label="Show Horizontal Lines", value=d_chart.show_horizontal_lines
            )
            show_quartiles = gr.Checkbox(
                label="Show Quartiles and Median", value=d_chart.show_quartiles
            )
            show_average = gr.Checkbox(
                label="Show Weighted Average", value=d_chart.show_weighted_average
            )
            show_price = gr.Checkbox(
                label="Show Gold Price", value=d_chart.show_reference_price
            )
            show_ticks = gr.Checkbox(
                label="Show X-Axis Tickers", value=d_chart.show_production_ticks
            )
            show_labels = gr.Checkbox(
                label="Show Highlight Labels", value=d_chart.show_highlight_labels
            )
        run_button = gr.Button("Render chart")
        output_image = gr.Image(label="Cost curve", type="filepath")
        output_zip = gr.File(label="Download chart and report (ZIP)")
        price_md = gr.Markdown(_price_text(quote))
        with gr.Row():
            bar_select = gr.Dropdown(label="Inspect bar", choices=[], value=None)
            bar_info = gr.Textbox(label="Bar details", interactive=False)
        report_box = gr.Textbox(value="", lines=16, interactive=False, label="Report")
        debug_box = gr.Textbox(value="", lines=12, interactive=False, label="Debug")
        records_state = gr.State([])

        toggles = [
            bar_color,
            highlight_color,
            show_lines,
            show_quartiles,
            show_average,
            show_price,
            show_ticks,
            show_labels,
        ]

        def _click(file_obj, *toggle_values):
            # gr.File returns a str path or a file wrapper depending on version
            if file_obj is None:
                path = None
            elif isinstance(file_obj, str):
                path = file_obj
            elif isinstance(file_obj, dict):
                path = file_obj.get("name") or file_obj.get("path")
            else:
                path = getattr(file_obj, "name", None)
            config = _chart_config_from_ui(*toggle_values)
            image, zip_p, report, debug, records = _run_pipeline(
                path, config, quote.value
            )
            return (
                image,
                zip_p,
                report,
                debug,
                records,
                gr.update(choices=_bar_choices(records), value=None),
                "",
                _price_text(quote),
            )

        run_button.click(
            _click,
            inputs=[file_input, *toggles],
            outputs=[
                output_image,
                output_zip,
                report_box,
                debug_box,
                records_state,
                bar_select,
                bar_info,
                price_md,
            ],
        )

        def _select(records, choice, *toggle_values):
            return _inspect_bar(records, choice, _chart_config_from_ui(*toggle_values))

        bar_select.change(
            _select,
            inputs=[records_state, bar_select, *toggles],
            outputs=[bar_info],
        )

    return demo


if __name__ == "__main__":
    demo = _build_ui()
    demo.launch()
