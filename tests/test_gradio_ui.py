import zipfile
from pathlib import Path

from cost_curve.csv_parser import parse_csv_text
from cost_curve.gradio_ui import (
    _bar_choices,
    _chart_config_from_ui,
    _inspect_bar,
    _price_text,
    _run_pipeline,
)
from cost_curve.layout import ChartConfig
from cost_curve.price import PriceQuote

SAMPLE = 'name,production,cost,highlight\n"A",100,10,0\n"B",200,20,1\n"C",50,5,0\n'


def test_run_pipeline_without_upload():
    image, zip_path, report, debug, records = _run_pipeline(None, ChartConfig())
    assert image is None and zip_path is None
    assert report.startswith("Error: No CSV file uploaded")
    assert debug == ""
    assert records == []


def test_run_pipeline_with_csv(tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    csv_path = tmp_path / "mines.csv"
    csv_path.write_text(SAMPLE, encoding="utf-8")

    image, zip_path, report, debug, records = _run_pipeline(
        str(csv_path), ChartConfig(show_quartiles=True), reference_price=11.0
    )

    assert Path(image).exists()
    assert Path(image).read_bytes()[:4] == b"\x89PNG"
    # The archive is complete by the time the handler returns
    with zipfile.ZipFile(zip_path) as zf:
        names = zf.namelist()
        assert zf.testzip() is None
    assert sorted(n.split("-")[0] for n in names) == [
        "cost_curve",
        "layout",
        "manifest",
        "report",
    ]
    assert "Current price: $11.00" in report
    assert "Parsed data points: 3" in debug
    assert [r.name for r in records] == ["C", "A", "B"]
    run_dir = Path(image).parent
    assert list(run_dir.glob("manifest-*.json"))
    assert list(run_dir.glob("layout-*.csv"))


def test_chart_config_from_ui_falls_back_to_default_colors():
    config = _chart_config_from_ui(None, "", True, False, True, False, True, False)
    assert config.bar_color == ChartConfig().bar_color
    assert config.highlight_color == ChartConfig().highlight_color
    assert config.show_reference_price is False
    assert config.show_highlight_labels is False


def test_bar_choices_and_inspection():
    records = parse_csv_text(SAMPLE).records
    choices = _bar_choices(records)
    assert choices == ["0: C", "1: A", "2: B"]

    text = _inspect_bar(records, choices[2], ChartConfig())
    assert text == "B - Cost: $20.00/oz, Production: 200 koz"
    assert _inspect_bar(records, None, ChartConfig()) == ""
    assert _inspect_bar([], "0: C", ChartConfig()) == ""
    assert _inspect_bar(records, "bogus", ChartConfig()) == ""


def test_price_text():
    assert _price_text(PriceQuote()) == "Current price: not available"
    assert _price_text(PriceQuote(value=2001.5)) == "Current Gold Price: $2001.50 per oz"
