#!/usr/bin/env python3
"""
Cost curve CSV parser.

Turns raw CSV text (header row + ``name,production,cost,highlight_flag`` rows)
into a cost-sorted list of immutable Record instances. Malformed rows never
raise; they are dropped and only show up as a reduced record count in the
ParseResult diagnostics.
"""

import json
import logging
import math
import re
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import List, Union

logger = logging.getLogger(__name__)

# A field is a double-quoted run or a run of non-comma, non-quote characters,
# and only counts when followed by a comma or the end of the line.
_FIELD_RE = re.compile(r'(".*?"|[^",]+)(?=\s*,|\s*$)')

# Leading numeric prefix, e.g. "12.5oz" -> 12.5, "  3e2" -> 300.0
_FLOAT_PREFIX_RE = re.compile(r"\s*([+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?)")

MIN_FIELDS = 4
DEBUG_PREVIEW_CHARS = 500
DEBUG_PREVIEW_ROWS = 5


@dataclass(frozen=True)
class Record:
    """One accepted input row."""

    name: str
    production: float
    cost: float
    highlight: bool
    sequence_id: int


@dataclass
class ParseResult:
    """Parsed records plus the counters needed to explain what was dropped."""

    records: List[Record] = field(default_factory=list)
    total_lines: int = 0
    candidate_rows: int = 0
    raw_text: str = ""
    split_preview: List[List[str]] = field(default_factory=list)

    @property
    def dropped_rows(self) -> int:
        # Header line is not a data row
        return max(self.total_lines - 1 - len(self.records), 0)

    def debug_text(self) -> str:
        """Human-readable diagnostics block shown next to the chart."""
        parsed_preview = [asdict(r) for r in self.records[:DEBUG_PREVIEW_ROWS]]
        return "\n".join(
            [
                f"Raw CSV data (first {DEBUG_PREVIEW_CHARS} chars): "
                f"{self.raw_text[:DEBUG_PREVIEW_CHARS]}...",
                "",
                f"First {DEBUG_PREVIEW_ROWS} split rows:",
                json.dumps(self.split_preview, indent=2),
                "",
                f"First {DEBUG_PREVIEW_ROWS} parsed data points:",
                json.dumps(parsed_preview, indent=2),
                "",
                f"Total rows: {self.total_lines}",
                f"Parsed data points: {len(self.records)}",
                f"Filtered out items: {self.dropped_rows}",
            ]
        )


def split_row(line: str) -> List[str]:
    """
    Split one CSV line into fields.

    Quoted fields keep their surrounding quotes here; the field mapping in
    parse_csv_text() decides per column what to strip. Empty fields (",,")
    produce nothing, so later fields shift left.
    """
    return _FIELD_RE.findall(line)


def parse_float(text: str) -> float:
    """
    Parse the leading floating point number of ``text``.

    Returns 0.0 when no number can be read or the value is not finite, which is
    how invalid production/cost values get filtered out downstream.
    """
    m = _FLOAT_PREFIX_RE.match(text or "")
    if not m:
        return 0.0
    try:
        value = float(m.group(1))
    except ValueError:
        return 0.0
    if not math.isfinite(value):
        return 0.0
    return value


def _row_to_record(row: List[str], sequence_id: int) -> Record:
    return Record(
        name=row[0].replace('"', "").strip(),
        production=parse_float(re.sub(r'[",]', "", row[1])),
        cost=parse_float(row[2]),
        highlight=row[3].strip() == "1",
        sequence_id=sequence_id,
    )


def parse_csv_text(text: str) -> ParseResult:
    """
    Parse raw CSV text into a cost-sorted list of Record.

    Rules:
      - The first line is a header and is discarded.
      - Rows with fewer than 4 fields are dropped.
      - sequence_id is the 0-based position among rows that passed the field
        count check, assigned before the production/cost filter.
      - Rows with production <= 0 or cost <= 0 are dropped.
      - The result is sorted ascending by cost; equal costs keep input order.
    """
    text = text or ""
    lines = text.split("\n")
    rows = [split_row(line) for line in lines]

    candidates = [row for row in rows[1:] if len(row) >= MIN_FIELDS]
    mapped = [_row_to_record(row, idx) for idx, row in enumerate(candidates)]
    accepted = [r for r in mapped if r.production > 0 and r.cost > 0]

    result = ParseResult(
        records=sorted(accepted, key=lambda r: r.cost),
        total_lines=len(lines),
        candidate_rows=len(candidates),
        raw_text=text,
        split_preview=rows[:DEBUG_PREVIEW_ROWS],
    )
    logger.info(
        "Parsed %d record(s) from %d line(s); dropped %d row(s)",
        len(result.records),
        result.total_lines,
        result.dropped_rows,
    )
    return result


def load_csv_file(path: Union[str, Path]) -> ParseResult:
    """
    Read and parse a CSV file.

    An unreadable, missing or empty source yields an empty ParseResult; the
    problem is logged rather than raised.
    """
    p = Path(path)
    try:
        # Undecodable bytes become U+FFFD so one bad name does not empty the chart
        text = p.read_text(encoding="utf-8-sig", errors="replace")
    except OSError as e:
        logger.warning("Could not read CSV source %s: %s", p, e)
        return ParseResult()
    if not text.strip():
        logger.warning("CSV source %s is empty", p)
        return ParseResult()
    return parse_csv_text(text)
