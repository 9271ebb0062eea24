"""
Run bookkeeping shared by the CLI and the Gradio UI.

A run is identified by the SHA-256 of canonical JSON built from the input path
and the effective chart/output parameters; the short form names every artifact
(chart image, layout CSV, report, manifest) inside a timestamped run directory.
"""

from __future__ import annotations

import dataclasses
import datetime as _dt
import hashlib
import json
import logging
import math
import time
import zipfile
from pathlib import Path
from typing import Any, Dict, Iterable

logger = logging.getLogger(__name__)

RUN_DIR_TIME_FORMAT = "%Y%m%dT%H%M%S"
SHORT_HASH_LEN = 8


def normalize_abs_posix(path: str | Path) -> str:
    """Resolved absolute path in POSIX form, so hashes match across platforms."""
    return Path(path).resolve().as_posix()


def canonical_json_dumps(payload: dict[str, Any]) -> str:
    # Compact separators and sorted keys: equal payloads give equal bytes
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def canonical_json_hash(payload: dict[str, Any]) -> tuple[str, str]:
    """Returns (short, full) SHA-256 hex digests of the canonical JSON form."""
    digest = hashlib.sha256(canonical_json_dumps(payload).encode("utf-8")).hexdigest()
    return digest[:SHORT_HASH_LEN], digest


def _sanitize_for_json(obj: Any) -> Any:
    """
    Reduce parameter objects to JSON primitives.

    Paths become absolute POSIX strings, dataclasses become dicts of their
    fields, numpy scalars are unwrapped, and NaN/inf become None. Unknown
    objects fall back to str().
    """
    if obj is None or isinstance(obj, (bool, int, str)):
        return obj
    if isinstance(obj, float):
        return obj if math.isfinite(obj) else None
    if isinstance(obj, Path):
        return normalize_abs_posix(obj)
    if isinstance(obj, _dt.datetime):
        return obj.isoformat()
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return {
            f.name: _sanitize_for_json(getattr(obj, f.name))
            for f in dataclasses.fields(obj)
        }
    if isinstance(obj, dict):
        return {str(key): _sanitize_for_json(value) for key, value in obj.items()}
    if isinstance(obj, (list, tuple, set)):
        return [_sanitize_for_json(item) for item in obj]
    if hasattr(obj, "item"):
        try:
            return _sanitize_for_json(obj.item())
        except (TypeError, ValueError):
            pass
    return str(obj)


def build_effective_parameters(**sections: Any) -> dict[str, Any]:
    """
    One JSON-ready entry per keyword, e.g.
    build_effective_parameters(load=..., chart=..., output=...).
    """
    return {name: _sanitize_for_json(value) for name, value in sections.items()}


def write_manifest(path: str | Path, manifest: Dict[str, Any]) -> None:
    Path(path).write_text(
        json.dumps(manifest, indent=2, ensure_ascii=False), encoding="utf-8"
    )


def utc_timestamp_seconds() -> str:
    """Current UTC time as e.g. 2024-05-01T12:30:00Z."""
    now = _dt.datetime.now(_dt.timezone.utc).replace(tzinfo=None, microsecond=0)
    return now.isoformat() + "Z"


def ensure_run_dir(base: Path | str = ".", prefix: str = "output") -> Path:
    """Create (if needed) and return base/prefix/<local YYYYmmddTHHMMSS>."""
    run_dir = Path(base) / prefix / time.strftime(RUN_DIR_TIME_FORMAT, time.localtime())
    run_dir.mkdir(parents=True, exist_ok=True)
    logger.debug("Using run directory %s", run_dir)
    return run_dir


def create_zip(zip_path: str, artifact_paths: Iterable[Path]) -> Path:
    """
    Bundle the artifacts into zip_path and return it once the archive is closed.

    Missing artifacts are skipped; archive errors are logged, never raised to
    the caller.
    """
    paths = [Path(p) for p in artifact_paths]
    try:
        with zipfile.ZipFile(zip_path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            for artifact in paths:
                if not artifact.exists():
                    logger.debug("Artifact %s missing; not zipped", artifact)
                    continue
                zf.write(artifact, arcname=artifact.name)
        logger.debug("Wrote bundle %s (%d artifact(s))", zip_path, len(paths))
    except (OSError, zipfile.BadZipFile) as e:
        logger.warning("Could not write bundle %s: %s", zip_path, e)
    return Path(zip_path)


def write_text_report(report_text: str, run_dir: Path, short_hash: str) -> Path:
    """
    Save the report as run_dir/report-<short_hash>.txt and return its path.

    A failed write is logged; the returned path may then not exist.
    """
    target = Path(run_dir) / f"report-{short_hash}.txt"
    try:
        target.write_text(report_text, encoding="utf-8")
    except OSError as e:
        logger.warning("Could not write report %s: %s", target, e)
    else:
        logger.debug("Report written to %s", target)
    return target
