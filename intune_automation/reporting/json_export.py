"""
JSON exporter — Writes report rows plus run metadata to a JSON file.
"""

from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Sequence

from .. import __version__


def export_json(
    rows: Sequence[dict[str, Any]],
    summary: dict[str, Any],
    output_dir: Path,
    report_name: str,
    run_id: str,
    extra: Optional[dict[str, Any]] = None,
) -> Path:
    """
    Write a report to <output_dir>/<report_name>_<run_id>.json atomically.

    Returns:
        Path to the created JSON file.
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    payload = {
        "metadata": {
            "tool": "Intune Graph Automation",
            "version": __version__,
            "report": report_name,
            "run_id": run_id,
            "generated_utc": datetime.now(timezone.utc).isoformat(),
        },
        "summary": summary,
        "records": list(rows),
    }
    if extra:
        payload.update(extra)

    filepath = output_dir / f"{report_name}_{run_id}.json"
    tmp_path = filepath.with_name(filepath.name + ".tmp")

    try:
        with open(tmp_path, "w", encoding="utf-8") as fh:
            json.dump(payload, fh, indent=2, default=str, ensure_ascii=False)
        os.replace(tmp_path, filepath)
    finally:
        if tmp_path.exists():
            tmp_path.unlink()

    return filepath
