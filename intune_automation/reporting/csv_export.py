"""
CSV exporter — Writes report rows to CSV files atomically.
"""

from __future__ import annotations

import csv
import os
from pathlib import Path
from typing import Any, Optional, Sequence

from .summary import row_fields


def export_csv(
    rows: Sequence[dict[str, Any]],
    output_dir: Path,
    report_name: str,
    run_id: str,
    fieldnames: Optional[Sequence[str]] = None,
) -> Path:
    """
    Write rows to <output_dir>/<report_name>_<run_id>.csv.

    The file is written to a temporary name and renamed into place, so a
    failure never leaves a half-written report behind.

    Returns:
        Path to the created CSV file.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / f"{report_name}_{run_id}.csv"
    tmp_path = path.with_name(path.name + ".tmp")
    fields = list(fieldnames) if fieldnames else row_fields(rows)

    try:
        with open(tmp_path, "w", newline="", encoding="utf-8-sig") as fh:
            writer = csv.DictWriter(fh, fieldnames=fields, extrasaction="ignore", restval="N/A")
            writer.writeheader()
            for row in rows:
                writer.writerow(row)
        os.replace(tmp_path, path)
    finally:
        if tmp_path.exists():
            tmp_path.unlink()

    return path
