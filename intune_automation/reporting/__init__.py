"""Reporting package — result shaping and report writers."""

from .csv_export import export_csv
from .json_export import export_json
from .summary import breakdown, count_by, group_by, row_fields, summarize, to_rows

__all__ = [
    "export_csv",
    "export_json",
    "breakdown",
    "count_by",
    "group_by",
    "row_fields",
    "summarize",
    "to_rows",
]
