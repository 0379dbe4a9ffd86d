"""Tests for result shaping and the atomic CSV/JSON writers."""

from __future__ import annotations

import csv
import json

import pytest

from intune_automation import __version__
from intune_automation.classifiers import ComplianceClassifier
from intune_automation.classifiers.base import ClassifiedRecord
from intune_automation.collectors.base import STATE_COMPLETED, STATE_COMPLETED_PARTIAL, CollectionRun
from intune_automation.collectors.devices import DeviceEvaluation
from intune_automation.graph.paging import PageRequest
from intune_automation.reporting import (
    breakdown,
    count_by,
    export_csv,
    export_json,
    group_by,
    row_fields,
    summarize,
    to_rows,
)


def record(category: str, os_name: str, issues: tuple = ()) -> ClassifiedRecord:
    return ClassifiedRecord(
        record=None,
        category=category,
        fields={"OperatingSystem": os_name, "Status": category},
        issues=issues,
    )


RECORDS = [
    record("Compliant", "Windows"),
    record("Non-Compliant", "Windows"),
    record("Compliant", "iOS"),
    record("Unknown", "iOS", issues=("Device record has no id",)),
    record("Compliant", "Windows"),
]


class TestShaping:
    def test_count_by_category(self) -> None:
        assert count_by(RECORDS) == {"Compliant": 3, "Non-Compliant": 1, "Unknown": 1}

    def test_count_by_field(self) -> None:
        assert count_by(RECORDS, "OperatingSystem") == {"Windows": 3, "iOS": 2}

    def test_group_by_keeps_first_seen_order(self) -> None:
        groups = group_by(RECORDS, "OperatingSystem")
        assert list(groups) == ["Windows", "iOS"]
        assert len(groups["Windows"]) == 3

    def test_breakdown(self) -> None:
        rows = breakdown(RECORDS, "OperatingSystem")
        assert rows[0] == {
            "OperatingSystem": "Windows",
            "Compliant": 2,
            "Non-Compliant": 1,
            "Unknown": 0,
            "Total": 3,
        }
        assert rows[1]["Unknown"] == 1

    def test_rows_are_printable_and_carry_issues(self) -> None:
        records = ComplianceClassifier().classify_all([
            DeviceEvaluation(device={"id": "d1", "lastSyncDateTime": None}, states=[]),
            DeviceEvaluation(device=None, states=[]),
        ])
        rows = to_rows(records)
        assert rows[0]["DeviceName"] == "N/A"
        assert rows[0]["LastSync"] == "Never"
        assert "Issues" not in rows[0]
        assert rows[1]["Issues"].startswith("Device record is NoneType")
        for row in rows:
            for value in row.values():
                assert isinstance(value, (str, int, float, bool))

    def test_row_fields_union(self) -> None:
        assert row_fields([{"a": 1}, {"b": 2, "a": 3}]) == ["a", "b"]

    def test_row_fields_put_declared_columns_first(self) -> None:
        rows = [{"b": 1, "a": 2}, {"a": 3, "Issues": "bad"}]
        assert row_fields(rows, ("a", "b", "c")) == ["a", "b", "c", "Issues"]
        assert row_fields([], ("a", "b")) == ["a", "b"]

    def test_summarize(self) -> None:
        complete = CollectionRun(seed=PageRequest(uri="one"))
        complete.finish(STATE_COMPLETED)
        partial = CollectionRun(seed=PageRequest(uri="two"))
        partial.finish(STATE_COMPLETED_PARTIAL, "boom")

        summary = summarize(RECORDS, [complete, partial])
        assert summary["total"] == 5
        assert summary["degraded"] == 1
        assert summary["partial_collection"] is True
        assert [r["state"] for r in summary["collection_runs"]] == [STATE_COMPLETED, STATE_COMPLETED_PARTIAL]

    def test_summarize_without_runs(self) -> None:
        assert summarize([])["partial_collection"] is False


class TestExportCsv:
    def test_writes_rows_with_header(self, tmp_path) -> None:
        rows = [{"DeviceName": "A", "Status": "Compliant"}, {"DeviceName": "B"}]
        path = export_csv(rows, tmp_path / "out", "device_compliance", "run1")

        assert path.name == "device_compliance_run1.csv"
        with open(path, newline="", encoding="utf-8-sig") as fh:
            written = list(csv.DictReader(fh))
        assert written == [
            {"DeviceName": "A", "Status": "Compliant"},
            {"DeviceName": "B", "Status": "N/A"},
        ]
        assert list((tmp_path / "out").iterdir()) == [path]

    def test_empty_report_keeps_its_header(self, tmp_path) -> None:
        rows = to_rows(ComplianceClassifier().classify_all([]))
        fields = row_fields(rows, ComplianceClassifier.columns)
        path = export_csv(rows, tmp_path, "device_compliance", "run1", fieldnames=fields)

        with open(path, newline="", encoding="utf-8-sig") as fh:
            reader = csv.DictReader(fh)
            assert list(reader) == []
            assert reader.fieldnames == list(ComplianceClassifier.columns)

    def test_failed_write_leaves_nothing(self, tmp_path, monkeypatch) -> None:
        def broken_replace(_src, _dst):
            raise OSError("disk full")

        monkeypatch.setattr("intune_automation.reporting.csv_export.os.replace", broken_replace)
        with pytest.raises(OSError):
            export_csv([{"a": 1}], tmp_path, "report", "run1")
        assert list(tmp_path.iterdir()) == []


class TestExportJson:
    def test_payload(self, tmp_path) -> None:
        path = export_json(
            [{"DeviceName": "A"}],
            {"total": 1},
            tmp_path,
            "device_compliance",
            "run1",
            extra={"by_platform": [{"OperatingSystem": "Windows", "Total": 1}]},
        )
        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["metadata"]["version"] == __version__
        assert data["metadata"]["run_id"] == "run1"
        assert data["summary"] == {"total": 1}
        assert data["records"] == [{"DeviceName": "A"}]
        assert data["by_platform"][0]["Total"] == 1

    def test_failed_write_leaves_nothing(self, tmp_path, monkeypatch) -> None:
        def broken_dump(*_args, **_kwargs):
            raise ValueError("cannot serialize")

        monkeypatch.setattr("intune_automation.reporting.json_export.json.dump", broken_dump)
        with pytest.raises(ValueError):
            export_json([], {}, tmp_path, "report", "run1")
        assert list(tmp_path.iterdir()) == []
