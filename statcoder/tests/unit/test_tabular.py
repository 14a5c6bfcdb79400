"""
tests/unit/test_tabular.py
──────────────────────────────────────────────────────────────────────────────
Unit tests for flat-file ingestion and export.
"""
from __future__ import annotations

import pandas as pd
import pytest

from statcoder.domain.exceptions import ConfigurationError, ValidationError
from statcoder.services.tabular import read_records, write_records


class TestReadRecords:
    def test_csv_kept_as_text(self, tmp_path):
        path = tmp_path / "dict.csv"
        path.write_text("code,label,term\n0110,Commissioned armed forces officers, officer \n")
        records = read_records(path)
        assert records == [
            {"code": "0110", "label": "Commissioned armed forces officers", "term": "officer"}
        ]

    def test_headers_trimmed_and_blank_rows_dropped(self, tmp_path):
        path = tmp_path / "jobs.csv"
        path.write_text(" Job Title ,Duties\nnurse,\n,\nbaker,makes bread\n")
        records = read_records(path)
        assert [r["Job Title"] for r in records] == ["nurse", "baker"]
        assert records[0]["Duties"] == ""

    def test_xlsx(self, tmp_path):
        path = tmp_path / "jobs.xlsx"
        pd.DataFrame({"title": ["nurse", "baker"], "code": ["0110", "7512"]}).to_excel(
            path, index=False
        )
        records = read_records(path)
        assert records[1] == {"title": "baker", "code": "7512"}

    def test_xlsx_keeps_na_like_text(self, tmp_path):
        path = tmp_path / "codes.xlsx"
        pd.DataFrame(
            {"term": ["NA", "N/A", "null", "None"], "code": ["1", "2", "3", "4"]}
        ).to_excel(path, index=False)
        records = read_records(path)
        assert [r["term"] for r in records] == ["NA", "N/A", "null", "None"]

    def test_xls_reads_with_xlrd(self, tmp_path, monkeypatch):
        path = tmp_path / "legacy.xls"
        path.write_bytes(b"")
        seen = {}

        def fake_read_excel(p, **kwargs):
            seen.update(kwargs)
            return pd.DataFrame({"title": ["nurse"], "code": ["0110"]})

        monkeypatch.setattr(pd, "read_excel", fake_read_excel)
        assert read_records(path) == [{"title": "nurse", "code": "0110"}]
        assert seen["engine"] == "xlrd"
        assert seen["keep_default_na"] is False
        assert seen["dtype"] is str

    def test_missing_engine_is_configuration_error(self, tmp_path, monkeypatch):
        path = tmp_path / "legacy.xls"
        path.write_bytes(b"")

        def fake_read_excel(p, **kwargs):
            raise ImportError("Missing optional dependency 'xlrd'.")

        monkeypatch.setattr(pd, "read_excel", fake_read_excel)
        with pytest.raises(ConfigurationError, match="xlrd"):
            read_records(path)

    def test_empty_csv(self, tmp_path):
        path = tmp_path / "empty.csv"
        path.write_text("")
        assert read_records(path) == []

    def test_missing_file(self, tmp_path):
        with pytest.raises(ValidationError, match="not found"):
            read_records(tmp_path / "nope.csv")

    def test_unsupported_extension(self, tmp_path):
        path = tmp_path / "jobs.json"
        path.write_text("[]")
        with pytest.raises(ValidationError, match="Unsupported"):
            read_records(path)


class TestWriteRecords:
    def test_write_then_read(self, tmp_path):
        path = tmp_path / "out.csv"
        n = write_records([{"id": "r1", "code": "0110"}, {"id": "r2", "code": "2512"}], path)
        assert n == 2
        assert read_records(path)[0] == {"id": "r1", "code": "0110"}
