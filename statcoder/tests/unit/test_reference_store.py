"""
tests/unit/test_reference_store.py
──────────────────────────────────────────────────────────────────────────────
Unit tests for the ReferenceStore service over the in-memory backend.
"""
from __future__ import annotations

import pytest

from conftest import FlakyMemoryStore, make_entry
from statcoder.domain.exceptions import StorageError, ValidationError
from statcoder.domain.models import (
    CodedResult,
    CodingStatus,
    Confidence,
    EntrySource,
    ModuleType,
    ProcessedRow,
)
from statcoder.services.reference_store import ReferenceStore


def _coded_row(confidence: Confidence = Confidence.HIGH, text: str = "Data Scientist") -> ProcessedRow:
    return ProcessedRow(
        id="r1",
        primary_text=text,
        coding_status=CodingStatus.CODED,
        result=CodedResult(
            code="2120",
            label="Mathematicians, actuaries and statisticians",
            confidence=confidence,
            reasoning="works with statistical models",
        ),
    )


class TestCrud:
    def test_put_and_get(self):
        store = ReferenceStore(FlakyMemoryStore())
        store.put([make_entry("nurse", "2221"), make_entry("bakery", "1071", module=ModuleType.ISIC4)])
        isco = store.get_by_module(ModuleType.ISCO08)
        assert [e.code for e in isco] == ["2221"]

    def test_put_upserts_by_id(self, store):
        entry = make_entry("plumber", "7126")
        store.put([entry])
        store.put([entry.model_copy(update={"code": "7127"})])
        codes = [e.code for e in store.get_by_module(ModuleType.ISCO08) if e.id == entry.id]
        assert codes == ["7127"]

    def test_delete_known_and_unknown(self, store):
        entry = make_entry("plumber", "7126")
        store.put([entry])
        assert store.delete(entry.id) is True
        assert store.delete(entry.id) is False

    def test_clear_one_module(self, store):
        store.clear(ModuleType.ISIC4)
        stats = store.stats()
        assert stats[ModuleType.ISIC4] == 0
        assert stats[ModuleType.ISCO08] == 4

    def test_clear_everything(self, store):
        store.clear()
        assert all(n == 0 for n in store.stats().values())

    def test_stats_lists_every_module(self, store):
        stats = store.stats()
        assert set(stats) == set(ModuleType)
        assert stats[ModuleType.DUAL] == 0
        assert stats[ModuleType.COICOP] == 1


class TestNotifications:
    def test_put_notifies_each_touched_module(self, store):
        seen = []
        store.subscribe(seen.append)
        store.put([
            make_entry("nurse", "2221"),
            make_entry("bakery", "1071", module=ModuleType.ISIC4),
            make_entry("midwife", "2222"),
        ])
        assert sorted(m.value for m in seen) == ["ISCO-08", "ISIC Rev. 4"]

    def test_clear_all_notifies_none(self, store):
        seen = []
        store.subscribe(seen.append)
        store.clear()
        assert seen == [None]

    def test_unknown_delete_does_not_notify(self, store):
        seen = []
        store.subscribe(seen.append)
        store.delete("missing")
        assert seen == []

    def test_failed_write_does_not_notify(self, backend, store):
        seen = []
        store.subscribe(seen.append)
        backend.fail = True
        with pytest.raises(StorageError):
            store.put([make_entry("nurse", "2221")])
        assert seen == []

    def test_empty_put_is_noop(self, store):
        seen = []
        store.subscribe(seen.append)
        store.put([])
        assert seen == []


class TestFailures:
    def test_read_failure_is_storage_error(self, backend, store):
        backend.fail = True
        with pytest.raises(StorageError, match="get_by_module"):
            store.get_by_module(ModuleType.ISCO08)


class TestLearn:
    def test_learn_high_confidence(self, store):
        entry = store.learn(_coded_row(), ModuleType.ISCO08)
        assert entry.source == EntrySource.LEARNED
        assert entry.term == "Data Scientist"
        assert entry.description == "works with statistical models"
        assert entry in store.get_by_module(ModuleType.ISCO08)

    @pytest.mark.parametrize("confidence", [
        Confidence.MEDIUM, Confidence.LOW, Confidence.MANUAL, Confidence.REFERENCE,
    ])
    def test_learn_rejects_other_confidences(self, store, confidence):
        with pytest.raises(ValidationError):
            store.learn(_coded_row(confidence), ModuleType.ISCO08)

    def test_learn_rejects_uncoded_row(self, store):
        with pytest.raises(ValidationError):
            store.learn(ProcessedRow(id="r1", primary_text="x"), ModuleType.ISCO08)

    def test_learn_rejects_blank_text(self, store):
        with pytest.raises(ValidationError):
            store.learn(_coded_row(text="  "), ModuleType.ISCO08)

    def test_learn_rejects_dual(self, store):
        with pytest.raises(ValidationError):
            store.learn(_coded_row(), ModuleType.DUAL)


class TestImport:
    def test_positional_columns(self):
        store = ReferenceStore(FlakyMemoryStore())
        entries = store.import_records(
            [
                {"Code": "2221", "Title": "Nursing professionals", "Term": "registered nurse"},
                {"Code": "8331", "Title": "Bus and tram drivers", "Term": ""},
            ],
            ModuleType.ISCO08,
        )
        assert [(e.code, e.term) for e in entries] == [
            ("2221", "registered nurse"),
            ("8331", "Bus and tram drivers"),
        ]
        assert all(e.source == EntrySource.UPLOAD for e in entries)
        assert store.stats()[ModuleType.ISCO08] == 2

    def test_two_column_file_uses_label_as_term(self):
        store = ReferenceStore(FlakyMemoryStore())
        entries = store.import_records([{"a": "01.1.1.1", "b": "Rice"}], ModuleType.COICOP)
        assert entries[0].term == "Rice"

    def test_rows_without_code_or_term_skipped(self, caplog):
        store = ReferenceStore(FlakyMemoryStore())
        entries = store.import_records(
            [{"c": "", "l": "Nothing"}, {"c": "1071", "l": ""}, {"c": "1071", "l": "Bakery"}],
            ModuleType.ISIC4,
        )
        assert len(entries) == 1
        assert "skipped 2" in caplog.text

    def test_import_rejects_dual(self, store):
        with pytest.raises(ValidationError):
            store.import_records([{"c": "1", "l": "x"}], ModuleType.DUAL)
