"""
Tests for state/mapping_store.py -- SQLite and JSON mapping persistence.
"""

import json
from datetime import datetime, timezone

import pytest

from scanner.matching import manual_mapping
from scanner.models import EventMapping, MatchMethod, MatchTier, OutcomePair
from state.mapping_store import (
    JsonMappingStore,
    MappingStoreError,
    SQLiteMappingStore,
    mapping_from_dict,
    mapping_to_dict,
    open_mapping_store,
)

_NOW = datetime(2024, 10, 1, 12, 0, tzinfo=timezone.utc)


def _make_mapping(id_a="pm1", id_b="K1", **kwargs) -> EventMapping:
    return EventMapping(
        id_a=id_a,
        id_b=id_b,
        confidence=kwargs.pop("confidence", 0.82),
        method=kwargs.pop("method", MatchMethod.KEYWORD),
        outcome_correspondence=(OutcomePair("Yes", "yes"), OutcomePair("No", "no")),
        created_at=_NOW,
        updated_at=_NOW,
        description="Trump / Republican nominee",
        resolution_time=datetime(2024, 11, 5, tzinfo=timezone.utc),
        **kwargs,
    )


@pytest.fixture(params=["sqlite", "json"])
def store(request, tmp_path):
    if request.param == "sqlite":
        s = SQLiteMappingStore(tmp_path / "mappings.db")
    else:
        s = JsonMappingStore(tmp_path / "mappings.json")
    yield s
    s.close()


class TestSerialization:
    def test_dict_round_trip(self):
        m = _make_mapping(tier=MatchTier.REVIEW)
        assert mapping_from_dict(mapping_to_dict(m)) == m

    def test_missing_timestamps_use_default(self):
        data = mapping_to_dict(_make_mapping())
        del data["created_at"]
        del data["updated_at"]
        m = mapping_from_dict(data, default_time=_NOW)
        assert m.created_at == _NOW

    def test_bad_record_raises(self):
        with pytest.raises(MappingStoreError):
            mapping_from_dict({"id_a": "pm1"})
        with pytest.raises(MappingStoreError):
            mapping_from_dict({**mapping_to_dict(_make_mapping()), "method": "telepathy"})


class TestStore:
    def test_save_and_load(self, store):
        m = _make_mapping()
        store.save(m)
        assert store.load_active() == [m]
        assert store.get("pm1:K1") == m
        assert store.get("missing") is None

    def test_new_mapping_supersedes_same_question(self, store):
        store.save(_make_mapping("pm1", "K1"))
        store.save(_make_mapping("pm1", "K2"))

        active = store.load_active()
        assert [m.mapping_id for m in active] == ["pm1:K2"]
        old = store.get("pm1:K1")
        assert old is not None
        assert not old.active
        assert len(store.list_all()) == 2

    def test_other_questions_untouched(self, store):
        store.save(_make_mapping("pm1", "K1"))
        store.save(_make_mapping("pm2", "K1"))
        assert len(store.load_active()) == 2

    def test_deactivate(self, store):
        store.save(_make_mapping())
        assert store.deactivate("pm1:K1") is True
        assert store.load_active() == []
        assert store.deactivate("pm1:K1") is False
        assert store.deactivate("unknown") is False
        assert store.get("pm1:K1") is not None

    def test_resave_same_id_replaces(self, store):
        store.save(_make_mapping(confidence=0.80))
        store.save(_make_mapping(confidence=0.90))
        assert [m.confidence for m in store.list_all()] == [0.90]


class TestPersistence:
    def test_sqlite_survives_reopen(self, tmp_path):
        path = tmp_path / "mappings.db"
        s = SQLiteMappingStore(path)
        s.save(manual_mapping("pm1", "K1", now=_NOW))
        s.close()

        reopened = SQLiteMappingStore(path)
        loaded = reopened.load_active()
        reopened.close()
        assert len(loaded) == 1
        assert loaded[0].method == MatchMethod.MANUAL

    def test_json_survives_reopen(self, tmp_path):
        path = tmp_path / "mappings.json"
        JsonMappingStore(path).save(_make_mapping())
        doc = json.loads(path.read_text())
        assert "generated" in doc
        assert len(doc["mappings"]) == 1
        assert JsonMappingStore(path).load_active() == [_make_mapping()]

    def test_json_corrupt_file_raises(self, tmp_path):
        path = tmp_path / "mappings.json"
        path.write_text("{not json")
        with pytest.raises(MappingStoreError):
            JsonMappingStore(path)

    def test_json_failed_write_leaves_memory_unchanged(self, tmp_path, monkeypatch):
        path = tmp_path / "mappings.json"
        s = JsonMappingStore(path)
        s.save(_make_mapping("pm1", "K1"))

        def refuse(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr("state.mapping_store.os.replace", refuse)
        with pytest.raises(MappingStoreError, match="disk full"):
            s.save(_make_mapping("pm1", "K9"))
        with pytest.raises(MappingStoreError):
            s.deactivate("pm1:K1")

        assert [m.mapping_id for m in s.load_active()] == ["pm1:K1"]
        assert s.get("pm1:K9") is None
        monkeypatch.undo()
        assert JsonMappingStore(path).list_all() == s.list_all()


class TestCamelCaseRows:
    _ROW = {
        "id": "a1b2c3",
        "polymarketConditionId": "0xabc",
        "kalshiTicker": "PRES-24-REP",
        "eventDescription": "Will Trump win the 2024 election?",
        "matchConfidence": 0.82,
        "matchMethod": "keyword",
        "resolutionDate": "2024-11-05T00:00:00.000Z",
        "outcomeMapping": [
            {"polymarketOutcome": "Yes", "kalshiSide": "yes"},
            {"polymarketOutcome": "No", "kalshiSide": "no"},
        ],
        "isActive": True,
    }

    def test_row_fields_mapped(self):
        m = mapping_from_dict(self._ROW, default_time=_NOW)
        assert (m.id_a, m.id_b, m.mapping_id) == ("0xabc", "PRES-24-REP", "0xabc:PRES-24-REP")
        assert m.method == MatchMethod.KEYWORD
        assert m.tier == MatchTier.AUTO
        assert m.description.startswith("Will Trump")
        assert m.resolution_time == datetime(2024, 11, 5, tzinfo=timezone.utc)
        assert m.created_at == _NOW
        assert m.is_tradeable

    def test_combined_method_and_review_tier(self):
        m = mapping_from_dict({**self._ROW, "matchMethod": "combined", "matchConfidence": 0.65})
        assert m.method == MatchMethod.FUZZY
        assert m.tier == MatchTier.REVIEW

    def test_inactive_and_missing_outcomes(self):
        m = mapping_from_dict({**self._ROW, "isActive": False, "outcomeMapping": None})
        assert not m.active
        assert m.outcome_correspondence == ()

    def test_file_from_build_script_loads(self, tmp_path):
        path = tmp_path / "event_mappings.json"
        path.write_text(json.dumps({
            "generated": "2024-10-01T12:00:00.000Z",
            "polymarketMarkets": 500,
            "kalshiMarkets": 200,
            "totalMatches": 1,
            "mappings": [self._ROW],
        }))
        store = JsonMappingStore(path)
        loaded = store.load_active()
        assert [m.mapping_id for m in loaded] == ["0xabc:PRES-24-REP"]
        assert loaded[0].created_at == _NOW

    def test_missing_ticker_raises(self):
        row = {k: v for k, v in self._ROW.items() if k != "kalshiTicker"}
        with pytest.raises(MappingStoreError):
            mapping_from_dict(row)


class TestOpenMappingStore:
    def test_backends(self, tmp_path):
        s = open_mapping_store("sqlite", str(tmp_path / "m.db"))
        assert isinstance(s, SQLiteMappingStore)
        s.close()
        assert isinstance(open_mapping_store("json", str(tmp_path / "m.json")), JsonMappingStore)

    def test_unknown_backend(self, tmp_path):
        with pytest.raises(ValueError):
            open_mapping_store("redis", str(tmp_path / "m"))
