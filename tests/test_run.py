"""
Unit tests for run.py CLI behavior.
"""

import json
from argparse import Namespace
from unittest.mock import patch

import pytest

from config import Config
import run
from monitor.pnl import load_ledger
from state.mapping_store import JsonMappingStore

_VENUES = {
    "venues": {
        "polymarket": {
            "price_unit": "probability",
            "questions": [{"question_id": "pm1", "title": "Will the Fed cut rates in March 2025?",
                           "resolution_time": "2025-03-19T18:00:00Z", "category": "economics"}],
            "books": [{"question_id": "pm1", "bid_price": 0.35, "bid_size": 200,
                       "ask_price": 0.40, "ask_size": 200}],
        },
        "kalshi": {
            "price_unit": "cents",
            "questions": [{"question_id": "K1", "title": "Will the Fed cut rates in March 2025?",
                           "resolution_time": "2025-03-19T18:00:00Z", "category": "Economics",
                           "outcomes": ["yes", "no"]}],
            "books": [{"question_id": "K1", "bid_price": 50, "bid_size": 200,
                       "ask_price": 60, "ask_size": 200}],
        },
    },
}


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("MAPPING_STORE_BACKEND", "json")
    monkeypatch.setenv("MAPPING_STORE_PATH", str(tmp_path / "mappings.json"))
    monkeypatch.setenv("LEDGER_PATH", str(tmp_path / "ledger.ndjson"))
    monkeypatch.setenv("BOOK_FETCH_BACKOFF_SEC", "0")
    venues = tmp_path / "venues.json"
    venues.write_text(json.dumps(_VENUES))
    with patch("run.setup_logging", return_value=str(tmp_path / "run.log")):
        yield tmp_path


class TestParseArgs:
    def test_modes_are_exclusive(self):
        with pytest.raises(SystemExit):
            run.parse_args(["--paper", "--live"])

    def test_apply_mode(self):
        cfg = Config(_env_file=None)
        assert run._apply_mode(run.parse_args(["--paper"]), cfg).trading_mode == "paper"
        assert run._apply_mode(run.parse_args([]), cfg).trading_mode == "dry_run"


class TestBuildConnectors:
    def test_live_has_no_adapters(self):
        cfg = Config(_env_file=None, trading_mode="live")
        with pytest.raises(SystemExit):
            run.build_connectors(Namespace(venue_data=None), cfg)

    def test_paper_needs_venue_data(self):
        cfg = Config(_env_file=None, trading_mode="paper")
        with pytest.raises(SystemExit):
            run.build_connectors(Namespace(venue_data=None), cfg)


class TestMain:
    def test_add_and_deactivate_mapping(self, workspace):
        assert run.main(["--add-mapping", "pm1", "K1", "Fed", "March", "cut"]) == 0
        store = JsonMappingStore(workspace / "mappings.json")
        mapping = store.get("pm1:K1")
        assert mapping.description == "Fed March cut"
        assert mapping.active

        assert run.main(["--deactivate", "pm1:K1"]) == 0
        assert run.main(["--deactivate", "pm1:K1"]) == 1

    def test_add_mapping_needs_two_ids(self, workspace):
        assert run.main(["--add-mapping", "pm1"]) == 2

    def test_build_mappings_only(self, workspace):
        assert run.main(["--venue-data", str(workspace / "venues.json"), "--build-mappings"]) == 0
        active = JsonMappingStore(workspace / "mappings.json").load_active()
        assert [m.mapping_id for m in active] == ["pm1:K1"]

    def test_paper_cycle_end_to_end(self, workspace):
        code = run.main([
            "--venue-data", str(workspace / "venues.json"),
            "--build-mappings", "--paper", "--once",
        ])
        assert code == 0
        entries = load_ledger(str(workspace / "ledger.ndjson"))
        assert [e["state"] for e in entries] == ["both_filled"]
