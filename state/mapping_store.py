"""
Event mapping persistence.

Two interchangeable backends:
  - SQLiteMappingStore: primary store, one row per mapping
  - JsonMappingStore: flat file {"generated": ..., "mappings": [...]}, used
    when no database is wanted and as a portable export format. Rows written
    by the mapping build script (camelCase keys such as
    polymarketConditionId and kalshiTicker) are read as well.

At most one mapping per venue-A question is active at a time: saving a new
active mapping deactivates any other active mapping with the same id_a.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from scanner.matching import TierThresholds
from scanner.models import EventMapping, MatchMethod, MatchTier, OutcomePair

logger = logging.getLogger(__name__)


class MappingStoreError(Exception):
    """Storage backend failed or returned unreadable data."""
    pass


@runtime_checkable
class MappingStore(Protocol):
    def save(self, mapping: EventMapping) -> None: ...

    def load_active(self) -> list[EventMapping]: ...

    def deactivate(self, mapping_id: str) -> bool: ...

    def get(self, mapping_id: str) -> EventMapping | None: ...

    def list_all(self) -> list[EventMapping]: ...


def mapping_to_dict(mapping: EventMapping) -> dict[str, Any]:
    return {
        "mapping_id": mapping.mapping_id,
        "id_a": mapping.id_a,
        "id_b": mapping.id_b,
        "confidence": mapping.confidence,
        "method": mapping.method.value,
        "tier": mapping.tier.name,
        "outcome_correspondence": [[p.outcome_a, p.outcome_b] for p in mapping.outcome_correspondence],
        "active": mapping.active,
        "created_at": mapping.created_at.isoformat(),
        "updated_at": mapping.updated_at.isoformat(),
        "description": mapping.description,
        "resolution_time": mapping.resolution_time.isoformat() if mapping.resolution_time else None,
    }


def _parse_ts(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _mapping_from_camel_row(data: dict[str, Any], fallback: datetime) -> EventMapping:
    """
    Rows written by the earlier Node build-mappings script: venue A is the
    Polymarket condition id, venue B the Kalshi ticker. There is no tier
    field, so it is derived from confidence; the "combined" method is read
    as fuzzy.
    """
    confidence = float(data["matchConfidence"])
    raw_method = data.get("matchMethod") or MatchMethod.MANUAL.value
    method = MatchMethod.FUZZY if raw_method == "combined" else MatchMethod(raw_method)
    if method == MatchMethod.MANUAL or confidence >= TierThresholds().auto:
        tier = MatchTier.AUTO
    else:
        tier = MatchTier.REVIEW
    resolution = data.get("resolutionDate")
    return EventMapping(
        id_a=data["polymarketConditionId"],
        id_b=data["kalshiTicker"],
        confidence=confidence,
        method=method,
        outcome_correspondence=tuple(
            OutcomePair(outcome_a=p["polymarketOutcome"], outcome_b=p["kalshiSide"])
            for p in data.get("outcomeMapping") or []
        ),
        active=data.get("isActive") is not False,
        created_at=fallback,
        updated_at=fallback,
        description=data.get("eventDescription") or "",
        tier=tier,
        resolution_time=_parse_ts(resolution) if resolution else None,
    )


def mapping_from_dict(data: dict[str, Any], default_time: datetime | None = None) -> EventMapping:
    """
    Rebuild a mapping. Missing timestamps fall back to `default_time`.
    Rows in the older camelCase layout (polymarketConditionId, kalshiTicker,
    matchConfidence, ...) are accepted too.

    Raises:
        MappingStoreError: on missing keys or unparseable values
    """
    try:
        fallback = default_time or datetime.now(timezone.utc)
        if "polymarketConditionId" in data:
            return _mapping_from_camel_row(data, fallback)
        created = data.get("created_at")
        updated = data.get("updated_at")
        resolution = data.get("resolution_time")
        return EventMapping(
            id_a=data["id_a"],
            id_b=data["id_b"],
            confidence=float(data["confidence"]),
            method=MatchMethod(data.get("method", MatchMethod.MANUAL.value)),
            outcome_correspondence=tuple(
                OutcomePair(outcome_a=a, outcome_b=b) for a, b in data.get("outcome_correspondence", [])
            ),
            active=bool(data.get("active", True)),
            created_at=datetime.fromisoformat(created) if created else fallback,
            updated_at=datetime.fromisoformat(updated) if updated else fallback,
            description=data.get("description", ""),
            tier=MatchTier[data.get("tier", MatchTier.AUTO.name)],
            resolution_time=datetime.fromisoformat(resolution) if resolution else None,
            mapping_id=data.get("mapping_id", ""),
        )
    except (KeyError, ValueError, TypeError) as e:
        raise MappingStoreError(f"Unreadable mapping record {data!r}: {e}") from e


_SCHEMA = """
CREATE TABLE IF NOT EXISTS event_mappings (
    mapping_id TEXT PRIMARY KEY,
    id_a TEXT NOT NULL,
    id_b TEXT NOT NULL,
    active INTEGER NOT NULL,
    data_json TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_event_mappings_a ON event_mappings (id_a, active);
"""


class SQLiteMappingStore:
    """SQLite-backed store. Thread-safe for single-writer usage."""

    def __init__(self, db_path: str | Path = "mappings.db") -> None:
        self._db_path = str(db_path)
        self._lock = threading.Lock()
        self._conn: sqlite3.Connection | None = None
        try:
            conn = self._get_conn()
            conn.executescript(_SCHEMA)
            conn.commit()
        except sqlite3.Error as e:
            raise MappingStoreError(f"Cannot open mapping store {self._db_path}: {e}") from e

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(self._db_path, check_same_thread=False)
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA busy_timeout=5000")
        return self._conn

    def save(self, mapping: EventMapping) -> None:
        """Insert or replace. Atomic with the deactivation of any superseded mapping."""
        data_json = json.dumps(mapping_to_dict(mapping))
        now = datetime.now(timezone.utc)
        with self._lock:
            conn = self._get_conn()
            try:
                with conn:
                    if mapping.active:
                        self._deactivate_others_locked(conn, mapping, now)
                    conn.execute(
                        "INSERT OR REPLACE INTO event_mappings "
                        "(mapping_id, id_a, id_b, active, data_json, updated_at) "
                        "VALUES (?, ?, ?, ?, ?, ?)",
                        (mapping.mapping_id, mapping.id_a, mapping.id_b, int(mapping.active),
                         data_json, mapping.updated_at.isoformat()),
                    )
            except sqlite3.Error as e:
                raise MappingStoreError(f"Failed to save mapping {mapping.mapping_id}: {e}") from e
        logger.debug("Mapping saved: %s (active=%s)", mapping.mapping_id, mapping.active)

    def _deactivate_others_locked(self, conn: sqlite3.Connection, mapping: EventMapping, now: datetime) -> None:
        rows = conn.execute(
            "SELECT data_json FROM event_mappings WHERE id_a = ? AND active = 1 AND mapping_id != ?",
            (mapping.id_a, mapping.mapping_id),
        ).fetchall()
        for (data_json,) in rows:
            old = mapping_from_dict(json.loads(data_json)).with_active(False, now)
            conn.execute(
                "UPDATE event_mappings SET active = 0, data_json = ?, updated_at = ? WHERE mapping_id = ?",
                (json.dumps(mapping_to_dict(old)), now.isoformat(), old.mapping_id),
            )
            logger.info("Mapping %s superseded by %s", old.mapping_id, mapping.mapping_id)

    def _query(self, sql: str, params: tuple = ()) -> list[EventMapping]:
        with self._lock:
            try:
                rows = self._get_conn().execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise MappingStoreError(f"Mapping query failed: {e}") from e
        try:
            return [mapping_from_dict(json.loads(r[0])) for r in rows]
        except json.JSONDecodeError as e:
            raise MappingStoreError(f"Corrupt mapping row: {e}") from e

    def load_active(self) -> list[EventMapping]:
        return self._query("SELECT data_json FROM event_mappings WHERE active = 1 ORDER BY mapping_id")

    def list_all(self) -> list[EventMapping]:
        return self._query("SELECT data_json FROM event_mappings ORDER BY mapping_id")

    def get(self, mapping_id: str) -> EventMapping | None:
        found = self._query("SELECT data_json FROM event_mappings WHERE mapping_id = ?", (mapping_id,))
        return found[0] if found else None

    def deactivate(self, mapping_id: str) -> bool:
        """Mark a mapping inactive. Returns True if it existed and was active."""
        current = self.get(mapping_id)
        if current is None or not current.active:
            return False
        self.save(current.with_active(False))
        logger.info("Mapping deactivated: %s", mapping_id)
        return True

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None


class JsonMappingStore:
    """
    Whole-file JSON store. Every write rewrites the file through a temp file
    and os.replace, so readers never see a half-written document.
    """

    def __init__(self, path: str | Path = "event_mappings.json") -> None:
        self._path = Path(path)
        self._lock = threading.Lock()
        self._mappings: dict[str, EventMapping] = {}
        self._generated: datetime | None = None
        self._load()

    def _load(self) -> None:
        if not self._path.exists():
            logger.info("No mapping file at %s, starting empty", self._path)
            return
        try:
            data = json.loads(self._path.read_text())
            generated = data.get("generated")
            self._generated = _parse_ts(generated) if generated else None
        except (json.JSONDecodeError, OSError, ValueError, AttributeError) as e:
            raise MappingStoreError(f"Cannot read mapping file {self._path}: {e}") from e
        for row in data.get("mappings", []):
            mapping = mapping_from_dict(row, default_time=self._generated)
            self._mappings[mapping.mapping_id] = mapping
        logger.info("Loaded %d mappings from %s (generated %s)", len(self._mappings), self._path, generated)

    def _commit_locked(self, mappings: dict[str, EventMapping]) -> None:
        """Write `mappings` to disk, then make it the in-memory view."""
        generated = datetime.now(timezone.utc)
        doc = {
            "generated": generated.isoformat(),
            "mappings": [mapping_to_dict(m) for _, m in sorted(mappings.items())],
        }
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            tmp.write_text(json.dumps(doc, indent=2))
            os.replace(tmp, self._path)
        except OSError as e:
            raise MappingStoreError(f"Cannot write mapping file {self._path}: {e}") from e
        self._mappings = mappings
        self._generated = generated

    def save(self, mapping: EventMapping) -> None:
        with self._lock:
            updated = dict(self._mappings)
            superseded = []
            if mapping.active:
                now = datetime.now(timezone.utc)
                for other_id, other in self._mappings.items():
                    if other.active and other.id_a == mapping.id_a and other_id != mapping.mapping_id:
                        updated[other_id] = other.with_active(False, now)
                        superseded.append(other_id)
            updated[mapping.mapping_id] = mapping
            self._commit_locked(updated)
        for other_id in superseded:
            logger.info("Mapping %s superseded by %s", other_id, mapping.mapping_id)

    def load_active(self) -> list[EventMapping]:
        with self._lock:
            return [m for _, m in sorted(self._mappings.items()) if m.active]

    def list_all(self) -> list[EventMapping]:
        with self._lock:
            return [m for _, m in sorted(self._mappings.items())]

    def get(self, mapping_id: str) -> EventMapping | None:
        with self._lock:
            return self._mappings.get(mapping_id)

    def deactivate(self, mapping_id: str) -> bool:
        with self._lock:
            current = self._mappings.get(mapping_id)
            if current is None or not current.active:
                return False
            updated = dict(self._mappings)
            updated[mapping_id] = current.with_active(False)
            self._commit_locked(updated)
        logger.info("Mapping deactivated: %s", mapping_id)
        return True

    def close(self) -> None:
        pass


def open_mapping_store(backend: str, path: str) -> MappingStore:
    if backend == "sqlite":
        return SQLiteMappingStore(path)
    if backend == "json":
        return JsonMappingStore(path)
    raise ValueError(f"Unknown mapping store backend: {backend!r}")
