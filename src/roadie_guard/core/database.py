"""
Database Infrastructure for Roadie Guard

Provides a SQLite reference implementation of the persistence gateway:
schema migrations, transaction management, configuration loading and
session/escalation audit history.
"""

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from roadie_guard.models import (
    EmergencyContact, EmergencyTrigger, GeofenceZone, NotifyAttempt,
    SOSSession, TriggerPhrase
)
from .config_loader import load_emergency_contacts, load_geofence_zones, load_trigger_phrases
from .exceptions import PersistenceError
from .interfaces import PersistenceGateway


@dataclass
class Migration:
    """Database migration definition"""
    version: int
    name: str
    sql: str


class DatabaseManager:
    """
    Manages SQLite database operations and migrations

    One connection is shared behind a lock; the engine runs on a single
    event loop so contention is limited to host threads.
    """

    def __init__(self, database_path: str = ":memory:"):
        self.database_path = database_path
        self.logger = logging.getLogger(__name__)
        self.migrations = self._get_migrations()
        self._lock = threading.RLock()

        if database_path != ":memory:":
            Path(database_path).parent.mkdir(parents=True, exist_ok=True)

        try:
            self._conn = sqlite3.connect(database_path, check_same_thread=False,
                                         timeout=30.0, isolation_level=None)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
            if database_path != ":memory:":
                self._conn.execute("PRAGMA journal_mode = WAL")
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot open database {database_path}: {e}")

        self._initialize_database()

    @contextmanager
    def transaction(self):
        """Context manager for database transactions"""
        with self._lock:
            self._conn.execute("BEGIN")
            try:
                yield self._conn
                self._conn.execute("COMMIT")
            except Exception:
                self._conn.execute("ROLLBACK")
                raise

    def _initialize_database(self):
        """Initialize database with schema and migrations"""
        self.logger.info(f"Initializing database at {self.database_path}")

        with self._lock:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS migrations (
                    version INTEGER PRIMARY KEY,
                    name TEXT NOT NULL,
                    applied_at DATETIME DEFAULT CURRENT_TIMESTAMP
                )
            """)

        self._run_migrations()

    def _get_migrations(self) -> List[Migration]:
        """Get all database migrations"""
        return [
            Migration(
                version=1,
                name="initial_schema",
                sql="""
                CREATE TABLE geofence_zones (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    lat REAL NOT NULL,
                    lon REAL NOT NULL,
                    radius_meters REAL NOT NULL,
                    kind TEXT NOT NULL,
                    active BOOLEAN NOT NULL DEFAULT 1,
                    notify BOOLEAN NOT NULL DEFAULT 1,
                    position INTEGER NOT NULL
                );

                CREATE TABLE emergency_contacts (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    phone TEXT NOT NULL,
                    email TEXT,
                    relationship TEXT,
                    tier TEXT NOT NULL,
                    notify_via TEXT NOT NULL,
                    can_see_medical_info BOOLEAN NOT NULL DEFAULT 0,
                    priority INTEGER NOT NULL,
                    position INTEGER NOT NULL
                );

                CREATE TABLE trigger_phrases (
                    position INTEGER PRIMARY KEY,
                    phrase TEXT NOT NULL,
                    language TEXT NOT NULL,
                    protocol TEXT NOT NULL
                );

                CREATE TABLE sos_sessions (
                    id TEXT PRIMARY KEY,
                    kind TEXT NOT NULL,
                    state TEXT NOT NULL,
                    started_at_ms INTEGER NOT NULL,
                    activated_at_ms INTEGER,
                    ended_at_ms INTEGER,
                    end_reason TEXT,
                    location_lat REAL,
                    location_lon REAL,
                    emergency_services_called BOOLEAN NOT NULL DEFAULT 0,
                    trigger_sources TEXT, -- JSON array
                    updated_at DATETIME
                );

                CREATE TABLE notification_attempts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    session_id TEXT NOT NULL,
                    tier TEXT NOT NULL,
                    contact_id TEXT NOT NULL,
                    message_type TEXT NOT NULL,
                    succeeded BOOLEAN NOT NULL,
                    methods_used TEXT, -- JSON array
                    attempts INTEGER NOT NULL,
                    error TEXT,
                    at_ms INTEGER NOT NULL
                );

                CREATE TABLE trigger_events (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    session_id TEXT,
                    source TEXT NOT NULL,
                    kind TEXT NOT NULL,
                    confidence REAL NOT NULL,
                    occurred_at_ms INTEGER NOT NULL,
                    payload TEXT -- JSON object
                );

                CREATE INDEX IF NOT EXISTS idx_attempts_session ON notification_attempts (session_id);
                CREATE INDEX IF NOT EXISTS idx_triggers_session ON trigger_events (session_id);
                """
            )
        ]

    def _run_migrations(self):
        """Run pending database migrations"""
        with self._lock:
            cursor = self._conn.execute("SELECT MAX(version) FROM migrations")
            result = cursor.fetchone()
            current_version = result[0] if result[0] is not None else 0

            for migration in self.migrations:
                if migration.version <= current_version:
                    continue
                self.logger.info(f"Running migration {migration.version}: {migration.name}")
                try:
                    self._conn.executescript(
                        f"BEGIN;\n{migration.sql}\n"
                        f"INSERT INTO migrations (version, name) "
                        f"VALUES ({migration.version}, '{migration.name}');\nCOMMIT;"
                    )
                except sqlite3.Error as e:
                    if self._conn.in_transaction:
                        self._conn.execute("ROLLBACK")
                    self.logger.error(f"Migration {migration.version} failed: {e}")
                    raise PersistenceError(f"Migration failed: {e}")

    def execute_query(self, query: str, params: Tuple = ()) -> List[sqlite3.Row]:
        """Execute a SELECT query and return results"""
        try:
            with self._lock:
                return self._conn.execute(query, params).fetchall()
        except sqlite3.Error as e:
            raise PersistenceError(f"Query failed: {e}", {'query': query})

    def execute_update(self, query: str, params: Tuple = ()) -> int:
        """Execute an INSERT/UPDATE/DELETE query and return affected rows"""
        try:
            with self.transaction() as conn:
                return conn.execute(query, params).rowcount
        except sqlite3.Error as e:
            raise PersistenceError(f"Update failed: {e}", {'query': query})

    def execute_many(self, query: str, params_list: List[Tuple]) -> int:
        """Execute a query with multiple parameter sets"""
        try:
            with self.transaction() as conn:
                return conn.executemany(query, params_list).rowcount
        except sqlite3.Error as e:
            raise PersistenceError(f"Batch update failed: {e}", {'query': query})

    def get_stats(self) -> Dict[str, Any]:
        """Get row counts per table"""
        stats = {}
        for table in ['geofence_zones', 'emergency_contacts', 'trigger_phrases',
                      'sos_sessions', 'notification_attempts', 'trigger_events']:
            rows = self.execute_query(f"SELECT COUNT(*) FROM {table}")
            stats[table] = rows[0][0] if rows else 0
        return stats

    def close(self):
        """Close the database connection"""
        with self._lock:
            self._conn.close()


class SQLitePersistenceGateway(PersistenceGateway):
    """PersistenceGateway backed by a local SQLite database"""

    def __init__(self, db: DatabaseManager):
        self.db = db
        self.logger = logging.getLogger(__name__)

    # Configuration

    def store_zones(self, zones: List[GeofenceZone]) -> None:
        """Replace the stored zone set"""
        with self.db.transaction() as conn:
            conn.execute("DELETE FROM geofence_zones")
            conn.executemany(
                "INSERT INTO geofence_zones (id, name, lat, lon, radius_meters, kind, "
                "active, notify, position) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                [(z.id, z.name, z.center.lat, z.center.lon, z.radius_meters, z.kind.value,
                  z.active, z.notify, position) for position, z in enumerate(zones)]
            )

    def store_contacts(self, contacts: List[EmergencyContact]) -> None:
        """Replace the stored contact list"""
        with self.db.transaction() as conn:
            conn.execute("DELETE FROM emergency_contacts")
            conn.executemany(
                "INSERT INTO emergency_contacts (id, name, phone, email, relationship, tier, "
                "notify_via, can_see_medical_info, priority, position) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                [(c.id, c.name, c.phone, c.email, c.relationship, c.tier.value,
                  c.notify_via.value, c.can_see_medical_info, c.priority, position)
                 for position, c in enumerate(contacts)]
            )

    def store_phrases(self, phrases: List[TriggerPhrase]) -> None:
        """Replace the stored phrase catalog"""
        with self.db.transaction() as conn:
            conn.execute("DELETE FROM trigger_phrases")
            conn.executemany(
                "INSERT INTO trigger_phrases (position, phrase, language, protocol) "
                "VALUES (?, ?, ?, ?)",
                [(position, p.phrase, p.language.value, p.protocol.value)
                 for position, p in enumerate(phrases)]
            )

    async def load_zones(self) -> List[GeofenceZone]:
        rows = self.db.execute_query("SELECT * FROM geofence_zones ORDER BY position")
        entries = []
        for row in rows:
            entry = dict(row)
            entry['active'] = bool(entry['active'])
            entry['notify'] = bool(entry['notify'])
            entry.pop('position')
            entries.append(entry)
        return load_geofence_zones(entries)

    async def load_contacts(self) -> List[EmergencyContact]:
        rows = self.db.execute_query("SELECT * FROM emergency_contacts ORDER BY position")
        entries = []
        for row in rows:
            entry = dict(row)
            entry['can_see_medical_info'] = bool(entry['can_see_medical_info'])
            entry['relationship'] = entry['relationship'] or ''
            entry.pop('position')
            entries.append(entry)
        return load_emergency_contacts(entries)

    async def load_phrases(self) -> List[TriggerPhrase]:
        rows = self.db.execute_query(
            "SELECT phrase, language, protocol FROM trigger_phrases ORDER BY position"
        )
        return load_trigger_phrases([dict(row) for row in rows])

    # Audit history

    async def save_session(self, session: SOSSession) -> None:
        location = session.location
        self.db.execute_update(
            """
            INSERT INTO sos_sessions (id, kind, state, started_at_ms, activated_at_ms,
                ended_at_ms, end_reason, location_lat, location_lon,
                emergency_services_called, trigger_sources, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                kind = excluded.kind,
                state = excluded.state,
                activated_at_ms = excluded.activated_at_ms,
                ended_at_ms = excluded.ended_at_ms,
                end_reason = excluded.end_reason,
                location_lat = excluded.location_lat,
                location_lon = excluded.location_lon,
                emergency_services_called = excluded.emergency_services_called,
                trigger_sources = excluded.trigger_sources,
                updated_at = excluded.updated_at
            """,
            (
                session.id, session.kind.value, session.state.value, session.started_at_ms,
                session.activated_at_ms, session.ended_at_ms,
                session.end_reason.value if session.end_reason else None,
                location.lat if location else None, location.lon if location else None,
                session.emergency_services_called,
                json.dumps([source.value for source in session.trigger_sources]),
                datetime.utcnow().isoformat()
            )
        )

    async def save_attempt(self, session_id: str, tier: str, attempt: NotifyAttempt) -> None:
        self.db.execute_update(
            "INSERT INTO notification_attempts (session_id, tier, contact_id, message_type, "
            "succeeded, methods_used, attempts, error, at_ms) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (session_id, tier, attempt.contact_id, attempt.message_type.value, attempt.succeeded,
             json.dumps(attempt.methods_used), attempt.attempts, attempt.error, attempt.at_ms)
        )

    async def save_trigger(self, trigger: EmergencyTrigger, session_id: Optional[str]) -> None:
        self.db.execute_update(
            "INSERT INTO trigger_events (session_id, source, kind, confidence, occurred_at_ms, "
            "payload) VALUES (?, ?, ?, ?, ?, ?)",
            (session_id, trigger.source.value, trigger.kind.value, trigger.confidence,
             trigger.occurred_at_ms, json.dumps(trigger.payload, default=str))
        )

    def get_session_record(self, session_id: str) -> Optional[Dict[str, Any]]:
        """Stored session row, with JSON fields decoded"""
        rows = self.db.execute_query("SELECT * FROM sos_sessions WHERE id = ?", (session_id,))
        if not rows:
            return None
        record = dict(rows[0])
        record['trigger_sources'] = json.loads(record['trigger_sources'] or '[]')
        record['emergency_services_called'] = bool(record['emergency_services_called'])
        return record

    def get_attempt_records(self, session_id: str) -> List[Dict[str, Any]]:
        """Stored notification attempts of a session, oldest first"""
        rows = self.db.execute_query(
            "SELECT * FROM notification_attempts WHERE session_id = ? ORDER BY id",
            (session_id,)
        )
        records = []
        for row in rows:
            record = dict(row)
            record['methods_used'] = json.loads(record['methods_used'] or '[]')
            record['succeeded'] = bool(record['succeeded'])
            records.append(record)
        return records

    def get_trigger_records(self, session_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Stored triggers, optionally restricted to one session"""
        if session_id is None:
            rows = self.db.execute_query("SELECT * FROM trigger_events ORDER BY id")
        else:
            rows = self.db.execute_query(
                "SELECT * FROM trigger_events WHERE session_id = ? ORDER BY id", (session_id,)
            )
        records = []
        for row in rows:
            record = dict(row)
            record['payload'] = json.loads(record['payload'] or '{}')
            records.append(record)
        return records
