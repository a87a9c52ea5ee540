"""
Unit tests for the SQLite persistence gateway.
"""
import pytest

from roadie_guard.core.exceptions import ConfigurationError, PersistenceError
from roadie_guard.models import (
    ContactTier, EmergencyTrigger, MessageType, NotifyAttempt, NotifyVia, SessionState,
    SOSSession, TransitionReason, TriggerKind, TriggerPhrase, TriggerSource, ZoneKind,
    Language, Protocol
)

from tests.base import DatabaseTestCase
from tests.utils import TestDataHelper


class TestDatabaseManager:

    def test_schema_created(self, database):
        stats = database.get_stats()
        assert set(stats) == {'geofence_zones', 'emergency_contacts', 'trigger_phrases',
                              'sos_sessions', 'notification_attempts', 'trigger_events'}
        assert all(count == 0 for count in stats.values())

    def test_bad_query_raises_persistence_error(self, database):
        with pytest.raises(PersistenceError):
            database.execute_query("SELECT * FROM nowhere")
        with pytest.raises(PersistenceError):
            database.execute_update("UPDATE nowhere SET x = 1")

    def test_transaction_rolls_back(self, database):
        with pytest.raises(RuntimeError):
            with database.transaction() as conn:
                conn.execute("INSERT INTO trigger_phrases (position, phrase, language, protocol) "
                             "VALUES (0, 'x', 'english', 'sos')")
                raise RuntimeError("abort")
        assert database.get_stats()['trigger_phrases'] == 0


class TestConfigurationStorage(DatabaseTestCase):

    @pytest.mark.asyncio
    async def test_zones_roundtrip_in_order(self):
        zones = [
            TestDataHelper.zone("b", 1, 1, 50, kind=ZoneKind.DANGER, zone_id="b"),
            TestDataHelper.zone("a", 2, 2, 75, kind=ZoneKind.HOME, active=False, zone_id="a"),
        ]
        self.gateway.store_zones(zones)
        loaded = await self.reopen().load_zones()
        assert loaded == zones

    @pytest.mark.asyncio
    async def test_contacts_roundtrip(self, contacts):
        self.gateway.store_contacts(contacts)
        loaded = await self.reopen().load_contacts()
        assert loaded == contacts
        assert loaded[1].notify_via == NotifyVia.BOTH
        assert loaded[2].tier == ContactTier.SECONDARY

    @pytest.mark.asyncio
    async def test_phrases_roundtrip(self):
        phrases = [
            TriggerPhrase("help me now", Language.ENGLISH, Protocol.SOS),
            TriggerPhrase("que haces", Language.SPANISH, Protocol.LOCATION_ONLY),
        ]
        self.gateway.store_phrases(phrases)
        assert await self.reopen().load_phrases() == phrases

    @pytest.mark.asyncio
    async def test_store_replaces_previous_set(self):
        self.gateway.store_zones([TestDataHelper.zone(zone_id="old")])
        self.gateway.store_zones([TestDataHelper.zone(zone_id="new")])
        assert [z.id for z in await self.gateway.load_zones()] == ["new"]

    @pytest.mark.asyncio
    async def test_corrupt_rows_rejected(self):
        self.db.execute_update(
            "INSERT INTO emergency_contacts (id, name, phone, tier, notify_via, priority, position) "
            "VALUES ('x', 'X', '1', 'tertiary', 'sms', 1, 0)"
        )
        with pytest.raises(ConfigurationError):
            await self.gateway.load_contacts()


class TestAuditHistory(DatabaseTestCase):

    @pytest.mark.asyncio
    async def test_session_upsert(self, home_location):
        session = SOSSession(kind=TriggerKind.GENERAL, started_at_ms=1_000,
                             state=SessionState.COUNTING_DOWN,
                             trigger_sources=[TriggerSource.VOICE])
        await self.gateway.save_session(session)

        session.state = SessionState.RESOLVED
        session.location = home_location
        session.end_reason = TransitionReason.USER_STOPPED
        session.ended_at_ms = 9_000
        session.trigger_sources.append(TriggerSource.MANUAL)
        await self.gateway.save_session(session)

        record = self.gateway.get_session_record(session.id)
        assert record['state'] == 'resolved'
        assert record['end_reason'] == 'user_stopped'
        assert record['location_lat'] == pytest.approx(home_location.lat)
        assert record['trigger_sources'] == ['voice', 'manual']
        assert record['emergency_services_called'] is False
        assert self.db.get_stats()['sos_sessions'] == 1

    def test_missing_session(self):
        assert self.gateway.get_session_record("nope") is None

    @pytest.mark.asyncio
    async def test_attempts(self):
        await self.gateway.save_attempt("s1", "primary", NotifyAttempt(
            contact_id="bob", succeeded=True, methods_used=["sms", "call"], at_ms=5, attempts=2
        ))
        await self.gateway.save_attempt("s1", "primary", NotifyAttempt(
            contact_id="alice", succeeded=False, methods_used=[], at_ms=6,
            error="unreachable", message_type=MessageType.RESOLVED
        ))
        records = self.gateway.get_attempt_records("s1")
        assert [(r['contact_id'], r['succeeded']) for r in records] == [("bob", True), ("alice", False)]
        assert records[0]['methods_used'] == ["sms", "call"]
        assert records[0]['attempts'] == 2
        assert records[1]['message_type'] == 'resolved'
        assert records[1]['error'] == "unreachable"

    @pytest.mark.asyncio
    async def test_triggers(self):
        trigger = EmergencyTrigger(TriggerSource.WEARABLE, TriggerKind.MEDICAL, 0.95,
                                   occurred_at_ms=42, payload={"heart_rate": 180})
        await self.gateway.save_trigger(trigger, "s1")
        await self.gateway.save_trigger(trigger, None)

        assert len(self.gateway.get_trigger_records()) == 2
        records = self.gateway.get_trigger_records("s1")
        assert len(records) == 1
        assert records[0]['payload'] == {"heart_rate": 180}
        assert records[0]['kind'] == 'medical'
        assert records[0]['confidence'] == pytest.approx(0.95)

    def test_migrations_run_once(self):
        self.reopen()
        rows = self.db.execute_query("SELECT version FROM migrations")
        assert [row[0] for row in rows] == [1]
