"""
Emergency Engine

Composition root for the trigger and escalation pipeline:
- Builds the matcher, geofence registry, aggregator, state machine and
  escalation scheduler once and wires them together
- Exposes the producer feeds and the user actions the host application
  calls (cancel, resolve, confirm emergency call)
- Loads zones, phrases and contacts from configuration or persistence
- Sends safety check-ins to contacts
"""

import logging
from collections import deque
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional

from roadie_guard.core.config import ConfigurationManager
from roadie_guard.core.config_loader import (
    load_emergency_contacts, load_geofence_zones, load_trigger_phrases
)
from roadie_guard.core.database import DatabaseManager, SQLitePersistenceGateway
from roadie_guard.core.exceptions import ConfigurationError, TransportError
from roadie_guard.core.interfaces import (
    DialGateway, LocationProvider, NotificationGateway, PersistenceGateway
)
from roadie_guard.models import (
    CheckInStatus, EmergencyContact, EmergencyTrigger, GeofenceZone, GestureEvent,
    GestureType, LocationSample, ManualTrigger, SafetyCheck, SessionState, SOSSession,
    TriggerKind, TriggerPhrase, Utterance, WearableSample, now_ms
)
from roadie_guard.services.location import GeofenceEvaluator, ZoneRegistry
from roadie_guard.services.triggers import TriggerAggregator
from roadie_guard.services.voice import PhraseMatcher
from .dial import DialOffer, build_offer
from .escalation_scheduler import EscalationScheduler
from .sos_state_machine import SOSStateMachine


CHECK_IN_HISTORY = 50


class EmergencyEngine:
    """
    Emergency trigger and escalation engine
    """

    def __init__(self, config: Optional[Dict[str, Any]], notification_gateway: NotificationGateway,
                 location_provider: Optional[LocationProvider] = None,
                 dial_gateway: Optional[DialGateway] = None,
                 persistence: Optional[PersistenceGateway] = None,
                 phrases: Optional[Iterable[TriggerPhrase]] = None,
                 zones: Optional[Iterable[GeofenceZone]] = None,
                 contacts: Optional[Iterable[EmergencyContact]] = None):
        """
        Initialize the engine

        Args:
            config: Merged configuration dictionary
            notification_gateway: Transport used to reach contacts
            location_provider: Position source for activation
            dial_gateway: Places user-confirmed emergency calls
            persistence: Store for configuration and audit history
            phrases: Trigger phrase catalog; None uses the built-in phrases
            zones: Initial geofence zones
            contacts: Initial emergency contacts
        """
        self.logger = logging.getLogger(__name__)
        self.config = config or {}
        self.dial_gateway = dial_gateway
        self.persistence = persistence
        self.country = self.config.get('dial', {}).get('country', 'US')

        matcher_config = self.config.get('matcher', {})
        self.matcher = PhraseMatcher(phrases, threshold=matcher_config.get('threshold', 0.2))
        self.evaluator = GeofenceEvaluator()
        self.zones = ZoneRegistry(zones)

        self.aggregator = TriggerAggregator(self.matcher, self.evaluator, self.zones,
                                            self.config.get('aggregator', {}))
        self.state_machine = SOSStateMachine(self.config.get('sos', {}), location_provider, persistence)
        self.escalation = EscalationScheduler(
            notification_gateway,
            contacts,
            self.config.get('escalation', {}),
            country=self.country,
            persistence=persistence
        )

        self.aggregator.on_trigger(self.state_machine.handle_trigger)
        self.state_machine.add_listener(self.escalation.handle_transition)
        self._check_ins: Deque[SafetyCheck] = deque(maxlen=CHECK_IN_HISTORY)
        self._running = False

    @classmethod
    def from_config(cls, config_manager: ConfigurationManager,
                    notification_gateway: NotificationGateway, **gateways) -> 'EmergencyEngine':
        """
        Build an engine from a loaded ConfigurationManager

        A 'database.path' setting opens a SQLite store when no persistence
        gateway is passed in.

        Raises:
            ConfigurationError: If the phrase, zone or contact sections are invalid
            PersistenceError: If the configured database cannot be opened
        """
        database_path = config_manager.get('database.path')
        if database_path and gateways.get('persistence') is None:
            gateways['persistence'] = SQLitePersistenceGateway(DatabaseManager(str(database_path)))

        phrase_entries = config_manager.get('matcher.phrases') or []
        phrases = load_trigger_phrases(phrase_entries) if phrase_entries else None

        return cls(
            config_manager.config,
            notification_gateway,
            phrases=phrases,
            zones=load_geofence_zones(config_manager.get('zones') or []),
            contacts=load_emergency_contacts(config_manager.get('contacts') or []),
            **gateways
        )

    async def start(self):
        """Start the engine"""
        if self._running:
            return

        if self.persistence is not None:
            await self.load_from_persistence()

        await self.aggregator.start()
        await self.escalation.start()
        await self.state_machine.start()
        self._running = True
        self.logger.info("Emergency engine started")

    async def stop(self):
        """Stop the engine and cancel every outstanding timer"""
        if not self._running:
            return

        self._running = False
        await self.aggregator.stop()
        await self.state_machine.stop()
        await self.escalation.stop()
        self.logger.info("Emergency engine stopped")

    async def load_from_persistence(self):
        """
        Replace zones, phrases and contacts with stored ones

        Each collection is loaded and installed on its own. Empty or rejected
        collections keep what is already installed.
        """
        collections = [
            ('zones', self.persistence.load_zones, self.zones.replace),
            ('phrases', self.persistence.load_phrases, self.matcher.replace_catalog),
            ('contacts', self.persistence.load_contacts, self.escalation.replace_contacts),
        ]
        for name, load, install in collections:
            try:
                items = await load()
                if items:
                    install(items)
            except ConfigurationError as e:
                self.logger.error(f"Stored {name} rejected: {e.message}")
            except Exception as e:
                self.logger.error(f"Failed to load stored {name}: {e}")

    # Producer feeds

    def submit(self, raw_event: Any) -> Optional[EmergencyTrigger]:
        return self.aggregator.submit(raw_event)

    def submit_utterance(self, text: str) -> Optional[EmergencyTrigger]:
        return self.aggregator.submit(Utterance(text))

    def submit_gesture(self, gesture_type: GestureType, timestamp_ms: Optional[int] = None) -> Optional[EmergencyTrigger]:
        return self.aggregator.submit(GestureEvent(gesture_type, timestamp_ms or now_ms()))

    def submit_wearable(self, sample: WearableSample) -> Optional[EmergencyTrigger]:
        return self.aggregator.submit(sample)

    def trigger_sos(self, kind: TriggerKind = TriggerKind.GENERAL, note: str = "") -> Optional[EmergencyTrigger]:
        """Manual SOS from the user interface"""
        return self.aggregator.submit(ManualTrigger(kind=kind, note=note))

    async def on_location(self, sample: LocationSample) -> Optional[EmergencyTrigger]:
        """
        Feed a location sample

        Evaluates geofences and, while a session is active, shares the
        position with contacts who were reached.
        """
        trigger = self.aggregator.submit(sample)

        session = self.state_machine.current_session
        if session is not None and session.state == SessionState.ACTIVE:
            await self.escalation.share_location(session, sample)
        return trigger

    # User actions

    async def cancel_sos(self) -> bool:
        return await self.state_machine.cancel()

    async def stop_sos(self) -> bool:
        return await self.state_machine.resolve()

    async def check_in(self, status: CheckInStatus, message: str = "") -> SafetyCheck:
        """
        Share a safety check-in with every contact

        The check carries the current location when one is available. An
        emergency status also starts a manual SOS.

        Args:
            status: Reported status
            message: Optional note from the user

        Returns:
            The recorded check-in
        """
        status = CheckInStatus(status)
        location = await self.state_machine.fetch_location() or self.aggregator.last_location
        check = SafetyCheck(status=status, timestamp_ms=now_ms(), message=message, location=location)
        self._check_ins.appendleft(check)

        attempts = await self.escalation.send_check_in(check)
        reached = sum(1 for attempt in attempts if attempt.succeeded)
        self.logger.info(f"Check-in {status.value} sent to {reached}/{len(attempts)} contacts")

        if status == CheckInStatus.EMERGENCY:
            self.trigger_sos(TriggerKind.GENERAL, note=message or "Emergency check-in")
        return check

    @property
    def check_ins(self) -> List[SafetyCheck]:
        """Recent check-ins, newest first"""
        return list(self._check_ins)

    async def confirm_emergency_call(self) -> bool:
        """
        Dial emergency services after the user confirmed the offer

        Returns:
            True if the call was placed and recorded on the session
        """
        session = self.state_machine.current_session
        if session is None or session.state != SessionState.ACTIVE:
            self.logger.warning("No active session to call emergency services for")
            return False
        if self.dial_gateway is None:
            self.logger.error("No dial gateway configured")
            return False

        offer = self.escalation.get_offer(session.id)
        if offer is None:
            try:
                offer = build_offer(session, self.country)
            except ConfigurationError as e:
                self.logger.error(f"Cannot place emergency call: {e.message}")
                return False

        try:
            placed = await self.dial_gateway.dial(offer.number)
        except Exception as e:
            error = e if isinstance(e, TransportError) else TransportError(str(e), {'number': offer.number})
            self.logger.error(f"Emergency call to {offer.number} failed: {error.message}")
            return False

        if not placed:
            self.logger.error(f"Emergency call to {offer.number} was not placed")
            return False

        self.logger.info(f"Emergency {offer.service} call placed to {offer.number} for session {session.id}")
        return await self.state_machine.mark_emergency_services_called()

    def get_dial_offer(self, session_id: str) -> Optional[DialOffer]:
        return self.escalation.get_offer(session_id)

    # Configuration updates

    def add_zone(self, zone: GeofenceZone) -> GeofenceZone:
        return self.zones.add(zone)

    def update_zone(self, zone: GeofenceZone) -> GeofenceZone:
        return self.zones.update(zone)

    def remove_zone(self, zone_id: str) -> bool:
        return self.zones.remove(zone_id)

    def replace_zones(self, zones: Iterable[GeofenceZone]):
        self.zones.replace(zones)

    def replace_phrases(self, phrases: Iterable[TriggerPhrase]):
        self.matcher.replace_catalog(phrases)

    def replace_contacts(self, contacts: Iterable[EmergencyContact]):
        self.escalation.replace_contacts(contacts)

    # Subscriptions

    def add_session_listener(self, callback: Callable):
        self.state_machine.add_listener(callback)

    def add_geofence_listener(self, callback: Callable):
        self.aggregator.add_geofence_listener(callback)

    def add_battery_listener(self, callback: Callable):
        self.aggregator.add_battery_listener(callback)

    def add_dial_listener(self, callback: Callable):
        self.escalation.add_dial_listener(callback)

    # Status

    @property
    def current_session(self) -> Optional[SOSSession]:
        return self.state_machine.current_session

    @property
    def history(self) -> List[SOSSession]:
        return list(self.state_machine.history)

    def get_status(self) -> Dict[str, Any]:
        """Summary of the engine state for the host application"""
        session = self.state_machine.current_session
        return {
            'running': self._running,
            'state': self.state_machine.state.value,
            'session': session.to_dict() if session else None,
            'zones': len(self.zones),
            'phrases': len(self.matcher.catalog),
            'contacts': len(self.escalation.contacts),
            'archived_sessions': len(self.state_machine.history)
        }
