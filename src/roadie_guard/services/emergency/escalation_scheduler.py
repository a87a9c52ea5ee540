"""
Escalation Scheduling

Tiered notification cascade for active SOS sessions:
- Primary contacts notified immediately, in priority order
- Secondary contacts notified after a delay, cancelled on resolution
- One retry per contact on transport failure
- Resolved notices to every contact that was reached
- Emergency call offers and throttled live location sharing
- Safety check-ins sent to every contact
"""

import asyncio
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

from roadie_guard.core.exceptions import ConfigurationError, TransportError
from roadie_guard.core.interfaces import NotificationGateway, PersistenceGateway
from roadie_guard.core.logging import get_structured_logger
from roadie_guard.core.scheduler import TaskScheduler
from roadie_guard.models import (
    ContactTier, EmergencyContact, EscalationRun, LocationSample, MessageType,
    NotifyAttempt, OutgoingMessage, SafetyCheck, SessionState, SessionTransition, SOSSession,
    TransitionReason, now_ms, order_contacts
)
from . import messages
from .dial import DialOffer, build_offer


class EscalationScheduler:
    """Notification cascade driven by session transitions"""

    def __init__(self, gateway: NotificationGateway,
                 contacts: Optional[Iterable[EmergencyContact]] = None,
                 config: Optional[Dict[str, Any]] = None,
                 country: str = 'US',
                 persistence: Optional[PersistenceGateway] = None):
        """
        Initialize the scheduler

        Args:
            gateway: Transport used to reach contacts
            contacts: Initial emergency contacts
            config: The 'escalation' configuration section
            country: Dial table entry for emergency call offers
            persistence: Audit store for notification attempts
        """
        self.logger = logging.getLogger(__name__)
        self.events = get_structured_logger(__name__)
        self.gateway = gateway
        self.config = config or {}
        self.country = country
        self.persistence = persistence

        self.secondary_delay_seconds = float(self.config.get('secondary_delay_seconds', 30))
        self.max_retries = int(self.config.get('max_retries', 1))
        self.location_share_interval_seconds = float(
            self.config.get('location_share_interval_seconds', 60)
        )
        self.medical_info = self.config.get('medical_info', '') or ''

        self._contacts: Tuple[EmergencyContact, ...] = ()
        self.replace_contacts(contacts or ())

        self.timers = TaskScheduler('escalation')
        # Runs outlive their session; the rest is dropped once it ends
        self._runs: Dict[str, Dict[ContactTier, EscalationRun]] = {}
        self._live: Dict[str, SOSSession] = {}
        self._offers: Dict[str, DialOffer] = {}
        self._dispatches: Dict[Tuple[str, ContactTier], asyncio.Task] = {}
        self._last_share_ms: Dict[str, int] = {}
        self._dial_listeners: List[Callable[[DialOffer], Any]] = []
        self._background: Set[asyncio.Task] = set()

    @property
    def contacts(self) -> Tuple[EmergencyContact, ...]:
        return self._contacts

    def replace_contacts(self, contacts: Iterable[EmergencyContact]):
        """Install a complete contact list; running dispatches keep the list they started with"""
        new_contacts = tuple(contacts)
        seen = set()
        for contact in new_contacts:
            if not isinstance(contact, EmergencyContact):
                raise ConfigurationError(f"Not an emergency contact: {contact!r}")
            if contact.id in seen:
                raise ConfigurationError(f"Duplicate contact id {contact.id}")
            seen.add(contact.id)
        self._contacts = new_contacts
        self.logger.info(f"Installed {len(new_contacts)} emergency contacts")

    def add_dial_listener(self, callback: Callable[[DialOffer], Any]):
        """Receive emergency call offers for the user to confirm"""
        self._dial_listeners.append(callback)

    def get_runs(self, session_id: str) -> List[EscalationRun]:
        """Escalation runs of a session, primary tier first"""
        runs = self._runs.get(session_id, {})
        return [runs[tier] for tier in (ContactTier.PRIMARY, ContactTier.SECONDARY) if tier in runs]

    def get_offer(self, session_id: str) -> Optional[DialOffer]:
        """Emergency call offer of a live session"""
        return self._offers.get(session_id)

    def notified_contact_ids(self, session_id: str) -> List[str]:
        notified: List[str] = []
        for run in self.get_runs(session_id):
            for contact_id in run.notified_contact_ids():
                if contact_id not in notified:
                    notified.append(contact_id)
        return notified

    def is_escalated(self, session_id: str) -> bool:
        return session_id in self._runs

    def is_live(self, session_id: str) -> bool:
        """Escalated and not yet ended"""
        return session_id in self._live

    async def start(self):
        """Accept sessions again after stop()"""
        if self.timers.stopped:
            self.timers = TaskScheduler('escalation')
            self.logger.info("Escalation scheduler started")

    # Transition handling

    async def handle_transition(self, transition: SessionTransition):
        """
        State machine listener

        Work is started in the background so the state machine worker is
        never held up by a slow transport.
        """
        session = transition.session
        if transition.new_state == SessionState.ACTIVE:
            if transition.reason == TransitionReason.UPGRADED:
                self._spawn(self.on_session_upgraded(session))
            elif transition.reason == TransitionReason.EMERGENCY_CALL:
                if session.id in self._live:
                    self._live[session.id] = session
            elif transition.previous_state != SessionState.ACTIVE:
                self._spawn(self.on_session_active(session))
        elif transition.new_state.is_terminal:
            self._spawn(self.on_session_resolved(session))

    def _spawn(self, coro):
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def on_session_active(self, session: SOSSession) -> bool:
        """
        Start escalating an activated session

        Args:
            session: Session snapshot in the ACTIVE state

        Returns:
            False if the session was already escalated or is not active
        """
        if session.id in self._runs:
            self.logger.debug(f"Session {session.id} already escalated")
            return False
        if session.state != SessionState.ACTIVE:
            self.logger.warning(f"Not escalating session {session.id} in state {session.state.value}")
            return False

        self._runs[session.id] = {}
        self._live[session.id] = session
        self.events.info("escalation_started", session_id=session.id, kind=session.kind.value)

        self._offer_dial(session)

        primary = asyncio.create_task(self._dispatch_tier(session, ContactTier.PRIMARY))
        self._dispatches[(session.id, ContactTier.PRIMARY)] = primary
        self.timers.schedule_once(
            self._secondary_task_name(session.id),
            self.secondary_delay_seconds,
            lambda: self._dispatch_secondary(session.id)
        )

        await asyncio.shield(primary)
        return True

    async def on_session_upgraded(self, session: SOSSession) -> bool:
        """Tell reached contacts about a severity upgrade"""
        if session.id not in self._live:
            return False

        self._live[session.id] = session
        self._offer_dial(session)
        await self._wait_dispatch(session.id, ContactTier.PRIMARY)

        for contact in self._notified_contacts(session.id):
            message = messages.build_update(session, contact, self.medical_info)
            await self._record(session.id, contact, await self._notify_contact(contact, message))
        return True

    async def on_session_resolved(self, session: SOSSession) -> bool:
        """
        Wind down escalation for a terminal session

        Cancelled sessions drop pending work silently. Resolved sessions
        let in-flight dispatches finish, then send one resolved notice to
        every contact that was reached. Only the runs are kept afterwards.
        """
        self.timers.cancel(self._secondary_task_name(session.id))
        if self._live.pop(session.id, None) is None:
            return False
        self._last_share_ms.pop(session.id, None)
        self._offers.pop(session.id, None)

        if session.state == SessionState.CANCELLED:
            self.logger.debug(f"Discarding escalation work for session {session.id}")
            self._forget_dispatches(session.id)
            return False

        await self._wait_dispatch(session.id, ContactTier.PRIMARY)
        await self._wait_dispatch(session.id, ContactTier.SECONDARY)
        self._forget_dispatches(session.id)

        message = messages.build_resolved(session)
        for contact in self._notified_contacts(session.id):
            await self._record(session.id, contact, await self._notify_contact(contact, message))

        self.events.info("escalation_resolved", session_id=session.id,
                         notified=len(self.notified_contact_ids(session.id)))
        return True

    async def share_location(self, session: SOSSession, sample: LocationSample) -> bool:
        """
        Forward a live location to reached contacts

        Returns:
            True if the location was sent; False when the session is not
            escalating, the sample is unusable or the interval has not passed
        """
        if session.id not in self._live:
            return False
        if sample is None or not sample.is_valid():
            return False

        last = self._last_share_ms.get(session.id)
        interval_ms = self.location_share_interval_seconds * 1000
        if last is not None and sample.timestamp_ms - last < interval_ms:
            return False
        self._last_share_ms[session.id] = sample.timestamp_ms

        message = messages.build_location_update(session, sample)
        for contact in self._notified_contacts(session.id):
            await self._record(session.id, contact, await self._notify_contact(contact, message))
        return True

    async def send_check_in(self, check: SafetyCheck) -> List[NotifyAttempt]:
        """
        Send a safety check-in to every contact, primary tier first

        Check-ins belong to no session, so the attempts are returned
        instead of being added to a run.
        """
        message = messages.build_check_in(check)
        contacts = list(self._contacts)
        attempts = []
        for contact in order_contacts(contacts, ContactTier.PRIMARY) + order_contacts(contacts, ContactTier.SECONDARY):
            attempts.append(await self._notify_contact(contact, message))

        self.events.info("check_in_sent", check_id=check.id, status=check.status.value,
                         notified=sum(1 for attempt in attempts if attempt.succeeded))
        return attempts

    # Dispatch

    @staticmethod
    def _secondary_task_name(session_id: str) -> str:
        return f"secondary:{session_id}"

    async def _dispatch_secondary(self, session_id: str):
        # Never ahead of the primary tier
        await self._wait_dispatch(session_id, ContactTier.PRIMARY)
        session = self._live.get(session_id)
        if session is None:
            return

        task = asyncio.create_task(self._dispatch_tier(session, ContactTier.SECONDARY))
        self._dispatches[(session_id, ContactTier.SECONDARY)] = task
        await asyncio.shield(task)

    def _forget_dispatches(self, session_id: str):
        for tier in ContactTier:
            self._dispatches.pop((session_id, tier), None)

    async def _wait_dispatch(self, session_id: str, tier: ContactTier):
        task = self._dispatches.get((session_id, tier))
        if task is not None:
            await asyncio.gather(asyncio.shield(task), return_exceptions=True)

    async def _dispatch_tier(self, session: SOSSession, tier: ContactTier) -> EscalationRun:
        session_id = session.id
        run = EscalationRun(session_id=session_id, tier=tier, started_at_ms=now_ms())
        self._runs[session_id][tier] = run

        contacts = order_contacts(list(self._contacts), tier)
        self.logger.info(f"Notifying {len(contacts)} {tier.value} contacts for session {session_id}")

        for contact in contacts:
            message = messages.build_alert(session, contact, self.medical_info)
            attempt = await self._notify_contact(contact, message)
            run.attempts.append(attempt)
            await self._save_attempt(session_id, tier, attempt)

        run.completed_at_ms = now_ms()
        self.events.info(
            "tier_dispatched",
            session_id=session_id,
            tier=tier.value,
            contacts=len(contacts),
            succeeded=len(run.notified_contact_ids())
        )
        return run

    async def _notify_contact(self, contact: EmergencyContact, message: OutgoingMessage) -> NotifyAttempt:
        """Send one notice, retrying on failure; never raises"""
        error: Optional[str] = None
        attempts = 0
        for attempts in range(1, self.max_retries + 2):
            try:
                result = await self.gateway.send(contact, message, contact.notify_via)
                if result.success:
                    return NotifyAttempt(
                        contact_id=contact.id,
                        succeeded=True,
                        methods_used=contact.notify_via.methods(),
                        at_ms=now_ms(),
                        attempts=attempts,
                        message_type=message.type
                    )
                error = result.error or "delivery failed"
            except TransportError as e:
                error = e.message
            except Exception as e:
                error = str(e) or type(e).__name__

            self.logger.warning(
                f"Failed to notify {contact.name} ({contact.id}), attempt {attempts}: {error}"
            )

        return NotifyAttempt(
            contact_id=contact.id,
            succeeded=False,
            methods_used=[],
            at_ms=now_ms(),
            error=error,
            attempts=attempts,
            message_type=message.type
        )

    def _notified_contacts(self, session_id: str) -> List[EmergencyContact]:
        by_id = {contact.id: contact for contact in self._contacts}
        return [by_id[cid] for cid in self.notified_contact_ids(session_id) if cid in by_id]

    async def _record(self, session_id: str, contact: EmergencyContact, attempt: NotifyAttempt):
        """Attach a follow-up attempt to the run of the contact's tier"""
        run = self._runs.get(session_id, {}).get(contact.tier)
        if run is not None:
            run.attempts.append(attempt)
        await self._save_attempt(session_id, contact.tier, attempt)

    async def _save_attempt(self, session_id: str, tier: ContactTier, attempt: NotifyAttempt):
        if self.persistence is None:
            return
        try:
            await self.persistence.save_attempt(session_id, tier.value, attempt)
        except Exception as e:
            self.logger.error(f"Failed to persist attempt for {attempt.contact_id}: {e}")

    def _offer_dial(self, session: SOSSession):
        try:
            offer = build_offer(session, self.country)
        except ConfigurationError as e:
            self.logger.error(f"Cannot offer emergency call: {e.message}")
            return

        self._offers[session.id] = offer
        self.logger.info(f"Offering {offer.service} call to {offer.number} for session {session.id}")
        for listener in list(self._dial_listeners):
            try:
                result = listener(offer)
                if asyncio.iscoroutine(result):
                    self._spawn(result)
            except Exception as e:
                self.logger.error(f"Error in dial listener: {e}")

    async def drain(self):
        """Wait for every background dispatch started by handle_transition"""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def stop(self):
        """Cancel pending tiers and background work"""
        pending = list(self._background) + list(self._dispatches.values())
        for task in pending:
            if not task.done():
                task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._dispatches.clear()
        await self.timers.stop_all()
        self.logger.info("Escalation scheduler stopped")
