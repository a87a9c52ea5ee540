"""
SOS Session State Machine

Owns the lifecycle of the single live emergency session:
- Countdown before activation, skipped for stealth kinds
- Activation with the current location
- User cancel, user resolve and auto-expiry
- Severity upgrades from corroborating triggers

Every mutation is a command on one queue drained by one worker task.
Timers and public calls only enqueue commands, so two triggers arriving
together can never open two sessions.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from roadie_guard.core.exceptions import StateConflictError
from roadie_guard.core.interfaces import LocationProvider, PersistenceGateway
from roadie_guard.core.logging import get_structured_logger
from roadie_guard.core.scheduler import TaskScheduler
from roadie_guard.models import (
    EmergencyTrigger, LocationSample, SessionState, SessionTransition,
    SOSSession, TransitionReason, TriggerKind, TriggerSource, now_ms
)


DEFAULT_COUNTDOWN_SECONDS = {
    'general': 5,
    'police': 5,
    'fire': 10,
    'medical': 10,
}
DEFAULT_SKIP_COUNTDOWN = ['silent', 'location_only']

COUNTDOWN_TASK = 'countdown'
AUTO_EXPIRE_TASK = 'auto_expire'


def sources_of(trigger: EmergencyTrigger) -> List[TriggerSource]:
    """Producers behind a trigger, including those the aggregator merged into it"""
    sources: List[TriggerSource] = []
    for value in trigger.payload.get('sources') or ():
        try:
            source = TriggerSource(value)
        except ValueError:
            continue
        if source not in sources:
            sources.append(source)
    if trigger.source not in sources:
        sources.append(trigger.source)
    return sources


@dataclass
class _Command:
    action: str
    trigger: Optional[EmergencyTrigger] = None
    session_id: Optional[str] = None
    reply: Optional[asyncio.Future] = None


class SOSStateMachine:
    """Single-writer owner of the SOS session"""

    def __init__(self, config: Optional[Dict[str, Any]] = None,
                 location_provider: Optional[LocationProvider] = None,
                 persistence: Optional[PersistenceGateway] = None):
        """
        Initialize the state machine

        Args:
            config: The 'sos' configuration section
            location_provider: Source of the position captured on activation
            persistence: Audit store for sessions and triggers
        """
        self.logger = logging.getLogger(__name__)
        self.events = get_structured_logger(__name__)
        self.config = config or {}
        self.location_provider = location_provider
        self.persistence = persistence

        self.countdown_seconds = dict(DEFAULT_COUNTDOWN_SECONDS)
        self.countdown_seconds.update(self.config.get('countdown_seconds') or {})
        self.skip_countdown = set(self.config.get('skip_countdown', DEFAULT_SKIP_COUNTDOWN))
        self.auto_expire_seconds = float(self.config.get('auto_expire_minutes', 30)) * 60
        self.location_timeout = float(self.config.get('location_timeout_seconds', 5))

        self.history: List[SOSSession] = []
        self._session: Optional[SOSSession] = None
        self._listeners: List[Callable[[SessionTransition], Any]] = []
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        self.timers: Optional[TaskScheduler] = None
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def current_session(self) -> Optional[SOSSession]:
        """Copy of the live session, if any"""
        return self._session.snapshot() if self._session else None

    @property
    def state(self) -> SessionState:
        return self._session.state if self._session else SessionState.IDLE

    def countdown_for(self, kind: TriggerKind) -> float:
        """Seconds between trigger and activation for a kind; 0 activates immediately"""
        if kind.value in self.skip_countdown:
            return 0.0
        return float(self.countdown_seconds.get(kind.value, 0))

    def add_listener(self, callback: Callable[[SessionTransition], Any]):
        """Subscribe to session transitions; sync and async callbacks are accepted"""
        self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[SessionTransition], Any]):
        if callback in self._listeners:
            self._listeners.remove(callback)

    async def start(self):
        """Start the command worker"""
        if self._running:
            return

        self._queue = asyncio.Queue()
        self.timers = TaskScheduler('sos')
        self._running = True
        self._worker = asyncio.create_task(self._run())
        self.logger.info("SOS state machine started")

    async def stop(self):
        """Stop the worker and cancel every pending timer"""
        if not self._running:
            return

        self._running = False
        await self.timers.stop_all()
        await self._queue.put(None)
        if self._worker:
            await self._worker
            self._worker = None

        if self._session is not None:
            self.logger.warning(f"Stopping with session {self._session.id} still {self._session.state.value}")
        self.logger.info("SOS state machine stopped")

    # Public commands

    def handle_trigger(self, trigger: EmergencyTrigger) -> bool:
        """
        Queue a trigger for the worker

        Args:
            trigger: Merged trigger from the aggregator

        Returns:
            True if the trigger was queued
        """
        if not self._running:
            self.logger.warning(f"State machine not running, dropping {trigger.kind.value} trigger")
            return False
        self._queue.put_nowait(_Command('trigger', trigger=trigger))
        return True

    async def cancel(self) -> bool:
        """Cancel the session during its countdown"""
        return await self._request('cancel')

    async def resolve(self) -> bool:
        """User stop of an active session"""
        return await self._request('resolve')

    async def mark_emergency_services_called(self) -> bool:
        """Record the user-confirmed emergency call on the active session"""
        return await self._request('emergency_call')

    async def _request(self, action: str) -> bool:
        if not self._running:
            self.logger.warning(f"State machine not running, ignoring {action}")
            return False
        reply = asyncio.get_running_loop().create_future()
        await self._queue.put(_Command(action, reply=reply))
        return await reply

    # Worker

    async def _run(self):
        while True:
            command = await self._queue.get()
            if command is None:
                break

            result: Any = False
            try:
                result = await self._dispatch(command)
            except StateConflictError as e:
                self.logger.warning(f"Rejected {command.action}: {e.message}")
                result = False
            except Exception as e:
                self.logger.error(f"Error processing {command.action}: {e}", exc_info=True)
                result = False
            finally:
                if command.reply is not None and not command.reply.done():
                    command.reply.set_result(bool(result))
                self._queue.task_done()

    async def wait_idle(self):
        """Wait until every queued command has been processed"""
        if self._running:
            await self._queue.join()

    async def _dispatch(self, command: _Command) -> bool:
        if command.action == 'trigger':
            return await self._on_trigger(command.trigger)
        if command.action == 'countdown_elapsed':
            return await self._on_countdown_elapsed(command.session_id)
        if command.action == 'cancel':
            return await self._on_cancel()
        if command.action == 'resolve':
            return await self._on_resolve()
        if command.action == 'auto_expire':
            return await self._on_auto_expire(command.session_id)
        if command.action == 'emergency_call':
            return await self._on_emergency_call()
        raise ValueError(f"Unknown command: {command.action}")

    async def _on_trigger(self, trigger: EmergencyTrigger) -> bool:
        session = self._session
        if session is None:
            session = SOSSession(kind=trigger.kind, started_at_ms=now_ms(),
                                 trigger_sources=sources_of(trigger))
            self._session = session
            await self._save_trigger(trigger, session.id)

            countdown = self.countdown_for(trigger.kind)
            if countdown <= 0:
                await self._activate(session, TransitionReason.IMMEDIATE)
                return True

            session.countdown_seconds = countdown
            previous = session.state
            session.state = SessionState.COUNTING_DOWN
            self.timers.schedule_once(
                COUNTDOWN_TASK, countdown,
                lambda: self._enqueue_timer('countdown_elapsed', session.id)
            )
            await self._save_session(session)
            await self._publish(session, previous, TransitionReason.TRIGGERED)
            return True

        # A live session absorbs the trigger as corroborating evidence
        await self._save_trigger(trigger, session.id)
        for source in sources_of(trigger):
            if source not in session.trigger_sources:
                session.trigger_sources.append(source)

        if not trigger.kind.outranks(session.kind):
            self.logger.debug(
                f"Merged {trigger.kind.value} trigger into session {session.id} ({session.kind.value})"
            )
            await self._save_session(session)
            return True

        self.logger.warning(
            f"Upgrading session {session.id} from {session.kind.value} to {trigger.kind.value}"
        )
        session.kind = trigger.kind
        await self._save_session(session)
        await self._publish(session, session.state, TransitionReason.UPGRADED)
        return True

    async def _on_countdown_elapsed(self, session_id: str) -> bool:
        session = self._session
        if session is None or session.id != session_id or session.state != SessionState.COUNTING_DOWN:
            self.logger.debug(f"Ignoring stale countdown for session {session_id}")
            return False
        await self._activate(session, TransitionReason.COUNTDOWN_ELAPSED)
        return True

    async def _activate(self, session: SOSSession, reason: TransitionReason):
        previous = session.state
        session.location = await self.fetch_location()
        session.emergency_services_called = False
        session.activated_at_ms = now_ms()
        session.state = SessionState.ACTIVE

        if self.auto_expire_seconds > 0:
            self.timers.schedule_once(
                AUTO_EXPIRE_TASK, self.auto_expire_seconds,
                lambda: self._enqueue_timer('auto_expire', session.id)
            )

        await self._save_session(session)
        await self._publish(session, previous, reason)

    async def _on_cancel(self) -> bool:
        session = self._session
        if session is None or session.state != SessionState.COUNTING_DOWN:
            raise StateConflictError("No session is counting down",
                                     {'state': self.state.value})
        await self._finish(session, SessionState.CANCELLED, TransitionReason.USER_CANCELLED)
        return True

    async def _on_resolve(self) -> bool:
        session = self._session
        if session is None or session.state != SessionState.ACTIVE:
            raise StateConflictError("No session is active", {'state': self.state.value})
        await self._finish(session, SessionState.RESOLVED, TransitionReason.USER_STOPPED)
        return True

    async def _on_auto_expire(self, session_id: str) -> bool:
        session = self._session
        if session is None or session.id != session_id or session.state != SessionState.ACTIVE:
            return False
        self.logger.warning(f"Session {session_id} expired after {self.auto_expire_seconds:.0f}s")
        await self._finish(session, SessionState.RESOLVED, TransitionReason.AUTO_EXPIRED)
        return True

    async def _on_emergency_call(self) -> bool:
        session = self._session
        if session is None or session.state != SessionState.ACTIVE:
            raise StateConflictError("No session is active", {'state': self.state.value})
        session.emergency_services_called = True
        await self._save_session(session)
        await self._publish(session, session.state, TransitionReason.EMERGENCY_CALL)
        return True

    async def _finish(self, session: SOSSession, state: SessionState, reason: TransitionReason):
        self.timers.cancel(COUNTDOWN_TASK)
        self.timers.cancel(AUTO_EXPIRE_TASK)

        previous = session.state
        session.state = state
        session.ended_at_ms = now_ms()
        session.end_reason = reason
        self._session = None
        self.history.append(session.snapshot())

        await self._save_session(session)
        await self._publish(session, previous, reason)

    def _enqueue_timer(self, action: str, session_id: str):
        if self._running:
            self._queue.put_nowait(_Command(action, session_id=session_id))

    async def fetch_location(self) -> Optional[LocationSample]:
        """Current position from the provider, or None when it is missing, slow or invalid"""
        if self.location_provider is None:
            return None
        try:
            sample = await asyncio.wait_for(self.location_provider.get_current_location(),
                                            timeout=self.location_timeout)
        except asyncio.TimeoutError:
            self.logger.warning("Location provider timed out, activating without location")
            return None
        except Exception as e:
            self.logger.warning(f"Location unavailable: {e}")
            return None

        if sample is not None and not sample.is_valid():
            self.logger.warning("Location provider returned an invalid fix")
            return None
        return sample

    async def _publish(self, session: SOSSession, previous: SessionState, reason: TransitionReason):
        transition = SessionTransition(
            session=session.snapshot(),
            previous_state=previous,
            new_state=session.state,
            reason=reason,
            at_ms=now_ms()
        )
        self.events.info(
            "sos_transition",
            session_id=session.id,
            kind=session.kind.value,
            from_state=previous.value,
            to_state=session.state.value,
            reason=reason.value
        )

        for listener in list(self._listeners):
            try:
                result = listener(transition)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                self.logger.error(f"Error in transition listener: {e}", exc_info=True)

    async def _save_session(self, session: SOSSession):
        if self.persistence is None:
            return
        try:
            await self.persistence.save_session(session.snapshot())
        except Exception as e:
            self.logger.error(f"Failed to persist session {session.id}: {e}")

    async def _save_trigger(self, trigger: EmergencyTrigger, session_id: Optional[str]):
        if self.persistence is None:
            return
        try:
            await self.persistence.save_trigger(trigger, session_id)
        except Exception as e:
            self.logger.error(f"Failed to persist {trigger.kind.value} trigger: {e}")
