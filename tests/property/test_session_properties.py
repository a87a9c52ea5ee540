"""
Property-Based Tests for SOS Sessions and Escalation

Tests universal properties of the session state machine, the trigger
de-duplication window and the escalation cascade using Hypothesis.
"""

import asyncio
import pytest
from hypothesis import given, settings, strategies as st

from roadie_guard.models import (
    ContactTier, MessageType, SessionState, SOSSession, TransitionReason,
    TriggerKind, TriggerSource, now_ms
)
from roadie_guard.services.emergency import EscalationScheduler, SOSStateMachine
from roadie_guard.services.location import GeofenceEvaluator, ZoneRegistry
from roadie_guard.services.triggers import TriggerAggregator
from roadie_guard.services.voice import PhraseMatcher

from tests.mocks.gateway_mocks import FakeNotificationGateway
from tests.utils import TestDataHelper


OPENING_REASONS = (TransitionReason.TRIGGERED, TransitionReason.IMMEDIATE)


# Strategies for generating test data

@st.composite
def action_strategy(draw):
    """A trigger of some kind and source, or a user action"""
    action = draw(st.sampled_from(["trigger", "trigger", "trigger", "cancel", "resolve"]))
    if action != "trigger":
        return (action, None)
    return ("trigger", TestDataHelper.trigger(
        kind=draw(st.sampled_from(list(TriggerKind))),
        source=draw(st.sampled_from(list(TriggerSource))),
        confidence=draw(st.floats(min_value=0.0, max_value=1.0))
    ))


@st.composite
def contact_list_strategy(draw):
    count = draw(st.integers(min_value=0, max_value=6))
    return [
        TestDataHelper.contact(
            f"c{i}",
            tier=draw(st.sampled_from(list(ContactTier))),
            priority=draw(st.integers(min_value=1, max_value=3))
        )
        for i in range(count)
    ]


class TestSingleLiveSession:
    """
    Property: for any interleaving of triggers and user actions there is
    at most one live session, a live session's kind never decreases in
    severity, and every archived session is terminal.
    """

    @pytest.mark.asyncio
    @settings(max_examples=40, deadline=None)
    @given(actions=st.lists(action_strategy(), min_size=1, max_size=15))
    async def test_state_machine_invariants(self, actions):
        # Long countdowns so only explicit actions move the session
        machine = SOSStateMachine({"countdown_seconds": {k.value: 60 for k in TriggerKind},
                                   "skip_countdown": ["silent", "location_only"]})
        transitions = []
        machine.add_listener(transitions.append)
        await machine.start()
        try:
            for action, trigger in actions:
                state_before = machine.state
                if action == "trigger":
                    assert machine.handle_trigger(trigger)
                    await asyncio.wait_for(machine.wait_idle(), timeout=1.0)
                elif action == "cancel":
                    accepted = await machine.cancel()
                    assert accepted == (state_before == SessionState.COUNTING_DOWN)
                else:
                    accepted = await machine.resolve()
                    assert accepted == (state_before == SessionState.ACTIVE)
        finally:
            await machine.stop()

        live_id = None
        kinds = {}
        for t in transitions:
            if t.reason in OPENING_REASONS:
                assert live_id is None
                live_id = t.session.id
            else:
                assert t.session.id == live_id
            if t.session.id in kinds:
                assert t.session.kind.severity >= kinds[t.session.id].severity
            kinds[t.session.id] = t.session.kind
            if t.new_state.is_terminal:
                live_id = None

        assert all(s.state.is_terminal for s in machine.history)
        assert len({s.id for s in machine.history}) == len(machine.history)


class TestTriggerDeduplication:
    """
    Property: a burst of same-kind triggers inside the window emits exactly
    one trigger carrying the highest confidence and the first timestamp.
    """

    @settings(max_examples=100, deadline=None)
    @given(
        offsets=st.lists(st.integers(min_value=0, max_value=2000), min_size=1, max_size=10),
        confidences=st.lists(st.floats(min_value=0.0, max_value=1.0), min_size=10, max_size=10),
        kind=st.sampled_from(list(TriggerKind))
    )
    def test_burst_collapses(self, offsets, confidences, kind):
        aggregator = TriggerAggregator(PhraseMatcher(), GeofenceEvaluator(), ZoneRegistry(),
                                       {"dedup_window_ms": 2000})
        emitted = []
        aggregator.on_trigger(emitted.append)

        base = 1_000_000
        times = sorted(base + offset for offset in offsets)
        for timestamp, confidence in zip(times, confidences):
            aggregator._accept(TestDataHelper.trigger(kind, confidence=confidence, occurred_at_ms=timestamp))
        aggregator.flush()

        assert len(emitted) == 1
        assert emitted[0].confidence == max(confidences[:len(times)])
        assert emitted[0].occurred_at_ms == times[0]
        assert emitted[0].payload["merged_count"] == len(times)


class TestEscalationProperties:
    """
    Property: activating a session any number of times notifies each
    primary contact once, in ascending priority order.
    """

    @pytest.mark.asyncio
    @settings(max_examples=30, deadline=None)
    @given(contacts=contact_list_strategy(), repeats=st.integers(min_value=1, max_value=4))
    async def test_activation_is_idempotent(self, contacts, repeats):
        gateway = FakeNotificationGateway()
        scheduler = EscalationScheduler(gateway, contacts, {"secondary_delay_seconds": 60})
        started = now_ms()
        session = SOSSession(kind=TriggerKind.GENERAL, started_at_ms=started,
                             state=SessionState.ACTIVE, activated_at_ms=started)
        try:
            results = [await scheduler.on_session_active(session) for _ in range(repeats)]
        finally:
            await scheduler.stop()

        assert results == [True] + [False] * (repeats - 1)
        primary = [c for c in contacts if c.tier == ContactTier.PRIMARY]
        expected = [c.id for c in sorted(primary, key=lambda c: c.priority)]
        assert gateway.sent_to(MessageType.ALERT) == expected
