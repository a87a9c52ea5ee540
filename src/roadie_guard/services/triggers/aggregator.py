"""
Trigger Aggregation

Merges every emergency signal producer into one canonical stream:
- Voice phrases mapped through the protocol table
- Gesture sequences and panic button presses
- Danger-zone entries from the location stream
- Wearable heart-rate anomalies
- Manual SOS requests

Triggers of the same kind that arrive close together are collapsed into
a single emission before they reach the SOS state machine.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from roadie_guard.models import (
    EmergencyTrigger, GeofenceEvent, GeofenceTransition, GestureEvent,
    LocationSample, ManualTrigger, Protocol, TriggerKind, TriggerSource,
    Utterance, WearableSample, ZoneKind
)
from roadie_guard.services.location import GeofenceEvaluator, ZoneRegistry
from roadie_guard.services.voice import PhraseMatcher
from .detectors import GestureDetector, WearableMonitor


DEFAULT_PROTOCOL_KINDS = {
    Protocol.SOS: TriggerKind.GENERAL,
    Protocol.SILENT: TriggerKind.SILENT,
    Protocol.LOCATION_ONLY: TriggerKind.LOCATION_ONLY,
}


@dataclass
class _PendingGroup:
    """Triggers of one kind waiting for their window to close"""
    first: EmergencyTrigger
    best: EmergencyTrigger
    sources: List[TriggerSource] = field(default_factory=list)
    count: int = 1
    timer: Optional[asyncio.TimerHandle] = None


class TriggerAggregator:
    """
    Normalizes heterogeneous signals into EmergencyTriggers

    Producers call submit() with their raw event. Mapped triggers are held
    for the de-duplication window and then handed to the single consumer
    registered with on_trigger().
    """

    def __init__(self, matcher: PhraseMatcher, evaluator: GeofenceEvaluator,
                 zone_registry: ZoneRegistry, config: Optional[Dict[str, Any]] = None):
        """
        Initialize the aggregator

        Args:
            matcher: Phrase matcher for voice utterances
            evaluator: Geofence evaluator for location samples
            zone_registry: Registry holding the zones to evaluate
            config: The 'aggregator' configuration section
        """
        self.logger = logging.getLogger(__name__)
        self.config = config or {}
        self.matcher = matcher
        self.evaluator = evaluator
        self.zone_registry = zone_registry

        self.dedup_window_ms = int(self.config.get('dedup_window_ms', 2000))
        self.protocol_kinds = self._build_protocol_table(self.config.get('protocol_kinds'))

        self.gesture_detector = GestureDetector(
            required_count=int(self.config.get('gesture_tap_count', 3)),
            window_ms=int(self.config.get('gesture_window_ms', 1000))
        )
        self.wearable_monitor = WearableMonitor(
            heart_rate_min=self.config.get('heart_rate_min', 50),
            heart_rate_max=self.config.get('heart_rate_max', 120),
            critical_min=self.config.get('heart_rate_critical_min', 40),
            critical_max=self.config.get('heart_rate_critical_max', 150),
            low_battery_percent=self.config.get('low_battery_percent', 10)
        )

        self._consumer: Optional[Callable[[EmergencyTrigger], Any]] = None
        self._geofence_listeners: List[Callable[[GeofenceEvent], Any]] = []
        self._battery_listeners: List[Callable[[WearableSample], Any]] = []
        self._last_location: Optional[LocationSample] = None
        self._pending: Dict[TriggerKind, _PendingGroup] = {}
        self._consumer_tasks = set()
        self._stopped = False

    def _build_protocol_table(self, overrides: Optional[Dict[str, str]]) -> Dict[Protocol, TriggerKind]:
        table = dict(DEFAULT_PROTOCOL_KINDS)
        for protocol_name, kind_name in (overrides or {}).items():
            table[Protocol.parse(protocol_name)] = TriggerKind(kind_name)
        return table

    @property
    def last_location(self) -> Optional[LocationSample]:
        return self._last_location

    def on_trigger(self, callback: Callable[[EmergencyTrigger], Any]):
        """
        Register the consumer of merged triggers

        Raises:
            ValueError: If a consumer is already registered
        """
        if self._consumer is not None:
            raise ValueError("Trigger consumer already registered")
        self._consumer = callback

    def add_geofence_listener(self, callback: Callable[[GeofenceEvent], Any]):
        """Observe every raw geofence enter/exit event"""
        self._geofence_listeners.append(callback)

    def add_battery_listener(self, callback: Callable[[WearableSample], Any]):
        """Observe wearable samples reporting a low battery"""
        self._battery_listeners.append(callback)

    def submit(self, raw_event: Any) -> Optional[EmergencyTrigger]:
        """
        Accept a raw producer event

        Args:
            raw_event: Utterance, GestureEvent, LocationSample,
                WearableSample or ManualTrigger

        Returns:
            The trigger the event mapped to (before de-duplication), or
            None when it mapped to nothing. Never raises.
        """
        if self._stopped:
            self.logger.debug(f"Aggregator stopped, dropping {type(raw_event).__name__}")
            return None

        try:
            if isinstance(raw_event, Utterance):
                trigger = self._map_utterance(raw_event)
            elif isinstance(raw_event, GestureEvent):
                trigger = self._map_gesture(raw_event)
            elif isinstance(raw_event, LocationSample):
                trigger = self._map_location(raw_event)
            elif isinstance(raw_event, WearableSample):
                trigger = self._map_wearable(raw_event)
            elif isinstance(raw_event, ManualTrigger):
                trigger = EmergencyTrigger(
                    source=TriggerSource.MANUAL,
                    kind=raw_event.kind,
                    confidence=1.0,
                    occurred_at_ms=raw_event.timestamp_ms,
                    payload={'note': raw_event.note} if raw_event.note else {}
                )
            else:
                self.logger.warning(f"Unmapped event type {type(raw_event).__name__}, dropping")
                return None

            if trigger is not None:
                self._accept(trigger)
            return trigger

        except Exception as e:
            self.logger.error(f"Error mapping {type(raw_event).__name__}: {e}", exc_info=True)
            return None

    def _map_utterance(self, utterance: Utterance) -> Optional[EmergencyTrigger]:
        result = self.matcher.match_with_score(utterance.text)
        if result is None:
            return None

        kind = self.protocol_kinds.get(result.phrase.protocol)
        if kind is None:
            self.logger.warning(f"No kind mapped for protocol {result.phrase.protocol.value}, dropping")
            return None

        confidence = max(0.0, min(1.0, 1.0 - result.normalized_distance))
        return EmergencyTrigger(
            source=TriggerSource.VOICE,
            kind=kind,
            confidence=confidence,
            occurred_at_ms=utterance.timestamp_ms,
            payload={
                'phrase': result.phrase.phrase,
                'language': result.phrase.language.value,
                'protocol': result.phrase.protocol.value,
                'distance': result.distance
            }
        )

    def _map_gesture(self, event: GestureEvent) -> Optional[EmergencyTrigger]:
        detection = self.gesture_detector.observe(event)
        if detection is None:
            return None
        return EmergencyTrigger(
            source=TriggerSource.GESTURE,
            kind=TriggerKind.GENERAL,
            confidence=detection.confidence,
            occurred_at_ms=event.timestamp_ms,
            payload=dict(detection.data, reason=detection.reason)
        )

    def _map_location(self, sample: LocationSample) -> Optional[EmergencyTrigger]:
        previous = self._last_location
        events = self.evaluator.evaluate(self.zone_registry.snapshot(), previous, sample)
        if sample.is_valid():
            self._last_location = sample

        trigger = None
        for event in events:
            self._notify(self._geofence_listeners, event, "geofence listener")
            if trigger is None and self._is_danger_entry(event):
                self.logger.warning(f"Entered danger zone {event.zone.name} ({event.zone.id})")
                trigger = EmergencyTrigger(
                    source=TriggerSource.GEOFENCE,
                    kind=TriggerKind.LOCATION_ONLY,
                    confidence=1.0,
                    occurred_at_ms=sample.timestamp_ms,
                    payload={
                        'zone_id': event.zone.id,
                        'zone_name': event.zone.name,
                        'distance_meters': event.distance_meters
                    }
                )
        return trigger

    @staticmethod
    def _is_danger_entry(event: GeofenceEvent) -> bool:
        return (event.transition == GeofenceTransition.ENTER
                and event.zone.kind == ZoneKind.DANGER
                and event.zone.notify)

    def _map_wearable(self, sample: WearableSample) -> Optional[EmergencyTrigger]:
        if self.wearable_monitor.is_battery_low(sample):
            self.logger.warning(f"Wearable {sample.device_id} battery low: {sample.battery_level:.0f}%")
            self._notify(self._battery_listeners, sample, "battery listener")

        detection = self.wearable_monitor.check_heart_rate(sample)
        if detection is None:
            return None
        return EmergencyTrigger(
            source=TriggerSource.WEARABLE,
            kind=TriggerKind.MEDICAL,
            confidence=detection.confidence,
            occurred_at_ms=sample.timestamp_ms,
            payload=dict(detection.data, reason=detection.reason)
        )

    def _notify(self, listeners: List[Callable], item: Any, label: str):
        for listener in list(listeners):
            try:
                result = listener(item)
                if asyncio.iscoroutine(result):
                    self._track(asyncio.ensure_future(result))
            except Exception as e:
                self.logger.error(f"Error in {label}: {e}")

    def _accept(self, trigger: EmergencyTrigger):
        """Add a trigger to its kind's de-duplication group"""
        group = self._pending.get(trigger.kind)
        if group is not None:
            # Late deliveries may carry an earlier timestamp than the group start
            if abs(trigger.occurred_at_ms - group.first.occurred_at_ms) <= self.dedup_window_ms:
                group.count += 1
                if trigger.occurred_at_ms < group.first.occurred_at_ms:
                    group.first = trigger
                if trigger.source not in group.sources:
                    group.sources.append(trigger.source)
                if trigger.confidence > group.best.confidence:
                    group.best = trigger
                return
            self._close_group(trigger.kind)

        group = _PendingGroup(first=trigger, best=trigger, sources=[trigger.source])
        try:
            loop = asyncio.get_running_loop()
            group.timer = loop.call_later(self.dedup_window_ms / 1000.0, self._close_group, trigger.kind)
        except RuntimeError:
            # No loop: the group waits for flush()
            group.timer = None
        self._pending[trigger.kind] = group

    def _close_group(self, kind: TriggerKind) -> Optional[EmergencyTrigger]:
        group = self._pending.pop(kind, None)
        if group is None:
            return None
        if group.timer is not None:
            group.timer.cancel()

        best = group.best
        payload = dict(best.payload)
        payload['sources'] = [source.value for source in group.sources]
        payload['merged_count'] = group.count
        merged = EmergencyTrigger(
            source=best.source,
            kind=kind,
            confidence=best.confidence,
            occurred_at_ms=group.first.occurred_at_ms,
            payload=payload
        )
        self._emit(merged)
        return merged

    def _emit(self, trigger: EmergencyTrigger):
        if self._consumer is None:
            self.logger.warning(f"No trigger consumer registered, dropping {trigger.kind.value} trigger")
            return

        self.logger.info(
            f"Emitting {trigger.kind.value} trigger from {trigger.source.value} "
            f"(confidence={trigger.confidence:.2f}, sources={trigger.payload.get('sources')})"
        )
        try:
            result = self._consumer(trigger)
            if asyncio.iscoroutine(result):
                self._track(asyncio.ensure_future(result))
        except Exception as e:
            self.logger.error(f"Error in trigger consumer: {e}", exc_info=True)

    def _track(self, task: asyncio.Future):
        self._consumer_tasks.add(task)
        task.add_done_callback(self._consumer_tasks.discard)

    def flush(self) -> List[EmergencyTrigger]:
        """Emit every pending group now, oldest first"""
        kinds = sorted(self._pending, key=lambda k: self._pending[k].first.occurred_at_ms)
        emitted = []
        for kind in kinds:
            trigger = self._close_group(kind)
            if trigger is not None:
                emitted.append(trigger)
        return emitted

    async def start(self):
        """Accept events again after stop()"""
        if not self._stopped:
            return
        self._stopped = False
        self.gesture_detector.reset()
        self._last_location = None
        self.logger.info("Trigger aggregator started")

    async def stop(self):
        """Flush pending groups and refuse further events"""
        self.flush()
        self._stopped = True
        if self._consumer_tasks:
            await asyncio.gather(*list(self._consumer_tasks), return_exceptions=True)
        self.logger.info("Trigger aggregator stopped")
