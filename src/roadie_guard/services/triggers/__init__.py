"""
Trigger aggregation services
"""

from .aggregator import TriggerAggregator, DEFAULT_PROTOCOL_KINDS
from .detectors import Detection, GestureDetector, WearableMonitor

__all__ = [
    'TriggerAggregator',
    'DEFAULT_PROTOCOL_KINDS',
    'Detection',
    'GestureDetector',
    'WearableMonitor'
]
