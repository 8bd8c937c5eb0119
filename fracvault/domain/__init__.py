"""Domain layer: lifecycle rules, events, clock and collaborator interfaces."""

from .clock import Clock, SystemClock, SimulatedClock
from .events import EventDecoder, VaultEvent, VaultEventType
from .reclaim_policy import (
    ESCROW_PERIOD,
    INSTANT_THRESHOLD_BPS,
    ReclaimAction,
    ReclaimDecision,
    ReclaimPath,
    ReclaimPolicy,
    can_transition,
    next_status,
)

__all__ = [
    "Clock",
    "SystemClock",
    "SimulatedClock",
    "EventDecoder",
    "VaultEvent",
    "VaultEventType",
    "ESCROW_PERIOD",
    "INSTANT_THRESHOLD_BPS",
    "ReclaimAction",
    "ReclaimDecision",
    "ReclaimPath",
    "ReclaimPolicy",
    "can_transition",
    "next_status",
]
