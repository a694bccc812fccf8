"""Adapters package - canonical event types and the per-turn event bus.

These are the types a UI frontend consumes from a running turn.
"""
from __future__ import annotations

__all__ = [
    "CanonicalEvent",
    "TurnEventBus",
    "dict_to_event",
    "event_to_dict",
]

from agentwire.adapters.event_bus import TurnEventBus
from agentwire.adapters.events import CanonicalEvent, dict_to_event, event_to_dict
