"""Event catalog and wire codec."""

from ssehub.events.types import (
    EVENT_TYPES,
    ActionCreated,
    ActionDeleted,
    ActionUpdated,
    AgreementCreated,
    AgreementDeleted,
    AgreementUpdated,
    AnyEvent,
    Event,
    EventDecodeError,
    EventEncodeError,
    EventError,
    ForceLogout,
    OverarchingGoalCreated,
    OverarchingGoalDeleted,
    OverarchingGoalUpdated,
    UnknownEventError,
    decode_event,
    encode_event,
    event_from_wire,
)

__all__ = [
    "EVENT_TYPES",
    "ActionCreated",
    "ActionDeleted",
    "ActionUpdated",
    "AgreementCreated",
    "AgreementDeleted",
    "AgreementUpdated",
    "AnyEvent",
    "Event",
    "EventDecodeError",
    "EventEncodeError",
    "EventError",
    "ForceLogout",
    "OverarchingGoalCreated",
    "OverarchingGoalDeleted",
    "OverarchingGoalUpdated",
    "UnknownEventError",
    "decode_event",
    "encode_event",
    "event_from_wire",
]
