"""Event catalog — every event kind a client can receive.

Learn: Centralizing event types here prevents typos and makes it easy
to discover all event kinds in the system. Each kind is a small pydantic
model whose fields are the wire "data" object:

    {"type": "action_created",
     "data": {"coaching_session_id": "...", "action": {...}}}

Every payload carries the context ids a receiver needs to decide whether
the event is relevant (the session or relationship it belongs to) plus a
snapshot of the changed entity, so the client can render the update
without a follow-up fetch. Deletions only carry the id.

Adding a kind = one constant + one model decorated with @register.
Nothing in the router or registry changes.
"""

import json
from typing import Any, ClassVar, Union

from pydantic import BaseModel, ValidationError
from pydantic_core import PydanticSerializationError


# ─── Wire names ──────────────────────────────────────────

ACTION_CREATED = "action_created"
ACTION_UPDATED = "action_updated"
ACTION_DELETED = "action_deleted"

AGREEMENT_CREATED = "agreement_created"
AGREEMENT_UPDATED = "agreement_updated"
AGREEMENT_DELETED = "agreement_deleted"

OVERARCHING_GOAL_CREATED = "overarching_goal_created"
OVERARCHING_GOAL_UPDATED = "overarching_goal_updated"
OVERARCHING_GOAL_DELETED = "overarching_goal_deleted"

# System events (out-of-band, not tied to a resource)
FORCE_LOGOUT = "force_logout"


# ─── Errors ──────────────────────────────────────────────


class EventError(Exception):
    """Base class for event catalog errors."""


class EventEncodeError(EventError):
    """Raised when an event payload can't be serialized to JSON."""


class EventDecodeError(EventError):
    """Raised when a wire payload is not a valid event."""


class UnknownEventError(EventDecodeError):
    """Raised when a wire payload names an event kind we don't know."""


# ─── Base ────────────────────────────────────────────────

EVENT_TYPES: dict[str, type["Event"]] = {}


class Event(BaseModel):
    """Base for all event kinds. Subclasses set `event_type`."""

    event_type: ClassVar[str]

    model_config = {"frozen": True, "extra": "forbid"}

    def to_wire(self) -> dict[str, Any]:
        """Tagged form: {"type": <kind>, "data": {...}}."""
        try:
            data = self.model_dump(mode="json")
        except PydanticSerializationError as e:
            raise EventEncodeError(f"Can't serialize {self.event_type}: {e}") from e
        return {"type": self.event_type, "data": data}


def register(cls: type[Event]) -> type[Event]:
    """Add an event model to the catalog under its wire name."""
    if cls.event_type in EVENT_TYPES:
        raise ValueError(f"Duplicate event type: {cls.event_type}")
    EVENT_TYPES[cls.event_type] = cls
    return cls


# ─── Actions (coaching-session scoped) ───────────────────


@register
class ActionCreated(Event):
    event_type: ClassVar[str] = ACTION_CREATED
    coaching_session_id: str
    action: dict[str, Any]


@register
class ActionUpdated(Event):
    event_type: ClassVar[str] = ACTION_UPDATED
    coaching_session_id: str
    action: dict[str, Any]


@register
class ActionDeleted(Event):
    event_type: ClassVar[str] = ACTION_DELETED
    coaching_session_id: str
    action_id: str


# ─── Agreements (relationship scoped) ────────────────────


@register
class AgreementCreated(Event):
    event_type: ClassVar[str] = AGREEMENT_CREATED
    coaching_relationship_id: str
    agreement: dict[str, Any]


@register
class AgreementUpdated(Event):
    event_type: ClassVar[str] = AGREEMENT_UPDATED
    coaching_relationship_id: str
    agreement: dict[str, Any]


@register
class AgreementDeleted(Event):
    event_type: ClassVar[str] = AGREEMENT_DELETED
    coaching_relationship_id: str
    agreement_id: str


# ─── Overarching goals (relationship scoped) ─────────────


@register
class OverarchingGoalCreated(Event):
    event_type: ClassVar[str] = OVERARCHING_GOAL_CREATED
    coaching_relationship_id: str
    overarching_goal: dict[str, Any]


@register
class OverarchingGoalUpdated(Event):
    event_type: ClassVar[str] = OVERARCHING_GOAL_UPDATED
    coaching_relationship_id: str
    overarching_goal: dict[str, Any]


@register
class OverarchingGoalDeleted(Event):
    event_type: ClassVar[str] = OVERARCHING_GOAL_DELETED
    coaching_relationship_id: str
    overarching_goal_id: str


# ─── System ──────────────────────────────────────────────


@register
class ForceLogout(Event):
    """Tell the client to drop its session and return to the login page."""

    event_type: ClassVar[str] = FORCE_LOGOUT
    reason: str


AnyEvent = Union[
    ActionCreated,
    ActionUpdated,
    ActionDeleted,
    AgreementCreated,
    AgreementUpdated,
    AgreementDeleted,
    OverarchingGoalCreated,
    OverarchingGoalUpdated,
    OverarchingGoalDeleted,
    ForceLogout,
]


# ─── Codec ───────────────────────────────────────────────


def encode_event(event: Event) -> str:
    """Serialize an event to its JSON wire payload."""
    try:
        return json.dumps(event.to_wire(), separators=(",", ":"))
    except (TypeError, ValueError) as e:
        raise EventEncodeError(f"Can't serialize {event.event_type}: {e}") from e


def event_from_wire(payload: dict[str, Any]) -> Event:
    """Rebuild an event from its tagged dict form."""
    if not isinstance(payload, dict) or "type" not in payload:
        raise EventDecodeError("Event payload must be an object with a 'type'")
    if not isinstance(payload["type"], str):
        raise EventDecodeError(f"Event type must be a string, got {payload['type']!r}")

    cls = EVENT_TYPES.get(payload["type"])
    if cls is None:
        raise UnknownEventError(f"Unknown event type: {payload['type']}")

    data = payload.get("data")
    if not isinstance(data, dict):
        raise EventDecodeError(f"Event {payload['type']} has no data object")
    try:
        return cls.model_validate(data)
    except ValidationError as e:
        raise EventDecodeError(f"Invalid {payload['type']} payload: {e}") from e


def decode_event(raw: str | bytes) -> Event:
    """Parse a JSON wire payload back into an event model."""
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as e:
        raise EventDecodeError(f"Event payload is not JSON: {e}") from e
    return event_from_wire(payload)
