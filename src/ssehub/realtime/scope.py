"""Message scopes — which connections a message targets.

Learn: A scope is a predicate over connections plus an optional index
hint. `owners()` returns the set of owner ids the scope can only ever
match (so the registry can use its owner index instead of scanning
everything), or None when any owner may match. The registry and router
only ever call `owners()` and `matches()`, so a new scope (say, a team
or organization) is one more subclass here and nothing else changes.

Scopes also round-trip through a small JSON document so the Redis
backplane can carry them between instances. That document is parsed
with pydantic (a discriminated union on `kind`), the same models the
publish endpoint uses for its request body.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from ssehub.realtime.connection import Connection


class Scope(ABC):
    """Base class for message scopes."""

    kind: str = ""

    def owners(self) -> Optional[frozenset[str]]:
        """Owner ids this scope is limited to, or None for "any owner"."""
        return None

    @abstractmethod
    def matches(self, connection: Connection) -> bool:
        """Whether a message with this scope goes to the connection."""

    @abstractmethod
    def to_dict(self) -> dict[str, Any]:
        """JSON form, parsed back by scope_from_dict."""


@dataclass(frozen=True)
class ByOwner(Scope):
    """Every connection of a single identity (all of its open tabs/devices)."""

    owner: str
    kind = "owner"

    def owners(self) -> frozenset[str]:
        return frozenset((self.owner,))

    def matches(self, connection: Connection) -> bool:
        return connection.owner == self.owner

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "owner": self.owner}


@dataclass(frozen=True)
class ByOwners(Scope):
    """Every connection of any identity in a group."""

    owner_ids: frozenset[str]
    kind = "owners"

    def __post_init__(self):
        object.__setattr__(self, "owner_ids", frozenset(self.owner_ids))

    def owners(self) -> frozenset[str]:
        return self.owner_ids

    def matches(self, connection: Connection) -> bool:
        return connection.owner in self.owner_ids

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "owners": sorted(self.owner_ids)}


@dataclass(frozen=True)
class Broadcast(Scope):
    """Every live connection."""

    kind = "broadcast"

    def matches(self, connection: Connection) -> bool:
        return True

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind}


# ─── JSON form ───────────────────────────────────────────


class OwnerScopeSpec(BaseModel):
    kind: Literal["owner"]
    owner: str = Field(min_length=1)

    def to_scope(self) -> Scope:
        return ByOwner(self.owner)


class OwnersScopeSpec(BaseModel):
    kind: Literal["owners"]
    owners: list[Annotated[str, Field(min_length=1)]]

    def to_scope(self) -> Scope:
        return ByOwners(frozenset(self.owners))


class BroadcastScopeSpec(BaseModel):
    kind: Literal["broadcast"]

    def to_scope(self) -> Scope:
        return Broadcast()


ScopeSpec = Annotated[
    Union[OwnerScopeSpec, OwnersScopeSpec, BroadcastScopeSpec],
    Field(discriminator="kind"),
]

_scope_spec = TypeAdapter(ScopeSpec)


def scope_from_dict(data: dict[str, Any]) -> Scope:
    """Rebuild a scope from its JSON form (see Scope.to_dict).

    Raises ValueError for an unknown kind or a malformed field, e.g. a bare
    string where a list of owners is expected.
    """
    try:
        return _scope_spec.validate_python(data).to_scope()
    except ValidationError as e:
        raise ValueError(f"Invalid scope {data!r}: {e}") from e
