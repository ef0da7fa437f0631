"""Actor identity shared by every custody component.

An :class:`Actor` is a closed tagged value: a kind (user, manager or admin)
and a numeric identifier.  Only users and managers can hold, issue or
receive document-level access; administrators are rejected by
:func:`require_subject_kind` at every guard that touches grants.

Example
-------
>>> actor = Actor.parse("manager:7")
>>> actor.kind
<ActorKind.MANAGER: 'manager'>
>>> str(actor)
'manager:7'
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from aumos_custody.errors import BadRequestError, ForbiddenError


class ActorKind(str, Enum):
    """The closed set of actor kinds."""

    USER = "user"
    MANAGER = "manager"
    ADMIN = "admin"


SUBJECT_KINDS: frozenset[ActorKind] = frozenset([ActorKind.USER, ActorKind.MANAGER])


@dataclass(frozen=True)
class Actor:
    """An identified caller.

    Attributes
    ----------
    kind:
        The actor kind.
    id:
        Numeric identifier, unique within the kind.
    """

    kind: ActorKind
    id: int

    @classmethod
    def user(cls, actor_id: int) -> Actor:
        return cls(ActorKind.USER, actor_id)

    @classmethod
    def manager(cls, actor_id: int) -> Actor:
        return cls(ActorKind.MANAGER, actor_id)

    @classmethod
    def admin(cls, actor_id: int) -> Actor:
        return cls(ActorKind.ADMIN, actor_id)

    @classmethod
    def parse(cls, value: str) -> Actor:
        """Parse the ``kind:id`` wire form (e.g. ``"user:42"``).

        Raises
        ------
        BadRequestError
            When the kind is unknown or the identifier is not an integer.
        """
        kind_text, sep, id_text = value.strip().partition(":")
        if not sep:
            raise BadRequestError(f"Actor must be written as 'kind:id', got {value!r}.")
        try:
            kind = ActorKind(kind_text.lower())
        except ValueError:
            raise BadRequestError(f"Unknown actor kind {kind_text!r}.") from None
        try:
            actor_id = int(id_text)
        except ValueError:
            raise BadRequestError(f"Actor id must be an integer, got {id_text!r}.") from None
        return cls(kind, actor_id)

    @property
    def is_admin(self) -> bool:
        return self.kind is ActorKind.ADMIN

    def matches(self, kind: ActorKind | str | None, actor_id: int | None) -> bool:
        """Return True when ``(kind, actor_id)`` names exactly this actor."""
        if kind is None or actor_id is None:
            return False
        return self.kind is ActorKind(kind) and self.id == actor_id

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.id}"


def require_subject_kind(kind: ActorKind | str) -> ActorKind:
    """Return ``kind`` as an :class:`ActorKind` if it may hold document access.

    Raises
    ------
    ForbiddenError
        For administrators, who never hold or issue document-level grants.
    BadRequestError
        For values outside the closed actor-kind set.
    """
    try:
        resolved = ActorKind(kind)
    except ValueError:
        raise BadRequestError(f"Unknown subject kind {kind!r}.") from None

    if resolved is ActorKind.USER or resolved is ActorKind.MANAGER:
        return resolved
    if resolved is ActorKind.ADMIN:
        raise ForbiddenError("Administrators do not have document-level access.")
    raise AssertionError(f"Unhandled actor kind: {resolved!r}")
