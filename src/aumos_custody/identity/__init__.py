"""Actor identity types for aumos-custody."""
from __future__ import annotations

from aumos_custody.identity.actor import (
    SUBJECT_KINDS,
    Actor,
    ActorKind,
    require_subject_kind,
)

__all__ = [
    "SUBJECT_KINDS",
    "Actor",
    "ActorKind",
    "require_subject_kind",
]
