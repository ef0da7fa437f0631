"""Access grants.

The grant record lives in :mod:`aumos_custody.grants.models`; the engine
that owns every grant write lives in :mod:`aumos_custody.grants.engine`.
"""
from __future__ import annotations

from aumos_custody.grants.models import AccessGrant, GrantType

__all__ = [
    "AccessGrant",
    "GrantType",
]
