"""REST surface for the custody engine."""
from __future__ import annotations

from aumos_custody.api.handlers import ACTOR_HEADER, CustodyApi
from aumos_custody.api.server import CustodyServer

__all__ = [
    "ACTOR_HEADER",
    "CustodyApi",
    "CustodyServer",
]
