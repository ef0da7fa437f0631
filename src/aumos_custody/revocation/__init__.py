"""Revocation requests.

The request record and its enumerations live in
:mod:`aumos_custody.revocation.models`; the approval state machine lives in
:mod:`aumos_custody.revocation.workflow`.
"""
from __future__ import annotations

from aumos_custody.revocation.models import RequestStatus, RequestType, RevocationRequest

__all__ = [
    "RequestStatus",
    "RequestType",
    "RevocationRequest",
]
