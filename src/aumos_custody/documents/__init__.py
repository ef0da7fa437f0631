"""Document records and origin authority resolution."""
from __future__ import annotations

from aumos_custody.documents.authority import (
    DocumentLookup,
    is_origin_authority,
    origin_authority_of,
    resolve_origin_authority,
)
from aumos_custody.documents.models import Document

__all__ = [
    "Document",
    "DocumentLookup",
    "is_origin_authority",
    "origin_authority_of",
    "resolve_origin_authority",
]
