"""
Content hashes and slot signatures for deeds.

A deed's content hash is a SHA-256 over canonical JSON of its terms, so
anyone holding the stored row can recompute it.  Canonical means sorted
keys, no whitespace and Decimals in plain notation with trailing zeros
dropped: a principal read back from a ``Numeric(38, 9)`` column hashes the
same as the value that was written.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


def _encode(value: Any) -> Any:
    if isinstance(value, Decimal):
        return format(value.normalize(), "f")
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (tuple, set, frozenset)):
        return sorted(value) if isinstance(value, (set, frozenset)) else list(value)
    raise TypeError(f"{type(value).__name__} has no canonical JSON form")


def canonicalize_json(data: Any) -> str:
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=_encode)


def hash_payload(payload: dict) -> str:
    """Hex SHA-256 of the canonical JSON of ``payload``."""
    return hashlib.sha256(canonicalize_json(payload).encode("utf-8")).hexdigest()


def hash_deed_content(
    *,
    bill_id: UUID,
    assignor_id: UUID,
    procuring_entity_id: UUID,
    principal_amount: Decimal,
    discount_rate: Decimal,
    purchase_price: Decimal,
    timestamp: datetime,
    document_content: dict,
) -> str:
    """
    Content hash of a deed of assignment.

    ``timestamp`` is the creation instant, so a replacement deed over the
    same terms gets a different hash.
    """
    return hash_payload(
        dict(
            bill_id=bill_id,
            assignor_id=assignor_id,
            procuring_entity_id=procuring_entity_id,
            principal_amount=principal_amount,
            discount_rate=discount_rate,
            purchase_price=purchase_price,
            timestamp=timestamp,
            document_content=document_content,
        )
    )


def sign_content_hash(content_hash: str, signer_role: str, signed_at: datetime) -> str:
    """Slot signature: SHA-256 of ``<content hash>-<signer role>-<ISO timestamp>``."""
    message = "-".join((content_hash, signer_role, signed_at.isoformat()))
    return hashlib.sha256(message.encode("utf-8")).hexdigest()
