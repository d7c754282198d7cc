"""
Notifications -- notices addressed to an identity or to every holder of a role.

A ``Notice`` is what a service hands the dispatcher after commit; the
dispatcher resolves its ``RecipientSelector`` against the role index at
delivery time and writes one ``NotificationRecord`` per recipient.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID

from settlement_kernel.domain.parties import PartyRole


class NotificationCategory(str, Enum):
    BILL = "bill"
    DEED = "deed"
    NOTE = "note"


@dataclass(frozen=True)
class RecipientSelector:
    """Either a single identity or a role fan-out; exactly one is set."""

    party_id: UUID | None = None
    role: PartyRole | None = None

    def __post_init__(self) -> None:
        if (self.party_id is None) == (self.role is None):
            raise ValueError("RecipientSelector needs exactly one of party_id or role")

    @classmethod
    def party(cls, party_id: UUID) -> RecipientSelector:
        return cls(party_id=party_id)

    @classmethod
    def holders_of(cls, role: PartyRole) -> RecipientSelector:
        return cls(role=role)

    @property
    def is_fan_out(self) -> bool:
        return self.role is not None


@dataclass(frozen=True)
class Notice:
    """Undelivered notification produced by a committed transition."""

    recipient: RecipientSelector
    title: str
    message: str
    category: NotificationCategory
    bill_id: UUID | None = None


@dataclass(frozen=True)
class NotificationRecord:
    """Delivered notification as stored in the feed."""

    id: UUID
    recipient_id: UUID
    title: str
    message: str
    category: NotificationCategory
    created_at: datetime
    read: bool = False
    read_at: datetime | None = None
    bill_id: UUID | None = None
