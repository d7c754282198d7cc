"""
Receivable note -- tokenized claim issued against an executed deed.

Status only moves forward: draft -> minted -> listed -> sold -> redeemed,
with redemption also allowed straight from minted or listed.
"""

from __future__ import annotations

import string
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from settlement_kernel.domain.parties import PartyRole
from settlement_kernel.domain.workflow import Transition, Workflow


class NoteStatus(str, Enum):
    DRAFT = "draft"
    MINTED = "minted"
    LISTED = "listed"
    SOLD = "sold"
    REDEEMED = "redeemed"


_ISSUER = frozenset({PartyRole.SPV.value})

NOTE_WORKFLOW = Workflow(
    name="receivable_note",
    description="Receivable note issuance, trading and redemption",
    initial_state=NoteStatus.DRAFT.value,
    states=tuple(s.value for s in NoteStatus),
    transitions=(
        Transition(NoteStatus.DRAFT.value, NoteStatus.MINTED.value, "mint", _ISSUER),
        Transition(NoteStatus.MINTED.value, NoteStatus.LISTED.value, "list", _ISSUER),
        Transition(NoteStatus.LISTED.value, NoteStatus.SOLD.value, "sell", _ISSUER),
        Transition(NoteStatus.MINTED.value, NoteStatus.REDEEMED.value, "redeem", _ISSUER),
        Transition(NoteStatus.LISTED.value, NoteStatus.REDEEMED.value, "redeem", _ISSUER),
        Transition(NoteStatus.SOLD.value, NoteStatus.REDEEMED.value, "redeem", _ISSUER),
    ),
    terminal_states=(NoteStatus.REDEEMED.value,),
)

_BASE36 = string.digits + string.ascii_uppercase


def to_base36(value: int) -> str:
    """Upper-case base-36 rendering of a non-negative integer."""
    if value < 0:
        raise ValueError("value must be non-negative")
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def format_note_number(prefix: str, issued_at: datetime, suffix: str) -> str:
    """``<prefix>-<base36 epoch millis>-<suffix>``, e.g. ``RN-MCK1Z2A0-7QX2``."""
    millis = int(issued_at.timestamp() * 1000)
    return f"{prefix}-{to_base36(millis)}-{suffix.upper()}"


@dataclass(frozen=True)
class ReceivableNote:
    """Immutable snapshot of a receivable note."""

    id: UUID
    deed_id: UUID
    bill_id: UUID
    note_number: str
    face_value: Decimal
    issue_date: date
    maturity_date: date
    issuer_id: UUID
    token_uri: str
    network: str
    status: NoteStatus
    version: int
    created_at: datetime
    metadata: dict[str, str] = field(default_factory=dict)
    # Minting
    token_id: str | None = None
    token_registry_address: str | None = None
    mint_tx_hash: str | None = None
    issuer_wallet_address: str | None = None
    minted_at: datetime | None = None
    # Trading
    buyer_id: UUID | None = None
    sale_price: Decimal | None = None
    sold_at: datetime | None = None
    redeemed_at: datetime | None = None

    @property
    def is_minted(self) -> bool:
        return self.status != NoteStatus.DRAFT
