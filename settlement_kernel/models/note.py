"""
Module: settlement_kernel.models.note
Responsibility: ORM persistence for receivable notes issued against fully
    executed deeds.
Architecture position: Kernel > Models.  May import from db/base.py only
    (domain DTOs are imported lazily inside to_dto).

Invariants enforced:
    - note_number is globally unique (uq_note_number).
    - face_value is copied from the deed at creation and never rewritten.
    - Optimistic versioning via ``version``: two concurrent mints of one
      note cannot both commit, so a note never receives two token ids.

Failure modes:
    - IntegrityError on a colliding note number (the service retries).
    - StaleDataError on flush when ``version`` moved underneath the session.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import JSON, Date, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from settlement_kernel.db.base import TrackedBase, UTCDateTime, UUIDString

if TYPE_CHECKING:
    from settlement_kernel.domain.note import ReceivableNote


class ReceivableNoteModel(TrackedBase):
    """A receivable note and its token metadata."""

    __tablename__ = "receivable_notes"

    __table_args__ = (
        UniqueConstraint("note_number", name="uq_note_number"),
        Index("idx_note_deed", "deed_id"),
        Index("idx_note_issuer", "issuer_id"),
    )

    deed_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("deeds.id"), nullable=False
    )
    bill_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("bills.id"), nullable=False
    )
    note_number: Mapped[str] = mapped_column(String(40), nullable=False)
    face_value: Mapped[Decimal] = mapped_column(nullable=False)
    issue_date: Mapped[date] = mapped_column(Date, nullable=False)
    maturity_date: Mapped[date] = mapped_column(Date, nullable=False)
    issuer_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    token_uri: Mapped[str] = mapped_column(String(255), nullable=False)
    network: Mapped[str] = mapped_column(String(50), nullable=False)
    # ``metadata`` is reserved on declarative classes
    note_metadata: Mapped[dict] = mapped_column("metadata", JSON, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)

    # Minting
    token_id: Mapped[str | None] = mapped_column(String(78), nullable=True)
    token_registry_address: Mapped[str | None] = mapped_column(String(42), nullable=True)
    mint_tx_hash: Mapped[str | None] = mapped_column(String(66), nullable=True)
    issuer_wallet_address: Mapped[str | None] = mapped_column(String(42), nullable=True)
    minted_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    # Trading and redemption
    buyer_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    sale_price: Mapped[Decimal | None] = mapped_column(nullable=True)
    sold_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    redeemed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    def to_dto(self) -> ReceivableNote:
        """Convert ORM model to frozen domain DTO."""
        from settlement_kernel.domain.note import NoteStatus, ReceivableNote

        return ReceivableNote(
            id=self.id,
            deed_id=self.deed_id,
            bill_id=self.bill_id,
            note_number=self.note_number,
            face_value=self.face_value,
            issue_date=self.issue_date,
            maturity_date=self.maturity_date,
            issuer_id=self.issuer_id,
            token_uri=self.token_uri,
            network=self.network,
            status=NoteStatus(self.status),
            version=self.version,
            created_at=self.created_at,
            metadata=dict(self.note_metadata or {}),
            token_id=self.token_id,
            token_registry_address=self.token_registry_address,
            mint_tx_hash=self.mint_tx_hash,
            issuer_wallet_address=self.issuer_wallet_address,
            minted_at=self.minted_at,
            buyer_id=self.buyer_id,
            sale_price=self.sale_price,
            sold_at=self.sold_at,
            redeemed_at=self.redeemed_at,
        )

    def __repr__(self) -> str:
        return f"<ReceivableNote {self.note_number}: {self.status}>"
