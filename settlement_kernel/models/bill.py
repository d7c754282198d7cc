"""
Module: settlement_kernel.models.bill
Responsibility: ORM persistence for bills, their quarterly installments and
    their status-history audit trail.
Architecture position: Kernel > Models.  May import from db/base.py only
    (domain DTOs are imported lazily inside to_dto).

Invariants enforced:
    - invoice_number is unique per supplier (uq_bill_supplier_invoice).
    - amount > 0 (ck_bill_amount_positive).
    - Optimistic versioning: ``version`` is the mapper's version_id_col, so
      two writers racing on one bill cannot both commit.
    - Installment sequence numbers are unique per bill.
    - History rows are append-only; nothing updates or deletes them.

Failure modes:
    - StaleDataError on flush when ``version`` moved underneath the session.
    - IntegrityError on a duplicate supplier invoice number.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from settlement_kernel.db.base import Base, TrackedBase, UTCDateTime, UUIDString

if TYPE_CHECKING:
    from settlement_kernel.domain.bill import Bill, BillStatusChange, Installment


class BillModel(TrackedBase):
    """
    A verified payable owed by a procuring entity to a supplier.

    Guarantees:
        - status is one of BillStatus values.
        - Stage columns stay NULL until their owning transition runs.
    """

    __tablename__ = "bills"

    __table_args__ = (
        UniqueConstraint("supplier_id", "invoice_number", name="uq_bill_supplier_invoice"),
        CheckConstraint("amount > 0", name="ck_bill_amount_positive"),
        Index("idx_bill_status", "status"),
        Index("idx_bill_supplier", "supplier_id"),
        Index("idx_bill_procuring_entity", "procuring_entity_id"),
    )

    supplier_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    procuring_entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    invoice_number: Mapped[str] = mapped_column(String(100), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    invoice_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    work_start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    work_end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    contract_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)

    status: Mapped[str] = mapped_column(String(30), nullable=False)
    submitted_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    # Offer
    spv_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    offer_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    offer_discount_rate: Mapped[Decimal | None] = mapped_column(nullable=True)
    offer_date: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    offer_accepted_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    # Agency approval
    payment_quarters: Mapped[int | None] = mapped_column(Integer, nullable=True)
    payment_start_quarter: Mapped[str | None] = mapped_column(String(7), nullable=True)
    mda_approved_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    mda_approved_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    mda_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    terms_set_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    # Agreement and certification
    agreement_sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    certificate_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    treasury_certified_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    treasury_certified_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    # Rejection
    rejected_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    installments: Mapped[list[BillInstallmentModel]] = relationship(
        back_populates="bill",
        cascade="all, delete-orphan",
        order_by="BillInstallmentModel.sequence",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    def to_dto(self) -> Bill:
        """Convert ORM model to frozen domain DTO."""
        from settlement_kernel.domain.bill import Bill, BillStatus

        return Bill(
            id=self.id,
            supplier_id=self.supplier_id,
            procuring_entity_id=self.procuring_entity_id,
            invoice_number=self.invoice_number,
            amount=self.amount,
            currency=self.currency,
            invoice_date=self.invoice_date,
            status=BillStatus(self.status),
            version=self.version,
            submitted_at=self.submitted_at,
            due_date=self.due_date,
            work_start_date=self.work_start_date,
            work_end_date=self.work_end_date,
            description=self.description,
            contract_reference=self.contract_reference,
            spv_id=self.spv_id,
            offer_amount=self.offer_amount,
            offer_discount_rate=self.offer_discount_rate,
            offer_date=self.offer_date,
            offer_accepted_at=self.offer_accepted_at,
            payment_quarters=self.payment_quarters,
            payment_start_quarter=self.payment_start_quarter,
            mda_approved_by=self.mda_approved_by,
            mda_approved_at=self.mda_approved_at,
            mda_notes=self.mda_notes,
            terms_set_at=self.terms_set_at,
            installments=tuple(i.to_dto() for i in self.installments),
            agreement_sent_at=self.agreement_sent_at,
            certificate_number=self.certificate_number,
            treasury_certified_by=self.treasury_certified_by,
            treasury_certified_at=self.treasury_certified_at,
            rejected_by=self.rejected_by,
            rejected_at=self.rejected_at,
            rejection_reason=self.rejection_reason,
        )

    def __repr__(self) -> str:
        return f"<Bill {self.invoice_number}: {self.status} v{self.version}>"


class BillInstallmentModel(Base):
    """One quarterly payment of an approved bill."""

    __tablename__ = "bill_installments"

    __table_args__ = (
        UniqueConstraint("bill_id", "sequence", name="uq_bill_installment_sequence"),
    )

    bill_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("bills.id", ondelete="CASCADE"), nullable=False
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    quarter: Mapped[str] = mapped_column(String(7), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)

    bill: Mapped[BillModel] = relationship(back_populates="installments")

    def to_dto(self) -> Installment:
        from settlement_kernel.domain.bill import Installment

        return Installment(sequence=self.sequence, quarter=self.quarter, amount=self.amount)


class BillStatusChangeModel(Base):
    """Append-only audit row written by every bill transition."""

    __tablename__ = "bill_status_history"

    __table_args__ = (
        Index("idx_bill_history_bill", "bill_id", "occurred_at"),
    )

    bill_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("bills.id", ondelete="CASCADE"), nullable=False
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    from_status: Mapped[str | None] = mapped_column(String(30), nullable=True)
    to_status: Mapped[str] = mapped_column(String(30), nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    actor_role: Mapped[str] = mapped_column(String(20), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def to_dto(self) -> BillStatusChange:
        from settlement_kernel.domain.bill import BillStatus, BillStatusChange

        return BillStatusChange(
            bill_id=self.bill_id,
            from_status=BillStatus(self.from_status) if self.from_status else None,
            to_status=BillStatus(self.to_status),
            action=self.action,
            actor_id=self.actor_id,
            actor_role=self.actor_role,
            occurred_at=self.occurred_at,
            reason=self.reason,
        )
