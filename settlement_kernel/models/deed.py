"""
Module: settlement_kernel.models.deed
Responsibility: ORM persistence for tripartite deeds of assignment: the
    immutable content hash, three signature slots and execution evidence.
Architecture position: Kernel > Models.  May import from db/base.py only
    (domain DTOs are imported lazily inside to_dto).

Invariants enforced:
    - content_hash is written once at creation and never updated.
    - Optimistic versioning via ``version`` (version_id_col): two signers
      racing on the same slot cannot both commit.
    - Evidence columns stay NULL until the deed is fully executed.

Failure modes:
    - StaleDataError on flush when ``version`` moved underneath the session.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import JSON, BigInteger, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from settlement_kernel.db.base import TrackedBase, UTCDateTime, UUIDString

if TYPE_CHECKING:
    from settlement_kernel.domain.deed import Deed


class DeedModel(TrackedBase):
    """A deed of assignment over one bill."""

    __tablename__ = "deeds"

    __table_args__ = (
        Index("idx_deed_bill", "bill_id"),
        Index("idx_deed_status", "status"),
    )

    bill_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("bills.id"), nullable=False
    )
    content_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False)

    assignor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    procuring_entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    servicing_agent_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    principal_amount: Mapped[Decimal] = mapped_column(nullable=False)
    discount_rate: Mapped[Decimal] = mapped_column(nullable=False)
    purchase_price: Mapped[Decimal] = mapped_column(nullable=False)
    document_content: Mapped[dict] = mapped_column(JSON, nullable=False)
    network: Mapped[str] = mapped_column(String(50), nullable=False)

    # Assignor slot
    assignor_signature: Mapped[str | None] = mapped_column(String(64), nullable=True)
    assignor_wallet: Mapped[str | None] = mapped_column(String(42), nullable=True)
    assignor_signed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    # Procuring entity slot
    procuring_entity_signature: Mapped[str | None] = mapped_column(String(64), nullable=True)
    procuring_entity_wallet: Mapped[str | None] = mapped_column(String(42), nullable=True)
    procuring_entity_signed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    # Servicing agent slot
    servicing_agent_signature: Mapped[str | None] = mapped_column(String(64), nullable=True)
    servicing_agent_wallet: Mapped[str | None] = mapped_column(String(42), nullable=True)
    servicing_agent_signed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    # Execution evidence
    tx_hash: Mapped[str | None] = mapped_column(String(66), nullable=True)
    block_number: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    gas_used: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    executed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    # Rejection
    rejected_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    def slot_columns(self, role: str) -> tuple[str, str, str]:
        """Attribute names (signature, wallet, signed_at) for a signer slot."""
        return (f"{role}_signature", f"{role}_wallet", f"{role}_signed_at")

    def to_dto(self) -> Deed:
        """Convert ORM model to frozen domain DTO."""
        from settlement_kernel.domain.deed import (
            Deed,
            DeedContent,
            DeedStatus,
            ExecutionRecord,
            SignatureSlot,
        )
        from settlement_kernel.domain.parties import SignerRole

        def slot(role: SignerRole, signer_id: UUID | None) -> SignatureSlot:
            signature, wallet, signed_at = (
                getattr(self, name) for name in self.slot_columns(role.value)
            )
            return SignatureSlot(
                role=role,
                signer_id=signer_id if signed_at is not None else None,
                signature=signature,
                wallet_address=wallet,
                signed_at=signed_at,
            )

        execution = None
        if self.executed_at is not None:
            execution = ExecutionRecord(
                tx_hash=self.tx_hash,
                block_number=self.block_number,
                gas_used=self.gas_used,
                executed_at=self.executed_at,
            )

        return Deed(
            id=self.id,
            bill_id=self.bill_id,
            content_hash=self.content_hash,
            status=DeedStatus(self.status),
            assignor_id=self.assignor_id,
            procuring_entity_id=self.procuring_entity_id,
            principal_amount=self.principal_amount,
            discount_rate=self.discount_rate,
            purchase_price=self.purchase_price,
            content=DeedContent.from_payload(self.document_content),
            network=self.network,
            created_at=self.created_at,
            created_by=self.created_by_id,
            version=self.version,
            assignor=slot(SignerRole.ASSIGNOR, self.assignor_id),
            procuring_entity=slot(SignerRole.PROCURING_ENTITY, self.procuring_entity_id),
            servicing_agent=slot(SignerRole.SERVICING_AGENT, self.servicing_agent_id),
            servicing_agent_id=self.servicing_agent_id,
            execution=execution,
            rejected_by=self.rejected_by,
            rejected_at=self.rejected_at,
            rejection_reason=self.rejection_reason,
        )

    def __repr__(self) -> str:
        return f"<Deed {self.id} bill={self.bill_id}: {self.status} v{self.version}>"
