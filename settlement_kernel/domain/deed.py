"""
Deed of assignment -- tripartite signing protocol value objects.

Responsibility:
    Declares deed statuses, the signing workflow, the closed versioned
    document schema (``DeedContent``) and the frozen deed snapshot.

Architecture position:
    Kernel > Domain -- pure value objects, zero I/O.

Invariants enforced:
    - Signing order is assignor -> procuring_entity -> servicing_agent; the
      status names the slot currently awaiting a signature.
    - ``fully_executed`` and ``rejected`` are terminal.
    - ``DeedContent`` accepts exactly one (schema_version, kind) pair; any
      other payload is a ValidationError at the boundary.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from settlement_kernel.domain.parties import PartyRole, SignerRole
from settlement_kernel.domain.workflow import Transition, Workflow
from settlement_kernel.exceptions import ValidationError


class DeedStatus(str, Enum):
    PENDING_ASSIGNOR = "pending_assignor"
    PENDING_PROCURING_ENTITY = "pending_procuring_entity"
    PENDING_SERVICING_AGENT = "pending_servicing_agent"
    FULLY_EXECUTED = "fully_executed"
    REJECTED = "rejected"


PENDING_DEED_STATUSES: frozenset[DeedStatus] = frozenset({
    DeedStatus.PENDING_ASSIGNOR,
    DeedStatus.PENDING_PROCURING_ENTITY,
    DeedStatus.PENDING_SERVICING_AGENT,
})


def _reject_roles(signer: SignerRole) -> frozenset[str]:
    return frozenset({signer.party_role.value, PartyRole.ADMIN.value})


DEED_WORKFLOW = Workflow(
    name="deed",
    description="Tripartite deed of assignment signing",
    initial_state=DeedStatus.PENDING_ASSIGNOR.value,
    states=tuple(s.value for s in DeedStatus),
    transitions=(
        Transition(
            DeedStatus.PENDING_ASSIGNOR.value,
            DeedStatus.PENDING_PROCURING_ENTITY.value,
            "sign",
            frozenset({PartyRole.SUPPLIER.value}),
        ),
        Transition(
            DeedStatus.PENDING_PROCURING_ENTITY.value,
            DeedStatus.PENDING_SERVICING_AGENT.value,
            "sign",
            frozenset({PartyRole.MDA.value}),
        ),
        Transition(
            DeedStatus.PENDING_SERVICING_AGENT.value,
            DeedStatus.FULLY_EXECUTED.value,
            "sign",
            frozenset({PartyRole.TREASURY.value}),
        ),
        Transition(
            DeedStatus.PENDING_ASSIGNOR.value,
            DeedStatus.REJECTED.value,
            "reject",
            _reject_roles(SignerRole.ASSIGNOR),
        ),
        Transition(
            DeedStatus.PENDING_PROCURING_ENTITY.value,
            DeedStatus.REJECTED.value,
            "reject",
            _reject_roles(SignerRole.PROCURING_ENTITY),
        ),
        Transition(
            DeedStatus.PENDING_SERVICING_AGENT.value,
            DeedStatus.REJECTED.value,
            "reject",
            _reject_roles(SignerRole.SERVICING_AGENT),
        ),
    ),
    terminal_states=(DeedStatus.FULLY_EXECUTED.value, DeedStatus.REJECTED.value),
)


def signer_for_status(status: DeedStatus) -> SignerRole | None:
    """Slot awaiting a signature in ``status``, or None when not pending."""
    for signer in SignerRole:
        if signer.pending_status == status.value:
            return signer
    return None


@dataclass(frozen=True)
class DeedContent:
    """Closed, versioned document body of a deed of assignment.

    Contract:
        ``schema_version`` and ``kind`` are fixed; ``from_payload`` rejects
        anything else, including unknown keys.
    """

    SCHEMA_VERSION = 1
    KIND = "deed_of_assignment"

    title: str
    governing_law: str
    clauses: tuple[str, ...]
    references: tuple[str, ...] = ()
    schema_version: int = 1
    kind: str = "deed_of_assignment"

    def __post_init__(self) -> None:
        if self.schema_version != self.SCHEMA_VERSION:
            raise ValidationError(
                "document_content.schema_version",
                f"unsupported version {self.schema_version}",
            )
        if self.kind != self.KIND:
            raise ValidationError("document_content.kind", f"unsupported kind {self.kind!r}")
        if not self.title or not self.title.strip():
            raise ValidationError("document_content.title", "must not be empty")
        if not self.governing_law or not self.governing_law.strip():
            raise ValidationError("document_content.governing_law", "must not be empty")
        if not self.clauses:
            raise ValidationError("document_content.clauses", "at least one clause is required")
        object.__setattr__(self, "clauses", tuple(self.clauses))
        object.__setattr__(self, "references", tuple(self.references))
        if any(not isinstance(c, str) or not c.strip() for c in self.clauses):
            raise ValidationError("document_content.clauses", "clauses must be non-empty text")

    def to_payload(self) -> dict[str, Any]:
        return {
            "schema_version": self.schema_version,
            "kind": self.kind,
            "title": self.title,
            "governing_law": self.governing_law,
            "clauses": list(self.clauses),
            "references": list(self.references),
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> DeedContent:
        if not isinstance(payload, dict):
            raise ValidationError("document_content", "must be an object")
        allowed = {"schema_version", "kind", "title", "governing_law", "clauses", "references"}
        unknown = set(payload) - allowed
        if unknown:
            raise ValidationError(
                "document_content", f"unknown fields: {', '.join(sorted(unknown))}"
            )
        return cls(
            title=payload.get("title", ""),
            governing_law=payload.get("governing_law", ""),
            clauses=tuple(payload.get("clauses") or ()),
            references=tuple(payload.get("references") or ()),
            schema_version=payload.get("schema_version", cls.SCHEMA_VERSION),
            kind=payload.get("kind", cls.KIND),
        )


@dataclass(frozen=True)
class SignatureSlot:
    """One signer's slot on the deed; unsigned until ``signed_at`` is set."""

    role: SignerRole
    signer_id: UUID | None = None
    signature: str | None = None
    wallet_address: str | None = None
    signed_at: datetime | None = None

    @property
    def is_signed(self) -> bool:
        return self.signed_at is not None


@dataclass(frozen=True)
class ExecutionRecord:
    """Ledger evidence stamped when the final signature lands."""

    tx_hash: str
    block_number: int
    gas_used: int
    executed_at: datetime


@dataclass(frozen=True)
class Deed:
    """Immutable snapshot of a deed of assignment."""

    id: UUID
    bill_id: UUID
    content_hash: str
    status: DeedStatus
    assignor_id: UUID
    procuring_entity_id: UUID
    principal_amount: Decimal
    discount_rate: Decimal
    purchase_price: Decimal
    content: DeedContent
    network: str
    created_at: datetime
    created_by: UUID
    version: int
    assignor: SignatureSlot
    procuring_entity: SignatureSlot
    servicing_agent: SignatureSlot
    servicing_agent_id: UUID | None = None
    execution: ExecutionRecord | None = None
    rejected_by: UUID | None = None
    rejected_at: datetime | None = None
    rejection_reason: str | None = None

    def slot(self, role: SignerRole) -> SignatureSlot:
        return {
            SignerRole.ASSIGNOR: self.assignor,
            SignerRole.PROCURING_ENTITY: self.procuring_entity,
            SignerRole.SERVICING_AGENT: self.servicing_agent,
        }[role]

    @property
    def awaiting(self) -> SignerRole | None:
        """Signer whose turn it is, or None once terminal."""
        return signer_for_status(self.status)

    @property
    def is_fully_executed(self) -> bool:
        return self.status == DeedStatus.FULLY_EXECUTED


@dataclass(frozen=True)
class SigningResult:
    """Outcome of a successful ``sign_deed``."""

    deed: Deed
    signature: str
