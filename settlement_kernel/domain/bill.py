"""
Bill -- lifecycle states, workflow and value objects for a verified payable.

Responsibility:
    Declares the bill state machine (``BILL_WORKFLOW``), the rejection
    authority table, and the frozen DTOs passed between services and
    callers.

Architecture position:
    Kernel > Domain -- pure value objects, zero I/O.

Invariants enforced:
    - ``certified`` and ``rejected`` are terminal: no transition leaves them.
    - ``reject`` is reachable from every non-terminal status, and only for
      the roles listed in ``REJECTION_AUTHORITY``.
    - ``certify_by_deed`` lets a fully executed deed certify a bill that
      never reached ``terms_set``.
    - Stage fields on ``Bill`` are optional; each is populated only by the
      transition that owns it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from settlement_kernel.domain.parties import PartyRole
from settlement_kernel.domain.workflow import Transition, Workflow


class BillStatus(str, Enum):
    """Bill lifecycle status, in lifecycle order."""

    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    OFFER_MADE = "offer_made"
    OFFER_ACCEPTED = "offer_accepted"
    MDA_REVIEWING = "mda_reviewing"
    MDA_APPROVED = "mda_approved"
    TERMS_SET = "terms_set"
    AGREEMENT_SENT = "agreement_sent"
    TREASURY_REVIEWING = "treasury_reviewing"
    CERTIFIED = "certified"
    REJECTED = "rejected"


TERMINAL_BILL_STATUSES: frozenset[BillStatus] = frozenset({
    BillStatus.CERTIFIED,
    BillStatus.REJECTED,
})

# Statuses from which a deed of assignment may be drafted: the supplier has
# accepted the SPV's offer and the bill is not yet with treasury.
DEED_ELIGIBLE_STATUSES: frozenset[BillStatus] = frozenset({
    BillStatus.OFFER_ACCEPTED,
    BillStatus.MDA_REVIEWING,
    BillStatus.MDA_APPROVED,
    BillStatus.TERMS_SET,
})

_SPV = frozenset({PartyRole.SPV.value})
_SUPPLIER = frozenset({PartyRole.SUPPLIER.value})
_MDA = frozenset({PartyRole.MDA.value})
_TREASURY = frozenset({PartyRole.TREASURY.value})

REJECTION_AUTHORITY: dict[BillStatus, frozenset[PartyRole]] = {
    BillStatus.SUBMITTED: frozenset({PartyRole.SPV, PartyRole.ADMIN}),
    BillStatus.UNDER_REVIEW: frozenset({PartyRole.SPV, PartyRole.ADMIN}),
    BillStatus.OFFER_MADE: frozenset(
        {PartyRole.SUPPLIER, PartyRole.SPV, PartyRole.ADMIN}
    ),
    BillStatus.OFFER_ACCEPTED: frozenset({PartyRole.MDA, PartyRole.ADMIN}),
    BillStatus.MDA_REVIEWING: frozenset({PartyRole.MDA, PartyRole.ADMIN}),
    BillStatus.MDA_APPROVED: frozenset({PartyRole.MDA, PartyRole.ADMIN}),
    BillStatus.TERMS_SET: frozenset({PartyRole.MDA, PartyRole.ADMIN}),
    BillStatus.AGREEMENT_SENT: frozenset({PartyRole.TREASURY, PartyRole.ADMIN}),
    BillStatus.TREASURY_REVIEWING: frozenset({PartyRole.TREASURY, PartyRole.ADMIN}),
}


def _t(source: BillStatus, target: BillStatus, action: str, roles) -> Transition:
    return Transition(
        from_state=source.value,
        to_state=target.value,
        action=action,
        roles=frozenset(r.value if isinstance(r, PartyRole) else r for r in roles),
    )


BILL_WORKFLOW = Workflow(
    name="bill",
    description="Verified government payable from submission to certification",
    initial_state=BillStatus.SUBMITTED.value,
    states=tuple(s.value for s in BillStatus),
    transitions=(
        _t(BillStatus.SUBMITTED, BillStatus.UNDER_REVIEW, "start_review", _SPV),
        _t(BillStatus.SUBMITTED, BillStatus.OFFER_MADE, "make_offer", _SPV),
        _t(BillStatus.UNDER_REVIEW, BillStatus.OFFER_MADE, "make_offer", _SPV),
        _t(BillStatus.OFFER_MADE, BillStatus.OFFER_ACCEPTED, "accept_offer", _SUPPLIER),
        _t(BillStatus.OFFER_ACCEPTED, BillStatus.MDA_REVIEWING, "begin_agency_review", _MDA),
        _t(BillStatus.OFFER_ACCEPTED, BillStatus.MDA_APPROVED, "approve", _MDA),
        _t(BillStatus.MDA_REVIEWING, BillStatus.MDA_APPROVED, "approve", _MDA),
        _t(BillStatus.MDA_APPROVED, BillStatus.TERMS_SET, "set_terms", _MDA),
        _t(BillStatus.TERMS_SET, BillStatus.AGREEMENT_SENT, "send_agreement", _SPV),
        _t(BillStatus.AGREEMENT_SENT, BillStatus.TREASURY_REVIEWING, "begin_treasury_review", _TREASURY),
        _t(BillStatus.AGREEMENT_SENT, BillStatus.CERTIFIED, "certify", _TREASURY),
        _t(BillStatus.TREASURY_REVIEWING, BillStatus.CERTIFIED, "certify", _TREASURY),
        # A fully executed deed certifies a bill still short of terms_set.
        *(
            _t(source, BillStatus.CERTIFIED, "certify_by_deed", _TREASURY)
            for source in (
                BillStatus.OFFER_ACCEPTED,
                BillStatus.MDA_REVIEWING,
                BillStatus.MDA_APPROVED,
            )
        ),
        *(
            _t(source, BillStatus.REJECTED, "reject", roles)
            for source, roles in REJECTION_AUTHORITY.items()
        ),
    ),
    terminal_states=tuple(s.value for s in TERMINAL_BILL_STATUSES),
)


@dataclass(frozen=True)
class BillSubmission:
    """Supplier's payload for a new bill; validated by the bill service."""

    supplier_id: UUID
    procuring_entity_id: UUID
    invoice_number: str
    amount: Decimal
    invoice_date: date
    currency: str | None = None
    due_date: date | None = None
    work_start_date: date | None = None
    work_end_date: date | None = None
    description: str = ""
    contract_reference: str | None = None


@dataclass(frozen=True)
class OfferTerms:
    """SPV purchase offer.

    When ``offer_amount`` is omitted it is derived from the discount rate as
    ``amount * (1 - rate / 100)`` in the bill's currency.
    """

    discount_rate: Decimal
    offer_amount: Decimal | None = None


@dataclass(frozen=True)
class ApprovalTerms:
    """Agency approval: quarterly payment plan for the bill amount."""

    payment_quarters: int
    start_quarter: str
    notes: str | None = None


@dataclass(frozen=True)
class Installment:
    """One quarterly payment of an approved bill."""

    sequence: int
    quarter: str
    amount: Decimal


@dataclass(frozen=True)
class BillStatusChange:
    """Audit trail row appended by every bill transition."""

    bill_id: UUID
    from_status: BillStatus | None
    to_status: BillStatus
    action: str
    actor_id: UUID
    actor_role: str
    occurred_at: datetime
    reason: str | None = None


@dataclass(frozen=True)
class Bill:
    """Immutable snapshot of a bill and its stage fields."""

    id: UUID
    supplier_id: UUID
    procuring_entity_id: UUID
    invoice_number: str
    amount: Decimal
    currency: str
    invoice_date: date
    status: BillStatus
    version: int
    submitted_at: datetime
    due_date: date | None = None
    work_start_date: date | None = None
    work_end_date: date | None = None
    description: str = ""
    contract_reference: str | None = None
    # Offer
    spv_id: UUID | None = None
    offer_amount: Decimal | None = None
    offer_discount_rate: Decimal | None = None
    offer_date: datetime | None = None
    offer_accepted_at: datetime | None = None
    # Agency approval
    payment_quarters: int | None = None
    payment_start_quarter: str | None = None
    mda_approved_by: UUID | None = None
    mda_approved_at: datetime | None = None
    mda_notes: str | None = None
    terms_set_at: datetime | None = None
    installments: tuple[Installment, ...] = field(default_factory=tuple)
    # Agreement and certification
    agreement_sent_at: datetime | None = None
    certificate_number: str | None = None
    treasury_certified_by: UUID | None = None
    treasury_certified_at: datetime | None = None
    # Rejection
    rejected_by: UUID | None = None
    rejected_at: datetime | None = None
    rejection_reason: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_BILL_STATUSES
