"""
settlement_kernel.services.bill_service -- Bill lifecycle state machine.

Responsibility:
    Drives a bill from supplier submission to treasury certification (or
    rejection), enforcing the acting role for each transition, populating
    the stage fields owned by that transition, appending a status-history
    row and handing exactly one notice to the dispatcher after commit.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/ and the pure
    calculators in settlement_engines.

Invariants enforced:
    - Transitions fire only from the source states in ``BILL_WORKFLOW``;
      ``certified`` and ``rejected`` are terminal.
    - Only the roles on the transition may fire it, and a supplier may only
      act on its own bills.
    - Status, stage fields and the history row are written in one
      transaction under the bill's entity lock.
    - Approved installments sum exactly to the bill amount.

Failure modes:
    - BillNotFoundError for an unknown bill id.
    - InvalidTransitionError when the current status is not a permitted source.
    - UnauthorizedError for the wrong role or the wrong supplier.
    - ValidationError for malformed payloads.
    - ConflictError on lock timeout or a lost optimistic update.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from settlement_kernel.db.locking import EntityLockRegistry
from settlement_kernel.domain.bill import (
    BILL_WORKFLOW,
    ApprovalTerms,
    Bill,
    BillStatus,
    BillStatusChange,
    BillSubmission,
    OfferTerms,
)
from settlement_kernel.domain.clock import Clock, SystemClock
from settlement_kernel.domain.currency import CurrencyRegistry
from settlement_kernel.domain.notification import Notice, NotificationCategory, RecipientSelector
from settlement_kernel.domain.parties import Actor, PartyRole
from settlement_kernel.exceptions import (
    BillNotFoundError,
    InvalidTransitionError,
    UnauthorizedError,
    ValidationError,
)
from settlement_kernel.logging_config import LogContext, get_logger
from settlement_kernel.models.bill import (
    BillInstallmentModel,
    BillModel,
    BillStatusChangeModel,
)
from settlement_kernel.services._transaction import SessionFactory, read_only, transaction
from settlement_kernel.services.notification_dispatcher import NotificationDispatcher
from settlement_kernel.services.party_directory import PartyDirectory
from settlement_engines.installments import build_installment_schedule
from settlement_engines.pricing import suggest_purchase_price

logger = get_logger("services.bill")

ENTITY = "Bill"

Apply = Callable[[Session, BillModel, datetime], None]
Notify = Callable[[Bill, Actor], list[Notice]]


# ---------------------------------------------------------------------------
# Helpers shared with the deed service
# ---------------------------------------------------------------------------


def format_money(amount: Decimal, currency: str) -> str:
    """``KES 92,000,000.00`` -- amount truncated to the currency's minor unit."""
    info = CurrencyRegistry.get_info(currency)
    if info is not None:
        amount = info.quantize_down(amount)
    return f"{currency} {amount:,}"


def load_bill_for_update(session: Session, bill_id: UUID) -> BillModel:
    """Load a bill with a row lock (SELECT ... FOR UPDATE where supported)."""
    bill = session.execute(
        select(BillModel)
        .where(BillModel.id == bill_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if bill is None:
        raise BillNotFoundError(str(bill_id))
    return bill


def record_transition(
    session: Session,
    bill: BillModel,
    to_status: BillStatus,
    action: str,
    actor_id: UUID,
    actor_role: str,
    now: datetime,
    reason: str | None = None,
) -> None:
    """Move ``bill`` to ``to_status`` and append the matching history row.

    Flushes once, so each transition bumps the bill's version exactly once.
    """
    with session.no_autoflush:
        sequence = session.execute(
            select(func.count(BillStatusChangeModel.id)).where(
                BillStatusChangeModel.bill_id == bill.id
            )
        ).scalar_one() + 1
    session.add(
        BillStatusChangeModel(
            bill_id=bill.id,
            sequence=sequence,
            from_status=bill.status,
            to_status=to_status.value,
            action=action,
            actor_id=actor_id,
            actor_role=actor_role,
            reason=reason,
            occurred_at=now,
        )
    )
    bill.status = to_status.value
    bill.updated_by_id = actor_id
    session.flush()


def require_transition(bill: BillModel, action: str) -> BillStatus:
    """Target status of ``action`` from the bill's current status."""
    transition = BILL_WORKFLOW.find(action, bill.status)
    if transition is None:
        raise InvalidTransitionError(ENTITY, str(bill.id), action, bill.status)
    return BillStatus(transition.to_state)


def _require_text(field: str, value: str | None) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(field, "must not be empty")
    return str(value).strip()


def _require_decimal(field: str, value) -> Decimal:
    if isinstance(value, bool) or not isinstance(value, (Decimal, int)):
        raise ValidationError(field, f"must be a Decimal, got {type(value).__name__}")
    value = Decimal(value)
    if not value.is_finite():
        raise ValidationError(field, "must be finite")
    return value


def _require_rate(value) -> Decimal:
    rate = _require_decimal("discount_rate", value)
    if rate < 0 or rate > 100:
        raise ValidationError("discount_rate", f"must be within [0, 100], got {rate}")
    return rate


def _require_minor_units(field: str, amount: Decimal, currency: str) -> None:
    info = CurrencyRegistry.get_info(currency)
    if info is not None and amount != amount.quantize(info.minor_unit):
        raise ValidationError(
            field, f"{amount} has more precision than {currency} allows"
        )


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class BillService:
    """Bill lifecycle: submission, offer, agency approval, certification, rejection."""

    def __init__(
        self,
        session_factory: SessionFactory,
        directory: PartyDirectory,
        dispatcher: NotificationDispatcher,
        locks: EntityLockRegistry,
        clock: Clock | None = None,
        default_currency: str = "KES",
    ) -> None:
        self._session_factory = session_factory
        self._directory = directory
        self._dispatcher = dispatcher
        self._locks = locks
        self._clock = clock or SystemClock()
        self._default_currency = CurrencyRegistry.validate(default_currency)

    # -- submission -----------------------------------------------------

    def submit(self, submission: BillSubmission, actor: Actor) -> Bill:
        """Create a bill in ``submitted`` on behalf of its supplier."""
        with LogContext.bind(actor_id=actor.party_id, entity_type=ENTITY, operation="submit"):
            currency = self._validate_submission(submission)

            with transaction(self._session_factory, ENTITY) as session:
                self._directory.require_role(session, actor, (PartyRole.SUPPLIER,), "submit")
                if actor.party_id != submission.supplier_id:
                    raise UnauthorizedError(
                        str(actor.party_id),
                        actor.role.value,
                        "submit",
                        "suppliers may only submit their own bills",
                    )
                duplicate = session.execute(
                    select(BillModel.id).where(
                        BillModel.supplier_id == submission.supplier_id,
                        BillModel.invoice_number == submission.invoice_number.strip(),
                    )
                ).first()
                if duplicate is not None:
                    raise ValidationError(
                        "invoice_number",
                        f"{submission.invoice_number!r} was already submitted",
                    )

                now = self._clock.now()
                bill = BillModel(
                    supplier_id=submission.supplier_id,
                    procuring_entity_id=submission.procuring_entity_id,
                    invoice_number=submission.invoice_number.strip(),
                    amount=submission.amount,
                    currency=currency,
                    invoice_date=submission.invoice_date,
                    due_date=submission.due_date,
                    work_start_date=submission.work_start_date,
                    work_end_date=submission.work_end_date,
                    description=submission.description or "",
                    contract_reference=submission.contract_reference,
                    status=BillStatus.SUBMITTED.value,
                    submitted_at=now,
                    created_at=now,
                    created_by_id=actor.party_id,
                )
                session.add(bill)
                session.flush()
                session.add(
                    BillStatusChangeModel(
                        bill_id=bill.id,
                        sequence=1,
                        from_status=None,
                        to_status=BillStatus.SUBMITTED.value,
                        action="submit",
                        actor_id=actor.party_id,
                        actor_role=actor.role.value,
                        occurred_at=now,
                    )
                )
                session.flush()
                dto = bill.to_dto()

            logger.info(
                "bill_submitted",
                extra={
                    "bill_id": str(dto.id),
                    "invoice_number": dto.invoice_number,
                    "amount": dto.amount,
                    "currency": dto.currency,
                },
            )

        self._dispatcher.enqueue([
            Notice(
                recipient=RecipientSelector.holders_of(PartyRole.SPV),
                title="New Bill Available",
                message=(
                    f"Invoice {dto.invoice_number} for "
                    f"{format_money(dto.amount, dto.currency)} is open for offers."
                ),
                category=NotificationCategory.BILL,
                bill_id=dto.id,
            )
        ])
        return dto

    def _validate_submission(self, submission: BillSubmission) -> str:
        _require_text("invoice_number", submission.invoice_number)
        amount = _require_decimal("amount", submission.amount)
        if amount <= 0:
            raise ValidationError("amount", f"must be positive, got {amount}")
        try:
            currency = CurrencyRegistry.validate(submission.currency or self._default_currency)
        except ValueError as exc:
            raise ValidationError("currency", str(exc)) from exc
        _require_minor_units("amount", amount, currency)
        if submission.due_date is not None and submission.due_date < submission.invoice_date:
            raise ValidationError("due_date", "must not precede invoice_date")
        if (
            submission.work_start_date is not None
            and submission.work_end_date is not None
            and submission.work_start_date > submission.work_end_date
        ):
            raise ValidationError("work_end_date", "must not precede work_start_date")
        return currency

    # -- transitions ----------------------------------------------------

    def start_review(self, bill_id: UUID, actor: Actor) -> Bill:
        return self._run(
            bill_id,
            "start_review",
            actor,
            notify=lambda bill, _: [
                self._to_supplier(
                    bill,
                    "Bill Under Review",
                    f"Your invoice {bill.invoice_number} is being reviewed by an SPV.",
                )
            ],
        )

    def make_offer(self, bill_id: UUID, terms: OfferTerms, actor: Actor) -> Bill:
        rate = _require_rate(terms.discount_rate)
        offered = None
        if terms.offer_amount is not None:
            offered = _require_decimal("offer_amount", terms.offer_amount)
            if offered <= 0:
                raise ValidationError("offer_amount", f"must be positive, got {offered}")

        def apply(session: Session, bill: BillModel, now: datetime) -> None:
            amount = offered
            if amount is None:
                amount = suggest_purchase_price(
                    amount=bill.amount, discount_rate=rate, currency=bill.currency
                )
            _require_minor_units("offer_amount", amount, bill.currency)
            if amount > bill.amount:
                raise ValidationError("offer_amount", "cannot exceed the bill amount")
            bill.spv_id = actor.party_id
            bill.offer_amount = amount
            bill.offer_discount_rate = rate
            bill.offer_date = now

        return self._run(
            bill_id,
            "make_offer",
            actor,
            apply=apply,
            notify=lambda bill, _: [
                self._to_supplier(
                    bill,
                    "New Offer Received",
                    f"You received an offer of {format_money(bill.offer_amount, bill.currency)} "
                    f"for invoice {bill.invoice_number}.",
                )
            ],
        )

    def accept_offer(self, bill_id: UUID, actor: Actor) -> Bill:
        def apply(session: Session, bill: BillModel, now: datetime) -> None:
            bill.offer_accepted_at = now

        return self._run(
            bill_id,
            "accept_offer",
            actor,
            apply=apply,
            notify=lambda bill, _: [
                Notice(
                    recipient=RecipientSelector.party(bill.procuring_entity_id),
                    title="Offer Accepted - Approval Required",
                    message=(
                        f"The supplier accepted an offer on invoice {bill.invoice_number}. "
                        f"Awaiting your approval and payment terms."
                    ),
                    category=NotificationCategory.BILL,
                    bill_id=bill.id,
                )
            ],
        )

    def begin_agency_review(self, bill_id: UUID, actor: Actor) -> Bill:
        return self._run(
            bill_id,
            "begin_agency_review",
            actor,
            notify=lambda bill, _: [
                self._to_supplier(
                    bill,
                    "Bill Under Agency Review",
                    f"Your invoice {bill.invoice_number} is being reviewed by the procuring entity.",
                )
            ],
        )

    def approve(self, bill_id: UUID, terms: ApprovalTerms, actor: Actor) -> Bill:
        quarters = terms.payment_quarters
        if isinstance(quarters, bool) or not isinstance(quarters, int) or quarters <= 0:
            raise ValidationError("payment_quarters", f"must be a positive integer, got {quarters!r}")
        start_quarter = _require_text("start_quarter", terms.start_quarter)

        def apply(session: Session, bill: BillModel, now: datetime) -> None:
            try:
                schedule = build_installment_schedule(
                    amount=bill.amount,
                    count=quarters,
                    start_quarter=start_quarter,
                    currency=bill.currency,
                )
            except ValueError as exc:
                raise ValidationError("start_quarter", str(exc)) from exc
            bill.payment_quarters = quarters
            bill.payment_start_quarter = schedule[0].quarter
            bill.mda_approved_by = actor.party_id
            bill.mda_approved_at = now
            bill.mda_notes = terms.notes
            bill.installments = [
                BillInstallmentModel(
                    sequence=item.sequence,
                    quarter=item.quarter,
                    amount=item.amount,
                )
                for item in schedule
            ]

        return self._run(
            bill_id,
            "approve",
            actor,
            apply=apply,
            notify=lambda bill, _: self._to_spv(
                bill,
                "MDA Approved Bill",
                f"Invoice {bill.invoice_number} has been approved. Payment terms: "
                f"{bill.payment_quarters} quarters starting {bill.payment_start_quarter}.",
            ),
        )

    def set_terms(self, bill_id: UUID, actor: Actor) -> Bill:
        def apply(session: Session, bill: BillModel, now: datetime) -> None:
            bill.terms_set_at = now

        return self._run(
            bill_id,
            "set_terms",
            actor,
            apply=apply,
            notify=lambda bill, _: self._to_spv(
                bill,
                "Payment Terms Set",
                f"Payment terms for invoice {bill.invoice_number} are final. "
                f"The Deed of Assignment can now be prepared.",
            ),
        )

    def begin_treasury_review(self, bill_id: UUID, actor: Actor) -> Bill:
        return self._run(
            bill_id,
            "begin_treasury_review",
            actor,
            notify=lambda bill, _: self._to_spv(
                bill,
                "Treasury Review Started",
                f"Treasury is reviewing invoice {bill.invoice_number} for certification.",
            ),
        )

    def certify(self, bill_id: UUID, certificate_number: str, actor: Actor) -> Bill:
        certificate_number = _require_text("certificate_number", certificate_number)

        def apply(session: Session, bill: BillModel, now: datetime) -> None:
            stamp_certification(bill, certificate_number, actor.party_id, now)

        return self._run(
            bill_id,
            "certify",
            actor,
            apply=apply,
            notify=lambda bill, _: self._to_spv(
                bill,
                "Bill Certified by Treasury",
                f"Invoice {bill.invoice_number} has been certified. "
                f"Certificate: {bill.certificate_number}.",
            ),
        )

    def reject(self, bill_id: UUID, reason: str, actor: Actor) -> Bill:
        reason = _require_text("reason", reason)

        def apply(session: Session, bill: BillModel, now: datetime) -> None:
            bill.rejected_by = actor.party_id
            bill.rejected_at = now
            bill.rejection_reason = reason

        def notify(bill: Bill, by: Actor) -> list[Notice]:
            if by.role == PartyRole.SUPPLIER:
                return self._to_spv(
                    bill,
                    "Offer Rejected",
                    f"Your offer on invoice {bill.invoice_number} was rejected. Reason: {reason}",
                )
            return [
                self._to_supplier(
                    bill,
                    "Bill Rejected",
                    f"Your invoice {bill.invoice_number} has been rejected. Reason: {reason}",
                )
            ]

        return self._run(bill_id, "reject", actor, apply=apply, notify=notify, reason=reason)

    # -- queries --------------------------------------------------------

    def get_bill(self, bill_id: UUID) -> Bill:
        with read_only(self._session_factory) as session:
            bill = session.get(BillModel, bill_id)
            if bill is None:
                raise BillNotFoundError(str(bill_id))
            return bill.to_dto()

    def list_bills(
        self,
        status: BillStatus | str | None = None,
        supplier_id: UUID | None = None,
        procuring_entity_id: UUID | None = None,
    ) -> tuple[Bill, ...]:
        stmt = select(BillModel)
        if status is not None:
            try:
                stmt = stmt.where(BillModel.status == BillStatus(status).value)
            except ValueError as exc:
                raise ValidationError("status", f"unknown bill status {status!r}") from exc
        if supplier_id is not None:
            stmt = stmt.where(BillModel.supplier_id == supplier_id)
        if procuring_entity_id is not None:
            stmt = stmt.where(BillModel.procuring_entity_id == procuring_entity_id)
        stmt = stmt.order_by(BillModel.submitted_at, BillModel.invoice_number)
        with read_only(self._session_factory) as session:
            return tuple(b.to_dto() for b in session.execute(stmt).scalars())

    def get_history(self, bill_id: UUID) -> tuple[BillStatusChange, ...]:
        with read_only(self._session_factory) as session:
            if session.get(BillModel, bill_id) is None:
                raise BillNotFoundError(str(bill_id))
            rows = session.execute(
                select(BillStatusChangeModel)
                .where(BillStatusChangeModel.bill_id == bill_id)
                .order_by(BillStatusChangeModel.sequence)
            ).scalars()
            return tuple(r.to_dto() for r in rows)

    # -- internals ------------------------------------------------------

    def _run(
        self,
        bill_id: UUID,
        action: str,
        actor: Actor,
        apply: Apply | None = None,
        notify: Notify | None = None,
        reason: str | None = None,
    ) -> Bill:
        with LogContext.bind(
            actor_id=actor.party_id,
            entity_type=ENTITY,
            entity_id=bill_id,
            operation=action,
        ):
            with self._locks.hold(ENTITY, bill_id):
                with transaction(self._session_factory, ENTITY, bill_id) as session:
                    bill = load_bill_for_update(session, bill_id)
                    from_status = bill.status
                    to_status = require_transition(bill, action)
                    self._authorize(session, bill, action, actor)
                    now = self._clock.now()
                    if apply is not None:
                        apply(session, bill, now)
                    record_transition(
                        session, bill, to_status, action,
                        actor.party_id, actor.role.value, now, reason,
                    )
                    session.flush()
                    dto = bill.to_dto()

            logger.info(
                "bill_transitioned",
                extra={
                    "bill_id": str(bill_id),
                    "action": action,
                    "from_status": from_status,
                    "to_status": dto.status.value,
                    "version": dto.version,
                },
            )

        if notify is not None:
            self._dispatcher.enqueue(notify(dto, actor))
        return dto

    def _authorize(self, session: Session, bill: BillModel, action: str, actor: Actor) -> None:
        transition = BILL_WORKFLOW.find(action, bill.status)
        self._directory.require_role(session, actor, transition.roles, action)
        if actor.role == PartyRole.SUPPLIER and actor.party_id != bill.supplier_id:
            raise UnauthorizedError(
                str(actor.party_id),
                actor.role.value,
                action,
                "not the supplier of this bill",
            )

    @staticmethod
    def _to_supplier(bill: Bill, title: str, message: str) -> Notice:
        return Notice(
            recipient=RecipientSelector.party(bill.supplier_id),
            title=title,
            message=message,
            category=NotificationCategory.BILL,
            bill_id=bill.id,
        )

    @staticmethod
    def _to_spv(bill: Bill, title: str, message: str) -> list[Notice]:
        if bill.spv_id is None:
            return []
        return [
            Notice(
                recipient=RecipientSelector.party(bill.spv_id),
                title=title,
                message=message,
                category=NotificationCategory.BILL,
                bill_id=bill.id,
            )
        ]


def stamp_certification(
    bill: BillModel,
    certificate_number: str,
    certifier_id: UUID,
    now: datetime,
) -> None:
    """Populate the certification stage fields."""
    bill.certificate_number = certificate_number
    bill.treasury_certified_by = certifier_id
    bill.treasury_certified_at = now
