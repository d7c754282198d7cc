"""
Bill lifecycle state machine tests.

Covers submission validation, every forward transition with its stage
fields, role and identity enforcement, rejection from every non-terminal
status and the status history.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from settlement_kernel.domain.bill import (
    ApprovalTerms,
    BillStatus,
    BillSubmission,
    OfferTerms,
)
from settlement_kernel.domain.parties import Actor, PartyRole
from settlement_kernel.exceptions import (
    BillNotFoundError,
    InvalidTransitionError,
    UnauthorizedError,
    ValidationError,
)


class TestSubmission:
    def test_submit_creates_submitted_bill(self, submit_bill, supplier, mda, clock):
        bill = submit_bill()
        assert bill.status == BillStatus.SUBMITTED
        assert bill.supplier_id == supplier.party_id
        assert bill.procuring_entity_id == mda.party_id
        assert bill.amount == Decimal("92000000")
        assert bill.currency == "KES"
        assert bill.submitted_at == clock.now()
        assert bill.version == 1
        assert bill.spv_id is None and bill.installments == ()

    def test_submit_notifies_every_spv(self, submit_bill, spv, directory, feed):
        other = uuid4()
        directory.assign_role(other, PartyRole.SPV)
        bill = submit_bill()
        for party_id in (spv.party_id, other):
            (record,) = feed.list_for(party_id)
            assert record.title == "New Bill Available"
            assert record.bill_id == bill.id
            assert "KES 92,000,000.00" in record.message

    def test_history_starts_with_submit(self, submit_bill, bill_service, supplier):
        bill = submit_bill()
        (entry,) = bill_service.get_history(bill.id)
        assert entry.from_status is None
        assert entry.to_status == BillStatus.SUBMITTED
        assert entry.actor_id == supplier.party_id

    def test_currency_defaults_and_normalizes(self, submit_bill):
        assert submit_bill(currency="usd").currency == "USD"

    @pytest.mark.parametrize(
        "overrides,field",
        [
            ({"amount": Decimal("0")}, "amount"),
            ({"amount": Decimal("-5")}, "amount"),
            ({"amount": 10.5}, "amount"),
            ({"amount": Decimal("10.001")}, "amount"),
            ({"currency": "XYZ"}, "currency"),
            ({"invoice_number": "  "}, "invoice_number"),
            ({"due_date": date(2025, 5, 1)}, "due_date"),
            ({"work_start_date": date(2025, 5, 2), "work_end_date": date(2025, 5, 1)}, "work_end_date"),
        ],
    )
    def test_invalid_submission(self, submit_bill, overrides, field):
        with pytest.raises(ValidationError) as exc_info:
            submit_bill(**overrides)
        assert exc_info.value.field == field

    def test_duplicate_invoice_rejected(self, submit_bill):
        submit_bill(invoice_number="INV-DUP")
        with pytest.raises(ValidationError) as exc_info:
            submit_bill(invoice_number="INV-DUP")
        assert exc_info.value.field == "invoice_number"

    def test_non_supplier_cannot_submit(self, bill_service, supplier, mda, spv):
        submission = BillSubmission(
            supplier_id=supplier.party_id,
            procuring_entity_id=mda.party_id,
            invoice_number="INV-X",
            amount=Decimal("100"),
            invoice_date=date(2025, 6, 1),
        )
        with pytest.raises(UnauthorizedError):
            bill_service.submit(submission, spv)

    def test_supplier_cannot_submit_for_another(self, bill_service, supplier, mda, directory):
        other = Actor(uuid4(), PartyRole.SUPPLIER)
        directory.assign_role(other.party_id, PartyRole.SUPPLIER)
        submission = BillSubmission(
            supplier_id=supplier.party_id,
            procuring_entity_id=mda.party_id,
            invoice_number="INV-X",
            amount=Decimal("100"),
            invoice_date=date(2025, 6, 1),
        )
        with pytest.raises(UnauthorizedError):
            bill_service.submit(submission, other)

    def test_claimed_role_must_be_held(self, bill_service, mda):
        impostor = Actor(uuid4(), PartyRole.SUPPLIER)
        submission = BillSubmission(
            supplier_id=impostor.party_id,
            procuring_entity_id=mda.party_id,
            invoice_number="INV-X",
            amount=Decimal("100"),
            invoice_date=date(2025, 6, 1),
        )
        with pytest.raises(UnauthorizedError) as exc_info:
            bill_service.submit(submission, impostor)
        assert "not assigned" in exc_info.value.reason


class TestForwardTransitions:
    def test_offer_defaults_from_discount_rate(self, submit_bill, bill_service, spv, feed, supplier):
        bill = submit_bill()
        bill = bill_service.make_offer(bill.id, OfferTerms(discount_rate=Decimal("5")), spv)
        assert bill.status == BillStatus.OFFER_MADE
        assert bill.spv_id == spv.party_id
        assert bill.offer_amount == Decimal("87400000.00")
        assert bill.offer_discount_rate == Decimal("5")
        assert bill.offer_date is not None
        assert feed.list_for(supplier.party_id)[0].title == "New Offer Received"

    def test_offer_after_review(self, submit_bill, advance_bill):
        bill = advance_bill(submit_bill(), BillStatus.OFFER_MADE)
        assert bill.status == BillStatus.OFFER_MADE

    def test_explicit_offer_amount(self, submit_bill, bill_service, spv):
        bill = bill_service.make_offer(
            submit_bill().id,
            OfferTerms(discount_rate=Decimal("3"), offer_amount=Decimal("90000000")),
            spv,
        )
        assert bill.offer_amount == Decimal("90000000")

    def test_offer_cannot_exceed_amount(self, submit_bill, bill_service, spv):
        bill = submit_bill()
        with pytest.raises(ValidationError):
            bill_service.make_offer(
                bill.id,
                OfferTerms(discount_rate=Decimal("0"), offer_amount=Decimal("92000000.01")),
                spv,
            )
        assert bill_service.get_bill(bill.id).status == BillStatus.SUBMITTED

    @pytest.mark.parametrize("rate", [Decimal("-1"), Decimal("101"), 5.0])
    def test_invalid_discount_rate(self, submit_bill, bill_service, spv, rate):
        with pytest.raises(ValidationError):
            bill_service.make_offer(submit_bill().id, OfferTerms(discount_rate=rate), spv)

    def test_accept_offer_notifies_procuring_entity(self, submit_bill, advance_bill, feed, mda):
        bill = advance_bill(submit_bill(), BillStatus.OFFER_ACCEPTED)
        assert bill.offer_accepted_at is not None
        titles = [r.title for r in feed.list_for(mda.party_id)]
        assert "Offer Accepted - Approval Required" in titles

    def test_approve_builds_installments(self, submit_bill, advance_bill, feed, spv):
        bill = advance_bill(submit_bill(), BillStatus.MDA_APPROVED)
        assert bill.payment_quarters == 6
        assert bill.payment_start_quarter == "Q3 2025"
        assert [i.quarter for i in bill.installments] == [
            "Q3 2025", "Q4 2025", "Q1 2026", "Q2 2026", "Q3 2026", "Q4 2026",
        ]
        assert sum(i.amount for i in bill.installments) == bill.amount
        assert bill.installments[-1].amount == Decimal("15333333.35")
        assert "MDA Approved Bill" in [r.title for r in feed.list_for(spv.party_id)]

    def test_approve_directly_after_acceptance(self, submit_bill, advance_bill, bill_service, mda):
        bill = advance_bill(submit_bill(), BillStatus.OFFER_ACCEPTED)
        bill = bill_service.approve(
            bill.id, ApprovalTerms(payment_quarters=4, start_quarter="Q1 2026"), mda
        )
        assert bill.status == BillStatus.MDA_APPROVED
        assert len(bill.installments) == 4

    @pytest.mark.parametrize(
        "terms,field",
        [
            (ApprovalTerms(payment_quarters=0, start_quarter="Q3 2025"), "payment_quarters"),
            (ApprovalTerms(payment_quarters=4, start_quarter="Q5 2025"), "start_quarter"),
            (ApprovalTerms(payment_quarters=4, start_quarter=""), "start_quarter"),
        ],
    )
    def test_invalid_approval_leaves_bill_unchanged(
        self, submit_bill, advance_bill, bill_service, mda, terms, field
    ):
        bill = advance_bill(submit_bill(), BillStatus.MDA_REVIEWING)
        with pytest.raises(ValidationError) as exc_info:
            bill_service.approve(bill.id, terms, mda)
        assert exc_info.value.field == field
        after = bill_service.get_bill(bill.id)
        assert after.status == BillStatus.MDA_REVIEWING
        assert after.installments == ()
        assert after.version == bill.version

    def test_set_terms(self, submit_bill, advance_bill):
        bill = advance_bill(submit_bill(), BillStatus.TERMS_SET)
        assert bill.terms_set_at is not None

    def test_treasury_certification_after_agreement(
        self, submit_bill, advance_bill, create_deed, bill_service, treasury
    ):
        bill = advance_bill(submit_bill(), BillStatus.TERMS_SET)
        create_deed(bill)
        bill = bill_service.get_bill(bill.id)
        assert bill.status == BillStatus.AGREEMENT_SENT
        assert bill.agreement_sent_at is not None
        bill = bill_service.begin_treasury_review(bill.id, treasury)
        bill = bill_service.certify(bill.id, "CERT-2025-00001", treasury)
        assert bill.status == BillStatus.CERTIFIED
        assert bill.certificate_number == "CERT-2025-00001"
        assert bill.treasury_certified_by == treasury.party_id
        assert bill.is_terminal

    def test_version_and_history_track_transitions(self, submit_bill, advance_bill, bill_service):
        bill = advance_bill(submit_bill(), BillStatus.TERMS_SET)
        history = bill_service.get_history(bill.id)
        assert [h.to_status for h in history] == [
            BillStatus.SUBMITTED,
            BillStatus.UNDER_REVIEW,
            BillStatus.OFFER_MADE,
            BillStatus.OFFER_ACCEPTED,
            BillStatus.MDA_REVIEWING,
            BillStatus.MDA_APPROVED,
            BillStatus.TERMS_SET,
        ]
        assert all(b.from_status == a.to_status for a, b in zip(history, history[1:]))
        assert bill.version == len(history)


class TestAuthority:
    def test_status_checked_before_role(self, submit_bill, bill_service, supplier):
        bill = submit_bill()
        with pytest.raises(InvalidTransitionError) as exc_info:
            bill_service.set_terms(bill.id, supplier)
        assert exc_info.value.current_status == BillStatus.SUBMITTED.value

    def test_wrong_role(self, submit_bill, bill_service, mda):
        with pytest.raises(UnauthorizedError):
            bill_service.make_offer(submit_bill().id, OfferTerms(discount_rate=Decimal("5")), mda)

    def test_other_supplier_cannot_accept(self, submit_bill, advance_bill, bill_service, directory):
        bill = advance_bill(submit_bill(), BillStatus.OFFER_MADE)
        other = Actor(uuid4(), PartyRole.SUPPLIER)
        directory.assign_role(other.party_id, PartyRole.SUPPLIER)
        with pytest.raises(UnauthorizedError):
            bill_service.accept_offer(bill.id, other)
        assert bill_service.get_bill(bill.id).status == BillStatus.OFFER_MADE

    def test_unknown_bill(self, bill_service, spv):
        with pytest.raises(BillNotFoundError):
            bill_service.start_review(uuid4(), spv)
        with pytest.raises(BillNotFoundError):
            bill_service.get_bill(uuid4())


REJECTORS = {
    BillStatus.SUBMITTED: "spv",
    BillStatus.UNDER_REVIEW: "spv",
    BillStatus.OFFER_MADE: "supplier",
    BillStatus.OFFER_ACCEPTED: "mda",
    BillStatus.MDA_REVIEWING: "mda",
    BillStatus.MDA_APPROVED: "mda",
    BillStatus.TERMS_SET: "mda",
    BillStatus.AGREEMENT_SENT: "treasury",
    BillStatus.TREASURY_REVIEWING: "treasury",
}


class TestRejection:
    @pytest.fixture
    def bill_at(self, submit_bill, advance_bill, create_deed, bill_service, treasury):
        def _at(status):
            if status in (BillStatus.AGREEMENT_SENT, BillStatus.TREASURY_REVIEWING):
                bill = advance_bill(submit_bill(), BillStatus.TERMS_SET)
                create_deed(bill)
                if status == BillStatus.TREASURY_REVIEWING:
                    bill_service.begin_treasury_review(bill.id, treasury)
                return bill_service.get_bill(bill.id)
            return advance_bill(submit_bill(), status)

        return _at

    @pytest.mark.parametrize("status", list(REJECTORS))
    def test_reject_from_every_non_terminal_status(
        self, request, bill_at, bill_service, status, spv
    ):
        bill = bill_at(status)
        assert bill.status == status
        rejector = request.getfixturevalue(REJECTORS[status])
        rejected = bill_service.reject(bill.id, "Documents incomplete", rejector)
        assert rejected.status == BillStatus.REJECTED
        assert rejected.rejected_by == rejector.party_id
        assert rejected.rejection_reason == "Documents incomplete"
        history = bill_service.get_history(bill.id)
        assert history[-1].reason == "Documents incomplete"

        with pytest.raises(InvalidTransitionError):
            bill_service.reject(bill.id, "again", rejector)
        with pytest.raises(InvalidTransitionError):
            bill_service.make_offer(bill.id, OfferTerms(discount_rate=Decimal("1")), spv)

    @pytest.mark.parametrize("status", list(REJECTORS))
    def test_admin_may_reject_anywhere(self, bill_at, bill_service, admin, status):
        bill = bill_at(status)
        assert bill_service.reject(bill.id, "Fraud review", admin).status == BillStatus.REJECTED

    def test_supplier_cannot_reject_before_offer(self, submit_bill, bill_service, supplier):
        with pytest.raises(UnauthorizedError):
            bill_service.reject(submit_bill().id, "changed my mind", supplier)

    def test_reason_required(self, submit_bill, bill_service, spv):
        with pytest.raises(ValidationError):
            bill_service.reject(submit_bill().id, "  ", spv)

    def test_supplier_rejection_notifies_spv(self, submit_bill, advance_bill, bill_service, supplier, spv, feed):
        bill = advance_bill(submit_bill(), BillStatus.OFFER_MADE)
        bill_service.reject(bill.id, "Rate too high", supplier)
        record = feed.list_for(spv.party_id)[0]
        assert record.title == "Offer Rejected"
        assert "Rate too high" in record.message

    def test_other_rejection_notifies_supplier(self, submit_bill, bill_service, spv, supplier, feed):
        bill = submit_bill()
        bill_service.reject(bill.id, "Not eligible", spv)
        assert feed.list_for(supplier.party_id)[0].title == "Bill Rejected"


class TestQueries:
    def test_list_bills_filters(self, submit_bill, advance_bill, bill_service, supplier):
        first = submit_bill()
        second = advance_bill(submit_bill(), BillStatus.UNDER_REVIEW)
        assert {b.id for b in bill_service.list_bills()} == {first.id, second.id}
        assert [b.id for b in bill_service.list_bills(status="under_review")] == [second.id]
        assert len(bill_service.list_bills(supplier_id=supplier.party_id)) == 2
        assert bill_service.list_bills(supplier_id=uuid4()) == ()
        with pytest.raises(ValidationError):
            bill_service.list_bills(status="paid")
