"""
Tripartite deed signing protocol tests.

Covers deed creation preconditions, the signing order, the immutable
content hash, execution evidence, automatic bill certification and deed
rejection.
"""

import re
from decimal import Decimal
from uuid import uuid4

import pytest

from settlement_kernel.domain.bill import BillStatus
from settlement_kernel.domain.deed import DeedStatus
from settlement_kernel.domain.parties import Actor, PartyRole, SignerRole
from settlement_kernel.exceptions import (
    DeedAlreadyExistsError,
    DeedNotFoundError,
    InvalidTransitionError,
    UnauthorizedError,
    ValidationError,
    WrongSignerError,
)
from settlement_kernel.utils.hashing import hash_deed_content, sign_content_hash


@pytest.fixture
def accepted_bill(submit_bill, advance_bill):
    return advance_bill(submit_bill(), BillStatus.OFFER_ACCEPTED)


@pytest.fixture
def deed(accepted_bill, create_deed):
    return create_deed(accepted_bill)


class TestCreateDeed:
    def test_new_deed_awaits_assignor(self, deed, accepted_bill, spv):
        assert deed.status == DeedStatus.PENDING_ASSIGNOR
        assert deed.awaiting is SignerRole.ASSIGNOR
        assert deed.bill_id == accepted_bill.id
        assert deed.created_by == spv.party_id
        assert deed.principal_amount == Decimal("92000000")
        assert deed.purchase_price == Decimal("87400000.00")
        assert not any(deed.slot(r).is_signed for r in SignerRole)
        assert deed.execution is None

    def test_content_hash_recomputable(self, deed, deed_content):
        assert deed.content_hash == hash_deed_content(
            bill_id=deed.bill_id,
            assignor_id=deed.assignor_id,
            procuring_entity_id=deed.procuring_entity_id,
            principal_amount=deed.principal_amount,
            discount_rate=deed.discount_rate,
            purchase_price=deed.purchase_price,
            timestamp=deed.created_at,
            document_content=deed_content.to_payload(),
        )
        assert deed.content == deed_content

    def test_assignor_notified(self, deed, feed, supplier):
        (record,) = [
            r for r in feed.list_for(supplier.party_id)
            if r.title == "Deed of Assignment Ready for Signing"
        ]
        assert deed.content_hash[:16] in record.message

    def test_requires_accepted_offer(self, submit_bill, advance_bill, create_deed):
        bill = advance_bill(submit_bill(), BillStatus.OFFER_MADE)
        with pytest.raises(InvalidTransitionError):
            create_deed(bill)

    def test_only_one_live_deed(self, deed, accepted_bill, create_deed):
        with pytest.raises(DeedAlreadyExistsError) as exc_info:
            create_deed(accepted_bill)
        assert exc_info.value.deed_id == str(deed.id)

    def test_new_deed_allowed_after_rejection(self, deed, accepted_bill, create_deed, deed_service, supplier):
        deed_service.reject_deed(deed.id, "Wrong bank details", supplier)
        replacement = create_deed(accepted_bill)
        assert replacement.id != deed.id
        assert deed_service.get_deed_for_bill(accepted_bill.id).id == replacement.id

    def test_only_the_offering_spv(self, accepted_bill, deed_service, directory, deed_content):
        rival = Actor(uuid4(), PartyRole.SPV)
        directory.assign_role(rival.party_id, PartyRole.SPV)
        with pytest.raises(UnauthorizedError):
            deed_service.create_deed(
                accepted_bill.id,
                accepted_bill.supplier_id,
                accepted_bill.procuring_entity_id,
                accepted_bill.amount,
                Decimal("5"),
                accepted_bill.offer_amount,
                deed_content,
                rival,
            )

    def test_parties_must_match_bill(self, accepted_bill, deed_service, spv, deed_content):
        with pytest.raises(ValidationError) as exc_info:
            deed_service.create_deed(
                accepted_bill.id,
                uuid4(),
                accepted_bill.procuring_entity_id,
                accepted_bill.amount,
                Decimal("5"),
                accepted_bill.offer_amount,
                deed_content,
                spv,
            )
        assert exc_info.value.field == "assignor_id"

    def test_purchase_price_cannot_exceed_principal(self, accepted_bill, deed_service, spv, deed_content):
        with pytest.raises(ValidationError):
            deed_service.create_deed(
                accepted_bill.id,
                accepted_bill.supplier_id,
                accepted_bill.procuring_entity_id,
                Decimal("100"),
                Decimal("5"),
                Decimal("101"),
                deed_content,
                spv,
            )

    def test_malformed_document_rejected(self, accepted_bill, deed_service, spv):
        with pytest.raises(ValidationError):
            deed_service.create_deed(
                accepted_bill.id,
                accepted_bill.supplier_id,
                accepted_bill.procuring_entity_id,
                accepted_bill.amount,
                Decimal("5"),
                accepted_bill.offer_amount,
                {"title": "Deed", "governing_law": "Kenya", "clauses": ["x"], "extra": 1},
                spv,
            )


class TestSigning:
    def test_full_execution_of_ninety_two_million_bill(
        self, deed, execute_deed, bill_service, deed_service, accepted_bill
    ):
        results = execute_deed(deed)
        assert [r.deed.status for r in results] == [
            DeedStatus.PENDING_PROCURING_ENTITY,
            DeedStatus.PENDING_SERVICING_AGENT,
            DeedStatus.FULLY_EXECUTED,
        ]
        signatures = {r.signature for r in results}
        assert len(signatures) == 3

        executed = deed_service.get_deed(deed.id)
        assert executed.is_fully_executed
        assert executed.content_hash == deed.content_hash
        for role in SignerRole:
            slot = executed.slot(role)
            assert slot.is_signed
            assert slot.signature == sign_content_hash(deed.content_hash, role.value, slot.signed_at)
        assert re.fullmatch(r"0x[0-9a-f]{64}", executed.execution.tx_hash)
        assert 5_000_000 <= executed.execution.block_number < 6_000_000
        assert 50_000 <= executed.execution.gas_used < 150_000

        bill = bill_service.get_bill(accepted_bill.id)
        assert bill.status == BillStatus.CERTIFIED
        assert re.fullmatch(r"CERT-2025-\d{5}", bill.certificate_number)

    def test_out_of_turn_signature_leaves_deed_unchanged(self, deed, deed_service, mda, wallet):
        with pytest.raises(WrongSignerError) as exc_info:
            deed_service.sign_deed(deed.id, SignerRole.PROCURING_ENTITY, wallet(), mda)
        assert exc_info.value.current_status == DeedStatus.PENDING_ASSIGNOR.value
        after = deed_service.get_deed(deed.id)
        assert after == deed

    def test_repeat_signature_is_wrong_signer(self, deed, deed_service, supplier, wallet):
        deed_service.sign_deed(deed.id, SignerRole.ASSIGNOR, wallet(), supplier)
        with pytest.raises(WrongSignerError):
            deed_service.sign_deed(deed.id, SignerRole.ASSIGNOR, wallet(), supplier)

    def test_wrong_role_for_slot(self, deed, deed_service, spv, wallet):
        with pytest.raises(UnauthorizedError):
            deed_service.sign_deed(deed.id, SignerRole.ASSIGNOR, wallet(), spv)

    def test_assignor_must_be_named_supplier(self, deed, deed_service, directory, wallet):
        other = Actor(uuid4(), PartyRole.SUPPLIER)
        directory.assign_role(other.party_id, PartyRole.SUPPLIER)
        with pytest.raises(UnauthorizedError):
            deed_service.sign_deed(deed.id, SignerRole.ASSIGNOR, wallet(), other)

    @pytest.mark.parametrize("address", ["", "0x123", "0x" + "z" * 40, "1x" + "a" * 40])
    def test_malformed_wallet(self, deed, deed_service, supplier, address):
        with pytest.raises(ValidationError):
            deed_service.sign_deed(deed.id, SignerRole.ASSIGNOR, address, supplier)
        assert deed_service.get_deed(deed.id).status == DeedStatus.PENDING_ASSIGNOR

    def test_unknown_signer_role(self, deed, deed_service, supplier, wallet):
        with pytest.raises(ValidationError):
            deed_service.sign_deed(deed.id, "witness", wallet(), supplier)

    def test_unknown_deed(self, deed_service, supplier, wallet):
        with pytest.raises(DeedNotFoundError):
            deed_service.sign_deed(uuid4(), SignerRole.ASSIGNOR, wallet(), supplier)

    def test_signing_notices_follow_the_turn(
        self, deed, execute_deed, feed, mda, treasury, supplier, spv
    ):
        execute_deed(deed)
        assert "Deed of Assignment Requires Your Signature" in [
            r.title for r in feed.list_for(mda.party_id)
        ]
        assert "Deed of Assignment Requires Treasury Signature" in [
            r.title for r in feed.list_for(treasury.party_id)
        ]
        assert "Deed of Assignment Fully Executed" in [
            r.title for r in feed.list_for(supplier.party_id)
        ]
        executed = [
            r for r in feed.list_for(spv.party_id)
            if r.title == "Deed Fully Executed - Generate Receivable Notes"
        ]
        assert executed and "KES 92,000,000.00" in executed[0].message

    def test_execution_over_terms_set_bill_sends_agreement_first(
        self, submit_bill, advance_bill, create_deed, execute_deed, bill_service
    ):
        bill = advance_bill(submit_bill(), BillStatus.TERMS_SET)
        execute_deed(create_deed(bill))
        history = bill_service.get_history(bill.id)
        assert [h.action for h in history[-2:]] == ["send_agreement", "certify"]
        assert bill_service.get_bill(bill.id).status == BillStatus.CERTIFIED

    @pytest.mark.parametrize(
        "status",
        [BillStatus.OFFER_ACCEPTED, BillStatus.MDA_REVIEWING, BillStatus.MDA_APPROVED],
    )
    def test_execution_certifies_bill_short_of_terms(
        self, status, submit_bill, advance_bill, create_deed, execute_deed,
        bill_service, deed_service, treasury,
    ):
        bill = advance_bill(submit_bill(), status)
        deed = create_deed(bill)
        results = execute_deed(deed)
        assert results[-1].deed.status == DeedStatus.FULLY_EXECUTED
        assert deed_service.get_deed(deed.id).is_fully_executed

        certified = bill_service.get_bill(bill.id)
        assert certified.status == BillStatus.CERTIFIED
        assert re.fullmatch(r"CERT-2025-\d{5}", certified.certificate_number)
        last = bill_service.get_history(bill.id)[-1]
        assert last.action == "certify_by_deed"
        assert last.actor_id == treasury.party_id

    def test_rejected_bill_blocks_execution(
        self, deed, accepted_bill, bill_service, deed_service, supplier, mda, treasury, wallet
    ):
        deed_service.sign_deed(deed.id, SignerRole.ASSIGNOR, wallet(), supplier)
        deed_service.sign_deed(deed.id, SignerRole.PROCURING_ENTITY, wallet(), mda)
        bill_service.reject(accepted_bill.id, "Budget withdrawn", mda)
        with pytest.raises(InvalidTransitionError):
            deed_service.sign_deed(deed.id, SignerRole.SERVICING_AGENT, wallet(), treasury)
        after = deed_service.get_deed(deed.id)
        assert after.status == DeedStatus.PENDING_SERVICING_AGENT
        assert not after.servicing_agent.is_signed

    def test_already_certified_bill_is_left_alone(
        self, submit_bill, advance_bill, create_deed, execute_deed, bill_service, treasury
    ):
        bill = advance_bill(submit_bill(), BillStatus.TERMS_SET)
        deed = create_deed(bill)
        bill_service.certify(bill.id, "CERT-MANUAL", treasury)
        execute_deed(deed)
        assert bill_service.get_bill(bill.id).certificate_number == "CERT-MANUAL"


class TestRejectDeed:
    def test_awaited_party_rejects(self, deed, deed_service, supplier, spv, feed):
        rejected = deed_service.reject_deed(deed.id, "Wrong bank details", supplier)
        assert rejected.status == DeedStatus.REJECTED
        assert rejected.rejected_by == supplier.party_id
        assert rejected.rejection_reason == "Wrong bank details"
        for party in (supplier, spv):
            assert "Deed of Assignment Rejected" in [r.title for r in feed.list_for(party.party_id)]

    def test_party_not_awaited_cannot_reject(self, deed, deed_service, mda):
        with pytest.raises(UnauthorizedError):
            deed_service.reject_deed(deed.id, "Not ours", mda)

    def test_admin_rejects_any_pending_deed(self, deed, deed_service, admin):
        assert deed_service.reject_deed(deed.id, "Suspended", admin).status == DeedStatus.REJECTED

    def test_executed_deed_cannot_be_rejected(self, deed, execute_deed, deed_service, admin):
        execute_deed(deed)
        with pytest.raises(InvalidTransitionError):
            deed_service.reject_deed(deed.id, "Too late", admin)

    def test_rejected_deed_cannot_be_signed(self, deed, deed_service, supplier, wallet):
        deed_service.reject_deed(deed.id, "Wrong bank details", supplier)
        with pytest.raises(WrongSignerError):
            deed_service.sign_deed(deed.id, SignerRole.ASSIGNOR, wallet(), supplier)

    def test_reason_required(self, deed, deed_service, supplier):
        with pytest.raises(ValidationError):
            deed_service.reject_deed(deed.id, "", supplier)


def test_queries(deed, deed_service, accepted_bill):
    assert deed_service.get_deed_for_bill(accepted_bill.id) == deed
    assert deed_service.list_deeds(bill_id=accepted_bill.id) == (deed,)
    assert deed_service.get_deed_for_bill(uuid4()) is None
