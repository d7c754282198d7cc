"""
Receivable note issuance, minting and trading tests.
"""

import re
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from settlement_kernel.domain.bill import BillStatus
from settlement_kernel.domain.note import NoteStatus
from settlement_kernel.domain.parties import Actor, PartyRole, SignerRole
from settlement_kernel.exceptions import (
    AlreadyMintedError,
    DeedNotExecutedError,
    DeedNotFoundError,
    InvalidTransitionError,
    NoteNotFoundError,
    UnauthorizedError,
    ValidationError,
)

MATURITY = date(2026, 12, 31)


@pytest.fixture
def pending_deed(submit_bill, advance_bill, create_deed):
    return create_deed(advance_bill(submit_bill(), BillStatus.OFFER_ACCEPTED))


@pytest.fixture
def executed_deed(pending_deed, execute_deed):
    return execute_deed(pending_deed)[-1].deed


@pytest.fixture
def note(executed_deed, note_service, spv):
    return note_service.generate_note(executed_deed.id, MATURITY, spv)


class TestGenerate:
    def test_draft_note_over_executed_deed(self, note, executed_deed, spv, clock):
        assert note.status == NoteStatus.DRAFT
        assert note.deed_id == executed_deed.id
        assert note.bill_id == executed_deed.bill_id
        assert note.face_value == executed_deed.principal_amount
        assert note.issue_date == clock.now().date()
        assert note.maturity_date == MATURITY
        assert note.issuer_id == spv.party_id
        assert re.fullmatch(r"RN-[0-9A-Z]+-[0-9A-Z]{4}", note.note_number)
        assert re.fullmatch(r"ipfs://Qm[0-9a-f]{64}", note.token_uri)
        assert not note.is_minted

    def test_metadata_records_deed_facts(self, note, executed_deed):
        assert note.metadata["deed_hash"] == executed_deed.content_hash
        assert note.metadata["deed_tx_hash"] == executed_deed.execution.tx_hash
        assert note.metadata["principal_amount"] == "92000000"

    def test_caller_metadata_merged(self, executed_deed, note_service, spv):
        note = note_service.generate_note(
            executed_deed.id, MATURITY, spv, metadata={"tranche": "A"}
        )
        assert note.metadata["tranche"] == "A"

    def test_pending_deed_rejected(self, pending_deed, note_service, spv):
        with pytest.raises(DeedNotExecutedError) as exc_info:
            note_service.generate_note(pending_deed.id, MATURITY, spv)
        assert exc_info.value.current_status == "pending_assignor"

    def test_partially_signed_deed_rejected(self, pending_deed, deed_service, note_service, supplier, spv, wallet):
        deed_service.sign_deed(pending_deed.id, SignerRole.ASSIGNOR, wallet(), supplier)
        with pytest.raises(DeedNotExecutedError):
            note_service.generate_note(pending_deed.id, MATURITY, spv)

    def test_unknown_deed(self, note_service, spv):
        with pytest.raises(DeedNotFoundError):
            note_service.generate_note(uuid4(), MATURITY, spv)

    @pytest.mark.parametrize("maturity", [date(2025, 7, 1), date(2025, 1, 1)])
    def test_maturity_must_follow_issue(self, executed_deed, note_service, spv, maturity):
        with pytest.raises(ValidationError):
            note_service.generate_note(executed_deed.id, maturity, spv)

    def test_only_spv_generates(self, executed_deed, note_service, treasury):
        with pytest.raises(UnauthorizedError):
            note_service.generate_note(executed_deed.id, MATURITY, treasury)

    def test_numbers_are_unique(self, executed_deed, note_service, spv):
        numbers = {
            note_service.generate_note(executed_deed.id, MATURITY, spv).note_number
            for _ in range(5)
        }
        assert len(numbers) == 5


class TestMint:
    def test_mint_records_token(self, note, note_service, spv, wallet, feed):
        address = wallet()
        minted = note_service.mint_note(note.id, address, spv)
        assert minted.status == NoteStatus.MINTED
        assert minted.is_minted
        assert 0 <= int(minted.token_id) < 1_000_000
        assert re.fullmatch(r"0x[0-9a-f]{40}", minted.token_registry_address)
        assert re.fullmatch(r"0x[0-9a-f]{64}", minted.mint_tx_hash)
        assert minted.issuer_wallet_address == address
        assert "Receivable Note Minted" in {r.title for r in feed.list_for(spv.party_id)}

    def test_second_mint_fails(self, note, note_service, spv, wallet):
        first = note_service.mint_note(note.id, wallet(), spv)
        with pytest.raises(AlreadyMintedError):
            note_service.mint_note(note.id, wallet(), spv)
        after = note_service.get_note(note.id)
        assert after.token_id == first.token_id
        assert after.mint_tx_hash == first.mint_tx_hash

    def test_malformed_wallet_leaves_draft(self, note, note_service, spv):
        with pytest.raises(ValidationError):
            note_service.mint_note(note.id, "0xnope", spv)
        assert note_service.get_note(note.id).status == NoteStatus.DRAFT

    def test_only_issuer_mints(self, note, note_service, directory, wallet):
        other = Actor(uuid4(), PartyRole.SPV)
        directory.assign_role(other.party_id, PartyRole.SPV)
        with pytest.raises(UnauthorizedError):
            note_service.mint_note(note.id, wallet(), other)

    def test_unknown_note(self, note_service, spv, wallet):
        with pytest.raises(NoteNotFoundError):
            note_service.mint_note(uuid4(), wallet(), spv)


class TestTrading:
    @pytest.fixture
    def minted(self, note, note_service, spv, wallet):
        return note_service.mint_note(note.id, wallet(), spv)

    def test_list_sell_redeem(self, minted, note_service, spv, feed):
        buyer = uuid4()
        assert note_service.list_note(minted.id, spv).status == NoteStatus.LISTED
        sold = note_service.sell_note(minted.id, buyer, Decimal("90000000"), spv)
        assert sold.status == NoteStatus.SOLD
        assert sold.buyer_id == buyer
        assert sold.sale_price == Decimal("90000000")
        assert [r.title for r in feed.list_for(buyer)] == ["Receivable Note Purchased"]
        redeemed = note_service.redeem_note(minted.id, spv)
        assert redeemed.status == NoteStatus.REDEEMED
        assert redeemed.redeemed_at is not None
        assert {r.title for r in feed.list_for(buyer)} == {
            "Receivable Note Purchased",
            "Receivable Note Redeemed",
        }

    def test_sell_requires_listing(self, minted, note_service, spv):
        with pytest.raises(InvalidTransitionError):
            note_service.sell_note(minted.id, uuid4(), Decimal("1"), spv)

    def test_draft_cannot_be_listed(self, note, note_service, spv):
        with pytest.raises(InvalidTransitionError):
            note_service.list_note(note.id, spv)

    def test_issuer_cannot_buy(self, minted, note_service, spv):
        note_service.list_note(minted.id, spv)
        with pytest.raises(ValidationError):
            note_service.sell_note(minted.id, spv.party_id, Decimal("1"), spv)

    @pytest.mark.parametrize("price", [Decimal("0"), Decimal("-1"), 5.0])
    def test_invalid_sale_price(self, minted, note_service, spv, price):
        note_service.list_note(minted.id, spv)
        with pytest.raises(ValidationError):
            note_service.sell_note(minted.id, uuid4(), price, spv)

    def test_redeemed_is_terminal(self, minted, note_service, spv):
        note_service.redeem_note(minted.id, spv)
        with pytest.raises(InvalidTransitionError):
            note_service.list_note(minted.id, spv)


def test_list_notes(executed_deed, note_service, spv, wallet):
    a = note_service.generate_note(executed_deed.id, MATURITY, spv)
    b = note_service.generate_note(executed_deed.id, MATURITY, spv)
    note_service.mint_note(b.id, wallet(), spv)
    assert {n.id for n in note_service.list_notes(deed_id=executed_deed.id)} == {a.id, b.id}
    assert [n.id for n in note_service.list_notes(status="minted")] == [b.id]
    assert note_service.list_notes(issuer_id=uuid4()) == ()
