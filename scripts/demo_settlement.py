#!/usr/bin/env python3
"""
End-to-end settlement demo against a local SQLite database.

Walks one bill from supplier submission through offer, agency approval,
tripartite deed signing, treasury certification and receivable note
issuance, printing each step and the notifications each party received.

Usage:
    python3 scripts/demo_settlement.py [--db demo_settlement.db] [--seed 7]
        [--amount 92000000] [--quarters 6] [--start-quarter "Q3 2025"]
        [--config path/to/config.yaml]
"""

from __future__ import annotations

import argparse
import random
import sys
from dataclasses import replace
from datetime import date, timedelta
from decimal import Decimal
from pathlib import Path
from uuid import uuid4

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from settlement_config import get_active_config
from settlement_config.schema import DatabaseConfig, NotificationConfig
from settlement_kernel.domain.bill import BillSubmission
from settlement_kernel.domain.deed import DeedContent
from settlement_kernel.domain.parties import Actor, PartyRole, SignerRole
from settlement_services import SettlementOrchestrator


def _wallet(rng: random.Random) -> str:
    return "0x" + "".join(rng.choice("0123456789abcdef") for _ in range(40))


def _step(label: str, result) -> object:
    if not result.is_success:
        print(f"  FAILED {label}: {result.error_code} {result.message}")
        sys.exit(1)
    value = result.value
    status = getattr(value, "status", None)
    if status is None and hasattr(value, "deed"):
        status = value.deed.status
    suffix = f" -> {status.value}" if status is not None else ""
    print(f"  {label}{suffix}")
    return value


def run(args: argparse.Namespace) -> None:
    config = get_active_config(args.config)
    config = replace(
        config,
        database=DatabaseConfig(url=f"sqlite:///{args.db}"),
        notifications=NotificationConfig(async_delivery=False),
    )
    rng = random.Random(args.seed)
    orch = SettlementOrchestrator.from_config(config, rng=rng)
    orch.start()

    supplier = Actor(uuid4(), PartyRole.SUPPLIER)
    spv = Actor(uuid4(), PartyRole.SPV)
    mda = Actor(uuid4(), PartyRole.MDA)
    treasury = Actor(uuid4(), PartyRole.TREASURY)
    names = {
        supplier: "Acme Road Works",
        spv: "Receivables SPV",
        mda: "Ministry of Roads",
        treasury: "National Treasury",
    }
    print("Assigning roles...")
    for actor, name in names.items():
        _step(f"{name} ({actor.role.value})", orch.assign_role(actor.party_id, actor.role, name))

    print("Bill lifecycle...")
    amount = Decimal(args.amount)
    bill = _step(
        "submit",
        orch.submit_bill(
            BillSubmission(
                supplier_id=supplier.party_id,
                procuring_entity_id=mda.party_id,
                invoice_number=f"INV-{rng.randint(1000, 9999)}",
                amount=amount,
                invoice_date=date(2025, 6, 1),
                currency=config.default_currency,
                description="Resurfacing of the northern bypass",
            ),
            supplier,
        ),
    )
    _step("start_review", orch.start_review(bill.id, spv))
    bill = _step("make_offer", orch.make_offer(bill.id, Decimal("5"), spv))
    _step("accept_offer", orch.accept_offer(bill.id, supplier))
    _step("begin_agency_review", orch.begin_agency_review(bill.id, mda))
    bill = _step("approve", orch.approve(bill.id, args.quarters, args.start_quarter, mda))
    for inst in bill.installments:
        print(f"    #{inst.sequence} {inst.quarter}: {bill.currency} {inst.amount:,}")
    _step("set_terms", orch.set_terms(bill.id, mda))

    print("Deed of assignment...")
    deed = _step(
        "create_deed",
        orch.create_deed(
            bill.id,
            supplier.party_id,
            mda.party_id,
            bill.amount,
            bill.offer_discount_rate,
            bill.offer_amount,
            DeedContent(
                title="Tripartite Deed of Assignment",
                governing_law="Laws of Kenya",
                clauses=(
                    "The Assignor assigns the receivable to the Assignee.",
                    "The Procuring Entity acknowledges the assignment.",
                    "The Servicing Agent pays installments to the Assignee.",
                ),
            ),
            spv,
        ),
    )
    print(f"    content hash {deed.content_hash}")
    for signer, actor in (
        (SignerRole.ASSIGNOR, supplier),
        (SignerRole.PROCURING_ENTITY, mda),
        (SignerRole.SERVICING_AGENT, treasury),
    ):
        signed = _step(
            f"sign {signer.value}",
            orch.sign_deed(deed.id, signer, _wallet(rng), actor),
        )
    execution = signed.deed.execution
    print(f"    tx {execution.tx_hash} block {execution.block_number} gas {execution.gas_used}")
    bill = orch.get_bill(bill.id).unwrap()
    print(f"    bill {bill.status.value}, certificate {bill.certificate_number}")

    print("Receivable note...")
    maturity = date.today() + timedelta(days=365)
    note = _step("generate_note", orch.generate_note(deed.id, maturity, spv))
    print(f"    {note.note_number} face value {note.face_value:,} ({note.token_uri})")
    note = _step("mint_note", orch.mint_note(note.id, _wallet(rng), spv))
    print(f"    token {note.token_id} at {note.token_registry_address}")
    _step("list_note", orch.list_note(note.id, spv))
    buyer = uuid4()
    _step("sell_note", orch.sell_note(note.id, buyer, note.face_value, spv))

    orch.shutdown()
    print("Notifications...")
    for actor, name in names.items():
        records = orch.notifications_for(actor.party_id).unwrap()
        print(f"  {name}: {len(records)}")
        for record in records:
            print(f"    - {record.title}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Run an end-to-end settlement demo")
    parser.add_argument("--db", default="demo_settlement.db", help="SQLite database file")
    parser.add_argument("--seed", type=int, default=7, help="Random seed for evidence values")
    parser.add_argument("--amount", default="92000000", help="Bill amount")
    parser.add_argument("--quarters", type=int, default=6, help="Installment count")
    parser.add_argument("--start-quarter", default="Q3 2025", help='First quarter, e.g. "Q3 2025"')
    parser.add_argument("--config", default=None, help="Configuration YAML (defaults to packaged)")
    run(parser.parse_args())


if __name__ == "__main__":
    main()
