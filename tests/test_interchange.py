"""Tests for flat-row export and import."""

from __future__ import annotations

from decimal import Decimal

import pytest

from trade_ledger import core_logic, interchange
from trade_ledger.constants import CollectionName, PaymentStatus, PaymentType
from trade_ledger.models import Ledger, LineItem, ReceiptDetails


@pytest.fixture
def trading_ledger() -> Ledger:
    ledger = Ledger()
    ledger, _sale = core_logic.create_sale(
        ledger,
        core_logic.SaleDraft(
            customer="Beta",
            items=[LineItem("Nut", Decimal("10"), Decimal("3"))],
            date="2024-03-01",
            invoice_numbers=["INV-1", "INV-2"],
            sale_id="S000001",
        ),
    )
    ledger, _purchase, _payment = core_logic.create_purchase(
        ledger,
        core_logic.PurchaseDraft(
            supplier="Acme",
            items=[LineItem("Pipe", Decimal("2"), Decimal("50")), LineItem("Valve", Decimal("1"), Decimal("75"))],
            date="2024-03-02",
            bill_numbers=["B-7"],
            purchase_id="P000001",
        ),
    )
    return ledger


def test_sale_row_flattens_items_and_invoice_numbers(trading_ledger):
    row = interchange.sale_row(trading_ledger.sales.records[0])

    assert row == {
        "id": "S000001",
        "date": "2024-03-01",
        "customer": "Beta",
        "items": "Nut:10@3",
        "amount": "30",
        "invoiceNumbers": "INV-1|INV-2",
    }


def test_payment_row_blank_until_settled(trading_ledger):
    payment = trading_ledger.payments.records[0]

    row = interchange.payment_row(payment)
    assert row["purchaseId"] == "P000001"
    assert row["supplier"] == "Acme"
    assert row["amount"] == "175"
    assert row["status"] == PaymentStatus.UNPAID.value
    assert row["voucherNo"] == ""
    assert row["paymentType"] == ""

    _ledger, settled = core_logic.settle_payment(
        trading_ledger, payment.payment_id, ReceiptDetails(voucher_no="PV-1", payment_type=PaymentType.BANK)
    )
    row = interchange.payment_row(settled)
    assert row["status"] == "Paid"
    assert row["voucherNo"] == "PV-1"
    assert row["paymentType"] == "Bank"


def test_export_payments_respects_stored_filters(trading_ledger):
    ledger = core_logic.set_payments_filter(trading_ledger, status="Paid")

    assert interchange.export_records(ledger, CollectionName.PAYMENTS) == []
    assert len(interchange.export_records(ledger, CollectionName.PURCHASES)) == 1


def test_export_payments_leaves_out_sale_payments(trading_ledger):
    sale = trading_ledger.sales.records[0]
    ledger, _payment = core_logic.add_payment(
        trading_ledger,
        core_logic.PaymentDraft(kind="sale", counterparty_name="Beta", amount=Decimal("30"), sale_id=sale.sale_id),
    )

    rows = interchange.export_records(ledger, CollectionName.PAYMENTS)

    assert [row["purchaseId"] for row in rows] == ["P000001"]
    assert len(core_logic.list_payments(ledger)) == 2


def test_split_numbers_only_splits_on_pipe():
    assert interchange.split_numbers("INV-1| INV-2 ||") == ("INV-1", "INV-2")
    assert interchange.split_numbers(" INV-3 ") == ("INV-3",)
    assert interchange.split_numbers("") == ()
    assert interchange.split_numbers(None) == ()


def test_import_purchase_rows_open_payments():
    rows = [
        {"id": "P-IMP-1", "date": "2024-01-05", "supplier": "Acme", "items": "Pipe:2@50|Valve:1@75", "amount": "175", "billNumbers": "B1|B2"},
        {"id": "", "date": "", "supplier": "Delta", "items": "Bolt:100@0.2", "amount": "", "billNumbers": ""},
    ]

    ledger, created = interchange.import_rows(Ledger(), CollectionName.PURCHASES, rows)

    assert created[0].purchase_id == "P-IMP-1"
    assert created[0].bill_numbers == ("B1", "B2")
    assert created[1].purchase_id.startswith("P")
    assert created[1].bill_numbers == ("",)
    assert created[1].amount == Decimal("20")
    for purchase in created:
        assert len(core_logic.find_payments_for_purchase(ledger, purchase.purchase_id)) == 1


def test_import_recomputes_mismatched_amount(caplog):
    rows = [{"id": "S9", "date": "2024-01-05", "customer": "Beta", "items": "Nut:2@5", "amount": "99", "invoiceNumbers": "INV-9"}]

    ledger, created = interchange.import_rows(Ledger(), CollectionName.SALES, rows)

    assert created[0].amount == Decimal("10")
    assert created[0].invoice_numbers == ("INV-9",)
    assert ledger.sales.records == tuple(created)
    assert ledger.payments.records == ()
    assert any("differs from its line items" in message for message in caplog.messages)


def test_import_existing_id_gets_fresh_identifier(trading_ledger):
    rows = [{"id": "S000001", "customer": "Gamma", "items": "", "amount": "", "invoiceNumbers": ""}]

    ledger, created = interchange.import_rows(trading_ledger, CollectionName.SALES, rows)

    assert created[0].sale_id != "S000001"
    assert len(ledger.sales.records) == 2


def test_import_rejects_payments():
    with pytest.raises(core_logic.ValidationFailure):
        interchange.import_rows(Ledger(), CollectionName.PAYMENTS, [])


def test_import_invalid_row_raises_validation_failure():
    rows = [{"id": "S1", "date": "not-a-date", "customer": "Beta", "items": "Nut:1@1"}]
    with pytest.raises(core_logic.ValidationFailure):
        interchange.import_rows(Ledger(), CollectionName.SALES, rows)


def test_import_out_of_range_items_raises_validation_failure():
    rows = [{"id": "S1", "date": "2024-01-05", "customer": "Beta", "items": "A:1e999999@1e999999", "amount": ""}]
    with pytest.raises(core_logic.ValidationFailure):
        interchange.import_rows(Ledger(), CollectionName.SALES, rows)


def test_csv_export_then_import_reproduces_sales(tmp_path, trading_ledger):
    path = tmp_path / "sales.csv"
    rows = interchange.export_records(trading_ledger, CollectionName.SALES)

    assert interchange.write_csv(path, rows, interchange.SALE_COLUMNS) == 1
    read_back = list(interchange.read_csv(path))
    assert read_back == rows

    ledger, created = interchange.import_rows(Ledger(), CollectionName.SALES, read_back)
    assert created == list(trading_ledger.sales.records)
    assert ledger.sales.records == trading_ledger.sales.records


def test_read_csv_strips_byte_order_mark(tmp_path):
    path = tmp_path / "bom.csv"
    path.write_bytes("\ufeffid,customer\nS1,Beta\n".encode("utf-8"))

    assert list(interchange.read_csv(path)) == [{"id": "S1", "customer": "Beta"}]
