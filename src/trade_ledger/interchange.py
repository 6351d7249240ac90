"""Flat-row interchange for spreadsheet exports and imports.

Records are flattened into string-valued rows with camelCase column names
(``id``, ``invoiceNumbers``...). Line items travel as a single codec token and
multi-valued number fields are joined with ``|``. The rows are read and
written as CSV files with the standard :mod:`csv` module.
"""

from __future__ import annotations

import csv
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Sequence, Tuple

from . import core_logic, log
from .constants import CollectionName
from .line_items import ITEM_SEPARATOR, decode_items, encode_items, format_number, parse_number
from .models import Ledger, Payment, Purchase, Receipt, Sale


SALE_COLUMNS: Sequence[str] = ("id", "date", "customer", "items", "amount", "invoiceNumbers")
PURCHASE_COLUMNS: Sequence[str] = ("id", "date", "supplier", "items", "amount", "billNumbers")
PAYMENT_COLUMNS: Sequence[str] = (
    "id",
    "purchaseId",
    "supplier",
    "amount",
    "status",
    "date",
    "voucherNo",
    "paymentType",
)
RECEIPT_COLUMNS: Sequence[str] = (
    "id",
    "saleId",
    "customer",
    "amount",
    "date",
    "voucherNo",
    "paymentType",
    "chequeNo",
    "chequeBank",
    "lcNo",
    "lcBank",
)

EXPORT_COLUMNS: Mapping[CollectionName, Sequence[str]] = {
    CollectionName.SALES: SALE_COLUMNS,
    CollectionName.PURCHASES: PURCHASE_COLUMNS,
    CollectionName.PAYMENTS: PAYMENT_COLUMNS,
    CollectionName.RECEIPTS: RECEIPT_COLUMNS,
}

IMPORTABLE_COLLECTIONS = (CollectionName.SALES, CollectionName.PURCHASES)


def sale_row(sale: Sale) -> Dict[str, str]:
    return {
        "id": sale.sale_id,
        "date": sale.date,
        "customer": sale.customer,
        "items": encode_items(sale.items),
        "amount": format_number(sale.amount),
        "invoiceNumbers": ITEM_SEPARATOR.join(sale.invoice_numbers),
    }


def purchase_row(purchase: Purchase) -> Dict[str, str]:
    return {
        "id": purchase.purchase_id,
        "date": purchase.date,
        "supplier": purchase.supplier,
        "items": encode_items(purchase.items),
        "amount": format_number(purchase.amount),
        "billNumbers": ITEM_SEPARATOR.join(purchase.bill_numbers),
    }


def payment_row(payment: Payment) -> Dict[str, str]:
    """Flatten a payment; receipt columns stay blank until it is settled."""

    receipt = payment.receipt
    return {
        "id": payment.payment_id,
        "purchaseId": payment.purchase_id or "",
        "supplier": payment.counterparty_name,
        "amount": format_number(payment.amount),
        "status": payment.status.value,
        "date": payment.date,
        "voucherNo": receipt.voucher_no if receipt else "",
        "paymentType": receipt.payment_type.value if receipt else "",
    }


def receipt_row(receipt: Receipt) -> Dict[str, str]:
    return {
        "id": receipt.receipt_id,
        "saleId": receipt.sale_id,
        "customer": receipt.customer,
        "amount": format_number(receipt.amount),
        "date": receipt.date,
        "voucherNo": receipt.voucher_no,
        "paymentType": receipt.payment_type.value,
        "chequeNo": receipt.cheque_no,
        "chequeBank": receipt.cheque_bank,
        "lcNo": receipt.lc_no,
        "lcBank": receipt.lc_bank,
    }


_ROW_BUILDERS = {
    CollectionName.SALES: sale_row,
    CollectionName.PURCHASES: purchase_row,
    CollectionName.PAYMENTS: payment_row,
    CollectionName.RECEIPTS: receipt_row,
}


def export_records(ledger: Ledger, collection: CollectionName) -> List[Dict[str, str]]:
    """Flatten the records of ``collection`` that are meant for export.

    Sales, purchases and receipts export every record. Payments export only
    the purchase payments passing the collection's stored filters.

    Args:
        ledger (Ledger): Ledger to read from.
        collection (CollectionName): Collection to flatten.

    Returns:
        list[dict[str, str]]: One row per record, keyed by the columns in
            ``EXPORT_COLUMNS[collection]``.
    """

    collection = CollectionName(collection)
    if collection is CollectionName.PAYMENTS:
        records: Iterable[Any] = core_logic.visible_payments(ledger)
    else:
        records = getattr(ledger, collection.value).records
    build = _ROW_BUILDERS[collection]
    return [build(record) for record in records]


def split_numbers(raw: Any) -> Tuple[str, ...]:
    """Split a ``|``-joined number cell into its trimmed, non-empty parts.

    A value without a ``|`` is taken as a single number.
    """

    text = "" if raw is None else str(raw)
    if ITEM_SEPARATOR in text:
        return tuple(part.strip() for part in text.split(ITEM_SEPARATOR) if part.strip())
    text = text.strip()
    return (text,) if text else ()


def _check_amount(row: Mapping[str, Any], record_id: str, amount: Any) -> None:
    raw = str(row.get("amount") or "").strip()
    if not raw:
        return
    if parse_number(raw) != amount:
        log.warning(
            "Imported amount %s for '%s' differs from its line items; using %s",
            raw,
            record_id,
            format_number(amount),
        )


def import_sale_row(ledger: Ledger, row: Mapping[str, Any]) -> Tuple[Ledger, Sale]:
    """Add one flat sale row to ``ledger``.

    The row id is kept when it is free. The amount is recomputed from the
    decoded line items.
    """

    numbers = split_numbers(row.get("invoiceNumbers") or row.get("invoiceNumber"))
    draft = core_logic.SaleDraft(
        customer=row.get("customer") or "",
        items=decode_items(row.get("items") or ""),
        date=row.get("date") or None,
        invoice_numbers=numbers,
        sale_id=row.get("id") or None,
    )
    ledger, sale = core_logic.create_sale(ledger, draft)
    _check_amount(row, sale.sale_id, sale.amount)
    return ledger, sale


def import_purchase_row(ledger: Ledger, row: Mapping[str, Any]) -> Tuple[Ledger, Purchase]:
    """Add one flat purchase row to ``ledger`` together with its payment."""

    numbers = split_numbers(row.get("billNumbers") or row.get("billNumber"))
    draft = core_logic.PurchaseDraft(
        supplier=row.get("supplier") or "",
        items=decode_items(row.get("items") or ""),
        date=row.get("date") or None,
        bill_numbers=numbers,
        purchase_id=row.get("id") or None,
    )
    ledger, purchase, _payment = core_logic.create_purchase(ledger, draft)
    _check_amount(row, purchase.purchase_id, purchase.amount)
    return ledger, purchase


def import_rows(
    ledger: Ledger, collection: CollectionName, rows: Iterable[Mapping[str, Any]]
) -> Tuple[Ledger, List[Any]]:
    """Import flat rows into ``collection``.

    Rows are applied one after another to the same ledger value; the first
    invalid row aborts the import and the caller keeps its original ledger.

    Args:
        ledger (Ledger): Ledger to extend.
        collection (CollectionName): ``sales`` or ``purchases``.
        rows (Iterable[Mapping[str, Any]]): Rows as read by :func:`read_csv`.

    Returns:
        tuple[Ledger, list]: The new ledger and the records created.

    Raises:
        ValidationFailure: If ``collection`` cannot be imported or a row
            carries invalid values.
    """

    collection = CollectionName(collection)
    if collection not in IMPORTABLE_COLLECTIONS:
        log.error("Import requested for unsupported collection '%s'", collection.value)
        raise core_logic.ValidationFailure(f"Cannot import {collection.value}")

    importer = import_sale_row if collection is CollectionName.SALES else import_purchase_row
    created = []
    for row in rows:
        ledger, record = importer(ledger, row)
        created.append(record)
    log.info("Imported %d %s row(s)", len(created), collection.value)
    return ledger, created


def write_csv(path: Path, rows: Iterable[Mapping[str, Any]], columns: Sequence[str]) -> int:
    """Write ``rows`` to ``path`` as CSV with a header row.

    Returns:
        int: Number of data rows written.
    """

    path = Path(path).expanduser()
    count = 0
    with path.open("w", encoding="utf-8", newline="") as handle:
        writer = csv.DictWriter(handle, fieldnames=list(columns), extrasaction="ignore")
        writer.writeheader()
        for row in rows:
            writer.writerow(row)
            count += 1
    log.debug("Wrote %d row(s) to '%s'", count, path)
    return count


def read_csv(path: Path) -> Iterator[Dict[str, str]]:
    """Stream the rows of a headed CSV file as dictionaries.

    A UTF-8 byte order mark is stripped. Missing trailing cells read as empty
    strings.

    Raises:
        FileNotFoundError: If ``path`` does not exist.
    """

    path = Path(path).expanduser()
    with path.open("r", encoding="utf-8-sig", newline="") as handle:
        for row in csv.DictReader(handle, restval=""):
            yield {key: value for key, value in row.items() if key is not None}


__all__ = [
    "SALE_COLUMNS",
    "PURCHASE_COLUMNS",
    "PAYMENT_COLUMNS",
    "RECEIPT_COLUMNS",
    "EXPORT_COLUMNS",
    "sale_row",
    "purchase_row",
    "payment_row",
    "receipt_row",
    "export_records",
    "split_numbers",
    "import_sale_row",
    "import_purchase_row",
    "import_rows",
    "write_csv",
    "read_csv",
]
