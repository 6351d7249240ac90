"""Snapshot, save and restore of the whole ledger.

The gateway converts a :class:`~trade_ledger.models.Ledger` into plain
JSON-compatible dictionaries (one ``{"items": [...], "filters": {...}}`` entry
per collection) and writes them through the workbook store in
:mod:`trade_ledger.data_manager`: one worksheet per collection holding one JSON
payload per record, plus a ``Filters`` sheet.

Saving is best effort. Any storage failure is logged and reported through the
return value, never raised, so the mutation that triggered the save always
stands. Restoring hydrates each collection on its own: a missing or damaged
collection falls back to its empty initial state without affecting the others.
"""

from __future__ import annotations

import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional

from . import data_manager, log
from .constants import (
    COLLECTION_SHEETS,
    EXPECTED_SCHEMA_VERSION,
    CollectionName,
    PaymentKind,
    PaymentStatus,
    PaymentType,
    SheetName,
)
from .models import (
    Collection,
    Document,
    FilterState,
    Ledger,
    LineItem,
    Payment,
    Purchase,
    Receipt,
    ReceiptDetails,
    Sale,
    record_key,
)


_HYDRATION_ERRORS = (KeyError, TypeError, ValueError, AttributeError, InvalidOperation)


def _decimal(value: Any) -> Decimal:
    if isinstance(value, bool):
        raise ValueError(f"Not a number: {value!r}")
    parsed = Decimal(str(value))
    if not parsed.is_finite() or parsed < 0:
        raise ValueError(f"Not a non-negative number: {value!r}")
    return parsed


def _text(value: Any) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise TypeError(f"Expected text, got {type(value).__name__}")
    return value


def _text_tuple(values: Any) -> tuple:
    if not isinstance(values, list):
        raise TypeError("Expected a list of strings")
    return tuple(_text(value) for value in values) or ("",)


# ---------------------------------------------------------------------------
# Record serialization
# ---------------------------------------------------------------------------


def serialize_item(item: LineItem) -> Dict[str, Any]:
    return {"name": item.name, "qty": str(item.qty), "price": str(item.price)}


def deserialize_item(raw: Mapping[str, Any]) -> LineItem:
    return LineItem(name=_text(raw["name"]), qty=_decimal(raw["qty"]), price=_decimal(raw["price"]))


def serialize_document(doc: Document) -> Dict[str, Any]:
    return {"name": doc.name, "content": doc.content}


def deserialize_document(raw: Mapping[str, Any]) -> Document:
    return Document(name=_text(raw["name"]), content=_text(raw["content"]))


def _documents(raw: Any) -> tuple:
    if raw is None:
        return ()
    if not isinstance(raw, list):
        raise TypeError("Expected a list of documents")
    return tuple(deserialize_document(doc) for doc in raw)


def _items(raw: Any) -> tuple:
    if not isinstance(raw, list):
        raise TypeError("Expected a list of line items")
    return tuple(deserialize_item(item) for item in raw)


def serialize_sale(sale: Sale) -> Dict[str, Any]:
    return {
        "id": sale.sale_id,
        "date": sale.date,
        "customer": sale.customer,
        "items": [serialize_item(item) for item in sale.items],
        "amount": str(sale.amount),
        "invoiceNumbers": list(sale.invoice_numbers),
        "invoiceDocs": [serialize_document(doc) for doc in sale.invoice_docs],
    }


def deserialize_sale(raw: Mapping[str, Any]) -> Sale:
    return Sale(
        sale_id=_text(raw["id"]),
        date=_text(raw.get("date")),
        customer=_text(raw.get("customer")),
        items=_items(raw.get("items", [])),
        amount=_decimal(raw["amount"]),
        invoice_numbers=_text_tuple(raw.get("invoiceNumbers", [])),
        invoice_docs=_documents(raw.get("invoiceDocs")),
    )


def serialize_purchase(purchase: Purchase) -> Dict[str, Any]:
    return {
        "id": purchase.purchase_id,
        "date": purchase.date,
        "supplier": purchase.supplier,
        "items": [serialize_item(item) for item in purchase.items],
        "amount": str(purchase.amount),
        "billNumbers": list(purchase.bill_numbers),
        "docs": [serialize_document(doc) for doc in purchase.docs],
    }


def deserialize_purchase(raw: Mapping[str, Any]) -> Purchase:
    return Purchase(
        purchase_id=_text(raw["id"]),
        date=_text(raw.get("date")),
        supplier=_text(raw.get("supplier")),
        items=_items(raw.get("items", [])),
        amount=_decimal(raw["amount"]),
        bill_numbers=_text_tuple(raw.get("billNumbers", [])),
        docs=_documents(raw.get("docs")),
    )


def serialize_details(details: ReceiptDetails) -> Dict[str, Any]:
    return {
        "voucherNo": details.voucher_no,
        "paymentType": details.payment_type.value,
        "date": details.date,
        "chequeNo": details.cheque_no,
        "chequeBank": details.cheque_bank,
        "lcNo": details.lc_no,
        "lcBank": details.lc_bank,
        "docs": [serialize_document(doc) for doc in details.docs],
    }


def deserialize_details(raw: Mapping[str, Any]) -> ReceiptDetails:
    return ReceiptDetails(
        voucher_no=_text(raw.get("voucherNo")),
        payment_type=PaymentType(raw.get("paymentType") or PaymentType.CASH.value),
        date=_text(raw.get("date")),
        cheque_no=_text(raw.get("chequeNo")),
        cheque_bank=_text(raw.get("chequeBank")),
        lc_no=_text(raw.get("lcNo")),
        lc_bank=_text(raw.get("lcBank")),
        docs=_documents(raw.get("docs")),
    )


def serialize_payment(payment: Payment) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "id": payment.payment_id,
        "type": payment.kind.value,
        "counterpartyName": payment.counterparty_name,
        "amount": str(payment.amount),
        "date": payment.date,
        "status": payment.status.value,
        "receipt": serialize_details(payment.receipt) if payment.receipt is not None else None,
    }
    if payment.kind is PaymentKind.SALE:
        data["saleId"] = payment.sale_id
    else:
        data["purchaseId"] = payment.purchase_id
    return data


def deserialize_payment(raw: Mapping[str, Any]) -> Payment:
    kind = PaymentKind(raw["type"])
    receipt = raw.get("receipt")
    return Payment(
        payment_id=_text(raw["id"]),
        kind=kind,
        counterparty_name=_text(raw.get("counterpartyName")),
        amount=_decimal(raw["amount"]),
        date=_text(raw.get("date")),
        status=PaymentStatus(raw.get("status") or PaymentStatus.UNPAID.value),
        sale_id=_text(raw["saleId"]) if kind is PaymentKind.SALE else None,
        purchase_id=_text(raw["purchaseId"]) if kind is PaymentKind.PURCHASE else None,
        receipt=deserialize_details(receipt) if receipt is not None else None,
    )


def serialize_receipt(receipt: Receipt) -> Dict[str, Any]:
    return {
        "id": receipt.receipt_id,
        "saleId": receipt.sale_id,
        "customer": receipt.customer,
        "amount": str(receipt.amount),
        "date": receipt.date,
        "voucherNo": receipt.voucher_no,
        "paymentType": receipt.payment_type.value,
        "chequeNo": receipt.cheque_no,
        "chequeBank": receipt.cheque_bank,
        "lcNo": receipt.lc_no,
        "lcBank": receipt.lc_bank,
        "docs": [serialize_document(doc) for doc in receipt.docs],
    }


def deserialize_receipt(raw: Mapping[str, Any]) -> Receipt:
    return Receipt(
        receipt_id=_text(raw["id"]),
        sale_id=_text(raw["saleId"]),
        customer=_text(raw.get("customer")),
        amount=_decimal(raw["amount"]),
        date=_text(raw.get("date")),
        voucher_no=_text(raw.get("voucherNo")),
        payment_type=PaymentType(raw.get("paymentType") or PaymentType.CASH.value),
        cheque_no=_text(raw.get("chequeNo")),
        cheque_bank=_text(raw.get("chequeBank")),
        lc_no=_text(raw.get("lcNo")),
        lc_bank=_text(raw.get("lcBank")),
        docs=_documents(raw.get("docs")),
    )


SERIALIZERS: Dict[CollectionName, Callable[[Any], Dict[str, Any]]] = {
    CollectionName.SALES: serialize_sale,
    CollectionName.PURCHASES: serialize_purchase,
    CollectionName.PAYMENTS: serialize_payment,
    CollectionName.RECEIPTS: serialize_receipt,
}

DESERIALIZERS: Dict[CollectionName, Callable[[Mapping[str, Any]], Any]] = {
    CollectionName.SALES: deserialize_sale,
    CollectionName.PURCHASES: deserialize_purchase,
    CollectionName.PAYMENTS: deserialize_payment,
    CollectionName.RECEIPTS: deserialize_receipt,
}


# ---------------------------------------------------------------------------
# Snapshot / hydrate
# ---------------------------------------------------------------------------


def snapshot(ledger: Ledger) -> Dict[str, Dict[str, Any]]:
    """Capture ``ledger`` as plain dictionaries.

    Args:
        ledger (Ledger): Ledger value to capture.

    Returns:
        dict[str, dict]: ``{collection: {"items": [...], "filters": {...}}}``
            for every collection, in display order.
    """

    result: Dict[str, Dict[str, Any]] = {}
    for name in CollectionName:
        collection: Collection = getattr(ledger, name.value)
        serializer = SERIALIZERS[name]
        result[name.value] = {
            "items": [serializer(record) for record in collection.records],
            "filters": {"q": collection.filters.q, "status": collection.filters.status},
        }
    return result


def _hydrate_filters(raw: Any, default: FilterState) -> FilterState:
    if raw is None:
        return default
    if not isinstance(raw, Mapping):
        raise TypeError("Filters must be a mapping")
    status = raw.get("status", default.status)
    return FilterState(
        q=_text(raw.get("q", default.q)),
        status=None if status is None else _text(status),
    )


def _hydrate_collection(name: CollectionName, raw: Any, default: Collection) -> Collection:
    if raw is None:
        log.info("No stored %s; starting empty", name.value)
        return default
    try:
        if not isinstance(raw, Mapping):
            raise TypeError(f"Expected a mapping, got {type(raw).__name__}")
        items = raw.get("items", [])
        if not isinstance(items, list):
            raise TypeError("Collection items must be a list")
        deserializer = DESERIALIZERS[name]
        records = tuple(deserializer(item) for item in items)
        keys = [record_key(record) for record in records]
        if len(set(keys)) != len(keys):
            raise ValueError("Duplicate record identifiers")
        filters = _hydrate_filters(raw.get("filters"), default.filters)
    except _HYDRATION_ERRORS as exc:
        log.warning("Discarding stored %s: %s", name.value, exc)
        return default
    return Collection(records=records, filters=filters)


def hydrate(data: Any) -> Ledger:
    """Rebuild a ledger from snapshot-shaped data, tolerating damage.

    Each collection is rebuilt independently. Anything that is missing or
    does not deserialize cleanly is replaced by that collection's empty
    initial state.

    Args:
        data (Any): Value produced by :func:`snapshot`, possibly truncated or
            corrupted.

    Returns:
        Ledger: Best-effort reconstruction; the empty ledger when ``data`` is
            not a mapping at all.
    """

    empty = Ledger()
    if not isinstance(data, Mapping):
        log.warning("Stored ledger has unexpected shape %s; starting empty", type(data).__name__)
        return empty
    collections = {
        name.value: _hydrate_collection(name, data.get(name.value), getattr(empty, name.value))
        for name in CollectionName
    }
    return Ledger(**collections)


# ---------------------------------------------------------------------------
# Workbook write-through
# ---------------------------------------------------------------------------


def save(data: Mapping[str, Any], data_file: Path) -> bool:
    """Write a snapshot to the workbook store.

    Args:
        data (Mapping[str, Any]): Value produced by :func:`snapshot`.
        data_file (Path): Workbook location.

    Returns:
        bool: ``True`` when the workbook was written; ``False`` when the write
            failed. Failures are logged, never raised.
    """

    try:
        workbook = data_manager.create_workbook()
        filter_rows: List[data_manager.StoredRow] = []
        for name in CollectionName:
            part = data.get(name.value) or {}
            rows = [
                data_manager.StoredRow(key=str(item.get("id", "")), payload=json.dumps(item))
                for item in part.get("items", [])
            ]
            data_manager.replace_rows(workbook, COLLECTION_SHEETS[name].value, rows)
            filter_rows.append(
                data_manager.StoredRow(key=name.value, payload=json.dumps(part.get("filters", {})))
            )
        data_manager.replace_rows(workbook, SheetName.FILTERS.value, filter_rows)
        data_manager.write_schema_version(workbook, EXPECTED_SCHEMA_VERSION)
        data_manager.save_workbook(workbook, data_file)
    except (data_manager.PersistenceFailure, OSError, TypeError, ValueError) as exc:
        log.exception("Failed to persist ledger to '%s': %s", data_file, exc)
        return False

    log.info("Persisted ledger to '%s'", data_file)
    return True


def persist(ledger: Ledger, data_file: Path) -> bool:
    """Snapshot ``ledger`` and save it; see :func:`save`."""

    return save(snapshot(ledger), data_file)


def _read_sheet_payloads(workbook, name: CollectionName) -> Optional[List[Any]]:
    try:
        return [json.loads(row.payload) for row in data_manager.iter_rows(workbook, COLLECTION_SHEETS[name].value)]
    except KeyError:
        log.warning("Workbook has no sheet for %s", name.value)
    except ValueError as exc:
        log.warning("Corrupt %s payload in workbook: %s", name.value, exc)
    return None


def _read_snapshot(workbook) -> Dict[str, Any]:
    filters: Dict[str, Any] = {}
    try:
        for row in data_manager.iter_rows(workbook, SheetName.FILTERS.value):
            try:
                filters[row.key] = json.loads(row.payload)
            except ValueError as exc:
                log.warning("Corrupt filters for '%s': %s", row.key, exc)
    except KeyError:
        log.warning("Workbook has no filters sheet")

    data: Dict[str, Any] = {}
    for name in CollectionName:
        items = _read_sheet_payloads(workbook, name)
        if items is None:
            continue
        data[name.value] = {"items": items, "filters": filters.get(name.value)}
    return data


def restore(data_file: Path) -> Optional[Ledger]:
    """Read the last saved ledger from the workbook store.

    Args:
        data_file (Path): Workbook location.

    Returns:
        Ledger | None: ``None`` when nothing has been saved yet. An unreadable
            workbook yields the empty ledger; otherwise each collection is
            restored independently via :func:`hydrate`.
    """

    data_file = Path(data_file).expanduser()
    if not data_file.exists():
        log.info("No ledger workbook at '%s'", data_file)
        return None

    try:
        workbook = data_manager.open_workbook(data_file)
    except (data_manager.PersistenceFailure, OSError) as exc:
        log.error("Ledger workbook '%s' is unreadable, starting empty: %s", data_file, exc)
        return Ledger()

    stored_version = data_manager.read_schema_version(workbook)
    if stored_version != EXPECTED_SCHEMA_VERSION:
        log.warning(
            "Ledger workbook schema is %s, expected %s; restoring what can be read",
            stored_version,
            EXPECTED_SCHEMA_VERSION,
        )

    ledger = hydrate(_read_snapshot(workbook))
    log.info(
        "Restored ledger from '%s' (%d sales, %d purchases, %d payments, %d receipts)",
        data_file,
        len(ledger.sales.records),
        len(ledger.purchases.records),
        len(ledger.payments.records),
        len(ledger.receipts.records),
    )
    return ledger


__all__ = [
    "snapshot",
    "hydrate",
    "save",
    "persist",
    "restore",
    "SERIALIZERS",
    "DESERIALIZERS",
]
