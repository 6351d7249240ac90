"""Business logic layer for the trade ledger.

This module holds the rules that keep the four ledger collections (sales,
purchases, payments and receipts) consistent. Every operation is a pure
function: it receives a :class:`~trade_ledger.models.Ledger` value and returns
a new one, leaving the input untouched. :class:`RuntimeContext` carries the
current ledger between calls and :func:`commit` writes each new value through
the persistence gateway.

Derived totals are computed here and nowhere else: a sale's or purchase's
``amount`` is recomputed from its line items on every add and update, whatever
amount the caller supplied.
"""

from __future__ import annotations

import secrets
import string
from dataclasses import dataclass, field, fields, replace
from datetime import UTC, datetime
from decimal import Decimal, DecimalException
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from . import data_manager, log, persistence
from .constants import (
    ALL_STATUSES,
    DATE_FORMAT,
    EXPECTED_SCHEMA_VERSION,
    ID_SUFFIX_LENGTH,
    CollectionName,
    IdPrefix,
    PaymentKind,
    PaymentStatus,
    PaymentType,
    ReceiptPolicy,
)
from .line_items import format_number, parse_number
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


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced sale, purchase, payment, or receipt is unknown."""


class ValidationFailure(BusinessRuleViolation, ValueError):
    """Raised when caller input is incomplete or malformed; nothing is stored."""


@dataclass
class RuntimeContext:
    """Configuration plus the ledger value currently in effect."""

    settings: data_manager.ConfigSettings
    ledger: Ledger = field(default_factory=Ledger)


@dataclass(frozen=True)
class SaleDraft:
    """User intent for recording a sale."""

    customer: str
    items: Sequence[Any] = ()
    date: Optional[str] = None
    invoice_numbers: Optional[Sequence[str]] = None
    invoice_docs: Sequence[Document] = ()
    # Ignored: the amount is always derived from ``items``.
    amount: Optional[Decimal] = None
    sale_id: Optional[str] = None


@dataclass(frozen=True)
class PurchaseDraft:
    """User intent for recording a purchase."""

    supplier: str
    items: Sequence[Any] = ()
    date: Optional[str] = None
    bill_numbers: Optional[Sequence[str]] = None
    docs: Sequence[Document] = ()
    amount: Optional[Decimal] = None
    purchase_id: Optional[str] = None


@dataclass(frozen=True)
class PaymentDraft:
    """User intent for opening a payment against a sale or purchase."""

    kind: PaymentKind
    counterparty_name: str
    amount: Decimal
    date: Optional[str] = None
    sale_id: Optional[str] = None
    purchase_id: Optional[str] = None


SEARCH_FIELDS: Dict[type, Tuple[str, ...]] = {
    Sale: ("customer", "items", "invoice_numbers"),
    Purchase: ("supplier", "items", "bill_numbers"),
    Payment: ("counterparty_name", "amount", "purchase_id"),
    Receipt: ("sale_id", "customer", "amount", "voucher_no"),
}

_SALE_FIELDS = ("date", "customer", "items", "invoice_numbers", "invoice_docs", "amount")
_PURCHASE_FIELDS = ("date", "supplier", "items", "bill_numbers", "docs", "amount")
_PAYMENT_FIELDS = ("counterparty_name", "amount", "date")
_RECEIPT_FIELDS = (
    "date",
    "voucher_no",
    "payment_type",
    "cheque_no",
    "cheque_bank",
    "lc_no",
    "lc_bank",
    "docs",
)
_ID_ALPHABET = string.ascii_letters + string.digits


# ---------------------------------------------------------------------------
# Identifiers and normalisation helpers
# ---------------------------------------------------------------------------


def generate_id(prefix: str, *, existing: Iterable[str] = ()) -> str:
    """Generate a short random identifier.

    Args:
        prefix (str): Designator prepended to the identifier, such as ``"S"``
            for sales or ``"PAY"`` for payments.
        existing (Iterable[str]): Identifiers already taken in the target
            collection. A candidate that collides with one of them is drawn
            again.

    Returns:
        str: ``prefix`` followed by ``ID_SUFFIX_LENGTH`` random ASCII letters
            and digits.
    """

    taken = set(existing)
    while True:
        candidate = prefix + "".join(secrets.choice(_ID_ALPHABET) for _ in range(ID_SUFFIX_LENGTH))
        if candidate not in taken:
            return candidate
        log.debug("Identifier collision on '%s'; drawing again", candidate)


def _assign_id(prefix: IdPrefix, requested: Optional[str], collection: Collection) -> str:
    existing = {record_key(record) for record in collection.records}
    requested = (requested or "").strip()
    if requested and requested not in existing:
        return requested
    if requested:
        log.warning("Identifier '%s' already in use; assigning a new one", requested)
    return generate_id(prefix.value, existing=existing)


def _today() -> str:
    return datetime.now(UTC).strftime(DATE_FORMAT)


def normalize_date(value: Optional[str]) -> str:
    """Return ``value`` as ``YYYY-MM-DD``, defaulting blanks to today (UTC).

    Raises:
        ValidationFailure: If ``value`` is not a calendar date.
    """

    text = (value or "").strip()
    if not text:
        return _today()
    try:
        return datetime.strptime(text, DATE_FORMAT).strftime(DATE_FORMAT)
    except ValueError as exc:
        log.error("Date validation failed: %r", value)
        raise ValidationFailure(f"Invalid date '{value}', expected YYYY-MM-DD") from exc


def require_nonnegative_money(amount: Decimal) -> None:
    """Validate that a monetary value or quantity is nonnegative.

    Raises:
        ValidationFailure: If ``amount`` is less than zero.
    """

    if amount < Decimal("0"):
        log.error("Monetary value validation failed: %s", amount)
        raise ValidationFailure("Amount must be zero or positive")


def _coerce_item(raw: Any) -> LineItem:
    if isinstance(raw, LineItem):
        item = LineItem(name=raw.name.strip(), qty=parse_number(raw.qty), price=parse_number(raw.price))
    elif isinstance(raw, Mapping):
        item = LineItem(
            name=str(raw.get("name") or "").strip(),
            qty=parse_number(raw.get("qty")),
            price=parse_number(raw.get("price")),
        )
    else:
        raise ValidationFailure(f"Unsupported line item: {raw!r}")
    require_nonnegative_money(item.qty)
    require_nonnegative_money(item.price)
    return item


def normalize_items(items: Optional[Iterable[Any]]) -> Tuple[LineItem, ...]:
    """Coerce line items (dataclasses or mappings) into validated ``LineItem``s."""

    return tuple(_coerce_item(item) for item in (items or ()))


def calculate_amount(items: Iterable[LineItem]) -> Decimal:
    """Sum ``qty * price`` over ``items``.

    Raises:
        ValidationFailure: If the total falls outside the decimal range.
    """

    try:
        return sum((item.line_total for item in items), Decimal("0"))
    except DecimalException as exc:
        log.error("Line items total out of range: %s", exc)
        raise ValidationFailure("Line item quantity or price is out of range") from exc


def normalize_numbers(numbers: Optional[Iterable[str]]) -> Tuple[str, ...]:
    """Return invoice/bill numbers as a tuple with at least one slot."""

    values = tuple("" if number is None else str(number).strip() for number in (numbers or ()))
    return values or ("",)


def _normalize_docs(docs: Optional[Iterable[Document]]) -> Tuple[Document, ...]:
    result = tuple(docs or ())
    for doc in result:
        if not isinstance(doc, Document):
            raise ValidationFailure(f"Unsupported document: {doc!r}")
    return result


def _coerce_payment_type(value: Any) -> PaymentType:
    if value is None or value == "":
        return PaymentType.CASH
    try:
        return PaymentType(value)
    except ValueError as exc:
        log.error("Unsupported payment type provided: %s", value)
        raise ValidationFailure(f"Unsupported payment type: {value}") from exc


def validate_receipt_details(details: ReceiptDetails) -> ReceiptDetails:
    """Check and normalise the instrument details of a receipt or settlement.

    Cheque payments need a cheque number and bank, LC payments an LC number
    and bank. Instrument fields that do not belong to the chosen payment type
    are blanked. A missing date defaults to today.

    Args:
        details (ReceiptDetails): Caller-supplied details.

    Returns:
        ReceiptDetails: Normalised copy of ``details``.

    Raises:
        ValidationFailure: If the payment type is unknown, a required
            instrument field is empty, or the date is malformed.
    """

    payment_type = _coerce_payment_type(details.payment_type)
    cheque_no = (details.cheque_no or "").strip()
    cheque_bank = (details.cheque_bank or "").strip()
    lc_no = (details.lc_no or "").strip()
    lc_bank = (details.lc_bank or "").strip()

    if payment_type is PaymentType.CHEQUE:
        if not cheque_no or not cheque_bank:
            log.error("Cheque details incomplete (no=%r, bank=%r)", cheque_no, cheque_bank)
            raise ValidationFailure("Cheque payments require a cheque number and bank")
        lc_no = lc_bank = ""
    elif payment_type is PaymentType.LC:
        if not lc_no or not lc_bank:
            log.error("LC details incomplete (no=%r, bank=%r)", lc_no, lc_bank)
            raise ValidationFailure("LC payments require an LC number and bank")
        cheque_no = cheque_bank = ""
    else:
        cheque_no = cheque_bank = lc_no = lc_bank = ""

    return ReceiptDetails(
        voucher_no=(details.voucher_no or "").strip(),
        payment_type=payment_type,
        date=normalize_date(details.date),
        cheque_no=cheque_no,
        cheque_bank=cheque_bank,
        lc_no=lc_no,
        lc_bank=lc_bank,
        docs=_normalize_docs(details.docs),
    )


def _check_fields(changes: Mapping[str, Any], allowed: Sequence[str], label: str) -> None:
    unknown = sorted(set(changes) - set(allowed))
    if unknown:
        log.error("Rejected %s update with unsupported fields: %s", label, ", ".join(unknown))
        raise ValidationFailure(f"Cannot update {label} field(s): {', '.join(unknown)}")


# ---------------------------------------------------------------------------
# Generic collection plumbing
# ---------------------------------------------------------------------------


def _collection(ledger: Ledger, name: CollectionName) -> Collection:
    return getattr(ledger, name.value)


def _with_collection(ledger: Ledger, name: CollectionName, collection: Collection) -> Ledger:
    return replace(ledger, **{name.value: collection})


def _find(ledger: Ledger, name: CollectionName, record_id: str) -> Optional[Any]:
    for record in _collection(ledger, name).records:
        if record_key(record) == record_id:
            return record
    return None


def _require(ledger: Ledger, name: CollectionName, record_id: str, label: str) -> Any:
    record = _find(ledger, name, record_id)
    if record is None:
        log.warning("%s lookup failed for id '%s'", label.capitalize(), record_id)
        raise MissingReferenceError(f"Unknown {label} id: {record_id}")
    return record


def _append(ledger: Ledger, name: CollectionName, record: Any) -> Ledger:
    collection = _collection(ledger, name)
    return _with_collection(ledger, name, replace(collection, records=collection.records + (record,)))


def _replace(ledger: Ledger, name: CollectionName, record: Any) -> Ledger:
    collection = _collection(ledger, name)
    key = record_key(record)
    records = tuple(record if record_key(current) == key else current for current in collection.records)
    return _with_collection(ledger, name, replace(collection, records=records))


def _remove(ledger: Ledger, name: CollectionName, record_id: str) -> Ledger:
    collection = _collection(ledger, name)
    records = tuple(record for record in collection.records if record_key(record) != record_id)
    if len(records) == len(collection.records):
        log.debug("Remove from %s ignored; id '%s' not present", name.value, record_id)
        return ledger
    log.info("Removed '%s' from %s", record_id, name.value)
    return _with_collection(ledger, name, replace(collection, records=records))


def _set_filter(ledger: Ledger, name: CollectionName, changes: Mapping[str, Any]) -> Ledger:
    collection = _collection(ledger, name)
    known = {item.name for item in fields(FilterState)}
    ignored = sorted(set(changes) - known)
    if ignored:
        log.warning("Ignoring unknown %s filter keys: %s", name.value, ", ".join(ignored))
    filters = replace(collection.filters, **{key: value for key, value in changes.items() if key in known})
    return _with_collection(ledger, name, replace(collection, filters=filters))


# ---------------------------------------------------------------------------
# Sales
# ---------------------------------------------------------------------------


def add_sale(ledger: Ledger, draft: SaleDraft) -> Tuple[Ledger, Sale]:
    """Append a new sale.

    The amount is computed from the draft's line items; any amount on the
    draft is ignored. Invoice numbers default to a single empty slot and the
    date to today.

    Args:
        ledger (Ledger): Ledger to extend.
        draft (SaleDraft): Structured intent describing the sale.

    Returns:
        tuple[Ledger, Sale]: The new ledger and the stored sale.

    Raises:
        ValidationFailure: If a line item is negative or the date is
            malformed.
    """

    items = normalize_items(draft.items)
    sale = Sale(
        sale_id=_assign_id(IdPrefix.SALE, draft.sale_id, ledger.sales),
        date=normalize_date(draft.date),
        customer=(draft.customer or "").strip(),
        items=items,
        amount=calculate_amount(items),
        invoice_numbers=normalize_numbers(draft.invoice_numbers),
        invoice_docs=_normalize_docs(draft.invoice_docs),
    )
    log.info("Recorded sale '%s' for '%s' (amount=%s)", sale.sale_id, sale.customer, sale.amount)
    return _append(ledger, CollectionName.SALES, sale), sale


def update_sale(ledger: Ledger, sale_id: str, changes: Mapping[str, Any]) -> Tuple[Ledger, Optional[Sale]]:
    """Merge ``changes`` into an existing sale and recompute its amount.

    Args:
        ledger (Ledger): Ledger holding the sale.
        sale_id (str): Identifier of the sale to change.
        changes (Mapping[str, Any]): New values keyed by :class:`Sale` field
            name. ``amount`` is accepted but ignored.

    Returns:
        tuple[Ledger, Sale | None]: The new ledger and updated sale, or the
            untouched ledger and ``None`` when ``sale_id`` is unknown.

    Raises:
        ValidationFailure: If ``changes`` names a field that cannot be
            updated or carries invalid values.
    """

    _check_fields(changes, _SALE_FIELDS, "sale")
    current = _find(ledger, CollectionName.SALES, sale_id)
    if current is None:
        log.warning("Update ignored; unknown sale id '%s'", sale_id)
        return ledger, None

    values: Dict[str, Any] = {}
    if "date" in changes:
        values["date"] = normalize_date(changes["date"])
    if "customer" in changes:
        values["customer"] = (changes["customer"] or "").strip()
    if "items" in changes:
        values["items"] = normalize_items(changes["items"])
    if "invoice_numbers" in changes:
        values["invoice_numbers"] = normalize_numbers(changes["invoice_numbers"])
    if "invoice_docs" in changes:
        values["invoice_docs"] = _normalize_docs(changes["invoice_docs"])
    updated = replace(current, **values)
    updated = replace(updated, amount=calculate_amount(updated.items))
    log.info("Updated sale '%s' (amount=%s)", sale_id, updated.amount)
    return _replace(ledger, CollectionName.SALES, updated), updated


def remove_sale(ledger: Ledger, sale_id: str) -> Ledger:
    """Remove a sale; unknown ids are ignored. Receipts are left in place."""

    return _remove(ledger, CollectionName.SALES, sale_id)


def set_sales_filter(ledger: Ledger, **changes: Any) -> Ledger:
    return _set_filter(ledger, CollectionName.SALES, changes)


def list_sales(ledger: Ledger) -> Tuple[Sale, ...]:
    return ledger.sales.records


def get_sale(ledger: Ledger, sale_id: str) -> Sale:
    """Resolve a sale by its identifier.

    Raises:
        MissingReferenceError: If ``sale_id`` is unknown.
    """

    return _require(ledger, CollectionName.SALES, sale_id, "sale")


# ---------------------------------------------------------------------------
# Purchases
# ---------------------------------------------------------------------------


def _build_purchase(ledger: Ledger, draft: PurchaseDraft) -> Purchase:
    items = normalize_items(draft.items)
    return Purchase(
        purchase_id=_assign_id(IdPrefix.PURCHASE, draft.purchase_id, ledger.purchases),
        date=normalize_date(draft.date),
        supplier=(draft.supplier or "").strip(),
        items=items,
        amount=calculate_amount(items),
        bill_numbers=normalize_numbers(draft.bill_numbers),
        docs=_normalize_docs(draft.docs),
    )


def update_purchase(
    ledger: Ledger, purchase_id: str, changes: Mapping[str, Any]
) -> Tuple[Ledger, Optional[Purchase]]:
    """Merge ``changes`` into an existing purchase and recompute its amount.

    The purchase's payment keeps the amount it was opened with.

    Returns:
        tuple[Ledger, Purchase | None]: The new ledger and updated purchase,
            or the untouched ledger and ``None`` for an unknown id.

    Raises:
        ValidationFailure: If ``changes`` is invalid.
    """

    _check_fields(changes, _PURCHASE_FIELDS, "purchase")
    current = _find(ledger, CollectionName.PURCHASES, purchase_id)
    if current is None:
        log.warning("Update ignored; unknown purchase id '%s'", purchase_id)
        return ledger, None

    values: Dict[str, Any] = {}
    if "date" in changes:
        values["date"] = normalize_date(changes["date"])
    if "supplier" in changes:
        values["supplier"] = (changes["supplier"] or "").strip()
    if "items" in changes:
        values["items"] = normalize_items(changes["items"])
    if "bill_numbers" in changes:
        values["bill_numbers"] = normalize_numbers(changes["bill_numbers"])
    if "docs" in changes:
        values["docs"] = _normalize_docs(changes["docs"])
    updated = replace(current, **values)
    updated = replace(updated, amount=calculate_amount(updated.items))
    log.info("Updated purchase '%s' (amount=%s)", purchase_id, updated.amount)
    return _replace(ledger, CollectionName.PURCHASES, updated), updated


def remove_purchase(ledger: Ledger, purchase_id: str) -> Ledger:
    """Remove a purchase; unknown ids are ignored. Its payment is left in place."""

    return _remove(ledger, CollectionName.PURCHASES, purchase_id)


def set_purchases_filter(ledger: Ledger, **changes: Any) -> Ledger:
    return _set_filter(ledger, CollectionName.PURCHASES, changes)


def list_purchases(ledger: Ledger) -> Tuple[Purchase, ...]:
    return ledger.purchases.records


def get_purchase(ledger: Ledger, purchase_id: str) -> Purchase:
    return _require(ledger, CollectionName.PURCHASES, purchase_id, "purchase")


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------


def _build_payment(ledger: Ledger, draft: PaymentDraft) -> Payment:
    kind = PaymentKind(draft.kind)
    amount = parse_number(draft.amount)
    require_nonnegative_money(amount)
    return Payment(
        payment_id=_assign_id(IdPrefix.PAYMENT, None, ledger.payments),
        kind=kind,
        counterparty_name=(draft.counterparty_name or "").strip(),
        amount=amount,
        date=normalize_date(draft.date),
        status=PaymentStatus.UNPAID,
        sale_id=draft.sale_id if kind is PaymentKind.SALE else None,
        purchase_id=draft.purchase_id if kind is PaymentKind.PURCHASE else None,
        receipt=None,
    )


def add_payment(ledger: Ledger, draft: PaymentDraft) -> Tuple[Ledger, Payment]:
    """Open an ``Unpaid`` payment against an existing sale or purchase.

    Purchases already receive their payment from :func:`create_purchase`;
    this entry point exists for explicitly requested sale-side payments and
    for re-opening a purchase payment that was deleted.

    Raises:
        ValidationFailure: If the foreign key does not match ``kind`` or the
            purchase already has a payment.
        MissingReferenceError: If the referenced sale or purchase is unknown.
    """

    try:
        kind = PaymentKind(draft.kind)
    except ValueError as exc:
        raise ValidationFailure(f"Unsupported payment kind: {draft.kind}") from exc

    if kind is PaymentKind.SALE:
        if not draft.sale_id or draft.purchase_id:
            raise ValidationFailure("Sale payments reference a sale id only")
        get_sale(ledger, draft.sale_id)
    else:
        if not draft.purchase_id or draft.sale_id:
            raise ValidationFailure("Purchase payments reference a purchase id only")
        get_purchase(ledger, draft.purchase_id)
        if find_payments_for_purchase(ledger, draft.purchase_id):
            log.error("Purchase '%s' already has a payment", draft.purchase_id)
            raise ValidationFailure(f"Purchase '{draft.purchase_id}' already has a payment")

    payment = _build_payment(ledger, draft)
    log.info("Opened %s payment '%s' (amount=%s)", kind.value, payment.payment_id, payment.amount)
    return _append(ledger, CollectionName.PAYMENTS, payment), payment


def update_payment(
    ledger: Ledger, payment_id: str, changes: Mapping[str, Any]
) -> Tuple[Ledger, Optional[Payment]]:
    """Change a payment's counterparty, amount, or date.

    Status and receipt details only change through :func:`settle_payment`.
    """

    _check_fields(changes, _PAYMENT_FIELDS, "payment")
    current = _find(ledger, CollectionName.PAYMENTS, payment_id)
    if current is None:
        log.warning("Update ignored; unknown payment id '%s'", payment_id)
        return ledger, None

    values: Dict[str, Any] = {}
    if "counterparty_name" in changes:
        values["counterparty_name"] = (changes["counterparty_name"] or "").strip()
    if "amount" in changes:
        amount = parse_number(changes["amount"])
        require_nonnegative_money(amount)
        values["amount"] = amount
    if "date" in changes:
        values["date"] = normalize_date(changes["date"])
    updated = replace(current, **values)
    log.info("Updated payment '%s'", payment_id)
    return _replace(ledger, CollectionName.PAYMENTS, updated), updated


def remove_payment(ledger: Ledger, payment_id: str) -> Ledger:
    """Remove a payment; unknown ids are ignored. Nothing cascades."""

    return _remove(ledger, CollectionName.PAYMENTS, payment_id)


def set_payments_filter(ledger: Ledger, **changes: Any) -> Ledger:
    return _set_filter(ledger, CollectionName.PAYMENTS, changes)


def list_payments(ledger: Ledger) -> Tuple[Payment, ...]:
    return ledger.payments.records


def get_payment(ledger: Ledger, payment_id: str) -> Payment:
    return _require(ledger, CollectionName.PAYMENTS, payment_id, "payment")


def find_payments_for_purchase(ledger: Ledger, purchase_id: str) -> List[Payment]:
    return [payment for payment in ledger.payments.records if payment.purchase_id == purchase_id]


# ---------------------------------------------------------------------------
# Receipts
# ---------------------------------------------------------------------------


def update_receipt(
    ledger: Ledger, receipt_id: str, changes: Mapping[str, Any]
) -> Tuple[Ledger, Optional[Receipt]]:
    """Edit a receipt's voucher, instrument, date, or documents.

    ``sale_id``, ``customer`` and ``amount`` are fixed when the receipt is
    created. The instrument fields are validated again after merging.

    Raises:
        ValidationFailure: If ``changes`` is invalid for the resulting
            payment type.
    """

    _check_fields(changes, _RECEIPT_FIELDS, "receipt")
    current = _find(ledger, CollectionName.RECEIPTS, receipt_id)
    if current is None:
        log.warning("Update ignored; unknown receipt id '%s'", receipt_id)
        return ledger, None

    merged = replace(_receipt_details(current), **changes)
    details = validate_receipt_details(merged)
    updated = _receipt_with_details(current, details)
    log.info("Updated receipt '%s'", receipt_id)
    return _replace(ledger, CollectionName.RECEIPTS, updated), updated


def attach_receipt_doc(ledger: Ledger, receipt_id: str, doc: Document) -> Ledger:
    current = _find(ledger, CollectionName.RECEIPTS, receipt_id)
    if current is None:
        return ledger
    return _replace(ledger, CollectionName.RECEIPTS, replace(current, docs=current.docs + (doc,)))


def remove_receipt_doc(ledger: Ledger, receipt_id: str, index: int) -> Ledger:
    current = _find(ledger, CollectionName.RECEIPTS, receipt_id)
    if current is None or not 0 <= index < len(current.docs):
        return ledger
    docs = current.docs[:index] + current.docs[index + 1:]
    return _replace(ledger, CollectionName.RECEIPTS, replace(current, docs=docs))


def remove_receipt(ledger: Ledger, receipt_id: str) -> Ledger:
    return _remove(ledger, CollectionName.RECEIPTS, receipt_id)


def set_receipts_filter(ledger: Ledger, **changes: Any) -> Ledger:
    return _set_filter(ledger, CollectionName.RECEIPTS, changes)


def clear_receipt_filters(ledger: Ledger) -> Ledger:
    return _with_collection(ledger, CollectionName.RECEIPTS, replace(ledger.receipts, filters=FilterState()))


def list_receipts(ledger: Ledger) -> Tuple[Receipt, ...]:
    return ledger.receipts.records


def get_receipt(ledger: Ledger, receipt_id: str) -> Receipt:
    return _require(ledger, CollectionName.RECEIPTS, receipt_id, "receipt")


def find_receipts_for_sale(ledger: Ledger, sale_id: str) -> List[Receipt]:
    """Return every receipt raised against ``sale_id`` in insertion order."""

    key = (sale_id or "").strip()
    return [receipt for receipt in ledger.receipts.records if receipt.sale_id == key]


def _receipt_details(receipt: Receipt) -> ReceiptDetails:
    return ReceiptDetails(
        voucher_no=receipt.voucher_no,
        payment_type=receipt.payment_type,
        date=receipt.date,
        cheque_no=receipt.cheque_no,
        cheque_bank=receipt.cheque_bank,
        lc_no=receipt.lc_no,
        lc_bank=receipt.lc_bank,
        docs=receipt.docs,
    )


def _receipt_with_details(receipt: Receipt, details: ReceiptDetails) -> Receipt:
    return replace(
        receipt,
        date=details.date,
        voucher_no=details.voucher_no,
        payment_type=details.payment_type,
        cheque_no=details.cheque_no,
        cheque_bank=details.cheque_bank,
        lc_no=details.lc_no,
        lc_bank=details.lc_bank,
        docs=details.docs,
    )


# ---------------------------------------------------------------------------
# Cross-entity linkage
# ---------------------------------------------------------------------------


def create_sale(ledger: Ledger, draft: SaleDraft) -> Tuple[Ledger, Sale]:
    """Record a sale. Unlike purchases, no payment is opened for it."""

    return add_sale(ledger, draft)


def create_purchase(ledger: Ledger, draft: PurchaseDraft) -> Tuple[Ledger, Purchase, Payment]:
    """Record a purchase together with its ``Unpaid`` payment.

    Both records land in the returned ledger value; the input ledger is not
    modified, so no reader can ever observe the purchase without its payment.

    Args:
        ledger (Ledger): Ledger to extend.
        draft (PurchaseDraft): Structured intent describing the purchase.

    Returns:
        tuple[Ledger, Purchase, Payment]: The new ledger, the stored purchase,
            and the payment opened for it.

    Raises:
        ValidationFailure: If the draft carries invalid items or dates.
    """

    purchase = _build_purchase(ledger, draft)
    with_purchase = _append(ledger, CollectionName.PURCHASES, purchase)
    payment = _build_payment(
        with_purchase,
        PaymentDraft(
            kind=PaymentKind.PURCHASE,
            counterparty_name=purchase.supplier,
            amount=purchase.amount,
            date=purchase.date,
            purchase_id=purchase.purchase_id,
        ),
    )
    result = _append(with_purchase, CollectionName.PAYMENTS, payment)
    log.info(
        "Recorded purchase '%s' from '%s' (amount=%s) with payment '%s'",
        purchase.purchase_id,
        purchase.supplier,
        purchase.amount,
        payment.payment_id,
    )
    return result, purchase, payment


def create_receipt_for_sale(
    ledger: Ledger,
    sale_id: str,
    details: ReceiptDetails,
    *,
    policy: ReceiptPolicy,
) -> Tuple[Ledger, Receipt]:
    """Raise a receipt against a sale.

    Customer and amount are copied from the sale as it stands now. With
    ``ReceiptPolicy.APPEND`` a new receipt is always added, so a sale may
    collect several. With ``ReceiptPolicy.UPSERT_BY_SALE`` the first receipt
    already recorded for the sale is replaced in place and keeps its receipt
    id; a new one is added only when none exists.

    Args:
        ledger (Ledger): Ledger holding the sale.
        sale_id (str): Identifier of the sale being paid.
        details (ReceiptDetails): Voucher and instrument details.
        policy (ReceiptPolicy): Linkage policy chosen by the caller.

    Returns:
        tuple[Ledger, Receipt]: The new ledger and the stored receipt.

    Raises:
        MissingReferenceError: If ``sale_id`` is unknown.
        ValidationFailure: If the policy or instrument details are invalid.
    """

    sale = get_sale(ledger, (sale_id or "").strip())
    try:
        policy = ReceiptPolicy(policy)
    except ValueError as exc:
        raise ValidationFailure(f"Unsupported receipt policy: {policy}") from exc
    details = validate_receipt_details(details)

    existing = None
    if policy is ReceiptPolicy.UPSERT_BY_SALE:
        matches = find_receipts_for_sale(ledger, sale.sale_id)
        existing = matches[0] if matches else None

    receipt = _receipt_with_details(
        Receipt(
            receipt_id=existing.receipt_id if existing else _assign_id(IdPrefix.RECEIPT, None, ledger.receipts),
            sale_id=sale.sale_id,
            customer=sale.customer,
            amount=sale.amount,
            date=details.date,
            voucher_no=details.voucher_no,
        ),
        details,
    )

    if existing is not None:
        log.info("Replaced receipt '%s' for sale '%s'", receipt.receipt_id, sale.sale_id)
        return _replace(ledger, CollectionName.RECEIPTS, receipt), receipt
    log.info(
        "Recorded receipt '%s' for sale '%s' (amount=%s, type=%s)",
        receipt.receipt_id,
        sale.sale_id,
        receipt.amount,
        receipt.payment_type.value,
    )
    return _append(ledger, CollectionName.RECEIPTS, receipt), receipt


def settle_payment(ledger: Ledger, payment_id: str, details: ReceiptDetails) -> Tuple[Ledger, Payment]:
    """Mark a payment ``Paid`` and attach the receipt details.

    Settling an already paid payment overwrites its details.

    Raises:
        MissingReferenceError: If ``payment_id`` is unknown.
        ValidationFailure: If the details are invalid.
    """

    payment = get_payment(ledger, payment_id)
    details = validate_receipt_details(details)
    settled = replace(payment, status=PaymentStatus.PAID, receipt=details)
    log.info("Settled payment '%s' by %s (voucher=%s)", payment_id, details.payment_type.value, details.voucher_no)
    return _replace(ledger, CollectionName.PAYMENTS, settled), settled


# ---------------------------------------------------------------------------
# Filtering
# ---------------------------------------------------------------------------


def searchable_text(value: Any) -> str:
    """Render a field value the way it is matched by searches."""

    if value is None:
        return ""
    if isinstance(value, LineItem):
        return f"{value.name} {format_number(value.qty)} {format_number(value.price)}"
    if isinstance(value, Decimal):
        return format_number(value)
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, (tuple, list)):
        return " ".join(text for text in (searchable_text(part) for part in value) if text)
    return str(value)


def match_record(record: Any, query: Optional[str], selected_fields: Sequence[str]) -> bool:
    """Return whether ``query`` occurs in the selected fields of ``record``.

    The non-empty field values are joined with single spaces and compared
    case-insensitively. An empty query matches every record.
    """

    needle = (query or "").lower()
    if not needle:
        return True
    parts = (searchable_text(getattr(record, name, None)) for name in selected_fields)
    haystack = " ".join(part for part in parts if part).lower()
    return needle in haystack


def filter_records(
    records: Iterable[Any],
    query: Optional[str] = "",
    status: Optional[str] = None,
    *,
    selected_fields: Optional[Sequence[str]] = None,
) -> List[Any]:
    """Return the records matching ``query`` and ``status`` in original order.

    Args:
        records (Iterable[Any]): Records of one collection.
        query (str | None): Free-text search; empty matches everything.
        status (str | None): Required ``status`` value. ``None`` and
            ``ALL_STATUSES`` disable the check.
        selected_fields (Sequence[str] | None): Fields searched; defaults to
            the standard fields of each record type.
    """

    result = []
    for record in records:
        if status not in (None, ALL_STATUSES) and getattr(record, "status", None) != status:
            continue
        searched = selected_fields if selected_fields is not None else SEARCH_FIELDS[type(record)]
        if match_record(record, query, searched):
            result.append(record)
    return result


def _visible(collection: Collection) -> List[Any]:
    return filter_records(collection.records, collection.filters.q, collection.filters.status)


def visible_sales(ledger: Ledger) -> List[Sale]:
    return _visible(ledger.sales)


def visible_purchases(ledger: Ledger) -> List[Purchase]:
    return _visible(ledger.purchases)


def visible_payments(ledger: Ledger) -> List[Payment]:
    """Purchase payments passing the stored payment filters; sale payments are not listed."""

    filters = ledger.payments.filters
    purchase_payments = [payment for payment in ledger.payments.records if payment.kind is PaymentKind.PURCHASE]
    return filter_records(purchase_payments, filters.q, filters.status)


def visible_receipts(ledger: Ledger) -> List[Receipt]:
    return _visible(ledger.receipts)


# ---------------------------------------------------------------------------
# Runtime context
# ---------------------------------------------------------------------------


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and the last saved ledger.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory.

    Returns:
        RuntimeContext: Context holding the restored ledger, or an empty one
            when nothing has been saved yet.

    Raises:
        FileNotFoundError: If the configuration file cannot be located.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    ledger = persistence.restore(settings.data_file) or Ledger()
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(settings=settings, ledger=ledger)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate the configured schema version before mutating state.

    Raises:
        RuntimeError: If the configured version differs from
            ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def persist_context(context: RuntimeContext) -> bool:
    """Write the context's ledger to its configured workbook (best effort)."""

    return persistence.persist(context.ledger, context.settings.data_file)


def commit(context: RuntimeContext, ledger: Ledger) -> Ledger:
    """Make ``ledger`` the current value and write it through.

    A failed write is logged by the persistence gateway and does not undo the
    change.
    """

    context.ledger = ledger
    persist_context(context)
    return ledger
