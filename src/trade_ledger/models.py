"""Immutable value objects shared by every layer of the trade ledger.

Records are frozen dataclasses holding tuples rather than lists so that a
ledger value can be handed to readers without any risk of it changing under
them. Mutations in :mod:`trade_ledger.core_logic` always build new instances
with :func:`dataclasses.replace`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Optional, Tuple

from .constants import ALL_STATUSES, PaymentKind, PaymentStatus, PaymentType


@dataclass(frozen=True)
class LineItem:
    """One priced line of a sale or purchase."""

    name: str
    qty: Decimal
    price: Decimal

    @property
    def line_total(self) -> Decimal:
        return self.qty * self.price


@dataclass(frozen=True)
class Document:
    """Opaque attachment addressed by file name and content handle."""

    name: str
    content: str


@dataclass(frozen=True)
class Sale:
    sale_id: str
    date: str
    customer: str
    items: Tuple[LineItem, ...]
    amount: Decimal
    invoice_numbers: Tuple[str, ...] = ("",)
    invoice_docs: Tuple[Document, ...] = ()


@dataclass(frozen=True)
class Purchase:
    purchase_id: str
    date: str
    supplier: str
    items: Tuple[LineItem, ...]
    amount: Decimal
    bill_numbers: Tuple[str, ...] = ("",)
    docs: Tuple[Document, ...] = ()


@dataclass(frozen=True)
class ReceiptDetails:
    """Instrument details captured when money changes hands.

    Used both as the payload of a payment settlement and as the caller input
    when a receipt is raised against a sale. Instrument fields that do not
    belong to ``payment_type`` are kept blank.
    """

    voucher_no: str = ""
    payment_type: PaymentType = PaymentType.CASH
    date: str = ""
    cheque_no: str = ""
    cheque_bank: str = ""
    lc_no: str = ""
    lc_bank: str = ""
    docs: Tuple[Document, ...] = ()


@dataclass(frozen=True)
class Payment:
    """Amount owed against a purchase (or, on request, a sale).

    ``kind`` decides which of ``sale_id``/``purchase_id`` is populated; the
    other one stays ``None``.
    """

    payment_id: str
    kind: PaymentKind
    counterparty_name: str
    amount: Decimal
    date: str
    status: PaymentStatus = PaymentStatus.UNPAID
    sale_id: Optional[str] = None
    purchase_id: Optional[str] = None
    receipt: Optional[ReceiptDetails] = None


@dataclass(frozen=True)
class Receipt:
    """Money collected against a sale.

    ``customer`` and ``amount`` are copied from the sale when the receipt is
    created and are not refreshed afterwards.
    """

    receipt_id: str
    sale_id: str
    customer: str
    amount: Decimal
    date: str
    voucher_no: str
    payment_type: PaymentType = PaymentType.CASH
    cheque_no: str = ""
    cheque_bank: str = ""
    lc_no: str = ""
    lc_bank: str = ""
    docs: Tuple[Document, ...] = ()


@dataclass(frozen=True)
class FilterState:
    """Search text and status selection remembered per collection."""

    q: str = ""
    status: Optional[str] = None


@dataclass(frozen=True)
class Collection:
    """Ordered, unique-by-id records of one entity type plus its filters."""

    records: Tuple[Any, ...] = ()
    filters: FilterState = FilterState()


@dataclass(frozen=True)
class Ledger:
    """The four entity collections making up one business ledger."""

    sales: Collection = field(default_factory=Collection)
    purchases: Collection = field(default_factory=Collection)
    payments: Collection = field(
        default_factory=lambda: Collection(filters=FilterState(status=ALL_STATUSES))
    )
    receipts: Collection = field(default_factory=Collection)


_KEY_ATTRIBUTES = {
    Sale: "sale_id",
    Purchase: "purchase_id",
    Payment: "payment_id",
    Receipt: "receipt_id",
}


def record_key(record: Any) -> str:
    """Return the identifier of any ledger record."""

    return getattr(record, _KEY_ATTRIBUTES[type(record)])


__all__ = [
    "record_key",
    "LineItem",
    "Document",
    "Sale",
    "Purchase",
    "ReceiptDetails",
    "Payment",
    "Receipt",
    "FilterState",
    "Collection",
    "Ledger",
]
