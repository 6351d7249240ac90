"""Enumerations shared across the trade ledger modules.

Centralises domain constants so that the persistence layer, the ledger rules
and the command-line front-end rely on a single source of truth for status
values, identifier prefixes and collection names.
"""

from __future__ import annotations

from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Length of the random alphanumeric part of every generated identifier.
ID_SUFFIX_LENGTH = 6

# Status filter value that disables status matching.
ALL_STATUSES = "ALL"

# Date format used for every document date.
DATE_FORMAT = "%Y-%m-%d"


class IdPrefix(str, Enum):
    """Enumerate the identifier prefixes of each entity type."""

    SALE = "S"
    PURCHASE = "P"
    PAYMENT = "PAY"
    RECEIPT = "RCPT"


class PaymentStatus(str, Enum):
    """Enumerate the settlement states of a payment."""

    UNPAID = "Unpaid"
    PAID = "Paid"


class PaymentKind(str, Enum):
    """Enumerate the document types a payment can reference."""

    SALE = "sale"
    PURCHASE = "purchase"


class PaymentType(str, Enum):
    """Enumerate the instruments accepted on receipts and settlements."""

    CASH = "Cash"
    CHEQUE = "Cheque"
    LC = "LC"
    BANK = "Bank"
    ONLINE = "Online"


class ReceiptPolicy(str, Enum):
    """Enumerate how a new receipt is linked to its sale."""

    APPEND = "append"
    UPSERT_BY_SALE = "upsert-by-sale"


class CollectionName(str, Enum):
    """Enumerate the ledger collections and their snapshot keys."""

    SALES = "sales"
    PURCHASES = "purchases"
    PAYMENTS = "payments"
    RECEIPTS = "receipts"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the DAL."""

    SALES = "Sales"
    PURCHASES = "Purchases"
    PAYMENTS = "Payments"
    RECEIPTS = "Receipts"
    FILTERS = "Filters"
    META = "Meta"


COLLECTION_SHEETS = {
    CollectionName.SALES: SheetName.SALES,
    CollectionName.PURCHASES: SheetName.PURCHASES,
    CollectionName.PAYMENTS: SheetName.PAYMENTS,
    CollectionName.RECEIPTS: SheetName.RECEIPTS,
}


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "ID_SUFFIX_LENGTH",
    "ALL_STATUSES",
    "DATE_FORMAT",
    "IdPrefix",
    "PaymentStatus",
    "PaymentKind",
    "PaymentType",
    "ReceiptPolicy",
    "CollectionName",
    "SheetName",
    "COLLECTION_SHEETS",
]
