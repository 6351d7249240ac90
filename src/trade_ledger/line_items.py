"""Line-item codec used by the flat-file interchange.

A document's line items travel through CSV exports as a single token::

    Pipe:2@50|Valve:1@75

Each item is written as ``<name>:<qty>@<price>`` and items are joined with
``|``. A ``|`` inside an item name is replaced with ``/`` before encoding.
The substitution cannot be undone and is kept as-is so that files exported
by earlier versions decode identically. Names containing ``:`` or ``@`` do
not survive a round trip either.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, List

from .models import LineItem


ITEM_SEPARATOR = "|"
QTY_SEPARATOR = ":"
PRICE_SEPARATOR = "@"
NAME_SUBSTITUTE = "/"


def parse_number(value: Any) -> Decimal:
    """Coerce ``value`` into a :class:`~decimal.Decimal`.

    Blank, missing, non-numeric and non-finite inputs all become ``0`` so
    that a damaged cell never aborts an import.

    Args:
        value (Any): Number, numeric string, or ``None``.

    Returns:
        Decimal: Parsed value, or ``Decimal("0")`` when ``value`` is unusable.
    """

    if value is None or isinstance(value, bool):
        return Decimal("0")
    if isinstance(value, Decimal):
        parsed = value
    else:
        text = str(value).strip()
        if not text:
            return Decimal("0")
        try:
            parsed = Decimal(text)
        except InvalidOperation:
            return Decimal("0")
    if not parsed.is_finite():
        return Decimal("0")
    return parsed


def format_number(value: Decimal) -> str:
    """Render ``value`` in its shortest plain form (``2``, ``2.5``, ``100``)."""

    if value == 0:
        return "0"
    return format(value.normalize(), "f")


def encode_item(item: LineItem) -> str:
    name = item.name.replace(ITEM_SEPARATOR, NAME_SUBSTITUTE)
    return f"{name}{QTY_SEPARATOR}{format_number(item.qty)}{PRICE_SEPARATOR}{format_number(item.price)}"


def encode_items(items: Iterable[LineItem]) -> str:
    """Encode line items into one interchange token.

    Args:
        items (Iterable[LineItem]): Items in document order.

    Returns:
        str: ``|``-joined item tokens; an empty string when there are no
            items.
    """

    return ITEM_SEPARATOR.join(encode_item(item) for item in items)


def decode_item(piece: str) -> LineItem:
    left, _, price = piece.partition(PRICE_SEPARATOR)
    name, _, qty = left.partition(QTY_SEPARATOR)
    return LineItem(name=name.strip(), qty=parse_number(qty), price=parse_number(price))


def decode_items(token: str) -> List[LineItem]:
    """Decode an interchange token back into line items.

    Empty pieces (for example from a trailing ``|``) are dropped. Each piece
    is split on its first ``@`` and the remainder on its first ``:``; missing
    or invalid quantities and prices decode as ``0``.

    Args:
        token (str): Token produced by :func:`encode_items` or read from a
            CSV cell.

    Returns:
        list[LineItem]: Decoded items in token order.
    """

    if not token:
        return []
    return [decode_item(piece) for piece in str(token).split(ITEM_SEPARATOR) if piece]


__all__ = [
    "parse_number",
    "format_number",
    "encode_item",
    "encode_items",
    "decode_item",
    "decode_items",
]
