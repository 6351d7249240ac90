"""Command-line entry points for the trade ledger.

All orchestration in this module is limited to argparse wiring and translating
command-line arguments into the drafts and calls consumed by the business
layer. Every write command commits the resulting ledger value back to the
runtime context, which writes it through to the workbook.
"""

from __future__ import annotations

import argparse
import base64
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence, Tuple

from . import core_logic, interchange, log, setup_excel
from .constants import ALL_STATUSES, CollectionName, PaymentStatus, PaymentType, ReceiptPolicy
from .line_items import decode_item
from .models import Document, LineItem, ReceiptDetails


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[Optional[core_logic.RuntimeContext], argparse.Namespace], int]
    requires_context: bool = True


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="trade-ledger",
        description="Command-line tools for the trade ledger workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to the nearest config.ini).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands."""
    specs = {
        "init": register_init_command(),
        "add-sale": register_add_sale_command(),
        "update-sale": register_update_sale_command(),
        "delete-sale": register_delete_command("delete-sale", "Delete a sale.", core_logic.remove_sale),
        "add-purchase": register_add_purchase_command(),
        "update-purchase": register_update_purchase_command(),
        "delete-purchase": register_delete_command(
            "delete-purchase", "Delete a purchase; its payment is kept.", core_logic.remove_purchase
        ),
        "delete-payment": register_delete_command("delete-payment", "Delete a payment.", core_logic.remove_payment),
        "settle-payment": register_settle_payment_command(),
        "add-receipt": register_add_receipt_command(),
        "delete-receipt": register_delete_command("delete-receipt", "Delete a receipt.", core_logic.remove_receipt),
        "set-filter": register_set_filter_command(),
        "import": register_import_command(),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands."""
    specs = {
        name.value: register_list_command(name) for name in CollectionName
    }
    specs["export"] = register_export_command()
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def _add_document_arguments(parser: argparse.ArgumentParser, flag: str, dest: str) -> None:
    parser.add_argument(flag, dest=dest, action="append", type=Path, default=None, help="File to attach (repeatable).")


def _add_receipt_detail_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--voucher-no", default="")
    parser.add_argument(
        "--payment-type",
        choices=[member.value for member in PaymentType],
        default=PaymentType.CASH.value,
    )
    parser.add_argument("--date", default=None, help="YYYY-MM-DD; defaults to today.")
    parser.add_argument("--cheque-no", default="")
    parser.add_argument("--cheque-bank", default="")
    parser.add_argument("--lc-no", default="")
    parser.add_argument("--lc-bank", default="")
    _add_document_arguments(parser, "--doc", "docs")


def register_init_command() -> CommandSpec:
    """Register the parser and executor for ``init``."""
    name = "init"
    help_text = "Create config.ini and an empty ledger workbook."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--data-file", default=setup_excel.DEFAULT_DATA_FILE)
        parser.add_argument("--business-name", default=setup_excel.DEFAULT_BUSINESS_NAME)
        parser.add_argument("--force", action="store_true", help="Overwrite existing files.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_init, requires_context=False)


def register_add_sale_command() -> CommandSpec:
    """Register the parser and executor for ``add-sale``."""
    name = "add-sale"
    help_text = "Record a sale."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--customer", required=True)
        parser.add_argument("--item", dest="items", action="append", default=None, help="NAME:QTY@PRICE (repeatable).")
        parser.add_argument("--invoice", dest="invoices", action="append", default=None)
        parser.add_argument("--date", default=None)
        parser.add_argument("--id", dest="record_id", default=None)
        _add_document_arguments(parser, "--invoice-doc", "docs")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_sale)


def register_update_sale_command() -> CommandSpec:
    """Register the parser and executor for ``update-sale``."""
    name = "update-sale"
    help_text = "Change an existing sale; given items replace the old ones."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--id", dest="record_id", required=True)
        parser.add_argument("--customer", default=None)
        parser.add_argument("--item", dest="items", action="append", default=None)
        parser.add_argument("--invoice", dest="invoices", action="append", default=None)
        parser.add_argument("--date", default=None)
        _add_document_arguments(parser, "--invoice-doc", "docs")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_update_sale)


def register_add_purchase_command() -> CommandSpec:
    """Register the parser and executor for ``add-purchase``."""
    name = "add-purchase"
    help_text = "Record a purchase and open its payment."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--supplier", required=True)
        parser.add_argument("--item", dest="items", action="append", default=None, help="NAME:QTY@PRICE (repeatable).")
        parser.add_argument("--bill", dest="bills", action="append", default=None)
        parser.add_argument("--date", default=None)
        parser.add_argument("--id", dest="record_id", default=None)
        _add_document_arguments(parser, "--doc", "docs")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_purchase)


def register_update_purchase_command() -> CommandSpec:
    """Register the parser and executor for ``update-purchase``."""
    name = "update-purchase"
    help_text = "Change an existing purchase; given items replace the old ones."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--id", dest="record_id", required=True)
        parser.add_argument("--supplier", default=None)
        parser.add_argument("--item", dest="items", action="append", default=None)
        parser.add_argument("--bill", dest="bills", action="append", default=None)
        parser.add_argument("--date", default=None)
        _add_document_arguments(parser, "--doc", "docs")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_update_purchase)


def register_delete_command(
    name: str,
    help_text: str,
    remove: Callable[[Any, str], Any],
) -> CommandSpec:
    """Register a ``delete-*`` command backed by ``remove``."""

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--id", dest="record_id", required=True)
        parser.set_defaults(command=name)
        return parser

    def execute(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
        core_logic.commit(context, remove(context.ledger, args.record_id))
        return 0

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute)


def register_settle_payment_command() -> CommandSpec:
    """Register the parser and executor for ``settle-payment``."""
    name = "settle-payment"
    help_text = "Mark a payment as paid and store its receipt details."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--id", dest="record_id", required=True)
        _add_receipt_detail_arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_settle_payment)


def register_add_receipt_command() -> CommandSpec:
    """Register the parser and executor for ``add-receipt``."""
    name = "add-receipt"
    help_text = "Record a receipt against a sale."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--sale-id", required=True)
        parser.add_argument(
            "--policy",
            required=True,
            choices=[member.value for member in ReceiptPolicy],
            help="append: always add a receipt; upsert-by-sale: replace the sale's first receipt.",
        )
        _add_receipt_detail_arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_receipt)


def register_set_filter_command() -> CommandSpec:
    """Register the parser and executor for ``set-filter``."""
    name = "set-filter"
    help_text = "Store the search text or status filter of a collection."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--collection", required=True, choices=[member.value for member in CollectionName])
        parser.add_argument("--q", default=None, help="Search text; an empty string clears it.")
        parser.add_argument(
            "--status",
            default=None,
            choices=[ALL_STATUSES, *(member.value for member in PaymentStatus)],
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_set_filter)


def register_import_command() -> CommandSpec:
    """Register the parser and executor for ``import``."""
    name = "import"
    help_text = "Import sales or purchases from a CSV file."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument(
            "--collection",
            required=True,
            choices=[member.value for member in interchange.IMPORTABLE_COLLECTIONS],
        )
        parser.add_argument("--file", type=Path, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_import)


def register_list_command(collection: CollectionName) -> CommandSpec:
    """Register a read command listing the filtered records of ``collection``."""
    name = collection.value
    help_text = f"Display {collection.value} matching the stored filters."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    def execute(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
        return run_list(context, collection)

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute)


def register_export_command() -> CommandSpec:
    """Register the parser and executor for ``export``."""
    name = "export"
    help_text = "Export a collection to a CSV file."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--collection", required=True, choices=[member.value for member in CollectionName])
        parser.add_argument("--file", type=Path, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_export)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    return core_logic.load_runtime_context(Path(config_path) if config_path is not None else None)


def dispatch_command(
    context: Optional[core_logic.RuntimeContext],
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    if spec.requires_context and context is None:
        raise RuntimeError(f"Command '{spec.name}' needs a loaded runtime context")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def parse_items(tokens: Optional[Sequence[str]]) -> Tuple[LineItem, ...]:
    """Decode ``--item NAME:QTY@PRICE`` arguments."""
    return tuple(decode_item(token) for token in (tokens or ()) if token)


def load_document(path: Path) -> Document:
    """Read ``path`` into a document whose content is a base64 data URL."""
    path = Path(path).expanduser()
    mime_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
    encoded = base64.b64encode(path.read_bytes()).decode("ascii")
    return Document(name=path.name, content=f"data:{mime_type};base64,{encoded}")


def load_documents(paths: Optional[Sequence[Path]]) -> Tuple[Document, ...]:
    return tuple(load_document(path) for path in (paths or ()))


def translate_sale(args: argparse.Namespace) -> core_logic.SaleDraft:
    """Translate CLI args into a sale draft."""
    return core_logic.SaleDraft(
        customer=args.customer,
        items=parse_items(args.items),
        date=args.date,
        invoice_numbers=args.invoices,
        invoice_docs=load_documents(args.docs),
        sale_id=args.record_id,
    )


def translate_purchase(args: argparse.Namespace) -> core_logic.PurchaseDraft:
    """Translate CLI args into a purchase draft."""
    return core_logic.PurchaseDraft(
        supplier=args.supplier,
        items=parse_items(args.items),
        date=args.date,
        bill_numbers=args.bills,
        docs=load_documents(args.docs),
        purchase_id=args.record_id,
    )


def translate_sale_changes(args: argparse.Namespace) -> Dict[str, Any]:
    """Collect only the sale fields supplied on the command line."""
    changes: Dict[str, Any] = {}
    if args.customer is not None:
        changes["customer"] = args.customer
    if args.items is not None:
        changes["items"] = parse_items(args.items)
    if args.invoices is not None:
        changes["invoice_numbers"] = args.invoices
    if args.date is not None:
        changes["date"] = args.date
    if args.docs is not None:
        changes["invoice_docs"] = load_documents(args.docs)
    return changes


def translate_purchase_changes(args: argparse.Namespace) -> Dict[str, Any]:
    """Collect only the purchase fields supplied on the command line."""
    changes: Dict[str, Any] = {}
    if args.supplier is not None:
        changes["supplier"] = args.supplier
    if args.items is not None:
        changes["items"] = parse_items(args.items)
    if args.bills is not None:
        changes["bill_numbers"] = args.bills
    if args.date is not None:
        changes["date"] = args.date
    if args.docs is not None:
        changes["docs"] = load_documents(args.docs)
    return changes


def translate_receipt_details(args: argparse.Namespace) -> ReceiptDetails:
    """Translate CLI args into receipt details."""
    return ReceiptDetails(
        voucher_no=args.voucher_no,
        payment_type=PaymentType(args.payment_type),
        date=args.date or "",
        cheque_no=args.cheque_no,
        cheque_bank=args.cheque_bank,
        lc_no=args.lc_no,
        lc_bank=args.lc_bank,
        docs=load_documents(args.docs),
    )


def run_init(context: Optional[core_logic.RuntimeContext], args: argparse.Namespace) -> int:
    """Bootstrap config.ini and the ledger workbook."""
    config_path = args.config if args.config is not None else Path.cwd() / "config.ini"
    output = setup_excel.initialize(
        config_path,
        data_file=args.data_file,
        business_name=args.business_name,
        overwrite=args.force,
    )
    print(f"Created ledger workbook at '{output}'.")
    return 0


def run_add_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the sale workflow via the BLL."""
    ledger, sale = core_logic.create_sale(context.ledger, translate_sale(args))
    core_logic.commit(context, ledger)
    print(sale.sale_id)
    return 0


def run_update_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    ledger, sale = core_logic.update_sale(context.ledger, args.record_id, translate_sale_changes(args))
    if sale is None:
        raise core_logic.MissingReferenceError(f"Unknown sale id: {args.record_id}")
    core_logic.commit(context, ledger)
    return 0


def run_add_purchase(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the purchase workflow via the BLL."""
    ledger, purchase, payment = core_logic.create_purchase(context.ledger, translate_purchase(args))
    core_logic.commit(context, ledger)
    print(f"{purchase.purchase_id} {payment.payment_id}")
    return 0


def run_update_purchase(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    ledger, purchase = core_logic.update_purchase(context.ledger, args.record_id, translate_purchase_changes(args))
    if purchase is None:
        raise core_logic.MissingReferenceError(f"Unknown purchase id: {args.record_id}")
    core_logic.commit(context, ledger)
    return 0


def run_settle_payment(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the settlement workflow via the BLL."""
    ledger, _payment = core_logic.settle_payment(context.ledger, args.record_id, translate_receipt_details(args))
    core_logic.commit(context, ledger)
    return 0


def run_add_receipt(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the receipt workflow via the BLL."""
    ledger, receipt = core_logic.create_receipt_for_sale(
        context.ledger,
        args.sale_id,
        translate_receipt_details(args),
        policy=ReceiptPolicy(args.policy),
    )
    core_logic.commit(context, ledger)
    print(receipt.receipt_id)
    return 0


_FILTER_SETTERS = {
    CollectionName.SALES: core_logic.set_sales_filter,
    CollectionName.PURCHASES: core_logic.set_purchases_filter,
    CollectionName.PAYMENTS: core_logic.set_payments_filter,
    CollectionName.RECEIPTS: core_logic.set_receipts_filter,
}


def run_set_filter(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    changes: Dict[str, Any] = {}
    if args.q is not None:
        changes["q"] = args.q
    if args.status is not None:
        changes["status"] = args.status
    setter = _FILTER_SETTERS[CollectionName(args.collection)]
    core_logic.commit(context, setter(context.ledger, **changes))
    return 0


def run_import(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Import a CSV file into sales or purchases."""
    rows = list(interchange.read_csv(args.file))
    ledger, created = interchange.import_rows(context.ledger, CollectionName(args.collection), rows)
    core_logic.commit(context, ledger)
    print(f"Imported {len(created)} {args.collection}.")
    return 0


_VISIBLE = {
    CollectionName.SALES: (core_logic.visible_sales, interchange.sale_row),
    CollectionName.PURCHASES: (core_logic.visible_purchases, interchange.purchase_row),
    CollectionName.PAYMENTS: (core_logic.visible_payments, interchange.payment_row),
    CollectionName.RECEIPTS: (core_logic.visible_receipts, interchange.receipt_row),
}


def run_list(context: core_logic.RuntimeContext, collection: CollectionName) -> int:
    """Print the filtered records of ``collection`` as tab-separated rows."""
    visible, build_row = _VISIBLE[collection]
    columns = interchange.EXPORT_COLUMNS[collection]
    print("\t".join(columns))
    for record in visible(context.ledger):
        row = build_row(record)
        print("\t".join(row[column] for column in columns))
    return 0


def run_export(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    collection = CollectionName(args.collection)
    rows = interchange.export_records(context.ledger, collection)
    count = interchange.write_csv(args.file, rows, interchange.EXPORT_COLUMNS[collection])
    print(f"Exported {count} {collection.value} to '{args.file}'.")
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, core_logic.BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    log.error("%s", error)
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        spec = command_table[args.command]
        context = None
        if spec.requires_context:
            context = load_runtime_context(getattr(args, "config", None))
            core_logic.ensure_schema_version(context)
        return dispatch_command(context, args, command_table)
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
