"""Unit tests describing the CLI presentation layer contract."""

from __future__ import annotations

import argparse
import base64
from decimal import Decimal

import pytest

from trade_ledger import cli, core_logic, persistence
from trade_ledger.constants import PaymentStatus
from trade_ledger.models import LineItem


WRITE_COMMANDS = {
    "init",
    "add-sale",
    "update-sale",
    "delete-sale",
    "add-purchase",
    "update-purchase",
    "delete-purchase",
    "delete-payment",
    "settle-payment",
    "add-receipt",
    "delete-receipt",
    "set-filter",
    "import",
}

READ_COMMANDS = {
    "sales",
    "purchases",
    "payments",
    "receipts",
    "export",
}


def _registered_choices(parser: argparse.ArgumentParser) -> set[str]:
    for action in parser._actions:
        if isinstance(action, argparse._SubParsersAction):
            return set(action.choices)
    return set()


# ---------------------------------------------------------------------------
# Parser construction
# ---------------------------------------------------------------------------


def test_build_parser_sets_program_metadata():
    parser = cli.build_parser()
    assert isinstance(parser, argparse.ArgumentParser)
    assert parser.prog == "trade-ledger"


def test_configure_subcommands_registers_all_commands(cli_parser):
    command_table = cli.configure_subcommands(cli_parser)

    assert set(command_table) == WRITE_COMMANDS | READ_COMMANDS
    assert _registered_choices(cli_parser) == WRITE_COMMANDS | READ_COMMANDS


def test_register_write_commands_returns_command_specs(subparsers_action):
    specs = cli.register_write_commands(subparsers_action)

    assert set(specs) == WRITE_COMMANDS
    for spec in specs.values():
        assert isinstance(spec, cli.CommandSpec)
    assert specs["init"].requires_context is False


def test_register_read_commands_returns_command_specs(subparsers_action):
    specs = cli.register_read_commands(subparsers_action)

    assert set(specs) == READ_COMMANDS
    assert set(subparsers_action.choices) == READ_COMMANDS


def test_add_receipt_requires_policy():
    parser = cli.build_parser()
    cli.configure_subcommands(parser)

    with pytest.raises(SystemExit):
        parser.parse_args(["add-receipt", "--sale-id", "S1"])

    args = parser.parse_args(["add-receipt", "--sale-id", "S1", "--policy", "upsert-by-sale"])
    assert args.policy == "upsert-by-sale"


# ---------------------------------------------------------------------------
# Dispatch and error handling
# ---------------------------------------------------------------------------


def test_build_command_table_indexes_by_name(command_spec_iterable):
    table = cli.build_command_table(command_spec_iterable)
    assert list(table) == ["alpha", "beta", "gamma"]


def test_build_command_table_rejects_duplicates(command_spec_iterable):
    with pytest.raises(ValueError):
        cli.build_command_table([*command_spec_iterable, command_spec_iterable[0]])


def test_dispatch_command_unknown_raises(context, command_spec_iterable):
    table = cli.build_command_table(command_spec_iterable)
    with pytest.raises(KeyError):
        cli.dispatch_command(context, argparse.Namespace(command="delta"), table)


def test_dispatch_command_requires_context_for_ledger_commands(command_spec_iterable):
    table = cli.build_command_table(command_spec_iterable)

    with pytest.raises(RuntimeError):
        cli.dispatch_command(None, argparse.Namespace(command="alpha"), table)


def test_dispatch_command_runs_context_free_commands(command_spec_iterable):
    spec = cli.CommandSpec(
        "setup",
        "setup help",
        lambda subparsers: subparsers.add_parser("setup"),
        lambda *_: 0,
        requires_context=False,
    )
    table = cli.build_command_table([*command_spec_iterable, spec])

    assert cli.dispatch_command(None, argparse.Namespace(command="setup"), table) == 0


@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (core_logic.MissingReferenceError("missing"), 2),
        (core_logic.ValidationFailure("bad"), 2),
        (FileNotFoundError("config.ini"), 3),
        (RuntimeError("schema"), 1),
    ],
)
def test_handle_cli_error_maps_exit_codes(error, expected):
    assert cli.handle_cli_error(error) == expected


# ---------------------------------------------------------------------------
# Translation helpers
# ---------------------------------------------------------------------------


def test_parse_items_uses_codec_syntax():
    assert cli.parse_items(["Pipe:2@50", "", "Valve:1@75"]) == (
        LineItem("Pipe", Decimal("2"), Decimal("50")),
        LineItem("Valve", Decimal("1"), Decimal("75")),
    )


def test_load_document_builds_data_url(tmp_path):
    path = tmp_path / "bill.pdf"
    path.write_bytes(b"%PDF-1.4")

    document = cli.load_document(path)

    assert document.name == "bill.pdf"
    assert document.content == "data:application/pdf;base64," + base64.b64encode(b"%PDF-1.4").decode("ascii")


def test_translate_sale_changes_only_includes_supplied_fields():
    args = argparse.Namespace(customer=None, items=["Nut:1@2"], invoices=None, date=None, docs=None)

    assert cli.translate_sale_changes(args) == {"items": (LineItem("Nut", Decimal("1"), Decimal("2")),)}


# ---------------------------------------------------------------------------
# End-to-end through main()
# ---------------------------------------------------------------------------


def test_main_add_purchase_persists_purchase_and_payment(config_factory, capsys):
    bundle = config_factory()

    exit_code = cli.main(
        ["--config", str(bundle.config_path), "add-purchase", "--supplier", "Acme", "--item", "Pipe:2@50", "--item", "Valve:1@75"]
    )

    assert exit_code == 0
    purchase_id, payment_id = capsys.readouterr().out.split()
    ledger = persistence.restore(bundle.workbook_path)
    assert ledger.purchases.records[0].purchase_id == purchase_id
    assert ledger.purchases.records[0].amount == Decimal("175")
    payment = ledger.payments.records[0]
    assert payment.payment_id == payment_id
    assert payment.status is PaymentStatus.UNPAID


def test_main_settle_and_list_payments(config_factory, capsys):
    bundle = config_factory()
    config = str(bundle.config_path)
    cli.main(["--config", config, "add-purchase", "--supplier", "Acme", "--item", "Pipe:2@50"])
    _purchase_id, payment_id = capsys.readouterr().out.split()

    exit_code = cli.main(
        ["--config", config, "settle-payment", "--id", payment_id, "--voucher-no", "PV-1", "--payment-type", "Cheque", "--cheque-no", "CH-1", "--cheque-bank", "BankX"]
    )
    assert exit_code == 0

    cli.main(["--config", config, "payments"])
    lines = capsys.readouterr().out.strip().splitlines()
    assert lines[0].split("\t")[0] == "id"
    assert payment_id in lines[1]
    assert "Paid" in lines[1].split("\t")


def test_main_add_receipt_for_sale(config_factory, capsys):
    bundle = config_factory()
    config = str(bundle.config_path)
    cli.main(["--config", config, "add-sale", "--customer", "Beta", "--item", "Nut:10@3"])
    sale_id = capsys.readouterr().out.strip()

    exit_code = cli.main(
        ["--config", config, "add-receipt", "--sale-id", sale_id, "--policy", "append", "--voucher-no", "V1"]
    )

    assert exit_code == 0
    ledger = persistence.restore(bundle.workbook_path)
    receipt = ledger.receipts.records[0]
    assert receipt.sale_id == sale_id
    assert receipt.customer == "Beta"
    assert receipt.amount == Decimal("30")


def test_main_unknown_payment_returns_business_rule_code(config_file):
    assert cli.main(["--config", str(config_file), "settle-payment", "--id", "PAY_unknown"]) == 2


def test_main_missing_config_returns_not_found_code(tmp_path):
    assert cli.main(["--config", str(tmp_path / "absent.ini"), "sales"]) == 3


def test_main_schema_mismatch_returns_generic_error(config_factory):
    bundle = config_factory(schema_version="0.0.1")
    assert cli.main(["--config", str(bundle.config_path), "sales"]) == 1


def test_main_init_creates_config_and_workbook(tmp_path):
    config_path = tmp_path / "config.ini"

    exit_code = cli.main(["--config", str(config_path), "init", "--business-name", "Acme Trading"])

    assert exit_code == 0
    assert config_path.exists()
    assert (tmp_path / "ledger_data.xlsx").exists()
    context = core_logic.load_runtime_context(config_path)
    assert context.settings.business_name == "Acme Trading"
    assert context.ledger.sales.records == ()


def test_main_export_and_import_sales(config_factory, tmp_path, capsys):
    source = config_factory()
    target = config_factory()
    csv_path = tmp_path / "sales.csv"
    cli.main(["--config", str(source.config_path), "add-sale", "--customer", "Beta", "--item", "Nut:10@3", "--invoice", "INV-1"])
    capsys.readouterr()

    assert cli.main(["--config", str(source.config_path), "export", "--collection", "sales", "--file", str(csv_path)]) == 0
    assert cli.main(["--config", str(target.config_path), "import", "--collection", "sales", "--file", str(csv_path)]) == 0

    imported = persistence.restore(target.workbook_path)
    original = persistence.restore(source.workbook_path)
    assert imported.sales.records == original.sales.records


def test_main_set_filter_narrows_listing(config_factory, capsys):
    bundle = config_factory()
    config = str(bundle.config_path)
    cli.main(["--config", config, "add-sale", "--customer", "Beta", "--item", "Nut:1@1"])
    cli.main(["--config", config, "add-sale", "--customer", "Gamma", "--item", "Bolt:1@1"])
    capsys.readouterr()

    assert cli.main(["--config", config, "set-filter", "--collection", "sales", "--q", "gam"]) == 0
    cli.main(["--config", config, "sales"])

    rows = capsys.readouterr().out.strip().splitlines()[1:]
    assert len(rows) == 1
    assert "Gamma" in rows[0]
