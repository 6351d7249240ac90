"""Unit tests documenting the expected behavior of the data access layer."""

from __future__ import annotations

import configparser
from pathlib import Path

import openpyxl
import pytest
from openpyxl.workbook import Workbook as OpenpyxlWorkbook

from trade_ledger import constants, data_manager


def test_find_config_file_respects_explicit_path(config_file: Path):
    """Supplying an explicit path should be treated as the winning answer."""

    result = data_manager.find_config_file(config_file)
    assert result == config_file


def test_find_config_file_discovers_in_parent_directories(tmp_path, monkeypatch):
    """Auto-discovery should walk up from the working directory."""

    config_file = tmp_path / "config.ini"
    config_file.write_text("[System]\nDataFile=ledger.xlsx")
    nested = tmp_path / "a" / "b"
    nested.mkdir(parents=True)
    monkeypatch.chdir(nested)

    result = data_manager.find_config_file()
    assert result == config_file


def test_find_config_file_raises_when_missing(tmp_path, monkeypatch):
    """Absent configuration should surface a clear FileNotFoundError."""

    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(data_manager, "CONFIG_FILE_NAME", "ledger-config-that-does-not-exist.ini")
    with pytest.raises(FileNotFoundError):
        data_manager.find_config_file()


def test_read_config_loads_sections(config_file: Path):
    """read_config should return a populated ConfigParser."""

    parser = data_manager.read_config(config_file)
    assert parser.get("System", "BusinessName") == "Test Traders"


def test_read_config_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        data_manager.read_config(tmp_path / "not_there.ini")


def test_parse_settings_resolves_relative_paths(config_factory):
    """Relative DataFile entries should be anchored to the config location."""

    bundle = config_factory(make_relative=True)
    parser = configparser.ConfigParser()
    parser.read(bundle.config_path)

    settings = data_manager.parse_settings(parser, base_path=bundle.config_path.parent)

    assert settings.data_file == (bundle.config_path.parent / bundle.workbook_path.name).resolve()
    assert settings.business_name == "Test Traders"
    assert settings.schema_version == constants.EXPECTED_SCHEMA_VERSION


def test_parse_settings_requires_expected_sections(tmp_path):
    """Missing keys should result in a descriptive KeyError."""

    parser = configparser.ConfigParser()
    parser.read_string("[Other]\nvalue=1")
    with pytest.raises(KeyError):
        data_manager.parse_settings(parser, base_path=tmp_path)


def test_parse_settings_rejects_non_workbook_data_file(tmp_path):
    """A DataFile openpyxl cannot load back must be refused up front."""

    parser = configparser.ConfigParser()
    parser.read_string("[System]\nDataFile = ledger.dat\nBusinessName = Test\nSchemaVersion = 1.0.0\n")
    with pytest.raises(KeyError):
        data_manager.parse_settings(parser, base_path=tmp_path)


def test_create_workbook_has_every_sheet_with_headers():
    workbook = data_manager.create_workbook()

    assert "Sheet" not in workbook.sheetnames
    for sheet_name, columns in data_manager.SHEET_COLUMNS.items():
        header = [cell.value for cell in workbook[sheet_name][1]]
        assert header == list(columns)
        assert workbook[sheet_name]["A1"].font.bold


def test_open_workbook_returns_openpyxl_instance(ledger_workbook_path):
    workbook = data_manager.open_workbook(ledger_workbook_path)
    assert isinstance(workbook, OpenpyxlWorkbook)


def test_open_workbook_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        data_manager.open_workbook(tmp_path / "missing.xlsx")


def test_open_workbook_wraps_corrupt_files(tmp_path):
    corrupt = tmp_path / "corrupt.xlsx"
    corrupt.write_text("definitely not a zip archive")

    with pytest.raises(data_manager.PersistenceFailure):
        data_manager.open_workbook(corrupt)


def test_replace_rows_and_iter_rows_round_trip():
    workbook = data_manager.create_workbook()
    sheet = constants.SheetName.SALES.value

    data_manager.replace_rows(workbook, sheet, [data_manager.StoredRow("S1", "{}"), data_manager.StoredRow("S2", "[]")])
    data_manager.replace_rows(workbook, sheet, [data_manager.StoredRow("S3", '{"id": "S3"}')])

    rows = list(data_manager.iter_rows(workbook, sheet))
    assert rows == [data_manager.StoredRow("S3", '{"id": "S3"}')]
    assert workbook[sheet]["A1"].value == "RecordID"


def test_replace_rows_rejects_illegal_characters():
    workbook = data_manager.create_workbook()

    with pytest.raises(data_manager.PersistenceFailure):
        data_manager.replace_rows(
            workbook, constants.SheetName.SALES.value, [data_manager.StoredRow("S1", "bad\x01value")]
        )


def test_iter_rows_unknown_sheet_raises_key_error():
    workbook = data_manager.create_workbook()
    with pytest.raises(KeyError):
        list(data_manager.iter_rows(workbook, "Nope"))


def test_schema_version_round_trip(tmp_path):
    workbook = data_manager.create_workbook()
    assert data_manager.read_schema_version(workbook) is None

    data_manager.write_schema_version(workbook, "9.9.9")
    destination = tmp_path / "meta.xlsx"
    data_manager.save_workbook(workbook, destination)

    reloaded = data_manager.open_workbook(destination)
    assert data_manager.read_schema_version(reloaded) == "9.9.9"


def test_save_workbook_replaces_atomically(tmp_path):
    destination = tmp_path / "nested" / "ledger.xlsx"
    workbook = data_manager.create_workbook()

    data_manager.save_workbook(workbook, destination)

    assert destination.exists()
    assert not destination.with_name("ledger.xlsx.tmp").exists()
    assert openpyxl.load_workbook(destination).sheetnames == list(data_manager.SHEET_COLUMNS)


def test_save_workbook_failure_keeps_previous_file(tmp_path, monkeypatch):
    destination = tmp_path / "ledger.xlsx"
    data_manager.save_workbook(data_manager.create_workbook(), destination)
    before = destination.read_bytes()

    workbook = data_manager.create_workbook()

    def _explode(path):
        Path(path).write_bytes(b"partial")
        raise OSError("disk full")

    monkeypatch.setattr(workbook, "save", _explode)

    with pytest.raises(data_manager.PersistenceFailure):
        data_manager.save_workbook(workbook, destination)

    assert destination.read_bytes() == before
    assert not destination.with_name("ledger.xlsx.tmp").exists()


def test_save_workbook_rejects_unsupported_suffix(tmp_path):
    destination = tmp_path / "ledger.dat"

    with pytest.raises(data_manager.PersistenceFailure):
        data_manager.save_workbook(data_manager.create_workbook(), destination)

    assert not destination.exists()
