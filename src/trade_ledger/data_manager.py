"""Data access layer for the trade ledger.

This module provides low-level helpers that read from and write to the ledger
workbook. Ledger rules and record serialization belong elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: creating, opening, and atomically persisting the Excel
   file that acts as the ledger's durable key-value store.
3. Sheet operations: replacing and streaming the raw ``(key, payload)`` rows of
   each sheet.
"""


from __future__ import annotations

import configparser
import os
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, Mapping, Optional, Sequence

import openpyxl
from openpyxl.styles import Font
from openpyxl.utils.exceptions import IllegalCharacterError, InvalidFileException
from openpyxl.workbook import Workbook

from . import log
from .constants import COLLECTION_SHEETS, SheetName


CONFIG_FILE_NAME = "config.ini"
RECORD_COLUMNS: Sequence[str] = ("RecordID", "Payload")
FILTER_COLUMNS: Sequence[str] = ("Collection", "Filters")
META_COLUMNS: Sequence[str] = ("Key", "Value")
SCHEMA_VERSION_KEY = "SchemaVersion"
WORKBOOK_SUFFIXES: Sequence[str] = (".xlsx", ".xlsm")

SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    **{sheet.value: RECORD_COLUMNS for sheet in COLLECTION_SHEETS.values()},
    SheetName.FILTERS.value: FILTER_COLUMNS,
    SheetName.META.value: META_COLUMNS,
}


class PersistenceFailure(Exception):
    """Raised when the ledger workbook cannot be read or written."""


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    business_name: str
    schema_version: str


@dataclass(frozen=True)
class StoredRow:
    """One ``(key, payload)`` row as it sits in a worksheet."""

    key: str
    payload: str


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification, which allows the caller to deliberately target a
    non-standard location. When no explicit path is given the function walks up
    from the current working directory toward the filesystem root looking for a
    file named ``CONFIG_FILE_NAME``. The first match that exists on disk is
    considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search. May be relative to the current working directory.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file. The path is *not* resolved or validated when supplied
            explicitly.

    Raises:
        FileNotFoundError: If the search exhausts all parent directories without
            finding ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    The function expands user home references (``~``), resolves the absolute
    path, and validates that the file exists before parsing it. Validation of
    required entries happens in :func:`parse_settings`.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute.

    Returns:
        configparser.ConfigParser: Initialized parser containing the raw
            configuration data.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = Path(config_path).expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    Relative ``DataFile`` entries are expanded against ``base_path`` when
    provided, or against the current working directory as a fallback, and
    resolved to an absolute form.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory to use as the anchor for relative
            ``DataFile`` entries.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If one of the required sections or options is missing from the
            configuration, or ``DataFile`` is not an ``.xlsx``/``.xlsm`` path.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        business_name = parser.get("System", "BusinessName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    data_file_path = Path(data_file_raw).expanduser()
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()
    if data_file_path.suffix.lower() not in WORKBOOK_SUFFIXES:
        raise KeyError(
            f"DataFile '{data_file_path}' must be an Excel workbook ({', '.join(WORKBOOK_SUFFIXES)})"
        )

    return ConfigSettings(
        data_file=data_file_path,
        business_name=business_name,
        schema_version=schema_version,
    )


def create_workbook() -> Workbook:
    """Build an empty ledger workbook with every sheet and its header row."""

    workbook = openpyxl.Workbook()
    if "Sheet" in workbook.sheetnames:
        del workbook["Sheet"]

    bold_font = Font(bold=True)
    for sheet_name, columns in SHEET_COLUMNS.items():
        sheet = workbook.create_sheet(title=sheet_name)
        for col_idx, column_name in enumerate(columns, 1):
            cell = sheet.cell(row=1, column=col_idx, value=column_name)
            cell.font = bold_font
    return workbook


def open_workbook(data_file: Path) -> Workbook:
    """Open the ledger workbook and return a live ``openpyxl`` workbook.

    Args:
        data_file (Path): Filesystem path to the ledger workbook.

    Returns:
        Workbook: ``openpyxl`` workbook instance backed by the provided file.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
        PersistenceFailure: If the file exists but is not a readable workbook.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    try:
        return openpyxl.load_workbook(data_file)
    except (zipfile.BadZipFile, InvalidFileException, KeyError, ValueError, OSError) as exc:
        raise PersistenceFailure(f"Unreadable workbook '{data_file}': {exc}") from exc


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to disk, replacing any previous file atomically.

    The workbook is first written next to the destination under a ``.tmp``
    name and then moved into place with :func:`os.replace`, so a failed write
    never leaves a truncated ledger behind. Parent directories are created on
    demand.

    Args:
        workbook (Workbook): Workbook instance to persist.
        destination (Path): Filesystem path that should receive the serialized
            workbook.

    Raises:
        PersistenceFailure: If the workbook cannot be written, or
            ``destination`` has a suffix openpyxl cannot load back.
    """

    dest = Path(destination).expanduser().resolve()
    if dest.suffix.lower() not in WORKBOOK_SUFFIXES:
        raise PersistenceFailure(f"Unable to write workbook '{dest}': unsupported file suffix")
    temporary = dest.with_name(dest.name + ".tmp")
    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
        workbook.save(temporary)
        os.replace(temporary, dest)
    except (OSError, ValueError) as exc:
        temporary.unlink(missing_ok=True)
        raise PersistenceFailure(f"Unable to write workbook '{dest}': {exc}") from exc


def replace_rows(workbook: Workbook, sheet_name: str, rows: Iterable[StoredRow]) -> None:
    """Replace every data row of ``sheet_name`` with ``rows``.

    The header row is kept. Cells are written as plain strings.

    Args:
        workbook (Workbook): Workbook containing the sheet.
        sheet_name (str): Name of the worksheet to rewrite.
        rows (Iterable[StoredRow]): Rows in the order they should appear.

    Raises:
        KeyError: If the worksheet does not exist.
        PersistenceFailure: If a payload contains characters Excel rejects.
    """

    sheet = workbook[sheet_name]
    if sheet.max_row > 1:
        sheet.delete_rows(2, sheet.max_row - 1)
    try:
        for row in rows:
            sheet.append([row.key, row.payload])
    except IllegalCharacterError as exc:
        raise PersistenceFailure(f"Illegal character in sheet '{sheet_name}': {exc}") from exc


def iter_rows(workbook: Workbook, sheet_name: str) -> Iterator[StoredRow]:
    """Stream the ``(key, payload)`` rows stored on ``sheet_name``.

    Header and fully empty rows are skipped. ``None`` cells become empty
    strings.

    Args:
        workbook (Workbook): Workbook containing the sheet.
        sheet_name (str): Name of the worksheet to read.

    Yields:
        StoredRow: One row per populated line in the sheet.

    Raises:
        KeyError: If the worksheet does not exist.
    """

    sheet = workbook[sheet_name]
    for raw in sheet.iter_rows(min_row=2, max_col=2, values_only=True):
        if any(cell is not None for cell in raw):
            key, payload = (list(raw) + [None, None])[:2]
            yield StoredRow(
                key="" if key is None else str(key),
                payload="" if payload is None else str(payload),
            )


def read_schema_version(workbook: Workbook) -> Optional[str]:
    """Return the schema version recorded on the ``Meta`` sheet, if any."""

    if SheetName.META.value not in workbook.sheetnames:
        return None
    for row in iter_rows(workbook, SheetName.META.value):
        if row.key == SCHEMA_VERSION_KEY:
            return row.payload
    return None


def write_schema_version(workbook: Workbook, schema_version: str) -> None:
    replace_rows(workbook, SheetName.META.value, [StoredRow(SCHEMA_VERSION_KEY, schema_version)])
    log.debug("Stamped workbook with schema version '%s'", schema_version)
