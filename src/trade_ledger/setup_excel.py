"""Utility for initializing a trade ledger workbook and its configuration.

The module doubles as a script (``python -m trade_ledger.setup_excel``) and as
a library used by the ``init`` command and by tests.
"""

from __future__ import annotations

import argparse
import configparser
import sys
from pathlib import Path
from typing import Sequence

from . import data_manager, log
from .constants import EXPECTED_SCHEMA_VERSION

DEFAULT_DATA_FILE = "ledger_data.xlsx"
DEFAULT_BUSINESS_NAME = "My Business"


def write_config(
    config_path: Path,
    *,
    data_file: str = DEFAULT_DATA_FILE,
    business_name: str = DEFAULT_BUSINESS_NAME,
    schema_version: str = EXPECTED_SCHEMA_VERSION,
    overwrite: bool = False,
) -> Path:
    """Write a ``config.ini`` with the ``[System]`` section.

    Raises:
        FileExistsError: If ``config_path`` exists and ``overwrite`` is false.
    """

    config_path = Path(config_path).expanduser().resolve()
    if config_path.exists() and not overwrite:
        raise FileExistsError(f"Refusing to overwrite existing configuration: {config_path}")

    parser = configparser.ConfigParser()
    # DataFile/BusinessName keep their case in the written file.
    parser.optionxform = str  # type: ignore[assignment]
    parser["System"] = {
        "DataFile": data_file,
        "BusinessName": business_name,
        "SchemaVersion": schema_version,
    }
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as handle:
        parser.write(handle)
    log.info("Wrote configuration '%s'", config_path)
    return config_path


def create_ledger_workbook(
    destination: Path,
    *,
    schema_version: str = EXPECTED_SCHEMA_VERSION,
    overwrite: bool = False,
) -> Path:
    """Create an empty ledger workbook at ``destination``.

    The workbook carries one sheet per collection, the ``Filters`` sheet and
    the ``Meta`` sheet stamped with ``schema_version``.

    Raises:
        FileExistsError: If the target exists and ``overwrite`` is false.
        PersistenceFailure: If the workbook cannot be written.
    """

    destination = Path(destination).expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(f"Refusing to overwrite existing ledger workbook: {destination}")

    workbook = data_manager.create_workbook()
    data_manager.write_schema_version(workbook, schema_version)
    data_manager.save_workbook(workbook, destination)
    log.info("Created ledger workbook '%s'", destination)
    return destination


def run_from_config(config_path: Path, *, overwrite: bool = False) -> Path:
    """Create the workbook named by an existing ``config.ini``."""

    config_path = Path(config_path).expanduser().resolve()
    parser = data_manager.read_config(config_path)
    settings = data_manager.parse_settings(parser, base_path=config_path.parent)
    return create_ledger_workbook(
        settings.data_file,
        schema_version=settings.schema_version,
        overwrite=overwrite,
    )


def initialize(
    config_path: Path,
    *,
    data_file: str = DEFAULT_DATA_FILE,
    business_name: str = DEFAULT_BUSINESS_NAME,
    overwrite: bool = False,
) -> Path:
    """Write ``config.ini`` when missing, then create its workbook.

    Returns:
        Path: Location of the new workbook.
    """

    config_path = Path(config_path).expanduser().resolve()
    if overwrite or not config_path.exists():
        write_config(config_path, data_file=data_file, business_name=business_name, overwrite=overwrite)
    return run_from_config(config_path, overwrite=overwrite)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""

    parser = argparse.ArgumentParser(description="Initialize a trade ledger workbook")
    parser.add_argument(
        "--config",
        default=data_manager.CONFIG_FILE_NAME,
        help="Path to configuration file (default: config.ini)",
    )
    parser.add_argument("--data-file", default=DEFAULT_DATA_FILE)
    parser.add_argument("--business-name", default=DEFAULT_BUSINESS_NAME)
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite the configuration and workbook if they already exist.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the setup script."""

    args = parse_args(argv)
    try:
        output_path = initialize(
            Path(args.config),
            data_file=args.data_file,
            business_name=args.business_name,
            overwrite=args.force,
        )
    except (FileNotFoundError, KeyError) as exc:
        log.error("%s", exc)
        return 1
    except FileExistsError as exc:
        log.error("%s", exc)
        log.error("Run with --force to overwrite the existing file if appropriate.")
        return 1
    except (data_manager.PersistenceFailure, OSError) as exc:
        log.error("Unable to write workbook: %s", exc)
        return 1

    print(f"Created ledger workbook at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
