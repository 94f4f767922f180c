"""Initialise a new store workbook.

Creates the workbook named by ``[System] DataFile`` with an empty
``Storage`` sheet, writes default settings and seeds the ``admin`` account.
Usable as a script (``pos-store-init``) or from tests.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Optional, Sequence

from . import core_logic, data_manager, session
from .constants import StorageKey
from .models import User


def create_store_workbook(destination: Path, *, overwrite: bool = False) -> Path:
    """Write an empty storage workbook at ``destination``.

    Raises:
        FileExistsError: If the file exists and ``overwrite`` is ``False``.
    """

    destination = destination.expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(f"Refusing to overwrite existing store workbook: {destination}")

    workbook = data_manager.create_storage_workbook()
    data_manager.save_workbook(workbook, destination)
    return destination


def run_from_config(config_path: Path, *, overwrite: bool = False) -> tuple[Path, Optional[User]]:
    """Create the workbook named in ``config_path`` and seed it.

    Returns:
        tuple[Path, User | None]: The workbook path and the seeded admin
            (``None`` when the store already had users).
    """

    parser = data_manager.read_config(config_path)
    settings = data_manager.parse_settings(parser, base_path=config_path.expanduser().resolve().parent)
    output_path = create_store_workbook(settings.data_file, overwrite=overwrite)

    context = core_logic.load_runtime_context(config_path)
    core_logic.persist_keys(context, StorageKey.SETTINGS)
    admin = session.ensure_default_admin(context)
    return output_path, admin


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Initialise a point-of-sale store workbook")
    parser.add_argument(
        "--config",
        default=data_manager.CONFIG_FILE_NAME,
        help="Path to configuration file (default: config.ini)",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite the target workbook if it already exists.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for ``pos-store-init``."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()
    print(f"Using configuration: {config_path}")

    try:
        output_path, admin = run_from_config(config_path, overwrite=args.force)
    except (FileNotFoundError, KeyError) as exc:
        print(f"[ERROR] {exc}")
        return 1
    except FileExistsError as exc:
        print(f"[ERROR] {exc}")
        print("Run with --force to overwrite the existing file if appropriate.")
        return 1
    except OSError as exc:
        print(f"[ERROR] Unable to write workbook: {exc}")
        return 1

    print(f"[SUCCESS] Created store workbook at '{output_path}'.")
    if admin is not None:
        print(f"Sign in as '{admin.username}' and change the default password.")
        print(f"Recovery code: {admin.recovery_code}")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
