"""Persistence layer for the point-of-sale store.

This module owns every byte that reaches the local disk. Business rules
belong in :mod:`pos_store.core_logic`; nothing here knows what a sale is.

The public API is organised around four responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Key-value backends: an in-memory store and the workbook-backed store that
   keeps one obfuscated JSON value per key on the ``Storage`` sheet.
3. Value obfuscation: the reversible ``encode_value``/``decode_value`` pair
   and the never-raising ``safe_load``/``safe_save_many`` wrappers.
4. Record codec: conversion between the immutable records of
   :mod:`pos_store.models` and the camelCase JSON objects of the snapshot.
"""


from __future__ import annotations

import base64
import binascii
import configparser
import json
import types
from dataclasses import dataclass, fields, is_dataclass
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Protocol, Union, get_args, get_origin, get_type_hints
from urllib.parse import quote, unquote

import openpyxl
from openpyxl.styles import Font
from openpyxl.workbook import Workbook

from . import log, models
from .constants import (
    DEFAULT_ACTIVITY_LOG_LIMIT,
    LOCKOUT_DURATION,
    MAX_ACTIVITY_LOG_LIMIT,
    MAX_FAILED_ATTEMPTS,
    SKEW_GUARD,
    STORAGE_PREFIX,
    SYNC_INTERVAL,
    SYNC_TIMEOUT,
    StorageKey,
)


CONFIG_FILE_NAME = "config.ini"
STORAGE_SHEET = "Storage"
STORAGE_COLUMNS = ("Key", "Chunk", "Value")
# Spreadsheet cells hold at most 32767 characters.
CELL_CHUNK_SIZE = 32_000
# Characters ``encodeURIComponent`` leaves untouched.
_URI_SAFE = "-_.!~*'()"


class StorageError(Exception):
    """Raised when a key-value backend cannot read or write a value."""


class StorageQuotaExceeded(StorageError):
    """Raised when a write would exceed the backend's capacity."""


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    store_name: str = "My Shop"
    sync_interval: timedelta = SYNC_INTERVAL
    sync_timeout: timedelta = SYNC_TIMEOUT
    skew_guard: timedelta = SKEW_GUARD
    max_failed_attempts: int = MAX_FAILED_ATTEMPTS
    lockout_duration: timedelta = LOCKOUT_DURATION
    bcrypt_rounds: int = 12
    activity_log_limit: int = DEFAULT_ACTIVITY_LOG_LIMIT
    default_admin_password: str = "Admin@123456"


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate ``config.ini``.

    An explicit path is returned untouched. Otherwise the search walks up from
    the current working directory and the first existing match wins.

    Args:
        explicit_path (Path | None): Optional path to use instead of the
            upward search.

    Returns:
        Path: The caller's path or the discovered configuration file.

    Raises:
        FileNotFoundError: If no parent directory contains ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for directory in (current, *current.parents):
        candidate = directory / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` into a ``ConfigParser``.

    Required entries are validated later by :func:`parse_settings`.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding="utf-8")
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into :class:`ConfigSettings`.

    Only ``[System] DataFile`` is mandatory. Optional ``[Sync]`` and
    ``[Security]`` entries fall back to the package defaults. A relative data
    file is anchored at ``base_path`` (the config directory) or the cwd.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Anchor for a relative ``DataFile``.

    Returns:
        ConfigSettings: Immutable settings with an absolute data file path.

    Raises:
        KeyError: If ``[System] DataFile`` is missing.
        ValueError: If a numeric option cannot be parsed.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    data_file_path = Path(data_file_raw).expanduser()
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    log_limit = parser.getint("Security", "ActivityLogLimit", fallback=DEFAULT_ACTIVITY_LOG_LIMIT)
    if not 1 <= log_limit <= MAX_ACTIVITY_LOG_LIMIT:
        log.warning("ActivityLogLimit %s out of range; using %s", log_limit, MAX_ACTIVITY_LOG_LIMIT)
        log_limit = MAX_ACTIVITY_LOG_LIMIT

    return ConfigSettings(
        data_file=data_file_path,
        store_name=parser.get("System", "StoreName", fallback="My Shop"),
        sync_interval=timedelta(seconds=parser.getfloat("Sync", "IntervalSeconds", fallback=SYNC_INTERVAL.total_seconds())),
        sync_timeout=timedelta(seconds=parser.getfloat("Sync", "TimeoutSeconds", fallback=SYNC_TIMEOUT.total_seconds())),
        skew_guard=timedelta(seconds=parser.getfloat("Sync", "SkewGuardSeconds", fallback=SKEW_GUARD.total_seconds())),
        max_failed_attempts=parser.getint("Security", "MaxFailedAttempts", fallback=MAX_FAILED_ATTEMPTS),
        lockout_duration=timedelta(minutes=parser.getfloat("Security", "LockoutMinutes", fallback=LOCKOUT_DURATION.total_seconds() / 60)),
        bcrypt_rounds=parser.getint("Security", "BcryptRounds", fallback=12),
        activity_log_limit=log_limit,
        default_admin_password=parser.get("Security", "DefaultAdminPassword", fallback="Admin@123456"),
    )


# ---------------------------------------------------------------------------
# Key-value backends
# ---------------------------------------------------------------------------


class KeyValueStore(Protocol):
    """String-keyed, string-valued persistence used by the whole store."""

    def get(self, key: str) -> Optional[str]:
        ...

    def set_many(self, values: Mapping[str, str]) -> None:
        ...

    def remove(self, key: str) -> None:
        ...


class MemoryStore:
    """Dict-backed store with an optional character quota."""

    def __init__(self, initial: Optional[Mapping[str, str]] = None, *, quota: Optional[int] = None) -> None:
        self._values: dict[str, str] = dict(initial or {})
        self.quota = quota

    def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    def set_many(self, values: Mapping[str, str]) -> None:
        if self.quota is not None:
            projected = {**self._values, **values}
            used = sum(len(k) + len(v) for k, v in projected.items())
            if used > self.quota:
                raise StorageQuotaExceeded(f"Storage quota of {self.quota} characters exceeded ({used})")
        self._values.update(values)

    def remove(self, key: str) -> None:
        self._values.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._values)


class WorkbookStore:
    """Key-value store kept on the ``Storage`` sheet of an ``.xlsx`` file.

    Each key owns one or more rows (``Key | Chunk | Value``); values longer
    than a cell are split into numbered chunks. Every write rewrites the
    sheet and saves the workbook once.
    """

    def __init__(self, data_file: Path) -> None:
        self.data_file = Path(data_file).expanduser().resolve()
        self._workbook = open_workbook(self.data_file)
        self._values = dict(iter_storage_values(self._workbook))
        log.debug("Loaded %d storage keys from '%s'", len(self._values), self.data_file)

    def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    def set_many(self, values: Mapping[str, str]) -> None:
        self._values.update(values)
        self._flush()

    def remove(self, key: str) -> None:
        if self._values.pop(key, None) is not None:
            self._flush()

    def _flush(self) -> None:
        write_storage_values(self._workbook, self._values)
        try:
            save_workbook(self._workbook, self.data_file)
        except OSError as exc:
            raise StorageError(f"Unable to save '{self.data_file}': {exc}") from exc


def create_storage_workbook() -> Workbook:
    """Return a new workbook holding only an empty ``Storage`` sheet."""

    workbook = openpyxl.Workbook()
    if workbook.active is not None and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)
    ensure_storage_sheet(workbook)
    return workbook


def ensure_storage_sheet(workbook: Workbook) -> None:
    """Add the ``Storage`` sheet with a bold header row when it is missing."""

    if STORAGE_SHEET in workbook.sheetnames:
        return
    sheet = workbook.create_sheet(title=STORAGE_SHEET)
    bold_font = Font(bold=True)
    for column_index, column_name in enumerate(STORAGE_COLUMNS, start=1):
        cell = sheet.cell(row=1, column=column_index)
        cell.value = column_name
        cell.font = bold_font


def open_workbook(data_file: Path) -> Workbook:
    """Open the storage workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    workbook = openpyxl.load_workbook(data_file)
    ensure_storage_sheet(workbook)
    return workbook


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook, creating parent directories on demand."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def iter_storage_values(workbook: Workbook) -> Iterable[tuple[str, str]]:
    """Yield ``(key, value)`` pairs, joining chunk rows in chunk order."""

    sheet = workbook[STORAGE_SHEET]
    chunks: dict[str, list[tuple[int, str]]] = {}
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        if not raw or raw[0] is None:
            continue
        key = str(raw[0])
        chunk_index = int(raw[1]) if len(raw) > 1 and raw[1] is not None else 0
        value = str(raw[2]) if len(raw) > 2 and raw[2] is not None else ""
        chunks.setdefault(key, []).append((chunk_index, value))
    for key, parts in chunks.items():
        yield key, "".join(part for _, part in sorted(parts))


def write_storage_values(workbook: Workbook, values: Mapping[str, str]) -> None:
    """Replace the sheet contents with ``values`` split into cell-sized chunks."""

    sheet = workbook[STORAGE_SHEET]
    if sheet.max_row > 1:
        sheet.delete_rows(2, sheet.max_row - 1)
    for key in sorted(values):
        value = values[key]
        pieces = [value[i:i + CELL_CHUNK_SIZE] for i in range(0, len(value), CELL_CHUNK_SIZE)] or [""]
        for chunk_index, piece in enumerate(pieces):
            sheet.append([key, chunk_index, piece])


# ---------------------------------------------------------------------------
# Value obfuscation
# ---------------------------------------------------------------------------


def encode_value(value: Any) -> str:
    """Serialise ``value`` to JSON and wrap it behind ``STORAGE_PREFIX``.

    The transform is percent-quote, base64, then reverse. It only keeps the
    stored text from being read at a glance.
    """

    text = json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    quoted = quote(text, safe=_URI_SAFE)
    encoded = base64.b64encode(quoted.encode("ascii")).decode("ascii")
    return STORAGE_PREFIX + encoded[::-1]


def decode_value(raw: Optional[str], fallback: Any = None) -> Any:
    """Inverse of :func:`encode_value`.

    Unprefixed values are read as plain JSON. Missing or corrupt values
    return ``fallback``.
    """

    if raw is None or raw == "":
        return fallback
    try:
        if raw.startswith(STORAGE_PREFIX):
            reversed_b64 = raw[len(STORAGE_PREFIX):][::-1]
            quoted = base64.b64decode(reversed_b64, validate=True).decode("ascii")
            return json.loads(unquote(quoted))
        return json.loads(raw)
    except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
        log.warning("Discarding corrupt stored value (%s)", exc)
        return fallback


def safe_load(store: KeyValueStore, key: str, fallback: Any = None) -> Any:
    """Read and decode ``key``; storage failures yield ``fallback``."""

    try:
        raw = store.get(key)
    except (StorageError, OSError) as exc:
        log.warning("Unable to read storage key '%s': %s", key, exc)
        return fallback
    return decode_value(raw, fallback)


def safe_save_many(store: KeyValueStore, values: Mapping[str, Any]) -> bool:
    """Encode and write several keys in one backend call.

    Persistence is best effort: failures are logged and dropped so the store
    stays usable offline.

    Returns:
        bool: ``True`` when the backend accepted the write.
    """

    try:
        encoded = {key: encode_value(value) for key, value in values.items()}
        store.set_many(encoded)
    except StorageQuotaExceeded as exc:
        log.error("Local storage is full; changes kept in memory only: %s", exc)
        return False
    except (StorageError, OSError, TypeError, ValueError) as exc:
        log.warning("Unable to persist keys %s: %s", ", ".join(values), exc)
        return False
    return True


def safe_remove(store: KeyValueStore, key: str) -> None:
    try:
        store.remove(key)
    except (StorageError, OSError) as exc:
        log.warning("Unable to remove storage key '%s': %s", key, exc)


# ---------------------------------------------------------------------------
# Record codec
# ---------------------------------------------------------------------------


COLLECTION_TYPES: Mapping[StorageKey, type] = {
    StorageKey.PRODUCTS: models.Product,
    StorageKey.TRANSACTIONS: models.Transaction,
    StorageKey.CUSTOMERS: models.Customer,
    StorageKey.SUPPLIERS: models.Supplier,
    StorageKey.CASH_MOVEMENTS: models.CashMovement,
    StorageKey.ORDERS: models.Order,
    StorageKey.PURCHASES: models.Purchase,
    StorageKey.USERS: models.User,
    StorageKey.USER_INVITES: models.UserInvite,
    StorageKey.ACTIVITY_LOGS: models.ActivityLog,
}


def camel_case(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


@lru_cache(maxsize=None)
def _field_specs(cls: type) -> tuple[tuple[str, str, Any], ...]:
    """Return ``(attribute, wire key, type hint)`` for every codec field."""

    hints = get_type_hints(cls)
    return tuple(
        (f.name, f.metadata.get("wire", camel_case(f.name)), hints[f.name])
        for f in fields(cls)
        if f.name != "extra"
    )


def serialize_record(record: Any) -> dict[str, Any]:
    """Convert a record into its JSON object. ``None`` attributes are omitted."""

    payload: dict[str, Any] = dict(getattr(record, "extra", {}) or {})
    for name, wire_key, _ in _field_specs(type(record)):
        value = getattr(record, name)
        if value is None:
            continue
        payload[wire_key] = _encode(value)
    return payload


def deserialize_record(cls: type, raw: Mapping[str, Any]) -> Any:
    """Build a ``cls`` record from a JSON object.

    Missing keys take the record defaults. Unknown keys are kept in
    ``extra`` when the record has one.

    Raises:
        ValueError: If ``raw`` is not an object, a value cannot be coerced, or
            a required attribute is absent.
    """

    if not isinstance(raw, Mapping):
        raise ValueError(f"Expected an object for {cls.__name__}, got {type(raw).__name__}")

    values: dict[str, Any] = {}
    known_keys = set()
    for name, wire_key, hint in _field_specs(cls):
        known_keys.add(wire_key)
        if raw.get(wire_key) is None:
            continue
        values[name] = _decode(hint, raw[wire_key])

    if any(f.name == "extra" for f in fields(cls)):
        values["extra"] = {key: value for key, value in raw.items() if key not in known_keys}
    try:
        return cls(**values)
    except TypeError as exc:
        raise ValueError(f"Incomplete {cls.__name__} record: {exc}") from exc


def serialize_collection(records: Iterable[Any]) -> list[Any]:
    return [record if isinstance(record, str) else serialize_record(record) for record in records]


def deserialize_collection(key: StorageKey, raw: Any) -> list[Any]:
    """Decode a stored collection, skipping entries that cannot be read.

    ``categories`` is a list of plain strings; every other collection is a
    list of records of the type registered in ``COLLECTION_TYPES``.
    """

    if not isinstance(raw, list):
        return []
    if key is StorageKey.CATEGORIES:
        return [str(item) for item in raw if item is not None]

    cls = COLLECTION_TYPES[key]
    records = []
    for item in raw:
        try:
            records.append(deserialize_record(cls, item))
        except ValueError as exc:
            log.warning("Skipping unreadable %s entry: %s", key.value, exc)
    return records


def deserialize_settings(raw: Any) -> models.BusinessSettings:
    if not isinstance(raw, Mapping):
        return models.BusinessSettings()
    try:
        return deserialize_record(models.BusinessSettings, raw)
    except ValueError as exc:
        log.warning("Stored settings unreadable, using defaults: %s", exc)
        return models.BusinessSettings()


def _encode(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if is_dataclass(value):
        return serialize_record(value)
    if isinstance(value, (list, tuple)):
        return [_encode(item) for item in value]
    if isinstance(value, Mapping):
        return {key: _encode(item) for key, item in value.items()}
    return value


def _decode(hint: Any, value: Any) -> Any:
    origin = get_origin(hint)
    if origin in (Union, types.UnionType):
        inner = [arg for arg in get_args(hint) if arg is not type(None)]
        return None if value is None else _decode(inner[0], value)
    if origin is tuple:
        item_hint = get_args(hint)[0]
        if not isinstance(value, (list, tuple)):
            raise ValueError(f"Expected a list, got {type(value).__name__}")
        return tuple(_decode(item_hint, item) for item in value)
    if hint is Decimal:
        try:
            result = Decimal(str(value))
        except InvalidOperation as exc:
            raise ValueError(f"Not a number: {value!r}") from exc
        if not result.is_finite():
            raise ValueError(f"Not a finite number: {value!r}")
        return result
    if hint is bool:
        if isinstance(value, str):
            return value.strip().lower() in ("true", "1", "yes")
        return bool(value)
    if hint is int:
        try:
            return int(float(value))
        except (TypeError, ValueError, OverflowError) as exc:
            raise ValueError(f"Not an integer: {value!r}") from exc
    if hint is str:
        return str(value)
    if isinstance(hint, type) and issubclass(hint, Enum):
        try:
            return hint(value)
        except ValueError:
            # Values introduced by newer clients are carried through verbatim.
            log.debug("Unknown %s value %r kept as text", hint.__name__, value)
            return str(value)
    if isinstance(hint, type) and is_dataclass(hint):
        return deserialize_record(hint, value)
    return value
