"""Shared pytest fixtures and utilities for the point-of-sale store tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Callable, Iterator

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from pos_store import cli, core_logic, data_manager, security  # noqa: E402
from pos_store.constants import UserRole  # noqa: E402
from pos_store.models import User  # noqa: E402
from pos_store.notifications import NotificationBus  # noqa: E402
from pos_store.setup_store import create_store_workbook  # noqa: E402

START = datetime(2024, 5, 17, 15, 30, tzinfo=UTC)
STRONG_PASSWORD = "Sup3r$ecretPass"
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "StoreName = {store_name}\n\n"
    "[Sync]\n"
    "IntervalSeconds = 30\n"
    "TimeoutSeconds = 5\n"
    "SkewGuardSeconds = 10\n\n"
    "[Security]\n"
    "MaxFailedAttempts = 5\n"
    "LockoutMinutes = 15\n"
    "BcryptRounds = 4\n"
    "ActivityLogLimit = {log_limit}\n"
)


class FakeClock:
    """Deterministic clock; tests move time with :meth:`advance`."""

    def __init__(self, moment: datetime = START) -> None:
        self.moment = moment

    def __call__(self) -> datetime:
        return self.moment

    def advance(self, **kwargs: float) -> datetime:
        self.moment = self.moment + timedelta(**kwargs)
        return self.moment


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    store_name: str


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture
def config_factory(tmp_path: Path) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        store_name: str = "Test Shop",
        log_limit: int = 500,
        create_workbook: bool = True,
    ) -> ConfigBundle:
        bundle_dir = tmp_path / f"bundle_{uuid.uuid4().hex}"
        bundle_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = bundle_dir / "store.xlsx"
        if create_workbook:
            create_store_workbook(workbook_path)
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(data_file=data_file_entry, store_name=store_name, log_limit=log_limit),
            encoding="utf-8",
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            store_name=store_name,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


# ---------------------------------------------------------------------------
# Runtime context fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Default configuration with cheap bcrypt rounds."""

    return data_manager.ConfigSettings(data_file=tmp_path / "store.xlsx", bcrypt_rounds=4)


@pytest.fixture
def storage() -> data_manager.MemoryStore:
    return data_manager.MemoryStore()


@pytest.fixture
def context(
    settings: data_manager.ConfigSettings,
    storage: data_manager.MemoryStore,
    clock: FakeClock,
) -> core_logic.RuntimeContext:
    """Assemble an in-memory runtime context driven by the fake clock."""

    return core_logic.RuntimeContext(
        config=settings,
        storage=storage,
        notifier=NotificationBus(clock),
        clock=clock,
    )


@pytest.fixture
def user_factory(context: core_logic.RuntimeContext) -> Callable[..., User]:
    """Create and store a user with a real bcrypt hash."""

    def _create_user(
        username: str = "maria",
        password: str = STRONG_PASSWORD,
        *,
        role: UserRole = UserRole.CASHIER,
        **fields: object,
    ) -> User:
        salt = security.generate_salt(4)
        user = User(
            id=uuid.uuid4().hex,
            username=username,
            password_hash=security.hash_password(password, salt),
            salt=salt,
            full_name=username.title(),
            role=role,
            **fields,
        )
        assert core_logic.add_user(context, user) == core_logic.StoreResult.SUCCESS
        return user

    return _create_user


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return cli.build_parser()


@pytest.fixture
def command_spec_iterable() -> list[cli.CommandSpec]:
    """Provide a list of command specs for indexing tests."""

    def _make_spec(name: str) -> cli.CommandSpec:
        return cli.CommandSpec(
            name,
            f"{name} help",
            lambda subparsers: subparsers.add_parser(name),
            lambda *_: 0,
        )

    return [_make_spec("alpha"), _make_spec("beta"), _make_spec("gamma")]
