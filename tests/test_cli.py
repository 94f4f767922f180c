"""Unit tests describing the CLI presentation layer contract."""

from __future__ import annotations

import argparse
from decimal import Decimal
from pathlib import Path

import pytest

from pos_store import cli, core_logic, sync
from pos_store.constants import MovementType, SyncResult, UserRole
from pos_store.models import CashMovement


SYNC_COMMANDS = {"push", "pull", "sync", "status"}
REGISTER_COMMANDS = {"balance", "z-cut"}
ADMIN_COMMANDS = {"invite", "activity"}


# ---------------------------------------------------------------------------
# Parser construction
# ---------------------------------------------------------------------------


def test_build_parser_sets_program_metadata():
    """build_parser should set user-facing program metadata."""

    parser = cli.build_parser()
    assert isinstance(parser, argparse.ArgumentParser)
    assert parser.prog == "pos-store"
    assert "point-of-sale" in (parser.description or "")


def test_configure_subcommands_registers_every_command(cli_parser):
    """configure_subcommands should wire every command group."""

    command_table = cli.configure_subcommands(cli_parser)

    expected = SYNC_COMMANDS | REGISTER_COMMANDS | ADMIN_COMMANDS
    assert set(command_table) == expected
    assert _registered_choices(cli_parser) == expected


def test_push_and_pull_accept_force(cli_parser):
    cli.configure_subcommands(cli_parser)

    assert cli_parser.parse_args(["push", "--force"]).force is True
    assert cli_parser.parse_args(["pull"]).force is False


def test_z_cut_requires_declared_amount(cli_parser):
    cli.configure_subcommands(cli_parser)

    with pytest.raises(SystemExit):
        cli_parser.parse_args(["z-cut"])
    assert cli_parser.parse_args(["z-cut", "--declared", "540"]).declared == "540"


def test_invite_role_defaults_to_cashier(cli_parser):
    cli.configure_subcommands(cli_parser)

    assert cli_parser.parse_args(["invite"]).role == UserRole.CASHIER.value
    with pytest.raises(SystemExit):
        cli_parser.parse_args(["invite", "--role", "OWNER"])


def test_config_option_is_a_path(cli_parser, config_file):
    cli.configure_subcommands(cli_parser)

    args = cli_parser.parse_args(["--config", str(config_file), "status"])

    assert args.config == config_file


# ---------------------------------------------------------------------------
# Runtime context helpers
# ---------------------------------------------------------------------------


def test_load_runtime_context_uses_provided_path(config_file, monkeypatch):
    """load_runtime_context should load settings from the specified config path."""

    sentinel_context = object()

    def fake_loader(path: Path | None) -> object:
        assert path == config_file
        return sentinel_context

    monkeypatch.setattr(core_logic, "load_runtime_context", fake_loader)
    assert cli.load_runtime_context(config_file) is sentinel_context


@pytest.mark.parametrize(("text", "expected"), [("540", Decimal("540")), ("12.50", Decimal("12.50"))])
def test_parse_amount(text, expected):
    assert cli.parse_amount(text) == expected


def test_parse_amount_rejects_text():
    with pytest.raises(core_logic.StoreError):
        cli.parse_amount("lots")


# ---------------------------------------------------------------------------
# Dispatch helpers
# ---------------------------------------------------------------------------


def test_dispatch_command_invokes_executor(context):
    """dispatch_command should call the executor associated with the command."""

    called = {}

    def execute(ctx: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
        called["context"] = ctx
        return 0

    spec = cli.CommandSpec("alpha", "A", lambda s: s.add_parser("alpha"), execute)
    result = cli.dispatch_command(context, argparse.Namespace(command="alpha"), {"alpha": spec})

    assert result == 0
    assert called["context"] is context


def test_dispatch_command_handles_unknown_commands(context):
    """dispatch_command should raise a clear error for unknown commands."""

    with pytest.raises(KeyError):
        cli.dispatch_command(context, argparse.Namespace(command="unknown"), {})
    with pytest.raises(KeyError):
        cli.dispatch_command(context, argparse.Namespace(), {})


def test_build_command_table_indexes_specs(command_spec_iterable):
    """build_command_table should index specs by their command names."""

    table = cli.build_command_table(command_spec_iterable)
    assert set(table) == {spec.name for spec in command_spec_iterable}


def test_build_command_table_detects_duplicate_commands():
    """build_command_table should guard against duplicate command names."""

    specs = [
        cli.CommandSpec("alpha", "A", lambda s: s.add_parser("alpha"), lambda c, a: 0),
        cli.CommandSpec("alpha", "Duplicate", lambda s: s.add_parser("alpha"), lambda c, a: 0),
    ]
    with pytest.raises(ValueError):
        cli.build_command_table(specs)


# ---------------------------------------------------------------------------
# Executors
# ---------------------------------------------------------------------------


def test_run_status_prints_counts(context, capsys):
    core_logic.add_category(context, "Drinks")

    assert cli.run_status(context, argparse.Namespace()) == 0

    out = capsys.readouterr().out
    assert "products: 0" in out
    assert "sync enabled: False" in out
    assert "pending changes: True" in out


def test_run_balance_reports_drawer(context, capsys):
    core_logic.add_cash_movement(context, CashMovement(id="", type=MovementType.OPEN, amount=Decimal("200")))

    cli.run_balance(context, argparse.Namespace())

    assert capsys.readouterr().out.strip() == "register open, expected cash 200"


def test_run_z_cut_prints_difference(context, capsys):
    core_logic.add_cash_movement(context, CashMovement(id="", type=MovementType.OPEN, amount=Decimal("200")))

    assert cli.run_z_cut(context, argparse.Namespace(declared="190")) == 0

    assert "difference -10" in capsys.readouterr().out
    assert not core_logic.is_register_open(context)


def test_run_z_cut_on_closed_register_raises(context):
    with pytest.raises(core_logic.StoreError, match="REGISTER_CLOSED"):
        cli.run_z_cut(context, argparse.Namespace(declared="0"))


def test_run_invite_prints_code(context, capsys):
    cli.run_invite(context, argparse.Namespace(role="MANAGER"))

    code = capsys.readouterr().out.strip()
    invite = core_logic.list_invites(context)[0]
    assert invite.code == code
    assert invite.role is UserRole.MANAGER


def test_run_activity_lists_newest_first(context, capsys):
    core_logic.add_category(context, "A")
    core_logic.add_category(context, "B")

    cli.run_activity(context, argparse.Namespace(limit=1))

    lines = capsys.readouterr().out.strip().splitlines()
    assert len(lines) == 1
    assert lines[0].endswith("INVENTORY: Added category B")


@pytest.mark.parametrize(
    ("result", "expected"),
    [(SyncResult.PUSHED, 0), (SyncResult.DISABLED, 0), (SyncResult.FAILED, 1), (SyncResult.BUSY, 1)],
)
def test_run_push_exit_codes(context, monkeypatch, capsys, result, expected):
    seen = {}

    def fake_push(ctx, *, manual, force):
        seen.update(manual=manual, force=force)
        return result

    monkeypatch.setattr(sync, "push_to_cloud", fake_push)

    assert cli.run_push(context, argparse.Namespace(force=True)) == expected
    assert seen == {"manual": True, "force": True}
    assert capsys.readouterr().out.strip() == result.value


def test_run_sync_without_endpoint(context, capsys):
    assert cli.run_sync(context, argparse.Namespace()) == 0
    assert capsys.readouterr().out.strip() == "DISABLED"


# ---------------------------------------------------------------------------
# Entry point and error handling
# ---------------------------------------------------------------------------


def test_main_runs_command_against_config(config_file, capsys):
    assert cli.main(["--config", str(config_file), "invite", "--role", "ADMIN"]) == 0

    code = capsys.readouterr().out.strip()
    reloaded = core_logic.load_runtime_context(config_file)
    assert [invite.code for invite in reloaded.state.user_invites] == [code]


def test_main_reports_refused_z_cut(config_file):
    assert cli.main(["--config", str(config_file), "z-cut", "--declared", "10"]) == 2


def test_main_reports_missing_config(tmp_path):
    assert cli.main(["--config", str(tmp_path / "missing.ini"), "status"]) == 3


@pytest.mark.parametrize(
    "error, expected",
    [
        (core_logic.StoreError("invalid"), 2),
        (core_logic.MissingReferenceError("gone"), 2),
        (FileNotFoundError("missing"), 3),
        (ValueError("bad value"), 1),
    ],
)
def test_handle_cli_error_returns_exit_code(error: Exception, expected: int, caplog: pytest.LogCaptureFixture):
    """handle_cli_error should convert exceptions into exit codes."""

    caplog.set_level("ERROR")
    exit_code = cli.handle_cli_error(error)
    assert exit_code == expected
    assert any(str(error) in record.getMessage() for record in caplog.records)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _registered_choices(parser: argparse.ArgumentParser) -> set[str]:
    """Return the set of registered sub-command names for assertion helpers."""

    actions = getattr(parser, "_subparsers", None)
    if not actions:
        return set()
    group_actions = actions._group_actions  # type: ignore[attr-defined]
    if not group_actions:
        return set()
    return set(group_actions[0].choices)  # type: ignore[index]
