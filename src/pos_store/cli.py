"""Command-line entry points for back-office maintenance of a store.

The CLI only wires argparse to the store, session and sync modules; every
rule lives in those modules. It runs without a signed-in user, so activity
recorded from here is attributed to the system user.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, log, session, sync
from .audit import recent_activity
from .constants import StoreResult, SyncResult, UserRole


SubParsers = argparse._SubParsersAction


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[SubParsers], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="pos-store",
        description="Maintenance commands for a local point-of-sale store.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (searched upward from the cwd by default).",
    )
    return parser


def configure_subcommands(parser: argparse.ArgumentParser) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    specs = [*sync_commands(), *register_commands(), *admin_commands()]
    for spec in specs:
        spec.register(subparsers)
    return build_command_table(specs)


def sync_commands() -> list[CommandSpec]:
    """Commands that talk to the remote copy."""
    return [push_command(), pull_command(), sync_command(), status_command()]


def register_commands() -> list[CommandSpec]:
    """Cash register reports and closing."""
    return [balance_command(), z_cut_command()]


def admin_commands() -> list[CommandSpec]:
    return [invite_command(), activity_command()]


def _simple_registrar(name: str, help_text: str) -> Callable[[SubParsers], argparse.ArgumentParser]:
    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return registrar


def push_command() -> CommandSpec:
    name = "push"
    help_text = "Upload the whole dataset to the remote copy."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--force", action="store_true", help="Push even when the local dataset is empty.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_push)


def pull_command() -> CommandSpec:
    name = "pull"
    help_text = "Download the remote copy, pushing instead while local changes are pending."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--force", action="store_true", help="Overwrite pending local changes.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_pull)


def sync_command() -> CommandSpec:
    name = "sync"
    help_text = "Run one synchronisation step (push if dirty, otherwise pull)."
    return CommandSpec(name=name, help_text=help_text, register=_simple_registrar(name, help_text), execute=run_sync)


def status_command() -> CommandSpec:
    name = "status"
    help_text = "Show record counts and synchronisation state."
    return CommandSpec(name=name, help_text=help_text, register=_simple_registrar(name, help_text), execute=run_status)


def balance_command() -> CommandSpec:
    name = "balance"
    help_text = "Show the expected cash in the drawer."
    return CommandSpec(name=name, help_text=help_text, register=_simple_registrar(name, help_text), execute=run_balance)


def z_cut_command() -> CommandSpec:
    name = "z-cut"
    help_text = "Close the register with the counted cash."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--declared", required=True, help="Cash counted in the drawer.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_z_cut)


def invite_command() -> CommandSpec:
    name = "invite"
    help_text = "Create a single-use invite code."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--role", choices=[member.value for member in UserRole], default=UserRole.CASHIER.value)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_invite)


def activity_command() -> CommandSpec:
    name = "activity"
    help_text = "Show the most recent activity entries."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--limit", type=int, default=20)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_activity)


def build_command_table(specs: Iterable[CommandSpec]) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if getattr(args, "command", None) is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    return core_logic.load_runtime_context(config_path)


def parse_amount(text: str) -> Decimal:
    """Parse a money amount given on the command line.

    Raises:
        core_logic.StoreError: If ``text`` is not a number.
    """
    try:
        return Decimal(text)
    except InvalidOperation as exc:
        raise core_logic.StoreError(f"Not an amount: {text!r}") from exc


def _sync_exit_code(result: SyncResult) -> int:
    print(result.value)
    return 1 if result in (SyncResult.FAILED, SyncResult.BUSY) else 0


def run_push(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    return _sync_exit_code(sync.push_to_cloud(context, manual=True, force=args.force))


def run_pull(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    return _sync_exit_code(sync.pull_from_cloud(context, force=args.force))


def run_sync(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    return _sync_exit_code(sync.sync_tick(context))


def run_status(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print one ``name: value`` line per collection and sync field."""
    state = context.state
    counts = {
        "products": len(state.products),
        "transactions": len(state.transactions),
        "customers": len(state.customers),
        "orders": len(state.orders),
        "users": len(state.users),
    }
    for label, count in counts.items():
        print(f"{label}: {count}")
    print(f"sync enabled: {sync.sync_enabled(context)}")
    print(f"pending changes: {context.sync.has_pending_changes}")
    return 0


def run_balance(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    state = "open" if core_logic.is_register_open(context) else "closed"
    print(f"register {state}, expected cash {core_logic.register_balance(context)}")
    return 0


def run_z_cut(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Close the register; a refused cut is reported as a rule violation."""
    result, closing = core_logic.perform_z_cut(context, parse_amount(args.declared))
    if result is not StoreResult.SUCCESS or closing is None or closing.z_report is None:
        raise core_logic.StoreError(f"Z cut refused: {result.value}")
    report = closing.z_report
    print(f"expected {report.expected_cash}, declared {report.declared_cash}, difference {report.difference}")
    return 0


def run_invite(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    print(session.generate_invite(context, UserRole(args.role)))
    return 0


def run_activity(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    for entry in recent_activity(context, args.limit):
        action = getattr(entry.action, "value", entry.action)
        print(f"{entry.timestamp} {entry.user_name} {action}: {entry.details}")
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    log.error("%s", error)
    if isinstance(error, core_logic.StoreError):
        return 2
    if isinstance(error, FileNotFoundError):
        return 3
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        return dispatch_command(context, args, command_table)
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)


if __name__ == "__main__":
    raise SystemExit(main())
