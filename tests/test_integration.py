"""End-to-end tests running the store on a real workbook."""

from __future__ import annotations

from decimal import Decimal

import pytest

from pos_store import core_logic, scheduling, session, setup_store
from pos_store.constants import LoginResult, MovementType, PaymentMethod, PaymentStatus
from pos_store.models import CashMovement, LineItem, Product, Transaction


def test_run_from_config_creates_seeded_workbook(config_factory):
    bundle = config_factory(create_workbook=False)

    path, admin = setup_store.run_from_config(bundle.config_path)

    assert path == bundle.workbook_path.resolve()
    assert admin.recovery_code == session.DEFAULT_ADMIN_RECOVERY_CODE
    context = core_logic.load_runtime_context(bundle.config_path)
    assert [user.username for user in context.state.users] == ["admin"]


def test_run_from_config_refuses_to_overwrite(config_factory):
    bundle = config_factory()

    with pytest.raises(FileExistsError):
        setup_store.run_from_config(bundle.config_path)


def test_setup_main_reports_existing_workbook(config_factory, capsys):
    bundle = config_factory()

    assert setup_store.main(["--config", str(bundle.config_path)]) == 1
    assert "--force" in capsys.readouterr().out
    assert setup_store.main(["--config", str(bundle.config_path), "--force"]) == 0


def test_trading_day_survives_restart(config_factory, clock):
    """A shift recorded on one start is intact on the next start."""

    bundle = config_factory(create_workbook=False)
    setup_store.run_from_config(bundle.config_path)

    context = scheduling.start_application(bundle.config_path, clock=clock, background=False)
    assert session.login(context, "admin", context.config.default_admin_password) is LoginResult.SUCCESS
    latte = core_logic.add_product(context, Product(id="", name="Latte", price=Decimal("45"), stock=20))
    core_logic.add_cash_movement(context, CashMovement(id="", type=MovementType.OPEN, amount=Decimal("300")))
    clock.advance(minutes=5)
    sale = core_logic.checkout(
        context,
        Transaction(
            id="",
            total=Decimal("90"),
            amount_paid=Decimal("90"),
            payment_method=PaymentMethod.CASH,
            payment_status=PaymentStatus.PAID,
            items=(LineItem(id=latte.id, name="Latte", price=Decimal("45"), quantity=2),),
        ),
    ).transaction
    scheduling.shutdown(context)

    restarted = scheduling.start_application(bundle.config_path, clock=clock, background=False)

    assert restarted.session.snapshot.username == "admin"
    assert core_logic.get_product(restarted, latte.id).stock == 18
    assert core_logic.get_transaction(restarted, sale.id).total == Decimal("90")
    assert core_logic.register_balance(restarted) == Decimal("390")
    assert restarted.sync.has_pending_changes is True
    assert restarted.state.activity_logs[0].user_name == "admin"
