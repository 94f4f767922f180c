"""Entity store for the point-of-sale dataset.

Every write to the in-memory collections goes through a mutator in this
module. A mutator validates its input, applies its own transition and any
derived transition (a cash sale also records a drawer deposit, a purchase
also restocks), appends one activity entry, marks the dataset dirty for sync
and persists the keys it touched. Validation failures come back as
:class:`~pos_store.constants.StoreResult` values; once validated a mutation
always completes. Stock and debt clamp at zero instead of failing.

Mutators hold the context's re-entrant lock for their whole duration, so
background sync and idle checks never observe a half-applied mutation.
Multi-step operations (``checkout``, ``add_purchase``) compose single-entity
steps under the same lock.
"""

from __future__ import annotations

import functools
import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, TypeVar

from . import data_manager, log
from .audit import log_activity
from .constants import (
    DATASET_KEYS,
    MONEY_TOLERANCE,
    ORDER_STATUS_RANK,
    REGISTER_METHODS,
    TERMINAL_ORDER_STATUSES,
    ActivityAction,
    BudgetCategory,
    CreditLimitPolicy,
    MovementType,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    Severity,
    StockDirection,
    StorageKey,
    StoreResult,
    TransactionStatus,
)
from .models import (
    ZERO,
    BusinessSettings,
    CashMovement,
    Customer,
    LineItem,
    Order,
    Product,
    Purchase,
    SaleOutcome,
    SessionSnapshot,
    Supplier,
    Transaction,
    User,
    UserInvite,
    ZReport,
)
from .notifications import NotificationBus
from .sequences import next_sequence_id
from .time_utils import Clock, parse_iso, to_iso, utcnow


TOLERANCE = Decimal(MONEY_TOLERANCE)
_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)

F = TypeVar("F", bound=Callable[..., Any])


class StoreError(Exception):
    """Base class for errors raised by the entity store."""


class MissingReferenceError(StoreError):
    """Raised when a lookup names an id that is not in its collection."""


@dataclass
class StoreState:
    """In-memory collections. Records are immutable; lists are replaced in place."""

    products: List[Product] = field(default_factory=list)
    transactions: List[Transaction] = field(default_factory=list)
    customers: List[Customer] = field(default_factory=list)
    suppliers: List[Supplier] = field(default_factory=list)
    cash_movements: List[CashMovement] = field(default_factory=list)
    orders: List[Order] = field(default_factory=list)
    purchases: List[Purchase] = field(default_factory=list)
    users: List[User] = field(default_factory=list)
    user_invites: List[UserInvite] = field(default_factory=list)
    categories: List[str] = field(default_factory=list)
    activity_logs: List[Any] = field(default_factory=list)
    settings: BusinessSettings = field(default_factory=BusinessSettings)
    incoming_order: Optional[Order] = None


STATE_ATTRIBUTES: Dict[StorageKey, str] = {
    StorageKey.PRODUCTS: "products",
    StorageKey.TRANSACTIONS: "transactions",
    StorageKey.CUSTOMERS: "customers",
    StorageKey.SUPPLIERS: "suppliers",
    StorageKey.CASH_MOVEMENTS: "cash_movements",
    StorageKey.ORDERS: "orders",
    StorageKey.PURCHASES: "purchases",
    StorageKey.USERS: "users",
    StorageKey.USER_INVITES: "user_invites",
    StorageKey.CATEGORIES: "categories",
    StorageKey.ACTIVITY_LOGS: "activity_logs",
}


@dataclass
class SessionState:
    """Current-user pointer and lock flag, owned by :mod:`pos_store.session`."""

    current_user_id: Optional[str] = None
    snapshot: Optional[SessionSnapshot] = None
    is_app_locked: bool = False
    last_input_at: Optional[datetime] = None


@dataclass
class SyncState:
    has_pending_changes: bool = False
    last_local_update: Optional[datetime] = None
    last_sync_at: Optional[datetime] = None
    is_syncing: bool = False


@dataclass
class RuntimeContext:
    """Everything one running store needs, passed explicitly to every call."""

    config: data_manager.ConfigSettings
    storage: data_manager.KeyValueStore
    state: StoreState = field(default_factory=StoreState)
    session: SessionState = field(default_factory=SessionState)
    sync: SyncState = field(default_factory=SyncState)
    notifier: NotificationBus = field(default_factory=NotificationBus)
    clock: Clock = utcnow
    lock: Any = field(default_factory=threading.RLock, repr=False, compare=False)
    tasks: List[Any] = field(default_factory=list, repr=False, compare=False)


def synchronized(func: F) -> F:
    """Run ``func(context, ...)`` while holding ``context.lock``."""

    @functools.wraps(func)
    def wrapper(context: RuntimeContext, *args: Any, **kwargs: Any) -> Any:
        with context.lock:
            return func(context, *args, **kwargs)

    return wrapper  # type: ignore[return-value]


# ---------------------------------------------------------------------------
# Lifecycle and persistence
# ---------------------------------------------------------------------------


def load_runtime_context(
    config_path: Optional[Path] = None,
    *,
    storage: Optional[data_manager.KeyValueStore] = None,
    clock: Clock = utcnow,
) -> RuntimeContext:
    """Resolve ``config.ini``, open the storage backend and load the dataset.

    Args:
        config_path (Path | None): Optional override path for the
            configuration file. When omitted the data layer searches upward
            from the current working directory.
        storage (KeyValueStore | None): Backend to use instead of the
            workbook named by ``DataFile``.
        clock (Clock): Source of the current time.

    Returns:
        RuntimeContext: Context with every collection loaded.

    Raises:
        FileNotFoundError: If the configuration file or workbook is missing.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    config = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    if storage is None:
        storage = data_manager.WorkbookStore(config.data_file)
    context = RuntimeContext(config=config, storage=storage, notifier=NotificationBus(clock), clock=clock)
    load_state(context)
    log.info("Loaded runtime context for '%s'", config.data_file)
    return context


@synchronized
def load_state(context: RuntimeContext) -> None:
    """Replace the in-memory dataset with what the storage backend holds.

    Unreadable keys fall back to empty collections or default settings.
    """
    state = context.state
    for key in DATASET_KEYS:
        raw = data_manager.safe_load(context.storage, key.value, None)
        if key is StorageKey.SETTINGS:
            state.settings = data_manager.deserialize_settings(raw)
        else:
            setattr(state, STATE_ATTRIBUTES[key], data_manager.deserialize_collection(key, raw))

    sync_raw = data_manager.safe_load(context.storage, StorageKey.SYNC_STATE.value, {})
    if isinstance(sync_raw, Mapping):
        context.sync.has_pending_changes = bool(sync_raw.get("hasPendingChanges", False))
        context.sync.last_local_update = parse_iso(sync_raw.get("lastLocalUpdate"))
        context.sync.last_sync_at = parse_iso(sync_raw.get("lastSyncAt"))
    log.debug(
        "Loaded %d products, %d transactions, %d customers",
        len(state.products),
        len(state.transactions),
        len(state.customers),
    )


def _serialize_key(context: RuntimeContext, key: StorageKey) -> Any:
    if key is StorageKey.SETTINGS:
        return data_manager.serialize_record(context.state.settings)
    if key is StorageKey.SYNC_STATE:
        sync = context.sync
        return {
            "hasPendingChanges": sync.has_pending_changes,
            "lastLocalUpdate": to_iso(sync.last_local_update) if sync.last_local_update else None,
            "lastSyncAt": to_iso(sync.last_sync_at) if sync.last_sync_at else None,
        }
    return data_manager.serialize_collection(getattr(context.state, STATE_ATTRIBUTES[key]))


def persist_keys(context: RuntimeContext, *keys: StorageKey) -> bool:
    """Write the named keys in one backend call. Failures are logged, not raised."""
    unique = dict.fromkeys(keys)
    values = {key.value: _serialize_key(context, key) for key in unique}
    return data_manager.safe_save_many(context.storage, values)


def _commit(context: RuntimeContext, *keys: StorageKey) -> None:
    context.sync.has_pending_changes = True
    context.sync.last_local_update = context.clock()
    persist_keys(context, *keys, StorageKey.ACTIVITY_LOGS, StorageKey.SYNC_STATE)


@synchronized
def snapshot(context: RuntimeContext) -> Dict[str, Any]:
    """Return the serialised dataset exactly as it is pushed to the remote copy."""
    return {key.value: _serialize_key(context, key) for key in DATASET_KEYS}


@synchronized
def import_data(context: RuntimeContext, data: Any, *, mark_dirty: bool = True) -> bool:
    """Replace every collection present in ``data`` wholesale.

    Collections that are absent (or not lists) keep their local contents;
    there is no per-record merge. Incoming settings are laid over the
    defaults, and the local endpoint and secret survive when the incoming
    values are empty.

    Args:
        context (RuntimeContext): Active runtime context.
        data (Any): Snapshot mapping keyed by collection name.
        mark_dirty (bool): ``True`` for a user import that must be pushed;
            the sync engine passes ``False`` when applying a pull.

    Returns:
        bool: ``True`` when at least one key was replaced.
    """
    if not isinstance(data, Mapping):
        log.warning("Ignoring import of non-mapping payload (%s)", type(data).__name__)
        return False

    state = context.state
    # Everything is decoded before anything is assigned.
    staged: Dict[StorageKey, Any] = {}
    for key in DATASET_KEYS:
        if key is StorageKey.SETTINGS:
            continue
        raw = data.get(key.value)
        if isinstance(raw, list):
            staged[key] = data_manager.deserialize_collection(key, raw)

    raw_settings = data.get(StorageKey.SETTINGS.value)
    if isinstance(raw_settings, Mapping):
        incoming = data_manager.deserialize_settings(raw_settings)
        current = state.settings
        staged[StorageKey.SETTINGS] = replace(
            incoming,
            google_web_app_url=incoming.google_web_app_url or current.google_web_app_url,
            cloud_secret=incoming.cloud_secret or current.cloud_secret,
        )

    if not staged:
        return False
    touched: List[StorageKey] = list(staged)
    for key, value in staged.items():
        if key is StorageKey.SETTINGS:
            state.settings = value
        else:
            setattr(state, STATE_ATTRIBUTES[key], value)
    if mark_dirty:
        log_activity(context, ActivityAction.SETTINGS, f"Imported {len(touched)} collections")
        _commit(context, *touched)
    else:
        persist_keys(context, *touched)
    log.info("Imported collections: %s", ", ".join(key.value for key in touched))
    return True


@synchronized
def mark_synced(context: RuntimeContext, marker: Optional[datetime]) -> bool:
    """Clear the dirty flag if nothing changed since ``marker`` was taken.

    Args:
        marker (datetime | None): ``last_local_update`` captured with the
            snapshot that was pushed.

    Returns:
        bool: ``False`` when a newer local mutation keeps the dataset dirty.
    """
    if context.sync.last_local_update != marker:
        log.info("Local changes arrived during push; dataset stays dirty")
        return False
    context.sync.has_pending_changes = False
    context.sync.last_sync_at = context.clock()
    persist_keys(context, StorageKey.SYNC_STATE)
    return True


@synchronized
def clear_pending_changes(context: RuntimeContext, *, forget_local_update: bool = False) -> None:
    context.sync.has_pending_changes = False
    context.sync.last_sync_at = context.clock()
    if forget_local_update:
        context.sync.last_local_update = None
    persist_keys(context, StorageKey.SYNC_STATE)


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


def _find(records: Sequence[Any], record_id: str) -> Optional[int]:
    for index, record in enumerate(records):
        if record.id == record_id:
            return index
    return None


def _lookup(records: Sequence[Any], record_id: str, label: str) -> Any:
    index = _find(records, record_id)
    if index is None:
        log.warning("%s lookup failed for id '%s'", label, record_id)
        raise MissingReferenceError(f"Unknown {label.lower()} id: {record_id}")
    return records[index]


def _replace_record(records: List[Any], record: Any) -> bool:
    index = _find(records, record.id)
    if index is None:
        return False
    records[index] = record
    return True


def _remove_record(records: List[Any], record_id: str) -> Optional[Any]:
    index = _find(records, record_id)
    if index is None:
        return None
    return records.pop(index)


def _not_found(label: str, record_id: str) -> StoreResult:
    log.warning("%s '%s' not found", label, record_id)
    return StoreResult.NOT_FOUND


def _now_iso(context: RuntimeContext) -> str:
    return to_iso(context.clock())


def _moment(text: Optional[str]) -> datetime:
    return parse_iso(text) or _EPOCH


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


def list_products(context: RuntimeContext, *, include_inactive: bool = False) -> List[Product]:
    """Return a copy of the catalog, active products only by default."""
    products = context.state.products
    return list(products) if include_inactive else [product for product in products if product.is_active]


def get_product(context: RuntimeContext, product_id: str) -> Product:
    """Resolve a product by id.

    Raises:
        MissingReferenceError: If ``product_id`` is unknown.
    """
    return _lookup(context.state.products, product_id, "Product")


def _normalize_product(product: Product) -> Product:
    if product.variants:
        return replace(product, has_variants=True, stock=product.variant_stock)
    return replace(product, stock=max(0, product.stock))


@synchronized
def add_product(context: RuntimeContext, product: Product) -> Product:
    """Insert ``product`` under the next catalog sequence id.

    Any id on the incoming record is ignored. Variant-bearing products get
    their stock recomputed from the variants.

    Returns:
        Product: The stored record with its assigned id.
    """
    state = context.state
    new_id = next_sequence_id((p.id for p in state.products), state.settings.sequences.product_start)
    stored = _normalize_product(replace(product, id=new_id))
    state.products.append(stored)
    log_activity(context, ActivityAction.INVENTORY, f"Added product {stored.name} (#{new_id})")
    _commit(context, StorageKey.PRODUCTS)
    log.info("Added product '%s' (%s)", new_id, stored.name)
    return stored


@synchronized
def update_product(context: RuntimeContext, product: Product) -> StoreResult:
    stored = _normalize_product(product)
    if not _replace_record(context.state.products, stored):
        return _not_found("Product", product.id)
    log_activity(context, ActivityAction.INVENTORY, f"Updated product {stored.name} (#{stored.id})")
    _commit(context, StorageKey.PRODUCTS)
    return StoreResult.SUCCESS


@synchronized
def delete_product(context: RuntimeContext, product_id: str) -> StoreResult:
    removed = _remove_record(context.state.products, product_id)
    if removed is None:
        return _not_found("Product", product_id)
    log_activity(context, ActivityAction.INVENTORY, f"Deleted product {removed.name} (#{product_id})")
    _commit(context, StorageKey.PRODUCTS)
    return StoreResult.SUCCESS


def _shift_stock(current: int, quantity: int, direction: StockDirection) -> int:
    if direction == StockDirection.IN:
        return current + quantity
    return max(0, current - quantity)


def _apply_stock(
    context: RuntimeContext,
    product_id: str,
    quantity: int,
    direction: StockDirection,
    variant_id: Optional[str] = None,
) -> StoreResult:
    products = context.state.products
    index = _find(products, product_id)
    if index is None:
        return _not_found("Product", product_id)
    product = products[index]

    if variant_id:
        variant_index = _find(product.variants, variant_id)
        if variant_index is None:
            return _not_found("Variant", f"{product_id}/{variant_id}")
        variants = list(product.variants)
        variant = variants[variant_index]
        variants[variant_index] = replace(variant, stock=_shift_stock(variant.stock, quantity, direction))
        products[index] = replace(product, variants=tuple(variants), stock=sum(v.stock for v in variants))
    elif product.variants:
        log.warning("Stock change on variant product '%s' without a variant id ignored", product_id)
        return StoreResult.NOT_FOUND
    else:
        products[index] = replace(product, stock=_shift_stock(product.stock, quantity, direction))
    return StoreResult.SUCCESS


@synchronized
def adjust_stock(
    context: RuntimeContext,
    product_id: str,
    quantity: int,
    direction: StockDirection,
    variant_id: Optional[str] = None,
) -> StoreResult:
    """Move stock in or out. Outgoing stock stops at zero.

    Args:
        product_id (str): Product to adjust.
        quantity (int): Units to move; must not be negative.
        direction (StockDirection): ``IN`` adds, ``OUT`` removes.
        variant_id (str | None): Variant to adjust on variant products.

    Returns:
        StoreResult: ``SUCCESS``, ``NOT_FOUND`` or ``INVALID_AMOUNT``.
    """
    if quantity < 0:
        log.warning("Rejected negative stock quantity %s for '%s'", quantity, product_id)
        return StoreResult.INVALID_AMOUNT
    result = _apply_stock(context, product_id, quantity, direction, variant_id)
    if result is not StoreResult.SUCCESS:
        return result
    target = f"{product_id}/{variant_id}" if variant_id else product_id
    log_activity(context, ActivityAction.INVENTORY, f"Stock {direction.value} {quantity} for #{target}")
    _commit(context, StorageKey.PRODUCTS)
    return StoreResult.SUCCESS


@synchronized
def update_stock_after_sale(context: RuntimeContext, items: Iterable[LineItem]) -> None:
    """Deduct the quantity of every sold line. Unknown products are skipped."""
    moved = 0
    for item in items:
        if item.quantity > 0 and _apply_stock(context, item.id, item.quantity, StockDirection.OUT, item.variant_id) is StoreResult.SUCCESS:
            moved += 1
    log_activity(context, ActivityAction.INVENTORY, f"Stock deducted for {moved} sold lines")
    _commit(context, StorageKey.PRODUCTS)


@synchronized
def register_production_surplus(context: RuntimeContext, order_id: str, items: Iterable[LineItem]) -> None:
    """Put over-produced units of an order back into stock."""
    for item in items:
        if item.quantity > 0:
            _apply_stock(context, item.id, item.quantity, StockDirection.IN, item.variant_id)
    log_activity(context, ActivityAction.INVENTORY, f"Production surplus from order #{order_id}")
    _commit(context, StorageKey.PRODUCTS)
    context.notifier.notify("Stock updated", "Surplus added to inventory.", Severity.SUCCESS)


@synchronized
def add_category(context: RuntimeContext, name: str) -> StoreResult:
    categories = context.state.categories
    if name in categories:
        return StoreResult.DUPLICATE_ID
    categories.append(name)
    log_activity(context, ActivityAction.INVENTORY, f"Added category {name}")
    _commit(context, StorageKey.CATEGORIES)
    return StoreResult.SUCCESS


@synchronized
def remove_category(context: RuntimeContext, name: str) -> StoreResult:
    categories = context.state.categories
    if name not in categories:
        return _not_found("Category", name)
    categories.remove(name)
    log_activity(context, ActivityAction.INVENTORY, f"Removed category {name}")
    _commit(context, StorageKey.CATEGORIES)
    return StoreResult.SUCCESS


# ---------------------------------------------------------------------------
# Sales
# ---------------------------------------------------------------------------


def list_transactions(context: RuntimeContext) -> List[Transaction]:
    """Return all sales newest first, cancelled ones included."""
    return list(context.state.transactions)


def get_transaction(context: RuntimeContext, transaction_id: str) -> Transaction:
    """Resolve a sale by id.

    Raises:
        MissingReferenceError: If ``transaction_id`` is unknown.
    """
    return _lookup(context.state.transactions, transaction_id, "Transaction")


def _bounded_debt(context: RuntimeContext, customer: Customer, proposed: Decimal) -> Optional[Decimal]:
    """Apply the credit-limit policy to a debt increase.

    Returns the debt to store, or ``None`` when the policy rejects the sale.
    """
    if customer.has_unlimited_credit or proposed <= customer.credit_limit:
        return proposed
    if context.state.settings.credit_limit_policy == CreditLimitPolicy.CLAMP:
        capped = max(customer.current_debt, customer.credit_limit)
        log.warning(
            "Debt of customer '%s' capped at %s (requested %s)",
            customer.id,
            capped,
            proposed,
        )
        context.notifier.notify(
            "Credit limit reached",
            f"{customer.name or customer.id} is at the credit limit of {customer.credit_limit}.",
            Severity.WARNING,
        )
        return capped
    log.warning("Credit sale for customer '%s' rejected: %s exceeds %s", customer.id, proposed, customer.credit_limit)
    return None


def _append_movement(context: RuntimeContext, movement: CashMovement) -> None:
    context.state.cash_movements.insert(0, movement)


@synchronized
def add_transaction(
    context: RuntimeContext,
    transaction: Transaction,
    *,
    affect_cash: Optional[bool] = None,
) -> SaleOutcome:
    """Record a sale, its drawer deposit and any debt it leaves behind.

    A blank id is replaced by the next ticket number. The sale is stored
    newest first. When the sale is paid, is not a return and was made today,
    its cash portion (the amount paid for cash sales, the cash part of a
    split) becomes a ``DEPOSIT`` movement ``mv_<id>``. ``affect_cash``
    overrides the automatic decision. An unpaid balance above one cent is
    added to the customer's debt, subject to the credit-limit policy.

    Args:
        context (RuntimeContext): Active runtime context.
        transaction (Transaction): Sale to record.
        affect_cash (bool | None): Force the drawer deposit on or off.

    Returns:
        SaleOutcome: ``SUCCESS`` with the stored sale, or ``INVALID_AMOUNT``,
            ``DUPLICATE_ID``, ``NOT_FOUND`` (unknown customer) or
            ``CREDIT_LIMIT_EXCEEDED`` with nothing changed.
    """
    state = context.state
    if transaction.total < 0 or transaction.amount_paid < 0:
        log.warning("Rejected sale with negative amounts (total=%s paid=%s)", transaction.total, transaction.amount_paid)
        return SaleOutcome(StoreResult.INVALID_AMOUNT)
    if transaction.status == TransactionStatus.ACTIVE and transaction.amount_paid > transaction.total + TOLERANCE:
        log.warning("Rejected sale paying %s over a total of %s", transaction.amount_paid, transaction.total)
        return SaleOutcome(StoreResult.INVALID_AMOUNT)

    if transaction.id:
        if _find(state.transactions, transaction.id) is not None:
            log.warning("Rejected sale with duplicate id '%s'", transaction.id)
            return SaleOutcome(StoreResult.DUPLICATE_ID)
        sale_id = transaction.id
    else:
        sale_id = next_sequence_id((t.id for t in state.transactions), state.settings.sequences.ticket_start)

    now = context.clock()
    final = replace(transaction, id=sale_id, date=transaction.date or to_iso(now))
    touched = [StorageKey.TRANSACTIONS]

    debt = final.outstanding
    customer_index: Optional[int] = None
    new_debt = ZERO
    if debt > TOLERANCE and final.customer_id and final.status == TransactionStatus.ACTIVE:
        customer_index = _find(state.customers, final.customer_id)
        if customer_index is None:
            _not_found("Customer", final.customer_id)
            return SaleOutcome(StoreResult.NOT_FOUND)
        customer = state.customers[customer_index]
        bounded = _bounded_debt(context, customer, customer.current_debt + debt)
        if bounded is None:
            return SaleOutcome(StoreResult.CREDIT_LIMIT_EXCEEDED)
        new_debt = bounded

    state.transactions.insert(0, final)
    if customer_index is not None:
        customer = state.customers[customer_index]
        state.customers[customer_index] = replace(customer, current_debt=new_debt)
        touched.append(StorageKey.CUSTOMERS)

    eligible = final.payment_status == PaymentStatus.PAID and not final.is_return
    if affect_cash is None:
        made_today = _moment(final.date).date() == now.date()
        affect_cash = eligible and made_today
    cash = final.cash_amount
    if affect_cash and eligible and cash > 0:
        _append_movement(
            context,
            CashMovement(
                id=f"mv_{final.id}",
                type=MovementType.DEPOSIT,
                amount=cash,
                description=f"Sale #{final.id}",
                date=final.date,
                category=BudgetCategory.SALES,
            ),
        )
        touched.append(StorageKey.CASH_MOVEMENTS)

    log_activity(context, ActivityAction.SALE, f"Sale #{final.id}")
    _commit(context, *touched)
    log.info(
        "Recorded sale '%s' (total=%s, paid=%s, method=%s)",
        final.id,
        final.total,
        final.amount_paid,
        getattr(final.payment_method, "value", final.payment_method),
    )
    return SaleOutcome(StoreResult.SUCCESS, final)


@synchronized
def checkout(context: RuntimeContext, transaction: Transaction, *, affect_cash: Optional[bool] = None) -> SaleOutcome:
    """Record a sale and deduct its stock as one locked operation."""
    outcome = add_transaction(context, transaction, affect_cash=affect_cash)
    if outcome.ok and outcome.transaction is not None:
        update_stock_after_sale(context, outcome.transaction.items)
    return outcome


@synchronized
def update_transaction(context: RuntimeContext, transaction_id: str, **changes: Any) -> StoreResult:
    """Edit fields of a sale; a new ``id`` also renames its drawer deposit.

    Raises:
        TypeError: If ``changes`` names an attribute a sale does not have.
    """
    state = context.state
    index = _find(state.transactions, transaction_id)
    if index is None:
        return _not_found("Transaction", transaction_id)

    new_id = changes.get("id") or transaction_id
    if new_id != transaction_id and _find(state.transactions, new_id) is not None:
        log.warning("Cannot rename sale '%s' to existing id '%s'", transaction_id, new_id)
        return StoreResult.DUPLICATE_ID

    updated = replace(state.transactions[index], **changes)
    if updated.status == TransactionStatus.ACTIVE and updated.amount_paid > updated.total + TOLERANCE:
        return StoreResult.INVALID_AMOUNT
    state.transactions[index] = updated
    touched = [StorageKey.TRANSACTIONS]

    if new_id != transaction_id:
        movement_index = _find(state.cash_movements, f"mv_{transaction_id}")
        if movement_index is not None:
            movement = state.cash_movements[movement_index]
            state.cash_movements[movement_index] = replace(
                movement,
                id=f"mv_{new_id}",
                description=movement.description.replace(f"#{transaction_id}", f"#{new_id}"),
            )
            touched.append(StorageKey.CASH_MOVEMENTS)

    log_activity(context, ActivityAction.SALE, f"Edited sale #{transaction_id} -> #{new_id}")
    _commit(context, *touched)
    return StoreResult.SUCCESS


@synchronized
def delete_transaction(context: RuntimeContext, transaction_id: str) -> StoreResult:
    """Cancel a sale. The record stays; its effects are reversed.

    Every line's stock is returned (taken back out for a return), the
    ``mv_<id>`` deposit is removed when the money went through the drawer,
    the unpaid balance comes off the customer's debt (never below zero) and
    the amount paid is zeroed.
    """
    state = context.state
    index = _find(state.transactions, transaction_id)
    if index is None:
        return _not_found("Transaction", transaction_id)
    sale = state.transactions[index]
    if sale.status == TransactionStatus.CANCELLED:
        log.warning("Sale '%s' is already cancelled", transaction_id)
        return StoreResult.ALREADY_CANCELLED

    outstanding = sale.outstanding
    state.transactions[index] = replace(sale, status=TransactionStatus.CANCELLED, amount_paid=ZERO)
    touched = [StorageKey.TRANSACTIONS, StorageKey.PRODUCTS]

    if sale.payment_method in REGISTER_METHODS and _remove_record(state.cash_movements, f"mv_{sale.id}") is not None:
        touched.append(StorageKey.CASH_MOVEMENTS)

    direction = StockDirection.OUT if sale.is_return else StockDirection.IN
    for item in sale.items:
        if item.quantity > 0:
            _apply_stock(context, item.id, item.quantity, direction, item.variant_id)

    if sale.customer_id and outstanding > TOLERANCE:
        customer_index = _find(state.customers, sale.customer_id)
        if customer_index is not None:
            customer = state.customers[customer_index]
            state.customers[customer_index] = replace(customer, current_debt=max(ZERO, customer.current_debt - outstanding))
            touched.append(StorageKey.CUSTOMERS)

    log_activity(context, ActivityAction.SALE, f"Cancelled sale #{transaction_id}")
    _commit(context, *touched)
    log.info("Cancelled sale '%s'", transaction_id)
    return StoreResult.SUCCESS


@synchronized
def register_transaction_payment(
    context: RuntimeContext,
    transaction_id: str,
    amount: Decimal,
    method: PaymentMethod = PaymentMethod.CASH,
) -> StoreResult:
    """Apply a later payment to a sale with an open balance.

    The amount must be positive and no larger than the balance. The sale
    becomes ``paid`` within a cent of the total, otherwise ``partial``. The
    customer's debt drops by the amount (not below zero) and cash payments
    add a ``DEPOSIT`` to the drawer.
    """
    state = context.state
    index = _find(state.transactions, transaction_id)
    if index is None:
        return _not_found("Transaction", transaction_id)
    sale = state.transactions[index]
    if sale.status == TransactionStatus.CANCELLED:
        return StoreResult.ALREADY_CANCELLED
    if amount <= 0 or amount > sale.outstanding + TOLERANCE:
        log.warning("Rejected payment of %s on sale '%s' (balance %s)", amount, transaction_id, sale.outstanding)
        return StoreResult.INVALID_AMOUNT

    paid = sale.amount_paid + amount
    status = PaymentStatus.PAID if paid >= sale.total - TOLERANCE else PaymentStatus.PARTIAL
    state.transactions[index] = replace(sale, amount_paid=paid, payment_status=status)
    touched = [StorageKey.TRANSACTIONS]

    if sale.customer_id:
        customer_index = _find(state.customers, sale.customer_id)
        if customer_index is not None:
            customer = state.customers[customer_index]
            state.customers[customer_index] = replace(customer, current_debt=max(ZERO, customer.current_debt - amount))
            touched.append(StorageKey.CUSTOMERS)

    now = context.clock()
    if method == PaymentMethod.CASH:
        _append_movement(
            context,
            CashMovement(
                id=f"pay_{transaction_id}_{int(now.timestamp() * 1000)}",
                type=MovementType.DEPOSIT,
                amount=amount,
                description=f"Payment on sale #{transaction_id} ({method.value})",
                date=to_iso(now),
                category=BudgetCategory.SALES,
            ),
        )
        touched.append(StorageKey.CASH_MOVEMENTS)

    log_activity(context, ActivityAction.SALE, f"Payment of {amount} on sale #{transaction_id}")
    _commit(context, *touched)
    return StoreResult.SUCCESS


# ---------------------------------------------------------------------------
# Customers
# ---------------------------------------------------------------------------


def list_customers(context: RuntimeContext) -> List[Customer]:
    return list(context.state.customers)


def get_customer(context: RuntimeContext, customer_id: str) -> Customer:
    """Resolve a customer by id.

    Raises:
        MissingReferenceError: If ``customer_id`` is unknown.
    """
    return _lookup(context.state.customers, customer_id, "Customer")


@synchronized
def add_customer(context: RuntimeContext, customer: Customer) -> Customer:
    state = context.state
    new_id = next_sequence_id((c.id for c in state.customers), state.settings.sequences.customer_start)
    stored = replace(customer, id=new_id, current_debt=max(ZERO, customer.current_debt))
    state.customers.append(stored)
    log_activity(context, ActivityAction.CRM, f"New customer {stored.name} (#{new_id})")
    _commit(context, StorageKey.CUSTOMERS)
    return stored


@synchronized
def update_customer(context: RuntimeContext, customer: Customer) -> StoreResult:
    stored = replace(customer, current_debt=max(ZERO, customer.current_debt))
    if not _replace_record(context.state.customers, stored):
        return _not_found("Customer", customer.id)
    log_activity(context, ActivityAction.CRM, f"Updated customer {stored.name} (#{stored.id})")
    _commit(context, StorageKey.CUSTOMERS)
    return StoreResult.SUCCESS


@synchronized
def delete_customer(context: RuntimeContext, customer_id: str) -> StoreResult:
    removed = _remove_record(context.state.customers, customer_id)
    if removed is None:
        return _not_found("Customer", customer_id)
    log_activity(context, ActivityAction.CRM, f"Deleted customer {removed.name} (#{customer_id})")
    _commit(context, StorageKey.CUSTOMERS)
    return StoreResult.SUCCESS


@synchronized
def process_customer_payment(
    context: RuntimeContext,
    customer_id: str,
    amount: Decimal,
    method: PaymentMethod = PaymentMethod.CASH,
) -> StoreResult:
    """Pay down a customer's account balance (not tied to a single sale)."""
    state = context.state
    if amount <= 0:
        return StoreResult.INVALID_AMOUNT
    index = _find(state.customers, customer_id)
    if index is None:
        return _not_found("Customer", customer_id)
    customer = state.customers[index]
    state.customers[index] = replace(customer, current_debt=max(ZERO, customer.current_debt - amount))
    touched = [StorageKey.CUSTOMERS]

    if method == PaymentMethod.CASH:
        _append_movement(
            context,
            CashMovement(
                id=uuid.uuid4().hex,
                type=MovementType.DEPOSIT,
                amount=amount,
                description=f"Account payment from {customer.name or customer_id}",
                date=_now_iso(context),
                category=BudgetCategory.SALES,
                customer_id=customer_id,
            ),
        )
        touched.append(StorageKey.CASH_MOVEMENTS)

    log_activity(context, ActivityAction.CRM, f"Payment of {amount} from customer #{customer_id}")
    _commit(context, *touched)
    return StoreResult.SUCCESS


# ---------------------------------------------------------------------------
# Suppliers and purchases
# ---------------------------------------------------------------------------


def list_suppliers(context: RuntimeContext) -> List[Supplier]:
    return list(context.state.suppliers)


def list_purchases(context: RuntimeContext) -> List[Purchase]:
    return list(context.state.purchases)


@synchronized
def add_supplier(context: RuntimeContext, supplier: Supplier) -> Supplier:
    stored = supplier if supplier.id else replace(supplier, id=uuid.uuid4().hex)
    context.state.suppliers.append(stored)
    log_activity(context, ActivityAction.CRM, f"New supplier {stored.name}")
    _commit(context, StorageKey.SUPPLIERS)
    return stored


@synchronized
def update_supplier(context: RuntimeContext, supplier: Supplier) -> StoreResult:
    if not _replace_record(context.state.suppliers, supplier):
        return _not_found("Supplier", supplier.id)
    log_activity(context, ActivityAction.CRM, f"Updated supplier {supplier.name}")
    _commit(context, StorageKey.SUPPLIERS)
    return StoreResult.SUCCESS


@synchronized
def delete_supplier(context: RuntimeContext, supplier_id: str) -> StoreResult:
    removed = _remove_record(context.state.suppliers, supplier_id)
    if removed is None:
        return _not_found("Supplier", supplier_id)
    log_activity(context, ActivityAction.CRM, f"Deleted supplier {removed.name}")
    _commit(context, StorageKey.SUPPLIERS)
    return StoreResult.SUCCESS


@synchronized
def add_purchase(context: RuntimeContext, purchase: Purchase) -> Purchase:
    """Record a supplier purchase, restock its items and book the expense.

    The expense is an ``EXPENSE`` movement ``purch_<id>`` in the
    ``OPERATIONAL`` category.
    """
    state = context.state
    stored = replace(
        purchase,
        id=purchase.id or uuid.uuid4().hex,
        date=purchase.date or _now_iso(context),
    )
    state.purchases.append(stored)
    for item in stored.items:
        if item.quantity > 0:
            _apply_stock(context, item.product_id, item.quantity, StockDirection.IN, item.variant_id)
    _append_movement(
        context,
        CashMovement(
            id=f"purch_{stored.id}",
            type=MovementType.EXPENSE,
            amount=max(ZERO, stored.total),
            description=f"Purchase from {stored.supplier_name or stored.supplier_id}",
            date=stored.date,
            category=BudgetCategory.OPERATIONAL,
        ),
    )
    log_activity(context, ActivityAction.INVENTORY, f"Purchase from {stored.supplier_name or stored.supplier_id}")
    _commit(context, StorageKey.PURCHASES, StorageKey.PRODUCTS, StorageKey.CASH_MOVEMENTS)
    log.info("Recorded purchase '%s' (%d items, total=%s)", stored.id, len(stored.items), stored.total)
    return stored


# ---------------------------------------------------------------------------
# Cash register
# ---------------------------------------------------------------------------


def list_cash_movements(context: RuntimeContext) -> List[CashMovement]:
    return list(context.state.cash_movements)


def active_register_movements(context: RuntimeContext) -> List[CashMovement]:
    """Movements since the most recent ``CLOSE``, newest first."""
    ordered = sorted(context.state.cash_movements, key=lambda m: _moment(m.date), reverse=True)
    for index, movement in enumerate(ordered):
        if movement.type == MovementType.CLOSE:
            return ordered[:index]
    return ordered


def _balance(movements: Iterable[CashMovement]) -> Decimal:
    total = ZERO
    for movement in movements:
        if movement.type in (MovementType.OPEN, MovementType.DEPOSIT):
            total += movement.amount
        elif movement.type in (MovementType.EXPENSE, MovementType.WITHDRAWAL):
            total -= movement.amount
    return total


def register_balance(context: RuntimeContext) -> Decimal:
    """Expected drawer cash: opening fund and deposits minus expenses and withdrawals."""
    return _balance(active_register_movements(context))


def is_register_open(context: RuntimeContext) -> bool:
    return any(movement.type == MovementType.OPEN for movement in active_register_movements(context))


@synchronized
def add_cash_movement(context: RuntimeContext, movement: CashMovement) -> StoreResult:
    """Record a manual drawer movement.

    Returns:
        StoreResult: ``INVALID_AMOUNT`` for a negative amount and
            ``REGISTER_ALREADY_OPEN`` for a second ``OPEN`` before a close.
    """
    if movement.amount < 0:
        log.warning("Rejected cash movement with negative amount %s", movement.amount)
        return StoreResult.INVALID_AMOUNT
    if movement.type == MovementType.OPEN and is_register_open(context):
        log.warning("Register is already open")
        return StoreResult.REGISTER_ALREADY_OPEN
    stored = replace(movement, id=movement.id or uuid.uuid4().hex, date=movement.date or _now_iso(context))
    _append_movement(context, stored)
    log_activity(context, ActivityAction.CASH, f"{stored.type.value}: {stored.description}")
    _commit(context, StorageKey.CASH_MOVEMENTS)
    return StoreResult.SUCCESS


@synchronized
def delete_cash_movement(context: RuntimeContext, movement_id: str) -> StoreResult:
    removed = _remove_record(context.state.cash_movements, movement_id)
    if removed is None:
        return _not_found("Cash movement", movement_id)
    log_activity(context, ActivityAction.CASH, f"Deleted movement {removed.description}")
    _commit(context, StorageKey.CASH_MOVEMENTS)
    return StoreResult.SUCCESS


@synchronized
def perform_z_cut(context: RuntimeContext, declared_cash: Decimal) -> Tuple[StoreResult, Optional[CashMovement]]:
    """Close the register and attach the session's Z report.

    The session runs from its ``OPEN`` movement (midnight when the drawer
    was never opened) to now. Expected cash, expenses and withdrawals come
    from the movements since the previous ``CLOSE``; sales figures come
    from the non-cancelled sales made during the session. The ``CLOSE``
    movement itself carries no amount, so the next session starts from zero.

    Args:
        context (RuntimeContext): Active runtime context.
        declared_cash (Decimal): Cash counted in the drawer.

    Returns:
        tuple[StoreResult, CashMovement | None]: ``SUCCESS`` with the
            ``CLOSE`` movement, ``REGISTER_CLOSED`` when nothing happened
            since the last cut, or ``INVALID_AMOUNT`` when the declared cash
            is negative or the expected balance is below zero.
    """
    movements = active_register_movements(context)
    if not movements:
        return StoreResult.REGISTER_CLOSED, None
    expected = _balance(movements)
    if declared_cash < 0 or expected < 0:
        log.warning("Z cut refused (declared=%s expected=%s)", declared_cash, expected)
        context.notifier.notify("Z cut", "The drawer balance is negative; review the movements.", Severity.ERROR)
        return StoreResult.INVALID_AMOUNT, None

    now = context.clock()
    opening = next((m for m in movements if m.type == MovementType.OPEN), None)
    if opening is not None:
        session_start = _moment(opening.date)
    else:
        session_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    sales = [
        t for t in context.state.transactions
        if t.status != TransactionStatus.CANCELLED and _moment(t.date) >= session_start
    ]

    def _sales_by(method: PaymentMethod) -> Decimal:
        return sum((t.amount_paid for t in sales if t.payment_method == method), ZERO)

    difference = declared_cash - expected
    report = ZReport(
        opening_fund=opening.amount if opening is not None else ZERO,
        gross_sales=sum((t.total for t in sales), ZERO),
        cash_sales=sum((t.cash_amount for t in sales), ZERO),
        card_sales=_sales_by(PaymentMethod.CARD),
        transfer_sales=_sales_by(PaymentMethod.TRANSFER),
        credit_sales=sum((t.total for t in sales if t.payment_method == PaymentMethod.CREDIT), ZERO),
        expenses=sum((m.amount for m in movements if m.type == MovementType.EXPENSE), ZERO),
        withdrawals=sum((m.amount for m in movements if m.type == MovementType.WITHDRAWAL), ZERO),
        expected_cash=expected,
        declared_cash=declared_cash,
        difference=difference,
        timestamp=to_iso(now),
    )
    closing = CashMovement(
        id=uuid.uuid4().hex,
        type=MovementType.CLOSE,
        amount=ZERO,
        description=f"Z cut - declared {declared_cash:.2f} | difference {difference:.2f}",
        date=to_iso(now),
        category=BudgetCategory.OTHER,
        is_z_cut=True,
        z_report=report,
    )
    _append_movement(context, closing)
    log_activity(context, ActivityAction.CASH, f"Z cut: expected {expected}, declared {declared_cash}")
    _commit(context, StorageKey.CASH_MOVEMENTS)
    context.notifier.notify("Z cut", "Register closed; the balance starts over.", Severity.SUCCESS)
    log.info("Z cut recorded (expected=%s declared=%s difference=%s)", expected, declared_cash, report.difference)
    return StoreResult.SUCCESS, closing


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------


def list_orders(context: RuntimeContext) -> List[Order]:
    return list(context.state.orders)


def get_order(context: RuntimeContext, order_id: str) -> Order:
    """Resolve an order by id.

    Raises:
        MissingReferenceError: If ``order_id`` is unknown.
    """
    return _lookup(context.state.orders, order_id, "Order")


def can_transition(current: Any, target: Any) -> bool:
    """Orders only move forward; any open order may be cancelled."""
    if current in TERMINAL_ORDER_STATUSES:
        return False
    if target == OrderStatus.CANCELLED:
        return current in ORDER_STATUS_RANK
    if current not in ORDER_STATUS_RANK or target not in ORDER_STATUS_RANK:
        return False
    return ORDER_STATUS_RANK[target] > ORDER_STATUS_RANK[current]


@synchronized
def add_order(context: RuntimeContext, order: Order) -> Order:
    state = context.state
    new_id = next_sequence_id((o.id for o in state.orders), state.settings.sequences.order_start)
    stored = replace(order, id=new_id, date=order.date or _now_iso(context))
    state.orders.append(stored)
    log_activity(context, ActivityAction.ORDER, f"New order #{new_id}")
    _commit(context, StorageKey.ORDERS)
    return stored


@synchronized
def update_order(context: RuntimeContext, order: Order) -> StoreResult:
    """Replace an order. A changed status must be a legal transition."""
    orders = context.state.orders
    index = _find(orders, order.id)
    if index is None:
        return _not_found("Order", order.id)
    current = orders[index].status
    if order.status != current and not can_transition(current, order.status):
        log.warning("Illegal order transition %s -> %s for '%s'", current, order.status, order.id)
        return StoreResult.INVALID_TRANSITION
    orders[index] = order
    log_activity(context, ActivityAction.ORDER, f"Edited order #{order.id}")
    _commit(context, StorageKey.ORDERS)
    return StoreResult.SUCCESS


@synchronized
def update_order_status(context: RuntimeContext, order_id: str, status: OrderStatus) -> StoreResult:
    """Advance an order along ``PENDING -> IN_PROGRESS -> READY -> COMPLETED``.

    ``CANCELLED`` is reachable from any state that is not terminal. Setting
    the current status again is a no-op.
    """
    orders = context.state.orders
    index = _find(orders, order_id)
    if index is None:
        return _not_found("Order", order_id)
    order = orders[index]
    if order.status == status:
        return StoreResult.SUCCESS
    if not can_transition(order.status, status):
        log.warning("Illegal order transition %s -> %s for '%s'", order.status, status, order_id)
        return StoreResult.INVALID_TRANSITION
    orders[index] = replace(order, status=status)
    log_activity(context, ActivityAction.ORDER, f"Order #{order_id} -> {status.value}")
    _commit(context, StorageKey.ORDERS)
    return StoreResult.SUCCESS


@synchronized
def delete_order(context: RuntimeContext, order_id: str) -> StoreResult:
    if _remove_record(context.state.orders, order_id) is None:
        return _not_found("Order", order_id)
    log_activity(context, ActivityAction.ORDER, f"Deleted order #{order_id}")
    _commit(context, StorageKey.ORDERS)
    return StoreResult.SUCCESS


@synchronized
def send_order_to_pos(context: RuntimeContext, order_id: str) -> StoreResult:
    """Stage a copy of the order for the sales screen, replacing any earlier one."""
    state = context.state
    index = _find(state.orders, order_id)
    if index is None:
        return _not_found("Order", order_id)
    state.incoming_order = state.orders[index]
    log_activity(context, ActivityAction.ORDER, f"Order #{order_id} sent to the register")
    _commit(context)
    return StoreResult.SUCCESS


@synchronized
def take_incoming_order(context: RuntimeContext) -> Optional[Order]:
    """Consume the staged order; a second call returns ``None``."""
    order = context.state.incoming_order
    context.state.incoming_order = None
    return order


@synchronized
def clear_incoming_order(context: RuntimeContext) -> None:
    context.state.incoming_order = None


# ---------------------------------------------------------------------------
# Users, invites and settings
# ---------------------------------------------------------------------------


def list_users(context: RuntimeContext) -> List[User]:
    return list(context.state.users)


def get_user(context: RuntimeContext, user_id: str) -> User:
    """Resolve a user by id.

    Raises:
        MissingReferenceError: If ``user_id`` is unknown.
    """
    return _lookup(context.state.users, user_id, "User")


def find_user_by_username(context: RuntimeContext, username: str) -> Optional[User]:
    wanted = username.strip().lower()
    for user in context.state.users:
        if user.username.lower() == wanted:
            return user
    return None


def list_invites(context: RuntimeContext) -> List[UserInvite]:
    return list(context.state.user_invites)


@synchronized
def add_user(
    context: RuntimeContext,
    user: User,
    *,
    consume_invite: Optional[str] = None,
    details: Optional[str] = None,
) -> StoreResult:
    """Add a user; usernames are unique ignoring case.

    Args:
        consume_invite (str | None): Invite code to remove in the same commit.
    """
    state = context.state
    if find_user_by_username(context, user.username) is not None or _find(state.users, user.id) is not None:
        log.warning("User '%s' already exists", user.username)
        return StoreResult.DUPLICATE_ID
    state.users.append(user)
    touched = [StorageKey.USERS]
    if consume_invite is not None:
        state.user_invites = [invite for invite in state.user_invites if invite.code != consume_invite]
        touched.append(StorageKey.USER_INVITES)
    log_activity(context, ActivityAction.USER_MGMT, details or f"New user {user.username}")
    _commit(context, *touched)
    return StoreResult.SUCCESS


@synchronized
def update_user(
    context: RuntimeContext,
    user: User,
    *,
    action: ActivityAction = ActivityAction.USER_MGMT,
    details: Optional[str] = None,
) -> StoreResult:
    if not _replace_record(context.state.users, user):
        return _not_found("User", user.id)
    log_activity(context, action, details or f"Edited user {user.username}")
    _commit(context, StorageKey.USERS)
    return StoreResult.SUCCESS


@synchronized
def delete_user(context: RuntimeContext, user_id: str) -> StoreResult:
    removed = _remove_record(context.state.users, user_id)
    if removed is None:
        return _not_found("User", user_id)
    log_activity(context, ActivityAction.USER_MGMT, f"Deleted user {removed.username}")
    _commit(context, StorageKey.USERS)
    return StoreResult.SUCCESS


@synchronized
def add_invite(context: RuntimeContext, invite: UserInvite) -> StoreResult:
    invites = context.state.user_invites
    if any(existing.code == invite.code for existing in invites):
        return StoreResult.DUPLICATE_ID
    invites.append(invite)
    log_activity(context, ActivityAction.USER_MGMT, f"Invite created for role {getattr(invite.role, 'value', invite.role)}")
    _commit(context, StorageKey.USER_INVITES)
    return StoreResult.SUCCESS


@synchronized
def delete_invite(context: RuntimeContext, code: str) -> StoreResult:
    invites = context.state.user_invites
    remaining = [invite for invite in invites if invite.code != code]
    if len(remaining) == len(invites):
        return _not_found("Invite", code)
    context.state.user_invites = remaining
    log_activity(context, ActivityAction.USER_MGMT, "Invite revoked")
    _commit(context, StorageKey.USER_INVITES)
    return StoreResult.SUCCESS


@synchronized
def update_settings(context: RuntimeContext, settings: BusinessSettings) -> None:
    """Replace the settings record wholesale."""
    context.state.settings = settings
    log_activity(context, ActivityAction.SETTINGS, "Updated settings")
    _commit(context, StorageKey.SETTINGS)
