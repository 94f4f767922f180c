"""Immutable records for every collection the store persists.

Records are frozen; the next version of an entity is produced with
:func:`dataclasses.replace`. Attribute names are snake_case and map to the
camelCase keys of the JSON snapshot; a field whose JSON key does not follow
that rule declares it through ``metadata={"wire": ...}``. Keys written by
other clients that no field knows about survive in ``extra``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Mapping, Optional

from .constants import (
    ActivityAction,
    BudgetCategory,
    CreditLimitPolicy,
    MovementType,
    OrderPriority,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    PurchaseStatus,
    StoreResult,
    TransactionStatus,
    UserRole,
)


ZERO = Decimal("0")


def _extra() -> Any:
    return field(default_factory=dict, repr=False, compare=False)


@dataclass(frozen=True)
class ProductVariant:
    id: str
    name: str = ""
    price: Decimal = ZERO
    stock: int = 0
    sku: str = ""
    extra: Mapping[str, Any] = _extra()


@dataclass(frozen=True)
class Product:
    """Catalog entry. Variant-bearing products derive stock from variants."""

    id: str
    name: str = ""
    price: Decimal = ZERO
    stock: int = 0
    category: str = ""
    sku: str = ""
    description: Optional[str] = None
    unit: str = "PIECE"
    is_active: bool = True
    cost: Optional[Decimal] = None
    tax_rate: Decimal = ZERO
    has_variants: bool = False
    variants: tuple[ProductVariant, ...] = ()
    extra: Mapping[str, Any] = _extra()

    @property
    def variant_stock(self) -> int:
        return sum(variant.stock for variant in self.variants)


@dataclass(frozen=True)
class LineItem:
    """One cart line of a sale or an order."""

    id: str
    name: str = ""
    price: Decimal = ZERO
    quantity: int = 0
    variant_id: Optional[str] = None
    variant_name: Optional[str] = None
    extra: Mapping[str, Any] = _extra()


@dataclass(frozen=True)
class SplitDetails:
    cash: Decimal = ZERO
    other: Decimal = ZERO


@dataclass(frozen=True)
class Transaction:
    """A sale ticket. Never physically deleted; cancelling sets ``status``."""

    id: str
    date: str = ""
    total: Decimal = ZERO
    subtotal: Decimal = ZERO
    tax_amount: Decimal = ZERO
    discount: Decimal = ZERO
    shipping: Decimal = ZERO
    items: tuple[LineItem, ...] = ()
    payment_method: PaymentMethod = PaymentMethod.CASH
    payment_status: PaymentStatus = PaymentStatus.PAID
    amount_paid: Decimal = ZERO
    status: TransactionStatus = TransactionStatus.ACTIVE
    customer_id: Optional[str] = None
    customer_name: Optional[str] = None
    split_details: Optional[SplitDetails] = None
    due_date: Optional[str] = None
    transfer_reference: Optional[str] = None
    is_return: bool = False
    original_transaction_id: Optional[str] = None
    extra: Mapping[str, Any] = _extra()

    @property
    def outstanding(self) -> Decimal:
        return max(ZERO, self.total - self.amount_paid)

    @property
    def cash_amount(self) -> Decimal:
        """Portion of the payment that went into the cash drawer."""
        if self.payment_method is PaymentMethod.CASH:
            return self.amount_paid
        if self.payment_method is PaymentMethod.SPLIT and self.split_details is not None:
            return self.split_details.cash
        return ZERO


@dataclass(frozen=True)
class Customer:
    id: str
    name: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""
    notes: str = ""
    credit_limit: Decimal = ZERO
    current_debt: Decimal = ZERO
    has_unlimited_credit: bool = False
    client_type: Optional[str] = None
    extra: Mapping[str, Any] = _extra()


@dataclass(frozen=True)
class Supplier:
    id: str
    name: str = ""
    contact_person: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""
    extra: Mapping[str, Any] = _extra()


@dataclass(frozen=True)
class PurchaseItem:
    product_id: str
    name: str = ""
    quantity: int = 0
    unit_cost: Decimal = ZERO
    total: Decimal = ZERO
    variant_id: Optional[str] = None
    variant_name: Optional[str] = None
    extra: Mapping[str, Any] = _extra()


@dataclass(frozen=True)
class Purchase:
    id: str
    supplier_id: str = ""
    supplier_name: str = ""
    date: str = ""
    items: tuple[PurchaseItem, ...] = ()
    total: Decimal = ZERO
    status: PurchaseStatus = PurchaseStatus.COMPLETED
    notes: Optional[str] = None
    extra: Mapping[str, Any] = _extra()


@dataclass(frozen=True)
class ZReport:
    """Register closing summary attached to a ``CLOSE`` movement."""

    opening_fund: Decimal = ZERO
    gross_sales: Decimal = ZERO
    cash_sales: Decimal = ZERO
    card_sales: Decimal = ZERO
    transfer_sales: Decimal = ZERO
    credit_sales: Decimal = ZERO
    expenses: Decimal = ZERO
    withdrawals: Decimal = ZERO
    expected_cash: Decimal = ZERO
    declared_cash: Decimal = ZERO
    difference: Decimal = ZERO
    timestamp: str = ""


@dataclass(frozen=True)
class CashMovement:
    """Register movement. ``amount`` is never negative; ``type`` gives the sign."""

    id: str
    type: MovementType = MovementType.DEPOSIT
    amount: Decimal = ZERO
    description: str = ""
    date: str = ""
    category: Optional[BudgetCategory] = None
    sub_category: Optional[str] = None
    customer_id: Optional[str] = None
    is_z_cut: bool = False
    z_report: Optional[ZReport] = field(default=None, metadata={"wire": "zReportData"})
    extra: Mapping[str, Any] = _extra()


@dataclass(frozen=True)
class Order:
    id: str
    customer_name: str = ""
    date: str = ""
    items: tuple[LineItem, ...] = ()
    total: Decimal = ZERO
    status: OrderStatus = OrderStatus.PENDING
    customer_id: Optional[str] = None
    delivery_date: Optional[str] = None
    notes: Optional[str] = None
    priority: OrderPriority = OrderPriority.NORMAL
    extra: Mapping[str, Any] = _extra()


@dataclass(frozen=True)
class User:
    id: str
    username: str
    password_hash: str = ""
    salt: str = ""
    full_name: str = ""
    role: UserRole = UserRole.CASHIER
    active: bool = True
    last_login: Optional[str] = None
    last_active: Optional[str] = None
    failed_login_attempts: int = 0
    lockout_until: Optional[str] = None
    recovery_code: Optional[str] = None
    security_question: Optional[str] = None
    security_answer_hash: Optional[str] = None
    is_two_factor_enabled: bool = False
    two_factor_secret: Optional[str] = None
    extra: Mapping[str, Any] = _extra()


@dataclass(frozen=True)
class UserInvite:
    code: str
    role: UserRole = UserRole.CASHIER
    created_at: str = ""
    created_by: str = ""
    extra: Mapping[str, Any] = _extra()


@dataclass(frozen=True)
class ActivityLog:
    id: str
    user_id: str = ""
    user_name: str = ""
    user_role: str = ""
    action: ActivityAction = ActivityAction.SETTINGS
    details: str = ""
    timestamp: str = ""
    extra: Mapping[str, Any] = _extra()


@dataclass(frozen=True)
class SequenceConfig:
    customer_start: int = 1
    ticket_start: int = 1
    order_start: int = 1
    product_start: int = 1000
    extra: Mapping[str, Any] = _extra()


@dataclass(frozen=True)
class SecurityConfig:
    auto_lock_minutes: int = 5
    extra: Mapping[str, Any] = _extra()


@dataclass(frozen=True)
class BusinessSettings:
    """Singleton settings record, replaced wholesale on update."""

    name: str = "Mi Tienda"
    address: str = ""
    phone: str = ""
    email: str = ""
    currency: str = "MXN"
    tax_rate: Decimal = ZERO
    enable_tax: bool = False
    receipt_header: str = ""
    receipt_footer: str = "Gracias por su compra"
    sequences: SequenceConfig = field(default_factory=SequenceConfig)
    security_config: SecurityConfig = field(default_factory=SecurityConfig)
    google_web_app_url: str = ""
    enable_cloud_sync: bool = False
    cloud_secret: str = ""
    credit_limit_policy: CreditLimitPolicy = CreditLimitPolicy.REJECT
    extra: Mapping[str, Any] = _extra()


@dataclass(frozen=True)
class SessionSnapshot:
    """Display copy of the signed-in user persisted under ``currentUser``."""

    user_id: str
    username: str = ""
    full_name: str = ""
    role: UserRole = UserRole.CASHIER


@dataclass(frozen=True)
class UserPublicInfo:
    username: str
    security_question: Optional[str]
    has_recovery_code: bool


@dataclass(frozen=True)
class Registration:
    """Details a new user supplies together with an invite code."""

    username: str
    password: str
    full_name: str
    security_question: Optional[str] = None
    security_answer: Optional[str] = None


@dataclass(frozen=True)
class SaleOutcome:
    status: StoreResult
    transaction: Optional[Transaction] = None

    @property
    def ok(self) -> bool:
        return self.status is StoreResult.SUCCESS


@dataclass(frozen=True)
class RemoteSnapshot:
    """Dataset fetched from the remote endpoint and the time it was written."""

    timestamp: Optional[datetime]
    data: Optional[Mapping[str, Any]]


__all__ = [
    "ZERO",
    "ProductVariant",
    "Product",
    "LineItem",
    "SplitDetails",
    "Transaction",
    "Customer",
    "Supplier",
    "PurchaseItem",
    "Purchase",
    "ZReport",
    "CashMovement",
    "Order",
    "User",
    "UserInvite",
    "ActivityLog",
    "SequenceConfig",
    "SecurityConfig",
    "BusinessSettings",
    "SessionSnapshot",
    "UserPublicInfo",
    "Registration",
    "SaleOutcome",
    "RemoteSnapshot",
]
