"""Enumerations and policy constants shared across the store modules.

Wire values match the JSON produced by existing clients of the remote
snapshot, so every enum here is a ``str`` enum whose value is written to
storage verbatim.
"""

from __future__ import annotations

from datetime import timedelta
from enum import Enum


STORAGE_PREFIX = "POSSTORE::"
SYSTEM_USER_ID = "SYSTEM"
SYSTEM_USER_NAME = "Sistema"

DEFAULT_ACTIVITY_LOG_LIMIT = 500
MAX_ACTIVITY_LOG_LIMIT = 1000
MAX_FAILED_ATTEMPTS = 5
LOCKOUT_DURATION = timedelta(minutes=15)
SYNC_INTERVAL = timedelta(seconds=30)
SYNC_TIMEOUT = timedelta(seconds=30)
SKEW_GUARD = timedelta(seconds=10)
IDLE_CHECK_INTERVAL = timedelta(seconds=5)
TOAST_DURATION = timedelta(seconds=5)

# Amounts within a cent are treated as settled.
MONEY_TOLERANCE = "0.01"


class StorageKey(str, Enum):
    """Keys of the persisted key-value layout, one per collection."""

    PRODUCTS = "products"
    TRANSACTIONS = "transactions"
    CUSTOMERS = "customers"
    SUPPLIERS = "suppliers"
    CASH_MOVEMENTS = "cashMovements"
    ORDERS = "orders"
    PURCHASES = "purchases"
    USERS = "users"
    USER_INVITES = "userInvites"
    CATEGORIES = "categories"
    ACTIVITY_LOGS = "activityLogs"
    SETTINGS = "settings"
    CURRENT_USER = "currentUser"
    SYNC_STATE = "syncState"


# Keys that make up the synchronised dataset. The session pointer and the
# local sync bookkeeping never leave the device.
DATASET_KEYS: tuple[StorageKey, ...] = tuple(
    key for key in StorageKey if key not in (StorageKey.CURRENT_USER, StorageKey.SYNC_STATE)
)


class UserRole(str, Enum):
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    CASHIER = "CASHIER"


class PaymentMethod(str, Enum):
    CASH = "cash"
    CARD = "card"
    TRANSFER = "transfer"
    SPLIT = "split"
    CREDIT = "credit"


# Methods whose money passes through the cash drawer.
REGISTER_METHODS: frozenset[PaymentMethod] = frozenset({PaymentMethod.CASH, PaymentMethod.SPLIT})


class PaymentStatus(str, Enum):
    PAID = "paid"
    PARTIAL = "partial"
    PENDING = "pending"
    REFUNDED = "refunded"


class TransactionStatus(str, Enum):
    """Lifecycle of a sale. Active sales are stored as ``completed``."""

    ACTIVE = "completed"
    CANCELLED = "cancelled"
    RETURNED = "returned"


class MovementType(str, Enum):
    OPEN = "OPEN"
    DEPOSIT = "DEPOSIT"
    EXPENSE = "EXPENSE"
    WITHDRAWAL = "WITHDRAWAL"
    CLOSE = "CLOSE"


class BudgetCategory(str, Enum):
    OPERATIONAL = "OPERATIONAL"
    INVESTMENT = "INVESTMENT"
    PROFIT = "PROFIT"
    SALES = "SALES"
    EQUITY = "EQUITY"
    THIRD_PARTY = "THIRD_PARTY"
    OTHER = "OTHER"


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    READY = "READY"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


# Forward-only ordering of the non-cancelled states.
ORDER_STATUS_RANK: dict[OrderStatus, int] = {
    OrderStatus.PENDING: 0,
    OrderStatus.IN_PROGRESS: 1,
    OrderStatus.READY: 2,
    OrderStatus.COMPLETED: 3,
}
TERMINAL_ORDER_STATUSES: frozenset[OrderStatus] = frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED})


class OrderPriority(str, Enum):
    NORMAL = "NORMAL"
    HIGH = "HIGH"


class PurchaseStatus(str, Enum):
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class StockDirection(str, Enum):
    IN = "IN"
    OUT = "OUT"


class ActivityAction(str, Enum):
    LOGIN = "LOGIN"
    SALE = "SALE"
    INVENTORY = "INVENTORY"
    SETTINGS = "SETTINGS"
    USER_MGMT = "USER_MGMT"
    SECURITY = "SECURITY"
    CASH = "CASH"
    ORDER = "ORDER"
    CRM = "CRM"
    RECOVERY = "RECOVERY"


class CreditLimitPolicy(str, Enum):
    """What happens when a sale would push a customer past the credit limit."""

    REJECT = "REJECT"
    CLAMP = "CLAMP"


class RecoveryMethod(str, Enum):
    CODE = "CODE"
    SECURITY_QUESTION = "SECURITY_QUESTION"


class Severity(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class StoreResult(str, Enum):
    """Outcome of a validated entity-store mutation."""

    SUCCESS = "SUCCESS"
    NOT_FOUND = "NOT_FOUND"
    DUPLICATE_ID = "DUPLICATE_ID"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    CREDIT_LIMIT_EXCEEDED = "CREDIT_LIMIT_EXCEEDED"
    ALREADY_CANCELLED = "ALREADY_CANCELLED"
    REGISTER_ALREADY_OPEN = "REGISTER_ALREADY_OPEN"
    REGISTER_CLOSED = "REGISTER_CLOSED"


class LoginResult(str, Enum):
    SUCCESS = "SUCCESS"
    INVALID = "INVALID"
    LOCKED = "LOCKED"
    TWO_FACTOR_REQUIRED = "2FA_REQUIRED"
    INVALID_TWO_FACTOR = "INVALID_2FA"


class RegistrationResult(str, Enum):
    SUCCESS = "SUCCESS"
    INVALID_CODE = "INVALID_CODE"
    USERNAME_EXISTS = "USERNAME_EXISTS"
    WEAK_PASSWORD = "WEAK_PASSWORD"


class RecoveryResult(str, Enum):
    SUCCESS = "SUCCESS"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    INVALID = "INVALID"
    WEAK_PASSWORD = "WEAK_PASSWORD"


class SyncResult(str, Enum):
    PUSHED = "PUSHED"
    PULLED = "PULLED"
    EMPTY = "EMPTY"
    SKIPPED = "SKIPPED"
    FAILED = "FAILED"
    BUSY = "BUSY"
    DISABLED = "DISABLED"


__all__ = [
    "STORAGE_PREFIX",
    "SYSTEM_USER_ID",
    "SYSTEM_USER_NAME",
    "DEFAULT_ACTIVITY_LOG_LIMIT",
    "MAX_ACTIVITY_LOG_LIMIT",
    "MAX_FAILED_ATTEMPTS",
    "LOCKOUT_DURATION",
    "SYNC_INTERVAL",
    "SYNC_TIMEOUT",
    "SKEW_GUARD",
    "IDLE_CHECK_INTERVAL",
    "TOAST_DURATION",
    "MONEY_TOLERANCE",
    "StorageKey",
    "DATASET_KEYS",
    "UserRole",
    "PaymentMethod",
    "REGISTER_METHODS",
    "PaymentStatus",
    "TransactionStatus",
    "MovementType",
    "BudgetCategory",
    "OrderStatus",
    "ORDER_STATUS_RANK",
    "TERMINAL_ORDER_STATUSES",
    "OrderPriority",
    "PurchaseStatus",
    "StockDirection",
    "ActivityAction",
    "CreditLimitPolicy",
    "RecoveryMethod",
    "Severity",
    "StoreResult",
    "LoginResult",
    "RegistrationResult",
    "RecoveryResult",
    "SyncResult",
]
