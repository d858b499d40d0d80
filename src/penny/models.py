from dataclasses import dataclass, field
from decimal import Decimal

TRANSACTION_TYPES = ("income", "expense", "transfer")
TRANSACTION_STATUSES = ("pending", "completed")
CATEGORY_TYPES = ("income", "expense")
RECURRENCE_TYPES = ("none", "daily", "weekly", "monthly", "yearly")


@dataclass
class Account:
    id: int | None
    name: str
    initial_balance: Decimal
    current_balance: Decimal
    description: str | None = None
    color: str = "#6b7280"
    icon: str = "wallet"
    exclude_from_total: bool = False  # reserve account, not part of "available"
    is_archived: bool = False
    archived_at: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class Category:
    id: int | None
    name: str
    category_type: str  # income or expense
    color: str = "#6b7280"
    icon: str = "tag"
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class Transaction:
    id: int | None
    account_id: int  # for transfers, same as from_account_id
    category_id: int | None
    type: str  # income, expense, transfer
    status: str  # pending, completed
    amount: Decimal  # always positive, sign comes from type
    description: str
    date: str  # ISO 8601
    base_description: str | None = None
    is_recurring: bool = False
    recurrence_type: str = "none"
    recurrence_occurrences: int | None = None
    is_installment: bool = False
    generated_dates: list[str] = field(default_factory=list)
    from_account_id: int | None = None
    to_account_id: int | None = None
    tags: list[str] = field(default_factory=list)
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class Budget:
    id: int | None
    category_id: int
    amount: Decimal
    month: str  # YYYY-MM
    created_at: str | None = None
    updated_at: str | None = None
