"""Entity shapes of the ledger and the default category set.

Every entity is owned by exactly one user (``user_id``) and lives in its own remote
collection. Records cross the remote boundary as plain dicts: :meth:`from_record`
tolerates the loosely typed cell values a hosted table returns, :meth:`to_record`
produces the row that is written back.

Categories are referenced by *name* from transactions, budgets and bills. Renaming a
category does not rewrite those references.
"""
import dataclasses
import enum
import logging
from typing import Any, Dict, List, Optional, Tuple, Type

from ..status import status


class TransactionType(enum.StrEnum):
    Income = 'income'
    Expense = 'expense'


class BudgetPeriod(enum.StrEnum):
    Weekly = 'weekly'
    Monthly = 'monthly'
    Yearly = 'yearly'


class BillFrequency(enum.StrEnum):
    Weekly = 'weekly'
    Monthly = 'monthly'
    Yearly = 'yearly'
    Custom = 'custom'


class BillStatus(enum.StrEnum):
    Overdue = 'overdue'
    DueSoon = 'due-soon'
    Upcoming = 'upcoming'


MAX_REMIND_DAYS: int = 30
DEFAULT_CUSTOM_DAYS: int = 30


def _to_str(value: Any) -> str:
    if value is None:
        return ''
    return str(value)


def _to_optional_str(value: Any) -> Optional[str]:
    if value is None or value == '':
        return None
    return str(value)


def _to_float(value: Any) -> float:
    if value is None or value == '':
        return 0.0
    if isinstance(value, bool):
        return float(value)
    try:
        return float(value)
    except (TypeError, ValueError):
        logging.debug(f'Failed to parse "{value}" as float. Using 0.0.')
        return 0.0


def _to_optional_int(value: Any) -> Optional[int]:
    if value is None or value == '':
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        logging.debug(f'Failed to parse "{value}" as integer. Using None.')
        return None


def _to_int(value: Any, default: int = 0) -> int:
    v = _to_optional_int(value)
    return default if v is None else v


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ('true', '1', 'yes')
    return bool(value)


def _enum_value(enum_cls: Type[enum.StrEnum], value: Any, default: enum.StrEnum) -> enum.StrEnum:
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        logging.debug(f'Unknown {enum_cls.__name__} "{value}". Using "{default}".')
        return default


class Record:
    """Mixin shared by all entities for conversion to and from remote rows."""

    @classmethod
    def field_names(cls) -> List[str]:
        return [f.name for f in dataclasses.fields(cls)]

    def to_record(self) -> Dict[str, Any]:
        """Return the entity as a plain dict suitable for the remote table store."""
        record = dataclasses.asdict(self)
        for k, v in record.items():
            if isinstance(v, enum.Enum):
                record[k] = v.value
        return record

    def merged(self, fields: Dict[str, Any]):
        """Return a copy of the entity with ``fields`` applied.

        Raises:
            ValueError: If ``fields`` names an attribute the entity does not have, or tries to
                change the ``id``.
        """
        unknown = set(fields) - set(self.field_names())
        if unknown:
            raise ValueError(f'Unknown {type(self).__name__} field(s): {sorted(unknown)}')
        if 'id' in fields and fields['id'] != getattr(self, 'id'):
            raise ValueError('The id of a record cannot be changed.')
        return type(self).from_record({**self.to_record(), **fields})


@dataclasses.dataclass
class Category(Record):
    id: str
    user_id: str
    name: str
    icon: str
    color: str
    type: TransactionType

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> 'Category':
        return cls(
            id=_to_str(record.get('id')),
            user_id=_to_str(record.get('user_id')),
            name=_to_str(record.get('name')),
            icon=_to_str(record.get('icon')),
            color=_to_str(record.get('color')),
            type=_enum_value(TransactionType, record.get('type'), TransactionType.Expense),
        )


@dataclasses.dataclass
class Transaction(Record):
    id: str
    user_id: str
    date: str
    amount: float
    type: TransactionType
    category: str
    description: str
    created_at: str
    receipt_url: Optional[str] = None

    @property
    def signed_amount(self) -> float:
        """The amount with the sign implied by the transaction type."""
        return self.amount if self.type == TransactionType.Income else -self.amount

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> 'Transaction':
        return cls(
            id=_to_str(record.get('id')),
            user_id=_to_str(record.get('user_id')),
            date=_to_str(record.get('date'))[:10],
            amount=_to_float(record.get('amount')),
            type=_enum_value(TransactionType, record.get('type'), TransactionType.Expense),
            category=_to_str(record.get('category')),
            description=_to_str(record.get('description')),
            created_at=_to_str(record.get('created_at')),
            receipt_url=_to_optional_str(record.get('receipt_url')),
        )


@dataclasses.dataclass
class Budget(Record):
    id: str
    user_id: str
    category: str
    limit_amount: float
    period: BudgetPeriod
    created_at: str

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> 'Budget':
        return cls(
            id=_to_str(record.get('id')),
            user_id=_to_str(record.get('user_id')),
            category=_to_str(record.get('category')),
            limit_amount=_to_float(record.get('limit_amount')),
            period=_enum_value(BudgetPeriod, record.get('period'), BudgetPeriod.Monthly),
            created_at=_to_str(record.get('created_at')),
        )


@dataclasses.dataclass
class Bill(Record):
    """A recurring obligation.

    ``due_date`` keeps the originally configured date, ``next_due`` is the rolling date
    advanced by :meth:`FinTrack.core.store.LedgerStore.mark_bill_paid`.
    """
    id: str
    user_id: str
    name: str
    amount: float
    category: str
    frequency: BillFrequency
    due_date: str
    next_due: str
    created_at: str
    is_active: bool = True
    remind_days_before: int = 3
    auto_record: bool = True
    custom_days: Optional[int] = None

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> 'Bill':
        return cls(
            id=_to_str(record.get('id')),
            user_id=_to_str(record.get('user_id')),
            name=_to_str(record.get('name')),
            amount=_to_float(record.get('amount')),
            category=_to_str(record.get('category')),
            frequency=_enum_value(BillFrequency, record.get('frequency'), BillFrequency.Monthly),
            due_date=_to_str(record.get('due_date'))[:10],
            next_due=_to_str(record.get('next_due'))[:10],
            created_at=_to_str(record.get('created_at')),
            is_active=_to_bool(record.get('is_active', True)),
            remind_days_before=_to_int(record.get('remind_days_before'), 3),
            auto_record=_to_bool(record.get('auto_record', True)),
            custom_days=_to_optional_int(record.get('custom_days')),
        )


@dataclasses.dataclass
class SavingsGoal(Record):
    id: str
    user_id: str
    name: str
    target_amount: float
    icon: str
    color: str
    created_at: str
    saved_amount: float = 0.0
    is_completed: bool = False
    deadline: Optional[str] = None

    @property
    def progress(self) -> float:
        """Saved percentage of the target, capped at 100."""
        if self.target_amount <= 0:
            return 0.0
        return min(self.saved_amount / self.target_amount * 100.0, 100.0)

    @property
    def remainder(self) -> float:
        return max(self.target_amount - self.saved_amount, 0.0)

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> 'SavingsGoal':
        return cls(
            id=_to_str(record.get('id')),
            user_id=_to_str(record.get('user_id')),
            name=_to_str(record.get('name')),
            target_amount=_to_float(record.get('target_amount')),
            icon=_to_str(record.get('icon')),
            color=_to_str(record.get('color')),
            created_at=_to_str(record.get('created_at')),
            saved_amount=_to_float(record.get('saved_amount')),
            is_completed=_to_bool(record.get('is_completed', False)),
            deadline=_to_optional_str(record.get('deadline')),
        )


class Collection(enum.StrEnum):
    """Remote collections, one per entity type."""
    Transactions = 'transactions'
    Budgets = 'budgets'
    Categories = 'categories'
    Bills = 'bills'
    SavingsGoals = 'savings_goals'

    @property
    def entity(self) -> Type[Record]:
        return ENTITY_MAP[self]

    @property
    def order_by(self) -> Optional[Tuple[str, bool]]:
        """The ``(field, descending)`` ordering used when loading the collection."""
        return ORDER_MAP.get(self)


ENTITY_MAP: Dict[Collection, Type[Record]] = {
    Collection.Transactions: Transaction,
    Collection.Budgets: Budget,
    Collection.Categories: Category,
    Collection.Bills: Bill,
    Collection.SavingsGoals: SavingsGoal,
}

ORDER_MAP: Dict[Collection, Tuple[str, bool]] = {
    Collection.Transactions: ('date', True),
    Collection.Bills: ('next_due', False),
    Collection.SavingsGoals: ('created_at', True),
}

# (name, icon, color, type)
DEFAULT_CATEGORIES: List[Tuple[str, str, str, TransactionType]] = [
    ('Makanan', 'utensils', '#FF6B6B', TransactionType.Expense),
    ('Transport', 'car', '#4ECDC4', TransactionType.Expense),
    ('Belanja', 'shopping-bag', '#45B7D1', TransactionType.Expense),
    ('Hiburan', 'gamepad-2', '#96CEB4', TransactionType.Expense),
    ('Tagihan', 'receipt', '#FFEAA7', TransactionType.Expense),
    ('Kesehatan', 'heart-pulse', '#DDA0DD', TransactionType.Expense),
    ('Pendidikan', 'graduation-cap', '#74B9FF', TransactionType.Expense),
    ('Lainnya', 'ellipsis', '#636E72', TransactionType.Expense),
    ('Gaji', 'banknote', '#00B894', TransactionType.Income),
    ('Freelance', 'laptop', '#6C5CE7', TransactionType.Income),
    ('Investasi', 'trending-up', '#FDCB6E', TransactionType.Income),
    ('Lain-lain', 'plus-circle', '#A29BFE', TransactionType.Income),
]


def _require(fields: Dict[str, Any], *names: str) -> None:
    missing = [n for n in names if fields.get(n) in (None, '')]
    if missing:
        raise status.ValidationFailedException(f'Missing required field(s): {", ".join(missing)}.')


def _require_amount(fields: Dict[str, Any], name: str, positive: bool = False) -> None:
    value = fields.get(name)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise status.ValidationFailedException(f'"{name}" must be a number.')
    if positive and value <= 0:
        raise status.ValidationFailedException(f'"{name}" must be greater than zero.')
    if value < 0:
        raise status.ValidationFailedException(f'"{name}" must not be negative.')


def validate_transaction(fields: Dict[str, Any]) -> None:
    """Reject transaction input before it reaches the ledger store.

    Raises:
        status.ValidationFailedException: On missing or invalid fields.
    """
    _require(fields, 'date', 'type', 'category')
    _require_amount(fields, 'amount')
    if fields['type'] not in list(TransactionType):
        raise status.ValidationFailedException(f'Unknown transaction type "{fields["type"]}".')


def validate_budget(fields: Dict[str, Any]) -> None:
    """Reject budget input before it reaches the ledger store."""
    _require(fields, 'category', 'period')
    _require_amount(fields, 'limit_amount')
    if fields['period'] not in list(BudgetPeriod):
        raise status.ValidationFailedException(f'Unknown budget period "{fields["period"]}".')


def validate_bill(fields: Dict[str, Any]) -> None:
    """Reject bill input before it reaches the ledger store."""
    _require(fields, 'name', 'category', 'frequency', 'next_due')
    _require_amount(fields, 'amount')
    if fields['frequency'] not in list(BillFrequency):
        raise status.ValidationFailedException(f'Unknown bill frequency "{fields["frequency"]}".')
    if fields['frequency'] == BillFrequency.Custom:
        days = fields.get('custom_days')
        if isinstance(days, bool) or not isinstance(days, int) or days <= 0:
            raise status.ValidationFailedException('Custom bills need a positive number of days.')
    remind = fields.get('remind_days_before', 0)
    if isinstance(remind, bool) or not isinstance(remind, int) or not 0 <= remind <= MAX_REMIND_DAYS:
        raise status.ValidationFailedException(f'Reminders must be between 0 and {MAX_REMIND_DAYS} days.')


def validate_goal(fields: Dict[str, Any]) -> None:
    """Reject savings goal input before it reaches the ledger store."""
    _require(fields, 'name')
    _require_amount(fields, 'target_amount', positive=True)


def validate_deposit(amount: Any) -> None:
    """Reject non-positive savings deposits."""
    _require_amount({'amount': amount}, 'amount', positive=True)
