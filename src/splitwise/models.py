"""
Pass-through records mirroring Splitwise JSON shapes.

Monetary amounts stay decimal strings and dates stay ISO strings, exactly as
the API returns them. Unknown keys are kept (extra="allow") and records are
rendered with exclude_unset=True, so what the service sent is what the agent
sees.
"""

from decimal import Decimal, InvalidOperation
from typing import Annotated, Any, List, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field


class SplitwiseModel(BaseModel):
    """Base for all records; unknown keys are preserved."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    def to_json(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_unset=True)


class Picture(SplitwiseModel):
    small: Optional[str] = None
    medium: Optional[str] = None
    large: Optional[str] = None


class Balance(SplitwiseModel):
    currency_code: str
    amount: str


class User(SplitwiseModel):
    id: int
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    registration_status: Optional[str] = None
    picture: Optional[Picture] = None
    default_currency: Optional[str] = None
    locale: Optional[str] = None


class UserReference(SplitwiseModel):
    id: int
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    picture: Optional[Picture] = None


class GroupMember(SplitwiseModel):
    id: int
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    registration_status: Optional[str] = None
    picture: Optional[Picture] = None
    balance: List[Balance] = []


class Debt(SplitwiseModel):
    from_: Optional[int] = Field(default=None, alias="from")
    to: Optional[int] = None
    amount: Optional[str] = None
    currency_code: Optional[str] = None


class Group(SplitwiseModel):
    id: int
    name: str
    group_type: Optional[str] = None
    updated_at: Optional[str] = None
    simplify_by_default: Optional[bool] = None
    members: List[GroupMember] = []
    original_debts: List[Debt] = []
    simplified_debts: List[Debt] = []
    whiteboard: Optional[Any] = None
    group_reminders: Optional[Any] = None


class Subcategory(SplitwiseModel):
    id: int
    name: str
    icon: Optional[str] = None


class Category(SplitwiseModel):
    id: int
    name: str
    icon: Optional[str] = None
    subcategories: Optional[List[Subcategory]] = None


class Receipt(SplitwiseModel):
    original: Optional[str] = None
    large: Optional[str] = None


class Repayment(SplitwiseModel):
    from_: Optional[int] = Field(default=None, alias="from")
    to: Optional[int] = None
    amount: Optional[str] = None


class ExpenseUser(SplitwiseModel):
    user_id: int
    user: Optional[UserReference] = None
    paid_share: Optional[str] = None
    owed_share: Optional[str] = None
    net_balance: Optional[str] = None


class Expense(SplitwiseModel):
    id: int
    group_id: Optional[int] = None
    friendship_id: Optional[int] = None
    expense_bundle_id: Optional[int] = None
    description: str = ""
    repeats: Optional[bool] = None
    repeat_interval: Optional[str] = None
    email_reminder: Optional[bool] = None
    email_reminder_in_advance: Optional[int] = None
    next_repeat: Optional[str] = None
    details: Optional[str] = None
    comments_count: Optional[int] = None
    payment: Optional[bool] = None
    creation_method: Optional[str] = None
    transaction_method: Optional[str] = None
    transaction_confirmed: Optional[bool] = None
    transaction_id: Optional[str] = None
    transaction_status: Optional[str] = None
    cost: Optional[str] = None
    currency_code: Optional[str] = None
    repayments: List[Repayment] = []
    date: Optional[str] = None
    created_at: Optional[str] = None
    created_by: Optional[UserReference] = None
    updated_at: Optional[str] = None
    updated_by: Optional[UserReference] = None
    deleted_at: Optional[str] = None
    deleted_by: Optional[UserReference] = None
    category: Optional[Category] = None
    receipt: Optional[Receipt] = None
    users: List[ExpenseUser] = []

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


class FriendGroup(SplitwiseModel):
    group_id: int
    balance: List[Balance] = []


class Friend(SplitwiseModel):
    id: int
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    registration_status: Optional[str] = None
    picture: Optional[Picture] = None
    balance: List[Balance] = []
    groups: List[FriendGroup] = []
    updated_at: Optional[str] = None


class Currency(SplitwiseModel):
    currency_code: str
    unit: Optional[str] = None


# -------- Request inputs --------

CENTS = Decimal("0.01")


def _decimal_string(value: Any) -> Any:
    """Accept numbers for money amounts but keep the string form Splitwise expects."""
    if isinstance(value, bool):
        raise ValueError("must be a decimal amount")
    if isinstance(value, float):
        # Floats carry binary noise (0.1 + 0.2); amounts are sent with cents
        try:
            value = Decimal(str(value)).quantize(CENTS)
        except InvalidOperation:
            raise ValueError(f"{value!r} is not a decimal amount")
    if isinstance(value, (int, Decimal)):
        value = format(value, "f")
    if isinstance(value, str):
        try:
            parsed = Decimal(value.strip())
        except InvalidOperation:
            raise ValueError(f"{value!r} is not a decimal amount")
        if not parsed.is_finite():
            raise ValueError(f"{value!r} is not a decimal amount")
        return value.strip()
    return value


DecimalString = Annotated[str, BeforeValidator(_decimal_string)]


class ExpenseShare(BaseModel):
    """One participant's paid/owed amounts in a custom split."""
    user_id: Optional[int] = None
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    paid_share: DecimalString
    owed_share: DecimalString


class GroupMemberInput(BaseModel):
    """A member to add when creating a group (existing user id or invitee details)."""
    user_id: Optional[int] = None
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
