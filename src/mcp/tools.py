"""
Splitwise tools exposed over MCP.

Each tool is a plain function decorated with @tool. The function's docstring
becomes the tool description and its pydantic argument model becomes the
tool's inputSchema, the same way FastMCP derives schemas from signatures.
A handler receives the shared SplitwiseClient and already-validated arguments
and returns records; ToolDescriptor.call renders the result as one JSON text
block.

build_registry() assembles a registry from TOOL_HANDLERS, whose order is the
order tools/list reports.
"""

import inspect
import json
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Literal, Optional, Tuple, Type

from pydantic import BaseModel, ConfigDict, Field, model_validator

from mcp import types

from ..splitwise.client import SplitwiseClient
from ..splitwise.models import (
    DecimalString,
    Expense,
    ExpenseShare,
    GroupMemberInput,
    SplitwiseModel,
)

# Page size used when list_expenses has to filter locally
EXPENSE_BATCH_SIZE = 100

# Every field list_expenses / get_expense can project, in display order
EXPENSE_FIELDS = (
    "id",
    "description",
    "cost",
    "currency_code",
    "date",
    "category",
    "payment",
    "group_id",
    "friendship_id",
    "details",
    "users",
    "repayments",
    "created_at",
    "created_by",
    "updated_at",
    "updated_by",
    "deleted_at",
    "deleted_by",
    "receipt",
    "comments_count",
    "transaction_confirmed",
    "transaction_id",
    "transaction_method",
    "transaction_status",
    "repeats",
    "repeat_interval",
    "next_repeat",
    "email_reminder",
    "email_reminder_in_advance",
    "expense_bundle_id",
)

Handler = Callable[[SplitwiseClient, BaseModel], Any]


class ToolNotFoundError(LookupError):
    """Raised when a tool name is not registered."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown tool: {name}")


class ToolArguments(BaseModel):
    """Base for tool argument models. Unknown arguments are ignored."""

    model_config = ConfigDict(extra="ignore")


@dataclass(frozen=True)
class ToolDescriptor:
    """A registered tool: name, description, argument model and handler."""
    name: str
    description: str
    arguments: Type[ToolArguments]
    handler: Handler

    @property
    def input_schema(self) -> Dict[str, Any]:
        return self.arguments.model_json_schema()

    def to_mcp_tool(self) -> types.Tool:
        return types.Tool(
            name=self.name,
            description=self.description,
            inputSchema=self.input_schema,
        )

    def parse_arguments(self, arguments: Optional[Dict[str, Any]]) -> ToolArguments:
        """
        Validate and coerce raw arguments.

        Raises:
            pydantic.ValidationError: If a required argument is missing or malformed
        """
        return self.arguments.model_validate(arguments or {})

    def call(self, client: SplitwiseClient, arguments: ToolArguments) -> str:
        """Run the handler and render its result as a JSON text block."""
        return render(self.handler(client, arguments))


class ToolRegistry:
    """
    Immutable, ordered collection of tools.

    The registry is built once at startup and shared read-only between
    requests and transports.
    """

    def __init__(self, tools: Iterable[ToolDescriptor]):
        self._tools: Tuple[ToolDescriptor, ...] = tuple(tools)
        self._by_name: Dict[str, ToolDescriptor] = {}
        for descriptor in self._tools:
            if descriptor.name in self._by_name:
                raise ValueError(f"Duplicate tool name: {descriptor.name}")
            self._by_name[descriptor.name] = descriptor

    def list_tools(self) -> Tuple[ToolDescriptor, ...]:
        return self._tools

    def get(self, name: str) -> ToolDescriptor:
        try:
            return self._by_name[name]
        except KeyError:
            raise ToolNotFoundError(name) from None

    def names(self) -> List[str]:
        return [descriptor.name for descriptor in self._tools]

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def __len__(self) -> int:
        return len(self._tools)


def to_jsonable(value: Any) -> Any:
    """Convert records (and containers of records) into plain JSON data."""
    if isinstance(value, SplitwiseModel):
        return value.to_json()
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True, exclude_unset=True)
    if isinstance(value, (list, tuple)):
        return [to_jsonable(item) for item in value]
    if isinstance(value, dict):
        return {key: to_jsonable(item) for key, item in value.items()}
    return value


def render(value: Any) -> str:
    return json.dumps(to_jsonable(value), ensure_ascii=False)


def tool(arguments: Type[ToolArguments] = ToolArguments, name: Optional[str] = None):
    """
    Describe a handler as a tool. The docstring is the tool description.

    The descriptor is attached to the function as `descriptor`; nothing is
    registered until build_registry() lists the handler.
    """
    def decorator(func: Handler) -> Handler:
        func.descriptor = ToolDescriptor(
            name=name or func.__name__,
            description=inspect.cleandoc(func.__doc__ or ""),
            arguments=arguments,
            handler=func,
        )
        return func
    return decorator


# -------- ARGUMENT MODELS --------

class UserArgs(ToolArguments):
    user_id: int = Field(description="The ID of the user to retrieve")


class GroupArgs(ToolArguments):
    group_id: int = Field(description="The ID of the group to retrieve")


class CreateGroupArgs(ToolArguments):
    name: str = Field(min_length=1, description="Name of the group")
    group_type: Optional[Literal["home", "trip", "couple", "other"]] = Field(
        default=None, description="Type of group (default: other)"
    )
    simplify_by_default: Optional[bool] = Field(
        default=None, description="Whether to simplify debts by default"
    )
    members: List[GroupMemberInput] = Field(
        default_factory=list,
        description=(
            "Members to add besides the current user. Give user_id for existing "
            "users, or email with first_name/last_name to invite someone"
        ),
    )

    @model_validator(mode="after")
    def check_members(self):
        for index, member in enumerate(self.members):
            if member.user_id is None and not member.email:
                raise ValueError(f"members[{index}] needs a user_id or an email")
        return self


class ListExpensesArgs(ToolArguments):
    group_id: Optional[int] = Field(default=None, description="Filter by group ID")
    friend_id: Optional[int] = Field(default=None, description="Filter by friend ID")
    dated_after: Optional[str] = Field(
        default=None, description="Only expenses dated after this date (YYYY-MM-DD)"
    )
    dated_before: Optional[str] = Field(
        default=None, description="Only expenses dated before this date (YYYY-MM-DD)"
    )
    limit: Optional[int] = Field(
        default=None, ge=0, description="Maximum number of expenses to return (0: no limit)"
    )
    offset: Optional[int] = Field(default=None, ge=0, description="Number of expenses to skip")
    fields: Optional[List[str]] = Field(
        default=None,
        description=(
            "Fields to include in each expense; all fields when omitted. Common: id, "
            "description, cost, currency_code, date, category, payment, group_id. "
            "Available: " + ", ".join(EXPENSE_FIELDS)
        ),
    )
    search_text: Optional[str] = Field(
        default=None, description="Text to search for (case-insensitive substring match)"
    )
    search_fields: Optional[List[Literal["description", "details", "category"]]] = Field(
        default=None,
        description="Fields to search in; all three when omitted and search_text is given",
    )
    category_ids: Optional[List[int]] = Field(
        default=None, description="Only expenses in these category IDs"
    )
    include_deleted: Literal["exclude", "include", "only"] = Field(
        default="exclude",
        description="'exclude' deleted expenses (default), 'include' them, or return 'only' deleted ones",
    )


class ExpenseArgs(ToolArguments):
    expense_id: int = Field(description="The ID of the expense")


class GetExpenseArgs(ExpenseArgs):
    fields: Optional[List[str]] = Field(
        default=None,
        description="Fields to include; all fields when omitted. Available: " + ", ".join(EXPENSE_FIELDS),
    )


class CreateExpenseArgs(ToolArguments):
    cost: DecimalString = Field(description="Total cost of the expense (e.g., '25.00')")
    description: str = Field(min_length=1, description="Description of the expense")
    currency_code: Optional[str] = Field(default=None, description="Currency code (e.g., 'USD', 'EUR')")
    group_id: Optional[int] = Field(default=None, description="Group ID to add the expense to")
    split_equally: Optional[bool] = Field(
        default=None,
        description=(
            "Split equally among all group members (requires group_id). Default: true. "
            "Ignored when split_by_shares is given."
        ),
    )
    split_by_shares: Optional[List[ExpenseShare]] = Field(
        default=None,
        description=(
            "Custom split: each entry names a user (user_id or email) with the amount "
            "they paid and the amount they owe"
        ),
    )
    date: Optional[str] = Field(default=None, description="Date of the expense (YYYY-MM-DD)")
    category_id: Optional[int] = Field(
        default=None,
        description="Category or subcategory ID from get_categories; prefer the most specific subcategory",
    )
    details: Optional[str] = Field(default=None, description="Additional notes about the expense")

    @model_validator(mode="after")
    def check_split_mode(self):
        if self.split_by_shares is not None:
            if not self.split_by_shares:
                raise ValueError("split_by_shares must not be empty")
            return self
        if self.split_equally is False:
            raise ValueError("split_by_shares is required when split_equally is false")
        if self.group_id is None:
            raise ValueError(
                "Provide group_id for an equal split, or split_by_shares for a custom split"
            )
        return self

    @property
    def is_equal_split(self) -> bool:
        return self.split_by_shares is None


class UpdateExpenseArgs(ExpenseArgs):
    cost: Optional[DecimalString] = Field(default=None, description="New total cost")
    description: Optional[str] = Field(default=None, description="New description")
    currency_code: Optional[str] = Field(default=None, description="New currency code")
    category_id: Optional[int] = Field(
        default=None, description="New category or subcategory ID from get_categories"
    )
    date: Optional[str] = Field(default=None, description="New date (YYYY-MM-DD)")
    details: Optional[str] = Field(default=None, description="New notes")
    split_equally: Optional[bool] = Field(
        default=None, description="Re-split equally among the group members"
    )
    split_by_shares: Optional[List[ExpenseShare]] = Field(
        default=None, description="Replace the split with these paid/owed shares"
    )

    @model_validator(mode="after")
    def check_has_changes(self):
        if self.split_by_shares is not None and not self.split_by_shares:
            raise ValueError("split_by_shares must not be empty")
        changes = self.model_dump(exclude={"expense_id"}, exclude_none=True)
        if not changes:
            raise ValueError(
                "No fields to update. Provide at least one of: cost, description, "
                "currency_code, category_id, date, details, split_equally, split_by_shares"
            )
        return self


class FriendArgs(ToolArguments):
    friend_id: int = Field(description="The user ID of the friend")


class AddFriendArgs(ToolArguments):
    email: str = Field(
        pattern=r"^[^@\s]+@[^@\s]+$",
        description="Email address of the friend to add",
    )


# -------- EXPENSE HELPERS --------

def _passes_deleted_filter(expense: Expense, include_deleted: str) -> bool:
    if include_deleted == "include":
        return True
    if include_deleted == "only":
        return expense.is_deleted
    return not expense.is_deleted


def _matches_search(expense: Expense, needle: str, search_fields: Iterable[str]) -> bool:
    for field in search_fields:
        if field == "description":
            haystack = expense.description
        elif field == "details":
            haystack = expense.details
        else:
            haystack = expense.category.name if expense.category else None
        if haystack and needle in haystack.lower():
            return True
    return False


def _matches(expense: Expense, args: ListExpensesArgs) -> bool:
    if not _passes_deleted_filter(expense, args.include_deleted):
        return False
    if args.category_ids is not None:
        if expense.category is None or expense.category.id not in args.category_ids:
            return False
    if args.search_text is not None:
        search_fields = args.search_fields or ("description", "details", "category")
        return _matches_search(expense, args.search_text.lower(), search_fields)
    return True


def project_expense(expense: Expense, fields: Optional[List[str]]) -> Dict[str, Any]:
    """Reduce an expense to the requested fields; the full record when fields is None."""
    if fields is None:
        return expense.to_json()

    data = expense.model_dump(mode="json", by_alias=True)
    projected: Dict[str, Any] = {}
    for field in fields:
        if field not in EXPENSE_FIELDS:
            continue
        if field == "category":
            category = expense.category
            projected["category"] = (
                {"id": category.id, "name": category.name} if category else None
            )
        elif field in ("deleted_at", "deleted_by"):
            if data.get(field) is not None:
                projected[field] = data[field]
        else:
            projected[field] = data.get(field)
    return projected


def _fetch_filtered(client: SplitwiseClient, args: ListExpensesArgs) -> List[Expense]:
    """Page through expenses until enough local matches are found or pages run out."""
    target = args.limit or None
    offset = args.offset or 0
    matches: List[Expense] = []

    while target is None or len(matches) < target:
        batch = client.get_expenses(
            group_id=args.group_id,
            friend_id=args.friend_id,
            dated_after=args.dated_after,
            dated_before=args.dated_before,
            limit=EXPENSE_BATCH_SIZE,
            offset=offset,
        )
        matches.extend(expense for expense in batch if _matches(expense, args))
        if len(batch) < EXPENSE_BATCH_SIZE:
            break
        offset += EXPENSE_BATCH_SIZE

    return matches[:target] if target is not None else matches


# -------- USER TOOLS --------

@tool()
def get_current_user(client: SplitwiseClient, args: ToolArguments):
    """Get information about the currently authenticated user"""
    return client.get_current_user()


@tool(UserArgs)
def get_user(client: SplitwiseClient, args: UserArgs):
    """Get information about a specific user by ID"""
    return client.get_user(args.user_id)


# -------- GROUP TOOLS --------

@tool()
def list_groups(client: SplitwiseClient, args: ToolArguments):
    """List all groups the current user belongs to, with members and balances"""
    return client.get_groups()


@tool(GroupArgs)
def get_group(client: SplitwiseClient, args: GroupArgs):
    """Get detailed information about a specific group"""
    return client.get_group(args.group_id)


@tool(CreateGroupArgs)
def create_group(client: SplitwiseClient, args: CreateGroupArgs):
    """Create a new group. The current user is always a member."""
    return client.create_group(
        name=args.name,
        group_type=args.group_type,
        simplify_by_default=args.simplify_by_default,
        members=args.members,
    )


# -------- EXPENSE TOOLS --------

@tool(ListExpensesArgs)
def list_expenses(client: SplitwiseClient, args: ListExpensesArgs):
    """
    List expenses with optional filters.

    Deleted expenses are excluded unless include_deleted says otherwise.
    search_text and category_ids are applied locally while paging through
    results, so limit counts matching expenses.
    """
    filtering_locally = args.search_text is not None or args.category_ids is not None
    if filtering_locally or (args.include_deleted != "include" and args.limit):
        expenses = _fetch_filtered(client, args)
    else:
        expenses = client.get_expenses(
            group_id=args.group_id,
            friend_id=args.friend_id,
            dated_after=args.dated_after,
            dated_before=args.dated_before,
            limit=args.limit,
            offset=args.offset,
        )
        expenses = [e for e in expenses if _passes_deleted_filter(e, args.include_deleted)]

    return [project_expense(expense, args.fields) for expense in expenses]


@tool(GetExpenseArgs)
def get_expense(client: SplitwiseClient, args: GetExpenseArgs):
    """Get detailed information about a specific expense"""
    return project_expense(client.get_expense(args.expense_id), args.fields)


@tool(CreateExpenseArgs)
def create_expense(client: SplitwiseClient, args: CreateExpenseArgs):
    """
    Create a new expense.

    Either give group_id to split equally among the group, or split_by_shares
    for a custom split. Call get_categories first to pick the most appropriate
    category_id; categories determine the icon shown in Splitwise.
    """
    return client.create_expense(
        cost=args.cost,
        description=args.description,
        group_id=args.group_id,
        split_equally=args.is_equal_split,
        shares=args.split_by_shares,
        currency_code=args.currency_code,
        category_id=args.category_id,
        date=args.date,
        details=args.details,
    )


@tool(UpdateExpenseArgs)
def update_expense(client: SplitwiseClient, args: UpdateExpenseArgs):
    """Update an existing expense. Only the given fields are changed."""
    return client.update_expense(
        args.expense_id,
        cost=args.cost,
        description=args.description,
        currency_code=args.currency_code,
        category_id=args.category_id,
        date=args.date,
        details=args.details,
        split_equally=args.split_equally,
        shares=args.split_by_shares,
    )


@tool(ExpenseArgs)
def delete_expense(client: SplitwiseClient, args: ExpenseArgs):
    """Delete an expense"""
    return {"success": client.delete_expense(args.expense_id)}


# -------- FRIEND TOOLS --------

@tool()
def list_friends(client: SplitwiseClient, args: ToolArguments):
    """List all friends and their balances"""
    return client.get_friends()


@tool(FriendArgs)
def get_friend(client: SplitwiseClient, args: FriendArgs):
    """Get detailed information about a specific friend"""
    return client.get_friend(args.friend_id)


@tool(AddFriendArgs)
def add_friend(client: SplitwiseClient, args: AddFriendArgs):
    """Add a new friend by email"""
    return client.create_friend(args.email)


# -------- UTILITY TOOLS --------

@tool()
def get_currencies(client: SplitwiseClient, args: ToolArguments):
    """Get the list of currencies supported by Splitwise"""
    return client.get_currencies()


@tool()
def get_categories(client: SplitwiseClient, args: ToolArguments):
    """
    Get the expense categories with their IDs.

    Each category has an icon in Splitwise (e.g., 25=Food, 31=Transportation).
    Use the most specific subcategory ID when creating expenses.
    """
    return client.get_categories()


# Published tools, in tools/list order
TOOL_HANDLERS: Tuple[Handler, ...] = (
    get_current_user,
    get_user,
    list_groups,
    get_group,
    create_group,
    list_expenses,
    get_expense,
    create_expense,
    update_expense,
    delete_expense,
    list_friends,
    get_friend,
    add_friend,
    get_currencies,
    get_categories,
)


def build_registry(handlers: Iterable[Handler] = TOOL_HANDLERS) -> ToolRegistry:
    """Build a registry from @tool handlers, keeping their order."""
    return ToolRegistry(handler.descriptor for handler in handlers)
