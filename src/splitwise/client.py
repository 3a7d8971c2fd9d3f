"""
HTTP client for the Splitwise REST API (v3.0).

Each method maps to one Splitwise endpoint, issues exactly one request with the
static API key as a bearer credential, and returns typed records from
src.splitwise.models. Failures are raised as SplitwiseError subclasses:

- 401/403 -> Unauthorized
- 404 -> NotFound
- 429 -> RateLimited
- other non-2xx, or an "errors" payload on writes -> SplitwiseAPIError
- connection/timeout problems -> NetworkFailure
- unexpected 2xx bodies -> MalformedResponse

There is no retrying: rate limits are left to the caller.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, TypeAdapter, ValidationError

from ..config import DEFAULT_BASE_URL
from .errors import (
    MalformedResponse,
    NetworkFailure,
    NotFound,
    RateLimited,
    SplitwiseAPIError,
    Unauthorized,
)
from .models import (
    Category,
    Currency,
    Expense,
    ExpenseShare,
    Friend,
    Group,
    GroupMemberInput,
    User,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _flatten_users(
    entries: Iterable[BaseModel],
    body: Dict[str, Any],
    keys: Iterable[str],
) -> None:
    """Write list entries into Splitwise's users__{index}__{field} body format."""
    keys = tuple(keys)
    for index, entry in enumerate(entries):
        for key in keys:
            value = getattr(entry, key, None)
            if value is not None:
                body[f"users__{index}__{key}"] = value


def _has_errors(errors: Any) -> bool:
    if not errors:
        return False
    if isinstance(errors, dict):
        return any(errors.values())
    return True


class SplitwiseClient:
    """
    Synchronous Splitwise API client.

    The underlying httpx.Client keeps a connection pool and is safe to share
    between threads, so one instance serves every request of the process.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """
        Initialize the client.

        Args:
            api_key: Splitwise API key sent as a bearer token
            base_url: API root (default: production v3.0 endpoint)
            timeout: Request timeout in seconds (default: httpx default)
            transport: Optional httpx transport, used by tests to stub the API
        """
        options: Dict[str, Any] = {}
        if timeout is not None:
            options["timeout"] = timeout
        if transport is not None:
            options["transport"] = transport

        self.base_url = base_url.rstrip("/")
        self._http = httpx.Client(
            base_url=self.base_url,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Accept": "application/json",
            },
            **options,
        )

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "SplitwiseClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # -------- transport helpers --------

    def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        body: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        logger.debug("Splitwise %s %s params=%s", method, endpoint, params)
        try:
            response = self._http.request(method, endpoint, params=params, json=body)
        except httpx.TransportError as e:
            raise NetworkFailure(f"{method} {endpoint} failed: {e}") from e
        return self._handle_response(method, endpoint, response)

    def _get(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self._request("GET", endpoint, params=params)

    def _post(self, endpoint: str, body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self._request("POST", endpoint, body=body if body is not None else {})

    @staticmethod
    def _error_details(response: httpx.Response) -> Any:
        try:
            payload = response.json()
        except ValueError:
            return response.text[:500] or None
        if isinstance(payload, dict):
            for key in ("errors", "error"):
                if payload.get(key):
                    return payload[key]
        return payload

    def _handle_response(
        self,
        method: str,
        endpoint: str,
        response: httpx.Response,
    ) -> Dict[str, Any]:
        status = response.status_code

        if response.is_success:
            try:
                payload = response.json()
            except ValueError as e:
                raise MalformedResponse(
                    f"{method} {endpoint} returned non-JSON body "
                    f"(status {status}, length {len(response.text)})",
                    status_code=status,
                    details=response.text[:500],
                ) from e
            if not isinstance(payload, dict):
                raise MalformedResponse(
                    f"{method} {endpoint} returned a JSON {type(payload).__name__}, expected an object",
                    status_code=status,
                )
            return payload

        details = self._error_details(response)
        message = f"Splitwise API error ({status}) on {method} {endpoint}"
        if status in (401, 403):
            raise Unauthorized(message, status_code=status, details=details)
        if status == 404:
            raise NotFound(message, status_code=status, details=details)
        if status == 429:
            raise RateLimited(
                message,
                retry_after=response.headers.get("Retry-After"),
                status_code=status,
                details=details,
            )
        raise SplitwiseAPIError(message, status_code=status, details=details)

    @staticmethod
    def _extract(payload: Dict[str, Any], key: str, model: Type[T]) -> T:
        """Validate payload[key] as model (a record class or List[record])."""
        if key not in payload:
            # Splitwise sometimes answers 200 with only an errors object
            if _has_errors(payload.get("errors")):
                raise SplitwiseAPIError(
                    f"Splitwise returned no '{key}'",
                    details=payload["errors"],
                )
            raise MalformedResponse(
                f"Response is missing the '{key}' field",
                details=sorted(payload.keys()),
            )
        try:
            return TypeAdapter(model).validate_python(payload[key])
        except ValidationError as e:
            raise MalformedResponse(
                f"Unexpected shape for '{key}': {e.error_count()} validation error(s)",
                details=[
                    {"loc": ".".join(str(part) for part in err["loc"]), "msg": err["msg"]}
                    for err in e.errors()
                ],
            ) from e

    @staticmethod
    def _raise_for_errors(payload: Dict[str, Any], action: str) -> None:
        errors = payload.get("errors")
        if _has_errors(errors):
            raise SplitwiseAPIError(f"Failed to {action}", status_code=200, details=errors)

    # -------- users --------

    def get_current_user(self) -> User:
        return self._extract(self._get("/get_current_user"), "user", User)

    def get_user(self, user_id: int) -> User:
        return self._extract(self._get(f"/get_user/{user_id}"), "user", User)

    # -------- groups --------

    def get_groups(self) -> List[Group]:
        return self._extract(self._get("/get_groups"), "groups", List[Group])

    def get_group(self, group_id: int) -> Group:
        return self._extract(self._get(f"/get_group/{group_id}"), "group", Group)

    def create_group(
        self,
        name: str,
        group_type: Optional[str] = None,
        simplify_by_default: Optional[bool] = None,
        members: Optional[List[GroupMemberInput]] = None,
    ) -> Group:
        """
        Create a group. The current user is always added by Splitwise.

        Args:
            name: Group name
            group_type: One of home, trip, couple, other
            simplify_by_default: Whether debts are simplified by default
            members: Additional members, by user id or invitee details

        Returns:
            The created Group
        """
        body: Dict[str, Any] = {"name": name}
        if group_type is not None:
            body["group_type"] = group_type
        if simplify_by_default is not None:
            body["simplify_by_default"] = simplify_by_default
        _flatten_users(members or [], body, ("user_id", "first_name", "last_name", "email"))

        payload = self._post("/create_group", body)
        self._raise_for_errors(payload, "create group")
        return self._extract(payload, "group", Group)

    # -------- expenses --------

    def get_expenses(
        self,
        group_id: Optional[int] = None,
        friend_id: Optional[int] = None,
        dated_after: Optional[str] = None,
        dated_before: Optional[str] = None,
        updated_after: Optional[str] = None,
        updated_before: Optional[str] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[Expense]:
        """List expenses visible to the current user. Only set filters are sent."""
        filters = {
            "group_id": group_id,
            "friend_id": friend_id,
            "dated_after": dated_after,
            "dated_before": dated_before,
            "updated_after": updated_after,
            "updated_before": updated_before,
            "limit": limit,
            "offset": offset,
        }
        params = {key: value for key, value in filters.items() if value is not None}
        payload = self._get("/get_expenses", params=params or None)
        return self._extract(payload, "expenses", List[Expense])

    def get_expense(self, expense_id: int) -> Expense:
        return self._extract(self._get(f"/get_expense/{expense_id}"), "expense", Expense)

    def create_expense(
        self,
        cost: str,
        description: str,
        group_id: Optional[int] = None,
        split_equally: bool = False,
        shares: Optional[List[ExpenseShare]] = None,
        currency_code: Optional[str] = None,
        category_id: Optional[int] = None,
        date: Optional[str] = None,
        details: Optional[str] = None,
    ) -> List[Expense]:
        """
        Create an expense.

        Either split_equally with a group_id (equal split among group members) or
        a list of shares (custom split) must be given. Shares are sent as-is;
        Splitwise is responsible for checking that they add up to cost.

        Returns:
            The created expenses (Splitwise may create more than one)
        """
        body: Dict[str, Any] = {
            "cost": cost,
            "description": description,
            "payment": False,
        }
        if currency_code is not None:
            body["currency_code"] = currency_code
        if category_id is not None:
            body["category_id"] = category_id
        if date is not None:
            body["date"] = date
        if details is not None:
            body["details"] = details
        if group_id is not None:
            body["group_id"] = group_id
            if split_equally:
                body["split_equally"] = True
        _flatten_users(
            shares or [],
            body,
            ("user_id", "email", "first_name", "last_name", "paid_share", "owed_share"),
        )

        payload = self._post("/create_expense", body)
        self._raise_for_errors(payload, "create expense")
        return self._extract(payload, "expenses", List[Expense])

    def update_expense(
        self,
        expense_id: int,
        cost: Optional[str] = None,
        description: Optional[str] = None,
        currency_code: Optional[str] = None,
        category_id: Optional[int] = None,
        date: Optional[str] = None,
        details: Optional[str] = None,
        split_equally: Optional[bool] = None,
        shares: Optional[List[ExpenseShare]] = None,
    ) -> List[Expense]:
        """Update an expense. Only the arguments that are not None are sent."""
        changes = {
            "cost": cost,
            "description": description,
            "currency_code": currency_code,
            "category_id": category_id,
            "date": date,
            "details": details,
            "split_equally": split_equally,
        }
        body = {key: value for key, value in changes.items() if value is not None}
        _flatten_users(
            shares or [],
            body,
            ("user_id", "email", "first_name", "last_name", "paid_share", "owed_share"),
        )

        payload = self._post(f"/update_expense/{expense_id}", body)
        self._raise_for_errors(payload, "update expense")
        return self._extract(payload, "expenses", List[Expense])

    def delete_expense(self, expense_id: int) -> bool:
        payload = self._post(f"/delete_expense/{expense_id}")
        success = payload.get("success")
        if not isinstance(success, bool):
            raise MalformedResponse("Response is missing the 'success' flag")
        if not success:
            self._raise_for_errors(payload, "delete expense")
        return success

    # -------- friends --------

    def get_friends(self) -> List[Friend]:
        return self._extract(self._get("/get_friends"), "friends", List[Friend])

    def get_friend(self, friend_id: int) -> Friend:
        return self._extract(self._get(f"/get_friend/{friend_id}"), "friend", Friend)

    def create_friend(self, email: str) -> List[Friend]:
        payload = self._post("/create_friend", {"user_email": email})
        self._raise_for_errors(payload, "add friend")
        return self._extract(payload, "friends", List[Friend])

    # -------- reference data --------

    def get_currencies(self) -> List[Currency]:
        return self._extract(self._get("/get_currencies"), "currencies", List[Currency])

    def get_categories(self) -> List[Category]:
        return self._extract(self._get("/get_categories"), "categories", List[Category])
