from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Optional
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from tenacity import (
    Retrying,
    before_sleep_log,
    nap,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from config import get_settings

logger = logging.getLogger(__name__)

RETRYABLE_STATUSES = {502, 503, 504}


class ApiError(RuntimeError):
    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        errors: Optional[list[dict[str, Any]]] = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.errors = errors or []


def _error_message(payload: Any, status: int) -> str:
    if isinstance(payload, dict):
        for key in ("message", "detail"):
            value = payload.get(key)
            if isinstance(value, str) and value:
                return value
    return f"HTTP error! status: {status}"


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, ApiError) and (
        exc.status is None or exc.status in RETRYABLE_STATUSES
    )


class ExpenseApiClient:
    """Thin JSON client for the expense REST API.

    Reads are retried with exponential backoff on connection failures and
    gateway errors. Writes are sent exactly once so a lost response can
    never create a duplicate expense.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        *,
        timeout: float = 10.0,
        max_retries: int = 3,
        backoff_secs: float = 0.5,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        self.base_url = (base_url or get_settings().api_url).rstrip("/")
        self.token = token
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_secs = backoff_secs
        self.sleep = sleep or nap.sleep

    def _headers(self, has_body: bool) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if has_body:
            headers["Content-Type"] = "application/json"
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _send(self, method: str, path: str, body: Optional[dict[str, Any]]) -> Any:
        data = json.dumps(body).encode("utf-8") if body is not None else None
        req = Request(
            f"{self.base_url}{path}",
            data=data,
            method=method,
            headers=self._headers(data is not None),
        )
        try:
            with urlopen(req, timeout=self.timeout) as resp:
                raw = resp.read().decode("utf-8")
        except HTTPError as exc:
            try:
                payload = json.loads(exc.read().decode("utf-8") or "null")
            except (json.JSONDecodeError, UnicodeDecodeError):
                payload = None
            errors = payload.get("errors") if isinstance(payload, dict) else None
            raise ApiError(
                _error_message(payload, exc.code), status=exc.code, errors=errors
            ) from exc
        except (URLError, TimeoutError) as exc:
            raise ApiError(f"Could not reach {self.base_url}") from exc
        return json.loads(raw) if raw else None

    def _request(
        self,
        method: str,
        path: str,
        body: Optional[dict[str, Any]] = None,
        *,
        retry: bool = False,
    ) -> Any:
        if not retry:
            return self._send(method, path, body)
        retrying = Retrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=self.backoff_secs),
            retry=retry_if_exception(_is_transient),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=self.sleep,
            reraise=True,
        )
        return retrying(self._send, method, path, body)

    def register(self, name: str, email: str, password: str) -> dict[str, Any]:
        result = self._request(
            "POST",
            "/auth/register",
            {"name": name, "email": email, "password": password},
        )
        self.token = result["token"]
        return result

    def login(self, email: str, password: str) -> dict[str, Any]:
        result = self._request(
            "POST", "/auth/login", {"email": email, "password": password}
        )
        self.token = result["token"]
        return result

    def verify_token(self) -> dict[str, Any]:
        return self._request("POST", "/auth/verify", retry=True)

    def list_expenses(
        self,
        *,
        page: Optional[int] = None,
        limit: Optional[int] = None,
        category: Optional[str] = None,
        search: Optional[str] = None,
        date_range: Optional[str] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        sort_by: Optional[str] = None,
        sort_order: Optional[str] = None,
    ) -> dict[str, Any]:
        params = {
            "page": page,
            "limit": limit,
            "category": None if category == "all" else category,
            "search": search,
            "dateRange": date_range,
            "startDate": start_date,
            "endDate": end_date,
            "sortBy": sort_by,
            "sortOrder": sort_order,
        }
        query = urlencode({k: v for k, v in params.items() if v not in (None, "")})
        path = "/expenses" + (f"?{query}" if query else "")
        return self._request("GET", path, retry=True)

    def get_expense(self, expense_id: str) -> dict[str, Any]:
        return self._request("GET", f"/expenses/{expense_id}", retry=True)

    def create_expense(self, expense: dict[str, Any]) -> dict[str, Any]:
        return self._request("POST", "/expenses", expense)

    def update_expense(
        self, expense_id: str, changes: dict[str, Any]
    ) -> dict[str, Any]:
        return self._request("PUT", f"/expenses/{expense_id}", changes)

    def delete_expense(self, expense_id: str) -> dict[str, Any]:
        return self._request("DELETE", f"/expenses/{expense_id}")

    def get_stats(
        self, start_date: Optional[str] = None, end_date: Optional[str] = None
    ) -> dict[str, Any]:
        params = {"startDate": start_date, "endDate": end_date}
        query = urlencode({k: v for k, v in params.items() if v})
        path = "/expenses/stats/summary" + (f"?{query}" if query else "")
        return self._request("GET", path, retry=True)


@dataclass
class RemoteExpenseState:
    """Client-side view of the server's expenses.

    The newest successful list response always wins: each refresh takes a
    ticket and a response is dropped if a later ticket was already applied.
    Mutations never patch the list in place, they trigger a refresh.
    """

    client: ExpenseApiClient
    list_options: dict[str, Any] = field(default_factory=dict)
    expenses: list[dict[str, Any]] = field(default_factory=list)
    pagination: dict[str, Any] = field(default_factory=dict)
    stats: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    _issued: int = 0
    _applied: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def _ticket(self) -> int:
        with self._lock:
            self._issued += 1
            return self._issued

    def apply_list(self, ticket: int, result: dict[str, Any]) -> bool:
        with self._lock:
            if ticket <= self._applied:
                logger.info(f"stale_list_dropped: ticket={ticket} applied={self._applied}")
                return False
            self._applied = ticket
            self.expenses = list(result.get("expenses") or [])
            self.pagination = dict(result.get("pagination") or {})
            return True

    def refresh(self, **options: Any) -> bool:
        if options:
            self.list_options = options
        ticket = self._ticket()
        try:
            result = self.client.list_expenses(**self.list_options)
        except ApiError as exc:
            self.error = str(exc) or "Failed to fetch expenses"
            return False
        self.error = None
        return self.apply_list(ticket, result)

    def _mutate(self, action: str, call, *args: Any) -> Optional[dict[str, Any]]:
        try:
            result = call(*args)
        except ApiError as exc:
            self.error = str(exc) or f"Failed to {action} expense"
            return None
        self.error = None
        self.refresh()
        return result

    def create(self, expense: dict[str, Any]) -> Optional[dict[str, Any]]:
        return self._mutate("create", self.client.create_expense, expense)

    def update(
        self, expense_id: str, changes: dict[str, Any]
    ) -> Optional[dict[str, Any]]:
        return self._mutate(
            "update", self.client.update_expense, expense_id, changes
        )

    def delete(self, expense_id: str) -> bool:
        return (
            self._mutate("delete", self.client.delete_expense, expense_id) is not None
        )

    def refresh_stats(
        self, start_date: Optional[str] = None, end_date: Optional[str] = None
    ) -> bool:
        try:
            self.stats = self.client.get_stats(start_date, end_date)
        except ApiError as exc:
            self.error = str(exc) or "Failed to fetch statistics"
            return False
        return True

    def clear_error(self) -> None:
        self.error = None
