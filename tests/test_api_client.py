import io
import json
from urllib.error import HTTPError, URLError

import pytest

import api_client
from api_client import ApiError, ExpenseApiClient, RemoteExpenseState


class FakeResponse:
    def __init__(self, payload) -> None:
        self._body = json.dumps(payload).encode("utf-8")

    def read(self) -> bytes:
        return self._body

    def __enter__(self):
        return self

    def __exit__(self, *exc) -> None:
        return None


def _http_error(code: int, payload=None) -> HTTPError:
    body = json.dumps(payload).encode("utf-8") if payload is not None else b""
    return HTTPError("http://test/api", code, "error", {}, io.BytesIO(body))


class FakeServer:
    """Replays queued outcomes and records every request sent."""

    def __init__(self, *outcomes) -> None:
        self.outcomes = list(outcomes)
        self.requests = []

    def __call__(self, req, timeout=None):
        self.requests.append(req)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return FakeResponse(outcome)


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    sleeps = []
    monkeypatch.setattr(api_client.nap, "sleep", sleeps.append)
    return sleeps


def _client() -> ExpenseApiClient:
    return ExpenseApiClient("http://test/api/", token="tok", max_retries=3)


def _page(*titles) -> dict:
    return {
        "expenses": [{"id": title, "title": title} for title in titles],
        "pagination": {"currentPage": 1, "totalExpenses": len(titles)},
    }


def test_reads_retry_transient_failures_with_backoff(monkeypatch, no_sleep) -> None:
    server = FakeServer(URLError("down"), _http_error(503), _page("Lunch"))
    monkeypatch.setattr(api_client, "urlopen", server)

    result = _client().list_expenses(page=1, category="all", search="")

    assert result["expenses"][0]["title"] == "Lunch"
    assert len(server.requests) == 3
    assert no_sleep == [0.5, 1.0]
    assert server.requests[0].full_url == "http://test/api/expenses?page=1"
    assert server.requests[0].get_header("Authorization") == "Bearer tok"


def test_reads_give_up_after_max_retries(monkeypatch) -> None:
    server = FakeServer(*[URLError("down")] * 4)
    monkeypatch.setattr(api_client, "urlopen", server)

    with pytest.raises(ApiError) as excinfo:
        _client().get_expense("abc")

    assert excinfo.value.status is None
    assert len(server.requests) == 4


def test_creates_are_never_retried(monkeypatch, no_sleep) -> None:
    server = FakeServer(URLError("timeout"), {"id": "x"})
    monkeypatch.setattr(api_client, "urlopen", server)

    with pytest.raises(ApiError):
        _client().create_expense({"title": "Lunch"})

    assert len(server.requests) == 1
    assert no_sleep == []


def test_client_errors_are_not_retried(monkeypatch) -> None:
    payload = {
        "message": "Validation failed",
        "errors": [{"field": "amount", "message": "must be positive"}],
    }
    server = FakeServer(_http_error(400, payload))
    monkeypatch.setattr(api_client, "urlopen", server)

    with pytest.raises(ApiError) as excinfo:
        _client().list_expenses()

    assert excinfo.value.status == 400
    assert str(excinfo.value) == "Validation failed"
    assert excinfo.value.errors[0]["field"] == "amount"
    assert len(server.requests) == 1


def test_login_stores_token(monkeypatch) -> None:
    server = FakeServer({"token": "fresh", "user": {"id": "u1"}})
    monkeypatch.setattr(api_client, "urlopen", server)
    client = ExpenseApiClient("http://test/api")

    client.login("ana@example.com", "secret123")

    assert client.token == "fresh"
    assert json.loads(server.requests[0].data) == {
        "email": "ana@example.com",
        "password": "secret123",
    }


def test_stale_list_response_is_dropped() -> None:
    state = RemoteExpenseState(client=_client())
    older = state._ticket()
    newer = state._ticket()

    assert state.apply_list(newer, _page("new"))
    assert not state.apply_list(older, _page("old"))
    assert [e["title"] for e in state.expenses] == ["new"]


def test_failed_refresh_keeps_previous_state(monkeypatch) -> None:
    server = FakeServer(
        _page("Lunch"), _http_error(500, {"message": "Internal server error"})
    )
    monkeypatch.setattr(api_client, "urlopen", server)
    state = RemoteExpenseState(client=_client())

    assert state.refresh(page=1)
    assert not state.refresh()

    assert state.error == "Internal server error"
    assert [e["title"] for e in state.expenses] == ["Lunch"]
    state.clear_error()
    assert state.error is None


def test_mutation_refreshes_instead_of_patching(monkeypatch) -> None:
    server = FakeServer({"id": "x", "title": "Lunch"}, _page("Lunch", "Dinner"))
    monkeypatch.setattr(api_client, "urlopen", server)
    state = RemoteExpenseState(client=_client(), list_options={"page": 1})

    created = state.create({"title": "Lunch"})

    assert created["id"] == "x"
    assert [e["title"] for e in state.expenses] == ["Lunch", "Dinner"]
    assert server.requests[0].get_method() == "POST"
    assert server.requests[1].get_method() == "GET"


def test_failed_delete_sets_error_without_refresh(monkeypatch) -> None:
    server = FakeServer(_http_error(404, {"detail": "Expense not found"}))
    monkeypatch.setattr(api_client, "urlopen", server)
    state = RemoteExpenseState(client=_client())

    assert not state.delete("missing")
    assert state.error == "Expense not found"
    assert len(server.requests) == 1


def test_token_verification_retries_gateway_errors(monkeypatch) -> None:
    server = FakeServer(_http_error(502), _http_error(504), {"valid": True})
    monkeypatch.setattr(api_client, "urlopen", server)
    waits = []
    client = ExpenseApiClient(
        "http://test/api", token="tok", backoff_secs=2, sleep=waits.append
    )

    assert client.verify_token() == {"valid": True}
    assert waits == [2, 4]
    assert all(req.get_method() == "POST" for req in server.requests)
