"""Small HTTP client for the support API returning tagged results."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, Mapping, Sequence, TypeVar, Union

import httpx

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True, slots=True)
class Err:
    code: str
    message: str
    status_code: int | None = None

    @property
    def ok(self) -> bool:
        return False

    def __str__(self) -> str:
        prefix = f"[{self.status_code}] " if self.status_code is not None else ""
        return f"{prefix}{self.code}: {self.message}"


Result = Union[Ok[T], Err]


def _error_from_response(response: httpx.Response) -> Err:
    try:
        data = response.json()
    except ValueError:
        return Err("http_error", response.text or "Unknown server error", response.status_code)

    if isinstance(data, Mapping):
        error = data.get("error")
        if isinstance(error, Mapping):
            return Err(
                str(error.get("code", "http_error")),
                str(error.get("message", "")),
                response.status_code,
            )
        detail = data.get("detail")
        if isinstance(detail, str):
            return Err("http_error", detail, response.status_code)
    return Err("http_error", "The request could not be completed", response.status_code)


def _params(**values: Any) -> dict[str, Any]:
    return {key: value for key, value in values.items() if value not in (None, "")}


@dataclass(slots=True)
class SupportAPIClient:
    """Client for the support center endpoints."""

    base_url: str
    token: str | None = None
    timeout: float = 10.0
    transport: httpx.BaseTransport | None = None

    def _request(self, method: str, path: str, **kwargs: Any) -> Result[Any]:
        url = self._build_url(path)
        headers: dict[str, str] = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        headers.update(kwargs.pop("headers", {}))

        try:
            with httpx.Client(transport=self.transport, timeout=self.timeout) as client:
                response = client.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            return Err("upstream_error", f"Request to support API failed: {exc}")

        if response.status_code >= 400:
            return _error_from_response(response)
        if response.status_code == 204 or not response.content:
            return Ok(None)
        content_type = response.headers.get("Content-Type", "")
        if "application/json" in content_type:
            return Ok(response.json())
        return Ok(response.text)

    def _build_url(self, path: str) -> str:
        normalized = path if path.startswith("/") else f"/{path}"
        return f"{self.base_url.rstrip('/')}{normalized}"

    def ping(self) -> Result[Mapping[str, Any]]:
        return self._request("GET", "/ping")

    # Tickets
    def create_ticket(
        self,
        *,
        title: str,
        description: str,
        priority: str,
        category: str,
        apps: Sequence[int],
        guest: Mapping[str, str] | None = None,
        user: str | None = None,
        captured_url: str | None = None,
        attachments: Sequence[str] = (),
    ) -> Result[Mapping[str, Any]]:
        payload: dict[str, Any] = {
            "title": title,
            "description": description,
            "priority": priority,
            "category": category,
            "apps": list(apps),
            "attachments": list(attachments),
        }
        if guest is not None:
            payload["guest"] = dict(guest)
        if user is not None:
            payload["user"] = user
        if captured_url is not None:
            payload["capturedURL"] = captured_url
        return self._request("POST", "/support/ticket", json=payload)

    def get_ticket(self, ticket_uuid: str, *, access_key: str | None = None) -> Result[Mapping[str, Any]]:
        return self._request("GET", f"/support/ticket/{ticket_uuid}", params=_params(accessKey=access_key))

    def list_open_tickets(
        self,
        *,
        page: int = 1,
        limit: int = 10,
        sort: str = "opened",
        assignee: str | None = None,
        priority: str | None = None,
        category: str | None = None,
    ) -> Result[Mapping[str, Any]]:
        params = _params(page=page, limit=limit, sort=sort, assignee=assignee, priority=priority, category=category)
        return self._request("GET", "/support/ticket/open", params=params)

    def list_closed_tickets(
        self, *, page: int = 1, limit: int = 10, sort: str = "opened"
    ) -> Result[Mapping[str, Any]]:
        return self._request("GET", "/support/ticket/closed", params=_params(page=page, limit=limit, sort=sort))

    def search_tickets(self, query: str) -> Result[list[Mapping[str, Any]]]:
        return self._request("GET", "/support/ticket/search", params={"query": query})

    def list_user_tickets(self, user_uuid: str) -> Result[list[Mapping[str, Any]]]:
        return self._request("GET", f"/support/user/{user_uuid}/tickets")

    def update_ticket(
        self, ticket_uuid: str, *, priority: str | None = None, status: str | None = None
    ) -> Result[Mapping[str, Any]]:
        return self._request(
            "PATCH", f"/support/ticket/{ticket_uuid}", json=_params(priority=priority, status=status)
        )

    def assign_ticket(self, ticket_uuid: str, assignee_uuids: Sequence[str]) -> Result[Mapping[str, Any]]:
        payload = {"assigneeUUIDs": list(assignee_uuids)}
        return self._request("POST", f"/support/ticket/{ticket_uuid}/assign", json=payload)

    def delete_ticket(self, ticket_uuid: str) -> Result[None]:
        return self._request("DELETE", f"/support/ticket/{ticket_uuid}")

    def add_attachments(
        self, ticket_uuid: str, names: Sequence[str], *, access_key: str | None = None
    ) -> Result[Mapping[str, Any]]:
        return self._request(
            "POST",
            f"/support/ticket/{ticket_uuid}/attachments",
            json={"attachments": list(names)},
            params=_params(accessKey=access_key),
        )

    # Messages
    def send_message(
        self,
        ticket_uuid: str,
        message: str,
        *,
        sender_email: str | None = None,
        access_key: str | None = None,
        attachments: Sequence[str] = (),
    ) -> Result[Mapping[str, Any]]:
        payload: dict[str, Any] = {"message": message, "attachments": list(attachments)}
        if sender_email is not None:
            payload["senderEmail"] = sender_email
        return self._request(
            "POST",
            f"/support/ticket/{ticket_uuid}/message",
            json=payload,
            params=_params(accessKey=access_key),
        )

    def list_messages(
        self, ticket_uuid: str, *, access_key: str | None = None
    ) -> Result[list[Mapping[str, Any]]]:
        return self._request(
            "GET", f"/support/ticket/{ticket_uuid}/messages", params=_params(accessKey=access_key)
        )

    def send_internal_message(self, ticket_uuid: str, message: str) -> Result[Mapping[str, Any]]:
        return self._request(
            "POST", f"/support/ticket/{ticket_uuid}/internal-message", json={"message": message}
        )

    def list_internal_messages(self, ticket_uuid: str) -> Result[list[Mapping[str, Any]]]:
        return self._request("GET", f"/support/ticket/{ticket_uuid}/internal-messages")

    # Dashboard
    def get_metrics(self) -> Result[Mapping[str, Any]]:
        result = self._request("GET", "/support/metrics")
        if isinstance(result, Ok):
            metrics = result.value.get("metrics") if isinstance(result.value, Mapping) else None
            if not isinstance(metrics, Mapping):
                return Err("invalid_response", "Metrics missing from server response")
            return Ok(metrics)
        return result
