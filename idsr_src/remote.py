"""Remote store client.

The remote store is an opaque create/read/update service. ``SupabaseStore``
talks to a PostgREST endpoint (Supabase's REST API); tests and alternative
backends implement ``RemoteStore`` directly.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

import requests

from .config import config
from .exceptions import (
    RemoteConflictError,
    RemoteStoreError,
    RemoteTransportError,
    RemoteValidationError,
)

logger = logging.getLogger(__name__)

# Filter operators understood by query()/update()
FILTER_OPERATORS = frozenset({"eq", "neq", "gt", "gte", "lt", "lte", "in", "is"})

# Postgres unique_violation
UNIQUE_VIOLATION = "23505"


class RemoteStore(ABC):
    """Abstract remote store interface.

    Filters map a column to either a value (equality), an ``(operator,
    value)`` tuple, or a list of such tuples for ranges on one column.
    """

    supports_upsert: bool = False

    @abstractmethod
    def insert(self, table: str, record: dict) -> dict:
        """Insert a row and return it as stored (with its server id)."""
        pass

    @abstractmethod
    def query(
        self,
        table: str,
        filters: dict | None = None,
        columns: str = "*",
        order: str | None = None,
        limit: int | None = None,
    ) -> list[dict]:
        """Select rows matching all filters."""
        pass

    @abstractmethod
    def update(self, table: str, filters: dict, patch: dict) -> list[dict]:
        """Apply a patch to matching rows and return them."""
        pass

    def upsert(self, table: str, record: dict, on_conflict: str) -> Optional[dict]:
        """Insert unless a row with the same ``on_conflict`` value exists.

        Returns the inserted row, or None when an existing row was kept.
        """
        raise NotImplementedError(f"{type(self).__name__} does not support upsert")

    def find_one(self, table: str, filters: dict, columns: str = "*") -> Optional[dict]:
        """Get the first matching row, or None."""
        rows = self.query(table, filters, columns=columns, limit=1)
        return rows[0] if rows else None

    def is_available(self) -> bool:
        """Check whether the remote store can be reached."""
        return True


def build_filter_params(filters: dict | None) -> dict[str, Any]:
    """Render filters as PostgREST query parameters."""
    params: dict[str, Any] = {}
    for column, criteria in (filters or {}).items():
        conditions = criteria if isinstance(criteria, list) else [criteria]
        rendered = [_render_condition(column, c) for c in conditions]
        params[column] = rendered[0] if len(rendered) == 1 else rendered
    return params


def _render_condition(column: str, condition: Any) -> str:
    if isinstance(condition, tuple):
        op, operand = condition
    else:
        op, operand = "eq", condition

    if op not in FILTER_OPERATORS:
        raise ValueError(f"Unsupported filter operator {op!r} for column {column!r}")

    if op == "in":
        return f"in.({','.join(_render_value(v) for v in operand)})"
    if operand is None:
        return "is.null"
    return f"{op}.{_render_value(operand)}"


def _render_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


class SupabaseStore(RemoteStore):
    """Client for a Supabase / PostgREST backend."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        use_upsert: bool | None = None,
        session: requests.Session | None = None,
    ):
        self.base_url = (base_url or config.SUPABASE_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else config.SUPABASE_KEY
        self.timeout = timeout or config.REQUEST_TIMEOUT_SECONDS
        self.supports_upsert = config.USE_UPSERT if use_upsert is None else use_upsert

        self.session = session or requests.Session()
        self.session.headers.update({
            "Accept": "application/json",
            "Content-Type": "application/json",
        })
        if self.api_key:
            self.session.headers.update({
                "apikey": self.api_key,
                "Authorization": f"Bearer {self.api_key}",
            })

    @property
    def rest_url(self) -> str:
        return f"{self.base_url}/rest/v1"

    def _request(
        self,
        method: str,
        table: str,
        params: dict | None = None,
        json: Any = None,
        prefer: str | None = None,
    ) -> Any:
        """Send a request and map failures onto the remote error taxonomy."""
        headers = {"Prefer": prefer} if prefer else None
        url = f"{self.rest_url}/{table}"

        try:
            response = self.session.request(
                method,
                url,
                params=params,
                json=json,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.Timeout as e:
            raise RemoteTransportError(f"{method} {table} timed out after {self.timeout}s") from e
        except requests.RequestException as e:
            raise RemoteTransportError(f"{method} {table} failed: {e}") from e

        if response.status_code >= 400:
            raise self._error_for(response, method, table)

        if not response.content:
            return None
        return response.json()

    @staticmethod
    def _error_for(response: requests.Response, method: str, table: str) -> RemoteStoreError:
        """Classify an HTTP error response."""
        status = response.status_code
        code = None
        try:
            body = response.json()
            message = body.get("message") or body.get("error") or response.text
            code = body.get("code")
        except ValueError:
            message = response.text or response.reason

        detail = f"{method} {table} -> HTTP {status}: {message}"
        if status == 409 or code == UNIQUE_VIOLATION:
            return RemoteConflictError(detail, status_code=status)
        if status in (408, 429) or status >= 500:
            return RemoteTransportError(detail, status_code=status)
        return RemoteValidationError(detail, status_code=status)

    def insert(self, table: str, record: dict) -> dict:
        """POST a single row."""
        rows = self._request("POST", table, json=record, prefer="return=representation")
        if not rows:
            raise RemoteStoreError(f"POST {table} returned no row")
        return rows[0] if isinstance(rows, list) else rows

    def upsert(self, table: str, record: dict, on_conflict: str) -> Optional[dict]:
        """POST with on_conflict, ignoring duplicates."""
        rows = self._request(
            "POST",
            table,
            params={"on_conflict": on_conflict},
            json=record,
            prefer="resolution=ignore-duplicates,return=representation",
        )
        if not rows:
            return None
        return rows[0] if isinstance(rows, list) else rows

    def query(
        self,
        table: str,
        filters: dict | None = None,
        columns: str = "*",
        order: str | None = None,
        limit: int | None = None,
    ) -> list[dict]:
        """GET rows matching filters."""
        params = build_filter_params(filters)
        params["select"] = columns
        if order:
            params["order"] = order
        if limit is not None:
            params["limit"] = limit
        return self._request("GET", table, params=params) or []

    def update(self, table: str, filters: dict, patch: dict) -> list[dict]:
        """PATCH rows matching filters."""
        if not filters:
            raise ValueError("Refusing to update without filters")
        return self._request(
            "PATCH",
            table,
            params=build_filter_params(filters),
            json=patch,
            prefer="return=representation",
        ) or []

    def is_available(self) -> bool:
        """Probe the REST root."""
        try:
            response = self.session.get(f"{self.rest_url}/", timeout=self.timeout)
            return response.status_code < 500
        except requests.RequestException as e:
            logger.debug(f"Remote store unreachable: {e}")
            return False
