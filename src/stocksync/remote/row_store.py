from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Optional, Protocol

import requests

from stocksync.domain.errors import RemoteRejectedError, RemoteUnavailableError

log = logging.getLogger(__name__)

PRODUCTS_TABLE = "produtos"
SALES_TABLE = "vendas"


class RowStore(Protocol):
    def select(self, table: str, filters: Mapping[str, Any] | None = None) -> list[dict]: ...
    def insert(self, table: str, row: Mapping[str, Any]) -> dict: ...
    def update(self, table: str, row_id: Any, patch: Mapping[str, Any]) -> dict: ...
    def upsert(self, table: str, rows: Iterable[Mapping[str, Any]], conflict_key: str = "id") -> None: ...
    def delete(self, table: str, row_id: Any) -> None: ...


class RestRowStore:
    """Row store over a PostgREST-style HTTP API (`/rest/v1/<table>`).

    Connection errors, timeouts and 5xx answers raise `RemoteUnavailableError`;
    any other non-2xx answer raises `RemoteRejectedError`.
    """

    def __init__(self, base_url: str, api_key: str, timeout: float = 10.0, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = float(timeout)
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "apikey": api_key,
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            }
        )

    def _url(self, table: str) -> str:
        return f"{self.base_url}/rest/v1/{table}"

    def _request(self, method: str, table: str, *, params: dict | None = None, json: Any = None,
                 headers: dict | None = None) -> Any:
        try:
            r = self.session.request(
                method,
                self._url(table),
                params=params,
                json=json,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise RemoteUnavailableError(f"{method} {table}: {e}") from e

        if r.status_code >= 500 or r.status_code == 429:
            raise RemoteUnavailableError(f"{method} {table}: HTTP {r.status_code}")
        if r.status_code >= 400:
            raise RemoteRejectedError(f"{method} {table}: HTTP {r.status_code} {self._error_message(r)}")
        if not r.content:
            return None
        try:
            return r.json()
        except ValueError as e:
            raise RemoteUnavailableError(f"{method} {table}: invalid JSON body") from e

    @staticmethod
    def _error_message(r: requests.Response) -> str:
        try:
            body = r.json()
        except ValueError:
            return r.text[:200]
        if isinstance(body, dict):
            return str(body.get("message") or body.get("hint") or body)
        return str(body)

    @staticmethod
    def _eq(filters: Mapping[str, Any] | None) -> dict:
        return {k: f"eq.{v}" for k, v in (filters or {}).items()}

    def select(self, table: str, filters: Mapping[str, Any] | None = None) -> list[dict]:
        params = {"select": "*", **self._eq(filters)}
        data = self._request("GET", table, params=params)
        return list(data or [])

    def insert(self, table: str, row: Mapping[str, Any]) -> dict:
        data = self._request("POST", table, json=[dict(row)], headers={"Prefer": "return=representation"})
        return dict(data[0]) if data else dict(row)

    def update(self, table: str, row_id: Any, patch: Mapping[str, Any]) -> dict:
        data = self._request(
            "PATCH",
            table,
            params=self._eq({"id": row_id}),
            json=dict(patch),
            headers={"Prefer": "return=representation"},
        )
        if not data:
            raise RemoteRejectedError(f"PATCH {table}: row {row_id} not found")
        return dict(data[0])

    def upsert(self, table: str, rows: Iterable[Mapping[str, Any]], conflict_key: str = "id") -> None:
        payload = [dict(r) for r in rows]
        if not payload:
            return
        self._request(
            "POST",
            table,
            params={"on_conflict": conflict_key},
            json=payload,
            headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
        )
        log.info("remote_upsert table=%s rows=%s", table, len(payload))

    def delete(self, table: str, row_id: Any) -> None:
        self._request("DELETE", table, params=self._eq({"id": row_id}))
