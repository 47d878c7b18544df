"""Client for the upstream House of Representatives website API.

Every endpoint answers with a ``{status, success, data}`` envelope; paginated
endpoints put ``{count, rows}`` inside ``data``.  The client unwraps the
envelope and raises :class:`UpstreamError` on any transport failure, non-2xx
status or ``success: false`` reply, so callers only ever see clean data or one
exception type.

Congress arguments are upstream ids.  Convert with
:func:`better_hrep.normalize.to_upstream` before calling.

Usage::

    async with HrepClient(BASE_API_URL, X_HREP_WEBSITE_BACKEND) as client:
        page = await client.fetch_member_list(page=0, limit=100)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

LOGGER = logging.getLogger(__name__)


class UpstreamError(RuntimeError):
    """An upstream call failed (network, HTTP status or error envelope)."""

    def __init__(self, message: str, *, path: str = "", status_code: int | None = None):
        super().__init__(message)
        self.path = path
        self.status_code = status_code


class PaginationError(UpstreamError):
    """Upstream pagination is inconsistent and cannot be walked to the end."""


@dataclass
class Page:
    count: int
    rows: list[dict] = field(default_factory=list)


class UpstreamSource(Protocol):
    """Operations the indexing engine and resolver consume."""

    async def fetch_congress_reference(self) -> list[dict]: ...

    async def fetch_member_list(self, page: int = 0, limit: int = 100, filter: str = "") -> Page: ...

    async def fetch_member_directory(self) -> list[dict]: ...

    async def fetch_coauthored_bills(self, author_id: str) -> Page: ...

    async def fetch_committee_membership(self, member_code: str) -> Page: ...

    async def fetch_committee_list(self, page: int = 0, limit: int = 100) -> Page: ...

    async def fetch_bill_search(
        self,
        *,
        congress: int,
        page: int = 0,
        limit: int = 999,
        author_id: str = "",
        author_type: str = "Both",
        committee_id: str = "",
        field: str = "Author",
        numbers: str = "",
    ) -> Page: ...

    async def fetch_bill_list(
        self, congress: int, page: int = 0, limit: int = 10, filter: str = ""
    ) -> Page: ...

    async def fetch_bill_by_key(self, congress: int, document_key: str) -> Page: ...


def _page_from(data: Any, path: str) -> Page:
    if not isinstance(data, dict):
        raise UpstreamError(f"Unexpected payload from {path}", path=path)
    rows = data.get("rows") or []
    count = data.get("count")
    return Page(count=int(count) if count is not None else len(rows), rows=list(rows))


class HrepClient:
    """Async client for the upstream API.

    Pass ``transport`` to route requests through an ``httpx.MockTransport`` in
    tests.
    """

    def __init__(
        self,
        base_url: str,
        backend_key: str,
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={
                "X-Hrep-Website-Backend": backend_key,
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> HrepClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    # ── transport ─────────────────────────────────────────────────────────

    async def _request(self, method: str, path: str, body: dict | None = None) -> Any:
        try:
            response = await self._client.request(method, path, json=body)
        except httpx.HTTPError as e:
            raise UpstreamError(f"{method} {path} failed: {e}", path=path) from e

        if response.is_error:
            raise UpstreamError(
                f"API request failed: {response.status_code} {response.reason_phrase}",
                path=path,
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as e:
            raise UpstreamError(f"Invalid JSON from {path}", path=path) from e

        if not isinstance(payload, dict) or not payload.get("success") or "data" not in payload:
            raise UpstreamError(
                f"Upstream reported failure for {path}",
                path=path,
                status_code=payload.get("status") if isinstance(payload, dict) else None,
            )
        return payload["data"]

    # ── endpoints ─────────────────────────────────────────────────────────

    async def fetch_congress_reference(self) -> list[dict]:
        data = await self._request("GET", "/system-config/reference-congress")
        return list(data or [])

    async def fetch_member_list(self, page: int = 0, limit: int = 100, filter: str = "") -> Page:
        path = "/house-members/list"
        data = await self._request("POST", path, {"page": page, "limit": limit, "filter": filter})
        return _page_from(data, path)

    async def fetch_member_directory(self) -> list[dict]:
        data = await self._request("GET", "/house-members/ddl-reference")
        return list(data or [])

    async def fetch_coauthored_bills(self, author_id: str) -> Page:
        path = "/house-members/co-author"
        data = await self._request(
            "POST", path, {"page": 0, "limit": 1000, "filter": "", "author": author_id}
        )
        return _page_from(data, path)

    async def fetch_committee_membership(self, member_code: str) -> Page:
        path = "/house-members/committee-membership"
        data = await self._request("POST", path, {"member_code": member_code})
        return _page_from(data, path)

    async def fetch_committee_list(self, page: int = 0, limit: int = 100) -> Page:
        path = "/committee/list"
        data = await self._request("POST", path, {"page": page, "limit": limit})
        return _page_from(data, path)

    async def fetch_bill_search(
        self,
        *,
        congress: int,
        page: int = 0,
        limit: int = 999,
        author_id: str = "",
        author_type: str = "Both",
        committee_id: str = "",
        field: str = "Author",
        numbers: str = "",
    ) -> Page:
        path = "/bills/search"
        body = {
            "page": page,
            "limit": limit,
            "congress": congress,
            "significance": "Both",
            "field": field,
            "numbers": numbers,
            "author_id": author_id,
            "author_type": author_type,
            "committee_id": committee_id,
            "title": "",
        }
        data = await self._request("POST", path, body)
        return _page_from(data, path)

    async def fetch_bill_list(
        self, congress: int, page: int = 0, limit: int = 10, filter: str = ""
    ) -> Page:
        path = "/bills/list"
        body = {"page": page, "limit": limit, "congress": congress, "filter": filter}
        data = await self._request("POST", path, body)
        return _page_from(data, path)

    async def fetch_bill_by_key(self, congress: int, document_key: str) -> Page:
        return await self.fetch_bill_search(
            congress=congress,
            author_type="Both",
            field="Bills",
            numbers=document_key,
        )
