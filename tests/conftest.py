from __future__ import annotations

from pathlib import Path

import pytest

from better_hrep.api_client import Page, UpstreamError
from better_hrep.config import IndexerSettings
from better_hrep.normalize import to_upstream

# ── Upstream rows ─────────────────────────────────────────────────────────────


def member_row(
    author_id: str,
    first: str,
    last: str,
    *,
    row_id: int = 1,
    name_code: str | None = None,
    bills: list[dict] | None = None,
) -> dict:
    """A /house-members/list row."""
    principal = bills or []
    if name_code and not principal:
        principal = [
            {"congress": 103, "bill_no": "HB00001", "name_code": name_code, "author": author_id}
        ]
    return {
        "id": row_id,
        "author_id": author_id,
        "fullname": f"{last}, {first}",
        "last_name": last,
        "first_name": first,
        "middle_name": "",
        "suffix": "",
        "nick_name": first,
        "principal_authored_bills": principal,
    }


def directory_row(author_id: str, fullname: str, membership: list[int]) -> dict:
    """A /house-members/ddl-reference row (upstream congress ids)."""
    return {"id": 1, "author_id": author_id, "fullname": fullname, "membership": membership}


def bill_row(congress: int, bill_no: str, **extra: object) -> dict:
    """A bill row with an upstream congress id."""
    return {
        "id": abs(hash(bill_no)) % 100000,
        "congress": congress,
        "bill_no": bill_no,
        "title_full": f"An act {bill_no}",
        "title_short": f"Short {bill_no}",
        "date_filed": "2025-07-01",
        "status": "Pending",
        **extra,
    }


# ── Fake upstream ─────────────────────────────────────────────────────────────


class FakeUpstream:
    """In-memory upstream source.  Records every call in ``calls``."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict]] = []
        self.congress_reference: list[dict] = []
        self.directory: list[dict] = []
        self.members: list[dict] = []
        self.coauthored: dict[str, list[dict]] = {}
        self.committees: list[dict] = []
        self.committee_memberships: dict[str, list[dict]] = {}
        self.searches: dict[tuple, list[list[dict]]] = {}
        self.bill_lists: dict[int, list[dict]] = {}
        self.fail_directory = False
        self.fail_coauthored: set[str] = set()
        self.fail_search: set[str] = set()

    def add_search(
        self,
        congress: int,
        pages: list[list[dict]],
        *,
        author_id: str = "",
        author_type: str = "Both",
        committee_id: str = "",
    ) -> None:
        key = (to_upstream(congress), author_id, author_type, committee_id)
        self.searches[key] = pages

    def search_calls(self) -> list[dict]:
        return [kw for name, kw in self.calls if name == "fetch_bill_search"]

    async def fetch_congress_reference(self) -> list[dict]:
        self.calls.append(("fetch_congress_reference", {}))
        return list(self.congress_reference)

    async def fetch_member_list(self, page: int = 0, limit: int = 100, filter: str = "") -> Page:
        self.calls.append(("fetch_member_list", {"page": page, "limit": limit}))
        start = page * limit
        return Page(count=len(self.members), rows=self.members[start : start + limit])

    async def fetch_member_directory(self) -> list[dict]:
        self.calls.append(("fetch_member_directory", {}))
        if self.fail_directory:
            raise UpstreamError("API request failed: 503 Service Unavailable", status_code=503)
        return list(self.directory)

    async def fetch_coauthored_bills(self, author_id: str) -> Page:
        self.calls.append(("fetch_coauthored_bills", {"author_id": author_id}))
        if author_id in self.fail_coauthored:
            raise UpstreamError("API request failed: 500 Internal Server Error", status_code=500)
        rows = self.coauthored.get(author_id, [])
        return Page(count=len(rows), rows=rows)

    async def fetch_committee_membership(self, member_code: str) -> Page:
        self.calls.append(("fetch_committee_membership", {"member_code": member_code}))
        rows = self.committee_memberships.get(member_code, [])
        return Page(count=len(rows), rows=rows)

    async def fetch_committee_list(self, page: int = 0, limit: int = 100) -> Page:
        self.calls.append(("fetch_committee_list", {"page": page, "limit": limit}))
        start = page * limit
        return Page(count=len(self.committees), rows=self.committees[start : start + limit])

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
        self.calls.append(
            (
                "fetch_bill_search",
                {
                    "congress": congress,
                    "page": page,
                    "author_id": author_id,
                    "author_type": author_type,
                    "committee_id": committee_id,
                },
            )
        )
        if (author_id or committee_id) in self.fail_search:
            raise UpstreamError("API request failed: 502 Bad Gateway", status_code=502)
        pages = self.searches.get((congress, author_id, author_type, committee_id), [])
        rows = pages[page] if page < len(pages) else []
        return Page(count=sum(len(p) for p in pages), rows=rows)

    async def fetch_bill_list(
        self, congress: int, page: int = 0, limit: int = 10, filter: str = ""
    ) -> Page:
        self.calls.append(("fetch_bill_list", {"congress": congress, "page": page}))
        rows = self.bill_lists.get(congress, [])
        start = page * limit
        return Page(count=len(rows), rows=rows[start : start + limit])

    async def fetch_bill_by_key(self, congress: int, document_key: str) -> Page:
        self.calls.append(("fetch_bill_by_key", {"congress": congress, "key": document_key}))
        rows = [r for r in self.bill_lists.get(congress, []) if r["bill_no"] == document_key]
        return Page(count=len(rows), rows=rows)


class RecordingReporter:
    def __init__(self) -> None:
        self.reports: list[tuple[str, str, str]] = []

    async def report(self, title: str, body: str, label: str) -> bool:
        self.reports.append((title, body, label))
        return True


async def no_sleep(_delay: float) -> None:
    return None


# ── Fixtures ──────────────────────────────────────────────────────────────────


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def reporter() -> RecordingReporter:
    return RecordingReporter()


@pytest.fixture
def settings() -> IndexerSettings:
    return IndexerSettings(
        member_page_size=2,
        committee_page_size=10,
        search_page_size=50,
        search_max_pages=10,
        batch_size=2,
        chunk_size=5,
        max_retries=2,
        retry_base_delay=0.0,
        latest_congress=20,
        latest_congress_ttl_days=5.0,
    )


@pytest.fixture
def kv_path(tmp_path: Path) -> Path:
    return tmp_path / "cache" / "hrep.sqlite3"
