"""Indexing engine: upstream pages in, denormalized cache entries out.

Every operation is idempotent.  Re-running one against an unchanged upstream
rewrites the same keys with the same values, so the cache neither grows nor
gains duplicate pointers.

Writes are grouped into atomic batches.  A primary record and the secondary
index pointer that refers to it always land in the same batch, so a reader
never sees a pointer to a record that was not written.

Document relationships are stored inverted, one boolean entry per edge::

    ("congresses", 20, "HB00001", "authors", "E001") -> True

and the person-side document lists are merged per congress: re-indexing
congress 20 replaces only the congress-20 slice of the list.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Sequence

from . import keys
from .api_client import PaginationError, UpstreamError, UpstreamSource
from .config import IndexerSettings
from .keys import Role
from .kv import AtomicBatch, KvStore
from .models import IndexResult, SearchResult
from .normalize import (
    committee_code,
    committee_information,
    committee_membership,
    document_refs,
    document_title,
    full_name,
    name_code_for,
    normalize_membership,
    person_information,
    to_upstream,
)
from .run_log import JobState, RunLogger
from .schema import total_pages

LOGGER = logging.getLogger(__name__)

# Upstream ``author_type`` filter value per person-side role
AUTHOR_TYPES: dict[Role, str] = {
    Role.AUTHORS: "authorship",
    Role.CO_AUTHORS: "coauthorship",
}


def batched(items: Sequence, size: int) -> Iterator[Sequence]:
    """Split *items* into consecutive groups of at most *size*."""
    size = max(1, size)
    for start in range(0, len(items), size):
        yield items[start : start + size]


def merge_partition(existing: Iterable[dict], congress: int, replacement: list[dict]) -> list[dict]:
    """Replace the *congress* slice of a document list, keeping every other congress."""
    kept = [d for d in existing if d.get("congress") != congress]
    return kept + replacement


# ── Search pagination ────────────────────────────────────────────────────────


async def search_document_keys(
    upstream: UpstreamSource,
    congress: int,
    settings: IndexerSettings,
    **filters: str,
) -> SearchResult:
    """Walk the bill search for one canonical *congress*, deduplicating keys.

    The upstream search sometimes repeats its final page forever instead of
    answering with an empty one, so the loop ends on the first page that adds
    no new document key.  A walk longer than ``search_max_pages`` is treated
    as a structural failure.
    """
    result = SearchResult()
    seen: set[str] = set()
    page = 0
    while True:
        if page >= settings.search_max_pages:
            raise PaginationError(
                f"Bill search for congress {congress} exceeded "
                f"{settings.search_max_pages} pages ({filters})",
                path="/bills/search",
            )
        found = await upstream.fetch_bill_search(
            congress=to_upstream(congress),
            page=page,
            limit=settings.search_page_size,
            **filters,
        )
        result.pages += 1
        new_keys = []
        for row in found.rows:
            document_key = row.get("bill_no")
            if document_key and document_key not in seen:
                seen.add(document_key)
                new_keys.append(document_key)
        if not new_keys:
            break
        result.document_keys.extend(new_keys)
        page += 1
    return result


# ── Engine ───────────────────────────────────────────────────────────────────


class Indexer:
    """Bulk indexing operations over one open cache store.

    The store, the upstream source and the tunables are all injected; the
    caller owns their lifetimes.  An optional :class:`RunLogger` receives the
    job's state transitions.
    """

    def __init__(
        self,
        kv: KvStore,
        upstream: UpstreamSource,
        settings: IndexerSettings,
        *,
        run: RunLogger | None = None,
    ) -> None:
        self.kv = kv
        self.upstream = upstream
        self.settings = settings
        self.run = run

    def _state(self, state: JobState, detail: str | None = None) -> None:
        if self.run is not None:
            self.run.transition(state, detail=detail)

    # ── people ────────────────────────────────────────────────────────────

    async def index_membership(self, person_id: str | None = None) -> IndexResult:
        """Write every member's congress list plus a full-name pointer to it."""
        self._state(JobState.FETCHING, "member directory")
        members = await self.upstream.fetch_member_directory()
        if person_id is not None:
            members = [m for m in members if m.get("author_id") == person_id]

        result = IndexResult()
        for group in batched(members, self.settings.batch_size):
            result.batches += 1
            self._state(JobState.WRITING_BATCH, f"batch {result.batches}")
            batch = self.kv.atomic()
            for member in group:
                pid = member.get("author_id")
                if not pid:
                    LOGGER.warning("Skipping directory row without author_id: %r", member)
                    result.skipped += 1
                    continue
                primary = keys.person_membership(pid)
                batch.set(primary, normalize_membership(member.get("membership")))
                name = full_name(member)
                if name:
                    batch.set(keys.full_name_pointer(name), list(primary))
                result.indexed += 1
            await batch.commit()
        LOGGER.info(
            "Indexed membership for %d people in %d batch(es)", result.indexed, result.batches
        )
        return result

    async def index_information(
        self,
        person_id: str | None = None,
        *,
        with_documents: bool = False,
    ) -> IndexResult:
        """Write name records (and name-code pointers) for the full member list.

        With *with_documents*, each member's authored list is taken from the
        embedded principal-authored bills and the co-authored list is fetched
        from its own endpoint.  A failed co-author fetch is logged and leaves
        that list absent; it never aborts the page.
        """
        limit = self.settings.member_page_size
        result = IndexResult()
        page = 0
        while True:
            self._state(JobState.FETCHING, f"member list page {page}")
            found = await self.upstream.fetch_member_list(page=page, limit=limit)
            pages = total_pages(found.count, limit)
            if not found.rows and page < pages - 1:
                raise PaginationError(
                    f"Member list page {page} is empty but {pages} pages were reported",
                    path="/house-members/list",
                )

            members = found.rows
            if person_id is not None:
                members = [m for m in members if m.get("author_id") == person_id]

            if members:
                result.batches += 1
                self._state(JobState.WRITING_BATCH, f"page {page}")
                batch = self.kv.atomic()
                for member in members:
                    pid = member.get("author_id")
                    if not pid:
                        LOGGER.warning("Skipping member row without author_id (id=%s)", member.get("id"))
                        result.skipped += 1
                        continue
                    primary = keys.person_information(pid)
                    batch.set(primary, person_information(member))
                    code = name_code_for(member)
                    if code:
                        batch.set(keys.name_code_pointer(code), list(primary))
                    if with_documents:
                        await self._attach_documents(batch, pid, member)
                    result.indexed += 1
                await batch.commit()

            if page >= pages - 1:
                break
            page += 1

        LOGGER.info("Indexed information for %d people", result.indexed)
        return result

    async def _attach_documents(self, batch: AtomicBatch, person_id: str, member: dict) -> None:
        batch.set(
            keys.person_documents(person_id, Role.AUTHORS),
            document_refs(member.get("principal_authored_bills")),
        )
        try:
            coauthored = await self.upstream.fetch_coauthored_bills(person_id)
        except UpstreamError as e:
            LOGGER.warning("Co-authored bills unavailable for %s: %s", person_id, e)
            return
        batch.set(keys.person_documents(person_id, Role.CO_AUTHORS), document_refs(coauthored.rows))

    async def index_person_committees(self, person_id: str) -> IndexResult:
        """Replace one person's committee membership list."""
        self._state(JobState.FETCHING, f"committees of {person_id}")
        found = await self.upstream.fetch_committee_membership(person_id)
        memberships = []
        skipped = 0
        for row in found.rows:
            entry = committee_membership(row)
            if entry is None:
                LOGGER.warning(
                    "Skipping committee membership of %s: code=%r congress=%r",
                    person_id,
                    row.get("committee_code"),
                    row.get("congress"),
                )
                skipped += 1
                continue
            memberships.append(entry)
        self._state(JobState.WRITING_BATCH, person_id)
        await self.kv.set(keys.person_committees(person_id), memberships)
        return IndexResult(indexed=len(memberships), skipped=skipped, batches=1)

    # ── committees ────────────────────────────────────────────────────────

    async def index_committees(self) -> IndexResult:
        """Write one record per committee; rows without a code are skipped."""
        limit = self.settings.committee_page_size
        result = IndexResult()
        page = 0
        while True:
            self._state(JobState.FETCHING, f"committee list page {page}")
            found = await self.upstream.fetch_committee_list(page=page, limit=limit)
            pages = total_pages(found.count, limit)
            if not found.rows and page < pages - 1:
                raise PaginationError(
                    f"Committee list page {page} is empty but {pages} pages were reported",
                    path="/committee/list",
                )

            if found.rows:
                result.batches += 1
                self._state(JobState.WRITING_BATCH, f"page {page}")
                batch = self.kv.atomic()
                for row in found.rows:
                    code = committee_code(row)
                    if code is None:
                        LOGGER.warning(
                            "Skipping committee without code: id=%s name=%r",
                            row.get("id"),
                            row.get("name"),
                        )
                        result.skipped += 1
                        continue
                    batch.set(keys.committee_information(code), committee_information(row))
                    result.indexed += 1
                await batch.commit()

            if page >= pages - 1:
                break
            page += 1

        LOGGER.info("Indexed %d committees (%d skipped)", result.indexed, result.skipped)
        return result

    # ── relationships ─────────────────────────────────────────────────────

    async def index_person_documents(self, congress: int, person_id: str, role: Role) -> IndexResult:
        """Index one person's authored or co-authored documents for one congress."""
        if role not in AUTHOR_TYPES:
            raise ValueError(f"Not a person document role: {role}")
        self._state(JobState.FETCHING, f"{role.value} {person_id} congress {congress}")
        found = await search_document_keys(
            self.upstream,
            congress,
            self.settings,
            author_id=person_id,
            author_type=AUTHOR_TYPES[role],
        )

        list_key = keys.person_documents(person_id, role)
        existing = await self.kv.get(list_key) or []
        new_keys = set(found.document_keys)
        ttl = self.settings.ttl_for_congress(congress)

        self._state(JobState.WRITING_BATCH, f"{role.value} {person_id} congress {congress}")
        batch = self.kv.atomic()
        for document_key in found.document_keys:
            batch.set(keys.relationship(congress, document_key, role, person_id), True, ttl=ttl)
        # Edges this person no longer has in this congress
        for ref in existing:
            if ref.get("congress") == congress and ref.get("documentKey") not in new_keys:
                batch.delete(keys.relationship(congress, ref["documentKey"], role, person_id))
        replacement = [{"congress": congress, "documentKey": k} for k in found.document_keys]
        batch.set(list_key, merge_partition(existing, congress, replacement))
        await batch.commit()

        LOGGER.info(
            "Indexed %d %s documents for %s in congress %d (%d page(s))",
            len(found.document_keys),
            role.value,
            person_id,
            congress,
            found.pages,
        )
        return IndexResult(indexed=len(found.document_keys), batches=1)

    async def index_committee_documents(self, congress: int, code: str) -> IndexResult:
        """Index every document referred to committee *code* in one congress."""
        self._state(JobState.FETCHING, f"committee {code} congress {congress}")
        found = await search_document_keys(
            self.upstream, congress, self.settings, committee_id=code
        )
        ttl = self.settings.ttl_for_congress(congress)

        self._state(JobState.WRITING_BATCH, f"committee {code} congress {congress}")
        batch = self.kv.atomic()
        for document_key in found.document_keys:
            batch.set(keys.relationship(congress, document_key, Role.COMMITTEES, code), True, ttl=ttl)
        await batch.commit()

        LOGGER.info(
            "Indexed %d documents for committee %s in congress %d",
            len(found.document_keys),
            code,
            congress,
        )
        return IndexResult(indexed=len(found.document_keys), batches=1)

    # ── documents ─────────────────────────────────────────────────────────

    async def index_document_title(self, congress: int, document_key: str) -> IndexResult:
        """Cache the title triple of one document (not the full record)."""
        self._state(JobState.FETCHING, f"document {congress}/{document_key}")
        found = await self.upstream.fetch_bill_by_key(to_upstream(congress), document_key)
        bill = next((r for r in found.rows if r.get("bill_no") == document_key), None)
        if bill is None:
            LOGGER.warning("Document %s not found upstream in congress %d", document_key, congress)
            return IndexResult(skipped=1)
        self._state(JobState.WRITING_BATCH, f"document {congress}/{document_key}")
        await self.kv.set(keys.document_information(congress, document_key), document_title(bill))
        return IndexResult(indexed=1, batches=1)
