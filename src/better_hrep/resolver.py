"""Read-time resolution of people, documents and committees.

Reads stitch several cache entries together.  A missing entry means "not
indexed yet", never an error: the response simply has less in it.

Two paths touch the upstream API live:

- the document list for a congress, because the bill catalog is not mirrored
  into the cache (authors still come from the inverted cache entries)
- a person whose document lists were never indexed, which falls back to a
  live search over that person's own congresses.  The fallback result is
  returned but not written back.
"""

from __future__ import annotations

import logging
from collections import defaultdict

from . import keys
from .api_client import UpstreamError, UpstreamSource
from .config import IndexerSettings
from .indexer import AUTHOR_TYPES, search_document_keys
from .keys import Role
from .kv import KvStore
from .normalize import to_canonical, to_upstream
from .schema import (
    CommitteeInfo,
    DocumentInfo,
    Person,
    PersonSummary,
    page_envelope,
    paginate,
    person_sort_key,
)

LOGGER = logging.getLogger(__name__)

# Raw bill field listing people per role, used when no inverted entry exists
_BILL_AUTHOR_FIELDS: dict[Role, str] = {
    Role.AUTHORS: "authors",
    Role.CO_AUTHORS: "coauthors",
}


class Resolver:
    def __init__(self, kv: KvStore, upstream: UpstreamSource, settings: IndexerSettings) -> None:
        self.kv = kv
        self.upstream = upstream
        self.settings = settings

    # ── people ────────────────────────────────────────────────────────────

    async def person_summary(self, person_id: str) -> PersonSummary | None:
        information = await self.kv.get(keys.person_information(person_id))
        if information is None:
            return None
        membership = await self.kv.get(keys.person_membership(person_id))
        return PersonSummary.from_cache(person_id, information, membership)

    async def get_person(self, person_id: str) -> Person | None:
        information = await self.kv.get(keys.person_information(person_id))
        if information is None:
            return None
        membership = await self.kv.get(keys.person_membership(person_id)) or []
        documents: dict[Role, list[dict] | None] = {}
        for role in AUTHOR_TYPES:
            documents[role] = await self.kv.get(keys.person_documents(person_id, role))
        committees = await self.kv.get(keys.person_committees(person_id)) or []

        for role, cached in documents.items():
            if cached is None:
                documents[role] = await self.live_documents(person_id, role, membership)

        summary = PersonSummary.from_cache(person_id, information, membership)
        return Person(
            **vars(summary),
            authored_documents=documents[Role.AUTHORS] or [],
            co_authored_documents=documents[Role.CO_AUTHORS] or [],
            committees=committees,
        )

    async def live_documents(self, person_id: str, role: Role, membership: list[int]) -> list[dict]:
        """Search upstream for *role* documents, only in the person's congresses."""
        refs: list[dict] = []
        for congress in membership:
            try:
                found = await search_document_keys(
                    self.upstream,
                    congress,
                    self.settings,
                    author_id=person_id,
                    author_type=AUTHOR_TYPES[role],
                )
            except UpstreamError as e:
                LOGGER.warning(
                    "Live %s lookup failed for %s in congress %d: %s",
                    role.value,
                    person_id,
                    congress,
                    e,
                )
                continue
            refs.extend({"congress": congress, "documentKey": k} for k in found.document_keys)
        return refs

    async def _people_records(self) -> dict[str, dict]:
        records: dict[str, dict] = defaultdict(dict)
        async for entry in self.kv.scan(keys.PEOPLE_BY_ID):
            person_id, field = entry.key[2], entry.key[3]
            if field in ("information", "membership"):
                records[person_id][field] = entry.value
        return records

    async def list_people(self, page: int = 0, limit: int = 20, congress: int | None = None) -> dict:
        people = [
            PersonSummary.from_cache(pid, fields["information"], fields.get("membership"))
            for pid, fields in (await self._people_records()).items()
            if "information" in fields
        ]
        if congress is not None:
            people = [p for p in people if congress in p.congresses]
        people.sort(key=person_sort_key)
        envelope = paginate(people, page, limit)
        envelope["data"] = [p.to_dict() for p in envelope["data"]]
        return envelope

    async def lookup_by_full_name(self, name: str) -> Person | None:
        return await self._follow_pointer(keys.full_name_pointer(name))

    async def lookup_by_name_code(self, code: str) -> Person | None:
        return await self._follow_pointer(keys.name_code_pointer(code))

    async def _follow_pointer(self, pointer_key: tuple) -> Person | None:
        primary = await self.kv.get(pointer_key)
        if not primary or len(primary) < 3:
            return None
        return await self.get_person(primary[2])

    async def info_people(self) -> dict[str, list[str]]:
        """Congress number → sorted ids of people who sat in it."""
        by_congress: dict[int, set[str]] = defaultdict(set)
        async for entry in self.kv.scan(keys.PEOPLE_BY_ID):
            if entry.key[3] == "membership":
                for congress in entry.value or []:
                    by_congress[congress].add(entry.key[2])
        return {str(c): sorted(by_congress[c]) for c in sorted(by_congress, reverse=True)}

    async def cached_full_names(self) -> list[dict]:
        return [
            {"fullName": entry.key[2], "primaryKey": entry.value}
            async for entry in self.kv.scan(keys.PEOPLE_BY_FULL_NAME)
        ]

    async def cached_name_codes(self) -> list[dict]:
        return [
            {"nameCode": entry.key[2], "primaryKey": entry.value}
            async for entry in self.kv.scan(keys.PEOPLE_BY_NAME_CODE)
        ]

    # ── documents ─────────────────────────────────────────────────────────

    async def _resolve_role(self, congress: int, bill: dict, role: Role) -> list[PersonSummary]:
        """People holding *role* on a document, resolved from the cache.

        Ids come from the inverted entries; when none exist, the bill's own
        author rows are followed through the name-code index.  Ids that do not
        resolve to a cached person are dropped.
        """
        person_ids = [
            entry.key[4]
            async for entry in self.kv.scan(keys.relationship_prefix(congress, bill["bill_no"], role))
        ]
        if not person_ids:
            for author in bill.get(_BILL_AUTHOR_FIELDS[role]) or []:
                primary = await self.kv.get(keys.name_code_pointer(author.get("name_code") or ""))
                if primary and len(primary) >= 3:
                    person_ids.append(primary[2])

        people: list[PersonSummary] = []
        seen: set[str] = set()
        for pid in person_ids:
            if pid in seen:
                continue
            seen.add(pid)
            summary = await self.person_summary(pid)
            if summary is not None:
                people.append(summary)
        return people

    async def _document(self, congress: int, bill: dict) -> DocumentInfo:
        return DocumentInfo.from_bill(
            congress,
            bill,
            await self._resolve_role(congress, bill, Role.AUTHORS),
            await self._resolve_role(congress, bill, Role.CO_AUTHORS),
        )

    async def list_congress_documents(
        self, congress: int, page: int = 0, limit: int = 10, filter: str = ""
    ) -> dict:
        found = await self.upstream.fetch_bill_list(to_upstream(congress), page, limit, filter)
        documents = [
            (await self._document(congress, bill)).to_dict()
            for bill in found.rows
            if bill.get("bill_no")
        ]
        return page_envelope(documents, page, limit, found.count)

    async def get_document(self, congress: int, document_key: str) -> DocumentInfo | None:
        try:
            found = await self.upstream.fetch_bill_by_key(to_upstream(congress), document_key)
            bill = next((r for r in found.rows if r.get("bill_no") == document_key), None)
        except UpstreamError as e:
            LOGGER.warning("Live fetch of %s/%s failed: %s", congress, document_key, e)
            bill = None
        if bill is not None:
            return await self._document(congress, bill)

        title = await self.kv.get(keys.document_information(congress, document_key))
        if title is None:
            return None
        stub = {"bill_no": document_key}
        return DocumentInfo.from_title(
            congress,
            document_key,
            title,
            await self._resolve_role(congress, stub, Role.AUTHORS),
            await self._resolve_role(congress, stub, Role.CO_AUTHORS),
        )

    # ── committees ────────────────────────────────────────────────────────

    async def list_committees(self, page: int = 0, limit: int = 20) -> dict:
        committees = [
            CommitteeInfo.from_cache(entry.value)
            async for entry in self.kv.scan(keys.COMMITTEES_BY_ID)
            if entry.key[-1] == "information" and entry.value.get("code")
        ]
        committees.sort(key=lambda c: (c.name.lower(), c.committee_id))
        envelope = paginate(committees, page, limit)
        envelope["data"] = [c.to_dict() for c in envelope["data"]]
        return envelope

    async def get_committee(self, code: str) -> CommitteeInfo | None:
        record = await self.kv.get(keys.committee_information(code))
        if record is None:
            return None
        documents = [
            {"congress": entry.key[1], "documentKey": entry.key[2]}
            async for entry in self.kv.scan(keys.CONGRESSES)
            if len(entry.key) == 5
            and entry.key[3] == Role.COMMITTEES.value
            and entry.key[4] == code
        ]
        documents.sort(key=lambda d: (-d["congress"], d["documentKey"]))
        return CommitteeInfo.from_cache(record, documents)

    # ── congresses ────────────────────────────────────────────────────────

    async def list_congresses(self) -> list[dict]:
        """Upstream congress reference, "[All Congress]" dropped, newest first."""
        congresses = [
            {"id": to_canonical(int(row["id"])), "name": row.get("value", "")}
            for row in await self.upstream.fetch_congress_reference()
            if row.get("id")
        ]
        congresses.sort(key=lambda c: c["id"], reverse=True)
        return congresses
