"""Response shapes returned by the REST API.

Each type is built from cache records (camelCase dicts) or raw upstream rows
with a ``from_*`` classmethod and serialized with ``to_dict``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field


# ── Pagination ────────────────────────────────────────────────────────────────


def total_pages(total: int, limit: int) -> int:
    if limit <= 0:
        return 1 if total else 0
    return math.ceil(total / limit)


def paginate(items: list, page: int, limit: int) -> dict:
    """Slice *items* for a 0-indexed *page* and build the paginated envelope.

    When *limit* is 0 the full list is returned (no cap).
    """
    total = len(items)
    if limit > 0:
        start = page * limit
        data = items[start : start + limit]
    else:
        data = list(items)
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "totalPages": total_pages(total, limit),
        "data": data,
    }


def page_envelope(data: list, page: int, limit: int, total: int) -> dict:
    """Envelope for data already paged upstream."""
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "totalPages": total_pages(total, limit),
        "data": data,
    }


# ── People ────────────────────────────────────────────────────────────────────


@dataclass
class PersonSummary:
    """A person as embedded in document author lists."""

    person_id: str
    id: int | None
    last_name: str
    first_name: str
    middle_name: str
    suffix: str | None
    nick_name: str
    congresses: list[int] = field(default_factory=list)

    @classmethod
    def from_cache(
        cls, person_id: str, information: dict, membership: list[int] | None
    ) -> PersonSummary:
        return cls(
            person_id=person_id,
            id=information.get("id"),
            last_name=information.get("lastName", ""),
            first_name=information.get("firstName", ""),
            middle_name=information.get("middleName", ""),
            suffix=information.get("suffix"),
            nick_name=information.get("nickName", ""),
            congresses=list(membership or []),
        )

    def to_dict(self) -> dict:
        return {
            "personId": self.person_id,
            "id": self.id,
            "lastName": self.last_name,
            "firstName": self.first_name,
            "middleName": self.middle_name,
            "suffix": self.suffix,
            "nickName": self.nick_name,
            "congresses": self.congresses,
        }


@dataclass
class Person(PersonSummary):
    authored_documents: list[dict] = field(default_factory=list)
    co_authored_documents: list[dict] = field(default_factory=list)
    committees: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["authoredDocuments"] = self.authored_documents
        d["coAuthoredDocuments"] = self.co_authored_documents
        d["committees"] = self.committees
        return d


def person_sort_key(p: PersonSummary) -> tuple[str, str, str]:
    return (p.last_name.lower(), p.first_name.lower(), p.person_id)


# ── Documents ─────────────────────────────────────────────────────────────────


@dataclass
class DocumentInfo:
    id: int | None
    congress: int
    document_key: str
    session_number: str | None = None
    title_full: str = ""
    title_short: str = ""
    abstract: str = ""
    date_filed: str | None = None
    status: str | None = None
    download_url: str | None = None
    bill_type: str | None = None
    significance: str | None = None
    authors: list[PersonSummary] = field(default_factory=list)
    co_authors: list[PersonSummary] = field(default_factory=list)

    @classmethod
    def from_bill(
        cls,
        congress: int,
        bill: dict,
        authors: list[PersonSummary],
        co_authors: list[PersonSummary],
    ) -> DocumentInfo:
        return cls(
            id=bill.get("id"),
            congress=congress,
            document_key=bill["bill_no"],
            session_number=bill.get("session_no"),
            title_full=bill.get("title_full") or "",
            title_short=bill.get("title_short") or "",
            abstract=bill.get("abstract") or "",
            date_filed=bill.get("date_filed"),
            status=bill.get("status"),
            download_url=bill.get("text_as_filed"),
            bill_type=bill.get("bill_type"),
            significance=bill.get("significance_desc"),
            authors=authors,
            co_authors=co_authors,
        )

    @classmethod
    def from_title(
        cls,
        congress: int,
        document_key: str,
        title: dict,
        authors: list[PersonSummary],
        co_authors: list[PersonSummary],
    ) -> DocumentInfo:
        """Minimal document built from the cached title triple."""
        return cls(
            id=None,
            congress=congress,
            document_key=document_key,
            title_full=title.get("titleFull", ""),
            title_short=title.get("titleShort", ""),
            date_filed=title.get("dateFiled"),
            authors=authors,
            co_authors=co_authors,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "congress": self.congress,
            "documentKey": self.document_key,
            "sessionNumber": self.session_number,
            "titleFull": self.title_full,
            "titleShort": self.title_short,
            "abstract": self.abstract,
            "dateFiled": self.date_filed,
            "status": self.status,
            "downloadUrl": self.download_url,
            "billType": self.bill_type,
            "significance": self.significance,
            "authors": [a.to_dict() for a in self.authors],
            "coAuthors": [a.to_dict() for a in self.co_authors],
        }


# ── Committees ────────────────────────────────────────────────────────────────


@dataclass
class CommitteeInfo:
    id: int | None
    committee_id: str
    name: str
    phone: str | None = None
    jurisdiction: str | None = None
    location: str | None = None
    type: str = ""
    documents: list[dict] | None = None

    @classmethod
    def from_cache(cls, record: dict, documents: list[dict] | None = None) -> CommitteeInfo:
        return cls(
            id=record.get("id"),
            committee_id=record["code"],
            name=record.get("name", ""),
            phone=record.get("phone"),
            jurisdiction=record.get("jurisdiction"),
            location=record.get("location"),
            type=record.get("typeDesc", ""),
            documents=documents,
        )

    def to_dict(self) -> dict:
        d = {
            "id": self.id,
            "committeeId": self.committee_id,
            "name": self.name,
            "phone": self.phone,
            "jurisdiction": self.jurisdiction,
            "location": self.location,
            "type": self.type,
        }
        if self.documents is not None:
            d["documents"] = self.documents
        return d
