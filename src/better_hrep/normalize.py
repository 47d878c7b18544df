"""Shared data normalization utilities.

Centralizes identifier and record normalization so the indexers, the read
resolver and the HTTP layer all agree on one canonical form.

**Congress normalization:**
    The upstream API numbers most congresses correctly, but a few sessions
    carry an unrelated id.  ``to_canonical`` maps upstream ids to the real
    congress number and ``to_upstream`` maps back:

    - ``103`` → ``20`` (20th Congress)
    - everything else passes through unchanged

**Record normalization:**
    Upstream rows use snake_case with inconsistent nulls.  The helpers below
    turn them into the camelCase shapes stored in the cache.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

LOGGER = logging.getLogger(__name__)

# Upstream congress id → canonical congress number
_CONGRESS_ID_MAP: dict[int, int] = {
    103: 20,
}

_CANONICAL_TO_UPSTREAM: dict[int, int] = {v: k for k, v in _CONGRESS_ID_MAP.items()}


def to_canonical(api_id: int) -> int:
    """Convert an upstream congress id to the canonical congress number.

    Examples::

        >>> to_canonical(103)
        20
        >>> to_canonical(19)
        19
    """
    return _CONGRESS_ID_MAP.get(api_id, api_id)


def to_upstream(congress: int) -> int:
    """Convert a canonical congress number to the id the upstream API expects.

    Examples::

        >>> to_upstream(20)
        103
        >>> to_upstream(19)
        19
    """
    return _CANONICAL_TO_UPSTREAM.get(congress, congress)


def normalize_membership(api_ids: Iterable[int] | None) -> list[int]:
    """Normalize a list of upstream congress ids, preserving order."""
    if not api_ids:
        return []
    return [to_canonical(int(api_id)) for api_id in api_ids]


# ── Names ────────────────────────────────────────────────────────────────────


def _clean(value: str | None) -> str:
    return value.strip() if isinstance(value, str) else ""


def person_information(member: dict) -> dict:
    """Build the cached name-information record from a member list row."""
    suffix = _clean(member.get("suffix"))
    return {
        "id": member.get("id"),
        "lastName": _clean(member.get("last_name")),
        "firstName": _clean(member.get("first_name")),
        "middleName": _clean(member.get("middle_name")),
        "suffix": suffix or None,
        "nickName": _clean(member.get("nick_name")),
    }


def full_name(member: dict) -> str:
    """Return the upstream display name (``fullname``) with whitespace collapsed."""
    return " ".join(_clean(member.get("fullname")).split())


def name_code_for(member: dict) -> str | None:
    """Find the member's name code from their principal-authored bill rows.

    The member list has no name-code column; only the embedded bill rows
    carry one.  Rows authored by someone else are ignored.
    """
    author_id = member.get("author_id")
    for bill in member.get("principal_authored_bills") or []:
        code = _clean(bill.get("name_code"))
        if code and bill.get("author") in (None, author_id):
            return code
    return None


# ── Documents & committees ───────────────────────────────────────────────────


def parse_congress(value: object) -> int | None:
    """Canonical congress number from an upstream value, or None when unusable.

    Examples::

        >>> parse_congress("103")
        20
        >>> parse_congress("N/A") is None
        True
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        return to_canonical(int(value))
    except (TypeError, ValueError):
        return None


def document_ref(bill: dict) -> dict | None:
    """``{congress, documentKey}`` reference for a raw bill row, or None."""
    congress = parse_congress(bill.get("congress"))
    if congress is None or not bill.get("bill_no"):
        return None
    return {"congress": congress, "documentKey": bill["bill_no"]}


def document_refs(bills: Iterable[dict] | None) -> list[dict]:
    """Deduplicated document references, first occurrence wins.

    Rows without a bill number or a parseable congress are skipped.
    """
    seen: set[tuple[int, str]] = set()
    refs: list[dict] = []
    for bill in bills or []:
        ref = document_ref(bill)
        if ref is None:
            LOGGER.warning(
                "Skipping bill row %r: congress=%r", bill.get("bill_no"), bill.get("congress")
            )
            continue
        key = (ref["congress"], ref["documentKey"])
        if key not in seen:
            seen.add(key)
            refs.append(ref)
    return refs


def committee_code(row: dict) -> str | None:
    """Return a usable committee code, or None when the row cannot be keyed."""
    code = _clean(row.get("code"))
    return code or None


def committee_information(row: dict) -> dict:
    """Build the cached committee record from a committee list row."""
    return {
        "id": row.get("id"),
        "code": committee_code(row),
        "name": _clean(row.get("name")),
        "phone": row.get("phone"),
        "jurisdiction": row.get("jurisdiction"),
        "location": row.get("location"),
        "typeDesc": _clean(row.get("type_desc")),
    }


def committee_membership(row: dict) -> dict | None:
    """Build one entry of a person's cached committee list.

    Returns None for rows that cannot be keyed (no committee code, or a
    congress that does not parse).
    """
    congress = parse_congress(row.get("congress"))
    code = _clean(row.get("committee_code"))
    if congress is None or not code:
        return None
    return {
        "congress": congress,
        "committeeId": code,
        "name": _clean(row.get("name")),
        "position": _clean(row.get("title")),
        "journalNo": _clean(row.get("journal_no")),
    }


def document_title(bill: dict) -> dict:
    """The title/short-title/filing-date triple cached per document."""
    return {
        "titleFull": _clean(bill.get("title_full")),
        "titleShort": _clean(bill.get("title_short")),
        "dateFiled": bill.get("date_filed"),
    }
