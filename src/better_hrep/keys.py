"""Cache key path conventions shared by the indexers and the read resolver.

Primary records::

    ("people", "byPersonId", personId, "information")          -> name record
    ("people", "byPersonId", personId, "membership")           -> [congress, ...]
    ("people", "byPersonId", personId, "authoredDocuments")    -> [{congress, documentKey}]
    ("people", "byPersonId", personId, "coAuthoredDocuments")  -> [{congress, documentKey}]
    ("people", "byPersonId", personId, "committees")           -> [{congress, committeeId, ...}]
    ("committees", "byCommitteeId", code, "information")       -> committee record
    ("congresses", congress, documentKey, "information")       -> title triple

Secondary indexes store the primary key path as their value::

    ("people", "byPersonFullName", fullName, "membership")     -> membership key path
    ("people", "byNameCode", nameCode, "information")          -> information key path

Inverted relationship entries store ``True``; the key is the edge::

    ("congresses", congress, documentKey, role, personOrCommitteeId)
"""

from __future__ import annotations

from enum import Enum

KeyPath = tuple


class Role(str, Enum):
    """Relationship role segment of an inverted entry."""

    AUTHORS = "authors"
    CO_AUTHORS = "coAuthors"
    COMMITTEES = "committees"


# Person document list field per person-side role
DOCUMENT_FIELDS: dict[Role, str] = {
    Role.AUTHORS: "authoredDocuments",
    Role.CO_AUTHORS: "coAuthoredDocuments",
}

PEOPLE_BY_ID: KeyPath = ("people", "byPersonId")
PEOPLE_BY_FULL_NAME: KeyPath = ("people", "byPersonFullName")
PEOPLE_BY_NAME_CODE: KeyPath = ("people", "byNameCode")
COMMITTEES_BY_ID: KeyPath = ("committees", "byCommitteeId")
CONGRESSES: KeyPath = ("congresses",)


def person(person_id: str, field: str) -> KeyPath:
    return (*PEOPLE_BY_ID, person_id, field)


def person_information(person_id: str) -> KeyPath:
    return person(person_id, "information")


def person_membership(person_id: str) -> KeyPath:
    return person(person_id, "membership")


def person_documents(person_id: str, role: Role) -> KeyPath:
    return person(person_id, DOCUMENT_FIELDS[role])


def person_committees(person_id: str) -> KeyPath:
    return person(person_id, "committees")


def full_name_pointer(full_name: str) -> KeyPath:
    return (*PEOPLE_BY_FULL_NAME, full_name, "membership")


def name_code_pointer(name_code: str) -> KeyPath:
    return (*PEOPLE_BY_NAME_CODE, name_code, "information")


def committee_information(code: str) -> KeyPath:
    return (*COMMITTEES_BY_ID, code, "information")


def document_information(congress: int, document_key: str) -> KeyPath:
    return (*CONGRESSES, congress, document_key, "information")


def relationship(congress: int, document_key: str, role: Role, entity_id: str) -> KeyPath:
    return (*CONGRESSES, congress, document_key, role.value, entity_id)


def relationship_prefix(congress: int, document_key: str, role: Role) -> KeyPath:
    return (*CONGRESSES, congress, document_key, role.value)
