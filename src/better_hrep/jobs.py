"""Chunked, resumable drivers for per-person and per-committee indexing.

A driver fetches the population (people or committees), takes one chunk of it
and runs the per-unit work under :func:`with_retry`.  The returned
:class:`ChunkResult` carries ``next_start_index`` so an external scheduler can
walk the whole population over many short invocations::

    result = await index_people_documents(indexer, reporter, congress=20, start_index=0)
    while result.next_start_index is not None:
        result = await index_people_documents(
            indexer, reporter, congress=20, start_index=result.next_start_index
        )

Unit failures never escape the chunk: they are collected, and each exhausted
unit is reported once after the whole chunk has run.  A failure fetching the
population, or a :class:`PaginationError` from a unit, propagates and aborts
the job; failures collected before it are still reported.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from .api_client import PaginationError, UpstreamSource
from .indexer import Indexer
from .keys import Role
from .models import ChunkResult, IndexResult, UnitFailure
from .normalize import committee_code, normalize_membership
from .reporting import FailureReporter, unit_label
from .retry import with_retry
from .schema import total_pages

LOGGER = logging.getLogger(__name__)

UnitWork = Callable[[str], Awaitable[IndexResult]]
Sleep = Callable[[float], Awaitable[Any]]


# ── Populations ──────────────────────────────────────────────────────────────


async def people_population(upstream: UpstreamSource, congress: int | None = None) -> list[str]:
    """Person ids from the member directory, optionally only members of *congress*."""
    ids: list[str] = []
    seen: set[str] = set()
    for member in await upstream.fetch_member_directory():
        pid = member.get("author_id")
        if not pid or pid in seen:
            continue
        if congress is not None and congress not in normalize_membership(member.get("membership")):
            continue
        seen.add(pid)
        ids.append(pid)
    return ids


async def committee_population(upstream: UpstreamSource, page_size: int = 100) -> list[str]:
    """Every committee code from the paginated committee list."""
    codes: list[str] = []
    seen: set[str] = set()
    page = 0
    while True:
        found = await upstream.fetch_committee_list(page=page, limit=page_size)
        for row in found.rows:
            code = committee_code(row)
            if code and code not in seen:
                seen.add(code)
                codes.append(code)
        if not found.rows or page >= total_pages(found.count, page_size) - 1:
            break
        page += 1
    return codes


# ── Chunk driver ─────────────────────────────────────────────────────────────


def select_chunk(
    population: list[str], start_index: int, chunk_size: int
) -> tuple[list[str], int | None]:
    """Slice ``[start_index, start_index + chunk_size)`` and compute the next cursor."""
    start = max(0, start_index)
    end = start + max(1, chunk_size)
    next_start = end if end < len(population) else None
    return population[start:end], next_start


async def run_chunk(
    operation: str,
    work: UnitWork,
    *,
    population: Callable[[], Awaitable[list[str]]],
    reporter: FailureReporter,
    max_retries: int,
    base_delay: float,
    chunk_size: int,
    unit_id: str | None = None,
    start_index: int = 0,
    congress: int | None = None,
    sleep: Sleep = asyncio.sleep,
) -> ChunkResult:
    """Run *work* for one chunk of the population (or one targeted unit)."""
    if unit_id is not None:
        selected, next_start, total, start = [unit_id], None, 1, 0
    else:
        units = await population()
        selected, next_start = select_chunk(units, start_index, chunk_size)
        total, start = len(units), start_index

    result = ChunkResult(total=total, start_index=start, next_start_index=next_start)
    try:
        for uid in selected:
            failure = await _run_unit(
                operation,
                work,
                uid,
                result,
                max_retries=max_retries,
                base_delay=base_delay,
                sleep=sleep,
            )
            result.processed += 1
            if failure is not None:
                result.failures.append(failure)
    finally:
        LOGGER.info(
            "%s: processed %d of %d from %d (%d failed), next=%s",
            operation,
            result.processed,
            result.total,
            result.start_index,
            len(result.failures),
            result.next_start_index,
        )
        await report_failures(reporter, operation, result.failures, congress=congress)
    return result


async def _run_unit(
    operation: str,
    work: UnitWork,
    uid: str,
    result: ChunkResult,
    *,
    max_retries: int,
    base_delay: float,
    sleep: Sleep,
) -> UnitFailure | None:
    """Run one unit; any non-structural error becomes a :class:`UnitFailure`."""
    try:
        outcome = await with_retry(
            functools.partial(work, uid),
            max_retries=max_retries,
            base_delay=base_delay,
            label=f"{operation} {uid}",
            sleep=sleep,
        )
    except PaginationError:
        raise
    except Exception as e:
        LOGGER.exception("%s %s failed", operation, uid)
        return UnitFailure(uid, f"{type(e).__name__}: {e}")
    if not outcome.success:
        return UnitFailure(uid, str(outcome.error), attempts=outcome.attempts)
    result.indexed += outcome.value.indexed
    return None


async def report_failures(
    reporter: FailureReporter,
    operation: str,
    failures: list[UnitFailure],
    *,
    congress: int | None = None,
) -> None:
    for failure in failures:
        scope = f" in congress {congress}" if congress is not None else ""
        title = f"Indexing failed: {operation} {failure.unit_id}{scope}"
        body = (
            f"`{operation}` for `{failure.unit_id}`{scope} failed after "
            f"{failure.attempts} attempt(s).\n\n```\n{failure.error}\n```"
        )
        await reporter.report(title, body, unit_label(operation, failure.unit_id, congress))


# ── Jobs ─────────────────────────────────────────────────────────────────────


def _chunk_kwargs(indexer: Indexer, chunk_size: int | None, sleep: Sleep) -> dict:
    settings = indexer.settings
    return {
        "max_retries": settings.max_retries,
        "base_delay": settings.retry_base_delay,
        "chunk_size": chunk_size if chunk_size is not None else settings.chunk_size,
        "sleep": sleep,
    }


async def index_people_documents(
    indexer: Indexer,
    reporter: FailureReporter,
    *,
    congress: int,
    person_id: str | None = None,
    start_index: int = 0,
    chunk_size: int | None = None,
    sleep: Sleep = asyncio.sleep,
) -> ChunkResult:
    """Authored and co-authored documents of each member of *congress*."""

    async def work(pid: str) -> IndexResult:
        authored = await indexer.index_person_documents(congress, pid, Role.AUTHORS)
        coauthored = await indexer.index_person_documents(congress, pid, Role.CO_AUTHORS)
        return IndexResult(
            indexed=authored.indexed + coauthored.indexed,
            batches=authored.batches + coauthored.batches,
        )

    result = await run_chunk(
        "people-documents",
        work,
        population=lambda: people_population(indexer.upstream, congress),
        reporter=reporter,
        unit_id=person_id,
        start_index=start_index,
        congress=congress,
        **_chunk_kwargs(indexer, chunk_size, sleep),
    )
    await _purge_after_last_chunk(indexer, result, person_id)
    return result


async def index_people_committees(
    indexer: Indexer,
    reporter: FailureReporter,
    *,
    person_id: str | None = None,
    start_index: int = 0,
    chunk_size: int | None = None,
    sleep: Sleep = asyncio.sleep,
) -> ChunkResult:
    """Committee memberships of every person in the directory."""
    return await run_chunk(
        "people-committees",
        indexer.index_person_committees,
        population=lambda: people_population(indexer.upstream),
        reporter=reporter,
        unit_id=person_id,
        start_index=start_index,
        **_chunk_kwargs(indexer, chunk_size, sleep),
    )


async def index_committees_documents(
    indexer: Indexer,
    reporter: FailureReporter,
    *,
    congress: int,
    committee_id: str | None = None,
    start_index: int = 0,
    chunk_size: int | None = None,
    sleep: Sleep = asyncio.sleep,
) -> ChunkResult:
    """Documents referred to each committee in *congress*."""
    result = await run_chunk(
        "committee-documents",
        functools.partial(_committee_documents, indexer, congress),
        population=lambda: committee_population(
            indexer.upstream, indexer.settings.committee_page_size
        ),
        reporter=reporter,
        unit_id=committee_id,
        start_index=start_index,
        congress=congress,
        **_chunk_kwargs(indexer, chunk_size, sleep),
    )
    await _purge_after_last_chunk(indexer, result, committee_id)
    return result


async def _committee_documents(indexer: Indexer, congress: int, code: str) -> IndexResult:
    return await indexer.index_committee_documents(congress, code)


async def _purge_after_last_chunk(
    indexer: Indexer, result: ChunkResult, unit_id: str | None
) -> None:
    """Drop expired relationship entries once a full walk reaches its end."""
    if unit_id is None and result.next_start_index is None:
        await indexer.kv.purge_expired()
