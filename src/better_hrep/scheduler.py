"""External scheduler that walks a chunked index endpoint to the end.

Each call to a chunked endpoint processes one slice of the population and
answers with ``nextStartIndex``.  :class:`ChunkWalker` keeps calling until that
cursor is ``null``, so a cron job can index every person or committee through
many short requests::

    walker = ChunkWalker("https://hrep.example.org", INDEXER_KEY)
    summary = walker.walk("/index/committees/documents", {"congress": 20})

A walk can be resumed from a saved cursor with ``start_index``.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

LOGGER = logging.getLogger(__name__)


class ChunkWalkError(RuntimeError):
    """The endpoint rejected a chunk; ``start_index`` is where to resume."""

    def __init__(self, message: str, *, start_index: int, status_code: int | None = None):
        super().__init__(message)
        self.start_index = start_index
        self.status_code = status_code


@dataclass
class WalkSummary:
    chunks: int = 0
    indexed: int = 0
    processed: int = 0
    total: int = 0
    failed: list[dict] = field(default_factory=list)


def _build_session() -> requests.Session:
    session = requests.Session()
    # Index endpoints are idempotent, so POST is safe to retry.
    retry = Retry(
        total=3,
        backoff_factor=1.0,
        status_forcelist=[429, 502, 503, 504],
        allowed_methods=frozenset({"GET", "POST"}),
    )
    adapter = HTTPAdapter(max_retries=retry, pool_connections=2, pool_maxsize=2)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


class ChunkWalker:
    def __init__(
        self,
        base_url: str,
        indexer_key: str,
        *,
        chunk_size: int | None = None,
        request_delay: float = 0.0,
        timeout: float = 600.0,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.indexer_key = indexer_key
        self.chunk_size = chunk_size
        self.request_delay = request_delay
        self.timeout = timeout
        self._session = session or _build_session()

    def post_chunk(self, path: str, params: dict, start_index: int) -> dict:
        body = {**params, "key": self.indexer_key, "startIndex": start_index}
        if self.chunk_size is not None:
            body["chunkSize"] = self.chunk_size
        try:
            response = self._session.post(
                f"{self.base_url}{path}", json=body, timeout=self.timeout
            )
        except requests.RequestException as e:
            raise ChunkWalkError(f"POST {path} failed: {e}", start_index=start_index) from e
        if not response.ok:
            try:
                message = response.json().get("error", response.reason)
            except ValueError:
                message = response.reason
            raise ChunkWalkError(
                f"POST {path} returned {response.status_code}: {message}",
                start_index=start_index,
                status_code=response.status_code,
            )
        return response.json()

    def walk(self, path: str, params: dict | None = None, *, start_index: int = 0) -> WalkSummary:
        """Call *path* chunk after chunk until the population is exhausted."""
        summary = WalkSummary()
        cursor: int | None = start_index
        while cursor is not None:
            if summary.chunks and self.request_delay:
                time.sleep(self.request_delay)
            result = self.post_chunk(path, params or {}, cursor)
            summary.chunks += 1
            summary.indexed += result.get("indexed", 0)
            summary.processed += result.get("processed", 0)
            summary.total = result.get("total", summary.total)
            summary.failed.extend(result.get("failed", []))
            LOGGER.info(
                "%s chunk %d: start=%d processed=%d indexed=%d failed=%d",
                path,
                summary.chunks,
                cursor,
                result.get("processed", 0),
                result.get("indexed", 0),
                len(result.get("failed", [])),
            )
            next_cursor = result.get("nextStartIndex")
            if next_cursor is not None and next_cursor <= cursor:
                raise ChunkWalkError(
                    f"{path} did not advance its cursor ({cursor} -> {next_cursor})",
                    start_index=cursor,
                )
            cursor = next_cursor
        LOGGER.info(
            "%s done: %d chunk(s), %d indexed, %d failed",
            path,
            summary.chunks,
            summary.indexed,
            len(summary.failed),
        )
        return summary
