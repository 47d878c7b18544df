from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class UnitFailure:
    unit_id: str  # person id or committee code
    error: str
    attempts: int = 1

    def to_dict(self) -> dict:
        return {"id": self.unit_id, "error": self.error}


@dataclass
class IndexResult:
    """Outcome of a single (non-chunked) indexing operation."""

    indexed: int = 0
    skipped: int = 0
    batches: int = 0


@dataclass
class ChunkResult:
    """Outcome of one chunk of a chunked indexing operation.

    ``next_start_index`` is the cursor for the following call, or None once
    the population is exhausted (or a single targeted unit was processed).
    """

    indexed: int = 0
    processed: int = 0
    total: int = 0
    start_index: int = 0
    next_start_index: int | None = None
    failures: list[UnitFailure] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return self.processed - len(self.failures)

    def to_dict(self) -> dict:
        return {
            "indexed": self.indexed,
            "processed": self.processed,
            "total": self.total,
            "startIndex": self.start_index,
            "nextStartIndex": self.next_start_index,
            "failed": [f.to_dict() for f in self.failures],
        }


@dataclass
class SearchResult:
    """Document keys discovered by one deduplicated search pagination."""

    document_keys: list[str] = field(default_factory=list)
    pages: int = 0
