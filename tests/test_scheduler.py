from __future__ import annotations

import pytest
import requests_mock

from better_hrep.scheduler import ChunkWalker, ChunkWalkError

BASE = "https://hrep.example.test"
PATH = "/index/committees/documents"


def _chunk(start: int, nxt: int | None, *, processed: int = 2, failed: list | None = None) -> dict:
    return {
        "json": {
            "message": "ok",
            "indexed": processed * 10,
            "processed": processed,
            "total": 5,
            "startIndex": start,
            "nextStartIndex": nxt,
            "failed": failed or [],
        }
    }


class TestChunkWalker:
    def test_follows_cursor_until_exhausted(self) -> None:
        walker = ChunkWalker(BASE, "k3y", chunk_size=2)
        with requests_mock.Mocker() as m:
            m.post(
                f"{BASE}{PATH}",
                [
                    _chunk(0, 2),
                    _chunk(2, 4, failed=[{"id": "0100", "error": "502"}]),
                    _chunk(4, None, processed=1),
                ],
            )
            summary = walker.walk(PATH, {"congress": 20})

            bodies = [r.json() for r in m.request_history]
        assert [b["startIndex"] for b in bodies] == [0, 2, 4]
        assert all(b["key"] == "k3y" and b["congress"] == 20 for b in bodies)
        assert all(b["chunkSize"] == 2 for b in bodies)
        assert summary.chunks == 3
        assert summary.processed == 5
        assert summary.indexed == 50
        assert summary.failed == [{"id": "0100", "error": "502"}]

    def test_resume_from_cursor(self) -> None:
        walker = ChunkWalker(BASE, "k3y")
        with requests_mock.Mocker() as m:
            m.post(f"{BASE}{PATH}", [_chunk(4, None, processed=1)])
            summary = walker.walk(PATH, {"congress": 20}, start_index=4)
            assert m.request_history[0].json()["startIndex"] == 4
            assert "chunkSize" not in m.request_history[0].json()
        assert summary.chunks == 1

    def test_error_reports_resume_point(self) -> None:
        walker = ChunkWalker(BASE, "k3y")
        with requests_mock.Mocker() as m:
            m.post(
                f"{BASE}{PATH}",
                [_chunk(0, 2), {"status_code": 500, "json": {"error": "upstream down"}}],
            )
            with pytest.raises(ChunkWalkError) as exc_info:
                walker.walk(PATH, {"congress": 20})
        assert exc_info.value.start_index == 2
        assert exc_info.value.status_code == 500
        assert "upstream down" in str(exc_info.value)

    def test_unauthorized(self) -> None:
        walker = ChunkWalker(BASE, "wrong")
        with requests_mock.Mocker() as m:
            m.post(
                f"{BASE}{PATH}",
                status_code=401,
                json={"error": "Unauthorized - Invalid indexer key"},
            )
            with pytest.raises(ChunkWalkError) as exc_info:
                walker.walk(PATH)
        assert exc_info.value.status_code == 401

    def test_stuck_cursor(self) -> None:
        walker = ChunkWalker(BASE, "k3y")
        with requests_mock.Mocker() as m:
            m.post(f"{BASE}{PATH}", [_chunk(0, 0)])
            with pytest.raises(ChunkWalkError):
                walker.walk(PATH)
