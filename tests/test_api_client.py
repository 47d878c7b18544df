from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from better_hrep.api_client import HrepClient, UpstreamError


def _client(handler) -> HrepClient:
    return HrepClient("https://api.example.test", "secret", transport=httpx.MockTransport(handler))


def _run(handler, call):
    async def scenario():
        async with _client(handler) as client:
            return await call(client)

    return asyncio.run(scenario())


def _ok(data) -> httpx.Response:
    return httpx.Response(200, json={"status": 200, "success": True, "data": data})


class TestEnvelope:
    def test_unwraps_paginated_data(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return _ok({"count": 3, "rows": [{"author_id": "E001"}]})

        page = _run(handler, lambda c: c.fetch_member_list(page=1, limit=1))
        assert page.count == 3
        assert page.rows == [{"author_id": "E001"}]
        assert seen[0].headers["X-Hrep-Website-Backend"] == "secret"
        assert seen[0].url.path == "/house-members/list"
        assert json.loads(seen[0].content) == {"page": 1, "limit": 1, "filter": ""}

    def test_plain_list_endpoint(self) -> None:
        page = _run(
            lambda r: _ok([{"id": 103, "value": "20th Congress"}]),
            lambda c: c.fetch_congress_reference(),
        )
        assert page == [{"id": 103, "value": "20th Congress"}]

    def test_success_false_raises(self) -> None:
        with pytest.raises(UpstreamError):
            _run(
                lambda r: httpx.Response(200, json={"status": 400, "success": False}),
                lambda c: c.fetch_member_directory(),
            )

    def test_http_error_carries_status(self) -> None:
        with pytest.raises(UpstreamError) as exc_info:
            _run(lambda r: httpx.Response(503), lambda c: c.fetch_committee_list())
        assert exc_info.value.status_code == 503
        assert exc_info.value.path == "/committee/list"

    def test_invalid_json_raises(self) -> None:
        with pytest.raises(UpstreamError):
            _run(lambda r: httpx.Response(200, text="<html>"), lambda c: c.fetch_committee_list())

    def test_transport_error_is_wrapped(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(UpstreamError):
            _run(handler, lambda c: c.fetch_member_directory())


class TestBillSearch:
    def test_search_body(self) -> None:
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return _ok({"count": 0, "rows": []})

        _run(
            handler,
            lambda c: c.fetch_bill_search(congress=103, page=2, committee_id="0543"),
        )
        body = bodies[0]
        assert body["congress"] == 103
        assert body["page"] == 2
        assert body["committee_id"] == "0543"
        assert body["author_type"] == "Both"

    def test_fetch_by_key_uses_bills_field(self) -> None:
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return _ok({"count": 1, "rows": [{"bill_no": "HB1"}]})

        page = _run(handler, lambda c: c.fetch_bill_by_key(103, "HB1"))
        assert page.rows[0]["bill_no"] == "HB1"
        assert bodies[0]["field"] == "Bills"
        assert bodies[0]["numbers"] == "HB1"
