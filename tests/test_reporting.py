"""Tests for the GitHub-issue failure reporter (no network: httpx.MockTransport)."""

from __future__ import annotations

import asyncio
import json

import httpx

from better_hrep.reporting import GitHubIssueReporter, LoggingReporter, unit_label


class _FakeGitHub:
    def __init__(self, issues: list[dict] | None = None, fail_on: str | None = None) -> None:
        self.issues = issues or []
        self.fail_on = fail_on
        self.requests: list[tuple[str, str, dict | None]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        self.requests.append((request.method, request.url.path, body))
        if self.fail_on and self.fail_on == request.method:
            return httpx.Response(500, json={"message": "boom"})
        if request.method == "GET":
            label = request.url.params["labels"]
            assert request.url.params["state"] == "all"
            matches = [i for i in self.issues if label in i["labels"]]
            return httpx.Response(200, json=matches)
        if request.method == "POST" and request.url.path.endswith("/issues"):
            return httpx.Response(201, json={"number": 42})
        return httpx.Response(200, json={})


def _report(fake: _FakeGitHub) -> bool:
    async def scenario() -> bool:
        reporter = GitHubIssueReporter(
            "acme/hrep", "t0ken", transport=httpx.MockTransport(fake)
        )
        try:
            return await reporter.report("Indexing failed", "details", "index:people-documents:20:P3")
        finally:
            await reporter.aclose()

    return asyncio.run(scenario())


class TestUnitLabel:
    def test_with_congress(self) -> None:
        assert unit_label("committee-documents", "0543", 20) == "index:committee-documents:20:0543"

    def test_without_congress(self) -> None:
        assert unit_label("people-committees", "E001") == "index:people-committees:E001"

    def test_truncated_to_github_limit(self) -> None:
        assert len(unit_label("x" * 80, "E001")) == 50


class TestGitHubIssueReporter:
    def test_creates_issue_when_none_exists(self) -> None:
        fake = _FakeGitHub()
        assert _report(fake) is True
        methods = [(m, p) for m, p, _ in fake.requests]
        assert methods == [
            ("GET", "/repos/acme/hrep/issues"),
            ("POST", "/repos/acme/hrep/issues"),
        ]
        assert fake.requests[1][2]["labels"] == ["index:people-documents:20:P3"]

    def test_comments_on_open_issue(self) -> None:
        fake = _FakeGitHub([{"number": 7, "state": "open", "labels": "index:people-documents:20:P3"}])
        assert _report(fake) is True
        methods = [(m, p) for m, p, _ in fake.requests]
        assert methods == [
            ("GET", "/repos/acme/hrep/issues"),
            ("POST", "/repos/acme/hrep/issues/7/comments"),
        ]

    def test_reopens_closed_issue(self) -> None:
        fake = _FakeGitHub([{"number": 7, "state": "closed", "labels": "index:people-documents:20:P3"}])
        assert _report(fake) is True
        assert fake.requests[-1] == ("PATCH", "/repos/acme/hrep/issues/7", {"state": "open"})

    def test_errors_are_swallowed(self) -> None:
        fake = _FakeGitHub(fail_on="GET")
        assert _report(fake) is False
        assert len(fake.requests) == 1

    def test_sends_token(self) -> None:
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.headers["Authorization"])
            return httpx.Response(200, json=[]) if request.method == "GET" else httpx.Response(
                201, json={"number": 1}
            )

        async def scenario() -> None:
            reporter = GitHubIssueReporter("a/b", "t0ken", transport=httpx.MockTransport(handler))
            await reporter.report("t", "b", "l")
            await reporter.aclose()

        asyncio.run(scenario())
        assert seen and all(h == "Bearer t0ken" for h in seen)


class TestLoggingReporter:
    def test_logs_incident(self, caplog) -> None:
        caplog.set_level("ERROR")
        assert asyncio.run(LoggingReporter().report("Failed", "body", "index:x:1")) is True
        assert "index:x:1" in caplog.text
