"""External incident reporting for indexing units that exhausted their retries.

Incidents are GitHub issues keyed by a unique label per work unit, so the same
unit failing on every scheduled run updates one issue instead of opening a
new one each time:

1. look up any issue (open or closed) carrying the label
2. found → comment, and reopen it if it was closed
3. not found → open a new issue with the label

Reporting is best-effort.  Every error is logged and swallowed; a broken
tracker must never fail the indexing job that called it.
"""

from __future__ import annotations

import logging
from typing import Protocol

import httpx

LOGGER = logging.getLogger(__name__)

# GitHub rejects labels longer than this.
MAX_LABEL_LENGTH = 50


class FailureReporter(Protocol):
    async def report(self, title: str, body: str, label: str) -> bool: ...


def unit_label(operation: str, unit_id: str, congress: int | None = None) -> str:
    """Unique, stable label for one work unit, e.g. ``index:committee-docs:20:0543``."""
    parts = ["index", operation]
    if congress is not None:
        parts.append(str(congress))
    parts.append(unit_id)
    return ":".join(parts)[:MAX_LABEL_LENGTH]


class LoggingReporter:
    """Reporter used when no incident tracker is configured."""

    async def report(self, title: str, body: str, label: str) -> bool:
        LOGGER.error("Indexing incident [%s] %s\n%s", label, title, body)
        return True


class GitHubIssueReporter:
    def __init__(
        self,
        repository: str,
        token: str,
        *,
        api_url: str = "https://api.github.com",
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.repository = repository
        self._client = httpx.AsyncClient(
            base_url=api_url,
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            },
            timeout=timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _find_issue(self, label: str) -> dict | None:
        response = await self._client.get(
            f"/repos/{self.repository}/issues",
            params={"labels": label, "state": "all", "per_page": 1},
        )
        response.raise_for_status()
        issues = response.json()
        return issues[0] if issues else None

    async def report(self, title: str, body: str, label: str) -> bool:
        try:
            issue = await self._find_issue(label)
            if issue is None:
                response = await self._client.post(
                    f"/repos/{self.repository}/issues",
                    json={"title": title, "body": body, "labels": [label]},
                )
                response.raise_for_status()
                LOGGER.info("Opened incident #%s for %s", response.json().get("number"), label)
                return True

            number = issue["number"]
            response = await self._client.post(
                f"/repos/{self.repository}/issues/{number}/comments",
                json={"body": body},
            )
            response.raise_for_status()
            if issue.get("state") == "closed":
                response = await self._client.patch(
                    f"/repos/{self.repository}/issues/{number}",
                    json={"state": "open"},
                )
                response.raise_for_status()
                LOGGER.info("Reopened incident #%s for %s", number, label)
            else:
                LOGGER.info("Updated incident #%s for %s", number, label)
            return True
        except (httpx.HTTPError, ValueError, KeyError) as e:
            LOGGER.error("Failed to report incident %s: %s", label, e)
            return False
