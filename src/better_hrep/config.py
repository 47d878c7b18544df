"""Centralized configuration for the Better HREP proxy.

All settings live here so they can be overridden by environment variables or a
``.env`` file without touching source code.

**Profile system:** Set ``HREP_PROFILE=dev`` (default) or ``HREP_PROFILE=prod``
to get sensible defaults for each environment.  Any individual variable still
overrides the profile value.

Usage::

    from better_hrep.config import BASE_API_URL, INDEXER_KEY

Engine tunables are also bundled into :class:`IndexerSettings` so the indexing
code receives them explicitly (tests build their own with tiny delays).
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

# Load .env from current working directory (project root when running uvicorn)
load_dotenv()

LOGGER = logging.getLogger(__name__)


class ConfigurationError(RuntimeError):
    """A required setting is missing; the process must not start."""


# ── Profile: one knob for the whole environment ──────────────────────────────
# "dev" = permissive local mode, "prod" = production-ready defaults.
# Individual vars always override the profile.

PROFILE: str = os.getenv("HREP_PROFILE", "dev").lower().strip()

_PROFILE_DEFAULTS: dict[str, dict[str, str]] = {
    "dev": {
        "HREP_CORS_ORIGINS": "*",
        "HREP_CHUNK_SIZE": "10",
        "HREP_RETRY_BASE_DELAY": "1",
    },
    "prod": {
        "HREP_CORS_ORIGINS": "",  # empty → must be explicitly set
        "HREP_CHUNK_SIZE": "10",
        "HREP_RETRY_BASE_DELAY": "5",
    },
}

if PROFILE not in _PROFILE_DEFAULTS:
    LOGGER.warning("Unknown HREP_PROFILE=%r, falling back to 'dev'.", PROFILE)
    PROFILE = "dev"

_defaults = _PROFILE_DEFAULTS[PROFILE]


def _env(key: str, fallback: str = "") -> str:
    """Read an env var, falling back to profile default then *fallback*."""
    return os.getenv(key, _defaults.get(key, fallback))


# ── Upstream API ─────────────────────────────────────────────────────────────
BASE_API_URL: str = _env("BASE_API_URL").strip().rstrip("/")
X_HREP_WEBSITE_BACKEND: str = _env("X_HREP_WEBSITE_BACKEND").strip()
UPSTREAM_TIMEOUT: float = float(_env("HREP_UPSTREAM_TIMEOUT", "30"))

# ── Cache store ──────────────────────────────────────────────────────────────
KV_PATH: Path = Path(_env("KV_PATH", "cache/hrep.sqlite3"))

# ── Security / network ──────────────────────────────────────────────────────
INDEXER_KEY: str = _env("INDEXER_KEY").strip()
CORS_ORIGINS: str = _env("HREP_CORS_ORIGINS").strip()

# ── Paging ───────────────────────────────────────────────────────────────────
MEMBER_PAGE_SIZE: int = int(_env("HREP_MEMBER_PAGE_SIZE", "100"))
COMMITTEE_PAGE_SIZE: int = int(_env("HREP_COMMITTEE_PAGE_SIZE", "100"))
SEARCH_PAGE_SIZE: int = int(_env("HREP_SEARCH_PAGE_SIZE", "999"))
SEARCH_MAX_PAGES: int = int(_env("HREP_SEARCH_MAX_PAGES", "200"))

# ── Batching, chunking, retry ────────────────────────────────────────────────
INDEX_BATCH_SIZE: int = int(_env("HREP_INDEX_BATCH_SIZE", "100"))
CHUNK_SIZE: int = int(_env("HREP_CHUNK_SIZE", "10"))
MAX_RETRIES: int = int(_env("HREP_MAX_RETRIES", "3"))
RETRY_BASE_DELAY: float = float(_env("HREP_RETRY_BASE_DELAY", "5"))

# ── Expiry policy ────────────────────────────────────────────────────────────
# Only the latest congress is re-crawled periodically, so only its inverted
# relationship entries expire. Older congresses are frozen.
LATEST_CONGRESS: int = int(_env("HREP_LATEST_CONGRESS", "20"))
LATEST_CONGRESS_TTL_DAYS: float = float(_env("HREP_LATEST_CONGRESS_TTL_DAYS", "5"))

# ── Incident tracker (failure reporter) ─────────────────────────────────────
GITHUB_TOKEN: str = _env("GITHUB_TOKEN").strip()
GITHUB_REPOSITORY: str = _env("GITHUB_REPOSITORY").strip()
GITHUB_API_URL: str = _env("GITHUB_API_URL", "https://api.github.com").rstrip("/")

# ── Production guard: warn if CORS is wide-open ─────────────────────────────
if PROFILE == "prod" and CORS_ORIGINS in ("*", ""):
    LOGGER.warning(
        "HREP_PROFILE=prod but HREP_CORS_ORIGINS=%r. "
        "Set it to your front-end origin(s) for security.",
        CORS_ORIGINS,
    )

_REQUIRED: dict[str, str] = {
    "BASE_API_URL": BASE_API_URL,
    "X_HREP_WEBSITE_BACKEND": X_HREP_WEBSITE_BACKEND,
    "INDEXER_KEY": INDEXER_KEY,
}


def validate_config() -> None:
    """Raise :class:`ConfigurationError` if any required setting is empty."""
    missing = [name for name, value in _REQUIRED.items() if not value]
    if missing:
        raise ConfigurationError(
            f"Missing required environment variable(s): {', '.join(missing)}"
        )


@dataclass(frozen=True)
class IndexerSettings:
    """Tunables for the indexing engine and chunk controller."""

    member_page_size: int = 100
    committee_page_size: int = 100
    search_page_size: int = 999
    search_max_pages: int = 200
    batch_size: int = 100
    chunk_size: int = 10
    max_retries: int = 3
    retry_base_delay: float = 5.0
    latest_congress: int = 20
    latest_congress_ttl_days: float = 5.0

    @classmethod
    def from_env(cls) -> IndexerSettings:
        return cls(
            member_page_size=MEMBER_PAGE_SIZE,
            committee_page_size=COMMITTEE_PAGE_SIZE,
            search_page_size=SEARCH_PAGE_SIZE,
            search_max_pages=SEARCH_MAX_PAGES,
            batch_size=INDEX_BATCH_SIZE,
            chunk_size=CHUNK_SIZE,
            max_retries=MAX_RETRIES,
            retry_base_delay=RETRY_BASE_DELAY,
            latest_congress=LATEST_CONGRESS,
            latest_congress_ttl_days=LATEST_CONGRESS_TTL_DAYS,
        )

    def ttl_for_congress(self, congress: int) -> float | None:
        """Seconds until an inverted entry for *congress* expires, or None."""
        if congress == self.latest_congress:
            return self.latest_congress_ttl_days * 86400
        return None
