"""REST surface of the proxy.

Run with::

    uvicorn better_hrep.main:app --reload
"""

from __future__ import annotations

import hmac
import logging
import sys
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import Depends, FastAPI, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from . import config, jobs
from .api_client import HrepClient, UpstreamError, UpstreamSource
from .config import IndexerSettings, validate_config
from .indexer import Indexer
from .kv import KvStore, open_kv
from .reporting import FailureReporter, GitHubIssueReporter, LoggingReporter
from .resolver import Resolver
from .run_log import RunLogger, get_log_path, latest_by_task

# ── Configure logging ────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s:     %(message)s",
    stream=sys.stderr,
    force=True,
)
LOGGER = logging.getLogger(__name__)

UNAUTHORIZED = {"error": "Unauthorized - Invalid indexer key"}


# ── Request bodies ───────────────────────────────────────────────────────────


class IndexRequest(BaseModel):
    key: str


class PeopleIndexRequest(IndexRequest):
    personId: str | None = None
    withDocuments: bool = False


class ChunkRequest(IndexRequest):
    startIndex: int = Field(0, ge=0)
    chunkSize: int | None = Field(None, ge=1)


class PeopleChunkRequest(ChunkRequest):
    personId: str | None = None


class PeopleDocumentsRequest(PeopleChunkRequest):
    congress: int


class CommitteeDocumentsRequest(ChunkRequest):
    congress: int
    committeeId: str | None = None


class DocumentIndexRequest(IndexRequest):
    congress: int
    documentKey: str


# ── Dependencies ─────────────────────────────────────────────────────────────


async def get_kv(request: Request) -> AsyncIterator[KvStore]:
    """One cache store connection per request, released on every exit path."""
    async with open_kv(request.app.state.kv_path) as kv:
        yield kv


async def get_resolver(request: Request, kv: KvStore = Depends(get_kv)) -> Resolver:
    return Resolver(kv, request.app.state.upstream, request.app.state.settings)


def _not_found(message: str) -> JSONResponse:
    return JSONResponse(status_code=404, content={"error": message})


# ── App factory ──────────────────────────────────────────────────────────────


def create_app(
    *,
    upstream: UpstreamSource | None = None,
    reporter: FailureReporter | None = None,
    settings: IndexerSettings | None = None,
    kv_path: Path | str | None = None,
    indexer_key: str | None = None,
    run_log_path: Path | None = None,
    cors_origins: str | None = None,
) -> FastAPI:
    """Build the API.  Anything not passed in comes from :mod:`better_hrep.config`."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        validate_config()
        owned: list = []
        if app.state.upstream is None:
            app.state.upstream = HrepClient(
                config.BASE_API_URL,
                config.X_HREP_WEBSITE_BACKEND,
                timeout=config.UPSTREAM_TIMEOUT,
            )
            owned.append(app.state.upstream)
        if reporter is None and config.GITHUB_TOKEN and config.GITHUB_REPOSITORY:
            app.state.reporter = GitHubIssueReporter(
                config.GITHUB_REPOSITORY, config.GITHUB_TOKEN, api_url=config.GITHUB_API_URL
            )
            owned.append(app.state.reporter)
            LOGGER.info("Reporting indexing failures to %s", config.GITHUB_REPOSITORY)
        LOGGER.info("Cache store: %s", app.state.kv_path)
        try:
            yield
        finally:
            for client in owned:
                await client.aclose()

    app = FastAPI(title="Better HREP", lifespan=lifespan)
    app.state.upstream = upstream
    app.state.reporter = reporter or LoggingReporter()
    app.state.settings = settings or IndexerSettings.from_env()
    app.state.kv_path = Path(kv_path) if kv_path is not None else config.KV_PATH
    app.state.indexer_key = indexer_key if indexer_key is not None else config.INDEXER_KEY
    app.state.run_log_path = run_log_path or get_log_path()

    # ── CORS middleware ──────────────────────────────────────────────────
    origins = cors_origins if cors_origins is not None else config.CORS_ORIGINS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in origins.split(",") if o.strip()],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Request logging middleware ───────────────────────────────────────
    @app.middleware("http")
    async def _request_logging_middleware(request: Request, call_next) -> Response:  # type: ignore[no-untyped-def]
        """Log every request with method, path, and response time."""
        t0 = time.perf_counter()
        response: Response = await call_next(request)
        elapsed_ms = (time.perf_counter() - t0) * 1000
        LOGGER.info(
            "%s %s %d (%.1fms)",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
        )
        return response

    @app.exception_handler(UpstreamError)
    async def _upstream_error(_request: Request, exc: UpstreamError) -> JSONResponse:
        LOGGER.error("Upstream failure on %s: %s", exc.path or "?", exc)
        return JSONResponse(status_code=502, content={"error": str(exc)})

    # ── Indexing ─────────────────────────────────────────────────────────

    def _authorized(body: IndexRequest) -> bool:
        expected = app.state.indexer_key
        return bool(expected) and hmac.compare_digest(body.key.encode(), expected.encode())

    async def _run_index(
        task: str,
        body: IndexRequest,
        job: Callable[[Indexer], Awaitable[dict]],
    ) -> JSONResponse:
        run = RunLogger(task, log_path=app.state.run_log_path)
        if not _authorized(body):
            LOGGER.warning("Rejected %s: invalid indexer key", task)
            run.unauthorized()
            return JSONResponse(status_code=401, content=UNAUTHORIZED)
        try:
            with run:
                async with open_kv(app.state.kv_path) as kv:
                    indexer = Indexer(kv, app.state.upstream, app.state.settings, run=run)
                    payload = await job(indexer)
                run.meta.update({k: v for k, v in payload.items() if isinstance(v, int)})
        except Exception as e:
            LOGGER.exception("Indexing task %s failed", task)
            return JSONResponse(status_code=500, content={"error": str(e) or type(e).__name__})
        return JSONResponse(status_code=200, content=payload)

    @app.post("/index/people/membership")
    async def index_people_membership(body: PeopleIndexRequest) -> JSONResponse:
        async def job(indexer: Indexer) -> dict:
            result = await indexer.index_membership(body.personId)
            return {
                "message": f"Successfully indexed membership data for {result.indexed} people",
                "indexed": result.indexed,
                "batches": result.batches,
            }

        return await _run_index("index_people_membership", body, job)

    @app.post("/index/people/information")
    async def index_people_information(body: PeopleIndexRequest) -> JSONResponse:
        async def job(indexer: Indexer) -> dict:
            result = await indexer.index_information(
                body.personId, with_documents=body.withDocuments
            )
            return {
                "message": f"Successfully indexed information data for {result.indexed} people",
                "indexed": result.indexed,
                "skipped": result.skipped,
            }

        return await _run_index("index_people_information", body, job)

    @app.post("/index/committees/information")
    async def index_committees_information(body: IndexRequest) -> JSONResponse:
        async def job(indexer: Indexer) -> dict:
            result = await indexer.index_committees()
            return {
                "message": f"Successfully indexed {result.indexed} committees",
                "indexed": result.indexed,
                "skipped": result.skipped,
            }

        return await _run_index("index_committees_information", body, job)

    @app.post("/index/people/documents")
    async def index_people_documents(body: PeopleDocumentsRequest) -> JSONResponse:
        async def job(indexer: Indexer) -> dict:
            chunk = await jobs.index_people_documents(
                indexer,
                app.state.reporter,
                congress=body.congress,
                person_id=body.personId,
                start_index=body.startIndex,
                chunk_size=body.chunkSize,
            )
            return {
                "message": (
                    f"Indexed documents for {chunk.succeeded} of {chunk.processed} people "
                    f"in congress {body.congress}"
                ),
                **chunk.to_dict(),
            }

        return await _run_index("index_people_documents", body, job)

    @app.post("/index/people/committees")
    async def index_people_committees(body: PeopleChunkRequest) -> JSONResponse:
        async def job(indexer: Indexer) -> dict:
            chunk = await jobs.index_people_committees(
                indexer,
                app.state.reporter,
                person_id=body.personId,
                start_index=body.startIndex,
                chunk_size=body.chunkSize,
            )
            return {
                "message": (
                    f"Indexed committee memberships for {chunk.succeeded} "
                    f"of {chunk.processed} people"
                ),
                **chunk.to_dict(),
            }

        return await _run_index("index_people_committees", body, job)

    @app.post("/index/committees/documents")
    async def index_committees_documents(body: CommitteeDocumentsRequest) -> JSONResponse:
        async def job(indexer: Indexer) -> dict:
            chunk = await jobs.index_committees_documents(
                indexer,
                app.state.reporter,
                congress=body.congress,
                committee_id=body.committeeId,
                start_index=body.startIndex,
                chunk_size=body.chunkSize,
            )
            return {
                "message": (
                    f"Indexed documents for {chunk.succeeded} of {chunk.processed} committees "
                    f"in congress {body.congress}"
                ),
                **chunk.to_dict(),
            }

        return await _run_index("index_committees_documents", body, job)

    @app.post("/index/documents/information")
    async def index_document_information(body: DocumentIndexRequest) -> JSONResponse:
        async def job(indexer: Indexer) -> dict:
            result = await indexer.index_document_title(body.congress, body.documentKey)
            return {
                "message": (
                    f"Indexed title of {body.documentKey}"
                    if result.indexed
                    else f"Document {body.documentKey} not found upstream"
                ),
                "indexed": result.indexed,
            }

        return await _run_index("index_document_information", body, job)

    # ── Secondary index listings ─────────────────────────────────────────

    @app.post("/cached/people/byFullName")
    async def cached_by_full_name(body: IndexRequest) -> JSONResponse:
        if not _authorized(body):
            return JSONResponse(status_code=401, content=UNAUTHORIZED)
        async with open_kv(app.state.kv_path) as kv:
            entries = await Resolver(kv, app.state.upstream, app.state.settings).cached_full_names()
        return JSONResponse(content={"total": len(entries), "entries": entries})

    @app.post("/cached/people/byNameCode")
    async def cached_by_name_code(body: IndexRequest) -> JSONResponse:
        if not _authorized(body):
            return JSONResponse(status_code=401, content=UNAUTHORIZED)
        async with open_kv(app.state.kv_path) as kv:
            entries = await Resolver(kv, app.state.upstream, app.state.settings).cached_name_codes()
        return JSONResponse(content={"total": len(entries), "entries": entries})

    # ── Health endpoint ──────────────────────────────────────────────────

    @app.get("/health")
    async def health() -> dict:
        """Service health with the latest run of every indexing task."""
        return {
            "status": "ok",
            "upstreamConfigured": app.state.upstream is not None,
            "runs": latest_by_task(log_path=app.state.run_log_path),
        }

    # ── Reads ────────────────────────────────────────────────────────────

    @app.get("/congresses")
    async def list_congresses(resolver: Resolver = Depends(get_resolver)) -> list[dict]:
        return await resolver.list_congresses()

    @app.get("/congresses/{congress}/documents")
    async def list_congress_documents(
        congress: int,
        page: int = Query(0, ge=0),
        limit: int = Query(10, ge=1, le=100),
        filter: str = "",
        resolver: Resolver = Depends(get_resolver),
    ) -> dict:
        return await resolver.list_congress_documents(congress, page, limit, filter)

    @app.get("/congresses/{congress}/documents/{document_key}", response_model=None)
    async def get_document(
        congress: int,
        document_key: str,
        resolver: Resolver = Depends(get_resolver),
    ) -> dict | JSONResponse:
        document = await resolver.get_document(congress, document_key)
        if document is None:
            return _not_found(f"Document {document_key} not found in congress {congress}")
        return document.to_dict()

    @app.get("/people")
    async def list_people(
        page: int = Query(0, ge=0),
        limit: int = Query(20, ge=0, le=500),
        congress: int | None = None,
        resolver: Resolver = Depends(get_resolver),
    ) -> dict:
        return await resolver.list_people(page, limit, congress)

    @app.get("/people/lookup", response_model=None)
    async def lookup_person(
        full_name: str | None = Query(None, alias="fullName"),
        name_code: str | None = Query(None, alias="nameCode"),
        resolver: Resolver = Depends(get_resolver),
    ) -> dict | JSONResponse:
        if full_name:
            person = await resolver.lookup_by_full_name(full_name)
        elif name_code:
            person = await resolver.lookup_by_name_code(name_code)
        else:
            return JSONResponse(
                status_code=400, content={"error": "Provide fullName or nameCode"}
            )
        if person is None:
            return _not_found("Person not found")
        return person.to_dict()

    @app.get("/people/{person_id}", response_model=None)
    async def get_person(
        person_id: str, resolver: Resolver = Depends(get_resolver)
    ) -> dict | JSONResponse:
        person = await resolver.get_person(person_id)
        if person is None:
            return _not_found(f"Person {person_id} not found")
        return person.to_dict()

    @app.get("/committees")
    async def list_committees(
        page: int = Query(0, ge=0),
        limit: int = Query(20, ge=0, le=500),
        resolver: Resolver = Depends(get_resolver),
    ) -> dict:
        return await resolver.list_committees(page, limit)

    @app.get("/committees/{committee_id}", response_model=None)
    async def get_committee(
        committee_id: str, resolver: Resolver = Depends(get_resolver)
    ) -> dict | JSONResponse:
        committee = await resolver.get_committee(committee_id)
        if committee is None:
            return _not_found(f"Committee {committee_id} not found")
        return committee.to_dict()

    @app.get("/info/people")
    async def info_people(resolver: Resolver = Depends(get_resolver)) -> dict:
        return await resolver.info_people()

    return app


app = create_app()
