"""
ShipLog — FastAPI Backend

Endpoints:
  POST  /v1/webhooks/github                 — GitHub release webhook
  POST  /v1/repos/{repo_id}/backfill        — Import recent releases
  GET   /v1/releases/{release_id}           — Release, notes and outcomes
  PATCH /v1/releases/{release_id}/notes     — Manual notes edit
  POST  /v1/releases/{release_id}/regenerate — Regenerate notes
  POST  /v1/releases/{release_id}/publish   — Re-distribute stored notes
  GET   /v1/auth/github/login               — Start GitHub OAuth
  GET   /v1/auth/github/callback            — Finish GitHub OAuth
  GET   /health                             — Health check
"""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Awaitable, TypeVar
from urllib.parse import urlencode

import httpx
from fastapi import APIRouter, FastAPI, Header, HTTPException, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncEngine

from shiplog.core.config import AppConfig, missing_credentials, settings
from shiplog.db.session import create_all, create_engine, create_session_factory
from shiplog.db.store import ReleaseStore
from shiplog.db.tables import ReleaseRecord
from shiplog.distribution.distributor import Distributor
from shiplog.errors import InvalidOAuthStateError, ShipLogError
from shiplog.generation.generator import GeminiProvider, NoteGenerator
from shiplog.github.aggregator import DiffAggregator
from shiplog.github.client import GitHubClient, exchange_oauth_code
from shiplog.models.notes import Audience
from shiplog.pipeline.orchestrator import ReleaseOrchestrator
from shiplog.security.credentials import CredentialCipher
from shiplog.security.state_store import OAuthStateStore
from shiplog.utils.logging import logger

VERSION = "1.0.0"
OAUTH_SCOPE = "repo read:user user:email"

T = TypeVar("T")


@dataclass
class Services:
    """Everything the endpoints need, built once per application."""
    settings: AppConfig
    store: ReleaseStore
    cipher: CredentialCipher
    orchestrator: ReleaseOrchestrator
    state_store: OAuthStateStore
    http_transport: httpx.AsyncBaseTransport | None = None
    engine: AsyncEngine | None = None


async def build_services(cfg: AppConfig) -> Services:
    engine = create_engine(cfg.database_url, echo=cfg.debug)
    await create_all(engine)
    store = ReleaseStore(create_session_factory(engine))
    cipher = CredentialCipher(cfg.secret_key)

    orchestrator = ReleaseOrchestrator(
        store=store,
        cipher=cipher,
        aggregator=DiffAggregator(
            base_url=cfg.github.api_base_url,
            timeout=cfg.http_timeout,
            page_size=cfg.github.release_page_size,
            max_pull_requests=cfg.github.max_pull_requests,
        ),
        generator=NoteGenerator(
            GeminiProvider(cfg.generation.api_key),
            model=cfg.generation.model,
            temperature=cfg.generation.temperature,
        ),
        distributor=Distributor(http_timeout=cfg.http_timeout, email_config=cfg.email),
        webhook_secret=cfg.github.webhook_secret,
    )
    return Services(
        settings=cfg,
        store=store,
        cipher=cipher,
        orchestrator=orchestrator,
        state_store=OAuthStateStore(ttl_seconds=cfg.oauth_state_ttl),
        engine=engine,
    )


def _startup_banner(cfg: AppConfig) -> None:
    logger.info("")
    logger.info("╔══════════════════════════════════════════════════╗")
    logger.info("║           ShipLog  ·  Release API v1            ║")
    logger.info("╠══════════════════════════════════════════════════╣")
    logger.info("║  POST /v1/webhooks/github  → Release webhook    ║")
    logger.info("║  POST /v1/repos/:id/backfill → Import releases  ║")
    logger.info("║  GET  /v1/releases/:id     → Release details    ║")
    logger.info("║  POST /v1/releases/:id/*   → Regenerate/publish ║")
    logger.info("║  GET  /health              → Health check       ║")
    logger.info("╠══════════════════════════════════════════════════╣")
    logger.info("║  GitHub API  : %-33s║", cfg.github.api_base_url)
    logger.info("║  Model       : %-33s║", cfg.generation.model)
    missing = missing_credentials(cfg)
    if missing:
        logger.info("║  Credentials : ⚠ incomplete                     ║")
    else:
        logger.info("║  Credentials : ✓ loaded                         ║")
    logger.info("╚══════════════════════════════════════════════════╝")
    for name in missing:
        logger.warning("  %s is not set; related features will fail", name)
    logger.info("")


@asynccontextmanager
async def lifespan(app: FastAPI):
    owned = getattr(app.state, "services", None) is None
    if owned:
        app.state.services = await build_services(settings)
    services: Services = app.state.services

    _startup_banner(services.settings)
    services.state_store.start()
    try:
        yield
    finally:
        await services.state_store.stop()
        if owned and services.engine is not None:
            await services.engine.dispose()


# ──────────────────────────────────────────────────────────
# Request models
# ──────────────────────────────────────────────────────────

class BackfillRequest(BaseModel):
    limit: int = Field(default=10, ge=1, le=50, description="Newest releases to import")


class RegenerateRequest(BaseModel):
    force: bool = Field(default=False, description="Overwrite manually edited notes too")


class NotesEditRequest(BaseModel):
    customer: str | None = Field(default=None, min_length=1)
    developer: str | None = Field(default=None, min_length=1)
    stakeholder: str | None = Field(default=None, min_length=1)

    def edits(self) -> dict[Audience, str]:
        values = {
            Audience.CUSTOMER: self.customer,
            Audience.DEVELOPER: self.developer,
            Audience.STAKEHOLDER: self.stakeholder,
        }
        return {audience: text for audience, text in values.items() if text is not None}


# ──────────────────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────────────────

def _services(request: Request) -> Services:
    return request.app.state.services


async def _run(request_id: str, label: str, work: Awaitable[T]) -> T:
    """Await ``work`` and map failures onto HTTP errors."""
    try:
        return await work
    except ShipLogError as exc:
        logger.warning("[%s] %s — %s: %s", request_id, label, exc.code, exc.message)
        raise HTTPException(status_code=exc.status_code, detail=exc.to_dict())
    except Exception as exc:
        logger.exception("[%s] %s failed", request_id, label)
        raise HTTPException(status_code=500, detail=str(exc))


def _release_view(record: ReleaseRecord) -> dict[str, Any]:
    notes = None
    if record.notes is not None:
        notes = {
            "customer": record.notes.customer,
            "developer": record.notes.developer,
            "stakeholder": record.notes.stakeholder,
            "customer_edited": record.notes.customer_edited,
            "developer_edited": record.notes.developer_edited,
            "stakeholder_edited": record.notes.stakeholder_edited,
            "tokens_used": record.notes.tokens_used,
            "model": record.notes.model,
        }
    return {
        "id": record.id,
        "repo": record.repo.full_name,
        "tag_name": record.tag_name,
        "name": record.name,
        "html_url": record.html_url,
        "status": record.status,
        "error_message": record.error_message,
        "published_at": record.published_at.isoformat() if record.published_at else None,
        "notes": notes,
        "distributions": [
            {
                "audience": d.audience,
                "channel_kind": d.channel_kind,
                "destination": d.destination,
                "success": d.success,
                "error_detail": d.error_detail,
                "response_code": d.response_code,
            }
            for d in record.distributions
        ],
    }


# ──────────────────────────────────────────────────────────
# Endpoints
# ──────────────────────────────────────────────────────────

router = APIRouter()


@router.get("/health")
async def health():
    return {"status": "ok", "service": "shiplog-api", "version": VERSION}


@router.post("/v1/webhooks/github")
async def github_webhook(
    request: Request,
    x_hub_signature_256: str | None = Header(default=None),
    x_github_event: str | None = Header(default=None),
):
    """
    Receive a GitHub delivery. Only ``release``/``published`` events are
    processed; everything else is acknowledged as ignored.
    """
    request_id = uuid.uuid4().hex[:12]
    raw_body = await request.body()
    logger.info("[%s] POST /v1/webhooks/github — event=%s, %d bytes", request_id, x_github_event, len(raw_body))

    services = _services(request)
    return await _run(
        request_id,
        "webhook",
        services.orchestrator.handle_webhook(raw_body, x_hub_signature_256, x_github_event),
    )


@router.post("/v1/repos/{repo_id}/backfill")
async def backfill_releases(repo_id: str, request: Request, req: BackfillRequest | None = None):
    request_id = uuid.uuid4().hex[:12]
    limit = req.limit if req else 10
    logger.info("[%s] POST /v1/repos/%s/backfill — limit=%d", request_id, repo_id, limit)

    services = _services(request)
    result = await _run(request_id, "backfill", services.orchestrator.backfill(repo_id, limit))
    return result.model_dump(mode="json")


@router.get("/v1/releases/{release_id}")
async def get_release(release_id: str, request: Request):
    request_id = uuid.uuid4().hex[:12]
    services = _services(request)
    record = await _run(request_id, "get release", services.store.get_release(release_id))
    return _release_view(record)


@router.patch("/v1/releases/{release_id}/notes")
async def edit_release_notes(release_id: str, req: NotesEditRequest, request: Request):
    request_id = uuid.uuid4().hex[:12]
    edits = req.edits()
    if not edits:
        raise HTTPException(status_code=422, detail="Provide at least one of customer, developer, stakeholder")
    logger.info("[%s] PATCH /v1/releases/%s/notes — %s", request_id, release_id,
                ", ".join(a.value.lower() for a in edits))

    services = _services(request)
    await _run(request_id, "edit notes", services.orchestrator.edit_notes(release_id, edits))
    record = await _run(request_id, "get release", services.store.get_release(release_id))
    return _release_view(record)


@router.post("/v1/releases/{release_id}/regenerate")
async def regenerate_release(release_id: str, request: Request, req: RegenerateRequest | None = None):
    request_id = uuid.uuid4().hex[:12]
    force = req.force if req else False
    logger.info("[%s] POST /v1/releases/%s/regenerate — force=%s", request_id, release_id, force)

    services = _services(request)
    result = await _run(request_id, "regenerate", services.orchestrator.regenerate(release_id, force))
    return result.model_dump(mode="json")


@router.post("/v1/releases/{release_id}/publish")
async def publish_release(release_id: str, request: Request):
    request_id = uuid.uuid4().hex[:12]
    logger.info("[%s] POST /v1/releases/%s/publish", request_id, release_id)

    services = _services(request)
    result = await _run(request_id, "publish", services.orchestrator.publish(release_id))
    return result.model_dump(mode="json")


@router.get("/v1/auth/github/login")
async def github_login(request: Request):
    services = _services(request)
    github = services.settings.github
    state = services.state_store.issue()
    params = {"client_id": github.client_id, "scope": OAUTH_SCOPE, "state": state}
    if github.oauth_redirect_url:
        params["redirect_uri"] = github.oauth_redirect_url
    return {"authorize_url": f"{github.oauth_authorize_url}?{urlencode(params)}", "state": state}


@router.get("/v1/auth/github/callback")
async def github_callback(request: Request, code: str | None = None, state: str | None = None):
    """
    Finish the OAuth handshake: the state must be one this process issued
    and not yet used. Returns the GitHub login and the sealed token.
    """
    request_id = uuid.uuid4().hex[:12]
    services = _services(request)
    cfg = services.settings

    async def complete() -> dict[str, Any]:
        if not services.state_store.consume(state) or not code:
            raise InvalidOAuthStateError()
        token = await exchange_oauth_code(
            cfg.github.oauth_token_url,
            cfg.github.client_id,
            cfg.github.client_secret,
            code,
            redirect_uri=cfg.github.oauth_redirect_url,
            timeout=cfg.http_timeout,
            transport=services.http_transport,
        )
        client = GitHubClient(
            token, base_url=cfg.github.api_base_url, timeout=cfg.http_timeout, transport=services.http_transport,
        )
        user = await client.get_authenticated_user()
        return {
            "login": user["login"],
            "github_id": user["id"],
            "access_token": services.cipher.encrypt(token),
        }

    return await _run(request_id, "oauth callback", complete())


def create_app(services: Services | None = None) -> FastAPI:
    """
    Build the application. Passing ``services`` skips building the default
    database and provider stack in the lifespan.
    """
    application = FastAPI(
        title="ShipLog API",
        description=(
            "Turns GitHub releases into customer, developer and stakeholder "
            "release notes and delivers them to chat, email and the hosted changelog."
        ),
        version=VERSION,
        lifespan=lifespan,
    )
    if services is not None:
        application.state.services = services
    application.include_router(router)
    return application


app = create_app()
