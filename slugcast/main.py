"""
slugcast — FastAPI application.

Admin routes (/admin, /generate, /delete-video) are gated by the admin
token. File routes hand out the registered source through the relay:
/download/ wants the download token in the query string, /play/ and
/stream/ want the session cookie issued by /auth/.

Slug captures use the path convertor, so a slug may contain "/".
"""
from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Optional
from urllib.parse import quote, urlencode

import httpx
import redis.asyncio as aioredis
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import HTMLResponse, PlainTextResponse, RedirectResponse
from fastapi.templating import Jinja2Templates
from pydantic import ValidationError as PydanticValidationError

from slugcast.auth import PLAYBACK_KINDS, SESSION_COOKIE, AuthGate
from slugcast.config import Settings, configure_logging, load_settings, warn_insecure_defaults
from slugcast.errors import SlugcastError, ValidationError
from slugcast.models import FetchTitleRequest, FetchTitleResponse, GenerateRequest, GenerateResponse, LinkEntry
from slugcast.redis_client import LinkRegistry, close_redis, init_redis
from slugcast.relay import build_http_client, relay
from slugcast.titles import guess_title

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).parent / "templates"

templates = Jinja2Templates(directory=str(TEMPLATES_DIR))

RedisFactory = Callable[[str], Awaitable[aioredis.Redis]]
HttpClientFactory = Callable[[Settings], httpx.AsyncClient]


@dataclass
class AppContext:
    """Process-wide handles, built in the lifespan and shared by all requests."""

    settings: Settings
    gate: AuthGate
    registry: LinkRegistry
    http: httpx.AsyncClient


def _default_http_client(settings: Settings) -> httpx.AsyncClient:
    return build_http_client(settings.upstream_connect_timeout, settings.upstream_read_timeout)


def get_ctx(request: Request) -> AppContext:
    return request.app.state.ctx


def _origin(request: Request) -> str:
    return str(request.base_url).rstrip("/")


def _str_or_none(value) -> Optional[str]:
    return value if isinstance(value, str) else None


def build_link(origin: str, slug: str, link_type: str, settings: Settings) -> str:
    path = f"{origin}/{link_type}/{quote(slug)}"
    if link_type == "download":
        return f"{path}?{urlencode({'token': settings.download_token})}"
    return path


def _admin_url(token: str, **extra: str) -> str:
    return "/admin?" + urlencode({"token": token, **extra})


def create_app(
    settings: Optional[Settings] = None,
    redis_factory: Optional[RedisFactory] = None,
    http_client_factory: Optional[HttpClientFactory] = None,
) -> FastAPI:
    settings = settings or load_settings()
    redis_factory = redis_factory or init_redis
    http_client_factory = http_client_factory or _default_http_client

    # -----------------------------------------------------------------------
    # Lifespan
    # -----------------------------------------------------------------------

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.log_level)
        warn_insecure_defaults(settings)
        redis = await redis_factory(settings.redis_url)
        http = http_client_factory(settings)
        app.state.ctx = AppContext(
            settings=settings,
            gate=AuthGate(settings),
            registry=LinkRegistry(redis, settings.links_namespace),
            http=http,
        )
        logger.info("slugcast started (namespace=%s)", settings.links_namespace)
        try:
            yield
        finally:
            await http.aclose()
            await close_redis(redis)

    app = FastAPI(title="slugcast", lifespan=lifespan)

    # -----------------------------------------------------------------------
    # Errors
    # -----------------------------------------------------------------------

    @app.exception_handler(SlugcastError)
    async def slugcast_error(request: Request, exc: SlugcastError):
        return PlainTextResponse(exc.message, status_code=exc.status_code)

    # -----------------------------------------------------------------------
    # Root & health
    # -----------------------------------------------------------------------

    @app.get("/", response_class=HTMLResponse)
    async def root(request: Request):
        return templates.TemplateResponse(request, "login.html", {})

    @app.get("/health")
    async def health(request: Request):
        try:
            await get_ctx(request).registry.redis.ping()
            return {"status": "ok"}
        except Exception:
            raise HTTPException(status_code=503, detail="Redis unavailable")

    # -----------------------------------------------------------------------
    # Admin
    # -----------------------------------------------------------------------

    @app.get("/admin", response_class=HTMLResponse)
    async def admin(
        request: Request,
        token: Optional[str] = None,
        generated_link: str = Query("", alias="generatedLink"),
        error: str = "",
    ):
        ctx = get_ctx(request)
        ctx.gate.require_admin(token)
        entries = await ctx.registry.list()
        return templates.TemplateResponse(
            request,
            "admin.html",
            {
                "entries": entries,
                "token": token,
                "generated_link": generated_link,
                "error": error,
            },
        )

    @app.get("/api/links", response_model=list[LinkEntry])
    async def list_links(request: Request, token: Optional[str] = None):
        ctx = get_ctx(request)
        ctx.gate.require_admin(token)
        return await ctx.registry.list()

    @app.post("/generate")
    async def generate(request: Request):
        ctx = get_ctx(request)
        is_json = request.headers.get("content-type", "").startswith("application/json")
        if is_json:
            try:
                body = await request.json()
            except ValueError:
                raise ValidationError("Malformed JSON body.")
            if not isinstance(body, dict):
                raise ValidationError("Expected a JSON object.")
        else:
            body = dict(await request.form())

        token = _str_or_none(body.get("token")) or request.query_params.get("token")
        ctx.gate.require_admin(token)

        try:
            payload = GenerateRequest.model_validate(body)
        except PydanticValidationError:
            if is_json:
                raise ValidationError("originalUrl and movieName are required.")
            return RedirectResponse(_admin_url(token, error="missing_fields"), status_code=303)

        try:
            slug = await ctx.registry.create(payload.movie_name, payload.original_url)
        except ValidationError:
            if is_json:
                raise
            return RedirectResponse(_admin_url(token, error="invalid_name"), status_code=303)

        link = build_link(_origin(request), slug, payload.link_type, ctx.settings)
        if is_json:
            return GenerateResponse(slug=slug, link=link)
        return RedirectResponse(_admin_url(token, generatedLink=link), status_code=303)

    @app.post("/delete-video")
    async def delete_video(request: Request):
        ctx = get_ctx(request)
        form = await request.form()
        token = _str_or_none(form.get("token"))
        ctx.gate.require_admin(token)
        slug = _str_or_none(form.get("slug"))
        if not slug:
            raise ValidationError("slug is required.")
        await ctx.registry.delete(slug)
        return RedirectResponse(_admin_url(token), status_code=303)

    # -----------------------------------------------------------------------
    # File routes
    # -----------------------------------------------------------------------

    @app.get("/download/{slug:path}")
    async def download(request: Request, slug: str, token: Optional[str] = None):
        ctx = get_ctx(request)
        ctx.gate.require_download(token)
        entry = await ctx.registry.resolve(slug)
        return await relay(ctx.http, entry, request.headers.get("range"), "download")

    async def playback(request: Request, slug: str, kind: str, as_download: bool):
        ctx = get_ctx(request)
        if not ctx.gate.has_session(request.cookies.get(SESSION_COOKIE)):
            # One-shot auth URL carrying the shared secret; /auth/ turns it into the cookie
            params = {"token": ctx.gate.session_value, "next": kind}
            if as_download:
                params["download"] = "1"
            return RedirectResponse(f"/auth/{quote(slug)}?{urlencode(params)}", status_code=302)
        entry = await ctx.registry.resolve(slug)
        mode = "download" if as_download else kind
        return await relay(ctx.http, entry, request.headers.get("range"), mode)

    @app.get("/play/{slug:path}")
    async def play(request: Request, slug: str, download: bool = False):
        return await playback(request, slug, "play", download)

    @app.get("/stream/{slug:path}")
    async def stream(request: Request, slug: str, download: bool = False):
        return await playback(request, slug, "stream", download)

    @app.get("/auth/{slug:path}")
    async def issue_session(
        request: Request,
        slug: str,
        token: Optional[str] = None,
        next_kind: str = Query("play", alias="next"),
        download: bool = False,
    ):
        ctx = get_ctx(request)
        ctx.gate.check_session_token(token)
        kind = next_kind if next_kind in PLAYBACK_KINDS else "play"
        target = f"/{kind}/{quote(slug)}"
        if download:
            target += "?download=1"
        response = RedirectResponse(target, status_code=302)
        response.set_cookie(
            SESSION_COOKIE,
            ctx.gate.session_value,
            max_age=ctx.settings.session_max_age,
            path="/",
            secure=True,
            httponly=True,
            samesite="lax",
        )
        return response

    # -----------------------------------------------------------------------
    # Title suggestion
    # -----------------------------------------------------------------------

    @app.post("/fetch-title", response_model=FetchTitleResponse)
    async def fetch_title(payload: FetchTitleRequest):
        return FetchTitleResponse(title=guess_title(payload.url))

    return app


app = create_app()


def run() -> None:
    import uvicorn

    uvicorn.run(
        "slugcast.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
    )
