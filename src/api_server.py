"""
HTTP API for the review funnel.

Owner endpoints (cookie `auth_token` or `Authorization: Bearer ...`):
    POST /auth/register, /auth/login, /auth/logout    GET /auth/verify
    POST /business/create                             GET /user/businesses
    GET  /business/{slug}/reviews[?analytics=true]
Customer endpoints:
    GET  /                          landing page for the tenant (biz param / subdomain)
    GET  /business/{slug}/config    window.REVIEW_TOOL_CONFIG script
    POST /reviews/submit
Tools:
    GET  /qrcode?url=...            POST /admin/maps            GET /health

Errors: {"status": "error", "message": "..."}
"""

import asyncio
import html
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from urllib.parse import quote

from aiohttp import web

from config import CFG, Config
from funnel.auth import clear_auth_cookie, set_auth_cookie, token_from_request
from funnel.mirror import FeedbackMirror
from funnel.models import Account
from funnel.places import PlacesClient
from funnel.providers import DatabaseConfigProvider, StaticConfigProvider, TenantConfigProvider
from funnel.qr import generate_qr_data_url
from funnel.repository import FunnelRepository
from funnel.service import (
    AccessDeniedError,
    AccountService,
    AuthenticationError,
    ConflictError,
    FeedbackService,
    FunnelError,
    NotFoundError,
    ProvisioningService,
    UpstreamError,
    ValidationError,
    account_to_dict,
)
from funnel.slugs import resolve_slug
from funnel.tenants import EMPTY_CONFIG_SCRIPT, TenantConfigStore, render_config_script


logger = logging.getLogger(__name__)

WEBAPP_DIR = Path(__file__).resolve().parent.parent / "webapp"
CONFIG_CACHE_CONTROL = "public, max-age=300, stale-while-revalidate=3600"

ERROR_STATUSES: tuple[tuple[type[FunnelError], int], ...] = (
    (ValidationError, 400),
    (AuthenticationError, 401),
    (AccessDeniedError, 403),
    (NotFoundError, 404),
    (ConflictError, 409),
    (UpstreamError, 502),
)

FALLBACK_PAGE = """<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>__TITLE__</title>
  <meta property="og:title" content="__TITLE__">
  <meta property="og:image" content="__OG_IMAGE__">
  <meta property="og:url" content="__OG_URL__">
  <script src="__CONFIG_SCRIPT_URL__"></script>
</head>
<body><h1>__TITLE__</h1></body>
</html>
"""


@dataclass
class FunnelServices:
    config: Config
    repository: FunnelRepository
    accounts: AccountService
    provisioning: ProvisioningService
    feedback: FeedbackService
    tenants: TenantConfigStore
    mirror: FeedbackMirror
    places: PlacesClient


SERVICES_KEY = web.AppKey("funnel_services", FunnelServices)


def _default_provider(cfg: Config, repository: FunnelRepository) -> TenantConfigProvider:
    """Exported JSON when TENANT_CONFIG_FILE is set, else the live database."""
    if cfg.tenant_config_file:
        provider = StaticConfigProvider.from_json_file(
            cfg.tenant_config_file,
            google_review_base_url=cfg.google_review_base_url,
        )
        logger.info(
            "Tenant configs loaded from %s (%d tenants)", cfg.tenant_config_file, len(provider.slugs)
        )
        return provider
    return DatabaseConfigProvider(repository, google_review_base_url=cfg.google_review_base_url)


def build_services(
    config: Config | None = None,
    *,
    db_path: str | None = None,
    provider: TenantConfigProvider | None = None,
    mirror: FeedbackMirror | None = None,
    places: PlacesClient | None = None,
) -> FunnelServices:
    """Wire repository, providers and use-case services together."""
    cfg = config or CFG
    repository = FunnelRepository(db_path)
    mirror = mirror or FeedbackMirror(timeout_sec=cfg.mirror_timeout_sec)
    if provider is None:
        provider = _default_provider(cfg, repository)
    return FunnelServices(
        config=cfg,
        repository=repository,
        accounts=AccountService(repository, cfg),
        provisioning=ProvisioningService(repository, cfg),
        feedback=FeedbackService(repository, cfg, mirror),
        tenants=TenantConfigStore(provider, google_review_base_url=cfg.google_review_base_url),
        mirror=mirror,
        places=places or PlacesClient(cfg.google_maps_api_key),
    )


def _error_response(message: str, status: int) -> web.Response:
    return web.json_response({"status": "error", "message": message}, status=status)


@web.middleware
async def error_middleware(request: web.Request, handler) -> web.StreamResponse:
    """Map domain errors to JSON responses; hide everything else behind a 500."""
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except FunnelError as exc:
        for error_type, status in ERROR_STATUSES:
            if isinstance(exc, error_type):
                if status >= 500:
                    logger.warning("%s %s -> %s: %s", request.method, request.path, status, exc)
                return _error_response(str(exc), status)
        logger.exception("Unmapped domain error on %s %s", request.method, request.path)
        return _error_response("Internal server error", 500)
    except Exception:
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        return _error_response("Internal server error", 500)


def _services(request: web.Request) -> FunnelServices:
    return request.app[SERVICES_KEY]


async def _read_json(request: web.Request) -> dict:
    try:
        data = await request.json()
    except Exception as exc:
        raise ValidationError("Invalid JSON") from exc
    if not isinstance(data, dict):
        raise ValidationError("JSON body must be an object")
    return data


async def _current_account(request: web.Request) -> Account:
    return await _services(request).accounts.verify(token_from_request(request))


def _session_response(services: FunnelServices, account: Account, token: str, *, status: int) -> web.Response:
    response = web.json_response({"user": account_to_dict(account), "token": token}, status=status)
    set_auth_cookie(
        response,
        token,
        ttl_days=services.config.session_ttl_days,
        secure=services.config.cookie_secure,
    )
    return response


async def register_handler(request: web.Request) -> web.Response:
    services = _services(request)
    data = await _read_json(request)
    account, token = await services.accounts.register(
        data.get("email"),
        data.get("password"),
        data.get("name"),
    )
    return _session_response(services, account, token, status=201)


async def login_handler(request: web.Request) -> web.Response:
    services = _services(request)
    data = await _read_json(request)
    account, token = await services.accounts.login(data.get("email"), data.get("password"))
    return _session_response(services, account, token, status=200)


async def logout_handler(request: web.Request) -> web.Response:
    response = web.json_response({"success": True})
    clear_auth_cookie(response, secure=_services(request).config.cookie_secure)
    return response


async def verify_handler(request: web.Request) -> web.Response:
    account = await _current_account(request)
    return web.json_response({"user": account_to_dict(account)})


async def business_create_handler(request: web.Request) -> web.Response:
    account = await _current_account(request)
    data = await _read_json(request)
    result = await _services(request).provisioning.create_business(
        account,
        name=data.get("name"),
        place_id=data.get("placeId"),
        category=data.get("category"),
        google_maps_url=data.get("googleMapsUrl"),
        hero_image=data.get("heroImage"),
        logo_url=data.get("logoUrl"),
        config=data.get("config"),
        host=request.host,
    )
    return web.json_response(result, status=201)


async def user_businesses_handler(request: web.Request) -> web.Response:
    account = await _current_account(request)
    businesses = await _services(request).provisioning.list_businesses(account)
    return web.json_response({"businesses": businesses})


async def business_config_handler(request: web.Request) -> web.Response:
    """Tenant config as a script; always 200 so the page can still render."""
    slug = request.match_info["slug"].strip().lower()
    try:
        config = await _services(request).tenants.lookup(slug)
        script = render_config_script(config)
    except Exception:
        logger.exception("Failed to render config script for %s", slug)
        script = EMPTY_CONFIG_SCRIPT
    return web.Response(
        text=script,
        content_type="text/javascript",
        headers={"Cache-Control": CONFIG_CACHE_CONTROL},
    )


async def business_reviews_handler(request: web.Request) -> web.Response:
    account = await _current_account(request)
    slug = request.match_info["slug"].strip().lower()
    feedback = _services(request).feedback
    if request.query.get("analytics", "").strip().lower() in {"1", "true", "yes"}:
        payload = await feedback.analytics(account, slug)
    else:
        payload = await feedback.list_reviews(account, slug)
    return web.json_response(payload)


async def reviews_submit_handler(request: web.Request) -> web.Response:
    data = await _read_json(request)
    outcome = await _services(request).feedback.submit(
        business_slug=data.get("businessSlug"),
        business_id=data.get("businessId"),
        rating=data.get("rating"),
        name=data.get("name"),
        comments=data.get("comments"),
    )
    return web.json_response(outcome.to_dict())


async def qrcode_handler(request: web.Request) -> web.Response:
    url = request.query.get("url", "").strip()
    if not url:
        raise ValidationError("URL parameter is required")
    data_url = await asyncio.to_thread(generate_qr_data_url, url)
    return web.json_response({"success": True, "dataUrl": data_url, "url": url})


async def admin_maps_handler(request: web.Request) -> web.Response:
    data = await _read_json(request)
    details = await _services(request).places.lookup(data.get("mapsUrl"))
    return web.json_response(details)


def _load_page_template() -> str:
    index_path = WEBAPP_DIR / "index.html"
    try:
        return index_path.read_text(encoding="utf-8")
    except OSError:
        logger.warning("Landing template missing at %s; using built-in page", index_path)
        return FALLBACK_PAGE


async def landing_page_handler(request: web.Request) -> web.Response:
    """Customer landing page with per-tenant Open Graph tags."""
    services = _services(request)
    slug = resolve_slug(request.query.get("biz"), request.host)
    config = await services.tenants.resolve(slug)
    og_image = await services.tenants.hero_image(slug) or config.logo_url

    replacements = {
        "__TITLE__": html.escape(f"Review {config.name}"),
        "__BUSINESS_NAME__": html.escape(config.name),
        "__OG_IMAGE__": html.escape(og_image or "", quote=True),
        "__OG_URL__": html.escape(f"{request.scheme}://{request.host}{request.path_qs}", quote=True),
        "__CONFIG_SCRIPT_URL__": html.escape(f"/business/{quote(slug, safe='')}/config", quote=True),
    }
    content = _load_page_template()
    for placeholder, value in replacements.items():
        content = content.replace(placeholder, value)
    return web.Response(
        text=content,
        content_type="text/html",
        headers={"Cache-Control": "no-store"},
    )


async def health_handler(request: web.Request) -> web.Response:
    """Health check endpoint."""
    return web.json_response({
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": "reviewfunnel-api",
    })


async def _drain_mirror(app: web.Application) -> None:
    await app[SERVICES_KEY].mirror.drain(timeout=app[SERVICES_KEY].config.mirror_timeout_sec)


def create_api_app(
    services: FunnelServices | None = None,
    *,
    config: Config | None = None,
    db_path: str | None = None,
) -> web.Application:
    """Build the aiohttp application with all routes."""
    app = web.Application(middlewares=[error_middleware])
    app[SERVICES_KEY] = services or build_services(config, db_path=db_path)
    app.on_cleanup.append(_drain_mirror)

    # Owner accounts
    app.router.add_post("/auth/register", register_handler)
    app.router.add_post("/auth/login", login_handler)
    app.router.add_post("/auth/logout", logout_handler)
    app.router.add_get("/auth/verify", verify_handler)

    # Businesses
    app.router.add_post("/business/create", business_create_handler)
    app.router.add_get("/business/{slug}/config", business_config_handler)
    app.router.add_get("/business/{slug}/reviews", business_reviews_handler)
    app.router.add_get("/user/businesses", user_businesses_handler)

    # Customer flow
    app.router.add_post("/reviews/submit", reviews_submit_handler)

    # Tools
    app.router.add_get("/qrcode", qrcode_handler)
    app.router.add_post("/admin/maps", admin_maps_handler)

    app.router.add_get("/health", health_handler)
    app.router.add_get("/", landing_page_handler)
    if WEBAPP_DIR.exists():
        app.router.add_static("/static/", WEBAPP_DIR, show_index=False)

    return app


async def start_api_server(app: web.Application, config: Config | None = None) -> web.AppRunner:
    """Start the API server."""
    cfg = config or CFG
    runner = web.AppRunner(app)
    await runner.setup()

    site = web.TCPSite(runner, cfg.api_host, cfg.api_port)
    await site.start()

    logger.info("API server started on %s:%s", cfg.api_host, cfg.api_port)

    return runner


async def stop_api_server(runner: web.AppRunner):
    """Stop the API server."""
    await runner.cleanup()
    logger.info("API server stopped")
