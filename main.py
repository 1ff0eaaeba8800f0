import logging
import re
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

import httpx
import uvicorn
from fastapi import APIRouter, Depends, FastAPI, Header, Request
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse, RedirectResponse

from errors import (
    BadRequest,
    ExchangeError,
    Forbidden,
    InternalError,
    ProxyError,
    Unconfigured,
    UpstreamError,
)
from hmac_auth import APP_PROXY_SEPARATOR, verify
from levels_cache import TTLCache
from oauth_state import Clock, StateCodec, build_state_codec, now_ms
from settings import Settings
from shopify_admin import (
    AccessCredential,
    AdminGraphQLClient,
    CredentialStore,
    InventoryClient,
    TokenExchangeClient,
)

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Shop domains end up in a redirect target, so only plain hostnames are accepted.
_SHOP_DOMAIN_RE = re.compile(r"^[A-Za-z0-9](?:[A-Za-z0-9-]*[A-Za-z0-9])?(?:\.[A-Za-z0-9](?:[A-Za-z0-9-]*[A-Za-z0-9])?)+$")

router = APIRouter()


@dataclass
class Services:
    """Process-wide state, built once per app and shared by every request."""

    settings: Settings
    http: httpx.AsyncClient
    state_codec: StateCodec
    credentials: CredentialStore
    token_exchange: TokenExchangeClient
    inventory: InventoryClient
    cache: TTLCache


def build_services(
    settings: Settings,
    http_client: Optional[httpx.AsyncClient] = None,
    clock: Clock = now_ms,
) -> Services:
    http = http_client or httpx.AsyncClient(timeout=settings.http_timeout_seconds)

    initial = None
    if settings.admin_token:
        initial = AccessCredential(shop=settings.shop or "", access_token=settings.admin_token)
    credentials = CredentialStore(initial)

    graphql = AdminGraphQLClient(http, settings.shop, settings.api_version, credentials)
    return Services(
        settings=settings,
        http=http,
        state_codec=build_state_codec(
            settings.state_strategy, settings.api_secret, max_age_ms=settings.state_max_age_ms, clock=clock
        ),
        credentials=credentials,
        token_exchange=TokenExchangeClient(http, settings.api_key, settings.api_secret),
        inventory=InventoryClient(graphql, settings.allowed_location_ids),
        cache=TTLCache(ttl_ms=settings.cache_ttl_ms, max_entries=settings.cache_max_entries, clock=clock),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def _query_mapping(request: Request) -> dict:
    """Query string as {key: value}, or {key: [values]} for repeated keys."""
    grouped: dict[str, list[str]] = {}
    for key, value in request.query_params.multi_items():
        grouped.setdefault(key, []).append(value)
    return {k: v[0] if len(v) == 1 else v for k, v in grouped.items()}


async def _proxy_error_handler(request: Request, exc: ProxyError):
    if exc.status_code >= 500:
        logger.error("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


async def _unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal Server Error"})


@router.get("/")
def root():
    return PlainTextResponse("OK")


@router.get("/debug/config")
def debug_config(services: Services = Depends(get_services)):
    """
    Debug helper: shows which critical env vars are present (without exposing secrets).
    Only served when DEBUG_ENDPOINTS is enabled.
    """
    s = services.settings
    if not s.debug_endpoints:
        raise ProxyError("Not Found", status_code=404)
    return {
        "shopify": {
            "shop": s.shop,
            "apiVersion": s.api_version,
            "redirectUri": s.redirect_uri if s.app_url else None,
            "hasApiKey": bool(s.api_key),
            "hasApiSecret": bool(s.api_secret),
            "hasAdminToken": services.credentials.get() is not None,
            "allowedLocationIds": list(s.allowed_location_ids),
        },
        "oauth": {
            "stateStrategy": s.state_strategy,
            "stateMaxAgeMs": s.state_max_age_ms,
            "hmacCanonicalization": s.hmac_canonicalization,
        },
        "proxy": {
            "requireSignature": s.proxy_require_signature,
            "cacheTtlMs": s.cache_ttl_ms,
            "cacheMaxEntries": s.cache_max_entries,
        },
    }


@router.get("/auth/install")
def auth_install(shop: Optional[str] = None, services: Services = Depends(get_services)):
    """
    Start the install: redirect the merchant to Shopify's OAuth consent screen.
    """
    if not shop:
        raise BadRequest("Missing shop")
    if not _SHOP_DOMAIN_RE.match(shop):
        raise BadRequest("Invalid shop")
    s = services.settings
    if not s.oauth_configured:
        raise Unconfigured("OAuth env not configured")

    state = services.state_codec.issue(shop)
    params = {
        "client_id": s.api_key,
        "scope": s.oauth_scopes,
        "redirect_uri": s.redirect_uri,
        "state": state,
    }
    url = f"https://{shop}/admin/oauth/authorize"
    return RedirectResponse(url=f"{url}?{httpx.QueryParams(params)}", status_code=302)


@router.get("/auth/callback")
async def auth_callback(
    request: Request,
    shop: Optional[str] = None,
    hmac: Optional[str] = None,
    code: Optional[str] = None,
    state: Optional[str] = None,
    services: Services = Depends(get_services),
):
    """
    Shopify redirects here with ?shop=&code=&state=&timestamp=&hmac=.
    Verify the request, exchange code -> access_token and make it the active credential.
    """
    if not shop or not hmac or not code or not state:
        raise BadRequest("Missing params")
    s = services.settings
    if not s.oauth_configured:
        raise Unconfigured("OAuth env not configured")

    if not verify(_query_mapping(request), hmac, s.api_secret, canonicalization=s.hmac_canonicalization):
        raise BadRequest("Invalid HMAC")
    if not services.state_codec.redeem(state, shop):
        raise BadRequest("Invalid state")

    try:
        credential = await services.token_exchange.exchange(shop, code)
    except ExchangeError:
        raise InternalError("Token exchange failed")

    services.credentials.set(credential)
    logger.info("Admin API access token acquired for %s", shop)

    return HTMLResponse(
        "App installed! Access token acquired.<br/>"
        "/proxy uses it until this process restarts; "
        "set SHOPIFY_ADMIN_TOKEN to keep it across deploys."
    )


@router.get("/proxy")
async def inventory_proxy(
    request: Request,
    variant_id: Optional[str] = None,
    x_shopify_shop_domain: Optional[str] = Header(None),
    services: Services = Depends(get_services),
):
    """
    Storefront-facing read path: per-location availability for one variant.
    """
    s = services.settings
    # Single-tenant: only the configured store may read through this proxy.
    if not x_shopify_shop_domain or x_shopify_shop_domain != s.shop:
        raise Forbidden("forbidden")

    if s.proxy_require_signature and not verify(
        _query_mapping(request),
        request.query_params.get("signature"),
        s.api_secret,
        canonicalization="raw",
        separator=APP_PROXY_SEPARATOR,
    ):
        raise Forbidden("forbidden")

    if not variant_id:
        raise BadRequest("variant_id required")

    cache_key = f"levels:{variant_id}"
    cached = services.cache.get(cache_key)
    if cached is not None:
        return cached

    try:
        levels = await services.inventory.resolve_levels(variant_id)
    except (UpstreamError, Unconfigured) as e:
        logger.error(
            "Inventory lookup for variant %s failed: %s (upstream_status=%s errors=%s)",
            variant_id,
            e.message,
            getattr(e, "upstream_status", None),
            getattr(e, "errors", None),
        )
        raise InternalError("inventory lookup failed")

    payload = {"levels": [lvl.model_dump() for lvl in levels]}
    services.cache.put(cache_key, payload)
    return payload


def create_app(
    settings: Optional[Settings] = None,
    *,
    http_client: Optional[httpx.AsyncClient] = None,
    clock: Clock = now_ms,
) -> FastAPI:
    settings = settings or Settings.from_env()
    logging.basicConfig(level=settings.log_level, format=LOG_FORMAT)
    services = build_services(settings, http_client=http_client, clock=clock)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        yield
        await services.http.aclose()

    app = FastAPI(title="Shopify Inventory Proxy", lifespan=lifespan)
    app.state.services = services
    app.add_exception_handler(ProxyError, _proxy_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=app.state.services.settings.port)
