"""
Shopify Admin API access: the one-shot OAuth token exchange, the GraphQL
endpoint, and the two chained inventory queries behind ``/proxy``.
"""

import logging
import unicodedata
from dataclasses import dataclass
from typing import Any, Iterable, Optional

import httpx
from pydantic import BaseModel

from errors import ExchangeError, Unconfigured, UpstreamError

logger = logging.getLogger(__name__)

GID_PREFIX = "gid://"
VARIANT_GID_PREFIX = "gid://shopify/ProductVariant/"
LEVELS_PAGE_SIZE = 50

QUERY_VARIANT_TO_ITEM = """
  query VariantToItem($id: ID!) {
    productVariant(id: $id) { id inventoryItem { id } }
  }
"""

QUERY_ITEM_LEVELS = """
  query ItemLevels($id: ID!, $first: Int = 50) {
    inventoryItem(id: $id) {
      id
      inventoryLevels(first: $first) {
        edges { node { quantities(names: ["available"]) { name quantity } location { id name } } }
      }
    }
  }
"""


class InventoryLevel(BaseModel):
    locationId: str
    location: str
    available: int = 0


@dataclass
class AccessCredential:
    shop: str
    access_token: str


class CredentialStore:
    """The single Admin API credential this process works with (single-tenant)."""

    def __init__(self, initial: Optional[AccessCredential] = None):
        self._active = initial

    def get(self) -> Optional[AccessCredential]:
        return self._active

    def set(self, credential: AccessCredential) -> None:
        # A re-install replaces whatever was there.
        self._active = credential


def to_variant_gid(variant_id: str) -> str:
    """Numeric ids (as the storefront knows them) become ProductVariant GIDs."""
    variant_id = str(variant_id)
    if variant_id.startswith(GID_PREFIX):
        return variant_id
    return f"{VARIANT_GID_PREFIX}{variant_id}"


def _collation_key(name: str) -> tuple[str, str]:
    # Accent- and case-insensitive first, raw string as tie-breaker so the order is total.
    decomposed = unicodedata.normalize("NFKD", name)
    base = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return base.casefold(), name


def _available_quantity(node: dict) -> int:
    if node.get("available") is not None:
        return int(node["available"])
    for q in node.get("quantities") or []:
        if (q or {}).get("name") == "available" and q.get("quantity") is not None:
            return int(q["quantity"])
    return 0


def _level_from_node(node: dict) -> InventoryLevel:
    location = node.get("location") or {}
    return InventoryLevel(
        locationId=str(location.get("id") or ""),
        location=str(location.get("name") or ""),
        available=_available_quantity(node),
    )


class TokenExchangeClient:
    def __init__(self, http: httpx.AsyncClient, api_key: Optional[str], api_secret: Optional[str]):
        self._http = http
        self._api_key = api_key
        self._api_secret = api_secret

    async def exchange(self, shop: str, code: str) -> AccessCredential:
        """
        Swap an authorization code for an offline Admin API token.

        One attempt only; any failure is an ``ExchangeError``. Storing the
        returned credential is the caller's job.
        """
        if not self._api_key or not self._api_secret:
            raise Unconfigured("Missing SHOPIFY_API_KEY/SHOPIFY_API_SECRET")

        url = f"https://{shop}/admin/oauth/access_token"
        try:
            resp = await self._http.post(
                url,
                json={"client_id": self._api_key, "client_secret": self._api_secret, "code": code},
                headers={"Content-Type": "application/json"},
            )
        except httpx.HTTPError as e:
            logger.error("Token exchange request to %s failed: %s: %s", shop, type(e).__name__, e)
            raise ExchangeError("Token exchange failed")

        try:
            body = resp.json()
        except ValueError:
            body = None

        if not resp.is_success or not isinstance(body, dict) or not body.get("access_token"):
            logger.error(
                "Token exchange failed for %s: status=%s keys=%s",
                shop,
                resp.status_code,
                sorted(body.keys()) if isinstance(body, dict) else None,
            )
            raise ExchangeError("Token exchange failed")

        return AccessCredential(shop=shop, access_token=str(body["access_token"]))


class AdminGraphQLClient:
    def __init__(
        self,
        http: httpx.AsyncClient,
        shop: Optional[str],
        api_version: str,
        credentials: CredentialStore,
    ):
        self._http = http
        self._shop = shop
        self._api_version = api_version
        self._credentials = credentials

    @property
    def endpoint(self) -> str:
        return f"https://{self._shop}/admin/api/{self._api_version}/graphql.json"

    async def query(self, query: str, variables: Optional[dict] = None) -> dict:
        if not self._shop:
            raise Unconfigured("SHOPIFY_SHOP not configured")
        credential = self._credentials.get()
        if credential is None:
            raise Unconfigured("SHOPIFY_ADMIN_TOKEN not configured (finish OAuth and set it)")

        try:
            resp = await self._http.post(
                self.endpoint,
                json={"query": query, "variables": variables or {}},
                headers={
                    "X-Shopify-Access-Token": credential.access_token,
                    "Content-Type": "application/json",
                },
            )
        except httpx.HTTPError as e:
            raise UpstreamError(f"Admin GraphQL request failed: {type(e).__name__}: {e}")

        try:
            body: Any = resp.json()
        except ValueError:
            raise UpstreamError(
                f"Admin GraphQL error: {resp.status_code} (non-JSON body)",
                upstream_status=resp.status_code,
                errors=resp.text[:500],
            )

        errors = body.get("errors") if isinstance(body, dict) else None
        if not resp.is_success or errors or not isinstance(body, dict):
            raise UpstreamError(
                f"Admin GraphQL error: {resp.status_code}",
                upstream_status=resp.status_code,
                errors=errors or body,
            )
        return body.get("data") or {}


class InventoryClient:
    def __init__(self, graphql: AdminGraphQLClient, allowed_location_ids: Iterable[str] = ()):
        self._graphql = graphql
        self._allowed = frozenset(allowed_location_ids)

    async def resolve_levels(self, variant_id: str) -> list[InventoryLevel]:
        """
        Variant -> InventoryItem -> InventoryLevels.

        Returns an empty list when the variant has no inventory item. Levels
        outside the location allow-list (if one is set) are dropped; the rest
        are ordered by location name.
        """
        variant_gid = to_variant_gid(variant_id)

        d1 = await self._graphql.query(QUERY_VARIANT_TO_ITEM, {"id": variant_gid})
        item_id = ((d1.get("productVariant") or {}).get("inventoryItem") or {}).get("id")
        if not item_id:
            return []

        d2 = await self._graphql.query(QUERY_ITEM_LEVELS, {"id": item_id, "first": LEVELS_PAGE_SIZE})
        edges = ((d2.get("inventoryItem") or {}).get("inventoryLevels") or {}).get("edges") or []
        levels = [_level_from_node((e or {}).get("node") or {}) for e in edges]

        if self._allowed:
            levels = [lvl for lvl in levels if lvl.locationId in self._allowed]
        levels.sort(key=lambda lvl: _collation_key(lvl.location))
        return levels
