from typing import Annotated, Literal, Optional

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from errors import Unconfigured

OAUTH_SCOPES = "read_products,read_inventory,read_locations"


class Settings(BaseSettings):
    """
    Process configuration, read from the environment (and `.env` if present).

    Everything is optional at construction time: the app must be importable
    (e.g. on a serverless cold start) even when OAuth is not configured yet.
    Endpoints that need a value fail with ``Unconfigured`` when they run.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_ignore_empty=True,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )

    shop: Optional[str] = Field(default=None, alias="SHOPIFY_SHOP")
    api_version: str = Field(default="2024-10", alias="SHOPIFY_API_VER")
    api_key: Optional[str] = Field(default=None, alias="SHOPIFY_API_KEY")
    api_secret: Optional[str] = Field(default=None, alias="SHOPIFY_API_SECRET")
    app_url: Optional[str] = Field(default=None, alias="APP_URL")
    admin_token: Optional[str] = Field(default=None, alias="SHOPIFY_ADMIN_TOKEN")
    allowed_location_ids: Annotated[tuple[str, ...], NoDecode] = Field(default=(), alias="ALLOWED_LOCATION_IDS")
    oauth_scopes: str = Field(default=OAUTH_SCOPES, alias="SHOPIFY_OAUTH_SCOPES")
    state_strategy: Literal["signed", "store"] = Field(default="signed", alias="OAUTH_STATE_STRATEGY")
    state_max_age_ms: int = Field(default=10 * 60 * 1000, alias="OAUTH_STATE_MAX_AGE_MS", ge=0)
    hmac_canonicalization: Literal["platform", "uri", "raw"] = Field(
        default="platform", alias="HMAC_CANONICALIZATION"
    )
    proxy_require_signature: bool = Field(default=False, alias="PROXY_REQUIRE_SIGNATURE")
    debug_endpoints: bool = Field(default=False, alias="DEBUG_ENDPOINTS")
    cache_ttl_ms: int = Field(default=60 * 1000, alias="CACHE_TTL_MS", ge=0)
    cache_max_entries: Optional[int] = Field(default=None, alias="CACHE_MAX_ENTRIES", ge=1)
    http_timeout_seconds: float = Field(default=15.0, alias="HTTP_TIMEOUT_SECONDS", gt=0)
    port: int = Field(default=3000, alias="PORT")
    log_level: Literal["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"] = Field(default="INFO", alias="LOG_LEVEL")

    @field_validator("allowed_location_ids", mode="before")
    @classmethod
    def _split_csv(cls, value):
        if isinstance(value, str):
            return tuple(s.strip() for s in value.split(",") if s.strip())
        return value

    @field_validator("state_strategy", "hmac_canonicalization", mode="before")
    @classmethod
    def _lower(cls, value):
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper(cls, value):
        return value.strip().upper() if isinstance(value, str) else value

    @classmethod
    def from_env(cls, env_file: Optional[str] = ".env") -> "Settings":
        try:
            return cls(_env_file=env_file)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            )
            raise Unconfigured(f"Invalid configuration: {problems}")

    @property
    def redirect_uri(self) -> str:
        return f"{(self.app_url or '').rstrip('/')}/auth/callback"

    @property
    def oauth_configured(self) -> bool:
        return bool(self.api_key and self.api_secret and self.app_url)
