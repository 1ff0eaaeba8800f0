"""
OAuth ``state`` values for the install flow.

Two strategies share the ``StateCodec`` contract; one is picked per deployment:

- ``StoreBackedStateCodec``: random nonce remembered in process memory.
  Entries never expire and are not removed on use, so a state can be replayed
  for the lifetime of the process.
- ``SignedStateCodec``: base64url(json_payload) + "." + hex(hmac_sha256(payload)).
  Nothing is stored; the token is valid for ``max_age_ms`` after issue. The
  nonce only makes tokens unique, it is not tracked, so a token can be replayed
  inside its window.
"""

import base64
import hashlib
import hmac
import json
import secrets
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional, Union

from errors import Unconfigured

Clock = Callable[[], float]

DEFAULT_MAX_AGE_MS = 10 * 60 * 1000


def now_ms() -> float:
    return time.time() * 1000


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("utf-8").rstrip("=")


def _b64url_decode(s: str) -> bytes:
    pad = "=" * (-len(s) % 4)
    return base64.urlsafe_b64decode((s + pad).encode("utf-8"))


class StateCodec(ABC):
    @abstractmethod
    def issue(self, subject_id: str) -> str:
        """Return a fresh state token for ``subject_id`` (the shop domain)."""

    @abstractmethod
    def redeem(self, token: str, expected_subject_id: Optional[str] = None) -> bool:
        """True when ``token`` was issued by this codec and is still acceptable."""


class StoreBackedStateCodec(StateCodec):
    def __init__(self, clock: Clock = now_ms):
        self._clock = clock
        self._issued: dict[str, float] = {}

    def issue(self, subject_id: str) -> str:
        token = secrets.token_hex(16)
        self._issued[token] = self._clock()
        return token

    def redeem(self, token: str, expected_subject_id: Optional[str] = None) -> bool:
        # The nonce is not bound to a shop, so expected_subject_id cannot be checked here.
        return isinstance(token, str) and token in self._issued

    def __len__(self) -> int:
        return len(self._issued)


class SignedStateCodec(StateCodec):
    def __init__(
        self,
        secret: Union[str, bytes, None],
        max_age_ms: int = DEFAULT_MAX_AGE_MS,
        clock: Clock = now_ms,
    ):
        if isinstance(secret, str):
            secret = secret.encode("utf-8")
        self._secret = secret or b""
        self._max_age_ms = max_age_ms
        self._clock = clock

    def _sig(self, payload_b64: str) -> str:
        return hmac.new(self._secret, payload_b64.encode("utf-8"), hashlib.sha256).hexdigest()

    def issue(self, subject_id: str) -> str:
        if not self._secret:
            raise Unconfigured("Server misconfigured (missing SHOPIFY_API_SECRET)")
        payload = {"shop": subject_id, "ts": int(self._clock()), "n": secrets.token_hex(8)}
        body = json.dumps(payload, separators=(",", ":"), sort_keys=True).encode("utf-8")
        payload_b64 = _b64url_encode(body)
        return f"{payload_b64}.{self._sig(payload_b64)}"

    def redeem(
        self,
        token: str,
        expected_subject_id: Optional[str] = None,
        max_age_ms: Optional[int] = None,
    ) -> bool:
        if not self._secret or not isinstance(token, str):
            return False
        parts = token.split(".")
        if len(parts) != 2:
            return False
        payload_b64, sig_hex = parts

        expected = self._sig(payload_b64).encode("utf-8")
        try:
            provided = sig_hex.encode("utf-8")
        except UnicodeEncodeError:
            return False
        if len(expected) != len(provided) or not hmac.compare_digest(expected, provided):
            return False

        try:
            payload = json.loads(_b64url_decode(payload_b64).decode("utf-8"))
        except (ValueError, UnicodeDecodeError):
            return False
        if not isinstance(payload, dict):
            return False

        shop = payload.get("shop")
        ts = payload.get("ts")
        if not shop or not isinstance(shop, str):
            return False
        if isinstance(ts, bool) or not isinstance(ts, (int, float)) or not ts:
            return False
        if expected_subject_id and shop != expected_subject_id:
            return False
        limit = self._max_age_ms if max_age_ms is None else max_age_ms
        if self._clock() - ts > limit:
            return False
        return True


def build_state_codec(
    strategy: str,
    secret: Union[str, bytes, None],
    max_age_ms: int = DEFAULT_MAX_AGE_MS,
    clock: Clock = now_ms,
) -> StateCodec:
    if strategy == "store":
        return StoreBackedStateCodec(clock=clock)
    if strategy == "signed":
        return SignedStateCodec(secret, max_age_ms=max_age_ms, clock=clock)
    raise Unconfigured(f"Unknown OAuth state strategy: {strategy!r}")
