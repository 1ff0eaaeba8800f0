import hashlib
import hmac
from typing import Mapping, Sequence, Union
from urllib.parse import quote

ParamValue = Union[str, Sequence[str]]

RESERVED_KEYS = frozenset({"hmac", "signature"})

# OAuth callbacks join pairs with "&"; app proxy requests join them with nothing.
OAUTH_SEPARATOR = "&"
APP_PROXY_SEPARATOR = ""

# Characters JavaScript's encodeURIComponent leaves alone (besides alphanumerics).
URI_COMPONENT_SAFE = "-_.!~*'()"


def _flatten(value: ParamValue) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (list, tuple)):
        return ",".join(str(v) for v in value)
    raise TypeError(f"unsupported parameter value: {type(value).__name__}")


def _encode_pair(key: str, value: str, canonicalization: str) -> str:
    if canonicalization == "platform":
        # Shopify escapes its own delimiters so a value cannot smuggle in a pair.
        key = key.replace("%", "%25").replace("=", "%3D")
        value = value.replace("%", "%25")
        return f"{key}={value}".replace("&", "%26")
    if canonicalization == "uri":
        return f"{key}={quote(value, safe=URI_COMPONENT_SAFE)}"
    if canonicalization == "raw":
        return f"{key}={value}"
    raise ValueError(f"unknown canonicalization: {canonicalization!r}")


def canonical_message(
    params: Mapping[str, ParamValue],
    *,
    canonicalization: str = "platform",
    separator: str = OAUTH_SEPARATOR,
) -> str:
    """
    Build the string Shopify signs:
      every parameter except hmac/signature, sorted by key, "key=value" joined by ``separator``.
    Multi-valued parameters are joined with ",".
    """
    pairs = [
        _encode_pair(str(k), _flatten(v), canonicalization)
        for k, v in sorted(params.items(), key=lambda kv: str(kv[0]))
        if k not in RESERVED_KEYS
    ]
    return separator.join(pairs)


def sign(
    params: Mapping[str, ParamValue],
    secret: Union[str, bytes],
    *,
    canonicalization: str = "platform",
    separator: str = OAUTH_SEPARATOR,
) -> str:
    key = secret.encode("utf-8") if isinstance(secret, str) else secret
    message = canonical_message(params, canonicalization=canonicalization, separator=separator)
    return hmac.new(key, message.encode("utf-8"), hashlib.sha256).hexdigest()


def verify(
    params: Mapping[str, ParamValue],
    provided_hex: Union[str, None],
    secret: Union[str, bytes, None],
    *,
    canonicalization: str = "platform",
    separator: str = OAUTH_SEPARATOR,
) -> bool:
    """Constant-time check of ``provided_hex`` against the HMAC-SHA256 of ``params``. Never raises."""
    if not provided_hex or not secret or not isinstance(provided_hex, str):
        return False
    try:
        expected = sign(params, secret, canonicalization=canonicalization, separator=separator)
        a = expected.encode("utf-8")
        b = provided_hex.encode("utf-8")
    except (TypeError, ValueError, AttributeError):
        return False
    return len(a) == len(b) and hmac.compare_digest(a, b)
