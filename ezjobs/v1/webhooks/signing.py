import hashlib
import hmac
import json
from typing import Any

SIGNATURE_PREFIX = "sha256="


def canonical_json(payload: dict[str, Any]) -> bytes:
    """Body bytes that are both signed and sent: sorted keys, no whitespace."""
    return json.dumps(
        payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str
    ).encode("utf-8")


def sign_payload(secret: str, timestamp: int, body: bytes) -> str:
    """Hex HMAC-SHA256 over ``{timestamp}.{body}``."""
    message = f"{timestamp}.".encode() + body
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify_signature(secret: str, timestamp: int, body: bytes, header: str) -> bool:
    """Check an ``X-EzSign-Signature`` header value; what subscribers run."""
    expected = SIGNATURE_PREFIX + sign_payload(secret, timestamp, body)
    return hmac.compare_digest(header or "", expected)
