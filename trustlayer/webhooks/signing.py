"""HMAC-SHA256 signing of webhook payloads.

The signature travels as ``X-Webhook-Signature: sha256=<hex>`` and covers
the exact request body bytes.
"""
import hashlib
import hmac
from typing import Union

SIGNATURE_PREFIX = "sha256="


def _as_bytes(value: Union[str, bytes]) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else value


def sign_payload(payload: Union[str, bytes], secret: Union[str, bytes]) -> str:
    digest = hmac.new(_as_bytes(secret), _as_bytes(payload), hashlib.sha256).hexdigest()
    return SIGNATURE_PREFIX + digest


def verify_signature(payload: Union[str, bytes], signature: str, secret: Union[str, bytes]) -> bool:
    """Receiver-side check of a presented signature against the raw body.

    Malformed or wrong-length signatures are rejections, never exceptions.
    """
    if not isinstance(signature, (str, bytes)):
        return False
    try:
        presented = _as_bytes(signature)
        expected = sign_payload(payload, secret).encode("ascii")
    except (UnicodeEncodeError, TypeError):
        return False
    return hmac.compare_digest(presented, expected)
