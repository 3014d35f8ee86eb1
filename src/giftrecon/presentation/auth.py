from __future__ import annotations
import hmac
import hashlib
import secrets
import time
from typing import Mapping

from ..config import Settings


class TriggerRejected(Exception):
    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def verify_scheduler_signature(signature: str, body: bytes, secret: str, tolerance_seconds: int = 300) -> bool:
    """Signature header is "<unix ts>,<hex hmac-sha256 of '<ts>.' + body>"."""
    try:
        ts_str, sig = signature.split(",", 1)
        ts = int(ts_str)
    except ValueError:
        return False
    if abs(time.time() - ts) > tolerance_seconds:
        return False
    expected = hmac.new(secret.encode(), msg=f"{ts}.".encode() + body, digestmod=hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, sig.strip())


def authorize_trigger(headers: Mapping[str, str], body: bytes, settings: Settings) -> None:
    """Bearer shared secret or a valid scheduler signature; raises TriggerRejected otherwise."""
    if not settings.internal_api_secret:
        raise TriggerRejected(500, "Server misconfiguration")
    auth = headers.get("authorization") or ""
    if auth.startswith("Bearer ") and secrets.compare_digest(
        auth[len("Bearer "):].encode(), settings.internal_api_secret.encode()
    ):
        return
    signature = headers.get("upstash-signature")
    if signature and settings.scheduler_signing_key and verify_scheduler_signature(
        signature, body, settings.scheduler_signing_key
    ):
        return
    raise TriggerRejected(401, "Unauthorized")
