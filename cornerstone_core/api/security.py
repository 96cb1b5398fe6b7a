# cornerstone_core/api/security.py
# Copyright (c) 2026 Monolink Systems
# Licensed under AGPLv3 (Nebula Open Source Edition, non-corporate)
import base64
import binascii
import hashlib
import hmac
import json
import os
import secrets
import time
from typing import Optional

from fastapi import HTTPException, Request

from ..utils.config import settings

SESSION_COOKIE = "cornerstone_session"


def _resolve_session_secret() -> str:
    env_key = os.getenv("CORNERSTONE_SESSION_SECRET") or settings.SESSION_SECRET
    if env_key:
        return env_key
    # Fallback keeps app operable, but all sessions are invalidated after restart.
    return secrets.token_urlsafe(32)


SESSION_SECRET = _resolve_session_secret().encode("utf-8")
SESSION_TTL_SECONDS = int(settings.SESSION_TTL_SECONDS or 3600)


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64url_decode(raw: str) -> bytes:
    padding = "=" * ((4 - (len(raw) % 4)) % 4)
    return base64.urlsafe_b64decode(raw + padding)


def create_session_token(user_id: str, ttl_seconds: int = SESSION_TTL_SECONDS) -> str:
    payload = {
        "u": user_id,
        "exp": int(time.time()) + max(60, int(ttl_seconds)),
        "n": secrets.token_hex(8),
    }
    payload_raw = json.dumps(payload, separators=(",", ":"), sort_keys=True).encode("utf-8")
    sig = hmac.new(SESSION_SECRET, payload_raw, hashlib.sha256).digest()
    return f"{_b64url_encode(payload_raw)}.{_b64url_encode(sig)}"


def parse_session_token(raw_token: Optional[str]) -> Optional[str]:
    """Return the user id carried by a valid, unexpired token, else None."""
    if not raw_token or "." not in raw_token:
        return None
    try:
        payload_b64, sig_b64 = raw_token.split(".", 1)
        payload_raw = _b64url_decode(payload_b64)
        sig_raw = _b64url_decode(sig_b64)
    except (ValueError, binascii.Error):
        return None

    expected_sig = hmac.new(SESSION_SECRET, payload_raw, hashlib.sha256).digest()
    if not hmac.compare_digest(sig_raw, expected_sig):
        return None

    try:
        payload = json.loads(payload_raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        return None
    if not isinstance(payload, dict):
        return None

    user_id = str(payload.get("u") or "").strip()
    try:
        exp = int(payload.get("exp") or 0)
    except (TypeError, ValueError):
        return None
    if not user_id or exp <= int(time.time()):
        return None
    return user_id


def _token_from_request(request: Request) -> Optional[str]:
    auth_header = request.headers.get("authorization") or ""
    if auth_header.lower().startswith("bearer "):
        return auth_header[7:].strip()
    return request.cookies.get(SESSION_COOKIE)


def require_session(request: Request) -> str:
    user_id = parse_session_token(_token_from_request(request))
    if not user_id:
        raise HTTPException(status_code=401, detail="No active session")
    return user_id
