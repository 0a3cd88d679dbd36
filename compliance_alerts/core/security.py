from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import time
from typing import Mapping, Optional

import jwt
from fastapi import HTTPException, status

from compliance_alerts.config import get_settings

_SVIX_TOLERANCE_SECONDS = 300


def _load_api_keys() -> set[str]:
    settings = get_settings()
    keys = set()
    if settings.API_KEYS:
        for value in settings.API_KEYS.split(","):
            value = value.strip()
            if value:
                keys.add(value)
    return keys


def _get_bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    parts = authorization.split()
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1]
    return None


def _decode_jwt(token: str) -> dict:
    settings = get_settings()
    if not settings.JWT_SECRET:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="JWT auth is not configured",
        )

    options = {"verify_aud": bool(settings.JWT_AUDIENCE)}
    try:
        return jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            audience=settings.JWT_AUDIENCE,
            issuer=settings.JWT_ISSUER,
            options=options,
        )
    except jwt.PyJWTError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid JWT",
        ) from exc


def authenticate_request(
    api_key: Optional[str],
    authorization: Optional[str],
    *,
    require_auth: bool = False,
) -> Optional[dict]:
    settings = get_settings()
    keys = _load_api_keys()

    if settings.JWT_REQUIRED:
        require_auth = True

    if api_key and api_key in keys and not settings.JWT_REQUIRED:
        return {"auth_type": "api_key"}

    token = _get_bearer_token(authorization)
    if token:
        try:
            payload = _decode_jwt(token)
            return {"auth_type": "jwt", "payload": payload}
        except HTTPException:
            if settings.JWT_REQUIRED:
                raise

    if (require_auth or keys or settings.JWT_REQUIRED) and (
        keys or settings.JWT_SECRET or settings.JWT_REQUIRED
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    return None


# ==============================
# Email acknowledgment links
# ==============================

def make_ack_token(alert_id: int) -> str:
    secret = get_settings().ACK_TOKEN_SECRET.encode("utf-8")
    digest = hmac.new(secret, "alert:{}".format(alert_id).encode("utf-8"), hashlib.sha256)
    return digest.hexdigest()


def verify_ack_token(alert_id: int, token: Optional[str]) -> bool:
    if not token:
        return False
    return hmac.compare_digest(make_ack_token(alert_id), token.strip())


# ==============================
# Provider webhook signatures
# ==============================

def _pad_b64(value: str) -> str:
    return value + "=" * (-len(value) % 4)


def _svix_secret_bytes(secret: str) -> Optional[bytes]:
    if not secret.startswith("whsec_"):
        return secret.encode("utf-8")
    encoded = _pad_b64(secret[len("whsec_"):])
    for decoder in (base64.b64decode, base64.urlsafe_b64decode):
        try:
            decoded = decoder(encoded)
        except (binascii.Error, ValueError):
            continue
        if decoded:
            return decoded
    return None


def verify_svix_signature(
    body: bytes,
    headers: Mapping[str, str],
    secret: str,
    *,
    now: Optional[float] = None,
) -> bool:
    """Check a Resend (Svix) webhook signature header set."""
    svix_id = headers.get("svix-id", "")
    svix_timestamp = headers.get("svix-timestamp", "")
    svix_signature = headers.get("svix-signature", "")
    if not svix_id or not svix_timestamp or not svix_signature:
        return False

    try:
        timestamp = int(svix_timestamp)
    except (TypeError, ValueError):
        return False
    current = int(now if now is not None else time.time())
    if abs(current - timestamp) > _SVIX_TOLERANCE_SECONDS:
        return False

    secret_bytes = _svix_secret_bytes(secret)
    if secret_bytes is None:
        return False

    signed_payload = "{}.{}.{}".format(svix_id, svix_timestamp, body.decode("utf-8"))
    expected = base64.b64encode(
        hmac.new(secret_bytes, signed_payload.encode("utf-8"), hashlib.sha256).digest()
    ).decode("utf-8")

    # "v1,<sig> v1,<sig2>"
    for entry in svix_signature.split(" "):
        parts = entry.split(",", 1)
        if len(parts) == 2 and parts[0] == "v1" and hmac.compare_digest(parts[1], expected):
            return True
    return False


def twilio_signature(url: str, params: Mapping[str, str], auth_token: str) -> str:
    payload = url + "".join(
        "{}{}".format(key, params[key]) for key in sorted(params)
    )
    digest = hmac.new(auth_token.encode("utf-8"), payload.encode("utf-8"), hashlib.sha1).digest()
    return base64.b64encode(digest).decode("utf-8")


def verify_twilio_signature(
    url: str,
    params: Mapping[str, str],
    signature: Optional[str],
    auth_token: str,
) -> bool:
    if not signature:
        return False
    return hmac.compare_digest(twilio_signature(url, params, auth_token), signature.strip())


__all__ = [
    "authenticate_request",
    "make_ack_token",
    "twilio_signature",
    "verify_ack_token",
    "verify_svix_signature",
    "verify_twilio_signature",
]
