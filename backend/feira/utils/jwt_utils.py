import os
import time
from typing import Optional, Dict, Any, Tuple

import jwt

USER_TOKEN_TTL_SECONDS = 60 * 60 * 24 * 30
ADMIN_TOKEN_TTL_SECONDS = 60 * 60 * 24


def _user_secret() -> str:
    return os.getenv("USER_JWT_SECRET") or "dev-user-secret-change-me"


def _admin_secret() -> str:
    return os.getenv("ADMIN_JWT_SECRET") or "dev-admin-secret-change-me"


def create_user_token(user, ttl_seconds: int = USER_TOKEN_TTL_SECONDS) -> str:
    now = int(time.time())
    payload = {
        "sub": str(user.id),
        "username": user.username,
        "email": user.email,
        "iat": now,
        "exp": now + ttl_seconds,
        "type": "user",
    }
    return jwt.encode(payload, _user_secret(), algorithm="HS256")


def create_admin_token(admin, ttl_seconds: int = ADMIN_TOKEN_TTL_SECONDS) -> str:
    now = int(time.time())
    payload = {
        "sub": str(admin.id),
        "email": admin.email,
        "role": admin.role or "admin",
        "iat": now,
        "exp": now + ttl_seconds,
        "type": "admin",
    }
    return jwt.encode(payload, _admin_secret(), algorithm="HS256")


def _decode(token: str, secret: str, expected_type: str) -> Optional[Dict[str, Any]]:
    try:
        payload = jwt.decode(token, secret, algorithms=["HS256"])
    except jwt.PyJWTError:
        return None
    if payload.get("type") != expected_type:
        return None
    return payload


def decode_user_token(token: str) -> Optional[Dict[str, Any]]:
    return _decode(token, _user_secret(), "user")


def decode_admin_token(token: str) -> Optional[Dict[str, Any]]:
    return _decode(token, _admin_secret(), "admin")


def parse_auth_header(auth_header: str) -> Tuple[Optional[str], Optional[str]]:
    if not auth_header:
        return None, None
    parts = auth_header.split()
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1], "bearer"
    return None, None


def get_bearer_token(auth_header: str) -> Optional[str]:
    if not auth_header:
        return None
    token, _scheme = parse_auth_header(auth_header)
    return token
