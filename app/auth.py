"""Signed session token auth middleware."""

from __future__ import annotations

import logging
import os
import time
from typing import Optional

from jose import jwt
from jose.exceptions import JWTError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse


_COOKIE_JWT_PREFIX = "jwt."
_OPEN_PATHS = {"/health"}

logger = logging.getLogger("crm.auth")


def auth_disabled() -> bool:
    return os.getenv("CRM_DISABLE_AUTH", "").strip().lower() in ("1", "true", "yes")


def _get_bearer_token(request: Request) -> Optional[str]:
    auth = request.headers.get("Authorization", "")
    if not auth.startswith("Bearer "):
        return None
    return auth.split(" ", 1)[1].strip() or None


def _get_cookie_token(request: Request, cookie_name: str) -> Optional[str]:
    value = request.cookies.get(cookie_name)
    if not value:
        return None
    if value.startswith(_COOKIE_JWT_PREFIX):
        value = value[len(_COOKIE_JWT_PREFIX):]
    return value or None


def make_session_token(claims: dict, secret: str) -> str:
    return jwt.encode(claims, secret, algorithm="HS256")


def verify_session_token(token: str, secret: str) -> dict:
    return jwt.decode(token, secret, algorithms=["HS256"], options={"verify_aud": False})


def _unauthorized(code: str, message: str, detail: dict | None = None) -> JSONResponse:
    return JSONResponse(
        {
            "ok": False,
            "errors": [{"code": code, "message": message, "path": "Authorization", "detail": detail}],
            "warnings": [],
        },
        status_code=401,
    )


class SessionAuthMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, secret: str, cookie_name: str = "mirrorsid") -> None:
        super().__init__(app)
        self._secret = secret
        self._cookie_name = cookie_name

    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        if auth_disabled():
            return await call_next(request)
        if request.method == "OPTIONS" or request.url.path in _OPEN_PATHS:
            return await call_next(request)

        token = _get_bearer_token(request) or _get_cookie_token(request, self._cookie_name)
        if not token:
            logger.warning("auth_missing_token path=%s", request.url.path)
            return _unauthorized("AUTH_MISSING_TOKEN", "Missing session token")

        try:
            claims = verify_session_token(token, self._secret)
        except JWTError as exc:
            logger.warning("auth_invalid_token path=%s error=%s", request.url.path, exc)
            return _unauthorized("AUTH_INVALID_TOKEN", "Invalid session token", {"error": str(exc)})

        request.state.user = {
            "id": claims.get("userId") or claims.get("sub"),
            "role": claims.get("role"),
            "claims": claims,
        }
        request.state.auth_ms = (time.perf_counter() - start) * 1000
        return await call_next(request)
