"""
Campus Eats — JWT Authentication Middleware
Validates Bearer token on all protected routes; returns 401 on failure.
"""
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from jose import JWTError

from campus_eats.core.security import current_user_from_claims, decode_token

# Paths that do NOT require authentication
PUBLIC_PATHS = {
    "/health",
    "/metrics",
    "/",
    "/docs",
    "/openapi.json",
    # Called by the payment provider; the event is verified before it reaches us
    "/payments/webhook",
}


def _unauthorized(detail: str) -> JSONResponse:
    return JSONResponse(
        status_code=401,
        content={"detail": detail},
        headers={"WWW-Authenticate": "Bearer"},
    )


class JWTAuthMiddleware(BaseHTTPMiddleware):
    """
    Intercepts every request. Validates JWT Bearer token.
    Attaches the caller (CurrentUser) to request.state.user on success.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.method == "OPTIONS":
            return await call_next(request)

        if request.url.path in PUBLIC_PATHS or request.url.path.startswith("/metrics"):
            return await call_next(request)

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return _unauthorized("Missing or invalid Authorization header. Expected: Bearer <token>")

        token = auth_header.split(" ", 1)[1]
        try:
            request.state.user = current_user_from_claims(decode_token(token))
        except JWTError as exc:
            return _unauthorized(f"Invalid or expired JWT: {str(exc)}")
        except ValueError as exc:
            return _unauthorized(str(exc))

        return await call_next(request)
