from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from fastapi import Request
from fastapi.responses import JSONResponse
from jose import JWTError

from app.core.security import decode_token


def user_or_ip(request: Request) -> str:
    """Signed-in callers are limited per user, anonymous ones per address."""
    auth = request.headers.get("authorization") or ""
    if auth.lower().startswith("bearer "):
        try:
            return f"user:{decode_token(auth[7:].strip())}"
        except (JWTError, KeyError, ValueError):
            # the route itself answers 401
            return get_remote_address(request)
    return get_remote_address(request)


limiter = Limiter(key_func=user_or_ip)

def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    return JSONResponse(
        status_code=429,
        content={"detail": f"Too many scan requests ({exc.detail}). Please try again later."},
        headers={"Retry-After": "60"},
    )
