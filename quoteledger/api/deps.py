"""Shared FastAPI dependencies."""
from fastapi import Header, HTTPException, Request, status

from quoteledger.request_context import RequestContext, context_from_headers
from quoteledger.services.rate_limit import RateLimiter


def get_current_user_id(x_user_id: str = Header(..., alias="X-User-Id")) -> str:
    """
    Contractor identity. Authentication happens upstream; by the time a
    request reaches this service the gateway has put the user id here.
    """
    if not x_user_id.strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing user id")
    return x_user_id.strip()


def get_request_context(request: Request) -> RequestContext:
    peer = request.client.host if request.client else None
    return context_from_headers(request.headers, peer)


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter
