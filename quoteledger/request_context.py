"""
Who-sent-this details captured from the current HTTP request.

The audit log records IP address and user agent on every event. Callers may
pass a RequestContext explicitly; otherwise the audit log falls back to the
ambient one set by the HTTP middleware in main.py.
"""
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Mapping, Optional


@dataclass(frozen=True)
class RequestContext:
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


_current: ContextVar[Optional[RequestContext]] = ContextVar("request_context", default=None)


def context_from_headers(headers: Mapping[str, str], peer: Optional[str] = None) -> RequestContext:
    """First hop of X-Forwarded-For, then X-Real-IP, then the socket peer."""
    ip_address = None
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        ip_address = forwarded.split(",")[0].strip() or None
    if ip_address is None:
        ip_address = headers.get("x-real-ip") or peer
    return RequestContext(ip_address=ip_address, user_agent=headers.get("user-agent"))


def set_current(context: Optional[RequestContext]):
    return _current.set(context)


def reset_current(token) -> None:
    _current.reset(token)


def get_current() -> Optional[RequestContext]:
    return _current.get()
