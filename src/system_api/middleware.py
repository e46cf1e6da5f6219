"""
Custom middleware for the system API

Request logging, the per-request cache execution, the growl cookie queue,
the nonce-protected web flush trigger and HTTP cache headers.
"""
import logging
import time
import uuid
from email.utils import formatdate
from typing import Callable, Iterable, Optional
from urllib.parse import parse_qsl, urlencode

from fastapi import Request
from starlette.background import BackgroundTasks
from starlette.datastructures import URL
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import RedirectResponse

from ..cache_control.registry import CacheControl
from ..shared.config import ConfigError
from ..shared.logging_config import ExecutionContext
from .auth import NonceManager, SiteUser
from .growl import GROWL_COOKIE, GrowlQueue

logger = logging.getLogger(__name__)

# Headers the host sends on responses that must never be cached
NOCACHE_HEADERS = {
    "Expires": "Wed, 11 Jan 1984 05:00:00 GMT",
    "Cache-Control": "no-cache, must-revalidate, max-age=0",
}

FLUSH_ACTION = "cache_flush"
ACTION_PARAM = "mwp-action"
NONCE_PARAM = "_wpnonce"
FLUSH_NOTICE = "Cache flushed"

UserLoader = Callable[[Request], Optional[SiteUser]]


def default_user_loader(request: Request) -> Optional[SiteUser]:
    """Return the user the host attached to the request, if any."""
    return getattr(request.state, "user", None)


def remove_query_args(url: URL, names: Iterable[str]) -> str:
    """Relative URL of the request without the given query arguments."""
    names = set(names)
    query = [(k, v) for k, v in parse_qsl(url.query, keep_blank_values=True) if k not in names]
    query_string = urlencode(query)
    return f"{url.path}?{query_string}" if query_string else url.path


def get_flush_url(url: str, user: Optional[SiteUser], nonces: NonceManager) -> str:
    """Add the flush action and a fresh nonce to a URL."""
    args = urlencode({ACTION_PARAM: FLUSH_ACTION, NONCE_PARAM: nonces.create(FLUSH_ACTION, user)})
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{args}"


class LoggingMiddleware(BaseHTTPMiddleware):
    """Logging middleware for request/response tracking."""

    async def dispatch(self, request: Request, call_next):
        """Log request and response information."""
        start_time = time.time()
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        with ExecutionContext(request_id_value=request_id, source="http"):
            logger.info(
                f"Request: {request.method} {request.url.path} "
                f"from {request.client.host if request.client else 'unknown'}"
            )

            response = await call_next(request)

            process_time = time.time() - start_time
            logger.info(
                f"Response: {response.status_code} "
                f"in {process_time:.3f}s"
            )

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = str(process_time)

        return response


class CacheExecutionMiddleware(BaseHTTPMiddleware):
    """
    Gives every request its own cache execution.

    The execution is closed once the response has been sent, so deferred
    flushes and cache-tier dispatches never hold up the client.
    """

    async def dispatch(self, request: Request, call_next):
        services = request.app.state.cache_services

        try:
            execution = services.execution()
        except ConfigError as e:
            logger.warning(f"Cache control unavailable: {e}")
            execution = None

        request.state.cache = execution

        try:
            response = await call_next(request)
        except Exception:
            if execution is not None:
                await execution.close()
            raise

        if execution is not None:
            tasks = BackgroundTasks()
            if response.background is not None:
                tasks.add_task(response.background)
            tasks.add_task(execution.close)
            response.background = tasks

        return response


class GrowlMiddleware(BaseHTTPMiddleware):
    """Reads queued notices from the growl cookie and writes new ones back."""

    def __init__(self, app, max_messages: int = 10):
        super().__init__(app)
        self.max_messages = max_messages

    async def dispatch(self, request: Request, call_next):
        cookie = request.cookies.get(GROWL_COOKIE)
        incoming = GrowlQueue.from_cookie(cookie, self.max_messages)

        request.state.growl_messages = list(incoming.messages)
        request.state.growl = GrowlQueue(max_messages=self.max_messages)

        response = await call_next(request)

        queue = request.state.growl
        secure = request.url.scheme == "https"
        if queue.changed:
            response.set_cookie(GROWL_COOKIE, queue.to_cookie(), path="/", secure=secure)
        elif cookie is not None:
            response.delete_cookie(GROWL_COOKIE, path="/", secure=secure)

        return response


class CacheFlushRequestMiddleware(BaseHTTPMiddleware):
    """
    Flushes every cache tier for ``?mwp-action=cache_flush&_wpnonce=...``.

    Only users allowed to see the cache controls with a valid nonce trigger a
    flush; everyone else passes through untouched. A successful trigger
    redirects back to the same URL without the action arguments.
    """

    def __init__(self, app, nonces: NonceManager, user_loader: UserLoader = default_user_loader):
        super().__init__(app)
        self.nonces = nonces
        self.user_loader = user_loader

    async def dispatch(self, request: Request, call_next):
        if request.method != "GET" or request.query_params.get(ACTION_PARAM) != FLUSH_ACTION:
            return await call_next(request)

        execution = getattr(request.state, "cache", None)
        user = self.user_loader(request)
        nonce = request.query_params.get(NONCE_PARAM)

        if (
            execution is None
            or not CacheControl.is_viewable(user)
            or self.nonces.verify(nonce, FLUSH_ACTION, user) is False
        ):
            return await call_next(request)

        results = await execution.control.flush()
        if results:
            growl = getattr(request.state, "growl", None)
            if growl is not None:
                growl.add(FLUSH_NOTICE)

        logger.info(f"Cache flushed from web request by user {user.id}")

        return RedirectResponse(
            remove_query_args(request.url, (ACTION_PARAM, NONCE_PARAM)),
            status_code=302
        )


class CacheHeadersMiddleware(BaseHTTPMiddleware):
    """
    Sets HTTP cache lifetime headers on cacheable pages.

    Only successful GET and HEAD responses outside ``exempt_paths`` are
    cacheable. Responses already carrying a no-cache header are left alone.
    ``?nocache`` forces the no-cache headers.
    """

    CACHEABLE_METHODS = frozenset({"GET", "HEAD"})

    def __init__(
        self,
        app,
        max_age: int = 7 * 24 * 3600,
        enabled: bool = True,
        exempt_paths: Iterable[str] = ("/health",)
    ):
        super().__init__(app)
        self.max_age = max_age
        self.enabled = enabled
        self.exempt_paths = frozenset(exempt_paths)

    def is_cacheable(self, request: Request, response) -> bool:
        return (
            request.method in self.CACHEABLE_METHODS
            and 200 <= response.status_code < 300
            and request.url.path not in self.exempt_paths
        )

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        if not self.enabled or not self.is_cacheable(request, response):
            return response

        if "nocache" in request.query_params:
            response.headers.update(NOCACHE_HEADERS)
            return response

        if any(response.headers.get(name) == value for name, value in NOCACHE_HEADERS.items()):
            return response

        response.headers["Expires"] = formatdate(time.time() + self.max_age, usegmt=True)
        response.headers["Cache-Control"] = f"max-age={self.max_age}"

        return response
