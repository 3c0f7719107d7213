import time
from contextvars import ContextVar

from sqlalchemy import event
from starlette.types import ASGIApp, Receive, Scope, Send

# ---------------------------------------------------------------------------
# Per-request context variables
# ---------------------------------------------------------------------------

query_count_var: ContextVar[int] = ContextVar("query_count", default=0)
cache_hits_var: ContextVar[int] = ContextVar("cache_hits", default=0)
cache_misses_var: ContextVar[int] = ContextVar("cache_misses", default=0)


def install_query_counter(engine) -> None:
    """
    Register a ``before_cursor_execute`` listener on *engine* that bumps
    the per-request ``query_count_var`` for every SQL statement.

    Must be called once per engine (production engine in ``database.py``,
    test engine in ``conftest.py``).
    """
    sync_engine = engine.sync_engine

    @event.listens_for(sync_engine, "before_cursor_execute")
    def _count_query(conn, cursor, statement, parameters, context, executemany):
        query_count_var.set(query_count_var.get() + 1)


def record_cache_lookup(hit: bool) -> None:
    """Count one cache read; errors count as misses."""
    if hit:
        cache_hits_var.set(cache_hits_var.get() + 1)
    else:
        cache_misses_var.set(cache_misses_var.get() + 1)


# ---------------------------------------------------------------------------
# Middleware (pure ASGI, so ContextVar mutations made by the handler are
# visible here after the response starts)
# ---------------------------------------------------------------------------

class TimingMiddleware:
    """
    Adds diagnostic response headers:

    - ``X-Response-Time-Ms``: wall-clock time for the request.
    - ``X-Query-Count``: SQL statements executed while handling it.
    - ``X-Cache-Hits`` / ``X-Cache-Misses``: cache reads that did or did
      not produce a usable value.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        query_count_var.set(0)
        cache_hits_var.set(0)
        cache_misses_var.set(0)
        start = time.perf_counter()

        async def send_wrapper(message):
            if message["type"] == "http.response.start":
                duration_ms = round((time.perf_counter() - start) * 1000, 2)
                headers = list(message.get("headers", []))
                headers.append((b"x-response-time-ms", str(duration_ms).encode()))
                headers.append((b"x-query-count", str(query_count_var.get()).encode()))
                headers.append((b"x-cache-hits", str(cache_hits_var.get()).encode()))
                headers.append((b"x-cache-misses", str(cache_misses_var.get()).encode()))
                message["headers"] = headers
            await send(message)

        await self.app(scope, receive, send_wrapper)
