"""
Per-request response time and SQL statement counting.

Every HTTP response carries ``X-Response-Time-Ms`` and ``X-Query-Count``.
Requests slower than ``settings.SLOW_REQUEST_MS`` are logged at WARNING
with their statement count, everything else at DEBUG.
"""
import logging
import time
from contextvars import ContextVar

from sqlalchemy import event
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from sitetrack.config import settings

logger = logging.getLogger(__name__)

query_count_var: ContextVar[int] = ContextVar("query_count", default=0)


def install_query_counter(engine) -> None:
    """Hook *engine* so each executed statement bumps ``query_count_var``.

    Install once per engine: the app engine in ``database.py`` and the test
    engine in ``tests/conftest.py``.
    """

    @event.listens_for(engine.sync_engine, "before_cursor_execute")
    def _on_execute(conn, cursor, statement, parameters, context, executemany):
        query_count_var.set(query_count_var.get() + 1)


def _with_timing_headers(message: Message, elapsed_ms: float, queries: int) -> Message:
    headers = list(message.get("headers", []))
    headers += [
        (b"x-response-time-ms", f"{elapsed_ms}".encode()),
        (b"x-query-count", f"{queries}".encode()),
    ]
    return {**message, "headers": headers}


class TimingMiddleware:
    # Pure ASGI: the app runs in this task, so the ContextVar is readable here.

    def __init__(self, app: ASGIApp, slow_ms: float | None = None) -> None:
        self.app = app
        self.slow_ms = settings.SLOW_REQUEST_MS if slow_ms is None else slow_ms

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        query_count_var.set(0)
        started = time.perf_counter()

        async def send_with_timing(message: Message) -> None:
            if message["type"] == "http.response.start":
                elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
                queries = query_count_var.get()
                level = logging.WARNING if elapsed_ms >= self.slow_ms else logging.DEBUG
                logger.log(
                    level, "%s %s -> %s in %sms (%d queries)",
                    scope["method"], scope["path"], message["status"], elapsed_ms, queries,
                )
                message = _with_timing_headers(message, elapsed_ms, queries)
            await send(message)

        await self.app(scope, receive, send_with_timing)
