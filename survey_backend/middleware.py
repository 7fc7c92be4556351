"""
HTTP middleware: CORS, per-client rate limiting and request size limits.
"""

from __future__ import annotations

import math
import threading
import time
from typing import Callable, Dict, Iterable

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.datastructures import Headers
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from survey_backend.dependencies import client_ip


def apply_cors(app: FastAPI, *, origins: Iterable[str] | None = None) -> None:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(origins or ["*"]),
        allow_methods=["*"],
        allow_headers=["*"],
    )


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Fixed-window request counter per client address."""

    def __init__(
        self,
        app,
        *,
        max_requests: int = 120,
        window_seconds: float = 60.0,
        trust_proxy: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(app)
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.trust_proxy = trust_proxy
        self.clock = clock
        self._windows: Dict[str, tuple[float, int]] = {}
        self._lock = threading.Lock()

    def _hit(self, key: str) -> float | None:
        """Count one request; return seconds to wait if over the limit."""
        now = self.clock()
        with self._lock:
            started, count = self._windows.get(key, (now, 0))
            if now - started >= self.window_seconds:
                started, count = now, 0
            count += 1
            self._windows[key] = (started, count)
            if len(self._windows) > 10_000:
                self._evict(now)
        if count > self.max_requests:
            return self.window_seconds - (now - started)
        return None

    def _evict(self, now: float) -> None:
        stale = [
            k for k, (started, _) in self._windows.items()
            if now - started >= self.window_seconds
        ]
        for k in stale:
            del self._windows[k]

    async def dispatch(self, request: Request, call_next):
        if self.max_requests <= 0:
            return await call_next(request)
        retry_after = self._hit(client_ip(request, self.trust_proxy))
        if retry_after is not None:
            return JSONResponse(
                {"error": "Too many requests"},
                status_code=429,
                headers={"Retry-After": str(max(1, math.ceil(retry_after)))},
            )
        return await call_next(request)


class BodySizeLimitMiddleware:
    """Reject request bodies larger than ``max_bytes``.

    A declared Content-Length is checked up front. Chunked bodies carry no
    length, so bytes are counted as the app reads them and the read fails
    with 413 once the total passes the limit.
    """

    def __init__(self, app: ASGIApp, *, max_bytes: int):
        self.app = app
        self.max_bytes = max_bytes

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        length = Headers(scope=scope).get("content-length")
        if length is not None:
            try:
                too_large = int(length) > self.max_bytes
            except ValueError:
                response = JSONResponse({"error": "Invalid Content-Length"}, status_code=400)
                await response(scope, receive, send)
                return
            if too_large:
                response = JSONResponse({"error": "Payload too large"}, status_code=413)
                await response(scope, receive, send)
                return

        received = 0

        async def limited_receive() -> Message:
            nonlocal received
            message = await receive()
            if message["type"] == "http.request":
                received += len(message.get("body", b""))
                if received > self.max_bytes:
                    # FastAPI re-raises HTTPExceptions hit while reading the body.
                    raise HTTPException(status_code=413, detail="Payload too large")
            return message

        await self.app(scope, limited_receive, send)
