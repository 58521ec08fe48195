from __future__ import annotations

import asyncio
import json
import socket
from dataclasses import dataclass, field
from typing import Any
from unittest.mock import AsyncMock, MagicMock

from aiohttp import web
from multidict import CIMultiDict


@dataclass
class ReceivedRequest:
    headers: CIMultiDict[str]
    body: bytes
    received_at: float

    @property
    def json(self) -> dict[str, Any]:
        return json.loads(self.body.decode("utf-8"))

    @property
    def is_probe(self) -> bool:
        return self.headers.get("X-Webhook-Test") == "true"


@dataclass
class Receiver:
    """Local HTTP endpoint that records every POST it gets.

    ``statuses`` are returned in order; the last one repeats.
    """

    statuses: list[int] = field(default_factory=lambda: [200])
    delay: float = 0.0
    requests: list[ReceivedRequest] = field(default_factory=list)
    _runner: web.AppRunner | None = None
    _port: int | None = None
    _arrived: asyncio.Event = field(default_factory=asyncio.Event)

    async def _handle(self, request: web.Request) -> web.Response:
        raw = await request.read()
        self.requests.append(
            ReceivedRequest(
                headers=CIMultiDict(request.headers),
                body=raw,
                received_at=asyncio.get_running_loop().time(),
            )
        )
        self._arrived.set()
        status = self.statuses[min(len(self.requests), len(self.statuses)) - 1]
        if self.delay:
            await asyncio.sleep(self.delay)
        return web.Response(status=status, text="receiver says hi")

    async def start(self) -> "Receiver":
        app = web.Application()
        app.router.add_post("/hook", self._handle)
        self._runner = web.AppRunner(app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, "127.0.0.1", 0)
        await site.start()
        self._port = site._server.sockets[0].getsockname()[1]  # type: ignore[union-attr]
        return self

    async def stop(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()

    @property
    def url(self) -> str:
        return f"http://127.0.0.1:{self._port}/hook"

    @property
    def deliveries(self) -> list[ReceivedRequest]:
        """Requests excluding registration/test probes."""
        return [r for r in self.requests if not r.is_probe]

    async def wait_for(self, count: int, timeout: float = 3.0) -> list[ReceivedRequest]:
        async def _wait() -> None:
            while len(self.deliveries) < count:
                self._arrived.clear()
                await self._arrived.wait()

        await asyncio.wait_for(_wait(), timeout)
        return self.deliveries


def unused_url() -> str:
    """URL on a port nothing listens on: connections are refused."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]
    return f"http://127.0.0.1:{port}/hook"


def make_pool(conn: Any) -> MagicMock:
    """asyncpg-like pool whose ``acquire()`` yields ``conn``."""
    acquire_cm = MagicMock()
    acquire_cm.__aenter__ = AsyncMock(return_value=conn)
    acquire_cm.__aexit__ = AsyncMock(return_value=False)
    pool = MagicMock()
    pool.acquire.return_value = acquire_cm
    return pool


def user_headers(owner_id: str) -> dict[str, str]:
    return {"X-User-Id": owner_id}
