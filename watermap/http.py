"""Factories for shared outbound HTTP clients."""
from __future__ import annotations

import contextlib
from typing import AsyncIterator, Optional

import httpx

USER_AGENT = "watermap/0.1 (+https://github.com/watermap)"


@contextlib.asynccontextmanager
async def create_http_client(
    *,
    timeout: float,
    max_connections: int,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> AsyncIterator[httpx.AsyncClient]:
    """Yield an ``httpx.AsyncClient`` sized for one view session.

    ``max_connections`` bounds concurrent sockets and should be at least the
    marker batch size so a whole batch can be in flight at once.
    """
    limits = httpx.Limits(max_connections=max_connections, max_keepalive_connections=max_connections)
    async with httpx.AsyncClient(
        headers={"User-Agent": USER_AGENT},
        limits=limits,
        timeout=timeout,
        transport=transport,
    ) as client:
        yield client
