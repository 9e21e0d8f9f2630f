"""Factories for HTTP sessions used by the collaborator adapters."""
from __future__ import annotations

import contextlib
from typing import AsyncIterator, Optional

import httpx


@contextlib.asynccontextmanager
async def create_http_client(
    *,
    base_url: str,
    user_agent: str,
    timeout: float,
    max_connections: int,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> AsyncIterator[httpx.AsyncClient]:
    """Yield a configured `httpx.AsyncClient` for the duration of the context."""
    headers = {"User-Agent": user_agent, "Accept": "application/json"}
    limits = httpx.Limits(max_connections=max_connections, max_keepalive_connections=max_connections)
    async with httpx.AsyncClient(
        base_url=base_url,
        headers=headers,
        limits=limits,
        timeout=timeout,
        transport=transport,
    ) as client:
        yield client
