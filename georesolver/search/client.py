"""Location directory search: collaborator contract and httpx adapter."""
from __future__ import annotations

import asyncio
import time
from typing import Any, Dict, List, Optional, Protocol

import httpx
import orjson
import structlog
from pydantic import ValidationError

from georesolver.models import Coordinate, LocationCandidate
from georesolver.observability.metrics import MetricsRegistry
from georesolver.observability.tracing import log_retry, log_search_result, span

LOGGER = structlog.get_logger(__name__)

SEARCH_PATH = "/locations/v1/cities/search"
GEOPOSITION_PATH = "/locations/v1/cities/geoposition/search"
AUTOCOMPLETE_PATH = "/locations/v1/cities/autocomplete"


class LocationSearchClient(Protocol):
    """Text and geoposition lookups against a remote location directory."""

    async def search(self, text: str) -> List[LocationCandidate]:
        ...

    async def geoposition_search(self, coordinate: Coordinate) -> Optional[LocationCandidate]:
        ...


def _parse_candidates(payload: Any) -> List[LocationCandidate]:
    if not isinstance(payload, list):
        return []
    candidates: List[LocationCandidate] = []
    for entry in payload:
        try:
            candidates.append(LocationCandidate.model_validate(entry))
        except ValidationError as exc:
            LOGGER.warning("directory_entry_invalid", error=str(exc))
    return candidates


class RateLimiter:
    """Spaces calls at least 1/max_qps seconds apart."""

    def __init__(self, max_qps: float) -> None:
        self._interval = 1.0 / max_qps if max_qps > 0 else 0.0
        self._last = 0.0
        self._lock = asyncio.Lock()

    async def wait(self) -> None:
        if not self._interval:
            return
        async with self._lock:
            delay = self._last + self._interval - time.monotonic()
            if delay > 0:
                await asyncio.sleep(delay)
            self._last = time.monotonic()


class DirectorySearchClient:
    """AccuWeather-style locations API over a shared `httpx.AsyncClient`."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        api_key: Optional[str],
        metrics: Optional[MetricsRegistry] = None,
        attempts: int = 3,
        retry_delay: float = 1.0,
        max_qps: float = 5.0,
        language: Optional[str] = None,
    ) -> None:
        self._client = client
        self._api_key = api_key
        self._metrics = metrics or MetricsRegistry()
        self._attempts = max(1, attempts)
        self._retry_delay = retry_delay
        self._limiter = RateLimiter(max_qps)
        self._language = language
        if not api_key:
            LOGGER.warning("directory_api_key_missing")

    def _params(self, query: str) -> Dict[str, str]:
        params = {"q": query}
        if self._api_key:
            params["apikey"] = self._api_key
        if self._language:
            params["language"] = self._language
        return params

    async def _get(self, path: str, *, query: str) -> Any:
        for attempt in range(1, self._attempts + 1):
            await self._limiter.wait()
            try:
                with span(name="directory", target=path):
                    response = await self._client.get(path, params=self._params(query))
                if response.is_error:
                    # The request URL carries the api key; keep it out of the message.
                    raise httpx.HTTPStatusError(
                        f"Directory returned HTTP {response.status_code} for {path}",
                        request=response.request,
                        response=response,
                    )
                return orjson.loads(response.content) if response.content else None
            except httpx.TransportError as exc:
                self._metrics.incr("search_retries")
                log_retry(attempt=attempt, step=path, reason=str(exc) or type(exc).__name__)
                if attempt == self._attempts:
                    raise
                await asyncio.sleep(self._retry_delay * attempt)
        return None

    async def search(self, text: str) -> List[LocationCandidate]:
        """Return every directory entry matching the free-text query."""
        start = time.perf_counter()
        payload = await self._get(SEARCH_PATH, query=text)
        candidates = _parse_candidates(payload)
        log_search_result(
            query=text,
            matches=len(candidates),
            elapsed_ms=int((time.perf_counter() - start) * 1000),
        )
        return candidates

    async def geoposition_search(self, coordinate: Coordinate) -> Optional[LocationCandidate]:
        """Return the directory entry nearest to the coordinate, if any."""
        payload = await self._get(
            GEOPOSITION_PATH,
            query=f"{coordinate.latitude},{coordinate.longitude}",
        )
        if not payload:
            return None
        try:
            return LocationCandidate.model_validate(payload)
        except ValidationError as exc:
            LOGGER.warning("geoposition_entry_invalid", error=str(exc))
            return None

    async def autocomplete(self, text: str) -> List[LocationCandidate]:
        """Suggestions for partially typed names; never raises."""
        text = (text or "").strip()
        if len(text) < 2:
            return []
        try:
            payload = await self._get(AUTOCOMPLETE_PATH, query=text)
        except httpx.HTTPError as exc:
            LOGGER.warning("autocomplete_failed", query=text, error=str(exc))
            return []
        return _parse_candidates(payload)
