"""
Onionoo relay feed client.

Queries the Tor Project's Onionoo ``details`` document, the external feed
the registry is synchronized from. Every response body is read through
[read_bounded_json()][derepute.utils.http.read_bounded_json]. Throttling
(HTTP 429) and server errors (5xx) raise
[FeedUnavailableError][derepute.core.exceptions.FeedUnavailableError] so
that callers can retry them; any other unusable response raises
[FeedError][derepute.core.exceptions.FeedError].

A previously downloaded details document can stand in for the API
(``FeedConfig.source_file``), which keeps a synchronization run
reproducible against a fixed snapshot.

See Also:
    [Synchronizer][derepute.services.synchronizer.Synchronizer]: Fetches
        the ranked feed through this client.
    <https://metrics.torproject.org/onionoo.html>: Onionoo protocol.
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from pathlib import Path
from types import TracebackType
from typing import Any, NamedTuple, Self

import aiohttp

from derepute.core.exceptions import FeedError, FeedUnavailableError
from derepute.core.logger import Logger
from derepute.utils.http import read_bounded_json

from .configs import FeedConfig


DETAILS_PATH = "/details"
TOP_RANKING = "-consensus_weight"
DEFAULT_LIMIT = 100


class FeedStatus(NamedTuple):
    """Freshness information of the feed."""

    version: str | None
    relays_published: str | None
    relay_count: int


def load_details_document(path: str | Path) -> dict[str, Any]:
    """Read a saved Onionoo details document from *path*.

    Raises:
        FileNotFoundError: If *path* does not exist.
        FeedError: If the file is not a details document.
    """
    source = Path(path)
    with source.open(encoding="utf-8") as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as e:
            raise FeedError(f"invalid details document {source}: {e}") from e
    return _check_document(data, str(source))


def _check_document(data: Any, origin: str) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise FeedError(f"{origin}: expected a JSON object, got {type(data).__name__}")
    relays = data.get("relays", [])
    if not isinstance(relays, list):
        raise FeedError(f"{origin}: 'relays' must be a list")
    return data


def _query(**params: Any) -> dict[str, str]:
    query: dict[str, str] = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, bool):
            query[key] = "true" if value else "false"
        elif isinstance(value, list | tuple):
            query[key] = ",".join(str(v) for v in value)
        else:
            query[key] = str(value)
    return query


class OnionooClient:
    """Async client for the Onionoo ``details`` endpoint.

    Use as an async context manager to share one ``aiohttp`` session
    across calls; outside a context each call opens its own session.
    An externally created session can also be injected.

    Example:
        async with OnionooClient(FeedConfig()) as client:
            entries = await client.fetch_top_relays(limit=100)
    """

    def __init__(
        self,
        config: FeedConfig | None = None,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._config = config or FeedConfig()
        self._session = session
        self._owns_session = False
        self._logger = Logger("feed")

    @property
    def config(self) -> FeedConfig:
        return self._config

    async def __aenter__(self) -> Self:
        if self._session is None:
            self._session = self._new_session()
            self._owns_session = True
        return self

    async def __aexit__(
        self,
        _exc_type: type[BaseException] | None,
        _exc_val: BaseException | None,
        _exc_tb: TracebackType | None,
    ) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None
            self._owns_session = False

    def _new_session(self) -> aiohttp.ClientSession:
        return aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self._config.timeout),
            headers={"User-Agent": self._config.user_agent},
        )

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    async def fetch_details(self, params: dict[str, str]) -> dict[str, Any]:
        """Fetch the raw details document for *params*.

        Raises:
            FeedUnavailableError: On HTTP 429 or 5xx.
            FeedError: On any other non-2xx status or a malformed body.
            aiohttp.ClientError: On connection failures.
            TimeoutError: If the request exceeds ``config.timeout``.
        """
        if self._session is not None:
            return await self._request(self._session, params)
        async with self._new_session() as session:
            return await self._request(session, params)

    async def _request(
        self, session: aiohttp.ClientSession, params: dict[str, str]
    ) -> dict[str, Any]:
        url = self._config.base_url.rstrip("/") + DETAILS_PATH
        timeout = aiohttp.ClientTimeout(total=self._config.timeout)
        async with session.get(url, params=params, timeout=timeout) as resp:
            if resp.status == 429 or resp.status >= 500:
                raise FeedUnavailableError(f"feed unavailable: HTTP {resp.status}")
            if resp.status >= 400:
                raise FeedError(f"feed request rejected: HTTP {resp.status}")
            try:
                data = await read_bounded_json(resp, self._config.max_response_size)
            except ValueError as e:
                raise FeedError(f"unreadable feed response: {e}") from e
        return _check_document(data, url)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    async def fetch_relay_details(
        self,
        *,
        running: bool | None = None,
        country: str | None = None,
        flag: str | None = None,
        order: str | None = None,
        offset: int | None = None,
        limit: int | None = None,
        fields: Iterable[str] | None = None,
        lookup: str | None = None,
    ) -> list[dict[str, Any]]:
        """Return the relay entries matching the given Onionoo parameters.

        With ``config.source_file`` set, the saved document is returned
        instead, narrowed by *lookup* and sliced by *offset* and *limit*.
        The other filters are not applied: a saved document is taken as
        already filtered and ordered.
        """
        if self._config.source_file is not None:
            relays = load_details_document(self._config.source_file).get("relays", [])
            if lookup is not None:
                relays = [
                    r
                    for r in relays
                    if str(r.get("fingerprint", r.get("f", ""))).upper() == lookup.upper()
                ]
            start = offset or 0
            stop = start + limit if limit is not None else None
            selected: list[dict[str, Any]] = relays[start:stop]
            self._logger.info(
                "feed_loaded", source=str(self._config.source_file), relays=len(selected)
            )
            return selected

        params = _query(
            running=running,
            country=country,
            flag=flag,
            order=order,
            offset=offset,
            limit=limit,
            fields=list(fields) if fields is not None else None,
            lookup=lookup,
        )
        data = await self.fetch_details(params)
        relays = data.get("relays", [])
        self._logger.info("feed_fetched", relays=len(relays), **params)
        return relays

    async def fetch_top_relays(
        self, limit: int = DEFAULT_LIMIT, order: str = TOP_RANKING
    ) -> list[dict[str, Any]]:
        """Return up to *limit* running relays, most significant first."""
        return await self.fetch_relay_details(running=True, order=order, limit=limit)

    async def fetch_relays_by_flags(
        self, flags: Iterable[str], limit: int = DEFAULT_LIMIT
    ) -> list[dict[str, Any]]:
        return await self.fetch_relay_details(running=True, flag=",".join(flags), limit=limit)

    async def fetch_relays_by_country(
        self, country: str, limit: int = DEFAULT_LIMIT
    ) -> list[dict[str, Any]]:
        return await self.fetch_relay_details(running=True, country=country, limit=limit)

    async def fetch_guard_relays(self, limit: int = DEFAULT_LIMIT) -> list[dict[str, Any]]:
        return await self.fetch_relays_by_flags(["Guard"], limit)

    async def fetch_exit_relays(self, limit: int = DEFAULT_LIMIT) -> list[dict[str, Any]]:
        return await self.fetch_relays_by_flags(["Exit"], limit)

    async def fetch_relay_by_fingerprint(self, fingerprint: str) -> dict[str, Any] | None:
        """Return the entry for *fingerprint*, or ``None`` if the feed has none."""
        relays = await self.fetch_relay_details(lookup=fingerprint)
        return relays[0] if relays else None

    async def get_api_status(self) -> FeedStatus:
        """Return the feed protocol version and publication time."""
        data = await self.fetch_details({"limit": "1"})
        return FeedStatus(
            version=data.get("version"),
            relays_published=data.get("relays_published"),
            relay_count=len(data.get("relays", [])),
        )
