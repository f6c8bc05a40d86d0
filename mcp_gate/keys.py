"""Signing key cache for the authorization server's published JWKS.

The cache is the only shared mutable state in the gateway. It is created once
by the app factory and handed to the token verifier, so tests can swap the
network fetcher for a fake one.

Rotation policy: only the latest fetch is trusted. A key id that is missing
from the cached set forces one refresh (at most once per
``min_refresh_interval`` seconds); if the key is still missing the token is
rejected.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol

import httpx
from jwt import PyJWK, PyJWKSet
from jwt.exceptions import PyJWKSetError

from mcp_gate.exceptions import KeyFetchError, KeyNotFoundError

logger = logging.getLogger(__name__)


class KeySetFetcher(Protocol):
    """Anything that can produce a JWKS document."""

    async def __call__(self) -> dict[str, Any]:
        """Return the JWKS as a dict. Raise KeyFetchError on failure."""
        ...


@dataclass
class HttpKeySetFetcher:
    """Fetches a JWKS document over HTTP.

    Every request carries a timeout; timeouts, transport errors, non-2xx
    responses and non-JSON bodies all surface as KeyFetchError. Nothing is
    retried here.
    """

    jwks_uri: str
    timeout: float = 10.0
    client: httpx.AsyncClient | None = None

    async def __call__(self) -> dict[str, Any]:
        try:
            if self.client is not None:
                response = await self.client.get(self.jwks_uri, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as http_client:
                    response = await http_client.get(self.jwks_uri)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            raise KeyFetchError(self.jwks_uri, f"{type(e).__name__}: {e}") from e
        except ValueError as e:
            raise KeyFetchError(self.jwks_uri, "response is not valid JSON") from e

        if not isinstance(data, dict) or not isinstance(data.get("keys"), list):
            raise KeyFetchError(self.jwks_uri, "response has no 'keys' list")
        return data


@dataclass(frozen=True)
class KeySet:
    """Public keys from one JWKS fetch, indexed by key id."""

    keys: dict[str, PyJWK] = field(repr=False)
    fetched_at: float
    ttl: float

    @classmethod
    def from_jwks(cls, data: dict[str, Any], fetched_at: float, ttl: float) -> KeySet:
        """Parse a JWKS document. Keys without a ``kid`` are ignored.

        Raises:
            PyJWKSetError: If the document holds no usable keys
        """
        jwk_set = PyJWKSet.from_dict(data)
        keys = {key.key_id: key for key in jwk_set.keys if key.key_id}
        return cls(keys=keys, fetched_at=fetched_at, ttl=ttl)

    def get(self, kid: str) -> PyJWK | None:
        return self.keys.get(kid)

    def is_stale(self, now: float) -> bool:
        return now - self.fetched_at >= self.ttl

    def __len__(self) -> int:
        return len(self.keys)


class KeySetCache:
    """Caches the authorization server's signing keys.

    The first lookup fetches lazily. Later lookups refetch when the cached set
    is older than ``ttl`` seconds or the requested key id is unknown.
    Concurrent lookups that need a fetch share a single in-flight request.
    """

    def __init__(
        self,
        fetcher: KeySetFetcher,
        *,
        ttl: float = 3600.0,
        min_refresh_interval: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._fetcher = fetcher
        self.ttl = ttl
        self.min_refresh_interval = min_refresh_interval
        self._clock = clock
        self._key_set: KeySet | None = None
        self._inflight: asyncio.Task[KeySet] | None = None

    @property
    def key_set(self) -> KeySet | None:
        """The most recently fetched key set, if any."""
        return self._key_set

    @property
    def source(self) -> str:
        return getattr(self._fetcher, "jwks_uri", type(self._fetcher).__name__)

    async def get_key(self, kid: str) -> PyJWK:
        """Return the public key for ``kid``.

        Raises:
            KeyNotFoundError: No key with this id, even after a refresh
            KeyFetchError: The key set could not be fetched
        """
        key_set = self._key_set
        if key_set is None or key_set.is_stale(self._clock()):
            key_set = await self.refresh()

        key = key_set.get(kid)
        if key is None and self._clock() - key_set.fetched_at >= self.min_refresh_interval:
            logger.info("Key id '%s' not in cached key set, refreshing", kid)
            key_set = await self.refresh()
            key = key_set.get(kid)

        if key is None:
            raise KeyNotFoundError(kid)
        return key

    async def refresh(self) -> KeySet:
        """Fetch the key set now, joining a fetch that is already running."""
        if self._inflight is None:
            task = asyncio.ensure_future(self._fetch())
            task.add_done_callback(self._clear_inflight)
            self._inflight = task
        # A cancelled waiter must not cancel the fetch other waiters share
        return await asyncio.shield(self._inflight)

    def _clear_inflight(self, task: asyncio.Task[KeySet]) -> None:
        if self._inflight is task:
            self._inflight = None

    async def _fetch(self) -> KeySet:
        data = await self._fetcher()
        try:
            key_set = KeySet.from_jwks(data, fetched_at=self._clock(), ttl=self.ttl)
        except PyJWKSetError as e:
            raise KeyFetchError(self.source, str(e)) from e

        self._key_set = key_set
        logger.info("Fetched %d signing keys from %s", len(key_set), self.source)
        return key_set
