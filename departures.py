# Read-through departure lookup: cache first, RMV on miss.

import logging
import threading
from typing import Any, Dict, Optional

from departure_cache import TTLCache
from rmv_client import RmvClient, UpstreamError

log = logging.getLogger("rmv_proxy.departures")

DEFAULT_TTL_SEC = 300


class _Flight:
    def __init__(self) -> None:
        self.done = threading.Event()
        self.ok = False
        self.value: Any = None
        self.error: Optional[BaseException] = None


class DepartureService:
    """Serves departure boards from the cache, fetching from RMV on a miss.

    Failed fetches are never cached. With coalesce enabled, concurrent misses
    for one stop share a single upstream call; otherwise each miss fetches on
    its own.
    """

    def __init__(
        self,
        cache: TTLCache,
        client: RmvClient,
        ttl_sec: int = DEFAULT_TTL_SEC,
        coalesce: bool = False,
    ) -> None:
        self.cache = cache
        self.client = client
        self.ttl_sec = ttl_sec
        self.coalesce = coalesce
        self._flights: Dict[str, _Flight] = {}
        self._flights_lock = threading.Lock()

    def get_departures(self, stop_id: str) -> Any:
        data, found = self.cache.get(stop_id)
        if found:
            log.info("cache hit stop=%s", stop_id)
            return data
        if not self.coalesce:
            return self._fetch_and_store(stop_id)
        return self._fetch_coalesced(stop_id)

    def _fetch_and_store(self, stop_id: str) -> Any:
        data = self.client.fetch(stop_id)
        self.cache.set(stop_id, data, self.ttl_sec)
        log.info("fetched new data stop=%s", stop_id)
        return data

    def _fetch_coalesced(self, stop_id: str) -> Any:
        with self._flights_lock:
            flight = self._flights.get(stop_id)
            leader = flight is None
            if flight is None:
                flight = _Flight()
                self._flights[stop_id] = flight

        if not leader:
            flight.done.wait()
            if flight.error is not None:
                raise flight.error
            if not flight.ok:
                raise UpstreamError(504, "RMV fetch interrupted")
            return flight.value

        try:
            # A previous leader may have filled the cache since our first check.
            data, found = self.cache.get(stop_id)
            if not found:
                data = self._fetch_and_store(stop_id)
            flight.value = data
            flight.ok = True
            return data
        except Exception as exc:
            flight.error = exc
            raise
        finally:
            with self._flights_lock:
                self._flights.pop(stop_id, None)
            flight.done.set()
