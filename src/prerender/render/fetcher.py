"""Concurrent HTTP snapshotting of rendered routes."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Mapping

import requests

from prerender.errors import FetchError
from prerender.render.routes import RouteMap

LOGGER = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


class RouteSnapshotFetcher:
    """Fetch every route of a route map from a running server, all or nothing."""

    def __init__(
        self,
        *,
        timeout: float = 30.0,
        max_workers: int = 8,
        expected_statuses: Mapping[str, int] | None = None,
    ) -> None:
        self.timeout = timeout
        self.max_workers = max_workers
        self.expected_statuses = dict(expected_statuses or {})

    def _check_status(self, route: str, response: requests.Response) -> None:
        expected = self.expected_statuses.get(route)
        if expected is None:
            response.raise_for_status()
        elif response.status_code != expected:
            raise requests.HTTPError(
                f"expected status {expected} for {response.url}, got {response.status_code}",
                response=response,
            )

    def fetch_one(self, base_address: str, route: str) -> str:
        url = base_address.rstrip("/") + route
        with requests.get(url, timeout=self.timeout, stream=True) as response:
            self._check_status(route, response)
            body = b"".join(response.iter_content(chunk_size=CHUNK_SIZE))
        # Decode after joining so multi-byte characters split across chunks survive.
        text = body.decode("utf-8")
        LOGGER.info("fetch.done route=%s status=%s bytes=%s", route, response.status_code, len(body))
        return text

    def fetch_all(self, base_address: str, route_map: RouteMap) -> dict[str, str]:
        """Fetch all routes concurrently and wait for every one of them.

        Raises ``FetchError`` for the first route found failing; successful
        bodies from the same run are discarded.
        """

        routes = list(route_map)
        if not routes:
            return {}
        snapshots: dict[str, str] = {}
        failures: dict[str, Exception] = {}
        workers = max(1, min(self.max_workers, len(routes)))
        LOGGER.info("fetch.start base=%s routes=%s workers=%s", base_address, len(routes), workers)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="snapshot") as pool:
            futures = {pool.submit(self.fetch_one, base_address, route): route for route in routes}
            for future in as_completed(futures):
                route = futures[future]
                try:
                    snapshots[route] = future.result()
                except (requests.RequestException, UnicodeDecodeError) as exc:
                    LOGGER.error("fetch.failed route=%s error=%s", route, exc)
                    failures[route] = exc

        if failures:
            first_route = next(route for route in routes if route in failures)
            raise FetchError(first_route, failures[first_route])
        return {route: snapshots[route] for route in routes}
