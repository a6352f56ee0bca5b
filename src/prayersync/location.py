from __future__ import annotations

import logging
import threading
from typing import Optional, Protocol

import requests

from prayersync.errors import InvalidCoordinates, LocationUnavailable
from prayersync.models import Coordinates


DEFAULT_IP_LOOKUP_URL = "https://ipinfo.io/json"


class LocationProvider(Protocol):
    def current_coordinates(self) -> Coordinates:  # pragma: no cover - interface only
        ...


class StaticLocationProvider:
    def __init__(self, coordinates: Coordinates) -> None:
        self._coordinates = coordinates

    def current_coordinates(self) -> Coordinates:
        return self._coordinates


class IpLocationProvider:
    """Approximate coordinates from an ipinfo-style ``{"loc": "lat,lon"}`` endpoint."""

    def __init__(
        self,
        *,
        url: str = DEFAULT_IP_LOOKUP_URL,
        timeout_seconds: int = 5,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._url = url
        self._timeout_seconds = timeout_seconds
        self._session = session or requests.Session()
        self._logger = logging.getLogger(self.__class__.__name__)

    def current_coordinates(self) -> Coordinates:
        try:
            resp = self._session.get(self._url, timeout=self._timeout_seconds)
        except requests.RequestException as exc:
            raise LocationUnavailable(f"Location lookup failed for {self._url}: {exc}") from exc

        if resp.status_code != 200:
            self._logger.warning("Location lookup failed: %s %s", resp.status_code, resp.text)
            raise LocationUnavailable(f"Location lookup failed with status {resp.status_code}")

        try:
            payload = resp.json()
        except ValueError as exc:
            raise LocationUnavailable("Location lookup returned invalid JSON") from exc
        if not isinstance(payload, dict) or not payload.get("loc"):
            raise LocationUnavailable("Location lookup response has no 'loc' field")

        try:
            latitude, longitude = (float(part) for part in str(payload["loc"]).split(","))
            coordinates = Coordinates(latitude, longitude)
        except (ValueError, InvalidCoordinates) as exc:
            raise LocationUnavailable(f"Unusable location {payload['loc']!r}") from exc

        self._logger.info(
            "Located via IP: %s (%.4f, %.4f)",
            payload.get("city", "unknown"),
            coordinates.latitude,
            coordinates.longitude,
        )
        return coordinates


class LastKnownLocationProvider:
    """Remembers the last good fix and serves it while the inner provider fails."""

    def __init__(
        self, inner: LocationProvider, initial: Optional[Coordinates] = None
    ) -> None:
        self._inner = inner
        self._last_known = initial
        self._lock = threading.Lock()
        self._logger = logging.getLogger(self.__class__.__name__)

    @property
    def last_known(self) -> Optional[Coordinates]:
        with self._lock:
            return self._last_known

    def current_coordinates(self) -> Coordinates:
        try:
            coordinates = self._inner.current_coordinates()
        except LocationUnavailable as exc:
            with self._lock:
                fallback = self._last_known
            if fallback is None:
                raise
            self._logger.warning("Using last known location after failure: %s", exc)
            return fallback
        with self._lock:
            self._last_known = coordinates
        return coordinates
