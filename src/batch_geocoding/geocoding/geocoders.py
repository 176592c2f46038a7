"""
Nominatim lookup provider and the retrying address resolver.

Use OpenStreetMap's Nominatim search API to turn free-text addresses
into coordinates. The provider makes exactly one request per call; the
resolver wraps it with a bounded retry loop.

Reference: https://nominatim.org/release-docs/latest/api/Search/
"""

import time
import logging
from typing import Optional, Any, List, Callable

import requests

from ..utils.errors import TransientLookupFailure
from .base import LookupProvider
from .models import Candidate, GeocodeError, GeocodeStatus, LookupOutcome

logger = logging.getLogger(__name__)


class NominatimClient(LookupProvider):
    """
    Nominatim search API wrapper.

    Queries are restricted to one country and only the best-ranked
    candidate is requested.
    """

    def __init__(
        self,
        base_url: str = "https://nominatim.openstreetmap.org/search",
        user_agent: str = "BatchGeocoding/2.0.0",
        country_code: str = "br",
        country_name: Optional[str] = "Brasil",
        timeout: float = 15.0,
    ):
        """
        Initialize Nominatim wrapper.

        Args:
            base_url: Search endpoint URL
            user_agent: User-Agent header (required by the Nominatim usage policy)
            country_code: ISO country code passed as ``countrycodes``
            country_name: Appended to every query to improve matching
            timeout: HTTP request timeout in seconds
        """
        self.base_url = base_url
        self.user_agent = user_agent
        self.country_code = country_code
        self.country_name = country_name
        self.timeout = timeout

        logger.info(f"Initialized NominatimClient: {base_url}, country={country_code}, timeout={timeout}s")

    @classmethod
    def from_settings(cls, settings) -> "NominatimClient":
        return cls(
            base_url=settings.provider_url,
            user_agent=settings.user_agent,
            country_code=settings.country_code,
            country_name=settings.country_name,
            timeout=settings.request_timeout,
        )

    def _build_params(self, address: str) -> dict[str, Any]:
        query = f"{address}, {self.country_name}" if self.country_name else address
        return {
            "q": query,
            "format": "json",
            "addressdetails": 1,
            "limit": 1,
            "countrycodes": self.country_code,
        }

    @staticmethod
    def _extract_candidates(payload: list[Any]) -> List[Candidate]:
        """Convert a search response into candidates, skipping unusable entries."""
        candidates = []
        for item in payload:
            if not isinstance(item, dict):
                continue
            # Nominatim returns coordinates as strings
            try:
                lat = float(item.get("lat"))
                lon = float(item.get("lon"))
            except (ValueError, TypeError):
                continue
            try:
                importance = float(item.get("importance") or 0.0)
            except (ValueError, TypeError):
                importance = 0.0
            candidates.append(Candidate(
                latitude=lat,
                longitude=lon,
                display_name=item.get("display_name") or "",
                importance=importance,
            ))
        return candidates

    def search(self, address: str) -> List[Candidate]:
        params = self._build_params(address)
        headers = {"User-Agent": self.user_agent, "Accept": "application/json"}

        logger.debug(f"Querying Nominatim: {params['q']}")

        try:
            response = requests.get(
                self.base_url,
                params=params,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise TransientLookupFailure(address, str(e)) from e

        if not response.ok:
            raise TransientLookupFailure(
                address, f"HTTP {response.status_code}", http_status=response.status_code
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise TransientLookupFailure(address, f"invalid JSON: {e}", http_status=response.status_code) from e

        if not isinstance(payload, list):
            raise TransientLookupFailure(address, "unexpected response payload", http_status=response.status_code)

        return self._extract_candidates(payload)


class AddressResolver:
    """
    Resolve one address with bounded, fixed-delay retry.

    Attempt(n) → OK on a candidate, NOT_FOUND on an empty answer (never
    retried), and on a transport failure either waits ``retry_delay`` and
    tries again or, once ``max_retries`` attempts are spent, gives up with
    API_ERROR. If ``should_stop`` reports a stop after a retry wait, the
    remaining attempts are abandoned with INTERRUPTED.
    """

    def __init__(
        self,
        provider: LookupProvider,
        max_retries: int = 3,
        retry_delay: float = 5.0,
        sleep: Callable[[float], Any] = time.sleep,
        should_stop: Optional[Callable[[], bool]] = None,
    ):
        if max_retries <= 0:
            raise ValueError("max_retries must be > 0")
        self.provider = provider
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.sleep = sleep
        self.should_stop = should_stop

    def resolve(self, address: str) -> LookupOutcome:
        errors: List[GeocodeError] = []

        for attempt in range(1, self.max_retries + 1):
            logger.info(f"Looking up '{address}' (attempt {attempt}/{self.max_retries})")
            try:
                candidates = self.provider.search(address)
            except TransientLookupFailure as e:
                logger.warning(f"Attempt {attempt}/{self.max_retries} failed for '{address}': {e.reason}")
                errors.append(GeocodeError(
                    endpoint="search",
                    http_status=e.http_status,
                    error_label=f"http_{e.http_status}" if e.http_status else "exception",
                    api_message=e.reason[:500],
                ))
                if attempt == self.max_retries:
                    break

                # fixed delay between attempts
                self.sleep(self.retry_delay)
                if self.should_stop is not None and self.should_stop():
                    logger.info(f"Stop requested, abandoning '{address}' after {attempt} attempts")
                    return LookupOutcome(
                        address=address,
                        status=GeocodeStatus.INTERRUPTED,
                        attempts=attempt,
                        errors=errors,
                    )
                continue

            if not candidates:
                logger.info(f"No result found for '{address}'")
                return LookupOutcome(
                    address=address,
                    status=GeocodeStatus.NOT_FOUND,
                    attempts=attempt,
                    errors=errors,
                )

            return LookupOutcome(
                address=address,
                status=GeocodeStatus.OK,
                resolution=candidates[0].to_resolution(),
                attempts=attempt,
                errors=errors,
            )

        logger.error(f"Giving up on '{address}' after {self.max_retries} attempts")
        return LookupOutcome(
            address=address,
            status=GeocodeStatus.API_ERROR,
            attempts=self.max_retries,
            errors=errors,
        )
