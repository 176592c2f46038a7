"""
Abstract base classes for the geocoding system.

These define the interfaces that all concrete implementations must follow.
"""

from abc import ABC, abstractmethod
from typing import Optional, List, Dict, Any

from .models import Candidate, CheckpointState


class Normalizer(ABC):
    """
    Abstract base for string normalizers.

    Normalizers turn free-text input into a stable canonical form
    (e.g., "  Main  St " → "main st").
    """

    @abstractmethod
    def normalize(self, value: str) -> str:
        """
        Normalize a string value.

        Args:
            value: String to normalize

        Returns:
            Normalized string
        """
        pass


class LookupProvider(ABC):
    """
    Abstract base for external address lookup providers.

    Providers perform exactly one request per call and never retry;
    retrying is the resolver's job.
    """

    @abstractmethod
    def search(self, address: str) -> List[Candidate]:
        """
        Look up a free-text address.

        Args:
            address: Address to search for

        Returns:
            Candidates ordered best first (possibly empty)

        Raises:
            TransientLookupFailure on timeout, transport or protocol errors
        """
        pass


class CacheStore(ABC):
    """
    Abstract base for durable address cache storage.

    Values use the durable cache format:
    ``{latitude, longitude, formattedAddress, confidence}``.
    """

    @abstractmethod
    def load(self) -> Dict[str, Dict[str, Any]]:
        """Return the stored key → payload mapping (empty if absent)."""
        pass

    @abstractmethod
    def save(self, entries: Dict[str, Dict[str, Any]]) -> None:
        """Persist the full key → payload mapping."""
        pass

    @abstractmethod
    def clear(self) -> None:
        """Delete durable state."""
        pass


class CheckpointStore(ABC):
    """Abstract base for durable checkpoint storage."""

    @abstractmethod
    def read(self) -> Optional[CheckpointState]:
        """Return the stored state, or None if there is none."""
        pass

    @abstractmethod
    def write(self, state: CheckpointState) -> None:
        """Persist the state, replacing any previous one."""
        pass

    @abstractmethod
    def clear(self) -> None:
        """Delete durable state."""
        pass
