"""
Address normalization for cache keys.

Two addresses that differ only in case or whitespace run-length map to
the same key. This is deliberately coarser than full address matching.
"""

import re

from .base import Normalizer

_RE_WHITESPACE = re.compile(r"\s+")


def normalize_key(address: str) -> str:
    """
    Canonicalize an address into a cache key.

    Examples:
        normalize_key("  Main   St, City ") → "main st, city"
    """
    return _RE_WHITESPACE.sub(" ", address.lower().strip())


class AddressNormalizer(Normalizer):
    """Normalizer wrapper around normalize_key()."""

    def normalize(self, value: str) -> str:
        return normalize_key(value)
