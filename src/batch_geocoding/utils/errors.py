from typing import Any, Iterable


class GeocodingError(Exception):
    """Base class for batch geocoding errors."""


class TransientLookupFailure(GeocodingError):
    def __init__(self, address: str, reason: str, http_status: int | None = None):
        self.address = address
        self.reason = reason
        self.http_status = http_status
        super().__init__(f"Lookup failed for '{address}': {reason}")


class PersistenceFailure(GeocodingError):
    def __init__(self, target: str, original: BaseException | None = None):
        self.target = target
        self.original = original
        msg = f"Could not persist '{target}'"
        if original is not None:
            msg += f": {original}"
        super().__init__(msg)


class ConfigRejected(GeocodingError):
    def __init__(self, errors: Iterable[dict[str, Any]]):
        self.errors = list(errors)
        fields = ", ".join(str(e.get("field")) for e in self.errors)
        super().__init__(f"Configuration rejected for {len(self.errors)} field(s): {fields}")

    def summary(self, limit: int = 5) -> str:
        """Human-readable summary of the first few rejected fields."""
        lines = []
        for err in self.errors[:limit]:
            lines.append(f"- {err.get('field')}: {err.get('msg')} (got {err.get('value')!r})")
        if len(self.errors) > limit:
            lines.append(f"... ({len(self.errors) - limit} more)")
        return "\n".join(lines)


class ConcurrentRunRejected(GeocodingError):
    def __init__(self, msg: str = "A geocoding run is already in progress"):
        super().__init__(msg)
