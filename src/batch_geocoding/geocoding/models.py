"""
Core data models for batch address geocoding.

Frozen dataclasses carry lookup results between the provider, resolver and
pipeline. Records, resolutions and checkpoints are pydantic models because
they cross the durable-storage boundary.
"""

from __future__ import annotations

from dataclasses import dataclass, field, asdict, replace
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any, Optional, List, Dict, TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field, field_serializer

if TYPE_CHECKING:
    from ..settings import Settings


RecordId = str | int


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _valid_coordinates(lat: Optional[float], lon: Optional[float]) -> bool:
    if lat is None or lon is None:
        return False
    try:
        return -90 <= lat <= 90 and -180 <= lon <= 180
    except (TypeError, ValueError):
        return False


class ResolutionSource(StrEnum):
    """Where a record's resolution came from."""
    CACHE = "cache"
    LOOKUP = "lookup"


class RecordStatus(StrEnum):
    PENDING = "pending"
    RESOLVED = "resolved"
    FAILED = "failed"


class GeocodeStatus(StrEnum):
    """Terminal state of one resolver call."""
    OK = "ok"
    NOT_FOUND = "not_found"
    API_ERROR = "api_error"
    # retries abandoned on a stop request; the record stays pending
    INTERRUPTED = "interrupted"


class RunStatus(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    STOPPED = "stopped"
    ERRORED = "errored"


class Resolution(BaseModel):
    """
    Resolved coordinate payload.

    The durable cache stores everything except ``source``, which is set
    per record when the resolution is applied.
    """
    model_config = ConfigDict(populate_by_name=True)

    latitude: float
    longitude: float
    formatted_address: str = Field("", alias="formattedAddress")
    confidence: float = 0.0
    source: Optional[ResolutionSource] = None

    def has_coordinates(self) -> bool:
        return _valid_coordinates(self.latitude, self.longitude)

    def to_cache_payload(self) -> dict[str, Any]:
        """Serialize to the durable cache value format."""
        return self.model_dump(by_alias=True, exclude={"source"})

    def with_source(self, source: ResolutionSource) -> "Resolution":
        return self.model_copy(update={"source": source})


class Record(BaseModel):
    """
    One address-bearing entity owned by the caller's record store.

    The pipeline mutates records in place; it never copies or drops them.
    """
    id: RecordId
    raw_address: str
    name: Optional[str] = None
    resolution: Optional[Resolution] = None
    status: RecordStatus = RecordStatus.PENDING
    resolved_at: Optional[datetime] = None

    def is_geocoded(self) -> bool:
        """True when the record is resolved with usable coordinates."""
        return (
            self.status == RecordStatus.RESOLVED
            and self.resolution is not None
            and self.resolution.has_coordinates()
        )

    def mark_resolved(self, resolution: Resolution, source: ResolutionSource) -> None:
        self.resolution = resolution.with_source(source)
        self.status = RecordStatus.RESOLVED
        self.resolved_at = utcnow()

    def mark_failed(self) -> None:
        self.resolution = None
        self.status = RecordStatus.FAILED
        self.resolved_at = utcnow()


@dataclass(frozen=True)
class Candidate:
    """One provider match for an address query."""
    latitude: float
    longitude: float
    display_name: str = ""
    importance: float = 0.0

    def to_resolution(self) -> Resolution:
        return Resolution(
            latitude=self.latitude,
            longitude=self.longitude,
            formatted_address=self.display_name,
            confidence=self.importance,
        )


@dataclass(frozen=True)
class GeocodeError:
    """Details of a failed lookup attempt."""
    endpoint: str
    http_status: Optional[int] = None
    error_label: str = ""
    api_message: Optional[str] = None


@dataclass(frozen=True)
class LookupOutcome:
    """
    The result of resolving one address.

    ``attempts`` counts provider calls, including the successful or
    content-empty one.
    """
    address: str
    status: GeocodeStatus = GeocodeStatus.NOT_FOUND
    resolution: Optional[Resolution] = None
    attempts: int = 0
    errors: List[GeocodeError] = field(default_factory=list)

    def is_success(self) -> bool:
        return (
            self.status == GeocodeStatus.OK
            and self.resolution is not None
            and self.resolution.has_coordinates()
        )


@dataclass
class RunStats:
    """Counters for one pipeline run."""
    total: int = 0
    processed: int = 0
    success: int = 0
    errors: int = 0
    cache_hits: int = 0
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    status: RunStatus = RunStatus.IDLE

    @property
    def error_rate(self) -> float:
        return self.errors / self.processed if self.processed else 0.0

    def elapsed_seconds(self) -> Optional[float]:
        if self.start_time is None or self.end_time is None:
            return None
        return (self.end_time - self.start_time).total_seconds()

    def snapshot(self) -> "RunStats":
        return replace(self)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        for key in ("start_time", "end_time"):
            value = data[key]
            data[key] = value.isoformat() if value is not None else None
        return data


@dataclass(frozen=True)
class ProgressEvent:
    """
    One progress notification published by the pipeline.

    ``kind`` is "record" after each record and "batch" after each batch.
    """
    kind: str
    processed: int
    total: int
    batch_index: int
    total_batches: int
    stats: RunStats
    record_id: Optional[RecordId] = None
    record_name: Optional[str] = None
    outcome: Optional[RecordStatus] = None
    source: Optional[ResolutionSource] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "processed": self.processed,
            "total": self.total,
            "batch_index": self.batch_index,
            "total_batches": self.total_batches,
            "record_id": self.record_id,
            "record_name": self.record_name,
            "outcome": self.outcome.value if self.outcome else None,
            "source": self.source.value if self.source else None,
            "stats": self.stats.to_dict(),
        }


class CheckpointState(BaseModel):
    """Durable resume marker: processed record ids and the next batch index."""
    model_config = ConfigDict(populate_by_name=True)

    processed_ids: set[RecordId] = Field(default_factory=set, alias="processedIds")
    current_batch_index: int = Field(0, ge=0, alias="currentBatch")
    timestamp: datetime = Field(default_factory=utcnow)
    stats: Dict[str, Any] = Field(default_factory=dict)

    @field_serializer("processed_ids")
    def _serialize_ids(self, ids: set[RecordId]) -> list[RecordId]:
        return sorted(ids, key=str)


@dataclass
class GeocodingPipelineConfig:
    """Per-run configuration for the batch pipeline. Durations are seconds."""
    rate_limit_delay: float = 1.0
    batch_size: int = 100
    max_retries: int = 3
    retry_delay: float = 5.0
    cache_enabled: bool = True
    resume_from_checkpoint: bool = True
    batch_pause: float = 2.0

    # Rate governor
    min_delay: float = 0.8
    max_delay: float = 3.0
    increase_step: float = 0.2
    decrease_step: float = 0.1
    high_water: float = 0.10
    low_water: float = 0.02
    adjust_every: int = 50

    def __post_init__(self) -> None:
        if self.batch_size <= 0:
            raise ValueError("batch_size must be > 0")
        if self.max_retries <= 0:
            raise ValueError("max_retries must be > 0")
        if self.min_delay > self.max_delay:
            raise ValueError("min_delay must be <= max_delay")

    @classmethod
    def from_settings(cls, settings: "Settings", **overrides: Any) -> "GeocodingPipelineConfig":
        values = {name: getattr(settings, name) for name in cls.__dataclass_fields__}
        values.update(overrides)
        return cls(**values)

    def replace(self, **changes: Any) -> "GeocodingPipelineConfig":
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
