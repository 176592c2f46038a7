"""
- Models: Data structures (Record, Resolution, LookupOutcome, RunStats, ...)
- Base classes: Abstract interfaces
- Normalizers: Address cache keys
- Geocoders: Nominatim provider and retrying resolver
- Throttling: Adaptive inter-request delay
- Storage: Durable cache and checkpoint backends
- Pipeline: Resumable batch orchestration and progress channel
- Reports: Summaries and exports
"""

from .models import (
    ResolutionSource,
    RecordStatus,
    GeocodeStatus,
    RunStatus,
    Resolution,
    Record,
    Candidate,
    GeocodeError,
    LookupOutcome,
    RunStats,
    ProgressEvent,
    CheckpointState,
    GeocodingPipelineConfig,
)

from .base import (
    Normalizer,
    LookupProvider,
    CacheStore,
    CheckpointStore,
)

from .normalizers import (
    AddressNormalizer,
    normalize_key,
)

from .geocoders import (
    NominatimClient,
    AddressResolver,
)

from .throttling import (
    RateGovernor,
)

from .storage import (
    JSONCacheStore,
    DuckDBCacheStore,
    JSONCheckpointStore,
)

from .cache import AddressCache
from .checkpoint import Checkpoint
from .pipeline import BatchPipeline, ProgressChannel
from .reports import ReportGenerator, estimate_duration

__all__ = [
    # Models
    "ResolutionSource",
    "RecordStatus",
    "GeocodeStatus",
    "RunStatus",
    "Resolution",
    "Record",
    "Candidate",
    "GeocodeError",
    "LookupOutcome",
    "RunStats",
    "ProgressEvent",
    "CheckpointState",
    "GeocodingPipelineConfig",
    # Base classes
    "Normalizer",
    "LookupProvider",
    "CacheStore",
    "CheckpointStore",
    # Normalizers
    "AddressNormalizer",
    "normalize_key",
    # Geocoders
    "NominatimClient",
    "AddressResolver",
    # Throttling
    "RateGovernor",
    # Storage
    "JSONCacheStore",
    "DuckDBCacheStore",
    "JSONCheckpointStore",
    # Cache / checkpoint
    "AddressCache",
    "Checkpoint",
    # Pipeline
    "BatchPipeline",
    "ProgressChannel",
    # Reports
    "ReportGenerator",
    "estimate_duration",
]
