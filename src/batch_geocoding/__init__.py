from .service import GeocodingService
from .geocoding import (
    BatchPipeline,
    GeocodingPipelineConfig,
    ProgressChannel,
    Record,
    ReportGenerator,
)

__all__ = [
    "GeocodingService",
    "BatchPipeline",
    "GeocodingPipelineConfig",
    "ProgressChannel",
    "Record",
    "ReportGenerator",
]
