"""
In-process control surface for a host application.

A host (HTTP API, CLI) starts runs, polls progress, reads reports and
tunes configuration through GeocodingService. Runs execute on a
background thread; the service owns exactly one pipeline.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from .geocoding.base import LookupProvider
from .geocoding.cache import AddressCache
from .geocoding.checkpoint import Checkpoint
from .geocoding.geocoders import NominatimClient
from .geocoding.models import GeocodingPipelineConfig, Record
from .geocoding.pipeline import BatchPipeline, ProgressChannel
from .geocoding.reports import ReportGenerator, estimate_duration
from .geocoding.storage import DuckDBCacheStore, JSONCacheStore, JSONCheckpointStore
from .settings import Settings, settings as default_settings
from .utils.errors import ConcurrentRunRejected, ConfigRejected

logger = logging.getLogger(__name__)

# Events kept for a slow or absent consumer
PROGRESS_BUFFER = 1000


class GeocodingService:
    """
    Start, observe and tune geocoding runs.

    Args:
        record_source: Returns the host's current record list
        on_records_updated: Persists the records; called after every batch (before the
            checkpoint is saved) and when a run stops or fails
        settings: Settings to build storage, provider and defaults from
        provider: Lookup provider override (defaults to Nominatim)
        sleep: Delay override passed to the pipeline (tests)
    """

    def __init__(
        self,
        record_source: Callable[[], List[Record]],
        on_records_updated: Optional[Callable[[List[Record]], None]] = None,
        settings: Optional[Settings] = None,
        provider: Optional[LookupProvider] = None,
        sleep: Optional[Callable[[float], Any]] = None,
    ):
        self.settings = settings or default_settings
        self.record_source = record_source
        self.on_records_updated = on_records_updated
        self.config = GeocodingPipelineConfig.from_settings(self.settings)

        if self.settings.cache_backend == "duckdb":
            cache_store = DuckDBCacheStore(self.settings.cache_path)
        else:
            cache_store = JSONCacheStore(self.settings.cache_path)

        self.pipeline = BatchPipeline(
            provider=provider or NominatimClient.from_settings(self.settings),
            cache=AddressCache(cache_store),
            checkpoint=Checkpoint(JSONCheckpointStore(self.settings.checkpoint_path)),
            config=self.config,
            sleep=sleep,
            record_sink=on_records_updated,
        )

        self._thread: Optional[threading.Thread] = None
        self._channel: Optional[ProgressChannel] = None
        self._records: Optional[List[Record]] = None
        self._error: Optional[str] = None
        self.lock = threading.Lock()

    @property
    def is_active(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start_run(self, resume: bool = True) -> Dict[str, Any]:
        """
        Start a run in the background.

        Raises:
            ConcurrentRunRejected if a run is already active
        """
        with self.lock:
            if self.is_active:
                raise ConcurrentRunRejected()

            records = self.record_source()
            config = self.config.replace(resume_from_checkpoint=resume)
            channel = ProgressChannel(maxsize=PROGRESS_BUFFER)

            self._records = records
            self._channel = channel
            self._error = None
            self._thread = threading.Thread(
                target=self._worker,
                args=(records, config, channel),
                name="geocoding-run",
                daemon=True,
            )
            self._thread.start()

        pending = sum(1 for r in records if not r.is_geocoded())
        logger.info(f"Started geocoding run for {len(records)} records (resume={resume})")
        return {
            "message": "Geocoding run started",
            "config": config.to_dict(),
            "estimate": estimate_duration(pending, config.rate_limit_delay),
        }

    def _worker(self, records: List[Record], config: GeocodingPipelineConfig, channel: ProgressChannel) -> None:
        try:
            self.pipeline.run(records, config, progress=channel)
        except Exception as e:
            # Surfaced through get_progress(); the pipeline already saved its state
            self._error = str(e)
            logger.error(f"Geocoding run failed: {e}")

    def progress_events(self) -> Optional[ProgressChannel]:
        """Channel of the current (or last) run, for consumers that want every event."""
        return self._channel

    def get_progress(self) -> Dict[str, Any]:
        latest = self._channel.latest() if self._channel else None
        return {
            "active": self.is_active,
            "status": self.pipeline.stats.status.value,
            "progress": latest.to_dict() if latest else None,
            "error": self._error,
            "config": self.config.to_dict(),
            "stats": self.pipeline.stats.to_dict(),
            "current_delay": self.pipeline.governor.current_delay(),
        }

    def get_report(self) -> Dict[str, Any]:
        records = self._records if self.is_active and self._records is not None else self.record_source()
        return ReportGenerator.summarize(records, stats=self.pipeline.stats)

    def estimate(self) -> Dict[str, Any]:
        records = self.record_source()
        processed = sum(1 for r in records if r.is_geocoded())
        estimate = estimate_duration(len(records) - processed, self.config.rate_limit_delay)
        estimate.update(total=len(records), processed=processed)
        return estimate

    def update_config(
        self,
        rate_limit_delay: Optional[float] = None,
        batch_size: Optional[int] = None,
        max_retries: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Validate and apply configuration for future runs.

        Either every given value is accepted or none is.

        Raises:
            ConfigRejected listing each out-of-bounds field
        """
        s = self.settings
        errors = []

        if rate_limit_delay is not None and (
            isinstance(rate_limit_delay, bool) or not isinstance(rate_limit_delay, (int, float))
            or rate_limit_delay < s.min_rate_limit_delay
        ):
            errors.append({
                "field": "rate_limit_delay",
                "value": rate_limit_delay,
                "msg": f"must be a number >= {s.min_rate_limit_delay}",
            })
        if batch_size is not None and (
            isinstance(batch_size, bool) or not isinstance(batch_size, int)
            or not s.min_batch_size <= batch_size <= s.max_batch_size
        ):
            errors.append({
                "field": "batch_size",
                "value": batch_size,
                "msg": f"must be an integer in [{s.min_batch_size}, {s.max_batch_size}]",
            })
        if max_retries is not None and (
            isinstance(max_retries, bool) or not isinstance(max_retries, int)
            or not s.min_max_retries <= max_retries <= s.max_max_retries
        ):
            errors.append({
                "field": "max_retries",
                "value": max_retries,
                "msg": f"must be an integer in [{s.min_max_retries}, {s.max_max_retries}]",
            })

        if errors:
            raise ConfigRejected(errors)

        changes: Dict[str, Any] = {}
        if rate_limit_delay is not None:
            delay = float(rate_limit_delay)
            changes["rate_limit_delay"] = delay
            # widen governor bounds so the requested delay is not clamped away
            changes["min_delay"] = min(self.config.min_delay, delay)
            changes["max_delay"] = max(self.config.max_delay, delay)
        if batch_size is not None:
            changes["batch_size"] = batch_size
        if max_retries is not None:
            changes["max_retries"] = max_retries

        with self.lock:
            self.config = self.config.replace(**changes)
        logger.info(f"Configuration updated: {changes}")
        return self.config.to_dict()

    def clear_cache_and_checkpoint(self) -> None:
        """Delete the address cache and checkpoint, in memory and on disk."""
        if self.is_active:
            raise ConcurrentRunRejected("Cannot clear cache while a geocoding run is active")
        self.pipeline.cache.clear()
        self.pipeline.checkpoint.clear()
        logger.info("Address cache and checkpoint cleared")

    def stop(self) -> bool:
        """Request a cooperative stop. Returns False when no run is active."""
        if not self.is_active:
            return False
        self.pipeline.stop()
        return True

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Wait for the current run to finish. Returns True if it has."""
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()
