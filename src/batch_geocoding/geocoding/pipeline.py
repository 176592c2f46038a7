"""
Resumable batch geocoding pipeline.

Runs records through cache → resolver → rate governor in batches,
persisting the checkpoint and the cache after every batch so an
interrupted run resumes without repeating lookups.
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import Any, Callable, Iterator, List, Optional, Sequence

from ..utils.errors import ConcurrentRunRejected
from .base import LookupProvider, Normalizer
from .cache import AddressCache
from .checkpoint import Checkpoint
from .geocoders import AddressResolver
from .models import (
    CheckpointState,
    GeocodeStatus,
    GeocodingPipelineConfig,
    ProgressEvent,
    Record,
    RecordId,
    RecordStatus,
    ResolutionSource,
    RunStats,
    RunStatus,
    utcnow,
)
from .normalizers import AddressNormalizer
from .throttling import RateGovernor


logger = logging.getLogger(__name__)


class ProgressChannel:
    """
    Thread-safe FIFO of progress events.

    The pipeline publishes, a consumer iterates from any thread until the
    channel is closed. With ``maxsize`` set, the oldest unread event is
    dropped when the buffer is full so a slow consumer never blocks a run.
    """

    _CLOSED = object()

    def __init__(self, maxsize: int = 0):
        self._queue: queue.Queue = queue.Queue(maxsize=maxsize)
        self._latest: Optional[ProgressEvent] = None
        self._closed = False
        self.lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._closed

    def _put(self, item: Any) -> None:
        while True:
            try:
                self._queue.put_nowait(item)
                return
            except queue.Full:
                try:
                    self._queue.get_nowait()
                except queue.Empty:
                    pass

    def publish(self, event: ProgressEvent) -> None:
        with self.lock:
            if self._closed:
                raise RuntimeError("Cannot publish to a closed progress channel")
            self._latest = event
            self._put(event)

    def close(self) -> None:
        with self.lock:
            if self._closed:
                return
            self._closed = True
            self._put(self._CLOSED)

    def latest(self) -> Optional[ProgressEvent]:
        """Most recent event, without consuming anything."""
        return self._latest

    def __iter__(self) -> Iterator[ProgressEvent]:
        while True:
            item = self._queue.get()
            if item is self._CLOSED:
                # leave the marker for any other consumer
                self._queue.put(item)
                return
            yield item


class BatchPipeline:
    """
    Orchestrates one geocoding run at a time.

    The pipeline owns its cache, checkpoint, rate governor and active-run
    flag. Records are mutated in place and returned.

    Usage:
        pipeline = BatchPipeline(NominatimClient(), AddressCache(store), Checkpoint(cp_store))
        channel = ProgressChannel()
        pipeline.run(records, config, progress=channel)
    """

    def __init__(
        self,
        provider: LookupProvider,
        cache: AddressCache,
        checkpoint: Checkpoint,
        config: Optional[GeocodingPipelineConfig] = None,
        sleep: Optional[Callable[[float], Any]] = None,
        record_sink: Optional[Callable[[List[Record]], Any]] = None,
        normalizer: Optional[Normalizer] = None,
    ):
        """
        Args:
            provider: External lookup provider
            cache: Address cache (owned exclusively by this pipeline)
            checkpoint: Checkpoint persistence (owned exclusively by this pipeline)
            config: Default run configuration
            sleep: Replacement for delays (tests); defaults to a stop-aware wait
            record_sink: Persists the host's records; called before every checkpoint
                save so processed ids are never durable ahead of their records
            normalizer: Cache key normalizer (defaults to AddressNormalizer)
        """
        self.provider = provider
        self.cache = cache
        self.checkpoint = checkpoint
        self.config = config or GeocodingPipelineConfig()
        self.record_sink = record_sink
        self.normalizer = normalizer or AddressNormalizer()
        self._records: List[Record] = []
        self.stats = RunStats()
        self.governor = RateGovernor.from_config(self.config)
        self._sleep = sleep
        self._stop = threading.Event()
        self._run_lock = threading.Lock()
        self._processed_ids: set[RecordId] = set()

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    def stop(self) -> None:
        """Ask the active run to stop after the in-flight record."""
        self._stop.set()

    def _wait(self, seconds: float) -> None:
        if seconds <= 0:
            return
        if self._sleep is not None:
            self._sleep(seconds)
        else:
            self._stop.wait(seconds)

    def run(
        self,
        records: List[Record],
        config: Optional[GeocodingPipelineConfig] = None,
        progress: Optional[ProgressChannel] = None,
    ) -> List[Record]:
        """
        Geocode all pending records.

        Args:
            records: Records to process (mutated in place)
            config: Run configuration (defaults to the pipeline's)
            progress: Optional channel receiving one event per record and per batch

        Returns:
            The same record list

        Raises:
            ConcurrentRunRejected if a run is already active
        """
        if not self._run_lock.acquire(blocking=False):
            raise ConcurrentRunRejected()
        try:
            self._stop.clear()
            return self._run(records, config or self.config, progress)
        finally:
            if progress is not None:
                progress.close()
            self._run_lock.release()

    def _run(
        self,
        records: List[Record],
        config: GeocodingPipelineConfig,
        progress: Optional[ProgressChannel],
    ) -> List[Record]:
        self.config = config
        self._records = records
        self.stats = RunStats(total=len(records), start_time=utcnow(), status=RunStatus.RUNNING)
        self.governor = RateGovernor.from_config(config)
        resolver = AddressResolver(
            self.provider,
            max_retries=config.max_retries,
            retry_delay=config.retry_delay,
            sleep=self._wait,
            should_stop=self._stop.is_set,
        )

        logger.info(
            f"Starting geocoding of {len(records)} records: batch_size={config.batch_size}, "
            f"delay={self.governor.current_delay():.2f}s, max_retries={config.max_retries}"
        )

        if config.cache_enabled:
            self.cache.load_from_storage()

        state = self.checkpoint.load() if config.resume_from_checkpoint else None
        self._processed_ids = set(state.processed_ids) if state else set()
        start_batch = state.current_batch_index if state else 0
        if state:
            logger.info(f"Resuming from batch {start_batch}, {len(self._processed_ids)} already processed")

        pending = [r for r in records if r.id not in self._processed_ids and not r.is_geocoded()]
        batches = _partition(pending, config.batch_size)
        total_batches = start_batch + len(batches)
        logger.info(f"{len(pending)} records pending in {len(batches)} batches")

        current = start_batch
        try:
            for offset, batch in enumerate(batches):
                current = start_batch + offset
                logger.info(f"Processing batch {current + 1}/{total_batches} ({len(batch)} records)")

                if not self._process_batch(batch, resolver, current, total_batches, progress):
                    break

                current += 1
                self._persist(current)
                self._publish(progress, ProgressEvent(
                    kind="batch",
                    processed=self.stats.processed,
                    total=self.stats.total,
                    batch_index=current - 1,
                    total_batches=total_batches,
                    stats=self.stats.snapshot(),
                ))

                resolved = sum(1 for r in batch if r.status == RecordStatus.RESOLVED)
                logger.info(f"Batch {current}/{total_batches} done: {resolved}/{len(batch)} resolved")

                if self._stop.is_set():
                    break
                if offset < len(batches) - 1:
                    self._wait(config.batch_pause)
        except Exception:
            self.stats.status = RunStatus.ERRORED
            self.stats.end_time = utcnow()
            logger.exception(f"Geocoding run failed in batch {current + 1}, saving progress")
            self._persist(current)
            raise

        remaining = sum(1 for r in pending if r.id not in self._processed_ids)
        if remaining:
            self.stats.status = RunStatus.STOPPED
            self._persist(current)
            logger.warning(f"Geocoding stopped with {remaining} records left, resume from batch {current + 1}")
        else:
            self.stats.status = RunStatus.COMPLETED

        self.stats.end_time = utcnow()
        if config.cache_enabled:
            self.cache.flush_to_storage()

        self._log_summary()
        return records

    def _process_batch(
        self,
        batch: Sequence[Record],
        resolver: AddressResolver,
        batch_index: int,
        total_batches: int,
        progress: Optional[ProgressChannel],
    ) -> bool:
        """
        Process one batch. Returns False if a stop was requested before it finished.

        The governor delay follows provider lookups only: cache hits and
        blank addresses make no request, so nothing is waited after them.
        """
        for record in batch:
            if self._stop.is_set():
                return False
            if record.id in self._processed_ids:
                continue

            looked_up = self._process_record(record, resolver)
            if record.id not in self._processed_ids:
                # retries abandoned on stop, record left pending
                return False

            self.governor.observe(self.stats)
            self._publish(progress, ProgressEvent(
                kind="record",
                processed=self.stats.processed,
                total=self.stats.total,
                batch_index=batch_index,
                total_batches=total_batches,
                stats=self.stats.snapshot(),
                record_id=record.id,
                record_name=record.name,
                outcome=record.status,
                source=record.resolution.source if record.resolution else None,
            ))

            if looked_up:
                self._wait(self.governor.current_delay())
        return True

    def _process_record(self, record: Record, resolver: AddressResolver) -> bool:
        """Resolve one record in place. Returns True if the provider was called."""
        use_cache = self.config.cache_enabled
        key = self.normalizer.normalize(record.raw_address)
        looked_up = False

        cached = self.cache.get(key) if use_cache else None
        if cached is not None:
            logger.debug(f"Cache hit: {record.raw_address}")
            record.mark_resolved(cached, ResolutionSource.CACHE)
            self.stats.cache_hits += 1
            self.stats.success += 1
        elif not key:
            logger.warning(f"Record {record.id} has no address")
            record.mark_failed()
            self.stats.errors += 1
        else:
            outcome = resolver.resolve(record.raw_address)
            looked_up = True
            if outcome.status == GeocodeStatus.INTERRUPTED:
                return looked_up

            resolution = outcome.resolution if outcome.is_success() else None
            if resolution is not None:
                record.mark_resolved(resolution, ResolutionSource.LOOKUP)
                self.stats.success += 1
                if use_cache:
                    self.cache.put(key, resolution)
            else:
                record.mark_failed()
                self.stats.errors += 1

        self._processed_ids.add(record.id)
        self.stats.processed += 1
        return looked_up

    def _persist(self, batch_index: int) -> None:
        if self.record_sink is not None:
            try:
                self.record_sink(self._records)
            except Exception:
                # the checkpoint must not list ids whose records were not saved
                logger.exception("Saving records failed, checkpoint not updated")
                return

        state = CheckpointState(
            processed_ids=set(self._processed_ids),
            current_batch_index=batch_index,
            stats=self.stats.to_dict(),
        )
        self.checkpoint.save(state)
        if self.config.cache_enabled:
            self.cache.flush_to_storage()

    @staticmethod
    def _publish(progress: Optional[ProgressChannel], event: ProgressEvent) -> None:
        if progress is not None:
            progress.publish(event)

    def _log_summary(self) -> None:
        s = self.stats
        elapsed = s.elapsed_seconds() or 0.0
        rate = (s.success / s.processed * 100) if s.processed else 0.0
        logger.info(
            f"Geocoding {s.status.value} in {elapsed:.0f}s: total={s.total}, processed={s.processed}, "
            f"success={s.success}, errors={s.errors}, cache_hits={s.cache_hits}, success_rate={rate:.1f}%"
        )


def _partition(records: Sequence[Record], size: int) -> List[List[Record]]:
    return [list(records[i:i + size]) for i in range(0, len(records), size)]
