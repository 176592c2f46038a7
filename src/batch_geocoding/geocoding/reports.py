"""
Summary and detail reports over a processed record set.

All functions are pure: they read records and never touch storage or the
network, except export_csv which writes the requested file.
"""

from datetime import date
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Sequence

import pandas as pd

from .models import Record, RecordStatus, ResolutionSource, RunStats, utcnow

# Average provider round-trip added to the configured delay when estimating
_EST_REQUEST_SECONDS = 0.5


class ReportGenerator:
    """Derives summary and detail statistics from records."""

    @staticmethod
    def summarize(
        records: Sequence[Record],
        stats: Optional[RunStats] = None,
        today: Optional[date] = None,
    ) -> Dict[str, Any]:
        """
        Summarize a record set.

        Args:
            records: Records to report on
            stats: Optional run stats, adds processing time and counters
            today: Reference day for the ``processed_today`` bucket (UTC today by default)

        Returns:
            Dict with totals, ``success_rate_percent`` as a one-decimal string,
            and ``detail_buckets`` of record ids
        """
        today = today or utcnow().date()
        total = len(records)

        with_coordinates = [r.id for r in records if r.is_geocoded()]
        without_coordinates = [r.id for r in records if not r.is_geocoded()]
        from_cache = [
            r.id for r in records
            if r.resolution is not None and r.resolution.source == ResolutionSource.CACHE
        ]
        processed_today = [
            r.id for r in records
            if r.resolved_at is not None and r.resolved_at.date() == today
        ]

        resolved_count = len(with_coordinates)
        failed_count = sum(1 for r in records if r.status == RecordStatus.FAILED)
        rate = (resolved_count / total * 100) if total else 0.0

        report: Dict[str, Any] = {
            "total": total,
            "resolved_count": resolved_count,
            "failed_count": failed_count,
            "pending_count": total - resolved_count - failed_count,
            "success_rate_percent": f"{rate:.1f}",
            "cache_hit_count": len(from_cache),
            "detail_buckets": {
                "with_coordinates": with_coordinates,
                "without_coordinates": without_coordinates,
                "from_cache": from_cache,
                "processed_today": processed_today,
            },
        }

        if stats is not None:
            elapsed = stats.elapsed_seconds()
            report["processing_time_seconds"] = round(elapsed) if elapsed is not None else None
            report["stats"] = stats.to_dict()

        return report

    @staticmethod
    def to_frame(records: Iterable[Record]) -> pd.DataFrame:
        """Flatten records into one row each for inspection or export."""
        rows = []
        for r in records:
            res = r.resolution
            rows.append({
                "id": r.id,
                "name": r.name,
                "raw_address": r.raw_address,
                "status": r.status.value,
                "latitude": res.latitude if res else None,
                "longitude": res.longitude if res else None,
                "formatted_address": res.formatted_address if res else None,
                "confidence": res.confidence if res else None,
                "source": res.source.value if res and res.source else None,
                "resolved_at": r.resolved_at.isoformat() if r.resolved_at else None,
            })
        return pd.DataFrame(rows, columns=[
            "id", "name", "raw_address", "status", "latitude", "longitude",
            "formatted_address", "confidence", "source", "resolved_at",
        ])

    @classmethod
    def export_csv(cls, records: Iterable[Record], csv_path: Path | str) -> int:
        """
        Export records to CSV.

        Returns:
            Number of rows written
        """
        csv_path = Path(csv_path)
        csv_path.parent.mkdir(parents=True, exist_ok=True)
        df = cls.to_frame(records)
        df.to_csv(csv_path, index=False)
        return len(df)


def estimate_duration(pending: int, delay: float) -> Dict[str, Any]:
    """Estimate wall time for ``pending`` lookups spaced by ``delay`` seconds."""
    pending = max(0, pending)
    seconds = pending * (delay + _EST_REQUEST_SECONDS)
    return {
        "pending": pending,
        "seconds": round(seconds),
        "minutes": round(seconds / 60),
        "hours": round(seconds / 3600, 1),
    }
