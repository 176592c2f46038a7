from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pandas as pd

from batch_geocoding.geocoding import (
    Record,
    RecordStatus,
    ReportGenerator,
    Resolution,
    ResolutionSource,
    RunStats,
    estimate_duration,
)


def _resolved(record_id, source, when=None):
    record = Record(id=record_id, raw_address=f"Rua {record_id}")
    record.mark_resolved(
        Resolution(latitude=-23.5, longitude=-46.6, formatted_address=f"Rua {record_id}", confidence=0.3),
        source,
    )
    if when is not None:
        record.resolved_at = when
    return record


def _failed(record_id):
    record = Record(id=record_id, raw_address=f"Rua {record_id}")
    record.mark_failed()
    return record


def test_summarize_counts_and_buckets():
    yesterday = datetime(2024, 5, 1, 12, tzinfo=timezone.utc)
    records = [
        _resolved(1, ResolutionSource.LOOKUP, when=yesterday + timedelta(days=1)),
        _resolved(2, ResolutionSource.CACHE, when=yesterday + timedelta(days=1)),
        _resolved(3, ResolutionSource.LOOKUP, when=yesterday),
        _failed(4),
        Record(id=5, raw_address="Rua 5"),
    ]
    records[3].resolved_at = yesterday

    report = ReportGenerator.summarize(records, today=date(2024, 5, 2))

    assert report["total"] == 5
    assert report["resolved_count"] == 3
    assert report["failed_count"] == 1
    assert report["pending_count"] == 1
    assert report["success_rate_percent"] == "60.0"
    assert report["cache_hit_count"] == 1
    assert report["detail_buckets"] == {
        "with_coordinates": [1, 2, 3],
        "without_coordinates": [4, 5],
        "from_cache": [2],
        "processed_today": [1, 2],
    }
    assert "processing_time_seconds" not in report


def test_summarize_rounds_to_one_decimal():
    records = [_resolved(1, ResolutionSource.LOOKUP), _failed(2), _failed(3)]

    assert ReportGenerator.summarize(records)["success_rate_percent"] == "33.3"


def test_summarize_empty_record_set():
    report = ReportGenerator.summarize([])

    assert report["total"] == 0
    assert report["success_rate_percent"] == "0.0"


def test_summarize_includes_run_time():
    start = datetime(2024, 5, 1, 12, tzinfo=timezone.utc)
    stats = RunStats(total=1, processed=1, success=1, start_time=start, end_time=start + timedelta(seconds=90))

    report = ReportGenerator.summarize([_resolved(1, ResolutionSource.LOOKUP)], stats=stats)

    assert report["processing_time_seconds"] == 90
    assert report["stats"]["success"] == 1


def test_summarize_is_pure():
    records = [_resolved(1, ResolutionSource.LOOKUP), _failed(2)]
    before = [r.model_dump() for r in records]

    ReportGenerator.summarize(records)

    assert [r.model_dump() for r in records] == before


def test_export_csv(tmp_path):
    records = [_resolved(1, ResolutionSource.CACHE), _failed(2)]
    path = tmp_path / "out" / "report.csv"

    assert ReportGenerator.export_csv(records, path) == 2

    df = pd.read_csv(path)
    assert list(df["status"]) == [RecordStatus.RESOLVED.value, RecordStatus.FAILED.value]
    assert df.loc[0, "source"] == "cache"
    assert pd.isna(df.loc[1, "latitude"])


def test_estimate_duration():
    estimate = estimate_duration(7200, 1.0)

    assert estimate == {"pending": 7200, "seconds": 10800, "minutes": 180, "hours": 3.0}
    assert estimate_duration(-5, 1.0)["pending"] == 0
