"""
Storage backends for the address cache and the run checkpoint.

JSON files are the default durable format. DuckDB is available for
large caches, written in batches through a registered DataFrame.
"""

import json
import logging
import os
from pathlib import Path
from typing import Optional, Dict, Any

import duckdb
import pandas as pd
from pydantic import ValidationError

from ..db.db import duckdb_connection
from ..utils.errors import PersistenceFailure
from .base import CacheStore, CheckpointStore
from .models import CheckpointState


logger = logging.getLogger(__name__)


def _write_text_atomic(path: Path, text: str) -> None:
    """Write via a sibling temp file so readers never see a partial file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(path.name + ".tmp")
    tmp_path.write_text(text, encoding="utf-8")
    os.replace(tmp_path, path)


class JSONCacheStore(CacheStore):
    """
    JSON file cache store.

    The file holds a single object mapping normalized keys to
    ``{latitude, longitude, formattedAddress, confidence}``.
    """

    def __init__(self, path: Path | str):
        self.path = Path(path)

    def load(self) -> Dict[str, Dict[str, Any]]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise PersistenceFailure(str(self.path), e) from e
        if not isinstance(data, dict):
            raise PersistenceFailure(str(self.path), ValueError("cache file is not a JSON object"))
        return data

    def save(self, entries: Dict[str, Dict[str, Any]]) -> None:
        try:
            _write_text_atomic(self.path, json.dumps(entries, indent=2, ensure_ascii=False))
        except (OSError, TypeError) as e:
            raise PersistenceFailure(str(self.path), e) from e

    def clear(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            raise PersistenceFailure(str(self.path), e) from e


class DuckDBCacheStore(CacheStore):
    """
    DuckDB cache store.

    Rows are only ever inserted; an existing key is never overwritten.
    """

    DDL = """
    CREATE TABLE IF NOT EXISTS address_cache (
        cache_key TEXT PRIMARY KEY,
        latitude DOUBLE,
        longitude DOUBLE,
        formatted_address TEXT,
        confidence DOUBLE,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    );
    """

    COLUMNS = ["cache_key", "latitude", "longitude", "formatted_address", "confidence"]

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path)

    def load(self) -> Dict[str, Dict[str, Any]]:
        if not self.db_path.exists():
            return {}
        try:
            with duckdb_connection(self.db_path) as con:
                con.execute(self.DDL)
                rows = con.execute(
                    "SELECT cache_key, latitude, longitude, formatted_address, confidence "
                    "FROM address_cache"
                ).fetchall()
        except duckdb.Error as e:
            raise PersistenceFailure(str(self.db_path), e) from e

        return {
            key: {
                "latitude": lat,
                "longitude": lon,
                "formattedAddress": formatted or "",
                "confidence": confidence or 0.0,
            }
            for key, lat, lon, formatted, confidence in rows
        }

    def save(self, entries: Dict[str, Dict[str, Any]]) -> None:
        if not entries:
            return

        rows = [
            (
                key,
                payload["latitude"],
                payload["longitude"],
                payload.get("formattedAddress", ""),
                payload.get("confidence", 0.0),
            )
            for key, payload in entries.items()
        ]
        df = pd.DataFrame(rows, columns=self.COLUMNS)

        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            with duckdb_connection(self.db_path) as con:
                con.execute(self.DDL)
                con.register("batch_cache", df)
                try:
                    con.execute(
                        """
                        INSERT OR IGNORE INTO address_cache
                        (cache_key, latitude, longitude, formatted_address, confidence)
                        SELECT cache_key, latitude, longitude, formatted_address, confidence
                        FROM batch_cache
                        """
                    )
                finally:
                    con.unregister("batch_cache")
        except (duckdb.Error, OSError) as e:
            raise PersistenceFailure(str(self.db_path), e) from e

        logger.debug(f"Upserted {len(df)} cache rows into {self.db_path}")

    def clear(self) -> None:
        try:
            self.db_path.unlink(missing_ok=True)
            self.db_path.with_name(self.db_path.name + ".wal").unlink(missing_ok=True)
        except OSError as e:
            raise PersistenceFailure(str(self.db_path), e) from e


class JSONCheckpointStore(CheckpointStore):
    """
    JSON file checkpoint store.

    Format: ``{processedIds, currentBatch, timestamp, stats}``.
    """

    def __init__(self, path: Path | str):
        self.path = Path(path)

    def read(self) -> Optional[CheckpointState]:
        if not self.path.exists():
            return None
        try:
            return CheckpointState.model_validate_json(self.path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            raise PersistenceFailure(str(self.path), e) from e

    def write(self, state: CheckpointState) -> None:
        try:
            _write_text_atomic(self.path, state.model_dump_json(by_alias=True, indent=2))
        except OSError as e:
            raise PersistenceFailure(str(self.path), e) from e

    def clear(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            raise PersistenceFailure(str(self.path), e) from e
