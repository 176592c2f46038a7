from __future__ import annotations

import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = REPO_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))


from batch_geocoding.geocoding import (
    AddressCache,
    BatchPipeline,
    Candidate,
    Checkpoint,
    GeocodingPipelineConfig,
    JSONCacheStore,
    JSONCheckpointStore,
    LookupProvider,
    Record,
    normalize_key,
)
from batch_geocoding.utils.errors import TransientLookupFailure


class FakeProvider(LookupProvider):
    """Resolves every address except those listed as missing or failing."""

    def __init__(self, missing=(), failing=()):
        self.missing = {normalize_key(a) for a in missing}
        self.failing = {normalize_key(a) for a in failing}
        self.calls: list[str] = []

    def search(self, address):
        self.calls.append(address)
        key = normalize_key(address)
        if key in self.failing:
            raise TransientLookupFailure(address, "connection reset")
        if key in self.missing:
            return []
        offset = sum(ord(c) for c in key) % 1000 / 1000
        return [Candidate(
            latitude=-23.5 + offset,
            longitude=-46.6 - offset,
            display_name=key.title(),
            importance=0.5,
        )]


class Killed(BaseException):
    """Simulates the process dying mid-run."""


class KillingProvider(FakeProvider):
    def __init__(self, kill_at, **kwargs):
        super().__init__(**kwargs)
        self.kill_at = kill_at

    def search(self, address):
        if len(self.calls) + 1 == self.kill_at:
            raise Killed()
        return super().search(address)


class RecordingCheckpointStore(JSONCheckpointStore):
    """Checkpoint store that keeps every state it was asked to write."""

    def __init__(self, path):
        super().__init__(path)
        self.history = []

    def write(self, state):
        self.history.append(state.model_copy(deep=True))
        super().write(state)


def make_records(addresses):
    return [Record(id=i + 1, raw_address=a, name=f"Client {i + 1}") for i, a in enumerate(addresses)]


@pytest.fixture
def fast_config():
    return GeocodingPipelineConfig(
        rate_limit_delay=0.0,
        batch_size=2,
        max_retries=3,
        retry_delay=0.0,
        batch_pause=0.0,
        min_delay=0.0,
        max_delay=1.0,
    )


@pytest.fixture
def storage_paths(tmp_path):
    return tmp_path / "cache.json", tmp_path / "progress.json"


@pytest.fixture
def build_pipeline(storage_paths, fast_config):
    cache_path, checkpoint_path = storage_paths

    def _build(provider, config=None, checkpoint_store=None):
        return BatchPipeline(
            provider=provider,
            cache=AddressCache(JSONCacheStore(cache_path)),
            checkpoint=Checkpoint(checkpoint_store or JSONCheckpointStore(checkpoint_path)),
            config=config or fast_config,
            sleep=lambda seconds: None,
        )

    return _build
