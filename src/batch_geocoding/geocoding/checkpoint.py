"""Checkpoint persistence for resumable runs."""

import logging
from typing import Optional

from ..utils.errors import PersistenceFailure
from .base import CheckpointStore
from .models import CheckpointState


logger = logging.getLogger(__name__)


class Checkpoint:
    """
    Durable record of processed record ids and the next batch index.

    Saved once per completed batch, so a resume repeats at most one batch
    worth of work that was not yet persisted.
    """

    def __init__(self, store: CheckpointStore):
        self.store = store

    def load(self) -> Optional[CheckpointState]:
        try:
            state = self.store.read()
        except PersistenceFailure as e:
            logger.warning(f"Ignoring unreadable checkpoint: {e}")
            return None
        if state is not None:
            logger.info(
                f"Checkpoint found: batch {state.current_batch_index}, "
                f"{len(state.processed_ids)} processed"
            )
        return state

    def save(self, state: CheckpointState) -> bool:
        try:
            self.store.write(state)
        except PersistenceFailure as e:
            logger.error(f"Checkpoint save failed: {e}")
            return False
        return True

    def clear(self) -> None:
        self.store.clear()
