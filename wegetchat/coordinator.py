"""
Mutation coordinator.

All state changes run one at a time under a single lock. A mutation is
applied to a private copy of the published snapshot, the copy is saved, and
only then is it published. Readers always see a complete snapshot.

Persistence policy: if the save fails, the copy is dropped and the
PersistenceError reaches the caller. The published snapshot stays exactly as
it was before the mutation (rollback).
"""

import logging
import threading
import time
from typing import Callable, TypeVar

from wegetchat.entities import Snapshot
from wegetchat.errors import PersistenceError, WeGetChatError
from wegetchat.metrics import record_mutation, record_snapshot_save
from wegetchat.storage import SnapshotStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class MutationCoordinator:
    def __init__(self, store: SnapshotStore, snapshot: Snapshot):
        self._store = store
        self._snapshot = snapshot
        self._lock = threading.Lock()

    @property
    def snapshot(self) -> Snapshot:
        """The published snapshot. Treat it as read-only."""
        return self._snapshot

    def mutate(self, operation: str, apply: Callable[[Snapshot], T]) -> T:
        """
        Run `apply` against a copy of the snapshot, persist, then publish.

        Args:
            operation: Name used in logs and metrics
            apply: Function mutating the snapshot it receives; its return
                value must not reference entities of that snapshot

        Raises:
            WeGetChatError: from `apply`; nothing is saved or published
            PersistenceError: the save failed; nothing is published
        """
        with self._lock:
            working = self._snapshot.model_copy(deep=True)
            try:
                result = apply(working)
            except WeGetChatError as e:
                record_mutation(operation, e.kind)
                logger.info(f"Mutation rejected: {operation}", extra={"operation": operation, "result": e.kind})
                raise

            start = time.perf_counter()
            try:
                self._store.save(working)
            except PersistenceError:
                record_mutation(operation, PersistenceError.kind)
                logger.error(
                    f"Mutation rolled back, snapshot not saved: {operation}",
                    extra={"operation": operation, "result": PersistenceError.kind},
                )
                raise
            finally:
                record_snapshot_save(time.perf_counter() - start)

            self._snapshot = working
            record_mutation(operation, "ok")
            logger.debug(f"Mutation applied: {operation}")
            return result
