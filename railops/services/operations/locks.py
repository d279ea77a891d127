"""
In-process serialisation of train and session operations.

Train operations hold the session gate in shared mode plus the train's own
mutex; session operations hold the gate exclusively, so an advance or rollback
never interleaves with a switch-list generation, completion or cancellation.
Cross-process writers are caught by the optimistic version columns instead.
"""
import logging
import threading
from contextlib import contextmanager
from typing import Dict

logger = logging.getLogger(__name__)


class SessionGate:
    """Readers-writer lock; writers are preferred so an advance cannot starve."""

    def __init__(self):
        self._condition = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writer_thread = None
        self._writers_waiting = 0

    @contextmanager
    def shared(self):
        with self._condition:
            while self._writer or self._writers_waiting:
                self._condition.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._condition:
                self._readers -= 1
                if self._readers == 0:
                    self._condition.notify_all()

    @contextmanager
    def exclusive(self):
        with self._condition:
            self._writers_waiting += 1
            while self._writer or self._readers:
                self._condition.wait()
            self._writers_waiting -= 1
            self._writer = True
            self._writer_thread = threading.get_ident()
        try:
            yield
        finally:
            with self._condition:
                self._writer = False
                self._writer_thread = None
                self._condition.notify_all()

    def held_exclusively(self) -> bool:
        """True when the calling thread holds the gate exclusively."""
        with self._condition:
            return self._writer and self._writer_thread == threading.get_ident()


class OperationLocks:
    """Registry of per-train mutexes guarded by one session gate."""

    def __init__(self):
        self.gate = SessionGate()
        self._registry_lock = threading.Lock()
        self._train_locks: Dict[str, threading.Lock] = {}

    def _lock_for(self, train_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._train_locks.get(train_id)
            if lock is None:
                lock = threading.Lock()
                self._train_locks[train_id] = lock
            return lock

    @contextmanager
    def train(self, train_id: str):
        """Serialise operations on one train."""
        with self.gate.shared():
            with self._lock_for(train_id):
                yield

    @contextmanager
    def session(self):
        """Exclusive access to the whole car/train/order collection."""
        with self.gate.exclusive():
            logger.debug("Session gate acquired exclusively")
            yield

    def clear_train_locks(self) -> None:
        """
        Drop every per-train mutex.

        Only safe under the exclusive gate: train operations take the gate in
        shared mode before their mutex, so none is held or waited on.
        """
        if not self.gate.held_exclusively():
            raise RuntimeError("Train locks can only be cleared while the session gate is held exclusively")
        with self._registry_lock:
            self._train_locks.clear()


operation_locks = OperationLocks()
