import threading
from typing import Dict
from contextlib import contextmanager
import logging

logger = logging.getLogger(__name__)


class HistoryLockManager:
    """
    Hands out one re-entrant lock per history namespace.

    Every history store bound to the same namespace shares the lock, so two
    imports finishing at the same time (or an import racing a rollback) cannot
    interleave their append, status update, delete and eviction steps.
    """
    _locks: Dict[str, threading.RLock] = {}
    _global_lock = threading.Lock()

    @classmethod
    def get_lock(cls, namespace: str) -> threading.RLock:
        """Get or create the lock for a history namespace."""
        with cls._global_lock:
            if namespace not in cls._locks:
                cls._locks[namespace] = threading.RLock()
            return cls._locks[namespace]

    @classmethod
    @contextmanager
    def acquire(cls, namespace: str):
        """Context manager to acquire and release a namespace lock."""
        lock = cls.get_lock(namespace)
        lock.acquire()
        logger.debug("Acquired history lock for namespace '%s'", namespace)
        try:
            yield
        finally:
            lock.release()
            logger.debug("Released history lock for namespace '%s'", namespace)
