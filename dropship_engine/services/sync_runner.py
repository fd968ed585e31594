import hashlib
import logging
import threading
import time
import traceback
from datetime import datetime, timezone
from typing import Any, Callable, Optional, TypeVar

from sqlalchemy import text
from sqlalchemy.engine import Connection
from sqlalchemy.orm import Session

from dropship_engine.models import SyncRun, SyncRunError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_local_locks: dict[str, threading.Lock] = {}
_local_locks_guard = threading.Lock()


class SyncAlreadyRunning(RuntimeError):
    def __init__(self, scope: str):
        super().__init__(f"a sync for {scope} is already running")
        self.scope = scope


def _lock_id(scope: str) -> int:
    # stable signed 64-bit id (Postgres bigint)
    lock_id = int(hashlib.md5(scope.encode()).hexdigest()[:16], 16)
    if lock_id > 0x7FFFFFFFFFFFFFFF:
        lock_id -= 0x10000000000000000
    return lock_id


class SyncRunner:
    """
    Single-flight wrapper around a sync pass.
    - at most one run per scope (Postgres advisory lock, in-process lock elsewhere)
    - run history (SyncRun) and per-item errors (SyncRunError)
    """

    def __init__(self, session: Session, scope: str):
        self.session = session
        self.scope = scope
        self.lock_id = _lock_id(scope)
        self.run_id = None
        self._lock_conn: Optional[Connection] = None
        self._local_lock: Optional[threading.Lock] = None

    def _uses_advisory_lock(self) -> bool:
        return self.session.get_bind().dialect.name == "postgresql"

    def _acquire_lock(self) -> bool:
        if self._uses_advisory_lock():
            # a dedicated connection keeps the session-level lock across the run's commits
            self._lock_conn = self.session.get_bind().connect()
            acquired = self._lock_conn.execute(
                text("SELECT pg_try_advisory_lock(:id)"), {"id": self.lock_id}
            ).scalar()
            if not acquired:
                self._lock_conn.close()
                self._lock_conn = None
            return bool(acquired)

        with _local_locks_guard:
            lock = _local_locks.setdefault(self.scope, threading.Lock())
        if not lock.acquire(blocking=False):
            return False
        self._local_lock = lock
        return True

    def _release_lock(self) -> None:
        if self._lock_conn is not None:
            try:
                self._lock_conn.execute(text("SELECT pg_advisory_unlock(:id)"), {"id": self.lock_id})
            except Exception as e:
                logger.error(f"[SYNC] Failed to release lock for {self.scope}: {e}")
            finally:
                self._lock_conn.close()
                self._lock_conn = None
        if self._local_lock is not None:
            self._local_lock.release()
            self._local_lock = None

    def run(self, func: Callable[[SyncRun], T], meta: Optional[dict[str, Any]] = None) -> T:
        """
        Run `func` inside the guard and record it.

        Raises SyncAlreadyRunning when another run holds the scope. Exceptions
        from `func` mark the run as failed and propagate to the caller.
        """
        if not self._acquire_lock():
            logger.warning(f"[SYNC] {self.scope} is already running. Refusing overlapping run.")
            raise SyncAlreadyRunning(self.scope)

        try:
            sync_run = SyncRun(
                scope=self.scope,
                status="running",
                created_count=0,
                updated_count=0,
                hidden_count=0,
                skipped_count=0,
                error_count=0,
                api_calls=0,
                meta=meta or {},
            )
            self.session.add(sync_run)
            self.session.commit()
            self.run_id = sync_run.id

            start_time = time.time()
            logger.info(f"[SYNC] Starting run {self.run_id} ({self.scope})")
            try:
                result = func(sync_run)
                if sync_run.status == "running":
                    sync_run.status = "success" if sync_run.error_count == 0 else "partial"
                return result
            except Exception as e:
                logger.error(f"[SYNC] Run {self.run_id} failed: {e}")
                self.session.rollback()
                sync_run.status = "fail"
                self.log_error(sync_run, str(e), traceback.format_exc())
                raise
            finally:
                sync_run.finished_at = datetime.now(timezone.utc)
                sync_run.duration_ms = int((time.time() - start_time) * 1000)
                self.session.commit()
                logger.info(
                    f"[SYNC] Run {self.run_id} completed. Status: {sync_run.status}, "
                    f"Created: {sync_run.created_count}, Updated: {sync_run.updated_count}, "
                    f"Hidden: {sync_run.hidden_count}, Errors: {sync_run.error_count}"
                )
        finally:
            self._release_lock()

    def log_error(self, sync_run: SyncRun, message: str, stack: Optional[str] = None, entity_id: Optional[str] = None):
        self.session.add(SyncRunError(run_id=sync_run.id, entity_id=entity_id, message=message, stack=stack))
        sync_run.error_count += 1
