"""Per-account periodic driver: reconcile, then evaluate reminders."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

from loguru import logger

from nudgeflow.application.ports.thread_store import ThreadStore
from nudgeflow.application.ports.timer import Timer
from nudgeflow.application.use_cases.correlate_thread import utcnow
from nudgeflow.application.use_cases.reconcile_mailbox import ReconcileMailboxUseCase, ReconcileResult
from nudgeflow.application.use_cases.reminder_policy import ReminderPassResult, ReminderPolicyEngine
from nudgeflow.domain.errors import TransportError


def job_id_for(account_id: str) -> str:
    return f"account:{account_id}"


@dataclass
class ScheduleHandle:
    """Registry entry for one running account schedule."""

    account_id: str
    display_name: str
    frequency_minutes: int
    job_id: str
    started_at: datetime
    last_run_at: Optional[datetime] = None
    last_error: Optional[str] = None
    runs: int = 0


@dataclass
class TickResult:
    account_id: str
    ran: bool
    reconcile: Optional[ReconcileResult] = None
    reminders: Optional[ReminderPassResult] = None
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None


@dataclass
class _AccountLocks:
    _guard: threading.Lock = field(default_factory=threading.Lock)
    _locks: dict[str, threading.Lock] = field(default_factory=dict)

    def get(self, account_id: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(account_id, threading.Lock())


class EmailScheduler:
    """Keeps one recurring job per active account.

    A tick never overlaps with itself for the same account: the timer is asked
    for single-instance jobs and a per-account lock skips a tick whose account
    is still busy (e.g. a manual run in progress). Stopping an account only
    cancels future ticks; an in-flight tick finishes normally.
    """

    def __init__(
        self,
        store: ThreadStore,
        timer: Timer,
        reconciler: ReconcileMailboxUseCase,
        reminders: ReminderPolicyEngine,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.timer = timer
        self.reconciler = reconciler
        self.reminders = reminders
        self.clock = clock
        self._handles: dict[str, ScheduleHandle] = {}
        self._registry_lock = threading.Lock()
        self._locks = _AccountLocks()

    @property
    def running(self) -> bool:
        return bool(self._handles)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start_all(self) -> int:
        accounts = self.store.list_active_accounts()
        logger.info(f"🚀 Starting schedules for {len(accounts)} active account(s)")
        for account in accounts:
            self.start_for_account(account.account_id)
        return len(self._handles)

    def stop_all(self) -> int:
        with self._registry_lock:
            account_ids = list(self._handles)
        for account_id in account_ids:
            self.stop_for_account(account_id)
        logger.info(f"🛑 Stopped {len(account_ids)} schedule(s)")
        return len(account_ids)

    def restart(self) -> int:
        self.stop_all()
        return self.start_all()

    def start_for_account(self, account_id: str) -> ScheduleHandle:
        """Start (or replace) the recurring job for one account."""
        account = self.store.get_account(account_id)
        if account is None:
            raise KeyError(f"Unknown account {account_id}")
        if not account.is_active:
            raise ValueError(f"Account {account_id} is not active")

        # Replacing a schedule cancels the previous job first
        self.stop_for_account(account_id)

        handle = ScheduleHandle(
            account_id=account.account_id,
            display_name=account.display_name,
            frequency_minutes=account.poll_interval_minutes,
            job_id=job_id_for(account.account_id),
            started_at=self.clock(),
        )
        self.timer.every(handle.job_id, handle.frequency_minutes, lambda: self.tick(account_id))
        with self._registry_lock:
            self._handles[account_id] = handle

        logger.info(f"⏱️ {account.display_name}: checking every {handle.frequency_minutes} min")
        return handle

    def stop_for_account(self, account_id: str) -> bool:
        with self._registry_lock:
            handle = self._handles.pop(account_id, None)
        if handle is None:
            return False
        self.timer.cancel(handle.job_id)
        logger.info(f"{handle.display_name}: schedule stopped")
        return True

    # ------------------------------------------------------------------
    # Ticks
    # ------------------------------------------------------------------

    def run_now(self, account_id: str) -> TickResult:
        """Run one tick synchronously, outside the recurring schedule."""
        return self.tick(account_id)

    def tick(self, account_id: str) -> TickResult:
        lock = self._locks.get(account_id)
        if not lock.acquire(blocking=False):
            logger.warning(f"Tick for {account_id} skipped: previous run still in progress")
            return TickResult(account_id=account_id, ran=False, error="busy")
        try:
            return self._run_tick(account_id)
        finally:
            lock.release()

    def _run_tick(self, account_id: str) -> TickResult:
        result = TickResult(account_id=account_id, ran=True, started_at=self.clock())
        try:
            # Re-read the account each tick so last_checked_at is current
            account = self.store.get_account(account_id)
            if account is None or not account.is_active:
                logger.warning(f"Tick for {account_id} skipped: account missing or inactive")
                result.ran = False
                result.error = "inactive"
                return result

            logger.info(f"🔄 Checking {account.display_name} ({account.mailbox_address})")
            result.reconcile = self.reconciler.run(account)
            # Ingestion is committed before reminders read thread state
            result.reminders = self.reminders.evaluate(account)
        except TransportError as e:
            result.error = str(e)
            logger.error(f"Mailbox unreachable for {account_id}, retrying next tick: {e}")
        except Exception as e:
            result.error = str(e)
            logger.exception(f"Tick failed for {account_id}: {e}")
        finally:
            result.finished_at = self.clock()
            self._record_run(account_id, result)
        return result

    def _record_run(self, account_id: str, result: TickResult) -> None:
        with self._registry_lock:
            handle = self._handles.get(account_id)
            if handle is None:
                return
            handle.last_run_at = result.finished_at
            handle.last_error = result.error
            handle.runs += 1

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_status(self) -> dict[str, Any]:
        with self._registry_lock:
            handles = list(self._handles.values())

        jobs = []
        for handle in handles:
            next_run = self.timer.next_run(handle.job_id)
            jobs.append(
                {
                    "account_id": handle.account_id,
                    "display_name": handle.display_name,
                    "frequency_minutes": handle.frequency_minutes,
                    "last_run": handle.last_run_at.isoformat() if handle.last_run_at else None,
                    "next_run": next_run.isoformat() if next_run else None,
                    "last_error": handle.last_error,
                    "runs": handle.runs,
                }
            )

        return {"running": bool(jobs), "job_count": len(jobs), "jobs": jobs}
