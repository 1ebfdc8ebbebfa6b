# app/background/workers.py
"""
In-process periodic jobs.

Each PeriodicWorker is a daemon thread that runs its job every `interval`
seconds until stopped. Jobs open their own sessions and take a
non-blocking named lock, so several app processes can run workers without
doing the same work twice.
"""

import logging
import threading
from typing import Callable

from app.core.database import SessionLocal
from app.core.redis import named_lock
from app.services.inventory_service import SyncResult, due_providers, sync_provider
from app.services.refill_service import RefillCycleReport, run_refill_cycle
from app.utils.datetime_utils import utc_today

logger = logging.getLogger(__name__)


def provider_sync_lock_name(provider_id: int) -> str:
    return f"inventory-sync:{provider_id}"


class PeriodicWorker:
    def __init__(self, name: str, interval: float, job: Callable[[], object]):
        self.name = name
        self.interval = interval
        self.job = job
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()
        logger.info("Worker %s started (every %ss)", self.name, self.interval)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)
        logger.info("Worker %s stopped", self.name)

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self.job()
            except Exception:
                logger.exception("Worker %s job failed", self.name)
            self._stop.wait(self.interval)


def sync_provider_job(provider_id: int) -> SyncResult | None:
    """Sync one provider unless another sync of it is already running."""
    with named_lock(provider_sync_lock_name(provider_id), blocking=False) as acquired:
        if not acquired:
            logger.info("Sync of provider %s already in progress; skipping", provider_id)
            return None
        db = SessionLocal()
        try:
            return sync_provider(db, provider_id)
        finally:
            db.close()


def run_due_provider_syncs() -> list[SyncResult]:
    db = SessionLocal()
    try:
        provider_ids = [p.id for p in due_providers(db)]
    finally:
        db.close()

    results: list[SyncResult] = []
    for provider_id in provider_ids:
        result = sync_provider_job(provider_id)
        if result is not None:
            results.append(result)
    return results


def run_daily_refill_cycle() -> RefillCycleReport:
    return run_refill_cycle(utc_today())
