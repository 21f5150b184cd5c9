"""Weekly background retraining of every tenant's model.

A single :class:`ScheduledRetrainer` per process sleeps until the next
maintenance window (Sunday 03:00 local time by default), retrains every
tenant, and then schedules itself for the following week.
"""

import logging
import threading
import time
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional
from uuid import UUID

from tenantrec.config import DEFAULT_RETRAIN_HOUR, DEFAULT_RETRAIN_WEEKDAY
from tenantrec.repositories import TenantRepository

# Configure module logger
logger = logging.getLogger(__name__)


def validate_maintenance_slot(weekday: int, hour: int) -> None:
    """Raise ValueError unless weekday is 0..6 and hour is 0..23."""
    if not 0 <= weekday <= 6:
        raise ValueError(f"weekday must be in 0..6, got {weekday}")
    if not 0 <= hour <= 23:
        raise ValueError(f"hour must be in 0..23, got {hour}")


def next_maintenance_window(
    now: datetime,
    weekday: int = DEFAULT_RETRAIN_WEEKDAY,
    hour: int = DEFAULT_RETRAIN_HOUR,
) -> datetime:
    """Compute the next occurrence of the weekly maintenance window.

    Args:
        now: Current local time.
        weekday: Day of week as in ``datetime.weekday()`` (Monday is 0).
        hour: Hour of day the window opens.

    Returns:
        The first ``weekday`` at ``hour``:00 strictly after ``now``.

    Example:
        >>> next_maintenance_window(datetime(2024, 6, 5, 12, 0))
        datetime.datetime(2024, 6, 9, 3, 0)
    """
    validate_maintenance_slot(weekday, hour)

    days_ahead = (weekday - now.weekday()) % 7
    target = now.replace(hour=hour, minute=0, second=0, microsecond=0) + timedelta(
        days=days_ahead
    )
    if target <= now:
        target += timedelta(days=7)
    return target


def retrain_all_tenant_models(tenant_repository: TenantRepository, service) -> Dict[UUID, bool]:
    """Retrain every tenant, isolating failures per tenant.

    Args:
        tenant_repository: Source of the tenant list.
        service: Object exposing ``retrain_tenant_model(tenant_id) -> bool``.

    Returns:
        Mapping of tenant id to whether a new model was produced. Tenants
        whose retrain raised are recorded as False.
    """
    tenants = tenant_repository.get_all()
    results: Dict[UUID, bool] = {}

    if not tenants:
        logger.info("No tenants to retrain")
        return results

    logger.info(f"Retraining models for {len(tenants)} tenants")

    for tenant in tenants:
        try:
            results[tenant.id] = service.retrain_tenant_model(tenant.id)
        except Exception as e:
            logger.error(
                f"Error retraining model for tenant {tenant.id}: {tenant.name}",
                extra={
                    "tenant_id": str(tenant.id),
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
                exc_info=True,
            )
            results[tenant.id] = False

    succeeded = sum(1 for ok in results.values() if ok)
    logger.info(
        "Batch retraining finished",
        extra={"num_tenants": len(results), "num_succeeded": succeeded},
    )
    return results


class ScheduledRetrainer:
    """Single long-lived timer that retrains all tenants once a week.

    Runs never overlap: :meth:`run_once` is guarded by an in-progress flag,
    whether it is called by the background thread or by hand.

    Args:
        tenant_repository: Source of the tenant list.
        service: The recommendation service to retrain through.
        weekday: Maintenance day, ``datetime.weekday()`` numbering.
        hour: Maintenance hour, local time.
        clock: Returns the current local time; injectable for tests.

    Raises:
        ValueError: If weekday or hour is out of range.
    """

    def __init__(
        self,
        tenant_repository: TenantRepository,
        service,
        weekday: int = DEFAULT_RETRAIN_WEEKDAY,
        hour: int = DEFAULT_RETRAIN_HOUR,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        validate_maintenance_slot(weekday, hour)

        self.tenant_repository = tenant_repository
        self.service = service
        self.weekday = weekday
        self.hour = hour
        self._clock = clock or datetime.now

        self._state_lock = threading.Lock()
        self._in_progress = False
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

        self.last_run_at: Optional[datetime] = None
        self.last_results: Dict[UUID, bool] = {}

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def in_progress(self) -> bool:
        with self._state_lock:
            return self._in_progress

    def next_run_at(self) -> datetime:
        return next_maintenance_window(self._clock(), self.weekday, self.hour)

    def start(self) -> None:
        """Start the background thread. Calling it again is a no-op."""
        with self._state_lock:
            if self._thread is not None and self._thread.is_alive():
                return
            self._stop_event.clear()
            self._thread = threading.Thread(
                target=self._run_loop, name="tenantrec-retrainer", daemon=True
            )
            self._thread.start()
        logger.info("Scheduled retrainer started")

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        """Signal the background thread to exit and wait for it."""
        self._stop_event.set()
        thread = self._thread
        if thread is not None:
            thread.join(timeout)
        logger.info("Scheduled retrainer stopped")

    def run_once(self) -> Optional[Dict[UUID, bool]]:
        """Retrain all tenants now, unless a run is already in progress.

        Returns:
            Per-tenant results, or None if another run was in progress.
        """
        with self._state_lock:
            if self._in_progress:
                logger.warning("Retraining already in progress, skipping run")
                return None
            self._in_progress = True

        start_time = time.time()
        try:
            results = retrain_all_tenant_models(self.tenant_repository, self.service)
            self.last_run_at = self._clock()
            self.last_results = results
            return results
        finally:
            with self._state_lock:
                self._in_progress = False
            logger.info(
                "Retraining run finished",
                extra={"duration_ms": round((time.time() - start_time) * 1000, 2)},
            )

    def _run_loop(self) -> None:
        last_window: Optional[datetime] = None
        while not self._stop_event.is_set():
            # Never schedule the window that just ran, even if the clock lags
            reference = self._clock()
            if last_window is not None and reference < last_window:
                reference = last_window
            next_run = next_maintenance_window(reference, self.weekday, self.hour)
            delay = max(0.0, (next_run - self._clock()).total_seconds())
            logger.info(
                "Next retraining scheduled",
                extra={"next_run_at": next_run.isoformat(), "delay_seconds": round(delay)},
            )

            if self._stop_event.wait(delay):
                break
            last_window = next_run

            try:
                self.run_once()
            except Exception as e:
                # Tenant enumeration failed; try again next week
                logger.error(f"Scheduled retraining failed: {e}", exc_info=True)
