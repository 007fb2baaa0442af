"""
Reconciliation Celery Tasks

- release_stale_reservations_task: periodic stale-reservation sweep (beat,
  every RECONCILER_INTERVAL_MINUTES) and operator-triggered runs from the
  admin API.
"""

import logging
from datetime import timedelta

from celery import shared_task
from django.db import OperationalError

logger = logging.getLogger(__name__)


@shared_task(
    bind=True,
    max_retries=3,
    default_retry_delay=60,
    queue="payment_tasks",
    autoretry_for=(OperationalError,),
    retry_backoff=True,
)
def release_stale_reservations_task(self, threshold_minutes=None, dry_run=False, batch_size=None):
    """
    Run one stale-reservation sweep.

    Per-record failures are reported inside the result and never fail the
    task; only a database outage (OperationalError) is retried.

    Returns:
        dict: ReconciliationReport as a dict
    """
    from infrastructure.container import container

    threshold = timedelta(minutes=int(threshold_minutes)) if threshold_minutes is not None else None
    logger.info(
        f"Reconciler task {self.request.id} started (threshold={threshold or 'default'}, dry_run={dry_run})"
    )

    result = container.reconciliation_service().release_stale_reservations(
        threshold=threshold, dry_run=bool(dry_run), batch_size=batch_size
    )
    return result.value.to_dict()
