from .reconciliation_tasks import release_stale_reservations_task


__all__ = ["release_stale_reservations_task"]
