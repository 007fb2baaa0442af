"""
ReconciliationService - Stale Reservation Sweep

Compensates for checkouts whose payment result never arrived. Two passes:

1. Pending, unpaid orders untouched for longer than the threshold are
   cancelled with reason ``payment-timeout``; cancelling releases the product.
2. Products still ``reserved`` past the threshold with no active order at all
   (orphans) are released.

A reservation backed by a pending order younger than the threshold is never
touched. Every record is handled in its own unit of work so one failure does
not abort the sweep. A dry run performs the same writes inside an outer unit
of work and rolls all of them back.
"""

import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from django.conf import settings
from django.db import DatabaseError
from django.utils import timezone

from marketplace.cart.domain.services.inventory_service import InventoryService
from marketplace.catalog.domain.models.catalog import Product, ProductStatus
from marketplace.domain.events.base import publish_event
from marketplace.domain.exceptions import MarketplaceError
from marketplace.ordering.domain.models.order import CancellationReason, Order, OrderPaymentStatus, OrderStatus
from marketplace.ordering.domain.services.order_service import OrderService
from marketplace.ordering.domain.state_machine import ActorRole
from marketplace.services.base import BaseService, ServiceResult, service_ok
from payment_system.domain.events.definitions import ReservationsReleasedEvent
from payment_system.infra.observability.metrics import (
    reconciler_errors_total,
    reconciler_orders_expired_total,
    reconciler_run_seconds,
    reservations_released_total,
    stale_reservations_found,
)
from utils.transaction_utils import UnitOfWork


class SkipReason:
    IN_FLIGHT = "payment_in_flight"
    STALE_ORDER_PENDING = "stale_order_pending"
    PAID_ORDER = "paid_order"
    CHANGED = "changed_concurrently"


@dataclass
class ReconciliationReport:
    cutoff: datetime
    dry_run: bool
    stale_orders_found: int = 0
    stale_products_found: int = 0
    expired_order_ids: List[str] = field(default_factory=list)
    released_product_ids: List[str] = field(default_factory=list)
    skipped: List[Dict[str, str]] = field(default_factory=list)
    errors: List[Dict[str, str]] = field(default_factory=list)
    duration_seconds: float = 0.0

    def to_dict(self) -> dict:
        data = asdict(self)
        data["cutoff"] = self.cutoff.isoformat()
        return data

    def summary(self) -> str:
        prefix = "[dry run] " if self.dry_run else ""
        return (
            f"{prefix}cutoff={self.cutoff.isoformat()} stale_orders={self.stale_orders_found} "
            f"expired={len(self.expired_order_ids)} stale_products={self.stale_products_found} "
            f"released={len(self.released_product_ids)} skipped={len(self.skipped)} errors={len(self.errors)}"
        )


class ReconciliationService(BaseService):
    def __init__(self, inventory_service: InventoryService = None, order_service: OrderService = None):
        super().__init__()
        self.inventory_service = inventory_service or InventoryService()
        self.order_service = order_service or OrderService(inventory_service=self.inventory_service)

    @property
    def default_threshold(self) -> timedelta:
        return timedelta(minutes=getattr(settings, "RESERVATION_STALE_AFTER_MINUTES", 60))

    @property
    def default_batch_size(self) -> int:
        return getattr(settings, "RECONCILER_BATCH_SIZE", 200)

    @BaseService.log_performance
    def release_stale_reservations(
        self, threshold: Optional[timedelta] = None, dry_run: bool = False, batch_size: Optional[int] = None
    ) -> ServiceResult[ReconciliationReport]:
        """
        Run one sweep.

        Args:
            threshold: Age after which a pending order or reservation is stale
                (default ``RESERVATION_STALE_AFTER_MINUTES``)
            dry_run: Report what would change without keeping any write
            batch_size: Maximum records per pass (default ``RECONCILER_BATCH_SIZE``)
        """
        threshold = threshold if threshold is not None else self.default_threshold
        batch_size = batch_size or self.default_batch_size
        started = time.monotonic()
        report = ReconciliationReport(cutoff=timezone.now() - threshold, dry_run=dry_run)

        if dry_run:
            with UnitOfWork("reconciler.dry_run") as sweep:
                self._sweep(report, batch_size)
                sweep.abort()
        else:
            self._sweep(report, batch_size)
            if report.released_product_ids or report.expired_order_ids:
                publish_event(ReservationsReleasedEvent(report.released_product_ids, report.expired_order_ids))

        report.duration_seconds = round(time.monotonic() - started, 3)
        if not dry_run:
            reconciler_run_seconds.observe(report.duration_seconds)
            stale_reservations_found.set(report.stale_products_found)
            reservations_released_total.inc(len(report.released_product_ids))
            reconciler_orders_expired_total.inc(len(report.expired_order_ids))
            reconciler_errors_total.inc(len(report.errors))

        log = self.logger.warning if report.errors else self.logger.info
        log(f"Stale reservation sweep: {report.summary()}")
        return service_ok(report)

    def _sweep(self, report: ReconciliationReport, batch_size: int) -> None:
        self._expire_stale_orders(report, batch_size)
        self._release_orphaned_reservations(report, batch_size)

    def _expire_stale_orders(self, report: ReconciliationReport, batch_size: int) -> None:
        order_ids = list(
            Order.objects.filter(
                status=OrderStatus.PENDING,
                payment_status=OrderPaymentStatus.PENDING,
                updated_at__lt=report.cutoff,
            )
            .order_by("updated_at")
            .values_list("pk", flat=True)[:batch_size]
        )
        report.stale_orders_found = len(order_ids)

        for order_id in order_ids:
            try:
                with UnitOfWork("reconciler.expire_order") as uow:
                    order = Order.objects.select_for_update().get(pk=order_id)
                    changed = self.order_service.apply_transition(
                        order,
                        OrderStatus.CANCELLED,
                        ActorRole.SYSTEM,
                        uow,
                        reason=CancellationReason.PAYMENT_TIMEOUT,
                        extra_filter={"payment_status": OrderPaymentStatus.PENDING, "updated_at__lt": report.cutoff},
                    )
            except (DatabaseError, MarketplaceError, Order.DoesNotExist) as e:
                report.errors.append({"order_id": str(order_id), "error": str(e)})
                self.logger.error(f"Reconciler could not expire order {order_id}: {e}")
                continue

            if changed:
                report.expired_order_ids.append(str(order_id))
                report.released_product_ids.append(str(order.product_id))
            else:
                report.skipped.append({"order_id": str(order_id), "reason": SkipReason.CHANGED})

    def _release_orphaned_reservations(self, report: ReconciliationReport, batch_size: int) -> None:
        product_ids = list(
            Product.objects.filter(status=ProductStatus.RESERVED, status_changed_at__lt=report.cutoff)
            .order_by("status_changed_at")
            .values_list("pk", flat=True)[:batch_size]
        )
        report.stale_products_found = len(product_ids)

        for product_id in product_ids:
            active = list(
                Order.objects.filter(product_id=product_id, status__in=OrderStatus.ACTIVE).values(
                    "pk", "status", "payment_status", "updated_at"
                )
            )
            reason = self._skip_reason(active, report.cutoff)
            if reason is not None:
                report.skipped.append({"product_id": str(product_id), "reason": reason})
                if reason == SkipReason.PAID_ORDER:
                    self.logger.warning(f"Product {product_id} is still reserved but has a paid order")
                continue

            try:
                with UnitOfWork("reconciler.release_product"):
                    result = self.inventory_service.release(product_id, stale_before=report.cutoff)
            except DatabaseError as e:
                report.errors.append({"product_id": str(product_id), "error": str(e)})
                self.logger.error(f"Reconciler could not release product {product_id}: {e}")
                continue

            if result.ok and result.value["changed"]:
                report.released_product_ids.append(str(product_id))
            elif result.ok:
                report.skipped.append({"product_id": str(product_id), "reason": SkipReason.CHANGED})
            else:
                report.errors.append({"product_id": str(product_id), "error": result.error})

    @staticmethod
    def _skip_reason(active_orders: List[dict], cutoff: datetime) -> Optional[str]:
        """Why a stale reservation must stay reserved, or None to release it."""
        for order in active_orders:
            if order["payment_status"] == OrderPaymentStatus.COMPLETED:
                return SkipReason.PAID_ORDER
        for order in active_orders:
            if order["updated_at"] >= cutoff:
                return SkipReason.IN_FLIGHT
        if active_orders:
            # Left over from a batch-limited or failed expiry pass
            return SkipReason.STALE_ORDER_PENDING
        return None
