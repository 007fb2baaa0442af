"""
InventoryService - Product Availability

Owns the ``available -> reserved -> sold`` availability flag of products.
Every transition is a single conditional UPDATE (compare-and-set) so two
concurrent checkouts can never both reserve the same product; there is no
read-then-write window and no row lock to forget.
"""

from datetime import datetime
from typing import Iterable, Optional

from django.utils import timezone

from marketplace.catalog.domain.models.catalog import Product, ProductStatus
from marketplace.infra.observability.metrics import reservation_conflicts_total
from marketplace.services.base import BaseService, ErrorCodes, ServiceResult, service_err, service_ok


class InventoryService(BaseService):
    """
    Service for product reservation transitions.

    All operations are safe to retry. ``release`` and ``finalize_sold`` succeed
    without writing when the product is already in the target state.
    ``reserve`` is exclusive: a product that is already reserved is a conflict,
    which is how the loser of a checkout race finds out.
    """

    @BaseService.log_performance
    def reserve(self, product_id) -> ServiceResult[dict]:
        """
        ``available -> reserved`` for an active product.

        Returns:
            ServiceResult with {"product_id", "status", "changed"} or
            RESERVATION_CONFLICT / PRODUCT_NOT_FOUND
        """
        result = self._transition(
            product_id,
            from_statuses=(ProductStatus.AVAILABLE,),
            to_status=ProductStatus.RESERVED,
            extra_filter={"is_active": True},
            idempotent=False,
        )
        if not result.ok and result.error == ErrorCodes.RESERVATION_CONFLICT:
            reservation_conflicts_total.labels(operation="reserve").inc()
        return result

    @BaseService.log_performance
    def release(
        self, product_id, stale_before: Optional[datetime] = None, include_sold: bool = False
    ) -> ServiceResult[dict]:
        """
        ``reserved -> available``; a successful no-op in any other state.

        Args:
            stale_before: Only release if the reservation is older than this
                instant. Used by the reconciler so a reservation refreshed after
                it was scanned is left alone.
            include_sold: Also put a sold product back on sale (cancellation
                of an order that was already paid)
        """
        from_statuses = (ProductStatus.RESERVED, ProductStatus.SOLD) if include_sold else (ProductStatus.RESERVED,)
        extra_filter = {"status_changed_at__lt": stale_before} if stale_before is not None else None
        return self._transition(
            product_id,
            from_statuses=from_statuses,
            to_status=ProductStatus.AVAILABLE,
            extra_filter=extra_filter,
            idempotent=True,
            lenient=True,
        )

    @BaseService.log_performance
    def finalize_sold(self, product_id) -> ServiceResult[dict]:
        """``reserved -> sold``; a successful no-op if already sold."""
        result = self._transition(
            product_id,
            from_statuses=(ProductStatus.RESERVED,),
            to_status=ProductStatus.SOLD,
            idempotent=True,
        )
        if not result.ok and result.error == ErrorCodes.RESERVATION_CONFLICT:
            reservation_conflicts_total.labels(operation="finalize_sold").inc()
        return result

    def _transition(
        self,
        product_id,
        from_statuses: Iterable[str],
        to_status: str,
        extra_filter: Optional[dict] = None,
        idempotent: bool = True,
        lenient: bool = False,
    ) -> ServiceResult[dict]:
        now = timezone.now()
        queryset = Product.objects.filter(pk=product_id, status__in=list(from_statuses))
        if extra_filter:
            queryset = queryset.filter(**extra_filter)

        updated = queryset.update(status=to_status, status_changed_at=now, updated_at=now)
        if updated:
            self.logger.info(f"Product {product_id} -> {to_status}")
            return service_ok({"product_id": str(product_id), "status": to_status, "changed": True})

        current = Product.objects.filter(pk=product_id).values_list("status", flat=True).first()
        if current is None:
            return service_err(ErrorCodes.PRODUCT_NOT_FOUND, f"Product {product_id} not found")

        if (idempotent and current == to_status) or lenient:
            return service_ok({"product_id": str(product_id), "status": current, "changed": False})

        return service_err(
            ErrorCodes.RESERVATION_CONFLICT,
            f"Product {product_id} is '{current}', cannot become '{to_status}'",
            value={"product_id": str(product_id), "status": current},
        )
