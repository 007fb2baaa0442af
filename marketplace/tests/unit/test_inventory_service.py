import threading
from datetime import timedelta

import pytest
from django.db import connection
from django.utils import timezone

from marketplace.cart.domain.services.inventory_service import InventoryService
from marketplace.models import Product, ProductStatus
from marketplace.services import ErrorCodes
from marketplace.tests.factories import ProductFactory


def _status(product):
    return Product.objects.values_list("status", flat=True).get(pk=product.pk)


@pytest.mark.unit
@pytest.mark.django_db
class TestInventoryService:
    def setup_method(self):
        self.service = InventoryService()

    def test_reserve_available_product(self):
        product = ProductFactory()

        result = self.service.reserve(product.pk)

        assert result.ok
        assert result.value["changed"] is True
        assert _status(product) == ProductStatus.RESERVED

    def test_second_reserve_is_a_conflict(self):
        product = ProductFactory()
        assert self.service.reserve(product.pk).ok

        result = self.service.reserve(product.pk)

        assert not result.ok
        assert result.error == ErrorCodes.RESERVATION_CONFLICT
        assert result.value["status"] == ProductStatus.RESERVED

    def test_reserve_inactive_product_is_a_conflict(self):
        product = ProductFactory(is_active=False)

        result = self.service.reserve(product.pk)

        assert result.error == ErrorCodes.RESERVATION_CONFLICT
        assert _status(product) == ProductStatus.AVAILABLE

    def test_reserve_unknown_product(self):
        result = self.service.reserve("5f0c7a4e-0000-4000-8000-000000000000")

        assert result.error == ErrorCodes.PRODUCT_NOT_FOUND

    def test_release_reserved_product(self):
        product = ProductFactory(status=ProductStatus.RESERVED)

        result = self.service.release(product.pk)

        assert result.ok
        assert result.value["changed"] is True
        assert _status(product) == ProductStatus.AVAILABLE

    def test_release_is_a_noop_when_available(self):
        product = ProductFactory()

        result = self.service.release(product.pk)

        assert result.ok
        assert result.value["changed"] is False

    def test_release_leaves_sold_products_alone(self):
        product = ProductFactory(status=ProductStatus.SOLD)

        result = self.service.release(product.pk)

        assert result.ok
        assert result.value["changed"] is False
        assert _status(product) == ProductStatus.SOLD

    def test_release_sold_product_when_included(self):
        product = ProductFactory(status=ProductStatus.SOLD)

        result = self.service.release(product.pk, include_sold=True)

        assert result.value["changed"] is True
        assert _status(product) == ProductStatus.AVAILABLE

    def test_release_respects_stale_before(self):
        product = ProductFactory(status=ProductStatus.RESERVED)
        Product.objects.filter(pk=product.pk).update(status_changed_at=timezone.now() - timedelta(minutes=10))

        fresh = self.service.release(product.pk, stale_before=timezone.now() - timedelta(hours=1))
        assert fresh.ok
        assert fresh.value["changed"] is False
        assert _status(product) == ProductStatus.RESERVED

        stale = self.service.release(product.pk, stale_before=timezone.now())
        assert stale.value["changed"] is True

    def test_finalize_sold_from_reserved(self):
        product = ProductFactory(status=ProductStatus.RESERVED)

        result = self.service.finalize_sold(product.pk)

        assert result.ok
        assert _status(product) == ProductStatus.SOLD

    def test_finalize_sold_is_idempotent(self):
        product = ProductFactory(status=ProductStatus.SOLD)

        result = self.service.finalize_sold(product.pk)

        assert result.ok
        assert result.value["changed"] is False

    def test_finalize_available_product_is_a_conflict(self):
        product = ProductFactory()

        result = self.service.finalize_sold(product.pk)

        assert result.error == ErrorCodes.RESERVATION_CONFLICT
        assert _status(product) == ProductStatus.AVAILABLE

    def test_transition_stamps_status_changed_at(self):
        product = ProductFactory()
        Product.objects.filter(pk=product.pk).update(status_changed_at=timezone.now() - timedelta(days=1))

        self.service.reserve(product.pk)

        product.refresh_from_db()
        assert timezone.now() - product.status_changed_at < timedelta(minutes=1)

    def test_model_save_never_overwrites_availability(self):
        product = ProductFactory()
        stale_copy = Product.objects.get(pk=product.pk)
        self.service.reserve(product.pk)

        stale_copy.name = "Renamed"
        stale_copy.save()

        product.refresh_from_db()
        assert product.name == "Renamed"
        assert product.status == ProductStatus.RESERVED


@pytest.mark.unit
@pytest.mark.django_db(transaction=True)
class TestConcurrentReservation:
    def test_two_concurrent_reserves_have_exactly_one_winner(self):
        if connection.vendor == "sqlite":
            # SQLite takes a database-wide write lock, so the UPDATEs never interleave;
            # set DB_ENGINE to run this against PostgreSQL or MySQL
            pytest.skip("needs a database server with row-level locking")

        product = ProductFactory()
        barrier = threading.Barrier(2)
        results = []

        def attempt():
            try:
                barrier.wait(timeout=5)
                results.append(InventoryService().reserve(product.pk))
            finally:
                connection.close()

        threads = [threading.Thread(target=attempt) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)

        assert len(results) == 2
        assert sorted(result.ok for result in results) == [False, True]
        assert [result.error for result in results if not result.ok] == [ErrorCodes.RESERVATION_CONFLICT]
        assert _status(product) == ProductStatus.RESERVED
