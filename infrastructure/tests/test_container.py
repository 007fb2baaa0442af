"""
Service Container Tests
========================

Unit tests for dependency injection container.
"""

import os
import subprocess
import sys
from pathlib import Path

from django.test import SimpleTestCase, override_settings

from infrastructure.container import ServiceContainer, container, get_payment_gateway
from infrastructure.payments import MockGateway, MpesaGateway


class ServiceContainerTest(SimpleTestCase):
    """Test ServiceContainer implementation."""

    def setUp(self):
        container.reset()

    def tearDown(self):
        container.reset()

    def test_container_is_singleton(self):
        self.assertIs(ServiceContainer(), ServiceContainer())
        self.assertIs(ServiceContainer(), container)

    @override_settings(INFRASTRUCTURE={"PAYMENT_PROVIDER": "mock", "EVENT_BUS_BACKEND": "memory"})
    def test_payment_gateway_is_cached(self):
        gateway = get_payment_gateway()

        self.assertIsInstance(gateway, MockGateway)
        self.assertIs(gateway, container.payment())

    def test_explicit_backend_replaces_cached_gateway(self):
        container.payment("mock")

        self.assertIsInstance(container.payment("mpesa"), MpesaGateway)

    def test_domain_services_share_dependencies(self):
        checkout = container.checkout_service()
        callbacks = container.callback_service()

        self.assertIs(checkout.inventory_service, callbacks.inventory_service)
        self.assertIs(checkout.ledger_service, callbacks.ledger_service)
        self.assertIs(container.checkout_service(), checkout)

    def test_configure_for_testing_uses_mock_gateway(self):
        container.configure_for_testing()

        self.assertIsInstance(container.payment(), MockGateway)


class ServiceImportOrderTest(SimpleTestCase):
    """Each service module must import cleanly in a fresh interpreter, whatever is loaded first."""

    def _import_first(self, statement):
        env = dict(os.environ, DJANGO_SETTINGS_MODULE="campusMarketBackend.test_settings")
        return subprocess.run(
            [sys.executable, "-c", f"import django; django.setup(); {statement}"],
            cwd=Path(__file__).resolve().parents[2],
            env=env,
            capture_output=True,
            text=True,
        )

    def test_callback_service_imports_before_marketplace_services(self):
        result = self._import_first("import payment_system.domain.services.callback_service")

        self.assertEqual(result.returncode, 0, result.stderr)

    def test_container_builds_callback_service_first(self):
        result = self._import_first(
            "from infrastructure.container import container; container.callback_service()"
        )

        self.assertEqual(result.returncode, 0, result.stderr)
