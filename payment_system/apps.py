import logging

from django.apps import AppConfig
from django.conf import settings


logger = logging.getLogger(__name__)


class PaymentSystemConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "payment_system"
    verbose_name = "Payment System"

    def ready(self):
        """Register event listeners and start tracing when Django starts"""
        from payment_system.infra.events.listeners import register_payment_listeners

        register_payment_listeners()

        if getattr(settings, "TRACING_ENABLED", False):
            from infrastructure.observability.tracing import setup_tracing

            setup_tracing(
                service_name=getattr(settings, "TRACING_SERVICE_NAME", "campus-market-backend"),
                console_export=getattr(settings, "TRACING_CONSOLE_EXPORT", False),
            )
            logger.info("[STARTUP] Tracing enabled")

        if settings.INFRASTRUCTURE.get("EVENT_BUS_LISTEN"):
            from infrastructure.events import RedisEventBus, get_event_bus

            event_bus = get_event_bus()
            if isinstance(event_bus, RedisEventBus):
                event_bus.start_listening()
