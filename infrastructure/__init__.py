"""
Infrastructure Package
======================

Provides abstraction layers for external dependencies.

Modules:
    - payments: Mobile-money gateway abstraction (M-Pesa Daraja, mock)
    - events: Domain event bus (Redis pub/sub, in-memory)
    - observability: OpenTelemetry tracing setup
"""
