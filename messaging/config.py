# ============================================================================
# MESSAGING CONFIGURATION
# ============================================================================
# EPOCH: 1 - STAGE ORCHESTRATION
# STATUS: Core - Event bus configuration
# PURPOSE: Centralize event bus backend and queue configuration
# CREATED: 15 OCT 2026
# ============================================================================
"""
Messaging Configuration

Configuration for the event bus that carries trigger events to the rule
matcher. Two backends:
- memory: in-process queue with peek-lock semantics (single replica, not durable)
- servicebus: Azure Service Bus queue (durable, shared by replicas)

Service Bus supports both connection string and managed identity authentication.
"""

import os
from dataclasses import dataclass
from typing import Optional


BACKEND_MEMORY = "memory"
BACKEND_SERVICEBUS = "servicebus"


@dataclass
class EventBusConfig:
    """
    Configuration for the event bus.

    Loaded from environment variables.
    """
    backend: str = BACKEND_MEMORY
    queue_name: str = "stage-events"

    # Service Bus connection - either connection_string OR fully_qualified_namespace
    connection_string: Optional[str] = None
    fully_qualified_namespace: Optional[str] = None
    managed_identity_client_id: Optional[str] = None

    # Delivery semantics
    max_wait_seconds: float = 5.0          # receive long-poll
    lock_timeout_seconds: float = 30.0     # memory backend peek-lock duration
    max_delivery_count: int = 10           # then dead-letter
    capacity: int = 1000                   # memory backend; publish fails when full

    # Error backoff for the consume loop
    error_backoff_seconds: float = 1.0

    @classmethod
    def from_env(cls) -> "EventBusConfig":
        """
        Load configuration from environment variables.

        Common:
            EVENT_BUS_BACKEND: "memory" (default) or "servicebus"
            EVENT_QUEUE_NAME: Queue carrying trigger events (default: stage-events)
            EVENT_MAX_DELIVERY_COUNT: Deliveries before dead-letter (memory backend;
                Service Bus uses the queue's own MaxDeliveryCount)

        For connection string auth:
            SERVICE_BUS_CONNECTION_STRING

        For managed identity auth:
            SERVICE_BUS_NAMESPACE: e.g. mynamespace.servicebus.windows.net
            AZURE_CLIENT_ID: Optional client ID for user-assigned managed identity
        """
        backend = os.environ.get("EVENT_BUS_BACKEND", BACKEND_MEMORY).lower()
        if backend not in (BACKEND_MEMORY, BACKEND_SERVICEBUS):
            raise ValueError(f"Unsupported EVENT_BUS_BACKEND: {backend}")

        config = cls(
            backend=backend,
            queue_name=os.environ.get("EVENT_QUEUE_NAME", "stage-events"),
            connection_string=os.environ.get("SERVICE_BUS_CONNECTION_STRING"),
            fully_qualified_namespace=os.environ.get("SERVICE_BUS_NAMESPACE"),
            managed_identity_client_id=os.environ.get("AZURE_CLIENT_ID"),
            max_wait_seconds=float(os.environ.get("EVENT_MAX_WAIT_SEC", 5.0)),
            lock_timeout_seconds=float(os.environ.get("EVENT_LOCK_TIMEOUT_SEC", 30.0)),
            max_delivery_count=int(os.environ.get("EVENT_MAX_DELIVERY_COUNT", 10)),
            capacity=int(os.environ.get("EVENT_QUEUE_CAPACITY", 1000)),
        )

        if backend == BACKEND_SERVICEBUS and not (
            config.connection_string or config.fully_qualified_namespace
        ):
            raise ValueError(
                "SERVICE_BUS_CONNECTION_STRING or SERVICE_BUS_NAMESPACE required "
                "when EVENT_BUS_BACKEND=servicebus"
            )
        return config

    @property
    def use_connection_string(self) -> bool:
        return bool(self.connection_string)

    @property
    def is_durable(self) -> bool:
        return self.backend == BACKEND_SERVICEBUS
