# ============================================================================
# SERVICE BUS INFRASTRUCTURE
# ============================================================================
# EPOCH: 1 - STAGE ORCHESTRATION
# STATUS: Infrastructure - Azure Service Bus queue access
# PURPOSE: Async send/receive/settle on one Service Bus queue
# CREATED: 15 OCT 2026
# ============================================================================
"""
Service Bus Infrastructure

Thin async wrapper over one Azure Service Bus queue, used by the durable
event bus backend.

Key Design Decisions:
    - Dual auth: connection string OR managed identity
    - Exponential SDK retry on the client
    - Error categorization: permanent vs transient on send
    - Peek-lock receive; caller settles (complete/abandon/dead-letter)

Usage:
    queue = ServiceBusQueue("stage-events", connection_string="...")
    await queue.connect()
    await queue.send(body, message_id="...", subject="algo-order-book")
    raw = await queue.receive_one(max_wait_time=5)
    await queue.complete(raw)
"""

import logging
from typing import Any, Dict, Optional

from azure.identity.aio import DefaultAzureCredential as AsyncDefaultAzureCredential
from azure.servicebus import ServiceBusMessage
from azure.servicebus.aio import ServiceBusClient as AsyncServiceBusClient
from azure.servicebus.aio import ServiceBusReceiver as AsyncServiceBusReceiver
from azure.servicebus.aio import ServiceBusSender as AsyncServiceBusSender
from azure.servicebus.exceptions import (
    MessageSizeExceededError,
    MessagingEntityNotFoundError,
    ServiceBusAuthenticationError,
    ServiceBusAuthorizationError,
    ServiceBusQuotaExceededError,
)

logger = logging.getLogger(__name__)


# Errors that retrying cannot fix
PERMANENT_SEND_ERRORS = (
    ServiceBusAuthenticationError,
    ServiceBusAuthorizationError,
    MessageSizeExceededError,
    MessagingEntityNotFoundError,
    ServiceBusQuotaExceededError,
)


class ServiceBusQueue:
    """
    Async sender + peek-lock receiver for a single queue.

    Args:
        queue_name: Queue to use
        connection_string: Connection string auth
        fully_qualified_namespace: Managed identity auth (used when no connection string)
        managed_identity_client_id: Optional user-assigned identity
    """

    def __init__(
        self,
        queue_name: str,
        connection_string: Optional[str] = None,
        fully_qualified_namespace: Optional[str] = None,
        managed_identity_client_id: Optional[str] = None,
    ):
        self.queue_name = queue_name
        self.connection_string = connection_string
        self.fully_qualified_namespace = fully_qualified_namespace
        self.managed_identity_client_id = managed_identity_client_id

        self._client: Optional[AsyncServiceBusClient] = None
        self._sender: Optional[AsyncServiceBusSender] = None
        self._receiver: Optional[AsyncServiceBusReceiver] = None
        self._credential = None

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    async def connect(self) -> None:
        """Establish async connection to Service Bus."""
        if self._client is not None:
            return

        if self.connection_string:
            logger.info(f"Connecting to queue {self.queue_name} (connection string)")
            self._client = AsyncServiceBusClient.from_connection_string(
                self.connection_string,
                retry_total=5,
                retry_backoff_factor=0.5,
                retry_backoff_max=60,
                retry_mode="exponential",
            )
        else:
            if not self.fully_qualified_namespace:
                raise ValueError(
                    "SERVICE_BUS_NAMESPACE environment variable not set. "
                    "Required for managed identity authentication."
                )
            logger.info(
                f"Connecting to queue {self.queue_name} "
                f"(namespace={self.fully_qualified_namespace})"
            )
            self._credential = AsyncDefaultAzureCredential(
                managed_identity_client_id=self.managed_identity_client_id
            )
            self._client = AsyncServiceBusClient(
                fully_qualified_namespace=self.fully_qualified_namespace,
                credential=self._credential,
                retry_total=5,
                retry_backoff_factor=0.5,
                retry_backoff_max=60,
                retry_mode="exponential",
            )

        self._sender = self._client.get_queue_sender(queue_name=self.queue_name)
        self._receiver = self._client.get_queue_receiver(
            queue_name=self.queue_name,
            max_wait_time=5,
        )
        logger.info(f"Connected to queue: {self.queue_name}")

    async def close(self) -> None:
        """Close sender, receiver and client."""
        if self._sender:
            await self._sender.close()
            self._sender = None
        if self._receiver:
            await self._receiver.close()
            self._receiver = None
        if self._client:
            await self._client.close()
            self._client = None
        if self._credential:
            await self._credential.close()
            self._credential = None
        logger.info(f"Closed queue: {self.queue_name}")

    async def send(
        self,
        body: str,
        message_id: str,
        subject: Optional[str] = None,
        properties: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Send one JSON message.

        Raises:
            ServiceBusError subclasses; see PERMANENT_SEND_ERRORS
        """
        await self.connect()
        message = ServiceBusMessage(
            body=body,
            content_type="application/json",
            message_id=message_id,
            subject=subject,
            application_properties=properties or {},
        )
        await self._sender.send_messages(message)
        logger.debug(f"Message sent to {self.queue_name}: {message_id}")

    async def receive_one(self, max_wait_time: float = 5.0):
        """Receive a single locked message, or None after max_wait_time."""
        await self.connect()
        messages = await self._receiver.receive_messages(
            max_message_count=1,
            max_wait_time=max_wait_time,
        )
        if not messages:
            return None
        return messages[0]

    async def complete(self, raw_message) -> None:
        """Complete (acknowledge) a message after successful processing."""
        await self._receiver.complete_message(raw_message)
        logger.debug(f"Completed message: {raw_message.message_id}")

    async def abandon(self, raw_message) -> None:
        """Abandon a message (return to queue for retry)."""
        await self._receiver.abandon_message(raw_message)
        logger.debug(f"Abandoned message: {raw_message.message_id}")

    async def dead_letter(self, raw_message, reason: str, description: str) -> None:
        """Dead-letter a message (permanent failure)."""
        await self._receiver.dead_letter_message(
            raw_message,
            reason=reason,
            error_description=description,
        )
        logger.warning(f"Dead-lettered message {raw_message.message_id}: {reason}")


__all__ = ["ServiceBusQueue", "PERMANENT_SEND_ERRORS"]
