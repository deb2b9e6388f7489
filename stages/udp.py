# ============================================================================
# DEMO STAGE HELPERS
# ============================================================================
# EPOCH: 1 - STAGE ORCHESTRATION
# STATUS: Demo - Shared UDP plumbing for the trading pipeline stages
# PURPOSE: Subscribe/publish over datagrams without a control channel
# CREATED: 17 OCT 2026
# ============================================================================
"""
Minimal datagram pub/sub used by the demo stages.

A subscriber sends b"SUBSCRIBE" to its upstream until data arrives; the
upstream then sends every message to each subscriber address it has seen.
Messages are single JSON objects per datagram.
"""

import asyncio
import json
import logging
import os
from typing import Any, Callable, Dict, Optional, Set, Tuple

SUBSCRIBE = b"SUBSCRIBE"

Address = Tuple[str, int]


def configure(name: str) -> logging.Logger:
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO"),
        format=f"%(asctime)s [{name}] %(levelname)s %(message)s",
    )
    return logging.getLogger(name)


def parse_bind(value: str, default_port: int) -> Address:
    host, _, port = value.rpartition(":")
    return (host or "0.0.0.0", int(port or default_port))


class Publisher(asyncio.DatagramProtocol):
    """Remembers subscribers and fans messages out to them."""

    def __init__(self, logger: logging.Logger):
        self.logger = logger
        self.subscribers: Set[Address] = set()
        self.transport: Optional[asyncio.DatagramTransport] = None

    def connection_made(self, transport):
        self.transport = transport

    def datagram_received(self, data: bytes, addr: Address):
        if data.strip() == SUBSCRIBE and addr not in self.subscribers:
            self.subscribers.add(addr)
            self.logger.info(f"Subscriber joined: {addr[0]}:{addr[1]}")

    def publish(self, message: Dict[str, Any]) -> None:
        if self.transport is None:
            return
        payload = json.dumps(message).encode()
        for addr in list(self.subscribers):
            self.transport.sendto(payload, addr)


class Subscriber(asyncio.DatagramProtocol):
    """Receives JSON datagrams from one upstream and hands them to a callback."""

    def __init__(self, on_message: Callable[[Dict[str, Any]], None], logger: logging.Logger):
        self.on_message = on_message
        self.logger = logger
        self.receiving = asyncio.Event()

    def datagram_received(self, data: bytes, addr: Address):
        try:
            message = json.loads(data)
        except ValueError:
            self.logger.warning(f"Dropping malformed datagram from {addr[0]}:{addr[1]}")
            return
        self.receiving.set()
        self.on_message(message)


async def subscribe(
    upstream: Address,
    on_message: Callable[[Dict[str, Any]], None],
    logger: logging.Logger,
    retry_seconds: float = 1.0,
) -> Subscriber:
    """Open a socket to upstream and send SUBSCRIBE until the first message arrives."""
    loop = asyncio.get_running_loop()
    transport, protocol = await loop.create_datagram_endpoint(
        lambda: Subscriber(on_message, logger),
        remote_addr=upstream,
    )

    async def keep_subscribing():
        while not protocol.receiving.is_set():
            try:
                transport.sendto(SUBSCRIBE)
            except OSError as e:
                logger.debug(f"Subscribe to {upstream[0]}:{upstream[1]} failed: {e}")
            try:
                await asyncio.wait_for(protocol.receiving.wait(), timeout=retry_seconds)
            except asyncio.TimeoutError:
                pass
        logger.info(f"Receiving from {upstream[0]}:{upstream[1]}")

    asyncio.create_task(keep_subscribing())
    return protocol
