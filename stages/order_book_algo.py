#!/usr/bin/env python3
# ============================================================================
# ORDER BOOK ALGORITHM STAGE
# ============================================================================
# EPOCH: 1 - STAGE ORCHESTRATION
# STATUS: Demo - Compute stage of the trading pipeline
# PURPOSE: Turn market ticks into buy/sell signals over UDP
# CREATED: 17 OCT 2026
# ============================================================================
"""
Order book algorithm: tracks top of book and a short moving average of the
mid price; emits a signal whenever the mid crosses the average.

Env:
    STREAMING_SOURCE_IP / STREAMING_SOURCE_PORT  upstream market streamer
    BIND_ADDR  host:port to listen for subscribers on (default 0.0.0.0:9999)
"""

import asyncio
import os
from collections import deque

from udp import Publisher, configure, parse_bind, subscribe

WINDOW = 20


async def main() -> None:
    logger = configure(os.environ.get("SERVICE_NAME", "order-book-algo"))
    upstream = (
        os.environ.get("STREAMING_SOURCE_IP", "127.0.0.1"),
        int(os.environ.get("STREAMING_SOURCE_PORT", 8888)),
    )
    bind = parse_bind(os.environ.get("BIND_ADDR", "0.0.0.0:9999"), 9999)

    loop = asyncio.get_running_loop()
    _, publisher = await loop.create_datagram_endpoint(
        lambda: Publisher(logger), local_addr=bind
    )
    logger.info(f"Signals on udp://{bind[0]}:{bind[1]}; market data from {upstream[0]}:{upstream[1]}")

    mids = deque(maxlen=WINDOW)
    state = {"side": None}

    def on_tick(tick):
        mid = (tick["bid"] + tick["ask"]) / 2
        mids.append(mid)
        if len(mids) < WINDOW:
            return
        average = sum(mids) / len(mids)
        side = "buy" if mid > average else "sell"
        if side != state["side"]:
            state["side"] = side
            price = tick["ask"] if side == "buy" else tick["bid"]
            publisher.publish({"seq": tick["seq"], "symbol": tick["symbol"], "side": side, "price": price})
            logger.debug(f"Signal {side} {tick['symbol']} @ {price}")

    await subscribe(upstream, on_tick, logger)
    await asyncio.Event().wait()


if __name__ == "__main__":
    asyncio.run(main())
