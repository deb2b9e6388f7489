#!/usr/bin/env python3
# ============================================================================
# MARKET STREAMER STAGE
# ============================================================================
# EPOCH: 1 - STAGE ORCHESTRATION
# STATUS: Demo - Ingest stage of the trading pipeline
# PURPOSE: Publish synthetic market ticks over UDP
# CREATED: 17 OCT 2026
# ============================================================================
"""
Market streamer: random-walk bid/ask ticks for one symbol.

Env:
    BIND_ADDR  host:port to listen for subscribers on (default 0.0.0.0:8888)
"""

import argparse
import asyncio
import os
import random
import time

from udp import Publisher, configure, parse_bind


async def main(symbol: str, interval_ms: int) -> None:
    logger = configure(os.environ.get("SERVICE_NAME", "market-streamer"))
    bind = parse_bind(os.environ.get("BIND_ADDR", "0.0.0.0:8888"), 8888)

    loop = asyncio.get_running_loop()
    _, publisher = await loop.create_datagram_endpoint(
        lambda: Publisher(logger), local_addr=bind
    )
    logger.info(f"Streaming {symbol} on udp://{bind[0]}:{bind[1]} every {interval_ms}ms")

    mid = 100.0
    seq = 0
    while True:
        mid = max(1.0, mid + random.gauss(0, 0.05))
        spread = random.uniform(0.01, 0.05)
        seq += 1
        publisher.publish({
            "seq": seq,
            "symbol": symbol,
            "bid": round(mid - spread / 2, 4),
            "ask": round(mid + spread / 2, 4),
            "bid_size": random.randint(1, 50),
            "ask_size": random.randint(1, 50),
            "ts": time.time(),
        })
        await asyncio.sleep(interval_ms / 1000.0)


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("--symbol", default="BTC-USD")
    parser.add_argument("--interval-ms", type=int, default=100)
    args = parser.parse_args()
    asyncio.run(main(args.symbol, args.interval_ms))
