#!/usr/bin/env python3
# ============================================================================
# TRADE SIMULATOR STAGE
# ============================================================================
# EPOCH: 1 - STAGE ORCHESTRATION
# STATUS: Demo - Consume stage of the trading pipeline
# PURPOSE: Paper-trade the algorithm's signals and report fills
# CREATED: 17 OCT 2026
# ============================================================================
"""
Trade simulator: fills every signal at its quoted price, tracks position
and realised PnL.

Env:
    ALGORITHM_SOURCE_IP / ALGORITHM_SOURCE_PORT  upstream order book algorithm
"""

import argparse
import asyncio
import os

from udp import configure, subscribe


async def main(verbose: bool) -> None:
    logger = configure(os.environ.get("SERVICE_NAME", "trade-simulator"))
    upstream = (
        os.environ.get("ALGORITHM_SOURCE_IP", "127.0.0.1"),
        int(os.environ.get("ALGORITHM_SOURCE_PORT", 9999)),
    )
    book = {"position": 0, "cash": 0.0, "fills": 0}

    def on_signal(signal):
        qty = 1 if signal["side"] == "buy" else -1
        book["position"] += qty
        book["cash"] -= qty * signal["price"]
        book["fills"] += 1
        pnl = book["cash"] + book["position"] * signal["price"]
        if verbose or book["fills"] % 10 == 0:
            logger.info(
                f"Fill #{book['fills']} {signal['side']} {signal['symbol']} @ {signal['price']} "
                f"position={book['position']} pnl={pnl:.4f}"
            )

    logger.info(f"Trading signals from {upstream[0]}:{upstream[1]}")
    await subscribe(upstream, on_signal, logger)
    await asyncio.Event().wait()


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("--verbose", default="false")
    args = parser.parse_args()
    asyncio.run(main(args.verbose.lower() in ("1", "true", "yes")))
