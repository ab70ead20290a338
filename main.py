#!/usr/bin/env python3
"""
Auto-Sell Engine - Unified Entry Point
======================================

Runs the control API that starts/stops the multi-wallet auto-sell engine.

Usage:
    # Serve the control API on :8000
    python main.py

    # Serve on another port with debug logs
    python main.py --port 9000 --verbose

    # Show default configuration and environment settings
    python main.py --show-config

    # One-off volume probe through the source waterfall (no trading)
    python main.py --probe <MINT> --window 60
"""
import asyncio
import argparse
import logging
import sys

import uvicorn

from autosell.api import create_app
from autosell.config import DEFAULT_CONFIG, Settings
from autosell.engine import AutoSellEngine


def setup_logging(verbose: bool = False):
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)s | %(message)s",
        datefmt="%H:%M:%S",
    )


def show_config(settings: Settings):
    """Display default run configuration and process settings."""
    print(f"\n{'='*60}")
    print("  DEFAULT RUN CONFIGURATION")
    print(f"{'='*60}")
    for key, value in DEFAULT_CONFIG.to_dict().items():
        print(f"  {key:<26}{value}")

    print(f"\n{'='*60}")
    print("  SETTINGS (from environment)")
    print(f"{'='*60}")
    for key, value in settings.to_dict().items():
        print(f"  {key:<26}{value}")
    print()


async def probe(settings: Settings, mint: str, window: float):
    """Run the source waterfall once and print what it sees."""
    engine = AutoSellEngine.from_settings(settings)
    try:
        sample = await engine.waterfall.collect(mint, window)
        price = await engine.price_feed.token_price(mint)
    finally:
        await engine.close()

    print(f"\nPROBE {mint} ({window:.0f}s window)")
    if sample is None:
        print("  No signal: every source failed or reported zero volume")
        for name, reason in engine.waterfall.last_errors.items():
            print(f"    {name:<14}{reason}")
    else:
        print(f"  Source:     {sample.source}")
        print(f"  Buy:        ${sample.buy_usd:,.2f}")
        print(f"  Sell:       ${sample.sell_usd:,.2f}")
        print(f"  Net flow:   ${sample.net_usd:,.2f}")
    print(f"  Price:      ${price:.10f}")


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Multi-wallet auto-sell engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py --port 8000
  python main.py --show-config
  python main.py --probe <MINT> --window 60
        """,
    )

    parser.add_argument(
        "--host",
        default="0.0.0.0",
        help="Bind address (default: 0.0.0.0)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Bind port (default: 8000)",
    )
    parser.add_argument(
        "--show-config",
        action="store_true",
        help="Show configuration and exit",
    )
    parser.add_argument(
        "--probe",
        metavar="MINT",
        help="Collect volume for MINT once and exit",
    )
    parser.add_argument(
        "--window",
        type=float,
        default=DEFAULT_CONFIG.window_seconds,
        help="Probe window in seconds (default: 30)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args()
    setup_logging(args.verbose)
    settings = Settings.from_env()

    if args.show_config:
        show_config(settings)
        return 0

    if args.probe:
        asyncio.run(probe(settings, args.probe, args.window))
        return 0

    app = create_app(AutoSellEngine.from_settings(settings))
    uvicorn.run(app, host=args.host, port=args.port, log_level="debug" if args.verbose else "info")
    return 0


if __name__ == "__main__":
    sys.exit(main())
