#!/usr/bin/env python3
"""
Entry point for running the gatekeeper bot with logging enabled.

Usage:
    python run_bot.py

Environment:
    - GATEKEEPER_TELEGRAM_TOKEN
    - GATEKEEPER_REPUTATION__ENABLED (optional, defaults to true)

The script loads configuration via BotSettings (reads .env by default) and starts
the TelegramGatekeeperApp with graceful shutdown on Ctrl+C.
"""

import asyncio

from gatekeeper_bot import TelegramGatekeeperApp
from gatekeeper_bot.config import BotSettings


async def _main() -> None:
    settings = BotSettings()
    app = TelegramGatekeeperApp(settings)
    await app.run()


if __name__ == "__main__":
    try:
        asyncio.run(_main())
    except KeyboardInterrupt:
        print("\n\nBot shutdown requested by user.")
