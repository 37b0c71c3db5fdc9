"""
Gatekeeper Bot core package.

Admission control for group newcomers: challenges joining users with a captcha,
restricts them until verified, and evicts unverified or reputation-banned users
on a timer. The Telegram wiring lives in `services.telegram_bot`; everything
else talks to the platform through `adapters.base.ChatPlatform`.
"""

from .services.gatekeeper_service import GatekeeperCoordinator
from .services.telegram_bot import TelegramGatekeeperApp, telegram_app

__all__ = ["GatekeeperCoordinator", "TelegramGatekeeperApp", "telegram_app"]
