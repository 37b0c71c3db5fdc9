from .gatekeeper_service import GatekeeperCoordinator
from .telegram_bot import TelegramGatekeeperApp, telegram_app

__all__ = ["GatekeeperCoordinator", "TelegramGatekeeperApp", "telegram_app"]
