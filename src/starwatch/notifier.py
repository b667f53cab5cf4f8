"""
Notification delivery for Starwatch.

Delivery is best-effort: a failed message is logged and dropped, never
retried, and never fails the poll cycle that produced it.
"""

from abc import ABC, abstractmethod
from typing import Any

import httpx
import structlog

from .config import Settings
from .exceptions import DeliveryError

logger = structlog.get_logger(__name__)


class Notifier(ABC):
    """Abstract base class for notification channels."""

    async def send(self, user_id: int, text: str) -> bool:
        """
        Deliver a message to a user.

        Args:
            user_id: Chat identity of the user
            text: Message text

        Returns:
            True if the channel accepted the message
        """
        try:
            await self._deliver(user_id, text)
            return True
        except DeliveryError as e:
            logger.warning(
                "Couldn't send a message", user_id=user_id, error=str(e), **e.context
            )
            return False

    @abstractmethod
    async def _deliver(self, user_id: int, text: str) -> None:
        """
        Hand a message to the channel.

        Raises:
            DeliveryError: If the channel rejected the message
        """
        pass

    async def aclose(self) -> None:
        """Release channel resources."""


class TelegramNotifier(Notifier):
    """Notifier sending messages through the Telegram Bot API."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Initialize the Telegram notifier.

        Args:
            settings: Application settings
            http_client: Optional preconfigured HTTP client
        """
        self.base_url = (
            f"{settings.telegram_api_url.rstrip('/')}/bot{settings.telegram_bot_token}"
        )
        self._client = http_client or httpx.AsyncClient(
            timeout=settings.http_timeout_seconds
        )

    async def _deliver(self, user_id: int, text: str) -> None:
        payload = {
            "chat_id": user_id,
            "text": text,
            "parse_mode": "Markdown",
            "disable_web_page_preview": True,
        }

        try:
            response = await self._client.post(f"{self.base_url}/sendMessage", json=payload)
        except httpx.HTTPError as e:
            raise DeliveryError(
                f"Telegram unreachable: {e.__class__.__name__}", user_id=user_id
            ) from e

        if response.status_code >= 300:
            raise DeliveryError(
                "Telegram rejected the message",
                user_id=user_id,
                context={
                    "status_code": response.status_code,
                    "description": _description(response),
                },
            )

        data = _json_object(response)
        if data is None:
            raise DeliveryError(
                "Telegram sent an unreadable response",
                user_id=user_id,
                context={"status_code": response.status_code},
            )

        if not data.get("ok", False):
            raise DeliveryError(
                "Telegram rejected the message",
                user_id=user_id,
                context={"description": _description(response)},
            )

        logger.debug("Message delivered", user_id=user_id)

    async def aclose(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()


def _json_object(response: httpx.Response) -> dict[str, Any] | None:
    """Decode a Bot API reply, or None unless it is a JSON object."""
    try:
        data = response.json()
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def _description(response: httpx.Response) -> str:
    data = _json_object(response)
    if data is None:
        return response.text[:200]
    return str(data.get("description", ""))


class NullNotifier(Notifier):
    """Notifier that only logs, used when no bot token is configured."""

    async def _deliver(self, user_id: int, text: str) -> None:
        logger.info("Notification dropped, no channel configured", user_id=user_id)
