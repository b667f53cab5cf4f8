"""
Tests for notification delivery.
"""

import json

import httpx
import pytest

from starwatch.exceptions import DeliveryError
from starwatch.notifier import NullNotifier, TelegramNotifier


def make_notifier(mock_settings, handler) -> TelegramNotifier:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return TelegramNotifier(mock_settings, http_client=client)


class TestTelegramNotifier:
    """Test the Telegram Bot API channel."""

    @pytest.mark.asyncio
    async def test_send_message(self, mock_settings):
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"ok": True, "result": {"message_id": 1}})

        notifier = make_notifier(mock_settings, handler)

        assert await notifier.send(42, "*hello*") is True

        assert len(requests) == 1
        request = requests[0]
        assert str(request.url) == (
            "https://api.telegram.org/bot123456:test-token/sendMessage"
        )
        assert json.loads(request.content) == {
            "chat_id": 42,
            "text": "*hello*",
            "parse_mode": "Markdown",
            "disable_web_page_preview": True,
        }
        await notifier.aclose()

    @pytest.mark.asyncio
    async def test_rejected_by_status(self, mock_settings):
        """A blocked bot is logged and reported, never raised."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                403,
                json={"ok": False, "description": "Forbidden: bot was blocked by the user"},
            )

        notifier = make_notifier(mock_settings, handler)

        assert await notifier.send(42, "hello") is False

    @pytest.mark.asyncio
    async def test_rejected_by_payload(self, mock_settings):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"ok": False, "description": "nope"})

        notifier = make_notifier(mock_settings, handler)

        assert await notifier.send(42, "hello") is False

    @pytest.mark.asyncio
    async def test_unreadable_response(self, mock_settings):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>gateway</html>")

        notifier = make_notifier(mock_settings, handler)

        assert await notifier.send(42, "hello") is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [200, 502])
    async def test_non_object_json_body(self, mock_settings, status_code):
        """A JSON reply that is not an object is a failed delivery."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(status_code, json=["not", "an", "object"])

        notifier = make_notifier(mock_settings, handler)

        assert await notifier.send(42, "hello") is False

    @pytest.mark.asyncio
    async def test_following_messages_still_sent_after_odd_reply(self, mock_settings):
        replies = iter(
            [
                httpx.Response(200, json="ok"),
                httpx.Response(200, json={"ok": True}),
            ]
        )

        def handler(request: httpx.Request) -> httpx.Response:
            return next(replies)

        notifier = make_notifier(mock_settings, handler)

        assert await notifier.send(42, "first") is False
        assert await notifier.send(42, "second") is True

    @pytest.mark.asyncio
    async def test_network_error(self, mock_settings):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        notifier = make_notifier(mock_settings, handler)

        assert await notifier.send(42, "hello") is False

    @pytest.mark.asyncio
    async def test_deliver_raises_with_context(self, mock_settings):
        """The underlying channel call raises a structured error."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"ok": False, "description": "chat not found"})

        notifier = make_notifier(mock_settings, handler)

        with pytest.raises(DeliveryError) as exc_info:
            await notifier._deliver(7, "hello")

        assert exc_info.value.user_id == 7
        assert exc_info.value.code == "DELIVERY_ERROR"
        assert exc_info.value.context == {
            "status_code": 400,
            "description": "chat not found",
        }

    @pytest.mark.asyncio
    async def test_custom_api_url(self, mock_settings):
        mock_settings.telegram_api_url = "http://telegram.local/"
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(str(request.url))
            return httpx.Response(200, json={"ok": True})

        notifier = make_notifier(mock_settings, handler)
        await notifier.send(1, "hello")

        assert seen == ["http://telegram.local/bot123456:test-token/sendMessage"]


@pytest.mark.asyncio
async def test_null_notifier_accepts_everything():
    notifier = NullNotifier()

    assert await notifier.send(1, "hello") is True
    await notifier.aclose()
