import json

import httpx
import pytest

from crystal_ball.modules.email_service import (
    RESEND_API_URL,
    EmailDeliveryError,
    ResendEmailProvider,
    account_created,
    password_reset,
    send_best_effort,
)


def test_account_created_template_escapes_values():
    message = account_created("a@example.com", "p<w>", "http://app/login", "Zed")
    assert message.to == ["a@example.com"]
    assert "p&lt;w&gt;" in message.html
    assert "Temporary Password: p<w>" in message.text
    assert "Hi Zed," in message.text


def test_password_reset_template_contains_link():
    message = password_reset("a@example.com", "http://app/reset-password?token=abc")
    assert "http://app/reset-password?token=abc" in message.text
    assert "valid for 24 hours" in message.html


@pytest.mark.asyncio
async def test_resend_provider_posts_payload():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "email-1"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        provider = ResendEmailProvider("key-123", "Crystal Ball <noreply@example.com>", client=client)
        message_id = await provider.send(password_reset("a@example.com", "http://app/reset"))

    assert message_id == "email-1"
    assert seen["url"] == RESEND_API_URL
    assert seen["auth"] == "Bearer key-123"
    assert seen["body"]["from"] == "Crystal Ball <noreply@example.com>"
    assert seen["body"]["to"] == ["a@example.com"]
    assert "cc" not in seen["body"]


@pytest.mark.asyncio
async def test_resend_provider_raises_on_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(422, json={"message": "Invalid `to` field"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        provider = ResendEmailProvider("key", "from@example.com", client=client)
        with pytest.raises(EmailDeliveryError, match="Invalid `to` field"):
            await provider.send(password_reset("bad", "http://app/reset"))


@pytest.mark.asyncio
async def test_send_best_effort_swallows_provider_failure(monkeypatch):
    class Broken:
        async def send(self, message):
            raise EmailDeliveryError("down")

    monkeypatch.setattr("crystal_ball.modules.email_service.get_email_provider", lambda: Broken())
    assert await send_best_effort(password_reset("a@example.com", "http://app/reset")) is False
