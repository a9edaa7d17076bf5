# src/taskminder/notify/channels.py

"""
Notification channels.

Each channel is independent: send() raises on failure and the dispatcher decides
what that means. Providers that are not configured fall back to LoggingChannel,
so a local run never needs SMTP credentials or an SMS gateway.
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
from email.message import EmailMessage

import httpx

from ..errors import ChannelDeliveryError

logger = logging.getLogger(__name__)


class SmtpEmailChannel:
    name = "email"

    def __init__(
        self,
        *,
        host: str,
        port: int = 587,
        sender: str,
        user: str = "",
        password: str = "",
        starttls: bool = True,
        timeout_seconds: float = 10.0,
    ) -> None:
        self._host = host
        self._port = int(port)
        self._sender = sender
        self._user = user
        self._password = password
        self._starttls = starttls
        self._timeout = float(timeout_seconds)

    def _send_blocking(self, recipient: str, subject: str, text: str) -> None:
        msg = EmailMessage()
        msg["From"] = self._sender
        msg["To"] = recipient
        msg["Subject"] = subject
        msg.set_content(text)

        with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as smtp:
            if self._starttls:
                smtp.starttls()
            if self._user:
                smtp.login(self._user, self._password)
            smtp.send_message(msg)

    async def send(self, *, recipient: str, subject: str, text: str) -> None:
        try:
            await asyncio.to_thread(self._send_blocking, recipient, subject, text)
        except (smtplib.SMTPException, OSError) as exc:
            raise ChannelDeliveryError(self.name, str(exc) or exc.__class__.__name__) from exc


class HttpSmsChannel:
    """
    SMS over a generic HTTP gateway.

    POST {gateway_url} with JSON {"to", "from", "text"} and a bearer API key.
    Any non-2xx answer is a delivery failure.
    """

    name = "sms"

    def __init__(
        self,
        *,
        gateway_url: str,
        api_key: str = "",
        sender_id: str = "taskminder",
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = gateway_url
        self._api_key = api_key
        self._sender_id = sender_id
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds, connect=min(5.0, timeout_seconds))
        )

    async def send(self, *, recipient: str, subject: str, text: str) -> None:
        headers = {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}
        payload = {"to": recipient, "from": self._sender_id, "text": text}
        try:
            resp = await self._client.post(self._url, json=payload, headers=headers)
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ChannelDeliveryError(self.name, f"gateway answered {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise ChannelDeliveryError(self.name, str(exc) or exc.__class__.__name__) from exc

    async def aclose(self) -> None:
        await self._client.aclose()


class LoggingChannel:
    """Offline channel: records the notification in the log instead of sending it."""

    def __init__(self, name: str) -> None:
        self.name = name

    async def send(self, *, recipient: str, subject: str, text: str) -> None:
        logger.info("[offline %s] to=%s subject=%r text=%r", self.name, recipient, subject, text)
