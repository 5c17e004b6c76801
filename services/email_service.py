"""
Email Service

Sends account emails through the SendGrid v3 HTTP API. When no API key is
configured the message is logged (without its body) and dropped.
"""

import logging
from typing import Optional
from urllib.parse import urlencode

import httpx

from config.settings import Settings

logger = logging.getLogger(__name__)

SENDGRID_SEND_URL = "https://api.sendgrid.com/v3/mail/send"


class EmailDeliveryError(Exception):
    """Raised when the email provider rejects or cannot receive a message."""


def redact_email(address: str) -> str:
    if "@" not in address:
        return "redacted"
    local, domain = address.split("@", 1)
    return f"{local[:2]}***@{domain}"


class EmailService:
    """Outbound email for signup verification."""

    def __init__(
        self,
        api_key: str = "",
        sender: str = "no-reply@task-manager.local",
        base_url: str = "http://localhost:8000",
        timeout: float = 10.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.sender = sender
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._http_client = http_client

    @classmethod
    def from_settings(cls, settings: Settings) -> "EmailService":
        return cls(
            api_key=settings.SENDGRID_API_KEY,
            sender=settings.EMAIL_FROM,
            base_url=settings.BASE_URL,
            timeout=settings.HTTP_TIMEOUT_SECONDS,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def verification_link(self, user_id: str, code: str) -> str:
        query = urlencode({"id": user_id, "code": code})
        return f"{self.base_url}/signup/verify-email?{query}"

    async def send_verification_email(self, user_id: str, address: str, code: str) -> None:
        link = self.verification_link(user_id, code)
        message = {
            "to": address,
            "subject": "Task Manager API Email Verification",
            "html": (
                "Welcome to the Task Manager API. To complete the signup process "
                f'please <a href="{link}">click here</a>. Your verification code is {code}.'
            ),
        }
        await self._send(message)

    async def _send(self, message: dict) -> None:
        if not self.is_configured:
            logger.info(
                "Email delivery not configured; dropped '%s' for %s",
                message["subject"], redact_email(message["to"]),
            )
            return

        payload = {
            "personalizations": [{"to": [{"email": message["to"]}]}],
            "from": {"email": self.sender},
            "subject": message["subject"],
            "content": [{"type": "text/html", "value": message["html"]}],
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            if self._http_client is not None:
                response = await self._http_client.post(
                    SENDGRID_SEND_URL, json=payload, headers=headers, timeout=self.timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(SENDGRID_SEND_URL, json=payload, headers=headers)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(
                "Failed to send '%s' to %s: %s",
                message["subject"], redact_email(message["to"]), type(e).__name__,
            )
            raise EmailDeliveryError("Could not send email") from e
