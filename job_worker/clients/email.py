"""Transactional email delivery through the Resend HTTP API."""

from typing import Optional
import logging
import re

import httpx

from job_worker.config import get_settings

logger = logging.getLogger(__name__)


class EmailSendError(Exception):
    """The email provider rejected or failed the request."""


def strip_html(html: str) -> str:
    """Simple HTML to plain text conversion for the text part."""
    text = re.sub(r'<style[^>]*>[\s\S]*?</style>', '', html, flags=re.IGNORECASE)
    text = re.sub(r'<script[^>]*>[\s\S]*?</script>', '', text, flags=re.IGNORECASE)
    text = re.sub(r'<[^>]+>', '', text)
    return re.sub(r'\s+', ' ', text).strip()


class ResendEmailSender:
    """Sends email via Resend."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        sender: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.api_key = settings.resend_api_key if api_key is None else api_key
        self.sender = sender or settings.email_from
        self._client = httpx.AsyncClient(
            base_url=settings.resend_api_url,
            timeout=httpx.Timeout(15.0, connect=5.0),
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def send(self, to: str, subject: str, html: str, text: Optional[str] = None) -> str:
        """
        Send one email.

        Returns:
            Provider message id

        Raises:
            EmailSendError: missing API key or provider error
        """
        if not self.api_key:
            raise EmailSendError("RESEND_API_KEY is not configured")

        response = await self._client.post(
            "/emails",
            headers={"Authorization": f"Bearer {self.api_key}"},
            json={
                "from": self.sender,
                "to": [to],
                "subject": subject,
                "html": html,
                "text": text or strip_html(html),
            },
        )
        if response.status_code >= 400:
            raise EmailSendError(f"Failed to send email: HTTP {response.status_code} {response.text[:200]}")

        message_id = response.json().get("id", "")
        logger.info(f"[Email] Sent to {to}: {subject} (id: {message_id})")
        return message_id
