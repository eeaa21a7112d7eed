"""HTTP email API client.

Posts a JSON message to ``EMAIL_API_URL`` with a bearer key. Rate limits
(429) and server errors (5xx) are retried with a growing pause.
"""

import asyncio
from typing import Optional

import httpx
import structlog

from app.config import Settings, get_settings
from app.core.exceptions import NotifierFailure

logger = structlog.get_logger(__name__)

RETRYABLE_STATUS = (429, 500, 502, 503, 504)


class EmailAPIClient:
    """Client for the transactional email provider."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        retry_delay: float = 2,
    ):
        settings = settings or get_settings()
        self.enabled = settings.EMAIL_ENABLED and bool(settings.EMAIL_API_KEY)
        self.url = settings.EMAIL_API_URL
        self.sender = settings.EMAIL_FROM
        self.headers = {
            "Authorization": f"Bearer {settings.EMAIL_API_KEY}",
            "Content-Type": "application/json",
        }
        self.max_retries = 3
        self.retry_delay = retry_delay
        self._transport = transport

    async def send(self, to: str, subject: str, text: str, html: str) -> dict:
        """Send one email. Raises NotifierFailure once all attempts are spent."""
        if not self.enabled:
            raise NotifierFailure("Email service not configured")

        payload = {
            "from": self.sender,
            "to": [to],
            "subject": subject,
            "text": text,
            "html": html,
        }

        last_error = None
        for attempt in range(1, self.max_retries + 1):
            try:
                async with httpx.AsyncClient(timeout=30, transport=self._transport) as client:
                    response = await client.post(self.url, json=payload, headers=self.headers)
                    response.raise_for_status()
                    logger.info("Email sent", subject=subject, attempt=attempt)
                    return response.json() if response.content else {}
            except httpx.HTTPStatusError as e:
                last_error = e
                logger.warning(
                    "Email API error",
                    attempt=attempt,
                    max_retries=self.max_retries,
                    status_code=e.response.status_code,
                )
                if e.response.status_code not in RETRYABLE_STATUS:
                    break
            except httpx.HTTPError as e:
                last_error = e
                logger.warning("Email API connection error", attempt=attempt, error=str(e))

            if attempt < self.max_retries:
                await asyncio.sleep(self.retry_delay * attempt)

        raise NotifierFailure(f"Failed to send email after {attempt} attempts: {last_error}")
