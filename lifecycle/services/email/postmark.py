"""Postmark delivery for lifecycle emails (billing, deletion, quota).

Talks to the REST endpoint over httpx. Delivery is best effort: callers get
a bool back and failures are logged here. Supabase keeps the auth emails.
"""

import logging
from typing import Any

import httpx

from lifecycle.config import settings

logger = logging.getLogger(__name__)

POSTMARK_API_URL = "https://api.postmarkapp.com/email"
MESSAGE_STREAM = "outbound"
SEND_TIMEOUT_SECONDS = 10.0

# Postmark error codes for recipients it will not deliver to
INACTIVE_RECIPIENT = 406
INVALID_RECIPIENT = 300


def build_message(
    to: str,
    subject: str,
    html_body: str,
    text_body: str,
    tag: str | None = None,
) -> dict[str, Any]:
    """Postmark message body. Lifecycle mail is transactional, so no tracking."""
    message: dict[str, Any] = {
        "From": settings.postmark_from_email,
        "To": to,
        "Subject": subject,
        "HtmlBody": html_body,
        "TextBody": text_body,
        "MessageStream": MESSAGE_STREAM,
        "TrackOpens": False,
        "TrackLinks": "None",
    }
    if tag:
        message["Tag"] = tag
        message["Metadata"] = {"email_kind": tag}
    return message


def _error_code(response: httpx.Response) -> int | None:
    try:
        return response.json().get("ErrorCode")
    except ValueError:
        return None


class PostmarkService:
    """Sends one rendered lifecycle email per call."""

    async def send(
        self,
        to: str,
        subject: str,
        html_body: str,
        text_body: str,
        tag: str | None = None,
    ) -> bool:
        if not settings.postmark_enabled:
            logger.warning(f"[postmark] Not configured, dropping {tag or 'email'} to {to}")
            return False

        try:
            async with httpx.AsyncClient(timeout=SEND_TIMEOUT_SECONDS) as client:
                response = await client.post(
                    POSTMARK_API_URL,
                    json=build_message(to, subject, html_body, text_body, tag),
                    headers={
                        "Accept": "application/json",
                        "X-Postmark-Server-Token": settings.postmark_api_key,
                    },
                )
        except httpx.RequestError as e:
            logger.error(f"[postmark] Transport error sending {tag or 'email'} to {to}: {e}")
            return False

        if response.is_success:
            logger.info(f"[postmark] Delivered {tag or 'email'} to {to}")
            return True

        code = _error_code(response)
        if code in (INACTIVE_RECIPIENT, INVALID_RECIPIENT):
            # Bounced or suppressed addresses are common after account deletion
            logger.warning(f"[postmark] {to} cannot receive {tag or 'email'} (code {code})")
        else:
            logger.error(
                f"[postmark] HTTP {response.status_code} (code {code}) sending "
                f"{tag or 'email'} to {to}: {response.text}"
            )
        return False


postmark_service = PostmarkService()
