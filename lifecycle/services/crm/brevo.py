"""Brevo contact sync for the marketing CRM.

Uses Brevo's REST API directly via httpx. Contacts are upserted by email
(``updateEnabled``) and moved between the free/premium lists by tier.
"""

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from lifecycle.config import settings

logger = logging.getLogger(__name__)

BREVO_CONTACTS_URL = "https://api.brevo.com/v3/contacts"


@dataclass
class ContactSnapshot:
    """The account fields mirrored into the CRM."""

    email: str
    first_name: str | None
    last_name: str | None
    subscription_tier: str
    letters_generated: int | None = None
    language: str = "fr"


def _list_ids(tier: str) -> tuple[list[int], list[int]]:
    """Return (lists to join, lists to leave) for a tier."""
    join: list[int] = []
    leave: list[int] = []
    if settings.brevo_list_all_users:
        join.append(settings.brevo_list_all_users)
    premium = settings.brevo_list_premium_users
    free = settings.brevo_list_free_users
    if tier == "premium":
        if premium:
            join.append(premium)
        if free:
            leave.append(free)
    else:
        if free:
            join.append(free)
        if premium:
            leave.append(premium)
    return join, leave


class BrevoService:
    """Upsert contacts in Brevo."""

    async def sync_contact(self, contact: ContactSnapshot) -> bool:
        """
        Create or update the contact.

        Returns True on success, False on failure (logs the error, never raises).
        """
        if not settings.crm_enabled:
            logger.debug("[crm] Skipped (BREVO_API_KEY not configured)")
            return False

        join, leave = _list_ids(contact.subscription_tier)
        attributes: dict[str, str | int] = {
            "FIRSTNAME": contact.first_name or "",
            "LASTNAME": contact.last_name or "",
            "SUBSCRIPTION_TIER": contact.subscription_tier,
            "LANGUAGE": contact.language,
        }
        if contact.letters_generated is not None:
            attributes["LETTERS_GENERATED"] = contact.letters_generated
        payload: dict[str, Any] = {
            "email": contact.email,
            "updateEnabled": True,
            "attributes": attributes,
            "listIds": join,
        }
        if leave:
            payload["unlinkListIds"] = leave

        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "api-key": settings.brevo_api_key,
        }

        try:
            async with httpx.AsyncClient(timeout=10.0) as client:
                response = await client.post(BREVO_CONTACTS_URL, json=payload, headers=headers)
            response.raise_for_status()
            logger.info(f"[crm] Synced {contact.email} (tier={contact.subscription_tier})")
            return True

        except httpx.HTTPStatusError as e:
            logger.error(
                f"[crm] HTTP {e.response.status_code} syncing {contact.email}: {e.response.text}"
            )
            return False
        except httpx.RequestError as e:
            logger.error(f"[crm] Request failed syncing {contact.email}: {e}")
            return False


brevo_service = BrevoService()
