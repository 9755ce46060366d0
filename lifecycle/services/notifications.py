"""Fire-and-forget delivery of lifecycle emails and CRM contact syncs.

Services collect ``Notification`` intents while they work and hand them to
the dispatcher only after their unit of work has committed. Each intent runs
as a detached asyncio task: failures are logged and never reach the caller,
so a notification can never roll back a state transition.
"""

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from lifecycle.config import settings
from lifecycle.services.crm.brevo import BrevoService, ContactSnapshot, brevo_service
from lifecycle.services.email.postmark import PostmarkService, postmark_service
from lifecycle.services.email.templates import EmailKind, render

logger = logging.getLogger(__name__)


@dataclass
class EmailNotification:
    kind: EmailKind
    to: str
    language: str | None = None
    context: dict[str, Any] = field(default_factory=dict)


@dataclass
class CrmSync:
    contact: ContactSnapshot


Notification = EmailNotification | CrmSync


class NotificationDispatcher:
    """Runs notification deliveries as detached tasks."""

    def __init__(
        self,
        email_sender: PostmarkService = postmark_service,
        crm: BrevoService = brevo_service,
    ) -> None:
        self.email_sender = email_sender
        self.crm = crm
        # Strong references so pending tasks are not garbage collected
        self._tasks: set[asyncio.Task[bool]] = set()

    def dispatch(self, notification: Notification) -> asyncio.Task[bool]:
        """Schedule one delivery and return immediately."""
        task = asyncio.create_task(
            self._deliver(notification),
            name=f"notify-{self._label(notification)}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def dispatch_all(self, notifications: Iterable[Notification]) -> None:
        for notification in notifications:
            self.dispatch(notification)

    async def drain(self) -> None:
        """Wait for all in-flight deliveries (shutdown and tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def _deliver(self, notification: Notification) -> bool:
        try:
            if isinstance(notification, EmailNotification):
                return await self._send_email(notification)
            return await self.crm.sync_contact(notification.contact)
        except Exception:
            logger.exception(f"[notify] Delivery failed for {self._label(notification)}")
            return False

    async def _send_email(self, notification: EmailNotification) -> bool:
        rendered = render(
            notification.kind,
            notification.language or settings.default_language,
            notification.context,
        )
        return await self.email_sender.send(
            to=notification.to,
            subject=rendered.subject,
            html_body=rendered.html_body,
            text_body=rendered.text_body,
            tag=notification.kind.value,
        )

    @staticmethod
    def _label(notification: Notification) -> str:
        if isinstance(notification, EmailNotification):
            return notification.kind.value
        return "crm-sync"


notification_dispatcher = NotificationDispatcher()
