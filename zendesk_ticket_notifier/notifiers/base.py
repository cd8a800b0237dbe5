from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol, Sequence

from ..models import TicketSearchResult

logger = logging.getLogger(__name__)

PERMISSION_GRANTED = "granted"
PERMISSION_DENIED = "denied"
PERMISSION_DEFAULT = "default"

BATCH_PREVIEW_LIMIT = 5
BATCH_TAG = "zendesk-ticket-batch"


@dataclass(frozen=True)
class Notification:
    title: str
    body: str
    tag: str
    click_url: str


class NotificationSurface(Protocol):
    async def request_permission(self) -> str: ...

    async def present(self, notification: Notification) -> None: ...


class LogNotificationSurface:
    async def request_permission(self) -> str:
        return PERMISSION_GRANTED

    async def present(self, notification: Notification) -> None:
        logger.info(
            "notification tag=%s title=%s url=%s body=%s",
            notification.tag,
            notification.title,
            notification.click_url,
            notification.body.replace("\n", " | "),
        )


def ticket_tag(ticket_id: int) -> str:
    return f"zendesk-ticket-{ticket_id}"


class NotificationDispatcher:
    def __init__(
        self,
        surface: NotificationSurface,
        *,
        ticket_url_base: str,
        recent_view_url: str,
    ) -> None:
        self._surface = surface
        self._ticket_url_base = ticket_url_base
        self._recent_view_url = recent_view_url

    @property
    def surface(self) -> NotificationSurface:
        return self._surface

    def ticket_url(self, ticket_id: int) -> str:
        return f"{self._ticket_url_base}{ticket_id}"

    def build(self, tickets: Sequence[TicketSearchResult]) -> Notification:
        if not tickets:
            raise ValueError("cannot build a notification for zero tickets")

        if len(tickets) == 1:
            ticket = tickets[0]
            return Notification(
                title=f"New Ticket: #{ticket.id}",
                body=ticket.subject,
                tag=ticket_tag(ticket.id),
                click_url=self.ticket_url(ticket.id),
            )

        lines = [f"#{ticket.id} — {ticket.subject}" for ticket in tickets[:BATCH_PREVIEW_LIMIT]]
        remaining = len(tickets) - BATCH_PREVIEW_LIMIT
        if remaining > 0:
            lines.append(f"…and {remaining} more")
        return Notification(
            title=f"{len(tickets)} New Tickets",
            body="\n".join(lines),
            tag=BATCH_TAG,
            click_url=self._recent_view_url,
        )

    async def dispatch(self, tickets: Sequence[TicketSearchResult]) -> bool:
        if not tickets:
            return False
        try:
            notification = self.build(tickets)
            await self._surface.present(notification)
        except Exception:
            logger.exception(
                "notification_dispatch_failed tickets=%s",
                ",".join(str(ticket.id) for ticket in tickets),
            )
            return False

        logger.info(
            "notification_sent tickets=%s tag=%s",
            ",".join(str(ticket.id) for ticket in tickets),
            notification.tag,
        )
        return True
