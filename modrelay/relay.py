from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from .errors import RelayError, ValidationError
from .events import ModSubmit, ReviewDecision

if TYPE_CHECKING:
    from .gateway import NotificationGateway, WorkspaceDirectory

log = logging.getLogger("modrelay.relay")

DISCORD_ID_RE = re.compile(r"^[0-9]{17,19}$")


class ApplicationStatus(enum.Enum):
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"


STATUS_TEMPLATES = {
    ApplicationStatus.SUBMITTED: (
        "Your moderator application has been **submitted**. "
        "We have received your application and will review it soon."
    ),
    ApplicationStatus.APPROVED: (
        "🎉 Congratulations! Your moderator application has been **approved**. "
        "Welcome to the team! Please check your dashboard for further instructions."
    ),
    ApplicationStatus.REJECTED: "We regret to inform you that your moderator application has been **rejected**.",
}


def parse_recipient(raw) -> int:
    s = str(raw or "").strip()
    if not DISCORD_ID_RE.match(s):
        raise ValidationError("Invalid Discord ID format.", field="discordId")
    return int(s)


def parse_status(raw) -> ApplicationStatus:
    try:
        return ApplicationStatus(str(raw or "").strip().lower())
    except ValueError:
        allowed = ", ".join(s.value for s in ApplicationStatus)
        raise ValidationError(f"Invalid status provided. Must be one of: {allowed}.", field="status") from None


def build_message(status: ApplicationStatus, details: Optional[str] = None) -> str:
    message = STATUS_TEMPLATES[status]
    if details:
        message += f"\n\n**Details:** {details}"
    return message


@dataclass(frozen=True)
class ReviewRequest:
    """Card posted to the moderator review channel for a new application."""
    applicant_id: int
    applicant_tag: str
    details: Optional[str] = None


@dataclass(frozen=True)
class Delivery:
    recipient_id: int
    recipient_tag: str
    status: ApplicationStatus


class NotificationRelay:
    """Turns application status updates into direct messages."""

    def __init__(self, gateway: "NotificationGateway", review_channel_id: Optional[int] = None):
        self.gateway = gateway
        self.review_channel_id = review_channel_id

    async def notify(self, recipient_id: int, status: ApplicationStatus, details: Optional[str] = None) -> Delivery:
        tag = await self.gateway.send_direct_message(recipient_id, build_message(status, details))
        log.info("Notification sent to %s (%s) - Status: %s", tag, recipient_id, status.value)

        if status is ApplicationStatus.SUBMITTED and self.review_channel_id is not None:
            try:
                await self.gateway.post_to_channel(
                    self.review_channel_id, ReviewRequest(recipient_id, tag, details)
                )
            except RelayError:
                log.exception("Posting review card for %s failed", recipient_id)

        return Delivery(recipient_id=recipient_id, recipient_tag=tag, status=status)


class ReviewController:
    """Handles moderator decisions taken from review cards."""

    def __init__(self, relay: NotificationRelay, directory: "WorkspaceDirectory", guild_id: Optional[int]):
        self.relay = relay
        self.directory = directory
        self.guild_id = guild_id

    async def handle(self, event: ModSubmit) -> str:
        log.info("Moderator %s chose %s for applicant %s", event.moderator_id, event.decision.value, event.applicant_id)

        if event.decision is ReviewDecision.APPROVE:
            d = await self.relay.notify(event.applicant_id, ApplicationStatus.APPROVED)
            return f"✅ Approved. {d.recipient_tag} has been notified."

        if event.decision is ReviewDecision.DENY:
            d = await self.relay.notify(event.applicant_id, ApplicationStatus.REJECTED)
            return f"❌ Rejected. {d.recipient_tag} has been notified."

        if self.guild_id is None:
            raise ValidationError("No guild is configured for private channels.")
        channel_id = await self.directory.create_private_channel(
            self.guild_id, [event.applicant_id, event.moderator_id]
        )
        await self.relay.gateway.send_direct_message(
            event.applicant_id,
            f"A moderator would like to talk about your application. Please head to <#{channel_id}>.",
        )
        return f"💬 Opened <#{channel_id}> with <@{event.applicant_id}>."
