from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from .errors import Forbidden, GatewayFailure, InvalidTransition, RelayError, StaleInteraction, ValidationError
from .events import ButtonAction, ButtonClick, StageSubmit, WizardEvent, WizardStart
from .sessions import Session, SessionStore, Stage

if TYPE_CHECKING:
    from .gateway import NotificationGateway, WorkspaceDirectory

log = logging.getLogger("modrelay.wizard")

NONE_SENTINEL = "None"
DEFAULT_SENTINEL = "Default"

DURATION_RE = re.compile(r"^([0-9]+[smhdw])+$", re.IGNORECASE)
DURATION_PART_RE = re.compile(r"([0-9]+)([smhdw])", re.IGNORECASE)
COLOR_RE = re.compile(r"^#?([0-9a-fA-F]{6})$")
UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600, "d": 86400, "w": 604800}
MAX_DURATION_SECONDS = 90 * 86400


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def parse_duration(text: str, max_seconds: Optional[int] = MAX_DURATION_SECONDS) -> timedelta:
    """'1d', '12h', '1w2d' -> timedelta, at most ``max_seconds`` long (None = unbounded)."""
    s = (text or "").strip().replace(" ", "")
    if not DURATION_RE.match(s):
        raise ValidationError("Duration must look like 30m, 12h, 1d or 1w", field="duration")
    total = sum(int(n) * UNIT_SECONDS[u.lower()] for n, u in DURATION_PART_RE.findall(s))
    if total <= 0:
        raise ValidationError("Duration must be longer than zero", field="duration")
    if max_seconds is not None and total > max_seconds:
        raise ValidationError(f"Duration must be at most {max_seconds // 86400} days", field="duration")
    try:
        return timedelta(seconds=total)
    except OverflowError:
        raise ValidationError("Duration is too long", field="duration") from None


# =========================================================
# Stage forms
# =========================================================
@dataclass(frozen=True)
class FormField:
    key: str
    label: str
    required: bool = True
    max_length: int = 100
    default: str = NONE_SENTINEL
    placeholder: str = ""
    long: bool = False


@dataclass(frozen=True)
class StageForm:
    stage: Stage
    title: str
    fields: Tuple[FormField, ...]


FORMS: Dict[Stage, StageForm] = {
    Stage.AWAITING_BASIC_INFO: StageForm(Stage.AWAITING_BASIC_INFO, "Giveaway: basic info", (
        FormField("title", "Title", max_length=100, placeholder="e.g. Holiday Drop"),
        FormField("prize", "Prize", max_length=200, placeholder="e.g. Gift Card", long=True),
        FormField("winners", "Number of winners", max_length=3, placeholder="1-20"),
        FormField("duration", "Duration", max_length=20, placeholder="e.g. 30m, 12h, 1d, 1w"),
    )),
    Stage.AWAITING_ENTRY_REQUIREMENTS: StageForm(Stage.AWAITING_ENTRY_REQUIREMENTS, "Giveaway: entry requirements", (
        FormField("membership", "Minimum membership", max_length=50, placeholder="e.g. 7d or Any"),
        FormField("min_messages", "Minimum message count", max_length=6, placeholder="0"),
        FormField("roles", "Required roles", required=False, max_length=200, placeholder="Leave empty for none"),
        FormField("custom_entry", "Custom entry requirement", required=False, max_length=300, long=True),
    )),
    Stage.AWAITING_CUSTOMIZATION: StageForm(Stage.AWAITING_CUSTOMIZATION, "Giveaway: customization", (
        FormField("color", "Embed color", max_length=7, placeholder="#5865F2"),
        FormField("thumbnail", "Thumbnail URL", required=False, max_length=300),
        FormField("banner", "Banner image URL", required=False, max_length=300),
        FormField("button_text", "Entry button text", required=False, max_length=40, default=DEFAULT_SENTINEL),
    )),
    Stage.AWAITING_MESSAGES: StageForm(Stage.AWAITING_MESSAGES, "Giveaway: messages", (
        FormField("start_message", "Start message", required=False, max_length=500,
                  default=DEFAULT_SENTINEL, long=True),
        FormField("winner_message", "Winner message", required=False, max_length=500,
                  default=DEFAULT_SENTINEL, long=True),
        FormField("entry_confirm_message", "Entry confirmation message", required=False, max_length=300,
                  default=DEFAULT_SENTINEL, long=True),
    )),
}


def _parse_int(value: str, field: str, label: str, lo: int, hi: Optional[int] = None) -> int:
    try:
        n = int(value)
    except ValueError:
        raise ValidationError(f"{label} must be a whole number", field=field) from None
    if n < lo or (hi is not None and n > hi):
        bounds = f"between {lo} and {hi}" if hi is not None else f"at least {lo}"
        raise ValidationError(f"{label} must be {bounds}", field=field)
    return n


def _check_url(value: str, field: str, label: str) -> str:
    if value != NONE_SENTINEL and not value.lower().startswith(("http://", "https://")):
        raise ValidationError(f"{label} must be an http(s) link", field=field)
    return value


def validate_stage(
    stage: Stage,
    raw: Dict[str, str],
    max_winners: int = 20,
    max_duration_seconds: int = MAX_DURATION_SECONDS,
) -> Dict[str, Any]:
    """Check one stage's submission and return the values to store.

    Optional fields left empty come back as their sentinel so nothing renders
    blank later. Keys the stage does not declare are dropped.
    """
    form = FORMS.get(stage)
    if form is None:
        raise InvalidTransition(f"{stage.name} does not take a form submission")

    values: Dict[str, Any] = {}
    for f in form.fields:
        value = str(raw.get(f.key) or "").strip()
        if not value:
            if f.required:
                raise ValidationError(f"{f.label} is required", field=f.key)
            values[f.key] = f.default
            continue
        if len(value) > f.max_length:
            raise ValidationError(f"{f.label} must be at most {f.max_length} characters", field=f.key)
        values[f.key] = value

    if stage is Stage.AWAITING_BASIC_INFO:
        values["winners"] = _parse_int(values["winners"], "winners", "Number of winners", 1, max_winners)
        parse_duration(values["duration"], max_duration_seconds)
    elif stage is Stage.AWAITING_ENTRY_REQUIREMENTS:
        values["min_messages"] = _parse_int(values["min_messages"], "min_messages", "Minimum message count", 0)
    elif stage is Stage.AWAITING_CUSTOMIZATION:
        m = COLOR_RE.match(values["color"])
        if not m:
            raise ValidationError("Embed color must be a hex code like #5865F2", field="color")
        values["color"] = "#" + m.group(1).upper()
        _check_url(values["thumbnail"], "thumbnail", "Thumbnail URL")
        _check_url(values["banner"], "banner", "Banner image URL")
    return values


# =========================================================
# Announcement
# =========================================================
class GiveawayAnnouncement:
    """Everything needed to render one giveaway post."""

    def __init__(self, host_id: int, fields: Dict[str, Any], starts_at: datetime):
        self.host_id = host_id
        self.title: str = fields["title"]
        self.prize: str = fields["prize"]
        self.winners: int = fields["winners"]
        self.duration: str = fields["duration"]
        self.membership: str = fields["membership"]
        self.min_messages: int = fields["min_messages"]
        self.roles: str = fields.get("roles", NONE_SENTINEL)
        self.custom_entry: str = fields.get("custom_entry", NONE_SENTINEL)
        self.color: str = fields["color"]
        self.thumbnail: str = fields.get("thumbnail", NONE_SENTINEL)
        self.banner: str = fields.get("banner", NONE_SENTINEL)
        self.button_text: str = fields.get("button_text", DEFAULT_SENTINEL)
        self.start_message: str = fields.get("start_message", DEFAULT_SENTINEL)
        self.winner_message: str = fields.get("winner_message", DEFAULT_SENTINEL)
        self.entry_confirm_message: str = fields.get("entry_confirm_message", DEFAULT_SENTINEL)
        self.starts_at = starts_at
        try:
            self.ends_at = starts_at + parse_duration(self.duration, max_seconds=None)
        except OverflowError:
            raise ValidationError("Duration is too long", field="duration") from None

    @classmethod
    def from_session(cls, session: Session, host_id: int, starts_at: Optional[datetime] = None) -> "GiveawayAnnouncement":
        missing = [k for k in ("title", "prize", "winners", "duration", "membership", "min_messages", "color")
                   if k not in session.fields]
        if missing:
            raise InvalidTransition(f"Session for {session.owner_id} is missing {', '.join(missing)}")
        return cls(host_id, session.fields, starts_at or now_utc())

    @property
    def color_value(self) -> int:
        return int(self.color.lstrip("#"), 16)

    def requirement_lines(self) -> List[str]:
        return [
            f"Membership: {self.membership}",
            f"Minimum messages: {self.min_messages}",
            f"Required roles: {self.roles}",
            f"Custom requirement: {self.custom_entry}",
        ]

    def as_dict(self) -> Dict[str, Any]:
        return {
            "host_id": self.host_id,
            "title": self.title,
            "prize": self.prize,
            "winners": self.winners,
            "duration": self.duration,
            "ends_at": self.ends_at.isoformat(),
            "requirements": {
                "membership": self.membership,
                "min_messages": self.min_messages,
                "roles": self.roles,
                "custom_entry": self.custom_entry,
            },
            "visuals": {
                "color": self.color,
                "thumbnail": self.thumbnail,
                "banner": self.banner,
                "button_text": self.button_text,
            },
            "messages": {
                "start": self.start_message,
                "winner": self.winner_message,
                "entry_confirm": self.entry_confirm_message,
            },
        }


@dataclass
class ConfirmResult:
    announcement: GiveawayAnnouncement
    message_id: Optional[int]
    role_granted: bool


# =========================================================
# Controller
# =========================================================
class GiveawayWizard:
    """Drives a giveaway from /giveaway to the public post.

    basic info -> entry requirements -> customization -> messages -> ready,
    then confirm publishes and cancel discards. Only the owner may act on a
    session and every event must target the session's current stage.
    """

    def __init__(
        self,
        store: SessionStore,
        gateway: "NotificationGateway",
        directory: "WorkspaceDirectory",
        guild_id: Optional[int],
        announcement_channel_id: Optional[int],
        host_role_id: Optional[int],
        max_winners: int = 20,
        max_duration_seconds: int = MAX_DURATION_SECONDS,
    ):
        self.store = store
        self.gateway = gateway
        self.directory = directory
        self.guild_id = guild_id
        self.announcement_channel_id = announcement_channel_id
        self.host_role_id = host_role_id
        self.max_winners = max_winners
        self.max_duration_seconds = max_duration_seconds

    # ---------- guards ----------
    def _ensure_owner(self, owner_id: int, actor_id: int):
        if owner_id != actor_id:
            log.warning("User %s tried to drive the giveaway wizard of %s", actor_id, owner_id)
            raise Forbidden("This giveaway setup belongs to someone else.")

    def _session_at(self, owner_id: int, stage: Stage) -> Session:
        session = self.store.get(owner_id)
        if session.stage is not stage:
            log.warning("Stale wizard interaction for %s: at %s, got %s", owner_id, session.stage.name, stage.name)
            raise StaleInteraction("That step is no longer current.")
        return session

    # ---------- transitions ----------
    def start(self, owner_id: int) -> Session:
        session = self.store.start(owner_id)
        log.info("Giveaway wizard started by %s", owner_id)
        return session

    def open_form(self, owner_id: int, actor_id: int, stage: Stage) -> StageForm:
        self._ensure_owner(owner_id, actor_id)
        self._session_at(owner_id, stage)
        form = FORMS.get(stage)
        if form is None:
            raise InvalidTransition(f"{stage.name} has no form")
        return form

    def submit(self, owner_id: int, actor_id: int, stage: Stage, raw: Dict[str, str]) -> Session:
        self._ensure_owner(owner_id, actor_id)
        self._session_at(owner_id, stage)
        values = validate_stage(stage, raw, self.max_winners, self.max_duration_seconds)
        try:
            session = self.store.update(owner_id, values, stage.next(), expected_stage=stage)
        except StaleInteraction:
            log.warning("Concurrent submission for %s at %s dropped", owner_id, stage.name)
            raise
        log.info("Giveaway wizard for %s advanced to %s", owner_id, session.stage.name)
        return session

    def preview(self, owner_id: int, actor_id: int) -> GiveawayAnnouncement:
        self._ensure_owner(owner_id, actor_id)
        session = self._session_at(owner_id, Stage.READY_TO_SUBMIT)
        return GiveawayAnnouncement.from_session(session, host_id=owner_id)

    async def confirm(self, owner_id: int, actor_id: int) -> ConfirmResult:
        self._ensure_owner(owner_id, actor_id)
        if self.announcement_channel_id is None:
            raise GatewayFailure("No giveaway announcement channel is configured.")

        # assembled while the session is still stored; a bad record leaves it in place
        announcement = GiveawayAnnouncement.from_session(
            self._session_at(owner_id, Stage.READY_TO_SUBMIT), host_id=owner_id
        )
        # removed before any side effect so a duplicate confirm cannot publish twice
        self.store.take(owner_id, Stage.READY_TO_SUBMIT)

        try:
            message_id = await self.gateway.post_to_channel(self.announcement_channel_id, announcement)
        except RelayError as e:
            log.error("Posting giveaway %r for %s failed: %s", announcement.title, owner_id, e)
            raise GatewayFailure(f"Could not post the giveaway announcement: {e}") from e

        log.info("Giveaway %r by %s published (message %s)", announcement.title, owner_id, message_id)
        role_granted = await self._grant_host_role(owner_id)
        return ConfirmResult(announcement=announcement, message_id=message_id, role_granted=role_granted)

    async def _grant_host_role(self, owner_id: int) -> bool:
        if self.host_role_id is None or self.guild_id is None:
            return False
        try:
            await self.directory.grant_role(self.guild_id, owner_id, self.host_role_id)
        except RelayError:
            log.exception("Granting host role to %s failed", owner_id)
            return False
        return True

    def cancel(self, owner_id: int, actor_id: int):
        self._ensure_owner(owner_id, actor_id)
        self.store.get(owner_id)
        self.store.remove(owner_id)
        log.info("Giveaway wizard for %s cancelled", owner_id)

    # ---------- event dispatch ----------
    async def handle(self, event: WizardEvent) -> Any:
        if isinstance(event, WizardStart):
            return self.start(event.owner_id)
        if isinstance(event, StageSubmit):
            return self.submit(event.owner_id, event.actor_id, event.stage, event.fields)
        if isinstance(event, ButtonClick):
            if event.action is ButtonAction.CONTINUE:
                if event.stage is None:
                    raise ValidationError("Continue button without a stage")
                return self.open_form(event.owner_id, event.actor_id, event.stage)
            if event.action is ButtonAction.CONFIRM:
                return await self.confirm(event.owner_id, event.actor_id)
            if event.action is ButtonAction.CANCEL:
                return self.cancel(event.owner_id, event.actor_id)
        raise ValidationError(f"Unsupported wizard event: {event!r}")
