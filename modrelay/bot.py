from __future__ import annotations

import asyncio
import concurrent.futures
import logging
from typing import Any, Awaitable, Dict, Optional

import discord
from discord import app_commands
from discord.ext import tasks

from .config import (
    GIVEAWAY_CHANNEL_ID,
    GUILD_ID,
    HOST_ROLE_ID,
    MOD_REVIEW_CHANNEL_ID,
    NOTIFY_TIMEOUT_SECONDS,
    WIZARD_MAX_DURATION_SECONDS,
    WIZARD_MAX_WINNERS,
    WIZARD_SESSION_TTL_SECONDS,
)
from .errors import Forbidden, GatewayFailure, NotFound, RelayError, StaleInteraction, ValidationError
from .events import (
    GIVEAWAY_PREFIX,
    REVIEW_PREFIX,
    ButtonAction,
    ButtonClick,
    ModSubmit,
    ReviewDecision,
    StageSubmit,
    WizardStart,
    cid_cancel,
    cid_confirm,
    cid_continue,
    decode_custom_id,
)
from .gateway import DiscordDirectory, DiscordGateway, announcement_embed, trim
from .relay import NotificationRelay, ReviewController
from .sessions import SessionStore, Stage
from .wizard import FORMS, GiveawayWizard, StageForm

log = logging.getLogger("modrelay.bot")

# =========================================================
# Intents
# =========================================================
intents = discord.Intents.default()
intents.guilds = True
intents.dm_messages = True
intents.members = False
intents.message_content = False

STEP_NUMBER = {stage: i + 1 for i, stage in enumerate(FORMS)}

# =========================================================
# Modals
# =========================================================
class StageModal(discord.ui.Modal):
    """One wizard stage; inputs are generated from the stage's form."""

    def __init__(self, bot: "RelayBot", owner_id: int, form: StageForm):
        super().__init__(title=trim(form.title, 45), timeout=600)
        self.bot = bot
        self.owner_id = owner_id
        self.stage = form.stage
        self.inputs: Dict[str, discord.ui.TextInput] = {}
        for f in form.fields:
            ti = discord.ui.TextInput(
                label=trim(f.label, 45),
                placeholder=trim(f.placeholder, 100) or None,
                required=f.required,
                max_length=f.max_length,
                style=discord.TextStyle.paragraph if f.long else discord.TextStyle.short,
            )
            self.inputs[f.key] = ti
            self.add_item(ti)

    async def on_submit(self, interaction: discord.Interaction):
        await self.bot.submit_stage(interaction, StageSubmit(
            owner_id=self.owner_id,
            actor_id=interaction.user.id,
            stage=self.stage,
            fields={k: str(v) for k, v in self.inputs.items()},
        ))

# =========================================================
# Views (buttons are routed by custom id in on_interaction)
# =========================================================
class ContinueView(discord.ui.View):
    def __init__(self, owner_id: int, stage: Stage):
        super().__init__(timeout=None)
        self.add_item(discord.ui.Button(
            label=f"Continue ({STEP_NUMBER[stage]}/{len(FORMS)})",
            style=discord.ButtonStyle.primary,
            custom_id=cid_continue(owner_id, stage)
        ))
        self.add_item(discord.ui.Button(
            label="Cancel",
            style=discord.ButtonStyle.danger,
            custom_id=cid_cancel(owner_id)
        ))

class ConfirmView(discord.ui.View):
    def __init__(self, owner_id: int):
        super().__init__(timeout=None)
        self.add_item(discord.ui.Button(
            label="Post Giveaway",
            style=discord.ButtonStyle.success,
            custom_id=cid_confirm(owner_id)
        ))
        self.add_item(discord.ui.Button(
            label="Cancel",
            style=discord.ButtonStyle.danger,
            custom_id=cid_cancel(owner_id)
        ))

# =========================================================
# Error replies
# =========================================================
def error_text(e: RelayError, wizard: bool = True) -> str:
    """User-facing text for an error; ``wizard`` picks the giveaway wording for NotFound."""
    if isinstance(e, NotFound):
        if wizard:
            return "There is no giveaway setup in progress. Use `/giveaway` to start one."
        return f"🔎 {e}"
    if isinstance(e, StaleInteraction):
        return "⌛ That button is from an older step. Use the latest message to continue."
    if isinstance(e, Forbidden):
        return f"🚫 {e}"
    if isinstance(e, ValidationError):
        return f"❌ {e}"
    return f"⚠️ {e}"

# =========================================================
# Bot
# =========================================================
class RelayBot(discord.Client):
    def __init__(self):
        super().__init__(intents=intents)
        self.tree = app_commands.CommandTree(self)

        self.gateway = DiscordGateway(self)
        self.directory = DiscordDirectory(self)
        self.sessions = SessionStore(ttl_seconds=WIZARD_SESSION_TTL_SECONDS)
        self.wizard = GiveawayWizard(
            self.sessions,
            self.gateway,
            self.directory,
            guild_id=GUILD_ID,
            announcement_channel_id=GIVEAWAY_CHANNEL_ID,
            host_role_id=HOST_ROLE_ID,
            max_winners=WIZARD_MAX_WINNERS,
            max_duration_seconds=WIZARD_MAX_DURATION_SECONDS,
        )
        self.relay = NotificationRelay(self.gateway, review_channel_id=MOD_REVIEW_CHANNEL_ID)
        self.review = ReviewController(self.relay, self.directory, GUILD_ID)

    # ---------- lifecycle ----------
    async def setup_hook(self):
        if WIZARD_SESSION_TTL_SECONDS > 0:
            self.sweep_sessions.start()

    async def close(self):
        if self.sweep_sessions.is_running():
            self.sweep_sessions.cancel()
        await super().close()

    @tasks.loop(seconds=60)
    async def sweep_sessions(self):
        evicted = self.sessions.evict_expired()
        if evicted:
            log.info("Swept %d idle giveaway wizard session(s)", evicted)

    async def on_error(self, event_method: str, *args: Any, **kwargs: Any):
        log.exception("Discord client error in %s", event_method)

    def run_from_thread(self, coro: Awaitable[Any]) -> Any:
        """Run ``coro`` on the bot loop from another thread and wait for it."""
        fut = asyncio.run_coroutine_threadsafe(coro, self.loop)
        try:
            return fut.result(timeout=NOTIFY_TIMEOUT_SECONDS)
        except concurrent.futures.TimeoutError:
            fut.cancel()
            raise GatewayFailure("Timed out waiting for Discord") from None

    # ---------- replies ----------
    async def reply(self, interaction: discord.Interaction, content: str, **kwargs: Any):
        if interaction.response.is_done():
            await interaction.followup.send(content, ephemeral=True, **kwargs)
        else:
            await interaction.response.send_message(content, ephemeral=True, **kwargs)

    async def reply_error(self, interaction: discord.Interaction, e: RelayError, wizard: bool = True):
        await self.reply(interaction, error_text(e, wizard))

    # =========================================================
    # Giveaway wizard
    # =========================================================
    async def start_wizard(self, interaction: discord.Interaction):
        await self.wizard.handle(WizardStart(owner_id=interaction.user.id))
        form = FORMS[Stage.AWAITING_BASIC_INFO]
        await interaction.response.send_modal(StageModal(self, interaction.user.id, form))

    async def cancel_wizard(self, interaction: discord.Interaction):
        try:
            await self.wizard.handle(ButtonClick(interaction.user.id, interaction.user.id, ButtonAction.CANCEL))
        except RelayError as e:
            await self.reply_error(interaction, e)
            return
        await self.reply(interaction, "🗑️ Giveaway setup cancelled.")

    async def submit_stage(self, interaction: discord.Interaction, event: StageSubmit):
        try:
            session = await self.wizard.handle(event)
        except RelayError as e:
            await self.reply_error(interaction, e)
            return

        if session.stage is Stage.READY_TO_SUBMIT:
            try:
                preview = self.wizard.preview(event.owner_id, event.actor_id)
            except RelayError as e:
                await self.reply_error(interaction, e)
                return
            await self.reply(
                interaction,
                "👀 Here is your giveaway. Post it?",
                embed=announcement_embed(preview, preview=True),
                view=ConfirmView(event.owner_id),
            )
            return

        await self.reply(
            interaction,
            f"✅ Step {STEP_NUMBER[event.stage]} saved.",
            view=ContinueView(event.owner_id, session.stage),
        )

    async def handle_wizard_click(self, interaction: discord.Interaction, event: ButtonClick):
        if event.action is ButtonAction.CONTINUE:
            try:
                form = await self.wizard.handle(event)
            except RelayError as e:
                await self.reply_error(interaction, e)
                return
            await interaction.response.send_modal(StageModal(self, event.owner_id, form))
            return

        if event.action is ButtonAction.CANCEL:
            try:
                await self.wizard.handle(event)
            except RelayError as e:
                await self.reply_error(interaction, e)
                return
            await interaction.response.edit_message(content="🗑️ Giveaway setup cancelled.", embed=None, view=None)
            return

        await interaction.response.defer(ephemeral=True, thinking=True)
        try:
            result = await self.wizard.handle(event)
        except RelayError as e:
            await self.reply_error(interaction, e)
            return
        text = f"🎉 **{result.announcement.title}** is live in <#{self.wizard.announcement_channel_id}>."
        if not result.role_granted and self.wizard.host_role_id is not None:
            text += "\n⚠️ The host role could not be granted; a moderator has to add it manually."
        await self.reply(interaction, text)

    # =========================================================
    # Moderator application review
    # =========================================================
    def has_review_access(self, interaction: discord.Interaction) -> bool:
        if not interaction.guild or not isinstance(interaction.user, discord.Member):
            return False
        perms = interaction.user.guild_permissions
        return perms.administrator or perms.manage_guild or perms.moderate_members

    async def handle_review_click(self, interaction: discord.Interaction, event: ModSubmit):
        if not self.has_review_access(interaction):
            log.warning("User %s without review access clicked %s", interaction.user.id, event.decision.value)
            await self.reply(interaction, "❌ You don’t have access to review applications.")
            return

        await interaction.response.defer(ephemeral=True, thinking=True)
        try:
            text = await self.review.handle(event)
        except RelayError as e:
            await self.reply_error(interaction, e, wizard=False)
            return
        await self.reply(interaction, text)

        if event.decision is not ReviewDecision.CONTACT and interaction.message is not None:
            verdict = "approved" if event.decision is ReviewDecision.APPROVE else "rejected"
            try:
                await interaction.message.edit(
                    content=f"Application {verdict} by <@{interaction.user.id}>.", view=None
                )
            except discord.HTTPException:
                log.exception("Could not update review card for %s", event.applicant_id)

    # =========================================================
    # Component routing
    # =========================================================
    async def on_interaction(self, interaction: discord.Interaction):
        if interaction.type != discord.InteractionType.component:
            return
        cid = (interaction.data or {}).get("custom_id")  # type: ignore
        if not isinstance(cid, str) or not cid.startswith((GIVEAWAY_PREFIX + ":", REVIEW_PREFIX + ":")):
            return
        await self.handle_component(interaction, cid)

    async def handle_component(self, interaction: discord.Interaction, custom_id: str):
        try:
            event = decode_custom_id(custom_id, interaction.user.id)
        except ValidationError as e:
            log.warning("Undecodable component id %r from %s", custom_id, interaction.user.id)
            await self.reply_error(interaction, e)
            return

        if isinstance(event, ButtonClick):
            await self.handle_wizard_click(interaction, event)
        elif isinstance(event, ModSubmit):
            await self.handle_review_click(interaction, event)


def guild_object() -> Optional[discord.Object]:
    return discord.Object(id=GUILD_ID) if GUILD_ID else None
