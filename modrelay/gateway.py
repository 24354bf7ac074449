from __future__ import annotations

from typing import List, Union

import discord

from .errors import GatewayFailure, NotFound
from .events import ReviewDecision, cid_review
from .relay import ReviewRequest
from .wizard import DEFAULT_SENTINEL, NONE_SENTINEL, GiveawayAnnouncement


ChannelContent = Union[str, GiveawayAnnouncement, ReviewRequest]


# =========================================================
# Interfaces
# =========================================================
class NotificationGateway:
    async def send_direct_message(self, user_id: int, text: str) -> str:
        """Deliver ``text`` to the user, returning their display tag."""
        raise NotImplementedError

    async def post_to_channel(self, channel_id: int, content: ChannelContent) -> int:
        """Post to a guild channel, returning the message id."""
        raise NotImplementedError


class WorkspaceDirectory:
    async def grant_role(self, guild_id: int, user_id: int, role_id: int):
        raise NotImplementedError

    async def create_private_channel(self, guild_id: int, participant_ids: List[int]) -> int:
        raise NotImplementedError

    async def fetch_user(self, user_id: int):
        raise NotImplementedError


# =========================================================
# Rendering
# =========================================================
def trim(s: str, n: int = 1024) -> str:
    s = (s or "").strip()
    return s if len(s) <= n else s[: n - 1] + "…"


def announcement_embed(ann: GiveawayAnnouncement, preview: bool = False) -> discord.Embed:
    desc = ann.start_message if ann.start_message != DEFAULT_SENTINEL else "A new giveaway has started!"
    em = discord.Embed(
        title=f"🎉 {trim(ann.title, 240)}",
        description=trim(desc, 4000),
        color=discord.Color(ann.color_value),
    )
    em.add_field(name="Prize", value=trim(ann.prize), inline=False)
    em.add_field(name="Winners", value=str(ann.winners), inline=True)
    em.add_field(name="Duration", value=ann.duration, inline=True)
    em.add_field(name="Ends", value=discord.utils.format_dt(ann.ends_at, "R"), inline=True)
    em.add_field(name="Requirements", value="\n".join(ann.requirement_lines()), inline=False)
    em.add_field(name="Hosted by", value=f"<@{ann.host_id}>", inline=False)
    if preview:
        em.add_field(name="Entry button", value=ann.button_text, inline=True)
        em.add_field(name="Winner message", value=trim(ann.winner_message), inline=False)
        em.add_field(name="Entry confirmation", value=trim(ann.entry_confirm_message), inline=False)
    if ann.thumbnail != NONE_SENTINEL:
        em.set_thumbnail(url=ann.thumbnail)
    if ann.banner != NONE_SENTINEL:
        em.set_image(url=ann.banner)
    em.timestamp = ann.ends_at
    em.set_footer(text="Ends")
    return em


def review_embed(req: ReviewRequest) -> discord.Embed:
    em = discord.Embed(title="🛡️ New moderator application", color=discord.Color.blurple())
    em.add_field(name="Applicant", value=f"<@{req.applicant_id}> ({req.applicant_tag})", inline=False)
    em.add_field(name="Details", value=trim(req.details or "None"), inline=False)
    return em


class ReviewView(discord.ui.View):
    """Approve / Deny / Contact buttons; clicks are routed by custom id in on_interaction."""
    def __init__(self, applicant_id: int):
        super().__init__(timeout=None)
        self.add_item(discord.ui.Button(
            label="Approve", style=discord.ButtonStyle.success,
            custom_id=cid_review(ReviewDecision.APPROVE, applicant_id)
        ))
        self.add_item(discord.ui.Button(
            label="Deny", style=discord.ButtonStyle.danger,
            custom_id=cid_review(ReviewDecision.DENY, applicant_id)
        ))
        self.add_item(discord.ui.Button(
            label="Contact", style=discord.ButtonStyle.secondary,
            custom_id=cid_review(ReviewDecision.CONTACT, applicant_id)
        ))


# =========================================================
# discord.py adapters
# =========================================================
class DiscordGateway(NotificationGateway):
    def __init__(self, client: discord.Client):
        self.client = client

    async def send_direct_message(self, user_id: int, text: str) -> str:
        try:
            user = await self.client.fetch_user(user_id)
        except discord.NotFound:
            raise NotFound("Discord user not found or bot cannot access this user.") from None
        except discord.HTTPException as e:
            raise GatewayFailure(f"Fetching user {user_id} failed: {e}") from e
        try:
            await user.send(text)
        except discord.HTTPException as e:
            raise GatewayFailure(f"Sending DM to {user_id} failed: {e}") from e
        return str(user)

    async def _channel(self, channel_id: int) -> discord.abc.Messageable:
        ch = self.client.get_channel(channel_id)
        if ch is None:
            try:
                ch = await self.client.fetch_channel(channel_id)
            except discord.HTTPException as e:
                raise GatewayFailure(f"Channel {channel_id} not reachable: {e}") from e
        if not isinstance(ch, discord.abc.Messageable):
            raise GatewayFailure(f"Channel {channel_id} does not accept messages")
        return ch

    async def post_to_channel(self, channel_id: int, content: ChannelContent) -> int:
        ch = await self._channel(channel_id)
        try:
            if isinstance(content, GiveawayAnnouncement):
                msg = await ch.send(embed=announcement_embed(content))
            elif isinstance(content, ReviewRequest):
                msg = await ch.send(embed=review_embed(content), view=ReviewView(content.applicant_id))
            else:
                msg = await ch.send(content)
        except discord.HTTPException as e:
            raise GatewayFailure(f"Posting to {channel_id} failed: {e}") from e
        return msg.id


class DiscordDirectory(WorkspaceDirectory):
    def __init__(self, client: discord.Client):
        self.client = client

    async def _guild(self, guild_id: int) -> discord.Guild:
        guild = self.client.get_guild(guild_id)
        if guild is not None:
            return guild
        try:
            return await self.client.fetch_guild(guild_id)
        except discord.NotFound:
            raise NotFound(f"Guild {guild_id} not found") from None
        except discord.HTTPException as e:
            raise GatewayFailure(f"Fetching guild {guild_id} failed: {e}") from e

    async def _member(self, guild: discord.Guild, user_id: int) -> discord.Member:
        member = guild.get_member(user_id)
        if member is not None:
            return member
        try:
            return await guild.fetch_member(user_id)
        except discord.NotFound:
            raise NotFound(f"User {user_id} is not a member of {guild.id}") from None
        except discord.HTTPException as e:
            raise GatewayFailure(f"Fetching member {user_id} failed: {e}") from e

    async def grant_role(self, guild_id: int, user_id: int, role_id: int):
        guild = await self._guild(guild_id)
        role = guild.get_role(role_id)
        if role is None:
            raise NotFound(f"Role {role_id} not found in {guild_id}")
        member = await self._member(guild, user_id)
        try:
            await member.add_roles(role, reason="Hosted a giveaway")
        except discord.HTTPException as e:
            raise GatewayFailure(f"Adding role {role_id} to {user_id} failed: {e}") from e

    async def create_private_channel(self, guild_id: int, participant_ids: List[int]) -> int:
        guild = await self._guild(guild_id)
        overwrites = {guild.default_role: discord.PermissionOverwrite(view_channel=False)}
        if guild.me is not None:
            overwrites[guild.me] = discord.PermissionOverwrite(view_channel=True, send_messages=True)
        for uid in participant_ids:
            member = await self._member(guild, uid)
            overwrites[member] = discord.PermissionOverwrite(view_channel=True, send_messages=True)
        name = f"application-{participant_ids[0]}" if participant_ids else "application"
        try:
            ch = await guild.create_text_channel(name, overwrites=overwrites, reason="Moderator application contact")
        except discord.HTTPException as e:
            raise GatewayFailure(f"Creating private channel in {guild_id} failed: {e}") from e
        return ch.id

    async def fetch_user(self, user_id: int):
        try:
            return await self.client.fetch_user(user_id)
        except discord.NotFound:
            raise NotFound(f"User {user_id} not found") from None
        except discord.HTTPException as e:
            raise GatewayFailure(f"Fetching user {user_id} failed: {e}") from e
