# ==============================
# MODERATOR RELAY BOT
# Flask HTTP relay (/notify, /health) for the moderator application service,
# moderator review buttons, and the /giveaway setup wizard.
# ==============================

from __future__ import annotations

import logging
import threading

import discord

from modrelay.bot import RelayBot, guild_object
from modrelay.config import (
    BOT_TOKEN,
    DISCORD_INTEGRATION_ENABLED,
    LOG_LEVEL,
    PORT,
    RATE_LIMIT_MAX_REQUESTS,
    RATE_LIMIT_WINDOW_SECONDS,
)
from modrelay.web import RateLimiter, create_app

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
log = logging.getLogger("modrelay")

# =========================================================
# Slash commands + startup
# =========================================================
bot = RelayBot()

app = create_app(
    bot.relay,
    run_coroutine=bot.run_from_thread,
    is_ready=bot.is_ready,
    integration_enabled=DISCORD_INTEGRATION_ENABLED,
    rate_limiter=RateLimiter(RATE_LIMIT_MAX_REQUESTS, RATE_LIMIT_WINDOW_SECONDS),
)

def _run_flask():
    app.run(host="0.0.0.0", port=PORT)

@bot.tree.command(name="giveaway", description="Set up a new giveaway")
async def giveaway(interaction: discord.Interaction):
    await bot.start_wizard(interaction)

@bot.tree.command(name="giveaway_cancel", description="Cancel your giveaway setup")
async def giveaway_cancel(interaction: discord.Interaction):
    await bot.cancel_wizard(interaction)

@bot.event
async def on_ready():
    guild = guild_object()
    if guild:
        bot.tree.copy_global_to(guild=guild)
        await bot.tree.sync(guild=guild)
    else:
        await bot.tree.sync()
    print(f"Logged in as {bot.user}")

if __name__ == "__main__":
    if not BOT_TOKEN:
        raise RuntimeError("BOT_TOKEN env var missing")
    threading.Thread(target=_run_flask, daemon=True).start()
    log.info("HTTP server is running on port %s", PORT)
    bot.run(BOT_TOKEN, log_handler=None)
