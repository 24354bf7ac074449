import os
from typing import Optional


def _opt_int(name: str) -> Optional[int]:
    raw = (os.getenv(name) or "").strip()
    return int(raw) if raw else None


# =========================================================
# ENV
# =========================================================
BOT_TOKEN = os.getenv("BOT_TOKEN")
PORT = int(os.getenv("PORT", "3000"))
DISCORD_INTEGRATION_ENABLED = os.getenv("DISCORD_INTEGRATION_ENABLED", "false").lower() == "true"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Guild wiring
GUILD_ID = _opt_int("GUILD_ID")                            # command sync + role grants
MOD_REVIEW_CHANNEL_ID = _opt_int("MOD_REVIEW_CHANNEL_ID")  # application review cards
GIVEAWAY_CHANNEL_ID = _opt_int("GIVEAWAY_CHANNEL_ID")      # public announcements
HOST_ROLE_ID = _opt_int("HOST_ROLE_ID")                    # granted when a giveaway is published

# /notify rate limiting (per client IP, fixed window)
RATE_LIMIT_MAX_REQUESTS = int(os.getenv("RATE_LIMIT_MAX_REQUESTS", "10"))
RATE_LIMIT_WINDOW_SECONDS = int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "60"))
NOTIFY_TIMEOUT_SECONDS = int(os.getenv("NOTIFY_TIMEOUT_SECONDS", "15"))

# Giveaway wizard
WIZARD_SESSION_TTL_SECONDS = int(os.getenv("WIZARD_SESSION_TTL_SECONDS", "1800"))  # 0 = never evict
WIZARD_MAX_WINNERS = int(os.getenv("WIZARD_MAX_WINNERS", "20"))
WIZARD_MAX_DURATION_SECONDS = int(os.getenv("WIZARD_MAX_DURATION_SECONDS", str(90 * 86400)))
