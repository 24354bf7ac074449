from __future__ import annotations

import logging
import threading
import time
from typing import Any, Awaitable, Callable, Dict, Tuple

from flask import Flask, request

from .errors import NotFound, RelayError, ValidationError
from .relay import NotificationRelay, parse_recipient, parse_status

log = logging.getLogger("modrelay.web")

RunCoroutine = Callable[[Awaitable[Any]], Any]


class RateLimiter:
    """Fixed window request counter per client key."""

    def __init__(self, max_requests: int, window_seconds: int, clock: Callable[[], float] = time.monotonic):
        self.max_requests = max_requests
        self.window = window_seconds
        self.clock = clock
        self._hits: Dict[str, Tuple[float, int]] = {}
        self._lock = threading.Lock()

    def allow(self, key: str) -> bool:
        now = self.clock()
        with self._lock:
            # drop windows that ended so idle clients do not pile up
            for k in [k for k, (start, _) in self._hits.items() if (now - start) >= self.window]:
                self._hits.pop(k, None)
            start, count = self._hits.get(key, (now, 0))
            if count >= self.max_requests:
                return False
            self._hits[key] = (start, count + 1)
            return True


def create_app(
    relay: NotificationRelay,
    run_coroutine: RunCoroutine,
    is_ready: Callable[[], bool],
    integration_enabled: bool = True,
    rate_limiter: RateLimiter | None = None,
) -> Flask:
    """Build the HTTP surface.

    ``run_coroutine`` executes a relay coroutine to completion from the Flask
    worker thread (in production: submit to the bot's event loop and wait).
    """
    app = Flask("modrelay")

    @app.before_request
    def rate_limit():
        if rate_limiter is None or request.path != "/notify":
            return None
        if not rate_limiter.allow(request.remote_addr or "unknown"):
            log.warning("Rate limit exceeded for %s", request.remote_addr)
            return {"error": "Rate limit exceeded. Try again later."}, 429
        return None

    @app.get("/")
    def home():
        return "Discord Moderator Notification Bot API - Use POST /notify to send notifications"

    @app.get("/health")
    def health():
        return {"status": "ok", "discordConnected": bool(is_ready())}, 200

    @app.post("/notify")
    def notify():
        if not integration_enabled:
            return {"error": "Discord integration is currently disabled."}, 503

        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            data = {}
        discord_id = data.get("discordId")
        status = data.get("status")
        payload = data.get("payload") or {}

        if not discord_id or not status:
            return {"error": "Missing discordId or status in request body."}, 400

        try:
            recipient_id = parse_recipient(discord_id)
        except ValidationError as e:
            return {"error": str(e)}, 400

        if not is_ready():
            return {"error": "Discord bot is not connected."}, 503

        try:
            app_status = parse_status(status)
        except ValidationError as e:
            return {"error": str(e)}, 400

        details = payload.get("details") if isinstance(payload, dict) else None

        try:
            delivery = run_coroutine(relay.notify(recipient_id, app_status, details))
        except NotFound as e:
            return {"error": str(e)}, 404
        except RelayError as e:
            log.error("Error sending notification: %s", e)
            return {"error": "Failed to send notification", "details": str(e)}, 500

        return {
            "success": True,
            "message": "Notification sent successfully.",
            "recipient": delivery.recipient_tag,
        }, 200

    return app
