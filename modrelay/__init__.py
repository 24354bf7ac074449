"""Moderator relay bot.

- config: environment configuration
- errors: error taxonomy shared by the wizard, relay and adapters
- sessions: per-user giveaway wizard sessions
- wizard: stage forms, validation and the giveaway wizard controller
- events: typed interaction events and component id codec
- relay: moderator application notifications and review decisions
- gateway: discord.py adapters for messaging, roles and channels
- web: Flask app exposing /notify and /health
- bot: discord client wiring it all together
"""
