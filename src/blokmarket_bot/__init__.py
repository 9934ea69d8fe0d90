"""
BlokMarket Discord bot, license validation API and BagiBagi donation relay.

Run the bot (the validation API is served from the same process) with:
    python -m blokmarket_bot.bot

Run only the validation API with:
    python -m blokmarket_bot.api
"""

__all__ = [
    "api",
    "bot",
    "commands",
    "config",
    "donation",
    "embeds",
    "licensing",
    "listener",
    "moderation",
    "obfuscator",
    "relay",
    "storage",
    "webhook_registrar",
    "yaml_config",
]
