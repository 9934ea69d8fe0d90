import copy
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG: Dict[str, Any] = {
    "bot_settings": {
        "brand": "BLOKMARKET",
        "script_id": "DONATE_PLATFORM",
        "sync_allowed_user_ids": [],
        "status_text": "/genkey | BLOKMARKET",
    },
    "messages": {
        "guild_only": "**This command can only be used in a server!**",
        "access_denied": (
            "**ACCESS DENIED**\n\n"
            "This bot is **private** and not authorized for this server.\n"
            "> This incident has been logged and reported.\n\n"
            "If you believe this is an error, contact the bot owner."
        ),
        "missing_permission": "**You don't have permission to use this command!**\n> Required: {permission}",
        "bot_missing_permission": "**I don't have permission to do that!**\n> Required: {permission}",
        "command_error": "❌ Something went wrong while running this command.",
        "genkey_failed": "Failed to generate license. Please try again.",
        "not_authorized": "❌ You are not authorized to use this command.",
    },
}


class YAMLConfig:
    """Bot messages and small bot settings loaded from ``config.yaml``.

    Values missing from the file fall back to :data:`DEFAULT_CONFIG`, so the
    bot runs without any YAML file present.
    """

    def __init__(self, path: str | Path = "config.yaml"):
        self.path = Path(path)
        self.data: Dict[str, Any] = copy.deepcopy(DEFAULT_CONFIG)
        self.reload()

    def reload(self) -> None:
        if not self.path.exists():
            logger.debug("No YAML config at %s, using defaults", self.path)
            return
        with self.path.open("r", encoding="utf-8") as fh:
            loaded = yaml.safe_load(fh) or {}
        if not isinstance(loaded, dict):
            raise ValueError(f"{self.path} must contain a mapping at the top level")
        self.data = _merge(copy.deepcopy(DEFAULT_CONFIG), loaded)
        logger.info("Loaded YAML config from %s", self.path)

    def get(self, dotted_key: str, default: Any = None) -> Any:
        node: Any = self.data
        for part in dotted_key.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    def get_message(self, key: str, **kwargs: Any) -> str:
        template: Optional[str] = self.get(f"messages.{key}")
        if template is None:
            return key
        return template.format(**kwargs) if kwargs else template


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            base[key] = _merge(base[key], value)
        else:
            base[key] = value
    return base
