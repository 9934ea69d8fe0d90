import os
import logging
from dataclasses import dataclass
from typing import Optional, Sequence


def _split_env(name: str, default: str = "") -> tuple[str, ...]:
    return tuple(item.strip() for item in os.getenv(name, default).split(",") if item.strip())


@dataclass
class Settings:
    """Runtime configuration pulled from environment variables."""

    discord_token: Optional[str] = os.getenv("DISCORD_BOT_TOKEN") or os.getenv("DISCORD_TOKEN")
    allowed_guild_ids: Sequence[str] = _split_env("ALLOWED_GUILD_IDS")
    api_host: str = os.getenv("API_HOST", "0.0.0.0")
    api_port: int = int(os.getenv("API_PORT", "3000"))
    cors_origins: Sequence[str] = _split_env("CORS_ORIGINS", "*")
    licenses_path: str = os.getenv("LICENSES_FILE", "licenses.json")
    customers_path: str = os.getenv("CUSTOMERS_FILE", "bagibagi_customers.json")
    attachments_dir: str = os.getenv("ATTACHMENTS_DIR", "attachments")
    webhook_server_url: Optional[str] = os.getenv("WEBHOOK_SERVER_URL")
    webhook_master_key: Optional[str] = os.getenv("WEBHOOK_MASTER_KEY")
    vps_url: Optional[str] = os.getenv("VPS_URL")
    bagibagi_bot_id: Optional[str] = os.getenv("BAGIBAGI_BOT_ID")
    default_koin_rate: int = int(os.getenv("DEFAULT_KOIN_RATE", "100"))
    http_timeout: float = float(os.getenv("HTTP_TIMEOUT", "15"))
    lua_path: str = os.getenv("LUA_PATH", "lua")
    prometheus_path: str = os.getenv("PROMETHEUS_PATH", "prometheus")
    temp_dir: str = os.getenv("TEMP_DIR", "temp")
    max_obfuscate_bytes: int = int(os.getenv("MAX_FILE_SIZE", "512000"))
    obfuscate_timeout: float = float(os.getenv("OBFUSCATE_TIMEOUT", "60"))
    log_file: Optional[str] = os.getenv("LOG_FILE")
    log_max_bytes: int = int(os.getenv("LOG_MAX_BYTES", "1048576"))
    log_backup_count: int = int(os.getenv("LOG_BACKUP_COUNT", "5"))

    @property
    def has_discord(self) -> bool:
        return bool(self.discord_token)

    @property
    def has_webhook_server(self) -> bool:
        return bool(self.webhook_server_url and self.webhook_master_key)

    @property
    def donation_base_url(self) -> Optional[str]:
        """Base URL donations are relayed to; the webhook server unless VPS_URL overrides it."""
        return self.vps_url or self.webhook_server_url

    def is_guild_allowed(self, guild_id: int | str) -> bool:
        # An empty whitelist means the bot is not restricted to any guild.
        if not self.allowed_guild_ids:
            return True
        return str(guild_id) in self.allowed_guild_ids

    def validate(self, *, require_discord: bool = False, require_webhook: bool = False) -> None:
        """Validate required environment variables before start-up.

        Args:
            require_discord: Whether DISCORD_BOT_TOKEN must be present.
            require_webhook: Whether the webhook server URL and master key must be present.
        Raises:
            RuntimeError: If any required variable is missing.
        """
        missing = []
        if require_discord and not self.discord_token:
            missing.append("DISCORD_BOT_TOKEN")
        if require_webhook and not self.webhook_server_url:
            missing.append("WEBHOOK_SERVER_URL")
        if require_webhook and not self.webhook_master_key:
            missing.append("WEBHOOK_MASTER_KEY")
        if missing:
            raise RuntimeError(
                "Missing required environment variables: " + ", ".join(missing)
            )
        if self.default_koin_rate < 1:
            raise RuntimeError("DEFAULT_KOIN_RATE must be a positive integer")


def setup_logging(settings: Settings, *, level: int = logging.INFO) -> None:
    """Configure console + rotating file logging once per process."""
    handlers = [logging.StreamHandler()]
    if settings.log_file:
        from logging.handlers import RotatingFileHandler

        file_handler = RotatingFileHandler(
            settings.log_file,
            maxBytes=settings.log_max_bytes,
            backupCount=settings.log_backup_count,
        )
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")
        )
        handlers.append(file_handler)

    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        handlers=handlers,
    )
