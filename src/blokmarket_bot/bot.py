import asyncio
import logging
from typing import Optional

import discord
from discord.ext import commands

from .api import create_app
from .commands import register_commands
from .config import Settings, setup_logging
from .donation import BagiBagiMessageParser
from .licensing import LicenseIssuer
from .listener import DonationListener
from .obfuscator import PrometheusObfuscator
from .relay import DonationRelay
from .storage import CustomerStore, LicenseStore
from .webhook_registrar import WebhookRegistrar
from .yaml_config import YAMLConfig

logger = logging.getLogger(__name__)


class BlokMarketBot(commands.Bot):
    def __init__(
        self,
        settings: Settings,
        *,
        yaml_config: YAMLConfig,
        licenses: LicenseStore,
        customers: CustomerStore,
        registrar: WebhookRegistrar,
        relay: DonationRelay,
        obfuscator: PrometheusObfuscator,
    ):
        intents = discord.Intents.default()
        intents.message_content = True
        super().__init__(command_prefix=commands.when_mentioned, intents=intents)
        self.settings = settings
        self.yaml_config = yaml_config
        self.licenses = licenses
        self.customers = customers
        self.registrar = registrar
        self.relay = relay
        self.obfuscator = obfuscator
        self.issuer = LicenseIssuer(licenses=licenses, customers=customers, registrar=registrar)
        self.donations = DonationListener(
            bagibagi_bot_id=settings.bagibagi_bot_id,
            source=BagiBagiMessageParser(),
            customers=customers,
            relay=relay,
        )

    async def setup_hook(self) -> None:
        logger.info("License store at %s, customer store at %s", self.licenses.path, self.customers.path)
        if not self.registrar.configured:
            logger.warning("WEBHOOK_SERVER_URL/WEBHOOK_MASTER_KEY not set; licenses will be issued without webhooks")
        if not self.settings.bagibagi_bot_id:
            logger.warning("BAGIBAGI_BOT_ID not set; donation relay is disabled")
        try:
            synced = await self.tree.sync()
            logger.info("Synced %d slash command(s)", len(synced))
        except discord.HTTPException as e:
            logger.error("Failed to sync commands: %s", e)

    async def close(self) -> None:
        """Close the bot and clean up resources."""
        await self.registrar.close()
        await self.relay.close()
        await super().close()

    async def on_ready(self):
        logger.info("Logged in as %s (%s)", self.user, self.user.id if self.user else "unknown")
        logger.info("Server count: %d, commands loaded: %d", len(self.guilds), len(self.tree.get_commands()))
        await self.change_presence(
            activity=discord.Game(name=self.yaml_config.get("bot_settings.status_text", "/genkey"))
        )

    async def on_message(self, message: discord.Message) -> None:
        if self.user and message.author.id == self.user.id:
            return
        try:
            await self.donations.handle(message)
        except Exception:  # noqa: BLE001
            logger.exception("Failed to process donation message %s", message.id)


def create_bot(settings: Settings, yaml_config: Optional[YAMLConfig] = None) -> BlokMarketBot:
    bot = BlokMarketBot(
        settings,
        yaml_config=yaml_config or YAMLConfig(),
        licenses=LicenseStore(settings.licenses_path),
        customers=CustomerStore(settings.customers_path),
        registrar=WebhookRegistrar(
            server_url=settings.webhook_server_url,
            master_key=settings.webhook_master_key,
            timeout=settings.http_timeout,
        ),
        relay=DonationRelay(base_url=settings.donation_base_url, timeout=settings.http_timeout),
        obfuscator=PrometheusObfuscator(
            lua_path=settings.lua_path,
            prometheus_path=settings.prometheus_path,
            temp_dir=settings.temp_dir,
            max_bytes=settings.max_obfuscate_bytes,
            timeout=settings.obfuscate_timeout,
        ),
    )
    register_commands(bot)
    return bot


async def run_bot():
    import uvicorn

    settings = Settings()
    setup_logging(settings)
    try:
        settings.validate(require_discord=True)
    except RuntimeError as exc:
        logger.error("%s", exc)
        return

    bot = create_bot(settings)
    # The API shares the bot's license store so both go through one write lock.
    server = uvicorn.Server(
        uvicorn.Config(
            create_app(settings, bot.licenses),
            host=settings.api_host,
            port=settings.api_port,
            log_config=None,
        )
    )
    async with bot:
        bot_task = asyncio.create_task(bot.start(settings.discord_token), name="discord")
        api_task = asyncio.create_task(server.serve(), name="api")
        logger.info("Validation endpoint: http://%s:%s/api/validate", settings.api_host, settings.api_port)
        done, pending = await asyncio.wait({bot_task, api_task}, return_when=asyncio.FIRST_COMPLETED)

        logger.info("Shutting down")
        server.should_exit = True
        if not bot.is_closed():
            await bot.close()
        await asyncio.gather(*pending, return_exceptions=True)
        for task in done:
            task.result()


def main() -> None:
    asyncio.run(run_bot())


if __name__ == "__main__":
    main()
