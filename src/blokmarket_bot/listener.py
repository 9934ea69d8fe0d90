import logging
from typing import Optional

import discord

from .donation import DonationSource, message_text
from .relay import DonationRelay
from .storage import CustomerStore

logger = logging.getLogger(__name__)

SUCCESS_REACTION = "✅"
FAILURE_REACTION = "❌"


class DonationListener:
    """Watches BagiBagi bot posts and relays donations for registered channels."""

    def __init__(
        self,
        *,
        bagibagi_bot_id: Optional[str],
        source: DonationSource,
        customers: CustomerStore,
        relay: DonationRelay,
    ):
        self.bagibagi_bot_id = str(bagibagi_bot_id) if bagibagi_bot_id else None
        self.source = source
        self.customers = customers
        self.relay = relay

    async def handle(self, message: discord.Message) -> Optional[bool]:
        """Return the relay outcome, or None when the message is not a relayable donation."""
        if not self.bagibagi_bot_id or str(message.author.id) != self.bagibagi_bot_id:
            return None

        parsed = self.source.parse(message_text(message.content, message.embeds))
        if parsed is None:
            return None

        customer = await self.customers.find_by_channel(message.channel.id)
        if customer is None:
            logger.info(
                "Donation %s on unregistered channel %s ignored", parsed.transaction_id, message.channel.id
            )
            return None

        ok = await self.relay.relay(customer, parsed)
        try:
            await message.add_reaction(SUCCESS_REACTION if ok else FAILURE_REACTION)
        except discord.HTTPException as exc:
            logger.warning("Could not react to donation message %s: %s", message.id, exc)
        return ok
