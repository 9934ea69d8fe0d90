from types import SimpleNamespace

import pytest

from blokmarket_bot.donation import DONATION_TEMPLATE, BagiBagiMessageParser
from blokmarket_bot.listener import FAILURE_REACTION, SUCCESS_REACTION, DonationListener

BAGIBAGI_BOT_ID = "4242"


class _FakeRelay:
    def __init__(self, outcome=True):
        self.outcome = outcome
        self.calls = []

    async def relay(self, customer, parsed):
        self.calls.append((customer, parsed))
        return self.outcome


class _FakeMessage:
    def __init__(self, content, *, author_id=BAGIBAGI_BOT_ID, channel_id=777):
        self.id = 1
        self.content = content
        self.embeds = []
        self.author = SimpleNamespace(id=int(author_id))
        self.channel = SimpleNamespace(id=channel_id)
        self.reactions = []

    async def add_reaction(self, emoji):
        self.reactions.append(emoji)


def _notice(koin="1.500"):
    return DONATION_TEMPLATE.format(donor="Budi", koin=koin, transaction_id="trx-1", message="mantap")


def _listener(customer_store, relay):
    return DonationListener(
        bagibagi_bot_id=BAGIBAGI_BOT_ID,
        source=BagiBagiMessageParser(),
        customers=customer_store,
        relay=relay,
    )


@pytest.mark.asyncio
async def test_unregistered_channel_makes_no_relay_call(customer_store):
    relay = _FakeRelay()
    message = _FakeMessage(_notice())

    assert await _listener(customer_store, relay).handle(message) is None
    assert relay.calls == []
    assert message.reactions == []


@pytest.mark.asyncio
async def test_registered_channel_relays_and_reacts(customer_store):
    await customer_store.upsert("uk_1", "alice", "777", 100)
    relay = _FakeRelay(outcome=True)
    message = _FakeMessage(_notice())

    assert await _listener(customer_store, relay).handle(message) is True

    customer, parsed = relay.calls[0]
    assert customer.user_key == "uk_1"
    assert parsed.koin_amount == 1500
    assert message.reactions == [SUCCESS_REACTION]


@pytest.mark.asyncio
async def test_failed_relay_reacts_with_failure_marker(customer_store):
    await customer_store.upsert("uk_1", "alice", "777", 100)
    message = _FakeMessage(_notice())

    assert await _listener(customer_store, _FakeRelay(outcome=False)).handle(message) is False
    assert message.reactions == [FAILURE_REACTION]


@pytest.mark.asyncio
async def test_messages_from_other_authors_are_ignored(customer_store):
    await customer_store.upsert("uk_1", "alice", "777", 100)
    relay = _FakeRelay()
    message = _FakeMessage(_notice(), author_id="1")

    assert await _listener(customer_store, relay).handle(message) is None
    assert relay.calls == []


@pytest.mark.asyncio
async def test_non_donation_text_from_bagibagi_is_ignored(customer_store):
    await customer_store.upsert("uk_1", "alice", "777", 100)
    relay = _FakeRelay()
    message = _FakeMessage("Selamat datang di BagiBagi!")

    assert await _listener(customer_store, relay).handle(message) is None
    assert relay.calls == []
    assert message.reactions == []


@pytest.mark.asyncio
async def test_listener_disabled_without_bot_id(customer_store):
    relay = _FakeRelay()
    listener = DonationListener(
        bagibagi_bot_id=None, source=BagiBagiMessageParser(), customers=customer_store, relay=relay
    )

    assert await listener.handle(_FakeMessage(_notice())) is None
