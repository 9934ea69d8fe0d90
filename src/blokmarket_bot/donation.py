"""Donation notices posted by the BagiBagi bot.

The BagiBagi bot announces every donation in the customer's channel with a
fixed text template::

    💰 **Donasi Baru!**
    **{donor}** mengirim **{koin} Koin**
    ID Transaksi: {transaction_id}
    Pesan: {message}

Parsing that text is the only donation source today. It sits behind the
:class:`DonationSource` protocol so a structured feed can replace it later
without touching the relay.
"""

import re
from dataclasses import dataclass
from typing import Optional, Protocol

MARKER = "Donasi"
KOIN_WORD = "Koin"

DONATION_TEMPLATE = (
    "💰 **Donasi Baru!**\n"
    "**{donor}** mengirim **{koin} Koin**\n"
    "ID Transaksi: {transaction_id}\n"
    "Pesan: {message}"
)

_AMOUNT = r"(\d{1,3}(?:[.,]\d{3})+|\d+)"
_SENT_KOIN_RE = re.compile(r"mengirim\s+\*\*" + _AMOUNT + r"\s*Koin\*\*")
_KOIN_RE = re.compile(_AMOUNT + r"\s*Koin\b")
_TRANSACTION_RE = re.compile(r"ID Transaksi:[ \t]*(\S+)")
# The message is the last line of the template and may itself span lines.
_MESSAGE_RE = re.compile(r"^Pesan:[ \t]?(.*)\Z", re.MULTILINE | re.DOTALL)
_DONOR_RE = re.compile(r"^\*\*(.+?)\*\*\s+mengirim\b", re.MULTILINE)


@dataclass(frozen=True)
class ParsedDonation:
    koin_amount: int
    transaction_id: str
    message: str
    donor_name: str = "Anonymous"


class DonationSource(Protocol):
    def parse(self, text: str) -> Optional[ParsedDonation]:
        ...


class BagiBagiMessageParser:
    """Extracts donation data from BagiBagi notice text; returns None for anything else."""

    def parse(self, text: str) -> Optional[ParsedDonation]:
        if not text or MARKER not in text or KOIN_WORD not in text:
            return None

        # Donor names are free text, so the amount beside "mengirim" wins over any other "<n> Koin".
        koin_match = _SENT_KOIN_RE.search(text) or _KOIN_RE.search(text)
        if not koin_match:
            return None
        koin_amount = int(re.sub(r"[.,]", "", koin_match.group(1)))
        if koin_amount < 1:
            return None

        transaction_match = _TRANSACTION_RE.search(text)
        message_match = _MESSAGE_RE.search(text)
        donor_match = _DONOR_RE.search(text)

        return ParsedDonation(
            koin_amount=koin_amount,
            transaction_id=transaction_match.group(1) if transaction_match else "unknown",
            message=message_match.group(1) if message_match else "",
            donor_name=donor_match.group(1).strip() if donor_match else "Anonymous",
        )


def message_text(content: str, embeds=()) -> str:
    """Flatten a message's content and embeds into one text block for parsing."""
    parts = [content or ""]
    for embed in embeds:
        parts.extend(filter(None, [embed.title, embed.description]))
        for field in embed.fields:
            parts.extend(filter(None, [field.name, field.value]))
    return "\n".join(part for part in parts if part)
