import logging
from typing import Any, Dict, Optional

import httpx

from .donation import ParsedDonation
from .storage import CustomerRecord

logger = logging.getLogger(__name__)

PLATFORM = "bagibagi"


def build_payload(customer: CustomerRecord, parsed: ParsedDonation) -> Dict[str, Any]:
    return {
        "platform": PLATFORM,
        "donor_name": parsed.donor_name,
        "amount": parsed.koin_amount * customer.koin_rate,
        "koin": parsed.koin_amount,
        "message": parsed.message,
        "transaction_id": parsed.transaction_id,
    }


class DonationRelay:
    """Forwards parsed donations to the customer's donation webhook, once, best effort."""

    def __init__(
        self,
        *,
        base_url: Optional[str],
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/") if base_url else None
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def webhook_url(self, user_key: str) -> str:
        return f"{self.base_url}/donation/{user_key}/webhook"

    async def relay(self, customer: CustomerRecord, parsed: ParsedDonation) -> bool:
        if not self.base_url:
            logger.error("Cannot relay donation %s: VPS_URL is not configured", parsed.transaction_id)
            return False

        payload = build_payload(customer, parsed)
        client = await self._get_client()
        try:
            resp = await client.post(self.webhook_url(customer.user_key), json=payload)
        except httpx.HTTPError as exc:
            logger.error(
                "Donation relay failed user_key=%s transaction=%s: %s",
                customer.user_key,
                parsed.transaction_id,
                exc,
            )
            return False

        if not resp.is_success:
            logger.error(
                "Donation relay rejected status=%s user_key=%s transaction=%s body=%s",
                resp.status_code,
                customer.user_key,
                parsed.transaction_id,
                resp.text,
            )
            return False

        logger.info(
            "Relayed donation transaction=%s koin=%s amount=%s to %s",
            parsed.transaction_id,
            payload["koin"],
            payload["amount"],
            customer.user_key,
        )
        return True
