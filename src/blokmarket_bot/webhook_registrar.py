import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)


@dataclass
class RegistrationResult:
    ok: bool
    user_key: Optional[str] = None
    api_key: Optional[str] = None
    webhook_url: Optional[str] = None
    error: Optional[str] = None


class WebhookRegistrar:
    """Provisions per-user donation webhook credentials on the webhook server."""

    def __init__(
        self,
        *,
        server_url: Optional[str],
        master_key: Optional[str],
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.server_url = server_url.rstrip("/") if server_url else None
        self.master_key = master_key
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def configured(self) -> bool:
        return bool(self.server_url and self.master_key)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the persistent async HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.server_url or "",
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def register(self, external_id: str, owner_id: str, display_name: str) -> RegistrationResult:
        if not self.configured:
            return RegistrationResult(ok=False, error="Webhook server is not configured")

        payload = {
            "robloxId": external_id,
            "discordId": owner_id,
            "discordUsername": display_name,
        }
        client = await self._get_client()
        try:
            resp = await client.post(
                "/admin/users/register",
                headers={"X-Master-Key": self.master_key or ""},
                json=payload,
            )
            resp.raise_for_status()
            data: Dict[str, Any] = resp.json()
        except httpx.HTTPStatusError as exc:
            body = exc.response.text if exc.response is not None else ""
            logger.error(
                "Webhook registration failed status=%s roblox_id=%s body=%s",
                exc.response.status_code,
                external_id,
                body,
            )
            return RegistrationResult(ok=False, error=f"HTTP {exc.response.status_code}: {_error_message(exc.response)}")
        except httpx.HTTPError as exc:
            logger.error("Webhook registration request failed roblox_id=%s: %s", external_id, exc)
            return RegistrationResult(ok=False, error=str(exc) or exc.__class__.__name__)
        except ValueError:
            logger.error("Webhook server returned a non-JSON body for roblox_id=%s", external_id)
            return RegistrationResult(ok=False, error="Webhook server returned an invalid response")

        # Some deployments wrap the credentials in a {"data": {...}} envelope.
        if isinstance(data, dict) and isinstance(data.get("data"), dict):
            data = data["data"]
        if not isinstance(data, dict) or not data.get("userKey"):
            logger.error("Webhook server response is missing userKey for roblox_id=%s", external_id)
            return RegistrationResult(ok=False, error="Webhook server response is missing userKey")

        logger.info("Registered webhook user %s for roblox_id=%s", data["userKey"], external_id)
        return RegistrationResult(
            ok=True,
            user_key=data["userKey"],
            api_key=data.get("apiKey"),
            webhook_url=data.get("webhookUrl"),
        )


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error") or body.get("detail") or response.reason_phrase)
    return response.reason_phrase
