"""License issuance: key generation, webhook provisioning, persistence and BagiBagi registration.

:class:`LicenseIssuer` runs the ``/genkey`` flow without touching Discord. The
command layer supplies the request (including whether the bot may watch the
requested BagiBagi channel) and a delivery callback that DMs the purchaser.
"""

import logging
import re
import secrets
import string
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, List, Optional

from .storage import CustomerRecord, CustomerStore, LicenseRecord, LicenseStore, utcnow_iso
from .webhook_registrar import RegistrationResult, WebhookRegistrar

logger = logging.getLogger(__name__)

KEY_CHARS = string.ascii_uppercase + string.digits
KEY_SECTIONS = 4
KEY_SECTION_LENGTH = 4
KEY_PATTERN = re.compile(r"^[A-Z0-9]{4}-[A-Z0-9]{4}-[A-Z0-9]{4}-[A-Z0-9]{4}$")
TUTORIAL_URL_PATTERN = re.compile(r"^https?://[^\s/$.?#].[^\s]*$", re.IGNORECASE)


def generate_key(sections: int = KEY_SECTIONS, length: int = KEY_SECTION_LENGTH) -> str:
    return "-".join(
        "".join(secrets.choice(KEY_CHARS) for _ in range(length))
        for _ in range(sections)
    )


class IssuanceValidationError(ValueError):
    pass


class BagiBagiStatus(str, Enum):
    NOT_REQUESTED = "not_requested"
    REGISTERED = "registered"
    MISSING_PERMISSIONS = "missing_permissions"
    SKIPPED_NO_WEBHOOK = "skipped_no_webhook"


@dataclass
class IssuanceRequest:
    external_id: str
    owner_id: str
    owner_name: str
    tutorial_url: Optional[str] = None
    bagibagi_channel_id: Optional[str] = None
    # Whether the bot can view, read history and react in the BagiBagi channel.
    bagibagi_channel_permitted: bool = True
    koin_rate: int = 100


@dataclass
class IssuanceReport:
    license: LicenseRecord
    registration: RegistrationResult
    bagibagi_status: BagiBagiStatus = BagiBagiStatus.NOT_REQUESTED
    customer: Optional[CustomerRecord] = None
    detached_user_keys: List[str] = field(default_factory=list)
    delivered: bool = False

    @property
    def status(self) -> str:
        degraded = (
            not self.registration.ok
            or self.bagibagi_status in (BagiBagiStatus.MISSING_PERMISSIONS, BagiBagiStatus.SKIPPED_NO_WEBHOOK)
            or not self.delivered
        )
        return "partial" if degraded else "success"

    def summary_lines(self) -> List[str]:
        lines = [f"License `{self.license.key}` saved for Roblox ID `{self.license.roblox_id}`."]
        if self.registration.ok:
            lines.append(f"Webhook registered (user key `{self.registration.user_key}`).")
        else:
            lines.append(f"Webhook registration failed: {self.registration.error}")

        if self.bagibagi_status is BagiBagiStatus.REGISTERED and self.customer is not None:
            lines.append(
                f"BagiBagi registered on <#{self.customer.channel_id}> (rate {self.customer.koin_rate}/Koin)."
            )
            if self.detached_user_keys:
                lines.append("Previous channel owner(s) detached: " + ", ".join(self.detached_user_keys))
        elif self.bagibagi_status is BagiBagiStatus.MISSING_PERMISSIONS:
            lines.append(
                "BagiBagi registration skipped: I need View Channel, Read Message History "
                "and Add Reactions in that channel."
            )
        elif self.bagibagi_status is BagiBagiStatus.SKIPPED_NO_WEBHOOK:
            lines.append("BagiBagi registration skipped because webhook registration failed.")

        if self.delivered:
            lines.append("Credentials sent to the purchaser via DM.")
        else:
            lines.append("Could not DM the purchaser; credentials are shown in this channel.")
        return lines


Deliverer = Callable[[IssuanceReport], Awaitable[bool]]


def validate_request(request: IssuanceRequest) -> None:
    if not request.external_id or not request.external_id.strip():
        raise IssuanceValidationError("Roblox ID is required.")
    if not request.owner_id:
        raise IssuanceValidationError("Purchaser Discord user is required.")
    if request.tutorial_url and not TUTORIAL_URL_PATTERN.match(request.tutorial_url):
        raise IssuanceValidationError("Tutorial URL must be a valid http(s) link.")
    if request.bagibagi_channel_id and request.koin_rate < 1:
        raise IssuanceValidationError("Koin rate must be a positive number.")


class LicenseIssuer:
    def __init__(
        self,
        *,
        licenses: LicenseStore,
        customers: CustomerStore,
        registrar: WebhookRegistrar,
        key_factory: Callable[[], str] = generate_key,
    ):
        self.licenses = licenses
        self.customers = customers
        self.registrar = registrar
        self.key_factory = key_factory

    async def issue(self, request: IssuanceRequest, deliver: Optional[Deliverer] = None) -> IssuanceReport:
        """Run the issuance flow.

        Only validation is fatal (:class:`IssuanceValidationError`, raised before
        any side effect). Webhook registration, BagiBagi registration and
        delivery degrade into the returned report. Store errors propagate.
        """
        validate_request(request)
        external_id = request.external_id.strip()

        key = self.key_factory()
        registration = await self.registrar.register(external_id, request.owner_id, request.owner_name)
        if not registration.ok:
            logger.warning("Issuing %s without webhook: %s", key, registration.error)

        record = LicenseRecord(
            key=key,
            roblox_id=external_id,
            discord_id=str(request.owner_id),
            created_at=utcnow_iso(),
            tutorial_url=request.tutorial_url or None,
            webhook_user_key=registration.user_key if registration.ok else None,
            webhook_api_key=registration.api_key if registration.ok else None,
            webhook_url=registration.webhook_url if registration.ok else None,
        )
        await self.licenses.append(record)
        report = IssuanceReport(license=record, registration=registration)

        if request.bagibagi_channel_id:
            await self._register_bagibagi(request, report)

        if deliver is not None:
            report.delivered = await deliver(report)
        logger.info(
            "Issued license %s roblox_id=%s owner=%s status=%s bagibagi=%s",
            key,
            external_id,
            request.owner_id,
            report.status,
            report.bagibagi_status.value,
        )
        return report

    async def _register_bagibagi(self, request: IssuanceRequest, report: IssuanceReport) -> None:
        if not request.bagibagi_channel_permitted:
            report.bagibagi_status = BagiBagiStatus.MISSING_PERMISSIONS
            logger.warning("Missing permissions in BagiBagi channel %s", request.bagibagi_channel_id)
            return
        if not report.registration.ok or not report.license.webhook_user_key:
            report.bagibagi_status = BagiBagiStatus.SKIPPED_NO_WEBHOOK
            logger.warning(
                "Skipping BagiBagi registration for %s: webhook registration failed", report.license.key
            )
            return

        result = await self.customers.upsert(
            user_key=report.license.webhook_user_key,
            name=request.owner_name,
            channel_id=str(request.bagibagi_channel_id),
            koin_rate=request.koin_rate,
        )
        report.bagibagi_status = BagiBagiStatus.REGISTERED
        report.customer = result.customer
        report.detached_user_keys = result.detached


def resolve_attachments(attachments_dir: str | Path, names: Optional[str]) -> List[Path]:
    """Resolve a comma-separated list of file names inside ``attachments_dir``.

    Missing files and names escaping the directory are logged and skipped.
    """
    if not names:
        return []
    base = Path(attachments_dir).resolve()
    found: List[Path] = []
    for name in (part.strip() for part in names.split(",")):
        if not name:
            continue
        candidate = (base / name).resolve()
        if base not in candidate.parents:
            logger.warning("Refusing attachment outside %s: %s", base, name)
            continue
        if not candidate.is_file():
            logger.warning("Attachment not found: %s", name)
            continue
        found.append(candidate)
    return found
