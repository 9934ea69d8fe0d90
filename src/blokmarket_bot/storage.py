"""JSON-document stores for licenses and BagiBagi customers.

Each store keeps its whole collection in one JSON file (``{"licenses": [...]}``
or ``{"customers": [...]}``) and rewrites it on every mutation. All
read-modify-write cycles of a store run under that store's ``asyncio.Lock``,
and the file is replaced atomically, so interleaved commands and API
requests cannot lose each other's updates.
"""

import asyncio
import json
import logging
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class LicenseRecord:
    key: str
    roblox_id: str
    discord_id: str
    created_at: str
    last_used: Optional[str] = None
    tutorial_url: Optional[str] = None
    webhook_user_key: Optional[str] = None
    webhook_api_key: Optional[str] = None
    webhook_url: Optional[str] = None

    @property
    def has_webhook(self) -> bool:
        return bool(self.webhook_user_key)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "key": self.key,
            "robloxId": self.roblox_id,
            "discordId": self.discord_id,
            "createdAt": self.created_at,
        }
        optional = {
            "lastUsed": self.last_used,
            "tutorialUrl": self.tutorial_url,
            "webhookUserKey": self.webhook_user_key,
            "webhookApiKey": self.webhook_api_key,
            "webhookUrl": self.webhook_url,
        }
        data.update({k: v for k, v in optional.items() if v is not None})
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LicenseRecord":
        return cls(
            key=data["key"],
            roblox_id=str(data.get("robloxId", "")),
            discord_id=str(data.get("discordId", "")),
            created_at=data.get("createdAt", ""),
            last_used=data.get("lastUsed"),
            tutorial_url=data.get("tutorialUrl"),
            webhook_user_key=data.get("webhookUserKey"),
            webhook_api_key=data.get("webhookApiKey"),
            webhook_url=data.get("webhookUrl"),
        )


@dataclass
class CustomerRecord:
    name: str
    user_key: str
    channel_id: str
    koin_rate: int
    created_at: str
    updated_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "name": self.name,
            "userKey": self.user_key,
            "channelId": self.channel_id,
            "koinRate": self.koin_rate,
            "createdAt": self.created_at,
        }
        if self.updated_at is not None:
            data["updatedAt"] = self.updated_at
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CustomerRecord":
        return cls(
            name=data.get("name", ""),
            user_key=data["userKey"],
            channel_id=str(data.get("channelId", "")),
            koin_rate=int(data.get("koinRate", 1)),
            created_at=data.get("createdAt", ""),
            updated_at=data.get("updatedAt"),
        )


@dataclass
class UpsertResult:
    customer: CustomerRecord
    created: bool
    # User keys of customers that were bound to the same channel and got detached.
    detached: List[str]


class JsonDocumentStore:
    """Single JSON document holding one top-level list under ``collection``."""

    def __init__(self, path: str | Path, collection: str):
        self.path = Path(path)
        self.collection = collection
        self._lock = asyncio.Lock()

    def _read_sync(self) -> List[Dict[str, Any]]:
        try:
            with self.path.open("r", encoding="utf-8") as fh:
                document = json.load(fh)
        except FileNotFoundError:
            return []
        items = document.get(self.collection, []) if isinstance(document, dict) else []
        return list(items)

    def _write_sync(self, items: List[Dict[str, Any]]) -> None:
        directory = self.path.parent
        directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump({self.collection: items}, fh, indent=2, ensure_ascii=False)
            os.replace(tmp_name, self.path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    async def read_all(self) -> List[Dict[str, Any]]:
        async with self._lock:
            return await asyncio.to_thread(self._read_sync)

    async def _load(self) -> List[Dict[str, Any]]:
        return await asyncio.to_thread(self._read_sync)

    async def _save(self, items: List[Dict[str, Any]]) -> None:
        await asyncio.to_thread(self._write_sync, items)


class LicenseStore(JsonDocumentStore):
    def __init__(self, path: str | Path):
        super().__init__(path, "licenses")

    async def append(self, record: LicenseRecord) -> None:
        """Add a license and persist the collection. ``OSError`` propagates."""
        async with self._lock:
            items = await self._load()
            items.append(record.to_dict())
            await self._save(items)
        logger.info("Stored license %s for roblox_id=%s", record.key, record.roblox_id)

    async def find_by_key(self, key: str) -> Optional[LicenseRecord]:
        for item in await self.read_all():
            if item.get("key") == key:
                return LicenseRecord.from_dict(item)
        return None

    async def touch_last_used(self, key: str, timestamp: Optional[str] = None) -> Optional[LicenseRecord]:
        stamp = timestamp or utcnow_iso()
        async with self._lock:
            items = await self._load()
            for item in items:
                if item.get("key") == key:
                    item["lastUsed"] = stamp
                    await self._save(items)
                    return LicenseRecord.from_dict(item)
        return None

    async def all(self) -> List[LicenseRecord]:
        return [LicenseRecord.from_dict(item) for item in await self.read_all()]


class CustomerStore(JsonDocumentStore):
    def __init__(self, path: str | Path):
        super().__init__(path, "customers")

    async def upsert(self, user_key: str, name: str, channel_id: str, koin_rate: int) -> UpsertResult:
        """Create or overwrite the customer identified by ``user_key``.

        A channel serves a single customer: other records bound to
        ``channel_id`` are removed and reported in ``UpsertResult.detached``.
        """
        if not isinstance(koin_rate, int) or isinstance(koin_rate, bool) or koin_rate < 1:
            raise ValueError("koin_rate must be a positive integer")
        channel_id = str(channel_id)
        now = utcnow_iso()

        async with self._lock:
            items = await self._load()
            detached = [
                item["userKey"]
                for item in items
                if str(item.get("channelId")) == channel_id and item.get("userKey") != user_key
            ]
            items = [
                item
                for item in items
                if not (str(item.get("channelId")) == channel_id and item.get("userKey") != user_key)
            ]

            existing = next((item for item in items if item.get("userKey") == user_key), None)
            if existing is not None:
                existing.update({"name": name, "channelId": channel_id, "koinRate": koin_rate, "updatedAt": now})
                record = CustomerRecord.from_dict(existing)
                created = False
            else:
                record = CustomerRecord(
                    name=name,
                    user_key=user_key,
                    channel_id=channel_id,
                    koin_rate=koin_rate,
                    created_at=now,
                )
                items.append(record.to_dict())
                created = True
            await self._save(items)

        if detached:
            logger.warning("Channel %s reassigned to %s, detached %s", channel_id, user_key, detached)
        logger.info("%s BagiBagi customer %s on channel %s", "Registered" if created else "Updated", user_key, channel_id)
        return UpsertResult(customer=record, created=created, detached=detached)

    async def find_by_channel(self, channel_id: str | int) -> Optional[CustomerRecord]:
        channel_id = str(channel_id)
        for item in await self.read_all():
            if str(item.get("channelId")) == channel_id:
                return CustomerRecord.from_dict(item)
        return None

    async def find_by_user_key(self, user_key: str) -> Optional[CustomerRecord]:
        for item in await self.read_all():
            if item.get("userKey") == user_key:
                return CustomerRecord.from_dict(item)
        return None
