"""Tests for the JSON license and customer stores."""

import asyncio
import json

import pytest

from blokmarket_bot.storage import CustomerStore, LicenseRecord, LicenseStore


def _record(key="AAAA-BBBB-CCCC-DDDD", roblox_id="12345"):
    return LicenseRecord(key=key, roblox_id=roblox_id, discord_id="999", created_at="2026-01-01T00:00:00Z")


@pytest.mark.asyncio
async def test_missing_file_reads_as_empty(license_store):
    assert await license_store.find_by_key("AAAA-BBBB-CCCC-DDDD") is None
    assert await license_store.all() == []


@pytest.mark.asyncio
async def test_append_persists_camel_case_document(license_store):
    await license_store.append(_record())

    document = json.loads(license_store.path.read_text(encoding="utf-8"))
    assert document == {
        "licenses": [
            {
                "key": "AAAA-BBBB-CCCC-DDDD",
                "robloxId": "12345",
                "discordId": "999",
                "createdAt": "2026-01-01T00:00:00Z",
            }
        ]
    }


@pytest.mark.asyncio
async def test_find_by_key_reads_existing_file(tmp_path):
    path = tmp_path / "licenses.json"
    path.write_text(
        json.dumps({"licenses": [{"key": "K1", "robloxId": "1", "discordId": "2", "createdAt": "x", "webhookUrl": "u"}]}),
        encoding="utf-8",
    )
    store = LicenseStore(path)

    record = await store.find_by_key("K1")

    assert record.roblox_id == "1"
    assert record.webhook_url == "u"
    assert record.last_used is None


@pytest.mark.asyncio
async def test_touch_last_used_updates_only_matching_record(license_store):
    await license_store.append(_record("K1"))
    await license_store.append(_record("K2"))

    touched = await license_store.touch_last_used("K2", "2026-02-02T00:00:00Z")

    assert touched.last_used == "2026-02-02T00:00:00Z"
    assert (await license_store.find_by_key("K1")).last_used is None
    assert (await license_store.find_by_key("K2")).last_used == "2026-02-02T00:00:00Z"
    assert await license_store.touch_last_used("missing") is None


@pytest.mark.asyncio
async def test_concurrent_appends_keep_every_record(license_store):
    await asyncio.gather(*(license_store.append(_record(f"KEY-{i}")) for i in range(25)))

    keys = {record.key for record in await license_store.all()}
    assert keys == {f"KEY-{i}" for i in range(25)}


@pytest.mark.asyncio
async def test_append_propagates_os_error(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("", encoding="utf-8")
    store = LicenseStore(blocker / "licenses.json")

    with pytest.raises(OSError):
        await store.append(_record())


@pytest.mark.asyncio
async def test_upsert_same_user_key_keeps_one_record(customer_store):
    first = await customer_store.upsert("uk_1", "alice", "100", 100)
    second = await customer_store.upsert("uk_1", "alice2", "200", 150)

    assert first.created is True
    assert second.created is False
    document = json.loads(customer_store.path.read_text(encoding="utf-8"))
    assert len(document["customers"]) == 1
    stored = document["customers"][0]
    assert stored["channelId"] == "200"
    assert stored["name"] == "alice2"
    assert stored["koinRate"] == 150
    assert "updatedAt" in stored
    assert await customer_store.find_by_channel("100") is None
    assert (await customer_store.find_by_channel(200)).user_key == "uk_1"


@pytest.mark.asyncio
async def test_upsert_onto_occupied_channel_detaches_previous_customer(customer_store):
    await customer_store.upsert("uk_old", "old", "555", 100)

    result = await customer_store.upsert("uk_new", "new", "555", 100)

    assert result.detached == ["uk_old"]
    assert (await customer_store.find_by_channel("555")).user_key == "uk_new"
    assert await customer_store.find_by_user_key("uk_old") is None


@pytest.mark.asyncio
@pytest.mark.parametrize("rate", [0, -5, True])
async def test_upsert_rejects_non_positive_rate(customer_store, rate):
    with pytest.raises(ValueError):
        await customer_store.upsert("uk", "name", "1", rate)
    assert not customer_store.path.exists()


@pytest.mark.asyncio
async def test_customer_store_ignores_other_collections(tmp_path):
    path = tmp_path / "customers.json"
    path.write_text(json.dumps({"licenses": [{"key": "x"}]}), encoding="utf-8")

    assert await CustomerStore(path).find_by_channel("1") is None
