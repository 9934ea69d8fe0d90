"""Tests for key generation and the license issuance flow."""

import pytest

from blokmarket_bot.licensing import (
    KEY_CHARS,
    KEY_PATTERN,
    BagiBagiStatus,
    IssuanceRequest,
    IssuanceValidationError,
    LicenseIssuer,
    generate_key,
    resolve_attachments,
)
from blokmarket_bot.webhook_registrar import RegistrationResult


class _FakeRegistrar:
    def __init__(self, result: RegistrationResult):
        self.result = result
        self.calls = []

    async def register(self, external_id, owner_id, display_name):
        self.calls.append((external_id, owner_id, display_name))
        return self.result


OK_REGISTRATION = RegistrationResult(ok=True, user_key="uk_1", api_key="ak_1", webhook_url="https://hooks.example/uk_1")
FAILED_REGISTRATION = RegistrationResult(ok=False, error="HTTP 500: boom")


def _issuer(license_store, customer_store, registration=OK_REGISTRATION):
    registrar = _FakeRegistrar(registration)
    issuer = LicenseIssuer(
        licenses=license_store,
        customers=customer_store,
        registrar=registrar,
        key_factory=lambda: "AAAA-BBBB-CCCC-DDDD",
    )
    return issuer, registrar


def _delivery(succeeds=True):
    delivered = []

    async def deliver(report):
        delivered.append(report)
        return succeeds

    return deliver, delivered


def test_generated_keys_match_format():
    for _ in range(200):
        key = generate_key()
        assert KEY_PATTERN.match(key)
        assert set(key.replace("-", "")) <= set(KEY_CHARS)


def test_generated_keys_differ():
    assert len({generate_key() for _ in range(50)}) == 50


@pytest.mark.asyncio
async def test_issue_with_webhook_success(license_store, customer_store):
    issuer, registrar = _issuer(license_store, customer_store)
    deliver, delivered = _delivery()

    report = await issuer.issue(IssuanceRequest(external_id="12345", owner_id="999", owner_name="alice"), deliver)

    records = await license_store.all()
    assert len(records) == 1
    stored = records[0]
    assert stored.key == "AAAA-BBBB-CCCC-DDDD"
    assert (stored.roblox_id, stored.discord_id) == ("12345", "999")
    assert (stored.webhook_user_key, stored.webhook_api_key, stored.webhook_url) == (
        "uk_1",
        "ak_1",
        "https://hooks.example/uk_1",
    )
    assert registrar.calls == [("12345", "999", "alice")]
    assert delivered == [report]
    assert report.delivered is True
    assert report.status == "success"
    assert any("Webhook registered" in line for line in report.summary_lines())


@pytest.mark.asyncio
async def test_issue_with_webhook_failure_is_partial(license_store, customer_store):
    issuer, _ = _issuer(license_store, customer_store, FAILED_REGISTRATION)
    deliver, _ = _delivery()

    report = await issuer.issue(IssuanceRequest(external_id="12345", owner_id="999", owner_name="alice"), deliver)

    stored = (await license_store.all())[0]
    assert stored.webhook_user_key is None
    assert stored.webhook_api_key is None
    assert stored.webhook_url is None
    assert "webhookUserKey" not in stored.to_dict()
    assert report.status == "partial"
    assert "Webhook registration failed: HTTP 500: boom" in report.summary_lines()


@pytest.mark.asyncio
async def test_issue_registers_bagibagi_customer_by_webhook_user_key(license_store, customer_store):
    issuer, _ = _issuer(license_store, customer_store)
    deliver, _ = _delivery()

    report = await issuer.issue(
        IssuanceRequest(
            external_id="12345",
            owner_id="999",
            owner_name="alice",
            bagibagi_channel_id="777",
            koin_rate=250,
        ),
        deliver,
    )

    assert report.bagibagi_status is BagiBagiStatus.REGISTERED
    customer = await customer_store.find_by_channel("777")
    assert customer.user_key == "uk_1"
    assert customer.koin_rate == 250
    assert customer.name == "alice"
    assert report.status == "success"


@pytest.mark.asyncio
async def test_bagibagi_skipped_when_webhook_failed_is_reported(license_store, customer_store):
    issuer, _ = _issuer(license_store, customer_store, FAILED_REGISTRATION)
    deliver, _ = _delivery()

    report = await issuer.issue(
        IssuanceRequest(external_id="1", owner_id="2", owner_name="bob", bagibagi_channel_id="777"),
        deliver,
    )

    assert report.bagibagi_status is BagiBagiStatus.SKIPPED_NO_WEBHOOK
    assert await customer_store.find_by_channel("777") is None
    assert "BagiBagi registration skipped because webhook registration failed." in report.summary_lines()


@pytest.mark.asyncio
async def test_bagibagi_skipped_without_channel_permissions(license_store, customer_store):
    issuer, _ = _issuer(license_store, customer_store)
    deliver, _ = _delivery()

    report = await issuer.issue(
        IssuanceRequest(
            external_id="1",
            owner_id="2",
            owner_name="bob",
            bagibagi_channel_id="777",
            bagibagi_channel_permitted=False,
        ),
        deliver,
    )

    assert report.bagibagi_status is BagiBagiStatus.MISSING_PERMISSIONS
    assert await customer_store.find_by_channel("777") is None
    assert len(await license_store.all()) == 1
    assert report.status == "partial"


@pytest.mark.asyncio
async def test_failed_delivery_still_persists_license(license_store, customer_store):
    issuer, _ = _issuer(license_store, customer_store)
    deliver, _ = _delivery(succeeds=False)

    report = await issuer.issue(IssuanceRequest(external_id="1", owner_id="2", owner_name="bob"), deliver)

    assert report.delivered is False
    assert report.status == "partial"
    assert await license_store.find_by_key("AAAA-BBBB-CCCC-DDDD") is not None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "request_kwargs",
    [
        {"external_id": "", "owner_id": "2"},
        {"external_id": "   ", "owner_id": "2"},
        {"external_id": "1", "owner_id": ""},
        {"external_id": "1", "owner_id": "2", "tutorial_url": "not a url"},
        {"external_id": "1", "owner_id": "2", "tutorial_url": "ftp://files.example/x"},
        {"external_id": "1", "owner_id": "2", "tutorial_url": "http://a"},
    ],
)
async def test_invalid_requests_have_no_side_effects(license_store, customer_store, request_kwargs):
    issuer, registrar = _issuer(license_store, customer_store)

    with pytest.raises(IssuanceValidationError):
        await issuer.issue(IssuanceRequest(owner_name="bob", **request_kwargs))

    assert registrar.calls == []
    assert not license_store.path.exists()


@pytest.mark.asyncio
async def test_tutorial_url_is_stored(license_store, customer_store):
    issuer, _ = _issuer(license_store, customer_store)

    await issuer.issue(
        IssuanceRequest(external_id="1", owner_id="2", owner_name="bob", tutorial_url="https://youtu.be/abc")
    )

    assert (await license_store.all())[0].tutorial_url == "https://youtu.be/abc"


def test_resolve_attachments_skips_missing_and_escaping_names(tmp_path):
    attachments = tmp_path / "attachments"
    attachments.mkdir()
    (attachments / "script.lua").write_text("print(1)", encoding="utf-8")
    (tmp_path / "secret.txt").write_text("nope", encoding="utf-8")

    found = resolve_attachments(attachments, "script.lua, missing.txt, ../secret.txt,")

    assert [path.name for path in found] == ["script.lua"]
    assert resolve_attachments(attachments, None) == []
