"""
Test suite for the API key registry

Creation rules, hashed storage, lookup, revocation and usage counters.
"""

import pytest
from decimal import Decimal
from datetime import timedelta

from payment_core.api_keys import (
    APIKey, KeyEnvironment, Permission, DEFAULT_PERMISSIONS, hash_key
)
from payment_core.audit import AuditEventType
from payment_core.errors import ErrorCode


class TestCreateKey:

    def test_plaintext_returned_once_and_stored_hashed(self, system, storage, business, now):
        created = system.key_registry.create_key(business.id, "Checkout", now=now).unwrap()
        plain = created.plain_key

        assert plain.startswith("scb_live_")
        assert len(plain) == len("scb_live_") + 48
        assert created.api_key.key_prefix == plain[:12]
        assert created.api_key.key_hash == hash_key(plain)
        assert created.api_key.permissions == list(DEFAULT_PERMISSIONS)

        raw = storage.load("api_keys", created.api_key.id)
        assert plain not in str(raw)
        assert "key_hash" not in created.api_key.public_view()

    def test_test_environment_prefix(self, system, business):
        created = system.key_registry.create_key(
            business.id, "Sandbox", environment=KeyEnvironment.TEST
        ).unwrap()
        assert created.plain_key.startswith("scb_test_")
        assert system.key_registry.find_by_key(created.plain_key) is not None

    def test_creation_is_audited_without_secret(self, system, api_key):
        event = system.audit_trail.get_events_by_type(AuditEventType.API_KEY_CREATED)[0]
        assert event.metadata["key_prefix"] == api_key.api_key.key_prefix
        assert api_key.plain_key not in str(event.metadata)

    def test_unknown_account(self, system):
        assert system.key_registry.create_key("missing", "Checkout").code == ErrorCode.ACCOUNT_NOT_FOUND

    def test_personal_account_cannot_create(self, system, customer):
        outcome = system.key_registry.create_key(customer.account.id, "Checkout")
        assert outcome.code == ErrorCode.NOT_A_BUSINESS

    def test_unverified_business_cannot_create(self, system):
        account = system.account_manager.register_business(
            "new@example.com", "shop-password-1", "Nia", "Go", business_name="New Shop"
        ).unwrap().account
        outcome = system.key_registry.create_key(account.id, "Checkout")
        assert outcome.code == ErrorCode.BUSINESS_NOT_VERIFIED

    def test_active_key_limit(self, system, business):
        keys = [system.key_registry.create_key(business.id, f"Key {i}").unwrap() for i in range(5)]
        assert system.key_registry.create_key(business.id, "Key 6").code == ErrorCode.KEY_LIMIT_REACHED

        system.key_registry.revoke_key(business.id, keys[0].api_key.id).unwrap()
        assert system.key_registry.create_key(business.id, "Key 6").is_ok

    @pytest.mark.parametrize("kwargs, code", [
        ({"name": "ab"}, ErrorCode.VALIDATION_ERROR),
        ({"name": "x" * 51}, ErrorCode.VALIDATION_ERROR),
        ({"permissions": ["charge", "delete_everything"]}, ErrorCode.VALIDATION_ERROR),
        ({"permissions": []}, ErrorCode.VALIDATION_ERROR),
        ({"allowed_origins": ["*"]}, ErrorCode.INVALID_ORIGIN_PATTERN),
        ({"allowed_origins": ["https://*"]}, ErrorCode.INVALID_ORIGIN_PATTERN),
        ({"ip_whitelist": ["300.1.1.1"]}, ErrorCode.VALIDATION_ERROR),
        ({"requests_per_minute": 1001}, ErrorCode.VALIDATION_ERROR),
        ({"requests_per_day": 99}, ErrorCode.VALIDATION_ERROR),
        ({"max_amount_per_transaction": "-1"}, ErrorCode.INVALID_AMOUNT),
        ({"daily_transaction_limit": "lots"}, ErrorCode.INVALID_AMOUNT),
        ({"max_amount_per_transaction": "1.005"}, ErrorCode.INVALID_AMOUNT),
    ])
    def test_invalid_settings(self, system, business, kwargs, code):
        params = {"name": "Checkout"}
        params.update(kwargs)
        name = params.pop("name")
        outcome = system.key_registry.create_key(business.id, name, **params)
        assert outcome.code == code
        assert system.key_registry.list_keys(business.id) == []

    def test_custom_limits(self, system, business):
        api_key = system.key_registry.create_key(
            business.id, "Limited",
            permissions=[Permission.REFUND, "balance"],
            allowed_origins=["https://*.example.com"],
            ip_whitelist=["203.0.113.7", "2001:db8::1"],
            requests_per_minute=10,
            requests_per_day=500,
            max_amount_per_transaction="250.00",
            daily_transaction_limit="1000.00"
        ).unwrap().api_key

        stored = system.key_registry.get_key(api_key.id)
        assert stored.permissions == [Permission.REFUND, Permission.BALANCE]
        assert stored.allowed_origins == ["https://*.example.com"]
        assert stored.ip_whitelist == ["203.0.113.7", "2001:db8::1"]
        assert stored.requests_per_minute == 10
        assert stored.max_amount_per_transaction == Decimal("250.00")


class TestLookup:

    def test_find_by_key(self, system, api_key):
        found = system.key_registry.find_by_key(api_key.plain_key)
        assert found.id == api_key.api_key.id

    @pytest.mark.parametrize("presented", [
        None,
        "",
        "scb_live_short",
        "scb_live_" + "G" * 48,
        "sk_live_" + "a" * 48,
    ])
    def test_malformed_keys(self, system, api_key, presented):
        assert not system.key_registry.is_well_formed(presented)
        assert system.key_registry.find_by_key(presented) is None

    def test_unknown_key(self, system, api_key):
        assert system.key_registry.find_by_key("scb_live_" + "a" * 48) is None

    def test_revoked_key_is_not_found(self, system, business, api_key):
        system.key_registry.revoke_key(business.id, api_key.api_key.id).unwrap()
        assert system.key_registry.find_by_key(api_key.plain_key) is None

    def test_expired_key_is_not_found(self, system, business, now):
        created = system.key_registry.create_key(
            business.id, "Short lived", expires_at=now + timedelta(hours=1), now=now
        ).unwrap()
        assert system.key_registry.find_by_key(created.plain_key, now) is not None
        assert system.key_registry.find_by_key(created.plain_key, now + timedelta(hours=2)) is None

    def test_list_newest_first(self, system, business, now):
        first = system.key_registry.create_key(business.id, "First", now=now).unwrap()
        second = system.key_registry.create_key(business.id, "Second", now=now + timedelta(minutes=1)).unwrap()
        ids = [k.id for k in system.key_registry.list_keys(business.id)]
        assert ids == [second.api_key.id, first.api_key.id]


class TestRevocation:

    def test_revoke(self, system, business, api_key, now):
        revoked = system.key_registry.revoke_key(business.id, api_key.api_key.id, now=now).unwrap()
        assert not revoked.is_active
        assert revoked.revoked_at == now
        assert revoked.revoked_reason == "Revoked by user"

    def test_revoke_twice(self, system, business, api_key):
        system.key_registry.revoke_key(business.id, api_key.api_key.id, "Leaked").unwrap()
        outcome = system.key_registry.revoke_key(business.id, api_key.api_key.id)
        assert outcome.code == ErrorCode.KEY_ALREADY_REVOKED

    def test_foreign_key_looks_missing(self, system, admin, api_key):
        other = system.account_manager.register_business(
            "other@example.com", "other-password-1", "Oli", "Tan", business_name="Other Shop"
        ).unwrap().account
        system.account_manager.verify_business(other.id, admin).unwrap()

        foreign = system.key_registry.revoke_key(other.id, api_key.api_key.id)
        missing = system.key_registry.revoke_key(other.id, "no-such-key")
        assert foreign.failure == missing.failure
        assert foreign.code == ErrorCode.KEY_NOT_FOUND

    def test_update_allow_lists(self, system, business, api_key):
        key_id = api_key.api_key.id
        updated = system.key_registry.update_allowed_origins(
            business.id, key_id, ["https://shop.example.com"]
        ).unwrap()
        assert updated.allowed_origins == ["https://shop.example.com"]
        assert system.key_registry.update_allowed_origins(
            business.id, key_id, ["https://*"]
        ).code == ErrorCode.INVALID_ORIGIN_PATTERN

        updated = system.key_registry.update_ip_whitelist(business.id, key_id, ["10.0.0.1"]).unwrap()
        assert system.key_registry.get_key(key_id).ip_whitelist == ["10.0.0.1"]
        system.key_registry.update_ip_whitelist(
            business.id, key_id, ["2001:DB8::0001", "::ffff:10.0.0.2", "10.0.0.2"]
        ).unwrap()
        assert system.key_registry.get_key(key_id).ip_whitelist == ["2001:db8::1", "10.0.0.2"]
        assert system.key_registry.update_ip_whitelist(
            business.id, key_id, ["nope"]
        ).code == ErrorCode.VALIDATION_ERROR


class TestUsageCounters:

    def _key(self, now, **overrides) -> APIKey:
        fields = dict(
            id="k1", created_at=now, updated_at=now, business_id="b1", name="Test",
            key_hash="h", key_prefix="scb_live_abc", permissions=[Permission.CHARGE],
            last_reset_date=now
        )
        fields.update(overrides)
        return APIKey(**fields)

    def test_minute_window(self, now):
        api_key = self._key(now, requests_per_minute=2)
        for _ in range(2):
            assert api_key.check_rate_limit(now)
            api_key.record_usage(now)
        assert not api_key.check_rate_limit(now)
        assert api_key.check_rate_limit(now + timedelta(minutes=1))

    def test_daily_requests_reset(self, now):
        api_key = self._key(now, requests_per_day=100, daily_requests=100)
        assert not api_key.check_rate_limit(now)
        assert api_key.check_rate_limit(now + timedelta(days=1))
        assert api_key.daily_requests == 0

    def test_transaction_limits(self, now):
        api_key = self._key(now, max_amount_per_transaction=Decimal("100"),
                            daily_transaction_limit=Decimal("150"))
        assert api_key.can_process_transaction(Decimal("101"), now) == \
            "Amount exceeds maximum per transaction limit"

        api_key.record_transaction(Decimal("100"), now)
        assert api_key.can_process_transaction(Decimal("60"), now) == "Daily transaction limit exceeded"
        assert api_key.can_process_transaction(Decimal("50"), now) is None

        tomorrow = now + timedelta(days=1)
        assert api_key.can_process_transaction(Decimal("100"), tomorrow) is None
        assert api_key.daily_transaction_total == Decimal("0")

    def test_ip_allow_list(self, now):
        assert self._key(now).is_ip_allowed("198.51.100.1")
        restricted = self._key(now, ip_whitelist=["203.0.113.7"])
        assert restricted.is_ip_allowed("203.0.113.7")
        assert not restricted.is_ip_allowed("198.51.100.1")
        assert not restricted.is_ip_allowed(None)

    def test_ip_allow_list_compares_addresses(self, now):
        restricted = self._key(now, ip_whitelist=["2001:db8::1", "203.0.113.7"])
        assert restricted.is_ip_allowed("2001:DB8:0:0:0:0:0:1")
        assert restricted.is_ip_allowed("::ffff:203.0.113.7")
        assert restricted.is_ip_allowed(" 203.0.113.7 ")
        assert not restricted.is_ip_allowed("2001:db8::2")
        assert not restricted.is_ip_allowed("not-an-ip")
        assert not restricted.is_ip_allowed("")

        mapped = self._key(now, ip_whitelist=["::ffff:198.51.100.9"])
        assert mapped.is_ip_allowed("198.51.100.9")
