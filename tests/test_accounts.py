"""
Test suite for accounts module

Registration, card issuance, credentials, business verification and
card controls.
"""

import pytest
from decimal import Decimal
from datetime import timedelta

from payment_core.accounts import AccountType, Role, VirtualCard
from payment_core.audit import AuditEventType
from payment_core.cards import validate_luhn, verify_secret
from payment_core.encryption import ENCRYPTION_PREFIX
from payment_core.errors import ErrorCode


class TestRegistration:
    """Test personal and business registration"""

    def test_personal_registration_issues_card(self, system, now):
        registration = system.account_manager.register_personal(
            "Ben@Example.com", "long-password-1", "Ben", "Cruz", now=now
        ).unwrap()
        account, card = registration.account, registration.card

        assert account.email == "ben@example.com"
        assert account.account_type == AccountType.PERSONAL
        assert account.role == Role.USER
        assert account.balance.is_zero()

        assert validate_luhn(card.card_number)
        assert card.card_number.startswith("4")
        assert card.expiry_date == now.replace(year=now.year + 3)

        stored = system.account_manager.get_account(account.id)
        assert stored.card.card_number == card.card_number
        assert stored.card.cvv_hash != card.cvv
        assert verify_secret(card.cvv, stored.card.cvv_hash)
        assert verify_secret(card.pin, stored.card.pin_hash)
        assert stored.card.daily_limit == Decimal("50000.00")

    def test_secrets_never_stored_in_clear(self, system, storage, now):
        registration = system.account_manager.register_personal(
            "ben@example.com", "long-password-1", "Ben", "Cruz", now=now
        ).unwrap()
        raw = storage.load("accounts", registration.account.id)

        assert raw["card_number"].startswith(ENCRYPTION_PREFIX)
        assert raw["email"].startswith(ENCRYPTION_PREFIX)
        assert "cvv" not in raw and "pin" not in raw
        assert "long-password-1" not in str(raw)

    def test_registration_is_audited(self, system, now):
        account = system.account_manager.register_personal(
            "ben@example.com", "long-password-1", "Ben", "Cruz", now=now
        ).unwrap().account
        events = system.audit_trail.get_events_for_entity("account", account.id)
        assert [e.event_type for e in events] == [AuditEventType.ACCOUNT_CREATED, AuditEventType.CARD_ISSUED]
        assert "card_number" not in events[1].metadata

    def test_duplicate_email_is_rejected(self, system, customer, now):
        outcome = system.account_manager.register_personal(
            "ANA@example.com", "another-pass-1", "Ana", "Other", now=now
        )
        assert outcome.code == ErrorCode.EMAIL_TAKEN

    @pytest.mark.parametrize("email, password, first, last", [
        ("not-an-email", "long-password-1", "Ben", "Cruz"),
        ("ben@example.com", "short", "Ben", "Cruz"),
        ("ben@example.com", "long-password-1", "", "Cruz"),
    ])
    def test_invalid_registration(self, system, email, password, first, last):
        outcome = system.account_manager.register_personal(email, password, first, last)
        assert outcome.code == ErrorCode.VALIDATION_ERROR
        assert system.account_manager.list_accounts() == []

    def test_business_registration_is_unverified(self, system, now):
        account = system.account_manager.register_business(
            "shop@example.com", "shop-password-1", "Sam", "Santos",
            business_name="Sari Store", now=now
        ).unwrap().account

        assert account.is_business
        assert account.card is None
        assert not account.is_verified_business
        assert [a.id for a in system.account_manager.list_pending_businesses()] == [account.id]

    def test_business_name_required(self, system):
        outcome = system.account_manager.register_business(
            "shop@example.com", "shop-password-1", "Sam", "Santos", business_name="  "
        )
        assert outcome.code == ErrorCode.VALIDATION_ERROR


class TestAuthentication:

    def test_valid_credentials(self, system, customer):
        account = system.account_manager.authenticate("ana@example.com", "correct-horse-1").unwrap()
        assert account.id == customer.account.id

    def test_wrong_password_and_unknown_email_look_alike(self, system, customer):
        wrong = system.account_manager.authenticate("ana@example.com", "wrong-password")
        unknown = system.account_manager.authenticate("nobody@example.com", "correct-horse-1")
        assert wrong.failure == unknown.failure
        assert wrong.code == ErrorCode.INVALID_CREDENTIALS


class TestLookups:

    def test_lookup_by_card_number(self, system, customer):
        number = customer.card.card_number
        spaced = " ".join(number[i:i + 4] for i in range(0, 16, 4))
        assert system.account_manager.get_account_by_card_number(spaced).id == customer.account.id
        assert system.account_manager.get_account_by_card_number("4111111111111111") is None

    def test_profile_masks_card(self, system, customer):
        profile = system.account_manager.get_profile(customer.account.id).unwrap()
        assert profile["card"]["card_number"] == "**** **** **** " + customer.card.card_number[-4:]
        assert customer.card.card_number not in str(profile)
        assert "cvv" not in str(profile)
        assert profile["balance"] == "500.00"

    def test_profile_of_missing_account(self, system):
        assert system.account_manager.get_profile("missing").code == ErrorCode.ACCOUNT_NOT_FOUND


class TestBusinessVerification:

    def test_only_admins_verify(self, system, customer, now):
        business = system.account_manager.register_business(
            "shop@example.com", "shop-password-1", "Sam", "Santos", business_name="Sari Store"
        ).unwrap().account
        outcome = system.account_manager.verify_business(business.id, customer.account, now=now)
        assert outcome.code == ErrorCode.FORBIDDEN

    def test_verify_once(self, system, admin, business, now):
        assert business.is_verified_business
        assert business.business.verified_at == now
        outcome = system.account_manager.verify_business(business.id, admin, now=now)
        assert outcome.code == ErrorCode.ALREADY_VERIFIED
        assert [b.id for b in system.account_manager.list_verified_businesses()] == [business.id]

    def test_personal_account_is_not_a_business(self, system, admin, customer):
        outcome = system.account_manager.verify_business(customer.account.id, admin)
        assert outcome.code == ErrorCode.BUSINESS_NOT_FOUND

    def test_verification_is_audited(self, system, admin, business):
        events = system.audit_trail.get_events_by_type(AuditEventType.BUSINESS_VERIFIED)
        assert events[0].entity_id == business.id
        assert events[0].user_id == admin.id


class TestCardControls:

    def test_freeze_and_unfreeze(self, system, customer):
        account_id = customer.account.id
        assert not system.account_manager.set_card_active(account_id, False).unwrap().card.is_active
        assert system.account_manager.set_card_active(account_id, True).unwrap().card.is_active

    def test_change_daily_limit(self, system, customer):
        account = system.account_manager.set_card_daily_limit(customer.account.id, "1000.00").unwrap()
        assert account.card.daily_limit == Decimal("1000.00")

    @pytest.mark.parametrize("limit", ["0", "-5", "abc", "1.005"])
    def test_invalid_daily_limit(self, system, customer, limit):
        outcome = system.account_manager.set_card_daily_limit(customer.account.id, limit)
        assert outcome.code == ErrorCode.INVALID_AMOUNT

    def test_business_has_no_card(self, system, business):
        assert system.account_manager.set_card_active(business.id, False).code == ErrorCode.CARD_NOT_FOUND


class TestVirtualCard:

    def test_daily_spending_resets_next_day(self, now):
        card = VirtualCard(
            card_number="4111111111111111", cvv_hash="x", pin_hash="y",
            expiry_date=now + timedelta(days=365), daily_limit=Decimal("100"),
            last_reset_date=now
        )
        card.record_spending(Decimal("80"), now)
        assert not card.can_spend(Decimal("30"), now)
        assert card.can_spend(Decimal("20"), now)

        tomorrow = now + timedelta(days=1)
        assert card.can_spend(Decimal("100"), tomorrow)
        assert card.daily_spent == Decimal("0")
