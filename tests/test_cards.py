"""
Test suite for card utilities

Luhn generation/validation, secret hashing, expiry and format failure reasons.
"""

import pytest
from datetime import datetime, timezone, timedelta

from payment_core.cards import (
    validate_luhn, calculate_luhn_check_digit, generate_card_number, generate_cvv,
    generate_pin, hash_secret, verify_secret, generate_expiry_date, is_card_expired,
    mask_card_number, format_card_number, card_last4, validate_card_format,
    validate_cvv_format, FormatFailure
)


class TestLuhn:
    """Test Luhn checksum handling"""

    def test_known_numbers(self):
        assert validate_luhn("4111111111111111")
        assert validate_luhn("4111 1111 1111 1111")
        assert validate_luhn("4111-1111-1111-1111")
        assert not validate_luhn("4111111111111112")

    def test_length_bounds(self):
        assert not validate_luhn("")
        assert not validate_luhn("0")
        assert not validate_luhn("4" * 20)

    def test_check_digit(self):
        assert calculate_luhn_check_digit("411111111111111") == "1"
        assert calculate_luhn_check_digit("7992739871") == "3"

    def test_generated_numbers_are_valid(self):
        for _ in range(50):
            number = generate_card_number()
            assert len(number) == 16
            assert number.startswith("4")
            assert validate_luhn(number)

    def test_custom_issuer_digit(self):
        number = generate_card_number("5")
        assert number.startswith("5")
        assert validate_luhn(number)

    def test_single_digit_change_is_detected(self):
        number = generate_card_number()
        for position in range(len(number)):
            original = int(number[position])
            for replacement in range(10):
                if replacement == original:
                    continue
                mutated = number[:position] + str(replacement) + number[position + 1:]
                assert not validate_luhn(mutated), mutated


class TestSecrets:
    """Test CVV/PIN generation and hashing"""

    def test_cvv_and_pin_shape(self):
        for _ in range(20):
            cvv, pin = generate_cvv(), generate_pin()
            assert len(cvv) == 3 and cvv.isdigit()
            assert len(pin) == 4 and pin.isdigit()

    def test_hash_and_verify(self):
        hashed = hash_secret("123")
        assert hashed.startswith("scrypt$")
        assert verify_secret("123", hashed)
        assert not verify_secret("124", hashed)

    def test_hashes_are_salted(self):
        assert hash_secret("0000") != hash_secret("0000")

    def test_verify_rejects_missing_or_malformed(self):
        hashed = hash_secret("123")
        assert not verify_secret(None, hashed)
        assert not verify_secret("", hashed)
        assert not verify_secret("123", None)
        assert not verify_secret("123", "not-a-hash")
        assert not verify_secret("123", hashed.replace("scrypt", "md5", 1))


class TestExpiry:
    """Test expiry dates"""

    def test_three_year_validity(self):
        issued = datetime(2026, 3, 10, tzinfo=timezone.utc)
        assert generate_expiry_date(issued) == datetime(2029, 3, 10, tzinfo=timezone.utc)

    def test_leap_day_falls_back(self):
        issued = datetime(2028, 2, 29, tzinfo=timezone.utc)
        assert generate_expiry_date(issued, 3) == datetime(2031, 2, 28, tzinfo=timezone.utc)

    def test_is_card_expired(self):
        expiry = datetime(2029, 3, 10, tzinfo=timezone.utc)
        assert not is_card_expired(expiry, expiry)
        assert is_card_expired(expiry, expiry + timedelta(seconds=1))


class TestDisplay:

    def test_masking(self):
        assert mask_card_number("4111111111111111") == "**** **** **** 1111"
        assert card_last4("4111 1111 1111 1234") == "1234"

    def test_formatting(self):
        assert format_card_number("4111111111111111") == "4111 1111 1111 1111"


class TestFormatValidation:
    """Each failure carries a distinct reason"""

    @pytest.mark.parametrize("number, reason, message", [
        (None, FormatFailure.MISSING, "Card number is required"),
        ("", FormatFailure.MISSING, "Card number is required"),
        ("411111111111", FormatFailure.WRONG_LENGTH, "Card number must be 16 digits"),
        ("5555555555554444", FormatFailure.WRONG_ISSUER, "Invalid card issuer"),
        ("4111111111111112", FormatFailure.FAILED_LUHN, "Invalid card number"),
    ])
    def test_card_format_failures(self, number, reason, message):
        check = validate_card_format(number)
        assert not check.is_valid
        assert check.reason == reason
        assert check.message == message

    def test_valid_card_format(self):
        check = validate_card_format("4111 1111 1111 1111")
        assert check.is_valid
        assert check.reason is None

    def test_cvv_format(self):
        assert validate_cvv_format("007").is_valid
        assert validate_cvv_format(None).reason == FormatFailure.MISSING
        assert validate_cvv_format("12").reason == FormatFailure.WRONG_LENGTH
        assert validate_cvv_format("1234").reason == FormatFailure.WRONG_LENGTH
        assert validate_cvv_format("12a").reason == FormatFailure.WRONG_LENGTH
