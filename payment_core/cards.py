"""
Card & Credential Generator Module

Closed-loop virtual card utilities:
- Luhn check digit generation and validation
- CVV / PIN generation and salted adaptive hashing (scrypt)
- Expiry dates
- Masking and format validation with distinct failure reasons

Plaintext CVVs and PINs exist only long enough to be shown once at issuance.
"""

import hashlib
import hmac
import re
import secrets
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from .periods import utc_now


ISSUER_DIGIT = "4"
CARD_NUMBER_LENGTH = 16
CARD_VALIDITY_YEARS = 3

# scrypt cost parameters for CVV/PIN/password hashes
SCRYPT_N = 2 ** 14
SCRYPT_R = 8
SCRYPT_P = 1

_NON_DIGITS = re.compile(r"\D")
_CVV_FORMAT = re.compile(r"\d{3}")


def _digits_only(value: str) -> str:
    return _NON_DIGITS.sub("", value)


def validate_luhn(card_number: str) -> bool:
    """
    Luhn check for any 13-19 digit number (non-digits are stripped first)

    Args:
        card_number: Card number, optionally with spaces or dashes

    Returns:
        True if the number passes the Luhn checksum
    """
    if not card_number:
        return False
    digits = _digits_only(card_number)
    if len(digits) < 13 or len(digits) > 19:
        return False

    total = 0
    double = False
    for char in reversed(digits):
        digit = int(char)
        if double:
            digit *= 2
            if digit > 9:
                digit -= 9
        total += digit
        double = not double

    return total % 10 == 0


def calculate_luhn_check_digit(partial_number: str) -> str:
    """Check digit that makes `partial_number` + digit Luhn-valid"""
    digits = _digits_only(partial_number)
    total = 0
    # The rightmost digit of the partial number is doubled once the check digit is appended
    double = True
    for char in reversed(digits):
        digit = int(char)
        if double:
            digit *= 2
            if digit > 9:
                digit -= 9
        total += digit
        double = not double

    return str((10 - (total % 10)) % 10)


def generate_card_number(issuer_digit: str = ISSUER_DIGIT) -> str:
    """16-digit Luhn-valid number: issuer digit + 14 random digits + check digit"""
    body = issuer_digit + "".join(str(secrets.randbelow(10)) for _ in range(14))
    return body + calculate_luhn_check_digit(body)


def generate_cvv() -> str:
    return f"{secrets.randbelow(1000):03d}"


def generate_pin() -> str:
    return f"{secrets.randbelow(10000):04d}"


def hash_secret(value: str) -> str:
    """
    Salted scrypt hash for a CVV, PIN or password

    The encoded form carries its own parameters and salt:
    scrypt$<n>$<r>$<p>$<salt hex>$<hash hex>
    """
    salt = secrets.token_hex(16)
    digest = hashlib.scrypt(
        value.encode("utf-8"), salt=salt.encode("utf-8"),
        n=SCRYPT_N, r=SCRYPT_R, p=SCRYPT_P
    ).hex()
    return f"scrypt${SCRYPT_N}${SCRYPT_R}${SCRYPT_P}${salt}${digest}"


def verify_secret(value: Optional[str], hashed: Optional[str]) -> bool:
    """Constant-time comparison of a presented secret against its stored hash"""
    if not value or not hashed:
        return False
    try:
        scheme, n, r, p, salt, expected = hashed.split("$")
    except ValueError:
        return False
    if scheme != "scrypt":
        return False
    actual = hashlib.scrypt(
        value.encode("utf-8"), salt=salt.encode("utf-8"),
        n=int(n), r=int(r), p=int(p)
    ).hex()
    return hmac.compare_digest(actual, expected)


def generate_expiry_date(issued_at: Optional[datetime] = None,
                         validity_years: int = CARD_VALIDITY_YEARS) -> datetime:
    """Issuance date plus the validity window (Feb 29 falls back to Feb 28)"""
    issued_at = issued_at or utc_now()
    try:
        return issued_at.replace(year=issued_at.year + validity_years)
    except ValueError:
        return issued_at.replace(year=issued_at.year + validity_years, day=28)


def is_card_expired(expiry_date: datetime, now: Optional[datetime] = None) -> bool:
    return (now or utc_now()) > expiry_date


def card_last4(card_number: str) -> str:
    return _digits_only(card_number)[-4:]


def mask_card_number(card_number: str) -> str:
    """**** **** **** 1234"""
    return f"**** **** **** {card_last4(card_number)}"


def format_card_number(card_number: str) -> str:
    """4111 1111 1111 1111"""
    digits = _digits_only(card_number)
    return " ".join(digits[i:i + 4] for i in range(0, len(digits), 4))


class FormatFailure(Enum):
    """Why a card number or CVV failed format validation"""
    MISSING = "missing"
    WRONG_LENGTH = "wrong_length"
    WRONG_ISSUER = "wrong_issuer"
    FAILED_LUHN = "failed_luhn"


@dataclass(frozen=True)
class FormatCheck:
    is_valid: bool
    reason: Optional[FormatFailure] = None
    message: Optional[str] = None


_VALID = FormatCheck(True)


def validate_card_format(card_number: Optional[str], issuer_digit: str = ISSUER_DIGIT) -> FormatCheck:
    """Validate a presented card number before any lookup"""
    if not card_number:
        return FormatCheck(False, FormatFailure.MISSING, "Card number is required")

    cleaned = _digits_only(card_number)
    if len(cleaned) != CARD_NUMBER_LENGTH:
        return FormatCheck(False, FormatFailure.WRONG_LENGTH,
                           f"Card number must be {CARD_NUMBER_LENGTH} digits")
    if not cleaned.startswith(issuer_digit):
        return FormatCheck(False, FormatFailure.WRONG_ISSUER, "Invalid card issuer")
    if not validate_luhn(cleaned):
        return FormatCheck(False, FormatFailure.FAILED_LUHN, "Invalid card number")
    return _VALID


def validate_cvv_format(cvv: Optional[str]) -> FormatCheck:
    if not cvv:
        return FormatCheck(False, FormatFailure.MISSING, "CVV is required")
    if not _CVV_FORMAT.fullmatch(cvv):
        return FormatCheck(False, FormatFailure.WRONG_LENGTH, "CVV must be 3 digits")
    return _VALID
