"""
Error Taxonomy Module

Stable machine-readable error codes, the failure class each belongs to, and
the Outcome value returned by every core operation. Validation steps return
failed Outcomes instead of raising, and the atomic scope runner decides
commit or rollback from the Outcome.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Generic, Optional, TypeVar


class ErrorClass(Enum):
    """Failure classes; only INFRASTRUCTURE is eligible for automatic retry"""
    AUTHENTICATION = "authentication"  # terminal, needs new credentials
    AUTHORIZATION = "authorization"    # permission, verification, origin, IP
    RATE_LIMIT = "rate_limit"          # retryable after cool-down
    VALIDATION = "validation"          # caller error, retry with corrected input
    NOT_FOUND = "not_found"
    BUSINESS_RULE = "business_rule"    # funds, expiry, limits, already refunded
    INFRASTRUCTURE = "infrastructure"  # store unavailable, commit failure


class ErrorCode(Enum):
    """Stable error codes exposed in the error shape"""

    def __init__(self, code: str, error_class: ErrorClass, default_message: str):
        self.code = code
        self.error_class = error_class
        self.default_message = default_message

    # Authentication
    MISSING_API_KEY = ("MISSING_API_KEY", ErrorClass.AUTHENTICATION,
                       "API key is required. Provide it in the X-API-Key header.")
    INVALID_API_KEY = ("INVALID_API_KEY", ErrorClass.AUTHENTICATION,
                       "Invalid or expired API key.")
    INVALID_CREDENTIALS = ("INVALID_CREDENTIALS", ErrorClass.AUTHENTICATION,
                           "Invalid email or password.")
    NOT_AUTHENTICATED = ("NOT_AUTHENTICATED", ErrorClass.AUTHENTICATION,
                         "Authentication required.")

    # Authorization
    BUSINESS_NOT_VERIFIED = ("BUSINESS_NOT_VERIFIED", ErrorClass.AUTHORIZATION,
                             "Business account is not verified. Please complete verification first.")
    IP_NOT_ALLOWED = ("IP_NOT_ALLOWED", ErrorClass.AUTHORIZATION,
                      "Request from this IP address is not allowed.")
    ORIGIN_NOT_ALLOWED = ("ORIGIN_NOT_ALLOWED", ErrorClass.AUTHORIZATION,
                          "Origin not allowed by CORS policy.")
    PERMISSION_DENIED = ("PERMISSION_DENIED", ErrorClass.AUTHORIZATION,
                         "This API key does not have the required permission.")
    NOT_A_BUSINESS = ("NOT_A_BUSINESS", ErrorClass.AUTHORIZATION,
                      "Only business accounts can perform this action.")
    FORBIDDEN = ("FORBIDDEN", ErrorClass.AUTHORIZATION,
                 "You do not have access to this resource.")

    # Rate / quota
    RATE_LIMIT_EXCEEDED = ("RATE_LIMIT_EXCEEDED", ErrorClass.RATE_LIMIT,
                           "API rate limit exceeded. Please try again later.")
    TRANSACTION_LIMIT_EXCEEDED = ("TRANSACTION_LIMIT_EXCEEDED", ErrorClass.RATE_LIMIT,
                                  "Transaction limit exceeded for this API key.")

    # Validation
    VALIDATION_ERROR = ("VALIDATION_ERROR", ErrorClass.VALIDATION, "Invalid request.")
    INVALID_AMOUNT = ("INVALID_AMOUNT", ErrorClass.VALIDATION, "Valid amount is required.")
    INVALID_CARD_FORMAT = ("INVALID_CARD_FORMAT", ErrorClass.VALIDATION, "Invalid card number.")
    INVALID_ORIGIN_PATTERN = ("INVALID_ORIGIN_PATTERN", ErrorClass.VALIDATION,
                              "Origin pattern is not allowed.")
    SAME_ACCOUNT = ("SAME_ACCOUNT", ErrorClass.VALIDATION,
                    "Sender and recipient must be different accounts.")
    EMAIL_TAKEN = ("EMAIL_TAKEN", ErrorClass.VALIDATION, "User with this email already exists.")

    # Not found
    ACCOUNT_NOT_FOUND = ("ACCOUNT_NOT_FOUND", ErrorClass.NOT_FOUND, "Account not found.")
    BUSINESS_NOT_FOUND = ("BUSINESS_NOT_FOUND", ErrorClass.NOT_FOUND, "Business account not found.")
    CARD_NOT_FOUND = ("CARD_NOT_FOUND", ErrorClass.NOT_FOUND, "Card not found or invalid.")
    TRANSACTION_NOT_FOUND = ("TRANSACTION_NOT_FOUND", ErrorClass.NOT_FOUND,
                             "Original transaction not found or not eligible for refund.")
    KEY_NOT_FOUND = ("KEY_NOT_FOUND", ErrorClass.NOT_FOUND, "API key not found.")

    # Business rules
    CARD_INACTIVE = ("CARD_INACTIVE", ErrorClass.BUSINESS_RULE, "This card is not active.")
    CARD_EXPIRED = ("CARD_EXPIRED", ErrorClass.BUSINESS_RULE, "This card has expired.")
    INVALID_CVV = ("INVALID_CVV", ErrorClass.BUSINESS_RULE, "Invalid CVV.")
    DAILY_LIMIT_EXCEEDED = ("DAILY_LIMIT_EXCEEDED", ErrorClass.BUSINESS_RULE,
                            "Daily spending limit exceeded.")
    INSUFFICIENT_FUNDS = ("INSUFFICIENT_FUNDS", ErrorClass.BUSINESS_RULE, "Insufficient funds.")
    INSUFFICIENT_BUSINESS_FUNDS = ("INSUFFICIENT_BUSINESS_FUNDS", ErrorClass.BUSINESS_RULE,
                                   "Insufficient funds to process refund.")
    INSUFFICIENT_RESERVE_FUNDS = ("INSUFFICIENT_RESERVE_FUNDS", ErrorClass.BUSINESS_RULE,
                                  "Bank reserve cannot cover this deposit.")
    ALREADY_REFUNDED = ("ALREADY_REFUNDED", ErrorClass.BUSINESS_RULE,
                        "This transaction has already been refunded.")
    REFUND_EXCEEDS_ORIGINAL = ("REFUND_EXCEEDS_ORIGINAL", ErrorClass.BUSINESS_RULE,
                               "Refund amount cannot exceed original transaction amount.")
    KEY_LIMIT_REACHED = ("KEY_LIMIT_REACHED", ErrorClass.BUSINESS_RULE,
                         "Maximum number of API keys reached. Please revoke an existing key first.")
    KEY_ALREADY_REVOKED = ("KEY_ALREADY_REVOKED", ErrorClass.BUSINESS_RULE,
                           "API key is already revoked.")
    ALREADY_VERIFIED = ("ALREADY_VERIFIED", ErrorClass.BUSINESS_RULE,
                        "Business is already verified.")

    # Infrastructure
    INTERNAL_ERROR = ("INTERNAL_ERROR", ErrorClass.INFRASTRUCTURE,
                      "The request could not be completed. Please try again.")

    @property
    def retryable(self) -> bool:
        return self.error_class in (ErrorClass.INFRASTRUCTURE, ErrorClass.RATE_LIMIT)


T = TypeVar("T")


@dataclass(frozen=True)
class Failure:
    """A single failed step: stable code plus a safe, caller-facing message"""
    code: ErrorCode
    message: str

    def to_dict(self) -> Dict[str, Any]:
        """Error shape returned to callers"""
        return {
            "success": False,
            "error": {"code": self.code.code, "message": self.message}
        }


class PaymentError(Exception):
    """Raised when a failed Outcome is unwrapped"""

    def __init__(self, code: ErrorCode, message: Optional[str] = None):
        self.code = code
        self.message = message or code.default_message
        super().__init__(f"{code.code}: {self.message}")

    @property
    def failure(self) -> Failure:
        return Failure(self.code, self.message)


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Explicit success/failure result of a core operation"""
    value: Optional[T] = None
    failure: Optional[Failure] = None

    @classmethod
    def ok(cls, value: T = None) -> 'Outcome[T]':
        return cls(value=value)

    @classmethod
    def fail(cls, code: ErrorCode, message: Optional[str] = None) -> 'Outcome[T]':
        return cls(failure=Failure(code, message or code.default_message))

    @property
    def is_ok(self) -> bool:
        return self.failure is None

    @property
    def code(self) -> Optional[ErrorCode]:
        return self.failure.code if self.failure else None

    def unwrap(self) -> T:
        """Return the value or raise PaymentError for the failure"""
        if self.failure:
            raise PaymentError(self.failure.code, self.failure.message)
        return self.value
