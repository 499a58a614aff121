"""
Account & Wallet Management Module

Personal and business accounts, each carrying one wallet balance. Personal
accounts are issued a closed-loop virtual card at registration; business
accounts carry a business profile that an admin must verify before the
business can create API keys or accept payments.

Card numbers and emails are encrypted at rest by the storage wrapper, so
lookups go through keyed fingerprints stored beside them.
"""

from decimal import Decimal
from datetime import datetime
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from enum import Enum
import uuid

from .currency import Money, Currency, to_amount
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .encryption import KeyManager
from .errors import ErrorCode, Outcome
from .periods import utc_now, reset_if_new_period, parse_timestamp, format_timestamp
from .logging_config import get_logger, log_action
from . import cards


logger = get_logger("payment_core.accounts")

DEFAULT_CARD_DAILY_LIMIT = Decimal("50000.00")
DEFAULT_PASSWORD_MIN_LENGTH = 10


class AccountType(Enum):
    """Wallet holder types"""
    PERSONAL = "personal"
    BUSINESS = "business"


class Role(Enum):
    """Internal roles; self-registration always yields USER"""
    USER = "user"
    STAFF = "staff"
    ADMIN = "admin"


@dataclass
class VirtualCard:
    """
    Closed-loop virtual card attached to a personal account

    Only hashes of the CVV and PIN are held. daily_spent is reset lazily the
    first time the card is checked on a new calendar day.
    """
    card_number: str
    cvv_hash: str
    pin_hash: str
    expiry_date: datetime
    daily_limit: Decimal = DEFAULT_CARD_DAILY_LIMIT
    is_active: bool = True
    daily_spent: Decimal = Decimal("0")
    last_reset_date: Optional[datetime] = None
    last_used: Optional[datetime] = None

    @property
    def last4(self) -> str:
        return cards.card_last4(self.card_number)

    @property
    def masked_number(self) -> str:
        return cards.mask_card_number(self.card_number)

    def is_expired(self, now: datetime) -> bool:
        return cards.is_card_expired(self.expiry_date, now)

    def _roll_period(self, now: datetime) -> None:
        self.daily_spent, self.last_reset_date = reset_if_new_period(
            self.daily_spent, self.last_reset_date, now
        )

    def can_spend(self, amount: Decimal, now: datetime) -> bool:
        """True if today's spending plus `amount` stays within the daily limit"""
        self._roll_period(now)
        return self.daily_spent + amount <= self.daily_limit

    def record_spending(self, amount: Decimal, now: datetime) -> None:
        self._roll_period(now)
        self.daily_spent += amount
        self.last_used = now


@dataclass
class BusinessProfile:
    business_name: str
    business_type: str = ""
    verified: bool = False
    verified_at: Optional[datetime] = None


@dataclass
class Account(StorageRecord):
    """Wallet account owned by a person or a business"""
    email: str
    first_name: str
    last_name: str
    password_hash: str
    account_type: AccountType
    balance: Money
    role: Role = Role.USER
    card: Optional[VirtualCard] = None
    business: Optional[BusinessProfile] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_business(self) -> bool:
        return self.account_type == AccountType.BUSINESS

    @property
    def is_verified_business(self) -> bool:
        return self.is_business and self.business is not None and self.business.verified

    @property
    def currency(self) -> Currency:
        return self.balance.currency


@dataclass
class IssuedCard:
    """Card secrets revealed exactly once, at issuance"""
    card_number: str
    cvv: str
    pin: str
    expiry_date: datetime

    @property
    def masked_number(self) -> str:
        return cards.mask_card_number(self.card_number)


@dataclass
class Registration:
    account: Account
    card: Optional[IssuedCard] = None


class AccountManager:
    """
    Manages registration, credentials, cards and business verification
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        key_manager: KeyManager,
        currency: Currency = Currency.PHP,
        card_daily_limit: Decimal = DEFAULT_CARD_DAILY_LIMIT,
        card_validity_years: int = cards.CARD_VALIDITY_YEARS,
        issuer_digit: str = cards.ISSUER_DIGIT,
        password_min_length: int = DEFAULT_PASSWORD_MIN_LENGTH
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.key_manager = key_manager
        self.currency = currency
        self.card_daily_limit = card_daily_limit
        self.card_validity_years = card_validity_years
        self.issuer_digit = issuer_digit
        self.password_min_length = password_min_length
        self.accounts_table = "accounts"

    # Fingerprints

    def email_fingerprint(self, email: str) -> str:
        return self.key_manager.fingerprint(self.accounts_table, "email", email.strip().lower())

    def card_fingerprint(self, card_number: str) -> str:
        digits = "".join(ch for ch in card_number if ch.isdigit())
        return self.key_manager.fingerprint(self.accounts_table, "card_number", digits)

    # Registration

    def _validate_registration(self, email: str, password: str,
                               first_name: str, last_name: str) -> Optional[Outcome]:
        if not email or "@" not in email:
            return Outcome.fail(ErrorCode.VALIDATION_ERROR, "A valid email is required.")
        if not first_name or not last_name:
            return Outcome.fail(ErrorCode.VALIDATION_ERROR, "First and last name are required.")
        if not password or len(password) < self.password_min_length:
            return Outcome.fail(
                ErrorCode.VALIDATION_ERROR,
                f"Password must be at least {self.password_min_length} characters."
            )
        if self.storage.find(self.accounts_table, {"email_fingerprint": self.email_fingerprint(email)}):
            return Outcome.fail(ErrorCode.EMAIL_TAKEN)
        return None

    def _new_account(self, email: str, password: str, first_name: str, last_name: str,
                     account_type: AccountType, now: datetime) -> Account:
        return Account(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            email=email.strip().lower(),
            first_name=first_name.strip(),
            last_name=last_name.strip(),
            password_hash=cards.hash_secret(password),
            account_type=account_type,
            balance=Money.zero(self.currency),
            role=Role.USER
        )

    def _issue_card(self, now: datetime) -> IssuedCard:
        """Generate a card number that no existing account holds"""
        while True:
            number = cards.generate_card_number(self.issuer_digit)
            if not self.storage.find(self.accounts_table, {"card_fingerprint": self.card_fingerprint(number)}):
                break
        return IssuedCard(
            card_number=number,
            cvv=cards.generate_cvv(),
            pin=cards.generate_pin(),
            expiry_date=cards.generate_expiry_date(now, self.card_validity_years)
        )

    def register_personal(
        self,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        now: Optional[datetime] = None
    ) -> Outcome[Registration]:
        """
        Register a personal account and issue its virtual card

        Args:
            email: Login email, unique across accounts
            password: Plaintext password (hashed before storage)
            first_name: Holder first name
            last_name: Holder last name
            now: Clock reading for the operation

        Returns:
            Outcome with the Registration; the IssuedCard holds the only
            plaintext copy of the card number, CVV and PIN
        """
        now = now or utc_now()

        def operation() -> Outcome[Registration]:
            failure = self._validate_registration(email, password, first_name, last_name)
            if failure:
                return failure

            account = self._new_account(email, password, first_name, last_name,
                                        AccountType.PERSONAL, now)
            issued = self._issue_card(now)
            account.card = VirtualCard(
                card_number=issued.card_number,
                cvv_hash=cards.hash_secret(issued.cvv),
                pin_hash=cards.hash_secret(issued.pin),
                expiry_date=issued.expiry_date,
                daily_limit=self.card_daily_limit,
                last_reset_date=now
            )
            self.save_account(account)

            self.audit_trail.log_event(
                event_type=AuditEventType.ACCOUNT_CREATED,
                entity_type="account",
                entity_id=account.id,
                metadata={"account_type": account.account_type.value, "role": account.role.value}
            )
            self.audit_trail.log_event(
                event_type=AuditEventType.CARD_ISSUED,
                entity_type="account",
                entity_id=account.id,
                metadata={"card_last4": issued.card_number[-4:], "expiry_date": issued.expiry_date}
            )
            return Outcome.ok(Registration(account=account, card=issued))

        outcome = self.storage.run_atomic(operation)
        if outcome.is_ok:
            log_action(logger, "info", "Personal account registered",
                       user_id=outcome.value.account.id, action="register", resource="account",
                       extra={"card": outcome.value.card.masked_number})
        return outcome

    def register_business(
        self,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        business_name: str,
        business_type: str = "",
        now: Optional[datetime] = None
    ) -> Outcome[Registration]:
        """Register an unverified business account (no card is issued)"""
        now = now or utc_now()

        def operation() -> Outcome[Registration]:
            if not business_name or not business_name.strip():
                return Outcome.fail(ErrorCode.VALIDATION_ERROR, "Business name is required.")
            failure = self._validate_registration(email, password, first_name, last_name)
            if failure:
                return failure

            account = self._new_account(email, password, first_name, last_name,
                                        AccountType.BUSINESS, now)
            account.business = BusinessProfile(
                business_name=business_name.strip(),
                business_type=(business_type or "").strip()
            )
            self.save_account(account)

            self.audit_trail.log_event(
                event_type=AuditEventType.ACCOUNT_CREATED,
                entity_type="account",
                entity_id=account.id,
                metadata={
                    "account_type": account.account_type.value,
                    "business_name": account.business.business_name
                }
            )
            return Outcome.ok(Registration(account=account))

        outcome = self.storage.run_atomic(operation)
        if outcome.is_ok:
            log_action(logger, "info", "Business account registered",
                       user_id=outcome.value.account.id, action="register", resource="business")
        return outcome

    def authenticate(self, email: str, password: str) -> Outcome[Account]:
        """Check login credentials; unknown email and wrong password fail alike"""
        account = self.get_account_by_email(email) if email else None
        if account is None or not cards.verify_secret(password, account.password_hash):
            return Outcome.fail(ErrorCode.INVALID_CREDENTIALS)
        return Outcome.ok(account)

    # Lookups

    def get_account(self, account_id: str) -> Optional[Account]:
        """Get account by ID"""
        account_dict = self.storage.load(self.accounts_table, account_id)
        if account_dict:
            return self._account_from_dict(account_dict)
        return None

    def get_account_by_email(self, email: str) -> Optional[Account]:
        accounts = self.storage.find(self.accounts_table, {"email_fingerprint": self.email_fingerprint(email)})
        if accounts:
            return self._account_from_dict(accounts[0])
        return None

    def get_account_by_card_number(self, card_number: str) -> Optional[Account]:
        """Resolve a presented card number through its fingerprint"""
        accounts = self.storage.find(self.accounts_table, {"card_fingerprint": self.card_fingerprint(card_number)})
        if accounts:
            return self._account_from_dict(accounts[0])
        return None

    def list_accounts(self, account_type: Optional[AccountType] = None) -> List[Account]:
        filters = {"account_type": account_type.value} if account_type else {}
        return [self._account_from_dict(data) for data in self.storage.find(self.accounts_table, filters)]

    def get_profile(self, account_id: str) -> Outcome[Dict[str, Any]]:
        """Account view safe to return to its holder: masked card, no CVV or PIN"""
        account = self.get_account(account_id)
        if account is None:
            return Outcome.fail(ErrorCode.ACCOUNT_NOT_FOUND)
        return Outcome.ok(self.profile_view(account))

    def profile_view(self, account: Account) -> Dict[str, Any]:
        profile = {
            "id": account.id,
            "email": account.email,
            "first_name": account.first_name,
            "last_name": account.last_name,
            "full_name": account.full_name,
            "account_type": account.account_type.value,
            "role": account.role.value,
            "balance": str(account.balance.amount),
            "currency": account.currency.code,
            "created_at": account.created_at.isoformat()
        }
        if account.card:
            profile["card"] = {
                "card_number": account.card.masked_number,
                "last4": account.card.last4,
                "expiry_date": account.card.expiry_date.isoformat(),
                "is_active": account.card.is_active,
                "daily_limit": str(account.card.daily_limit),
                "daily_spent": str(account.card.daily_spent)
            }
        if account.business:
            profile["business"] = {
                "business_name": account.business.business_name,
                "business_type": account.business.business_type,
                "verified": account.business.verified,
                "verified_at": format_timestamp(account.business.verified_at)
            }
        return profile

    # Business verification

    def verify_business(self, business_id: str, admin: Account,
                        now: Optional[datetime] = None) -> Outcome[Account]:
        """Mark a business verified; only admins may, and only once"""
        if admin is None or admin.role != Role.ADMIN:
            return Outcome.fail(ErrorCode.FORBIDDEN)
        now = now or utc_now()

        def operation() -> Outcome[Account]:
            account = self.get_account(business_id)
            if account is None or not account.is_business:
                return Outcome.fail(ErrorCode.BUSINESS_NOT_FOUND)
            if account.business.verified:
                return Outcome.fail(ErrorCode.ALREADY_VERIFIED)

            account.business.verified = True
            account.business.verified_at = now
            account.updated_at = now
            self.save_account(account)

            self.audit_trail.log_event(
                event_type=AuditEventType.BUSINESS_VERIFIED,
                entity_type="account",
                entity_id=account.id,
                metadata={"business_name": account.business.business_name},
                user_id=admin.id
            )
            return Outcome.ok(account)

        outcome = self.storage.run_atomic(operation)
        if outcome.is_ok:
            log_action(logger, "info", "Business verified", user_id=admin.id,
                       action="verify_business", resource=business_id)
        return outcome

    def list_pending_businesses(self) -> List[Account]:
        return [a for a in self.list_accounts(AccountType.BUSINESS) if not a.business.verified]

    def list_verified_businesses(self) -> List[Account]:
        return [a for a in self.list_accounts(AccountType.BUSINESS) if a.business.verified]

    def set_role(self, account_id: str, role: Role, now: Optional[datetime] = None) -> Outcome[Account]:
        """Operator-side role assignment; never reachable from registration input"""
        now = now or utc_now()

        def operation() -> Outcome[Account]:
            account = self.get_account(account_id)
            if account is None:
                return Outcome.fail(ErrorCode.ACCOUNT_NOT_FOUND)
            account.role = role
            account.updated_at = now
            self.save_account(account)
            return Outcome.ok(account)

        return self.storage.run_atomic(operation)

    # Card controls

    def set_card_active(self, account_id: str, active: bool,
                        now: Optional[datetime] = None) -> Outcome[Account]:
        """Freeze or unfreeze the account's card"""
        now = now or utc_now()

        def operation() -> Outcome[Account]:
            account = self.get_account(account_id)
            if account is None:
                return Outcome.fail(ErrorCode.ACCOUNT_NOT_FOUND)
            if account.card is None:
                return Outcome.fail(ErrorCode.CARD_NOT_FOUND)

            account.card.is_active = active
            account.updated_at = now
            self.save_account(account)
            self.audit_trail.log_event(
                event_type=AuditEventType.CARD_STATUS_CHANGED,
                entity_type="account",
                entity_id=account.id,
                metadata={"is_active": active, "card_last4": account.card.last4}
            )
            return Outcome.ok(account)

        return self.storage.run_atomic(operation)

    def set_card_daily_limit(self, account_id: str, daily_limit: Any,
                             now: Optional[datetime] = None) -> Outcome[Account]:
        now = now or utc_now()
        try:
            limit = to_amount(daily_limit, self.currency)
        except ValueError:
            return Outcome.fail(ErrorCode.INVALID_AMOUNT)
        if limit <= 0:
            return Outcome.fail(ErrorCode.INVALID_AMOUNT)

        def operation() -> Outcome[Account]:
            account = self.get_account(account_id)
            if account is None:
                return Outcome.fail(ErrorCode.ACCOUNT_NOT_FOUND)
            if account.card is None:
                return Outcome.fail(ErrorCode.CARD_NOT_FOUND)

            old_limit = account.card.daily_limit
            account.card.daily_limit = limit
            account.updated_at = now
            self.save_account(account)
            self.audit_trail.log_event(
                event_type=AuditEventType.CARD_LIMIT_CHANGED,
                entity_type="account",
                entity_id=account.id,
                metadata={"old_limit": old_limit, "new_limit": limit}
            )
            return Outcome.ok(account)

        return self.storage.run_atomic(operation)

    # Persistence

    def save_account(self, account: Account) -> None:
        """Save account to storage"""
        self.storage.save(self.accounts_table, account.id, self._account_to_dict(account))

    def _account_to_dict(self, account: Account) -> Dict[str, Any]:
        """Convert Account to dictionary for storage"""
        result = {
            "id": account.id,
            "created_at": account.created_at.isoformat(),
            "updated_at": account.updated_at.isoformat(),
            "email": account.email,
            "email_fingerprint": self.email_fingerprint(account.email),
            "first_name": account.first_name,
            "last_name": account.last_name,
            "password_hash": account.password_hash,
            "account_type": account.account_type.value,
            "role": account.role.value,
            "balance": str(account.balance.amount),
            "currency": account.currency.code
        }

        card = account.card
        if card:
            result.update({
                "card_number": card.card_number,
                "card_fingerprint": self.card_fingerprint(card.card_number),
                "cvv_hash": card.cvv_hash,
                "pin_hash": card.pin_hash,
                "card_expiry": card.expiry_date.isoformat(),
                "card_active": card.is_active,
                "card_daily_limit": str(card.daily_limit),
                "card_daily_spent": str(card.daily_spent),
                "card_last_reset": format_timestamp(card.last_reset_date),
                "card_last_used": format_timestamp(card.last_used)
            })

        if account.business:
            result.update({
                "business_name": account.business.business_name,
                "business_type": account.business.business_type,
                "business_verified": account.business.verified,
                "business_verified_at": format_timestamp(account.business.verified_at)
            })

        return result

    def _account_from_dict(self, data: Dict[str, Any]) -> Account:
        """Convert dictionary to Account"""
        currency = Currency[data["currency"]]

        card = None
        if data.get("card_number"):
            card = VirtualCard(
                card_number=data["card_number"],
                cvv_hash=data["cvv_hash"],
                pin_hash=data["pin_hash"],
                expiry_date=parse_timestamp(data["card_expiry"]),
                daily_limit=Decimal(data["card_daily_limit"]),
                is_active=data["card_active"],
                daily_spent=Decimal(data["card_daily_spent"]),
                last_reset_date=parse_timestamp(data.get("card_last_reset")),
                last_used=parse_timestamp(data.get("card_last_used"))
            )

        business = None
        if data.get("business_name") is not None:
            business = BusinessProfile(
                business_name=data["business_name"],
                business_type=data.get("business_type", ""),
                verified=data.get("business_verified", False),
                verified_at=parse_timestamp(data.get("business_verified_at"))
            )

        return Account(
            id=data["id"],
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
            email=data["email"],
            first_name=data["first_name"],
            last_name=data["last_name"],
            password_hash=data["password_hash"],
            account_type=AccountType(data["account_type"]),
            balance=Money(Decimal(data["balance"]), currency),
            role=Role(data["role"]),
            card=card,
            business=business
        )
