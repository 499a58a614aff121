"""
API Key Registry Module

Merchant API keys that let a verified business charge cards and issue
refunds through the public API. Plaintext keys are shown exactly once at
creation; only a SHA-256 hash and a short display prefix are stored.

Each key carries:
- A closed permission set (charge, refund, balance, transactions)
- Request rate limits (per minute and per day)
- Transaction amount limits (per transaction and per day)
- Origin and IP allow-lists
- Usage counters reset lazily on the first use of a new day
"""

import hashlib
import ipaddress
import secrets
import string
from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Union
from enum import Enum
import uuid

from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .accounts import AccountManager
from .currency import to_amount
from .errors import ErrorCode, Outcome
from .origins import is_valid_origin_pattern, is_origin_allowed
from .periods import utc_now, reset_if_new_period, minute_key, parse_timestamp, format_timestamp
from .logging_config import get_logger, log_action


logger = get_logger("payment_core.api_keys")

LIVE_PREFIX = "scb_live_"
TEST_PREFIX = "scb_test_"
KEY_RANDOM_BYTES = 24
DISPLAY_PREFIX_LENGTH = 12

NAME_MIN_LENGTH = 3
NAME_MAX_LENGTH = 50
REQUESTS_PER_MINUTE_RANGE = (1, 1000)
REQUESTS_PER_DAY_RANGE = (100, 100000)

DEFAULT_REQUESTS_PER_MINUTE = 60
DEFAULT_REQUESTS_PER_DAY = 10000
DEFAULT_MAX_AMOUNT_PER_TRANSACTION = Decimal("100000.00")
DEFAULT_DAILY_TRANSACTION_LIMIT = Decimal("500000.00")
DEFAULT_MAX_KEYS_PER_BUSINESS = 5

_HEX_DIGITS = frozenset(string.hexdigits.lower())


class Permission(Enum):
    """Operations an API key may be granted"""
    CHARGE = "charge"
    REFUND = "refund"
    BALANCE = "balance"
    TRANSACTIONS = "transactions"


DEFAULT_PERMISSIONS = (Permission.CHARGE, Permission.TRANSACTIONS)


class KeyEnvironment(Enum):
    LIVE = "live"
    TEST = "test"


def hash_key(plain_key: str) -> str:
    """SHA-256 hex digest under which a key is stored and looked up"""
    return hashlib.sha256(plain_key.encode("utf-8")).hexdigest()


@dataclass
class APIKey(StorageRecord):
    """
    Stored merchant API key (never holds the plaintext)
    """
    business_id: str
    name: str
    key_hash: str
    key_prefix: str
    permissions: List[Permission]
    environment: KeyEnvironment = KeyEnvironment.LIVE

    # Rate limits
    requests_per_minute: int = DEFAULT_REQUESTS_PER_MINUTE
    requests_per_day: int = DEFAULT_REQUESTS_PER_DAY

    # Transaction limits
    max_amount_per_transaction: Decimal = DEFAULT_MAX_AMOUNT_PER_TRANSACTION
    daily_transaction_limit: Decimal = DEFAULT_DAILY_TRANSACTION_LIMIT
    daily_transaction_total: Decimal = Decimal("0")

    # Usage
    total_requests: int = 0
    daily_requests: int = 0
    minute_requests: int = 0
    minute_window: Optional[str] = None
    last_used: Optional[datetime] = None
    last_reset_date: Optional[datetime] = None

    allowed_origins: List[str] = field(default_factory=list)
    ip_whitelist: List[str] = field(default_factory=list)
    expires_at: Optional[datetime] = None

    is_active: bool = True
    revoked_at: Optional[datetime] = None
    revoked_reason: Optional[str] = None

    def has_permission(self, permission: Permission) -> bool:
        return permission in self.permissions

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now > self.expires_at

    def is_usable(self, now: datetime) -> bool:
        """Active, never revoked and not past its expiry"""
        return self.is_active and self.revoked_at is None and not self.is_expired(now)

    def is_ip_allowed(self, ip: Optional[str]) -> bool:
        """An empty whitelist allows every caller"""
        if not self.ip_whitelist:
            return True
        client = _parse_ip(ip)
        if client is None:
            return False
        return any(_parse_ip(entry) == client for entry in self.ip_whitelist)

    def is_origin_allowed(self, origin: Optional[str]) -> bool:
        return is_origin_allowed(origin, self.allowed_origins)

    def _roll_period(self, now: datetime) -> None:
        # Both day-scoped counters share last_reset_date and reset together
        self.daily_transaction_total, _ = reset_if_new_period(
            self.daily_transaction_total, self.last_reset_date, now
        )
        self.daily_requests, self.last_reset_date = reset_if_new_period(
            self.daily_requests, self.last_reset_date, now
        )

    def _requests_this_minute(self, now: datetime) -> int:
        return self.minute_requests if self.minute_window == minute_key(now) else 0

    def check_rate_limit(self, now: datetime) -> bool:
        """True if one more request fits both the per-minute and per-day limits"""
        self._roll_period(now)
        if self.daily_requests >= self.requests_per_day:
            return False
        return self._requests_this_minute(now) < self.requests_per_minute

    def record_usage(self, now: datetime) -> None:
        self._roll_period(now)
        self.minute_requests = self._requests_this_minute(now) + 1
        self.minute_window = minute_key(now)
        self.total_requests += 1
        self.daily_requests += 1
        self.last_used = now

    def can_process_transaction(self, amount: Decimal, now: datetime) -> Optional[str]:
        """
        Check an amount against this key's transaction limits

        Returns:
            None if allowed, otherwise the reason it is not
        """
        self._roll_period(now)
        if amount > self.max_amount_per_transaction:
            return "Amount exceeds maximum per transaction limit"
        if self.daily_transaction_total + amount > self.daily_transaction_limit:
            return "Daily transaction limit exceeded"
        return None

    def record_transaction(self, amount: Decimal, now: datetime) -> None:
        self._roll_period(now)
        self.daily_transaction_total += amount

    def public_view(self) -> Dict[str, Any]:
        """Listing view; the hash never leaves the registry"""
        return {
            "id": self.id,
            "key_prefix": self.key_prefix,
            "name": self.name,
            "environment": self.environment.value,
            "permissions": [p.value for p in self.permissions],
            "is_active": self.is_active,
            "rate_limit": {
                "requests_per_minute": self.requests_per_minute,
                "requests_per_day": self.requests_per_day
            },
            "transaction_limits": {
                "max_amount_per_transaction": str(self.max_amount_per_transaction),
                "daily_transaction_limit": str(self.daily_transaction_limit),
                "daily_transaction_total": str(self.daily_transaction_total)
            },
            "usage": {
                "total_requests": self.total_requests,
                "daily_requests": self.daily_requests,
                "last_used": format_timestamp(self.last_used)
            },
            "allowed_origins": list(self.allowed_origins),
            "ip_whitelist": list(self.ip_whitelist),
            "expires_at": format_timestamp(self.expires_at),
            "created_at": self.created_at.isoformat(),
            "revoked_at": format_timestamp(self.revoked_at),
            "revoked_reason": self.revoked_reason
        }


@dataclass
class CreatedKey:
    """A newly created key; plain_key is the only copy of the secret"""
    api_key: APIKey
    plain_key: str


def _parse_permissions(permissions: Optional[Iterable[Any]]) -> Optional[List[Permission]]:
    if permissions is None:
        return list(DEFAULT_PERMISSIONS)
    parsed = []
    for permission in permissions:
        try:
            value = permission if isinstance(permission, Permission) else Permission(permission)
        except ValueError:
            return None
        if value not in parsed:
            parsed.append(value)
    return parsed or None


def _parse_ip(value: Any) -> Optional[Union[ipaddress.IPv4Address, ipaddress.IPv6Address]]:
    """Parse an address, unwrapping IPv4-mapped IPv6 (::ffff:a.b.c.d) to plain IPv4"""
    if not isinstance(value, str):
        return None
    try:
        address = ipaddress.ip_address(value.strip())
    except ValueError:
        return None
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped:
        return address.ipv4_mapped
    return address


def _normalize_ips(values: List[str]) -> Optional[List[str]]:
    """Canonical text form of each address, or None if any entry is invalid"""
    normalized = []
    for value in values:
        address = _parse_ip(value)
        if address is None:
            return None
        if str(address) not in normalized:
            normalized.append(str(address))
    return normalized


class APIKeyRegistry:
    """
    Creates, looks up, meters and revokes merchant API keys
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        account_manager: AccountManager,
        max_keys_per_business: int = DEFAULT_MAX_KEYS_PER_BUSINESS,
        live_prefix: str = LIVE_PREFIX,
        test_prefix: str = TEST_PREFIX,
        default_requests_per_minute: int = DEFAULT_REQUESTS_PER_MINUTE,
        default_requests_per_day: int = DEFAULT_REQUESTS_PER_DAY,
        default_max_amount_per_transaction: Decimal = DEFAULT_MAX_AMOUNT_PER_TRANSACTION,
        default_daily_transaction_limit: Decimal = DEFAULT_DAILY_TRANSACTION_LIMIT
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.account_manager = account_manager
        self.max_keys_per_business = max_keys_per_business
        self.prefixes = {KeyEnvironment.LIVE: live_prefix, KeyEnvironment.TEST: test_prefix}
        self.default_requests_per_minute = default_requests_per_minute
        self.default_requests_per_day = default_requests_per_day
        self.default_max_amount_per_transaction = default_max_amount_per_transaction
        self.default_daily_transaction_limit = default_daily_transaction_limit
        self.keys_table = "api_keys"

    def generate_plain_key(self, environment: KeyEnvironment = KeyEnvironment.LIVE) -> str:
        return self.prefixes[environment] + secrets.token_hex(KEY_RANDOM_BYTES)

    def is_well_formed(self, plain_key: Optional[str]) -> bool:
        """Known prefix followed by exactly 48 lowercase hex characters"""
        if not plain_key:
            return False
        for prefix in self.prefixes.values():
            if plain_key.startswith(prefix):
                body = plain_key[len(prefix):]
                return len(body) == KEY_RANDOM_BYTES * 2 and all(c in _HEX_DIGITS for c in body)
        return False

    def create_key(
        self,
        business_id: str,
        name: str,
        permissions: Optional[Iterable[Any]] = None,
        environment: KeyEnvironment = KeyEnvironment.LIVE,
        allowed_origins: Optional[List[str]] = None,
        ip_whitelist: Optional[List[str]] = None,
        expires_at: Optional[datetime] = None,
        requests_per_minute: Optional[int] = None,
        requests_per_day: Optional[int] = None,
        max_amount_per_transaction: Any = None,
        daily_transaction_limit: Any = None,
        now: Optional[datetime] = None
    ) -> Outcome[CreatedKey]:
        """
        Create an API key for a verified business

        Args:
            business_id: Owning business account
            name: Display name, 3-50 characters
            permissions: Subset of Permission values, defaults to charge + transactions
            environment: live or test (selects the key prefix)
            allowed_origins: Browser origins allowed to use the key
            ip_whitelist: Caller IPs allowed to use the key (empty allows all)
            expires_at: Optional hard expiry
            requests_per_minute: 1-1000, defaults to 60
            requests_per_day: 100-100000, defaults to 10000
            max_amount_per_transaction: Per-charge ceiling
            daily_transaction_limit: Day-scoped charge total ceiling
            now: Clock reading for the operation

        Returns:
            Outcome with the CreatedKey; the plaintext is never retrievable again
        """
        now = now or utc_now()
        name = (name or "").strip()
        # Naive expiry times are read as UTC
        if expires_at is not None and expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)

        def operation() -> Outcome[CreatedKey]:
            business = self.account_manager.get_account(business_id)
            if business is None:
                return Outcome.fail(ErrorCode.ACCOUNT_NOT_FOUND)
            if not business.is_business:
                return Outcome.fail(ErrorCode.NOT_A_BUSINESS)
            if not business.business.verified:
                return Outcome.fail(ErrorCode.BUSINESS_NOT_VERIFIED)

            active_keys = [k for k in self.list_keys(business_id) if k.is_active]
            if len(active_keys) >= self.max_keys_per_business:
                return Outcome.fail(
                    ErrorCode.KEY_LIMIT_REACHED,
                    f"Maximum number of API keys ({self.max_keys_per_business}) reached. "
                    "Please revoke an existing key first."
                )

            if not NAME_MIN_LENGTH <= len(name) <= NAME_MAX_LENGTH:
                return Outcome.fail(
                    ErrorCode.VALIDATION_ERROR,
                    f"API key name must be between {NAME_MIN_LENGTH} and {NAME_MAX_LENGTH} characters."
                )

            parsed_permissions = _parse_permissions(permissions)
            if parsed_permissions is None:
                return Outcome.fail(ErrorCode.VALIDATION_ERROR, "Invalid permissions.")

            origins = list(allowed_origins or [])
            bad_origins = [o for o in origins if not is_valid_origin_pattern(o)]
            if bad_origins:
                return Outcome.fail(ErrorCode.INVALID_ORIGIN_PATTERN,
                                    f"Origin pattern '{bad_origins[0]}' is not allowed.")

            ips = _normalize_ips(list(ip_whitelist or []))
            if ips is None:
                return Outcome.fail(ErrorCode.VALIDATION_ERROR, "Invalid IP address in whitelist.")

            per_minute = requests_per_minute or self.default_requests_per_minute
            per_day = requests_per_day or self.default_requests_per_day
            if not REQUESTS_PER_MINUTE_RANGE[0] <= per_minute <= REQUESTS_PER_MINUTE_RANGE[1]:
                return Outcome.fail(ErrorCode.VALIDATION_ERROR,
                                    "requests_per_minute must be between 1 and 1000.")
            if not REQUESTS_PER_DAY_RANGE[0] <= per_day <= REQUESTS_PER_DAY_RANGE[1]:
                return Outcome.fail(ErrorCode.VALIDATION_ERROR,
                                    "requests_per_day must be between 100 and 100000.")

            try:
                max_amount = (to_amount(max_amount_per_transaction, self.account_manager.currency)
                              if max_amount_per_transaction is not None
                              else self.default_max_amount_per_transaction)
                daily_limit = (to_amount(daily_transaction_limit, self.account_manager.currency)
                               if daily_transaction_limit is not None
                               else self.default_daily_transaction_limit)
            except ValueError:
                return Outcome.fail(ErrorCode.INVALID_AMOUNT)
            if max_amount <= 0 or daily_limit <= 0:
                return Outcome.fail(ErrorCode.INVALID_AMOUNT)

            plain_key = self.generate_plain_key(environment)
            api_key = APIKey(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                business_id=business_id,
                name=name,
                key_hash=hash_key(plain_key),
                key_prefix=plain_key[:DISPLAY_PREFIX_LENGTH],
                permissions=parsed_permissions,
                environment=environment,
                requests_per_minute=per_minute,
                requests_per_day=per_day,
                max_amount_per_transaction=max_amount,
                daily_transaction_limit=daily_limit,
                last_reset_date=now,
                allowed_origins=origins,
                ip_whitelist=ips,
                expires_at=expires_at
            )
            self.storage.insert(self.keys_table, api_key.id, self._key_to_dict(api_key))

            self.audit_trail.log_event(
                event_type=AuditEventType.API_KEY_CREATED,
                entity_type="api_key",
                entity_id=api_key.id,
                metadata={
                    "key_prefix": api_key.key_prefix,
                    "name": api_key.name,
                    "permissions": [p.value for p in api_key.permissions],
                    "environment": environment.value
                },
                user_id=business_id
            )
            return Outcome.ok(CreatedKey(api_key=api_key, plain_key=plain_key))

        outcome = self.storage.run_atomic(operation)
        if outcome.is_ok:
            log_action(logger, "info", "API key created", user_id=business_id,
                       action="create_api_key", resource=outcome.value.api_key.id,
                       extra={"key_prefix": outcome.value.api_key.key_prefix})
        return outcome

    def find_by_key(self, plain_key: Optional[str], now: Optional[datetime] = None) -> Optional[APIKey]:
        """
        Resolve a presented key by hash

        Malformed, unknown, revoked and expired keys all resolve to None.
        """
        if not self.is_well_formed(plain_key):
            return None
        now = now or utc_now()
        matches = self.storage.find(self.keys_table, {"key_hash": hash_key(plain_key)})
        if not matches:
            return None
        api_key = self._key_from_dict(matches[0])
        return api_key if api_key.is_usable(now) else None

    def get_key(self, key_id: str) -> Optional[APIKey]:
        data = self.storage.load(self.keys_table, key_id)
        return self._key_from_dict(data) if data else None

    def list_keys(self, business_id: str) -> List[APIKey]:
        """All keys of a business, newest first"""
        keys = [self._key_from_dict(d) for d in self.storage.find(self.keys_table, {"business_id": business_id})]
        keys.sort(key=lambda k: k.created_at, reverse=True)
        return keys

    def _owned_key(self, business_id: str, key_id: str) -> Optional[APIKey]:
        api_key = self.get_key(key_id)
        if api_key is None or api_key.business_id != business_id:
            return None
        return api_key

    def revoke_key(self, business_id: str, key_id: str, reason: Optional[str] = None,
                   now: Optional[datetime] = None) -> Outcome[APIKey]:
        """Revoke a key permanently; a foreign key looks exactly like a missing one"""
        now = now or utc_now()

        def operation() -> Outcome[APIKey]:
            api_key = self._owned_key(business_id, key_id)
            if api_key is None:
                return Outcome.fail(ErrorCode.KEY_NOT_FOUND)
            if not api_key.is_active or api_key.revoked_at is not None:
                return Outcome.fail(ErrorCode.KEY_ALREADY_REVOKED)

            api_key.is_active = False
            api_key.revoked_at = now
            api_key.revoked_reason = reason or "Revoked by user"
            api_key.updated_at = now
            self.save_key(api_key)

            self.audit_trail.log_event(
                event_type=AuditEventType.API_KEY_REVOKED,
                entity_type="api_key",
                entity_id=api_key.id,
                metadata={"key_prefix": api_key.key_prefix, "reason": api_key.revoked_reason},
                user_id=business_id
            )
            return Outcome.ok(api_key)

        outcome = self.storage.run_atomic(operation)
        if outcome.is_ok:
            log_action(logger, "info", "API key revoked", user_id=business_id,
                       action="revoke_api_key", resource=key_id)
        return outcome

    def _update_key(self, business_id: str, key_id: str, changes: Dict[str, Any],
                    now: datetime) -> Outcome[APIKey]:
        def operation() -> Outcome[APIKey]:
            api_key = self._owned_key(business_id, key_id)
            if api_key is None:
                return Outcome.fail(ErrorCode.KEY_NOT_FOUND)
            if not api_key.is_active:
                return Outcome.fail(ErrorCode.KEY_ALREADY_REVOKED)

            for attribute, value in changes.items():
                setattr(api_key, attribute, value)
            api_key.updated_at = now
            self.save_key(api_key)

            self.audit_trail.log_event(
                event_type=AuditEventType.API_KEY_UPDATED,
                entity_type="api_key",
                entity_id=api_key.id,
                metadata=changes,
                user_id=business_id
            )
            return Outcome.ok(api_key)

        return self.storage.run_atomic(operation)

    def update_allowed_origins(self, business_id: str, key_id: str, origins: List[str],
                               now: Optional[datetime] = None) -> Outcome[APIKey]:
        for origin in origins:
            if not is_valid_origin_pattern(origin):
                return Outcome.fail(ErrorCode.INVALID_ORIGIN_PATTERN,
                                    f"Origin pattern '{origin}' is not allowed.")
        return self._update_key(business_id, key_id, {"allowed_origins": list(origins)},
                                now or utc_now())

    def update_ip_whitelist(self, business_id: str, key_id: str, ips: List[str],
                            now: Optional[datetime] = None) -> Outcome[APIKey]:
        normalized = _normalize_ips(list(ips))
        if normalized is None:
            return Outcome.fail(ErrorCode.VALIDATION_ERROR, "Invalid IP address in whitelist.")
        return self._update_key(business_id, key_id, {"ip_whitelist": normalized}, now or utc_now())

    def save_key(self, api_key: APIKey) -> None:
        self.storage.save(self.keys_table, api_key.id, self._key_to_dict(api_key))

    def _key_to_dict(self, api_key: APIKey) -> Dict[str, Any]:
        result = api_key.to_dict()
        result["permissions"] = [p.value for p in api_key.permissions]
        result["environment"] = api_key.environment.value
        for name in ("last_used", "last_reset_date", "expires_at", "revoked_at"):
            result[name] = format_timestamp(getattr(api_key, name))
        return result

    def _key_from_dict(self, data: Dict[str, Any]) -> APIKey:
        data = dict(data)
        data["created_at"] = datetime.fromisoformat(data["created_at"])
        data["updated_at"] = datetime.fromisoformat(data["updated_at"])
        data["permissions"] = [Permission(p) for p in data["permissions"]]
        data["environment"] = KeyEnvironment(data["environment"])
        for name in ("max_amount_per_transaction", "daily_transaction_limit", "daily_transaction_total"):
            data[name] = Decimal(data[name])
        for name in ("last_used", "last_reset_date", "expires_at", "revoked_at"):
            data[name] = parse_timestamp(data.get(name))
        return APIKey(**data)
