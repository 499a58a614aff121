"""
System container and request dependencies

Internal routes authenticate account holders with a JWT bearer token.
Public routes authenticate merchants with the X-API-Key header.
"""

import threading
import time
from collections import defaultdict, deque
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Deque, Dict, Optional

import jwt
from fastapi import Depends, Header, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from ..accounts import Account, AccountManager, Role
from ..api_keys import APIKeyRegistry, Permission
from ..audit import AuditTrail
from ..config import PaymentCoreConfig, get_config
from ..currency import currency_from_code
from ..encryption import EncryptedStorage, KeyManager, create_encryption_provider
from ..errors import ErrorCode, PaymentError
from ..gateway import AuthContext, AuthenticationGateway
from ..reserve import BankReserveManager
from ..storage import StorageInterface, create_storage
from ..transactions import TransactionLedger
from ..logging_config import get_logger


logger = get_logger("payment_core.api")

security = HTTPBearer(auto_error=False)


class PaymentSystem:
    """Payment core with all components initialized over one storage"""

    def __init__(self, settings: Optional[PaymentCoreConfig] = None,
                 storage: Optional[StorageInterface] = None):
        self.config = settings or get_config()
        inner = storage or create_storage(self.config.storage_backend, self.config.sqlite_path)
        provider = create_encryption_provider(self.config.encryption_provider,
                                              self.config.encryption_master_key)
        self.storage = EncryptedStorage(inner, provider)
        self.key_manager = KeyManager(self.config.fingerprint_key)
        self.audit_trail = AuditTrail(self.storage, enabled=self.config.enable_audit_logging)

        currency = currency_from_code(self.config.default_currency)
        self.account_manager = AccountManager(
            self.storage, self.audit_trail, self.key_manager,
            currency=currency,
            card_daily_limit=Decimal(self.config.card_daily_limit),
            card_validity_years=self.config.card_validity_years,
            issuer_digit=self.config.card_issuer_digit,
            password_min_length=self.config.password_min_length
        )
        self.reserve_manager = BankReserveManager(
            self.storage, self.audit_trail,
            currency=currency,
            initial_balance=Decimal(self.config.reserve_initial_balance)
        )
        self.key_registry = APIKeyRegistry(
            self.storage, self.audit_trail, self.account_manager,
            max_keys_per_business=self.config.max_api_keys_per_business,
            live_prefix=self.config.api_key_live_prefix,
            test_prefix=self.config.api_key_test_prefix,
            default_requests_per_minute=self.config.api_key_requests_per_minute,
            default_requests_per_day=self.config.api_key_requests_per_day,
            default_max_amount_per_transaction=Decimal(self.config.api_key_max_amount_per_transaction),
            default_daily_transaction_limit=Decimal(self.config.api_key_daily_transaction_limit)
        )
        self.ledger = TransactionLedger(
            self.storage, self.audit_trail, self.account_manager,
            self.reserve_manager, self.key_registry
        )
        self.gateway = AuthenticationGateway(self.storage, self.key_registry, self.account_manager)

    def create_access_token(self, account: Account) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "sub": account.id,
            "role": account.role.value,
            "account_type": account.account_type.value,
            "iat": now,
            "exp": now + timedelta(hours=self.config.jwt_expiry_hours)
        }
        return jwt.encode(payload, self.config.jwt_secret, algorithm=self.config.jwt_algorithm)

    def decode_access_token(self, token: str) -> str:
        """Account id carried by a valid token"""
        try:
            payload = jwt.decode(token, self.config.jwt_secret, algorithms=[self.config.jwt_algorithm])
        except jwt.ExpiredSignatureError:
            raise PaymentError(ErrorCode.NOT_AUTHENTICATED, "Token expired.")
        except jwt.InvalidTokenError:
            raise PaymentError(ErrorCode.NOT_AUTHENTICATED, "Invalid token.")
        account_id = payload.get("sub")
        if not account_id:
            raise PaymentError(ErrorCode.NOT_AUTHENTICATED, "Invalid token.")
        return account_id


_default_system: Optional[PaymentSystem] = None
_default_lock = threading.Lock()


def resolve_system(app) -> PaymentSystem:
    """System attached to the app, or the lazily built process-wide one"""
    global _default_system
    system = getattr(app.state, "payment_system", None)
    if system is not None:
        return system
    with _default_lock:
        if _default_system is None:
            _default_system = PaymentSystem()
        return _default_system


def get_payment_system(request: Request) -> PaymentSystem:
    return resolve_system(request.app)


def client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


# Account holder authentication

def get_current_account(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    system: PaymentSystem = Depends(get_payment_system)
) -> Account:
    """Dependency that validates the JWT and loads the account"""
    if not credentials:
        raise PaymentError(ErrorCode.NOT_AUTHENTICATED)
    account_id = system.decode_access_token(credentials.credentials)
    account = system.account_manager.get_account(account_id)
    if account is None:
        raise PaymentError(ErrorCode.NOT_AUTHENTICATED, "Invalid token.")
    return account


def require_role(*roles: Role) -> Callable[..., Account]:
    """Dependency factory for role checking"""
    def check(account: Account = Depends(get_current_account)) -> Account:
        if account.role not in roles:
            raise PaymentError(ErrorCode.FORBIDDEN)
        return account
    return check


def get_current_business(account: Account = Depends(get_current_account)) -> Account:
    if not account.is_business:
        raise PaymentError(ErrorCode.NOT_A_BUSINESS)
    return account


# Merchant authentication

def get_api_context(
    request: Request,
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
    system: PaymentSystem = Depends(get_payment_system)
) -> AuthContext:
    """Dependency that authenticates the X-API-Key header"""
    return system.gateway.authenticate(x_api_key, client_ip(request)).unwrap()


def require_api_permission(permission: Permission) -> Callable[..., AuthContext]:
    """Dependency factory for API key permission checking"""
    def check(
        context: AuthContext = Depends(get_api_context),
        system: PaymentSystem = Depends(get_payment_system)
    ) -> AuthContext:
        return system.gateway.require_permission(context, permission).unwrap()
    return check


class RateLimiter:
    """Sliding one-window request limiter keyed by caller"""

    def __init__(self, max_requests: int, window_seconds: int):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.requests: Dict[str, Deque[float]] = defaultdict(deque)
        self._lock = threading.Lock()

    def allow(self, key: str) -> bool:
        now = time.monotonic()
        with self._lock:
            hits = self.requests[key]
            # Drop entries older than the window
            while hits and now - hits[0] >= self.window_seconds:
                hits.popleft()
            if len(hits) >= self.max_requests:
                return False
            hits.append(now)
            return True


# Card verification reveals whether a number/CVV pair is valid; throttle guessing
card_verify_limiter = RateLimiter(max_requests=5, window_seconds=15 * 60)


def limit_card_verification(request: Request,
                            context: AuthContext = Depends(get_api_context)) -> AuthContext:
    if not card_verify_limiter.allow(f"{context.api_key_id}:{client_ip(request)}"):
        raise PaymentError(
            ErrorCode.RATE_LIMIT_EXCEEDED,
            "Too many card verification attempts, please try again later."
        )
    return context
