"""
API Authentication Gateway Module

Front door for merchant requests made with an API key. A request is accepted
only when the key resolves, its business is verified, the caller IP is
allowed and the key is within its rate limits. Permission, transaction-limit
and browser-origin checks are separate steps the routes apply afterwards.
"""

from decimal import Decimal
from datetime import datetime
from dataclasses import dataclass
from typing import Any, Optional

from .accounts import Account, AccountManager
from .api_keys import APIKey, APIKeyRegistry, Permission
from .currency import to_amount
from .errors import ErrorCode, Failure, Outcome
from .storage import StorageInterface
from .periods import utc_now
from .logging_config import get_logger, log_action


logger = get_logger("payment_core.gateway")

PUBLIC_PATH_PREFIX = "/api/public"


@dataclass
class AuthContext:
    """Resolved identity of an accepted merchant request"""
    api_key: APIKey
    business: Account
    client_ip: Optional[str]
    authenticated_at: datetime

    @property
    def business_id(self) -> str:
        return self.business.id

    @property
    def api_key_id(self) -> str:
        return self.api_key.id


@dataclass
class CorsDecision:
    """
    Outcome of the origin check for one request

    `origin` is the value to echo in Access-Control-Allow-Origin, None when
    nothing should be echoed.
    """
    allowed: bool
    origin: Optional[str] = None
    server_to_server: bool = False
    failure: Optional[Failure] = None


class AuthenticationGateway:
    """
    Authenticates API keys and applies per-key authorization checks
    """

    def __init__(
        self,
        storage: StorageInterface,
        key_registry: APIKeyRegistry,
        account_manager: AccountManager,
        public_path_prefix: str = PUBLIC_PATH_PREFIX
    ):
        self.storage = storage
        self.key_registry = key_registry
        self.account_manager = account_manager
        self.public_path_prefix = public_path_prefix

    def authenticate(self, presented_key: Optional[str], client_ip: Optional[str],
                     now: Optional[datetime] = None) -> Outcome[AuthContext]:
        """
        Accept or reject a presented API key

        Malformed, unknown, revoked and expired keys fail identically with
        INVALID_API_KEY. On acceptance the key's usage counters are updated
        in their own atomic scope.

        Args:
            presented_key: Value of the X-API-Key header
            client_ip: Caller address checked against the key's whitelist
            now: Clock reading for the operation

        Returns:
            Outcome with the AuthContext
        """
        if not presented_key:
            return Outcome.fail(ErrorCode.MISSING_API_KEY)
        now = now or utc_now()

        def operation() -> Outcome[AuthContext]:
            api_key = self.key_registry.find_by_key(presented_key, now)
            if api_key is None:
                return Outcome.fail(ErrorCode.INVALID_API_KEY)

            business = self.account_manager.get_account(api_key.business_id)
            if business is None or not business.is_verified_business:
                return Outcome.fail(ErrorCode.BUSINESS_NOT_VERIFIED)
            if not api_key.is_ip_allowed(client_ip):
                return Outcome.fail(ErrorCode.IP_NOT_ALLOWED)
            if not api_key.check_rate_limit(now):
                return Outcome.fail(ErrorCode.RATE_LIMIT_EXCEEDED)

            api_key.record_usage(now)
            self.key_registry.save_key(api_key)
            return Outcome.ok(AuthContext(
                api_key=api_key,
                business=business,
                client_ip=client_ip,
                authenticated_at=now
            ))

        outcome = self.storage.run_atomic(operation)
        if not outcome.is_ok:
            log_action(logger, "warning", "API key rejected", action="authenticate",
                       extra={"code": outcome.code.code, "client_ip": client_ip})
        return outcome

    def require_permission(self, context: Optional[AuthContext],
                           *permissions: Permission) -> Outcome[AuthContext]:
        """Every listed permission must be granted to the context's key"""
        if context is None:
            return Outcome.fail(ErrorCode.NOT_AUTHENTICATED)
        for permission in permissions:
            if not context.api_key.has_permission(permission):
                return Outcome.fail(
                    ErrorCode.PERMISSION_DENIED,
                    f"This API key does not have '{permission.value}' permission."
                )
        return Outcome.ok(context)

    def check_transaction_limit(self, context: Optional[AuthContext], amount: Any,
                                now: Optional[datetime] = None) -> Outcome[Decimal]:
        """
        Pre-check an amount against the key's transaction limits

        The ledger repeats this check inside the charge scope, where the
        day-scoped total is also incremented.
        """
        if context is None:
            return Outcome.fail(ErrorCode.NOT_AUTHENTICATED)
        try:
            value = to_amount(amount, self.account_manager.currency)
        except ValueError:
            return Outcome.fail(ErrorCode.INVALID_AMOUNT)
        if value <= 0:
            return Outcome.fail(ErrorCode.INVALID_AMOUNT)

        reason = context.api_key.can_process_transaction(value, now or utc_now())
        if reason:
            return Outcome.fail(ErrorCode.TRANSACTION_LIMIT_EXCEEDED, reason)
        return Outcome.ok(value)

    def check_origin(self, presented_key: Optional[str], origin: Optional[str], path: str,
                     now: Optional[datetime] = None) -> CorsDecision:
        """
        Decide whether a browser origin may call a public route with this key

        Only public routes are restricted. A request without an Origin header
        is server-to-server and is allowed without echo. A missing or unknown
        key is left for authentication to reject.
        """
        if not path.startswith(self.public_path_prefix):
            return CorsDecision(allowed=True, origin=origin)
        if not origin:
            return CorsDecision(allowed=True, server_to_server=True)
        if not presented_key:
            return CorsDecision(allowed=True)

        api_key = self.key_registry.find_by_key(presented_key, now or utc_now())
        if api_key is None:
            return CorsDecision(allowed=True)
        if api_key.is_origin_allowed(origin):
            return CorsDecision(allowed=True, origin=origin)

        log_action(logger, "warning", "Origin rejected", action="check_origin",
                   resource=api_key.key_prefix, extra={"origin": origin[:200]})
        return CorsDecision(
            allowed=False,
            failure=Failure(
                ErrorCode.ORIGIN_NOT_ALLOWED,
                "Origin is not in the allowed origins list for this API key."
            )
        )
