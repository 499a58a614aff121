"""
Bank Reserve Module

The single pool of bank funds that backs wallet deposits and absorbs wallet
withdrawals. Deposits move money reserve -> wallet, withdrawals move it
wallet -> reserve, so reserve + wallet funds sourced from it stay conserved.

The reserve is stored under a fixed primary key and created lazily on first
access, so a second reserve can never exist.
"""

from decimal import Decimal
from datetime import datetime
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .currency import Money, Currency, to_amount
from .storage import StorageInterface, StorageRecord, DuplicateRecordError
from .audit import AuditTrail, AuditEventType
from .errors import ErrorCode, Outcome
from .periods import utc_now
from .logging_config import get_logger, log_action


logger = get_logger("payment_core.reserve")

RESERVE_ID = "bank_reserve"


@dataclass
class BankReserve(StorageRecord):
    """Singleton reserve with cumulative deposit/withdrawal totals"""
    bank_balance: Money
    total_deposits: Money
    total_withdrawals: Money

    def can_cover(self, amount: Money) -> bool:
        return self.bank_balance >= amount

    def pay_out(self, amount: Money, now: datetime) -> None:
        """Reserve side of a deposit"""
        self.bank_balance = self.bank_balance - amount
        self.total_deposits = self.total_deposits + amount
        self.updated_at = now

    def take_in(self, amount: Money, now: datetime) -> None:
        """Reserve side of a withdrawal"""
        self.bank_balance = self.bank_balance + amount
        self.total_withdrawals = self.total_withdrawals + amount
        self.updated_at = now

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "currency": self.bank_balance.currency.code,
            "bank_balance": str(self.bank_balance.amount),
            "total_deposits": str(self.total_deposits.amount),
            "total_withdrawals": str(self.total_withdrawals.amount)
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BankReserve':
        currency = Currency[data["currency"]]
        return cls(
            id=data["id"],
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
            bank_balance=Money(Decimal(data["bank_balance"]), currency),
            total_deposits=Money(Decimal(data["total_deposits"]), currency),
            total_withdrawals=Money(Decimal(data["total_withdrawals"]), currency)
        )


class BankReserveManager:
    """
    Get-or-create access to the reserve and capital funding
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        currency: Currency = Currency.PHP,
        initial_balance: Decimal = Decimal("0")
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.currency = currency
        self.initial_balance = initial_balance
        self.reserve_table = "bank_reserve"

    def get_reserve(self) -> Optional[BankReserve]:
        """Read the reserve without creating it"""
        data = self.storage.load(self.reserve_table, RESERVE_ID)
        return BankReserve.from_dict(data) if data else None

    def get_or_create(self, now: Optional[datetime] = None) -> BankReserve:
        """
        Load the reserve, creating it with the configured opening balance

        Runs inside (or joins) an atomic scope; the fixed primary key makes a
        concurrent second creation fail instead of producing a duplicate.
        """
        now = now or utc_now()
        joined = self.storage.in_transaction
        with self.storage.atomic():
            reserve = self.get_reserve()
            if reserve:
                return reserve

            reserve = BankReserve(
                id=RESERVE_ID,
                created_at=now,
                updated_at=now,
                bank_balance=Money(self.initial_balance, self.currency),
                total_deposits=Money.zero(self.currency),
                total_withdrawals=Money.zero(self.currency)
            )
            try:
                self.storage.insert(self.reserve_table, RESERVE_ID, reserve.to_dict())
            except DuplicateRecordError:
                return self.get_reserve()

            self.audit_trail.log_event(
                event_type=AuditEventType.RESERVE_CREATED,
                entity_type="reserve",
                entity_id=RESERVE_ID,
                metadata={"opening_balance": reserve.bank_balance.amount}
            )
        # A joined scope may still roll the creation back
        if not joined:
            logger.info("Bank reserve created")
        return reserve

    def save_reserve(self, reserve: BankReserve) -> None:
        self.storage.save(self.reserve_table, reserve.id, reserve.to_dict())

    def fund_reserve(self, amount: Any, actor_id: Optional[str] = None,
                     now: Optional[datetime] = None) -> Outcome[BankReserve]:
        """Add bank capital to the reserve (not a wallet movement)"""
        now = now or utc_now()
        try:
            value = to_amount(amount, self.currency)
        except ValueError:
            return Outcome.fail(ErrorCode.INVALID_AMOUNT)
        if value <= 0:
            return Outcome.fail(ErrorCode.INVALID_AMOUNT)

        def operation() -> Outcome[BankReserve]:
            reserve = self.get_or_create(now)
            reserve.bank_balance = reserve.bank_balance + Money(value, self.currency)
            reserve.updated_at = now
            self.save_reserve(reserve)
            self.audit_trail.log_event(
                event_type=AuditEventType.RESERVE_FUNDED,
                entity_type="reserve",
                entity_id=RESERVE_ID,
                metadata={"amount": value, "bank_balance": reserve.bank_balance.amount},
                user_id=actor_id
            )
            return Outcome.ok(reserve)

        outcome = self.storage.run_atomic(operation)
        if outcome.is_ok:
            log_action(logger, "info", "Bank reserve funded", user_id=actor_id,
                       action="fund_reserve", resource=RESERVE_ID,
                       extra={"amount": str(value)})
        return outcome
