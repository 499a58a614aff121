"""
Transaction Processing Module

Moves money between wallets, the bank reserve and merchants:
- Transfers between two wallets
- Deposits (reserve -> wallet) and withdrawals (wallet -> reserve)
- Card charges made by a merchant through an API key
- Full or partial refunds of a charge

Every mutating operation runs inside one atomic storage scope: participants
are loaded, validated, updated and written together with one immutable
Transaction record, or nothing is written at all. Balances are fixed-point
Decimals and are never allowed to go negative.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from enum import Enum
import math
import uuid

from .currency import Money, Currency, to_amount
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .accounts import AccountManager, Account, AccountType
from .reserve import BankReserveManager
from .api_keys import APIKeyRegistry
from .errors import ErrorCode, Outcome
from .periods import utc_now, parse_timestamp
from .logging_config import get_logger, log_action
from . import cards


logger = get_logger("payment_core.transactions")

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


class TransactionType(Enum):
    """Types of ledger transactions"""
    DEPOSIT = "deposit"      # Reserve -> wallet
    WITHDRAW = "withdraw"    # Wallet -> reserve
    TRANSFER = "transfer"    # Wallet -> wallet
    PAYMENT = "payment"      # Card holder -> merchant
    REFUND = "refund"        # Merchant -> card holder


class TransactionStatus(Enum):
    COMPLETED = "completed"
    REFUNDED = "refunded"    # Only ever set on an original payment


class TransactionCategory(Enum):
    """Derived from the participants' account types at write time"""
    B2B = "B2B"
    B2C = "B2C"
    C2C = "C2C"


def derive_category(first: Optional[Account], second: Optional[Account]) -> Optional[TransactionCategory]:
    """
    Category of a two-party movement; None when either side is not an account
    """
    if first is None or second is None:
        return None
    kinds = {first.account_type, second.account_type}
    if kinds == {AccountType.BUSINESS}:
        return TransactionCategory.B2B
    if kinds == {AccountType.PERSONAL}:
        return TransactionCategory.C2C
    return TransactionCategory.B2C


@dataclass
class Transaction(StorageRecord):
    """
    Immutable ledger record; `id` is the globally unique reference

    Balances before/after are recorded per side. A side is None where the
    counterparty is the bank reserve.
    """
    transaction_type: TransactionType
    amount: Money
    sender_id: Optional[str] = None
    recipient_id: Optional[str] = None
    sender_balance_before: Optional[Decimal] = None
    sender_balance_after: Optional[Decimal] = None
    recipient_balance_before: Optional[Decimal] = None
    recipient_balance_after: Optional[Decimal] = None
    category: Optional[TransactionCategory] = None
    status: TransactionStatus = TransactionStatus.COMPLETED
    description: str = ""
    external_reference: Optional[str] = None
    card_last4: Optional[str] = None
    business_id: Optional[str] = None
    api_key_id: Optional[str] = None
    original_transaction_id: Optional[str] = None
    reason: Optional[str] = None

    def __post_init__(self):
        if not self.amount.is_positive():
            raise ValueError("Transaction amount must be positive")

    @property
    def reference(self) -> str:
        return self.id

    @property
    def currency(self) -> Currency:
        return self.amount.currency

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "transaction_type": self.transaction_type.value,
            "amount": str(self.amount.amount),
            "currency": self.amount.currency.code,
            "sender_id": self.sender_id,
            "recipient_id": self.recipient_id,
            "sender_balance_before": _str_or_none(self.sender_balance_before),
            "sender_balance_after": _str_or_none(self.sender_balance_after),
            "recipient_balance_before": _str_or_none(self.recipient_balance_before),
            "recipient_balance_after": _str_or_none(self.recipient_balance_after),
            "category": self.category.value if self.category else None,
            "status": self.status.value,
            "description": self.description,
            "external_reference": self.external_reference,
            "card_last4": self.card_last4,
            "business_id": self.business_id,
            "api_key_id": self.api_key_id,
            "original_transaction_id": self.original_transaction_id,
            "reason": self.reason
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Transaction':
        return cls(
            id=data["id"],
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
            transaction_type=TransactionType(data["transaction_type"]),
            amount=Money(Decimal(data["amount"]), Currency[data["currency"]]),
            sender_id=data.get("sender_id"),
            recipient_id=data.get("recipient_id"),
            sender_balance_before=_decimal_or_none(data.get("sender_balance_before")),
            sender_balance_after=_decimal_or_none(data.get("sender_balance_after")),
            recipient_balance_before=_decimal_or_none(data.get("recipient_balance_before")),
            recipient_balance_after=_decimal_or_none(data.get("recipient_balance_after")),
            category=TransactionCategory(data["category"]) if data.get("category") else None,
            status=TransactionStatus(data["status"]),
            description=data.get("description") or "",
            external_reference=data.get("external_reference"),
            card_last4=data.get("card_last4"),
            business_id=data.get("business_id"),
            api_key_id=data.get("api_key_id"),
            original_transaction_id=data.get("original_transaction_id"),
            reason=data.get("reason")
        )

    def merchant_view(self) -> Dict[str, Any]:
        """Shape returned to merchants through the public API"""
        return {
            "transaction_id": self.reference,
            "type": self.transaction_type.value,
            "amount": str(self.amount.amount),
            "currency": self.currency.code,
            "status": self.status.value,
            "card_last4": self.card_last4,
            "description": self.description,
            "external_reference": self.external_reference,
            "original_transaction_id": self.original_transaction_id,
            "created_at": self.created_at.isoformat()
        }

    def account_view(self, account_id: str) -> Dict[str, Any]:
        """Shape returned to a wallet holder; only their own side's balance"""
        outgoing = self.sender_id == account_id
        view = self.merchant_view()
        view.update({
            "direction": "debit" if outgoing else "credit",
            "sender_id": self.sender_id,
            "recipient_id": self.recipient_id,
            "category": self.category.value if self.category else None,
            "balance_after": _str_or_none(
                self.sender_balance_after if outgoing else self.recipient_balance_after
            )
        })
        return view


def _str_or_none(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None


def _decimal_or_none(value: Optional[str]) -> Optional[Decimal]:
    return Decimal(value) if value is not None else None


@dataclass
class ChargeResult:
    transaction_id: str
    amount: Decimal
    currency: str
    status: str
    card_last4: str
    description: str
    external_reference: Optional[str]
    created_at: datetime

    @property
    def reference(self) -> str:
        return self.transaction_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transaction_id": self.transaction_id,
            "amount": str(self.amount),
            "currency": self.currency,
            "status": self.status,
            "card_last4": self.card_last4,
            "description": self.description,
            "external_reference": self.external_reference,
            "created_at": self.created_at.isoformat()
        }


@dataclass
class RefundResult:
    refund_id: str
    original_transaction_id: str
    amount: Decimal
    currency: str
    status: str
    reason: Optional[str]
    created_at: datetime

    @property
    def reference(self) -> str:
        return self.refund_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "refund_id": self.refund_id,
            "original_transaction_id": self.original_transaction_id,
            "amount": str(self.amount),
            "currency": self.currency,
            "status": self.status,
            "reason": self.reason,
            "created_at": self.created_at.isoformat()
        }


@dataclass
class CardVerification:
    valid: bool
    card_last4: str
    is_active: bool
    is_expired: bool
    expiry_date: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "card_last4": self.card_last4,
            "is_active": self.is_active,
            "is_expired": self.is_expired,
            "expiry_date": self.expiry_date.isoformat()
        }


@dataclass
class Page:
    """One page of a listing plus pagination metadata"""
    items: List[Transaction]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    def pagination(self) -> Dict[str, int]:
        return {
            "page": self.page,
            "limit": self.limit,
            "total": self.total,
            "total_pages": self.total_pages
        }


class TransactionLedger:
    """
    Atomic processing of wallet, reserve and merchant money movements
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        account_manager: AccountManager,
        reserve_manager: BankReserveManager,
        key_registry: APIKeyRegistry
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.account_manager = account_manager
        self.reserve_manager = reserve_manager
        self.key_registry = key_registry
        self.currency = account_manager.currency
        self.transactions_table = "transactions"

    def _parse_amount(self, amount: Any) -> Optional[Money]:
        """Positive Money in the wallet currency with no digits below its minor unit, else None"""
        try:
            value = Money(to_amount(amount, self.currency), self.currency)
        except (ValueError, TypeError):
            return None
        return value if value.is_positive() else None

    def _record(self, transaction: Transaction, actor_id: Optional[str]) -> None:
        self.storage.insert(self.transactions_table, transaction.id, transaction.to_dict())
        self.audit_trail.log_event(
            event_type=AuditEventType.TRANSACTION_POSTED,
            entity_type="transaction",
            entity_id=transaction.id,
            metadata={
                "transaction_type": transaction.transaction_type.value,
                "amount": transaction.amount.amount,
                "sender_id": transaction.sender_id,
                "recipient_id": transaction.recipient_id
            },
            user_id=actor_id
        )

    def _new_transaction(self, now: datetime, **fields) -> Transaction:
        return Transaction(id=str(uuid.uuid4()), created_at=now, updated_at=now, **fields)

    def _log_posted(self, outcome: Outcome, actor_id: Optional[str], action: str) -> None:
        if outcome.is_ok:
            log_action(logger, "info", f"{action.capitalize()} completed", user_id=actor_id,
                       action=action, resource=outcome.value.reference)
        else:
            log_action(logger, "info", f"{action.capitalize()} declined", user_id=actor_id,
                       action=action, extra={"code": outcome.code.code})

    # Wallet operations

    def transfer(self, sender_id: str, recipient_id: str, amount: Any,
                 description: str = "", now: Optional[datetime] = None) -> Outcome[Transaction]:
        """
        Move funds between two wallets

        Args:
            sender_id: Debited account
            recipient_id: Credited account
            amount: Positive amount in the wallet currency
            description: Free-text note stored on the transaction
            now: Clock reading for the operation

        Returns:
            Outcome with the posted Transaction
        """
        now = now or utc_now()
        money = self._parse_amount(amount)
        if money is None:
            return Outcome.fail(ErrorCode.INVALID_AMOUNT)
        if sender_id == recipient_id:
            return Outcome.fail(ErrorCode.SAME_ACCOUNT)

        def operation() -> Outcome[Transaction]:
            sender = self.account_manager.get_account(sender_id)
            recipient = self.account_manager.get_account(recipient_id)
            if sender is None or recipient is None:
                return Outcome.fail(ErrorCode.ACCOUNT_NOT_FOUND)
            if sender.balance < money:
                return Outcome.fail(ErrorCode.INSUFFICIENT_FUNDS)

            sender_before, recipient_before = sender.balance, recipient.balance
            sender.balance = sender.balance - money
            recipient.balance = recipient.balance + money
            sender.updated_at = recipient.updated_at = now
            self.account_manager.save_account(sender)
            self.account_manager.save_account(recipient)

            transaction = self._new_transaction(
                now,
                transaction_type=TransactionType.TRANSFER,
                amount=money,
                sender_id=sender.id,
                recipient_id=recipient.id,
                sender_balance_before=sender_before.amount,
                sender_balance_after=sender.balance.amount,
                recipient_balance_before=recipient_before.amount,
                recipient_balance_after=recipient.balance.amount,
                category=derive_category(sender, recipient),
                description=description or ""
            )
            self._record(transaction, sender.id)
            return Outcome.ok(transaction)

        outcome = self.storage.run_atomic(operation)
        self._log_posted(outcome, sender_id, "transfer")
        return outcome

    def deposit(self, account_id: str, amount: Any, description: str = "",
                now: Optional[datetime] = None) -> Outcome[Transaction]:
        """Credit a wallet from the bank reserve"""
        now = now or utc_now()
        money = self._parse_amount(amount)
        if money is None:
            return Outcome.fail(ErrorCode.INVALID_AMOUNT)

        def operation() -> Outcome[Transaction]:
            account = self.account_manager.get_account(account_id)
            if account is None:
                return Outcome.fail(ErrorCode.ACCOUNT_NOT_FOUND)
            reserve = self.reserve_manager.get_or_create(now)
            if not reserve.can_cover(money):
                return Outcome.fail(ErrorCode.INSUFFICIENT_RESERVE_FUNDS)

            before = account.balance
            reserve.pay_out(money, now)
            account.balance = account.balance + money
            account.updated_at = now
            self.reserve_manager.save_reserve(reserve)
            self.account_manager.save_account(account)

            transaction = self._new_transaction(
                now,
                transaction_type=TransactionType.DEPOSIT,
                amount=money,
                recipient_id=account.id,
                recipient_balance_before=before.amount,
                recipient_balance_after=account.balance.amount,
                description=description or ""
            )
            self._record(transaction, account.id)
            return Outcome.ok(transaction)

        outcome = self.storage.run_atomic(operation)
        self._log_posted(outcome, account_id, "deposit")
        return outcome

    def withdraw(self, account_id: str, amount: Any, description: str = "",
                 now: Optional[datetime] = None) -> Outcome[Transaction]:
        """Debit a wallet back into the bank reserve"""
        now = now or utc_now()
        money = self._parse_amount(amount)
        if money is None:
            return Outcome.fail(ErrorCode.INVALID_AMOUNT)

        def operation() -> Outcome[Transaction]:
            account = self.account_manager.get_account(account_id)
            if account is None:
                return Outcome.fail(ErrorCode.ACCOUNT_NOT_FOUND)
            if account.balance < money:
                return Outcome.fail(ErrorCode.INSUFFICIENT_FUNDS)

            reserve = self.reserve_manager.get_or_create(now)
            before = account.balance
            account.balance = account.balance - money
            account.updated_at = now
            reserve.take_in(money, now)
            self.account_manager.save_account(account)
            self.reserve_manager.save_reserve(reserve)

            transaction = self._new_transaction(
                now,
                transaction_type=TransactionType.WITHDRAW,
                amount=money,
                sender_id=account.id,
                sender_balance_before=before.amount,
                sender_balance_after=account.balance.amount,
                description=description or ""
            )
            self._record(transaction, account.id)
            return Outcome.ok(transaction)

        outcome = self.storage.run_atomic(operation)
        self._log_posted(outcome, account_id, "withdraw")
        return outcome

    # Merchant operations

    def charge(
        self,
        business_id: str,
        card_number: str,
        cvv: str,
        amount: Any,
        description: str = "",
        external_reference: Optional[str] = None,
        api_key_id: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Outcome[ChargeResult]:
        """
        Charge a customer's virtual card on behalf of a merchant

        Checks run in a fixed order and the first failure wins: card format,
        card found, active, not expired, CVV, card daily limit, customer
        funds, merchant account, API key transaction limit.

        Args:
            business_id: Merchant credited by the charge
            card_number: Presented 16-digit card number
            cvv: Presented 3-digit CVV
            amount: Positive amount in the wallet currency
            description: Shown on both sides' transaction history
            external_reference: Merchant's own order reference
            api_key_id: Key the charge was made with; its daily total is
                incremented in the same atomic write
            now: Clock reading for the operation

        Returns:
            Outcome with the ChargeResult
        """
        now = now or utc_now()
        money = self._parse_amount(amount)
        if money is None:
            return Outcome.fail(ErrorCode.INVALID_AMOUNT)

        format_check = cards.validate_card_format(card_number, self.account_manager.issuer_digit)
        if not format_check.is_valid:
            return Outcome.fail(ErrorCode.INVALID_CARD_FORMAT, format_check.message)

        def operation() -> Outcome[ChargeResult]:
            customer = self.account_manager.get_account_by_card_number(card_number)
            if customer is None or customer.card is None:
                return Outcome.fail(ErrorCode.CARD_NOT_FOUND)
            card = customer.card
            if not card.is_active:
                return Outcome.fail(ErrorCode.CARD_INACTIVE)
            if card.is_expired(now):
                return Outcome.fail(ErrorCode.CARD_EXPIRED)
            if not cards.validate_cvv_format(cvv).is_valid or not cards.verify_secret(cvv, card.cvv_hash):
                return Outcome.fail(ErrorCode.INVALID_CVV)
            if not card.can_spend(money.amount, now):
                return Outcome.fail(ErrorCode.DAILY_LIMIT_EXCEEDED)
            if customer.balance < money:
                return Outcome.fail(ErrorCode.INSUFFICIENT_FUNDS)

            business = self.account_manager.get_account(business_id)
            if business is None or not business.is_business:
                return Outcome.fail(ErrorCode.BUSINESS_NOT_FOUND)

            api_key = None
            if api_key_id:
                api_key = self.key_registry.get_key(api_key_id)
                if api_key is None or not api_key.is_usable(now):
                    return Outcome.fail(ErrorCode.INVALID_API_KEY)
                reason = api_key.can_process_transaction(money.amount, now)
                if reason:
                    return Outcome.fail(ErrorCode.TRANSACTION_LIMIT_EXCEEDED, reason)

            customer_before, business_before = customer.balance, business.balance
            customer.balance = customer.balance - money
            business.balance = business.balance + money
            card.record_spending(money.amount, now)
            customer.updated_at = business.updated_at = now
            self.account_manager.save_account(customer)
            self.account_manager.save_account(business)
            if api_key:
                api_key.record_transaction(money.amount, now)
                api_key.updated_at = now
                self.key_registry.save_key(api_key)

            transaction = self._new_transaction(
                now,
                transaction_type=TransactionType.PAYMENT,
                amount=money,
                sender_id=customer.id,
                recipient_id=business.id,
                sender_balance_before=customer_before.amount,
                sender_balance_after=customer.balance.amount,
                recipient_balance_before=business_before.amount,
                recipient_balance_after=business.balance.amount,
                category=derive_category(customer, business),
                description=description or f"Payment to {business.business.business_name}",
                external_reference=external_reference,
                card_last4=card.last4,
                business_id=business.id,
                api_key_id=api_key_id
            )
            self._record(transaction, business.id)
            return Outcome.ok(ChargeResult(
                transaction_id=transaction.reference,
                amount=money.amount,
                currency=money.currency.code,
                status=transaction.status.value,
                card_last4=card.last4,
                description=transaction.description,
                external_reference=external_reference,
                created_at=now
            ))

        outcome = self.storage.run_atomic(operation)
        self._log_posted(outcome, business_id, "charge")
        return outcome

    def refund(
        self,
        business_id: str,
        transaction_id: str,
        amount: Any = None,
        reason: Optional[str] = None,
        api_key_id: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Outcome[RefundResult]:
        """
        Refund a completed payment back to the card holder

        A payment can be refunded once, fully or partially. The amount
        defaults to the original amount.
        """
        now = now or utc_now()

        def operation() -> Outcome[RefundResult]:
            original = self.get_transaction(transaction_id) if transaction_id else None
            if (original is None or original.transaction_type != TransactionType.PAYMENT
                    or original.business_id != business_id):
                return Outcome.fail(ErrorCode.TRANSACTION_NOT_FOUND)
            if original.status != TransactionStatus.COMPLETED or self._find_refund(original.id):
                return Outcome.fail(ErrorCode.ALREADY_REFUNDED)

            if amount is None:
                money = original.amount
            else:
                money = self._parse_amount(amount)
                if money is None:
                    return Outcome.fail(ErrorCode.INVALID_AMOUNT)
            if money > original.amount:
                return Outcome.fail(ErrorCode.REFUND_EXCEEDS_ORIGINAL)

            business = self.account_manager.get_account(business_id)
            if business is None:
                return Outcome.fail(ErrorCode.BUSINESS_NOT_FOUND)
            if business.balance < money:
                return Outcome.fail(ErrorCode.INSUFFICIENT_BUSINESS_FUNDS)
            customer = self.account_manager.get_account(original.sender_id)
            if customer is None:
                return Outcome.fail(ErrorCode.ACCOUNT_NOT_FOUND)

            business_before, customer_before = business.balance, customer.balance
            business.balance = business.balance - money
            customer.balance = customer.balance + money
            business.updated_at = customer.updated_at = now
            self.account_manager.save_account(business)
            self.account_manager.save_account(customer)

            original.status = TransactionStatus.REFUNDED
            original.updated_at = now
            self.storage.save(self.transactions_table, original.id, original.to_dict())

            refund = self._new_transaction(
                now,
                transaction_type=TransactionType.REFUND,
                amount=money,
                sender_id=business.id,
                recipient_id=customer.id,
                sender_balance_before=business_before.amount,
                sender_balance_after=business.balance.amount,
                recipient_balance_before=customer_before.amount,
                recipient_balance_after=customer.balance.amount,
                category=derive_category(business, customer),
                description=f"Refund for {original.reference}",
                external_reference=original.external_reference,
                card_last4=original.card_last4,
                business_id=business.id,
                api_key_id=api_key_id,
                original_transaction_id=original.id,
                reason=reason
            )
            self._record(refund, business.id)
            self.audit_trail.log_event(
                event_type=AuditEventType.TRANSACTION_REFUNDED,
                entity_type="transaction",
                entity_id=original.id,
                metadata={"refund_id": refund.id, "amount": money.amount, "reason": reason},
                user_id=business.id
            )
            return Outcome.ok(RefundResult(
                refund_id=refund.reference,
                original_transaction_id=original.reference,
                amount=money.amount,
                currency=money.currency.code,
                status=refund.status.value,
                reason=reason,
                created_at=now
            ))

        outcome = self.storage.run_atomic(operation)
        self._log_posted(outcome, business_id, "refund")
        return outcome

    def verify_card(self, card_number: str, cvv: str,
                    now: Optional[datetime] = None) -> Outcome[CardVerification]:
        """Check a card and CVV without charging or touching any counter"""
        now = now or utc_now()
        format_check = cards.validate_card_format(card_number, self.account_manager.issuer_digit)
        if not format_check.is_valid:
            return Outcome.fail(ErrorCode.INVALID_CARD_FORMAT, format_check.message)

        customer = self.account_manager.get_account_by_card_number(card_number)
        if customer is None or customer.card is None:
            return Outcome.fail(ErrorCode.CARD_NOT_FOUND)
        card = customer.card
        if not cards.verify_secret(cvv, card.cvv_hash):
            return Outcome.fail(ErrorCode.INVALID_CVV)

        is_expired = card.is_expired(now)
        return Outcome.ok(CardVerification(
            valid=card.is_active and not is_expired,
            card_last4=card.last4,
            is_active=card.is_active,
            is_expired=is_expired,
            expiry_date=card.expiry_date
        ))

    # Queries

    def _find_refund(self, original_id: str) -> Optional[Transaction]:
        refunds = self.storage.find(self.transactions_table, {"original_transaction_id": original_id})
        return Transaction.from_dict(refunds[0]) if refunds else None

    def get_transaction(self, reference: str) -> Optional[Transaction]:
        data = self.storage.load(self.transactions_table, reference)
        return Transaction.from_dict(data) if data else None

    def get_business_transaction(self, business_id: str, reference: str) -> Outcome[Transaction]:
        """A merchant can only see transactions it took part in as merchant"""
        transaction = self.get_transaction(reference)
        if transaction is None or transaction.business_id != business_id:
            return Outcome.fail(ErrorCode.TRANSACTION_NOT_FOUND, "Transaction not found.")
        return Outcome.ok(transaction)

    def list_account_transactions(self, account_id: str) -> List[Transaction]:
        """Every transaction an account sent or received, newest first"""
        sent = self.storage.find(self.transactions_table, {"sender_id": account_id})
        received = self.storage.find(self.transactions_table, {"recipient_id": account_id})
        by_id = {data["id"]: data for data in sent + received}
        transactions = [Transaction.from_dict(data) for data in by_id.values()]
        transactions.sort(key=lambda t: t.created_at, reverse=True)
        return transactions

    def list_business_transactions(
        self,
        business_id: str,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
        transaction_type: Optional[str] = None,
        status: Optional[str] = None,
        start_date: Any = None,
        end_date: Any = None
    ) -> Page:
        """Paginated merchant listing, newest first, with optional filters"""
        page = max(int(page or 1), 1)
        limit = min(max(int(limit or DEFAULT_PAGE_SIZE), 1), MAX_PAGE_SIZE)
        start = parse_timestamp(start_date)
        end = parse_timestamp(end_date)

        filters: Dict[str, Any] = {"business_id": business_id}
        if transaction_type:
            filters["transaction_type"] = transaction_type
        if status:
            filters["status"] = status

        transactions = [Transaction.from_dict(d) for d in self.storage.find(self.transactions_table, filters)]
        if start:
            transactions = [t for t in transactions if _comparable(t.created_at) >= _comparable(start)]
        if end:
            transactions = [t for t in transactions if _comparable(t.created_at) <= _comparable(end)]
        transactions.sort(key=lambda t: t.created_at, reverse=True)

        offset = (page - 1) * limit
        return Page(items=transactions[offset:offset + limit], page=page, limit=limit,
                    total=len(transactions))

    def get_balance(self, account_id: str) -> Outcome[Money]:
        account = self.account_manager.get_account(account_id)
        if account is None:
            return Outcome.fail(ErrorCode.ACCOUNT_NOT_FOUND)
        return Outcome.ok(account.balance)


def _comparable(moment: datetime) -> datetime:
    # Naive filter bounds are read as UTC
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment
