"""
Tests for the bank reserve
"""

import logging
import threading
from decimal import Decimal

import pytest

from payment_core.audit import AuditTrail, AuditEventType
from payment_core.currency import Currency, Money
from payment_core.errors import ErrorCode
from payment_core.reserve import BankReserveManager, RESERVE_ID
from payment_core.storage import InMemoryStorage


def _manager(initial="0"):
    storage = InMemoryStorage()
    return BankReserveManager(storage, AuditTrail(storage), Currency.PHP, Decimal(initial))


class TestBankReserve:

    def test_created_lazily_once(self, now):
        manager = _manager("1000.00")
        assert manager.get_reserve() is None

        reserve = manager.get_or_create(now)
        assert reserve.id == RESERVE_ID
        assert reserve.bank_balance == Money(Decimal("1000.00"), Currency.PHP)
        assert reserve.total_deposits.is_zero()

        again = manager.get_or_create(now)
        assert again.bank_balance == reserve.bank_balance
        assert manager.storage.count(manager.reserve_table) == 1
        assert len(manager.audit_trail.get_events_by_type(AuditEventType.RESERVE_CREATED)) == 1

    def test_concurrent_creation_yields_one_reserve(self, now):
        manager = _manager("10.00")
        threads = [threading.Thread(target=manager.get_or_create, args=(now,)) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        assert manager.storage.count(manager.reserve_table) == 1

    def test_fund_reserve(self, now):
        manager = _manager()
        reserve = manager.fund_reserve("2500.50", actor_id="admin-1", now=now).unwrap()
        assert reserve.bank_balance.amount == Decimal("2500.50")
        assert manager.get_reserve().bank_balance.amount == Decimal("2500.50")

        event = manager.audit_trail.get_events_by_type(AuditEventType.RESERVE_FUNDED)[0]
        assert event.user_id == "admin-1"

    def test_fund_reserve_rejects_bad_amounts(self):
        manager = _manager()
        for amount in ("0", "-1", "abc", "1.005"):
            assert manager.fund_reserve(amount).code == ErrorCode.INVALID_AMOUNT
        assert manager.get_reserve() is None

    def test_pay_out_and_take_in(self, now):
        reserve = _manager("100.00").get_or_create(now)
        ten = Money(Decimal("10.00"), Currency.PHP)

        reserve.pay_out(ten, now)
        reserve.take_in(ten, now)
        reserve.take_in(ten, now)

        assert reserve.bank_balance.amount == Decimal("110.00")
        assert reserve.total_deposits == ten
        assert reserve.total_withdrawals.amount == Decimal("20.00")
        assert reserve.can_cover(Money(Decimal("110.00"), Currency.PHP))
        assert not reserve.can_cover(Money(Decimal("110.01"), Currency.PHP))

    def test_creation_logged_only_when_committed(self, now, caplog):
        manager = _manager("10.00")
        caplog.set_level(logging.INFO, logger="payment_core.reserve")

        with pytest.raises(RuntimeError):
            with manager.storage.atomic():
                manager.get_or_create(now)
                raise RuntimeError("caller failed after creating the reserve")

        assert manager.get_reserve() is None
        assert "Bank reserve created" not in caplog.messages

        manager.get_or_create(now)
        assert caplog.messages.count("Bank reserve created") == 1
