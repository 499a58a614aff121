"""
Test suite for audit module

Hash chaining, tamper detection, and audit events joining the caller's
atomic scope.
"""

import pytest
from datetime import datetime, timezone
from decimal import Decimal

from payment_core.storage import InMemoryStorage
from payment_core.audit import AuditTrail, AuditEvent, AuditEventType


@pytest.fixture
def trail():
    return AuditTrail(InMemoryStorage())


class TestAuditEvent:

    def test_metadata_is_json_safe(self):
        now = datetime.now(timezone.utc)
        event = AuditEvent(
            id="AUDIT001",
            created_at=now,
            updated_at=now,
            sequence=1,
            event_type=AuditEventType.TRANSACTION_POSTED,
            entity_type="transaction",
            entity_id="TXN001",
            previous_hash="",
            current_hash="",
            metadata={"amount": Decimal("150.00"), "at": now, "type": AuditEventType.CARD_ISSUED}
        )
        assert event.metadata == {
            "amount": "150.00",
            "at": now.isoformat(),
            "type": "card_issued"
        }

    def test_hash_covers_metadata(self):
        now = datetime.now(timezone.utc)
        event = AuditEvent(
            id="AUDIT001", created_at=now, updated_at=now, sequence=1,
            event_type=AuditEventType.API_KEY_CREATED, entity_type="api_key",
            entity_id="KEY001", previous_hash="", current_hash="",
            metadata={"key_prefix": "scb_live_abc"}
        )
        event.current_hash = event.calculate_hash()
        assert event.verify_hash()

        event.metadata["key_prefix"] = "scb_live_xyz"
        assert not event.verify_hash()


class TestAuditTrail:

    def test_events_are_chained(self, trail):
        first = trail.log_event(AuditEventType.ACCOUNT_CREATED, "account", "ACC001")
        second = trail.log_event(AuditEventType.CARD_ISSUED, "account", "ACC001",
                                 metadata={"card_last4": "1111"})

        assert first.sequence == 1 and first.previous_hash == ""
        assert second.sequence == 2
        assert second.previous_hash == first.current_hash

        integrity = trail.verify_integrity()
        assert integrity["valid"]
        assert integrity["total_events"] == 2

    def test_tampering_is_detected(self, trail):
        event = trail.log_event(AuditEventType.RESERVE_FUNDED, "reserve", "bank_reserve",
                                metadata={"amount": "1000.00"})
        trail.log_event(AuditEventType.TRANSACTION_POSTED, "transaction", "TXN001")

        stored = trail.storage.load(trail.table_name, event.id)
        stored["metadata"]["amount"] = "9999.00"
        trail.storage.save(trail.table_name, event.id, stored)

        integrity = trail.verify_integrity()
        assert not integrity["valid"]
        assert integrity["hash_errors"][0]["event_id"] == event.id

    def test_deleted_event_breaks_chain(self, trail):
        trail.log_event(AuditEventType.ACCOUNT_CREATED, "account", "ACC001")
        middle = trail.log_event(AuditEventType.CARD_ISSUED, "account", "ACC001")
        trail.log_event(AuditEventType.CARD_STATUS_CHANGED, "account", "ACC001")

        trail.storage.delete(trail.table_name, middle.id)

        integrity = trail.verify_integrity()
        assert not integrity["valid"]
        assert len(integrity["chain_breaks"]) == 1

    def test_events_roll_back_with_scope(self, trail):
        trail.log_event(AuditEventType.ACCOUNT_CREATED, "account", "ACC001")

        with pytest.raises(RuntimeError):
            with trail.storage.atomic():
                trail.log_event(AuditEventType.TRANSACTION_POSTED, "transaction", "TXN001")
                raise RuntimeError("ledger write failed")

        assert trail.count_events() == 1
        assert trail.verify_integrity()["valid"]

    def test_queries(self, trail):
        trail.log_event(AuditEventType.ACCOUNT_CREATED, "account", "ACC001")
        trail.log_event(AuditEventType.ACCOUNT_CREATED, "account", "ACC002")
        trail.log_event(AuditEventType.CARD_ISSUED, "account", "ACC001")

        assert len(trail.get_events_for_entity("account", "ACC001")) == 2
        assert len(trail.get_events_by_type(AuditEventType.ACCOUNT_CREATED)) == 2
        assert trail.get_latest_event().event_type == AuditEventType.CARD_ISSUED

    def test_disabled_trail_records_nothing(self):
        trail = AuditTrail(InMemoryStorage(), enabled=False)
        assert trail.log_event(AuditEventType.ACCOUNT_CREATED, "account", "ACC001") is None
        assert trail.count_events() == 0
