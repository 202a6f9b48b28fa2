"""
Test suite for audit module

Tests the hash-chained audit trail, tamper detection and integrity
verification.
"""

import pytest
from datetime import datetime, timezone
from decimal import Decimal

from bank_management.storage import InMemoryStorage
from bank_management.audit import AuditTrail, AuditEvent, AuditEventType


class TestAuditEvent:
    """Test AuditEvent functionality"""

    def make_event(self, **overrides):
        now = datetime(2024, 1, 1, tzinfo=timezone.utc)
        fields = dict(
            id="AUDIT001",
            created_at=now,
            updated_at=now,
            event_type=AuditEventType.DEPOSIT_POSTED,
            entity_type="transaction",
            entity_id="TXN-ID-1",
            previous_hash="",
            current_hash="",
            metadata={"amount": Decimal("10.50"), "account_number": "ACC001"},
            sequence=1
        )
        fields.update(overrides)
        return AuditEvent(**fields)

    def test_metadata_serialization(self):
        """Decimals, datetimes and enums become JSON values"""
        event = self.make_event(metadata={
            "amount": Decimal("10.50"),
            "when": datetime(2024, 1, 1, tzinfo=timezone.utc),
            "kind": AuditEventType.LOGIN_SUCCESS,
            "nested": {"values": [Decimal("1.00")]}
        })

        assert event.metadata == {
            "amount": "10.50",
            "when": "2024-01-01T00:00:00+00:00",
            "kind": "login_success",
            "nested": {"values": ["1.00"]}
        }

    def test_hash_verification(self):
        event = self.make_event()
        event.current_hash = event.calculate_hash()

        assert event.verify_hash()
        assert len(event.current_hash) == 64

        event.metadata["amount"] = "1000000.00"
        assert not event.verify_hash()

    def test_round_trip_preserves_hash(self):
        event = self.make_event()
        event.current_hash = event.calculate_hash()

        restored = AuditEvent.from_dict(event.to_dict())

        assert restored.event_type == AuditEventType.DEPOSIT_POSTED
        assert restored.verify_hash()


class TestAuditTrail:
    """Test AuditTrail functionality"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)

    def test_log_first_event(self):
        event = self.audit_trail.log_event(
            AuditEventType.ACCOUNT_CREATED, "account", "A1", {"account_number": "ACC001"}
        )

        assert event.sequence == 1
        assert event.previous_hash == ""
        assert event.verify_hash()
        assert self.audit_trail.count_events() == 1

    def test_log_multiple_events_chain(self):
        first = self.audit_trail.log_event(AuditEventType.ACCOUNT_CREATED, "account", "A1")
        second = self.audit_trail.log_event(AuditEventType.LOGIN_SUCCESS, "account", "A1")
        third = self.audit_trail.log_event(AuditEventType.DEPOSIT_POSTED, "transaction", "T1")

        assert second.previous_hash == first.current_hash
        assert third.previous_hash == second.current_hash
        assert [e.sequence for e in self.audit_trail.get_all_events()] == [1, 2, 3]

    def test_get_events_for_entity(self):
        self.audit_trail.log_event(AuditEventType.ACCOUNT_CREATED, "account", "A1")
        self.audit_trail.log_event(AuditEventType.ACCOUNT_CREATED, "account", "A2")
        self.audit_trail.log_event(AuditEventType.ACCOUNT_DEACTIVATED, "account", "A1")

        events = self.audit_trail.get_events_for_entity("account", "A1")

        assert [e.event_type for e in events] == [
            AuditEventType.ACCOUNT_CREATED, AuditEventType.ACCOUNT_DEACTIVATED
        ]

    def test_verify_integrity_valid_chain(self):
        for i in range(5):
            self.audit_trail.log_event(AuditEventType.LOGIN_SUCCESS, "account", f"A{i}")

        result = self.audit_trail.verify_integrity()

        assert result["valid"]
        assert result["total_events"] == 5
        assert result["hash_errors"] == []
        assert result["chain_breaks"] == []

    def test_verify_integrity_detects_hash_tampering(self):
        event = self.audit_trail.log_event(
            AuditEventType.WITHDRAWAL_POSTED, "transaction", "T1", {"amount": Decimal("5.00")}
        )
        self.audit_trail.log_event(AuditEventType.LOGIN_SUCCESS, "account", "A1")

        stored = self.storage.load("audit_events", event.id)
        stored["metadata"]["amount"] = "5000.00"
        self.storage.save("audit_events", event.id, stored)

        result = self.audit_trail.verify_integrity()

        assert not result["valid"]
        assert len(result["hash_errors"]) == 1
        assert result["hash_errors"][0]["event_id"] == event.id

    def test_verify_integrity_detects_chain_break(self):
        self.audit_trail.log_event(AuditEventType.LOGIN_SUCCESS, "account", "A1")
        middle = self.audit_trail.log_event(AuditEventType.LOGIN_SUCCESS, "account", "A2")
        self.audit_trail.log_event(AuditEventType.LOGIN_SUCCESS, "account", "A3")

        self.storage.delete("audit_events", middle.id)

        result = self.audit_trail.verify_integrity()

        assert not result["valid"]
        assert len(result["chain_breaks"]) == 1

    def test_verify_integrity_empty_trail(self):
        result = self.audit_trail.verify_integrity()

        assert result["valid"]
        assert result["total_events"] == 0

    def test_disabled_trail_logs_nothing(self):
        trail = AuditTrail(self.storage, enabled=False)

        assert trail.log_event(AuditEventType.LOGIN_FAILED, "account", "A1") is None
        assert trail.count_events() == 0

    def test_events_roll_back_with_their_unit(self):
        with pytest.raises(RuntimeError):
            with self.storage.atomic():
                self.audit_trail.log_event(AuditEventType.DEPOSIT_POSTED, "transaction", "T1")
                raise RuntimeError("posting failed")

        assert self.audit_trail.count_events() == 0
