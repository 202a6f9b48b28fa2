"""
Audit Trail Module

Hash-chained audit log with SHA-256 for tamper detection.
Account lifecycle changes, logins and every money movement are logged here,
inside the same unit of work as the change they describe.
"""

import hashlib
import json
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional, Any
from enum import Enum
from decimal import Decimal
import uuid

from .storage import StorageInterface, StorageRecord


class AuditEventType(Enum):
    """Types of audit events"""
    # Account events
    ACCOUNT_CREATED = "account_created"
    ACCOUNT_UPDATED = "account_updated"
    ACCOUNT_DEACTIVATED = "account_deactivated"
    LOGIN_SUCCESS = "login_success"
    LOGIN_FAILED = "login_failed"

    # Money movement
    DEPOSIT_POSTED = "deposit_posted"
    WITHDRAWAL_POSTED = "withdrawal_posted"
    TRANSFER_POSTED = "transfer_posted"
    INTEREST_POSTED = "interest_posted"


@dataclass
class AuditEvent(StorageRecord):
    """
    Audit event with hash chaining for tamper detection
    """
    event_type: AuditEventType
    entity_type: str  # account or transaction
    entity_id: str
    previous_hash: str
    current_hash: str
    metadata: Dict[str, Any]
    sequence: int = 0  # Position in the chain

    def __post_init__(self):
        if self.metadata:
            self.metadata = {k: _json_value(v) for k, v in self.metadata.items()}

    def calculate_hash(self) -> str:
        """
        Calculate SHA-256 hash of this event
        Hash includes all fields except current_hash
        """
        hash_data = {
            'id': self.id,
            'sequence': self.sequence,
            'created_at': self.created_at.isoformat(),
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'previous_hash': self.previous_hash,
            'metadata': self.metadata
        }
        json_data = json.dumps(hash_data, sort_keys=True, separators=(',', ':'))
        return hashlib.sha256(json_data.encode('utf-8')).hexdigest()

    def verify_hash(self) -> bool:
        """Verify that the current hash is correct"""
        return self.current_hash == self.calculate_hash()

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['event_type'] = self.event_type.value
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditEvent':
        """Create AuditEvent from stored dictionary"""
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            event_type=AuditEventType(data['event_type']),
            entity_type=data['entity_type'],
            entity_id=data['entity_id'],
            previous_hash=data['previous_hash'],
            current_hash=data['current_hash'],
            metadata=data.get('metadata') or {},
            sequence=data.get('sequence', 0)
        )


def _json_value(value):
    """Convert metadata values to JSON-serializable form"""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _json_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_value(v) for v in value]
    return value


class AuditTrail:
    """
    Hash-chained audit trail for tamper detection
    """

    def __init__(self, storage: StorageInterface, table_name: str = "audit_events", enabled: bool = True):
        self.storage = storage
        self.table_name = table_name
        self.enabled = enabled

    def _last_event(self) -> Optional[Dict[str, Any]]:
        events = self.storage.find(self.table_name, {}, order_by="sequence", descending=True, limit=1)
        return events[0] if events else None

    def log_event(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Optional[AuditEvent]:
        """
        Log an audit event chained to the previous one

        Returns:
            Created AuditEvent, or None when audit logging is disabled
        """
        if not self.enabled:
            return None

        # Reading the chain head and appending must happen in one unit
        with self.storage.atomic():
            now = datetime.now(timezone.utc)
            last = self._last_event()

            event = AuditEvent(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                previous_hash=last['current_hash'] if last else "",
                current_hash="",
                metadata=metadata or {},
                sequence=(last['sequence'] + 1) if last else 1
            )
            event.current_hash = event.calculate_hash()

            self.storage.save(self.table_name, event.id, event.to_dict())
            return event

    def get_events_for_entity(self, entity_type: str, entity_id: str) -> List[AuditEvent]:
        """Get all audit events for an entity, oldest first"""
        events_data = self.storage.find(
            self.table_name,
            {'entity_type': entity_type, 'entity_id': entity_id},
            order_by="sequence"
        )
        return [AuditEvent.from_dict(data) for data in events_data]

    def get_all_events(self) -> List[AuditEvent]:
        """Get the whole chain, oldest first"""
        events_data = self.storage.find(self.table_name, {}, order_by="sequence")
        return [AuditEvent.from_dict(data) for data in events_data]

    def verify_integrity(self) -> Dict[str, Any]:
        """
        Verify the integrity of the entire audit chain

        Returns:
            Dictionary with 'valid', 'total_events', 'hash_errors' and 'chain_breaks'
        """
        result = {
            'valid': True,
            'total_events': 0,
            'hash_errors': [],
            'chain_breaks': []
        }

        events = self.get_all_events()
        result['total_events'] = len(events)

        previous_hash = ""
        for position, event in enumerate(events):
            if not event.verify_hash():
                result['valid'] = False
                result['hash_errors'].append({
                    'event_id': event.id,
                    'position': position,
                    'expected_hash': event.calculate_hash(),
                    'actual_hash': event.current_hash
                })
            if event.previous_hash != previous_hash:
                result['valid'] = False
                result['chain_breaks'].append({
                    'event_id': event.id,
                    'position': position,
                    'expected_previous_hash': previous_hash,
                    'actual_previous_hash': event.previous_hash
                })
            previous_hash = event.current_hash

        return result

    def count_events(self) -> int:
        """Get total number of audit events"""
        return self.storage.count(self.table_name)
