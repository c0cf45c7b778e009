"""SHA-256 hash chain for the audit log."""
import hashlib
import json
from datetime import datetime, date
from decimal import Decimal
from typing import Dict, Any, Optional, Sequence

def json_default(obj):
    """JSON fallback for Decimal and date/datetime values."""
    if isinstance(obj, Decimal):
        return float(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")

def create_event_hash(
    occurred_at: datetime,
    event_type: str,
    entity_id: str,
    after_state: Dict[str, Any],
    previous_hash: Optional[str] = None
) -> str:
    """Hash of one audit event, chained to the event before it."""
    payload = json.dumps(
        {
            'occurred_at': occurred_at.isoformat(),
            'event_type': event_type,
            'entity_id': entity_id,
            'after_state': after_state,
            'previous_hash': previous_hash or '',
        },
        sort_keys=True,
        separators=(',', ':'),
        default=json_default
    )
    return hashlib.sha256(payload.encode('utf-8')).hexdigest()

def verify_audit_chain(rows: Sequence) -> bool:
    """
    Check audit rows in insertion order: every row's hash must match its
    contents and point at the row before it.
    """
    previous_hash = None
    for index, row in enumerate(rows):
        if index and row.previous_hash != previous_hash:
            return False
        expected = create_event_hash(row.occurred_at, row.event_type, row.entity_id,
                                     row.after_state or {}, row.previous_hash)
        if row.event_hash != expected:
            return False
        previous_hash = row.event_hash
    return True
