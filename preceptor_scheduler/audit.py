"""
audit.py — Regeneration audit records

Every regeneration produces one RegenerationAuditRecord (strategy, window,
before/after counts, outcome, optional actor/reason).  The record is always
logged at INFO; sinks are optional extra destinations:

  JsonFileAuditSink  → appends to a JSON list file (one entry per event)
  HttpAuditSink      → posts through SchedulingApiClient.post_audit_record()

Sink failures are logged as warnings and never interrupt a regeneration.
"""

import json
import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

logger = logging.getLogger(__name__)

DEFAULT_USER_ID = "system"
DEFAULT_REASON = "manual_regeneration"
AUDIT_LOG_FILENAME = "regeneration_audit_log.json"


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class RegenerationAuditRecord:
    strategy: str
    regenerate_from_date: str
    end_date: str
    past_assignments_count: int = 0
    deleted_assignments_count: int = 0
    preserved_assignments_count: int = 0
    affected_assignments_count: int = 0
    generated_assignments_count: int = 0
    success: bool = True
    user_id: str = DEFAULT_USER_ID
    reason: str = DEFAULT_REASON
    notes: Optional[str] = None
    error_message: Optional[str] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: str = field(default_factory=_utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def create_regeneration_audit_record(
    strategy: str,
    regenerate_from_date: Union[date, str],
    end_date: Union[date, str],
    past_assignments_count: int = 0,
    deleted_assignments_count: int = 0,
    preserved_assignments_count: int = 0,
    affected_assignments_count: int = 0,
    generated_assignments_count: int = 0,
    success: bool = True,
    user_id: Optional[str] = None,
    reason: Optional[str] = None,
    notes: Optional[str] = None,
    error_message: Optional[str] = None,
) -> RegenerationAuditRecord:
    """Build a record; actor and reason fall back to 'system' / 'manual_regeneration'."""
    return RegenerationAuditRecord(
        strategy=strategy,
        regenerate_from_date=str(regenerate_from_date),
        end_date=str(end_date),
        past_assignments_count=past_assignments_count,
        deleted_assignments_count=deleted_assignments_count,
        preserved_assignments_count=preserved_assignments_count,
        affected_assignments_count=affected_assignments_count,
        generated_assignments_count=generated_assignments_count,
        success=success,
        user_id=user_id or DEFAULT_USER_ID,
        reason=reason or DEFAULT_REASON,
        notes=notes,
        error_message=error_message,
    )


# ---------------------------------------------------------------------------
# Sinks
# ---------------------------------------------------------------------------

class JsonFileAuditSink:
    """Appends records to a JSON list file, creating it on first write."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def write(self, record: RegenerationAuditRecord) -> None:
        existing: List[Dict[str, Any]] = []
        if self.path.exists():
            with open(self.path) as f:
                data = json.load(f)
                existing = data if isinstance(data, list) else [data]
        existing.append(record.to_dict())
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w") as f:
            json.dump(existing, f, indent=2)

    def read_all(self) -> List[Dict[str, Any]]:
        if not self.path.exists():
            return []
        with open(self.path) as f:
            data = json.load(f)
        return data if isinstance(data, list) else [data]


class HttpAuditSink:
    """Forwards records to the host application's audit endpoint."""

    def __init__(self, client):
        self.client = client

    def write(self, record: RegenerationAuditRecord) -> None:
        self.client.post_audit_record(record.to_dict())


def log_regeneration_event(
    record: RegenerationAuditRecord,
    sinks: Optional[Iterable[Any]] = None,
) -> RegenerationAuditRecord:
    status = "succeeded" if record.success else f"failed ({record.error_message})"
    logger.info(
        f"Regeneration {status}: strategy={record.strategy} "
        f"window={record.regenerate_from_date}→{record.end_date} "
        f"past={record.past_assignments_count} deleted={record.deleted_assignments_count} "
        f"preserved={record.preserved_assignments_count} affected={record.affected_assignments_count} "
        f"generated={record.generated_assignments_count} user={record.user_id} reason={record.reason}"
    )
    for sink in sinks or []:
        try:
            sink.write(record)
        except Exception as e:
            logger.warning(f"Could not write audit record {record.id} to {type(sink).__name__}: {e}")
    return record
