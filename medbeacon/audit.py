"""
Append-Only Scan Log (Hash-Chained) and Per-Scan Analytics Records.

Every QR issue and scan outcome -- decoded, rejected as foreign, rejected
as corrupted, classified -- is recorded as a structured, append-only entry.
Entries are linked via a SHA-256 hash chain: if any entry is modified after
the fact, ``verify_chain()`` detects the inconsistency.

The distinct rejection event types let operators tell "medics are scanning
the wrong QR codes" apart from "our QR codes are arriving corrupted or
tampered with".

**Honest scope note:**  The hash chain gives structural tamper evidence for
an in-memory log.  Durable storage and the analytics aggregation built on
``ScanRecord`` belong to the external persistence layer.
"""

from __future__ import annotations

import enum
import hashlib
import json
import re
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field

from medbeacon.codec import DecodedPayload
from medbeacon.models import AlertType, Priority, PriorityResult, Severity


# ---------------------------------------------------------------------------
# Event types
# ---------------------------------------------------------------------------

class ScanEventType(str, enum.Enum):
    QR_ISSUED = "QR_ISSUED"
    SCAN_DECODED = "SCAN_DECODED"
    SCAN_REJECTED_FORMAT = "SCAN_REJECTED_FORMAT"
    SCAN_REJECTED_INTEGRITY = "SCAN_REJECTED_INTEGRITY"
    PROFILE_CLASSIFIED = "PROFILE_CLASSIFIED"


# ---------------------------------------------------------------------------
# Log entry model
# ---------------------------------------------------------------------------

class ScanLogEntry(BaseModel):
    """A single scan log entry with a hash link to its predecessor."""

    entry_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    actor_id: str = Field(
        default="SYSTEM",
        description="Medic ID for scans, patient or system ID for QR issue.",
    )
    actor_role: str = Field(default="SYSTEM", description="MEDIC, PATIENT or SYSTEM.")
    event_type: ScanEventType
    health_id: str = Field(
        default="",
        description="Health ID of the patient concerned; empty for unreadable scans.",
    )
    metadata: dict[str, Any] = Field(default_factory=dict)
    previous_hash: str = Field(
        default="",
        description="SHA-256 of the previous entry; empty for the first entry.",
    )

    def canonical_bytes(self) -> bytes:
        """Deterministic byte representation for hashing (sorted JSON)."""
        data = {
            "entry_id": self.entry_id,
            "timestamp": self.timestamp.isoformat(),
            "actor_id": self.actor_id,
            "actor_role": self.actor_role,
            "event_type": self.event_type.value,
            "health_id": self.health_id,
            "metadata": self.metadata,
            "previous_hash": self.previous_hash,
        }
        return json.dumps(data, sort_keys=True, default=str).encode("utf-8")

    def compute_hash(self) -> str:
        return hashlib.sha256(self.canonical_bytes()).hexdigest()


# ---------------------------------------------------------------------------
# PHI redaction
# ---------------------------------------------------------------------------

_PHI_PATTERNS: dict[str, re.Pattern] = {
    "phone": re.compile(r"(?<!\w)\+?\d[\d\s().-]{7,}\d\b"),
    "email": re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),
}

_PHI_KEYS = {"name", "full_name", "contact_name", "doctor_name", "email", "phone",
             "address", "notes", "critical_notes"}


def redact_phi_from_metadata(metadata: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of ``metadata`` with PHI-bearing values replaced.

    Keys known to hold PHI are replaced wholesale with ``[REDACTED]``;
    phone numbers and email addresses inside other strings (including
    strings in lists) are masked in place.
    """
    redacted: dict[str, Any] = {}
    for key, value in metadata.items():
        if key.lower() in _PHI_KEYS:
            redacted[key] = "[REDACTED]"
        else:
            redacted[key] = _redact_value(value)
    return redacted


def _redact_value(value: Any) -> Any:
    if isinstance(value, str):
        for pattern_name, pattern in _PHI_PATTERNS.items():
            value = pattern.sub(f"[REDACTED-{pattern_name.upper()}]", value)
        return value
    if isinstance(value, dict):
        return redact_phi_from_metadata(value)
    if isinstance(value, list):
        return [_redact_value(v) for v in value]
    return value


# ---------------------------------------------------------------------------
# Per-scan analytics record
# ---------------------------------------------------------------------------

class ScanRecord(BaseModel):
    """What the external analytics store persists for one successful scan."""

    scan_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    health_id: str
    medic_id: str = ""
    scanned_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    scan_status: Priority
    critical_conditions_found: int = Field(default=0, ge=0)
    alert_count: int = Field(default=0, ge=0)
    blood_group: str
    age: Optional[int] = None
    conditions: list[str] = Field(default_factory=list)
    allergies: list[str] = Field(default_factory=list)
    medications: list[str] = Field(default_factory=list)
    issued_at: datetime


def build_scan_record(
    decoded: DecodedPayload,
    result: PriorityResult,
    medic_id: str = "",
) -> ScanRecord:
    """Build the analytics record for a decoded and classified scan."""
    profile = decoded.profile
    critical_conditions = sum(
        1 for a in result.alerts
        if a.type is AlertType.CONDITION and a.severity is Severity.CRITICAL
    )
    return ScanRecord(
        health_id=profile.health_id,
        medic_id=medic_id,
        scan_status=result.priority,
        critical_conditions_found=critical_conditions,
        alert_count=len(result.alerts),
        blood_group=profile.blood_group.value,
        age=profile.age,
        conditions=list(profile.critical_conditions),
        allergies=list(profile.critical_allergies),
        medications=list(profile.current_medications),
        issued_at=decoded.issued_at,
    )


# ---------------------------------------------------------------------------
# Scan log
# ---------------------------------------------------------------------------

class ScanLog:
    """Append-only, hash-chained log of QR issue and scan events.

    * There are no ``update()`` or ``delete()`` methods.
    * ``verify_chain()`` walks the log and reports the first broken link.
    * ``query()`` returns deep copies, so callers cannot edit the log.
    * ``export_for_review()`` redacts PHI from metadata.
    """

    def __init__(self) -> None:
        self._entries: list[ScanLogEntry] = []
        self._hashes: list[str] = []

    def append(self, entry: ScanLogEntry) -> ScanLogEntry:
        """Append an entry, linking it to the previous one."""
        entry.previous_hash = self._hashes[-1] if self._hashes else ""
        self._entries.append(entry)
        self._hashes.append(entry.compute_hash())
        return entry

    def record(
        self,
        event_type: ScanEventType,
        health_id: str = "",
        actor_id: str = "SYSTEM",
        actor_role: str = "SYSTEM",
        metadata: Optional[dict[str, Any]] = None,
    ) -> ScanLogEntry:
        """Convenience wrapper building and appending an entry."""
        return self.append(ScanLogEntry(
            event_type=event_type,
            health_id=health_id,
            actor_id=actor_id,
            actor_role=actor_role,
            metadata=metadata or {},
        ))

    def verify_chain(self) -> tuple[bool, Optional[int]]:
        """Validate every hash link.

        Returns:
            ``(valid, broken_at)``; ``broken_at`` is the index of the first
            broken entry, or None when the chain is intact.
        """
        for i, entry in enumerate(self._entries):
            expected_prev = "" if i == 0 else self._entries[i - 1].compute_hash()
            if entry.previous_hash != expected_prev:
                return (False, i)
            if self._hashes[i] != entry.compute_hash():
                return (False, i)
        return (True, None)

    def query(
        self,
        health_id: Optional[str] = None,
        actor_id: Optional[str] = None,
        event_type: Optional[ScanEventType] = None,
        time_start: Optional[datetime] = None,
        time_end: Optional[datetime] = None,
    ) -> list[ScanLogEntry]:
        """Return copies of entries matching every given filter."""
        results = []
        for entry in self._entries:
            if health_id is not None and entry.health_id != health_id:
                continue
            if actor_id is not None and entry.actor_id != actor_id:
                continue
            if event_type is not None and entry.event_type != event_type:
                continue
            if time_start is not None and entry.timestamp < time_start:
                continue
            if time_end is not None and entry.timestamp > time_end:
                continue
            results.append(entry.model_copy(deep=True))
        return results

    def rejection_counts(self) -> dict[str, int]:
        """Count rejected scans by kind."""
        return {
            "format": sum(1 for e in self._entries
                          if e.event_type is ScanEventType.SCAN_REJECTED_FORMAT),
            "integrity": sum(1 for e in self._entries
                             if e.event_type is ScanEventType.SCAN_REJECTED_INTEGRITY),
        }

    def export_for_review(
        self,
        health_id: Optional[str] = None,
        time_start: Optional[datetime] = None,
        time_end: Optional[datetime] = None,
    ) -> dict[str, Any]:
        """Produce a JSON-serializable, PHI-redacted export bundle."""
        entries = self.query(health_id=health_id, time_start=time_start, time_end=time_end)

        redacted_entries = []
        for entry in entries:
            entry_dict = entry.model_dump(mode="json")
            entry_dict["metadata"] = redact_phi_from_metadata(entry.metadata)
            redacted_entries.append(entry_dict)

        chain_valid, broken_at = self.verify_chain()

        return {
            "export_metadata": {
                "exported_at": datetime.now(timezone.utc).isoformat(),
                "entry_count": len(redacted_entries),
                "chain_integrity": "VALID" if chain_valid else f"BROKEN_AT_INDEX_{broken_at}",
                "rejections": self.rejection_counts(),
            },
            "entries": redacted_entries,
        }

    def __len__(self) -> int:
        return len(self._entries)
