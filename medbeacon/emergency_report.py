"""
Emergency Summary -- what the medic sees after a successful scan.

Combines the decoded QR payload, the classifier's priority and alerts, the
selected protocols and blood compatibility into a single structure the UI
renders top-down.  Sections with nothing to show are ``None`` rather than
empty placeholders.

DISCLAIMER: The summary reflects what the patient entered and what a
keyword rule table recognized.  It is a prompt for the responder, not a
clinical assessment.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from medbeacon.blood import format_groups
from medbeacon.codec import DecodedPayload
from medbeacon.health_id import is_valid_health_id
from medbeacon.models import CompatibilityInfo, PriorityResult, Protocol

DISCLAIMER = (
    "Information shown is patient-provided and keyword-matched. It does not "
    "constitute a clinical assessment; verify with the full record when available."
)


class EmergencySummary:
    """A structured emergency summary for one scan."""

    def __init__(
        self,
        health_id: str,
        patient: dict[str, Any],
        priority: str,
        alerts: list[dict[str, str]],
        protocols: list[dict[str, Any]],
        blood_compatibility: Optional[dict[str, Any]],
        emergency_contact: Optional[dict[str, Any]],
        doctor: Optional[dict[str, Any]],
        critical_notes: str,
        issued_at: str,
        generated_at: str,
    ) -> None:
        self.health_id = health_id
        self.patient = patient
        self.priority = priority
        self.alerts = alerts
        self.protocols = protocols
        self.blood_compatibility = blood_compatibility
        self.emergency_contact = emergency_contact
        self.doctor = doctor
        self.critical_notes = critical_notes
        self.issued_at = issued_at
        self.generated_at = generated_at

    @property
    def more_info_lookup_key(self) -> Optional[str]:
        """Health ID to request the full record with, if it is well-formed."""
        return self.health_id if is_valid_health_id(self.health_id) else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "report_type": "Emergency Summary",
            "disclaimer": DISCLAIMER,
            "health_id": self.health_id,
            "more_info_lookup_key": self.more_info_lookup_key,
            "patient": self.patient,
            "priority": self.priority,
            "alerts": self.alerts,
            "protocols": self.protocols,
            "blood_compatibility": self.blood_compatibility,
            "emergency_contact": self.emergency_contact,
            "doctor": self.doctor,
            "critical_notes": self.critical_notes,
            "issued_at": self.issued_at,
            "generated_at": self.generated_at,
        }

    def __repr__(self) -> str:
        return (
            f"EmergencySummary(health_id={self.health_id}, "
            f"priority={self.priority}, alerts={len(self.alerts)})"
        )


def build_emergency_summary(
    decoded: DecodedPayload,
    result: PriorityResult,
    protocols: list[Protocol],
    compatibility: Optional[CompatibilityInfo],
) -> EmergencySummary:
    """Assemble the emergency summary for a decoded, classified scan."""
    profile = decoded.profile

    contact = None
    if profile.primary_emergency_contact is not None:
        contact = profile.primary_emergency_contact.model_dump(exclude_none=True)

    doctor = None
    if profile.primary_doctor is not None:
        doctor = profile.primary_doctor.model_dump(exclude_none=True)

    return EmergencySummary(
        health_id=profile.health_id,
        patient={
            "full_name": profile.full_name,
            "age": profile.age,
            "blood_group": profile.blood_group.value,
            "allergies": list(profile.critical_allergies),
            "conditions": list(profile.critical_conditions),
            "medications": list(profile.current_medications),
        },
        priority=result.priority.value,
        alerts=[a.model_dump(mode="json") for a in result.alerts],
        protocols=[
            {"key": p.key, "title": p.title, "steps": list(p.steps), "icon": p.icon}
            for p in protocols
        ],
        blood_compatibility=_compatibility_dict(compatibility),
        emergency_contact=contact,
        doctor=doctor,
        critical_notes=profile.critical_notes,
        issued_at=decoded.issued_at.isoformat(),
        generated_at=datetime.now(timezone.utc).isoformat(),
    )


def _compatibility_dict(info: Optional[CompatibilityInfo]) -> Optional[dict[str, Any]]:
    if info is None:
        return None
    return {
        "blood_group": info.blood_group.value,
        "can_receive_from": format_groups(info.can_receive_from),
        "can_donate_to": format_groups(info.can_donate_to),
        "rarity": info.rarity.value,
        "universal_donor": info.universal_donor,
        "universal_recipient": info.universal_recipient,
        "message": info.message,
    }
