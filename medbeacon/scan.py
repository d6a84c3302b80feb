"""
Scan Pipeline -- one decoded QR string in, one result out.

``process_scan`` is the contract with the external camera loop: it accepts
the text the barcode library extracted from a frame and always returns a
``ScanResult``.  Unreadable input never raises; it comes back with a calm
retry prompt so the medic can simply scan again.

``issue_qr`` is the other end: it encodes a patient's profile for the
external QR renderer and records the issue in the scan log.
"""

from __future__ import annotations

import enum
import logging
from datetime import datetime
from typing import Any, Optional

from medbeacon.audit import ScanEventType, ScanLog, ScanRecord, build_scan_record
from medbeacon.blood import resolve_blood_compatibility
from medbeacon.classifier import classify
from medbeacon.codec import (
    DecodedPayload,
    DecodeFormatError,
    DecodeIntegrityError,
    ObscuredEnvelope,
    decode_payload,
    encode_payload,
)
from medbeacon.config import DEFAULT_KNOWLEDGE_BASE, ClinicalKnowledgeBase
from medbeacon.emergency_report import EmergencySummary, build_emergency_summary
from medbeacon.models import (
    ClassifierInputError,
    EmergencyProfile,
    PriorityResult,
    normalize_profile,
)
from medbeacon.protocols import select_protocols

logger = logging.getLogger(__name__)

NOT_MEDICAL_QR_MESSAGE = (
    "This QR code is not a medical ID. Please scan the patient's MedBeacon card."
)
CORRUPTED_QR_MESSAGE = (
    "This medical QR code could not be read completely. Please try scanning again, "
    "or look up the patient by Health ID."
)

# Fixed reason codes for the scan log.  Exception text can quote patient
# data, so it is never recorded.
REASON_NOT_MEDICAL = "not_medical_qr"
REASON_INTEGRITY = "integrity_check_failed"
REASON_UNCLASSIFIABLE = "unclassifiable_profile"


class ScanStatus(str, enum.Enum):
    OK = "OK"
    NOT_MEDICAL_QR = "NOT_MEDICAL_QR"
    CORRUPTED_QR = "CORRUPTED_QR"


class ScanResult:
    """Outcome of processing one scanned string."""

    def __init__(
        self,
        status: ScanStatus,
        message: str = "",
        decoded: Optional[DecodedPayload] = None,
        result: Optional[PriorityResult] = None,
        summary: Optional[EmergencySummary] = None,
        record: Optional[ScanRecord] = None,
    ) -> None:
        self.status = status
        self.message = message
        self.decoded = decoded
        self.result = result
        self.summary = summary
        self.record = record

    @property
    def ok(self) -> bool:
        return self.status is ScanStatus.OK

    def __repr__(self) -> str:
        priority = self.result.priority.value if self.result else None
        return f"ScanResult(status={self.status.value}, priority={priority})"


def process_scan(
    raw: str | bytes | dict[str, Any],
    knowledge_base: ClinicalKnowledgeBase = DEFAULT_KNOWLEDGE_BASE,
    scan_log: Optional[ScanLog] = None,
    medic_id: str = "",
) -> ScanResult:
    """Decode and triage one scanned QR payload.

    Args:
        raw: Text extracted from the QR image.
        knowledge_base: Rule tables for classification.
        scan_log: Optional log that receives one entry per outcome.
        medic_id: Identifier of the scanning medic, for the log and record.

    Returns:
        A ``ScanResult``; ``status`` tells foreign codes apart from damaged
        ones.
    """
    actor_role = "MEDIC" if medic_id else "SYSTEM"
    actor_id = medic_id or "SYSTEM"

    try:
        decoded = decode_payload(raw)
    except DecodeFormatError as exc:
        logger.info("Rejected non-medical QR scan (%s)", type(exc).__name__)
        if scan_log is not None:
            scan_log.record(
                ScanEventType.SCAN_REJECTED_FORMAT,
                actor_id=actor_id,
                actor_role=actor_role,
                metadata={"reason": REASON_NOT_MEDICAL},
            )
        return ScanResult(ScanStatus.NOT_MEDICAL_QR, NOT_MEDICAL_QR_MESSAGE)
    except DecodeIntegrityError as exc:
        logger.warning("Rejected corrupted medical QR scan (%s)", type(exc).__name__)
        if scan_log is not None:
            scan_log.record(
                ScanEventType.SCAN_REJECTED_INTEGRITY,
                actor_id=actor_id,
                actor_role=actor_role,
                metadata={"reason": REASON_INTEGRITY},
            )
        return ScanResult(ScanStatus.CORRUPTED_QR, CORRUPTED_QR_MESSAGE)

    health_id = decoded.health_id
    if scan_log is not None:
        scan_log.record(
            ScanEventType.SCAN_DECODED,
            health_id=health_id,
            actor_id=actor_id,
            actor_role=actor_role,
            metadata={"version": decoded.version},
        )

    try:
        result = classify(decoded.profile, knowledge_base)
        protocols = select_protocols(decoded.profile, knowledge_base)
    except ClassifierInputError as exc:
        # Should not happen for a payload that passed decoding, but a
        # misleading "normal" must never be shown.
        logger.error("Classification failed for %s (%s)", health_id, type(exc).__name__)
        if scan_log is not None:
            scan_log.record(
                ScanEventType.SCAN_REJECTED_INTEGRITY,
                health_id=health_id,
                actor_id=actor_id,
                actor_role=actor_role,
                metadata={"reason": REASON_UNCLASSIFIABLE},
            )
        return ScanResult(ScanStatus.CORRUPTED_QR, CORRUPTED_QR_MESSAGE, decoded=decoded)

    compatibility = resolve_blood_compatibility(decoded.profile.blood_group, knowledge_base)
    summary = build_emergency_summary(decoded, result, protocols, compatibility)
    record = build_scan_record(decoded, result, medic_id=medic_id)

    if scan_log is not None:
        scan_log.record(
            ScanEventType.PROFILE_CLASSIFIED,
            health_id=health_id,
            actor_id=actor_id,
            actor_role=actor_role,
            metadata={
                "priority": result.priority.value,
                "alert_types": [a.type.value for a in result.alerts],
                "protocols": [p.key for p in protocols],
            },
        )

    logger.info(
        "Scan of %s classified as %s with %d alert(s)",
        health_id,
        result.priority.value,
        len(result.alerts),
    )
    return ScanResult(
        ScanStatus.OK,
        decoded=decoded,
        result=result,
        summary=summary,
        record=record,
    )


def issue_qr(
    profile: EmergencyProfile | dict[str, Any],
    issued_at: Optional[datetime] = None,
    knowledge_base: ClinicalKnowledgeBase = DEFAULT_KNOWLEDGE_BASE,
    scan_log: Optional[ScanLog] = None,
    actor_id: str = "SYSTEM",
) -> ObscuredEnvelope:
    """Encode a profile for QR rendering and log the issue.

    Raises:
        ClassifierInputError: If ``profile`` is a malformed mapping.
        PayloadTooLargeError: If the mandatory fields exceed the size budget.
    """
    profile = normalize_profile(profile)
    envelope = encode_payload(profile, issued_at=issued_at, settings=knowledge_base.codec)
    if scan_log is not None:
        scan_log.record(
            ScanEventType.QR_ISSUED,
            health_id=profile.health_id,
            actor_id=actor_id,
            actor_role="PATIENT" if actor_id != "SYSTEM" else "SYSTEM",
            metadata={
                "size": len(envelope.to_qr_string()),
                "omitted_fields": list(envelope.omitted_fields),
            },
        )
    return envelope
