"""
Tests for medbeacon.scan -- Scan Pipeline.

Covers: issue-then-scan end to end, foreign and damaged codes never
raising, scan log entries per outcome, and QR issue logging.
"""

import base64
import json
import logging
from datetime import datetime, timezone

import pytest

from medbeacon.audit import ScanEventType, ScanLog
from medbeacon.codec import PayloadTooLargeError, compute_digest
from medbeacon.models import ClassifierInputError, Priority
from medbeacon.scan import (
    CORRUPTED_QR_MESSAGE,
    NOT_MEDICAL_QR_MESSAGE,
    ScanStatus,
    issue_qr,
    process_scan,
)

ISSUED_AT = datetime(2026, 3, 1, 12, 30, tzinfo=timezone.utc)

STORE_RECORD = {
    "fullName": "Maria Gonzalez",
    "bloodGroup": "O-",
    "age": "42",
    "criticalAllergies": ["Penicillin"],
    "criticalConditions": ["Type 2 Diabetes"],
    "currentMedications": ["Metformin 500mg"],
    "primaryEmergencyContact": [
        {"name": "Luis Gonzalez", "relation": "Husband", "phone": "+1 555 0100"},
    ],
    "criticalNotes": "Insulin pump, left abdomen",
    "healthId": "EMH-482913",
}


def _issue(scan_log=None) -> str:
    return issue_qr(STORE_RECORD, issued_at=ISSUED_AT, scan_log=scan_log).to_qr_string()


# ---------------------------------------------------------------------------
# 1. Successful scans
# ---------------------------------------------------------------------------

class TestSuccessfulScan:
    def test_issue_then_scan(self):
        scan = process_scan(_issue(), medic_id="medic_7")
        assert scan.ok
        assert scan.status == ScanStatus.OK
        assert scan.message == ""
        assert scan.result.priority == Priority.CRITICAL
        assert scan.summary.health_id == "EMH-482913"
        assert [p["key"] for p in scan.summary.to_dict()["protocols"]] == [
            "diabetes", "penicillin_allergy",
        ]
        assert scan.record.medic_id == "medic_7"
        assert scan.record.issued_at == ISSUED_AT

    def test_scan_log_entries_for_issue_and_scan(self):
        log = ScanLog()
        qr = _issue(scan_log=log)
        process_scan(qr, scan_log=log, medic_id="medic_7")

        events = [e.event_type for e in log.query()]
        assert events == [
            ScanEventType.QR_ISSUED,
            ScanEventType.SCAN_DECODED,
            ScanEventType.PROFILE_CLASSIFIED,
        ]
        classified = log.query(event_type=ScanEventType.PROFILE_CLASSIFIED)[0]
        assert classified.actor_role == "MEDIC"
        assert classified.health_id == "EMH-482913"
        assert classified.metadata["priority"] == "critical"
        assert classified.metadata["protocols"] == ["diabetes", "penicillin_allergy"]
        assert log.verify_chain() == (True, None)

    def test_issue_log_records_size(self):
        log = ScanLog()
        qr = _issue(scan_log=log)
        issued = log.query(event_type=ScanEventType.QR_ISSUED)[0]
        assert issued.metadata == {"size": len(qr), "omitted_fields": []}
        assert issued.actor_role == "SYSTEM"


# ---------------------------------------------------------------------------
# 2. Rejected scans
# ---------------------------------------------------------------------------

class TestRejectedScan:
    @pytest.mark.parametrize("raw", [
        "https://example.com/menu",
        "WIFI:S:cafe;T:WPA;P:hunter2;;",
        "",
        b"\x00\x01binary",
    ])
    def test_foreign_code_is_not_medical(self, raw):
        scan = process_scan(raw)
        assert scan.status == ScanStatus.NOT_MEDICAL_QR
        assert scan.message == NOT_MEDICAL_QR_MESSAGE
        assert scan.result is None
        assert not scan.ok

    def test_damaged_code_is_corrupted(self):
        wire = json.loads(_issue())
        wire["v"] = 9
        scan = process_scan(json.dumps(wire))
        assert scan.status == ScanStatus.CORRUPTED_QR
        assert scan.message == CORRUPTED_QR_MESSAGE
        assert scan.summary is None

    def test_tampered_code_is_corrupted(self):
        wire = json.loads(_issue())
        body = json.loads(base64.b64decode(wire["e"]))
        body["alg"] = []
        wire["e"] = base64.b64encode(json.dumps(body).encode("utf-8")).decode("ascii")
        assert process_scan(json.dumps(wire)).status == ScanStatus.CORRUPTED_QR

    def test_rejections_logged_by_kind(self):
        log = ScanLog()
        process_scan("not a medical code", scan_log=log, medic_id="medic_7")
        wire = json.loads(_issue())
        wire["a"] = "rot13"
        process_scan(json.dumps(wire), scan_log=log, medic_id="medic_7")

        assert log.rejection_counts() == {"format": 1, "integrity": 1}
        rejected = log.query(event_type=ScanEventType.SCAN_REJECTED_FORMAT)[0]
        assert rejected.health_id == ""
        assert rejected.actor_id == "medic_7"
        assert "reason" in rejected.metadata

    def test_deeply_nested_json_is_not_medical(self):
        scan = process_scan("[" * 3000 + "]" * 3000)
        assert scan.status == ScanStatus.NOT_MEDICAL_QR

    def test_deeply_nested_body_is_corrupted(self):
        nested = ("[" * 3000 + "]" * 3000).encode("ascii")
        wire = {"e": base64.b64encode(nested).decode("ascii"), "i": "emh", "a": "base64", "v": 1}
        assert process_scan(json.dumps(wire)).status == ScanStatus.CORRUPTED_QR

    def test_rejection_never_records_patient_text(self, caplog):
        body = {
            "n": "Jane Secret", "bg": "O-", "id": "EMH-482913", "ts": 1772368200,
            "alg": [["Jane Secret peanut"]],
        }
        body["h"] = compute_digest(body)
        wire = {
            "e": base64.b64encode(json.dumps(body).encode("utf-8")).decode("ascii"),
            "i": "emh", "a": "base64", "v": 1,
        }
        log = ScanLog()
        with caplog.at_level(logging.DEBUG, logger="medbeacon"):
            scan = process_scan(json.dumps(wire), scan_log=log)

        assert scan.status == ScanStatus.CORRUPTED_QR
        assert "Jane Secret" not in caplog.text
        entry = log.query(event_type=ScanEventType.SCAN_REJECTED_INTEGRITY)[0]
        assert entry.metadata == {"reason": "integrity_check_failed"}


# ---------------------------------------------------------------------------
# 3. Issue errors
# ---------------------------------------------------------------------------

class TestIssueErrors:
    def test_malformed_record_raises(self):
        with pytest.raises(ClassifierInputError):
            issue_qr({"criticalAllergies": {"penicillin": True}})

    def test_oversized_record_raises(self):
        with pytest.raises(PayloadTooLargeError):
            issue_qr(dict(STORE_RECORD, criticalConditions=["c" * 2000]))
