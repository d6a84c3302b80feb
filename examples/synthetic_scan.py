"""
Synthetic Scenario: Roadside Scan Walkthrough
=============================================

This script demonstrates the full MedBeacon workflow using entirely
synthetic data.  No real patient data, PHI, or PII is used.

The scenario simulates a patient who carries a MedBeacon card and a medic
who scans it at the roadside.

Steps demonstrated:
  1. Load a regional knowledge base from YAML
  2. Generate a Health ID for a synthetic patient
  3. Issue the patient's QR payload
  4. Scan the payload and show the emergency summary
  5. Scan a foreign QR code and a damaged medical QR code
  6. Export the scan log for review

DISCLAIMER: This is a synthetic demonstration.  This software is not a
medical device, and every priority and alert must be verified by a trained
responder.

Usage:
    python -m examples.synthetic_scan
    # or: python examples/synthetic_scan.py
"""

from __future__ import annotations

import json
import logging
import random
import sys
from pathlib import Path

# Ensure the project root is on the path
sys.path.insert(0, str(Path(__file__).parent.parent))

from medbeacon.audit import ScanLog
from medbeacon.config import DEFAULT_KNOWLEDGE_BASE, load_knowledge_base_from_yaml
from medbeacon.health_id import generate_health_id
from medbeacon.scan import issue_qr, process_scan


def _banner(text: str) -> None:
    print(f"\n{'=' * 60}")
    print(f"  {text}")
    print(f"{'=' * 60}\n")


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    _banner("MedBeacon Synthetic Scenario: Roadside Scan")
    print("DISCLAIMER: All data in this demo is entirely synthetic.")
    print("This software is not a medical device.\n")

    # ------------------------------------------------------------------
    # Step 1: Load knowledge base
    # ------------------------------------------------------------------
    _banner("Step 1: Load Knowledge Base")

    sample_yaml = Path(__file__).parent / "knowledge_base.yaml"
    if sample_yaml.exists():
        knowledge_base = load_knowledge_base_from_yaml(sample_yaml)
        print(f"Loaded knowledge base: {knowledge_base.name}")
    else:
        knowledge_base = DEFAULT_KNOWLEDGE_BASE
        print("Using built-in knowledge base")
    print(f"  protocols: {[p.key for p in knowledge_base.protocols]}")
    print(f"  QR size limit: {knowledge_base.codec.max_qr_chars} characters")

    # ------------------------------------------------------------------
    # Step 2: Register synthetic patient
    # ------------------------------------------------------------------
    _banner("Step 2: Register Synthetic Patient")

    existing_ids: set[str] = {"EMH-100001", "EMH-100002"}
    health_id = generate_health_id(lambda c: c in existing_ids, rng=random.Random(2026))
    existing_ids.add(health_id)

    record = {
        "fullName": "Synthetic Patient B (not a real person)",
        "bloodGroup": "o neg",
        "age": "58",
        "criticalAllergies": ["Penicillin", "Latex gloves"],
        "criticalConditions": ["Type 2 Diabetes", "Atrial fibrillation (cardiac)"],
        "currentMedications": ["Warfarin 5mg", "Metformin 1000mg"],
        "primaryEmergencyContact": [
            {"name": "Synthetic Contact", "relation": "Spouse", "phone": "+1-555-0100"},
        ],
        "primaryDoctor": {"name": "Dr. Synthetic", "hospital": "Demo General"},
        "criticalNotes": "Pacemaker fitted 2023",
        "healthId": health_id,
    }
    print(f"Registered: {record['fullName']}")
    print(f"  health_id: {health_id}")

    scan_log = ScanLog()

    # ------------------------------------------------------------------
    # Step 3: Issue QR payload
    # ------------------------------------------------------------------
    _banner("Step 3: Issue QR Payload")

    envelope = issue_qr(record, knowledge_base=knowledge_base, scan_log=scan_log,
                        actor_id=health_id)
    qr_string = envelope.to_qr_string()
    print(f"QR string ({len(qr_string)} chars): {qr_string[:72]}...")
    if envelope.omitted_fields:
        print(f"  omitted to fit: {', '.join(envelope.omitted_fields)}")

    # ------------------------------------------------------------------
    # Step 4: Medic scans the card
    # ------------------------------------------------------------------
    _banner("Step 4: Medic Scans the Card")

    scan = process_scan(qr_string, knowledge_base=knowledge_base, scan_log=scan_log,
                        medic_id="medic_demo_1")
    print(f"Status: {scan.status.value}")
    print(f"Priority: {scan.result.priority.value.upper()}")
    for alert in scan.result.alerts:
        print(f"  [{alert.severity.value:>8}] {alert.type.value:<9} {alert.message}")
    print("\nProtocols:")
    for protocol in scan.summary.protocols:
        print(f"  {protocol['title']}")
        for step in protocol["steps"]:
            print(f"    - {step}")
    print(f"\nBlood: {scan.summary.blood_compatibility['message']}")
    print(f"Full record lookup key: {scan.summary.more_info_lookup_key}")

    # ------------------------------------------------------------------
    # Step 5: Rejected scans
    # ------------------------------------------------------------------
    _banner("Step 5: Foreign and Damaged Codes")

    foreign = process_scan("https://example.com/lunch-menu", scan_log=scan_log,
                           medic_id="medic_demo_1")
    print(f"Restaurant menu QR -> {foreign.status.value}: {foreign.message}")

    damaged = json.loads(qr_string)
    damaged["e"] = damaged["e"][:-12]
    corrupted = process_scan(json.dumps(damaged), scan_log=scan_log,
                             medic_id="medic_demo_1")
    print(f"Truncated MedBeacon QR -> {corrupted.status.value}: {corrupted.message}")

    # ------------------------------------------------------------------
    # Step 6: Export scan log
    # ------------------------------------------------------------------
    _banner("Step 6: Export Scan Log for Review")

    export = scan_log.export_for_review()
    print(json.dumps(export["export_metadata"], indent=2))
    for entry in export["entries"]:
        print(f"  {entry['event_type']:<24} {entry['health_id'] or '-':<11} {entry['actor_id']}")

    _banner("Scenario Complete")


if __name__ == "__main__":
    main()
