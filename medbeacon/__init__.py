"""
MedBeacon Emergency Triage and QR Payload Protocol
===================================================

Encodes a patient's emergency-critical data into a compact QR payload,
decodes scanned payloads, and computes a triage priority with ordered
clinical alerts, applicable emergency protocols, and blood compatibility.

DISCLAIMER: This software is not a medical device.  Priorities and alerts
are derived from patient-entered text by keyword rules and must be
verified by a trained responder.
"""

__version__ = "0.1.0"
