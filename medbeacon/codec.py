"""
Compact Payload Codec -- the QR wire format.

A patient's emergency-critical fields are packed into a short alias-keyed
JSON body, tagged with an integrity digest, base64-encoded and wrapped in a
small envelope::

    {"e": "<base64 body>", "i": "emh", "a": "base64", "v": 1}

The envelope string is handed to an external QR renderer.  On scan, the
decoder reverses each step and either returns the complete carried subset
or raises -- it never returns partial data.

Body alias keys (version 1):

==========  ===============================================================
``n``       full name
``bg``      blood group
``age``     age
``alg``     allergies
``med``     medications
``cnd``     conditions
``ec``      emergency contact (``n`` name, ``r`` relation, ``p`` phone,
            ``em`` email)
``doc``     primary doctor (``n`` name, ``h`` hospital, ``p`` phone)
``nt``      critical notes
``id``      health identifier
``ts``      issued-at, Unix seconds
``h``       integrity digest
==========  ===============================================================

**Honest scope note:**  base64 is an *obscuring* step, not encryption.  It
keeps medical data from being trivially readable in a QR image; anyone who
captures the image can still decode it.  Access control for the full record
is enforced by the backend lookup keyed by ``id``.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError

from medbeacon.config import DEFAULT_KNOWLEDGE_BASE, CodecSettings
from medbeacon.models import EmergencyContact, EmergencyProfile, PrimaryDoctor

logger = logging.getLogger(__name__)

FORMAT_MARKER = "emh"
ALGORITHM = "base64"
PAYLOAD_VERSION = 1
SUPPORTED_VERSIONS = frozenset({PAYLOAD_VERSION})

ENVELOPE_KEYS = ("e", "i", "a", "v")
REQUIRED_BODY_KEYS = ("n", "bg", "id", "ts")
DIGEST_LENGTH = 12

# Optional fields dropped, in order, when the payload exceeds the size budget.
# Allergies, medications, conditions and blood group are never dropped.
DROP_ORDER = ("nt", "doc", "ec.em", "ec", "age")


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class DecodeError(Exception):
    """Base class for scan payloads that cannot be decoded."""
    pass


class DecodeFormatError(DecodeError):
    """The scanned string is not a MedBeacon payload at all."""
    pass


class DecodeIntegrityError(DecodeError):
    """The envelope is ours but its version, body or digest is unusable."""
    pass


class PayloadTooLargeError(ValueError):
    """The mandatory fields alone exceed the QR size budget."""
    pass


# ---------------------------------------------------------------------------
# Envelope and decoded payload
# ---------------------------------------------------------------------------

class ObscuredEnvelope(BaseModel):
    """The object serialized into the QR code."""

    version: int = Field(default=PAYLOAD_VERSION)
    format_marker: str = Field(default=FORMAT_MARKER)
    algorithm: str = Field(default=ALGORITHM)
    obscured_body: str = Field(..., min_length=1)
    omitted_fields: tuple[str, ...] = Field(
        default=(),
        description="Optional fields dropped to fit the size budget (not serialized).",
    )

    def to_wire(self) -> dict[str, Any]:
        return {
            "e": self.obscured_body,
            "i": self.format_marker,
            "a": self.algorithm,
            "v": self.version,
        }

    def to_qr_string(self) -> str:
        """Compact JSON string handed to the QR renderer."""
        return json.dumps(self.to_wire(), separators=(",", ":"))


class DecodedPayload(BaseModel):
    """The complete carried subset recovered from a scan."""

    profile: EmergencyProfile
    issued_at: datetime
    version: int

    @property
    def health_id(self) -> str:
        """Key for the authenticated full-record lookup."""
        return self.profile.health_id


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------

def encode_payload(
    profile: EmergencyProfile,
    issued_at: Optional[datetime] = None,
    settings: Optional[CodecSettings] = None,
) -> ObscuredEnvelope:
    """Encode a profile into an obscured QR envelope.

    Args:
        profile: The patient's emergency profile.
        issued_at: Issue time; defaults to now (UTC).  Carried at second
            precision.
        settings: Size limits; defaults to the built-in knowledge base's.

    Returns:
        An ``ObscuredEnvelope``.  ``omitted_fields`` lists anything dropped
        to fit ``settings.max_qr_chars``.

    Raises:
        PayloadTooLargeError: If the envelope is still too large after every
            optional field has been dropped.
    """
    settings = settings or DEFAULT_KNOWLEDGE_BASE.codec
    if issued_at is None:
        issued_at = datetime.now(timezone.utc)

    body = build_compact_body(profile, issued_at)
    omitted: list[str] = []

    envelope = _wrap(body, omitted)
    for field_path in DROP_ORDER:
        if len(envelope.to_qr_string()) <= settings.max_qr_chars:
            break
        if _drop(body, field_path):
            omitted.append(field_path)
            envelope = _wrap(body, omitted)

    size = len(envelope.to_qr_string())
    if size > settings.max_qr_chars:
        raise PayloadTooLargeError(
            f"QR payload is {size} characters after dropping optional fields; "
            f"limit is {settings.max_qr_chars}. Reduce allergies, medications or conditions."
        )

    if omitted:
        logger.warning(
            "QR payload for %s exceeded %d characters; omitted %s",
            profile.health_id or "<no id>",
            settings.max_qr_chars,
            ", ".join(omitted),
        )
    return envelope


def build_compact_body(profile: EmergencyProfile, issued_at: datetime) -> dict[str, Any]:
    """Build the alias-keyed body (without digest).  Empty optionals are omitted."""
    if issued_at.tzinfo is None:
        issued_at = issued_at.replace(tzinfo=timezone.utc)

    body: dict[str, Any] = {
        "n": profile.full_name,
        "bg": profile.blood_group.value,
        "id": profile.health_id,
        "ts": int(issued_at.timestamp()),
    }
    if profile.age is not None:
        body["age"] = profile.age
    if profile.critical_allergies:
        body["alg"] = list(profile.critical_allergies)
    if profile.current_medications:
        body["med"] = list(profile.current_medications)
    if profile.critical_conditions:
        body["cnd"] = list(profile.critical_conditions)

    contact = profile.primary_emergency_contact
    if contact is not None and not contact.is_empty():
        ec = {"n": contact.name, "r": contact.relation, "p": contact.phone}
        if contact.email:
            ec["em"] = contact.email
        body["ec"] = {k: v for k, v in ec.items() if v}

    doctor = profile.primary_doctor
    if doctor is not None and not doctor.is_empty():
        doc = {"n": doctor.name, "h": doctor.hospital, "p": doctor.phone}
        body["doc"] = {k: v for k, v in doc.items() if v}

    if profile.critical_notes:
        body["nt"] = profile.critical_notes
    return body


def compute_digest(body: dict[str, Any]) -> str:
    """Integrity digest over the canonical JSON of ``body`` minus ``h``."""
    canonical = json.dumps(
        {k: v for k, v in body.items() if k != "h"},
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:DIGEST_LENGTH]


def _wrap(body: dict[str, Any], omitted: list[str]) -> ObscuredEnvelope:
    signed = dict(body)
    signed["h"] = compute_digest(body)
    raw = json.dumps(signed, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    return ObscuredEnvelope(
        obscured_body=base64.b64encode(raw).decode("ascii"),
        omitted_fields=tuple(omitted),
    )


def _drop(body: dict[str, Any], field_path: str) -> bool:
    if "." in field_path:
        parent, child = field_path.split(".", 1)
        nested = body.get(parent)
        if isinstance(nested, dict) and child in nested:
            del nested[child]
            return True
        return False
    if field_path in body:
        del body[field_path]
        return True
    return False


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------

def decode_payload(raw: str | bytes | dict[str, Any]) -> DecodedPayload:
    """Decode a scanned QR string back into the carried profile subset.

    Args:
        raw: The text extracted from the QR image by the external decoder,
            or an already-parsed mapping.

    Returns:
        A ``DecodedPayload``.

    Raises:
        DecodeFormatError: The input is not a MedBeacon envelope (arbitrary
            QR code, wrong app).
        DecodeIntegrityError: The envelope is ours but has an unsupported
            version or algorithm, an unreadable body, missing required keys,
            or a digest mismatch.
    """
    envelope = _parse_envelope(raw)

    version = envelope["v"]
    if isinstance(version, bool) or not isinstance(version, int) or version not in SUPPORTED_VERSIONS:
        raise DecodeIntegrityError(f"Unsupported payload version: {version!r}")
    if envelope["a"] != ALGORITHM:
        raise DecodeIntegrityError(f"Unsupported payload algorithm: {envelope['a']!r}")

    body = _reveal_body(envelope["e"])

    missing = [k for k in REQUIRED_BODY_KEYS if k not in body]
    if missing:
        raise DecodeIntegrityError(f"Payload body missing required keys: {missing}")
    try:
        expected = compute_digest(body)
    except RecursionError as exc:
        raise DecodeIntegrityError("Payload body is nested too deeply") from exc
    if body.get("h") != expected:
        raise DecodeIntegrityError("Payload integrity digest does not match body")

    ts = body["ts"]
    if isinstance(ts, bool) or not isinstance(ts, int):
        raise DecodeIntegrityError(f"Payload timestamp must be an integer, got {ts!r}")
    try:
        issued_at = datetime.fromtimestamp(ts, tz=timezone.utc)
    except (OverflowError, OSError, ValueError) as exc:
        raise DecodeIntegrityError(f"Payload timestamp out of range: {ts!r}") from exc

    try:
        profile = _expand_body(body)
    except (ValidationError, ValueError, TypeError) as exc:
        raise DecodeIntegrityError(f"Payload fields failed validation: {exc}") from exc

    return DecodedPayload(profile=profile, issued_at=issued_at, version=version)


def _parse_envelope(raw: str | bytes | dict[str, Any]) -> dict[str, Any]:
    if isinstance(raw, dict):
        data = raw
    else:
        if isinstance(raw, bytes):
            try:
                raw = raw.decode("utf-8")
            except UnicodeDecodeError as exc:
                raise DecodeFormatError("Scanned data is not UTF-8 text") from exc
        if not isinstance(raw, str):
            raise DecodeFormatError(f"Scanned data must be text, got {type(raw).__name__}")
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise DecodeFormatError("Scanned data is not JSON") from exc
        except RecursionError as exc:
            raise DecodeFormatError("Scanned JSON is nested too deeply") from exc

    if not isinstance(data, dict):
        raise DecodeFormatError("Scanned JSON is not an object")
    missing = [k for k in ENVELOPE_KEYS if k not in data]
    if missing:
        raise DecodeFormatError(f"Scanned JSON is missing envelope keys: {missing}")
    if data["i"] != FORMAT_MARKER:
        raise DecodeFormatError(f"Unrecognized format marker: {data['i']!r}")
    return data


def _reveal_body(obscured: Any) -> dict[str, Any]:
    if not isinstance(obscured, str) or not obscured:
        raise DecodeIntegrityError("Payload body must be a non-empty string")
    try:
        raw = base64.b64decode(obscured, validate=True)
        body = json.loads(raw.decode("utf-8"))
    except (binascii.Error, ValueError, RecursionError) as exc:
        # JSONDecodeError and UnicodeDecodeError are both ValueErrors.
        raise DecodeIntegrityError("Payload body could not be decoded") from exc
    if not isinstance(body, dict):
        raise DecodeIntegrityError("Payload body is not an object")
    return body


def _expand_body(body: dict[str, Any]) -> EmergencyProfile:
    contact = None
    ec = body.get("ec")
    if ec is not None:
        if not isinstance(ec, dict):
            raise ValueError("'ec' must be an object")
        contact = EmergencyContact(
            name=ec.get("n"),
            relation=ec.get("r"),
            phone=ec.get("p"),
            email=ec.get("em"),
        )

    doctor = None
    doc = body.get("doc")
    if doc is not None:
        if not isinstance(doc, dict):
            raise ValueError("'doc' must be an object")
        doctor = PrimaryDoctor(name=doc.get("n"), hospital=doc.get("h"), phone=doc.get("p"))

    return EmergencyProfile(
        full_name=body["n"],
        blood_group=body["bg"],
        age=body.get("age"),
        critical_allergies=body.get("alg", []),
        current_medications=body.get("med", []),
        critical_conditions=body.get("cnd", []),
        primary_emergency_contact=contact,
        primary_doctor=doctor,
        critical_notes=body.get("nt", ""),
        health_id=body["id"],
    )
