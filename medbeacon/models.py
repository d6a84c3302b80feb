"""
Core data models for MedBeacon.

``EmergencyProfile`` is the read-only input to the classifier and the QR
codec.  It is supplied by the external patient store and normalized exactly
once, here, at the model boundary: list fields are never ``None``, blood
groups are canonicalized, and anything that cannot be coerced without
guessing raises ``ClassifierInputError``.

DISCLAIMER: These structures support emergency decision-support workflows.
Priority levels and alerts are prompts for a trained responder, not a
diagnosis.
"""

from __future__ import annotations

import enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class Priority(str, enum.Enum):
    """Triage priority for a scanned patient.

    * ``normal``   -- no recognized emergency-relevant findings.
    * ``caution``  -- at least one finding the responder must keep in mind.
    * ``critical`` -- findings that change immediate handling.
    """

    NORMAL = "normal"
    CAUTION = "caution"
    CRITICAL = "critical"


class Severity(str, enum.Enum):
    """Severity carried by a single alert."""

    CAUTION = "caution"
    CRITICAL = "critical"


class AlertType(str, enum.Enum):
    CONDITION = "condition"
    ALLERGY = "allergy"
    BLOOD = "blood"
    DRUG = "drug"


class BloodGroup(str, enum.Enum):
    A_POS = "A+"
    A_NEG = "A-"
    B_POS = "B+"
    B_NEG = "B-"
    AB_POS = "AB+"
    AB_NEG = "AB-"
    O_POS = "O+"
    O_NEG = "O-"
    UNKNOWN = "Unknown"


class Rarity(str, enum.Enum):
    COMMON = "common"
    UNCOMMON = "uncommon"
    RARE = "rare"


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class ClassifierInputError(ValueError):
    """Raised when a profile is too malformed to classify honestly.

    Classification must never mask a data-quality problem as a ``normal``
    priority, so malformed input fails fast instead of being dropped.
    """
    pass


# ---------------------------------------------------------------------------
# Normalization helpers
# ---------------------------------------------------------------------------

_BLOOD_GROUPS = {bg.value.upper(): bg for bg in BloodGroup if bg is not BloodGroup.UNKNOWN}


def normalize_blood_group(value: Any) -> BloodGroup:
    """Map free-form blood group input onto ``BloodGroup``.

    Unrecognized strings and ``None`` become ``UNKNOWN``.  Non-string input
    raises ``ClassifierInputError``.
    """
    if value is None:
        return BloodGroup.UNKNOWN
    if isinstance(value, BloodGroup):
        return value
    if not isinstance(value, str):
        raise ClassifierInputError(
            f"blood group must be a string, got {type(value).__name__}"
        )
    key = value.strip().upper().replace(" ", "")
    # "O NEG", "Opos" and friends
    key = key.replace("POS", "+").replace("NEG", "-")
    return _BLOOD_GROUPS.get(key, BloodGroup.UNKNOWN)


def _coerce_text_list(value: Any, field_name: str) -> list[str]:
    # A bare string is kept as a single entry rather than discarded.
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        raise ClassifierInputError(
            f"{field_name} must be a list of strings, got {type(value).__name__}"
        )
    items: list[str] = []
    for idx, item in enumerate(value):
        if item is None:
            continue
        if isinstance(item, bool) or not isinstance(item, (str, int, float)):
            raise ClassifierInputError(
                f"{field_name}[{idx}] must be a string, got {type(item).__name__}"
            )
        text = str(item).strip()
        if text:
            items.append(text)
    return items


def _coerce_text(value: Any, field_name: str) -> str:
    if value is None:
        return ""
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        raise ClassifierInputError(
            f"{field_name} must be a string, got {type(value).__name__}"
        )
    return str(value).strip()


# ---------------------------------------------------------------------------
# Profile models
# ---------------------------------------------------------------------------

class EmergencyContact(BaseModel):
    """Primary emergency contact carried on the QR card."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(default="", description="Contact's name.")
    relation: str = Field(default="", description="Relation to the patient.")
    phone: str = Field(default="", description="Phone number as entered.")
    email: Optional[str] = Field(default=None, description="Optional email address.")

    @field_validator("name", "relation", "phone", mode="before")
    @classmethod
    def _text(cls, v: Any, info) -> str:
        return _coerce_text(v, f"emergency contact {info.field_name}")

    @field_validator("email", mode="before")
    @classmethod
    def _email(cls, v: Any) -> Optional[str]:
        return _coerce_text(v, "emergency contact email") or None

    def is_empty(self) -> bool:
        return not (self.name or self.relation or self.phone or self.email)


class PrimaryDoctor(BaseModel):
    """Patient's primary doctor."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(default="")
    hospital: Optional[str] = Field(default=None)
    # The patient store calls this "contact".
    phone: Optional[str] = Field(default=None, alias="contact")

    @field_validator("name", mode="before")
    @classmethod
    def _name(cls, v: Any) -> str:
        return _coerce_text(v, "doctor name")

    @field_validator("hospital", "phone", mode="before")
    @classmethod
    def _optional(cls, v: Any, info) -> Optional[str]:
        return _coerce_text(v, f"doctor {info.field_name}") or None

    def is_empty(self) -> bool:
        return not (self.name or self.hospital or self.phone)


class EmergencyProfile(BaseModel):
    """Emergency-relevant subset of a patient record.

    Accepts both the patient store's camelCase keys and snake_case names.
    After validation every list is a (possibly empty) list of stripped,
    non-empty strings and ``blood_group`` is a ``BloodGroup``.
    """

    model_config = ConfigDict(populate_by_name=True)

    full_name: str = Field(default="", alias="fullName")
    blood_group: BloodGroup = Field(default=BloodGroup.UNKNOWN, alias="bloodGroup")
    age: Optional[int] = Field(default=None, ge=0, le=150)
    critical_allergies: list[str] = Field(default_factory=list, alias="criticalAllergies")
    critical_conditions: list[str] = Field(default_factory=list, alias="criticalConditions")
    current_medications: list[str] = Field(default_factory=list, alias="currentMedications")
    primary_emergency_contact: Optional[EmergencyContact] = Field(
        default=None,
        alias="primaryEmergencyContact",
        description="First listed emergency contact; secondary contacts are not carried.",
    )
    primary_doctor: Optional[PrimaryDoctor] = Field(default=None, alias="primaryDoctor")
    critical_notes: str = Field(default="", alias="criticalNotes")
    health_id: str = Field(
        default="",
        alias="healthId",
        description="Stable external identifier (EMH-######); key for the full-record lookup.",
    )

    @field_validator("full_name", "critical_notes", "health_id", mode="before")
    @classmethod
    def _text(cls, v: Any, info) -> str:
        return _coerce_text(v, info.field_name)

    @field_validator("blood_group", mode="before")
    @classmethod
    def _blood_group(cls, v: Any) -> BloodGroup:
        return normalize_blood_group(v)

    @field_validator("age", mode="before")
    @classmethod
    def _age(cls, v: Any) -> Optional[int]:
        # The patient store serializes age as a string.
        if v is None or v == "":
            return None
        if isinstance(v, bool):
            raise ClassifierInputError("age must be a number, got bool")
        if isinstance(v, str):
            try:
                return int(v.strip())
            except ValueError:
                raise ClassifierInputError(f"age must be a number, got '{v}'") from None
        return v

    @field_validator(
        "critical_allergies", "critical_conditions", "current_medications", mode="before"
    )
    @classmethod
    def _lists(cls, v: Any, info) -> list[str]:
        return _coerce_text_list(v, info.field_name)

    @field_validator("primary_emergency_contact", mode="before")
    @classmethod
    def _contact(cls, v: Any) -> Any:
        # The store keeps a list of contacts; only the first is carried.
        if isinstance(v, (list, tuple)):
            v = v[0] if v else None
        if v is not None and not isinstance(v, (dict, EmergencyContact)):
            raise ClassifierInputError(
                f"emergency contact must be a mapping, got {type(v).__name__}"
            )
        return v

    @field_validator("primary_doctor", mode="before")
    @classmethod
    def _doctor(cls, v: Any) -> Any:
        if v is not None and not isinstance(v, (dict, PrimaryDoctor)):
            raise ClassifierInputError(
                f"primary doctor must be a mapping, got {type(v).__name__}"
            )
        return v


def normalize_profile(data: EmergencyProfile | dict[str, Any] | None) -> EmergencyProfile:
    """Validate raw profile data into an ``EmergencyProfile``.

    Args:
        data: An existing profile, a mapping from the patient store
            (camelCase or snake_case keys), or ``None`` for an empty profile.

    Returns:
        A normalized ``EmergencyProfile``.

    Raises:
        ClassifierInputError: If the data is not a mapping or any field has
            a type that cannot be coerced safely.
    """
    if isinstance(data, EmergencyProfile):
        return data
    if data is None:
        return EmergencyProfile()
    if not isinstance(data, dict):
        raise ClassifierInputError(
            f"profile must be a mapping, got {type(data).__name__}"
        )
    try:
        return EmergencyProfile.model_validate(data)
    except ValidationError as exc:
        raise ClassifierInputError(f"invalid emergency profile: {exc}") from exc


# ---------------------------------------------------------------------------
# Result models
# ---------------------------------------------------------------------------

class Alert(BaseModel):
    """A single clinical alert shown to the responder."""

    model_config = ConfigDict(frozen=True)

    type: AlertType
    severity: Severity
    message: str
    icon: str = ""
    source: str = Field(
        default="",
        description="The patient-entered text that triggered this alert.",
    )


class PriorityResult(BaseModel):
    """Output of the clinical classifier."""

    priority: Priority = Priority.NORMAL
    alerts: list[Alert] = Field(default_factory=list)

    def has_critical_alert(self) -> bool:
        return any(a.severity == Severity.CRITICAL for a in self.alerts)


class Protocol(BaseModel):
    """A fixed step-by-step emergency response protocol."""

    model_config = ConfigDict(frozen=True)

    key: str = Field(..., min_length=1, description="Stable identity used for deduplication.")
    title: str = Field(..., min_length=1)
    steps: tuple[str, ...] = Field(..., min_length=1)
    icon: str = ""


class CompatibilityInfo(BaseModel):
    """Transfusion compatibility for a single blood group."""

    model_config = ConfigDict(frozen=True)

    blood_group: BloodGroup
    can_receive_from: frozenset[BloodGroup]
    can_donate_to: frozenset[BloodGroup]
    rarity: Rarity
    universal_donor: bool = False
    universal_recipient: bool = False
    message: str = ""
