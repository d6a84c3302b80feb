"""
Clinical Knowledge Base -- the rule tables behind triage and QR encoding.

Every lookup table the classifier, protocol selector, blood resolver and
drug interaction scanner consult lives here as immutable, validated data:

* condition rules (keywords -> severity, alert message, protocol),
* the severe allergen list,
* step-by-step emergency protocols,
* the ABO/Rh compatibility table,
* the drug interaction table,
* codec size settings.

Callers receive ``DEFAULT_KNOWLEDGE_BASE`` unless they inject their own, so
each component can be tested against a hand-built table.  Deployments that
want to tune the tables (local protocol wording, extra allergens) load a
replacement from YAML with ``load_knowledge_base_from_yaml``.

DISCLAIMER: These tables encode a small, deliberately conservative set of
keyword rules.  They are not a clinical reference and do not replace a
responder's judgement.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from medbeacon.models import BloodGroup, Protocol, Rarity, Severity

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Rule models
# ---------------------------------------------------------------------------

class ConditionRule(BaseModel):
    """Maps condition keywords to an alert and an optional protocol.

    A condition matches when it contains any of ``any_of`` and all of
    ``all_of``.  Rules are evaluated in table order and the first match
    wins, so each condition yields at most one alert.
    """

    model_config = ConfigDict(frozen=True)

    key: str = Field(..., min_length=1)
    any_of: tuple[str, ...] = Field(..., min_length=1)
    all_of: tuple[str, ...] = Field(default=())
    severity: Severity
    message: str = Field(..., min_length=1)
    icon: str = ""
    protocol_key: Optional[str] = Field(
        default=None,
        description="Key of the protocol selected when this rule matches.",
    )

    @field_validator("any_of", "all_of")
    @classmethod
    def keywords_lowercase(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        cleaned = tuple(kw.strip().lower() for kw in v)
        if any(not kw for kw in cleaned):
            raise ValueError("keywords must be non-empty strings")
        return cleaned


class AllergyProtocolRule(BaseModel):
    """Selects a protocol when an allergy contains ``keyword``."""

    model_config = ConfigDict(frozen=True)

    keyword: str = Field(..., min_length=1)
    protocol_key: str = Field(..., min_length=1)


class BloodTypeEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    blood_group: BloodGroup
    can_receive_from: frozenset[BloodGroup]
    can_donate_to: frozenset[BloodGroup]
    rarity: Rarity
    universal_donor: bool = False
    universal_recipient: bool = False

    @field_validator("blood_group")
    @classmethod
    def known_group(cls, v: BloodGroup) -> BloodGroup:
        if v is BloodGroup.UNKNOWN:
            raise ValueError("blood table entries must name a concrete blood group")
        return v


class DrugInteractionRule(BaseModel):
    """A medication the patient takes that interacts with common co-factors.

    ``interacts_with`` documents the dangerous co-administered substances;
    the scanner does not cross-reference them against other medications.
    """

    model_config = ConfigDict(frozen=True)

    drug: str = Field(..., min_length=1)
    interacts_with: tuple[str, ...] = Field(default=())
    severity: Severity
    message: str = Field(..., min_length=1)
    icon: str = "pill"


class CodecSettings(BaseModel):
    """Size limits for the QR payload."""

    model_config = ConfigDict(frozen=True)

    max_qr_chars: int = Field(
        default=2000,
        ge=200,
        le=4296,
        description=(
            "Maximum length of the envelope string handed to the QR renderer. "
            "4296 is the alphanumeric capacity of a version 40 code; the "
            "default keeps cards readable by phone cameras."
        ),
    )


# ---------------------------------------------------------------------------
# Knowledge base
# ---------------------------------------------------------------------------

class ClinicalKnowledgeBase(BaseModel):
    """Every rule table used by the triage pipeline."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(default="custom", min_length=1)
    conditions: tuple[ConditionRule, ...] = Field(default=())
    protocol_condition_order: tuple[str, ...] = Field(
        default=(),
        description=(
            "Condition rule keys in the order protocol selection tries them. "
            "Rules not listed follow in table order; unknown keys are skipped."
        ),
    )
    severe_allergens: tuple[str, ...] = Field(default=())
    allergy_icon: str = "warning"
    protocols: tuple[Protocol, ...] = Field(default=())
    allergy_protocols: tuple[AllergyProtocolRule, ...] = Field(default=())
    blood_types: tuple[BloodTypeEntry, ...] = Field(default=())
    rare_blood_icon: str = "blood"
    drug_interactions: tuple[DrugInteractionRule, ...] = Field(default=())
    codec: CodecSettings = Field(default_factory=CodecSettings)

    @field_validator("severe_allergens")
    @classmethod
    def allergens_lowercase(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        cleaned = tuple(a.strip().lower() for a in v)
        if any(not a for a in cleaned):
            raise ValueError("severe_allergens must not contain empty entries")
        return cleaned

    @model_validator(mode="after")
    def check_references(self) -> "ClinicalKnowledgeBase":
        keys = [p.key for p in self.protocols]
        if len(keys) != len(set(keys)):
            raise ValueError(f"duplicate protocol keys: {keys}")
        known = set(keys)
        for rule in self.conditions:
            if rule.protocol_key is not None and rule.protocol_key not in known:
                raise ValueError(
                    f"condition rule '{rule.key}' references unknown protocol '{rule.protocol_key}'"
                )
        for rule in self.allergy_protocols:
            if rule.protocol_key not in known:
                raise ValueError(
                    f"allergy protocol rule '{rule.keyword}' references unknown protocol "
                    f"'{rule.protocol_key}'"
                )
        groups = [entry.blood_group for entry in self.blood_types]
        if len(groups) != len(set(groups)):
            raise ValueError("blood_types lists a blood group more than once")
        return self

    def protocol_condition_rules(self) -> tuple[ConditionRule, ...]:
        """Condition rules in protocol selection order."""
        by_key = {rule.key: rule for rule in self.conditions}
        ordered = [by_key[key] for key in self.protocol_condition_order if key in by_key]
        named = set(self.protocol_condition_order)
        ordered.extend(rule for rule in self.conditions if rule.key not in named)
        return tuple(ordered)

    def protocol(self, key: str) -> Optional[Protocol]:
        for protocol in self.protocols:
            if protocol.key == key:
                return protocol
        return None

    def blood_entry(self, blood_group: BloodGroup) -> Optional[BloodTypeEntry]:
        for entry in self.blood_types:
            if entry.blood_group == blood_group:
                return entry
        return None


# ---------------------------------------------------------------------------
# Default knowledge base
# ---------------------------------------------------------------------------

_ALL_GROUPS = frozenset(bg for bg in BloodGroup if bg is not BloodGroup.UNKNOWN)
_BG = BloodGroup

DEFAULT_KNOWLEDGE_BASE = ClinicalKnowledgeBase(
    name="default",
    conditions=(
        ConditionRule(
            key="hemophilia",
            any_of=("hemophilia", "bleeding"),
            severity=Severity.CRITICAL,
            message="Hemophilia/Bleeding Risk",
            icon="blood",
            protocol_key="hemophilia",
        ),
        ConditionRule(
            key="heart_condition",
            any_of=("heart", "cardiac"),
            severity=Severity.CRITICAL,
            message="Heart Condition",
            icon="heart",
            protocol_key="heart_condition",
        ),
        ConditionRule(
            key="diabetes",
            any_of=("diabetes",),
            severity=Severity.CAUTION,
            message="Diabetes - Check Blood Sugar",
            icon="syringe",
            protocol_key="diabetes",
        ),
        ConditionRule(
            key="epilepsy",
            any_of=("epilepsy", "seizure"),
            severity=Severity.CRITICAL,
            message="Epilepsy/Seizure Risk",
            icon="lightning",
            protocol_key="epilepsy",
        ),
        ConditionRule(
            key="severe_asthma",
            any_of=("asthma",),
            all_of=("severe",),
            severity=Severity.CRITICAL,
            message="Severe Asthma",
            icon="lungs",
            protocol_key="severe_asthma",
        ),
    ),
    protocol_condition_order=(
        "diabetes", "hemophilia", "epilepsy", "severe_asthma", "heart_condition",
    ),
    severe_allergens=(
        "penicillin", "latex", "peanut", "shellfish", "bee sting",
        "aspirin", "iodine", "contrast dye", "sulfa", "morphine",
    ),
    protocols=(
        Protocol(
            key="diabetes",
            title="Diabetes Protocol",
            steps=(
                "Check blood sugar immediately",
                "If unconscious, check for diabetic emergency",
                "Administer glucose if low blood sugar",
                "Monitor vital signs closely",
                "Contact endocrinologist if available",
            ),
            icon="syringe",
        ),
        Protocol(
            key="hemophilia",
            title="Hemophilia Protocol",
            steps=(
                "AVOID unnecessary injections or IVs",
                "Apply pressure to any bleeding sites",
                "Contact hematology specialist immediately",
                "Prepare for possible blood transfusion",
                "Monitor for internal bleeding",
            ),
            icon="blood",
        ),
        Protocol(
            key="epilepsy",
            title="Seizure Protocol",
            steps=(
                "Protect patient from injury",
                "Do NOT restrain patient",
                "Clear area around patient",
                "Time the seizure duration",
                "After seizure: place in recovery position",
                "Contact neurologist if available",
            ),
            icon="lightning",
        ),
        Protocol(
            key="severe_asthma",
            title="Asthma Emergency Protocol",
            steps=(
                "Administer bronchodilator immediately",
                "Provide oxygen if available",
                "Monitor respiratory rate",
                "Prepare for possible intubation",
                "Contact pulmonologist if available",
            ),
            icon="lungs",
        ),
        Protocol(
            key="heart_condition",
            title="Cardiac Emergency Protocol",
            steps=(
                "Monitor cardiac rhythm immediately",
                "Check for chest pain or discomfort",
                "Administer cardiac medications as indicated",
                "Prepare for possible cardiac intervention",
                "Contact cardiologist immediately",
            ),
            icon="heart",
        ),
        Protocol(
            key="peanut_allergy",
            title="Severe Allergy Protocol",
            steps=(
                "AVOID any medications containing allergen",
                "Administer epinephrine if available",
                "Monitor for anaphylaxis",
                "Prepare for airway management",
                "Contact allergist if available",
            ),
            icon="warning",
        ),
        Protocol(
            key="penicillin_allergy",
            title="Penicillin Allergy Protocol",
            steps=(
                "AVOID all penicillin-class antibiotics",
                "Use alternative antibiotics only",
                "Monitor for allergic reactions",
                "Have epinephrine ready",
                "Document allergy clearly",
            ),
            icon="warning",
        ),
    ),
    allergy_protocols=(
        AllergyProtocolRule(keyword="peanut", protocol_key="peanut_allergy"),
        AllergyProtocolRule(keyword="penicillin", protocol_key="penicillin_allergy"),
    ),
    blood_types=(
        BloodTypeEntry(
            blood_group=_BG.O_POS,
            can_receive_from=frozenset({_BG.O_POS, _BG.O_NEG}),
            can_donate_to=frozenset({_BG.O_POS, _BG.A_POS, _BG.B_POS, _BG.AB_POS}),
            rarity=Rarity.COMMON,
        ),
        BloodTypeEntry(
            blood_group=_BG.O_NEG,
            can_receive_from=frozenset({_BG.O_NEG}),
            can_donate_to=_ALL_GROUPS,
            rarity=Rarity.RARE,
            universal_donor=True,
        ),
        BloodTypeEntry(
            blood_group=_BG.A_POS,
            can_receive_from=frozenset({_BG.A_POS, _BG.A_NEG, _BG.O_POS, _BG.O_NEG}),
            can_donate_to=frozenset({_BG.A_POS, _BG.AB_POS}),
            rarity=Rarity.COMMON,
        ),
        BloodTypeEntry(
            blood_group=_BG.A_NEG,
            can_receive_from=frozenset({_BG.A_NEG, _BG.O_NEG}),
            can_donate_to=frozenset({_BG.A_POS, _BG.A_NEG, _BG.AB_POS, _BG.AB_NEG}),
            rarity=Rarity.UNCOMMON,
        ),
        BloodTypeEntry(
            blood_group=_BG.B_POS,
            can_receive_from=frozenset({_BG.B_POS, _BG.B_NEG, _BG.O_POS, _BG.O_NEG}),
            can_donate_to=frozenset({_BG.B_POS, _BG.AB_POS}),
            rarity=Rarity.COMMON,
        ),
        BloodTypeEntry(
            blood_group=_BG.B_NEG,
            can_receive_from=frozenset({_BG.B_NEG, _BG.O_NEG}),
            can_donate_to=frozenset({_BG.B_POS, _BG.B_NEG, _BG.AB_POS, _BG.AB_NEG}),
            rarity=Rarity.UNCOMMON,
        ),
        BloodTypeEntry(
            blood_group=_BG.AB_POS,
            can_receive_from=_ALL_GROUPS,
            can_donate_to=frozenset({_BG.AB_POS}),
            rarity=Rarity.COMMON,
            universal_recipient=True,
        ),
        BloodTypeEntry(
            blood_group=_BG.AB_NEG,
            can_receive_from=frozenset({_BG.AB_NEG, _BG.A_NEG, _BG.B_NEG, _BG.O_NEG}),
            can_donate_to=frozenset({_BG.AB_POS, _BG.AB_NEG}),
            rarity=Rarity.RARE,
        ),
    ),
    drug_interactions=(
        DrugInteractionRule(
            drug="warfarin",
            interacts_with=("aspirin", "ibuprofen", "naproxen", "heparin"),
            severity=Severity.CRITICAL,
            message="Bleeding risk - AVOID NSAIDs and other anticoagulants",
        ),
        DrugInteractionRule(
            drug="aspirin",
            interacts_with=("warfarin", "heparin", "ibuprofen"),
            severity=Severity.CAUTION,
            message="Increased bleeding risk",
        ),
        DrugInteractionRule(
            drug="metformin",
            interacts_with=("alcohol", "contrast dye"),
            severity=Severity.CAUTION,
            message="Risk of lactic acidosis - avoid alcohol and contrast",
        ),
        DrugInteractionRule(
            drug="ace inhibitor",
            interacts_with=("potassium supplements", "spironolactone"),
            severity=Severity.CAUTION,
            message="Risk of hyperkalemia",
        ),
        DrugInteractionRule(
            drug="digoxin",
            interacts_with=("verapamil", "amiodarone"),
            severity=Severity.CRITICAL,
            message="Risk of digoxin toxicity",
        ),
        DrugInteractionRule(
            drug="maoi",
            interacts_with=("tyramine-rich foods", "ssri", "stimulants"),
            severity=Severity.CRITICAL,
            message="Risk of hypertensive crisis - strict dietary restrictions",
        ),
    ),
    codec=CodecSettings(),
)
"""Built-in knowledge base.

The keyword lists are intentionally narrow: an unrecognized condition or
medication produces no alert rather than a guessed one.
"""


# ---------------------------------------------------------------------------
# YAML loader
# ---------------------------------------------------------------------------

def load_knowledge_base_from_yaml(path: str | Path) -> ClinicalKnowledgeBase:
    """Load a knowledge base from a YAML file.

    The file must contain a top-level ``knowledge_base`` mapping whose keys
    mirror ``ClinicalKnowledgeBase`` fields.  Sections that are omitted
    fall back to the corresponding section of ``DEFAULT_KNOWLEDGE_BASE``,
    so a deployment can override only its protocol wording, for example.

    Example YAML structure::

        knowledge_base:
          name: "regional_ems"
          severe_allergens: ["penicillin", "latex", "ketamine"]
          codec:
            max_qr_chars: 1200

    Args:
        path: Path to the YAML file.

    Returns:
        A validated ``ClinicalKnowledgeBase``.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the YAML structure is invalid.
        pydantic.ValidationError: If any table fails validation.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Knowledge base file not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    if not isinstance(raw, dict) or "knowledge_base" not in raw:
        raise ValueError(
            "YAML file must contain a top-level 'knowledge_base' mapping."
        )

    entry = raw["knowledge_base"]
    if not isinstance(entry, dict):
        raise ValueError("'knowledge_base' must be a mapping.")

    unknown = set(entry) - set(ClinicalKnowledgeBase.model_fields)
    if unknown:
        raise ValueError(f"Unknown knowledge base sections: {sorted(unknown)}")

    for section in ("conditions", "protocol_condition_order", "protocols",
                    "allergy_protocols", "blood_types", "drug_interactions",
                    "severe_allergens"):
        if section in entry and not isinstance(entry[section], list):
            raise ValueError(f"'{section}' must be a list.")

    data = DEFAULT_KNOWLEDGE_BASE.model_dump()
    data.update(entry)
    knowledge_base = ClinicalKnowledgeBase.model_validate(data)

    logger.info(
        "Loaded knowledge base '%s' from %s (%d condition rules, %d protocols, %d drug rules)",
        knowledge_base.name,
        path,
        len(knowledge_base.conditions),
        len(knowledge_base.protocols),
        len(knowledge_base.drug_interactions),
    )
    return knowledge_base
