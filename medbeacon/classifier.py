"""
Clinical Classifier -- Triage Priority and Alerts for a Scanned Patient.

Produces a priority level (normal, caution, critical) and an ordered list
of alerts from an emergency profile, evaluated against the knowledge base
rule tables.

**Evaluation order** (also the order alerts are returned in):

1. conditions      -- first matching condition rule per entry;
2. allergies       -- every severe allergen contained in each entry;
3. blood group     -- informational alert for rare groups;
4. medications     -- drug interaction table.

Priority starts at ``normal`` and only ever moves up.  Unrecognized text
produces no alert: a missed keyword is preferred over an invented one.

DISCLAIMER: Priorities and alerts prompt a trained responder; they are not
a diagnosis or a treatment recommendation.
"""

from __future__ import annotations

import logging
from typing import Any

from medbeacon.blood import resolve_blood_compatibility
from medbeacon.config import DEFAULT_KNOWLEDGE_BASE, ClinicalKnowledgeBase
from medbeacon.interactions import scan_interactions
from medbeacon.matching import matches_keyword
from medbeacon.models import (
    Alert,
    AlertType,
    EmergencyProfile,
    Priority,
    PriorityResult,
    Rarity,
    Severity,
    normalize_profile,
)
from medbeacon.protocols import match_condition_rule

logger = logging.getLogger(__name__)


def classify(
    profile: EmergencyProfile | dict[str, Any] | None,
    knowledge_base: ClinicalKnowledgeBase = DEFAULT_KNOWLEDGE_BASE,
) -> PriorityResult:
    """Compute the triage priority and alerts for a profile.

    Args:
        profile: A normalized ``EmergencyProfile`` or a raw mapping from the
            patient store (normalized here).
        knowledge_base: Rule tables to evaluate against.

    Returns:
        A ``PriorityResult``.

    Raises:
        ClassifierInputError: If ``profile`` is malformed.
    """
    profile = normalize_profile(profile)
    priority = Priority.NORMAL
    alerts: list[Alert] = []

    # --- Conditions ---
    for condition in profile.critical_conditions:
        rule = match_condition_rule(condition, knowledge_base)
        if rule is None:
            continue
        priority = _max_priority(priority, _priority_for(rule.severity))
        alerts.append(Alert(
            type=AlertType.CONDITION,
            severity=rule.severity,
            message=rule.message,
            icon=rule.icon,
            source=condition,
        ))

    # --- Allergies ---
    # First match on a normal profile raises to caution; any further match
    # (or a match after a condition alert) raises to critical.
    for allergy in profile.critical_allergies:
        for allergen in knowledge_base.severe_allergens:
            if not matches_keyword(allergy, allergen):
                continue
            if priority is Priority.NORMAL:
                priority = Priority.CAUTION
            else:
                priority = Priority.CRITICAL
            alerts.append(Alert(
                type=AlertType.ALLERGY,
                severity=Severity.CRITICAL,
                message=f"Severe Allergy: {allergy}",
                icon=knowledge_base.allergy_icon,
                source=allergy,
            ))

    # --- Blood group rarity (informational, priority unchanged) ---
    compatibility = resolve_blood_compatibility(profile.blood_group, knowledge_base)
    if compatibility is not None and compatibility.rarity is Rarity.RARE:
        alerts.append(Alert(
            type=AlertType.BLOOD,
            severity=Severity.CAUTION,
            message=f"Rare Blood Type: {compatibility.blood_group.value}",
            icon=knowledge_base.rare_blood_icon,
            source=compatibility.blood_group.value,
        ))

    # --- Medications ---
    for alert in scan_interactions(profile.current_medications, knowledge_base):
        if alert.severity is Severity.CRITICAL:
            priority = Priority.CRITICAL
        alerts.append(alert)

    logger.debug(
        "Classified profile %s: priority=%s, %d alert(s)",
        profile.health_id or "<no id>",
        priority.value,
        len(alerts),
    )
    return PriorityResult(priority=priority, alerts=alerts)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_PRIORITY_ORDER = {Priority.NORMAL: 0, Priority.CAUTION: 1, Priority.CRITICAL: 2}


def _max_priority(a: Priority, b: Priority) -> Priority:
    """Return the higher (more urgent) of two priorities."""
    return a if _PRIORITY_ORDER[a] >= _PRIORITY_ORDER[b] else b


def _priority_for(severity: Severity) -> Priority:
    return Priority.CRITICAL if severity is Severity.CRITICAL else Priority.CAUTION


def priority_rank(priority: Priority) -> int:
    """Numeric rank of a priority (normal=0, caution=1, critical=2)."""
    return _PRIORITY_ORDER[priority]
