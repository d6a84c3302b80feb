"""
Emergency Protocol Selector.

Turns recognized conditions and allergies into the fixed step-by-step
protocols shown to the responder.  Conditions are matched against the
classifier's condition rules, but tried in
``ClinicalKnowledgeBase.protocol_condition_order``: a condition naming both
diabetes and a heart problem raises the heart alert yet selects the
diabetes protocol.
"""

from __future__ import annotations

from typing import Any, Optional

from medbeacon.config import DEFAULT_KNOWLEDGE_BASE, ClinicalKnowledgeBase, ConditionRule
from medbeacon.matching import matches_all, matches_any, matches_keyword
from medbeacon.models import EmergencyProfile, Protocol, normalize_profile


def _matches(condition: str, rule: ConditionRule) -> bool:
    return matches_any(condition, rule.any_of) and matches_all(condition, rule.all_of)


def match_condition_rule(
    condition: str,
    knowledge_base: ClinicalKnowledgeBase = DEFAULT_KNOWLEDGE_BASE,
) -> Optional[ConditionRule]:
    """Return the first condition rule that matches ``condition``, if any."""
    for rule in knowledge_base.conditions:
        if _matches(condition, rule):
            return rule
    return None


def match_protocol_rule(
    condition: str,
    knowledge_base: ClinicalKnowledgeBase = DEFAULT_KNOWLEDGE_BASE,
) -> Optional[ConditionRule]:
    """Return the first rule in protocol selection order matching ``condition``."""
    for rule in knowledge_base.protocol_condition_rules():
        if _matches(condition, rule):
            return rule
    return None


def select_protocols(
    profile: EmergencyProfile | dict[str, Any] | None,
    knowledge_base: ClinicalKnowledgeBase = DEFAULT_KNOWLEDGE_BASE,
) -> list[Protocol]:
    """Select the emergency protocols applicable to a profile.

    Conditions are considered first, then allergies (first matching rule
    per allergy).  A protocol selected more than once appears only at its
    first position.

    Raises:
        ClassifierInputError: If ``profile`` is a malformed mapping.
    """
    profile = normalize_profile(profile)
    selected: list[Protocol] = []
    seen: set[str] = set()

    def _add(protocol_key: Optional[str]) -> None:
        if protocol_key is None or protocol_key in seen:
            return
        protocol = knowledge_base.protocol(protocol_key)
        if protocol is not None:
            seen.add(protocol_key)
            selected.append(protocol)

    for condition in profile.critical_conditions:
        rule = match_protocol_rule(condition, knowledge_base)
        if rule is not None:
            _add(rule.protocol_key)

    for allergy in profile.critical_allergies:
        for rule in knowledge_base.allergy_protocols:
            if matches_keyword(allergy, rule.keyword):
                _add(rule.protocol_key)
                break

    return selected
