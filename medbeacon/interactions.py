"""
Drug Interaction Scanner.

Checks each medication a patient already takes against a fixed table of
drugs with known dangerous co-factors (e.g. warfarin + NSAIDs).  This is a
lookup, not an interaction engine: two patient medications are never
cross-referenced against each other.
"""

from __future__ import annotations

from typing import Iterable

from medbeacon.config import DEFAULT_KNOWLEDGE_BASE, ClinicalKnowledgeBase
from medbeacon.matching import matches_keyword
from medbeacon.models import Alert, AlertType


def scan_interactions(
    medications: Iterable[str],
    knowledge_base: ClinicalKnowledgeBase = DEFAULT_KNOWLEDGE_BASE,
) -> list[Alert]:
    """Scan a medication list against the interaction table.

    Every medication is compared with every table entry, in table order.
    A medication matching two entries yields two alerts.

    Args:
        medications: Free-text medication names, e.g. ``"Warfarin 5mg"``.  A bare
            string is treated as a single medication.
        knowledge_base: Table source.

    Returns:
        Alerts in medication order, then table order.
    """
    if isinstance(medications, str):
        medications = [medications]
    alerts: list[Alert] = []
    for medication in medications:
        for rule in knowledge_base.drug_interactions:
            if matches_keyword(medication, rule.drug):
                alerts.append(Alert(
                    type=AlertType.DRUG,
                    severity=rule.severity,
                    message=rule.message,
                    icon=rule.icon,
                    source=medication,
                ))
    return alerts
