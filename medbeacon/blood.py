"""
Blood Compatibility Resolver.

Static ABO/Rh lookup for the medic view.  ``None`` means "omit the blood
section"; it is never an error.
"""

from __future__ import annotations

from typing import Any, Optional

from medbeacon.config import DEFAULT_KNOWLEDGE_BASE, ClinicalKnowledgeBase
from medbeacon.models import (
    BloodGroup,
    ClassifierInputError,
    CompatibilityInfo,
    Rarity,
    normalize_blood_group,
)

# Display order for compatibility lists.
_DISPLAY_ORDER = [
    BloodGroup.O_NEG, BloodGroup.O_POS, BloodGroup.A_NEG, BloodGroup.A_POS,
    BloodGroup.B_NEG, BloodGroup.B_POS, BloodGroup.AB_NEG, BloodGroup.AB_POS,
]


def format_groups(groups: frozenset[BloodGroup] | set[BloodGroup]) -> list[str]:
    """Return blood groups as strings in a stable display order."""
    return [bg.value for bg in _DISPLAY_ORDER if bg in groups]


def resolve_blood_compatibility(
    blood_group: Any,
    knowledge_base: ClinicalKnowledgeBase = DEFAULT_KNOWLEDGE_BASE,
) -> Optional[CompatibilityInfo]:
    """Look up donor/recipient compatibility and rarity for a blood group.

    Args:
        blood_group: A ``BloodGroup`` or free-form string such as ``"o-"``.
        knowledge_base: Table source; defaults to the built-in table.

    Returns:
        ``CompatibilityInfo``, or ``None`` for missing, ``Unknown`` or
        unrecognized input.
    """
    try:
        group = normalize_blood_group(blood_group)
    except ClassifierInputError:
        return None
    if group is BloodGroup.UNKNOWN:
        return None

    entry = knowledge_base.blood_entry(group)
    if entry is None:
        return None

    if entry.universal_donor:
        message = "Universal Donor - Can donate to all blood types"
    elif entry.universal_recipient:
        message = "Universal Recipient - Can receive from all blood types"
    else:
        message = (
            f"Can receive: {', '.join(format_groups(entry.can_receive_from))} | "
            f"Can donate to: {', '.join(format_groups(entry.can_donate_to))}"
        )

    return CompatibilityInfo(
        blood_group=group,
        can_receive_from=entry.can_receive_from,
        can_donate_to=entry.can_donate_to,
        rarity=entry.rarity,
        universal_donor=entry.universal_donor,
        universal_recipient=entry.universal_recipient,
        message=message,
    )


def is_rare_blood_group(
    blood_group: Any,
    knowledge_base: ClinicalKnowledgeBase = DEFAULT_KNOWLEDGE_BASE,
) -> bool:
    info = resolve_blood_compatibility(blood_group, knowledge_base)
    return info is not None and info.rarity is Rarity.RARE
