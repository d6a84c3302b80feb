"""
Tests for medbeacon.classifier -- Triage Priority and Alerts.

Covers: empty baseline, the documented triage scenarios, unrecognized text,
monotonic priority, order independence, alert category ordering, caution
drug entries, injected knowledge bases, and malformed input.
"""

import random

import pytest

from medbeacon.classifier import classify, priority_rank
from medbeacon.config import (
    DEFAULT_KNOWLEDGE_BASE,
    ClinicalKnowledgeBase,
    ConditionRule,
)
from medbeacon.matching import matches_keyword
from medbeacon.models import (
    AlertType,
    ClassifierInputError,
    EmergencyProfile,
    Priority,
    Severity,
)


def _make_profile(**kwargs) -> EmergencyProfile:
    defaults = {"full_name": "Test Patient", "health_id": "EMH-100001"}
    defaults.update(kwargs)
    return EmergencyProfile(**defaults)


# ---------------------------------------------------------------------------
# 1. Baseline
# ---------------------------------------------------------------------------

class TestEmptyProfile:
    def test_empty_profile_is_normal_with_no_alerts(self):
        result = classify(_make_profile())
        assert result.priority == Priority.NORMAL
        assert result.alerts == []

    def test_empty_mapping_and_none_are_normal(self):
        assert classify({}).priority == Priority.NORMAL
        assert classify({}).alerts == []
        assert classify(None).alerts == []

    def test_unknown_blood_group_produces_no_alert(self):
        result = classify(_make_profile(blood_group="Unknown"))
        assert result.alerts == []


# ---------------------------------------------------------------------------
# 2. Known scenarios
# ---------------------------------------------------------------------------

class TestKnownScenarios:
    def test_hemophilia_is_critical(self):
        result = classify(_make_profile(critical_conditions=["Hemophilia A"]))
        assert result.priority == Priority.CRITICAL
        assert len(result.alerts) == 1
        alert = result.alerts[0]
        assert alert.type == AlertType.CONDITION
        assert alert.severity == Severity.CRITICAL
        assert alert.source == "Hemophilia A"

    def test_penicillin_alone_is_caution(self):
        result = classify(_make_profile(critical_allergies=["Penicillin"]))
        assert result.priority == Priority.CAUTION
        assert len(result.alerts) == 1
        assert result.alerts[0].type == AlertType.ALLERGY
        assert result.alerts[0].severity == Severity.CRITICAL
        assert result.alerts[0].message == "Severe Allergy: Penicillin"

    def test_penicillin_with_diabetes_escalates_to_critical(self):
        result = classify(_make_profile(
            critical_allergies=["Penicillin"],
            critical_conditions=["Type 2 Diabetes"],
        ))
        assert result.priority == Priority.CRITICAL
        assert [a.type for a in result.alerts] == [AlertType.CONDITION, AlertType.ALLERGY]
        assert result.alerts[0].severity == Severity.CAUTION

    def test_o_negative_alone_is_normal_with_rarity_alert(self):
        result = classify(_make_profile(blood_group="O-"))
        assert result.priority == Priority.NORMAL
        assert len(result.alerts) == 1
        assert result.alerts[0].type == AlertType.BLOOD
        assert result.alerts[0].severity == Severity.CAUTION
        assert result.alerts[0].message == "Rare Blood Type: O-"

    def test_warfarin_is_critical(self):
        result = classify(_make_profile(current_medications=["Warfarin"]))
        assert result.priority == Priority.CRITICAL
        assert len(result.alerts) == 1
        assert result.alerts[0].type == AlertType.DRUG
        assert result.alerts[0].severity == Severity.CRITICAL

    def test_unrecognized_condition_is_ignored(self):
        result = classify(_make_profile(critical_conditions=["xyz123notamedicalterm"]))
        assert result.priority == Priority.NORMAL
        assert result.alerts == []

    def test_unrecognized_medication_is_ignored(self):
        result = classify(_make_profile(current_medications=["Vitamin D"]))
        assert result.alerts == []


# ---------------------------------------------------------------------------
# 3. Condition rules
# ---------------------------------------------------------------------------

class TestConditionRules:
    def test_diabetes_alone_is_caution(self):
        result = classify(_make_profile(critical_conditions=["Type 1 Diabetes"]))
        assert result.priority == Priority.CAUTION
        assert result.alerts[0].message == "Diabetes - Check Blood Sugar"

    def test_diabetes_does_not_downgrade_critical(self):
        result = classify(_make_profile(
            critical_conditions=["Cardiac arrhythmia", "Type 1 Diabetes"],
        ))
        assert result.priority == Priority.CRITICAL

    def test_asthma_requires_severe(self):
        assert classify(_make_profile(critical_conditions=["Asthma"])).alerts == []
        result = classify(_make_profile(critical_conditions=["Severe persistent asthma"]))
        assert result.priority == Priority.CRITICAL
        assert result.alerts[0].message == "Severe Asthma"

    def test_seizure_keyword_matches_epilepsy_rule(self):
        result = classify(_make_profile(critical_conditions=["History of seizures"]))
        assert result.priority == Priority.CRITICAL
        assert result.alerts[0].message == "Epilepsy/Seizure Risk"

    def test_first_matching_rule_wins_per_condition(self):
        result = classify(_make_profile(critical_conditions=["Heart failure and diabetes"]))
        assert len(result.alerts) == 1
        assert result.alerts[0].message == "Heart Condition"

    def test_matching_is_case_insensitive(self):
        result = classify(_make_profile(critical_conditions=["HEMOPHILIA B"]))
        assert result.priority == Priority.CRITICAL


# ---------------------------------------------------------------------------
# 4. Allergy rules
# ---------------------------------------------------------------------------

class TestAllergyRules:
    def test_second_allergy_escalates_to_critical(self):
        result = classify(_make_profile(critical_allergies=["Latex", "Peanuts"]))
        assert result.priority == Priority.CRITICAL
        assert len(result.alerts) == 2

    def test_one_entry_matching_two_allergens_yields_two_alerts(self):
        result = classify(_make_profile(critical_allergies=["Iodine contrast dye"]))
        assert len(result.alerts) == 2
        assert result.priority == Priority.CRITICAL

    def test_mild_allergy_is_ignored(self):
        result = classify(_make_profile(critical_allergies=["Hay fever"]))
        assert result.alerts == []


# ---------------------------------------------------------------------------
# 5. Medications
# ---------------------------------------------------------------------------

class TestMedications:
    def test_caution_drug_entry_does_not_raise_priority(self):
        result = classify(_make_profile(current_medications=["Aspirin 81mg"]))
        assert result.priority == Priority.NORMAL
        assert len(result.alerts) == 1
        assert result.alerts[0].severity == Severity.CAUTION

    def test_critical_drug_escalates_caution_profile(self):
        result = classify(_make_profile(
            critical_conditions=["Diabetes"],
            current_medications=["Digoxin 0.125mg"],
        ))
        assert result.priority == Priority.CRITICAL


# ---------------------------------------------------------------------------
# 6. Ordering and monotonicity
# ---------------------------------------------------------------------------

class TestOrderingAndMonotonicity:
    def test_alerts_follow_category_order(self):
        result = classify(_make_profile(
            current_medications=["Metformin"],
            blood_group="AB-",
            critical_allergies=["Sulfa drugs"],
            critical_conditions=["Epilepsy"],
        ))
        assert [a.type for a in result.alerts] == [
            AlertType.CONDITION,
            AlertType.ALLERGY,
            AlertType.BLOOD,
            AlertType.DRUG,
        ]

    def test_shuffling_conditions_keeps_priority(self):
        conditions = ["Type 2 Diabetes", "Epilepsy", "Hypertension", "Hemophilia A"]
        baseline = classify(_make_profile(critical_conditions=conditions))
        rng = random.Random(7)
        for _ in range(10):
            shuffled = conditions[:]
            rng.shuffle(shuffled)
            result = classify(_make_profile(critical_conditions=shuffled))
            assert result.priority == baseline.priority
            assert sorted(a.message for a in result.alerts) == sorted(
                a.message for a in baseline.alerts
            )

    @pytest.mark.parametrize("addition", [
        {"critical_conditions": ["Cardiac disease"]},
        {"critical_allergies": ["Morphine"]},
        {"current_medications": ["MAOI (phenelzine)"]},
        {"blood_group": "O-"},
        {"current_medications": ["Metformin"]},
    ])
    def test_adding_findings_never_lowers_priority(self, addition):
        base = {"critical_conditions": ["Hemophilia"]}
        before = classify(_make_profile(**base))
        merged = dict(base)
        for key, value in addition.items():
            if isinstance(value, list):
                merged[key] = merged.get(key, []) + value
            else:
                merged[key] = value
        after = classify(_make_profile(**merged))
        assert priority_rank(after.priority) >= priority_rank(before.priority)
        assert after.priority == Priority.CRITICAL

    def test_same_input_gives_same_output(self):
        profile = _make_profile(
            critical_conditions=["Diabetes"],
            critical_allergies=["Penicillin"],
            current_medications=["Warfarin"],
        )
        assert classify(profile) == classify(profile)


# ---------------------------------------------------------------------------
# 7. Injected knowledge base
# ---------------------------------------------------------------------------

class TestInjectedKnowledgeBase:
    def test_classifier_uses_injected_tables(self):
        kb = ClinicalKnowledgeBase(
            name="kidney_unit",
            conditions=(
                ConditionRule(
                    key="dialysis",
                    any_of=("dialysis",),
                    severity=Severity.CRITICAL,
                    message="Dialysis patient",
                ),
            ),
        )
        profile = _make_profile(
            critical_conditions=["On dialysis", "Hemophilia"],
            blood_group="O-",
        )
        result = classify(profile, kb)
        assert [a.message for a in result.alerts] == ["Dialysis patient"]

    def test_default_tables_unchanged_by_injection(self):
        assert len(DEFAULT_KNOWLEDGE_BASE.conditions) == 5


# ---------------------------------------------------------------------------
# 8. Malformed input
# ---------------------------------------------------------------------------

class TestMalformedInput:
    def test_mapping_with_camel_case_keys(self):
        result = classify({
            "criticalConditions": ["Hemophilia"],
            "bloodGroup": "o-",
        })
        assert result.priority == Priority.CRITICAL
        assert result.alerts[-1].type == AlertType.BLOOD

    def test_bare_string_is_treated_as_present(self):
        result = classify({"criticalConditions": "Hemophilia A"})
        assert result.priority == Priority.CRITICAL

    def test_mapping_in_list_field_raises(self):
        with pytest.raises(ClassifierInputError):
            classify({"criticalConditions": {"name": "Hemophilia"}})

    def test_non_mapping_profile_raises(self):
        with pytest.raises(ClassifierInputError):
            classify("Hemophilia")

    def test_non_string_blood_group_raises(self):
        with pytest.raises(ClassifierInputError):
            classify({"bloodGroup": 7})


class TestMatchesKeyword:
    def test_substring_case_insensitive(self):
        assert matches_keyword("Penicillin (hives)", "penicillin")
        assert matches_keyword("warfarin", "WARFARIN")

    def test_empty_inputs_never_match(self):
        assert not matches_keyword("", "heart")
        assert not matches_keyword("heart", "")
