"""
Tests for medbeacon.models -- profile normalization at the model boundary.
"""

import pytest

from medbeacon.models import (
    Alert,
    AlertType,
    BloodGroup,
    ClassifierInputError,
    EmergencyProfile,
    PriorityResult,
    Severity,
    normalize_blood_group,
    normalize_profile,
)


class TestBloodGroupNormalization:
    @pytest.mark.parametrize("raw,expected", [
        ("O-", BloodGroup.O_NEG),
        ("o-", BloodGroup.O_NEG),
        (" ab+ ", BloodGroup.AB_POS),
        ("A pos", BloodGroup.A_POS),
        ("B NEG", BloodGroup.B_NEG),
    ])
    def test_recognized_spellings(self, raw, expected):
        assert normalize_blood_group(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "Unknown", "C+", "type O"])
    def test_unrecognized_becomes_unknown(self, raw):
        assert normalize_blood_group(raw) == BloodGroup.UNKNOWN

    def test_non_string_raises(self):
        with pytest.raises(ClassifierInputError):
            normalize_blood_group(3)


class TestNormalizeProfile:
    def test_camel_case_store_record(self):
        profile = normalize_profile({
            "fullName": "Priya Raman",
            "bloodGroup": "B+",
            "age": "34",
            "criticalAllergies": ["Latex", "  ", None],
            "criticalConditions": None,
            "currentMedications": ["Metformin 500mg"],
            "primaryEmergencyContact": [
                {"name": "Arjun Raman", "relation": "Brother", "phone": "555-0100"},
                {"name": "Second Contact", "relation": "Friend", "phone": "555-0199"},
            ],
            "primaryDoctor": {"name": "Dr. Lee", "hospital": "General", "contact": "555-0142"},
            "healthId": "EMH-482913",
        })
        assert profile.full_name == "Priya Raman"
        assert profile.blood_group == BloodGroup.B_POS
        assert profile.age == 34
        assert profile.critical_allergies == ["Latex"]
        assert profile.critical_conditions == []
        assert profile.primary_emergency_contact.name == "Arjun Raman"
        assert profile.primary_doctor.phone == "555-0142"
        assert profile.health_id == "EMH-482913"

    def test_snake_case_names_accepted(self):
        profile = normalize_profile({"full_name": "A", "critical_conditions": ["Asthma"]})
        assert profile.critical_conditions == ["Asthma"]

    def test_none_gives_empty_profile(self):
        profile = normalize_profile(None)
        assert profile.critical_allergies == []
        assert profile.blood_group == BloodGroup.UNKNOWN
        assert profile.age is None

    def test_existing_profile_passes_through(self):
        profile = EmergencyProfile(full_name="Same")
        assert normalize_profile(profile) is profile

    def test_bare_string_becomes_single_entry(self):
        profile = normalize_profile({"currentMedications": "Warfarin"})
        assert profile.current_medications == ["Warfarin"]

    def test_empty_contact_list_is_none(self):
        profile = normalize_profile({"primaryEmergencyContact": []})
        assert profile.primary_emergency_contact is None

    @pytest.mark.parametrize("data", [
        ["not", "a", "mapping"],
        "Hemophilia",
        {"criticalAllergies": {"penicillin": True}},
        {"criticalAllergies": [True]},
        {"criticalAllergies": [["nested"]]},
        {"age": "forty"},
        {"age": 200},
        {"age": True},
        {"primaryDoctor": "Dr. Lee"},
        {"primaryEmergencyContact": "Mum"},
    ])
    def test_malformed_input_raises(self, data):
        with pytest.raises(ClassifierInputError):
            normalize_profile(data)


class TestResultModels:
    def test_alert_is_immutable(self):
        alert = Alert(type=AlertType.DRUG, severity=Severity.CAUTION, message="m")
        with pytest.raises(Exception):
            alert.message = "changed"

    def test_has_critical_alert(self):
        result = PriorityResult(alerts=[
            Alert(type=AlertType.BLOOD, severity=Severity.CAUTION, message="Rare"),
        ])
        assert not result.has_critical_alert()
        result.alerts.append(
            Alert(type=AlertType.ALLERGY, severity=Severity.CRITICAL, message="Severe")
        )
        assert result.has_critical_alert()
