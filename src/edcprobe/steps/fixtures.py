# src/edcprobe/steps/fixtures.py
"""Payloads the suite sends: templates, study layout, rules and form data.

Anything date-dependent is built by a function so the value reflects the
day the suite runs rather than the day the module was imported.
"""

from __future__ import annotations

import json
from datetime import date, timedelta
from typing import Any

GENERAL_FORM_NAME = "General Assessment Form"
LAB_FORM_NAME = "Lab Results & Procedures Form"
VALIDATION_SUFFIX = " - Validation"
WORKFLOW_SUFFIX = " - Workflow"

TEST_FORM_NAMES: tuple[str, ...] = (GENERAL_FORM_NAME, LAB_FORM_NAME)
TEST_STUDY_MARKER = "E2E Test Study"
STUDY_NAME = f"Automated {TEST_STUDY_MARKER}"
SUBJECT_LABEL = "SUBJ-001"

NONEXISTENT_ID = 999999


def today() -> str:
    return date.today().isoformat()


def days_from_now(days: int) -> str:
    return (date.today() + timedelta(days=days)).isoformat()


def _options(*pairs: tuple[str, str]) -> list[dict[str, str]]:
    return [{"label": label, "value": value} for label, value in pairs]


# === Templates ===


def general_fields() -> list[dict[str, Any]]:
    """Ten everyday field kinds: dates, choices, vitals, free text."""
    return [
        {
            "label": "Assessment Date",
            "name": "assessment_date",
            "type": "date",
            "required": True,
            "order": 1,
            "helpText": "Date this assessment was performed",
            "defaultValue": today(),
        },
        {
            "label": "Pain Level",
            "name": "pain_level",
            "type": "radio",
            "required": True,
            "order": 2,
            "helpText": "Rate the patient pain on a scale of 1-10",
            "options": _options(("1 - No pain", "1"), *((str(n), str(n)) for n in range(2, 10)), ("10 - Worst", "10")),
            "defaultValue": "3",
        },
        {
            "label": "Has Known Allergies",
            "name": "has_allergies",
            "type": "yesno",
            "required": True,
            "order": 3,
            "defaultValue": "no",
        },
        {
            "label": "Reported Symptoms",
            "name": "reported_symptoms",
            "type": "checkbox",
            "required": False,
            "order": 4,
            "options": _options(
                ("Headache", "headache"),
                ("Nausea", "nausea"),
                ("Dizziness", "dizziness"),
                ("Fatigue", "fatigue"),
                ("Fever", "fever"),
                ("Cough", "cough"),
            ),
        },
        {
            "label": "Heart Rate",
            "name": "heart_rate",
            "type": "number",
            "required": True,
            "order": 5,
            "unit": "bpm",
            "min": 30,
            "max": 250,
            "defaultValue": 72,
        },
        {
            "label": "Blood Pressure",
            "name": "blood_pressure",
            "type": "blood_pressure",
            "required": True,
            "order": 6,
            "unit": "mmHg",
        },
        {
            "label": "Temperature",
            "name": "temperature",
            "type": "temperature",
            "required": False,
            "order": 7,
            "unit": "°C",
            "defaultValue": 36.6,
        },
        {
            "label": "Treatment Response",
            "name": "treatment_response",
            "type": "select",
            "required": True,
            "order": 8,
            "options": _options(
                ("Complete Response (CR)", "CR"),
                ("Partial Response (PR)", "PR"),
                ("Stable Disease (SD)", "SD"),
                ("Progressive Disease (PD)", "PD"),
                ("Not Evaluable (NE)", "NE"),
            ),
            "defaultValue": "SD",
        },
        {
            "label": "Clinical Notes",
            "name": "clinical_notes",
            "type": "textarea",
            "required": False,
            "order": 9,
            "placeholder": "Enter clinical observations here...",
        },
        {
            "label": "Next Visit Date",
            "name": "next_visit_date",
            "type": "date",
            "required": False,
            "order": 10,
        },
    ]


def lab_fields() -> list[dict[str, Any]]:
    """Complex field kinds whose metadata must survive snapshot materialisation."""
    return [
        {"label": "Patient Height", "name": "patient_height", "type": "height", "required": True, "order": 1, "unit": "cm"},
        {"label": "Patient Weight", "name": "patient_weight", "type": "weight", "required": True, "order": 2, "unit": "kg"},
        {
            "label": "BMI (Calculated)",
            "name": "bmi_calculated",
            "type": "calculation",
            "required": False,
            "order": 3,
            "calculationFormula": "patient_weight / ((patient_height / 100) * (patient_height / 100))",
            "calculationType": "field",
        },
        {
            "label": "Lab Results",
            "name": "lab_results_table",
            "type": "table",
            "required": True,
            "order": 4,
            "tableSettings": {"allowAddRows": True, "allowDeleteRows": True, "minRows": 1, "maxRows": 20},
            "tableColumns": [
                {"name": "test_name", "label": "Test Name", "type": "text", "required": True},
                {"name": "result_value", "label": "Result", "type": "number", "required": True},
                {
                    "name": "unit",
                    "label": "Unit",
                    "type": "select",
                    "required": True,
                    "options": _options(("mg/dL", "mg_dl"), ("g/dL", "g_dl"), ("U/L", "u_l"), ("x10^3/uL", "k_ul")),
                },
                {"name": "ref_range", "label": "Reference Range", "type": "text", "required": False},
                {
                    "name": "flag",
                    "label": "Flag",
                    "type": "select",
                    "required": False,
                    "options": _options(("Normal", "normal"), ("Low", "low"), ("High", "high"), ("Critical", "critical")),
                },
            ],
        },
        {
            "label": "Inclusion Criteria Checklist",
            "name": "inclusion_criteria",
            "type": "criteria_list",
            "required": True,
            "order": 5,
            "options": _options(
                ("Age 18-75 years", "age_eligible"),
                ("Signed informed consent", "consent_signed"),
                ("Confirmed diagnosis via imaging", "diagnosis_confirmed"),
            ),
        },
        {
            "label": "Adverse Event Assessment",
            "name": "ae_assessment",
            "type": "question_table",
            "required": False,
            "order": 6,
            "questionTableSettings": {
                "answerType": "select",
                "answerOptions": _options(("None", "none"), ("Mild (Grade 1)", "grade1"), ("Severe (Grade 3)", "grade3")),
            },
            "options": _options(("Nausea/Vomiting", "nausea_vomiting"), ("Fatigue", "fatigue"), ("Rash", "rash")),
        },
        {
            "label": "Concomitant Medications",
            "name": "concomitant_meds",
            "type": "table",
            "required": False,
            "order": 7,
            "tableColumns": [
                {"name": "med_name", "label": "Medication Name", "type": "text", "required": True},
                {"name": "dose", "label": "Dose", "type": "text", "required": True},
                {"name": "start_date", "label": "Start Date", "type": "date", "required": False},
            ],
        },
        {"label": "Specimen Collection Notes", "name": "specimen_notes", "type": "textarea", "required": False, "order": 8},
        {
            "label": "Imaging Report Upload",
            "name": "imaging_upload",
            "type": "file",
            "required": False,
            "order": 9,
            "allowedFileTypes": ["pdf", "jpg", "png", "dcm"],
        },
    ]


def form_payload(name: str, description: str, fields: list[dict[str, Any]]) -> dict[str, Any]:
    return {
        "name": name,
        "description": description,
        "category": "clinical",
        "version": "v1.0",
        "status": "published",
        "fields": fields,
    }


# === Study ===

EVENT_DEFINITIONS: tuple[tuple[str, str, int, int, int], ...] = (
    # name, description, schedule day, min day, max day
    ("Screening Visit", "Initial screening and eligibility assessment", 0, -3, 3),
    ("Baseline Visit", "Baseline measurements and treatment initiation", 7, 5, 10),
    ("Follow-Up Visit", "30-day follow-up assessment and safety evaluation", 30, 25, 35),
)


def study_payload(crf_ids: list[int], admin_username: str, admin_email: str | None, unique_suffix: str) -> dict[str, Any]:
    """Two sites and three visits, each visit assigned every template."""

    def crf_assignments() -> list[dict[str, Any]]:
        return [
            {
                "crfId": crf_id,
                "required": True,
                "doubleEntry": False,
                "electronicSignature": False,
                "hideCrf": False,
                "ordinal": ordinal,
            }
            for ordinal, crf_id in enumerate(crf_ids, start=1)
        ]

    def site(name: str, identifier: str, facility: str, city: str, zip_code: str, enrollment: int) -> dict[str, Any]:
        return {
            "name": name,
            "uniqueIdentifier": identifier,
            "principalInvestigator": admin_username,
            "expectedTotalEnrollment": enrollment,
            "facilityName": facility,
            "facilityCity": city,
            "facilityState": "MA",
            "facilityZip": zip_code,
            "facilityCountry": "United States",
            "facilityRecruitmentStatus": "Recruiting",
        }

    return {
        "name": STUDY_NAME,
        "uniqueIdentifier": f"E2E-TEST-{unique_suffix}",
        "officialTitle": "A Multi-Center Study to Evaluate EDC Platform Functionality",
        "summary": "End-to-end study created by the live suite.",
        "studyAcronym": "E2E-TEST",
        "principalInvestigator": admin_username,
        "sponsor": "EDC Probe Test Organization",
        "phase": "II",
        "protocolType": "interventional",
        "expectedTotalEnrollment": 50,
        "datePlannedStart": today(),
        "datePlannedEnd": days_from_now(365),
        "facilityName": "EDC Probe Research Center",
        "facilityCity": "Boston",
        "facilityCountry": "United States",
        "facilityContactEmail": admin_email,
        "protocolVersion": "1.0",
        "eligibility": "Adults aged 18-75 with confirmed diagnosis",
        "gender": "both",
        "ageMin": "18",
        "ageMax": "75",
        "sites": [
            site("Main Hospital Site", "SITE-MAIN-001", "Boston General Hospital", "Boston", "02115", 30),
            site("Satellite Clinic Site", "SITE-SAT-001", "Cambridge Community Clinic", "Cambridge", "02139", 20),
        ],
        "eventDefinitions": [
            {
                "name": name,
                "description": description,
                "category": "Study Event",
                "type": "scheduled",
                "ordinal": ordinal,
                "repeating": False,
                "scheduleDay": schedule_day,
                "minDay": min_day,
                "maxDay": max_day,
                "crfAssignments": crf_assignments(),
            }
            for ordinal, (name, description, schedule_day, min_day, max_day) in enumerate(EVENT_DEFINITIONS, start=1)
        ],
    }


def subject_payload(study_id: int, first_event_definition_id: int | None, location: str, person_suffix: str) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "studyId": study_id,
        "studySubjectId": SUBJECT_LABEL,
        "secondaryId": "MRN-00001",
        "enrollmentDate": today(),
        "screeningDate": today(),
        "gender": "m",
        "dateOfBirth": "1985-06-15",
        "personId": f"PID-{person_suffix}",
        "timeZone": "America/New_York",
    }
    if first_event_definition_id is not None:
        payload["scheduleEvent"] = {
            "studyEventDefinitionId": first_event_definition_id,
            "location": location,
            "startDate": today(),
        }
    return payload


# === Validation rules ===

GENERAL_RULES: tuple[dict[str, Any], ...] = (
    {
        "name": "Heart Rate Range Check",
        "description": "Heart rate must be between 40 and 200 bpm",
        "ruleType": "range",
        "fieldPath": "heart_rate",
        "severity": "error",
        "errorMessage": "Heart rate is out of physiological range (40-200 bpm).",
        "active": True,
        "minValue": 40,
        "maxValue": 200,
    },
    {
        "name": "Clinical Notes Minimum Length",
        "description": "Clinical notes should be at least 10 characters if provided",
        "ruleType": "format",
        "fieldPath": "clinical_notes",
        "severity": "warning",
        "errorMessage": "Clinical notes are too short.",
        "warningMessage": "Clinical notes should be at least 10 characters.",
        "active": True,
        "pattern": "^.{10,}$",
        "formatType": "custom",
    },
    {
        "name": "Assessment Date Required",
        "description": "Assessment date must be filled in",
        "ruleType": "required",
        "fieldPath": "assessment_date",
        "severity": "error",
        "errorMessage": "Assessment date is required.",
        "active": True,
    },
    {
        "name": "Pain Level Range",
        "description": "Pain level must be between 1 and 10",
        "ruleType": "range",
        "fieldPath": "pain_level",
        "severity": "warning",
        "errorMessage": "Pain level out of range.",
        "active": True,
        "minValue": 1,
        "maxValue": 10,
    },
)

LAB_RULES: tuple[dict[str, Any], ...] = (
    {
        "name": "Patient Weight Range",
        "description": "Patient weight must be physiologically reasonable",
        "ruleType": "range",
        "fieldPath": "patient_weight",
        "severity": "error",
        "errorMessage": "Patient weight must be between 20-250 kg.",
        "active": True,
        "minValue": 20,
        "maxValue": 250,
    },
    {
        "name": "Patient Height Range",
        "description": "Patient height must be physiologically reasonable",
        "ruleType": "range",
        "fieldPath": "patient_height",
        "severity": "error",
        "errorMessage": "Patient height must be between 50-250 cm.",
        "active": True,
        "minValue": 50,
        "maxValue": 250,
    },
    {
        "name": "Lab Result Value Range",
        "description": "Lab result values must be between 0 and 1000",
        "ruleType": "range",
        "fieldPath": "lab_results_table.result_value",
        "severity": "error",
        "errorMessage": "Lab result value is out of expected range (0-1000).",
        "active": True,
        "minValue": 0,
        "maxValue": 1000,
    },
    {
        "name": "BMI Reasonable Range",
        "description": "BMI should be between 10 and 60",
        "ruleType": "range",
        "fieldPath": "bmi_calculated",
        "severity": "warning",
        "errorMessage": "BMI is outside reasonable range.",
        "active": True,
        "minValue": 10,
        "maxValue": 60,
    },
    {
        "name": "Test Name Required in Lab Table",
        "description": "Each lab result row must have a test name",
        "ruleType": "required",
        "fieldPath": "lab_results_table.test_name",
        "severity": "error",
        "errorMessage": "Test name is required for each lab result entry.",
        "active": True,
    },
)


# === Form data ===


def valid_general_data() -> dict[str, Any]:
    return {
        "assessment_date": today(),
        "pain_level": "5",
        "has_allergies": "yes",
        "reported_symptoms": ["headache", "fatigue"],
        "heart_rate": 72,
        "blood_pressure": "120/80",
        "temperature": 36.6,
        "treatment_response": "SD",
        "clinical_notes": "Patient presents with stable vitals. No significant adverse events reported.",
        "next_visit_date": days_from_now(14),
    }


def valid_lab_data() -> dict[str, Any]:
    """Table, checklist and question-table values travel as JSON text."""
    return {
        "patient_height": 175,
        "patient_weight": 78,
        "lab_results_table": json.dumps(
            [
                {"test_name": "WBC", "result_value": 7.2, "unit": "k_ul", "ref_range": "4.5-11.0", "flag": "normal"},
                {"test_name": "Hemoglobin", "result_value": 14.1, "unit": "g_dl", "ref_range": "13.5-17.5", "flag": "normal"},
                {"test_name": "ALT", "result_value": 22, "unit": "u_l", "ref_range": "7-56", "flag": "normal"},
            ]
        ),
        "inclusion_criteria": json.dumps({"age_eligible": True, "consent_signed": True, "diagnosis_confirmed": True}),
        "ae_assessment": json.dumps({"nausea_vomiting": "none", "fatigue": "grade1", "rash": "none"}),
        "concomitant_meds": json.dumps([{"med_name": "Acetaminophen", "dose": "500 mg", "start_date": today()}]),
        "specimen_notes": "Blood samples collected per protocol. Stored at -80C.",
    }


def invalid_general_data() -> dict[str, Any]:
    """Breaks the required, range and format rules of the general template."""
    return {
        **valid_general_data(),
        "assessment_date": "",
        "pain_level": "15",
        "heart_rate": 999,
        "clinical_notes": "Short",
    }


def invalid_lab_data() -> dict[str, Any]:
    """Breaks the range and required rules of the lab template."""
    return {
        "patient_height": 300,
        "patient_weight": 300,
        "lab_results_table": json.dumps(
            [{"test_name": "", "result_value": 5000, "unit": "mg_dl", "ref_range": "", "flag": "critical"}]
        ),
        "inclusion_criteria": json.dumps({}),
        "ae_assessment": json.dumps({}),
        "specimen_notes": "",
    }


def snapshot_general_data() -> dict[str, Any]:
    """Written to general snapshots and read back for the round-trip check."""
    return {
        "assessment_date": today(),
        "pain_level": "4",
        "has_allergies": "no",
        "reported_symptoms": ["headache", "fatigue"],
        "heart_rate": 72,
        "blood_pressure": "118/76",
        "temperature": 36.5,
        "treatment_response": "PR",
        "clinical_notes": "Patient is stable. No adverse events.",
        "next_visit_date": days_from_now(14),
    }


def snapshot_lab_data() -> dict[str, Any]:
    return {
        "patient_height": 175,
        "patient_weight": 72,
        "specimen_notes": "Blood draw completed without complications.",
    }


def is_lab_form(form_name: str | None) -> bool:
    name = (form_name or "").lower()
    return "lab" in name or "procedure" in name
