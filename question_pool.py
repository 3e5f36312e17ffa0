"""
question_pool.py

Static feature library: the XLS-form compatible question bundles a user can
append to the survey from the builder UI.

Each bundle is a named group of field definitions (SurveyJS-style JSON dicts).
The templates below are read-only. Consumers get deep copies via
list_bundles() / get_bundle(); the survey merger copies again on insert.

Requires:
  pip install pandas pydantic
"""

import copy
from typing import Any, Dict, List, Literal

import pandas as pd
from pydantic import BaseModel, ConfigDict, Field, ValidationError


# -------------------
# DATA STRUCTURES
# -------------------
FieldType = Literal[
    "text",
    "radiogroup",
    "checkbox",
    "file",
    "rating",
    "ranking",
    "matrix",
    "panel",
    "paneldynamic",
    "expression",
]


class FieldDefinition(BaseModel):
    """One question template. Type-specific attributes ride along as extras."""

    model_config = ConfigDict(extra="allow")

    type: FieldType
    name: str = Field(min_length=1)
    title: str = ""


class Bundle(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str = Field(min_length=1)
    bundle_title: str = Field(alias="bundleTitle", min_length=1)
    question_schemas: List[Dict[str, Any]] = Field(alias="questionSchemas", min_length=1)

    def field_names(self) -> List[str]:
        return [str(s.get("name")) for s in self.question_schemas]

    def field_types(self) -> List[str]:
        return [str(s.get("type")) for s in self.question_schemas]


# -------------------
# LIBRARY
# -------------------
QUESTION_BUNDLES: List[Dict[str, Any]] = [
    # Simple repeating group: the count field drives the dynamic panel
    {
        "id": "bundle_simple_repeat_v2",
        "bundleTitle": "Repeating Group (for Children)",
        "questionSchemas": [
            {
                "type": "text",
                "name": "children_count",
                "inputType": "number",
                "title": "How many children do you have?",
                "isRequired": True,
                "validators": [{"type": "numeric", "minValue": 0, "maxValue": 10, "text": "Value must be between 0 and 10."}],
            },
            {
                "type": "paneldynamic",
                "name": "children_details",
                "title": "Children Details",
                "templateElements": [
                    {"type": "text", "name": "child_name", "title": "Child's Name", "isRequired": True},
                    {
                        "type": "text",
                        "name": "child_age",
                        "inputType": "number",
                        "title": "Child's Age",
                        "isRequired": True,
                        "validators": [{"type": "numeric", "minValue": 0, "maxValue": 17, "text": "Age must be between 0 and 17."}],
                    },
                ],
                "visibleIf": "{children_count} > 0",
                "panelCount": 0,
                "minPanelCount": 0,
                "maxPanelCount": 10,
                "allowAddPanel": False,
                "allowRemovePanel": False,
                "templateTitle": "Child #{panelIndex}",
            },
        ],
    },
    # Nested repeats: household members, each with their own asset sub-panel
    {
        "id": "bundle_nested_repeat_v2",
        "bundleTitle": "Nested Repeats (Household & Assets)",
        "questionSchemas": [
            {
                "type": "text",
                "name": "household_size",
                "inputType": "number",
                "title": "How many members are in your household?",
                "isRequired": True,
                "validators": [{"type": "numeric", "minValue": 1, "maxValue": 15, "text": "Household size must be between 1 and 15."}],
            },
            {
                "type": "paneldynamic",
                "name": "household_members",
                "title": "Household Member Information",
                "visibleIf": "{household_size} > 0",
                "panelCount": 0,
                "minPanelCount": 0,
                "maxPanelCount": 15,
                "allowAddPanel": False,
                "allowRemovePanel": False,
                "templateTitle": "Member #{panelIndex}",
                "templateElements": [
                    {"type": "text", "name": "member_name", "title": "Member's Name", "isRequired": True},
                    {
                        "type": "text",
                        "name": "asset_count",
                        "inputType": "number",
                        "title": "How many assets does this person own?",
                        "validators": [{"type": "numeric", "minValue": 0, "maxValue": 20, "text": "Asset count must be between 0 and 20."}],
                    },
                    {
                        "type": "paneldynamic",
                        "name": "member_assets",
                        "title": "Asset Details",
                        "visibleIf": "{panel.asset_count} > 0",
                        "panelCount": 0,
                        "maxPanelCount": 20,
                        "allowAddPanel": False,
                        "allowRemovePanel": False,
                        "templateTitle": "Asset #{panelIndex}",
                        "templateElements": [
                            {"type": "text", "name": "asset_name", "title": "Asset Name (e.g., Phone, Bicycle)", "isRequired": True},
                            {
                                "type": "text",
                                "name": "asset_value",
                                "inputType": "number",
                                "title": "Estimated Value (in local currency)",
                                "validators": [{"type": "numeric", "minValue": 0, "text": "Value must be positive."}],
                            },
                        ],
                    },
                ],
            },
        ],
    },
    # Choice filter: city choices depend on the selected country
    {
        "id": "bundle_choice_filter_v2",
        "bundleTitle": "Dependent Choices (Country/City)",
        "questionSchemas": [
            {
                "type": "radiogroup",
                "name": "country",
                "title": "Please select a country:",
                "choices": ["Canada", "USA", "India"],
                "isRequired": True,
            },
            {
                "type": "radiogroup",
                "name": "city",
                "title": "Please select a city:",
                "visibleIf": "{country} notempty",
                "choicesVisibleIf": "true",
                "choices": [
                    {"value": "Toronto", "text": "Toronto", "visibleIf": "{country} = 'Canada'"},
                    {"value": "Vancouver", "text": "Vancouver", "visibleIf": "{country} = 'Canada'"},
                    {"value": "New York", "text": "New York", "visibleIf": "{country} = 'USA'"},
                    {"value": "Boston", "text": "Boston", "visibleIf": "{country} = 'USA'"},
                    {"value": "Delhi", "text": "Delhi", "visibleIf": "{country} = 'India'"},
                    {"value": "Mumbai", "text": "Mumbai", "visibleIf": "{country} = 'India'"},
                ],
            },
        ],
    },
    {
        "id": "bundle_skip_logic_v1",
        "bundleTitle": "Skip Logic Group (Employment)",
        "questionSchemas": [
            {
                "type": "radiogroup",
                "name": "employment_status",
                "title": "What is your employment status?",
                "choices": ["Employed", "Self-Employed", "Unemployed", "Student", "Retired"],
                "isRequired": True,
            },
            {
                "type": "text",
                "name": "company_name",
                "title": "What is the name of your company?",
                "visibleIf": "{employment_status} = 'Employed'",
                "isRequired": True,
            },
            {
                "type": "text",
                "name": "business_type",
                "title": "What type of business do you run?",
                "visibleIf": "{employment_status} = 'Self-Employed'",
                "isRequired": True,
            },
            {
                "type": "radiogroup",
                "name": "job_seeking",
                "title": "Are you actively looking for a job?",
                "choices": ["Yes", "No"],
                "visibleIf": "{employment_status} = 'Unemployed'",
                "isRequired": True,
            },
            {
                "type": "text",
                "name": "field_of_study",
                "title": "What is your field of study?",
                "visibleIf": "{employment_status} = 'Student'",
                "isRequired": True,
            },
            {
                "type": "text",
                "name": "retirement_year",
                "inputType": "number",
                "title": "What year did you retire?",
                "visibleIf": "{employment_status} = 'Retired'",
                "validators": [{"type": "numeric", "minValue": 1950, "maxValue": 2025}],
            },
        ],
    },
    {
        "id": "bundle_media_upload_v1",
        "bundleTitle": "Media Upload (Image, Audio, Document)",
        "questionSchemas": [
            {
                "type": "file",
                "name": "profile_photo",
                "title": "Upload your profile photo (Image)",
                "acceptedTypes": "image/*",
                "storeDataAsText": False,
                "maxSize": 2097152,  # 2MB
                "allowMultiple": False,
                "isRequired": False,
            },
            {
                "type": "file",
                "name": "voice_recording",
                "title": "Upload a voice recording (Audio)",
                "acceptedTypes": "audio/*",
                "storeDataAsText": False,
                "maxSize": 10485760,  # 10MB
                "allowMultiple": False,
                "isRequired": False,
            },
            {
                "type": "file",
                "name": "identity_document",
                "title": "Upload identity document (PDF/Image)",
                "acceptedTypes": ".pdf,.jpg,.jpeg,.png,.doc,.docx",
                "storeDataAsText": False,
                "maxSize": 5242880,  # 5MB
                "allowMultiple": False,
                "isRequired": False,
            },
        ],
    },
    {
        "id": "bundle_constraints_v1",
        "bundleTitle": "Constraint Questions (Age, Income)",
        "questionSchemas": [
            {
                "type": "text",
                "name": "participant_age",
                "inputType": "number",
                "title": "Enter your age (must be 18-65)",
                "isRequired": True,
                "validators": [{"type": "numeric", "minValue": 18, "maxValue": 65, "text": "Age must be between 18 and 65 years."}],
            },
            {
                "type": "text",
                "name": "monthly_income",
                "inputType": "number",
                "title": "Monthly income (minimum $1000)",
                "isRequired": True,
                "validators": [{"type": "numeric", "minValue": 1000, "text": "Monthly income must be at least $1000."}],
            },
            {
                "type": "text",
                "name": "phone_number",
                "title": "Enter your phone number (10 digits)",
                "isRequired": True,
                "validators": [{"type": "regex", "regex": "^[0-9]{10}$", "text": "Phone number must be exactly 10 digits."}],
            },
        ],
    },
    {
        "id": "bundle_grouped_questions_v1",
        "bundleTitle": "Grouped Questions (Personal Info)",
        "questionSchemas": [
            {
                "type": "panel",
                "name": "personal_info_group",
                "title": "Personal Information",
                "elements": [
                    {"type": "text", "name": "first_name", "title": "First Name", "isRequired": True},
                    {"type": "text", "name": "last_name", "title": "Last Name", "isRequired": True},
                    {"type": "text", "name": "date_of_birth", "inputType": "date", "title": "Date of Birth", "isRequired": True},
                ],
            },
            {
                "type": "panel",
                "name": "contact_info_group",
                "title": "Contact Information",
                "elements": [
                    {"type": "text", "name": "email_contact", "inputType": "email", "title": "Email Address", "isRequired": True},
                    {"type": "text", "name": "phone_contact", "title": "Phone Number", "isRequired": True},
                    {"type": "text", "name": "address", "title": "Home Address", "isRequired": False},
                ],
            },
        ],
    },
    {
        "id": "bundle_range_scale_v1",
        "bundleTitle": "Range & Scale Questions",
        "questionSchemas": [
            {
                "type": "rating",
                "name": "service_satisfaction",
                "title": "Rate our service (1-10)",
                "rateMin": 1,
                "rateMax": 10,
                "rateStep": 1,
                "minRateDescription": "Very Poor",
                "maxRateDescription": "Excellent",
                "isRequired": True,
            },
            {
                "type": "rating",
                "name": "likelihood_recommend",
                "title": "How likely are you to recommend us? (0-10)",
                "rateMin": 0,
                "rateMax": 10,
                "rateStep": 1,
                "minRateDescription": "Not at all likely",
                "maxRateDescription": "Extremely likely",
            },
            {
                "type": "rating",
                "name": "price_rating",
                "title": "Rate our pricing (1-5 stars)",
                "rateMin": 1,
                "rateMax": 5,
                "rateStep": 1,
                "displayMode": "stars",
            },
        ],
    },
    {
        "id": "bundle_multiple_select_logic_v1",
        "bundleTitle": "Multiple Selection with Follow-up Logic",
        "questionSchemas": [
            {
                "type": "checkbox",
                "name": "preferred_features",
                "title": "Which features are most important to you? (Select all that apply)",
                "choices": ["Fast Delivery", "Low Price", "Quality", "Customer Support", "Easy Returns"],
                "isRequired": True,
            },
            {
                "type": "text",
                "name": "delivery_preference",
                "title": "What is your preferred delivery time?",
                "visibleIf": "{preferred_features} contains 'Fast Delivery'",
                "choices": ["Same Day", "Next Day", "2-3 Days", "Within a Week"],
            },
            {
                "type": "text",
                "name": "support_channel",
                "title": "How do you prefer to contact customer support?",
                "visibleIf": "{preferred_features} contains 'Customer Support'",
                "choices": ["Phone", "Email", "Live Chat", "In-Person"],
            },
        ],
    },
    {
        "id": "bundle_calculations_v1",
        "bundleTitle": "Calculations (Auto-computed Fields)",
        "questionSchemas": [
            {
                "type": "text",
                "name": "product_price",
                "inputType": "number",
                "title": "Enter product price ($)",
                "isRequired": True,
                "validators": [{"type": "numeric", "minValue": 0}],
            },
            {
                "type": "text",
                "name": "quantity",
                "inputType": "number",
                "title": "Enter quantity",
                "isRequired": True,
                "validators": [{"type": "numeric", "minValue": 1}],
            },
            {"type": "expression", "name": "subtotal", "title": "Subtotal", "expression": "{product_price} * {quantity}", "displayStyle": "currency"},
            {"type": "expression", "name": "tax", "title": "Tax (8%)", "expression": "{subtotal} * 0.08", "displayStyle": "currency"},
            {"type": "expression", "name": "total", "title": "Total Amount", "expression": "{subtotal} + {tax}", "displayStyle": "currency"},
        ],
    },
    {
        "id": "bundle_email_v1",
        "bundleTitle": "Email Logic Block (Yes/No with Follow-up)",
        "questionSchemas": [
            {
                "type": "radiogroup",
                "name": "has_email",
                "title": "Do you have an email address?",
                "choices": ["Yes", "No"],
                "isRequired": True,
            },
            {
                "type": "text",
                "name": "email_address",
                "title": "Please enter your email address.",
                "inputType": "email",
                "isRequired": True,
                "visibleIf": "{has_email} = 'Yes'",
            },
        ],
    },
    {
        "id": "bundle_age_v1",
        "bundleTitle": "Age Question (with validation)",
        "questionSchemas": [
            {
                "type": "text",
                "name": "age",
                "title": "What is your age? (Must be 18 or older)",
                "inputType": "number",
                "isRequired": True,
                "validators": [{"type": "numeric", "minValue": 18, "text": "You must be at least 18 years old."}],
            }
        ],
    },
    {
        "id": "bundle_equipment_v1",
        "bundleTitle": "Multiple Choice Question",
        "questionSchemas": [
            {
                "type": "checkbox",
                "name": "equipment",
                "title": "What office equipment do you use?",
                "choices": ["Laptop", "External Monitor", "Printer", "Other"],
            }
        ],
    },
    {
        "id": "bundle_photo_id_v1",
        "bundleTitle": "Simple Image Upload Question",
        "questionSchemas": [
            {
                "type": "file",
                "name": "photo_id",
                "title": "Please upload a picture of your photo ID.",
                "acceptedTypes": "image/*",
                "storeDataAsText": False,
                "maxSize": 2097152,  # 2MB
                "allowMultiple": False,
            }
        ],
    },
    {
        "id": "bundle_satisfaction_v1",
        "bundleTitle": "Rating Scale (Slider)",
        "questionSchemas": [
            {
                "type": "rating",
                "name": "satisfaction_score",
                "title": "On a scale of 1 to 10, how satisfied are you?",
                "rateMin": 1,
                "rateMax": 10,
            }
        ],
    },
    {
        "id": "bundle_ranking_v1",
        "bundleTitle": "Ranking Question",
        "questionSchemas": [
            {
                "type": "ranking",
                "name": "priority_ranking",
                "title": "Please rank these features in order of importance.",
                "choices": ["Price", "Customer Support", "Ease of Use"],
            }
        ],
    },
    {
        "id": "bundle_defaults_v1",
        "bundleTitle": "Questions with Default Values",
        "questionSchemas": [
            {
                "type": "text",
                "name": "country_of_residence",
                "title": "What is your country of residence?",
                "defaultValue": "Canada",
            },
            {
                "type": "text",
                "name": "survey_date",
                "inputType": "date",
                "title": "Survey Date",
                "defaultValue": "today()",
            },
            {
                "type": "radiogroup",
                "name": "preferred_language",
                "title": "Preferred Language",
                "choices": ["English", "Spanish", "French", "Other"],
                "defaultValue": "English",
            },
        ],
    },
    {
        "id": "bundle_matrix_v1",
        "bundleTitle": "Matrix Questions (Rating Grid)",
        "questionSchemas": [
            {
                "type": "matrix",
                "name": "service_ratings",
                "title": "Please rate the following aspects of our service:",
                "columns": [
                    {"value": "excellent", "text": "Excellent"},
                    {"value": "good", "text": "Good"},
                    {"value": "fair", "text": "Fair"},
                    {"value": "poor", "text": "Poor"},
                ],
                "rows": [
                    {"value": "speed", "text": "Speed of Service"},
                    {"value": "quality", "text": "Quality"},
                    {"value": "friendliness", "text": "Staff Friendliness"},
                    {"value": "value", "text": "Value for Money"},
                ],
                "isRequired": True,
            }
        ],
    },
]


# -------------------
# VALIDATION + ACCESS
# -------------------
def _walk_templates(schemas: List[Dict[str, Any]]):
    for s in schemas or []:
        yield s
        yield from _walk_templates(s.get("elements") or [])
        yield from _walk_templates(s.get("templateElements") or [])


def validate_catalog(bundles: List[Dict[str, Any]]) -> List[Bundle]:
    """
    Parse raw bundle dicts into Bundle objects.

    Raises ValueError when a bundle or any (nested) field template is malformed,
    when two bundles share an id, or when a bundle repeats a top-level field name.
    """
    out: List[Bundle] = []
    seen_ids = set()
    for raw in bundles:
        try:
            bundle = Bundle.model_validate(raw)
            for schema in _walk_templates(bundle.question_schemas):
                FieldDefinition.model_validate(schema)
        except ValidationError as e:
            raise ValueError(f"Invalid bundle {raw.get('id')!r}: {e}") from e

        if bundle.id in seen_ids:
            raise ValueError(f"Duplicate bundle id: {bundle.id}")
        seen_ids.add(bundle.id)

        names = bundle.field_names()
        if len(set(names)) != len(names):
            raise ValueError(f"Bundle {bundle.id} repeats a field name: {names}")
        out.append(bundle)
    return out


def list_bundles() -> List[Bundle]:
    return validate_catalog(copy.deepcopy(QUESTION_BUNDLES))


def get_bundle(bundle_id: str) -> Bundle:
    for raw in QUESTION_BUNDLES:
        if raw["id"] == bundle_id:
            return validate_catalog([copy.deepcopy(raw)])[0]
    raise KeyError(f"Unknown bundle id: {bundle_id}")


def catalog_frame() -> pd.DataFrame:
    rows = [
        {
            "id": b.id,
            "title": b.bundle_title,
            "questions": len(b.question_schemas),
            "types": ", ".join(sorted(set(b.field_types()))),
        }
        for b in list_bundles()
    ]
    return pd.DataFrame(rows, columns=["id", "title", "questions", "types"])
