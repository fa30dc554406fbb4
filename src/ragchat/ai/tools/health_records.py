"""Patient health record lookup tool offered to the model."""

from __future__ import annotations

import logging
from typing import Any, Mapping

__all__ = [
    "GET_RESOURCES_TOOL",
    "HEALTH_ASSISTANT_PROMPT",
    "HealthRecordToolExecutor",
    "RESOURCE_SUMMARIES",
]

LOGGER = logging.getLogger(__name__)

HEALTH_ASSISTANT_PROMPT = (
    "You are an LLM-powered health assistant for patients. You help patients understand their "
    "health records, medical history, and answer health-related questions based on their FHIR data.\n\n"
    "When a user asks about their health information, use the get_resources tool to retrieve the "
    "relevant FHIR resources. Then, explain the information in simple, patient-friendly language.\n\n"
    "Be empathetic, clear, and helpful. If you don't have enough information to answer a question, "
    "say so honestly."
)


def _summary(resource_id: str, title: str, body: str) -> str:
    return f"This is the summary of the requested {resource_id}:\n\n{title}\n{body}"


RESOURCE_SUMMARIES: Mapping[str, str] = {
    resource_id: _summary(resource_id, title, body)
    for resource_id, title, body in (
        (
            "Procedure-Appendectomy-05-25-2014",
            "Appendectomy Procedure",
            "Patient underwent an appendectomy on May 25, 2014. The procedure was completed "
            "successfully with no complications. Recovery was uneventful.",
        ),
        (
            "Observation-ThyroxineT4-09-04-2014",
            "Thyroxine (T4) Lab Result",
            "Thyroxine (T4) level was 1.2 ng/dL, within the normal range of 0.8 to 1.8 ng/dL "
            "as of September 4, 2014.",
        ),
        (
            "Observation-TSH-09-04-2014",
            "TSH Lab Result",
            "Thyroid Stimulating Hormone (TSH) level was 2.5 mIU/L, within the normal range of "
            "0.4 to 4.0 mIU/L as of September 4, 2014.",
        ),
        (
            "Procedure-ACLrepair-06-09-2021",
            "ACL Repair Procedure",
            "Candace Salinas underwent a completed ACL repair procedure on June 9, 2021.",
        ),
        (
            "Observation-Totalcholesterol-10-18-2023",
            "Cholesterol Test Result",
            "Total cholesterol level is 184 mg/dL, within the normal range of 120 to 220 mg/dL, "
            "as of October 18, 2023.",
        ),
        (
            "Observation-BloodGlucose-10-18-2023",
            "Blood Glucose Observation",
            "Blood glucose level measured at 60 mg/dL, which is below the normal reference range "
            "of 61-100 mg/dL, as of October 18, 2023.",
        ),
        (
            "Procedure-UltrasoundAbdomen-10-18-2023",
            "Ultrasound Abdomen Procedure",
            "Completed ultrasound scan of the lower abdomen performed on 2023-10-18 by "
            "Dr. Altick Kelly, a gynecologist.",
        ),
        (
            "Observation-CBCpanelBloodbyAutomatedcount-10-18-2023",
            "CBC Panel Results",
            "CBC panel shows leukocytes at 111 (10*3/uL), erythrocytes at 222 (10*6/uL), "
            "platelets at 333 (10*3/uL), and hemoglobin at 444 g/dL, within the reference range "
            "of 400 to 500 g/dL.",
        ),
        (
            "Observation-RespiratoryRate-10-18-2023",
            "Respiratory Rate Observation",
            "Respiratory rate recorded as 22 breaths per minute on October 18, 2023, during "
            "encounter 129837645.",
        ),
        (
            "Observation-BPbloodpressure-10-18-2023",
            "Blood Pressure Observation",
            "Blood pressure recorded as 110/70 mmHg on October 18, 2023, during encounter 129837645.",
        ),
        (
            "Observation-Weight-10-18-2023",
            "Weight Observation",
            "Patient's weight recorded as 155 lbs on October 18, 2023.",
        ),
        (
            "Observation-Height-10-18-2023",
            "Height Observation",
            "Height recorded as 164 cm on October 18, 2023.",
        ),
        (
            "Observation-LDLcholesterol-10-18-2023",
            "LDL Cholesterol Test Result",
            "LDL cholesterol level is 113.3 mg/dL, within the normal range of 50 to 178 mg/dL, "
            "as of October 18, 2023.",
        ),
        (
            "Observation-CholesterolHDL-02-18-2024",
            "Cholesterol HDL Test Result",
            "HDL cholesterol level is 95.5 mg/dL, which is above the normal range of 35 to 59 "
            "mg/dL. Test status is final as of February 18, 2024.",
        ),
        (
            "Observation-Triglycerides-02-18-2024",
            "Triglycerides Lab Result",
            "Triglycerides level is 86 mg/dL, within the normal range of 10 to 250 mg/dL, "
            "as of February 18, 2024.",
        ),
        (
            "Observation-BMIbodymassindex-02-18-2024",
            "BMI Observation",
            "Your BMI is 26.2 kg/m^2 as of February 18, 2024.",
        ),
        (
            "Observation-Temperature-02-18-2024",
            "Temperature Observation",
            "The patient's temperature was recorded as 37.6°C on February 18, 2024, during an "
            "encounter. The observation status is final.",
        ),
        (
            "Observation-Pulse-02-18-2024",
            "Pulse Observation",
            "Pulse rate recorded as 77 beats per minute on February 18, 2024.",
        ),
    )
}

GET_RESOURCES_TOOL: dict[str, Any] = {
    "type": "function",
    "function": {
        "name": "get_resources",
        "description": (
            "Call this function to request the relevant FHIR health records based on the user's "
            "question and conversation context using their FHIR resource identifiers."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "resourceCategories": {
                    "type": "array",
                    "description": "Pass in one or more identifiers that you want to access.",
                    "items": {"type": "string", "enum": list(RESOURCE_SUMMARIES)},
                },
            },
            "required": ["resourceCategories"],
        },
    },
}


class HealthRecordToolExecutor:
    """Answers ``get_resources`` calls from a table of record summaries."""

    def __init__(self, summaries: Mapping[str, str] | None = None) -> None:
        self._summaries = dict(RESOURCE_SUMMARIES if summaries is None else summaries)

    @property
    def tools(self) -> list[dict[str, Any]]:
        return [GET_RESOURCES_TOOL]

    def execute(self, name: str, arguments: Mapping[str, Any]) -> str:
        if name != "get_resources":
            LOGGER.warning("Model requested unknown tool %s", name)
            return "Unknown tool"

        categories = arguments.get("resourceCategories")
        if not isinstance(categories, list):
            return "No resources requested."
        LOGGER.debug("Resolving %d health record resource(s)", len(categories))
        return "\n\n".join(
            self._summaries.get(str(category)) or f"No data available for {category}"
            for category in categories
        )
