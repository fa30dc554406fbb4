from __future__ import annotations

from ragchat.ai.tools.health_records import GET_RESOURCES_TOOL, RESOURCE_SUMMARIES, HealthRecordToolExecutor


def test_tool_schema_enumerates_every_resource():
    parameters = GET_RESOURCES_TOOL["function"]["parameters"]

    assert GET_RESOURCES_TOOL["function"]["name"] == "get_resources"
    assert parameters["required"] == ["resourceCategories"]
    assert parameters["properties"]["resourceCategories"]["items"]["enum"] == list(RESOURCE_SUMMARIES)


def test_known_resources_are_joined_in_request_order():
    executor = HealthRecordToolExecutor()

    result = executor.execute(
        "get_resources",
        {"resourceCategories": ["Observation-TSH-09-04-2014", "Procedure-Appendectomy-05-25-2014"]},
    )

    assert result.split("\n\n", 1)[0] == "This is the summary of the requested Observation-TSH-09-04-2014:"
    assert result.index("TSH Lab Result") < result.index("Appendectomy Procedure")


def test_unknown_resources_are_reported():
    executor = HealthRecordToolExecutor({"A": "summary of A"})

    assert executor.execute("get_resources", {"resourceCategories": ["A", "B"]}) == (
        "summary of A\n\nNo data available for B"
    )


def test_missing_categories_and_unknown_tools():
    executor = HealthRecordToolExecutor()

    assert executor.execute("get_resources", {}) == "No resources requested."
    assert executor.execute("get_resources", {"resourceCategories": "A"}) == "No resources requested."
    assert executor.execute("delete_records", {}) == "Unknown tool"
    assert executor.tools == [GET_RESOURCES_TOOL]


def test_table_covers_every_patient_record():
    assert list(RESOURCE_SUMMARIES) == [
        "Procedure-Appendectomy-05-25-2014",
        "Observation-ThyroxineT4-09-04-2014",
        "Observation-TSH-09-04-2014",
        "Procedure-ACLrepair-06-09-2021",
        "Observation-Totalcholesterol-10-18-2023",
        "Observation-BloodGlucose-10-18-2023",
        "Procedure-UltrasoundAbdomen-10-18-2023",
        "Observation-CBCpanelBloodbyAutomatedcount-10-18-2023",
        "Observation-RespiratoryRate-10-18-2023",
        "Observation-BPbloodpressure-10-18-2023",
        "Observation-Weight-10-18-2023",
        "Observation-Height-10-18-2023",
        "Observation-LDLcholesterol-10-18-2023",
        "Observation-CholesterolHDL-02-18-2024",
        "Observation-Triglycerides-02-18-2024",
        "Observation-BMIbodymassindex-02-18-2024",
        "Observation-Temperature-02-18-2024",
        "Observation-Pulse-02-18-2024",
    ]
    assert RESOURCE_SUMMARIES["Observation-Totalcholesterol-10-18-2023"].endswith(
        "Total cholesterol level is 184 mg/dL, within the normal range of 120 to 220 mg/dL, as of October 18, 2023."
    )
    assert all(summary.startswith(f"This is the summary of the requested {key}:\n\n") for key, summary in RESOURCE_SUMMARIES.items())
