"""Tools offered to the model during chat turns."""

from .health_records import GET_RESOURCES_TOOL, HEALTH_ASSISTANT_PROMPT, HealthRecordToolExecutor

__all__ = ["GET_RESOURCES_TOOL", "HEALTH_ASSISTANT_PROMPT", "HealthRecordToolExecutor"]
