"""Models for AI meal descriptions."""

from dataclasses import dataclass

from pydantic import BaseModel, field_validator


class DescriptionPayload(BaseModel):
    """Structured output returned by a description model."""

    description: str

    @field_validator("description")
    @classmethod
    def _strip_and_require(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("description must not be empty")
        return cleaned


@dataclass
class AnalysisRunReport:
    """Outcome of one pass over the analysis queue."""

    completed: int = 0
    failed: int = 0
    error: str | None = None
