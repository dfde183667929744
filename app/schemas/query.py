"""Schemas for the answer endpoint."""

import json

from pydantic import BaseModel, ConfigDict, Field

from app.schemas.answer import OSName


class AnswerRequest(BaseModel):
    """Request body for POST /answer. Text fields are stripped before length checks."""

    model_config = ConfigDict(str_strip_whitespace=True)

    issue: str = Field(..., min_length=1, description="Description of the IT problem.")
    os: OSName = Field(..., description="Operating system: Windows, macOS, Android, iOS, ChromeOS or Linux.")
    device: str = Field(..., min_length=1, description="Device type, e.g. Desktop, Laptop, Phone.")

    def fingerprint(self) -> str:
        """Canonical cache key; field order is fixed so equal requests give equal keys."""
        return json.dumps(
            {"issue": self.issue, "os": self.os, "device": self.device},
            ensure_ascii=False,
            separators=(",", ":"),
        )


class ErrorResponse(BaseModel):
    """Error body for every non-2xx answer response."""

    error: str = Field(..., description="User-facing message; never contains internal details.")
    details: list[dict[str, str]] | None = Field(None, description="Offending fields (400 only).")
    retry_after: int | None = Field(None, description="Seconds to wait before retrying (429 only).")
