"""
Pydantic Schemas - Data Validation Models

Defines the Pydantic schemas shared across the verifier:
- Visit records extracted from SIMRS
- Verification jobs persisted in SQLite
- BPJS API response envelope

Usage:
    from utils.schemas import Visit

    visit = Visit(visit_number="2025/01/02/000123", member_id="0001234567890",
                  doctor_code="12345", clinic_name="Poli Anak")
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator


class JobStatus(str, Enum):
    """Lifecycle states of a verification job."""

    PENDING = "pending"
    DONE = "done"
    FAILED = "failed"


class Visit(BaseModel):
    """One outpatient encounter eligible for insurance verification."""

    visit_number: str = Field(..., min_length=1, description="SIMRS visit number (no_rawat)")
    member_id: str = Field(..., min_length=1, description="BPJS member card number")
    doctor_code: str = Field(..., description="BPJS doctor code (DPJP), integer-coercible")
    clinic_name: str = Field(default="", description="Clinic (poli) name")

    @field_validator("visit_number", "member_id", "doctor_code", "clinic_name", mode="before")
    @classmethod
    def coerce_to_text(cls, v: Any) -> Any:
        """SIMRS columns may come back as ints or bytes; store everything as text."""
        if isinstance(v, bytes):
            return v.decode("utf-8")
        if isinstance(v, int):
            return str(v)
        return v


class Job(BaseModel):
    """A verification job row from the ``jobs`` table."""

    id: int
    visit_number: str
    member_id: str
    doctor_code: str
    clinic_name: Optional[str] = None
    status: JobStatus = JobStatus.PENDING
    attempt: int = Field(default=0, ge=0)
    response_data: Optional[str] = None
    created_at: str
    updated_at: str


class BpjsMetaData(BaseModel):
    code: Optional[int | str] = None
    message: Optional[str] = None


class BpjsApiResponse(BaseModel):
    """Envelope returned by the BPJS validate endpoint.

    ``response`` holds the base64 AES ciphertext of the compressed payload.
    """

    response: Optional[str] = None
    metaData: Optional[BpjsMetaData] = None
