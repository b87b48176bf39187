"""
Pydantic request/response schemas for the Sanctions Watchlist API

Field names follow the Python attribute names; the camelCase names used
by list content are accepted as aliases on input.
"""

import re
from typing import List, Optional, Dict, Any

from pydantic import BaseModel, Field, field_validator


class ScreeningRequest(BaseModel):
    """Structured query for a single person.

    Name rules (required, length, blocked characters) are enforced by
    the validator so that API and library callers share one set of checks.
    """
    first_name: Optional[str] = Field(default=None, alias="firstName", max_length=200)
    last_name: Optional[str] = Field(default=None, alias="lastName", max_length=200)
    name: Optional[str] = Field(
        default=None,
        max_length=200,
        description="Full name, used instead of first_name/last_name"
    )
    dob: Optional[str] = Field(
        default=None,
        description="Date of birth in ISO 8601 format (YYYY-MM-DD)"
    )
    place_of_birth: Optional[str] = Field(default=None, alias="placeOfBirth")
    residence: Optional[str] = Field(default=None, description="Country of residence")
    nationality: Optional[str] = Field(default=None)
    citizen: Optional[str] = Field(default=None, description="Country of citizenship")
    postal_code: Optional[str] = Field(default=None, alias="postalCode", max_length=50)
    national_id: Optional[str] = Field(default=None, alias="nationalId", max_length=50)
    passport_no: Optional[str] = Field(default=None, alias="passportNo", max_length=50)

    model_config = {"populate_by_name": True}

    @field_validator('dob')
    @classmethod
    def validate_dob_format(cls, v: Optional[str]) -> Optional[str]:
        """Validate DOB is in ISO 8601 format."""
        if v is None:
            return v
        if not re.match(r'^\d{4}-\d{2}-\d{2}$', v):
            raise ValueError("DOB must be in ISO 8601 format: YYYY-MM-DD")
        return v

    def to_query(self) -> Dict[str, Any]:
        """Attributes actually supplied, keyed by Python name."""
        return self.model_dump(exclude_none=True)


class MatchResponse(BaseModel):
    """Outcome of a screening query."""
    matched: bool = Field(..., description="Whether any entry matched")
    list: Optional[str] = Field(default=None, description="Source list of the matching entry")
    matched_args: Dict[str, Any] = Field(
        default_factory=dict,
        alias="matchedArgs",
        description="Matched name alias plus the corroborating attributes"
    )
    comment: Optional[str] = Field(default=None, description="Raw date-of-birth text of the entry")

    model_config = {"populate_by_name": True}


class SanctionedResponse(BaseModel):
    """Boolean screening answer."""
    sanctioned: bool


class SourceOutcome(BaseModel):
    """Reconciliation outcome of one source."""
    source: str
    status: str = Field(..., description="updated, unchanged, fetch_failed, store_failed")
    message: str = ""


class RefreshResponse(BaseModel):
    """Response schema for the refresh endpoint."""
    started_at: str
    success: bool = Field(..., description="True if every source was reconciled")
    outcomes: List[SourceOutcome] = Field(default_factory=list)
    missing_sources: List[str] = Field(
        default_factory=list,
        description="Configured sources the fetcher did not return"
    )
    processing_time_ms: int = Field(..., ge=0)
    entries_loaded: int = Field(default=0, ge=0)


class SourceHealth(BaseModel):
    """Sync state of one source."""
    published: int
    verified: int
    error: str = ""
    entries: int = Field(..., ge=0)
    stale: bool = False


class HealthResponse(BaseModel):
    """Response schema for health check endpoint."""
    status: str = Field(default="healthy", description="healthy, degraded or error")
    store_available: bool = Field(default=True, description="Store endpoints answered a ping")
    entries_loaded: int = Field(default=0, ge=0, description="Entries in the loaded snapshot")
    sources: Dict[str, SourceHealth] = Field(default_factory=dict)
    uptime_seconds: Optional[int] = Field(default=None, description="Server uptime in seconds")
    error_message: Optional[str] = None


class ErrorDetail(BaseModel):
    """Detailed error information."""
    code: str = Field(..., description="Error code for programmatic handling")
    message: str = Field(..., description="Human-readable error message")
    field: Optional[str] = Field(default=None, description="Field that caused error")
    suggestion: Optional[str] = Field(default=None, description="How to fix the error")
    timestamp: str = Field(..., description="Error timestamp (ISO 8601)")


class ErrorResponse(BaseModel):
    """Standardized error response format."""
    error: ErrorDetail
