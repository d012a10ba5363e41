"""Pydantic schemas for API request/response models."""

from datetime import date, datetime
from typing import Any
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class ErrorResponse(BaseModel):
    """Error body returned for every typed failure."""

    detail: str
    code: str
    details: dict[str, Any] | None = None


# ============================================================================
# Pay Run schemas
# ============================================================================


class PayRunResponse(BaseModel):
    """Schema for pay run response."""

    model_config = ConfigDict(from_attributes=True)

    pay_run_id: UUID
    firm_id: UUID
    client_id: UUID
    period_start: date
    period_end: date
    period_label: str
    revision: int
    status: str
    current_run_id: UUID | None = None
    submitted_by_user_id: UUID | None = None
    submitted_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class ReviewGateResponse(BaseModel):
    """Outstanding conditions blocking review."""

    passed: bool
    messages: list[str]
    missing_sources: list[str]
    unmapped_sources: list[str]
    open_critical_count: int
    open_exception_count: int


class PayRunDetailResponse(BaseModel):
    """Pay run with its derived display status and review gate."""

    pay_run: PayRunResponse
    display_status: str
    next_statuses: list[str]
    review_gate: ReviewGateResponse


class ApprovalRequest(BaseModel):
    """Schema for approving a pay run."""

    comment: str | None = None


class RejectRequest(BaseModel):
    """Schema for rejecting a pay run."""

    comment: str | None = None


class ApprovalResponse(BaseModel):
    """Schema for a review decision."""

    model_config = ConfigDict(from_attributes=True)

    approval_id: UUID
    pay_run_id: UUID
    reviewer_user_id: UUID
    status: str
    comment: str | None = None
    created_at: datetime


# ============================================================================
# Reconciliation schemas
# ============================================================================


class CheckResultResponse(BaseModel):
    """Schema for one persisted check result."""

    model_config = ConfigDict(from_attributes=True)

    check_result_id: UUID
    sequence: int
    check_type: str
    check_version: str
    status: str
    severity: str
    summary: str
    details: dict[str, Any]
    evidence: list[dict[str, Any]]
    result_hash: str


class ExceptionResponse(BaseModel):
    """Schema for an exception raised by a check."""

    model_config = ConfigDict(from_attributes=True)

    exception_id: UUID
    pay_run_id: UUID
    reconciliation_run_id: UUID
    check_result_id: UUID
    category: str
    severity: str
    status: str
    title: str
    description: str | None = None
    evidence: list[dict[str, Any]]
    resolution_note: str | None = None
    resolved_by_user_id: UUID | None = None
    resolved_at: datetime | None = None
    assigned_to_user_id: UUID | None = None
    superseded_at: datetime | None = None


class ReconciliationResponse(BaseModel):
    """Schema for a completed reconciliation run."""

    reconciliation_run_id: UUID
    pay_run_id: UUID
    run_number: int
    bundle_id: str
    bundle_version: str
    status: str
    checks: list[CheckResultResponse]
    exceptions: list[ExceptionResponse]


class NoteRequest(BaseModel):
    """Schema for resolving, dismissing or overriding an exception."""

    note: str


class AssignRequest(BaseModel):
    """Schema for assigning an exception; null unassigns."""

    assignee_user_id: UUID | None = None


# ============================================================================
# Expected variance schemas
# ============================================================================


class ExpectedVarianceCreate(BaseModel):
    """Schema for declaring an expected variance."""

    variance_type: str
    check_type: str | None = None
    condition: dict[str, Any]
    effect: dict[str, Any]


class ExpectedVarianceResponse(BaseModel):
    """Schema for expected variance response."""

    model_config = ConfigDict(from_attributes=True)

    expected_variance_id: UUID
    client_id: UUID
    check_type: str | None = None
    variance_type: str
    condition: dict[str, Any]
    effect: dict[str, Any]
    active: bool
    archived_at: datetime | None = None
    created_at: datetime


# ============================================================================
# Pack schemas
# ============================================================================


class PackResponse(BaseModel):
    """Schema for pack response."""

    model_config = ConfigDict(from_attributes=True)

    pack_id: UUID
    pay_run_id: UUID
    reconciliation_run_id: UUID
    pack_version: int
    storage_key: str
    pack_metadata: dict[str, Any] = Field(
        validation_alias=AliasChoices("pack_metadata", "metadata"),
        serialization_alias="metadata",
    )
    generated_by_user_id: UUID | None = None
    locked_at: datetime | None = None
    locked_by_user_id: UUID | None = None
    created_at: datetime


class DownloadUrlResponse(BaseModel):
    """Schema for a signed pack download link."""

    pack_id: UUID
    url: str
