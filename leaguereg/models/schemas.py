"""
Pydantic models for API request/response validation.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, ConfigDict, model_validator


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    message: str


# ---------------------------------------------------------------------------
# Pre-submit (team selection reconciliation)
# ---------------------------------------------------------------------------


class TeamSelection(BaseModel):
    """One player -> team choice with the player's form values."""

    player_id: str = Field(min_length=1)
    team_id: int
    form_values: Dict[str, Any] = Field(default_factory=dict)


class PreSubmitRequest(BaseModel):
    """Batch of team selections for one family."""

    team_selections: List[TeamSelection] = Field(default_factory=list)
    family_user_id: Optional[str] = None  # Defaults to the caller


class TeamResult(BaseModel):
    """Outcome of one player/team selection."""

    player_id: str
    team_id: int
    is_full: bool = False
    team_name: str = ""
    message: str
    registration_created: bool = False


class PreSubmitValidationError(BaseModel):
    """Field-level form validation failure."""

    player_id: str
    field: str
    message: str


class PreSubmitResponse(BaseModel):
    """Result of reconciling a batch of team selections."""

    team_results: List[TeamResult] = Field(default_factory=list)
    next_tab: str
    validation_errors: Optional[List[PreSubmitValidationError]] = None
    insurance: Optional[Dict[str, Any]] = None

    @property
    def has_full_teams(self) -> bool:
        return any(r.is_full for r in self.team_results)


# ---------------------------------------------------------------------------
# Fees
# ---------------------------------------------------------------------------


class TeamFeeResponse(BaseModel):
    """Resolved per-registrant fee for a team with a processing preview."""

    team_id: int
    fee_base: Decimal
    fee_processing: Decimal
    fee_total: Decimal
    deposit: Decimal


class RegistrationFinancials(BaseModel):
    """Money fields of a registration."""

    model_config = ConfigDict(from_attributes=True)

    fee_base: Decimal
    fee_processing: Decimal
    fee_discount: Decimal
    fee_donation: Decimal
    fee_late_fee: Decimal
    fee_total: Decimal
    paid_total: Decimal
    owed_total: Decimal


# ---------------------------------------------------------------------------
# Discount codes
# ---------------------------------------------------------------------------


class DiscountCodeCreate(BaseModel):
    """Request to create a discount code for a job."""

    code_name: str = Field(min_length=1, max_length=50)
    amount: Decimal = Field(gt=0)
    as_percent: bool = False
    start_date: datetime
    end_date: datetime

    @model_validator(mode="after")
    def check_window(self):
        if self.end_date <= self.start_date:
            raise ValueError("End date must be after start date.")
        if self.as_percent and self.amount > 100:
            raise ValueError("Percent discount cannot exceed 100.")
        return self


class DiscountCodeResponse(BaseModel):
    """Discount code as listed for a job."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    job_id: int
    code_name: str
    as_percent: bool
    code_amount: Decimal
    active: bool
    code_start_date: datetime
    code_end_date: datetime
    usage_count: int = 0
    is_expired: bool = False


class DiscountCodeBulkCreate(BaseModel):
    """Request to generate a numbered run of codes (prefix + zero-padded number + suffix)."""

    prefix: str = Field(default="", max_length=40)
    suffix: str = Field(default="", max_length=40)
    start_number: int = Field(default=1, ge=0)
    count: int = Field(ge=1, le=500)
    amount: Decimal = Field(gt=0)
    as_percent: bool = False
    start_date: datetime
    end_date: datetime

    @model_validator(mode="after")
    def check_window(self):
        if self.end_date <= self.start_date:
            raise ValueError("End date must be after start date.")
        return self


class DiscountCodeUpdate(BaseModel):
    """New terms for an existing code; the name cannot change."""

    amount: Decimal = Field(gt=0)
    as_percent: bool = False
    start_date: datetime
    end_date: datetime
    active: bool = True

    @model_validator(mode="after")
    def check_window(self):
        if self.end_date <= self.start_date:
            raise ValueError("End date must be after start date.")
        return self


class DiscountCodeBatchStatus(BaseModel):
    """Activate or deactivate several codes at once."""

    code_ids: List[int] = Field(min_length=1)
    active: bool


class BatchStatusResponse(BaseModel):
    updated_count: int


class CodeExistsResponse(BaseModel):
    exists: bool


class ApplyDiscountRequest(BaseModel):
    """Apply a discount code to some of the family's players."""

    code: str = Field(min_length=1)
    player_ids: List[str] = Field(min_length=1)
    family_user_id: Optional[str] = None


class PlayerDiscountResult(BaseModel):
    """Per-player outcome of a discount application."""

    player_id: str
    success: bool
    message: str
    discount_amount: Decimal = Decimal("0.00")


class ApplyDiscountResponse(BaseModel):
    """Result of applying a discount code."""

    success: bool
    message: str
    total_discount: Decimal = Decimal("0.00")
    success_count: int = 0
    failure_count: int = 0
    results: List[PlayerDiscountResult] = Field(default_factory=list)
    updated_financials: Dict[str, RegistrationFinancials] = Field(default_factory=dict)
