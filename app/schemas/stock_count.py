"""
Stock Count Schemas.

Pydantic schemas for stock count entry, batch saving, the variance report and
the review lifecycle.
"""
from datetime import datetime, date
from decimal import Decimal
from typing import Optional, List, Dict, Literal
from uuid import UUID

from pydantic import BaseModel, Field, ConfigDict

from app.models.stock_count import CountItemStatus, StockCountStatus, StockCountFrequency
from app.schemas.approval import ApproverResolution


# ============================================================================
# COUNT ITEM SCHEMAS
# ============================================================================

class CountItem(BaseModel):
    """One line of a stock count as held by a count session."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    stock_count_id: Optional[UUID] = None
    library_type: Optional[str] = None
    item_name: str
    unit_of_measurement: Optional[str] = None

    theoretical_closing: Optional[Decimal] = None
    unit_cost: Optional[Decimal] = None
    counted_quantity: Optional[Decimal] = None

    variance_quantity: Optional[Decimal] = None
    variance_percentage: Optional[Decimal] = None
    variance_value: Optional[Decimal] = None

    status: CountItemStatus = CountItemStatus.PENDING
    counted_at: Optional[datetime] = None


class CountItemWrite(BaseModel):
    """A single item write produced by a commit and handed to the sink."""
    item_id: UUID
    counted_quantity: Decimal
    variance_quantity: Decimal
    variance_percentage: Decimal
    variance_value: Decimal
    status: CountItemStatus = CountItemStatus.COUNTED
    counted_at: datetime
    variance_mismatch: List[str] = Field(default_factory=list)  # Fields the sink recomputed differently


class FailedItem(BaseModel):
    """An item whose write failed; its pending value is kept."""
    item_id: UUID
    item_name: str
    error: str


class CommitResult(BaseModel):
    """Outcome of committing pending values."""
    saved_ids: List[UUID] = Field(default_factory=list)
    failed: List[FailedItem] = Field(default_factory=list)
    skipped_ids: List[UUID] = Field(default_factory=list)
    superseded_ids: List[UUID] = Field(default_factory=list)  # Saved, but edited again meanwhile
    variance_mismatch_ids: List[UUID] = Field(default_factory=list)  # Saved with server-recomputed variance

    @property
    def saved_count(self) -> int:
        return len(self.saved_ids)


class BatchSaveResult(BaseModel):
    """Response of a section, whole-count or single-item save."""
    saved_count: int = 0
    saved_ids: List[UUID] = Field(default_factory=list)
    failed: List[FailedItem] = Field(default_factory=list)
    skipped_ids: List[UUID] = Field(default_factory=list)
    superseded_ids: List[UUID] = Field(default_factory=list)
    variance_mismatch_ids: List[UUID] = Field(default_factory=list)
    next_item_id: Optional[UUID] = None
    message: Optional[str] = None


class SaveCountsRequest(BaseModel):
    """Raw values entered by the counter, keyed by item id."""
    values: Dict[UUID, str] = Field(default_factory=dict)
    library: Optional[str] = Field(None, description="Save only this library section")
    advance: bool = Field(False, description="Report the first uncounted item of the section")


# ============================================================================
# STOCK COUNT SCHEMAS
# ============================================================================

class StockCountResponse(BaseModel):
    """Schema for stock count response."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    company_id: UUID
    site_id: Optional[UUID]
    name: Optional[str]
    count_date: date
    frequency: StockCountFrequency
    status: StockCountStatus
    libraries_included: Optional[List[str]] = None

    # Totals
    total_items: int
    items_counted: int
    variance_count: int
    total_variance_value: Decimal

    # Lifecycle
    completed_at: Optional[datetime] = None
    completed_by: Optional[UUID] = None
    ready_for_approval_at: Optional[datetime] = None
    ready_for_approval_by: Optional[UUID] = None
    approver_id: Optional[UUID] = None
    approved_at: Optional[datetime] = None
    approved_by: Optional[UUID] = None
    rejected_at: Optional[datetime] = None
    rejected_by: Optional[UUID] = None
    rejection_reason: Optional[str] = None

    created_at: datetime
    updated_at: datetime


class StockCountDetailResponse(StockCountResponse):
    """Stock count with its items in canonical order."""
    items: List[CountItem] = Field(default_factory=list)


class ReadyForApprovalRequest(BaseModel):
    """Submit a count for review, optionally naming the approver."""
    approver_id: Optional[UUID] = None


class ReadyForApprovalResult(BaseModel):
    """Submitted count plus how its approver was determined."""
    count: StockCountResponse
    resolution: Optional[ApproverResolution] = None
    message: Optional[str] = None


class RejectRequest(BaseModel):
    rejection_reason: str = Field(..., min_length=1, max_length=2000)


# ============================================================================
# VARIANCE REPORT SCHEMAS
# ============================================================================

VarianceFilter = Literal["all", "positive", "negative", "zero"]
VarianceSortField = Literal["name", "variance_qty", "variance_pct", "variance_value"]
SortDirection = Literal["asc", "desc"]


class VarianceReportRow(CountItem):
    """Count item with the display name of its library section."""
    section: str


class VarianceReportTotals(BaseModel):
    total_items: int = 0
    counted_items: int = 0
    items_with_variance: int = 0
    total_variance_value: Decimal = Decimal("0")  # Sum of absolute variance values


class VarianceReport(BaseModel):
    """Variance report for a stock count."""
    count_id: UUID
    rows: List[VarianceReportRow] = Field(default_factory=list)
    totals: VarianceReportTotals = Field(default_factory=VarianceReportTotals)
