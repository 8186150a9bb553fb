"""
Stock Count Models.

Models for site stock counts:
- Stock counts (one physical count of a site against expected closing quantities)
- Count items (one row per inventory item included in the count)
"""
from datetime import datetime, date, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, List
from uuid import UUID, uuid4

from sqlalchemy import (
    String, Integer, DateTime, ForeignKey, Index, Text, Boolean,
    Numeric, Date
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.db_types import UUIDType, JSONType


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# ENUMS
# ============================================================================

class StockCountFrequency(str, Enum):
    """How often the count recurs."""
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    ADHOC = "adhoc"


class StockCountStatus(str, Enum):
    """Lifecycle status of a stock count."""
    DRAFT = "draft"
    ACTIVE = "active"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    PENDING_REVIEW = "pending_review"            # Submitted, no approver determined
    READY_FOR_APPROVAL = "ready_for_approval"    # Submitted with an assigned approver
    APPROVED = "approved"
    REJECTED = "rejected"
    FINALIZED = "finalized"
    LOCKED = "locked"


class CountItemStatus(str, Enum):
    """Status of a single count line."""
    PENDING = "pending"
    COUNTED = "counted"
    SKIPPED = "skipped"


# ============================================================================
# MODELS
# ============================================================================

class StockCount(Base):
    """
    A stock count for one site.

    Items are created together with the count and are never removed while
    the count is open.
    """
    __tablename__ = "stock_counts"
    __table_args__ = (
        Index("idx_sc_company_site", "company_id", "site_id"),
        Index("idx_sc_status", "company_id", "status"),
    )

    id: Mapped[UUID] = mapped_column(
        UUIDType(as_uuid=True), primary_key=True, default=uuid4
    )
    company_id: Mapped[UUID] = mapped_column(
        UUIDType(as_uuid=True), ForeignKey("companies.id"), nullable=False
    )
    site_id: Mapped[Optional[UUID]] = mapped_column(
        UUIDType(as_uuid=True), ForeignKey("sites.id")
    )

    # Count Details
    name: Mapped[Optional[str]] = mapped_column(String(200))
    count_date: Mapped[date] = mapped_column(Date, nullable=False)
    frequency: Mapped[str] = mapped_column(
        String(20), nullable=False, default=StockCountFrequency.MONTHLY.value
    )
    status: Mapped[str] = mapped_column(
        String(30), nullable=False, default=StockCountStatus.DRAFT.value
    )
    libraries_included: Mapped[Optional[List]] = mapped_column(JSONType)  # Ordered library tags

    # Totals
    total_items: Mapped[int] = mapped_column(Integer, default=0)
    items_counted: Mapped[int] = mapped_column(Integer, default=0)
    variance_count: Mapped[int] = mapped_column(Integer, default=0)
    total_variance_value: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), default=Decimal("0")
    )

    # Completion
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    completed_by: Mapped[Optional[UUID]] = mapped_column(UUIDType(as_uuid=True))

    # Review
    ready_for_approval_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    ready_for_approval_by: Mapped[Optional[UUID]] = mapped_column(UUIDType(as_uuid=True))
    approver_id: Mapped[Optional[UUID]] = mapped_column(
        UUIDType(as_uuid=True), ForeignKey("profiles.id", ondelete="SET NULL")
    )
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    approved_by: Mapped[Optional[UUID]] = mapped_column(UUIDType(as_uuid=True))
    rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    rejected_by: Mapped[Optional[UUID]] = mapped_column(UUIDType(as_uuid=True))
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text)

    notes: Mapped[Optional[str]] = mapped_column(Text)

    # Audit
    created_by: Mapped[Optional[UUID]] = mapped_column(UUIDType(as_uuid=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    # Relationships
    items: Mapped[List["StockCountItem"]] = relationship(
        back_populates="stock_count", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<StockCount(name='{self.name}', status='{self.status}')>"


class StockCountItem(Base):
    """
    One inventory item inside a stock count.

    Variance columns are derived from counted_quantity, theoretical_closing
    and unit_cost and are only written by the batch save path.
    """
    __tablename__ = "stock_count_items"
    __table_args__ = (
        Index("idx_sci_count", "stock_count_id"),
        Index("idx_sci_count_library", "stock_count_id", "library_type"),
    )

    id: Mapped[UUID] = mapped_column(
        UUIDType(as_uuid=True), primary_key=True, default=uuid4
    )
    stock_count_id: Mapped[UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("stock_counts.id", ondelete="CASCADE"),
        nullable=False
    )

    # Item Details
    library_type: Mapped[Optional[str]] = mapped_column(String(50))
    item_name: Mapped[str] = mapped_column(String(255), nullable=False)
    unit_of_measurement: Mapped[Optional[str]] = mapped_column(String(30))

    # Quantities
    theoretical_closing: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 3))
    unit_cost: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 4))
    counted_quantity: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 3))

    # Variance
    variance_quantity: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 3))
    variance_percentage: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 4))
    variance_value: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 2))

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=CountItemStatus.PENDING.value
    )
    counted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    # Legacy flag read by the hosted schema trigger. Absent on some hosted schemas; never loaded by default
    is_counted: Mapped[bool] = mapped_column(Boolean, default=False, deferred=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    # Relationships
    stock_count: Mapped["StockCount"] = relationship(back_populates="items")

    def __repr__(self) -> str:
        return f"<StockCountItem(name='{self.item_name}', status='{self.status}')>"
