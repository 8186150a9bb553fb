"""
Approval Workflow Model.

Company-configured approval workflows. A workflow has a type (stock counts,
rotas, payroll, ...) and an ordered list of steps, each naming the role that
approves at that step. Stock counts only read the first step of the active
`stock_count` workflow to decide which role should review a submitted count.
"""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Integer, Text
from sqlalchemy import UniqueConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.db_types import UUIDType


class WorkflowType(str, Enum):
    """Types of entities an approval workflow can govern."""
    STOCK_COUNT = "stock_count"
    ROTA = "rota"
    PAYROLL = "payroll"
    LEAVE = "leave"
    EXPENSES = "expenses"
    TIME_OFF = "time_off"
    OTHER = "other"


class ApprovalWorkflow(Base):
    """
    Approval workflow configured by a company.

    Only one workflow per (company, type) is expected to be active.
    """
    __tablename__ = "approval_workflows"
    __table_args__ = (
        Index("ix_workflow_company_type", "company_id", "type", "is_active"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    company_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    type: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        comment="stock_count, rota, payroll, leave, expenses, time_off, other"
    )
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    steps: Mapped[List["ApprovalStep"]] = relationship(
        "ApprovalStep",
        back_populates="workflow",
        order_by="ApprovalStep.step_order",
        cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<ApprovalWorkflow(name='{self.name}', type='{self.type}')>"


class ApprovalStep(Base):
    """One step of an approval workflow."""
    __tablename__ = "approval_steps"
    __table_args__ = (
        UniqueConstraint("workflow_id", "step_order", name="uq_approval_step_order"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    workflow_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("approval_workflows.id", ondelete="CASCADE"),
        nullable=False
    )
    step_order: Mapped[int] = mapped_column(Integer, nullable=False)
    step_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    approver_role: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="Role label, e.g. Regional Manager, Area Manager, Finance Manager"
    )
    is_required: Mapped[bool] = mapped_column(Boolean, default=True)

    workflow: Mapped["ApprovalWorkflow"] = relationship(
        "ApprovalWorkflow",
        back_populates="steps"
    )

    def __repr__(self) -> str:
        return f"<ApprovalStep(order={self.step_order}, role='{self.approver_role}')>"
