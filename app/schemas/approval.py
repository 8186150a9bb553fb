"""
Approver Schemas.

Organization records read by approver resolution, and the resolution outcome.
Approvers are computed on demand and never persisted.
"""
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict


NO_APPROVER_MESSAGE = "No approver could be determined - assign manually."


class ResolutionStatus(str, Enum):
    RESOLVED = "resolved"
    UNRESOLVED = "unresolved"
    FAILED = "failed"


class ResolutionTier(str, Enum):
    """Which step of the resolution chain produced the approver."""
    CONFIGURED_ROLE = "configured_role"    # Company profile holding the workflow role
    REGION_DIRECT = "region_direct"        # Site -> region
    REGION_VIA_AREA = "region_via_area"    # Site -> area -> region
    AREA = "area"
    SITE = "site"
    COMPANY = "company"
    SELF_APPROVAL = "self_approval"


# ============== Organization Records ==============

class OrgRegion(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    company_id: UUID
    name: str
    manager_id: Optional[UUID] = None


class OrgArea(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    company_id: UUID
    region_id: Optional[UUID] = None
    name: str
    manager_id: Optional[UUID] = None


class OrgSite(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    company_id: UUID
    name: str
    area_id: Optional[UUID] = None
    region_id: Optional[UUID] = None


class ApproverProfile(BaseModel):
    """Profile fields needed to offer someone as an approver."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    company_id: Optional[UUID] = None
    site_id: Optional[UUID] = None
    full_name: Optional[str] = None
    email: Optional[str] = None
    app_role: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.full_name or self.email or "Unknown"


# ============== Resolution ==============

class Approver(BaseModel):
    id: UUID
    name: str
    role: str
    email: Optional[str] = None
    tier: Optional[ResolutionTier] = None


class ApproverResolution(BaseModel):
    """Outcome of resolving the approver of a stock count."""
    status: ResolutionStatus
    configured_role: Optional[str] = None
    approver: Optional[Approver] = None
    tier: Optional[ResolutionTier] = None
    reason: Optional[str] = None

    @property
    def is_resolved(self) -> bool:
        return self.status == ResolutionStatus.RESOLVED and self.approver is not None

    @property
    def message(self) -> Optional[str]:
        if self.is_resolved:
            return None
        return NO_APPROVER_MESSAGE
