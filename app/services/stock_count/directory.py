"""
Organization directory and approval workflow configuration.

Read-only lookups used by approver resolution. Backends return plain
pydantic records so resolution never touches ORM objects.
"""
from abc import ABC, abstractmethod
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.approval import ApprovalStep, ApprovalWorkflow, WorkflowType
from app.models.organization import Area, Profile, Region, Site
from app.schemas.approval import ApproverProfile, OrgArea, OrgRegion, OrgSite


class OrganizationDirectory(ABC):
    """Abstract lookup of sites, areas, regions and profiles."""

    @abstractmethod
    async def get_site(self, site_id: UUID) -> Optional[OrgSite]:
        pass

    @abstractmethod
    async def get_area(self, area_id: UUID) -> Optional[OrgArea]:
        pass

    @abstractmethod
    async def get_region(self, region_id: UUID) -> Optional[OrgRegion]:
        pass

    @abstractmethod
    async def get_profile(self, profile_id: UUID) -> Optional[ApproverProfile]:
        """Active profile by id, or None."""
        pass

    @abstractmethod
    async def list_company_profiles(self, company_id: UUID) -> List[ApproverProfile]:
        pass

    @abstractmethod
    async def list_site_profiles(self, company_id: UUID, site_id: UUID) -> List[ApproverProfile]:
        pass


class WorkflowConfigSource(ABC):
    """Abstract source of company approval workflow configuration."""

    @abstractmethod
    async def get_first_step_role(
        self,
        company_id: UUID,
        workflow_type: str = WorkflowType.STOCK_COUNT.value,
    ) -> Optional[str]:
        """Approver role of the first step of the active workflow, if any."""
        pass


class SqlOrganizationDirectory(OrganizationDirectory):
    """Directory backed by the companies/regions/areas/sites/profiles tables."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_site(self, site_id: UUID) -> Optional[OrgSite]:
        site = await self.db.get(Site, site_id)
        return OrgSite.model_validate(site) if site else None

    async def get_area(self, area_id: UUID) -> Optional[OrgArea]:
        area = await self.db.get(Area, area_id)
        if area is None:
            return None
        return OrgArea(
            id=area.id,
            company_id=area.company_id,
            region_id=area.region_id,
            name=area.name,
            manager_id=area.effective_manager_id,
        )

    async def get_region(self, region_id: UUID) -> Optional[OrgRegion]:
        region = await self.db.get(Region, region_id)
        if region is None:
            return None
        return OrgRegion(
            id=region.id,
            company_id=region.company_id,
            name=region.name,
            manager_id=region.effective_manager_id,
        )

    async def get_profile(self, profile_id: UUID) -> Optional[ApproverProfile]:
        result = await self.db.execute(
            select(Profile).where(
                Profile.id == profile_id,
                Profile.archived_at.is_(None),
            )
        )
        profile = result.scalar_one_or_none()
        return ApproverProfile.model_validate(profile) if profile else None

    async def list_company_profiles(self, company_id: UUID) -> List[ApproverProfile]:
        result = await self.db.execute(
            select(Profile)
            .where(
                Profile.company_id == company_id,
                Profile.archived_at.is_(None),
            )
            .order_by(Profile.full_name, Profile.id)
        )
        return [ApproverProfile.model_validate(p) for p in result.scalars().all()]

    async def list_site_profiles(self, company_id: UUID, site_id: UUID) -> List[ApproverProfile]:
        result = await self.db.execute(
            select(Profile)
            .where(
                Profile.company_id == company_id,
                Profile.site_id == site_id,
                Profile.archived_at.is_(None),
            )
            .order_by(Profile.full_name, Profile.id)
        )
        return [ApproverProfile.model_validate(p) for p in result.scalars().all()]


class SqlWorkflowConfig(WorkflowConfigSource):
    """Workflow configuration backed by approval_workflows/approval_steps."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_first_step_role(
        self,
        company_id: UUID,
        workflow_type: str = WorkflowType.STOCK_COUNT.value,
    ) -> Optional[str]:
        result = await self.db.execute(
            select(ApprovalStep.approver_role)
            .join(ApprovalWorkflow, ApprovalStep.workflow_id == ApprovalWorkflow.id)
            .where(
                ApprovalWorkflow.company_id == company_id,
                ApprovalWorkflow.type == workflow_type,
                ApprovalWorkflow.is_active == True,  # noqa: E712
            )
            .order_by(ApprovalWorkflow.created_at, ApprovalStep.step_order)
            .limit(1)
        )
        role = result.scalar_one_or_none()
        if role is None or not role.strip():
            return None
        return role.strip()
