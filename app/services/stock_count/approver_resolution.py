"""
Approver Resolution Engine.

Determines who reviews a submitted stock count:

1. Role selection: first step of the company's active `stock_count`
   workflow, else the configured default (Regional Manager).
2. Hierarchy walk from the tier matching that role downwards:
   region (direct site link) -> region (via the site's area) -> area -> site.
   Roles outside the hierarchy (e.g. Finance Manager) first try a company
   profile holding exactly that role.
3. Company fallback: best ranked manager/admin/owner in the company.
4. Self-approval: the submitting user, when supplied.
5. Otherwise unresolved.

Resolution is read-only. Bad ids and directory failures come back as a
`failed` resolution instead of an exception.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID

from app.config import settings
from app.schemas.approval import (
    Approver, ApproverProfile, ApproverResolution, OrgSite,
    ResolutionStatus, ResolutionTier,
)
from app.services.stock_count.directory import OrganizationDirectory, WorkflowConfigSource

logger = logging.getLogger(__name__)


# ============================================================================
# ROLES
# ============================================================================

ADMIN_ROLES = {"owner", "admin", "administrator", "super admin", "superadmin", "super_admin"}
SITE_MANAGER_ROLES = {"manager", "site manager", "general manager", "gm"}

RANK_ADMIN = 0
RANK_REGIONAL = 1
RANK_AREA = 2
RANK_SITE = 3


class RoleScope(str, Enum):
    """Where in the hierarchy a configured approver role sits."""
    COMPANY = "company"
    REGION = "region"
    AREA = "area"
    SITE = "site"
    OTHER = "other"


def _clean_role(role: Optional[str]) -> str:
    return " ".join((role or "").replace("_", " ").split()).lower()


def role_rank(role: Optional[str]) -> Optional[int]:
    """
    Rank of a manager-equivalent role, lower is more senior.

    Owner/Admin 0, Regional Manager 1, Area Manager 2, other managers 3.
    Returns None for roles that cannot approve.
    """
    cleaned = _clean_role(role)
    if not cleaned:
        return None
    if cleaned in ADMIN_ROLES:
        return RANK_ADMIN
    if "regional" in cleaned:
        return RANK_REGIONAL
    if cleaned.startswith("area"):
        return RANK_AREA
    if "manager" in cleaned or cleaned in SITE_MANAGER_ROLES:
        return RANK_SITE
    return None


def role_scope(role: Optional[str]) -> RoleScope:
    cleaned = _clean_role(role)
    if cleaned in ADMIN_ROLES:
        return RoleScope.COMPANY
    if "regional" in cleaned:
        return RoleScope.REGION
    if cleaned.startswith("area"):
        return RoleScope.AREA
    if cleaned in SITE_MANAGER_ROLES:
        return RoleScope.SITE
    return RoleScope.OTHER


def coerce_uuid(value: Any) -> Optional[UUID]:
    """UUID from a UUID or its string form; None for anything else."""
    if isinstance(value, UUID):
        return value
    if isinstance(value, str):
        try:
            return UUID(value.strip())
        except ValueError:
            return None
    return None


def _approver(profile: ApproverProfile, role: str, tier: ResolutionTier) -> Approver:
    return Approver(
        id=profile.id,
        name=profile.display_name,
        role=role,
        email=profile.email,
        tier=tier,
    )


def _name_key(profile: ApproverProfile):
    return (profile.display_name.casefold(), str(profile.id))


# ============================================================================
# STRATEGIES
# ============================================================================

@dataclass
class ResolutionContext:
    company_id: UUID
    site_id: UUID
    configured_role: str
    site: Optional[OrgSite]
    directory: OrganizationDirectory


class ApproverStrategy(ABC):
    """One step of the resolution chain."""

    tier: ResolutionTier

    @abstractmethod
    async def try_resolve(self, context: ResolutionContext) -> Optional[Approver]:
        pass

    async def _manager_profile(
        self, context: ResolutionContext, manager_id: Optional[UUID]
    ) -> Optional[ApproverProfile]:
        if manager_id is None:
            return None
        profile = await context.directory.get_profile(manager_id)
        if profile is None or profile.company_id not in (None, context.company_id):
            return None
        return profile


class ConfiguredRoleStrategy(ApproverStrategy):
    """A company profile holding exactly the configured role."""

    tier = ResolutionTier.CONFIGURED_ROLE

    async def try_resolve(self, context):
        wanted = _clean_role(context.configured_role)
        profiles = await context.directory.list_company_profiles(context.company_id)
        holders = sorted(
            (p for p in profiles if _clean_role(p.app_role) == wanted),
            key=_name_key,
        )
        if not holders:
            return None
        profile = holders[0]
        return _approver(profile, profile.app_role or context.configured_role, self.tier)


class RegionDirectStrategy(ApproverStrategy):
    """Manager of the region the site links to directly."""

    tier = ResolutionTier.REGION_DIRECT

    async def try_resolve(self, context):
        if context.site is None or context.site.region_id is None:
            return None
        return await self._region_manager(context, context.site.region_id)

    async def _region_manager(self, context, region_id: UUID) -> Optional[Approver]:
        region = await context.directory.get_region(region_id)
        if region is None or region.company_id != context.company_id:
            return None
        profile = await self._manager_profile(context, region.manager_id)
        if profile is None:
            return None
        return _approver(profile, f"Regional Manager ({region.name})", self.tier)


class RegionViaAreaStrategy(RegionDirectStrategy):
    """Manager of the region of the site's area."""

    tier = ResolutionTier.REGION_VIA_AREA

    async def try_resolve(self, context):
        if context.site is None or context.site.area_id is None:
            return None
        area = await context.directory.get_area(context.site.area_id)
        if area is None or area.company_id != context.company_id or area.region_id is None:
            return None
        return await self._region_manager(context, area.region_id)


class AreaManagerStrategy(ApproverStrategy):
    tier = ResolutionTier.AREA

    async def try_resolve(self, context):
        if context.site is None or context.site.area_id is None:
            return None
        area = await context.directory.get_area(context.site.area_id)
        if area is None or area.company_id != context.company_id:
            return None
        profile = await self._manager_profile(context, area.manager_id)
        if profile is None:
            return None
        return _approver(profile, f"Area Manager ({area.name})", self.tier)


class SiteManagerStrategy(ApproverStrategy):
    """Manager-equivalent profile at the site, closest level first."""

    tier = ResolutionTier.SITE

    async def try_resolve(self, context):
        if context.site is None:
            return None
        profiles = await context.directory.list_site_profiles(context.company_id, context.site.id)
        ranked = [(role_rank(p.app_role), p) for p in profiles]
        ranked = [(rank, p) for rank, p in ranked if rank is not None]
        if not ranked:
            return None
        ranked.sort(key=lambda pair: (-pair[0], _name_key(pair[1])))
        profile = ranked[0][1]
        return _approver(profile, profile.app_role, self.tier)


class CompanyFallbackStrategy(ApproverStrategy):
    """Most senior manager/admin/owner of the company."""

    tier = ResolutionTier.COMPANY

    async def try_resolve(self, context):
        profiles = await context.directory.list_company_profiles(context.company_id)
        ranked = [(role_rank(p.app_role), p) for p in profiles]
        ranked = [(rank, p) for rank, p in ranked if rank is not None]
        if not ranked:
            return None
        ranked.sort(key=lambda pair: (pair[0], _name_key(pair[1])))
        profile = ranked[0][1]
        return _approver(profile, profile.app_role, self.tier)


HIERARCHY_FROM = {
    RoleScope.REGION: [RegionDirectStrategy, RegionViaAreaStrategy, AreaManagerStrategy, SiteManagerStrategy],
    RoleScope.AREA: [AreaManagerStrategy, SiteManagerStrategy],
    RoleScope.SITE: [SiteManagerStrategy],
    RoleScope.COMPANY: [],
    RoleScope.OTHER: [
        ConfiguredRoleStrategy, RegionDirectStrategy, RegionViaAreaStrategy,
        AreaManagerStrategy, SiteManagerStrategy,
    ],
}


# ============================================================================
# RESOLVER
# ============================================================================

class ApproverResolver:
    """Resolves and lists approvers for stock counts."""

    def __init__(
        self,
        directory: OrganizationDirectory,
        workflows: WorkflowConfigSource,
        default_role: Optional[str] = None,
        self_approval_label: Optional[str] = None,
    ):
        self.directory = directory
        self.workflows = workflows
        self.default_role = default_role or settings.DEFAULT_APPROVER_ROLE
        self.self_approval_label = self_approval_label or settings.SELF_APPROVAL_ROLE_LABEL

    async def configured_role(self, company_id: UUID) -> str:
        role = await self.workflows.get_first_step_role(company_id)
        return role or self.default_role

    def build_chain(self, role: str) -> List[ApproverStrategy]:
        """Strategies tried in order for a configured role; always ends with the company fallback."""
        chain = [strategy() for strategy in HIERARCHY_FROM[role_scope(role)]]
        chain.append(CompanyFallbackStrategy())
        return chain

    async def resolve(self, company_id: Any, site_id: Any, actor_id: Any = None) -> ApproverResolution:
        company_uuid = coerce_uuid(company_id)
        site_uuid = coerce_uuid(site_id)
        if company_uuid is None:
            logger.warning(f"Approver resolution failed: invalid company id {company_id!r}")
            return ApproverResolution(status=ResolutionStatus.FAILED, reason="Missing or invalid company id")
        if site_uuid is None:
            logger.warning(f"Approver resolution failed: invalid site id {site_id!r}")
            return ApproverResolution(status=ResolutionStatus.FAILED, reason="Missing or invalid site id")

        role = None
        try:
            role = await self.configured_role(company_uuid)

            site = await self.directory.get_site(site_uuid)
            if site is not None and site.company_id != company_uuid:
                logger.warning(f"Site {site_uuid} does not belong to company {company_uuid}")
                site = None
            if site is None:
                logger.info(f"Site {site_uuid} not found; skipping hierarchy tiers")

            context = ResolutionContext(
                company_id=company_uuid,
                site_id=site_uuid,
                configured_role=role,
                site=site,
                directory=self.directory,
            )

            for strategy in self.build_chain(role):
                approver = await strategy.try_resolve(context)
                if approver is not None:
                    logger.info(
                        f"Resolved approver {approver.id} ({approver.role}) "
                        f"via {strategy.tier.value} for site {site_uuid}"
                    )
                    return ApproverResolution(
                        status=ResolutionStatus.RESOLVED,
                        configured_role=role,
                        approver=approver,
                        tier=strategy.tier,
                    )
                logger.debug(f"No approver from {strategy.tier.value} for site {site_uuid}")

            approver = await self._self_approver(company_uuid, actor_id)
            if approver is not None:
                logger.warning(
                    f"No manager found for site {site_uuid}; count will be self-approved by {approver.id}"
                )
                return ApproverResolution(
                    status=ResolutionStatus.RESOLVED,
                    configured_role=role,
                    approver=approver,
                    tier=ResolutionTier.SELF_APPROVAL,
                )
        except Exception as e:
            logger.error(f"Approver resolution failed for site {site_uuid}: {e}")
            return ApproverResolution(
                status=ResolutionStatus.FAILED,
                configured_role=role,
                reason=f"Directory lookup failed: {e}",
            )

        logger.info(f"No approver could be determined for site {site_uuid}")
        return ApproverResolution(
            status=ResolutionStatus.UNRESOLVED,
            configured_role=role,
            reason="No eligible approver found",
        )

    async def _self_approver(self, company_id: UUID, actor_id: Any) -> Optional[Approver]:
        actor_uuid = coerce_uuid(actor_id)
        if actor_uuid is None:
            return None
        profile = await self.directory.get_profile(actor_uuid)
        if profile is None or profile.company_id not in (None, company_id):
            return None
        return _approver(profile, self.self_approval_label, ResolutionTier.SELF_APPROVAL)

    async def list_eligible(self, company_id: Any, site_id: Any) -> List[Approver]:
        """
        Everyone who may approve counts of a site, best ranked first.

        Owners/admins, the regional manager, the area manager and site managers,
        de-duplicated by profile id keeping the most senior rank.
        """
        company_uuid = coerce_uuid(company_id)
        site_uuid = coerce_uuid(site_id)
        if company_uuid is None:
            return []

        candidates: Dict[UUID, tuple] = {}

        def offer(rank: int, approver: Optional[Approver]) -> None:
            if approver is None:
                return
            current = candidates.get(approver.id)
            if current is None or rank < current[0]:
                candidates[approver.id] = (rank, approver)

        try:
            for profile in await self.directory.list_company_profiles(company_uuid):
                if role_rank(profile.app_role) == RANK_ADMIN:
                    offer(RANK_ADMIN, _approver(profile, profile.app_role, ResolutionTier.COMPANY))

            site = await self.directory.get_site(site_uuid) if site_uuid else None
            if site is not None and site.company_id == company_uuid:
                context = ResolutionContext(
                    company_id=company_uuid,
                    site_id=site.id,
                    configured_role=self.default_role,
                    site=site,
                    directory=self.directory,
                )
                regional = await RegionDirectStrategy().try_resolve(context)
                if regional is None:
                    regional = await RegionViaAreaStrategy().try_resolve(context)
                offer(RANK_REGIONAL, regional)
                offer(RANK_AREA, await AreaManagerStrategy().try_resolve(context))

                for profile in await self.directory.list_site_profiles(company_uuid, site.id):
                    rank = role_rank(profile.app_role)
                    if rank is not None:
                        offer(rank, _approver(profile, profile.app_role, ResolutionTier.SITE))
        except Exception as e:
            logger.error(f"Failed to list approvers for site {site_id}: {e}")
            return []

        ranked = sorted(
            candidates.values(),
            key=lambda pair: (pair[0], pair[1].name.casefold(), str(pair[1].id)),
        )
        return [approver for _, approver in ranked]
