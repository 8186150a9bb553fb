"""
Stock Count Service.

Business logic for the stock count lifecycle: loading a count session,
saving counted values, totals, the variance report, and submission for
review / approval / rejection.
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select, func, case, and_
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.circuit_breaker import FeatureBreaker
from app.models.stock_count import (
    StockCount, StockCountItem, StockCountStatus, CountItemStatus
)
from app.schemas.approval import (
    Approver, ApproverResolution, ResolutionStatus
)
from app.schemas.stock_count import (
    BatchSaveResult, CountItem, ReadyForApprovalResult, StockCountResponse,
    VarianceReport, VarianceReportRow, VarianceReportTotals,
)
from app.services.stock_count.approver_resolution import ApproverResolver, role_rank
from app.services.stock_count.batch_save import BatchSaveCoordinator
from app.services.stock_count.directory import (
    OrganizationDirectory, WorkflowConfigSource,
    SqlOrganizationDirectory, SqlWorkflowConfig,
)
from app.services.stock_count.navigation import (
    CountNavigator, canonical_order, normalize_library, section_display_name
)
from app.services.stock_count.persistence import CountItemSink
from app.services.stock_count.session_store import CountSessionStore
from app.services.stock_count.variance import ZERO, to_decimal

logger = logging.getLogger(__name__)


# Counts that can no longer be edited
READ_ONLY_STATUSES = {
    StockCountStatus.READY_FOR_APPROVAL.value,
    StockCountStatus.APPROVED.value,
    StockCountStatus.FINALIZED.value,
    StockCountStatus.LOCKED.value,
}

# Counts that can be submitted for review
SUBMITTABLE_STATUSES = {
    StockCountStatus.DRAFT.value,
    StockCountStatus.ACTIVE.value,
    StockCountStatus.IN_PROGRESS.value,
    StockCountStatus.COMPLETED.value,
    StockCountStatus.REJECTED.value,
}

# Submitted without a completion step
UNFINISHED_STATUSES = {
    StockCountStatus.DRAFT.value,
    StockCountStatus.ACTIVE.value,
    StockCountStatus.IN_PROGRESS.value,
}

# Counts awaiting a review decision
REVIEWABLE_STATUSES = {
    StockCountStatus.PENDING_REVIEW.value,
    StockCountStatus.READY_FOR_APPROVAL.value,
}

REPORT_SORT_FIELDS = {
    "variance_qty": "variance_quantity",
    "variance_pct": "variance_percentage",
    "variance_value": "variance_value",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StockCountService:
    """Service for stock count operations, scoped to one company."""

    def __init__(
        self,
        db: AsyncSession,
        company_id: UUID,
        breaker: Optional[FeatureBreaker] = None,
        directory: Optional[OrganizationDirectory] = None,
        workflows: Optional[WorkflowConfigSource] = None,
    ):
        self.db = db
        self.company_id = company_id
        self.breaker = breaker or FeatureBreaker()
        self.directory = directory or SqlOrganizationDirectory(db)
        self.workflows = workflows or SqlWorkflowConfig(db)
        self.resolver = ApproverResolver(self.directory, self.workflows)

    # ========================================================================
    # COUNTS & ITEMS
    # ========================================================================

    async def get_count(self, count_id: UUID) -> Optional[StockCount]:
        """Get a stock count of this company by ID."""
        result = await self.db.execute(
            select(StockCount).where(
                StockCount.id == count_id,
                StockCount.company_id == self.company_id
            )
        )
        return result.scalar_one_or_none()

    async def load_items(self, count_id: UUID) -> List[CountItem]:
        """Current items of a count, freshly read from the database."""
        result = await self.db.execute(
            select(StockCountItem)
            .where(StockCountItem.stock_count_id == count_id)
            .execution_options(populate_existing=True)
        )
        return [CountItem.model_validate(item) for item in result.scalars().all()]

    async def open_session(self, count_id: UUID) -> Optional[CountSessionStore]:
        """Create a session store for a count with its items in canonical order."""
        count = await self.get_count(count_id)
        if not count:
            return None
        items = await self.load_items(count.id)
        return CountSessionStore(count.id, items, count.libraries_included)

    async def get_count_detail(
        self,
        count_id: UUID,
        library: Optional[str] = None
    ) -> Optional[Tuple[StockCount, List[CountItem]]]:
        """Count plus its items in canonical order, optionally one section only."""
        count = await self.get_count(count_id)
        if not count:
            return None
        store = CountSessionStore(count.id, await self.load_items(count.id), count.libraries_included)
        navigator = CountNavigator(store)
        navigator.select_section(library)
        return count, navigator.view

    # ========================================================================
    # SAVING
    # ========================================================================

    async def save_counts(
        self,
        count_id: UUID,
        values: Dict[UUID, str],
        sink: CountItemSink,
        library: Optional[str] = None,
        advance: bool = False,
    ) -> Optional[BatchSaveResult]:
        """
        Save raw counted values for a count.

        With `library`, only that section is saved; other values are ignored.
        Partial failures are reported in the result, never raised.
        """
        count = await self.get_count(count_id)
        if not count:
            return None

        if count.status in READ_ONLY_STATUSES:
            raise ValueError(f"Stock count is {count.status} and can no longer be edited")

        store = CountSessionStore(count.id, await self.load_items(count.id), count.libraries_included)
        for item_id, raw in values.items():
            store.set_pending_value(item_id, raw)

        coordinator = BatchSaveCoordinator(
            store,
            sink,
            max_concurrency=settings.STOCK_COUNT_SAVE_CONCURRENCY,
        )
        if library:
            result = await coordinator.save_section(library, advance=advance)
        else:
            result = await coordinator.save_all(advance=advance)

        if result.saved_count:
            if count.status in (StockCountStatus.DRAFT.value, StockCountStatus.ACTIVE.value):
                count.status = StockCountStatus.IN_PROGRESS.value
            await self.refresh_totals(count)
            await self.db.commit()
            await self.db.refresh(count)

        if result.failed:
            logger.error(
                f"Stock count {count.id}: {len(result.failed)} item(s) failed to save: "
                f"{', '.join(f.item_name for f in result.failed)}"
            )
        return result

    async def refresh_totals(self, count: StockCount) -> StockCount:
        """Recalculate count totals from its items."""
        counted = StockCountItem.status == CountItemStatus.COUNTED.value
        result = await self.db.execute(
            select(
                func.count().label("total"),
                func.sum(case((counted, 1), else_=0)).label("counted"),
                func.sum(case(
                    (and_(counted, StockCountItem.variance_quantity != 0), 1),
                    else_=0
                )).label("with_variance"),
                func.sum(case(
                    (counted, StockCountItem.variance_value),
                    else_=0
                )).label("variance_value"),
            ).where(StockCountItem.stock_count_id == count.id)
        )
        stats = result.one()

        count.total_items = stats.total or 0
        count.items_counted = stats.counted or 0
        count.variance_count = stats.with_variance or 0
        count.total_variance_value = to_decimal(stats.variance_value).quantize(Decimal("0.01"))
        return count

    # ========================================================================
    # VARIANCE REPORT
    # ========================================================================

    async def variance_report(
        self,
        count_id: UUID,
        library: Optional[str] = None,
        search: Optional[str] = None,
        variance_filter: str = "all",
        sort_field: str = "name",
        direction: str = "asc",
    ) -> Optional[VarianceReport]:
        """
        Variance report rows and totals.

        Library and search narrow the rows; totals are computed over those rows.
        The variance filter applies to counted items only.
        """
        count = await self.get_count(count_id)
        if not count:
            return None

        items = canonical_order(await self.load_items(count.id), count.libraries_included)

        scope = normalize_library(library)
        if scope is not None:
            items = [i for i in items if normalize_library(i.library_type) == scope]
        if search and search.strip():
            needle = search.strip().casefold()
            items = [i for i in items if needle in (i.item_name or "").casefold()]

        totals = VarianceReportTotals(total_items=len(items))
        for item in items:
            if item.status != CountItemStatus.COUNTED:
                continue
            totals.counted_items += 1
            if to_decimal(item.variance_quantity) != ZERO:
                totals.items_with_variance += 1
            totals.total_variance_value += abs(to_decimal(item.variance_value))

        if variance_filter != "all":
            items = [i for i in items if self._matches_variance(i, variance_filter)]

        items = self._sort_report(items, sort_field, direction)

        return VarianceReport(
            count_id=count.id,
            rows=[
                VarianceReportRow(**item.model_dump(), section=section_display_name(item.library_type))
                for item in items
            ],
            totals=totals,
        )

    @staticmethod
    def _matches_variance(item: CountItem, variance_filter: str) -> bool:
        if item.status != CountItemStatus.COUNTED:
            return False
        quantity = to_decimal(item.variance_quantity)
        if variance_filter == "positive":
            return quantity > ZERO
        if variance_filter == "negative":
            return quantity < ZERO
        if variance_filter == "zero":
            return quantity == ZERO
        raise ValueError(f"Unknown variance filter: {variance_filter}")

    @staticmethod
    def _sort_report(items: List[CountItem], sort_field: str, direction: str) -> List[CountItem]:
        descending = direction == "desc"
        if sort_field == "name":
            return sorted(
                items,
                key=lambda i: (i.item_name.casefold(), i.item_name, str(i.id)),
                reverse=descending,
            )

        attribute = REPORT_SORT_FIELDS.get(sort_field)
        if attribute is None:
            raise ValueError(f"Unknown sort field: {sort_field}")

        def key(item: CountItem):
            value = getattr(item, attribute)
            if value is None:
                return (1, ZERO, item.item_name.casefold(), str(item.id))
            return (0, -value if descending else value, item.item_name.casefold(), str(item.id))

        # Missing values sort last in both directions
        return sorted(items, key=key)

    # ========================================================================
    # REVIEW LIFECYCLE
    # ========================================================================

    async def list_available_approvers(self, count_id: UUID) -> Optional[List[Approver]]:
        count = await self.get_count(count_id)
        if not count:
            return None
        return await self.resolver.list_eligible(self.company_id, count.site_id)

    async def mark_ready_for_approval(
        self,
        count_id: UUID,
        actor_id: UUID,
        approver_id: Optional[UUID] = None,
    ) -> Optional[ReadyForApprovalResult]:
        """
        Submit a count for review.

        An explicit approver must belong to the company. Otherwise the approver
        is resolved from the organization hierarchy, falling back to the
        submitting user. Without any approver the count goes to pending_review.
        """
        count = await self.get_count(count_id)
        if not count:
            return None

        if count.status not in SUBMITTABLE_STATUSES:
            raise ValueError(f"Cannot submit a stock count with status '{count.status}' for approval")

        now = _utcnow()
        if count.status in UNFINISHED_STATUSES:
            count.status = StockCountStatus.COMPLETED.value
            count.completed_at = now
            count.completed_by = actor_id

        await self.refresh_totals(count)

        if approver_id is not None:
            profile = await self.directory.get_profile(approver_id)
            if profile is None or profile.company_id != self.company_id:
                raise ValueError("Approver must be an active member of this company")
            resolution = ApproverResolution(
                status=ResolutionStatus.RESOLVED,
                approver=Approver(
                    id=profile.id,
                    name=profile.display_name,
                    role=profile.app_role or "Approver",
                    email=profile.email,
                ),
                reason="Assigned manually",
            )
        else:
            resolution = await self.resolver.resolve(self.company_id, count.site_id, actor_id=actor_id)

        count.ready_for_approval_at = now
        count.ready_for_approval_by = actor_id
        count.rejected_at = None
        count.rejected_by = None
        count.rejection_reason = None

        if resolution.is_resolved:
            count.status = StockCountStatus.READY_FOR_APPROVAL.value
            count.approver_id = resolution.approver.id
        else:
            count.status = StockCountStatus.PENDING_REVIEW.value
            count.approver_id = None
            logger.warning(f"Stock count {count.id} submitted without approver: {resolution.reason}")

        await self.db.commit()
        await self.db.refresh(count)

        logger.info(f"Stock count {count.id} submitted by {actor_id}; status {count.status}")
        return ReadyForApprovalResult(
            count=StockCountResponse.model_validate(count),
            resolution=resolution,
            message=resolution.message,
        )

    async def approve(self, count_id: UUID, actor_id: UUID) -> Optional[StockCount]:
        """Approve a submitted count."""
        count = await self.get_count(count_id)
        if not count:
            return None

        await self._check_reviewer(count, actor_id, "approve")

        count.status = StockCountStatus.APPROVED.value
        count.approved_at = _utcnow()
        count.approved_by = actor_id

        await self.db.commit()
        await self.db.refresh(count)
        logger.info(f"Stock count {count.id} approved by {actor_id}")
        return count

    async def reject(self, count_id: UUID, actor_id: UUID, reason: str) -> Optional[StockCount]:
        """Reject a submitted count with a reason."""
        if not reason or not reason.strip():
            raise ValueError("A rejection reason is required")

        count = await self.get_count(count_id)
        if not count:
            return None

        await self._check_reviewer(count, actor_id, "reject")

        count.status = StockCountStatus.REJECTED.value
        count.rejected_at = _utcnow()
        count.rejected_by = actor_id
        count.rejection_reason = reason.strip()

        await self.db.commit()
        await self.db.refresh(count)
        logger.info(f"Stock count {count.id} rejected by {actor_id}")
        return count

    async def _check_reviewer(self, count: StockCount, actor_id: UUID, action: str) -> None:
        if count.status not in REVIEWABLE_STATUSES:
            raise ValueError(f"Cannot {action} a stock count with status '{count.status}'")

        if count.approver_id is not None:
            if count.approver_id != actor_id:
                raise PermissionError(f"Only the assigned approver can {action} this stock count")
            return

        profile = await self.directory.get_profile(actor_id)
        if profile is None or profile.company_id != self.company_id or role_rank(profile.app_role) is None:
            raise PermissionError(f"Only managers can {action} this stock count")
