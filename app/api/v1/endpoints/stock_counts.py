"""
Stock Count API Endpoints.

API endpoints for stock count entry and review:
- Count detail and items in canonical order
- Batch saving of counted values
- Variance report
- Approver listing, submission for approval, approve / reject
"""
from typing import Optional, List
from uuid import UUID

from fastapi import APIRouter, HTTPException, Query, status

from app.api.deps import CurrentProfile, DB, Breaker, SessionFactory
from app.schemas.approval import Approver
from app.schemas.stock_count import (
    BatchSaveResult, CountItem, SaveCountsRequest,
    StockCountDetailResponse, StockCountResponse,
    ReadyForApprovalRequest, ReadyForApprovalResult, RejectRequest,
    VarianceReport, VarianceFilter, VarianceSortField, SortDirection,
)
from app.services.stock_count.persistence import SqlCountItemSink
from app.services.stock_count_service import StockCountService

router = APIRouter()


def _not_found() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail="Stock count not found"
    )


# ============================================================================
# COUNT ENTRY
# ============================================================================

@router.get(
    "/{count_id}",
    response_model=StockCountDetailResponse,
    summary="Get Stock Count"
)
async def get_stock_count(
    count_id: UUID,
    db: DB,
    current_profile: CurrentProfile,
    breaker: Breaker,
):
    """Get a stock count with its items in canonical order."""
    service = StockCountService(db, current_profile.company_id, breaker)
    detail = await service.get_count_detail(count_id)
    if not detail:
        raise _not_found()
    count, items = detail
    return StockCountDetailResponse(
        **StockCountResponse.model_validate(count).model_dump(),
        items=items,
    )


@router.get(
    "/{count_id}/items",
    response_model=List[CountItem],
    summary="List Count Items"
)
async def list_count_items(
    count_id: UUID,
    db: DB,
    current_profile: CurrentProfile,
    breaker: Breaker,
    library: Optional[str] = Query(None, description="Only items of this library section"),
):
    """List items in canonical order, optionally for one library section."""
    service = StockCountService(db, current_profile.company_id, breaker)
    detail = await service.get_count_detail(count_id, library=library)
    if not detail:
        raise _not_found()
    return detail[1]


@router.post(
    "/{count_id}/items/save",
    response_model=BatchSaveResult,
    summary="Save Counted Values"
)
async def save_counted_values(
    count_id: UUID,
    data: SaveCountsRequest,
    db: DB,
    session_factory: SessionFactory,
    current_profile: CurrentProfile,
    breaker: Breaker,
):
    """
    Save raw counted values.

    Partial failures return 200 with `failed` listing the items that were not
    saved; their values should be kept by the client.
    """
    service = StockCountService(db, current_profile.company_id, breaker)
    sink = SqlCountItemSink(session_factory, breaker, count_id=count_id)
    try:
        result = await service.save_counts(
            count_id,
            data.values,
            sink,
            library=data.library,
            advance=data.advance,
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if result is None:
        raise _not_found()
    return result


# ============================================================================
# REPORTING
# ============================================================================

@router.get(
    "/{count_id}/variance-report",
    response_model=VarianceReport,
    summary="Variance Report"
)
async def get_variance_report(
    count_id: UUID,
    db: DB,
    current_profile: CurrentProfile,
    library: Optional[str] = None,
    search: Optional[str] = None,
    variance_filter: VarianceFilter = "all",
    sort_field: VarianceSortField = "name",
    direction: SortDirection = "asc",
):
    """Variance rows and totals for a count."""
    service = StockCountService(db, current_profile.company_id)
    report = await service.variance_report(
        count_id,
        library=library,
        search=search,
        variance_filter=variance_filter,
        sort_field=sort_field,
        direction=direction,
    )
    if not report:
        raise _not_found()
    return report


# ============================================================================
# REVIEW
# ============================================================================

@router.get(
    "/{count_id}/approvers",
    response_model=List[Approver],
    summary="List Available Approvers"
)
async def list_approvers(
    count_id: UUID,
    db: DB,
    current_profile: CurrentProfile,
):
    """Profiles that may approve this count, most senior first."""
    service = StockCountService(db, current_profile.company_id)
    approvers = await service.list_available_approvers(count_id)
    if approvers is None:
        raise _not_found()
    return approvers


@router.post(
    "/{count_id}/ready-for-approval",
    response_model=ReadyForApprovalResult,
    summary="Submit For Approval"
)
async def mark_ready_for_approval(
    count_id: UUID,
    db: DB,
    current_profile: CurrentProfile,
    breaker: Breaker,
    data: Optional[ReadyForApprovalRequest] = None,
):
    """Submit a count for review and assign its approver."""
    service = StockCountService(db, current_profile.company_id, breaker)
    try:
        result = await service.mark_ready_for_approval(
            count_id,
            current_profile.id,
            approver_id=data.approver_id if data else None,
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if not result:
        raise _not_found()
    return result


@router.post(
    "/{count_id}/approve",
    response_model=StockCountResponse,
    summary="Approve Stock Count"
)
async def approve_stock_count(
    count_id: UUID,
    db: DB,
    current_profile: CurrentProfile,
):
    """Approve a submitted count."""
    service = StockCountService(db, current_profile.company_id)
    try:
        count = await service.approve(count_id, current_profile.id)
    except PermissionError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if not count:
        raise _not_found()
    return count


@router.post(
    "/{count_id}/reject",
    response_model=StockCountResponse,
    summary="Reject Stock Count"
)
async def reject_stock_count(
    count_id: UUID,
    data: RejectRequest,
    db: DB,
    current_profile: CurrentProfile,
):
    """Reject a submitted count with a reason."""
    service = StockCountService(db, current_profile.company_id)
    try:
        count = await service.reject(count_id, current_profile.id, data.rejection_reason)
    except PermissionError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if not count:
        raise _not_found()
    return count
