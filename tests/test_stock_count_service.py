from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select, text

from app.core.circuit_breaker import FeatureBreaker, IS_COUNTED_COLUMN
from app.models.stock_count import StockCountItem, StockCountStatus
from app.schemas.approval import NO_APPROVER_MESSAGE, ResolutionStatus, ResolutionTier
from app.services import StockCountService
from app.services.stock_count.persistence import SqlCountItemSink
from tests.fakes import InMemoryDirectory, RecordingSink, StaticWorkflowConfig


def ids_by_name(stock_count):
    return {item.item_name: item.id for item in stock_count.items}


@pytest.fixture
def service(db, org):
    return StockCountService(db, org.company.id)


@pytest.fixture
def sink(session_factory, stock_count):
    return SqlCountItemSink(session_factory, count_id=stock_count.id)


# ============================================================================
# COUNTS & ITEMS
# ============================================================================

async def test_open_session_orders_items_by_section_then_name(service, stock_count):
    store = await service.open_session(stock_count.id)

    assert [item.item_name for item in store.items] == [
        "butter", "Caster Sugar", "Plain Flour", "Cake Box", "Sanitiser",
    ]


async def test_count_detail_filtered_to_one_library(service, stock_count):
    count, items = await service.get_count_detail(stock_count.id, library="Packaging")

    assert count.id == stock_count.id
    assert [item.item_name for item in items] == ["Cake Box"]


async def test_count_of_another_company_is_not_found(db, org, stock_count):
    outsider_service = StockCountService(db, org.other_company.id)

    assert await outsider_service.get_count(stock_count.id) is None
    assert await outsider_service.get_count_detail(stock_count.id) is None


# ============================================================================
# SAVING
# ============================================================================

async def test_save_counts_persists_and_updates_totals(db, service, sink, stock_count):
    ids = ids_by_name(stock_count)

    result = await service.save_counts(stock_count.id, {
        ids["Plain Flour"]: "12",
        ids["butter"]: "3",
        ids["Cake Box"]: "abc",
    }, sink)

    assert sorted(result.saved_ids) == sorted([ids["Plain Flour"], ids["butter"]])
    assert result.skipped_ids == [ids["Cake Box"]]
    assert result.failed == []

    count = await service.get_count(stock_count.id)
    assert count.status == StockCountStatus.IN_PROGRESS.value
    assert count.total_items == 5
    assert count.items_counted == 2
    assert count.variance_count == 2
    assert count.total_variance_value == Decimal("-2.00")

    row = (await db.execute(
        select(StockCountItem).where(StockCountItem.id == ids["Plain Flour"])
        .execution_options(populate_existing=True)
    )).scalar_one()
    assert row.counted_quantity == Decimal("12")
    assert row.variance_value == Decimal("5.00")
    assert row.status == "counted"


async def test_save_counts_for_one_library_ignores_other_values(service, sink, stock_count):
    ids = ids_by_name(stock_count)

    result = await service.save_counts(
        stock_count.id,
        {ids["Plain Flour"]: "11", ids["Cake Box"]: "90"},
        sink,
        library="ingredients",
        advance=True,
    )

    assert result.saved_ids == [ids["Plain Flour"]]
    assert result.next_item_id == ids["butter"]
    items = {item.item_name: item for item in await service.load_items(stock_count.id)}
    assert items["Cake Box"].counted_quantity is None


async def test_save_counts_reports_failed_items(service, stock_count):
    ids = ids_by_name(stock_count)
    failing = RecordingSink(fail_ids={ids["Sanitiser"]})

    result = await service.save_counts(
        stock_count.id, {ids["Sanitiser"]: "4", ids["Cake Box"]: "100"}, failing
    )

    assert result.saved_ids == [ids["Cake Box"]]
    assert [f.item_name for f in result.failed] == ["Sanitiser"]
    assert "Sanitiser" in result.message


async def test_save_counts_without_valid_values_leaves_status(service, sink, stock_count):
    ids = ids_by_name(stock_count)

    result = await service.save_counts(stock_count.id, {ids["butter"]: ""}, sink)

    assert result.saved_count == 0
    count = await service.get_count(stock_count.id)
    assert count.status == StockCountStatus.ACTIVE.value


@pytest.mark.parametrize("status", [
    StockCountStatus.READY_FOR_APPROVAL,
    StockCountStatus.APPROVED,
    StockCountStatus.FINALIZED,
    StockCountStatus.LOCKED,
])
async def test_save_counts_refused_once_submitted(db, service, sink, stock_count, status):
    stock_count.status = status.value
    await db.commit()
    ids = ids_by_name(stock_count)

    with pytest.raises(ValueError):
        await service.save_counts(stock_count.id, {ids["butter"]: "1"}, sink)


async def test_save_counts_unknown_count(service, sink):
    assert await service.save_counts(uuid4(), {}, sink) is None


async def test_save_counts_when_is_counted_column_is_missing(engine, service, session_factory, stock_count):
    ids = ids_by_name(stock_count)
    async with engine.begin() as conn:
        await conn.execute(text("ALTER TABLE stock_count_items DROP COLUMN is_counted"))
    breaker = FeatureBreaker()
    sink = SqlCountItemSink(session_factory, breaker, count_id=stock_count.id)

    result = await service.save_counts(stock_count.id, {ids["Plain Flour"]: "12", ids["butter"]: "3"}, sink)

    assert sorted(result.saved_ids) == sorted([ids["Plain Flour"], ids["butter"]])
    assert result.failed == []
    assert not breaker.allows(IS_COUNTED_COLUMN)

    count = await service.get_count(stock_count.id)
    assert count.status == StockCountStatus.IN_PROGRESS.value
    assert count.items_counted == 2
    items = {item.item_name: item for item in await service.load_items(stock_count.id)}
    assert items["Plain Flour"].counted_quantity == Decimal("12")


# ============================================================================
# VARIANCE REPORT
# ============================================================================

@pytest.fixture
async def counted(service, sink, stock_count):
    ids = ids_by_name(stock_count)
    await service.save_counts(stock_count.id, {
        ids["Plain Flour"]: "12",   # +2, +5.00
        ids["butter"]: "3",         # -1, -7.00
        ids["Caster Sugar"]: "0",   # 0
    }, sink)
    return ids


async def test_variance_report_totals(service, stock_count, counted):
    report = await service.variance_report(stock_count.id)

    assert report.totals.total_items == 5
    assert report.totals.counted_items == 3
    assert report.totals.items_with_variance == 2
    assert report.totals.total_variance_value == Decimal("12.00")
    assert [row.item_name for row in report.rows] == [
        "butter", "Cake Box", "Caster Sugar", "Plain Flour", "Sanitiser",
    ]
    sections = {row.item_name: row.section for row in report.rows}
    assert sections["Plain Flour"] == "Ingredients"
    assert sections["Sanitiser"] == "Chemicals"


@pytest.mark.parametrize("variance_filter, expected", [
    ("positive", ["Plain Flour"]),
    ("negative", ["butter"]),
    ("zero", ["Caster Sugar"]),
])
async def test_variance_report_filters_counted_items(service, stock_count, counted, variance_filter, expected):
    report = await service.variance_report(stock_count.id, variance_filter=variance_filter)

    assert [row.item_name for row in report.rows] == expected
    # Totals describe every row in scope, not only the filtered ones
    assert report.totals.total_items == 5


async def test_variance_report_sorts_missing_values_last(service, stock_count, counted):
    report = await service.variance_report(stock_count.id, sort_field="variance_value", direction="desc")

    assert [row.item_name for row in report.rows] == [
        "Plain Flour", "Caster Sugar", "butter", "Cake Box", "Sanitiser",
    ]


async def test_variance_report_library_and_search(service, stock_count, counted):
    chemicals = await service.variance_report(stock_count.id, library="chemicals_library")
    sugar = await service.variance_report(stock_count.id, search="  SUG ")

    assert [row.item_name for row in chemicals.rows] == ["Sanitiser"]
    assert chemicals.totals.counted_items == 0
    assert [row.item_name for row in sugar.rows] == ["Caster Sugar"]
    assert sugar.totals.total_variance_value == Decimal("0")


async def test_variance_report_rejects_unknown_sort(service, stock_count):
    with pytest.raises(ValueError):
        await service.variance_report(stock_count.id, sort_field="colour")


# ============================================================================
# REVIEW LIFECYCLE
# ============================================================================

async def test_ready_for_approval_assigns_region_manager(service, org, stock_count):
    result = await service.mark_ready_for_approval(stock_count.id, actor_id=org.staff.id)

    assert result.resolution.status == ResolutionStatus.RESOLVED
    assert result.resolution.tier == ResolutionTier.REGION_VIA_AREA
    assert result.count.status == StockCountStatus.READY_FOR_APPROVAL
    assert result.count.approver_id == org.regional.id
    assert result.count.ready_for_approval_by == org.staff.id
    assert result.count.completed_by == org.staff.id
    assert result.message is None


async def test_ready_for_approval_with_explicit_approver(service, org, stock_count):
    result = await service.mark_ready_for_approval(
        stock_count.id, actor_id=org.staff.id, approver_id=org.site_manager.id
    )

    assert result.count.approver_id == org.site_manager.id
    assert result.resolution.approver.name == "Sam Site"


async def test_explicit_approver_from_another_company_is_refused(service, org, stock_count):
    with pytest.raises(ValueError):
        await service.mark_ready_for_approval(
            stock_count.id, actor_id=org.staff.id, approver_id=org.outsider.id
        )


async def test_unresolved_approver_leaves_count_pending_review(db, org, stock_count):
    service = StockCountService(
        db, org.company.id, directory=InMemoryDirectory(), workflows=StaticWorkflowConfig()
    )

    result = await service.mark_ready_for_approval(stock_count.id, actor_id=org.staff.id)

    assert result.resolution.status == ResolutionStatus.UNRESOLVED
    assert result.count.status == StockCountStatus.PENDING_REVIEW
    assert result.count.approver_id is None
    assert result.message == NO_APPROVER_MESSAGE


async def test_directory_failure_leaves_count_pending_review(db, org, stock_count):
    directory = InMemoryDirectory()
    directory.fail = True
    service = StockCountService(db, org.company.id, directory=directory, workflows=StaticWorkflowConfig())

    result = await service.mark_ready_for_approval(stock_count.id, actor_id=org.staff.id)

    assert result.resolution.status == ResolutionStatus.FAILED
    assert result.count.status == StockCountStatus.PENDING_REVIEW


async def test_only_assigned_approver_can_approve(service, org, stock_count):
    await service.mark_ready_for_approval(stock_count.id, actor_id=org.staff.id)

    with pytest.raises(PermissionError):
        await service.approve(stock_count.id, actor_id=org.area_manager.id)

    count = await service.approve(stock_count.id, actor_id=org.regional.id)
    assert count.status == StockCountStatus.APPROVED.value
    assert count.approved_by == org.regional.id

    with pytest.raises(ValueError):
        await service.approve(stock_count.id, actor_id=org.regional.id)


async def test_cannot_approve_before_submission(service, org, stock_count):
    with pytest.raises(ValueError):
        await service.approve(stock_count.id, actor_id=org.regional.id)


async def test_pending_review_count_needs_a_manager(db, service, org, stock_count):
    stock_count.status = StockCountStatus.PENDING_REVIEW.value
    await db.commit()

    with pytest.raises(PermissionError):
        await service.reject(stock_count.id, actor_id=org.staff.id, reason="Recount")

    count = await service.reject(stock_count.id, actor_id=org.site_manager.id, reason="  Recount freezer  ")
    assert count.status == StockCountStatus.REJECTED.value
    assert count.rejection_reason == "Recount freezer"


async def test_reject_requires_reason(service, org, stock_count):
    await service.mark_ready_for_approval(stock_count.id, actor_id=org.staff.id)

    with pytest.raises(ValueError):
        await service.reject(stock_count.id, actor_id=org.regional.id, reason="   ")


async def test_resubmission_clears_rejection(service, sink, org, stock_count):
    ids = ids_by_name(stock_count)
    await service.mark_ready_for_approval(stock_count.id, actor_id=org.staff.id)
    await service.reject(stock_count.id, actor_id=org.regional.id, reason="Missing freezer")

    await service.save_counts(stock_count.id, {ids["butter"]: "4"}, sink)
    result = await service.mark_ready_for_approval(stock_count.id, actor_id=org.staff.id)

    assert result.count.status == StockCountStatus.READY_FOR_APPROVAL
    assert result.count.rejection_reason is None
    assert result.count.rejected_at is None


async def test_available_approvers_for_count(service, org, stock_count):
    approvers = await service.list_available_approvers(stock_count.id)

    assert [a.id for a in approvers] == [org.regional.id, org.area_manager.id, org.site_manager.id]
