import logging
from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select, text

from app.core.circuit_breaker import FeatureBreaker, IS_COUNTED_COLUMN, is_missing_column_error
from app.models.approval import ApprovalStep, ApprovalWorkflow, WorkflowType
from app.models.organization import Area, Profile, Region, Site, assign_manager
from app.models.stock_count import StockCountItem
from app.schemas.stock_count import CountItem, CountItemWrite
from app.services.stock_count.directory import SqlOrganizationDirectory, SqlWorkflowConfig
from app.services.stock_count.persistence import SqlCountItemSink


def item_named(stock_count, name):
    return next(item for item in stock_count.items if item.item_name == name)


def client_write(item, counted, variance_value="5.00", variance_percentage="20"):
    return CountItemWrite(
        item_id=item.id,
        counted_quantity=Decimal(counted),
        variance_quantity=Decimal("2"),
        variance_percentage=Decimal(variance_percentage),
        variance_value=Decimal(variance_value),
        counted_at=datetime.now(timezone.utc),
    )


async def stored_values(session_factory, item_id):
    async with session_factory() as session:
        result = await session.execute(
            select(
                StockCountItem.counted_quantity,
                StockCountItem.variance_value,
                StockCountItem.variance_percentage,
                StockCountItem.status,
            ).where(StockCountItem.id == item_id)
        )
        return result.one()


# ============================================================================
# SINK
# ============================================================================

async def test_sink_writes_recomputed_variance(session_factory, stock_count):
    flour = item_named(stock_count, "Plain Flour")
    sink = SqlCountItemSink(session_factory, count_id=stock_count.id)

    persisted = await sink.write(CountItem.model_validate(flour), client_write(flour, "12"))

    assert persisted.variance_value == Decimal("5.00")
    assert persisted.variance_mismatch == []
    row = await stored_values(session_factory, flour.id)
    assert row.counted_quantity == Decimal("12")
    assert row.variance_value == Decimal("5.00")
    assert row.status == "counted"

    async with session_factory() as session:
        is_counted = await session.scalar(
            select(StockCountItem.is_counted).where(StockCountItem.id == flour.id)
        )
    assert is_counted is True


async def test_sink_flags_and_overrides_client_variance(session_factory, stock_count, caplog):
    flour = item_named(stock_count, "Plain Flour")
    sink = SqlCountItemSink(session_factory)
    tampered = client_write(flour, "12", variance_value="-999", variance_percentage="1")

    with caplog.at_level(logging.WARNING, logger="app.services.stock_count.persistence"):
        persisted = await sink.write(CountItem.model_validate(flour), tampered)

    assert "Variance mismatch" in caplog.text
    assert "variance_value" in caplog.text
    assert persisted.variance_value == Decimal("5.00")
    assert persisted.variance_percentage == Decimal("20")
    assert persisted.variance_mismatch == ["variance_percentage", "variance_value"]
    row = await stored_values(session_factory, flour.id)
    assert row.variance_value == Decimal("5.00")


async def test_sink_uses_stored_expected_not_client_snapshot(session_factory, stock_count):
    butter = item_named(stock_count, "butter")
    stale = CountItem.model_validate(butter).model_copy(update={"theoretical_closing": Decimal("100")})
    sink = SqlCountItemSink(session_factory)

    persisted = await sink.write(stale, client_write(butter, "6"))

    # Stored expected is 4 at 7.00 each
    assert persisted.variance_quantity == Decimal("2")
    assert persisted.variance_value == Decimal("14")


async def test_sink_rejects_unknown_item(session_factory, stock_count):
    flour = item_named(stock_count, "Plain Flour")
    ghost = CountItem.model_validate(flour).model_copy(update={"id": uuid4()})
    sink = SqlCountItemSink(session_factory)

    with pytest.raises(LookupError):
        await sink.write(ghost, client_write(ghost, "1"))


async def test_sink_rejects_item_of_another_count(session_factory, stock_count):
    flour = item_named(stock_count, "Plain Flour")
    sink = SqlCountItemSink(session_factory, count_id=uuid4())

    with pytest.raises(LookupError):
        await sink.write(CountItem.model_validate(flour), client_write(flour, "1"))


async def test_missing_is_counted_column_trips_breaker(engine, session_factory, stock_count, caplog):
    flour = item_named(stock_count, "Plain Flour")
    cake_box = item_named(stock_count, "Cake Box")
    async with engine.begin() as conn:
        await conn.execute(text("ALTER TABLE stock_count_items DROP COLUMN is_counted"))

    breaker = FeatureBreaker()
    sink = SqlCountItemSink(session_factory, breaker=breaker)

    with caplog.at_level(logging.WARNING, logger="app.core.circuit_breaker"):
        await sink.write(CountItem.model_validate(flour), client_write(flour, "12"))

    assert not breaker.allows(IS_COUNTED_COLUMN)
    assert "disabled for this session" in caplog.text
    assert (await stored_values(session_factory, flour.id)).counted_quantity == Decimal("12")

    # Later writes skip the column straight away
    await sink.write(CountItem.model_validate(cake_box), client_write(cake_box, "90"))
    assert (await stored_values(session_factory, cake_box.id)).counted_quantity == Decimal("90")

    # A fresh breaker (next request) tries the column again
    assert FeatureBreaker().allows(IS_COUNTED_COLUMN)


# ============================================================================
# BREAKER
# ============================================================================

def test_missing_column_detection():
    postgres = Exception('column "is_counted" of relation "stock_count_items" does not exist')
    sqlite = Exception("no such column: is_counted")
    other = Exception('column "counted_at" does not exist')

    assert is_missing_column_error(postgres, "is_counted")
    assert is_missing_column_error(sqlite, "is_counted")
    assert not is_missing_column_error(other, "is_counted")
    assert not is_missing_column_error(Exception("deadlock detected on is_counted"), "is_counted")


def test_breaker_trips_once_per_feature(caplog):
    breaker = FeatureBreaker()
    assert breaker.allows(IS_COUNTED_COLUMN)

    with caplog.at_level(logging.WARNING, logger="app.core.circuit_breaker"):
        breaker.trip(IS_COUNTED_COLUMN, "missing")
        breaker.trip(IS_COUNTED_COLUMN, "missing again")

    assert not breaker.allows(IS_COUNTED_COLUMN)
    assert breaker.allows("stock_counts.some_other_column")
    assert caplog.text.count("disabled for this session") == 1
    assert "missing" in caplog.text


# ============================================================================
# DIRECTORY
# ============================================================================

async def test_directory_reads_site_area_and_region(db, org):
    directory = SqlOrganizationDirectory(db)

    site = await directory.get_site(org.site.id)
    area = await directory.get_area(site.area_id)
    region = await directory.get_region(area.region_id)

    assert site.name == "Leeds Central"
    assert area.manager_id == org.area_manager.id
    assert region.manager_id == org.regional.id
    assert await directory.get_site(uuid4()) is None


async def test_directory_reads_legacy_manager_column(db, org):
    legacy = Region(company_id=org.company.id, name="South", manager_id=org.regional.id)
    db.add(legacy)
    await db.commit()

    region = await SqlOrganizationDirectory(db).get_region(legacy.id)

    assert region.manager_id == org.regional.id


def test_assign_manager_keeps_columns_in_sync():
    region = Region(name="East")
    area = Area(name="Hull")
    manager_id = uuid4()

    assign_manager(region, manager_id)
    assign_manager(area, manager_id)

    assert region.regional_manager_id == region.manager_id == manager_id
    assert area.area_manager_id == area.manager_id == manager_id
    assert region.effective_manager_id == manager_id

    with pytest.raises(TypeError):
        assign_manager(Site(name="Nowhere"), manager_id)


async def test_directory_skips_archived_profiles(db, org):
    org.staff.archived_at = datetime.now(timezone.utc)
    await db.commit()
    directory = SqlOrganizationDirectory(db)

    assert await directory.get_profile(org.staff.id) is None
    site_profiles = await directory.list_site_profiles(org.company.id, org.site.id)
    assert [p.id for p in site_profiles] == [org.site_manager.id]

    company_profiles = await directory.list_company_profiles(org.company.id)
    assert org.outsider.id not in {p.id for p in company_profiles}
    assert org.staff.id not in {p.id for p in company_profiles}


async def test_workflow_first_step_role(db, org):
    config = SqlWorkflowConfig(db)

    assert await config.get_first_step_role(org.company.id) == "Regional Manager"
    assert await config.get_first_step_role(org.company.id, WorkflowType.ROTA.value) is None
    assert await config.get_first_step_role(org.other_company.id) is None


async def test_workflow_uses_lowest_step_of_active_workflow(db, org):
    inactive = ApprovalWorkflow(
        company_id=org.other_company.id,
        name="Old review",
        type=WorkflowType.STOCK_COUNT.value,
        is_active=False,
    )
    inactive.steps.append(ApprovalStep(step_order=1, approver_role="Owner"))
    active = ApprovalWorkflow(
        company_id=org.other_company.id,
        name="Review",
        type=WorkflowType.STOCK_COUNT.value,
        is_active=True,
    )
    active.steps.extend([
        ApprovalStep(step_order=2, approver_role="Owner"),
        ApprovalStep(step_order=1, approver_role=" Finance Manager "),
    ])
    db.add_all([inactive, active])
    await db.commit()

    role = await SqlWorkflowConfig(db).get_first_step_role(org.other_company.id)

    assert role == "Finance Manager"


async def test_profile_display_name_falls_back_to_email(db, org):
    nameless = Profile(company_id=org.company.id, email="temp@example.com", app_role="Staff")
    db.add(nameless)
    await db.commit()

    profile = await SqlOrganizationDirectory(db).get_profile(nameless.id)

    assert profile.display_name == "temp@example.com"
