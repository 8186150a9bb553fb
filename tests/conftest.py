import os
import tempfile

# Settings are read at import time; point them at a throwaway database.
_TEST_DIR = tempfile.mkdtemp(prefix="stock-count-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TEST_DIR}/app.db"
os.environ["SUPABASE_JWT_SECRET"] = "test-jwt-secret-for-stock-counts"

from datetime import date  # noqa: E402
from decimal import Decimal  # noqa: E402
from types import SimpleNamespace  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

from app.database import Base, register_models  # noqa: E402
from app.models.approval import ApprovalStep, ApprovalWorkflow, WorkflowType  # noqa: E402
from app.models.organization import Area, Company, Profile, Region, Site, assign_manager  # noqa: E402
from app.models.stock_count import StockCount, StockCountItem, StockCountStatus  # noqa: E402


@pytest.fixture
async def engine(tmp_path):
    register_models()
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def org(db):
    """Company > North region > Leeds area > Leeds Central site, with staff."""
    company = Company(name="Demo Bakery Ltd")
    other_company = Company(name="Other Co")
    db.add_all([company, other_company])
    await db.flush()

    region = Region(company_id=company.id, name="North")
    db.add(region)
    await db.flush()

    area = Area(company_id=company.id, region_id=region.id, name="Leeds")
    db.add(area)
    await db.flush()

    site = Site(company_id=company.id, area_id=area.id, name="Leeds Central")
    db.add(site)
    await db.flush()

    def profile(name, role, company_id=company.id, site_id=None):
        p = Profile(company_id=company_id, site_id=site_id, full_name=name, app_role=role)
        db.add(p)
        return p

    regional = profile("Rhys Regional", "Regional Manager")
    area_manager = profile("Aisha Area", "Area Manager")
    site_manager = profile("Sam Site", "Manager", site_id=site.id)
    staff = profile("Sol Staff", "Staff", site_id=site.id)
    outsider = profile("Otto Outsider", "Owner", company_id=other_company.id)
    await db.flush()

    assign_manager(region, regional.id)
    assign_manager(area, area_manager.id)

    workflow = ApprovalWorkflow(
        company_id=company.id,
        name="Stock count review",
        type=WorkflowType.STOCK_COUNT.value,
        is_active=True,
    )
    workflow.steps.append(ApprovalStep(step_order=1, approver_role="Regional Manager"))
    db.add(workflow)
    await db.commit()

    return SimpleNamespace(
        company=company,
        other_company=other_company,
        region=region,
        area=area,
        site=site,
        regional=regional,
        area_manager=area_manager,
        site_manager=site_manager,
        staff=staff,
        outsider=outsider,
    )


@pytest.fixture
async def stock_count(db, org):
    """An active count with items in three libraries (one legacy tag spelling)."""
    count = StockCount(
        company_id=org.company.id,
        site_id=org.site.id,
        name="Leeds Central monthly count",
        count_date=date(2026, 3, 1),
        status=StockCountStatus.ACTIVE.value,
        libraries_included=["ingredients", "packaging", "chemicals"],
    )
    count.items = [
        StockCountItem(library_type="ingredients_library", item_name="Plain Flour",
                       theoretical_closing=Decimal("10"), unit_cost=Decimal("2.50")),
        StockCountItem(library_type="ingredients", item_name="butter",
                       theoretical_closing=Decimal("4"), unit_cost=Decimal("7")),
        StockCountItem(library_type="ingredients", item_name="Caster Sugar",
                       theoretical_closing=Decimal("0"), unit_cost=Decimal("1")),
        StockCountItem(library_type="packaging", item_name="Cake Box",
                       theoretical_closing=Decimal("100"), unit_cost=Decimal("0.5")),
        StockCountItem(library_type="chemicals", item_name="Sanitiser",
                       theoretical_closing=Decimal("5"), unit_cost=None),
    ]
    db.add(count)
    await db.commit()
    return count
