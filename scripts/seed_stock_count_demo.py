"""
Seed a demo company with an organization hierarchy and an open stock count.

Creates:
1. Company > Region > Area > Site
2. Profiles: owner, regional manager, area manager, site manager, staff
3. An active stock_count approval workflow (first step: Regional Manager)
4. A stock count with items in several libraries

Run from the repository root:
    python -m scripts.seed_stock_count_demo
"""
import asyncio
import logging
from datetime import date
from decimal import Decimal

from app.config import settings
from app.database import get_db_session, init_db
from app.models.approval import ApprovalStep, ApprovalWorkflow, WorkflowType
from app.models.organization import Area, Company, Profile, Region, Site, assign_manager
from app.models.stock_count import StockCount, StockCountItem, StockCountStatus

logger = logging.getLogger(__name__)


DEMO_ITEMS = [
    # (library, name, unit, expected, unit cost)
    ("ingredients", "Plain Flour", "kg", Decimal("25"), Decimal("0.85")),
    ("ingredients", "Caster Sugar", "kg", Decimal("10"), Decimal("1.20")),
    ("ingredients", "butter", "kg", Decimal("6.5"), Decimal("7.40")),
    ("packaging", "Cake Box 10in", "each", Decimal("120"), Decimal("0.32")),
    ("packaging", "Coffee Cup 12oz", "each", Decimal("500"), Decimal("0.09")),
    ("chemicals", "Sanitiser 5L", "bottle", Decimal("4"), Decimal("6.50")),
    ("first_aid", "Blue Plasters", "box", Decimal("3"), Decimal("2.10")),
]


async def seed() -> None:
    await init_db()

    async with get_db_session() as db:
        company = Company(name=settings.SEED_COMPANY_NAME or "Demo Bakery Ltd")
        db.add(company)
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

        profiles = {
            role: Profile(
                company_id=company.id,
                site_id=site.id if role in ("Manager", "Staff") else None,
                full_name=name,
                email=f"{name.split()[0].lower()}@example.com",
                app_role=role,
            )
            for role, name in [
                ("Owner", "Olivia Owner"),
                ("Regional Manager", "Rhys Regional"),
                ("Area Manager", "Aisha Area"),
                ("Manager", "Sam Site"),
                ("Staff", "Sol Staff"),
            ]
        }
        db.add_all(profiles.values())
        await db.flush()

        assign_manager(region, profiles["Regional Manager"].id)
        assign_manager(area, profiles["Area Manager"].id)

        workflow = ApprovalWorkflow(
            company_id=company.id,
            name="Stock count review",
            type=WorkflowType.STOCK_COUNT.value,
            is_active=True,
        )
        workflow.steps.append(ApprovalStep(step_order=1, step_name="Review", approver_role="Regional Manager"))
        db.add(workflow)

        count = StockCount(
            company_id=company.id,
            site_id=site.id,
            name=f"{site.name} monthly count",
            count_date=date.today(),
            status=StockCountStatus.ACTIVE.value,
            libraries_included=["ingredients", "packaging", "chemicals", "first_aid"],
            total_items=len(DEMO_ITEMS),
            created_by=profiles["Manager"].id,
        )
        count.items = [
            StockCountItem(
                library_type=library,
                item_name=name,
                unit_of_measurement=unit,
                theoretical_closing=expected,
                unit_cost=cost,
            )
            for library, name, unit, expected, cost in DEMO_ITEMS
        ]
        db.add(count)
        await db.flush()

        logger.info(f"Seeded company '{company.name}' ({company.id})")
        logger.info(f"Stock count {count.id} at site '{site.name}' with {len(DEMO_ITEMS)} items")
        for role, profile in profiles.items():
            logger.info(f"  {role}: {profile.full_name} ({profile.id})")


if __name__ == "__main__":
    logging.basicConfig(level=settings.LOG_LEVEL.upper(), format="%(levelname)s %(message)s")
    asyncio.run(seed())
