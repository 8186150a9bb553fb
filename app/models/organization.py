"""
Organization Models - Company > Region > Area > Site hierarchy and Profiles.

The hosted schema keeps two mirrored manager columns on regions and areas
(`regional_manager_id` / `area_manager_id` and the generic `manager_id`).
Reads go through `effective_manager_id`; writes go through `assign_manager()`.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional, List, Union

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.db_types import UUIDType


class Company(Base):
    """Tenant company. Every other organization record belongs to one."""
    __tablename__ = "companies"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    regions: Mapped[List["Region"]] = relationship("Region", back_populates="company")
    sites: Mapped[List["Site"]] = relationship("Site", back_populates="company")

    def __repr__(self) -> str:
        return f"<Company(name='{self.name}')>"


class Region(Base):
    """
    Region within a company.
    Supports: Company > Region > Area > Site
    """
    __tablename__ = "regions"
    __table_args__ = (
        Index("ix_regions_company", "company_id"),
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
    name: Mapped[str] = mapped_column(String(100), nullable=False)

    # Mirrored manager columns (see assign_manager)
    regional_manager_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("profiles.id", ondelete="SET NULL"),
        nullable=True
    )
    manager_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("profiles.id", ondelete="SET NULL"),
        nullable=True,
        comment="Legacy mirror of regional_manager_id"
    )

    company: Mapped["Company"] = relationship("Company", back_populates="regions")
    areas: Mapped[List["Area"]] = relationship("Area", back_populates="region")

    @property
    def effective_manager_id(self) -> Optional[uuid.UUID]:
        return self.regional_manager_id or self.manager_id

    def __repr__(self) -> str:
        return f"<Region(name='{self.name}')>"


class Area(Base):
    """Area grouping sites within a region."""
    __tablename__ = "areas"
    __table_args__ = (
        Index("ix_areas_company", "company_id"),
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
    region_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("regions.id", ondelete="SET NULL"),
        nullable=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)

    # Mirrored manager columns (see assign_manager)
    area_manager_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("profiles.id", ondelete="SET NULL"),
        nullable=True
    )
    manager_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("profiles.id", ondelete="SET NULL"),
        nullable=True,
        comment="Legacy mirror of area_manager_id"
    )

    region: Mapped[Optional["Region"]] = relationship("Region", back_populates="areas")

    @property
    def effective_manager_id(self) -> Optional[uuid.UUID]:
        return self.area_manager_id or self.manager_id

    def __repr__(self) -> str:
        return f"<Area(name='{self.name}')>"


class Site(Base):
    """
    A physical site (kitchen, store, venue).

    A site normally belongs to an area; some sites are linked straight to a
    region without an area.
    """
    __tablename__ = "sites"
    __table_args__ = (
        Index("ix_sites_company", "company_id"),
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
    area_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("areas.id", ondelete="SET NULL"),
        nullable=True
    )
    region_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("regions.id", ondelete="SET NULL"),
        nullable=True,
        comment="Direct region link for sites without an area"
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)

    company: Mapped["Company"] = relationship("Company", back_populates="sites")

    def __repr__(self) -> str:
        return f"<Site(name='{self.name}')>"


class Profile(Base):
    """
    User profile. The id equals the auth user id issued by the hosted auth service.
    """
    __tablename__ = "profiles"
    __table_args__ = (
        Index("ix_profiles_company_role", "company_id", "app_role"),
        Index("ix_profiles_site", "site_id"),
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
    site_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType(as_uuid=True),
        ForeignKey("sites.id", ondelete="SET NULL"),
        nullable=True
    )
    full_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    app_role: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
        comment="Owner, Admin, Regional Manager, Area Manager, Manager, Staff, ..."
    )
    archived_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def display_name(self) -> str:
        return self.full_name or self.email or "Unknown"

    def __repr__(self) -> str:
        return f"<Profile(name='{self.display_name}', role='{self.app_role}')>"


def assign_manager(record: Union[Region, Area], profile_id: Optional[uuid.UUID]) -> None:
    """Set the manager of a region or area, keeping the mirrored columns in sync."""
    if isinstance(record, Region):
        record.regional_manager_id = profile_id
    elif isinstance(record, Area):
        record.area_manager_id = profile_id
    else:
        raise TypeError(f"Cannot assign a manager to {type(record).__name__}")
    record.manager_id = profile_id
