"""Rental packages (add-ons) and their custom cost lines."""

from enum import StrEnum

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship

from fleetdesk.core.time import utc_now
from fleetdesk.db.base_class import Base


class PackageType(StrEnum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    AIRPORT_PICKUP = "AIRPORT_PICKUP"
    AIRPORT_DROP = "AIRPORT_DROP"
    AIRPORT_ROUND = "AIRPORT_ROUND"
    HOURLY = "HOURLY"
    CUSTOM = "CUSTOM"


class Package(Base):
    __tablename__ = "packages"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    type = Column(String(20), nullable=False, default=PackageType.CUSTOM)
    base_price = Column(Numeric(10, 2), nullable=True)
    price_per_day = Column(Numeric(10, 2), nullable=True)
    price_per_hour = Column(Numeric(10, 2), nullable=True)
    discount = Column(Numeric(5, 2), nullable=True)
    min_duration = Column(Integer, nullable=True)
    max_duration = Column(Integer, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)

    custom_costs = relationship("PackageCustomCost", back_populates="package", cascade="all, delete-orphan")


class PackageCustomCost(Base):
    __tablename__ = "package_custom_costs"

    id = Column(Integer, primary_key=True, index=True)
    package_id = Column(Integer, ForeignKey("packages.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    is_optional = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)

    package = relationship("Package", back_populates="custom_costs")
