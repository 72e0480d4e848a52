"""Vehicle model for the rental fleet."""

from sqlalchemy import Boolean, Column, DateTime, Integer, Numeric, String
from sqlalchemy.orm import relationship

from fleetdesk.core.time import utc_now
from fleetdesk.db.base_class import Base


class Vehicle(Base):
    __tablename__ = "vehicles"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    brand = Column(String(100), nullable=False)
    model = Column(String(100), nullable=False)
    price_per_day = Column(Numeric(10, 2), nullable=False)
    location = Column(String(255), nullable=True)
    # Written only by services.availability
    available = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)

    bookings = relationship("Booking", back_populates="vehicle")

    @property
    def display_name(self) -> str:
        return f"{self.brand} {self.model}"
