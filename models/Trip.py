from database import Base
from sqlalchemy import (
    Boolean, Column, Date, DateTime, Enum as SQLEnum, ForeignKey, Index, Integer,
    Numeric, String, Text,
)
from sqlalchemy.orm import relationship
from utils.time_utils import utcnow, isoformat
from datetime import date
import enum


class Currency(enum.Enum):
    INR = "INR"
    USD = "USD"
    EUR = "EUR"
    GBP = "GBP"
    AED = "AED"


class TravelStyle(enum.Enum):
    budget = "budget"
    leisure = "leisure"
    luxury = "luxury"
    adventure = "adventure"
    cultural = "cultural"


class Privacy(enum.Enum):
    public = "public"
    private = "private"


class TripStatus(enum.Enum):
    """Derived from dates (see derive_status); never stored."""
    planning = "planning"
    upcoming = "upcoming"
    in_progress = "in-progress"
    completed = "completed"


class Trip(Base):
    __tablename__ = "trips"

    id = Column(Integer, primary_key=True, index=True)
    owner_user_id = Column(String(32), ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    destination = Column(String(200), nullable=True)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    budget = Column(Numeric(12, 2, asdecimal=False), nullable=True)
    currency = Column(SQLEnum(Currency, name="trip_currency"), default=Currency.INR, nullable=False)
    travel_style = Column(SQLEnum(TravelStyle, name="trip_travel_style"), default=TravelStyle.leisure, nullable=False)
    group_size = Column(Integer, default=1, nullable=False)
    privacy = Column(SQLEnum(Privacy, name="trip_privacy"), default=Privacy.private, nullable=False, index=True)
    cover_photo_path = Column(String(255), nullable=True)
    # explicit "completed" set by the owner; every other status is derived
    is_completed = Column(Boolean, default=False, nullable=False)
    is_featured = Column(Boolean, default=False, nullable=False)
    share_token = Column(String(64), unique=True, index=True, nullable=True)

    # rollups recomputed inside every itinerary/city mutation
    total_cost = Column(Numeric(12, 2, asdecimal=False), default=0, nullable=False)
    activity_count = Column(Integer, default=0, nullable=False)
    city_count = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    owner = relationship("User", back_populates="trips")
    items = relationship(
        "ItineraryItem", back_populates="trip", cascade="all, delete-orphan",
        passive_deletes=True, order_by="ItineraryItem.order_index",
    )
    trip_cities = relationship(
        "TripCity", back_populates="trip", cascade="all, delete-orphan",
        passive_deletes=True, order_by="TripCity.arrival_order",
    )

    __table_args__ = (
        Index('ix_trip_owner_created', 'owner_user_id', 'created_at'),  # For "my trips" listing
        Index('ix_trip_start_date', 'start_date'),  # For status/season analytics
    )

    def __repr__(self):
        return f"<Trip(id={self.id}, owner={self.owner_user_id}, title={self.title!r})>"

    def status(self, today: date) -> TripStatus:
        return derive_status(self, today)

    def to_dict(self, today: date, include_share_token: bool = True):
        data = {
            "id": self.id,
            "owner_user_id": self.owner_user_id,
            "title": self.title,
            "description": self.description,
            "destination": self.destination,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "budget": self.budget,
            "currency": self.currency.value,
            "travel_style": self.travel_style.value,
            "group_size": self.group_size,
            "privacy": self.privacy.value,
            "cover_photo_path": self.cover_photo_path,
            "status": derive_status(self, today).value,
            "is_featured": bool(self.is_featured),
            "total_cost": self.total_cost or 0,
            "activity_count": self.activity_count or 0,
            "city_count": self.city_count or 0,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }
        if include_share_token:
            data["share_token"] = self.share_token
        return data


def derive_status(trip, today: date) -> TripStatus:
    """Canonical trip status.

    Explicit completion wins. Otherwise: no start date is still planning,
    before the start is upcoming, after the end is completed, and anything
    in between (or started with no end date) is in progress.
    """
    if trip.is_completed:
        return TripStatus.completed
    if trip.start_date is None:
        return TripStatus.planning
    if today < trip.start_date:
        return TripStatus.upcoming
    if trip.end_date is not None and today > trip.end_date:
        return TripStatus.completed
    return TripStatus.in_progress
