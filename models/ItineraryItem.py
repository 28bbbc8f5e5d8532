from database import Base
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Numeric, Enum as SQLEnum, Index
from sqlalchemy.orm import relationship
from utils.time_utils import utcnow, isoformat
import enum


class ItemCategory(enum.Enum):
    flight = "flight"
    hotel = "hotel"
    restaurant = "restaurant"
    activity = "activity"
    transport = "transport"
    other = "other"


class ItineraryItem(Base):
    __tablename__ = "itinerary_items"

    id = Column(Integer, primary_key=True, index=True)
    trip_id = Column(Integer, ForeignKey('trips.id', ondelete='CASCADE'), nullable=False, index=True)
    city_id = Column(Integer, ForeignKey('cities.id', ondelete='SET NULL'), nullable=True)
    activity_id = Column(Integer, ForeignKey('activities.id', ondelete='SET NULL'), nullable=True)
    category = Column(SQLEnum(ItemCategory, name="item_category"), default=ItemCategory.other, nullable=False)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    location = Column(String(255), nullable=True)
    start_time = Column(DateTime, nullable=True)
    end_time = Column(DateTime, nullable=True)
    cost = Column(Numeric(12, 2, asdecimal=False), nullable=True)
    notes = Column(Text, nullable=True)
    booking_reference = Column(String(100), nullable=True)
    # contiguous 0..N-1 within a trip
    order_index = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    trip = relationship("Trip", back_populates="items")

    __table_args__ = (
        Index('ix_item_trip_order', 'trip_id', 'order_index'),
        Index('ix_item_trip_category', 'trip_id', 'category'),
    )

    def __repr__(self):
        return f"<ItineraryItem(id={self.id}, trip_id={self.trip_id}, order_index={self.order_index})>"

    def to_dict(self):
        return {
            "id": self.id,
            "trip_id": self.trip_id,
            "city_id": self.city_id,
            "activity_id": self.activity_id,
            "category": self.category.value,
            "title": self.title,
            "description": self.description,
            "location": self.location,
            "start_time": isoformat(self.start_time),
            "end_time": isoformat(self.end_time),
            "cost": self.cost,
            "notes": self.notes,
            "booking_reference": self.booking_reference,
            "order_index": self.order_index,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }
