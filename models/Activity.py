from database import Base
from sqlalchemy import Column, Integer, String, Text, Float, ForeignKey, Numeric, DateTime, Enum as SQLEnum, Index
from sqlalchemy.orm import relationship
from utils.time_utils import utcnow
import enum


class ActivityCategory(enum.Enum):
    sightseeing = "sightseeing"
    food = "food"
    adventure = "adventure"
    culture = "culture"
    nightlife = "nightlife"
    shopping = "shopping"


class Activity(Base):
    __tablename__ = "activities"

    id = Column(Integer, primary_key=True, index=True)
    # NULL city means the activity is not tied to one place
    city_id = Column(Integer, ForeignKey('cities.id', ondelete='CASCADE'), nullable=True, index=True)
    name = Column(String(200), nullable=False)
    category = Column(SQLEnum(ActivityCategory, name="activity_category"), nullable=False, index=True)
    description = Column(Text, nullable=True)
    image_url = Column(String(500), nullable=True)
    cost_min = Column(Numeric(12, 2, asdecimal=False), default=0, nullable=False)
    cost_max = Column(Numeric(12, 2, asdecimal=False), default=0, nullable=False)
    rating = Column(Float, default=0, nullable=False)
    duration_hours = Column(Float, nullable=True)
    popularity_score = Column(Float, default=0, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    city = relationship("City", back_populates="activities")

    __table_args__ = (
        Index('ix_activity_city_category', 'city_id', 'category'),
        Index('ix_activity_rating', 'rating'),
    )

    def __repr__(self):
        return f"<Activity(id={self.id}, name={self.name!r}, city_id={self.city_id})>"

    def to_dict(self):
        return {
            "id": self.id,
            "city_id": self.city_id,
            "city_name": self.city.name if self.city else None,
            "country": self.city.country if self.city else None,
            "name": self.name,
            "category": self.category.value,
            "description": self.description,
            "image_url": self.image_url,
            "cost_min": self.cost_min,
            "cost_max": self.cost_max,
            "rating": self.rating,
            "duration_hours": self.duration_hours,
            "popularity_score": self.popularity_score,
        }
