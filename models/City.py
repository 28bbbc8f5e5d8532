from database import Base
from sqlalchemy import Column, Integer, String, Text, Float, DateTime, Index
from sqlalchemy.orm import relationship
from utils.time_utils import utcnow


class City(Base):
    __tablename__ = "cities"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False, index=True)
    country = Column(String(100), nullable=False, index=True)
    description = Column(Text, nullable=True)
    image_url = Column(String(500), nullable=True)
    cost_index = Column(Integer, default=5, nullable=False)  # 1 (cheap) .. 10 (expensive)
    popularity_score = Column(Float, default=0, nullable=False)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    activities = relationship("Activity", back_populates="city", passive_deletes=True)

    __table_args__ = (
        Index('ix_city_popularity', 'popularity_score'),
    )

    def __repr__(self):
        return f"<City(id={self.id}, name={self.name!r}, country={self.country!r})>"

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "country": self.country,
            "description": self.description,
            "image_url": self.image_url,
            "cost_index": self.cost_index,
            "popularity_score": self.popularity_score,
            "latitude": self.latitude,
            "longitude": self.longitude,
        }
