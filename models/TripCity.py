from database import Base
from sqlalchemy import Column, Integer, Date, ForeignKey, UniqueConstraint, Index
from sqlalchemy.orm import relationship


class TripCity(Base):
    __tablename__ = "trip_cities"

    id = Column(Integer, primary_key=True, index=True)
    trip_id = Column(Integer, ForeignKey('trips.id', ondelete='CASCADE'), nullable=False, index=True)
    city_id = Column(Integer, ForeignKey('cities.id', ondelete='CASCADE'), nullable=False, index=True)
    # contiguous 0..N-1 within a trip
    arrival_order = Column(Integer, nullable=False, default=0)
    arrival_date = Column(Date, nullable=True)
    departure_date = Column(Date, nullable=True)

    trip = relationship("Trip", back_populates="trip_cities")
    city = relationship("City")

    __table_args__ = (
        UniqueConstraint('trip_id', 'city_id', name='uq_trip_city'),  # A city appears once per trip
        Index('ix_trip_city_order', 'trip_id', 'arrival_order'),
    )

    def to_dict(self):
        data = {
            "trip_id": self.trip_id,
            "city_id": self.city_id,
            "arrival_order": self.arrival_order,
            "arrival_date": self.arrival_date.isoformat() if self.arrival_date else None,
            "departure_date": self.departure_date.isoformat() if self.departure_date else None,
        }
        if self.city is not None:
            data.update({
                "name": self.city.name,
                "country": self.city.country,
                "latitude": self.city.latitude,
                "longitude": self.city.longitude,
                "cost_index": self.city.cost_index,
            })
        return data
