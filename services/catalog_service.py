"""City and activity catalog: search, popularity, lookups and admin writes."""

import logging
from typing import Iterable, List, Optional

from pydantic import BaseModel, Field
from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from models.Activity import Activity, ActivityCategory
from models.City import City
from models.Trip import Trip
from models.TripCity import TripCity
from utils.errors import NotFoundError, ValidationError
from utils.query_utils import clamp_limit, contains
from utils.text_utils import clean_text, format_name
from utils.validation import parse_input


# ---------- Input shapes ----------

class CityInput(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    country: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    image_url: Optional[str] = Field(None, max_length=500)
    cost_index: int = Field(5, ge=1, le=10)
    popularity_score: float = Field(0, ge=0)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)


class CityPatch(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    country: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    image_url: Optional[str] = Field(None, max_length=500)
    cost_index: Optional[int] = Field(None, ge=1, le=10)
    popularity_score: Optional[float] = Field(None, ge=0)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)


class ActivityInput(BaseModel):
    city_id: Optional[int] = None
    name: str = Field(..., min_length=1, max_length=200)
    category: ActivityCategory
    description: Optional[str] = None
    image_url: Optional[str] = Field(None, max_length=500)
    cost_min: float = Field(0, ge=0)
    cost_max: float = Field(0, ge=0)
    rating: float = Field(0, ge=0, le=5)
    duration_hours: Optional[float] = Field(None, gt=0)
    popularity_score: float = Field(0, ge=0)


class ActivityPatch(BaseModel):
    city_id: Optional[int] = None
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    category: Optional[ActivityCategory] = None
    description: Optional[str] = None
    image_url: Optional[str] = Field(None, max_length=500)
    cost_min: Optional[float] = Field(None, ge=0)
    cost_max: Optional[float] = Field(None, ge=0)
    rating: Optional[float] = Field(None, ge=0, le=5)
    duration_hours: Optional[float] = Field(None, gt=0)
    popularity_score: Optional[float] = Field(None, ge=0)


# ---------- Cities ----------

def _trip_counts(db: Session, city_ids: Iterable[int]) -> dict:
    city_ids = list(city_ids)
    if not city_ids:
        return {}
    rows = (
        db.query(TripCity.city_id, func.count(TripCity.id))
        .filter(TripCity.city_id.in_(city_ids))
        .group_by(TripCity.city_id)
        .all()
    )
    return dict(rows)


def _city_views(db: Session, cities: List[City]) -> List[dict]:
    counts = _trip_counts(db, [c.id for c in cities])
    return [dict(city.to_dict(), trip_count=counts.get(city.id, 0)) for city in cities]


def _city_match_position(city: City, term: str) -> int:
    # position in the name, else in the country offset past the name
    name = (city.name or "").lower()
    pos = name.find(term)
    if pos >= 0:
        return pos
    country_pos = (city.country or "").lower().find(term)
    return len(name) + 1 + country_pos if country_pos >= 0 else len(name) + 1000


def search_cities(db: Session, query: Optional[str], country: Optional[str] = None, limit: Optional[int] = 20) -> List[dict]:
    limit = clamp_limit(limit)
    term = (query or "").strip().lower()
    if limit == 0:
        return []

    q = db.query(City)
    if term:
        q = q.filter(contains(City.name, term) | contains(City.country, term))
    if country:
        q = q.filter(func.lower(City.country) == country.strip().lower())

    cities = q.all()
    cities.sort(key=lambda c: (
        _city_match_position(c, term) if term else 0,
        -(c.popularity_score or 0),
        c.name.lower(),
    ))
    logging.debug("catalog.search_cities q=%s country=%s hits=%s", term, country, len(cities))
    return _city_views(db, cities[:limit])


def popular_cities(db: Session, limit: Optional[int] = 10) -> List[dict]:
    limit = clamp_limit(limit, default=10)
    if limit == 0:
        return []
    cities = db.query(City).order_by(City.popularity_score.desc(), City.name.asc()).limit(limit).all()
    return _city_views(db, cities)


def get_city_row(db: Session, city_id: int) -> City:
    city = db.get(City, city_id)
    if city is None:
        raise NotFoundError("City not found")
    return city


def get_city(db: Session, city_id: int) -> dict:
    city = get_city_row(db, city_id)
    data = _city_views(db, [city])[0]
    data["activity_count"] = db.query(func.count(Activity.id)).filter(Activity.city_id == city.id).scalar() or 0
    return data


def countries(db: Session) -> List[dict]:
    rows = (
        db.query(City.country, func.count(City.id))
        .group_by(City.country)
        .order_by(City.country.asc())
        .all()
    )
    return [{"country": country, "city_count": count} for country, count in rows]


def list_cities(db: Session, query: Optional[str] = None, limit: Optional[int] = 50, offset: int = 0) -> dict:
    q = db.query(City)
    if query and query.strip():
        q = q.filter(contains(City.name, query.strip()) | contains(City.country, query.strip()))
    total = q.count()
    limit = clamp_limit(limit, default=50)
    cities = q.order_by(City.name.asc()).offset(max(offset, 0)).limit(limit).all() if limit else []
    return {"cities": _city_views(db, cities), "total": total, "limit": limit, "offset": offset}


def create_city(db: Session, payload) -> City:
    data = parse_input(CityInput, payload)
    city = City(
        name=format_name(data.name),
        country=format_name(data.country),
        description=clean_text(data.description),
        image_url=clean_text(data.image_url),
        cost_index=data.cost_index,
        popularity_score=data.popularity_score,
        latitude=data.latitude,
        longitude=data.longitude,
    )
    if not city.name or not city.country:
        raise ValidationError("name and country are required")
    db.add(city)
    db.flush()
    logging.info("catalog.city_create id=%s name=%s", city.id, city.name)
    return city


def update_city(db: Session, city_id: int, payload) -> City:
    city = get_city_row(db, city_id)
    patch = parse_input(CityPatch, payload).model_dump(exclude_unset=True)
    for key, value in patch.items():
        if value is None and key in ("name", "country", "cost_index", "popularity_score"):
            raise ValidationError(f"{key} cannot be null")
        if key in ("name", "country"):
            value = format_name(value)
            if not value:
                raise ValidationError(f"{key} cannot be blank")
        elif key in ("description", "image_url"):
            value = clean_text(value)
        setattr(city, key, value)
    db.flush()
    logging.info("catalog.city_update id=%s fields=%s", city.id, sorted(patch))
    return city


def delete_city(db: Session, city_id: int) -> List[int]:
    """Delete a city and its trip links; returns the ids of trips that lost a stop."""
    city = get_city_row(db, city_id)
    links = db.query(TripCity).filter(TripCity.city_id == city_id).all()
    trip_ids = sorted({link.trip_id for link in links})
    for link in links:
        db.delete(link)
    db.delete(city)
    db.flush()

    # keep arrival_order contiguous and city_count current on the affected trips
    for trip_id in trip_ids:
        remaining = (
            db.query(TripCity).filter(TripCity.trip_id == trip_id)
            .order_by(TripCity.arrival_order.asc(), TripCity.id.asc()).all()
        )
        for position, link in enumerate(remaining):
            link.arrival_order = position
        trip = db.get(Trip, trip_id)
        if trip is not None:
            trip.city_count = len(remaining)
            db.expire(trip, ["trip_cities"])
    db.flush()
    logging.info("catalog.city_delete id=%s affected_trips=%s", city_id, trip_ids)
    return trip_ids


# ---------- Activities ----------

def _activity_query(db: Session):
    return db.query(Activity).options(joinedload(Activity.city))


def _apply_activity_filters(q, category=None, cost_min=None, cost_max=None, min_rating=None, city_id=None):
    if category:
        try:
            q = q.filter(Activity.category == ActivityCategory(category))
        except ValueError:
            raise ValidationError(f"Unknown activity category: {category}")
    if cost_min is not None:
        q = q.filter(Activity.cost_min >= cost_min)
    if cost_max is not None:
        q = q.filter(Activity.cost_max <= cost_max)
    if min_rating is not None:
        q = q.filter(Activity.rating >= min_rating)
    if city_id is not None:
        q = q.filter(Activity.city_id == city_id)
    return q


def search_activities(
    db: Session,
    query: Optional[str] = None,
    category: Optional[str] = None,
    cost_min: Optional[float] = None,
    cost_max: Optional[float] = None,
    min_rating: Optional[float] = None,
    city_id: Optional[int] = None,
    limit: Optional[int] = 20,
) -> List[dict]:
    limit = clamp_limit(limit)
    if limit == 0:
        return []
    term = (query or "").strip().lower()

    q = _apply_activity_filters(_activity_query(db), category, cost_min, cost_max, min_rating, city_id)
    if term:
        q = q.filter(contains(Activity.name, term) | contains(Activity.description, term))

    activities = q.all()
    activities.sort(key=lambda a: (
        0 if not term or term in (a.name or "").lower() else 1,
        -(a.rating or 0),
        -(a.popularity_score or 0),
        a.name.lower(),
    ))
    return [a.to_dict() for a in activities[:limit]]


def popular_activities(db: Session, limit: Optional[int] = 10, city_id: Optional[int] = None) -> List[dict]:
    limit = clamp_limit(limit, default=10)
    if limit == 0:
        return []
    q = _apply_activity_filters(_activity_query(db), city_id=city_id)
    rows = q.order_by(Activity.popularity_score.desc(), Activity.rating.desc(), Activity.name.asc()).limit(limit).all()
    return [a.to_dict() for a in rows]


def activities_for_city(
    db: Session,
    city_id: int,
    category: Optional[str] = None,
    cost_min: Optional[float] = None,
    cost_max: Optional[float] = None,
    min_rating: Optional[float] = None,
    limit: Optional[int] = 50,
) -> List[dict]:
    get_city_row(db, city_id)
    limit = clamp_limit(limit, default=50)
    if limit == 0:
        return []
    q = _apply_activity_filters(_activity_query(db), category, cost_min, cost_max, min_rating, city_id)
    rows = q.order_by(Activity.rating.desc(), Activity.cost_min.asc(), Activity.name.asc()).limit(limit).all()
    return [a.to_dict() for a in rows]


def activities_for_cities(db: Session, city_ids: List[int], limit_per_city: int = 10) -> dict:
    """Top-rated activities for several cities at once, keyed by city id."""
    result = {}
    for city_id in dict.fromkeys(city_ids):
        if db.get(City, city_id) is None:
            continue
        rows = (
            _activity_query(db)
            .filter(Activity.city_id == city_id)
            .order_by(Activity.rating.desc(), Activity.cost_min.asc())
            .limit(clamp_limit(limit_per_city, default=10))
            .all()
        )
        result[str(city_id)] = [a.to_dict() for a in rows]
    return result


def get_activity_row(db: Session, activity_id: int) -> Activity:
    activity = _activity_query(db).filter(Activity.id == activity_id).first()
    if activity is None:
        raise NotFoundError("Activity not found")
    return activity


def get_activity(db: Session, activity_id: int) -> dict:
    return get_activity_row(db, activity_id).to_dict()


def categories(db: Session) -> List[dict]:
    counts = dict(
        db.query(Activity.category, func.count(Activity.id)).group_by(Activity.category).all()
    )
    return [
        {"category": category.value, "activity_count": counts.get(category, 0)}
        for category in ActivityCategory
    ]


def list_activities(db: Session, query: Optional[str] = None, category: Optional[str] = None,
                    city_id: Optional[int] = None, limit: Optional[int] = 50, offset: int = 0) -> dict:
    q = _apply_activity_filters(_activity_query(db), category=category, city_id=city_id)
    if query and query.strip():
        q = q.filter(contains(Activity.name, query.strip()) | contains(Activity.description, query.strip()))
    total = q.count()
    limit = clamp_limit(limit, default=50)
    rows = q.order_by(Activity.name.asc()).offset(max(offset, 0)).limit(limit).all() if limit else []
    return {"activities": [a.to_dict() for a in rows], "total": total, "limit": limit, "offset": offset}


def _check_costs(cost_min, cost_max):
    if cost_min is not None and cost_max is not None and cost_max < cost_min:
        raise ValidationError("cost_max must be greater than or equal to cost_min")


def create_activity(db: Session, payload) -> Activity:
    data = parse_input(ActivityInput, payload)
    _check_costs(data.cost_min, data.cost_max)
    if data.city_id is not None:
        get_city_row(db, data.city_id)

    activity = Activity(
        city_id=data.city_id,
        name=clean_text(data.name, 200),
        category=data.category,
        description=clean_text(data.description),
        image_url=clean_text(data.image_url),
        cost_min=data.cost_min,
        cost_max=data.cost_max,
        rating=data.rating,
        duration_hours=data.duration_hours,
        popularity_score=data.popularity_score,
    )
    if not activity.name:
        raise ValidationError("name is required")
    db.add(activity)
    db.flush()
    logging.info("catalog.activity_create id=%s name=%s city_id=%s", activity.id, activity.name, activity.city_id)
    return activity


def update_activity(db: Session, activity_id: int, payload) -> Activity:
    activity = get_activity_row(db, activity_id)
    patch = parse_input(ActivityPatch, payload).model_dump(exclude_unset=True)
    for key in ("name", "category", "cost_min", "cost_max", "rating", "popularity_score"):
        if key in patch and patch[key] is None:
            raise ValidationError(f"{key} cannot be null")

    _check_costs(patch.get("cost_min", activity.cost_min), patch.get("cost_max", activity.cost_max))
    if patch.get("city_id") is not None:
        get_city_row(db, patch["city_id"])

    for key, value in patch.items():
        if key in ("name", "description", "image_url"):
            value = clean_text(value)
        setattr(activity, key, value)
    db.flush()
    logging.info("catalog.activity_update id=%s fields=%s", activity.id, sorted(patch))
    return activity


def delete_activity(db: Session, activity_id: int) -> None:
    activity = get_activity_row(db, activity_id)
    db.delete(activity)
    db.flush()
    logging.info("catalog.activity_delete id=%s", activity_id)
