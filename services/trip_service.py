"""Trips: CRUD, share links, per-trip aggregates and the trip's city list.

Mutations commit their own transaction and return ``(result, events)``; the
caller publishes the events once the call has returned.
"""

import logging
import secrets
from collections import OrderedDict
from datetime import date
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator
from sqlalchemy import and_, func, or_
from sqlalchemy.orm import Session, joinedload

from config import Config
from models.City import City
from models.ItineraryItem import ItemCategory, ItineraryItem
from models.Trip import Currency, Privacy, TravelStyle, Trip, TripStatus
from models.TripCity import TripCity
from models.User import User
from services import permissions
from services.media_store import MediaStore
from services.realtime import TRIP_CREATED, TRIP_DELETED, TRIP_UPDATED, Event
from utils.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from utils.query_utils import clamp_limit, contains
from utils.text_utils import clean_text, normalize_destination
from utils.time_utils import isoformat, local_date, today
from utils.validation import parse_input

EDITABLE_FIELDS = (
    "title", "description", "destination", "start_date", "end_date", "budget",
    "currency", "travel_style", "group_size", "privacy",
)


# ---------- Input shapes ----------

class TripInput(BaseModel):
    title: str = Field(..., max_length=200)
    description: Optional[str] = None
    destination: Optional[str] = Field(None, max_length=200)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    budget: Optional[float] = Field(None, ge=0)
    currency: Currency = Currency.INR
    travel_style: TravelStyle = TravelStyle.leisure
    group_size: int = Field(1, ge=1, le=100)
    privacy: Privacy = Privacy.private
    status: Optional[TripStatus] = None

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, value):
        if not value or not value.strip():
            raise ValueError("title is required")
        return value


class TripPatch(BaseModel):
    title: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = None
    destination: Optional[str] = Field(None, max_length=200)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    budget: Optional[float] = Field(None, ge=0)
    currency: Optional[Currency] = None
    travel_style: Optional[TravelStyle] = None
    group_size: Optional[int] = Field(None, ge=1, le=100)
    privacy: Optional[Privacy] = None
    status: Optional[TripStatus] = None


def _check_dates(start: Optional[date], end: Optional[date]) -> None:
    if start is not None and end is not None and end < start:
        raise ValidationError("end_date must be on or after start_date")


# ---------- Loading & access ----------

def get_trip_row(db: Session, trip_id: int, lock: bool = False) -> Optional[Trip]:
    q = db.query(Trip).filter(Trip.id == trip_id)
    if lock:
        # serializes concurrent mutators of the same trip
        q = q.with_for_update()
    return q.first()


def load_trip(db: Session, user: Optional[User], trip_id: int, action: str,
              share_token: Optional[str] = None, lock: bool = False) -> Trip:
    """Fetch a trip the user may act on.

    A trip the user cannot even read is reported as absent; a readable trip
    the user may not `action` is forbidden.
    """
    trip = get_trip_row(db, trip_id, lock=lock)
    if trip is None or not permissions.can(user, permissions.READ, trip, share_token):
        raise NotFoundError("Trip not found")
    if action != permissions.READ and not permissions.can(user, action, trip, share_token):
        raise ForbiddenError("You do not have permission to modify this trip")
    return trip


def refresh_rollups(db: Session, trip: Trip) -> None:
    """Recompute the cached totals on the trip row from its children."""
    db.flush()
    total, count = (
        db.query(func.coalesce(func.sum(ItineraryItem.cost), 0), func.count(ItineraryItem.id))
        .filter(ItineraryItem.trip_id == trip.id)
        .one()
    )
    trip.total_cost = float(total or 0)
    trip.activity_count = int(count or 0)
    trip.city_count = db.query(func.count(TripCity.id)).filter(TripCity.trip_id == trip.id).scalar() or 0


def _commit(db: Session) -> None:
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise


# ---------- Views ----------

def trip_view(trip: Trip, viewer: Optional[User] = None) -> dict:
    privileged = viewer is not None and (viewer.id == trip.owner_user_id or viewer.is_admin)
    data = trip.to_dict(today(), include_share_token=privileged)
    if trip.share_token and privileged:
        data["share_url"] = share_url(trip.share_token)
    return data


def _owner_view(trip: Trip) -> Optional[dict]:
    if trip.owner is None:
        return None
    return {"id": trip.owner.id, "full_name": trip.owner.full_name, "avatar_path": trip.owner.avatar_path}


def trip_detail(db: Session, trip: Trip, viewer: Optional[User]) -> dict:
    data = trip_view(trip, viewer)
    data["owner"] = _owner_view(trip)
    data["cities"] = [link.to_dict() for link in _trip_city_rows(db, trip.id)]
    data["summary"] = summarize(trip, db)
    return data


def share_url(token: str) -> str:
    return f"{Config.API_BASE_URL}/api/trips/shared/{token}"


# ---------- Trip CRUD ----------

def create_trip(db: Session, media: MediaStore, user: User, payload, cover=None) -> Tuple[dict, List[Event]]:
    data = parse_input(TripInput, payload)
    _check_dates(data.start_date, data.end_date)

    cover_path = media.save(cover, "trip-covers") if cover is not None else None
    trip = Trip(
        owner_user_id=user.id,
        title=clean_text(data.title, 200),
        description=clean_text(data.description),
        destination=normalize_destination(data.destination),
        start_date=data.start_date,
        end_date=data.end_date,
        budget=data.budget,
        currency=data.currency,
        travel_style=data.travel_style,
        group_size=data.group_size,
        privacy=data.privacy,
        cover_photo_path=cover_path,
        is_completed=data.status == TripStatus.completed,
        total_cost=0,
        activity_count=0,
        city_count=0,
    )
    try:
        db.add(trip)
        db.commit()
    except Exception:
        db.rollback()
        media.delete(cover_path)
        raise

    logging.info("trip.create success id=%s owner=%s", trip.id, user.id)
    view = trip_view(trip, user)
    public_view = trip.to_dict(today(), include_share_token=False)
    return view, [Event(TRIP_CREATED, trip.id, user.id, {"trip": public_view})]


def status_predicate(status: str, on: date):
    """SQL filter equivalent to derive_status(trip, on) == status."""
    not_done = Trip.is_completed.is_(False)
    if status == TripStatus.completed.value:
        return or_(
            Trip.is_completed.is_(True),
            and_(Trip.start_date.isnot(None), Trip.end_date.isnot(None), Trip.end_date < on),
        )
    if status == TripStatus.planning.value:
        return and_(not_done, Trip.start_date.is_(None))
    if status == TripStatus.upcoming.value:
        return and_(not_done, Trip.start_date > on)
    if status == TripStatus.in_progress.value:
        return and_(
            not_done,
            Trip.start_date <= on,
            or_(Trip.end_date.is_(None), Trip.end_date >= on),
        )
    raise ValidationError(f"Unknown status filter: {status}")


def list_my_trips(db: Session, user: User, limit: Optional[int] = 20, offset: int = 0,
                  status: Optional[str] = None, q: Optional[str] = None) -> dict:
    if offset < 0:
        raise ValidationError("offset must be non-negative")
    limit = clamp_limit(limit)

    query = db.query(Trip).filter(Trip.owner_user_id == user.id)
    if status:
        query = query.filter(status_predicate(status, today()))
    if q and q.strip():
        term = q.strip()
        query = query.filter(or_(
            contains(Trip.title, term),
            contains(Trip.description, term),
            contains(Trip.destination, term),
        ))

    total = query.count()
    trips = []
    if limit:
        trips = query.order_by(Trip.created_at.desc(), Trip.id.desc()).offset(offset).limit(limit).all()
    return {
        "trips": [trip_view(trip, user) for trip in trips],
        "total": total,
        "limit": limit,
        "offset": offset,
    }


def get_trip(db: Session, viewer: Optional[User], trip_id: int, share_token: Optional[str] = None) -> dict:
    trip = load_trip(db, viewer, trip_id, permissions.READ, share_token)
    return trip_detail(db, trip, viewer)


def update_trip(db: Session, media: MediaStore, user: User, trip_id: int, payload, cover=None) -> Tuple[dict, List[Event]]:
    patch = parse_input(TripPatch, payload).model_dump(exclude_unset=True)
    trip = load_trip(db, user, trip_id, permissions.UPDATE, lock=True)

    for key in ("title", "currency", "travel_style", "group_size", "privacy"):
        if key in patch and patch[key] is None:
            raise ValidationError(f"{key} cannot be null")
    if "title" in patch and not (patch["title"] or "").strip():
        raise ValidationError("title is required")

    _check_dates(
        patch.get("start_date", trip.start_date),
        patch.get("end_date", trip.end_date),
    )

    changed = []
    for key in EDITABLE_FIELDS:
        if key not in patch:
            continue
        value = patch[key]
        if key == "title":
            value = clean_text(value, 200)
        elif key == "description":
            value = clean_text(value)
        elif key == "destination":
            value = normalize_destination(value)
        if getattr(trip, key) != value:
            setattr(trip, key, value)
            changed.append(key)

    if "status" in patch:
        completed = patch["status"] == TripStatus.completed
        if bool(trip.is_completed) != completed:
            trip.is_completed = completed
            changed.append("status")

    new_cover = None
    old_cover = None
    if cover is not None:
        new_cover = media.save(cover, "trip-covers")
        old_cover, trip.cover_photo_path = trip.cover_photo_path, new_cover
        changed.append("cover_photo_path")

    try:
        db.commit()
    except Exception:
        db.rollback()
        media.delete(new_cover)
        raise
    media.delete(old_cover)

    logging.info("trip.update success id=%s fields=%s", trip.id, changed)
    view = trip_view(trip, user)
    return view, [Event(TRIP_UPDATED, trip.id, user.id, {"fields": changed})]


def delete_trip(db: Session, media: MediaStore, user: User, trip_id: int) -> Tuple[dict, List[Event]]:
    trip = load_trip(db, user, trip_id, permissions.DELETE, lock=True)
    cover = trip.cover_photo_path
    db.delete(trip)
    _commit(db)
    media.delete(cover)
    logging.info("trip.delete success id=%s by=%s", trip_id, user.id)
    return {"message": "Trip deleted successfully", "id": trip_id}, [
        Event(TRIP_DELETED, trip_id, user.id, {"trip_id": trip_id})
    ]


# ---------- Sharing ----------

def share_trip(db: Session, user: User, trip_id: int) -> Tuple[dict, List[Event]]:
    trip = load_trip(db, user, trip_id, permissions.SHARE, lock=True)
    # rotating replaces the previous token, which stops resolving
    trip.share_token = secrets.token_urlsafe(24)
    _commit(db)
    logging.info("trip.share rotated id=%s", trip.id)
    result = {"share_token": trip.share_token, "share_url": share_url(trip.share_token)}
    return result, [Event(TRIP_UPDATED, trip.id, user.id, {"fields": ["share_token"]})]


def get_shared(db: Session, token: str) -> dict:
    trip = None
    if token:
        trip = (
            db.query(Trip)
            .options(joinedload(Trip.owner))
            .filter(Trip.share_token == token)
            .first()
        )
    if trip is None:
        raise NotFoundError("Shared trip not found")

    data = trip.to_dict(today(), include_share_token=False)
    data["owner"] = {"full_name": trip.owner.full_name} if trip.owner else None
    data["cities"] = [link.to_dict() for link in _trip_city_rows(db, trip.id)]
    data["itinerary"] = [item.to_dict() for item in _item_rows(db, trip.id)]
    data["summary"] = summarize(trip, db)
    data["read_only"] = True
    return data


# ---------- Aggregates ----------

def _item_rows(db: Session, trip_id: int) -> List[ItineraryItem]:
    return (
        db.query(ItineraryItem)
        .filter(ItineraryItem.trip_id == trip_id)
        .order_by(ItineraryItem.order_index.asc(), ItineraryItem.id.asc())
        .all()
    )


def summarize(trip: Trip, db: Session) -> dict:
    items = _item_rows(db, trip.id)
    by_category = OrderedDict((category.value, 0) for category in ItemCategory)
    total = 0.0
    days = set()
    starts = []
    ends = []
    for item in items:
        by_category[item.category.value] += 1
        total += item.cost or 0
        if item.start_time is not None:
            days.add(local_date(item.start_time))
            starts.append(item.start_time)
        if item.end_time is not None or item.start_time is not None:
            ends.append(item.end_time or item.start_time)

    city_count = db.query(func.count(TripCity.id)).filter(TripCity.trip_id == trip.id).scalar() or 0
    return {
        "cities": city_count,
        "items": len(items),
        "total": total,
        "items_by_category": by_category,
        "scheduled_days": len(days),
        "first_start": isoformat(min(starts)) if starts else None,
        "last_end": isoformat(max(ends)) if ends else None,
        "budget": trip.budget,
        "remaining_budget": (trip.budget - total) if trip.budget is not None else None,
        "currency": trip.currency.value,
    }


def trip_summary(db: Session, user: User, trip_id: int) -> dict:
    trip = load_trip(db, user, trip_id, permissions.VIEW_AGGREGATES)
    return summarize(trip, db)


def cost_breakdown(db: Session, user: User, trip_id: int) -> dict:
    trip = load_trip(db, user, trip_id, permissions.VIEW_AGGREGATES)
    rows = (
        db.query(ItineraryItem.category, func.coalesce(func.sum(ItineraryItem.cost), 0))
        .filter(ItineraryItem.trip_id == trip.id)
        .group_by(ItineraryItem.category)
        .all()
    )
    sums = {category: float(amount or 0) for category, amount in rows}
    breakdown = OrderedDict((category.value, sums.get(category, 0.0)) for category in ItemCategory)
    breakdown["total"] = sum(sums.values())
    return breakdown


# ---------- Trip cities ----------

def _trip_city_rows(db: Session, trip_id: int) -> List[TripCity]:
    return (
        db.query(TripCity)
        .options(joinedload(TripCity.city))
        .filter(TripCity.trip_id == trip_id)
        .order_by(TripCity.arrival_order.asc(), TripCity.id.asc())
        .all()
    )


def _renumber_cities(links: List[TripCity]) -> None:
    for position, link in enumerate(links):
        link.arrival_order = position


def _cities_event(trip: Trip, user: User, links: List[TripCity]) -> Event:
    return Event(TRIP_UPDATED, trip.id, user.id, {
        "fields": ["cities"],
        "city_ids": [link.city_id for link in links],
    })


def list_trip_cities(db: Session, viewer: Optional[User], trip_id: int, share_token: Optional[str] = None) -> List[dict]:
    trip = load_trip(db, viewer, trip_id, permissions.READ, share_token)
    return [link.to_dict() for link in _trip_city_rows(db, trip.id)]


def add_city(db: Session, user: User, trip_id: int, city_id: int,
             arrival_date: Optional[date] = None, departure_date: Optional[date] = None) -> Tuple[dict, List[Event]]:
    trip = load_trip(db, user, trip_id, permissions.EDIT_ITINERARY, lock=True)
    city = db.get(City, city_id)
    if city is None:
        raise NotFoundError("City not found")
    _check_dates(arrival_date, departure_date)

    links = _trip_city_rows(db, trip.id)
    if any(link.city_id == city_id for link in links):
        raise ConflictError("City already added to this trip")

    link = TripCity(
        trip_id=trip.id,
        city_id=city.id,
        arrival_order=len(links),
        arrival_date=arrival_date,
        departure_date=departure_date,
    )
    db.add(link)
    link.city = city
    links.append(link)
    refresh_rollups(db, trip)
    _commit(db)

    logging.info("trip.city_add trip_id=%s city_id=%s position=%s", trip.id, city_id, link.arrival_order)
    return link.to_dict(), [_cities_event(trip, user, links)]


def update_city(db: Session, user: User, trip_id: int, city_id: int, payload: dict) -> Tuple[dict, List[Event]]:
    trip = load_trip(db, user, trip_id, permissions.EDIT_ITINERARY, lock=True)
    links = _trip_city_rows(db, trip.id)
    link = next((row for row in links if row.city_id == city_id), None)
    if link is None:
        raise NotFoundError("City is not part of this trip")

    arrival = payload.get("arrival_date", link.arrival_date)
    departure = payload.get("departure_date", link.departure_date)
    _check_dates(arrival, departure)
    link.arrival_date = arrival
    link.departure_date = departure
    _commit(db)

    logging.info("trip.city_update trip_id=%s city_id=%s", trip.id, city_id)
    return link.to_dict(), [_cities_event(trip, user, links)]


def remove_city(db: Session, user: User, trip_id: int, city_id: int) -> Tuple[dict, List[Event]]:
    trip = load_trip(db, user, trip_id, permissions.EDIT_ITINERARY, lock=True)
    links = _trip_city_rows(db, trip.id)
    link = next((row for row in links if row.city_id == city_id), None)
    if link is None:
        raise NotFoundError("City is not part of this trip")

    links.remove(link)
    db.delete(link)
    db.flush()
    _renumber_cities(links)
    refresh_rollups(db, trip)
    _commit(db)

    logging.info("trip.city_remove trip_id=%s city_id=%s", trip.id, city_id)
    return {"message": "City removed from trip", "city_id": city_id}, [_cities_event(trip, user, links)]


def reorder_cities(db: Session, user: User, trip_id: int, city_ids: List[int]) -> Tuple[List[dict], List[Event]]:
    trip = load_trip(db, user, trip_id, permissions.EDIT_ITINERARY, lock=True)
    links = _trip_city_rows(db, trip.id)
    by_city = {link.city_id: link for link in links}

    if len(city_ids) != len(links) or set(city_ids) != set(by_city):
        raise ConflictError("City order must list every city of the trip exactly once")

    ordered = [by_city[city_id] for city_id in city_ids]
    _renumber_cities(ordered)
    _commit(db)

    logging.info("trip.city_reorder trip_id=%s order=%s", trip.id, city_ids)
    return [link.to_dict() for link in ordered], [_cities_event(trip, user, ordered)]
