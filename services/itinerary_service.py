"""Ordered itinerary items per trip.

Every mutation runs as one transaction: lock the trip row, apply the change,
renumber ``order_index`` to 0..N-1, refresh the trip rollups, commit. The
functions return ``(result, events)`` and are safe to re-run after a rollback,
which is how the router retries them under contention.
"""

import logging
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator
from sqlalchemy.orm import Session

from models.Activity import Activity
from models.City import City
from models.ItineraryItem import ItemCategory, ItineraryItem
from models.Trip import Trip
from models.User import User
from services import permissions
from services.catalog_service import get_activity_row
from services.realtime import (
    ITINERARY_ADD, ITINERARY_DELETE, ITINERARY_REORDER, ITINERARY_UPDATE, Event,
)
from services.trip_service import load_trip, refresh_rollups
from utils.errors import ConflictError, NotFoundError, ValidationError
from utils.text_utils import clean_text
from utils.time_utils import local_date, to_naive_utc
from utils.validation import parse_input

UNSCHEDULED = "unscheduled"

ITEM_FIELDS = (
    "category", "title", "description", "location", "start_time", "end_time",
    "cost", "notes", "booking_reference", "city_id",
)


class ItemInput(BaseModel):
    category: ItemCategory = ItemCategory.other
    title: str = Field(..., max_length=200)
    description: Optional[str] = None
    location: Optional[str] = Field(None, max_length=255)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    cost: Optional[float] = Field(None, ge=0)
    notes: Optional[str] = None
    booking_reference: Optional[str] = Field(None, max_length=100)
    city_id: Optional[int] = None

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, value):
        if not value or not value.strip():
            raise ValueError("title is required")
        return value


class ItemPatch(BaseModel):
    category: Optional[ItemCategory] = None
    title: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = None
    location: Optional[str] = Field(None, max_length=255)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    cost: Optional[float] = Field(None, ge=0)
    notes: Optional[str] = None
    booking_reference: Optional[str] = Field(None, max_length=100)
    city_id: Optional[int] = None


class ActivityOverrides(BaseModel):
    title: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = None
    location: Optional[str] = Field(None, max_length=255)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    cost: Optional[float] = Field(None, ge=0)
    notes: Optional[str] = None
    booking_reference: Optional[str] = Field(None, max_length=100)


def _check_times(start: Optional[datetime], end: Optional[datetime]) -> None:
    if start is not None and end is not None and end < start:
        raise ValidationError("end_time must be on or after start_time")


def _check_city(db: Session, city_id: Optional[int]) -> None:
    if city_id is not None and db.get(City, city_id) is None:
        raise ValidationError(f"Unknown city_id: {city_id}")


def _clean(field: str, value):
    if field in ("title", "description", "location", "notes", "booking_reference"):
        return clean_text(value)
    if field in ("start_time", "end_time"):
        return to_naive_utc(value)
    return value


def _items(db: Session, trip_id: int) -> List[ItineraryItem]:
    return (
        db.query(ItineraryItem)
        .filter(ItineraryItem.trip_id == trip_id)
        .order_by(ItineraryItem.order_index.asc(), ItineraryItem.id.asc())
        .all()
    )


def _renumber(items: List[ItineraryItem]) -> None:
    for position, item in enumerate(items):
        if item.order_index != position:
            item.order_index = position


def _finish(db: Session, trip: Trip) -> None:
    refresh_rollups(db, trip)
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise


def _item_for(db: Session, user: Optional[User], item_id: int, action: str, lock: bool = False) -> Tuple[Trip, ItineraryItem]:
    item = db.get(ItineraryItem, item_id)
    if item is None:
        raise NotFoundError("Itinerary item not found")
    trip = load_trip(db, user, item.trip_id, action, lock=lock)
    return trip, item


# ---------- Reads ----------

def list_items(db: Session, viewer: Optional[User], trip_id: int, category: Optional[str] = None,
               group_by: Optional[str] = None, share_token: Optional[str] = None) -> dict:
    trip = load_trip(db, viewer, trip_id, permissions.READ, share_token)
    items = _items(db, trip.id)
    if category:
        try:
            wanted = ItemCategory(category)
        except ValueError:
            raise ValidationError(f"Unknown item category: {category}")
        items = [item for item in items if item.category == wanted]

    result = {"trip_id": trip.id, "items": [item.to_dict() for item in items]}
    if group_by == "day":
        result["days"] = group_by_day(items)
    elif group_by:
        raise ValidationError("group_by must be 'day'")
    return result


def group_by_day(items: List[ItineraryItem]) -> "OrderedDict[str, list]":
    """Bucket items by the calendar date of start_time in the server timezone.

    Buckets come out in date order with "unscheduled" last; items keep their
    order_index order inside each bucket.
    """
    buckets = {}
    unscheduled = []
    for item in items:
        if item.start_time is None:
            unscheduled.append(item.to_dict())
        else:
            buckets.setdefault(local_date(item.start_time).isoformat(), []).append(item.to_dict())
    days = OrderedDict((day, buckets[day]) for day in sorted(buckets))
    if unscheduled:
        days[UNSCHEDULED] = unscheduled
    return days


def get_item(db: Session, viewer: Optional[User], item_id: int, share_token: Optional[str] = None) -> dict:
    item = db.get(ItineraryItem, item_id)
    if item is None:
        raise NotFoundError("Itinerary item not found")
    load_trip(db, viewer, item.trip_id, permissions.READ, share_token)
    return item.to_dict()


# ---------- Mutations ----------

def insert(db: Session, user: User, trip_id: int, payload) -> Tuple[dict, List[Event]]:
    data = parse_input(ItemInput, payload)
    _check_times(to_naive_utc(data.start_time), to_naive_utc(data.end_time))

    _check_city(db, data.city_id)
    trip = load_trip(db, user, trip_id, permissions.EDIT_ITINERARY, lock=True)
    items = _items(db, trip.id)
    _renumber(items)

    item = ItineraryItem(trip_id=trip.id, order_index=len(items))
    for field in ITEM_FIELDS:
        setattr(item, field, _clean(field, getattr(data, field)))
    if not item.title:
        raise ValidationError("title is required")
    db.add(item)
    _finish(db, trip)

    logging.info("itinerary.add trip_id=%s item_id=%s position=%s", trip.id, item.id, item.order_index)
    view = item.to_dict()
    return view, [Event(ITINERARY_ADD, trip.id, user.id, {"item": view})]


def update(db: Session, user: User, item_id: int, payload) -> Tuple[dict, List[Event]]:
    if isinstance(payload, dict) and ("order_index" in payload or "trip_id" in payload):
        raise ValidationError("order_index and trip_id cannot be changed here; use reorder")
    patch = parse_input(ItemPatch, payload).model_dump(exclude_unset=True)
    for key in ("category", "title"):
        if key in patch and patch[key] is None:
            raise ValidationError(f"{key} cannot be null")

    _check_city(db, patch.get("city_id"))
    trip, item = _item_for(db, user, item_id, permissions.EDIT_ITINERARY, lock=True)
    cleaned = {key: _clean(key, value) for key, value in patch.items()}
    if "title" in cleaned and not cleaned["title"]:
        raise ValidationError("title is required")
    _check_times(
        cleaned.get("start_time", item.start_time),
        cleaned.get("end_time", item.end_time),
    )

    changed = []
    for key, value in cleaned.items():
        if getattr(item, key) != value:
            setattr(item, key, value)
            changed.append(key)
    _finish(db, trip)

    logging.info("itinerary.update trip_id=%s item_id=%s fields=%s", trip.id, item.id, changed)
    view = item.to_dict()
    return view, [Event(ITINERARY_UPDATE, trip.id, user.id, {"item": view, "fields": changed})]


def delete(db: Session, user: User, item_id: int) -> Tuple[dict, List[Event]]:
    trip, item = _item_for(db, user, item_id, permissions.EDIT_ITINERARY, lock=True)
    items = [row for row in _items(db, trip.id) if row.id != item.id]
    db.delete(item)
    db.flush()
    # close the gap left at the removed position
    _renumber(items)
    _finish(db, trip)

    order = [row.id for row in items]
    logging.info("itinerary.delete trip_id=%s item_id=%s remaining=%s", trip.id, item_id, len(order))
    return {"message": "Itinerary item deleted", "id": item_id}, [
        Event(ITINERARY_DELETE, trip.id, user.id, {"item_id": item_id, "order": order})
    ]


def reorder(db: Session, user: User, trip_id: int, item_ids: List[int]) -> Tuple[dict, List[Event]]:
    """Reassign positions so that order_index(item_ids[k]) == k.

    item_ids must be a permutation of the trip's current item ids; anything
    else (missing, extra, duplicate or foreign ids) is a conflict and leaves
    the itinerary untouched.
    """
    trip = load_trip(db, user, trip_id, permissions.EDIT_ITINERARY, lock=True)
    items = _items(db, trip.id)
    by_id = {item.id: item for item in items}

    if len(item_ids) != len(items) or set(item_ids) != set(by_id):
        logging.info(
            "itinerary.reorder rejected trip_id=%s given=%s current=%s",
            trip.id, len(item_ids), len(items),
        )
        db.rollback()
        raise ConflictError("Reorder must list every item of the itinerary exactly once")

    ordered = [by_id[item_id] for item_id in item_ids]
    _renumber(ordered)
    _finish(db, trip)

    logging.info("itinerary.reorder trip_id=%s order=%s", trip.id, item_ids)
    return {"trip_id": trip.id, "order": list(item_ids), "items": [item.to_dict() for item in ordered]}, [
        Event(ITINERARY_REORDER, trip.id, user.id, {"order": list(item_ids)})
    ]


def add_activity_from_catalog(db: Session, user: User, trip_id: int, activity_id: int,
                              overrides=None) -> Tuple[dict, List[Event]]:
    """Materialize a catalog activity as a new 'activity' item at the end of the itinerary."""
    data = parse_input(ActivityOverrides, overrides or {})
    activity: Activity = get_activity_row(db, activity_id)

    start = to_naive_utc(data.start_time)
    end = to_naive_utc(data.end_time)
    if start is not None and end is None and activity.duration_hours:
        end = start + timedelta(hours=activity.duration_hours)
    _check_times(start, end)

    location = data.location
    if location is None and activity.city is not None:
        location = f"{activity.city.name}, {activity.city.country}"

    trip = load_trip(db, user, trip_id, permissions.EDIT_ITINERARY, lock=True)
    items = _items(db, trip.id)
    _renumber(items)

    item = ItineraryItem(
        trip_id=trip.id,
        city_id=activity.city_id,
        activity_id=activity.id,
        category=ItemCategory.activity,
        title=clean_text(data.title) or activity.name,
        description=clean_text(data.description) if data.description is not None else activity.description,
        location=clean_text(location),
        start_time=start,
        end_time=end,
        cost=data.cost if data.cost is not None else activity.cost_min,
        notes=clean_text(data.notes),
        booking_reference=clean_text(data.booking_reference),
        order_index=len(items),
    )
    db.add(item)
    _finish(db, trip)

    logging.info("itinerary.add_activity trip_id=%s activity_id=%s item_id=%s", trip.id, activity.id, item.id)
    view = item.to_dict()
    return view, [Event(ITINERARY_ADD, trip.id, user.id, {"item": view, "activity_id": activity.id})]
