"""Itinerary routes: trip-scoped list/append/reorder and item-scoped read/update/delete."""

from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session
from typing import Any, Dict, Optional
import logging

from database import get_db
from models.User import User
from routers.deps import get_current_user, get_optional_user
from services import itinerary_service
from services.realtime import bus
from utils.errors import ValidationError
from utils.retry import run_with_retries

router = APIRouter(prefix="/api", tags=["itinerary"])


def _reorder_ids(payload: Any):
    # accepts {"item_ids": [...]}, {"items": [...]} or a bare list
    ids = payload
    if isinstance(payload, dict):
        ids = payload.get("item_ids", payload.get("items", payload.get("order")))
    if not isinstance(ids, list):
        raise ValidationError("Reorder payload must be an ordered list of item ids")
    parsed = []
    for value in ids:
        if isinstance(value, dict):
            value = value.get("id")
        if isinstance(value, bool) or not isinstance(value, (int, str)):
            raise ValidationError("Item ids must be integers")
        try:
            parsed.append(int(value))
        except ValueError:
            raise ValidationError("Item ids must be integers")
    return parsed


@router.get("/trips/{trip_id}/itinerary")
async def list_itinerary(
    trip_id: int,
    category: Optional[str] = None,
    group_by: Optional[str] = None,
    share_token: Optional[str] = None,
    user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    return itinerary_service.list_items(db, user, trip_id, category=category, group_by=group_by, share_token=share_token)


@router.post("/trips/{trip_id}/itinerary", status_code=201)
async def create_item(
    trip_id: int,
    payload: Dict[str, Any] = Body(...),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    item, events = await run_with_retries(
        db, lambda: itinerary_service.insert(db, user, trip_id, payload), label="itinerary.add",
    )
    bus.publish(events)
    return item


@router.put("/trips/{trip_id}/itinerary/reorder")
async def reorder_items(
    trip_id: int,
    payload: Any = Body(...),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    item_ids = _reorder_ids(payload)
    logging.info("itinerary.reorder request trip_id=%s count=%s", trip_id, len(item_ids))
    result, events = await run_with_retries(
        db, lambda: itinerary_service.reorder(db, user, trip_id, item_ids), label="itinerary.reorder",
    )
    bus.publish(events)
    return result


@router.post("/trips/{trip_id}/itinerary/add-activity", status_code=201)
async def add_activity(
    trip_id: int,
    payload: Dict[str, Any] = Body(...),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Copy a catalog activity into the itinerary; other body fields override its defaults."""
    activity_id = payload.get("activity_id")
    if isinstance(activity_id, bool) or not isinstance(activity_id, int):
        raise ValidationError("activity_id is required and must be an integer")
    overrides = {key: value for key, value in payload.items() if key != "activity_id"}
    item, events = await run_with_retries(
        db,
        lambda: itinerary_service.add_activity_from_catalog(db, user, trip_id, activity_id, overrides),
        label="itinerary.add_activity",
    )
    bus.publish(events)
    return item


@router.get("/itinerary/{item_id}")
async def get_item(
    item_id: int,
    share_token: Optional[str] = None,
    user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    return itinerary_service.get_item(db, user, item_id, share_token)


@router.put("/itinerary/{item_id}")
async def update_item(
    item_id: int,
    payload: Dict[str, Any] = Body(...),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    item, events = await run_with_retries(
        db, lambda: itinerary_service.update(db, user, item_id, payload), label="itinerary.update",
    )
    bus.publish(events)
    return item


@router.delete("/itinerary/{item_id}")
async def delete_item(item_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    result, events = await run_with_retries(
        db, lambda: itinerary_service.delete(db, user, item_id), label="itinerary.delete",
    )
    bus.publish(events)
    return result
