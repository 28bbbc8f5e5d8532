"""API routes for trip management."""

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session
from datetime import date
from typing import List, Optional
import logging

from database import get_db
from models.User import User
from routers.deps import get_current_user, get_media, get_optional_user, read_payload
from services import trip_service
from services.media_store import MediaStore
from services.realtime import bus
from utils.retry import run_with_retries

router = APIRouter(prefix="/api/trips", tags=["trips"])

COVER_FIELDS = ("cover_photo", "coverPhoto")


class AddCityRequest(BaseModel):
    city_id: int
    arrival_date: Optional[date] = None
    departure_date: Optional[date] = None


class UpdateCityRequest(BaseModel):
    arrival_date: Optional[date] = None
    departure_date: Optional[date] = None


class ReorderCitiesRequest(BaseModel):
    city_ids: List[int] = Field(..., description="Every city id of the trip in the new order")


def _cover(uploads: dict):
    for name in COVER_FIELDS:
        if name in uploads:
            return uploads[name]
    return None


@router.post("", status_code=201)
async def create_trip(
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    media: MediaStore = Depends(get_media),
):
    """Create a trip from JSON or multipart form data (optional `cover_photo` file)."""
    fields, uploads = await read_payload(request, file_fields=COVER_FIELDS)
    logging.info("trip.create request owner=%s title=%s", user.id, fields.get("title"))
    trip, events = trip_service.create_trip(db, media, user, fields, _cover(uploads))
    bus.publish(events)
    return trip


@router.get("")
async def list_my_trips(
    limit: int = Query(20, ge=0),
    offset: int = Query(0, ge=0),
    status: Optional[str] = None,
    q: Optional[str] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return trip_service.list_my_trips(db, user, limit=limit, offset=offset, status=status, q=q)


@router.get("/shared/{token}")
async def get_shared_trip(token: str, db: Session = Depends(get_db)):
    """Read-only view of a trip through its share link. No authentication."""
    return trip_service.get_shared(db, token)


@router.get("/{trip_id}")
async def get_trip(
    trip_id: int,
    share_token: Optional[str] = None,
    user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    return trip_service.get_trip(db, user, trip_id, share_token)


@router.put("/{trip_id}")
async def update_trip(
    trip_id: int,
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    media: MediaStore = Depends(get_media),
):
    fields, uploads = await read_payload(request, file_fields=COVER_FIELDS)
    trip, events = trip_service.update_trip(db, media, user, trip_id, fields, _cover(uploads))
    bus.publish(events)
    return trip


@router.delete("/{trip_id}")
async def delete_trip(
    trip_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    media: MediaStore = Depends(get_media),
):
    result, events = trip_service.delete_trip(db, media, user, trip_id)
    bus.publish(events)
    return result


@router.post("/{trip_id}/share")
async def share_trip(trip_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Issue a fresh share link; any previous link stops working."""
    result, events = trip_service.share_trip(db, user, trip_id)
    bus.publish(events)
    return result


@router.get("/{trip_id}/summary")
async def trip_summary(trip_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return trip_service.trip_summary(db, user, trip_id)


@router.get("/{trip_id}/cost-breakdown")
async def cost_breakdown(trip_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return trip_service.cost_breakdown(db, user, trip_id)


# ---------- Cities on a trip ----------

@router.get("/{trip_id}/cities")
async def list_trip_cities(
    trip_id: int,
    share_token: Optional[str] = None,
    user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    return {"cities": trip_service.list_trip_cities(db, user, trip_id, share_token)}


@router.post("/{trip_id}/cities", status_code=201)
async def add_trip_city(
    trip_id: int,
    body: AddCityRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    link, events = await run_with_retries(
        db,
        lambda: trip_service.add_city(db, user, trip_id, body.city_id, body.arrival_date, body.departure_date),
        label="trip.city_add",
    )
    bus.publish(events)
    return link


@router.put("/{trip_id}/cities/reorder")
async def reorder_trip_cities(
    trip_id: int,
    body: ReorderCitiesRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    cities, events = await run_with_retries(
        db,
        lambda: trip_service.reorder_cities(db, user, trip_id, body.city_ids),
        label="trip.city_reorder",
    )
    bus.publish(events)
    return {"cities": cities}


@router.put("/{trip_id}/cities/{city_id}")
async def update_trip_city(
    trip_id: int,
    city_id: int,
    body: UpdateCityRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    patch = body.model_dump(exclude_unset=True)
    link, events = await run_with_retries(
        db,
        lambda: trip_service.update_city(db, user, trip_id, city_id, patch),
        label="trip.city_update",
    )
    bus.publish(events)
    return link


@router.delete("/{trip_id}/cities/{city_id}")
async def remove_trip_city(
    trip_id: int,
    city_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    result, events = await run_with_retries(
        db,
        lambda: trip_service.remove_city(db, user, trip_id, city_id),
        label="trip.city_remove",
    )
    bus.publish(events)
    return result
