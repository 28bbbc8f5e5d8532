from fastapi import APIRouter, Body, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session
from typing import Any, Dict, List, Optional

from database import get_db
from models.User import User
from routers.deps import get_current_user
from services import catalog_service, itinerary_service
from services.realtime import bus
from utils.errors import ValidationError
from utils.retry import run_with_retries

router = APIRouter(prefix="/api/activities", tags=["activities"])


class ForCitiesRequest(BaseModel):
    city_ids: List[int] = Field(..., max_length=50)
    limit: int = Field(10, ge=0, le=100)


@router.get("/search")
async def search_activities(
    q: Optional[str] = None,
    category: Optional[str] = None,
    priceMin: Optional[float] = Query(None, ge=0),
    priceMax: Optional[float] = Query(None, ge=0),
    minRating: Optional[float] = Query(None, ge=0, le=5),
    city_id: Optional[int] = None,
    limit: int = Query(20, ge=0),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    activities = catalog_service.search_activities(
        db, q, category=category, cost_min=priceMin, cost_max=priceMax,
        min_rating=minRating, city_id=city_id, limit=limit,
    )
    return {"activities": activities}


@router.get("/popular")
async def popular_activities(
    limit: int = Query(10, ge=0),
    city_id: Optional[int] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return {"activities": catalog_service.popular_activities(db, limit, city_id=city_id)}


@router.get("/categories")
async def categories(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return {"categories": catalog_service.categories(db)}


@router.post("/for-cities")
async def activities_for_cities(body: ForCitiesRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Top activities for several cities in one round trip, keyed by city id."""
    return {"activities": catalog_service.activities_for_cities(db, body.city_ids, body.limit)}


@router.get("/{activity_id}")
async def get_activity(activity_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return catalog_service.get_activity(db, activity_id)


@router.post("/{activity_id}/add-to-trip", status_code=201)
async def add_to_trip(
    activity_id: int,
    payload: Dict[str, Any] = Body(...),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    trip_id = payload.get("trip_id")
    if isinstance(trip_id, bool) or not isinstance(trip_id, int):
        raise ValidationError("trip_id is required and must be an integer")
    overrides = {key: value for key, value in payload.items() if key != "trip_id"}
    item, events = await run_with_retries(
        db,
        lambda: itinerary_service.add_activity_from_catalog(db, user, trip_id, activity_id, overrides),
        label="itinerary.add_activity",
    )
    bus.publish(events)
    return item
