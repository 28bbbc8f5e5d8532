from fastapi import APIRouter, Body, Depends, Query
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session
from typing import Any, Dict, List, Optional

from database import get_db
from models.User import User
from routers.deps import get_media, require_admin
from services import admin_service, analytics_service, catalog_service
from services.export_service import XLSX_MEDIA_TYPE, build_trips_workbook
from services.media_store import MediaStore
from services.realtime import TRIP_UPDATED, Event, bus
from utils.errors import ValidationError

import logging


router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(require_admin)])


class BulkDeleteRequest(BaseModel):
    user_ids: List[str] = Field(..., max_length=500)


class FeatureRequest(BaseModel):
    featured: bool = True


def _bulk_entries(payload: Any, key: str) -> List[dict]:
    # accepts {"<key>": [...]} or a bare list
    entries = payload.get(key) if isinstance(payload, dict) else payload
    if not isinstance(entries, list) or not all(isinstance(entry, dict) for entry in entries):
        raise ValidationError(f"Expected a list of {key} objects")
    return entries


@router.get("/dashboard")
async def admin_dashboard(db: Session = Depends(get_db)):
    """Everything the admin landing page shows, in one response."""
    trips = analytics_service.trip_analytics(db)
    logging.info("admin.dashboard render")
    return {
        "overview": analytics_service.admin_overview(db),
        "trip_analytics": trips,
        "user_growth": analytics_service.user_growth(db),
        "popular_destinations": analytics_service.popular_destinations(db),
        "recent_users": analytics_service.recent_users(db),
        "recent_trips": analytics_service.recent_trips(db),
        "system_health": admin_service.system_health(db),
    }


# ---------- Users ----------

@router.get("/users")
async def list_users(
    q: Optional[str] = None,
    role: Optional[str] = None,
    limit: int = Query(20, ge=0),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    return admin_service.list_users(db, q=q, role=role, limit=limit, offset=offset)


@router.put("/users/{user_id}")
async def update_user(
    user_id: str,
    payload: Dict[str, Any] = Body(...),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return {"user": admin_service.update_user(db, admin, user_id, payload)}


@router.delete("/users/{user_id}")
async def delete_user(
    user_id: str,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
    media: MediaStore = Depends(get_media),
):
    result, events = admin_service.delete_user(db, media, admin, user_id)
    bus.publish(events)
    return result


@router.post("/users/bulk-delete")
async def bulk_delete_users(
    body: BulkDeleteRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
    media: MediaStore = Depends(get_media),
):
    """Delete several users; answers 200 with a per-user report even on partial failure."""
    report, events = admin_service.bulk_delete_users(db, media, admin, body.user_ids)
    bus.publish(events)
    return report


# ---------- Trips ----------

@router.get("/trips")
async def list_trips(
    q: Optional[str] = None,
    status: Optional[str] = None,
    privacy: Optional[str] = None,
    featured: Optional[bool] = None,
    limit: int = Query(20, ge=0),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    return admin_service.list_trips(db, q=q, status=status, privacy=privacy, featured=featured, limit=limit, offset=offset)


@router.get("/trips/export")
async def export_trips(db: Session = Depends(get_db)):
    excel_file, filename = build_trips_workbook(db)
    return StreamingResponse(
        excel_file,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f"attachment; filename={filename}"}
    )


@router.put("/trips/{trip_id}/feature")
async def feature_trip(
    trip_id: int,
    body: Optional[FeatureRequest] = None,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    featured = body.featured if body is not None else True
    trip, events = admin_service.feature_trip(db, admin, trip_id, featured)
    bus.publish(events)
    return trip


# ---------- Cities ----------

@router.get("/cities")
async def list_cities(
    q: Optional[str] = None,
    limit: int = Query(50, ge=0),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    return catalog_service.list_cities(db, query=q, limit=limit, offset=offset)


@router.post("/cities", status_code=201)
async def create_city(payload: Dict[str, Any] = Body(...), db: Session = Depends(get_db)):
    city = catalog_service.create_city(db, payload)
    db.commit()
    return city.to_dict()


@router.post("/cities/bulk")
async def bulk_create_cities(payload: Any = Body(...), db: Session = Depends(get_db)):
    return admin_service.bulk_create(db, catalog_service.create_city, _bulk_entries(payload, "cities"))


@router.put("/cities/{city_id}")
async def update_city(city_id: int, payload: Dict[str, Any] = Body(...), db: Session = Depends(get_db)):
    city = catalog_service.update_city(db, city_id, payload)
    db.commit()
    return city.to_dict()


@router.delete("/cities/{city_id}")
async def delete_city(city_id: int, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    trip_ids = catalog_service.delete_city(db, city_id)
    db.commit()
    bus.publish([
        Event(TRIP_UPDATED, trip_id, admin.id, {"fields": ["cities"], "removed_city_id": city_id})
        for trip_id in trip_ids
    ])
    return {"message": "City deleted successfully", "id": city_id, "affected_trips": trip_ids}


# ---------- Activities ----------

@router.get("/activities")
async def list_activities(
    q: Optional[str] = None,
    category: Optional[str] = None,
    city_id: Optional[int] = None,
    limit: int = Query(50, ge=0),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    return catalog_service.list_activities(db, query=q, category=category, city_id=city_id, limit=limit, offset=offset)


@router.post("/activities", status_code=201)
async def create_activity(payload: Dict[str, Any] = Body(...), db: Session = Depends(get_db)):
    activity = catalog_service.create_activity(db, payload)
    db.commit()
    return activity.to_dict()


@router.post("/activities/bulk")
async def bulk_create_activities(payload: Any = Body(...), db: Session = Depends(get_db)):
    return admin_service.bulk_create(db, catalog_service.create_activity, _bulk_entries(payload, "activities"))


@router.put("/activities/{activity_id}")
async def update_activity(activity_id: int, payload: Dict[str, Any] = Body(...), db: Session = Depends(get_db)):
    activity = catalog_service.update_activity(db, activity_id, payload)
    db.commit()
    return activity.to_dict()


@router.delete("/activities/{activity_id}")
async def delete_activity(activity_id: int, db: Session = Depends(get_db)):
    catalog_service.delete_activity(db, activity_id)
    db.commit()
    return {"message": "Activity deleted successfully", "id": activity_id}


# ---------- Analytics & system ----------

@router.get("/analytics/users")
async def user_analytics(db: Session = Depends(get_db)):
    return analytics_service.user_analytics(db)


@router.get("/analytics/trips")
async def trip_analytics(db: Session = Depends(get_db)):
    return analytics_service.trip_analytics(db)


@router.get("/system/health")
async def system_health(db: Session = Depends(get_db)):
    return admin_service.system_health(db)
