from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import Optional

from database import get_db
from models.User import User
from routers.deps import get_current_user
from services import catalog_service

router = APIRouter(prefix="/api/cities", tags=["cities"], dependencies=[Depends(get_current_user)])


@router.get("/search")
async def search_cities(
    q: Optional[str] = None,
    country: Optional[str] = None,
    limit: int = Query(20, ge=0),
    db: Session = Depends(get_db),
):
    """Substring search over name and country, best match first."""
    return {"cities": catalog_service.search_cities(db, q, country=country, limit=limit)}


@router.get("/popular")
async def popular_cities(limit: int = Query(10, ge=0), db: Session = Depends(get_db)):
    return {"cities": catalog_service.popular_cities(db, limit)}


@router.get("/countries")
async def countries(db: Session = Depends(get_db)):
    return {"countries": catalog_service.countries(db)}


@router.get("/{city_id}")
async def get_city(city_id: int, db: Session = Depends(get_db)):
    return catalog_service.get_city(db, city_id)


@router.get("/{city_id}/activities")
async def city_activities(
    city_id: int,
    category: Optional[str] = None,
    priceMin: Optional[float] = Query(None, ge=0),
    priceMax: Optional[float] = Query(None, ge=0),
    minRating: Optional[float] = Query(None, ge=0, le=5),
    limit: int = Query(50, ge=0),
    db: Session = Depends(get_db),
):
    activities = catalog_service.activities_for_city(
        db, city_id, category=category, cost_min=priceMin, cost_max=priceMax, min_rating=minRating, limit=limit,
    )
    return {"activities": activities}
