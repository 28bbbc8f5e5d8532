from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from database import get_db
from models.User import User
from routers.deps import get_current_user
from services import analytics_service

router = APIRouter(prefix="/api/analytics", tags=["analytics"])


@router.get("/dashboard")
async def dashboard(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """All of the caller's dashboard widgets in one response."""
    return analytics_service.dashboard(db, user)


@router.get("/travel-stats")
async def travel_stats(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return analytics_service.travel_stats(db, user.id)


@router.get("/monthly-spending")
async def monthly_spending(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return {"months": analytics_service.monthly_spending(db, user.id)}


@router.get("/category-breakdown")
async def category_breakdown(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return {"categories": analytics_service.category_breakdown(db, user.id)}


@router.get("/seasonal-trends")
async def seasonal_trends(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return {"seasons": analytics_service.seasonal_trends(db, user.id)}


@router.get("/trip-status")
async def trip_status(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return analytics_service.trip_status_rollup(db, user.id)
