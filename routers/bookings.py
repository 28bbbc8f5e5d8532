"""Flight and hotel search placeholders.

No booking provider is wired in; the routes exist so clients can call them
and render an empty result list.
"""

from fastapi import APIRouter, Depends
from typing import Optional
import logging

from models.User import User
from routers.deps import get_current_user

router = APIRouter(prefix="/api", tags=["bookings"])

PROVIDER = "stub"


@router.get("/flights/search")
async def search_flights(
    origin: Optional[str] = None,
    destination: Optional[str] = None,
    date: Optional[str] = None,
    user: User = Depends(get_current_user),
):
    logging.info("bookings.flights_search user_id=%s origin=%s destination=%s", user.id, origin, destination)
    return {"results": [], "provider": PROVIDER}


@router.get("/hotels/search")
async def search_hotels(
    city: Optional[str] = None,
    check_in: Optional[str] = None,
    check_out: Optional[str] = None,
    user: User = Depends(get_current_user),
):
    logging.info("bookings.hotels_search user_id=%s city=%s", user.id, city)
    return {"results": [], "provider": PROVIDER}
