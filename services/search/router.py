"""
services/search/router.py
Public discovery: active service types and giver offerings filtered by
service name, rating, price and city.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from shared.models.models import (
    Booking,
    BookingStatus,
    GiverService,
    Profile,
    ServiceGiver,
    ServiceType,
)
from shared.schemas.schemas import GiverSearchResult, ServiceTypeResponse

router = APIRouter(tags=["Search"])


@router.get("/service-types", response_model=list[ServiceTypeResponse])
async def list_service_types(db: AsyncSession = Depends(get_db)):
    result = await db.execute(
        select(ServiceType)
        .where(ServiceType.is_active.is_(True))
        .order_by(ServiceType.service_name)
    )
    return [ServiceTypeResponse.model_validate(s) for s in result.scalars()]


@router.get("/services/search", response_model=list[GiverSearchResult])
async def search_services(
    service_name: Optional[str] = Query(None, max_length=255, description="Substring of the service name"),
    min_rating: Optional[float] = Query(None, ge=0, le=5),
    min_price: Optional[int] = Query(None, ge=0),
    max_price: Optional[int] = Query(None, ge=0),
    city: Optional[str] = Query(None, max_length=100),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=50),
    db: AsyncSession = Depends(get_db),
):
    """
    Verified givers offering an active matching service, with price, rating and
    completed-booking count. Highest rated first.
    """
    completed = (
        select(
            Booking.giver_id.label("giver_id"),
            Booking.service_id.label("service_id"),
            func.count(Booking.booking_id).label("completed_bookings"),
        )
        .where(Booking.status == BookingStatus.COMPLETED)
        .group_by(Booking.giver_id, Booking.service_id)
        .subquery()
    )

    query = (
        select(
            ServiceGiver.giver_id,
            ServiceGiver.name,
            ServiceGiver.is_verified,
            ServiceGiver.rating_avg,
            Profile.display_name,
            Profile.city,
            ServiceType.service_id,
            ServiceType.service_name,
            GiverService.price_rwf,
            GiverService.base_unit,
            func.coalesce(completed.c.completed_bookings, 0).label("completed_bookings"),
        )
        .join(GiverService, GiverService.giver_id == ServiceGiver.giver_id)
        .join(ServiceType, ServiceType.service_id == GiverService.service_id)
        .outerjoin(Profile, Profile.giver_id == ServiceGiver.giver_id)
        .outerjoin(
            completed,
            and_(
                completed.c.giver_id == GiverService.giver_id,
                completed.c.service_id == GiverService.service_id,
            ),
        )
        .where(
            ServiceGiver.is_verified.is_(True),
            GiverService.is_active.is_(True),
            ServiceType.is_active.is_(True),
        )
    )

    if service_name:
        query = query.where(ServiceType.service_name.ilike(f"%{service_name.strip()}%"))
    if min_rating is not None:
        query = query.where(ServiceGiver.rating_avg >= min_rating)
    if min_price is not None:
        query = query.where(GiverService.price_rwf >= min_price)
    if max_price is not None:
        query = query.where(GiverService.price_rwf <= max_price)
    if city:
        query = query.where(Profile.city.ilike(city.strip()))

    query = (
        query.order_by(ServiceGiver.rating_avg.desc(), GiverService.price_rwf)
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    result = await db.execute(query)

    return [
        GiverSearchResult(
            giver_id=row.giver_id,
            name=row.name,
            display_name=row.display_name,
            city=row.city,
            is_verified=row.is_verified,
            service_id=row.service_id,
            service_name=row.service_name,
            price_rwf=row.price_rwf,
            base_unit=row.base_unit,
            average_rating=row.rating_avg,
            completed_bookings=row.completed_bookings,
        )
        for row in result.all()
    ]
