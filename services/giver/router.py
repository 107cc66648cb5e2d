"""
services/giver/router.py
Public giver profiles and the calling giver's service catalogue and earnings.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from config.database import get_db
from shared.middleware.auth import Principal, require_giver
from shared.models.models import Booking, GiverService, ServiceGiver, ServiceType
from shared.schemas.schemas import (
    EarningsPoint,
    GiverPublicProfileResponse,
    GiverServiceCreateRequest,
    GiverServicePriceUpdate,
    GiverServiceResponse,
    GiverServiceVisibilityUpdate,
)
from shared.utils.sql import month_bucket

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Givers"])


def _offering_response(offering: GiverService) -> GiverServiceResponse:
    return GiverServiceResponse(
        service_id=offering.service_id,
        service_name=offering.service.service_name,
        price_rwf=offering.price_rwf,
        base_unit=offering.base_unit,
        is_active=offering.is_active,
    )


async def _load_offering(db: AsyncSession, giver_id: int, service_id: int) -> GiverService:
    result = await db.execute(
        select(GiverService)
        .where(GiverService.giver_id == giver_id, GiverService.service_id == service_id)
        .options(selectinload(GiverService.service))
        .execution_options(populate_existing=True)
    )
    offering = result.scalar_one_or_none()
    if not offering:
        raise HTTPException(status_code=404, detail="You do not offer this service")
    return offering


# ── Public profile ────────────────────────────────────────────

@router.get("/givers/{giver_id}", response_model=GiverPublicProfileResponse)
async def get_giver_profile(giver_id: int, db: AsyncSession = Depends(get_db)):
    """Public profile with active service offerings."""
    result = await db.execute(
        select(ServiceGiver)
        .where(ServiceGiver.giver_id == giver_id)
        .options(
            selectinload(ServiceGiver.profile),
            selectinload(ServiceGiver.offerings).selectinload(GiverService.service),
        )
    )
    giver = result.scalar_one_or_none()
    if not giver:
        raise HTTPException(status_code=404, detail="Service giver not found")

    profile = giver.profile
    return GiverPublicProfileResponse(
        giver_id=giver.giver_id,
        name=giver.name,
        display_name=profile.display_name if profile else None,
        bio=profile.bio if profile else None,
        city=profile.city if profile else None,
        website=profile.website if profile else None,
        is_verified=giver.is_verified,
        status=giver.status,
        rating_avg=giver.rating_avg,
        rating_count=giver.rating_count,
        services=[
            _offering_response(o)
            for o in giver.offerings
            if o.is_active and o.service.is_active
        ],
    )


@router.get("/givers/{giver_id}/portfolio", response_model=list[str])
async def get_giver_portfolio(giver_id: int, db: AsyncSession = Depends(get_db)):
    giver = await db.get(ServiceGiver, giver_id, options=[selectinload(ServiceGiver.profile)])
    if not giver:
        raise HTTPException(status_code=404, detail="Service giver not found")
    return list(giver.profile.portfolio_links or []) if giver.profile else []


# ── Own catalogue ─────────────────────────────────────────────

@router.get("/giver/services", response_model=list[GiverServiceResponse])
async def list_my_services(
    principal: Principal = Depends(require_giver),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(GiverService)
        .where(GiverService.giver_id == principal.id)
        .options(selectinload(GiverService.service))
        .order_by(GiverService.service_id)
    )
    return [_offering_response(o) for o in result.scalars()]


@router.post(
    "/giver/services",
    response_model=GiverServiceResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_my_service(
    data: GiverServiceCreateRequest,
    principal: Principal = Depends(require_giver),
    db: AsyncSession = Depends(get_db),
):
    service = await db.get(ServiceType, data.service_id)
    if not service:
        raise HTTPException(status_code=404, detail="Service type not found")
    if await db.get(GiverService, (principal.id, service.service_id)):
        raise HTTPException(status_code=409, detail="You already offer this service")

    db.add(GiverService(
        giver_id=principal.id,
        service_id=service.service_id,
        price_rwf=data.price_rwf,
        base_unit=data.base_unit,
    ))
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(status_code=409, detail="You already offer this service")
    await db.commit()

    logger.info("Giver %s now offers service %s", principal.id, service.service_id)
    return _offering_response(await _load_offering(db, principal.id, service.service_id))


@router.put("/giver/services/{service_id}", response_model=GiverServiceResponse)
async def update_my_service_price(
    service_id: int,
    data: GiverServicePriceUpdate,
    principal: Principal = Depends(require_giver),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        update(GiverService)
        .where(GiverService.giver_id == principal.id, GiverService.service_id == service_id)
        .values(price_rwf=data.price_rwf)
    )
    if result.rowcount == 0:
        raise HTTPException(status_code=404, detail="You do not offer this service")
    await db.commit()
    return _offering_response(await _load_offering(db, principal.id, service_id))


@router.put("/giver/services/{service_id}/visibility", response_model=GiverServiceResponse)
async def set_my_service_visibility(
    service_id: int,
    data: GiverServiceVisibilityUpdate,
    principal: Principal = Depends(require_giver),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        update(GiverService)
        .where(GiverService.giver_id == principal.id, GiverService.service_id == service_id)
        .values(is_active=data.is_active)
    )
    if result.rowcount == 0:
        raise HTTPException(status_code=404, detail="You do not offer this service")
    await db.commit()
    return _offering_response(await _load_offering(db, principal.id, service_id))


# ── Earnings ──────────────────────────────────────────────────

@router.get("/giver/earnings", response_model=list[EarningsPoint])
async def get_my_earnings(
    principal: Principal = Depends(require_giver),
    db: AsyncSession = Depends(get_db),
):
    """Paid booking totals per month of the booking's start date, oldest first."""
    month = month_bucket(db, Booking.start_date).label("month")
    result = await db.execute(
        select(
            month,
            func.coalesce(func.sum(Booking.total_price_rwf), 0),
            func.count(Booking.booking_id),
        )
        .where(Booking.giver_id == principal.id, Booking.is_paid.is_(True))
        .group_by(month)
        .order_by(month)
    )
    return [
        EarningsPoint(month=m, total_earnings=int(total), bookings=count)
        for m, total, count in result.all()
    ]
