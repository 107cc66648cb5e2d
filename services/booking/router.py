"""
services/booking/router.py
Booking creation, status transitions and read paths.
Status changes go through services/booking/state_machine.py and are written
as compare-and-set updates so concurrent transitions cannot both win.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from config.database import get_db
from services.booking.state_machine import (
    InvalidTransitionError,
    TransitionNotPermittedError,
    assert_transition,
)
from shared.middleware.auth import Principal, require_any, require_client
from shared.models.models import (
    Booking,
    BookingStatus,
    BookingStatusLog,
    ServiceGiver,
    ServiceType,
    UserRole,
)
from shared.schemas.schemas import (
    BookingCreateRequest,
    BookingResponse,
    BookingStatusLogResponse,
    BookingStatusUpdateRequest,
    BookingStatusUpdateResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookings", tags=["Bookings"])


# ── Helpers ───────────────────────────────────────────────────

async def load_booking(db: AsyncSession, booking_id: int) -> Optional[Booking]:
    """Fetch a booking with service, giver and client eagerly loaded (fresh from the DB)."""
    result = await db.execute(
        select(Booking)
        .where(Booking.booking_id == booking_id)
        .options(
            selectinload(Booking.service),
            selectinload(Booking.giver),
            selectinload(Booking.client),
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_booking_or_404(db: AsyncSession, booking_id: int) -> Booking:
    booking = await load_booking(db, booking_id)
    if not booking:
        raise HTTPException(status_code=404, detail="Booking not found")
    return booking


def can_view(booking: Booking, principal: Principal) -> bool:
    if principal.role == UserRole.ADMIN:
        return True
    if principal.role == UserRole.CLIENT:
        return booking.client_id == principal.id
    return booking.giver_id == principal.id


def to_booking_response(booking: Booking) -> BookingResponse:
    response = BookingResponse.model_validate(booking)
    if booking.service is not None:
        response.service_name = booking.service.service_name
    if booking.giver is not None:
        response.giver_name = booking.giver.name
        response.giver_email = booking.giver.email
    if booking.client is not None:
        response.client_name = booking.client.name
    return response


def log_status_change(
    db: AsyncSession,
    booking_id: int,
    from_status: Optional[BookingStatus],
    to_status: BookingStatus,
    principal: Principal,
) -> None:
    """Append a history row for a creation or transition."""
    db.add(BookingStatusLog(
        booking_id=booking_id,
        from_status=from_status.value if from_status else None,
        to_status=to_status.value,
        changed_by_role=principal.role.value,
        changed_by_id=principal.id,
    ))


# ── Create ────────────────────────────────────────────────────

@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    data: BookingCreateRequest,
    principal: Principal = Depends(require_client),
    db: AsyncSession = Depends(get_db),
):
    """Client books a giver for a service. New bookings start as Pending and unpaid."""
    giver = await db.get(ServiceGiver, data.giver_id)
    if not giver:
        raise HTTPException(status_code=404, detail="Service giver not found")

    service = await db.get(ServiceType, data.service_id)
    if not service:
        raise HTTPException(status_code=404, detail="Service type not found")

    booking = Booking(
        client_id=principal.id,
        giver_id=giver.giver_id,
        service_id=service.service_id,
        start_date=data.start_date,
        end_date=data.end_date,
        total_price_rwf=data.total_price_rwf,
        notes=data.notes,
        status=BookingStatus.PENDING,
        is_paid=False,
    )
    db.add(booking)
    await db.flush()

    log_status_change(db, booking.booking_id, None, BookingStatus.PENDING, principal)
    await db.commit()

    logger.info(
        "Booking %s created by client %s for giver %s",
        booking.booking_id, principal.id, giver.giver_id,
    )
    return to_booking_response(await get_booking_or_404(db, booking.booking_id))


# ── Status transitions ────────────────────────────────────────

@router.put("/{booking_id}/status", response_model=BookingStatusUpdateResponse)
async def update_booking_status(
    booking_id: int,
    data: BookingStatusUpdateRequest,
    principal: Principal = Depends(require_any),
    db: AsyncSession = Depends(get_db),
):
    """
    Move a booking along Pending → Accepted | Rejected, Accepted → Completed.
    Returns 409 for a transition outside the graph or one that lost a race.
    """
    booking = await get_booking_or_404(db, booking_id)
    requested = BookingStatus(data.status)

    try:
        current = assert_transition(booking, requested, principal.role, principal.id)
    except InvalidTransitionError as e:
        logger.warning("Rejected booking %s transition: %s", booking_id, e)
        raise HTTPException(status_code=409, detail=str(e))
    except TransitionNotPermittedError as e:
        raise HTTPException(status_code=403, detail=str(e))

    result = await db.execute(
        update(Booking)
        .where(Booking.booking_id == booking_id, Booking.status == current)
        .values(status=requested)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await db.rollback()
        raise HTTPException(
            status_code=409,
            detail="Booking status changed concurrently. Reload and try again.",
        )

    log_status_change(db, booking_id, current, requested, principal)
    await db.commit()

    logger.info(
        "Booking %s: %s -> %s by %s %s",
        booking_id, current.value, requested.value, principal.role.value, principal.id,
    )
    updated = await get_booking_or_404(db, booking_id)
    return BookingStatusUpdateResponse(
        message=f"Booking status updated to {requested.value}",
        booking=to_booking_response(updated),
    )


# ── Read Endpoints ────────────────────────────────────────────

@router.get("", response_model=list[BookingResponse])
async def list_my_bookings(
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    principal: Principal = Depends(require_any),
    db: AsyncSession = Depends(get_db),
):
    """Clients see their bookings, givers see bookings assigned to them, admins see all."""
    query = select(Booking).options(
        selectinload(Booking.service),
        selectinload(Booking.giver),
        selectinload(Booking.client),
    )
    if principal.role == UserRole.CLIENT:
        query = query.where(Booking.client_id == principal.id)
    elif principal.role == UserRole.GIVER:
        query = query.where(Booking.giver_id == principal.id)

    if status_filter:
        query = query.where(Booking.status == status_filter)

    query = (
        query.order_by(Booking.created_at.desc(), Booking.booking_id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    result = await db.execute(query)
    return [to_booking_response(b) for b in result.scalars()]


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: int,
    principal: Principal = Depends(require_any),
    db: AsyncSession = Depends(get_db),
):
    booking = await get_booking_or_404(db, booking_id)
    if not can_view(booking, principal):
        raise HTTPException(status_code=403, detail="Not authorized")
    return to_booking_response(booking)


@router.get("/{booking_id}/history", response_model=list[BookingStatusLogResponse])
async def get_booking_history(
    booking_id: int,
    principal: Principal = Depends(require_any),
    db: AsyncSession = Depends(get_db),
):
    """Status history of a booking, oldest first."""
    booking = await get_booking_or_404(db, booking_id)
    if not can_view(booking, principal):
        raise HTTPException(status_code=403, detail="Not authorized")

    result = await db.execute(
        select(BookingStatusLog)
        .where(BookingStatusLog.booking_id == booking_id)
        .order_by(BookingStatusLog.log_id)
    )
    return [BookingStatusLogResponse.model_validate(log) for log in result.scalars()]
