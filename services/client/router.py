"""
services/client/router.py
Client dashboard summary.
"""

from fastapi import APIRouter, Depends
from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from config.database import get_db
from services.booking.router import to_booking_response
from shared.middleware.auth import Principal, require_client
from shared.models.models import Booking, BookingStatus, Payment
from shared.schemas.schemas import ClientDashboardResponse

router = APIRouter(prefix="/client", tags=["Client"])

RECENT_BOOKINGS_LIMIT = 5


@router.get("/dashboard", response_model=ClientDashboardResponse)
async def get_client_dashboard(
    principal: Principal = Depends(require_client),
    db: AsyncSession = Depends(get_db),
):
    """Booking counts, total spent (sum of payments) and the latest bookings."""
    counts = await db.execute(
        select(
            func.count(Booking.booking_id),
            func.coalesce(func.sum(case((Booking.status == BookingStatus.COMPLETED, 1), else_=0)), 0),
            func.coalesce(func.sum(case((Booking.status == BookingStatus.PENDING, 1), else_=0)), 0),
        ).where(Booking.client_id == principal.id)
    )
    total, completed, pending = counts.one()

    spent = await db.scalar(
        select(func.coalesce(func.sum(Payment.amount_rwf), 0))
        .where(Payment.client_id == principal.id)
    )

    recent = await db.execute(
        select(Booking)
        .where(Booking.client_id == principal.id)
        .options(
            selectinload(Booking.service),
            selectinload(Booking.giver),
            selectinload(Booking.client),
        )
        .order_by(Booking.created_at.desc(), Booking.booking_id.desc())
        .limit(RECENT_BOOKINGS_LIMIT)
    )

    return ClientDashboardResponse(
        totalBookings=total,
        completedBookings=int(completed),
        pendingBookings=int(pending),
        totalSpent=int(spent or 0),
        recentBookings=[to_booking_response(b) for b in recent.scalars()],
    )
