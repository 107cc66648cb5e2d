"""
services/payment/router.py
Simulated payments. There is no real payment rail: after a short artificial
delay the server records a Payment row and marks the booking paid.
"""

import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.settings import settings
from shared.middleware.auth import Principal, require_client
from shared.models.models import Booking, BookingStatus, Payment, PaymentStatus
from shared.schemas.schemas import PaymentResponse, PaymentSimulateRequest
from shared.utils.sql import upsert

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])

PAYABLE_STATUSES = (BookingStatus.ACCEPTED, BookingStatus.COMPLETED)


def payment_reference(booking_id: int, account_number: str) -> str:
    """Masked reference; the full account number is never persisted."""
    return f"SIM-{booking_id}-{account_number[-4:]}"


async def _get_payment(db: AsyncSession, booking_id: int):
    result = await db.execute(
        select(Payment)
        .where(Payment.booking_id == booking_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


@router.post("/{booking_id}/simulate", response_model=PaymentResponse)
async def simulate_payment(
    booking_id: int,
    data: PaymentSimulateRequest,
    principal: Principal = Depends(require_client),
    db: AsyncSession = Depends(get_db),
):
    """
    Pay for an accepted (or completed) booking.
    Idempotent: an already-paid booking returns its existing payment, including
    when two requests for the same booking overlap.
    """
    booking = await db.get(Booking, booking_id)
    if not booking:
        raise HTTPException(status_code=404, detail="Booking not found")
    if booking.client_id != principal.id:
        raise HTTPException(status_code=403, detail="You can only pay for your own bookings")

    existing = await _get_payment(db, booking_id)
    if existing:
        return PaymentResponse.model_validate(existing)

    if booking.status not in PAYABLE_STATUSES:
        raise HTTPException(
            status_code=400,
            detail=f"Cannot pay for a booking in '{BookingStatus(booking.status).value}' state",
        )

    # Release the connection for the duration of the simulated processing
    await db.commit()
    await asyncio.sleep(settings.PAYMENT_SIMULATION_DELAY_SECONDS)

    result = await db.execute(upsert(
        db,
        Payment,
        {
            "booking_id": booking.booking_id,
            "client_id": principal.id,
            "amount_rwf": booking.total_price_rwf,
            "method": data.method,
            "reference": payment_reference(booking.booking_id, data.account_number),
            "status": PaymentStatus.PAID,
        },
        conflict_columns=["booking_id"],
        update_columns=[],
    ))
    await db.execute(
        update(Booking)
        .where(Booking.booking_id == booking.booking_id)
        .values(is_paid=True)
    )
    await db.commit()

    if result.rowcount == 1:
        logger.info(
            "Simulated %s payment of %s %s for booking %s by %s",
            data.method, booking.total_price_rwf, settings.CURRENCY,
            booking.booking_id, data.account_name,
        )
    else:
        logger.info("Booking %s was already paid by a concurrent request", booking.booking_id)
    return PaymentResponse.model_validate(await _get_payment(db, booking_id))


@router.get("/me/history", response_model=list[PaymentResponse])
async def get_payment_history(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    principal: Principal = Depends(require_client),
    db: AsyncSession = Depends(get_db),
):
    """Payments made by the calling client, newest first."""
    result = await db.execute(
        select(Payment)
        .where(Payment.client_id == principal.id)
        .order_by(Payment.paid_at.desc(), Payment.payment_id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return [PaymentResponse.model_validate(p) for p in result.scalars()]
