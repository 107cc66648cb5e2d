"""
services/review/router.py
Rating and review management. One review per booking, written as a storage-level upsert.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from shared.middleware.auth import Principal, require_any, require_client
from shared.models.models import Booking, BookingStatus, Client, Review, ServiceGiver, UserRole
from shared.schemas.schemas import ReviewResponse, ReviewSubmitRequest, ReviewUpdateRequest
from shared.utils.sql import upsert

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Reviews"])


async def refresh_giver_rating(db: AsyncSession, giver_id: int) -> None:
    """Recalculate and denormalize the aggregate rating on Service_Giver."""
    avg_result = await db.execute(
        select(func.avg(Review.rating), func.count(Review.review_id))
        .where(Review.giver_id == giver_id)
    )
    avg, count = avg_result.one()

    await db.execute(
        update(ServiceGiver)
        .where(ServiceGiver.giver_id == giver_id)
        .values(rating_avg=round(float(avg or 0), 2), rating_count=count)
    )


async def _review_response(db: AsyncSession, booking_id: int) -> ReviewResponse:
    result = await db.execute(
        select(Review, Client.name)
        .join(Client, Client.client_id == Review.client_id)
        .where(Review.booking_id == booking_id)
        .execution_options(populate_existing=True)
    )
    row = result.one_or_none()
    if row is None:
        raise HTTPException(status_code=404, detail="Review not found")
    review, client_name = row
    response = ReviewResponse.model_validate(review)
    response.client_name = client_name
    return response


@router.post("/reviews", response_model=ReviewResponse, status_code=status.HTTP_200_OK)
async def submit_review(
    data: ReviewSubmitRequest,
    principal: Principal = Depends(require_client),
    db: AsyncSession = Depends(get_db),
):
    """
    Create or replace the review for a completed booking.
    - Only the client who made the booking can review
    - Booking must be Completed
    - giver_id/client_id come from the booking, never from the request
    """
    booking = await db.get(Booking, data.booking_id)
    if not booking:
        raise HTTPException(status_code=404, detail="Booking not found")
    if booking.client_id != principal.id:
        raise HTTPException(status_code=403, detail="You can only review your own bookings")
    if booking.status != BookingStatus.COMPLETED:
        raise HTTPException(status_code=400, detail="Booking must be completed before reviewing")

    stmt = upsert(
        db,
        Review,
        values={
            "booking_id": booking.booking_id,
            "client_id": booking.client_id,
            "giver_id": booking.giver_id,
            "rating": data.rating,
            "comment": data.comment,
        },
        conflict_columns=["booking_id"],
        update_columns=["rating", "comment"],
        extra_updates={"updated_at": func.now()},
    )
    await db.execute(stmt)
    await refresh_giver_rating(db, booking.giver_id)
    await db.commit()

    logger.info("Review saved for booking %s (rating %s)", booking.booking_id, data.rating)
    return await _review_response(db, booking.booking_id)


@router.put("/reviews/{review_id}", response_model=ReviewResponse)
async def update_review(
    review_id: int,
    data: ReviewUpdateRequest,
    principal: Principal = Depends(require_client),
    db: AsyncSession = Depends(get_db),
):
    review = await db.get(Review, review_id)
    if not review:
        raise HTTPException(status_code=404, detail="Review not found")
    if review.client_id != principal.id:
        raise HTTPException(status_code=403, detail="You can only edit your own reviews")

    await db.execute(
        update(Review)
        .where(Review.review_id == review_id)
        .values(rating=data.rating, comment=data.comment)
    )
    await refresh_giver_rating(db, review.giver_id)
    await db.commit()
    return await _review_response(db, review.booking_id)


@router.get("/bookings/{booking_id}/review", response_model=ReviewResponse)
async def get_booking_review(
    booking_id: int,
    principal: Principal = Depends(require_any),
    db: AsyncSession = Depends(get_db),
):
    booking = await db.get(Booking, booking_id)
    if not booking:
        raise HTTPException(status_code=404, detail="Booking not found")
    if principal.role == UserRole.CLIENT and booking.client_id != principal.id:
        raise HTTPException(status_code=403, detail="Not authorized")
    if principal.role == UserRole.GIVER and booking.giver_id != principal.id:
        raise HTTPException(status_code=403, detail="Not authorized")
    return await _review_response(db, booking_id)


@router.get("/givers/{giver_id}/reviews", response_model=list[ReviewResponse])
async def get_giver_reviews(
    giver_id: int,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=50),
    db: AsyncSession = Depends(get_db),
):
    """Public: reviews for a specific giver, newest first."""
    result = await db.execute(
        select(Review, Client.name)
        .join(Client, Client.client_id == Review.client_id)
        .where(Review.giver_id == giver_id)
        .order_by(Review.created_at.desc(), Review.review_id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    reviews = []
    for review, client_name in result.all():
        response = ReviewResponse.model_validate(review)
        response.client_name = client_name
        reviews.append(response)
    return reviews
