"""
services/admin/router.py
Admin-only endpoints: dashboard aggregates, platform usage, giver verification,
system settings, service types, booking oversight and the audit log.

ALL mutations are logged to AdminAuditLog before returning.
"""

import calendar
import json
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request, status
from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from config.database import get_db
from config.settings import settings
from services.booking.router import to_booking_response
from shared.middleware.auth import Principal, require_admin
from shared.models.models import (
    Admin,
    AdminAuditLog,
    Booking,
    BookingStatus,
    Client,
    GiverService,
    Payment,
    ServiceGiver,
    ServiceType,
    SystemSetting,
)
from shared.schemas.schemas import (
    AdminGiverDetailResponse,
    AdminGiverResponse,
    AuditLogEntry,
    AuditLogPage,
    BookingPage,
    DashboardOverviewResponse,
    GiverStatusPoint,
    GiverStatusUpdateRequest,
    KeyMetrics,
    MessageResponse,
    MonthlyRevenuePoint,
    ServiceTypeCreate,
    ServiceTypeResponse,
    ServiceTypeUpdate,
    ServiceUsagePoint,
    UsagePoint,
    UsageResponse,
)
from shared.utils.sql import month_bucket, upsert

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])

GIVER_STATUS_COLOURS = {"Active": "#34D399", "Pending": "#FBBF24"}


# ── Helpers ────────────────────────────────────────────────────────────────────

async def _log(
    db: AsyncSession,
    admin: Principal,
    action: str,
    entity_type: str,
    entity_id: Optional[str],
    payload: Optional[dict] = None,
    request: Optional[Request] = None,
):
    """Append an immutable record to AdminAuditLog."""
    db.add(AdminAuditLog(
        admin_id=admin.id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        payload=payload or {},
        ip_address=request.client.host if request and request.client else None,
    ))


def month_start(today: date, months_back: int) -> date:
    """First day of the month `months_back` months before `today`'s month."""
    index = today.year * 12 + (today.month - 1) - months_back
    return date(index // 12, index % 12 + 1, 1)


def month_keys(today: date, months: int) -> list[str]:
    """'YYYY-MM' for the trailing `months` months, oldest first, including the current one."""
    return [month_start(today, back).strftime("%Y-%m") for back in range(months - 1, -1, -1)]


def short_month(key: str) -> str:
    """'2025-01' -> 'Jan'."""
    return calendar.month_abbr[int(key[5:7])]


def _as_datetime(day: date) -> datetime:
    return datetime(day.year, day.month, day.day, tzinfo=timezone.utc)


def _pages(total: int, page_size: int) -> int:
    return -(-total // page_size)  # ceiling division


# ── Dashboard ──────────────────────────────────────────────────────────────────

@router.get("/dashboard", response_model=DashboardOverviewResponse)
async def get_dashboard_overview(
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Key metrics, recent monthly revenue, giver status split and top services."""
    now = datetime.now(timezone.utc)

    total_revenue = await db.scalar(select(func.coalesce(func.sum(Payment.amount_rwf), 0)))
    total_bookings = await db.scalar(select(func.count()).select_from(Booking))
    active_givers = await db.scalar(
        select(func.count(ServiceGiver.giver_id)).where(ServiceGiver.is_verified.is_(True))
    )
    new_clients = await db.scalar(
        select(func.count(Client.client_id)).where(
            Client.created_at >= now - timedelta(days=settings.NEW_CLIENT_WINDOW_DAYS)
        )
    )

    # Paid revenue per month, oldest first; months without payments are omitted
    window_start = month_start(now.date(), settings.DASHBOARD_REVENUE_MONTHS - 1)
    month = month_bucket(db, Payment.paid_at).label("month")
    revenue_rows = await db.execute(
        select(month, func.coalesce(func.sum(Payment.amount_rwf), 0))
        .where(Payment.paid_at >= _as_datetime(window_start))
        .group_by(month)
        .order_by(month)
    )
    monthly_revenue = [
        MonthlyRevenuePoint(month=short_month(m), revenue=int(revenue))
        for m, revenue in revenue_rows.all()
    ]

    status_rows = await db.execute(
        select(ServiceGiver.is_verified, func.count(ServiceGiver.giver_id))
        .group_by(ServiceGiver.is_verified)
    )
    giver_status = []
    for is_verified, count in status_rows.all():
        label = "Active" if is_verified else "Pending"
        giver_status.append(GiverStatusPoint(status=label, count=count, fill=GIVER_STATUS_COLOURS[label]))
    giver_status.sort(key=lambda point: point.status)

    booking_count = func.count(Booking.booking_id).label("bookings")
    usage_rows = await db.execute(
        select(ServiceType.service_name, booking_count)
        .join(Booking, Booking.service_id == ServiceType.service_id)
        .group_by(ServiceType.service_id, ServiceType.service_name)
        .order_by(booking_count.desc(), ServiceType.service_name)
        .limit(settings.DASHBOARD_TOP_SERVICES)
    )
    service_usage = [
        ServiceUsagePoint(service=name, bookings=count) for name, count in usage_rows.all()
    ]

    return DashboardOverviewResponse(
        keyMetrics=KeyMetrics(
            totalRevenue=int(total_revenue or 0),
            totalBookings=total_bookings or 0,
            activeGivers=active_givers or 0,
            newClientsLast30Days=new_clients or 0,
        ),
        monthlyRevenueData=monthly_revenue,
        giverStatusData=giver_status,
        serviceUsageData=service_usage,
    )


@router.get("/usage", response_model=UsageResponse)
async def get_platform_usage(
    months: int = Query(12, ge=1, le=36),
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Revenue, bookings and new clients per month for the trailing window (zero-filled)."""
    today = datetime.now(timezone.utc).date()
    since = _as_datetime(month_start(today, months - 1))

    async def per_month(column, value, *criteria) -> Dict[str, int]:
        bucket = month_bucket(db, column).label("month")
        result = await db.execute(
            select(bucket, value).where(column >= since, *criteria).group_by(bucket)
        )
        return {m: int(v or 0) for m, v in result.all()}

    revenue = await per_month(Payment.paid_at, func.sum(Payment.amount_rwf))
    bookings = await per_month(Booking.created_at, func.count(Booking.booking_id))
    new_clients = await per_month(Client.created_at, func.count(Client.client_id))

    return UsageResponse(usage=[
        UsagePoint(
            month=key,
            revenue=revenue.get(key, 0),
            bookings=bookings.get(key, 0),
            newClients=new_clients.get(key, 0),
        )
        for key in month_keys(today, months)
    ])


# ── Giver Management ───────────────────────────────────────────────────────────

def _giver_response(giver: ServiceGiver) -> AdminGiverResponse:
    return AdminGiverResponse(
        id=giver.giver_id,
        name=giver.name,
        email=giver.email,
        phone=giver.phone,
        status=giver.status,
        is_verified=giver.is_verified,
        services=sorted(o.service.service_name for o in giver.offerings),
        joined=giver.created_at,
    )


async def _load_giver(db: AsyncSession, giver_id: int) -> Optional[ServiceGiver]:
    result = await db.execute(
        select(ServiceGiver)
        .where(ServiceGiver.giver_id == giver_id)
        .options(
            selectinload(ServiceGiver.profile),
            selectinload(ServiceGiver.offerings).selectinload(GiverService.service),
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


@router.get("/givers", response_model=list[AdminGiverResponse])
async def list_givers(
    status_filter: Optional[str] = Query(None, alias="status", pattern="^(Active|Pending)$"),
    search: Optional[str] = Query(None, max_length=255, description="Name or email substring"),
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    query = (
        select(ServiceGiver)
        .options(selectinload(ServiceGiver.offerings).selectinload(GiverService.service))
        .order_by(ServiceGiver.created_at.desc(), ServiceGiver.giver_id.desc())
    )
    if status_filter:
        query = query.where(ServiceGiver.is_verified.is_(status_filter == "Active"))
    if search:
        pattern = f"%{search.strip()}%"
        query = query.where(or_(ServiceGiver.name.ilike(pattern), ServiceGiver.email.ilike(pattern)))

    result = await db.execute(query)
    return [_giver_response(g) for g in result.scalars()]


@router.get("/givers/{giver_id}", response_model=AdminGiverDetailResponse)
async def get_giver_details(
    giver_id: int,
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Giver profile with booking count and paid earnings."""
    giver = await _load_giver(db, giver_id)
    if not giver:
        raise HTTPException(status_code=404, detail="Service giver not found")

    total_bookings = await db.scalar(
        select(func.count(Booking.booking_id)).where(Booking.giver_id == giver_id)
    )
    total_earnings = await db.scalar(
        select(func.coalesce(func.sum(Booking.total_price_rwf), 0))
        .where(Booking.giver_id == giver_id, Booking.is_paid.is_(True))
    )

    profile = giver.profile
    return AdminGiverDetailResponse(
        **_giver_response(giver).model_dump(),
        bio=profile.bio if profile else None,
        city=profile.city if profile else None,
        website=profile.website if profile else None,
        documents=list(profile.portfolio_links or []) if profile else [],
        totalBookings=total_bookings or 0,
        totalEarnings=int(total_earnings or 0),
        rating=giver.rating_avg,
    )


@router.put("/givers/{giver_id}/status", response_model=AdminGiverResponse)
async def update_giver_status(
    giver_id: int,
    data: GiverStatusUpdateRequest,
    request: Request,
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """
    Verify or un-verify a giver with a single UPDATE. Last writer wins.
    Responds with the state read back from the database.
    """
    result = await db.execute(
        update(ServiceGiver)
        .where(ServiceGiver.giver_id == giver_id)
        .values(is_verified=data.is_verified)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise HTTPException(status_code=404, detail="Service giver not found")

    await _log(db, admin, "VERIFY_GIVER" if data.is_verified else "UNVERIFY_GIVER",
               "Service_Giver", str(giver_id), {"isVerified": data.is_verified}, request)
    await db.commit()

    logger.info("Admin %s set giver %s verified=%s", admin.id, giver_id, data.is_verified)
    return _giver_response(await _load_giver(db, giver_id))


# ── System Settings ────────────────────────────────────────────────────────────

def decode_setting(raw: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw  # Plain-text value written outside the API


async def save_setting(db: AsyncSession, key: str, value: Any) -> None:
    """Insert or overwrite a single setting (JSON-encoded)."""
    await db.execute(upsert(
        db,
        SystemSetting,
        values={"setting_key": key, "setting_value": json.dumps(value)},
        conflict_columns=["setting_key"],
        update_columns=["setting_value"],
    ))


@router.get("/settings", response_model=Dict[str, Any])
async def get_system_settings(
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(select(SystemSetting).order_by(SystemSetting.setting_key))
    return {s.setting_key: decode_setting(s.setting_value) for s in result.scalars()}


@router.post("/settings", response_model=MessageResponse)
async def update_system_settings(
    request: Request,
    data: Dict[str, Any] = Body(...),
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """
    Upsert every key in one transaction. If any key fails, none are saved.
    An empty body is accepted and changes nothing.
    """
    invalid = [key for key in data if not key or len(key) > 100]
    if invalid:
        raise HTTPException(status_code=422, detail=f"Invalid setting keys: {invalid}")
    if not data:
        return MessageResponse(message="Settings updated successfully.")

    try:
        for key, value in data.items():
            await save_setting(db, key, value)
        await _log(db, admin, "UPDATE_SETTINGS", "System_Setting", None,
                   {"keys": sorted(data)}, request)
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        logger.exception("Failed to save system settings %s", sorted(data))
        raise HTTPException(status_code=500, detail="Could not save system settings.")

    logger.info("Admin %s updated settings %s", admin.id, sorted(data))
    return MessageResponse(message="Settings updated successfully.")


# ── Service Types ──────────────────────────────────────────────────────────────

async def _service_name_taken(db: AsyncSession, name: str, exclude_id: Optional[int] = None) -> bool:
    query = select(ServiceType.service_id).where(ServiceType.service_name == name)
    if exclude_id is not None:
        query = query.where(ServiceType.service_id != exclude_id)
    return (await db.scalar(query)) is not None


@router.get("/services", response_model=list[ServiceTypeResponse])
async def list_service_types(
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(select(ServiceType).order_by(ServiceType.service_name))
    return [ServiceTypeResponse.model_validate(s) for s in result.scalars()]


@router.post("/services", response_model=ServiceTypeResponse, status_code=status.HTTP_201_CREATED)
async def create_service_type(
    data: ServiceTypeCreate,
    request: Request,
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    name = data.service_name.strip()
    if await _service_name_taken(db, name):
        raise HTTPException(status_code=409, detail="A service with this name already exists")

    service = ServiceType(service_name=name, description=data.description, is_active=data.is_active)
    db.add(service)
    await db.flush()

    await _log(db, admin, "CREATE_SERVICE", "Service_Type", str(service.service_id),
               {"service_name": name}, request)
    await db.commit()
    return ServiceTypeResponse.model_validate(service)


@router.put("/services/{service_id}", response_model=ServiceTypeResponse)
async def update_service_type(
    service_id: int,
    data: ServiceTypeUpdate,
    request: Request,
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    service = await db.get(ServiceType, service_id)
    if not service:
        raise HTTPException(status_code=404, detail="Service type not found")

    changes = data.model_dump(exclude_unset=True)
    if changes.get("service_name"):
        changes["service_name"] = changes["service_name"].strip()
        if await _service_name_taken(db, changes["service_name"], exclude_id=service_id):
            raise HTTPException(status_code=409, detail="A service with this name already exists")

    for field, value in changes.items():
        if value is not None:
            setattr(service, field, value)

    await _log(db, admin, "UPDATE_SERVICE", "Service_Type", str(service_id), changes, request)
    await db.commit()
    return ServiceTypeResponse.model_validate(service)


@router.delete("/services/{service_id}", response_model=MessageResponse)
async def delete_service_type(
    service_id: int,
    request: Request,
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Remove a service type and its giver offerings. Refused while bookings reference it."""
    service = await db.get(ServiceType, service_id)
    if not service:
        raise HTTPException(status_code=404, detail="Service type not found")

    in_use = await db.scalar(
        select(func.count(Booking.booking_id)).where(Booking.service_id == service_id)
    )
    if in_use:
        raise HTTPException(
            status_code=409,
            detail="Service type is referenced by bookings. Deactivate it instead.",
        )

    await db.execute(delete(GiverService).where(GiverService.service_id == service_id))
    await db.delete(service)
    await _log(db, admin, "DELETE_SERVICE", "Service_Type", str(service_id),
               {"service_name": service.service_name}, request)
    await db.commit()
    return MessageResponse(message="Service type deleted")


# ── Booking Oversight ──────────────────────────────────────────────────────────

@router.get("/bookings", response_model=BookingPage)
async def list_all_bookings(
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    client_id: Optional[int] = Query(None),
    giver_id: Optional[int] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Admin: view all bookings with status, client, or giver filter."""
    query = select(Booking)
    if status_filter:
        query = query.where(Booking.status == status_filter)
    if client_id:
        query = query.where(Booking.client_id == client_id)
    if giver_id:
        query = query.where(Booking.giver_id == giver_id)

    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    result = await db.execute(
        query.options(
            selectinload(Booking.service),
            selectinload(Booking.giver),
            selectinload(Booking.client),
        )
        .order_by(Booking.created_at.desc(), Booking.booking_id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )

    return BookingPage(
        items=[to_booking_response(b) for b in result.scalars()],
        total=total,
        page=page,
        page_size=page_size,
        pages=_pages(total, page_size),
    )


# ── Audit Log ─────────────────────────────────────────────────────────────────

@router.get("/audit-logs", response_model=AuditLogPage)
async def get_audit_logs(
    action: Optional[str] = Query(None, description="Filter by action type e.g. VERIFY_GIVER"),
    entity_type: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=100),
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Immutable admin audit log, newest first."""
    query = select(AdminAuditLog, Admin.name).join(Admin, Admin.admin_id == AdminAuditLog.admin_id)
    if action:
        query = query.where(AdminAuditLog.action == action.upper())
    if entity_type:
        query = query.where(AdminAuditLog.entity_type == entity_type)

    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    result = await db.execute(
        query.order_by(AdminAuditLog.created_at.desc(), AdminAuditLog.log_id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )

    items = []
    for log, admin_name in result.all():
        entry = AuditLogEntry.model_validate(log)
        entry.admin_name = admin_name
        items.append(entry)

    return AuditLogPage(
        items=items,
        total=total,
        page=page,
        page_size=page_size,
        pages=_pages(total, page_size),
    )
