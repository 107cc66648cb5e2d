"""
shared/schemas/schemas.py
All Pydantic v2 request/response schemas for the platform.
Amounts are whole Rwandan francs; wire names follow the web client (total_price_RWF, isVerified, ...).
"""

from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

from shared.models.models import BookingStatus, PaymentMethod, PaymentStatus


# ── Base ──────────────────────────────────────────────────────

class BaseSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True, populate_by_name=True)


# ── Auth ──────────────────────────────────────────────────────

class LoginRequest(BaseSchema):
    email: str = Field(..., max_length=255)
    password: str = Field(..., max_length=128)
    role: str = Field(..., description="Admin, Client or Giver")


class LoginResponse(BaseSchema):
    id: int
    role: str
    access_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds


class MeResponse(BaseSchema):
    id: int
    role: str
    name: str
    email: str


class RegisterRequest(BaseSchema):
    name: str = Field(..., min_length=2, max_length=255)
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    phone: Optional[str] = Field(None, pattern=r"^\+?\d{9,15}$")
    # Giver-only profile fields
    bio: Optional[str] = Field(None, max_length=2000)
    city: Optional[str] = Field(None, max_length=100)
    website: Optional[str] = Field(None, max_length=500)
    category: Optional[str] = Field(None, max_length=255, description="Service type name")
    rate: Optional[int] = Field(None, ge=0, description="Price in RWF for `category`")
    portfolio_links: List[str] = Field(default_factory=list, alias="portfolioLinks")


class RegisterResponse(BaseSchema):
    id: int
    role: str
    name: str
    email: str


# ── Service types ─────────────────────────────────────────────

class ServiceTypeCreate(BaseSchema):
    service_name: str = Field(..., min_length=2, max_length=255)
    description: Optional[str] = Field(None, max_length=2000)
    is_active: bool = True


class ServiceTypeUpdate(BaseSchema):
    service_name: Optional[str] = Field(None, min_length=2, max_length=255)
    description: Optional[str] = Field(None, max_length=2000)
    is_active: Optional[bool] = None


class ServiceTypeResponse(BaseSchema):
    service_id: int
    service_name: str
    description: Optional[str]
    is_active: bool


# ── Giver catalogue ───────────────────────────────────────────

class GiverServiceCreateRequest(BaseSchema):
    service_id: int
    price_rwf: int = Field(..., ge=0, alias="price_RWF")
    base_unit: str = Field("per day", max_length=50)


class GiverServicePriceUpdate(BaseSchema):
    price_rwf: int = Field(..., ge=0, alias="price_RWF")


class GiverServiceVisibilityUpdate(BaseSchema):
    is_active: bool


class GiverServiceResponse(BaseSchema):
    service_id: int
    service_name: str
    price_rwf: int = Field(..., alias="price_RWF")
    base_unit: str
    is_active: bool


class GiverPublicProfileResponse(BaseSchema):
    giver_id: int
    name: str
    display_name: Optional[str] = None
    bio: Optional[str] = None
    city: Optional[str] = None
    website: Optional[str] = None
    is_verified: bool
    status: str
    rating_avg: float
    rating_count: int
    services: List[GiverServiceResponse] = []


class EarningsPoint(BaseSchema):
    month: str
    total_earnings: int
    bookings: int


# ── Booking ───────────────────────────────────────────────────

class BookingCreateRequest(BaseSchema):
    giver_id: int
    service_id: int
    start_date: date
    end_date: date
    total_price_rwf: int = Field(..., ge=0, alias="total_price_RWF")
    notes: Optional[str] = Field(None, max_length=1000)

    @model_validator(mode="after")
    def validate_date_range(self) -> "BookingCreateRequest":
        if self.end_date < self.start_date:
            raise ValueError("end_date must be on or after start_date")
        return self


class BookingResponse(BaseSchema):
    booking_id: int
    client_id: int
    giver_id: int
    service_id: int
    start_date: date
    end_date: date
    total_price_rwf: int = Field(..., alias="total_price_RWF")
    notes: Optional[str]
    status: BookingStatus
    is_paid: bool
    created_at: datetime
    updated_at: datetime
    # Joined
    service_name: Optional[str] = None
    giver_name: Optional[str] = None
    giver_email: Optional[str] = None
    client_name: Optional[str] = None


class BookingStatusUpdateRequest(BaseSchema):
    status: BookingStatus


class BookingStatusUpdateResponse(BaseSchema):
    message: str
    booking: BookingResponse


class BookingStatusLogResponse(BaseSchema):
    from_status: Optional[str]
    to_status: str
    changed_by_role: str
    changed_by_id: int
    created_at: datetime


# ── Payment ───────────────────────────────────────────────────

class PaymentSimulateRequest(BaseSchema):
    method: PaymentMethod = PaymentMethod.CARD
    account_name: str = Field(..., min_length=1, max_length=255)
    account_number: str = Field(..., pattern=r"^\d{4,19}$", description="Card or MoMo number")


class PaymentResponse(BaseSchema):
    payment_id: int
    booking_id: int
    client_id: int
    amount_rwf: int
    method: PaymentMethod
    reference: str
    status: PaymentStatus
    paid_at: datetime


# ── Review ────────────────────────────────────────────────────

class ReviewSubmitRequest(BaseSchema):
    booking_id: int
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=2000)


class ReviewUpdateRequest(BaseSchema):
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=2000)


class ReviewResponse(BaseSchema):
    review_id: int
    booking_id: int
    client_id: int
    giver_id: int
    rating: int
    comment: Optional[str]
    created_at: datetime
    updated_at: datetime
    client_name: Optional[str] = None


# ── Search ────────────────────────────────────────────────────

class GiverSearchResult(BaseSchema):
    giver_id: int
    name: str
    display_name: Optional[str]
    city: Optional[str]
    is_verified: bool
    service_id: int
    service_name: str
    price_rwf: int = Field(..., alias="price_RWF")
    base_unit: str
    average_rating: Optional[float]
    completed_bookings: int


# ── Client dashboard ──────────────────────────────────────────

class ClientDashboardResponse(BaseSchema):
    totalBookings: int
    completedBookings: int
    pendingBookings: int
    totalSpent: int
    recentBookings: List[BookingResponse]


# ── Admin ─────────────────────────────────────────────────────

class KeyMetrics(BaseSchema):
    totalRevenue: int
    totalBookings: int
    activeGivers: int
    newClientsLast30Days: int


class MonthlyRevenuePoint(BaseSchema):
    month: str
    revenue: int


class GiverStatusPoint(BaseSchema):
    status: str
    count: int
    fill: str


class ServiceUsagePoint(BaseSchema):
    service: str
    bookings: int


class DashboardOverviewResponse(BaseSchema):
    keyMetrics: KeyMetrics
    monthlyRevenueData: List[MonthlyRevenuePoint]
    giverStatusData: List[GiverStatusPoint]
    serviceUsageData: List[ServiceUsagePoint]


class UsagePoint(BaseSchema):
    month: str
    revenue: int
    bookings: int
    newClients: int


class UsageResponse(BaseSchema):
    usage: List[UsagePoint]


class GiverStatusUpdateRequest(BaseSchema):
    is_verified: bool = Field(..., alias="isVerified")


class AdminGiverResponse(BaseSchema):
    id: int
    name: str
    email: str
    phone: Optional[str] = None
    status: str
    is_verified: bool
    services: List[str] = []
    joined: datetime


class AdminGiverDetailResponse(AdminGiverResponse):
    bio: Optional[str] = None
    city: Optional[str] = None
    website: Optional[str] = None
    documents: List[str] = []
    totalBookings: int
    totalEarnings: int
    rating: float


class BookingPage(BaseSchema):
    items: List[BookingResponse]
    total: int
    page: int
    page_size: int
    pages: int


class AuditLogEntry(BaseSchema):
    log_id: int
    admin_id: int
    admin_name: Optional[str] = None
    action: str
    entity_type: str
    entity_id: Optional[str]
    payload: Optional[dict]
    ip_address: Optional[str]
    created_at: datetime


class AuditLogPage(BaseSchema):
    items: List[AuditLogEntry]
    total: int
    page: int
    page_size: int
    pages: int


# ── Generic ───────────────────────────────────────────────────

class MessageResponse(BaseSchema):
    message: str
    success: bool = True
