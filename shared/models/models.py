"""
shared/models/models.py
All SQLAlchemy ORM models for MediaHub Rwanda.
Table names follow the platform's MySQL schema (Admin, Client, Service_Giver, ...).
"""

from datetime import date, datetime
from enum import Enum as PyEnum
from typing import List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from config.database import Base


# ── Enumerations ──────────────────────────────────────────────

class UserRole(str, PyEnum):
    ADMIN = "Admin"
    CLIENT = "Client"
    GIVER = "Giver"


class BookingStatus(str, PyEnum):
    PENDING = "Pending"
    ACCEPTED = "Accepted"
    REJECTED = "Rejected"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class PaymentStatus(str, PyEnum):
    PAID = "Paid"


class PaymentMethod(str, PyEnum):
    CARD = "card"
    MOBILE_MONEY = "mobile_money"


def _enum_column(enum_cls: type[PyEnum], name: str) -> Enum:
    """Persist enum *values* ('Pending'), not member names ('PENDING')."""
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )


# ── Mixins ────────────────────────────────────────────────────

class TimestampMixin:
    """Adds created_at and updated_at to any model."""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


# ── Accounts (one credential table per role) ──────────────────

class Admin(Base):
    __tablename__ = "Admin"

    admin_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    @property
    def id(self) -> int:
        return self.admin_id

    def __repr__(self) -> str:
        return f"<Admin {self.email}>"


class Client(Base):
    __tablename__ = "Client"

    client_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    bookings: Mapped[List["Booking"]] = relationship(back_populates="client")

    __table_args__ = (Index("ix_client_created_at", "created_at"),)

    @property
    def id(self) -> int:
        return self.client_id

    def __repr__(self) -> str:
        return f"<Client {self.email}>"


class ServiceGiver(Base):
    """A creative service provider. Verified givers are 'Active' on the platform."""
    __tablename__ = "Service_Giver"

    giver_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Rating (denormalized for query performance)
    rating_avg: Mapped[float] = mapped_column(default=0.0, nullable=False)
    rating_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    profile: Mapped[Optional["Profile"]] = relationship(back_populates="giver", uselist=False)
    offerings: Mapped[List["GiverService"]] = relationship(back_populates="giver")
    bookings: Mapped[List["Booking"]] = relationship(back_populates="giver")

    __table_args__ = (Index("ix_service_giver_verified", "is_verified"),)

    @property
    def id(self) -> int:
        return self.giver_id

    @property
    def status(self) -> str:
        return "Active" if self.is_verified else "Pending"

    def __repr__(self) -> str:
        return f"<ServiceGiver {self.email} verified={self.is_verified}>"


class Profile(Base):
    """Public-facing giver profile (one per giver)."""
    __tablename__ = "Profile"

    profile_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    giver_id: Mapped[int] = mapped_column(
        ForeignKey("Service_Giver.giver_id", ondelete="CASCADE"), unique=True, nullable=False
    )
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    bio: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    website: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    portfolio_links: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    giver: Mapped["ServiceGiver"] = relationship(back_populates="profile")


# ── Catalogue ─────────────────────────────────────────────────

class ServiceType(Base):
    """Master list of creative services (photography, videography, ...)."""
    __tablename__ = "Service_Type"

    service_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    service_name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class GiverService(Base):
    """A giver's priced offering of a service type."""
    __tablename__ = "Giver_Service_Price"

    giver_id: Mapped[int] = mapped_column(
        ForeignKey("Service_Giver.giver_id", ondelete="CASCADE"), primary_key=True
    )
    service_id: Mapped[int] = mapped_column(
        ForeignKey("Service_Type.service_id", ondelete="CASCADE"), primary_key=True
    )
    price_rwf: Mapped[int] = mapped_column(Integer, nullable=False)
    base_unit: Mapped[str] = mapped_column(String(50), default="per day", nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    giver: Mapped["ServiceGiver"] = relationship(back_populates="offerings")
    service: Mapped["ServiceType"] = relationship()

    __table_args__ = (
        CheckConstraint("price_rwf >= 0", name="ck_giver_service_price_non_negative"),
    )


# ── Bookings ──────────────────────────────────────────────────

class Booking(TimestampMixin, Base):
    """
    Core booking entity.
    Status transitions: Pending → Accepted | Rejected; Accepted → Completed.
    Cancelled exists as a value only; no transition leads into it.
    """
    __tablename__ = "Booking"

    booking_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    client_id: Mapped[int] = mapped_column(ForeignKey("Client.client_id"), nullable=False)
    giver_id: Mapped[int] = mapped_column(ForeignKey("Service_Giver.giver_id"), nullable=False)
    service_id: Mapped[int] = mapped_column(ForeignKey("Service_Type.service_id"), nullable=False)

    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    total_price_rwf: Mapped[int] = mapped_column(Integer, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    status: Mapped[BookingStatus] = mapped_column(
        _enum_column(BookingStatus, "booking_status"),
        nullable=False,
        default=BookingStatus.PENDING,
    )
    is_paid: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    client: Mapped["Client"] = relationship(back_populates="bookings")
    giver: Mapped["ServiceGiver"] = relationship(back_populates="bookings")
    service: Mapped["ServiceType"] = relationship()

    __table_args__ = (
        CheckConstraint("end_date >= start_date", name="ck_booking_date_range"),
        Index("ix_booking_client_id", "client_id"),
        Index("ix_booking_giver_id", "giver_id"),
        Index("ix_booking_status", "status"),
        Index("ix_booking_created_at", "created_at"),
    )


class BookingStatusLog(Base):
    """Append-only history of booking status transitions."""
    __tablename__ = "Booking_Status_Log"

    log_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    booking_id: Mapped[int] = mapped_column(ForeignKey("Booking.booking_id"), nullable=False)
    from_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    to_status: Mapped[str] = mapped_column(String(20), nullable=False)
    changed_by_role: Mapped[str] = mapped_column(String(10), nullable=False)
    changed_by_id: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (Index("ix_booking_status_log_booking_id", "booking_id"),)


class Payment(Base):
    """Simulated payment. At most one per booking."""
    __tablename__ = "Payment"

    payment_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    booking_id: Mapped[int] = mapped_column(
        ForeignKey("Booking.booking_id"), unique=True, nullable=False
    )
    client_id: Mapped[int] = mapped_column(ForeignKey("Client.client_id"), nullable=False)
    amount_rwf: Mapped[int] = mapped_column(Integer, nullable=False)
    method: Mapped[PaymentMethod] = mapped_column(
        _enum_column(PaymentMethod, "payment_method"), nullable=False
    )
    reference: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[PaymentStatus] = mapped_column(
        _enum_column(PaymentStatus, "payment_status"),
        nullable=False,
        default=PaymentStatus.PAID,
    )
    paid_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (Index("ix_payment_paid_at", "paid_at"),)


class Review(TimestampMixin, Base):
    """Post-booking review. One per booking (enforced by unique constraint)."""
    __tablename__ = "Review"

    review_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    booking_id: Mapped[int] = mapped_column(
        ForeignKey("Booking.booking_id"), unique=True, nullable=False
    )
    client_id: Mapped[int] = mapped_column(ForeignKey("Client.client_id"), nullable=False)
    giver_id: Mapped[int] = mapped_column(ForeignKey("Service_Giver.giver_id"), nullable=False)
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint("rating >= 1 AND rating <= 5", name="ck_review_rating_range"),
        Index("ix_review_giver_id", "giver_id"),
    )


# ── Platform administration ───────────────────────────────────

class SystemSetting(Base):
    """Key/value platform configuration. Values are JSON-encoded text."""
    __tablename__ = "System_Setting"

    setting_key: Mapped[str] = mapped_column(String(100), primary_key=True)
    setting_value: Mapped[str] = mapped_column(Text, nullable=False)


class AdminAuditLog(Base):
    """Immutable log of all admin actions."""
    __tablename__ = "Admin_Audit_Log"

    log_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    admin_id: Mapped[int] = mapped_column(ForeignKey("Admin.admin_id"), nullable=False)
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    payload: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_admin_audit_admin_id", "admin_id"),
        Index("ix_admin_audit_created_at", "created_at"),
    )
