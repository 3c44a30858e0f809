# SQLAlchemy ORM models for the marketplace tables (users, flats, bookings, payments, extensions, reviews).
# Keep business logic out of models; the lifecycle managers own every status transition.
from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import declarative_mixin

from .db import Base

# Status vocabularies
USER_ROLES = ("tenant", "owner")
FLAT_STATUSES = ("available", "pending", "booked", "unavailable")
BOOKING_STATUSES = ("pending", "approved", "active", "completed", "expired", "cancelled", "disapproved")
# A booking in one of these states holds its dates on the flat
RELEVANT_BOOKING_STATUSES = ("pending", "approved", "active")
PAYMENT_STATUSES = ("pending", "awaiting_tenant_payment", "completed", "failed")
OPEN_PAYMENT_STATUSES = ("pending", "awaiting_tenant_payment")
EXTENSION_STATUSES = ("pending", "approved", "rejected")


@declarative_mixin
class TimestampMixin:
    """Common UTC-aware timestamps automatically managed by the database.

    - created_at: set on insert
    - updated_at: set on insert and updated on each modification
    """
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class User(Base, TimestampMixin):
    """Marketplace account.

    Roles:
    - owner: lists and manages flats, approves bookings and extensions
    - tenant: books flats, pays rent, requests extensions
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False, index=True)  # "owner" or "tenant"
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    phone = Column(String(32), nullable=False)
    nid = Column(String(32), nullable=False)
    verified = Column(Boolean, nullable=False, default=False)
    verification_code = Column(String(6), nullable=True)
    verification_expires_at = Column(DateTime(timezone=True), nullable=True)
    reset_code = Column(String(6), nullable=True)
    reset_expires_at = Column(DateTime(timezone=True), nullable=True)


class Flat(Base, TimestampMixin):
    """Rental listing owned by exactly one owner.

    `status` is a projection of the flat's relevant bookings (see reconcile.py);
    `rating` is the mean of tenant-authored reviews.
    """
    __tablename__ = "flats"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    flat_number = Column(String(32), nullable=True)
    floor = Column(Integer, nullable=True)
    house_name = Column(String(255), nullable=True)
    house_number = Column(String(32), nullable=True)
    address = Column(String(255), nullable=False)
    district = Column(String(100), nullable=False, index=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    monthly_rent_cents = Column(Integer, nullable=False)
    utility_cost_cents = Column(Integer, nullable=True)
    bedrooms = Column(Integer, nullable=True)
    bathrooms = Column(Integer, nullable=True)
    minimum_stay = Column(Integer, nullable=True)  # months
    description = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default="available", index=True)
    rating = Column(Numeric(3, 2), nullable=True)


class Booking(Base, TimestampMixin):
    """Lease of a flat by a tenant over an inclusive date range.

    Status transitions:
    pending -> approved -> active -> expired
       └─────────┴── disapproved / cancelled
    """
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    flat_id = Column(Integer, ForeignKey("flats.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    status = Column(String(20), nullable=False, default="pending")
    approved_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    # Conflict checks and expiry reconciliation scan a flat's bookings by status and date range
    __table_args__ = (
        Index("ix_bookings_flat_status", "flat_id", "status"),
        Index("ix_bookings_flat_start", "flat_id", "start_date"),
        Index("ix_bookings_flat_end", "flat_id", "end_date"),
    )


class Extension(Base):
    """Tenant request to push an active booking's end date further out."""
    __tablename__ = "extensions"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    booking_id = Column(Integer, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True)
    new_start_date = Column(Date, nullable=False)
    new_end_date = Column(Date, nullable=False)
    status = Column(String(20), nullable=False, default="pending")
    requested_at = Column(DateTime(timezone=True), nullable=False)


class Payment(Base):
    """Rent payment owned by a booking.

    extension_id is set when the payment settles an extension; the initial rent payment has none.
    Payments are never deleted, only moved to completed/failed.
    """
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    booking_id = Column(Integer, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True)
    extension_id = Column(Integer, ForeignKey("extensions.id", ondelete="CASCADE"), nullable=True, unique=True)
    amount_cents = Column(Integer, nullable=False)
    date_paid = Column(DateTime(timezone=True), nullable=True)
    status = Column(String(32), nullable=False, default="pending")
    payment_method = Column(String(32), nullable=False, default="system")

    __table_args__ = (
        Index("ix_payments_booking_status", "booking_id", "status"),
    )


class Review(Base):
    """Review left by one party of a booking about the other.

    One slot per (booking, reviewer_role): the tenant reviews the flat and its owner,
    the owner reviews the tenant. Criteria columns of the other role stay NULL.
    """
    __tablename__ = "reviews"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    booking_id = Column(Integer, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True)
    flat_id = Column(Integer, ForeignKey("flats.id", ondelete="CASCADE"), nullable=False, index=True)
    reviewer_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    reviewed_user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    reviewer_role = Column(String(20), nullable=False)
    # tenant criteria
    flat_quality = Column(Integer, nullable=True)
    hygiene = Column(Integer, nullable=True)
    location = Column(Integer, nullable=True)
    owner_behavior = Column(Integer, nullable=True)
    # owner criteria
    tenant_behavior = Column(Integer, nullable=True)
    cooperation = Column(Integer, nullable=True)
    rating_given = Column(Numeric(3, 2), nullable=False)
    comment = Column(Text, nullable=True)
    date_submitted = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("booking_id", "reviewer_role", name="uq_reviews_booking_role"),
        Index("ix_reviews_flat_submitted", "flat_id", "date_submitted"),
    )
