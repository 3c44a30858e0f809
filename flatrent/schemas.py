# Pydantic models (request/response DTOs) used by the API layer.
# Keep models minimal and serializable; business logic lives in the lifecycle managers.
from pydantic import BaseModel, Field, ConfigDict, field_validator, EmailStr
from typing import Literal, List, Optional, Union
from datetime import date, datetime


# User roles within the system
Role = Literal["owner", "tenant"]


# Authenticated caller handed to the lifecycle managers by the API layer
class Actor(BaseModel):
    id: int
    role: Role

    model_config = ConfigDict(frozen=True)


# Normalize email input to lowercase without surrounding whitespace
def _normalize_email(v: str) -> str:
    if isinstance(v, str):
        v = v.strip().lower()
    return v


# Authentication and user models

# Request payload for user registration
class UserCreate(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=6)
    phone: str = Field(..., min_length=1, max_length=32)
    nid: str = Field(..., min_length=1, max_length=32)
    role: Role = "tenant"

    # Normalize email input to lowercase without surrounding whitespace
    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return _normalize_email(v)


# API response for a user record
class UserRead(BaseModel):
    id: int
    email: EmailStr
    role: Role
    first_name: str
    last_name: str
    verified: bool

    model_config = ConfigDict(from_attributes=True)


# Request payload for logging in
class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)

    # Normalize email input to lowercase without surrounding whitespace
    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return _normalize_email(v)


# Request payload carrying only an email (resend verification, forgot password)
class EmailRequest(BaseModel):
    email: EmailStr

    # Normalize email input to lowercase without surrounding whitespace
    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return _normalize_email(v)


# Request payload for confirming an email address with the mailed code
class VerifyEmailRequest(BaseModel):
    email: EmailStr
    code: str = Field(..., min_length=6, max_length=6)

    # Normalize email input to lowercase without surrounding whitespace
    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return _normalize_email(v)


# Request payload for setting a new password with a mailed reset code
class ResetPasswordRequest(BaseModel):
    email: EmailStr
    code: str = Field(..., min_length=6, max_length=6)
    new_password: str = Field(..., min_length=6)

    # Normalize email input to lowercase without surrounding whitespace
    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return _normalize_email(v)


# OAuth2-style token response bundled with the current user profile
class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserRead


class MessageResponse(BaseModel):
    message: str


# Flats
# Fields an owner supplies when listing a flat
class FlatBase(BaseModel):
    flat_number: Optional[str] = Field(None, max_length=32)
    floor: Optional[int] = None
    house_name: Optional[str] = Field(None, max_length=255)
    house_number: Optional[str] = Field(None, max_length=32)
    address: str = Field(..., min_length=1, max_length=255)
    district: str = Field(..., min_length=1, max_length=100)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    monthly_rent_cents: int = Field(..., ge=0)
    utility_cost_cents: Optional[int] = Field(None, ge=0)
    bedrooms: Optional[int] = Field(None, ge=0)
    bathrooms: Optional[int] = Field(None, ge=0)
    minimum_stay: Optional[int] = Field(None, ge=0)
    description: Optional[str] = None

    @field_validator("address", "district", "monthly_rent_cents")
    @classmethod
    def _required_fields_not_null(cls, v):
        # Omitting a field leaves it alone; an explicit null would clear a required column
        if v is None:
            raise ValueError("must not be null")
        return v

    @field_validator("address", "district", mode="before")
    @classmethod
    def strip_text(cls, v: str) -> str:
        # Trim surrounding whitespace before validation
        if isinstance(v, str):
            v = v.strip()
        return v


# Payload for creating a new flat
class FlatCreate(FlatBase):
    status: Literal["available", "unavailable"] = "available"


# Partial update; omitted fields are left untouched
class FlatUpdate(BaseModel):
    flat_number: Optional[str] = Field(None, max_length=32)
    floor: Optional[int] = None
    house_name: Optional[str] = Field(None, max_length=255)
    house_number: Optional[str] = Field(None, max_length=32)
    address: Optional[str] = Field(None, min_length=1, max_length=255)
    district: Optional[str] = Field(None, min_length=1, max_length=100)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    monthly_rent_cents: Optional[int] = Field(None, ge=0)
    utility_cost_cents: Optional[int] = Field(None, ge=0)
    bedrooms: Optional[int] = Field(None, ge=0)
    bathrooms: Optional[int] = Field(None, ge=0)
    minimum_stay: Optional[int] = Field(None, ge=0)
    description: Optional[str] = None

    @field_validator("address", "district", "monthly_rent_cents")
    @classmethod
    def _required_not_null(cls, v):
        # Omitting a field leaves it alone; an explicit null would clear a required column
        if v is None:
            raise ValueError("must not be null")
        return v


# Owner toggles a listing on or off the market
class FlatStatusUpdate(BaseModel):
    status: Literal["available", "unavailable"]


# Public projection of a flat: no unit-level address details or utility costs
class FlatRead(BaseModel):
    id: int
    owner_id: int
    house_name: Optional[str] = None
    address: str
    district: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    monthly_rent_cents: int
    bedrooms: Optional[int] = None
    bathrooms: Optional[int] = None
    minimum_stay: Optional[int] = None
    description: Optional[str] = None
    status: Literal["available", "pending", "booked", "unavailable"]
    rating: Optional[float] = None

    model_config = ConfigDict(from_attributes=True)


# Full projection returned to the flat's owner
class FlatOwnerRead(FlatRead):
    flat_number: Optional[str] = None
    floor: Optional[int] = None
    house_number: Optional[str] = None
    utility_cost_cents: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# Bookings
BookingStatus = Literal["pending", "approved", "active", "completed", "expired", "cancelled", "disapproved"]
PaymentStatus = Literal["pending", "awaiting_tenant_payment", "completed", "failed"]
ExtensionStatus = Literal["pending", "approved", "rejected"]


# Request payload for creating a booking
class BookingCreate(BaseModel):
    flat_id: int = Field(..., ge=1)
    start_date: date
    end_date: date


# API response for a payment record
class PaymentRead(BaseModel):
    id: int
    booking_id: int
    extension_id: Optional[int] = None
    amount_cents: int
    date_paid: Optional[datetime] = None
    status: PaymentStatus
    payment_method: str

    model_config = ConfigDict(from_attributes=True)


# API response for an extension record
class ExtensionRead(BaseModel):
    id: int
    booking_id: int
    new_start_date: date
    new_end_date: date
    status: ExtensionStatus
    requested_at: datetime

    model_config = ConfigDict(from_attributes=True)


# API response for a booking record
class BookingRead(BaseModel):
    id: int
    flat_id: int
    user_id: int
    start_date: date
    end_date: date
    status: BookingStatus
    approved_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# Booking together with its payments and extensions, as listed on dashboards
class BookingDetail(BookingRead):
    payments: List[PaymentRead] = []
    extensions: List[ExtensionRead] = []


# Returned after a payment confirmation: the booking and the payment that settled it
class PaymentConfirmation(BaseModel):
    booking: BookingRead
    payment: PaymentRead


# Extensions
class ExtensionCreate(BaseModel):
    new_end_date: date


class ExtensionPaymentConfirmation(BaseModel):
    extension: ExtensionRead
    booking: BookingRead
    payment: PaymentRead


# Owner-only section of a flat's detail page
class FlatPrivateDetails(BaseModel):
    flat_number: Optional[str] = None
    floor: Optional[int] = None
    house_number: Optional[str] = None
    utility_cost_cents: Optional[int] = None
    current_booking: Optional[BookingDetail] = None


# Flat detail page. `private` is only filled for the flat's owner; `my_booking` is the
# caller's own pending/approved/active booking of the flat, if any.
class FlatDetail(FlatRead):
    visibility: Literal["public", "owner"] = "public"
    private: Optional[FlatPrivateDetails] = None
    my_booking: Optional[BookingDetail] = None


# Reviews


# Criteria a tenant scores after staying in a flat
class TenantCriteria(BaseModel):
    kind: Literal["tenant"] = "tenant"
    flat_quality: Optional[int] = Field(None, ge=1, le=5)
    hygiene: Optional[int] = Field(None, ge=1, le=5)
    location: Optional[int] = Field(None, ge=1, le=5)
    owner_behavior: Optional[int] = Field(None, ge=1, le=5)


# Criteria an owner scores about a tenant
class OwnerCriteria(BaseModel):
    kind: Literal["owner"] = "owner"
    tenant_behavior: Optional[int] = Field(None, ge=1, le=5)
    cooperation: Optional[int] = Field(None, ge=1, le=5)


ReviewCriteria = Union[TenantCriteria, OwnerCriteria]


# Request payload for writing a review; only the caller's role's criteria are read
class ReviewUpsert(BaseModel):
    booking_id: int = Field(..., ge=1)
    flat_id: Optional[int] = Field(None, ge=1)
    comment: Optional[str] = Field(None, max_length=2000)
    flat_quality: Optional[int] = Field(None, ge=1, le=5)
    hygiene: Optional[int] = Field(None, ge=1, le=5)
    location: Optional[int] = Field(None, ge=1, le=5)
    owner_behavior: Optional[int] = Field(None, ge=1, le=5)
    tenant_behavior: Optional[int] = Field(None, ge=1, le=5)
    cooperation: Optional[int] = Field(None, ge=1, le=5)

    def criteria_for(self, role: str) -> ReviewCriteria:
        if role == "owner":
            return OwnerCriteria(tenant_behavior=self.tenant_behavior, cooperation=self.cooperation)
        return TenantCriteria(
            flat_quality=self.flat_quality,
            hygiene=self.hygiene,
            location=self.location,
            owner_behavior=self.owner_behavior,
        )


# API response for a review
class ReviewRead(BaseModel):
    id: int
    booking_id: int
    flat_id: int
    reviewer_id: int
    reviewed_user_id: int
    reviewer_role: Role
    flat_quality: Optional[int] = None
    hygiene: Optional[int] = None
    location: Optional[int] = None
    owner_behavior: Optional[int] = None
    tenant_behavior: Optional[int] = None
    cooperation: Optional[int] = None
    rating_given: float
    comment: Optional[str] = None
    date_submitted: datetime

    model_config = ConfigDict(from_attributes=True)


# Review plus the reviewer's display name, as listed on a flat page
class ReviewListItem(ReviewRead):
    reviewer_first_name: Optional[str] = None
    reviewer_last_name: Optional[str] = None


# Result of writing a review: the review and the flat's new aggregate rating
class ReviewResult(BaseModel):
    review: ReviewRead
    flat_rating: Optional[float] = None


# Flat aggregate rating after a review was removed
class RatingResponse(BaseModel):
    flat_rating: Optional[float] = None
