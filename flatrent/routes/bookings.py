# Booking endpoints: create/approve/disapprove/cancel/confirm-payment and booking dashboards.
# Routes stay thin: the lifecycle manager enforces ownership, state and conflicts; this layer adds the
# per-flat Redis lock around creation and the rate limits.
from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from ..booking_lifecycle import BookingLifecycle
from ..clock import Clock, get_clock
from ..db import get_db
from .. import schemas
from ..locks import flat_lock_key, redis_try_lock
from ..rate_limit import rate_limit
from .auth import get_actor, require_owner, require_tenant

router = APIRouter()


def get_booking_lifecycle(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> BookingLifecycle:
    return BookingLifecycle(db, clock)


@router.post(
    "/bookings",
    response_model=schemas.BookingRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("write"))],
)
def create_booking(
    payload: schemas.BookingCreate,
    lifecycle: BookingLifecycle = Depends(get_booking_lifecycle),
    actor: schemas.Actor = Depends(require_tenant),
):
    # Coarse per-flat lock to limit cross-process races between the conflict check and the insert
    with redis_try_lock(flat_lock_key(payload.flat_id), ttl_ms=5000) as locked:
        if not locked:
            # Another process is booking this flat; instruct client to retry shortly
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail={"error": "busy", "retry_after": 1},
            )
        return lifecycle.create_booking(actor, payload.flat_id, payload.start_date, payload.end_date)


@router.get("/bookings/owner", response_model=List[schemas.BookingDetail])
def list_owner_bookings(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    lifecycle: BookingLifecycle = Depends(get_booking_lifecycle),
    actor: schemas.Actor = Depends(require_owner),
) -> List[schemas.BookingDetail]:
    """Bookings of every flat the caller owns, newest first, with payments and extensions."""
    return lifecycle.list_owner_bookings(actor, limit=limit, offset=offset)


@router.get("/bookings/tenant", response_model=List[schemas.BookingDetail])
def list_tenant_bookings(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    lifecycle: BookingLifecycle = Depends(get_booking_lifecycle),
    actor: schemas.Actor = Depends(require_tenant),
) -> List[schemas.BookingDetail]:
    return lifecycle.list_tenant_bookings(actor, limit=limit, offset=offset)


@router.get("/bookings/{booking_id}", response_model=schemas.BookingDetail)
def get_booking(
    booking_id: int,
    lifecycle: BookingLifecycle = Depends(get_booking_lifecycle),
    actor: schemas.Actor = Depends(get_actor),
) -> schemas.BookingDetail:
    return lifecycle.get_booking(actor, booking_id)


@router.post(
    "/bookings/{booking_id}/approve",
    response_model=schemas.BookingRead,
    dependencies=[Depends(rate_limit("write"))],
)
def approve_booking(
    booking_id: int,
    lifecycle: BookingLifecycle = Depends(get_booking_lifecycle),
    actor: schemas.Actor = Depends(require_owner),
):
    return lifecycle.approve_booking(actor, booking_id)


@router.post(
    "/bookings/{booking_id}/disapprove",
    response_model=schemas.BookingRead,
    dependencies=[Depends(rate_limit("write"))],
)
def disapprove_booking(
    booking_id: int,
    lifecycle: BookingLifecycle = Depends(get_booking_lifecycle),
    actor: schemas.Actor = Depends(require_owner),
):
    return lifecycle.disapprove_booking(actor, booking_id)


@router.post(
    "/bookings/{booking_id}/cancel",
    response_model=schemas.BookingRead,
    dependencies=[Depends(rate_limit("write"))],
)
def cancel_booking(
    booking_id: int,
    lifecycle: BookingLifecycle = Depends(get_booking_lifecycle),
    actor: schemas.Actor = Depends(require_tenant),
):
    return lifecycle.cancel_booking(actor, booking_id)


@router.post(
    "/bookings/{booking_id}/confirm-payment",
    response_model=schemas.PaymentConfirmation,
    dependencies=[Depends(rate_limit("write"))],
)
def confirm_payment(
    booking_id: int,
    lifecycle: BookingLifecycle = Depends(get_booking_lifecycle),
    actor: schemas.Actor = Depends(require_tenant),
) -> schemas.PaymentConfirmation:
    """Tenant marks the approved booking's outstanding payment as paid; the booking becomes active."""
    booking, payment = lifecycle.confirm_payment(actor, booking_id)
    return schemas.PaymentConfirmation(
        booking=schemas.BookingRead.model_validate(booking),
        payment=schemas.PaymentRead.model_validate(payment),
    )
