# Lease extension endpoints. A tenant asks to push an active booking's end date out,
# the owner approves or rejects, and the tenant settles the extension's payment.
from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from ..clock import Clock, get_clock
from ..db import get_db
from ..extension_lifecycle import ExtensionLifecycle
from .. import schemas
from ..rate_limit import rate_limit
from .auth import get_actor, require_owner, require_tenant

router = APIRouter()


def get_extension_lifecycle(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> ExtensionLifecycle:
    return ExtensionLifecycle(db, clock)


@router.post(
    "/bookings/{booking_id}/extensions",
    response_model=schemas.ExtensionRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("write"))],
)
def request_extension(
    booking_id: int,
    payload: schemas.ExtensionCreate,
    lifecycle: ExtensionLifecycle = Depends(get_extension_lifecycle),
    actor: schemas.Actor = Depends(require_tenant),
):
    return lifecycle.request_extension(actor, booking_id, payload.new_end_date)


@router.get("/bookings/{booking_id}/extensions", response_model=List[schemas.ExtensionRead])
def list_extensions(
    booking_id: int,
    lifecycle: ExtensionLifecycle = Depends(get_extension_lifecycle),
    actor: schemas.Actor = Depends(get_actor),
):
    return lifecycle.list_for_booking(actor, booking_id)


@router.post(
    "/extensions/{extension_id}/approve",
    response_model=schemas.ExtensionRead,
    dependencies=[Depends(rate_limit("write"))],
)
def approve_extension(
    extension_id: int,
    lifecycle: ExtensionLifecycle = Depends(get_extension_lifecycle),
    actor: schemas.Actor = Depends(require_owner),
):
    return lifecycle.approve_extension(actor, extension_id)


@router.post(
    "/extensions/{extension_id}/reject",
    response_model=schemas.ExtensionRead,
    dependencies=[Depends(rate_limit("write"))],
)
def reject_extension(
    extension_id: int,
    lifecycle: ExtensionLifecycle = Depends(get_extension_lifecycle),
    actor: schemas.Actor = Depends(require_owner),
):
    return lifecycle.reject_extension(actor, extension_id)


@router.post(
    "/extensions/{extension_id}/confirm-payment",
    response_model=schemas.ExtensionPaymentConfirmation,
    dependencies=[Depends(rate_limit("write"))],
)
def confirm_extension_payment(
    extension_id: int,
    lifecycle: ExtensionLifecycle = Depends(get_extension_lifecycle),
    actor: schemas.Actor = Depends(require_tenant),
) -> schemas.ExtensionPaymentConfirmation:
    extension, booking, payment = lifecycle.confirm_extension_payment(actor, extension_id)
    return schemas.ExtensionPaymentConfirmation(
        extension=schemas.ExtensionRead.model_validate(extension),
        booking=schemas.BookingRead.model_validate(booking),
        payment=schemas.PaymentRead.model_validate(payment),
    )
