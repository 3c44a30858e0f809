# Extension lifecycle layered on an active booking: request, approve, reject, confirm payment.
# Each extension owns exactly one payment through Payment.extension_id.
from __future__ import annotations

import logging
from datetime import date
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from . import models, schemas
from .booking_lifecycle import lock_flat, ranges_overlap
from .clock import Clock, utc_now
from .db import atomic
from .errors import Conflict, Forbidden, InvalidInput, InvalidState, NotFound
from .reconcile import reconcile_flat

logger = logging.getLogger("flatrent.extensions")


class ExtensionLifecycle:
    """
    pending --approve--> approved --confirm_extension_payment--> approved (booking end_date moved)
    pending|approved --reject--> rejected
    """

    def __init__(self, db: Session, clock: Clock = utc_now) -> None:
        self.db = db
        self.clock = clock

    def _open(
        self, extension_id: int
    ) -> Tuple[models.Extension, models.Booking, models.Flat, Optional[models.Payment]]:
        extension = self.db.get(models.Extension, extension_id)
        if not extension:
            raise NotFound("Extension request not found.")
        booking = self.db.get(models.Booking, extension.booking_id)
        if not booking:
            raise NotFound("Booking not found.")
        flat = lock_flat(self.db, booking.flat_id)
        reconcile_flat(self.db, flat, self.clock().date())
        self.db.refresh(extension)
        self.db.refresh(booking)
        payment = (
            self.db.query(models.Payment)
            .filter(models.Payment.extension_id == extension.id)
            .first()
        )
        return extension, booking, flat, payment

    def _unsettled_extension_exists(self, booking_id: int) -> bool:
        row = (
            self.db.query(models.Extension.id)
            .join(models.Payment, models.Payment.extension_id == models.Extension.id)
            .filter(
                models.Extension.booking_id == booking_id,
                models.Extension.status.in_(("pending", "approved")),
                models.Payment.status.in_(models.OPEN_PAYMENT_STATUSES),
            )
            .first()
        )
        return row is not None

    def _collides_with_other_bookings(self, booking: models.Booking, new_end_date: date) -> bool:
        others = (
            self.db.query(models.Booking)
            .filter(
                models.Booking.flat_id == booking.flat_id,
                models.Booking.id != booking.id,
                models.Booking.status.in_(models.RELEVANT_BOOKING_STATUSES),
            )
            .all()
        )
        return any(
            ranges_overlap(booking.end_date, new_end_date, other.start_date, other.end_date)
            for other in others
        )

    def request_extension(
        self, actor: schemas.Actor, booking_id: int, new_end_date: date
    ) -> models.Extension:
        with atomic(self.db):
            booking = self.db.get(models.Booking, booking_id)
            if not booking:
                raise NotFound("Booking not found.")
            flat = lock_flat(self.db, booking.flat_id)
            reconcile_flat(self.db, flat, self.clock().date())
            self.db.refresh(booking)

            if booking.user_id != actor.id:
                raise Forbidden("Not authorized to request extension for this booking.")
            if new_end_date <= booking.end_date:
                raise InvalidInput("New end date must be after the current end date.")
            if booking.status != "active":
                raise InvalidState("Only active bookings can be extended.")
            if self._unsettled_extension_exists(booking.id):
                raise InvalidState("An extension request for this booking is already in progress.")
            if self._collides_with_other_bookings(booking, new_end_date):
                raise Conflict("Extension dates conflict with another reservation of this flat.")

            extension = models.Extension(
                booking_id=booking.id,
                new_start_date=booking.end_date,
                new_end_date=new_end_date,
                status="pending",
                requested_at=self.clock(),
            )
            self.db.add(extension)
            self.db.flush()
            self.db.add(
                models.Payment(
                    booking_id=booking.id,
                    extension_id=extension.id,
                    amount_cents=flat.monthly_rent_cents,
                    status="pending",
                    payment_method="system",
                )
            )

        self.db.refresh(extension)
        logger.info(
            "extension.requested",
            extra={"extension_id": extension.id, "booking_id": booking_id, "new_end_date": str(new_end_date)},
        )
        return extension

    def approve_extension(self, actor: schemas.Actor, extension_id: int) -> models.Extension:
        with atomic(self.db):
            extension, booking, flat, payment = self._open(extension_id)
            if flat.owner_id != actor.id:
                raise Forbidden("Not authorized to approve this extension.")
            if extension.status != "pending":
                raise InvalidState('Extension is not in "pending" status for approval.')
            if not payment or payment.status != "pending":
                raise InvalidState("No pending payment found for this extension request.")

            extension.status = "approved"
            payment.status = "awaiting_tenant_payment"
            self.db.add_all([extension, payment])

        self.db.refresh(extension)
        logger.info("extension.approved", extra={"extension_id": extension.id, "owner_id": actor.id})
        return extension

    def reject_extension(self, actor: schemas.Actor, extension_id: int) -> models.Extension:
        with atomic(self.db):
            extension, booking, flat, payment = self._open(extension_id)
            if flat.owner_id != actor.id:
                raise Forbidden("Not authorized to reject this extension.")
            if extension.status not in ("pending", "approved"):
                raise InvalidState("Extension cannot be rejected from its current status.")
            if payment is not None and payment.status == "completed":
                raise InvalidState("Extension has already been paid and applied.")

            extension.status = "rejected"
            self.db.add(extension)
            if payment is not None and payment.status in models.OPEN_PAYMENT_STATUSES:
                payment.status = "failed"
                self.db.add(payment)

        self.db.refresh(extension)
        logger.info("extension.rejected", extra={"extension_id": extension.id, "owner_id": actor.id})
        return extension

    def confirm_extension_payment(
        self, actor: schemas.Actor, extension_id: int
    ) -> Tuple[models.Extension, models.Booking, models.Payment]:
        with atomic(self.db):
            extension, booking, flat, payment = self._open(extension_id)
            if booking.user_id != actor.id:
                raise Forbidden("Not authorized to confirm payment for this extension.")
            if extension.status != "approved":
                raise InvalidState('Extension is not in "approved" status. Payment cannot be confirmed.')
            if not payment or payment.status != "awaiting_tenant_payment":
                raise InvalidState("No pending payment found for this extension.")
            if booking.status != "active":
                raise InvalidState("The booking is no longer active and cannot be extended.")

            booking.end_date = extension.new_end_date
            payment.status = "completed"
            payment.date_paid = self.clock()
            self.db.add_all([booking, payment])

        self.db.refresh(extension)
        self.db.refresh(booking)
        self.db.refresh(payment)
        logger.info(
            "extension.paid",
            extra={
                "extension_id": extension.id,
                "booking_id": booking.id,
                "payment_id": payment.id,
                "end_date": str(booking.end_date),
            },
        )
        return extension, booking, payment

    def list_for_booking(self, actor: schemas.Actor, booking_id: int) -> List[models.Extension]:
        booking = self.db.get(models.Booking, booking_id)
        if not booking:
            raise NotFound("Booking not found.")
        flat = self.db.get(models.Flat, booking.flat_id)
        if booking.user_id != actor.id and (flat is None or flat.owner_id != actor.id):
            raise Forbidden("Not authorized to view extensions of this booking.")
        return (
            self.db.query(models.Extension)
            .filter(models.Extension.booking_id == booking_id)
            .order_by(models.Extension.requested_at.desc(), models.Extension.id.desc())
            .all()
        )
