# Booking lifecycle: create/approve/disapprove/cancel/confirm-payment and booking queries.
# Every transition is one atomic() transaction over Booking + Payment + Flat, preceded by expiry reconciliation
# of the flat and a row lock on it (where the dialect supports one) so eligibility is re-checked under the lock.
from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date
from typing import Dict, List, Sequence, Tuple

from sqlalchemy.orm import Session

from . import models, schemas
from .clock import Clock, utc_now
from .db import atomic, supports_row_locks
from .errors import Conflict, Forbidden, InvalidInput, InvalidState, NotFound
from .reconcile import reconcile_flat, reproject_flat

logger = logging.getLogger("flatrent.bookings")


def ranges_overlap(a_start: date, a_end: date, b_start: date, b_end: date) -> bool:
    """Inclusive-bound overlap: ranges sharing even a single day conflict."""
    return a_start <= b_end and a_end >= b_start


def has_conflict(
    db: Session,
    flat_id: int,
    start_date: date,
    end_date: date,
) -> bool:
    """
    Return True if a pending, approved or active booking of the flat overlaps [start_date, end_date].

    Logic:
    existing.start_date <= end_date AND existing.end_date >= start_date
    """
    exists = (
        db.query(models.Booking.id)
        .filter(
            models.Booking.flat_id == flat_id,
            models.Booking.status.in_(models.RELEVANT_BOOKING_STATUSES),
            models.Booking.start_date <= end_date,
            models.Booking.end_date >= start_date,
        )
        .first()
    )
    return exists is not None


def lock_flat(db: Session, flat_id: int) -> models.Flat:
    """Load a flat, taking a row lock on server databases. Raises NotFound."""
    q = db.query(models.Flat).filter(models.Flat.id == flat_id)
    if supports_row_locks(db):
        q = q.with_for_update()
    flat = q.first()
    if not flat:
        raise NotFound("Flat not found.")
    return flat


def attach_children(db: Session, bookings: Sequence[models.Booking]) -> List[schemas.BookingDetail]:
    """Bundle each booking with its payments and extensions, both in creation order."""
    ids = [b.id for b in bookings]
    payments: Dict[int, list] = defaultdict(list)
    extensions: Dict[int, list] = defaultdict(list)
    if ids:
        for p in (
            db.query(models.Payment)
            .filter(models.Payment.booking_id.in_(ids))
            .order_by(models.Payment.id.asc())
        ):
            payments[p.booking_id].append(schemas.PaymentRead.model_validate(p))
        for e in (
            db.query(models.Extension)
            .filter(models.Extension.booking_id.in_(ids))
            .order_by(models.Extension.id.asc())
        ):
            extensions[e.booking_id].append(schemas.ExtensionRead.model_validate(e))
    return [
        schemas.BookingDetail(
            **schemas.BookingRead.model_validate(b).model_dump(),
            payments=payments[b.id],
            extensions=extensions[b.id],
        )
        for b in bookings
    ]


class BookingLifecycle:
    """
    Owns the Booking / Payment / Flat status machine.

    pending --approve--> approved --confirm_payment--> active --[reconcile]--> expired
    pending|approved --disapprove--> disapproved
    pending|approved --cancel--> cancelled
    """

    def __init__(self, db: Session, clock: Clock = utc_now) -> None:
        self.db = db
        self.clock = clock

    def _today(self) -> date:
        return self.clock().date()

    def _get_booking(self, booking_id: int) -> models.Booking:
        booking = self.db.get(models.Booking, booking_id)
        if not booking:
            raise NotFound("Booking not found.")
        return booking

    def _open_booking(self, booking_id: int) -> Tuple[models.Booking, models.Flat]:
        # Lock the flat first, then re-read the booking so its status is current under the lock
        booking = self._get_booking(booking_id)
        flat = lock_flat(self.db, booking.flat_id)
        reconcile_flat(self.db, flat, self._today())
        self.db.refresh(booking)
        return booking, flat

    def _fail_open_payments(self, booking_id: int) -> int:
        return (
            self.db.query(models.Payment)
            .filter(
                models.Payment.booking_id == booking_id,
                models.Payment.status.in_(models.OPEN_PAYMENT_STATUSES),
            )
            .update({models.Payment.status: "failed"}, synchronize_session=False)
        )

    # ----------------
    # Transitions
    # ----------------
    def create_booking(
        self, actor: schemas.Actor, flat_id: int, start_date: date, end_date: date
    ) -> models.Booking:
        if end_date <= start_date:
            raise InvalidInput("End date must be after the start date.")

        with atomic(self.db):
            flat = lock_flat(self.db, flat_id)
            if flat.owner_id == actor.id:
                raise Forbidden("Owners cannot book their own flats.")
            reconcile_flat(self.db, flat, self._today())
            if flat.status == "unavailable":
                raise InvalidState("This flat is not accepting bookings.")
            if has_conflict(self.db, flat.id, start_date, end_date):
                raise Conflict("Booking dates conflict with an existing active reservation.")

            booking = models.Booking(
                flat_id=flat.id,
                user_id=actor.id,
                start_date=start_date,
                end_date=end_date,
                status="pending",
            )
            self.db.add(booking)
            self.db.flush()
            self.db.add(
                models.Payment(
                    booking_id=booking.id,
                    amount_cents=flat.monthly_rent_cents,
                    status="pending",
                    payment_method="system",
                )
            )
            reproject_flat(self.db, flat)

        self.db.refresh(booking)
        logger.info(
            "booking.created",
            extra={
                "booking_id": booking.id,
                "flat_id": booking.flat_id,
                "user_id": actor.id,
                "start_date": str(start_date),
                "end_date": str(end_date),
            },
        )
        return booking

    def approve_booking(self, actor: schemas.Actor, booking_id: int) -> models.Booking:
        with atomic(self.db):
            booking, flat = self._open_booking(booking_id)
            if flat.owner_id != actor.id:
                raise Forbidden("Not authorized to approve this booking.")
            if booking.status != "pending":
                raise InvalidState('Booking is not in "pending" status for approval.')

            booking.status = "approved"
            booking.approved_at = self.clock()
            self.db.add(booking)
            (
                self.db.query(models.Payment)
                .filter(models.Payment.booking_id == booking.id, models.Payment.status == "pending")
                .update({models.Payment.status: "awaiting_tenant_payment"}, synchronize_session=False)
            )
            reproject_flat(self.db, flat)

        self.db.refresh(booking)
        logger.info("booking.approved", extra={"booking_id": booking.id, "owner_id": actor.id})
        return booking

    def disapprove_booking(self, actor: schemas.Actor, booking_id: int) -> models.Booking:
        with atomic(self.db):
            booking, flat = self._open_booking(booking_id)
            if flat.owner_id != actor.id:
                raise Forbidden("Not authorized to disapprove this booking.")
            if booking.status not in ("pending", "approved"):
                raise InvalidState("Booking cannot be disapproved from its current status.")

            booking.status = "disapproved"
            booking.cancelled_at = self.clock()
            self.db.add(booking)
            failed = self._fail_open_payments(booking.id)
            reproject_flat(self.db, flat)

        self.db.refresh(booking)
        logger.info(
            "booking.disapproved",
            extra={"booking_id": booking.id, "owner_id": actor.id, "payments_failed": failed},
        )
        return booking

    def cancel_booking(self, actor: schemas.Actor, booking_id: int) -> models.Booking:
        with atomic(self.db):
            booking, flat = self._open_booking(booking_id)
            if booking.user_id != actor.id:
                raise Forbidden("Not authorized to cancel this booking.")
            if booking.status not in ("pending", "approved"):
                raise InvalidState("Only pending or approved (awaiting payment) bookings can be cancelled by tenant.")

            booking.status = "cancelled"
            booking.cancelled_at = self.clock()
            self.db.add(booking)
            failed = self._fail_open_payments(booking.id)
            reproject_flat(self.db, flat)

        self.db.refresh(booking)
        logger.info(
            "booking.cancelled",
            extra={"booking_id": booking.id, "user_id": actor.id, "payments_failed": failed},
        )
        return booking

    def confirm_payment(
        self, actor: schemas.Actor, booking_id: int
    ) -> Tuple[models.Booking, models.Payment]:
        with atomic(self.db):
            booking, flat = self._open_booking(booking_id)
            if booking.user_id != actor.id:
                raise Forbidden("Not authorized to confirm payment for this booking.")
            if booking.status != "approved":
                raise InvalidState('Booking is not in "approved" status. Payment cannot be confirmed.')

            payment = (
                self.db.query(models.Payment)
                .filter(
                    models.Payment.booking_id == booking.id,
                    models.Payment.status == "awaiting_tenant_payment",
                )
                .order_by(models.Payment.id.asc())
                .first()
            )
            if not payment:
                raise InvalidState("No pending payments found for this booking.")

            payment.status = "completed"
            payment.date_paid = self.clock()
            booking.status = "active"
            self.db.add_all([payment, booking])
            reproject_flat(self.db, flat)

        self.db.refresh(booking)
        self.db.refresh(payment)
        logger.info(
            "booking.paid",
            extra={"booking_id": booking.id, "payment_id": payment.id, "amount_cents": payment.amount_cents},
        )
        return booking, payment

    # ----------------
    # Queries
    # ----------------
    def _reconcile_flats(self, flat_ids: Sequence[int]) -> None:
        today = self._today()
        with atomic(self.db):
            for flat in self.db.query(models.Flat).filter(models.Flat.id.in_(set(flat_ids))):
                reconcile_flat(self.db, flat, today)

    def get_booking(self, actor: schemas.Actor, booking_id: int) -> schemas.BookingDetail:
        booking = self._get_booking(booking_id)
        flat = self.db.get(models.Flat, booking.flat_id)
        if booking.user_id != actor.id and (flat is None or flat.owner_id != actor.id):
            raise Forbidden("Not authorized to view this booking.")
        self._reconcile_flats([booking.flat_id])
        self.db.refresh(booking)
        return attach_children(self.db, [booking])[0]

    def list_owner_bookings(
        self, actor: schemas.Actor, limit: int = 50, offset: int = 0
    ) -> List[schemas.BookingDetail]:
        flat_ids = [fid for (fid,) in self.db.query(models.Flat.id).filter(models.Flat.owner_id == actor.id)]
        if not flat_ids:
            return []
        self._reconcile_flats(flat_ids)
        items = (
            self.db.query(models.Booking)
            .filter(models.Booking.flat_id.in_(flat_ids))
            .order_by(models.Booking.created_at.desc(), models.Booking.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return attach_children(self.db, items)

    def list_tenant_bookings(
        self, actor: schemas.Actor, limit: int = 50, offset: int = 0
    ) -> List[schemas.BookingDetail]:
        flat_ids = [
            fid
            for (fid,) in self.db.query(models.Booking.flat_id)
            .filter(models.Booking.user_id == actor.id)
            .distinct()
        ]
        if flat_ids:
            self._reconcile_flats(flat_ids)
        items = (
            self.db.query(models.Booking)
            .filter(models.Booking.user_id == actor.id)
            .order_by(models.Booking.created_at.desc(), models.Booking.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return attach_children(self.db, items)
