# Expiry reconciliation and flat status projection.
# The pure functions decide; reconcile_flat() applies their result to ORM rows inside the caller's transaction.
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import date
from typing import Iterable, Sequence, Tuple

from sqlalchemy.orm import Session

from . import models

logger = logging.getLogger("flatrent.reconcile")


@dataclass(frozen=True)
class BookingState:
    id: int
    status: str
    end_date: date


@dataclass(frozen=True)
class Reconciliation:
    bookings: Tuple[BookingState, ...]
    flat_status: str
    mutated: bool

    @property
    def expired_ids(self) -> Tuple[int, ...]:
        return tuple(b.id for b in self.bookings if b.status == "expired")


def project_flat_status(current: str, relevant_statuses: Iterable[str]) -> str:
    """
    Derive Flat.status from the statuses of the flat's bookings.

    - booked: some booking is active
    - pending: some booking awaits approval or payment
    - unavailable: nothing relevant and the owner withdrew the listing
    - available: otherwise
    """
    statuses = set(relevant_statuses)
    if "active" in statuses:
        return "booked"
    if statuses & {"pending", "approved"}:
        return "pending"
    if current == "unavailable":
        return "unavailable"
    return "available"


def reconcile(flat_status: str, bookings: Sequence[BookingState], today: date) -> Reconciliation:
    """
    Expire every active booking whose end_date is `today` or earlier, then re-project the flat.

    end_date marks midnight at the start of the lease's last day, so the lease is over during that day.

    Pure and idempotent: feeding the result back in yields mutated=False.
    """
    out = []
    changed = False
    for b in bookings:
        if b.status == "active" and b.end_date <= today:
            out.append(replace(b, status="expired"))
            changed = True
        else:
            out.append(b)
    new_flat_status = project_flat_status(
        flat_status, (b.status for b in out if b.status in models.RELEVANT_BOOKING_STATUSES)
    )
    return Reconciliation(
        bookings=tuple(out),
        flat_status=new_flat_status,
        mutated=changed or new_flat_status != flat_status,
    )


def reconcile_flat(db: Session, flat: models.Flat, today: date) -> bool:
    """
    Load the flat's relevant bookings, reconcile them and stage any changes on the session.

    Does not commit; callers run this inside atomic() so the result lands with their own writes.
    Returns True when something was changed.
    """
    rows = (
        db.query(models.Booking)
        .filter(
            models.Booking.flat_id == flat.id,
            models.Booking.status.in_(models.RELEVANT_BOOKING_STATUSES),
        )
        .all()
    )
    result = reconcile(
        flat.status,
        [BookingState(id=r.id, status=r.status, end_date=r.end_date) for r in rows],
        today,
    )
    if not result.mutated:
        return False

    expired = set(result.expired_ids)
    for row in rows:
        if row.id in expired:
            row.status = "expired"
            db.add(row)
    if flat.status != result.flat_status:
        flat.status = result.flat_status
        db.add(flat)
    db.flush()
    logger.info(
        "flat.reconciled",
        extra={"flat_id": flat.id, "flat_status": flat.status, "expired_booking_ids": sorted(expired)},
    )
    return True


def reproject_flat(db: Session, flat: models.Flat) -> str:
    """Recompute Flat.status from its current relevant bookings after a transition."""
    db.flush()
    statuses = [
        s
        for (s,) in db.query(models.Booking.status).filter(
            models.Booking.flat_id == flat.id,
            models.Booking.status.in_(models.RELEVANT_BOOKING_STATUSES),
        )
    ]
    flat.status = project_flat_status(flat.status, statuses)
    db.add(flat)
    return flat.status
