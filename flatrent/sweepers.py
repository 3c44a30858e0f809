# Background sweepers for periodic maintenance tasks (expiring overdue leases).
# Reads already reconcile lazily; the sweeper keeps Flat.status fresh for flats nobody is looking at.
from __future__ import annotations

from typing import Optional

from sqlalchemy.orm import Session

from .booking_lifecycle import lock_flat
from .clock import Clock, utc_now
from .db import SessionLocal, atomic
from .reconcile import reconcile_flat
from . import models


def sweep_expired_bookings(db: Optional[Session] = None, clock: Clock = utc_now) -> int:
    """
    Expire 'active' bookings whose end_date has been reached and re-project their flats.

    Semantics:
    - Only touches flats holding an active booking with end_date <= today (UTC).
    - Each flat is loaded through lock_flat(), so on server databases the pass waits for
      any lifecycle transaction holding the flat's row lock instead of racing it.
    - Idempotent across repeated runs; shares reconcile_flat() with the read paths.
    - Accepts an optional Session; otherwise creates and cleans up its own.

    Returns:
    - Number of flats whose state changed.
    """
    # Track whether this call created its own DB session (so we can close it)
    created_session = False
    if db is None:
        db = SessionLocal()
        created_session = True

    try:
        today = clock().date()
        flat_ids = [
            fid
            for (fid,) in db.query(models.Booking.flat_id)
            .filter(models.Booking.status == "active", models.Booking.end_date <= today)
            .distinct()
            .order_by(models.Booking.flat_id.asc())
        ]
        changed = 0
        # One short transaction per flat keeps row locks brief
        for flat_id in flat_ids:
            with atomic(db):
                flat = lock_flat(db, flat_id)
                if reconcile_flat(db, flat, today):
                    changed += 1
        return changed
    finally:
        # Close the session only if this function created it
        if created_session:
            db.close()
