# Review & rating engine: eligibility, role-specific criteria scoring and flat rating aggregation.
from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from . import models, schemas
from .booking_lifecycle import lock_flat
from .clock import Clock, utc_now
from .db import atomic
from .errors import Forbidden, InvalidInput, InvalidState, NotFound
from .reconcile import reconcile_flat

logger = logging.getLogger("flatrent.reviews")

RATING_PLACES = Decimal("0.01")
# A booking can be reviewed once the tenant has moved in
REVIEWABLE_BOOKING_STATUSES = ("active", "expired", "completed")


def supplied_scores(criteria: schemas.ReviewCriteria) -> Dict[str, int]:
    return {k: v for k, v in criteria.model_dump(exclude={"kind"}).items() if v is not None}


def average_rating(values: Iterable) -> Optional[Decimal]:
    """Arithmetic mean rounded half-up to two places; None for no values."""
    items = [Decimal(str(v)) for v in values]
    if not items:
        return None
    return (sum(items) / len(items)).quantize(RATING_PLACES, rounding=ROUND_HALF_UP)


class ReviewEngine:
    def __init__(self, db: Session, clock: Clock = utc_now) -> None:
        self.db = db
        self.clock = clock

    def _recompute_flat_rating(self, flat: models.Flat) -> Optional[Decimal]:
        # Every review of the flat counts, whichever side wrote it
        self.db.flush()
        avg = (
            self.db.query(func.avg(models.Review.rating_given))
            .filter(models.Review.flat_id == flat.id)
            .scalar()
        )
        flat.rating = None if avg is None else Decimal(str(avg)).quantize(RATING_PLACES, rounding=ROUND_HALF_UP)
        self.db.add(flat)
        return flat.rating

    def upsert_review(
        self,
        actor: schemas.Actor,
        booking_id: int,
        flat_id: Optional[int],
        comment: Optional[str],
        criteria: schemas.ReviewCriteria,
    ) -> Tuple[models.Review, Optional[Decimal]]:
        """
        Create or update the caller's review slot of a booking.

        - Tenant of the booking writes TenantCriteria about the flat and its owner.
        - Owner of the booked flat writes OwnerCriteria about the tenant.
        - rating_given is the mean of the supplied criteria; the flat rating is recomputed afterwards.
        """
        with atomic(self.db):
            booking = self.db.get(models.Booking, booking_id)
            if not booking:
                raise NotFound("Booking not found.")
            if flat_id is not None and flat_id != booking.flat_id:
                raise InvalidInput("The booking does not belong to this flat.")
            flat = lock_flat(self.db, booking.flat_id)
            reconcile_flat(self.db, flat, self.clock().date())
            self.db.refresh(booking)

            if isinstance(criteria, schemas.TenantCriteria):
                role, reviewed_user_id = "tenant", flat.owner_id
                if booking.user_id != actor.id:
                    raise Forbidden("Only the tenant of this booking can review the flat.")
            else:
                role, reviewed_user_id = "owner", booking.user_id
                if flat.owner_id != actor.id:
                    raise Forbidden("Only the owner of this flat can review the tenant.")

            scores = supplied_scores(criteria)
            if not scores:
                raise InvalidInput("At least one rating criterion is required.")
            if booking.status not in REVIEWABLE_BOOKING_STATUSES:
                raise InvalidState("Reviews can only be left once the booking has started.")

            review = (
                self.db.query(models.Review)
                .filter(models.Review.booking_id == booking.id, models.Review.reviewer_role == role)
                .first()
            )
            created = review is None
            if review is None:
                review = models.Review(booking_id=booking.id, flat_id=flat.id, reviewer_role=role)
            elif review.reviewer_id != actor.id:
                raise Forbidden("This booking has already been reviewed by another user.")

            review.reviewer_id = actor.id
            review.reviewed_user_id = reviewed_user_id
            for field, value in criteria.model_dump(exclude={"kind"}).items():
                setattr(review, field, value)
            review.rating_given = average_rating(scores.values())
            review.comment = comment
            review.date_submitted = self.clock()
            self.db.add(review)
            rating = self._recompute_flat_rating(flat)

        self.db.refresh(review)
        logger.info(
            "review.created" if created else "review.updated",
            extra={
                "review_id": review.id,
                "booking_id": booking_id,
                "reviewer_id": actor.id,
                "reviewer_role": role,
                "flat_rating": str(rating) if rating is not None else None,
            },
        )
        return review, rating

    def delete_review(self, actor: schemas.Actor, review_id: int) -> Optional[Decimal]:
        with atomic(self.db):
            review = self.db.get(models.Review, review_id)
            if not review:
                raise NotFound("Review not found.")
            if review.reviewer_id != actor.id:
                raise Forbidden("Not authorized to delete this review.")
            flat = lock_flat(self.db, review.flat_id)
            self.db.delete(review)
            rating = self._recompute_flat_rating(flat)

        logger.info(
            "review.deleted",
            extra={"review_id": review_id, "flat_id": flat.id, "flat_rating": str(rating) if rating is not None else None},
        )
        return rating

    def list_flat_reviews(self, flat_id: int) -> List[schemas.ReviewListItem]:
        if not self.db.get(models.Flat, flat_id):
            raise NotFound("Flat not found.")
        rows = (
            self.db.query(models.Review, models.User.first_name, models.User.last_name)
            .join(models.User, models.User.id == models.Review.reviewer_id)
            .filter(models.Review.flat_id == flat_id)
            .order_by(models.Review.date_submitted.desc(), models.Review.id.desc())
            .all()
        )
        return [
            schemas.ReviewListItem(
                **schemas.ReviewRead.model_validate(review).model_dump(),
                reviewer_first_name=first_name,
                reviewer_last_name=last_name,
            )
            for review, first_name, last_name in rows
        ]
