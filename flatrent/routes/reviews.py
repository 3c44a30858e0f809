# Review endpoints: write or update the caller's review of a booking, delete it, list a flat's reviews.
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..clock import Clock, get_clock
from ..db import get_db
from .. import schemas
from ..rate_limit import rate_limit
from ..ratings import ReviewEngine
from .auth import get_actor

router = APIRouter()


def get_review_engine(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> ReviewEngine:
    return ReviewEngine(db, clock)


def _rating(value) -> Optional[float]:
    return None if value is None else float(value)


@router.post(
    "/reviews",
    response_model=schemas.ReviewResult,
    dependencies=[Depends(rate_limit("write"))],
)
def upsert_review(
    payload: schemas.ReviewUpsert,
    engine: ReviewEngine = Depends(get_review_engine),
    actor: schemas.Actor = Depends(get_actor),
) -> schemas.ReviewResult:
    """
    Create or update the caller's review of a booking.

    Tenants score the flat (flat_quality, hygiene, location, owner_behavior);
    owners score the tenant (tenant_behavior, cooperation). Criteria of the other role are ignored.
    """
    review, rating = engine.upsert_review(
        actor,
        payload.booking_id,
        payload.flat_id,
        payload.comment,
        payload.criteria_for(actor.role),
    )
    return schemas.ReviewResult(review=schemas.ReviewRead.model_validate(review), flat_rating=_rating(rating))


@router.delete(
    "/reviews/{review_id}",
    response_model=schemas.RatingResponse,
    dependencies=[Depends(rate_limit("write"))],
)
def delete_review(
    review_id: int,
    engine: ReviewEngine = Depends(get_review_engine),
    actor: schemas.Actor = Depends(get_actor),
) -> schemas.RatingResponse:
    return schemas.RatingResponse(flat_rating=_rating(engine.delete_review(actor, review_id)))


@router.get("/flats/{flat_id}/reviews", response_model=List[schemas.ReviewListItem])
def list_flat_reviews(
    flat_id: int,
    engine: ReviewEngine = Depends(get_review_engine),
) -> List[schemas.ReviewListItem]:
    return engine.list_flat_reviews(flat_id)
