# Flat listing endpoints.
# Owners manage their own listings; anyone can browse. Every read reconciles expired leases
# before the flat's status is returned.
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from ..booking_lifecycle import attach_children, lock_flat
from ..clock import Clock, get_clock
from ..db import atomic, get_db
from ..errors import Forbidden, InvalidState, NotFound
from .. import models, schemas
from ..rate_limit import rate_limit
from ..reconcile import reconcile_flat, reproject_flat
from .auth import get_current_user_optional, require_owner

# Router namespace for flat APIs
router = APIRouter()


def _reconciled(db: Session, flats: List[models.Flat], clock: Clock) -> List[models.Flat]:
    today = clock().date()
    with atomic(db):
        for flat in flats:
            reconcile_flat(db, flat, today)
    for flat in flats:
        db.refresh(flat)
    return flats


def _relevant_booking(db: Session, flat_id: int, user_id: Optional[int] = None) -> Optional[models.Booking]:
    q = db.query(models.Booking).filter(
        models.Booking.flat_id == flat_id,
        models.Booking.status.in_(models.RELEVANT_BOOKING_STATUSES),
    )
    if user_id is not None:
        q = q.filter(models.Booking.user_id == user_id)
    return q.order_by(models.Booking.created_at.desc(), models.Booking.id.desc()).first()


def _owned_flat(db: Session, flat_id: int, actor: schemas.Actor) -> models.Flat:
    flat = lock_flat(db, flat_id)
    if flat.owner_id != actor.id:
        raise Forbidden("Not authorized to manage this flat.")
    return flat


@router.get("/flats", response_model=List[schemas.FlatRead])
def list_flats(
    district: Optional[str] = Query(None, min_length=1),
    status_filter: Optional[str] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> List[models.Flat]:
    """
    Browse listings, newest first.

    Statuses are reconciled before filtering so an expired lease never hides an available flat.
    """
    q = db.query(models.Flat)
    if district:
        q = q.filter(models.Flat.district == district.strip())
    flats = _reconciled(db, q.order_by(models.Flat.id.desc()).all(), clock)
    if status_filter:
        flats = [f for f in flats if f.status == status_filter]
    return flats[offset:offset + limit]


@router.get("/flats/owner", response_model=List[schemas.FlatOwnerRead])
def list_owner_flats(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    actor: schemas.Actor = Depends(require_owner),
) -> List[models.Flat]:
    flats = (
        db.query(models.Flat)
        .filter(models.Flat.owner_id == actor.id)
        .order_by(models.Flat.id.desc())
        .all()
    )
    return _reconciled(db, flats, clock)


@router.post(
    "/flats",
    response_model=schemas.FlatOwnerRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("write"))],
)
def create_flat(
    payload: schemas.FlatCreate,
    db: Session = Depends(get_db),
    actor: schemas.Actor = Depends(require_owner),
) -> models.Flat:
    obj = models.Flat(owner_id=actor.id, **payload.model_dump())
    with atomic(db):
        db.add(obj)
    db.refresh(obj)
    return obj


@router.get("/flats/{flat_id}", response_model=schemas.FlatDetail)
def get_flat(
    flat_id: int,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    user: Optional[models.User] = Depends(get_current_user_optional),
) -> schemas.FlatDetail:
    """
    Flat detail with a visibility-gated projection.

    - Owner of the flat: private unit details plus the booking currently holding the flat.
    - Authenticated users: their own pending/approved/active booking of the flat.
    - Anonymous: public fields only.
    """
    flat = db.get(models.Flat, flat_id)
    if not flat:
        raise NotFound("Flat not found.")
    _reconciled(db, [flat], clock)

    detail = schemas.FlatDetail.model_validate(flat)
    if user is not None and user.id == flat.owner_id:
        current = _relevant_booking(db, flat.id)
        detail.visibility = "owner"
        detail.private = schemas.FlatPrivateDetails(
            flat_number=flat.flat_number,
            floor=flat.floor,
            house_number=flat.house_number,
            utility_cost_cents=flat.utility_cost_cents,
            current_booking=attach_children(db, [current])[0] if current else None,
        )
    elif user is not None:
        mine = _relevant_booking(db, flat.id, user_id=user.id)
        if mine:
            detail.my_booking = attach_children(db, [mine])[0]
    return detail


@router.put(
    "/flats/{flat_id}",
    response_model=schemas.FlatOwnerRead,
    dependencies=[Depends(rate_limit("write"))],
)
def update_flat(
    flat_id: int,
    payload: schemas.FlatUpdate,
    db: Session = Depends(get_db),
    actor: schemas.Actor = Depends(require_owner),
) -> models.Flat:
    with atomic(db):
        flat = _owned_flat(db, flat_id, actor)
        for field, value in payload.model_dump(exclude_unset=True).items():
            setattr(flat, field, value)
        db.add(flat)
    db.refresh(flat)
    return flat


@router.patch(
    "/flats/{flat_id}/status",
    response_model=schemas.FlatOwnerRead,
    dependencies=[Depends(rate_limit("write"))],
)
def set_flat_status(
    flat_id: int,
    payload: schemas.FlatStatusUpdate,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    actor: schemas.Actor = Depends(require_owner),
) -> models.Flat:
    """Take a listing off the market or put it back; only while no booking holds it."""
    with atomic(db):
        flat = _owned_flat(db, flat_id, actor)
        reconcile_flat(db, flat, clock().date())
        if _relevant_booking(db, flat.id):
            raise InvalidState("Flat status cannot change while a booking is pending, approved or active.")
        flat.status = payload.status
        reproject_flat(db, flat)
    db.refresh(flat)
    return flat


@router.delete(
    "/flats/{flat_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(rate_limit("write"))],
)
def delete_flat(
    flat_id: int,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    actor: schemas.Actor = Depends(require_owner),
) -> Response:
    with atomic(db):
        flat = _owned_flat(db, flat_id, actor)
        reconcile_flat(db, flat, clock().date())
        # Booking history carries payments and reviews; withdraw the listing instead
        has_history = db.query(models.Booking.id).filter(models.Booking.flat_id == flat.id).first() is not None
        if has_history:
            raise InvalidState("Flats with booking history cannot be deleted; set the status to unavailable instead.")
        db.delete(flat)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
