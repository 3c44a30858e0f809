# Account endpoints (register, login, email verification, password reset) and the auth dependencies
# every other router uses to resolve the calling user into an Actor.
from __future__ import annotations

import os
import secrets
import time
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import APIRouter, Depends, HTTPException, Header, status
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from ..clock import Clock, get_clock
from ..db import get_db
from .. import mailer, models, schemas
from ..rate_limit import rate_limit

router = APIRouter()

# Security primitives
JWT_SECRET: str = os.getenv("FLATRENT_JWT_SECRET", "dev-secret-change-me")
JWT_ALG: str = "HS256"
JWT_TTL_SECONDS: int = 60 * 60 * 24 * 7  # 7 days
# Lifetime of mailed verification / reset codes
CODE_TTL_MINUTES: int = int(os.getenv("VERIFICATION_CODE_MINUTES", "15"))
# Use bcrypt_sha256 to avoid bcrypt's 72-byte password limit and handle unicode safely.
pwd_context = CryptContext(schemes=["bcrypt_sha256"], deprecated="auto")


# ----------------
# Helpers
# ----------------
def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


def create_access_token(*, user: models.User) -> str:
    now = int(time.time())
    payload = {
        "sub": str(user.id),
        "email": user.email,
        "role": user.role,
        "iat": now,
        "exp": now + JWT_TTL_SECONDS,
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALG)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALG])
    except jwt.ExpiredSignatureError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired") from exc
    except jwt.InvalidTokenError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from exc


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; stored values are UTC
    if value is not None and value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _code_matches(stored: Optional[str], expires_at: Optional[datetime], given: str, now: datetime) -> bool:
    expires_at = _as_utc(expires_at)
    if not stored or expires_at is None or expires_at <= now:
        return False
    return secrets.compare_digest(stored, given)


def _token_response(user: models.User) -> schemas.TokenResponse:
    return schemas.TokenResponse(
        access_token=create_access_token(user=user),
        user=schemas.UserRead.model_validate(user),
    )


# ----------------
# Dependencies
# ----------------
def bearer_token_from_auth_header(authorization: Optional[str]) -> str:
    if not authorization:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authorization header missing")
    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid Authorization header")
    return parts[1]


def get_current_user(
    db: Session = Depends(get_db),
    authorization: Optional[str] = Header(default=None, alias="Authorization"),
) -> models.User:
    token = bearer_token_from_auth_header(authorization)
    payload = decode_token(token)
    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token payload")
    user = db.get(models.User, int(user_id))
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    return user


def get_current_user_optional(
    db: Session = Depends(get_db),
    authorization: Optional[str] = Header(default=None, alias="Authorization"),
) -> Optional[models.User]:
    """
    Returns the current user if a valid Bearer token is present, otherwise None.
    Used by public endpoints whose projection depends on who is asking.
    """
    if not authorization:
        return None
    try:
        return get_current_user(db=db, authorization=authorization)
    except HTTPException:
        # Treat invalid/expired tokens as anonymous for optional auth
        return None


def get_actor(user: models.User = Depends(get_current_user)) -> schemas.Actor:
    return schemas.Actor(id=user.id, role=user.role)


def require_owner(actor: schemas.Actor = Depends(get_actor)) -> schemas.Actor:
    if actor.role != "owner":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Owner role required")
    return actor


def require_tenant(actor: schemas.Actor = Depends(get_actor)) -> schemas.Actor:
    if actor.role != "tenant":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Tenant role required")
    return actor


# ----------------
# Routes
# ----------------
@router.post(
    "/auth/register",
    response_model=schemas.TokenResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("signup"))],
)
def register(
    payload: schemas.UserCreate,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> schemas.TokenResponse:
    # Email normalized by the schema validator; enforce uniqueness
    existing = db.query(models.User).filter(models.User.email == payload.email).first()
    if existing:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="User with this email already exists.")

    code = mailer.generate_code()
    user = models.User(
        email=payload.email,
        password_hash=hash_password(payload.password),
        role=payload.role,
        first_name=payload.first_name,
        last_name=payload.last_name,
        phone=payload.phone,
        nid=payload.nid,
        verified=False,
        verification_code=code,
        verification_expires_at=clock() + timedelta(minutes=CODE_TTL_MINUTES),
    )
    db.add(user)
    db.commit()
    db.refresh(user)

    mailer.send_verification_code(user.email, user.first_name, code, CODE_TTL_MINUTES)
    return _token_response(user)


@router.post(
    "/auth/login",
    response_model=schemas.TokenResponse,
    dependencies=[Depends(rate_limit("login"))],
)
def login(payload: schemas.LoginRequest, db: Session = Depends(get_db)) -> schemas.TokenResponse:
    user = db.query(models.User).filter(models.User.email == payload.email).first()
    if not user or not verify_password(payload.password, user.password_hash):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    return _token_response(user)


@router.get("/auth/me", response_model=schemas.UserRead)
def me(user: models.User = Depends(get_current_user)) -> models.User:
    return user


@router.post("/auth/verify-email", response_model=schemas.UserRead)
def verify_email(
    payload: schemas.VerifyEmailRequest,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> models.User:
    user = db.query(models.User).filter(models.User.email == payload.email).first()
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found.")
    if user.verified:
        return user
    if not _code_matches(user.verification_code, user.verification_expires_at, payload.code, clock()):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid or expired verification code.")

    user.verified = True
    user.verification_code = None
    user.verification_expires_at = None
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@router.post(
    "/auth/resend-verification",
    response_model=schemas.MessageResponse,
    dependencies=[Depends(rate_limit("codes"))],
)
def resend_verification(
    payload: schemas.EmailRequest,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> schemas.MessageResponse:
    user = db.query(models.User).filter(models.User.email == payload.email).first()
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found.")
    if user.verified:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email is already verified.")

    code = mailer.generate_code()
    user.verification_code = code
    user.verification_expires_at = clock() + timedelta(minutes=CODE_TTL_MINUTES)
    db.add(user)
    db.commit()

    mailer.send_verification_code(user.email, user.first_name, code, CODE_TTL_MINUTES)
    return schemas.MessageResponse(message="A new verification code has been sent.")


@router.post(
    "/auth/forgot-password",
    response_model=schemas.MessageResponse,
    dependencies=[Depends(rate_limit("codes"))],
)
def forgot_password(
    payload: schemas.EmailRequest,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> schemas.MessageResponse:
    # Same answer whether or not the account exists, so the endpoint does not reveal which emails are registered
    user = db.query(models.User).filter(models.User.email == payload.email).first()
    if user:
        code = mailer.generate_code()
        user.reset_code = code
        user.reset_expires_at = clock() + timedelta(minutes=CODE_TTL_MINUTES)
        db.add(user)
        db.commit()
        mailer.send_password_reset_code(user.email, user.first_name, code, CODE_TTL_MINUTES)
    return schemas.MessageResponse(message="If the account exists, a reset code has been sent.")


@router.post("/auth/reset-password", response_model=schemas.MessageResponse)
def reset_password(
    payload: schemas.ResetPasswordRequest,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> schemas.MessageResponse:
    user = db.query(models.User).filter(models.User.email == payload.email).first()
    if not user or not _code_matches(user.reset_code, user.reset_expires_at, payload.code, clock()):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid or expired reset code.")

    user.password_hash = hash_password(payload.new_password)
    user.reset_code = None
    user.reset_expires_at = None
    db.add(user)
    db.commit()
    return schemas.MessageResponse(message="Password has been reset.")
