import logging
import re
from typing import Annotated, Optional

import pytz
from fastapi import APIRouter, Depends
from pydantic import AfterValidator, BaseModel, Field, StringConstraints, field_validator, model_validator
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..auth_dep import get_current_user
from ..db import get_db
from ..errors import (
    AccountDeactivated, ApiError, Conflict, InvalidCredentials, InvalidToken, ValidationFailed
)
from ..models import Theme, User
from ..rate_limit import login_rate_limit, register_rate_limit
from ..security import hash_password, verify_password
from ..tokens import REFRESH, issue_access_token, issue_refresh_token, verify_token
from ..utils import to_iso, utcnow

log = logging.getLogger("studyhub.auth")

router = APIRouter(prefix="/api/auth", tags=["auth"])

USERNAME_RE = re.compile(r"^[a-zA-Z0-9_]+$")
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PASSWORD_RE = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[@$!%*?&])[A-Za-z\d@$!%*?&]+$")


def _check_username(v: str) -> str:
    if not USERNAME_RE.match(v):
        raise ValueError("Username can only contain letters, numbers, and underscores")
    return v

def _check_password(v: str) -> str:
    if not PASSWORD_RE.match(v):
        raise ValueError(
            "Password must contain at least one uppercase letter, one lowercase letter, "
            "one number, and one special character"
        )
    return v

def _check_email(v: str) -> str:
    v = v.strip().lower()
    if not EMAIL_RE.match(v):
        raise ValueError("Please provide a valid email address")
    return v

Username = Annotated[str, Field(min_length=3, max_length=30), AfterValidator(_check_username)]
Email = Annotated[str, Field(max_length=254), AfterValidator(_check_email)]
Password = Annotated[str, Field(min_length=8, max_length=128), AfterValidator(_check_password)]
Name = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=50)]


class RegisterIn(BaseModel):
    username: Username
    email: Email
    password: Password
    firstName: Name
    lastName: Name

class LoginIn(BaseModel):
    email: Email
    password: str = Field(min_length=1)

class RefreshIn(BaseModel):
    refreshToken: str = Field(min_length=1)

class PreferencesIn(BaseModel):
    theme: Optional[Theme] = None
    notifications: Optional[bool] = None
    timezone: Optional[str] = None

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, v):
        if v is not None and v not in pytz.all_timezones_set:
            raise ValueError("Timezone must be a valid IANA timezone name")
        return v

class ProfileUpdate(BaseModel):
    firstName: Optional[Name] = None
    lastName: Optional[Name] = None
    username: Optional[Username] = None
    avatar: Optional[str] = Field(default=None, max_length=2000)
    preferences: Optional[PreferencesIn] = None


class ChangePasswordIn(BaseModel):
    currentPassword: str = Field(min_length=1)
    newPassword: Password
    confirmPassword: str

    @model_validator(mode="after")
    def _confirm_matches(self):
        if self.confirmPassword != self.newPassword:
            raise ValueError("Password confirmation does not match new password")
        return self


def user_to_dto(u: User) -> dict:
    return {
        "id": u.id,
        "username": u.username,
        "email": u.email,
        "firstName": u.first_name,
        "lastName": u.last_name,
        "fullName": u.full_name,
        "avatar": u.avatar,
        "preferences": u.preferences,
        "isActive": u.is_active,
        "lastLogin": to_iso(u.last_login),
        "createdAt": to_iso(u.created_at),
        "updatedAt": to_iso(u.updated_at),
    }

def _tokens(u: User) -> dict:
    return {"accessToken": issue_access_token(u.id), "refreshToken": issue_refresh_token(u.id)}


@router.post("/register", status_code=201, dependencies=[Depends(register_rate_limit)])
def register(payload: RegisterIn, db: Session = Depends(get_db)):
    existing = db.query(User).filter(or_(User.email == payload.email, User.username == payload.username)).first()
    if existing:
        msg = "Email already registered" if existing.email == payload.email else "Username already taken"
        raise Conflict(msg)

    u = User(
        username=payload.username,
        email=payload.email,
        password_hash=hash_password(payload.password),
        first_name=payload.firstName,
        last_name=payload.lastName,
        last_login=utcnow(),
    )
    db.add(u)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise Conflict("User with this email or username already exists") from e
    db.refresh(u)
    log.info("Registered user %s", u.id)

    return {"message": "User registered successfully", "user": user_to_dto(u), "tokens": _tokens(u)}

@router.post("/login", dependencies=[Depends(login_rate_limit)])
def login(payload: LoginIn, db: Session = Depends(get_db)):
    u: User | None = db.query(User).filter(User.email == payload.email).first()
    if not u:
        raise InvalidCredentials()
    if not u.is_active:
        raise AccountDeactivated()
    if not verify_password(payload.password, u.password_hash):
        raise InvalidCredentials()

    u.last_login = utcnow()
    db.commit()
    db.refresh(u)
    log.info("User %s logged in", u.id)

    return {"message": "Login successful", "user": user_to_dto(u), "tokens": _tokens(u)}

@router.post("/refresh-token")
def refresh_token(payload: RefreshIn, db: Session = Depends(get_db)):
    try:
        claims = verify_token(payload.refreshToken, expected_type=REFRESH)
    except ApiError as e:
        raise InvalidToken() from e

    u = db.get(User, claims.user_id)
    if not u or not u.is_active:
        raise InvalidToken()
    return {"accessToken": issue_access_token(u.id)}

@router.get("/profile")
def get_profile(user: User = Depends(get_current_user)):
    return {"user": user_to_dto(user)}

@router.put("/profile")
def update_profile(payload: ProfileUpdate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    if payload.username is not None and payload.username != user.username:
        taken = db.query(User).filter(User.username == payload.username, User.id != user.id).first()
        if taken:
            raise Conflict("Username already taken")
        user.username = payload.username

    if payload.firstName is not None:
        user.first_name = payload.firstName
    if payload.lastName is not None:
        user.last_name = payload.lastName
    if "avatar" in payload.model_fields_set:
        user.avatar = payload.avatar

    # preferences merge: only the keys sent are changed
    if payload.preferences is not None:
        prefs = payload.preferences
        if prefs.theme is not None:
            user.theme = prefs.theme
        if prefs.notifications is not None:
            user.notifications = prefs.notifications
        if prefs.timezone is not None:
            user.timezone = prefs.timezone

    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise Conflict("Username already taken") from e
    db.refresh(user)
    return {"message": "Profile updated successfully", "user": user_to_dto(user)}

@router.put("/change-password")
def change_password(payload: ChangePasswordIn, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    if not verify_password(payload.currentPassword, user.password_hash):
        raise ValidationFailed("Current password is incorrect", code="INVALID_PASSWORD")

    user.password_hash = hash_password(payload.newPassword)
    db.commit()
    return {"message": "Password changed successfully"}

@router.post("/logout")
def logout(user: User = Depends(get_current_user)):
    # tokens are stateless; the client drops them
    return {"message": "Logout successful"}

@router.delete("/deactivate")
def deactivate(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    user.is_active = False
    db.commit()
    log.info("Deactivated user %s", user.id)
    return {"message": "Account deactivated successfully"}

@router.get("/health")
def health():
    return {"status": "ok", "service": "authentication", "timestamp": to_iso(utcnow())}
