# jojo/routers/auth.py
import base64
import hmac
import io
import logging
from datetime import timedelta, datetime, timezone
from typing import Annotated, Optional, Union

import pyotp
import qrcode
from fastapi import APIRouter, Depends, Request
from fastapi.security import OAuth2PasswordBearer
from jose import jwt, JWTError
from passlib.context import CryptContext
from pydantic import BaseModel, EmailStr, field_validator
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import Settings
from ..database import get_db
from ..errors import AuthError, ConflictError, ValidationError
from ..models import Users

logger = logging.getLogger(__name__)

authRoutes = APIRouter(prefix="/api", tags=["auth"])
twoFactorRoutes = APIRouter(prefix="/api/2fa", tags=["auth"])

oauth2_bearer = OAuth2PasswordBearer(tokenUrl="api/login", auto_error=False)
db_link = Annotated[Session, Depends(get_db)]


def build_password_context(rounds: int = 12) -> CryptContext:
    return CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_password_context(request: Request) -> CryptContext:
    return request.app.state.pwd_context


app_settings = Annotated[Settings, Depends(get_settings)]
pwd_context = Annotated[CryptContext, Depends(get_password_context)]


class RegisterRequest(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[EmailStr] = None
    password: Optional[str] = None

    @field_validator("*", mode="before")
    @classmethod
    def blank_is_missing(cls, value):
        return value or None


class RegisterResponse(BaseModel):
    message: str
    userId: int
    secret: Optional[str] = None  # only in totp mode


class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class TokenResponse(BaseModel):
    token: str
    userId: int


class TwoFactorPending(BaseModel):
    message: str = "2FA required"
    userId: int


class TwoFactorSetupRequest(BaseModel):
    email: Optional[str] = None
    secret: Optional[str] = None


class TwoFactorVerifyRequest(BaseModel):
    userId: Optional[int] = None
    token: Optional[str] = None


def create_access_token(settings: Settings, email: str, user_id: int, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = {"sub": email, "id": user_id, "email": email}
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def get_current_user(
    token: Annotated[Optional[str], Depends(oauth2_bearer)],
    db: db_link,
    settings: app_settings,
) -> Users:
    if not token:
        raise AuthError("Not authenticated")
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        raise AuthError("Invalid or expired token", status_code=403)
    user_id = payload.get("id")
    if not payload.get("email") or not user_id:
        raise AuthError("Not authorized: missing claims", status_code=403)
    user = db.get(Users, user_id)
    if not user:
        raise AuthError("User not found", status_code=403)
    return user


current_login_user = Annotated[Users, Depends(get_current_user)]


def _normalise_email(email: str) -> str:
    return email.strip().lower()


@authRoutes.post("/register", response_model=RegisterResponse, response_model_exclude_none=True)
def register_user(payload: RegisterRequest, db: db_link, settings: app_settings, hasher: pwd_context):
    if not (payload.first_name and payload.last_name and payload.email and payload.password):
        raise ValidationError("All fields are required")

    email = _normalise_email(payload.email)
    if db.query(Users).filter(Users.email == email).first():
        raise ConflictError("Email already registered")

    secret = pyotp.random_base32() if settings.totp_enabled else None
    user = Users(
        first_name=payload.first_name.strip(),
        last_name=payload.last_name.strip(),
        email=email,
        hashed_password=hasher.hash(payload.password),
        secret_2fa=secret,
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        # lost a race against a concurrent registration of the same email
        db.rollback()
        raise ConflictError("Email already registered")
    db.refresh(user)
    logger.info("Registered user %s", user.id)
    return RegisterResponse(message="User registered", userId=user.id, secret=secret)


@authRoutes.post("/login", response_model=Union[TokenResponse, TwoFactorPending])
def login(payload: LoginRequest, db: db_link, settings: app_settings, hasher: pwd_context):
    if not payload.email or not payload.password:
        raise AuthError("Invalid credentials")
    user = db.query(Users).filter(Users.email == _normalise_email(payload.email)).first()
    if not user or not hasher.verify(payload.password, user.hashed_password):
        raise AuthError("Invalid credentials")

    if settings.totp_enabled and user.secret_2fa:
        return TwoFactorPending(userId=user.id)
    return TokenResponse(token=create_access_token(settings, email=user.email, user_id=user.id), userId=user.id)


def _qr_data_url(uri: str) -> str:
    buf = io.BytesIO()
    qrcode.make(uri).save(buf, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("ascii")


@twoFactorRoutes.post("/setup")
def setup_two_factor(payload: TwoFactorSetupRequest, db: db_link, settings: app_settings):
    """Render the QR code for the secret handed out at registration.

    The caller must post that exact secret; a stored secret is never sent back
    to someone who only knows the email address.
    """
    if not payload.email or not payload.secret:
        raise ValidationError("Email and secret are required")
    user = db.query(Users).filter(Users.email == _normalise_email(payload.email)).first()
    # unknown email and wrong secret look the same to the caller
    if not user or not user.secret_2fa or not hmac.compare_digest(payload.secret.encode(), user.secret_2fa.encode()):
        raise ConflictError("Invalid 2FA secret")

    uri = pyotp.TOTP(user.secret_2fa).provisioning_uri(name=user.email, issuer_name=settings.app_name)
    return {"imageUrl": _qr_data_url(uri)}


@twoFactorRoutes.post("/verify", response_model=TokenResponse)
def verify_two_factor(payload: TwoFactorVerifyRequest, db: db_link, settings: app_settings):
    if not payload.userId or not payload.token:
        raise ValidationError("userId and token are required")
    user = db.get(Users, payload.userId)
    if not user or not user.secret_2fa:
        raise ValidationError("2FA is not configured for this account")
    if not pyotp.TOTP(user.secret_2fa).verify(payload.token.strip(), valid_window=1):
        raise AuthError("Invalid 2FA code")
    return TokenResponse(token=create_access_token(settings, email=user.email, user_id=user.id), userId=user.id)
