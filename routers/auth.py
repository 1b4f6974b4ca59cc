import logging
import os
import secrets
from datetime import timedelta
from typing import Annotated, Optional

from db import SessionDep
from errors import AuthorizationError, ValidationError
from fastapi import APIRouter, Cookie, Depends, Header, HTTPException, Response
from fastapi.responses import JSONResponse
from itsdangerous import BadData, URLSafeTimedSerializer
from models import User, utcnow
from passlib.context import CryptContext
from schemas import (
    PASSWORD_PATTERN,
    PASSWORD_RULES,
    ForgotPassword,
    LoginData,
    ResetPassword,
    UserCreate,
    UserRead,
)
from sqlmodel import select
from storage import BACKEND_URL

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])

SECRET_KEY = os.getenv("SECRET_KEY") or secrets.token_hex(32)
SESSION_MAX_AGE = int(os.getenv("SESSION_MAX_AGE", str(60 * 60 * 8)))
serializer = URLSafeTimedSerializer(SECRET_KEY)
RESET_TOKEN_TTL = timedelta(minutes=15)


pwd_context = CryptContext(
    schemes=["pbkdf2_sha256"],
    deprecated="auto",
)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_session_token(user_id: int, role: str) -> str:
    """
    Store user_id + role in the signed token.
    Example data:
        {"user_id": 3, "role": "donor"}
    """
    return serializer.dumps({"user_id": user_id, "role": role})


def verify_session_token(token: str, max_age_seconds: int = SESSION_MAX_AGE):
    """
    Returns dict {'user_id': ..., 'role': ...} if valid,
    or None if token is invalid/expired.
    """
    try:
        return serializer.loads(token, max_age=max_age_seconds)
    except BadData:
        return None


def get_current_user_and_role(
    session: SessionDep,
    session_token: Optional[str] = Cookie(default=None, alias="session"),
    authorization: Optional[str] = Header(default=None),
) -> dict:
    """
    Reads the 'session' cookie (or a Bearer token for app clients),
    verifies the token, looks up the user, and returns
    {"user": User, "role": str}. Raises 401 if not logged in / invalid.
    """
    token = session_token
    if token is None and authorization and authorization.lower().startswith("bearer "):
        token = authorization[7:].strip()

    if token is None:
        raise HTTPException(status_code=401, detail="Not logged in")

    data = verify_session_token(token)
    if not data:
        raise HTTPException(
            status_code=401, detail="Invalid or expired session")

    user = session.get(User, data["user_id"])
    if user is None:
        raise HTTPException(
            status_code=401, detail="User not found for this session")

    return {"user": user, "role": data["role"]}


CurrentUserRoleDep = Annotated[dict, Depends(get_current_user_and_role)]


def require_role(current: dict, role: str) -> User:
    if current["role"] != role:
        raise AuthorizationError(f"Access denied. {role.capitalize()} only.")
    return current["user"]


def _session_response(payload: dict, token: str, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse({**payload, "token": token}, status_code=status_code)
    resp.set_cookie(
        key="session",
        value=token,
        httponly=True,
        secure=False,
        samesite="lax",
        max_age=SESSION_MAX_AGE,
    )
    return resp


@router.post("/register", status_code=201)
def register(user_in: UserCreate, session: SessionDep):
    """
    Register a new donor or receiver with a hashed password and log them in.
    """
    if not user_in.accept_terms:
        raise ValidationError("Please accept the Terms & Conditions.")

    existing = session.exec(
        select(User).where(User.email == user_in.email.lower())
    ).first()
    if existing:
        if existing.role == user_in.role:
            raise ValidationError("User already registered with this role.")
        raise ValidationError(
            "This email is already registered with another role. Please use a different email."
        )

    user = User(
        email=user_in.email.lower(),
        full_name=user_in.full_name,
        contact_number=user_in.contact_number,
        address=user_in.address,
        role=user_in.role,
        password_hash=hash_password(user_in.password),
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    logger.info("Registered %s user %s", user.role, user.id)

    token = create_session_token(user.id, user.role)
    return _session_response(
        {
            "message": "Registration successful!",
            "user": UserRead.model_validate(user).model_dump(mode="json"),
        },
        token,
        status_code=201,
    )


@router.post("/login")
def login(payload: LoginData, session: SessionDep):
    """
    Log in with email + password, set a signed cookie and return the token.
    """
    user = session.exec(
        select(User).where(User.email == payload.email.lower())
    ).first()

    if user is None or not verify_password(payload.password, user.password_hash):
        raise ValidationError("Invalid email or password")

    token = create_session_token(user.id, user.role)
    return _session_response({"message": "Login successful!", "role": user.role}, token)


@router.post("/logout")
def logout(response: Response):
    """
    Clear the session cookie.
    """
    response.delete_cookie("session")
    return {"message": "Logout successful!"}


@router.get("/me", response_model=UserRead)
def read_me(current: CurrentUserRoleDep):
    """
    Get info about the currently logged-in user.
    """
    return current["user"]


def send_reset_email(email: str, link: str) -> None:
    # No mail transport is configured; the link goes to the log for now.
    logger.info("Password reset link for %s: %s", email, link)


@router.post("/forgot-password")
def forgot_password(payload: ForgotPassword, session: SessionDep):
    """
    Issue a one-time reset token valid for 15 minutes and send the link.
    """
    user = session.exec(
        select(User).where(User.email == payload.email.lower())
    ).first()
    if user is None:
        raise ValidationError("User not found.")

    user.reset_token = secrets.token_hex(20)
    user.reset_expires = utcnow() + RESET_TOKEN_TTL
    session.add(user)
    session.commit()

    send_reset_email(user.email, f"{BACKEND_URL}/reset-password/{user.reset_token}")
    return {"message": "Reset link sent to email."}


@router.post("/reset-password")
def reset_password(payload: ResetPassword, session: SessionDep):
    """
    Set a new password using a reset token. The token is consumed.
    """
    user = session.exec(
        select(User).where(
            User.reset_token == payload.token.strip(),
            User.reset_expires > utcnow(),
        )
    ).first()
    if user is None:
        raise ValidationError("Invalid or expired token.")
    if not PASSWORD_PATTERN.match(payload.new_password):
        raise ValidationError(PASSWORD_RULES)

    user.password_hash = hash_password(payload.new_password)
    user.reset_token = None
    user.reset_expires = None
    session.add(user)
    session.commit()
    logger.info("Password reset for user %s", user.id)
    return {"message": "Password reset successful."}
