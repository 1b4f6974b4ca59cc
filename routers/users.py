# routers/users.py
import logging
from typing import List

from fastapi import APIRouter, Response
from sqlalchemy import or_
from sqlmodel import Session, col, select

from db import SessionDep
from errors import ValidationError
from models import Donation, Notification, Request, User
from schemas import PasswordCheck, UserRead, UserUpdate
from storage import delete_upload
from .auth import CurrentUserRoleDep, hash_password, verify_password

logger = logging.getLogger(__name__)

router = APIRouter(tags=["users"])


def delete_account(session: Session, user: User) -> None:
    """
    Delete a user together with everything that hangs off the account,
    in one transaction. Donation photos are removed afterwards, best-effort.
    """
    # 1) Find all donations *donated by* this user
    my_donations = session.exec(
        select(Donation).where(Donation.donor_id == user.id)
    ).all()
    donation_ids = [d.id for d in my_donations]
    image_urls: List[str] = [url for d in my_donations for url in (d.images or [])]

    # 2) Delete every request the user is a party to, plus requests
    #    against the user's donations
    conditions = [Request.donor_id == user.id, Request.receiver_id == user.id]
    if donation_ids:
        conditions.append(col(Request.donation_id).in_(donation_ids))
    for req in session.exec(select(Request).where(or_(*conditions))).all():
        session.delete(req)

    # 3) Notifications addressed to this user
    for notification in session.exec(
        select(Notification).where(Notification.user_id == user.id)
    ).all():
        session.delete(notification)

    for donation in my_donations:
        session.delete(donation)

    # 4) Finally, delete the user record itself
    session.delete(user)
    try:
        session.commit()
    except Exception:
        session.rollback()
        raise
    logger.info("Deleted account %s and %s donation(s)", user.id, len(donation_ids))

    for url in image_urls:
        delete_upload(url)


@router.patch("/me", response_model=UserRead)
def update_profile(update: UserUpdate, session: SessionDep, current: CurrentUserRoleDep):
    """
    Update the profile of the logged-in user. A blank password is ignored.
    """
    user = current["user"]
    changes = update.model_dump(exclude_unset=True, exclude_none=True)

    password = changes.pop("password", None)
    if password:
        user.password_hash = hash_password(password)

    email = changes.get("email")
    if email:
        email = changes["email"] = email.lower()
        taken = session.exec(
            select(User).where(User.email == email, User.id != user.id)
        ).first()
        if taken:
            raise ValidationError("Email already registered")

    for field, value in changes.items():
        setattr(user, field, value)
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


@router.post("/verify-password")
def check_password(payload: PasswordCheck, current: CurrentUserRoleDep):
    if not verify_password(payload.password, current["user"].password_hash):
        return {"valid": False, "message": "Incorrect password"}
    return {"valid": True}


@router.delete("/me", status_code=204)
def delete_own_account(session: SessionDep, current: CurrentUserRoleDep):
    delete_account(session, current["user"])
    response = Response(status_code=204)
    response.delete_cookie("session")
    return response
