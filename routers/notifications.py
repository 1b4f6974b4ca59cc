import logging
from typing import List, Optional

from fastapi import APIRouter, Query
from sqlmodel import Session, col, func, select

from db import SessionDep
from models import Notification
from .auth import CurrentUserRoleDep

logger = logging.getLogger(__name__)

router = APIRouter(tags=["notifications"])

MEDICINE_REQUEST = "medicine_request"
REQUEST_UPDATE = "request_update"


def notify(
    session: Session,
    recipient_id: int,
    message: str,
    type: str,
    meta: dict,
) -> Notification:
    """Queue a notification on the session; the caller commits."""
    notification = Notification(
        user_id=recipient_id,
        message=message,
        type=type,
        meta=meta,
    )
    session.add(notification)
    return notification


def request_created_message(medicine_name: str, strength: Optional[str]) -> str:
    label = f"{medicine_name} ({strength})" if strength else medicine_name
    return f'A receiver has requested your medicine "{label}".'


def request_decided_message(medicine_name: str, status: str) -> str:
    if status == "approved":
        return f'Your request for "{medicine_name}" has been approved!'
    return f'Your request for "{medicine_name}" has been rejected.'


def list_recent_notifications(
    session: Session, user_id: int, limit: int = 10
) -> List[Notification]:
    stmt = (
        select(Notification)
        .where(Notification.user_id == user_id)
        .order_by(col(Notification.created_at).desc(), col(Notification.id).desc())
        .limit(limit)
    )
    return list(session.exec(stmt).all())


def mark_all_read(session: Session, user_id: int) -> int:
    """Mark every unread notification of the user as read. Safe to repeat."""
    unread = session.exec(
        select(Notification).where(
            Notification.user_id == user_id,
            Notification.read == False,  # noqa: E712
        )
    ).all()
    for notification in unread:
        notification.read = True
        session.add(notification)
    session.commit()
    if unread:
        logger.info("Marked %s notifications read for user %s", len(unread), user_id)
    return len(unread)


def count_unread(session: Session, user_id: int) -> int:
    return session.exec(
        select(func.count())
        .select_from(Notification)
        .where(
            Notification.user_id == user_id,
            Notification.read == False,  # noqa: E712
        )
    ).one()


@router.get("/", response_model=List[Notification])
def get_notifications(
    session: SessionDep,
    current: CurrentUserRoleDep,
    limit: int = Query(default=10, ge=1, le=100),
):
    return list_recent_notifications(session, current["user"].id, limit)


@router.patch("/read")
def read_notifications(session: SessionDep, current: CurrentUserRoleDep):
    updated = mark_all_read(session, current["user"].id)
    return {"message": "Notifications marked as read", "updated": updated}


@router.get("/unread-count")
def unread_notifications(session: SessionDep, current: CurrentUserRoleDep):
    return {"count": count_unread(session, current["user"].id)}
