# routers/users.py
import json
from typing import List

from fastapi import APIRouter
from sqlmodel import select

from db import SessionDep
from errors import NotFound
from models import Notification, User
from schemas import NotificationRead, UserRead
from .auth import IdentityDep

router = APIRouter(tags=["users"])


def _to_read(notification: Notification) -> NotificationRead:
    return NotificationRead(
        id=notification.id,
        kind=notification.kind,
        title=notification.title,
        body=notification.body,
        data=json.loads(notification.data or "{}"),
        read=notification.read,
        created_at=notification.created_at,
    )


@router.get("/me/notifications", response_model=List[NotificationRead])
def list_my_notifications(session: SessionDep, identity: IdentityDep, unread: bool = False):
    """
    In-app notifications for the current user, newest first.
    """
    query = select(Notification).where(Notification.user_id == identity.user_id)
    if unread:
        query = query.where(Notification.read == False)  # noqa: E712
    query = query.order_by(Notification.created_at.desc(), Notification.id.desc())
    return [_to_read(n) for n in session.exec(query).all()]


@router.post("/me/notifications/{notification_id}/read", response_model=NotificationRead)
def mark_notification_read(notification_id: int, session: SessionDep, identity: IdentityDep):
    notification = session.get(Notification, notification_id)
    # Someone else's notification is reported as missing.
    if notification is None or notification.user_id != identity.user_id:
        raise NotFound("Notification not found", code="NOTIFICATION_NOT_FOUND")
    notification.read = True
    session.add(notification)
    session.commit()
    session.refresh(notification)
    return _to_read(notification)


@router.get("/{user_id}", response_model=UserRead)
def get_user(user_id: int, session: SessionDep):
    """
    Get a single user by ID.
    """
    user = session.get(User, user_id)
    if user is None:
        raise NotFound("User not found", code="USER_NOT_FOUND")
    return user
