"""Side-effect jobs run by the ``SideEffectQueue``.

Each job opens its own session; it never shares the session of the
request that queued it. Push delivery is outside this service: a
notification here is the in-app record a client polls.
"""

import json
import logging
from typing import Optional

from db import session_scope
from models import AccessAction, AccessLog, Locker, LockerChannel, Notification, User, utcnow

logger = logging.getLogger(__name__)


def _notify(user_id: int, kind: str, title: str, body: str, data: Optional[dict] = None) -> None:
    with session_scope() as session:
        session.add(
            Notification(
                user_id=user_id,
                kind=kind,
                title=title,
                body=body,
                data=json.dumps(data or {}),
            )
        )
    logger.info("Notification %s stored for user %s", kind, user_id)


def notify_new_request(donor_id: int, article_title: str, requester_id: int) -> None:
    with session_scope() as session:
        requester = session.get(User, requester_id)
        requester_name = requester.name if requester else "User"
    _notify(
        donor_id,
        "new-request",
        "New request",
        f'{requester_name} is interested in your article "{article_title}"',
        {"articleTitle": article_title, "requesterName": requester_name},
    )


def notify_request_approved(
    requester_id: int,
    article_title: str,
    access_code: str,
    locker_id: str,
    locker_location: Optional[str],
) -> None:
    _notify(
        requester_id,
        "request-approved",
        "Request approved",
        f'Your request for "{article_title}" was approved. Code: {access_code}',
        {
            "articleTitle": article_title,
            "accessCode": access_code,
            "lockerId": locker_id,
            "lockerLocation": locker_location,
        },
    )


def notify_request_rejected(requester_id: int, article_title: str, reason: str) -> None:
    body = f'Your request for "{article_title}" was rejected.'
    if reason:
        body = f"{body} Reason: {reason}"
    _notify(requester_id, "request-rejected", "Request rejected", body, {"articleTitle": article_title})


def notify_locker_access(user_id: int, action: AccessAction, locker_id: str) -> None:
    verb = "deposit" if action == AccessAction.DONATE else "pickup"
    _notify(
        user_id,
        "locker-access",
        "Locker accessed",
        f"Locker {locker_id} opened for {verb}",
        {"lockerId": locker_id, "action": action.value},
    )


# ── Locker controller ────────────────────────────────────────────────


def arm_locker(locker_id: str, access_code: str) -> None:
    """Write the active code into the locker's live channel."""
    with session_scope() as session:
        channel = session.get(LockerChannel, locker_id)
        if channel is None:
            channel = LockerChannel(locker_id=locker_id, access_code=access_code, action="ACTIVATE", message="")
        channel.access_code = access_code
        channel.action = "ACTIVATE"
        channel.message = f"Code: {access_code}"
        channel.timestamp = utcnow()
        session.add(channel)
    logger.info("Locker %s armed", locker_id)


def update_locker_stats(locker_id: str, action: AccessAction) -> None:
    with session_scope() as session:
        locker = session.get(Locker, locker_id)
        if locker is None:
            logger.warning("Usage counters skipped: locker %s is not registered", locker_id)
            return
        locker.total_uses += 1
        if action == AccessAction.DONATE:
            locker.total_donations += 1
        else:
            locker.total_pickups += 1
        locker.last_used = utcnow()
        session.add(locker)


def log_access_attempt(
    locker_id: str,
    access_code: str,
    success: bool,
    reason: str,
    user_id: Optional[int] = None,
    request_id: Optional[str] = None,
    ip_address: Optional[str] = None,
) -> None:
    with session_scope() as session:
        session.add(
            AccessLog(
                locker_id=locker_id,
                access_code=access_code,
                user_id=user_id,
                request_id=request_id,
                success=success,
                reason=reason,
                ip_address=ip_address,
            )
        )
