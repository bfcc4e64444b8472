"""Donation request state machine.

    pending ──approve──> approved ──complete──> completed
       └─────reject────> rejected

Each transition re-checks its preconditions against the stored request,
moves the article along with it, commits, and only then queues the
best-effort side effects (notifications, locker channel).
"""

import logging
from typing import Optional

from sqlmodel import Session

import access_codes
import notifications
from errors import Forbidden, InvalidInput
from models import AccessAction, Article, ArticleStatus, DonationRequest, RequestStatus, Role, utcnow
from schemas import Identity
from tasks import SideEffectQueue

logger = logging.getLogger(__name__)


def _set_article_status(session: Session, article_id: int, status: ArticleStatus) -> None:
    article = session.get(Article, article_id)
    if article is None:
        logger.warning("Article %s vanished while its request changed state", article_id)
        return
    article.status = status
    article.updated_at = utcnow()
    session.add(article)


def create_request(
    session: Session,
    identity: Identity,
    article_id: Optional[int],
    message: str,
    effects: SideEffectQueue,
) -> DonationRequest:
    if article_id is None:
        raise InvalidInput("Article id is required", code="MISSING_ARTICLE_ID")

    req = access_codes.issue(session, identity.user_id, article_id, message)
    effects.submit(
        "notify_new_request",
        notifications.notify_new_request,
        req.donor_id,
        req.article_title,
        req.requester_id,
    )
    return req


def approve_request(
    session: Session,
    identity: Identity,
    request_id: str,
    locker_id: Optional[str],
    locker_location: Optional[str],
    action: AccessAction,
    effects: SideEffectQueue,
) -> DonationRequest:
    req = access_codes.activate(session, request_id, identity.user_id, locker_id, locker_location, action)

    effects.submit("arm_locker", notifications.arm_locker, req.locker_id, req.access_code)
    effects.submit(
        "notify_request_approved",
        notifications.notify_request_approved,
        req.requester_id,
        req.article_title,
        req.access_code,
        req.locker_id,
        req.locker_location,
    )
    return req


def reject_request(
    session: Session,
    identity: Identity,
    request_id: str,
    reason: str,
    effects: SideEffectQueue,
) -> DonationRequest:
    req = access_codes.get_request(session, request_id)
    if req.donor_id != identity.user_id:
        raise Forbidden("Only the donor can reject this request")

    access_codes.transition(
        session,
        req,
        RequestStatus.REJECTED,
        rejection_reason=reason,
        rejected_at=utcnow(),
    )
    _set_article_status(session, req.article_id, ArticleStatus.AVAILABLE)
    session.commit()
    session.refresh(req)
    logger.info("Request %s rejected, article %s released", req.id, req.article_id)

    effects.submit(
        "notify_request_rejected",
        notifications.notify_request_rejected,
        req.requester_id,
        req.article_title,
        reason,
    )
    return req


def complete_request(session: Session, identity: Identity, request_id: str) -> DonationRequest:
    req = access_codes.get_request(session, request_id)
    if identity.user_id not in (req.donor_id, req.requester_id):
        raise Forbidden("Only the donor or the requester can confirm pickup")

    access_codes.transition(session, req, RequestStatus.COMPLETED, completed_at=utcnow())
    _set_article_status(session, req.article_id, ArticleStatus.DONATED)
    session.commit()
    session.refresh(req)
    logger.info("Request %s completed, article %s donated", req.id, req.article_id)
    return req


def get_visible_request(session: Session, identity: Identity, request_id: str) -> DonationRequest:
    req = access_codes.get_request(session, request_id)
    if identity.role != Role.ADMIN and identity.user_id not in (req.donor_id, req.requester_id):
        raise Forbidden("You are not a party to this request")
    return req
