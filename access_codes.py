"""Locker access codes: generation, binding to donation requests, redemption.

A code is assigned when a request is created and never changes. Whether
it opens a locker is decided by the request's status alone: only an
approved request's code is redeemable. Redemption does not consume the
code; the locker can be reopened throughout the pickup window until the
request is completed or rejected.
"""

import logging
import random
import re
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from config import settings
from errors import Conflict, Forbidden, InvalidCode, InvalidInput, InvalidState, NotFound, OwnerConflict, Unavailable
from models import (
    TERMINAL_STATUSES,
    AccessAction,
    Article,
    ArticleStatus,
    DonationRequest,
    RequestStatus,
    User,
    utcnow,
)

logger = logging.getLogger(__name__)

CODE_PATTERN = re.compile(r"[0-9]{4}")

ALLOWED_TRANSITIONS: dict[RequestStatus, tuple[RequestStatus, ...]] = {
    RequestStatus.PENDING: (RequestStatus.APPROVED, RequestStatus.REJECTED),
    RequestStatus.APPROVED: (RequestStatus.COMPLETED,),
    RequestStatus.REJECTED: (),
    RequestStatus.COMPLETED: (),
}

ACTIVE_STATUSES = tuple(s for s in RequestStatus if s not in TERMINAL_STATUSES)


def generate_access_code() -> str:
    """Return a 4-digit code in [1000, 9999]. Not a long-lived secret."""
    return str(random.randint(1000, 9999))


def is_well_formed(code: Optional[str]) -> bool:
    return isinstance(code, str) and CODE_PATTERN.fullmatch(code) is not None


@dataclass(frozen=True)
class RedemptionSnapshot:
    request_id: str
    article_id: int
    article_title: str
    article_description: str
    article_category: str
    donor_id: int
    donor_name: str
    donor_email: str
    requester_id: int
    requester_name: str
    requester_email: str
    locker_id: Optional[str]
    locker_location: Optional[str]
    action: AccessAction
    locker_mismatch: bool = False


# ── Helpers ──────────────────────────────────────────────────────────


def _unique_code(session: Session) -> str:
    for _ in range(settings.access_code_max_attempts):
        code = generate_access_code()
        taken = session.exec(
            select(DonationRequest.id).where(
                DonationRequest.access_code == code,
                col(DonationRequest.status).in_(ACTIVE_STATUSES),
            )
        ).first()
        if taken is None:
            return code
    raise Conflict("Could not allocate a free access code, try again", code="CODE_SPACE_EXHAUSTED")


def get_request(session: Session, request_id: str) -> DonationRequest:
    req = session.get(DonationRequest, request_id)
    if req is None:
        raise NotFound("Request not found", code="REQUEST_NOT_FOUND")
    return req


def transition(session: Session, req: DonationRequest, target: RequestStatus, **values) -> None:
    """Move ``req`` to ``target`` only if its stored status is still the one we read.

    Does not commit. Raises InvalidState for an illegal transition and
    Conflict when another writer changed the status first.
    """
    current = req.status
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidState(
            f"Cannot move a {current.value} request to {target.value}",
        )
    stmt = (
        update(DonationRequest)
        .where(DonationRequest.id == req.id, DonationRequest.status == current)
        .values(status=target, updated_at=utcnow(), **values)
        .execution_options(synchronize_session=False)
    )
    result = session.execute(stmt)
    if result.rowcount != 1:
        session.rollback()
        logger.warning("Lost race moving request %s from %s to %s", req.id, current.value, target.value)
        raise Conflict("Request was modified concurrently")


# ── Registry operations ──────────────────────────────────────────────


def issue(session: Session, requester_id: int, article_id: int, message: str = "") -> DonationRequest:
    """Create a pending request for an available article and reserve the article."""
    article = session.get(Article, article_id)
    if article is None:
        raise NotFound("Article not found", code="ARTICLE_NOT_FOUND")
    if article.donor_id == requester_id:
        raise OwnerConflict("You cannot request your own article")
    if article.status != ArticleStatus.AVAILABLE:
        raise Unavailable("Article is not available")

    title, donor_id = article.title, article.donor_id

    # The check in _unique_code can race another issue(); the partial
    # unique index on active codes settles it at commit.
    for _ in range(settings.access_code_max_attempts):
        code = _unique_code(session)

        reserved = session.execute(
            update(Article)
            .where(Article.id == article_id, Article.status == ArticleStatus.AVAILABLE)
            .values(status=ArticleStatus.RESERVED, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if reserved.rowcount != 1:
            session.rollback()
            raise Unavailable("Article is not available")

        req = DonationRequest(
            article_id=article_id,
            article_title=title,
            donor_id=donor_id,
            requester_id=requester_id,
            message=message,
            access_code=code,
        )
        session.add(req)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            logger.warning("Access code taken by a concurrent request, drawing another")
            continue

        session.refresh(req)
        logger.info("Request %s issued for article %s by user %s", req.id, article_id, requester_id)
        return req

    raise Conflict("Could not allocate a free access code, try again", code="CODE_SPACE_EXHAUSTED")


def activate(
    session: Session,
    request_id: str,
    approver_id: int,
    locker_id: Optional[str],
    locker_location: Optional[str] = None,
    action: AccessAction = AccessAction.RECEIVE,
) -> DonationRequest:
    """Approve a pending request and bind it to a locker; the code is unchanged."""
    req = get_request(session, request_id)
    if req.donor_id != approver_id:
        raise Forbidden("Only the donor can approve this request")
    if req.status != RequestStatus.PENDING:
        raise InvalidState("Only pending requests can be approved")
    if not locker_id:
        raise InvalidInput("A locker is required to approve a request", code="MISSING_LOCKER_ID")

    transition(
        session,
        req,
        RequestStatus.APPROVED,
        locker_id=locker_id,
        locker_location=locker_location,
        action=action,
        approved_at=utcnow(),
    )
    session.commit()
    session.refresh(req)
    logger.info("Request %s approved for locker %s", req.id, locker_id)
    return req


def redeem(
    session: Session,
    code: str,
    locker_id: Optional[str] = None,
    location: Optional[str] = None,
    enforce_locker_binding: Optional[bool] = None,
) -> RedemptionSnapshot:
    """Resolve a presented code to its approved request.

    Every failure raises InvalidCode; its ``reason`` is for logs only.
    Records the access time but leaves the status untouched.
    """
    if enforce_locker_binding is None:
        enforce_locker_binding = settings.enforce_locker_binding

    matches = session.exec(
        select(DonationRequest).where(
            DonationRequest.access_code == code,
            col(DonationRequest.status).in_(ACTIVE_STATUSES),
        )
    ).all()
    if not matches:
        raise InvalidCode("Code not found")
    if len(matches) > 1:
        logger.error("Access code shared by %d active requests", len(matches))
        raise InvalidCode("Ambiguous code")

    req = matches[0]
    if req.status != RequestStatus.APPROVED:
        raise InvalidCode("Request not approved", request_id=req.id, user_id=req.requester_id)

    now = utcnow()
    ttl = settings.access_code_ttl_days
    if ttl and req.approved_at is not None and req.approved_at + timedelta(days=ttl) < now:
        raise InvalidCode("Code expired", request_id=req.id, user_id=req.requester_id)

    mismatch = bool(locker_id and req.locker_id and req.locker_id != locker_id)
    if mismatch and enforce_locker_binding:
        raise InvalidCode("Wrong locker", request_id=req.id, user_id=req.requester_id)

    req.last_access_at = now
    req.access_location = location or locker_id
    req.updated_at = now
    session.add(req)
    session.commit()
    session.refresh(req)

    article = session.get(Article, req.article_id)
    donor = session.get(User, req.donor_id)
    requester = session.get(User, req.requester_id)
    return RedemptionSnapshot(
        request_id=req.id,
        article_id=req.article_id,
        article_title=req.article_title or (article.title if article else "Article"),
        article_description=article.description if article else "",
        article_category=article.category if article else "",
        donor_id=req.donor_id,
        donor_name=donor.name if donor else "Donor",
        donor_email=donor.email if donor else "",
        requester_id=req.requester_id,
        requester_name=requester.name if requester else "User",
        requester_email=requester.email if requester else "",
        locker_id=req.locker_id,
        locker_location=req.locker_location,
        action=req.action,
        locker_mismatch=mismatch,
    )
