"""Endpoints called by the locker controllers themselves.

None of these require a user session. Verification answers every
rejected code with the same body, so a caller cannot tell an unknown
code from an expired one or one bound to another locker.
"""

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import TypeAdapter, ValidationError
from sqlalchemy import func
from sqlmodel import select

import access_codes
import notifications
from config import settings
from db import SessionDep
from errors import InvalidCode
from models import AccessAction, AccessLog, DonationRequest, Locker, LockerEvent, RequestStatus, utcnow
from schemas import LockerEventData, LockerSetupData, VerifyCodeData
from tasks import EffectsDep

logger = logging.getLogger(__name__)

router = APIRouter(tags=["hardware"])

API_VERSION = "1.0.0"

LOCKER_EVENT_TYPES = {"door_opened", "door_closed", "emergency_open", "error", "maintenance"}

_TIMESTAMP = TypeAdapter(datetime)


def _fail(status_code: int, error: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": error})


def _client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


def _as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


@router.post("/verify-code")
def verify_access_code(
    data: VerifyCodeData,
    request: Request,
    session: SessionDep,
    effects: EffectsDep,
):
    if not data.access_code or not data.locker_id:
        return _fail(400, "Access code and locker id are required")
    if not access_codes.is_well_formed(data.access_code):
        return _fail(400, "Access code must be 4 digits")
    if not isinstance(data.locker_id, str) or not isinstance(data.location, (str, type(None))):
        return _fail(400, "Locker id and location must be text")

    code = data.access_code
    locker_id = data.locker_id
    ip = _client_ip(request)

    try:
        snap = access_codes.redeem(session, code, locker_id=locker_id, location=data.location)
    except InvalidCode as exc:
        logger.info("Access denied at locker %s: %s", locker_id, exc.reason)
        effects.submit(
            "log_access_attempt",
            notifications.log_access_attempt,
            locker_id,
            code,
            False,
            exc.reason,
            user_id=exc.user_id,
            request_id=exc.request_id,
            ip_address=ip,
        )
        return _fail(400, exc.message)

    reason = "Access granted"
    if snap.locker_mismatch:
        reason = f"Access granted (assigned locker {snap.locker_id})"
    user_id = snap.donor_id if snap.action == AccessAction.DONATE else snap.requester_id

    effects.submit(
        "log_access_attempt",
        notifications.log_access_attempt,
        locker_id,
        code,
        True,
        reason,
        user_id=user_id,
        request_id=snap.request_id,
        ip_address=ip,
    )
    effects.submit("update_locker_stats", notifications.update_locker_stats, locker_id, snap.action)
    effects.submit("notify_locker_access", notifications.notify_locker_access, user_id, snap.action, locker_id)

    logger.info("Access granted at locker %s for request %s", locker_id, snap.request_id)
    # "user" is whoever stands at the locker: the donor depositing or the
    # requester picking up.
    if snap.action == AccessAction.DONATE:
        verb, user = "deposit", {"name": snap.donor_name, "email": snap.donor_email}
    else:
        verb, user = "pick up", {"name": snap.requester_name, "email": snap.requester_email}
    return {
        "success": True,
        "user": user,
        "donor": {"name": snap.donor_name},
        "action": snap.action.value,
        "article": {
            "id": snap.article_id,
            "title": snap.article_title,
            "description": snap.article_description,
            "category": snap.article_category,
        },
        "locker": {"id": locker_id, "location": data.location},
        "message": f"Access granted to {verb} article",
        "access_granted_at": utcnow().isoformat(),
    }


@router.get("/status/{locker_id}")
def get_locker_status(locker_id: str, session: SessionDep):
    """Locker metadata, active code count and the recent access window."""
    locker = session.get(Locker, locker_id)
    if locker is None:
        return _fail(404, "Locker not found")

    now = utcnow()
    active_query = select(func.count()).select_from(DonationRequest).where(
        DonationRequest.locker_id == locker_id,
        DonationRequest.status == RequestStatus.APPROVED,
    )
    if settings.access_code_ttl_days:
        active_query = active_query.where(
            DonationRequest.approved_at >= now - timedelta(days=settings.access_code_ttl_days)
        )
    active_codes = session.exec(active_query).one()

    since = now - timedelta(hours=settings.access_log_window_hours)
    logs = session.exec(
        select(AccessLog)
        .where(AccessLog.locker_id == locker_id, AccessLog.timestamp > since)
        .order_by(AccessLog.timestamp.desc(), AccessLog.id.desc())
        .limit(settings.access_log_limit)
    ).all()

    return {
        "success": True,
        "locker": {
            "id": locker.id,
            "name": locker.name,
            "location": locker.location,
            "status": locker.status,
            "last_maintenance": locker.last_maintenance,
            "total_uses": locker.total_uses,
            "total_donations": locker.total_donations,
            "total_pickups": locker.total_pickups,
        },
        "active_codes": active_codes,
        # codes stay out of this unauthenticated view
        "recent_access": [
            {
                "id": log.id,
                "success": log.success,
                "reason": log.reason,
                "user_id": log.user_id,
                "timestamp": log.timestamp,
            }
            for log in logs
        ],
    }


@router.post("/event")
def register_locker_event(data: LockerEventData, request: Request, session: SessionDep):
    if not data.locker_id or not data.event_type:
        return _fail(400, "Locker id and event type are required")
    if data.event_type not in LOCKER_EVENT_TYPES:
        return _fail(400, f"Unknown event type: {data.event_type}")

    now = utcnow()
    timestamp = now
    if data.timestamp is not None:
        try:
            timestamp = _as_naive_utc(_TIMESTAMP.validate_python(data.timestamp))
        except ValidationError:
            return _fail(400, "Invalid timestamp")

    event = LockerEvent(
        locker_id=data.locker_id,
        event_type=data.event_type,
        details=data.details,
        ip_address=_client_ip(request),
        timestamp=timestamp,
    )
    session.add(event)

    locker = session.get(Locker, data.locker_id)
    if locker is not None:
        locker.last_event = data.event_type
        locker.last_event_time = now
        locker.last_seen = now
        if data.event_type == "maintenance":
            locker.last_maintenance = now
        session.add(locker)
    else:
        logger.warning("Event %s from unregistered locker %s", data.event_type, data.locker_id)

    session.commit()
    logger.info("Event %s recorded for locker %s", data.event_type, data.locker_id)
    return {"success": True, "message": "Event recorded"}


@router.post("/setup")
def setup_locker(data: LockerSetupData, request: Request, session: SessionDep):
    """Register a locker, or refresh the metadata of a known one."""
    if not data.locker_id or not data.name or not data.location:
        return _fail(400, "Locker id, name and location are required")

    now = utcnow()
    locker = session.get(Locker, data.locker_id)
    existed = locker is not None
    if locker is None:
        locker = Locker(id=data.locker_id, name=data.name, location=data.location)

    locker.name = data.name
    locker.location = data.location
    locker.ip_address = data.ip_address or _client_ip(request)
    locker.mac_address = data.mac_address
    locker.firmware_version = data.firmware_version
    locker.status = "active"
    locker.last_seen = now
    locker.updated_at = now
    session.add(locker)
    session.commit()

    logger.info("Locker %s %s", data.locker_id, "updated" if existed else "registered")
    return {
        "success": True,
        "message": "Locker updated" if existed else "Locker registered",
        "locker_id": data.locker_id,
    }


@router.get("/health")
def hardware_health_check(session: SessionDep, locker_id: Optional[str] = None):
    health = {
        "status": "ok",
        "timestamp": utcnow().isoformat(),
        "server_time": int(time.time() * 1000),
        "api_version": API_VERSION,
    }
    if locker_id:
        locker = session.get(Locker, locker_id)
        if locker is not None:
            now = utcnow()
            locker.last_seen = now
            locker.last_health_check = now
            session.add(locker)
            session.commit()
            health["locker_updated"] = True
    return health
