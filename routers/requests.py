from typing import List, Optional

from fastapi import APIRouter
from sqlmodel import select

import lifecycle
from db import SessionDep
from models import DonationRequest
from schemas import (
    ApproveData,
    ApproveResult,
    MessageOut,
    RejectData,
    RequestCreate,
    RequestCreated,
    RequestRead,
)
from tasks import EffectsDep
from .auth import IdentityDep

router = APIRouter(tags=["requests"])


@router.post("", response_model=RequestCreated, status_code=201)
def create_request(
    request_data: RequestCreate,
    session: SessionDep,
    identity: IdentityDep,
    effects: EffectsDep,
):
    req = lifecycle.create_request(
        session, identity, request_data.article_id, request_data.message, effects
    )
    return RequestCreated(
        message="Request sent",
        request_id=req.id,
        access_code=req.access_code,
    )


@router.get("/mine", response_model=List[RequestRead])
def list_my_requests(session: SessionDep, identity: IdentityDep):
    """Requests the caller made, newest first."""
    query = (
        select(DonationRequest)
        .where(DonationRequest.requester_id == identity.user_id)
        .order_by(DonationRequest.created_at.desc())
    )
    return session.exec(query).all()


@router.get("/received", response_model=List[RequestRead])
def list_received_requests(session: SessionDep, identity: IdentityDep):
    """Requests for the caller's articles, newest first."""
    query = (
        select(DonationRequest)
        .where(DonationRequest.donor_id == identity.user_id)
        .order_by(DonationRequest.created_at.desc())
    )
    return session.exec(query).all()


@router.get("/{request_id}", response_model=RequestRead)
def get_request(request_id: str, session: SessionDep, identity: IdentityDep):
    return lifecycle.get_visible_request(session, identity, request_id)


@router.put("/{request_id}/approve", response_model=ApproveResult)
def approve_request(
    request_id: str,
    session: SessionDep,
    identity: IdentityDep,
    effects: EffectsDep,
    data: Optional[ApproveData] = None,
):
    data = data or ApproveData()
    req = lifecycle.approve_request(
        session,
        identity,
        request_id,
        data.locker_id,
        data.locker_location,
        data.action,
        effects,
    )
    return ApproveResult(message="Request approved", access_code=req.access_code)


@router.put("/{request_id}/reject", response_model=MessageOut)
def reject_request(
    request_id: str,
    session: SessionDep,
    identity: IdentityDep,
    effects: EffectsDep,
    data: Optional[RejectData] = None,
):
    reason = data.reason if data else ""
    lifecycle.reject_request(session, identity, request_id, reason, effects)
    return MessageOut(message="Request rejected")


@router.put("/{request_id}/complete", response_model=MessageOut)
def complete_request(request_id: str, session: SessionDep, identity: IdentityDep):
    lifecycle.complete_request(session, identity, request_id)
    return MessageOut(message="Pickup confirmed")
