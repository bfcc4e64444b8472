from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from models import AccessAction, ArticleStatus, RequestStatus, Role


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ── Identity ─────────────────────────────────────────────────────────


class Identity(BaseModel):
    """Authenticated caller, as resolved from the session token."""

    user_id: int
    role: Role = Role.USER


class UserCreate(BaseModel):
    email: EmailStr
    name: str = Field(min_length=1)
    password: str = Field(min_length=6)


class UserRead(BaseModel):
    id: int
    email: EmailStr
    name: str
    role: Role

    model_config = ConfigDict(from_attributes=True)


class LoginData(BaseModel):
    email: EmailStr
    password: str


# ── Articles ─────────────────────────────────────────────────────────


class ArticleCreate(CamelModel):
    title: str = Field(min_length=1)
    description: str = ""
    category: str = ""
    location: str = ""
    condition: str = ""
    image_url: Optional[str] = Field(default=None, alias="imageUrl")


class ArticleRead(CamelModel):
    id: int
    donor_id: int = Field(serialization_alias="donorId")
    title: str
    description: str
    category: str
    location: str
    condition: str
    image_url: Optional[str] = Field(serialization_alias="imageUrl")
    status: ArticleStatus
    created_at: datetime = Field(serialization_alias="createdAt")

    model_config = ConfigDict(from_attributes=True)


# ── Donation requests ────────────────────────────────────────────────


class RequestCreate(CamelModel):
    article_id: Optional[int] = Field(default=None, alias="articleId")
    message: str = ""


class RequestCreated(CamelModel):
    message: str
    request_id: str = Field(serialization_alias="requestId")
    access_code: str = Field(serialization_alias="accessCode")


class ApproveData(CamelModel):
    locker_id: Optional[str] = Field(default=None, alias="lockerId")
    locker_location: Optional[str] = Field(default=None, alias="lockerLocation")
    action: AccessAction = AccessAction.RECEIVE


class ApproveResult(CamelModel):
    message: str
    access_code: str = Field(serialization_alias="accessCode")


class RejectData(CamelModel):
    reason: str = ""


class MessageOut(BaseModel):
    message: str


class RequestRead(CamelModel):
    id: str
    article_id: int = Field(serialization_alias="articleId")
    article_title: str = Field(serialization_alias="articleTitle")
    donor_id: int = Field(serialization_alias="donorId")
    requester_id: int = Field(serialization_alias="requesterId")
    message: str
    access_code: str = Field(serialization_alias="accessCode")
    status: RequestStatus
    action: AccessAction
    locker_id: Optional[str] = Field(serialization_alias="lockerId")
    locker_location: Optional[str] = Field(serialization_alias="lockerLocation")
    rejection_reason: Optional[str] = Field(serialization_alias="rejectionReason")
    created_at: datetime = Field(serialization_alias="createdAt")
    updated_at: datetime = Field(serialization_alias="updatedAt")
    approved_at: Optional[datetime] = Field(serialization_alias="approvedAt")
    rejected_at: Optional[datetime] = Field(serialization_alias="rejectedAt")
    completed_at: Optional[datetime] = Field(serialization_alias="completedAt")

    model_config = ConfigDict(from_attributes=True)


# ── Hardware ─────────────────────────────────────────────────────────
# Hardware payloads are validated by hand so that missing or mistyped
# fields answer 400 with the hardware body shape instead of FastAPI's 422.


class VerifyCodeData(BaseModel):
    access_code: Any = None
    locker_id: Any = None
    location: Any = None
    timestamp: Any = None


class LockerSetupData(BaseModel):
    locker_id: Optional[str] = None
    name: Optional[str] = None
    location: Optional[str] = None
    ip_address: Optional[str] = None
    mac_address: Optional[str] = None
    firmware_version: Optional[str] = None


class LockerEventData(BaseModel):
    locker_id: Optional[str] = None
    event_type: Optional[str] = None
    details: str = ""
    timestamp: Any = None


# ── Notifications ────────────────────────────────────────────────────


class NotificationRead(BaseModel):
    id: int
    kind: str
    title: str
    body: str
    data: dict
    read: bool
    created_at: datetime
