import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import Index, text
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"


class ArticleStatus(str, Enum):
    AVAILABLE = "disponible"
    RESERVED = "reservado"
    DONATED = "donado"


class RequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"


TERMINAL_STATUSES = (RequestStatus.REJECTED, RequestStatus.COMPLETED)


class AccessAction(str, Enum):
    DONATE = "DONATE"  # donor depositing
    RECEIVE = "RECEIVE"  # requester picking up


class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(index=True, unique=True)
    name: str
    role: Role = Role.USER
    password_hash: str
    created_at: datetime = Field(default_factory=utcnow)


class Article(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    donor_id: int = Field(foreign_key="user.id", index=True)

    title: str
    description: str = ""
    category: str = ""
    location: str = ""
    condition: str = ""
    image_url: Optional[str] = None
    status: ArticleStatus = ArticleStatus.AVAILABLE

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class DonationRequest(SQLModel, table=True):
    # At most one pending or approved request may hold a given code.
    # Enum columns store member names.
    __table_args__ = (
        Index(
            "uq_donationrequest_active_access_code",
            "access_code",
            unique=True,
            postgresql_where=text("status IN ('PENDING', 'APPROVED')"),
            sqlite_where=text("status IN ('PENDING', 'APPROVED')"),
        ),
    )

    id: str = Field(default_factory=lambda: uuid.uuid4().hex, primary_key=True)
    article_id: int = Field(foreign_key="article.id", index=True)
    article_title: str = ""
    donor_id: int = Field(foreign_key="user.id", index=True)
    requester_id: int = Field(foreign_key="user.id", index=True)
    message: str = ""

    access_code: str = Field(index=True)
    status: RequestStatus = Field(default=RequestStatus.PENDING, index=True)
    action: AccessAction = AccessAction.RECEIVE

    locker_id: Optional[str] = Field(default=None, index=True)
    locker_location: Optional[str] = None
    rejection_reason: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    approved_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    last_access_at: Optional[datetime] = None
    access_location: Optional[str] = None


class Locker(SQLModel, table=True):
    id: str = Field(primary_key=True)
    name: str
    location: str
    status: str = "active"
    ip_address: Optional[str] = None
    mac_address: Optional[str] = None
    firmware_version: Optional[str] = None

    total_uses: int = 0
    total_donations: int = 0
    total_pickups: int = 0
    last_used: Optional[datetime] = None
    last_maintenance: Optional[datetime] = None
    last_event: Optional[str] = None
    last_event_time: Optional[datetime] = None
    last_seen: Optional[datetime] = None
    last_health_check: Optional[datetime] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class LockerChannel(SQLModel, table=True):
    """Live command slot the locker controller polls for walk-up dispensing."""

    locker_id: str = Field(primary_key=True)
    access_code: str
    action: str
    message: str
    timestamp: datetime = Field(default_factory=utcnow)


class AccessLog(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    locker_id: str = Field(index=True)
    access_code: str
    user_id: Optional[int] = None
    request_id: Optional[str] = None
    success: bool
    reason: str
    ip_address: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow, index=True)


class LockerEvent(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    locker_id: str = Field(index=True)
    event_type: str  # door_opened | door_closed | emergency_open | error | maintenance
    details: str = ""
    ip_address: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)


class Notification(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    kind: str
    title: str
    body: str
    data: str = "{}"
    read: bool = False
    created_at: datetime = Field(default_factory=utcnow)
