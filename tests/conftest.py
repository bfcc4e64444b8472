"""Shared fixtures: in-memory database, inline side effects, callers."""

import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SESSION_SECRET"] = "test-secret"
os.environ["SIDE_EFFECTS_EAGER"] = "true"
os.environ["SIDE_EFFECT_RETRY_DELAY"] = "0"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlmodel import Session, SQLModel  # noqa: E402

import db  # noqa: E402
import models  # noqa: E402, F401
from main import app  # noqa: E402
from models import Article, ArticleStatus, Locker, Role, User  # noqa: E402
from routers.auth import create_session_token  # noqa: E402
from tasks import SideEffectQueue, get_side_effects  # noqa: E402


# ── Database ─────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def _schema():
    SQLModel.metadata.create_all(db.engine)
    yield
    SQLModel.metadata.drop_all(db.engine)


@pytest.fixture()
def session():
    with Session(db.engine) as s:
        yield s


def fetch(model, key):
    """Read a row through a fresh session so no identity-map copy is reused."""
    with Session(db.engine) as s:
        return s.get(model, key)


# ── App ──────────────────────────────────────────────────────────────


@pytest.fixture()
def effects():
    return SideEffectQueue(max_attempts=2, retry_delay=0, eager=True)


@pytest.fixture()
def client(effects):
    app.dependency_overrides[get_side_effects] = lambda: effects
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


# ── Data helpers ─────────────────────────────────────────────────────


def make_user(session: Session, name: str, role: Role = Role.USER) -> User:
    user = User(
        email=f"{name.lower()}@example.com",
        name=name,
        role=role,
        password_hash="not-used",
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


def make_article(session: Session, donor: User, title: str = "Desk lamp") -> Article:
    article = Article(
        donor_id=donor.id,
        title=title,
        description="Works fine",
        category="home",
        status=ArticleStatus.AVAILABLE,
    )
    session.add(article)
    session.commit()
    session.refresh(article)
    return article


def make_locker(session: Session, locker_id: str = "L1", location: str = "Building A") -> Locker:
    locker = Locker(id=locker_id, name=f"Locker {locker_id}", location=location)
    session.add(locker)
    session.commit()
    session.refresh(locker)
    return locker


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_session_token(user.id, user.role)}"}


@pytest.fixture()
def donor(session):
    return make_user(session, "Dana")


@pytest.fixture()
def requester(session):
    return make_user(session, "Rami")


@pytest.fixture()
def article(session, donor):
    return make_article(session, donor)
