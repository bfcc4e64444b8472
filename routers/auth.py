import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Cookie, Depends, Header, Response
from itsdangerous import BadSignature, URLSafeTimedSerializer
from passlib.context import CryptContext
from sqlmodel import select

from config import settings
from db import SessionDep
from errors import InvalidInput, Unauthorized
from models import Role, User
from schemas import Identity, LoginData, UserCreate, UserRead

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])

serializer = URLSafeTimedSerializer(settings.session_secret)


pwd_context = CryptContext(
    schemes=["pbkdf2_sha256"],
    deprecated="auto",
)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_session_token(user_id: int, role: Role) -> str:
    """
    Store user_id + role in the signed token.
    Example data:
        {"user_id": 3, "role": "user"}
    """
    return serializer.dumps({"user_id": user_id, "role": role.value})


def verify_session_token(token: str, max_age_seconds: Optional[int] = None) -> Optional[dict]:
    """
    Returns dict {'user_id': ..., 'role': ...} if valid,
    or None if token is invalid/expired.
    """
    if max_age_seconds is None:
        max_age_seconds = settings.session_max_age_seconds
    try:
        return serializer.loads(token, max_age=max_age_seconds)
    except BadSignature:
        return None


def _set_session_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key="session",
        value=token,
        httponly=True,
        secure=False,
        samesite="lax",
        max_age=settings.session_max_age_seconds,
    )


def get_current_identity(
    session: SessionDep,
    session_token: Optional[str] = Cookie(default=None, alias="session"),
    authorization: Optional[str] = Header(default=None),
) -> Identity:
    """
    Resolves the caller from the 'session' cookie or a Bearer token,
    and returns their Identity. Raises 401 if not logged in / invalid.
    """
    token = session_token
    if authorization and authorization.lower().startswith("bearer "):
        token = authorization[7:].strip()
    if not token:
        raise Unauthorized("Not logged in")

    data = verify_session_token(token)
    if not data:
        raise Unauthorized("Invalid or expired session")

    user = session.get(User, data["user_id"])
    if user is None:
        raise Unauthorized("User not found for this session")

    # The stored role wins over whatever the token was minted with.
    return Identity(user_id=user.id, role=user.role)


IdentityDep = Annotated[Identity, Depends(get_current_identity)]


@router.post("/register", status_code=201)
def register(user_in: UserCreate, session: SessionDep, response: Response):
    """
    Register a new user with a hashed password and start a session.
    """
    existing = session.exec(
        select(User).where(User.email == user_in.email)
    ).first()
    if existing:
        raise InvalidInput("Email already registered", code="EMAIL_TAKEN")

    user = User(
        email=user_in.email,
        name=user_in.name,
        password_hash=hash_password(user_in.password),
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    logger.info("User %s registered", user.id)

    token = create_session_token(user.id, user.role)
    _set_session_cookie(response, token)
    return {"message": "Registration successful", "role": user.role.value, "token": token}


@router.post("/login")
def login(payload: LoginData, session: SessionDep, response: Response):
    """
    Log in with email + password and set a signed cookie.
    """
    user = session.exec(
        select(User).where(User.email == payload.email)
    ).first()

    if user is None or not verify_password(payload.password, user.password_hash):
        raise Unauthorized("Invalid email or password", code="INVALID_CREDENTIALS")

    token = create_session_token(user.id, user.role)
    _set_session_cookie(response, token)
    return {"message": "Login successful", "role": user.role.value, "token": token}


@router.post("/logout")
def logout(response: Response):
    """
    Clear the session cookie.
    """
    response.delete_cookie("session")
    return {"message": "Logged out"}


@router.get("/me", response_model=UserRead)
def read_me(identity: IdentityDep, session: SessionDep):
    """
    Get info about the currently logged-in user.
    """
    return session.get(User, identity.user_id)
