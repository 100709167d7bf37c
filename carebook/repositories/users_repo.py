from datetime import timedelta
from typing import List, Optional, Tuple

from sqlalchemy import delete, func, or_
from sqlmodel import Session, select

from ..api.errors import ApiError, ErrorCode, conflict, forbidden, invalid, not_found
from ..auth.sessions import hash_password, new_session_token, verify_password
from ..config import Settings
from ..models import Account, Role, User, UserSession, utcnow
from ..utils.logging_utils import setup_logger

logger = setup_logger(__name__)

INVALID_CREDENTIALS = "Invalid email or password"


def get_user_by_email(s: Session, email: str) -> Optional[User]:
    return s.exec(select(User).where(User.email == email.strip().lower())).first()


def register_user(
    s: Session,
    settings: Settings,
    name: str,
    email: str,
    password: str,
    role: Role = Role.CUSTOMER,
) -> User:
    """Create a user and its credentials account in one transaction."""
    if role is Role.ADMIN and not settings.allow_admin_signup:
        raise forbidden("Admin accounts cannot be self-registered")
    if get_user_by_email(s, email):
        raise conflict("User with this email already exists")

    user = User(name=name, email=email.strip().lower(), role=role)
    s.add(user)
    s.flush()
    s.add(
        Account(
            account_id=user.id,
            provider_id="credentials",
            user_id=user.id,
            password=hash_password(password),
        )
    )
    s.commit()
    s.refresh(user)
    logger.info("Registered user %s as %s", user.id, role.value)
    return user


def login(
    s: Session,
    settings: Settings,
    email: str,
    password: str,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> Tuple[User, UserSession]:
    user = get_user_by_email(s, email)
    account = _credentials(s, user.id) if user is not None else None
    if user is None or account is None or not verify_password(password, account.password):
        raise ApiError(401, ErrorCode.UNAUTHORIZED, INVALID_CREDENTIALS)

    session = UserSession(
        token=new_session_token(),
        user_id=user.id,
        expires_at=utcnow() + timedelta(seconds=settings.session_ttl_seconds),
        ip_address=ip_address,
        user_agent=user_agent,
    )
    s.add(session)
    s.commit()
    s.refresh(user)
    s.refresh(session)
    return user, session


def logout(s: Session, session_id: str) -> Optional[str]:
    """Delete a session; returns the owning user id when it existed."""
    session = s.get(UserSession, session_id)
    if session is None:
        return None
    user_id = session.user_id
    s.delete(session)
    s.commit()
    return user_id


def get_user(s: Session, user_id: str) -> User:
    user = s.get(User, user_id)
    if user is None:
        raise not_found("User")
    return user


def _credentials(s: Session, user_id: str) -> Optional[Account]:
    return s.exec(
        select(Account).where(Account.user_id == user_id, Account.provider_id == "credentials")
    ).first()


def update_profile(
    s: Session,
    user_id: str,
    name: Optional[str] = None,
    email: Optional[str] = None,
    image: Optional[str] = None,
) -> User:
    user = get_user(s, user_id)
    if email and email != user.email:
        taken = get_user_by_email(s, email)
        if taken is not None and taken.id != user.id:
            raise conflict("Email is already taken")
        user.email = email
        # the address has not been verified yet
        user.email_verified = False
    if name:
        user.name = name
    if image is not None:
        user.image = image
    s.add(user)
    s.commit()
    s.refresh(user)
    return user


def change_password(
    s: Session,
    user_id: str,
    current_password: str,
    new_password: str,
    keep_session_id: Optional[str] = None,
) -> int:
    """Rehash the credentials password and end every other session.

    Returns the number of sessions revoked.
    """
    account = _credentials(s, user_id)
    if account is None or not account.password:
        raise not_found("Credentials account")
    if not verify_password(current_password, account.password):
        raise invalid("Current password is incorrect")

    account.password = hash_password(new_password)
    s.add(account)
    stmt = delete(UserSession).where(UserSession.user_id == user_id)
    if keep_session_id:
        stmt = stmt.where(UserSession.id != keep_session_id)
    revoked = s.exec(stmt).rowcount
    s.commit()
    logger.info("Password changed for user %s, %d other session(s) revoked", user_id, revoked)
    return revoked


def change_role(s: Session, user_id: str, role: Role) -> User:
    user = get_user(s, user_id)
    user.role = role
    s.add(user)
    s.commit()
    s.refresh(user)
    logger.info("Role of user %s changed to %s", user.id, role.value)
    return user


def list_users(
    s: Session, search: Optional[str] = None, page: int = 1, limit: int = 10
) -> Tuple[List[User], int]:
    q = select(User)
    count_q = select(func.count()).select_from(User)
    if search:
        pattern = f"%{search.strip().lower()}%"
        cond = or_(func.lower(User.name).like(pattern), func.lower(User.email).like(pattern))
        q = q.where(cond)
        count_q = count_q.where(cond)

    rows = s.exec(
        q.order_by(User.created_at.desc()).offset((page - 1) * limit).limit(limit)
    ).all()
    total = s.exec(count_q).one()
    return list(rows), int(total)


def public_user(user: User) -> dict:
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "role": Role(user.role).value,
        "emailVerified": user.email_verified,
        "kycVerified": user.kyc_verified,
        "createdAt": user.created_at.isoformat(),
    }
