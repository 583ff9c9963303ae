"""Account service: registration, password login, plan roles and song allowance.

Passwords are hashed with bcrypt via passlib and never stored or logged in
plaintext. Endpoints are thin wrappers over these functions.
"""

import logging
import uuid
from typing import Optional

from passlib.hash import bcrypt
from sqlalchemy.orm import Session

from ..exceptions import AuthenticationError, ConflictError, UserNotFoundError, ValidationError
from ..models.user import User, UserRole

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8
USER_ID_LENGTH = 12


def register_user(
    db: Session,
    email: str,
    password: str,
    display_name: str,
    role: str = UserRole.FREE,
) -> User:
    """Create a new user account.

    The first account registered becomes admin. Later accounts get *role*
    (free by default).

    Raises:
        ValidationError: malformed email, short password or empty name.
        ConflictError: the email is already registered.
    """
    email = email.strip().lower()
    if not email or "@" not in email:
        raise ValidationError("Valid email address required", field="email")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters", field="password"
        )
    if not display_name.strip():
        raise ValidationError("Display name required", field="display_name")
    if role not in UserRole.ALL:
        raise ValidationError(f"Invalid role: {role}", field="role")

    if db.query(User).filter(User.email == email).first() is not None:
        raise ConflictError("Email already registered", details={"field": "email"})

    is_first_user = db.query(User).filter(User.email.isnot(None)).count() == 0
    effective_role = UserRole.ADMIN if is_first_user else role

    user = User(
        user_id=uuid.uuid4().hex[:USER_ID_LENGTH],
        display_name=display_name.strip(),
        email=email,
        password_hash=bcrypt.hash(password),
        role=effective_role,
        is_active=True,
    )
    db.add(user)
    db.commit()
    db.refresh(user)

    if is_first_user:
        logger.info("First user registered as admin: %s", email)
    return user


def authenticate(db: Session, email: str, password: str) -> User:
    """Validate credentials and return the user.

    Raises AuthenticationError on unknown email, wrong password, or inactive account.
    """
    email = email.strip().lower()
    user = db.query(User).filter(User.email == email).first()

    if user is None or user.password_hash is None:
        raise AuthenticationError("Invalid email or password")

    if not bcrypt.verify(password, user.password_hash):
        raise AuthenticationError("Invalid email or password")

    if not user.is_active:
        raise AuthenticationError("Account is deactivated")

    return user


def get_user_by_id(db: Session, user_id: str) -> Optional[User]:
    return db.query(User).filter(User.user_id == user_id).first()


def list_users(db: Session) -> list[User]:
    return db.query(User).order_by(User.created_at).all()


def update_user_role(db: Session, user_id: str, new_role: str) -> User:
    """Change a user's plan role."""
    if new_role not in UserRole.ALL:
        raise ValidationError(
            f"Invalid role: {new_role}. Must be one of {', '.join(UserRole.ALL)}.", field="role"
        )

    user = get_user_by_id(db, user_id)
    if user is None:
        raise UserNotFoundError(user_id)

    user.role = new_role
    db.commit()
    db.refresh(user)
    logger.info("Role of user %s changed to %s", user_id, new_role)
    return user


# ---------------------------------------------------------------------------
# Song allowance
# ---------------------------------------------------------------------------

def can_create_songs(user: Optional[User], role: str) -> bool:
    """Whether an account may start another generation.

    admin/max: unlimited. paid: needs remaining credits. free: one song ever.
    Callers without a user row (auth disabled) fall back to *role*.
    """
    role = user.role if user is not None else role
    if role in UserRole.UNLIMITED:
        return True
    if user is None:
        return False
    if role == UserRole.PAID:
        return (user.credits_remaining or 0) > 0
    return (user.songs_created or 0) == 0


def remaining_songs(user: Optional[User], role: str) -> Optional[int]:
    """Songs left on the plan, or None when unlimited."""
    role = user.role if user is not None else role
    if role in UserRole.UNLIMITED:
        return None
    if user is None:
        return 0
    if role == UserRole.PAID:
        return max(0, user.credits_remaining or 0)
    return 0 if (user.songs_created or 0) > 0 else 1
