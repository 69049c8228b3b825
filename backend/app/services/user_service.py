"""User service - buyer lookup and guest-to-account conversion"""
import logging
from typing import Optional, Tuple
from sqlalchemy.orm import Session

from app.models.user import User

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def get_user_by_id(user_id: int, db: Session) -> Optional[User]:
    """Get user by ID"""
    return db.query(User).filter(User.id == user_id).first()


def get_user_by_email(email: str, db: Session) -> Optional[User]:
    """Get user by email (case-insensitive)"""
    return db.query(User).filter(User.email == normalize_email(email)).first()


def create_user(email: str, name: str = None, is_admin: bool = False, db: Session = None) -> User:
    """Create a registered user

    Raises:
        ValueError: If the email is already registered
    """
    if get_user_by_email(email, db):
        raise ValueError("Email already registered")

    user = User(email=normalize_email(email), name=name, is_admin=is_admin)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def resolve_or_create_user(email: str, name: Optional[str], db: Session) -> Tuple[User, bool]:
    """Get the user owning an email, creating a passwordless account for guests

    Idempotent by the unique email column. Does not commit: the new user
    becomes visible together with the order it was created for.

    Returns:
        tuple: (User object, is_new_user boolean)
    """
    email = normalize_email(email)
    if not email:
        raise ValueError("Guest email is required to create an account")

    user = get_user_by_email(email, db)
    if user:
        return user, False

    user = User(email=email, name=name, created_from_guest=True)
    db.add(user)
    db.flush()
    logger.info(f"Created account {user.id} for guest checkout ({email})")
    return user, True
