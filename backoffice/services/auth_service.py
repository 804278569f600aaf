import logging
from datetime import datetime, timedelta, timezone

import bcrypt
import jwt
from sqlalchemy.orm import Session

from backoffice.config import settings
from backoffice.exceptions import ConflictError, ValidationError
from backoffice.models.user import User, UserRole

logger = logging.getLogger(__name__)


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def verify_password(password: str, hashed: str) -> bool:
    return bcrypt.checkpw(password.encode(), hashed.encode())


def create_access_token(user_id: str, username: str, role: str = "staff") -> str:
    payload = {
        "sub": user_id,
        "username": username,
        "role": role,
        "exp": datetime.now(timezone.utc) + timedelta(hours=settings.ACCESS_TOKEN_EXPIRE_HOURS),
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm="HS256")


def decode_token(token: str) -> dict | None:
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=["HS256"])
    except jwt.InvalidTokenError:
        return None


def authenticate(db: Session, username: str, password: str) -> User | None:
    user = db.query(User).filter(User.username == username, User.active.is_(True)).first()
    if not user or not verify_password(password, user.password_hash):
        logger.info("Failed login for %s", username)
        return None
    user.last_login_at = datetime.now(timezone.utc).replace(tzinfo=None)
    db.commit()
    return user


def get_user_by_id(db: Session, user_id: str) -> User | None:
    return db.query(User).filter(User.id == user_id).first()


def create_user(
    db: Session, username: str, password: str, display_name: str = "", role: str = "staff", email: str = ""
) -> User:
    if not username or not password:
        raise ValidationError("Username and password are required")
    try:
        role = UserRole(role).value
    except ValueError:
        raise ValidationError(f"Unknown role '{role}'", field="role") from None
    if db.query(User).filter(User.username == username).first():
        raise ConflictError(f"Username '{username}' already exists", field="username")
    user = User(
        username=username,
        display_name=display_name or username,
        email=email,
        password_hash=hash_password(password),
        role=role,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("Created %s user %s", role, username)
    return user


def list_users(db: Session) -> list[User]:
    return db.query(User).order_by(User.created_at.desc()).all()


def ensure_default_admin(db: Session) -> None:
    """Create the default admin user if no users exist."""
    if db.query(User).count() == 0:
        create_user(
            db,
            username=settings.DEFAULT_ADMIN_USERNAME,
            password=settings.DEFAULT_ADMIN_PASSWORD,
            display_name="Admin",
            role=UserRole.ADMIN.value,
        )
        logger.warning("Created default admin user '%s'; change its password", settings.DEFAULT_ADMIN_USERNAME)
