# Overview: Operator accounts; bcrypt password hashing and login.

"""
Every sale, payment and stock movement is attributed to an operator.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost from BCRYPT_ROUNDS, 12 by default)
- Minimum 8 characters with upper, lower, digit and special character
- Session tokens managed separately (see session_service.py)
"""

import re

import bcrypt
from flask import current_app

from ..errors import ConflictError, ValidationError
from ..extensions import db
from ..models import ROLES, User
from ..time_utils import utcnow


def validate_password_strength(password: str) -> None:
    """Raise ValidationError listing every unmet password rule."""
    problems = []
    if not isinstance(password, str) or len(password) < 8:
        problems.append("Password must be at least 8 characters long")
        password = password if isinstance(password, str) else ""
    if not re.search(r'[A-Z]', password):
        problems.append("Password must contain at least one uppercase letter")
    if not re.search(r'[a-z]', password):
        problems.append("Password must contain at least one lowercase letter")
    if not re.search(r'\d', password):
        problems.append("Password must contain at least one digit")
    if not re.search(r"[!@#$%^&*(),.'\":{}|<>]", password):
        problems.append("Password must contain at least one special character")
    if problems:
        raise ValidationError("Weak password", problems)


def hash_password(password: str) -> str:
    validate_password_strength(password)
    rounds = current_app.config.get("BCRYPT_ROUNDS", 12)
    salt = bcrypt.gensalt(rounds=rounds)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe bcrypt check; malformed hashes simply fail."""
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def create_user(username: str, password: str, role: str = "seller") -> User:
    """
    Create an operator account.

    Raises ValidationError for a bad username, role or weak password and
    ConflictError when the username is taken.
    """
    username = (username or "").strip()
    if not username or len(username) > 64:
        raise ValidationError("Invalid username", ["username must be 1-64 characters"])
    if role not in ROLES:
        raise ValidationError("Invalid role", [f"role must be one of {', '.join(ROLES)}"])

    existing = db.session.query(User).filter_by(username=username).first()
    if existing:
        raise ConflictError("Username already exists", [{"username": username}])

    user = User(
        username=username,
        password_hash=hash_password(password),
        role=role,
    )
    db.session.add(user)
    db.session.commit()
    return user


def authenticate(username: str, password: str) -> User | None:
    """
    Return the active user matching the credentials, or None.

    Updates last_login_at on success.
    """
    user = db.session.query(User).filter(
        User.username == username,
        User.is_active.is_(True),
    ).first()
    if not user:
        return None

    if verify_password(password, user.password_hash):
        user.last_login_at = utcnow()
        db.session.commit()
        return user

    return None
