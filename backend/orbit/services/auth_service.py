# Overview: Service-layer operations for auth; encapsulates business logic and database work.

"""
Authentication Service

WHY: Every action must be attributable. Uses bcrypt for secure password
hashing. Sign-up always grants exactly the employee role: a role asked
for by the client is ignored and recorded as a security event, so the
only path to a privileged role is an owner's grant (role_service).

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 6 characters required
- Session tokens managed separately (see session_service.py)
"""

from __future__ import annotations

from typing import Iterable

import bcrypt
from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..constants import SIGNUP_ROLE, Role
from ..errors import ValidationError
from ..extensions import db
from ..models import Profile, User, UserRole
from ..time_utils import utcnow
from ..validation import parse_email, require_text
from . import policy_service


PASSWORD_MIN_LENGTH = 6
FULL_NAME_MIN_LENGTH = 2


def validate_password(password: str | None) -> str:
    if not password or len(password) < PASSWORD_MIN_LENGTH:
        raise ValidationError(f"Password must be at least {PASSWORD_MIN_LENGTH} characters long")
    return password


def hash_password(password: str) -> str:
    """
    Hash password using bcrypt (cost factor from config BCRYPT_ROUNDS, default 12).

    Password length is validated before hashing.
    """
    validate_password(password)
    salt = bcrypt.gensalt(rounds=current_app.config.get("BCRYPT_ROUNDS", 12))
    hashed = bcrypt.hashpw(password.encode("utf-8"), salt)
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    WHY timing-safe: bcrypt.checkpw() prevents timing attacks automatically.
    """
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


def create_account(email: str, password: str, full_name: str, roles: Iterable[Role]) -> User:
    """
    Create user, profile and role rows in one transaction.

    Callers decide the roles: sign_up passes the employee role only, the
    CLI bootstrap may pass any.
    """
    email = parse_email(email)
    full_name = require_text(full_name, "full_name", min_length=FULL_NAME_MIN_LENGTH, max_length=200)
    password_hash = hash_password(password)

    roles = list(dict.fromkeys(roles))
    if not roles:
        raise ValidationError("At least one role is required")

    if db.session.query(User).filter_by(email=email).first():
        raise ValidationError("Email already registered")

    user = User(email=email, password_hash=password_hash)
    db.session.add(user)
    db.session.flush()

    db.session.add(Profile(id=user.id, full_name=full_name, email=email))
    for role in roles:
        db.session.add(UserRole(user_id=user.id, role=role))

    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ValidationError("Email already registered")

    return user


def sign_up(email: str, password: str, full_name: str, requested_role: str | None = None) -> User:
    """
    Self-service registration.

    requested_role is accepted for wire compatibility with older clients
    and ignored: the new user is always an employee.
    """
    user = create_account(email, password, full_name, [SIGNUP_ROLE])

    if requested_role and str(requested_role).strip().lower() != SIGNUP_ROLE.value:
        current_app.logger.warning(
            "Ignored requested role %r at sign-up for user %s", requested_role, user.id
        )
        policy_service.log_security_event(
            user_id=user.id,
            event_type="SIGNUP_ROLE_IGNORED",
            success=False,
            resource=f"user:{user.id}",
            action="SIGN_UP",
            reason=f"Requested role {requested_role!r} ignored",
        )

    return user


def authenticate(email: str, password: str) -> User | None:
    """
    Authenticate user with email and password.

    Returns User if credentials valid, None otherwise.
    Updates last_login_at timestamp on successful authentication.
    """
    if not email or not password:
        return None

    user = db.session.query(User).filter(
        User.email == str(email).strip().lower(),
        User.is_active.is_(True),
    ).first()

    if not user:
        return None

    if verify_password(password, user.password_hash):
        user.last_login_at = utcnow()
        db.session.commit()
        return user

    policy_service.log_security_event(
        user_id=user.id,
        event_type="LOGIN_FAILED",
        success=False,
        action="LOGIN",
        reason="Invalid password",
    )
    return None
