"""
User account operations: registration, login, password reset and the
default admin bootstrap.

These functions commit their own changes. They are not audited.
"""
import logging
import secrets
import smtplib
from datetime import timedelta
from typing import Optional

from sqlalchemy.orm import Session

from . import auth, config, models, schemas
from .errors import Forbidden, InvalidArgument, NotFound

logger = logging.getLogger(__name__)

REGISTRABLE_ROLES = (auth.ROLE_USER, auth.ROLE_MANAGER)


def validate_password(password: Optional[str]) -> None:
    """
    Enforce the password policy.

    Raises:
        InvalidArgument: if the password is shorter than 8 characters or lacks
            a letter or a digit
    """
    if password is None or len(password) < 8:
        raise InvalidArgument("Password must be at least 8 characters")
    has_letter = any(c.isalpha() for c in password)
    has_digit = any(c.isdigit() for c in password)
    if not has_letter or not has_digit:
        raise InvalidArgument("Password must contain at least one letter and one number")


def _resolve_role(requested: Optional[str]) -> str:
    if requested is None or not requested.strip():
        return auth.ROLE_USER
    role = requested.strip().upper()
    if role == auth.ROLE_ADMIN:
        raise InvalidArgument("ADMIN role cannot be assigned during registration")
    if role not in REGISTRABLE_ROLES:
        raise InvalidArgument("Role must be either USER or MANAGER")
    return role


def get_user_by_username(db: Session, username: str) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.username == username).first()


def get_user_by_email(db: Session, email: str) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.email == email).first()


def register(db: Session, request: schemas.RegisterRequest) -> models.User:
    """
    Create a new account.

    Args:
        db: Database session
        request: Username, email, password and optional role

    Returns:
        Created User object

    Raises:
        InvalidArgument: if the username or email is taken, the password is
            weak, or the role is not USER or MANAGER
    """
    if get_user_by_username(db, request.username):
        raise InvalidArgument("Username already exists")
    if get_user_by_email(db, request.email):
        raise InvalidArgument("Email already exists")
    validate_password(request.password)
    role = _resolve_role(request.role)

    now = models.utcnow()
    db_user = models.User(
        username=request.username,
        email=request.email,
        password_hash=auth.get_password_hash(request.password),
        role=role,
        enabled=True,
        created_at=now,
        updated_at=now,
    )
    db.add(db_user)
    db.commit()
    db.refresh(db_user)
    logger.info(f"Registered user {db_user.username} with role {role}")
    return db_user


def login(db: Session, request: schemas.LoginRequest) -> schemas.AuthResponse:
    """
    Check credentials and issue an access token.

    Raises:
        InvalidArgument: if the credentials are wrong or the account is disabled
    """
    user = auth.authenticate_user(db, request.username, request.password)
    if user is None or not user.enabled:
        logger.warning(f"Failed login for {request.username}")
        raise InvalidArgument("Invalid username or password")
    return schemas.AuthResponse(
        token=auth.token_for(user),
        id=user.id,
        username=user.username,
        email=user.email,
        roles=[user.role],
    )


def _invalidate_user_tokens(db: Session, user_id: int) -> None:
    (
        db.query(models.PasswordResetToken)
        .filter(models.PasswordResetToken.user_id == user_id, models.PasswordResetToken.used.is_(False))
        .update({models.PasswordResetToken.used: True}, synchronize_session=False)
    )


def forgot_password(db: Session, request: schemas.ForgotPasswordRequest, email_sender) -> None:
    """
    Issue a reset token and email it to the account owner.

    Unknown addresses are accepted silently so callers cannot probe which
    emails are registered. A delivery failure is logged; the stored token
    stays usable.
    """
    user = get_user_by_email(db, request.email)
    if user is None:
        logger.info("Password reset requested for an unknown email")
        return

    _invalidate_user_tokens(db, user.id)
    token = secrets.token_urlsafe(32)
    expires_at = models.utcnow() + timedelta(hours=config.PASSWORD_RESET_TOKEN_EXPIRATION_HOURS)
    db.add(models.PasswordResetToken(user_id=user.id, token=token, expires_at=expires_at))
    db.commit()

    reset_url = f"{config.FRONTEND_URL}/reset-password?token={token}"
    try:
        email_sender.send_password_reset_email(user.email, token, reset_url)
    except (smtplib.SMTPException, OSError) as e:
        logger.error(f"Failed to send password reset email: {e}")


def reset_password(db: Session, request: schemas.ResetPasswordRequest) -> None:
    """
    Redeem a reset token and set a new password.

    Raises:
        InvalidArgument: if the token is unknown, used or expired, or the new
            password is weak
    """
    token = (
        db.query(models.PasswordResetToken)
        .filter(models.PasswordResetToken.token == request.token)
        .first()
    )
    if token is None or not token.is_valid():
        raise InvalidArgument("Invalid or expired reset token")
    validate_password(request.new_password)

    user = token.user
    user.password_hash = auth.get_password_hash(request.new_password)
    user.updated_at = models.utcnow()
    token.used = True
    _invalidate_user_tokens(db, user.id)
    db.commit()
    logger.info(f"Password reset for user {user.username}")


def admin_reset_password(db: Session, request: schemas.AdminResetPasswordRequest, admin_username: str) -> None:
    """
    Set another user's password on behalf of an administrator.

    Raises:
        NotFound: if the admin or the target user does not exist
        Forbidden: if the caller is not an admin
        InvalidArgument: if the new password is weak
    """
    admin = get_user_by_username(db, admin_username)
    if admin is None:
        raise NotFound("Admin user not found")
    if admin.role != auth.ROLE_ADMIN:
        raise Forbidden("Only administrators can reset passwords")

    user = get_user_by_username(db, request.username)
    if user is None:
        raise NotFound(f"User not found: {request.username}")
    validate_password(request.new_password)

    user.password_hash = auth.get_password_hash(request.new_password)
    user.updated_at = models.utcnow()
    db.commit()
    logger.info(f"Password for {user.username} reset by {admin_username}")


def cleanup_expired_tokens(db: Session) -> int:
    """
    Delete reset tokens past their expiry.

    Returns:
        Number of tokens removed
    """
    removed = (
        db.query(models.PasswordResetToken)
        .filter(models.PasswordResetToken.expires_at < models.utcnow())
        .delete(synchronize_session=False)
    )
    db.commit()
    return removed


def ensure_default_admin(db: Session) -> Optional[models.User]:
    """
    Create the configured admin account unless it (or its email) exists.

    Safe to run on every start.

    Returns:
        The created admin, or None if nothing was created
    """
    if not config.ADMIN_ENABLED:
        logger.info("Admin user creation is disabled (ADMIN_ENABLED=false)")
        return None
    if get_user_by_username(db, config.ADMIN_USERNAME) or get_user_by_email(db, config.ADMIN_EMAIL):
        logger.info(f"Default admin user already exists: {config.ADMIN_USERNAME}")
        return None

    now = models.utcnow()
    admin = models.User(
        username=config.ADMIN_USERNAME,
        email=config.ADMIN_EMAIL,
        password_hash=auth.get_password_hash(config.ADMIN_PASSWORD),
        role=auth.ROLE_ADMIN,
        enabled=True,
        created_at=now,
        updated_at=now,
    )
    db.add(admin)
    db.commit()
    db.refresh(admin)
    logger.info(f"Default admin user created: {admin.username} ({admin.email})")
    return admin
