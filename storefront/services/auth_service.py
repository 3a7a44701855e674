"""Identity tokens, role checks and user provisioning.

Every authorization decision in the app goes through this module:
``require_role`` gates ADMIN-only operations and ``ensure_order_access``
is the single ownership rule shared by order status, the message
history and the live chat channel.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import hmac
import logging

from flask import current_app
from jose import JWTError, jwt
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from storefront.errors import (
    Conflict,
    Forbidden,
    InvalidToken,
    PersistenceError,
    Unauthorized,
    UserNotFound,
    ValidationError,
)
from storefront.extensions import db
from storefront.models import User, UserRole

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Principal:
    """Authenticated identity decoded from a token."""

    id: int
    role: UserRole

    @property
    def is_admin(self):
        return self.role == UserRole.ADMIN


def _role_value(role):
    return getattr(role, 'value', role)


def issue_token(user_id, role, expires_delta=None):
    now = datetime.now(timezone.utc)
    expires_delta = expires_delta or timedelta(
        hours=current_app.config['TOKEN_EXPIRE_HOURS'])
    claims = {
        'sub': str(user_id),
        'role': _role_value(role),
        'iat': now,
        'exp': now + expires_delta,
    }
    return jwt.encode(
        claims,
        current_app.config['JWT_SECRET'],
        algorithm=current_app.config['JWT_ALGORITHM'])


def verify_token(token) -> Principal:
    if not token or not isinstance(token, str):
        raise InvalidToken()
    try:
        claims = jwt.decode(
            token,
            current_app.config['JWT_SECRET'],
            algorithms=[current_app.config['JWT_ALGORITHM']])
    except JWTError as e:
        logger.info("Rejected token: %s", e)
        raise InvalidToken() from e

    try:
        return Principal(
            id=int(claims['sub']),
            role=UserRole(claims['role']))
    except (KeyError, TypeError, ValueError) as e:
        raise InvalidToken() from e


def require_role(principal, *roles):
    if principal is None or not getattr(principal, 'is_authenticated', True):
        raise Unauthorized()
    allowed = {_role_value(r) for r in roles}
    if _role_value(principal.role) not in allowed:
        logger.warning(
            "User %s attempted to access roles %s, current role: %s",
            principal.id,
            sorted(allowed),
            _role_value(principal.role),
        )
        raise Forbidden()


def ensure_order_access(order, principal):
    if order.user_id == principal.id:
        return
    if _role_value(principal.role) == UserRole.ADMIN.value:
        return
    logger.warning(
        "User %s attempted to access order %s", principal.id, order.id)
    raise Forbidden('No permission to access this order')


def register_user(username, email, password):
    username = (username or '').strip()
    email = (email or '').strip().lower()
    if not username or not email or not password:
        raise ValidationError('Username, email and password are required')

    existing = User.query.filter(
        or_(User.email == email, User.username == username)).first()
    if existing:
        raise Conflict('Username or email already registered')

    user = User(
        username=username,
        email=email,
        role=UserRole.CUSTOMER,
        email_verified_at=datetime.utcnow())
    user.set_password(password)
    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError as e:
        # Lost a race against a concurrent registration.
        db.session.rollback()
        raise Conflict('Username or email already registered') from e
    except SQLAlchemyError as e:
        db.session.rollback()
        raise PersistenceError(str(e)) from e
    return user


def authenticate(email, password):
    email = (email or '').strip().lower()
    if not email or not password:
        raise ValidationError('Email and password cannot be empty')

    user = User.query.filter_by(email=email).first()
    if not user:
        raise UserNotFound()
    if not user.check_password(password):
        raise Unauthorized('Invalid password')
    return user


def internal_secret_matches(secret):
    expected = current_app.config.get('INTERNAL_API_SECRET') or ''
    if not expected or not isinstance(secret, str):
        return False
    return hmac.compare_digest(secret.encode(), expected.encode())


def provision_admin(username, email, password):
    """Create an ADMIN account, or promote the matching existing user.

    Returns ``(user, outcome)`` where outcome is ``'created'``,
    ``'promoted'`` or ``'exists'``.
    """
    username = (username or '').strip()
    email = (email or '').strip().lower()
    if not username or not email or not password:
        raise ValidationError('Username, email and password are required')

    try:
        existing = User.query.filter(
            or_(User.email == email, User.username == username)).first()
        if existing:
            if existing.role == UserRole.ADMIN:
                return existing, 'exists'
            existing.role = UserRole.ADMIN
            db.session.commit()
            logger.info("Promoted user %s to ADMIN", existing.id)
            return existing, 'promoted'

        user = User(
            username=username,
            email=email,
            role=UserRole.ADMIN,
            email_verified_at=datetime.utcnow())
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        raise PersistenceError(str(e)) from e

    logger.info("Created admin user %s", user.id)
    return user, 'created'


def seed_admin_user():
    """Create the configured admin when no ADMIN exists yet."""
    cfg = current_app.config
    if not (cfg.get('ADMIN_EMAIL') and cfg.get('ADMIN_USERNAME')
            and cfg.get('ADMIN_PASSWORD')):
        logger.info("Admin environment not configured, skipping admin seed")
        return None

    if User.query.filter_by(role=UserRole.ADMIN).first():
        logger.info("Admin user already exists")
        return None

    user, _ = provision_admin(
        cfg['ADMIN_USERNAME'], cfg['ADMIN_EMAIL'], cfg['ADMIN_PASSWORD'])
    return user
