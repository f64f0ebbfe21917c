"""
Registration, login and session tokens.

A user has at most one live session: logging in again replaces the old
token. Clients send the token with every request; the app resolves it with
``resolve_session``.
"""
import logging
import re
import secrets
from datetime import datetime, timedelta

from werkzeug.security import generate_password_hash, check_password_hash

from models import db, User, UserSession
from errors import ValidationError, AuthenticationError, ConflictError
from constants import (
    AVATAR_URL_TEMPLATE, SESSION_TOKEN_BYTES, SESSION_EXPIRY_DAYS,
    MIN_USERNAME_LENGTH, MAX_USERNAME_LENGTH, MIN_PASSWORD_LENGTH,
    MAX_AVATAR_URL_LENGTH,
)

logger = logging.getLogger(__name__)

READ_ONLY_PROFILE_FIELDS = ('cart', 'likes', 'purchase_history')


# --- VALIDATION HELPERS ---

def validate_username(username):
    """Validate username: length bounds, no whitespace"""
    if not username or not isinstance(username, str):
        return False, "Please provide a username."
    if len(username) < MIN_USERNAME_LENGTH or len(username) > MAX_USERNAME_LENGTH:
        return False, f"Username must be {MIN_USERNAME_LENGTH}-{MAX_USERNAME_LENGTH} characters."
    if re.search(r'\s', username):
        return False, "Username cannot contain spaces."
    return True, username


def validate_password(password):
    if not password or not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        return False, f"Password must be at least {MIN_PASSWORD_LENGTH} characters long."
    return True, password


def generate_session_token():
    """Generate a secure random token for a login session"""
    return secrets.token_urlsafe(SESSION_TOKEN_BYTES)


def avatar_for(username):
    return AVATAR_URL_TEMPLATE.format(username=username)


# --- ACCOUNTS ---

def register(username, password):
    if isinstance(username, str):
        username = username.strip()
    valid, result = validate_username(username)
    if not valid:
        raise ValidationError(result)
    valid, result = validate_password(password)
    if not valid:
        raise ValidationError(result)

    if User.query.filter_by(username=username).first():
        raise ConflictError("That username is already taken.")

    user = User(
        username=username,
        password_hash=generate_password_hash(password),
        avatar=avatar_for(username),
    )
    user.cart = []
    user.likes = []
    user.purchase_history = []
    db.session.add(user)
    db.session.commit()
    logger.info(f"New user registered: {username}")
    return user


def start_session(user):
    """Issue a new token for ``user``, dropping any session they already had."""
    UserSession.query.filter_by(user_id=user.id).delete()
    token = generate_session_token()
    db.session.add(UserSession(token=token, user_id=user.id))
    db.session.commit()
    return token


def login(username, password):
    """Check credentials and start a session. Returns ``(user, token)``."""
    if isinstance(username, str):
        username = username.strip()
    user = User.query.filter_by(username=username).first() if username else None
    if user is None:
        logger.info(f"Login failed: unknown user {username!r}")
        raise AuthenticationError("Invalid username or password.")
    if not password or not check_password_hash(user.password_hash, password):
        logger.info(f"Login failed: wrong password for {username}")
        raise AuthenticationError("Invalid username or password.")
    return user, start_session(user)


def resolve_session(token):
    """Return the User a token belongs to, or None for unknown/expired tokens."""
    if not token:
        return None
    session = UserSession.query.filter_by(token=token).first()
    if session is None:
        return None
    if session.created_at < datetime.utcnow() - timedelta(days=SESSION_EXPIRY_DAYS):
        db.session.delete(session)
        db.session.commit()
        return None
    return db.session.get(User, session.user_id)


def logout(token):
    """Drop a session. Unknown tokens are ignored."""
    if token:
        UserSession.query.filter_by(token=token).delete()
        db.session.commit()


def update_profile(user, data):
    """Change username and/or avatar. Cart and likes sync through the cart module; history is read-only."""
    if not isinstance(data, dict):
        raise ValidationError("Profile payload must be an object")
    for field in READ_ONLY_PROFILE_FIELDS:
        if field in data:
            raise ValidationError(f"{field} cannot be edited here.")

    if 'username' in data and data['username'] != user.username:
        valid, result = validate_username(data['username'])
        if not valid:
            raise ValidationError(result)
        if User.query.filter_by(username=data['username']).first():
            raise ConflictError("That username is already taken.")
        user.username = data['username']

    if 'avatar' in data:
        avatar = data['avatar'] or avatar_for(user.username)
        if not isinstance(avatar, str) or len(avatar) > MAX_AVATAR_URL_LENGTH:
            raise ValidationError("Invalid avatar URL.")
        user.avatar = avatar

    db.session.commit()
    return user
