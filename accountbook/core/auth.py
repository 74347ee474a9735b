"""Authentication for the Account Book sync server.

Users register with a username and password, log in to receive a bearer
token, and present that token on every sync call. Tokens are signed with
itsdangerous and expire after a fixed lifetime; there is no refresh flow.
"""

from __future__ import annotations

import functools
import logging
from typing import Any, Callable, Optional, Tuple

from flask import Blueprint, g, jsonify, request
from itsdangerous import BadData, SignatureExpired, URLSafeTimedSerializer
from werkzeug.security import check_password_hash, generate_password_hash

from .database import Database
from .validation import ValidationError, validate_password, validate_username

logger = logging.getLogger(__name__)

TOKEN_SALT = "accountbook-auth-token"


class AuthError(Exception):
    """Missing, invalid or expired credential."""

    def __init__(self, message: str = "Not logged in, please log in first") -> None:
        self.message = message
        super().__init__(message)


def hash_password(password: str) -> str:
    """Hash a password for storage."""
    return generate_password_hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    """Check a password against its stored hash."""
    return check_password_hash(password_hash, password)


class TokenManager:
    """Issues and verifies signed bearer tokens."""

    def __init__(self, secret_key: str, max_age: int) -> None:
        """Initialize token manager.

        Args:
            secret_key: Signing key
            max_age: Token lifetime in seconds
        """
        self.max_age = max_age
        self._serializer = URLSafeTimedSerializer(secret_key, salt=TOKEN_SALT)

    def issue(self, user_id: int) -> str:
        """Create a token for a user."""
        return self._serializer.dumps({"user_id": user_id})

    def verify(self, token: str) -> int:
        """Resolve a token to its user id.

        Raises:
            AuthError: If the token is expired, tampered with or malformed
        """
        try:
            data = self._serializer.loads(token, max_age=self.max_age)
        except SignatureExpired:
            raise AuthError("Token expired, please log in again") from None
        except BadData:
            raise AuthError("Invalid token, please log in again") from None
        user_id = data.get("user_id") if isinstance(data, dict) else None
        if not isinstance(user_id, int):
            raise AuthError("Invalid token, please log in again")
        return user_id


def get_bearer_token(header: Optional[str]) -> Optional[str]:
    """Extract the token from an Authorization header value."""
    if not header:
        return None
    scheme, _, token = header.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def authenticate(db: Database, tokens: TokenManager, header: Optional[str]) -> int:
    """Resolve an Authorization header to exactly one existing user id.

    Raises:
        AuthError: If the credential is missing, invalid, expired, or names
            a user that no longer exists
    """
    token = get_bearer_token(header)
    if token is None:
        raise AuthError()
    user_id = tokens.verify(token)
    if db.get_user(user_id) is None:
        raise AuthError("Unknown user, please log in again")
    return user_id


def api_endpoint(func: Callable) -> Callable:
    """Decorator for consistent API error handling.

    Catches ValidationError (400), AuthError (401) and Exception (500) and
    answers with the {code, msg} envelope.
    """
    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except ValidationError as e:
            logger.warning(f"Validation error in {func.__name__}: {e.field} - {e.message}")
            return jsonify({"code": -1, "msg": f"Invalid {e.field}: {e.message}"}), 400
        except AuthError as e:
            logger.warning(f"Rejected unauthenticated request to {request.path}: {e.message}")
            return jsonify({"code": -1, "msg": e.message}), 401
        except Exception as e:
            logger.error(f"Error in {func.__name__}: {e}", exc_info=True)
            return jsonify({"code": -1, "msg": "Internal server error"}), 500
    return wrapper


def require_auth(db: Database, tokens: TokenManager) -> Callable[[Callable], Callable]:
    """Decorator for routes that need an authenticated user.

    The resolved user id is stored in flask.g.user_id. AuthError propagates
    to api_endpoint (or the application's error handler).
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            g.user_id = authenticate(db, tokens, request.headers.get("Authorization"))
            return func(*args, **kwargs)
        return wrapper
    return decorator


def create_auth_blueprint(db: Database, tokens: TokenManager) -> Blueprint:
    """Create Flask blueprint for account endpoints.

    Args:
        db: Database instance
        tokens: TokenManager used to issue login tokens

    Returns:
        Flask Blueprint with /api/register and /api/login
    """
    auth_bp = Blueprint("auth", __name__, url_prefix="/api")

    def read_credentials() -> Tuple[str, str]:
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            raise ValidationError("body", "missing JSON request body")
        return validate_username(data.get("username")), validate_password(data.get("password"))

    @auth_bp.route("/register", methods=["POST"])
    @api_endpoint
    def register() -> Tuple[Any, int]:
        """Create an account.

        Request body:
            {"username": "...", "password": "..."}

        Response:
            {"code": 0, "msg": "Registered", "data": {"userId": 1}}
        """
        username, password = read_credentials()
        user_id = db.create_user(username, hash_password(password))
        logger.info(f"Registered user {username} ({user_id})")
        return jsonify({"code": 0, "msg": "Registered", "data": {"userId": user_id}}), 200

    @auth_bp.route("/login", methods=["POST"])
    @api_endpoint
    def login() -> Tuple[Any, int]:
        """Exchange username and password for a bearer token.

        Request body:
            {"username": "...", "password": "..."}

        Response:
            {"code": 0, "msg": "Logged in", "data": {"token": "..."}}
        """
        username, password = read_credentials()
        user = db.get_user_by_username(username)
        if user is None or not verify_password(password, user["password_hash"]):
            logger.warning(f"Login rejected for {username}")
            return jsonify({"code": -1, "msg": "Wrong username or password"}), 400

        token = tokens.issue(user["id"])
        logger.info(f"User {username} ({user['id']}) logged in")
        return jsonify({"code": 0, "msg": "Logged in", "data": {"token": token}}), 200

    return auth_bp
