"""Sync server implementation for Account Book.

Clients keep a local copy of their records and synchronize with this server
using version numbers:

Sync Protocol:
1. Login: POST /api/login returns a bearer token
2. Download: POST /api/sync/download returns every record of the user whose
   version is above the client's watermark (lastVersion)
3. Upload: POST /api/sync/upload upserts the client's changed records; each
   accepted record is stamped with the next per-user version and echoed back

All responses use the envelope {"code": 0 | -1, "msg": "...", "data": ...}
where code 0 means success.
"""

from __future__ import annotations

import logging
from typing import Any, Tuple

from flask import Blueprint, Flask, g, jsonify, request
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from .auth import AuthError, TokenManager, api_endpoint, create_auth_blueprint, require_auth
from .config import Config
from .database import Database
from .validation import ValidationError, validate_last_version

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "1.0"
MAX_UPLOAD_BATCH = 1000


def create_sync_blueprint(db: Database, tokens: TokenManager) -> Blueprint:
    """Create Flask blueprint for sync endpoints.

    Args:
        db: Database instance
        tokens: TokenManager used to authenticate requests

    Returns:
        Flask Blueprint with sync routes
    """
    sync_bp = Blueprint("sync", __name__, url_prefix="/api")
    login_required = require_auth(db, tokens)

    @sync_bp.route("/sync/upload", methods=["POST"])
    @api_endpoint
    @login_required
    def upload() -> Tuple[Any, int]:
        """Apply records pushed by a client.

        Request body:
            {"records": [{"id": ..., "type": "income", "amount": 100, ...}]}

        Response:
            {
                "code": 0,
                "msg": "...",
                "data": {
                    "applied": 2,
                    "records": [...],   # stored records, with client_id
                    "errors": [{"index": 2, "id": null, "error": "..."}]
                }
            }

        Status: 200 all applied, 207 partial success, 422 nothing applied.
        """
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            raise ValidationError("body", "missing JSON request body")

        records = data.get("records")
        if not isinstance(records, list) or not records:
            raise ValidationError("records", "sync data cannot be empty")
        if len(records) > MAX_UPLOAD_BATCH:
            raise ValidationError(
                "records", f"cannot exceed {MAX_UPLOAD_BATCH} records per upload (got {len(records)})"
            )

        user_id = g.user_id
        result = db.upload_records(user_id, records)
        response_data = {
            "applied": result.applied,
            "records": [r.to_dict() for r in result.records],
            "errors": result.errors,
        }

        if result.errors:
            logger.warning(
                f"Upload from user {user_id}: {result.applied} applied, "
                f"{len(result.errors)} errors: {result.errors[:3]}"
                f"{'...' if len(result.errors) > 3 else ''}"
            )
            if result.applied > 0:
                msg = f"Synced {result.applied} records, {len(result.errors)} rejected"
                return jsonify({"code": 0, "msg": msg, "data": response_data}), 207
            return jsonify({
                "code": -1,
                "msg": "No records could be applied",
                "data": response_data,
            }), 422

        logger.info(f"Upload from user {user_id}: {result.applied} applied")
        return jsonify({"code": 0, "msg": "Sync succeeded", "data": response_data}), 200

    @sync_bp.route("/sync/download", methods=["POST"])
    @api_endpoint
    @login_required
    def download() -> Tuple[Any, int]:
        """Return the user's records above a watermark.

        Request body:
            {"lastVersion": 5, "includeDeleted": false}

        Response:
            {"code": 0, "msg": "OK", "data": [...]}
        """
        data = request.get_json(silent=True)
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ValidationError("body", "must be a JSON object")

        last_version = validate_last_version(data.get("lastVersion"))
        include_deleted = data.get("includeDeleted", False)
        if not isinstance(include_deleted, bool):
            raise ValidationError("includeDeleted", "must be a boolean")

        records = db.download_records(g.user_id, last_version, include_deleted)
        logger.debug(
            f"Returning {len(records)} records above version {last_version} to user {g.user_id}"
        )
        return jsonify({
            "code": 0,
            "msg": "OK",
            "data": [r.to_dict() for r in records],
        }), 200

    @sync_bp.route("/status", methods=["GET"])
    @api_endpoint
    def status() -> Tuple[Any, int]:
        """Get sync server status."""
        return jsonify({
            "code": 0,
            "msg": "OK",
            "data": {"status": "ok", "protocol_version": PROTOCOL_VERSION},
        }), 200

    return sync_bp


def create_sync_server(db: Database, config: Config) -> Flask:
    """Create the sync server Flask application.

    Args:
        db: Database instance
        config: Config instance (token key and lifetime)

    Returns:
        Flask application instance
    """
    app = Flask(__name__)
    app.json.sort_keys = False
    CORS(app)

    tokens = TokenManager(config.get_secret_key(), config.get_token_expiry_seconds())
    app.register_blueprint(create_auth_blueprint(db, tokens))
    app.register_blueprint(create_sync_blueprint(db, tokens))

    @app.errorhandler(ValidationError)
    def validation_error(error: ValidationError) -> Tuple[Any, int]:
        """Handle validation errors."""
        logger.warning(f"Validation error: {error.field} - {error.message}")
        return jsonify({"code": -1, "msg": f"Invalid {error.field}: {error.message}"}), 400

    @app.errorhandler(AuthError)
    def auth_error(error: AuthError) -> Tuple[Any, int]:
        """Handle missing, invalid and expired credentials."""
        logger.warning(f"Rejected unauthenticated request to {request.path}: {error.message}")
        return jsonify({"code": -1, "msg": error.message}), 401

    @app.errorhandler(HTTPException)
    def http_error(error: HTTPException) -> Tuple[Any, int]:
        """Handle 404, 405 and other HTTP errors."""
        return jsonify({"code": -1, "msg": error.description or error.name}), error.code or 500

    @app.errorhandler(Exception)
    def internal_error(error: Exception) -> Tuple[Any, int]:
        """Handle unexpected errors."""
        logger.error(f"Internal error handling {request.path}: {error}", exc_info=True)
        return jsonify({"code": -1, "msg": "Internal server error"}), 500

    return app
