# chainvote/errors.py
"""Error taxonomy shared by the services and the HTTP layer.

Services raise these; ``register_error_handlers`` renders them (and anything
else that escapes a view) as ``{"title": ...}`` JSON so nothing reaches the
client as an HTML crash page.

Exception hierarchy:
- ChainVoteError: Base class, HTTP 500
  - ValidationError: Missing/malformed input or business rule (400)
  - Unauthorized: Bad or missing credentials (401)
  - Forbidden: Authenticated with the wrong role (403)
  - NotFound: Unknown resource (404)
  - Conflict: Duplicate attestation (409)
  - LedgerFailure: Definite ledger rejection or transient ledger error
  - LedgerAmbiguous: Write timed out, on-chain outcome unknown
  - LedgerUnavailable: No ledger client configured
  - InconsistencyError: Ledger write succeeded, local write failed
"""

import logging

from flask import jsonify
from werkzeug.exceptions import HTTPException

from chainvote import jwt

logger = logging.getLogger(__name__)


class ChainVoteError(Exception):
    """Base class for failures surfaced to API callers."""
    status_code = 500

    def __init__(self, title, errors=None):
        super().__init__(title)
        self.title = title
        self.errors = errors

    def to_dict(self):
        body = {"title": self.title}
        if self.errors:
            body["errors"] = self.errors
        return body


class ValidationError(ChainVoteError):
    """Raised for missing or invalid fields and business-rule violations."""
    status_code = 400


class Unauthorized(ChainVoteError):
    status_code = 401


class Forbidden(ChainVoteError):
    status_code = 403


class NotFound(ChainVoteError):
    status_code = 404


class Conflict(ChainVoteError):
    """Raised when an observer attests the same result hash twice."""
    status_code = 409


class LedgerFailure(ChainVoteError):
    """Raised when the ledger definitely rejected a call or failed in transit."""
    pass


class LedgerAmbiguous(ChainVoteError):
    """Raised when a ledger write timed out; it may still be mined.

    Callers should re-read state instead of resubmitting the write.
    """
    pass


class LedgerUnavailable(ChainVoteError):
    """Raised when no ledger client is bound to the application."""
    pass


class InconsistencyError(ChainVoteError):
    """Raised when the ledger holds a record the local store failed to mirror."""
    pass


def _json_error(title, status_code, errors=None):
    body = {"title": title}
    if errors:
        body["errors"] = errors
    return jsonify(body), status_code


@jwt.unauthorized_loader
def missing_token_callback(reason):
    return _json_error("Se requiere autenticación.", 401)


@jwt.invalid_token_loader
def invalid_token_callback(reason):
    return _json_error("Token inválido.", 401)


@jwt.expired_token_loader
def expired_token_callback(jwt_header, jwt_payload):
    return _json_error("El token ha expirado.", 401)


def register_error_handlers(app):
    @app.errorhandler(ChainVoteError)
    def handle_chainvote_error(error):
        if error.status_code >= 500:
            logger.error("%s: %s", type(error).__name__, error.title)
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_exception(error):
        return _json_error(error.description or error.name, error.code)

    @app.errorhandler(Exception)
    def handle_unexpected(error):
        logger.exception("Unhandled error: %s", error)
        return _json_error("Error interno del servidor.", 500)
