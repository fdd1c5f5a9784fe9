"""Standardised API error responses.

Usage
-----
    from app.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "WorkProposal id=4 not found")
    return api_error(E.VALIDATION_REQUIRED, "approval_number is required")
    return api_error(E.CONFLICT_STATE, "Cannot 'start_tender' ...",
                     details={"expected": [...], "actual": "Pending Work Order"})
"""

from __future__ import annotations

from flask import jsonify


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants.

    Convention:
     • ERR_  prefix for every application error
    """

    # Validation – HTTP 422
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"
    CONFLICT_VERSION = "ERR_CONFLICT_VERSION"
    CONFLICT_IN_USE = "ERR_CONFLICT_IN_USE"

    # Permissions – HTTP 403
    FORBIDDEN = "ERR_FORBIDDEN"

    # Server – HTTP 500 / 503
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 422,
    E.VALIDATION_INVALID: 422,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_STATE: 409,
    E.CONFLICT_VERSION: 409,
    E.CONFLICT_IN_USE: 409,
    E.FORBIDDEN: 403,
    E.DATABASE: 503,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (expected statuses, offending field, etc.).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


# ── Service exception → response mapping ──────────────────────────────
def register_error_handlers(bp) -> None:
    """Map ``app.core.exceptions`` types to ``api_error`` responses on ``bp``."""
    import logging

    from flask import request
    from sqlalchemy.exc import SQLAlchemyError

    from app.core.exceptions import (
        ConflictError,
        InvalidStateError,
        NotFoundError,
        ReferenceInUseError,
        StorageError,
        ValidationError,
        VersionConflictError,
    )

    logger = logging.getLogger(bp.import_name)

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        code = E.VALIDATION_REQUIRED if "required" in str(error) else E.VALIDATION_INVALID
        return api_error(code, str(error), details=error.details)

    @bp.errorhandler(InvalidStateError)
    def _handle_invalid_state(error: InvalidStateError):
        return api_error(
            E.CONFLICT_STATE, str(error),
            details={"action": error.action, "expected": error.expected, "actual": error.actual},
        )

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        details = {"field": error.field, "retryable": error.retryable}
        code = E.CONFLICT_DUPLICATE
        if isinstance(error, VersionConflictError):
            code = E.CONFLICT_VERSION
        elif isinstance(error, ReferenceInUseError):
            code = E.CONFLICT_IN_USE
            details["proposal_ids"] = error.proposal_ids
        return api_error(code, str(error), details=details)

    @bp.errorhandler(StorageError)
    def _handle_storage(error: StorageError):
        return api_error(E.DATABASE, str(error), details={"retryable": True})

    @bp.errorhandler(SQLAlchemyError)
    def _handle_db(error: SQLAlchemyError):
        logger.exception("Database error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.DATABASE, "Database error", details={"retryable": True})
