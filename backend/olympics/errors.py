"""Typed API errors.

Service code raises these; the app-level handler renders them as
``{"error": message, "code": code}`` with the matching HTTP status.
"""

from flask import jsonify


class ApiError(Exception):
    code = 'INTERNAL_SERVER_ERROR'
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self):
        return {'error': self.message, 'code': self.code}


class Unauthorized(ApiError):
    code = 'UNAUTHORIZED'
    status_code = 401


class Forbidden(ApiError):
    code = 'FORBIDDEN'
    status_code = 403


class NotFound(ApiError):
    code = 'NOT_FOUND'
    status_code = 404


class BadRequest(ApiError):
    code = 'BAD_REQUEST'
    status_code = 400


class StateConflict(BadRequest):
    """Operation attempted against a game in the wrong lifecycle state."""


def register_error_handlers(flask_app) -> None:
    @flask_app.errorhandler(ApiError)
    def handle_api_error(exc: ApiError):
        return jsonify(exc.to_dict()), exc.status_code
