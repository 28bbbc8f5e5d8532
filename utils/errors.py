"""Typed service errors.

Services raise these; the gateway in `main.py` renders every one of them as
``{"error": kind, "message": message}`` with the matching status code.
"""


class AppError(Exception):
    kind = "internal"
    status_code = 500

    def __init__(self, message: str = "", *, details=None):
        super().__init__(message or self.kind)
        self.message = message or self.kind.replace("_", " ")
        self.details = details

    def to_dict(self) -> dict:
        body = {"error": self.kind, "message": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


class ValidationError(AppError):
    kind = "validation"
    status_code = 400


class UnauthenticatedError(AppError):
    kind = "unauthenticated"
    status_code = 401


class ForbiddenError(AppError):
    kind = "forbidden"
    status_code = 403


class NotFoundError(AppError):
    kind = "not_found"
    status_code = 404


class ConflictError(AppError):
    kind = "conflict"
    status_code = 409


class PayloadTooLargeError(AppError):
    kind = "payload_too_large"
    status_code = 413


class InternalError(AppError):
    kind = "internal"
    status_code = 500


def error_body(kind: str, message: str) -> dict:
    return {"error": kind, "message": message}
