"""
auth/errors.py -- Exception taxonomy for the auth core.

Every error carries the HTTP status and a stable machine-readable code so the
API layer can translate it into the standard error envelope without a lookup
table. Messages on Unauthorized are deliberately generic: the same text is
used for an unknown email and a wrong password.

Layer rule: stdlib only.
"""

from __future__ import annotations


class AuthError(Exception):
    status_code = 500
    code = "auth_error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message


class Unauthorized(AuthError):
    """Bad credentials, missing/expired/invalid token, missing/expired session."""

    status_code = 401
    code = "unauthorized"


class ValidationError(AuthError):
    status_code = 400
    code = "validation_error"


class Conflict(AuthError):
    status_code = 409
    code = "conflict"


class SignupFailed(AuthError):
    """No known users-table layout accepted the insert."""

    status_code = 500
    code = "signup_failed"


class StorageUnavailable(AuthError):
    """The credential store could not be reached.

    Distinct from Unauthorized: the caller should report an upstream outage,
    not a login failure.
    """

    status_code = 502
    code = "storage_unavailable"
