"""auth/ -- Credential resolution, password verification and token/session lifecycle.

Layer rule: auth/ imports only stdlib + third-party libraries.
It does NOT import from api/ or core/. Configuration arrives as an
auth.models.AuthConfig value built by the caller.
api/ imports from auth/, not the other way around.
"""
