from __future__ import annotations


class LmsError(Exception):
    status_code = 400

    def __init__(self, detail: str, *, status_code: int | None = None) -> None:
        super().__init__(detail)
        if status_code is not None:
            self.status_code = status_code
        self.detail = detail


class NotFoundError(LmsError):
    status_code = 404


class PermissionDeniedError(LmsError):
    status_code = 403


class ConflictError(LmsError):
    status_code = 409


class GoneError(LmsError):
    status_code = 410


class ConfigError(LmsError):
    def __init__(self, detail: str) -> None:
        super().__init__(detail, status_code=503)


class UpstreamError(LmsError):
    """Raised when Stripe, Supabase or the mail provider misbehaves."""

    status_code = 502


__all__ = [
    "ConfigError",
    "ConflictError",
    "GoneError",
    "LmsError",
    "NotFoundError",
    "PermissionDeniedError",
    "UpstreamError",
]
