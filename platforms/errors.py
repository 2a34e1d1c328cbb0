"""Errors raised by platform adapters."""


class PlatformError(Exception):
    """Base class for platform call failures."""


class TransientApiError(PlatformError):
    """Network failure, timeout, rate limit, quota or 5xx response."""


class UpstreamLogicError(PlatformError):
    """Platform returned a payload we cannot use."""


class AuthError(PlatformError):
    """Credentials missing or token acquisition failed. Fatal to the run."""
