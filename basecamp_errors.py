"""
Exception hierarchy for the Basecamp SDK and its dispatchers.

All custom exceptions live here so every layer can import them without
circular imports.
"""

_BODY_SNIPPET_LENGTH = 500


def _snippet(body):
    """Trim a response body for inclusion in an error message."""
    if not body:
        return ""
    body = body.strip()
    if len(body) > _BODY_SNIPPET_LENGTH:
        return body[:_BODY_SNIPPET_LENGTH] + "... [truncated]"
    return body


class BasecampError(Exception):
    """Base class for every error raised by this package."""


class ConfigError(BasecampError):
    """A required configuration value is missing at the point it is needed."""


class AuthError(BasecampError):
    """Authentication could not produce a usable token or account."""


class OAuthConfigError(ConfigError, AuthError):
    """OAuth client id, secret or redirect URI missing when a flow is attempted."""


class OAuthError(AuthError):
    """The identity provider rejected an authorization, exchange or refresh."""

    def __init__(self, message, status_code=None, body=None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ListenerPortError(AuthError):
    """The loopback listener could not bind the redirect URI's port."""

    def __init__(self, port, reason=None):
        message = (
            f"Port {port} is busy. Close the other process using it or change "
            f"BASECAMP_REDIRECT_URI to a free port."
        )
        if reason:
            message += f" ({reason})"
        super().__init__(message)
        self.port = port


class NoAccountError(AuthError):
    """The authorization introspection listed no accounts."""


class HttpError(BasecampError):
    """Non-2xx response from the Basecamp API."""

    def __init__(self, status_code, url, body=""):
        super().__init__(f"HTTP {status_code} for {url}: {_snippet(body)}")
        self.status_code = status_code
        self.url = url
        self.body = body


class DownloadError(HttpError):
    """Non-2xx response while downloading binary content."""


class UnknownActionError(BasecampError, LookupError):
    """No registry action carries the requested name."""

    def __init__(self, name):
        super().__init__(f"Unknown action: {name}")
        self.name = name


class ActionValidationError(BasecampError, ValueError):
    """Arguments for an action failed its input model."""

    def __init__(self, action, errors):
        details = "; ".join(f"{field}: {message}" for field, message in errors)
        super().__init__(f"Invalid arguments for {action}: {details}")
        self.action = action
        self.errors = errors


class NotFoundError(BasecampError, LookupError):
    """A project, board or column looked up by name does not exist."""
