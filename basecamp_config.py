"""
Configuration and logging setup for the Basecamp SDK.

Configuration is read once, at process start, into an immutable AuthConfig
that is then passed by reference to the OAuth flow and the HTTP client.
Nothing below the dispatchers reads the environment again.
"""

import logging
import os
import sys
from dataclasses import dataclass, field
from typing import Mapping, Optional, Tuple

from dotenv import load_dotenv

from basecamp_errors import ConfigError, OAuthConfigError

# Determine project root (directory containing this module)
PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
DOTENV_PATH = os.path.join(PROJECT_ROOT, '.env')

API_BASE = "https://3.basecampapi.com"
LAUNCHPAD = "https://launchpad.37signals.com"

DEFAULT_HTTP_TIMEOUT = 30.0
DEFAULT_CALLBACK_TIMEOUT = 300.0
ACTION_SETS = ("full", "curated")


def default_token_path() -> str:
    return os.path.join(os.getcwd(), ".basecamp", "basecamp-token.json")


def mask_token(token: Optional[str]) -> str:
    """Show only the first 6 chars of a token for safe logging."""
    if not token:
        return ""
    return token[:6] + "..." if len(token) > 6 else token


@dataclass(frozen=True)
class AuthConfig:
    """Immutable settings shared by OAuthFlow, AccountResolver and BasecampClient."""

    user_agent: str
    client_id: str = ""
    client_secret: str = ""
    redirect_uri: str = ""
    account_id_override: Optional[str] = None
    token_path: str = field(default_factory=default_token_path)
    http_timeout: float = DEFAULT_HTTP_TIMEOUT
    callback_timeout: float = DEFAULT_CALLBACK_TIMEOUT
    action_set: str = "full"

    def __post_init__(self):
        if not self.user_agent:
            raise ConfigError(
                "Missing BASECAMP_USER_AGENT. Set it in .env, e.g. "
                "BASECAMP_USER_AGENT=\"My App (me@example.com)\""
            )
        if self.action_set not in ACTION_SETS:
            raise ConfigError(
                f"BASECAMP_ACTION_SET must be one of {', '.join(ACTION_SETS)}, "
                f"got {self.action_set!r}"
            )

    def require_oauth(self) -> Tuple[str, str, str]:
        """Return (client_id, client_secret, redirect_uri) or fail."""
        if not (self.client_id and self.client_secret and self.redirect_uri):
            raise OAuthConfigError(
                "Missing OAuth env: BASECAMP_CLIENT_ID/SECRET/REDIRECT_URI"
            )
        return self.client_id, self.client_secret, self.redirect_uri


def _env_float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{key} must be a number of seconds, got {raw!r}") from None


def load_config(env: Optional[Mapping[str, str]] = None, **overrides) -> AuthConfig:
    """Build an AuthConfig from explicit overrides merged over the environment.

    Args:
        env: Mapping to read instead of os.environ (the .env file is only
            loaded when this is omitted)
        **overrides: AuthConfig fields; a value of None falls back to env

    Returns:
        AuthConfig: the frozen configuration
    """
    if env is None:
        load_dotenv(DOTENV_PATH)
        env = os.environ

    values = {
        "client_id": env.get("BASECAMP_CLIENT_ID", ""),
        "client_secret": env.get("BASECAMP_CLIENT_SECRET", ""),
        "redirect_uri": env.get("BASECAMP_REDIRECT_URI", ""),
        "user_agent": env.get("BASECAMP_USER_AGENT", ""),
        "account_id_override": env.get("BASECAMP_ACCOUNT_ID") or None,
        "token_path": env.get("BASECAMP_TOKEN_PATH") or default_token_path(),
        "http_timeout": _env_float(env, "BASECAMP_HTTP_TIMEOUT", DEFAULT_HTTP_TIMEOUT),
        "callback_timeout": _env_float(env, "BASECAMP_CALLBACK_TIMEOUT", DEFAULT_CALLBACK_TIMEOUT),
        "action_set": (env.get("BASECAMP_ACTION_SET") or "full").lower(),
    }
    values.update({key: value for key, value in overrides.items() if value is not None})
    return AuthConfig(**values)


def configure_logging(log_name: str, level: Optional[str] = None) -> logging.Logger:
    """Log to a file in the project root AND stderr, never stdout.

    stdout carries the MCP protocol stream, so writing there would corrupt it.
    """
    level_name = (level or os.getenv("BASECAMP_LOG_LEVEL") or "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(os.path.join(PROJECT_ROOT, f'{log_name}.log')),
            logging.StreamHandler(sys.stderr)
        ]
    )
    return logging.getLogger(log_name)
