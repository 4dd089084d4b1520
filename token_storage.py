"""
Token storage module for securely storing OAuth tokens.

The cached token is a single JSON file. A missing, unreadable or corrupt
file is reported as "no token" so the caller falls through to refresh or
re-authorization.
"""

import json
import logging
import time
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, Optional

import anyio

logger = logging.getLogger(__name__)

# Tokens are treated as expired this long before their real expiry
EXPIRY_MARGIN_MS = 60_000

Clock = Callable[[], int]


def now_ms() -> int:
    """Current epoch time in milliseconds."""
    return int(time.time() * 1000)


@dataclass(frozen=True)
class Token:
    """A cached OAuth token. Superseded by each refresh, never mutated."""

    access_token: str
    token_type: str = "Bearer"
    expires_in: int = 0
    expires_at: int = 0
    refresh_token: Optional[str] = None
    scope: Optional[str] = None
    account_id: Optional[str] = None

    def is_usable(self, now: int) -> bool:
        """True while the token has more than the safety margin left."""
        return self.expires_at - EXPIRY_MARGIN_MS > now

    @classmethod
    def from_response(cls, data: Dict[str, Any], issued_at: int,
                      account_id: Optional[str] = None) -> "Token":
        """Build a token from an identity provider response issued at `issued_at` ms."""
        expires_in = int(data.get("expires_in") or 0)
        return cls(
            access_token=data["access_token"],
            token_type=data.get("token_type") or "Bearer",
            expires_in=expires_in,
            expires_at=issued_at + expires_in * 1000,
            refresh_token=data.get("refresh_token"),
            scope=data.get("scope"),
            account_id=account_id,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Token":
        account_id = data.get("account_id")
        return cls(
            access_token=data["access_token"],
            token_type=data.get("token_type") or "Bearer",
            expires_in=int(data.get("expires_in") or 0),
            expires_at=int(data["expires_at"]),
            refresh_token=data.get("refresh_token"),
            scope=data.get("scope"),
            account_id=str(account_id) if account_id else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}


class TokenStore:
    """Reads and writes the cached token at a fixed path."""

    def __init__(self, path: str):
        self.path = path

    async def read(self) -> Optional[Token]:
        """Return the cached token, or None when absent or unparseable."""
        try:
            text = await anyio.Path(self.path).read_text(encoding="utf-8")
            return Token.from_dict(json.loads(text))
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            logger.debug(f"No usable cached token at {self.path}: {e}")
            return None

    async def write(self, token: Token) -> None:
        """Persist the token, creating parent directories on demand."""
        target = anyio.Path(self.path)
        await target.parent.mkdir(parents=True, exist_ok=True)
        await target.write_text(json.dumps(token.to_dict(), indent=2), encoding="utf-8")
        logger.info(f"Token saved to {self.path}")
