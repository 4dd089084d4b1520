"""
OAuth token lifecycle and account resolution for Basecamp.

OAuthFlow hands out a usable access token: the cached one while it is
fresh, a refreshed one when it has expired, or a brand new one from the
browser authorization flow. AccountResolver turns a token into the
numeric account id every API path is scoped under.
"""

import logging
import webbrowser
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlencode

import anyio
import httpx

import oauth_callback
from basecamp_config import LAUNCHPAD, AuthConfig, mask_token
from basecamp_errors import BasecampError, HttpError, ListenerPortError, NoAccountError, OAuthError
from token_storage import Clock, Token, TokenStore, now_ms

logger = logging.getLogger(__name__)

TOKEN_URL = f"{LAUNCHPAD}/authorization/token"
AUTHORIZATION_JSON_URL = f"{LAUNCHPAD}/authorization.json"

# Product tag of the Basecamp accounts listed by authorization.json
TARGET_PRODUCT = "bc"


def open_in_browser(url: str) -> None:
    """Best-effort browser launch; headless machines simply have no browser."""
    try:
        if not webbrowser.open(url):
            logger.debug("No browser available to open the authorization URL")
    except webbrowser.Error as e:
        logger.debug(f"Could not open browser: {e}")


def prompt_for_code(message: str) -> str:
    return input(message).strip()


class AccountResolver:
    """Resolves the account id to scope API calls under."""

    def __init__(self, config: AuthConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        self.transport = transport

    async def resolve_account_id(self, access_token: str, hint: Optional[str] = None) -> str:
        """
        Return the configured override, else the account bound to the token,
        else the first Basecamp account listed by authorization.json.
        """
        if self.config.account_id_override:
            return self.config.account_id_override
        if hint:
            return hint

        headers = {
            "Authorization": f"Bearer {access_token}",
            "User-Agent": self.config.user_agent,
            "Accept": "application/json",
        }
        async with httpx.AsyncClient(transport=self.transport, timeout=self.config.http_timeout) as client:
            response = await client.get(AUTHORIZATION_JSON_URL, headers=headers)
        if not response.is_success:
            raise HttpError(response.status_code, AUTHORIZATION_JSON_URL, response.text)

        accounts = response.json().get("accounts") or []
        account = next(
            (a for a in accounts if TARGET_PRODUCT in str(a.get("product") or "").lower()),
            accounts[0] if accounts else None,
        )
        if account is None:
            raise NoAccountError("No Basecamp account found for this token.")
        logger.debug(f"Resolved account {account['id']} ({account.get('product')})")
        return str(account["id"])


class OAuthFlow:
    """
    Cache, refresh, authorize: the first branch that yields a token wins.

    Args:
        config: shared AuthConfig
        store: token cache (defaults to config.token_path)
        interactive: whether a failed loopback listener may fall back to
            reading the code from stdin. Protocol servers pass False.
        opener: called with the authorization URL to launch a browser
        prompt: called with a prompt string, returns the pasted code
        clock: epoch milliseconds
        transport: httpx transport override
    """

    def __init__(self, config: AuthConfig, store: Optional[TokenStore] = None,
                 interactive: bool = True,
                 opener: Callable[[str], None] = open_in_browser,
                 prompt: Callable[[str], str] = prompt_for_code,
                 clock: Clock = now_ms,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        self.store = store or TokenStore(config.token_path)
        self.interactive = interactive
        self.opener = opener
        self.prompt = prompt
        self.clock = clock
        self.transport = transport

    def authorization_url(self) -> str:
        client_id, _, redirect_uri = self.config.require_oauth()
        query = urlencode({
            "type": "web_server",
            "client_id": client_id,
            "redirect_uri": redirect_uri,
        })
        return f"{LAUNCHPAD}/authorization/new?{query}"

    async def get_access_token(self, open_browser: bool = False) -> Token:
        cached = await self.store.read()
        if cached and cached.is_usable(self.clock()):
            return cached
        if cached and cached.refresh_token:
            return await self._refresh(cached)

        code = await self._authorize(open_browser)
        return await self._exchange_code(code)

    async def authenticate(self, open_browser: bool = False) -> Token:
        return await self.get_access_token(open_browser)

    async def try_auto_auth(self) -> Optional[Token]:
        """Cached or refreshed token, or None. Never opens a browser or prompts."""
        cached = await self.store.read()
        if cached is None:
            return None
        if cached.is_usable(self.clock()):
            return cached
        if not cached.refresh_token:
            return None
        try:
            return await self._refresh(cached)
        except (BasecampError, httpx.HTTPError, KeyError, ValueError) as e:
            logger.warning(f"Silent token refresh failed: {e}")
            return None

    async def has_valid_token(self) -> bool:
        cached = await self.store.read()
        return cached is not None and cached.is_usable(self.clock())

    async def _refresh(self, cached: Token) -> Token:
        client_id, client_secret, redirect_uri = self.config.require_oauth()
        logger.info(f"Refreshing expired token {mask_token(cached.access_token)}")
        data = await self._token_request({
            "type": "refresh",
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "client_secret": client_secret,
            "refresh_token": cached.refresh_token,
        }, "Token refresh failed")
        token = Token.from_response(data, self.clock(), account_id=cached.account_id)
        await self.store.write(token)
        return token

    async def _exchange_code(self, code: str) -> Token:
        client_id, client_secret, redirect_uri = self.config.require_oauth()
        data = await self._token_request({
            "type": "web_server",
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "client_secret": client_secret,
            "code": code,
        }, "Token exchange failed")
        token = Token.from_response(data, self.clock())
        await self.store.write(token)
        logger.info(f"Obtained new token {mask_token(token.access_token)}")
        return token

    async def _token_request(self, form: Dict[str, str], failure: str) -> Dict[str, Any]:
        async with httpx.AsyncClient(transport=self.transport, timeout=self.config.http_timeout) as client:
            response = await client.post(TOKEN_URL, data=form)
        if not response.is_success:
            raise OAuthError(
                f"{failure}: {response.status_code} {response.text}",
                status_code=response.status_code,
                body=response.text,
            )
        try:
            data = response.json()
        except ValueError:
            data = None
        if not isinstance(data, dict) or not data.get("access_token"):
            raise OAuthError(
                f"{failure}: unexpected response {response.status_code} {response.text[:500]}",
                status_code=response.status_code,
                body=response.text,
            )
        return data

    async def _authorize(self, open_browser: bool) -> str:
        url = self.authorization_url()
        logger.info(f"Authorize this app by visiting: {url}")
        if open_browser:
            await anyio.to_thread.run_sync(self.opener, url)

        try:
            return await oauth_callback.wait_for_code(
                self.config.redirect_uri, self.config.callback_timeout
            )
        except ListenerPortError as e:
            if not self.interactive:
                raise OAuthError(
                    f"Local callback server failed. Authorize manually at: {url}\n"
                    f"Underlying error: {e}"
                ) from e
            logger.warning(f"{e} Falling back to manual code entry.")

        logger.info(f'Visit {url} and paste the "code" param from the redirected URL.')
        code = await anyio.to_thread.run_sync(self.prompt, "Code: ")
        if not code:
            raise OAuthError(f"No authorization code entered. Authorize at: {url}")
        return code
