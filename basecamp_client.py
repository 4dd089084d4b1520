"""
Authenticated HTTP core for the Basecamp 3 API.

Every call fetches its own token and account id, so no session state is
threaded between requests. Paths are account-relative unless `absolute`
is set, in which case they are used as full URLs.
"""

import base64
import json
import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple

import httpx

from auth_manager import AccountResolver, OAuthFlow
from basecamp_config import API_BASE, AuthConfig
from basecamp_errors import DownloadError, HttpError
from token_storage import Token

logger = logging.getLogger(__name__)

# Attachment hosts that reject bearer tokens; the same paths resolve on the API host
DOWNLOAD_HOST_REWRITES = (
    ("https://storage.3.basecamp.com", API_BASE),
    ("https://preview.3.basecamp.com", API_BASE),
)

BODYLESS_METHODS = ("GET", "HEAD")


def rewrite_download_url(url: str) -> str:
    for prefix, replacement in DOWNLOAD_HOST_REWRITES:
        if url.startswith(prefix):
            return replacement + url[len(prefix):]
    return url


def _query_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def build_url(path: str, account_id: str, query: Optional[Mapping[str, Any]] = None,
              absolute: bool = False) -> str:
    """
    Build a request URL.

    Args:
        path: account-relative path such as `/projects.json`, or a full URL
        account_id: account the relative path is scoped under
        query: query parameters; None values are left out
        absolute: treat `path` as a full URL

    Returns:
        str: the URL with query parameters merged in
    """
    base = path.strip()
    if not absolute:
        base = f"{API_BASE}/{account_id}/{base.lstrip('/')}"
    url = httpx.URL(base)
    if query:
        params = {key: _query_value(value) for key, value in query.items() if value is not None}
        if params:
            url = url.copy_merge_params(params)
    return str(url)


class BasecampClient:
    """
    Client for the Basecamp 3 API using OAuth 2.0.

    Resource wrappers, the enriched card aggregator and every registry
    action are built on `request` and `get_all_pages`.
    """

    def __init__(self, config: AuthConfig, auth: Optional[OAuthFlow] = None,
                 resolver: Optional[AccountResolver] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        self.transport = transport
        self.auth = auth or OAuthFlow(config, transport=transport)
        self.resolver = resolver or AccountResolver(config, transport=transport)

    def _http(self, **kwargs) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport, timeout=self.config.http_timeout, **kwargs)

    async def _credentials(self, open_browser: bool) -> Tuple[Token, str]:
        token = await self.auth.get_access_token(open_browser)
        account_id = await self.resolver.resolve_account_id(token.access_token, token.account_id)
        return token, account_id

    def _headers(self, token: Token, extra: Optional[Mapping[str, Optional[str]]] = None) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {token.access_token}",
            "User-Agent": self.config.user_agent,
            "Accept": "application/json",
        }
        for key, value in (extra or {}).items():
            if value is not None:
                headers[key] = value
        return headers

    async def request(self, method: str, path: str, query: Optional[Mapping[str, Any]] = None,
                      headers: Optional[Mapping[str, Optional[str]]] = None, body: Any = None,
                      absolute: bool = False, open_browser: bool = False) -> Any:
        """
        Make an authenticated request.

        Args:
            method: HTTP method
            path: account-relative path or, with `absolute`, a full URL
            query: query parameters (None values omitted)
            headers: extra headers, overriding the defaults
            body: str bodies are sent as-is, anything else as JSON
            absolute: treat `path` as a full URL
            open_browser: launch a browser if a full OAuth flow is needed

        Returns:
            Parsed JSON for application/json responses, None for HEAD,
            raw text otherwise.

        Raises:
            HttpError: on any non-2xx response
        """
        method = method.upper()
        token, account_id = await self._credentials(open_browser)
        url = build_url(path, account_id, query, absolute)
        request_headers = self._headers(token, headers)

        content = None
        if body is not None and method not in BODYLESS_METHODS:
            content = body if isinstance(body, str) else json.dumps(body)
            if not any(key.lower() == "content-type" for key in request_headers):
                request_headers["Content-Type"] = "application/json"

        logger.debug(f"{method} {url}")
        async with self._http() as client:
            response = await client.request(method, url, headers=request_headers, content=content)
        if not response.is_success:
            raise HttpError(response.status_code, url, response.text)

        if method == "HEAD":
            return None
        if "application/json" in response.headers.get("content-type", ""):
            return response.json()
        return response.text

    async def get(self, path: str, **options) -> Any:
        return await self.request("GET", path, **options)

    async def post(self, path: str, body: Any = None, **options) -> Any:
        return await self.request("POST", path, body=body, **options)

    async def put(self, path: str, body: Any = None, **options) -> Any:
        return await self.request("PUT", path, body=body, **options)

    async def patch(self, path: str, body: Any = None, **options) -> Any:
        return await self.request("PATCH", path, body=body, **options)

    async def delete(self, path: str, **options) -> Any:
        return await self.request("DELETE", path, **options)

    async def get_all_pages(self, path: str, query: Optional[Mapping[str, Any]] = None,
                            headers: Optional[Mapping[str, Optional[str]]] = None,
                            absolute: bool = False, open_browser: bool = False) -> List[Any]:
        """
        Follow `Link: <url>; rel="next"` headers and return every page's
        items as one list, in page order. Pages are fetched one at a time.
        """
        token, account_id = await self._credentials(open_browser)
        request_headers = self._headers(token, headers)
        url = build_url(path, account_id, query, absolute)
        items: List[Any] = []

        async with self._http() as client:
            while url:
                logger.debug(f"GET {url}")
                response = await client.get(url, headers=request_headers)
                if not response.is_success:
                    raise HttpError(response.status_code, url, response.text)
                page = response.json()
                if isinstance(page, list):
                    items.extend(page)
                else:
                    items.append(page)
                url = response.links.get("next", {}).get("url")

        return items

    async def download_binary(self, url: str) -> str:
        """Download attachment content with the bearer token and return it base64-encoded."""
        token = await self.auth.get_access_token(False)
        target = rewrite_download_url(url)
        headers = {
            "Authorization": f"Bearer {token.access_token}",
            "User-Agent": self.config.user_agent,
        }
        logger.debug(f"Downloading {target}")
        async with self._http(follow_redirects=True) as client:
            response = await client.get(target, headers=headers)
        if not response.is_success:
            raise DownloadError(response.status_code, target, response.text)
        return base64.b64encode(response.content).decode("ascii")

    async def list_projects(self) -> Any:
        return await self.get("/projects.json")

    async def list_archived_projects(self) -> Any:
        return await self.get("/projects/archived.json")
