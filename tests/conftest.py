"""
Shared test fixtures.

Network access is replaced with httpx.MockTransport and the token cache
lives in tmp_path, so nothing here touches a real Basecamp account or
the developer's .env.
"""

import dataclasses
import json
import os
import socket
import sys

import anyio
import httpx
import pytest

# Add project root to path so imports work
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from basecamp_config import AuthConfig  # noqa: E402
from token_storage import now_ms  # noqa: E402

USER_AGENT = "Basecamp SDK Tests (tests@example.com)"
REDIRECT_URI = "http://127.0.0.1:8765/callback"


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def token_path(tmp_path):
    return str(tmp_path / ".basecamp" / "basecamp-token.json")


@pytest.fixture
def config(token_path):
    return AuthConfig(
        user_agent=USER_AGENT,
        client_id="client-id",
        client_secret="client-secret",
        redirect_uri=REDIRECT_URI,
        token_path=token_path,
        callback_timeout=5,
    )


@pytest.fixture
def api_config(config):
    """Config pinned to account 999 with a fresh cached token."""
    write_token(config.token_path, expires_at=now_ms() + 3_600_000)
    return dataclasses.replace(config, account_id_override="999")


def write_token(path, **fields):
    data = {
        "access_token": "cached-token",
        "token_type": "Bearer",
        "expires_in": 7200,
        "expires_at": 0,
    }
    data.update(fields)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f)


def read_token_file(path):
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def recording_transport(handler):
    """Wrap a request -> Response function, keeping every request it sees."""
    requests = []

    def record(request):
        requests.append(request)
        return handler(request)

    return httpx.MockTransport(record), requests


def no_network(request):
    raise AssertionError(f"Unexpected request: {request.method} {request.url}")


def free_port():
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


async def hit(url):
    """GET the url once a loopback listener accepts connections."""
    async with httpx.AsyncClient(trust_env=False) as client:
        for _ in range(300):
            try:
                return await client.get(url)
            except httpx.ConnectError:
                await anyio.sleep(0.01)
    raise AssertionError(f"Nothing listening at {url}")
