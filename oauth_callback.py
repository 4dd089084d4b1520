"""
One-shot loopback listener that captures the OAuth redirect.

The identity provider sends the browser back to BASECAMP_REDIRECT_URI with
either a `code` or an `error` query parameter. This module binds the
redirect URI's port, answers that request, and hands the code back.
"""

import logging
from typing import Optional, Tuple
from urllib.parse import parse_qs, urlsplit

import anyio
from anyio.abc import SocketStream
from anyio.streams.buffered import BufferedByteReceiveStream

from basecamp_errors import ListenerPortError, OAuthError

logger = logging.getLogger(__name__)

MAX_REQUEST_LINE = 16 * 1024

SUCCESS_MESSAGE = "You can close this window and return to the CLI."

_REASONS = {200: "OK", 400: "Bad Request", 404: "Not Found"}


def _http_response(status: int, body: str) -> bytes:
    payload = body.encode("utf-8")
    head = (
        f"HTTP/1.1 {status} {_REASONS[status]}\r\n"
        f"Content-Type: text/plain; charset=utf-8\r\n"
        f"Content-Length: {len(payload)}\r\n"
        f"Connection: close\r\n\r\n"
    )
    return head.encode("ascii") + payload


def classify_request(target: str, expected_path: str) -> Tuple[int, str, Optional[str], Optional[str]]:
    """Decide how to answer one request target such as `/callback?code=x`.

    Returns:
        (status, body, code, error): exactly one of code/error is set when
        the listener should stop, neither when it should keep waiting
    """
    parts = urlsplit(target)
    if parts.path != expected_path:
        return 404, "Not Found", None, None
    params = parse_qs(parts.query)
    error = (params.get("error") or [None])[0]
    if error:
        return 400, "Authorization failed", None, error
    code = (params.get("code") or [None])[0]
    if not code:
        return 400, "Missing code", None, None
    return 200, SUCCESS_MESSAGE, code, None


async def _read_request_target(stream: SocketStream) -> Optional[str]:
    reader = BufferedByteReceiveStream(stream)
    try:
        line = await reader.receive_until(b"\r\n", MAX_REQUEST_LINE)
    except (anyio.EndOfStream, anyio.IncompleteRead, anyio.DelimiterNotFound):
        return None
    fields = line.decode("latin-1").split(" ")
    if len(fields) < 2:
        return None
    return fields[1]


async def wait_for_code(redirect_uri: str, timeout: float) -> str:
    """Listen on the redirect URI's port until the provider redirects back.

    Raises:
        ListenerPortError: if the port cannot be bound
        OAuthError: if the provider reports an error or no redirect arrives in time
    """
    parts = urlsplit(redirect_uri)
    port = parts.port or 80
    host = parts.hostname or "127.0.0.1"
    expected_path = parts.path or "/"

    try:
        listener = await anyio.create_tcp_listener(local_host=host, local_port=port)
    except OSError as e:
        raise ListenerPortError(port, e.strerror) from e

    outcome = {}

    async with listener:
        logger.info(f"Waiting for OAuth redirect on {host}:{port}{expected_path}")
        try:
            with anyio.fail_after(timeout):
                async with anyio.create_task_group() as tg:

                    async def handle(stream: SocketStream) -> None:
                        async with stream:
                            target = await _read_request_target(stream)
                            if target is None:
                                return
                            status, body, code, error = classify_request(target, expected_path)
                            logger.debug(f"Loopback request {target!r} -> {status}")
                            try:
                                await stream.send(_http_response(status, body))
                            except anyio.BrokenResourceError:
                                logger.debug("Browser closed the connection before the response")
                        if code or error:
                            outcome.setdefault("code", code)
                            outcome.setdefault("error", error)
                            tg.cancel_scope.cancel()

                    await listener.serve(handle, task_group=tg)
        except TimeoutError:
            raise OAuthError(
                f"No OAuth redirect received on {redirect_uri} within {timeout:g}s"
            ) from None

    if outcome.get("error"):
        raise OAuthError(f"OAuth error: {outcome['error']}")
    return outcome["code"]
