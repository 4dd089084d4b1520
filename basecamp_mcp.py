#!/usr/bin/env python3
"""
MCP server exposing Basecamp to LLM agents over stdio.

Besides three fixed tools (authenticate, api_request, sdk_list_actions)
every registry action is published as a tool named by its safe name,
e.g. `card_tables.get_enriched` becomes `sdk_card_tables_get_enriched`.

stdout belongs to the protocol: logs go to a file and stderr, and the
OAuth flow never falls back to reading stdin.
"""

import copy
import json
import logging
from typing import Any, Dict, List, Optional, Union

import anyio
import httpx
from mcp.server.lowlevel import Server
from mcp.server.stdio import stdio_server
from mcp.types import ImageContent, TextContent, Tool
from pydantic import BaseModel, Field

import action_registry
from auth_manager import OAuthFlow, open_in_browser
from basecamp_client import BasecampClient
from basecamp_config import AuthConfig, configure_logging, load_config
from basecamp_errors import BasecampError, UnknownActionError

logger = logging.getLogger(__name__)

SERVER_NAME = "basecamp-to-llm"

Content = Union[TextContent, ImageContent]


class AuthenticateArgs(BaseModel):
    openBrowser: bool = Field(True, description="Whether to open browser for OAuth (default: true)")


class ApiRequestArgs(BaseModel):
    method: str = Field(description="HTTP method: GET, POST, PUT, PATCH, DELETE, HEAD")
    path: str = Field(description="API path like /projects.json or absolute URL like "
                                  "https://3.basecampapi.com/{account}/projects.json")
    query: Optional[Dict[str, Any]] = Field(None, description="Optional query parameters as key/value map")
    body: Any = Field(None, description="Optional JSON body for write methods")
    absolute: bool = Field(False, description="Treat path as absolute URL (default: false)")


class ListActionsArgs(BaseModel):
    pass


STATIC_TOOLS = {
    "authenticate": ("Authenticate with Basecamp (opens browser for OAuth)", AuthenticateArgs),
    "api_request": ("Generic Basecamp API request (exposes full API surface). "
                    "Path is relative to account unless absolute=true.", ApiRequestArgs),
    "sdk_list_actions": ("List the SDK actions exposed as sdk_* tools, with their input schemas",
                         ListActionsArgs),
}


def _text(value: Any) -> TextContent:
    if isinstance(value, str):
        return TextContent(type="text", text=value)
    return TextContent(type="text", text=json.dumps(value, indent=2))


def _is_image(mime_type: Any) -> bool:
    return isinstance(mime_type, str) and mime_type.startswith("image/")


def render_result(result: Any) -> List[Content]:
    """
    Turn an action result into MCP content blocks.

    Downloaded images become image blocks. An enriched card with embedded
    images becomes its JSON (payloads stripped) followed by one image block
    per payload.
    """
    if isinstance(result, dict):
        if isinstance(result.get("base64"), str):
            if _is_image(result.get("mimeType")):
                return [ImageContent(type="image", data=result["base64"], mimeType=result["mimeType"])]
            metadata = {key: value for key, value in result.items() if key != "base64"}
            return [_text(metadata)]

        images = result.get("images")
        if "card" in result and isinstance(images, list) and any(img.get("base64") for img in images):
            stripped = copy.deepcopy(result)
            blocks: List[Content] = []
            for image in stripped["images"]:
                payload = image.pop("base64", None)
                if payload:
                    blocks.append(ImageContent(type="image", data=payload, mimeType=image["mimeType"]))
            return [_text(stripped)] + blocks

    return [_text(result)]


class BasecampMCPServer:
    """
    Tool-call dispatcher over the action registry.

    Args:
        config: shared AuthConfig
        transport: httpx transport override, used by tests
        opener: browser launcher handed to the OAuth flow
    """

    def __init__(self, config: AuthConfig, transport: Optional[httpx.AsyncBaseTransport] = None,
                 opener=open_in_browser):
        self.config = config
        self.transport = transport
        self.opener = opener
        self.safe_names: Optional[action_registry.SafeNames] = None
        self.app = Server(SERVER_NAME)
        self.app.list_tools()(self.list_tools)
        self.app.call_tool()(self.call_tool)

    @property
    def curated(self) -> bool:
        return self.config.action_set == "curated"

    def auth(self) -> OAuthFlow:
        return OAuthFlow(self.config, interactive=False, opener=self.opener, transport=self.transport)

    def client(self) -> BasecampClient:
        return BasecampClient(self.config, auth=self.auth(), transport=self.transport)

    def _refresh_safe_names(self) -> List[action_registry.ActionDef]:
        actions = action_registry.get_actions(self.curated)
        self.safe_names = action_registry.build_safe_names(action.name for action in actions)
        return actions

    async def list_tools(self) -> List[Tool]:
        tools = [
            Tool(name=name, description=description, inputSchema=model.model_json_schema())
            for name, (description, model) in STATIC_TOOLS.items()
        ]
        for action in self._refresh_safe_names():
            tools.append(Tool(
                name=self.safe_names.safe(action.name),
                description=action.description,
                inputSchema=action.input_schema,
            ))
        return tools

    async def call_tool(self, name: str, arguments: Optional[Dict[str, Any]]) -> List[Content]:
        try:
            return await self._dispatch(name, arguments or {})
        except (BasecampError, httpx.HTTPError) as e:
            logger.error(f"Tool {name} failed: {e}")
            return [TextContent(type="text", text=f"Error: {e}")]

    async def _dispatch(self, name: str, arguments: Dict[str, Any]) -> List[Content]:
        if name == "authenticate":
            args = action_registry.validate_args(name, AuthenticateArgs, arguments)
            await self.auth().authenticate(args.openBrowser)
            return [_text("✅ Successfully authenticated with Basecamp!\n\nYou can now use other Basecamp tools.")]

        if name == "api_request":
            args = action_registry.validate_args(name, ApiRequestArgs, arguments)
            result = await self.client().request(
                args.method, args.path, query=args.query, body=args.body, absolute=args.absolute
            )
            return [_text(result)]

        if name == "sdk_list_actions":
            return [_text(action_registry.list_actions(self.curated))]

        if self.safe_names is None:
            self._refresh_safe_names()
        original = self.safe_names.original(name)
        if original is None:
            raise UnknownActionError(name)
        logger.info(f"Invoking {original}")
        result = await action_registry.invoke(self.client(), original, arguments)
        return render_result(result)

    async def auto_authenticate(self) -> None:
        """Silent auth first; if no token can be had that way, run the browser flow."""
        auth = self.auth()
        try:
            if await auth.try_auto_auth():
                logger.info("Authenticated with cached/refreshed token")
                return
            logger.info("No valid token found. Opening browser for authentication...")
            await auth.authenticate(True)
            logger.info("Authentication successful")
        except (BasecampError, httpx.HTTPError) as e:
            logger.error(f"Auto-authentication failed: {e}")
            logger.info("Tools will prompt for authentication when called.")

    async def run(self) -> None:
        async with stdio_server() as (read_stream, write_stream):
            logger.info("Basecamp MCP server started")
            async with anyio.create_task_group() as tg:
                tg.start_soon(self.auto_authenticate)
                await self.app.run(read_stream, write_stream, self.app.create_initialization_options())
                tg.cancel_scope.cancel()


def main() -> None:
    configure_logging("basecamp_mcp")
    config = load_config()
    anyio.run(BasecampMCPServer(config).run)


if __name__ == "__main__":
    main()
