"""Tool Gateway client for external MCP tool servers.

Every operation opens a fresh transport, performs one list or call, and
closes the transport before returning, whether the operation succeeded or
not. No connection outlives the request that opened it.

Transports are async context managers entered and exited in the same task,
so the task groups inside the MCP client transports stay correctly nested.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client
from mcp.client.streamable_http import streamable_http_client
from mcp.types import Implementation

from shared.logging import get_logger
from shared.models import Capability, CapabilityListing, ServerInfo
from tool_gateway.targets import (
    ToolGatewayError,
    ToolTarget,
    ToolTargetError,
    TransportKind,
    parse_target,
)

logger = get_logger(__name__)


class ToolTransport(ABC):
    """A single-use connection to a tool server."""

    server_info: Optional[ServerInfo] = None

    @abstractmethod
    def open(self) -> AbstractAsyncContextManager[Any]:
        """
        Async context manager yielding an initialized session.

        Leaving the context releases the connection, including after a
        failed or partial connect.
        """
        pass


class McpTransport(ToolTransport):
    """MCP client session over streamable HTTP or stdio."""

    def __init__(self, target: ToolTarget, client_info: Implementation) -> None:
        self.target = target
        self.client_info = client_info
        self.server_info = None

    @asynccontextmanager
    async def _streams(self) -> AsyncIterator[tuple[Any, Any]]:
        if self.target.kind == TransportKind.HTTP:
            async with streamable_http_client(self.target.url) as streams:
                yield streams[0], streams[1]
        else:
            params = StdioServerParameters(
                command=self.target.command,
                args=list(self.target.args),
            )
            async with stdio_client(params) as (read, write):
                yield read, write

    @asynccontextmanager
    async def open(self) -> AsyncIterator[ClientSession]:
        async with self._streams() as (read, write):
            async with ClientSession(read, write, client_info=self.client_info) as session:
                initialized = await session.initialize()

                server = initialized.serverInfo
                if server is not None:
                    self.server_info = ServerInfo(name=server.name, version=server.version)
                yield session


TransportFactory = Callable[[ToolTarget], ToolTransport]


def _jsonable(result: Any) -> Any:
    if hasattr(result, "model_dump"):
        return result.model_dump(mode="json", by_alias=True, exclude_none=True)
    return result


def unwrap_error(error: BaseException) -> BaseException:
    """
    The underlying failure of a transport error.

    Task groups inside the MCP transports raise exception groups whose
    other members are cancellations of sibling tasks. The first member that
    is not a cancellation is the real cause.
    """
    while isinstance(error, BaseExceptionGroup):
        causes = [
            e for e in error.exceptions
            if not isinstance(e, asyncio.CancelledError)
        ]
        error = (causes or list(error.exceptions))[0]
    return error


def result_to_text(result: Any) -> str:
    """
    Flatten a capability result to text for injection into a room.

    Text content items are joined by newlines; other items and results
    without content are serialized as JSON.
    """
    result = _jsonable(result)
    if not isinstance(result, dict):
        return result if isinstance(result, str) else json.dumps(result, default=str)

    parts = []
    for item in result.get("content") or []:
        if isinstance(item, dict) and item.get("type") == "text":
            parts.append(str(item.get("text", "")))
        else:
            parts.append(json.dumps(item, default=str))

    if parts:
        return "\n".join(parts)
    return json.dumps(result.get("structuredContent", result), default=str)


_UNSET = object()


class ToolGateway:
    """
    Connect-per-call access to external tool servers.

    Provides methods for:
    - Listing a server's capabilities
    - Invoking one named capability

    Connect, listing and invocation failures are logged in detail and
    reported as a single ``ToolGatewayError``.
    """

    def __init__(
        self,
        transport_factory: Optional[TransportFactory] = None,
        client_name: str = "chat-orchestrator-tool-gateway",
        client_version: str = "1.0.0",
        log: Any = None
    ) -> None:
        """
        Initialize the gateway.

        Args:
            transport_factory: Builds a transport for a target; defaults to MCP
            client_name: Client name sent in the MCP handshake
            client_version: Client version sent in the MCP handshake
            log: Structured logger; defaults to the module logger
        """
        client_info = Implementation(name=client_name, version=client_version)
        self._transport_factory = transport_factory or (
            lambda target: McpTransport(target, client_info)
        )
        self.log = log or logger

    async def _run(
        self,
        target: ToolTarget,
        operation: Callable[[Any, ToolTransport], Awaitable[Any]],
        failure: str,
        **context: Any
    ) -> Any:
        """
        Open a transport, run ``operation`` on its session and close it.

        A teardown error after the operation produced its result is logged
        and the result is still returned.

        Raises:
            ToolGatewayError: If connecting or the operation fails
        """
        transport = self._transport_factory(target)
        result: Any = _UNSET

        try:
            async with transport.open() as session:
                result = await operation(session, transport)
        except BaseException as e:
            cause = unwrap_error(e)
            if not isinstance(cause, Exception):
                raise

            if result is not _UNSET:
                self.log.warning("Tool transport close failed", target=target.label, error=str(cause))
                return result

            self.log.error(
                failure,
                transport=target.kind.value,
                target=target.label,
                error=str(cause),
                exc_info=cause,
                **context
            )
            raise ToolGatewayError(str(cause) or failure) from cause

        return result

    async def list_capabilities(self, target: Any) -> CapabilityListing:
        """
        List the capabilities advertised by a tool server.

        Args:
            target: URL string, ``{url}`` or ``{command, args}``

        Returns:
            Capabilities and, when reported, server identity

        Raises:
            ToolTargetError: If the target is malformed (nothing is opened)
            ToolGatewayError: If connecting or listing fails
        """
        target = parse_target(target)

        async def list_tools(session: Any, transport: ToolTransport) -> CapabilityListing:
            result = await session.list_tools()
            return CapabilityListing(
                capabilities=[
                    Capability(
                        name=tool.name,
                        description=tool.description,
                        input_schema=tool.inputSchema,
                    )
                    for tool in result.tools or []
                ],
                server_info=transport.server_info,
            )

        listing = await self._run(target, list_tools, "Tool server listing failed")

        self.log.info(
            "Tool server listed",
            target=target.label,
            capability_count=len(listing.capabilities)
        )
        return listing

    async def invoke_capability(
        self,
        target: Any,
        capability_name: Any,
        capability_args: Optional[dict[str, Any]] = None
    ) -> Any:
        """
        Invoke a named capability on a tool server.

        Args:
            target: URL string, ``{url}`` or ``{command, args}``
            capability_name: Name of the capability to call
            capability_args: Arguments for the capability

        Returns:
            The server's result, as JSON-compatible data

        Raises:
            ToolTargetError: If the name, arguments or target are invalid
                (nothing is opened)
            ToolGatewayError: If connecting or the call fails, including a
                result the server flags with ``isError``
        """
        if not isinstance(capability_name, str) or not capability_name.strip():
            raise ToolTargetError("capabilityName is required")
        if capability_args is not None and not isinstance(capability_args, dict):
            raise ToolTargetError("capabilityArgs must be an object")

        target = parse_target(target)

        async def call_tool(session: Any, transport: ToolTransport) -> Any:
            return await session.call_tool(capability_name, capability_args or {})

        result = _jsonable(await self._run(
            target, call_tool, "Tool call failed", capability=capability_name
        ))

        if isinstance(result, dict) and result.get("isError"):
            message = result_to_text(result) or "Tool call failed"
            self.log.error(
                "Tool call returned an error",
                target=target.label,
                capability=capability_name,
                error=message
            )
            raise ToolGatewayError(message)

        self.log.info("Tool called", target=target.label, capability=capability_name)
        return result
