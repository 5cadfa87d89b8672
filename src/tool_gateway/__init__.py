"""Tool Gateway - on-demand access to external MCP tool servers.

Connects per request over streamable HTTP or stdio, lists capabilities or
invokes one, and always closes the connection afterwards.
"""

from tool_gateway.client import ToolGateway, ToolTransport, result_to_text
from tool_gateway.targets import (
    ToolGatewayError,
    ToolTarget,
    ToolTargetError,
    TransportKind,
    parse_target,
)

__all__ = [
    "ToolGateway",
    "ToolTransport",
    "result_to_text",
    "ToolGatewayError",
    "ToolTarget",
    "ToolTargetError",
    "TransportKind",
    "parse_target",
]
