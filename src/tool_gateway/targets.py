"""Tool server targets.

A target names an external tool server either by URL (streamable HTTP
transport) or by a local command and its arguments (stdio transport).
Targets are validated before any connection is attempted.
"""

from enum import Enum
from typing import Any, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict


class ToolGatewayError(Exception):
    """Base exception for tool gateway errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ToolTargetError(ToolGatewayError):
    """The request was rejected before connecting."""
    pass


class TransportKind(str, Enum):
    """How the gateway reaches a tool server."""
    HTTP = "http"
    STDIO = "stdio"


class ToolTarget(BaseModel):
    """A validated tool server address."""
    model_config = ConfigDict(frozen=True)

    kind: TransportKind
    url: Optional[str] = None
    command: Optional[str] = None
    args: tuple[str, ...] = ()

    @property
    def label(self) -> str:
        """Human-readable form for logs."""
        if self.kind == TransportKind.HTTP:
            return self.url or ""
        return " ".join([self.command or "", *self.args]).strip()


def parse_url_target(url: str) -> ToolTarget:
    """
    Validate an HTTP(S) tool server URL.

    Raises:
        ToolTargetError: If the URL is malformed or not http/https
    """
    url = url.strip()
    parsed = urlparse(url)

    if parsed.scheme and parsed.scheme not in ("http", "https"):
        raise ToolTargetError("URL must use http or https")
    if not parsed.scheme or not parsed.netloc:
        raise ToolTargetError("Invalid URL format")

    return ToolTarget(kind=TransportKind.HTTP, url=url)


def parse_command_target(command: str, args: Optional[list[Any]] = None) -> ToolTarget:
    """
    Validate a local tool server command. Non-string arguments are dropped.

    Raises:
        ToolTargetError: If the command is blank
    """
    command = command.strip()
    if not command:
        raise ToolTargetError("Command is required")

    return ToolTarget(
        kind=TransportKind.STDIO,
        command=command,
        args=tuple(a for a in args or [] if isinstance(a, str)),
    )


def parse_target(data: Any) -> ToolTarget:
    """
    Build a target from a URL string or a ``{url}`` / ``{command, args}`` mapping.

    Raises:
        ToolTargetError: If no usable target is described
    """
    if isinstance(data, ToolTarget):
        return data
    if isinstance(data, str):
        return parse_url_target(data)

    if isinstance(data, dict):
        url = data.get("url")
        if isinstance(url, str) and url:
            return parse_url_target(url)

        command = data.get("command")
        args = data.get("args")
        if isinstance(command, str) and (args is None or isinstance(args, list)):
            return parse_command_target(command, args)

    raise ToolTargetError("Provide either { url: string } or { command: string, args: string[] }")
