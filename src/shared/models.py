"""Core data models for the chat orchestration service.

This module defines the shared data structures used across the service:
conversation turns, real-time event payloads, provider messages and
tool gateway descriptors.
"""

import itertools
import json
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


_turn_counter = itertools.count()


def new_turn_id() -> str:
    """Return a unique, time-ordered turn identifier."""
    return f"{time.time_ns()}-{next(_turn_counter)}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    """Author of a conversational turn."""
    USER = "user"
    SYSTEM = "system"
    ASSISTANT = "assistant"
    TOOL_RESULT = "tool-result"
    FUNCTION_RESULT = "function-result"
    GENERIC_CHAT = "generic-chat"

    @classmethod
    def parse(cls, value: Any) -> "Role":
        """Parse a role tag; unrecognized values fall back to USER."""
        if isinstance(value, Role):
            return value
        try:
            return cls(value)
        except ValueError:
            return cls.USER


class ProviderSelection(str, Enum):
    """Selectable provider tags. The critic backend is deliberately absent."""
    PRIMARY = "primary"
    SECONDARY = "secondary"
    TERTIARY = "tertiary"

    @classmethod
    def parse(cls, value: Any) -> "ProviderSelection":
        """Parse a provider tag; unknown or missing values fall back to PRIMARY."""
        if isinstance(value, ProviderSelection):
            return value
        try:
            return cls(value)
        except ValueError:
            return cls.PRIMARY


class WireModel(BaseModel):
    """Base for models exchanged with clients using camelCase field names."""
    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Turn(WireModel):
    """
    One role-tagged message in a room.

    Turns are immutable once created and are only ever appended to a room log.
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str = Field(default_factory=new_turn_id)
    content: str
    role: Role
    timestamp: datetime = Field(default_factory=utcnow)
    audio_payload: Optional[str] = Field(default=None, alias="audioPayload")
    name: Optional[str] = None
    sub_role: Optional[str] = Field(default=None, alias="subRole")


class ChatMessage(BaseModel):
    """A single message handed to a provider backend."""
    model_config = ConfigDict(frozen=True)

    role: Role
    content: str
    name: Optional[str] = None
    sub_role: Optional[str] = None


class ProviderResponse(BaseModel):
    """Final, aggregated response from a provider backend."""
    content: Union[str, list[Any], dict[str, Any], None] = None
    finish_reason: str = "stop"
    usage: dict[str, int] = Field(default_factory=dict)

    @property
    def text(self) -> str:
        """Content coerced to text; structured payloads are serialized as JSON."""
        return content_to_text(self.content)


def content_to_text(content: Any) -> str:
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    return json.dumps(content, default=str)


class HistoryEntry(BaseModel):
    """A prior turn supplied by the client alongside a new message."""
    role: str
    content: str


class SendMessagePayload(WireModel):
    """Payload of the ``send-message`` event."""
    room_id: str = Field(..., min_length=1, alias="roomId")
    content: str = Field(..., min_length=1)
    role: Role = Role.USER
    skills_context: Optional[str] = Field(default=None, alias="skillsContext")
    audio_payload: Optional[str] = Field(default=None, alias="audioPayload")
    provider: ProviderSelection = ProviderSelection.PRIMARY
    history: Optional[list[HistoryEntry]] = None

    @field_validator("role", mode="before")
    @classmethod
    def _parse_role(cls, value: Any) -> Role:
        return Role.parse(value)

    @field_validator("provider", mode="before")
    @classmethod
    def _parse_provider(cls, value: Any) -> ProviderSelection:
        return ProviderSelection.parse(value)


class HarnessMessage(WireModel):
    """One role-tagged message of a ``test-prompt`` request."""
    role: str = "user"
    content: str
    name: Optional[str] = None
    sub_role: Optional[str] = Field(default=None, alias="subRole")


class HarnessPayload(WireModel):
    """Payload of the ``test-prompt`` event."""
    messages: Optional[list[HarnessMessage]] = None
    prompt: Optional[str] = None
    role: Optional[str] = None
    provider: ProviderSelection = ProviderSelection.PRIMARY

    @field_validator("provider", mode="before")
    @classmethod
    def _parse_provider(cls, value: Any) -> ProviderSelection:
        return ProviderSelection.parse(value)


class ErrorEvent(WireModel):
    """Payload of ``error`` and ``test-prompt-error`` events."""
    message: str
    details: Optional[Any] = None


class StreamStart(WireModel):
    """Opens the live relay of an assistant reply."""
    id: str
    role: Role = Role.ASSISTANT
    timestamp: datetime = Field(default_factory=utcnow)


class StreamChunk(WireModel):
    id: str
    delta: str


class StreamEnd(WireModel):
    """Closes a live relay with the full content, or with an error."""
    id: str
    content: Optional[str] = None
    error: Optional[str] = None


class Capability(WireModel):
    """A named operation advertised by an external tool server."""
    name: str
    description: Optional[str] = None
    input_schema: Optional[dict[str, Any]] = Field(default=None, alias="inputSchema")


class ServerInfo(WireModel):
    """Identity reported by a tool server during the handshake."""
    name: str
    version: Optional[str] = None


class CapabilityListing(WireModel):
    """Result of listing a tool server's capabilities."""
    capabilities: list[Capability] = Field(default_factory=list)
    server_info: Optional[ServerInfo] = Field(default=None, alias="serverInfo")


class CriticResult(BaseModel):
    """
    Contradictions found between agent steps by the critic backend.

    The overall result lists one attribution per checked step in ``steps``;
    a step carries the findings only when a contradiction names it.
    """
    contradictions: list[str] = Field(default_factory=list)
    severity: Literal["low", "medium", "high"] = "low"
    step_index: Optional[int] = None
    steps: list["CriticResult"] = Field(default_factory=list)
