"""Shared configuration, logging and data models for the chat service."""

from shared.models import (
    ChatMessage,
    ProviderResponse,
    ProviderSelection,
    Role,
    Turn,
)
from shared.config import Settings, get_settings
from shared.logging import get_logger, setup_logging

__all__ = [
    "ChatMessage",
    "ProviderResponse",
    "ProviderSelection",
    "Role",
    "Turn",
    "Settings",
    "get_settings",
    "get_logger",
    "setup_logging",
]
