"""Orchestrator.

Manages rooms, composes provider input, dispatches to the selected LLM
backend and relays results to every client in a room.
"""

from orchestrator.llm import LLMBackend, ProviderRegistry, create_backend
from orchestrator.rooms import ClientConnection, RoomManager
from orchestrator.conversation import ConversationOrchestrator, TurnState
from orchestrator.harness import PromptTestHarness

__all__ = [
    "LLMBackend",
    "ProviderRegistry",
    "create_backend",
    "ClientConnection",
    "RoomManager",
    "ConversationOrchestrator",
    "TurnState",
    "PromptTestHarness",
]
