"""Append-only turn log per room.

Stands in for the persistence layer: every turn the orchestrator relays is
recorded here in relay order. Turns are never mutated. Each room keeps its
most recent ``max_turns`` turns; older ones are evicted first.
"""

import re
from collections import deque
from typing import Any, Protocol

from shared.models import Role, Turn


DEFAULT_TITLE = "Untitled"
MAX_TITLE_LENGTH = 80
DEFAULT_MAX_TURNS = 1000


class TurnLog(Protocol):
    """Storage collaborator for relayed turns."""

    def append(self, room_id: str, turn: Turn) -> None: ...

    def turns(self, room_id: str) -> list[Turn]: ...


def title_of(turn: Turn) -> str:
    """First non-blank line of a turn, whitespace collapsed, truncated."""
    first_line = next((line for line in turn.content.splitlines() if line.strip()), "")
    return re.sub(r"\s+", " ", first_line).strip()[:MAX_TITLE_LENGTH]


class InMemoryTurnLog:
    """Process-local turn log."""

    def __init__(self, max_turns: int = DEFAULT_MAX_TURNS) -> None:
        self.max_turns = max_turns
        self._turns: dict[str, deque[Turn]] = {}
        self._titles: dict[str, str] = {}

    def append(self, room_id: str, turn: Turn) -> None:
        turns = self._turns.get(room_id)
        if turns is None:
            turns = self._turns[room_id] = deque(maxlen=self.max_turns)
        turns.append(turn)

        # Fixed by the first user turn, so eviction never changes it
        if room_id not in self._titles and turn.role == Role.USER:
            title = title_of(turn)
            if title:
                self._titles[room_id] = title

    def turns(self, room_id: str) -> list[Turn]:
        return list(self._turns.get(room_id, ()))

    def title(self, room_id: str) -> str:
        """Title of ``room_id``; ``Untitled`` until a user turn with text arrives."""
        return self._titles.get(room_id, DEFAULT_TITLE)

    def summaries(self) -> list[dict[str, Any]]:
        return [
            {"id": room_id, "title": self.title(room_id), "turn_count": len(turns)}
            for room_id, turns in self._turns.items()
        ]
