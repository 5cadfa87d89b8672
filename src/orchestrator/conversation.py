"""Conversation Orchestrator.

Drives one incoming turn through its lifecycle:

    RECEIVED -> ECHOED -> COMPOSED -> DISPATCHED -> COMPLETED | FAILED

The raw turn is echoed to the room before any model latency. Only user
turns go on to the provider. Turns in the same room are not serialized:
concurrent dispatches complete, and are broadcast, in completion order.

When the selected backend streams, its deltas are relayed to the room live
as ``ai-stream-start`` / ``ai-stream-chunk`` / ``ai-stream-end`` events
ahead of the final ``receive-message`` reply.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import ValidationError

from shared.logging import get_logger
from shared.models import (
    ErrorEvent,
    Role,
    SendMessagePayload,
    StreamChunk,
    StreamEnd,
    StreamStart,
    Turn,
    new_turn_id,
)
from orchestrator.composer import compose
from orchestrator.llm import ProviderRegistry
from orchestrator.rooms import ClientConnection, RoomManager
from orchestrator.turn_log import InMemoryTurnLog, TurnLog

logger = get_logger(__name__)


ERROR_EVENT = "error"
STREAM_START_EVENT = "ai-stream-start"
STREAM_CHUNK_EVENT = "ai-stream-chunk"
STREAM_END_EVENT = "ai-stream-end"
FAILED_TO_PROCESS = "Failed to process message"


class TurnState(str, Enum):
    """Lifecycle states of one incoming turn."""
    REJECTED = "rejected"
    RECEIVED = "received"
    ECHOED = "echoed"
    COMPOSED = "composed"
    DISPATCHED = "dispatched"
    COMPLETED = "completed"
    FAILED = "failed"


def validation_details(error: ValidationError) -> list[dict[str, Any]]:
    """JSON-safe summary of a pydantic validation error."""
    return [
        {"loc": [str(p) for p in e["loc"]], "msg": e["msg"]}
        for e in error.errors(include_url=False)
    ]


class ReplyStream:
    """
    Live room relay of one assistant reply.

    The start event goes out with the first delta, so a backend that does
    not stream produces no stream events at all.
    """

    def __init__(self, rooms: RoomManager, room_id: str) -> None:
        self.rooms = rooms
        self.room_id = room_id
        self.id = new_turn_id()
        self.started = False

    def push(self, delta: str) -> None:
        if not delta:
            return
        if not self.started:
            self.started = True
            self.rooms.broadcast(self.room_id, STREAM_START_EVENT, StreamStart(id=self.id).to_wire())
        self.rooms.broadcast(
            self.room_id, STREAM_CHUNK_EVENT, StreamChunk(id=self.id, delta=delta).to_wire()
        )

    def finish(self, content: str) -> None:
        if self.started:
            self.rooms.broadcast(
                self.room_id, STREAM_END_EVENT, StreamEnd(id=self.id, content=content).to_wire()
            )

    def fail(self, message: str) -> None:
        if self.started:
            self.rooms.broadcast(
                self.room_id, STREAM_END_EVENT, StreamEnd(id=self.id, error=message).to_wire()
            )


class ConversationOrchestrator:
    """
    Orchestrates rooms, message composition and provider dispatch.

    Every user turn that passes validation ends in exactly one assistant
    turn or exactly one room-scoped ``error`` event. Failures are never
    retried and never remove the echoed user turn.
    """

    def __init__(
        self,
        rooms: RoomManager,
        providers: ProviderRegistry,
        turn_log: Optional[TurnLog] = None,
        log: Any = None
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            rooms: Room manager used for fan-out
            providers: Provider registry used for dispatch
            turn_log: Storage for relayed turns
            log: Structured logger; defaults to the module logger
        """
        self.rooms = rooms
        self.providers = providers
        self.turn_log = turn_log if turn_log is not None else InMemoryTurnLog()
        self.log = log or logger

    async def handle_send_message(
        self,
        connection: ClientConnection,
        data: Any
    ) -> TurnState:
        """
        Entry point for the ``send-message`` event.

        Invalid payloads are reported to the sending connection only.
        """
        try:
            payload = SendMessagePayload.model_validate(data)
        except ValidationError as e:
            self.log.info(
                "Rejected send-message payload",
                connection_id=connection.id,
                errors=e.error_count()
            )
            connection.deliver(
                ERROR_EVENT,
                ErrorEvent(message="Invalid payload", details=validation_details(e)).to_wire()
            )
            return TurnState.REJECTED

        return await self.process(payload)

    async def process(self, payload: SendMessagePayload) -> TurnState:
        """Run a validated turn through the state machine and return its final state."""
        room_id = payload.room_id
        log = self.log.bind(room_id=room_id, role=payload.role.value)
        log.debug("Turn received", state=TurnState.RECEIVED.value)

        self.relay(room_id, Turn(
            content=payload.content,
            role=payload.role,
            audio_payload=payload.audio_payload,
        ))

        if payload.role != Role.USER:
            return TurnState.ECHOED

        state = TurnState.ECHOED
        stream = ReplyStream(self.rooms, room_id)
        try:
            messages = compose(payload.content, payload.skills_context, payload.history)
            state = TurnState.COMPOSED

            state = TurnState.DISPATCHED
            response = await self.providers.invoke(
                payload.provider, messages, on_delta=stream.push
            )
            reply = Turn(id=stream.id, content=response.text, role=Role.ASSISTANT)
        except Exception as e:
            log.error(
                "Turn failed",
                state=state.value,
                provider=payload.provider.value,
                error=str(e),
                exc_info=True
            )
            stream.fail(FAILED_TO_PROCESS)
            self.rooms.broadcast(room_id, ERROR_EVENT, ErrorEvent(message=FAILED_TO_PROCESS).to_wire())
            return TurnState.FAILED

        stream.finish(reply.content)
        self.relay(room_id, reply)
        log.debug("Turn completed", reply_id=reply.id)
        return TurnState.COMPLETED

    def relay(self, room_id: str, turn: Turn) -> Turn:
        """Record ``turn`` and broadcast it to the room without invoking a provider."""
        self.turn_log.append(room_id, turn)
        delivered = self.rooms.broadcast_turn(room_id, turn)
        if not delivered:
            self.log.debug("Turn relayed to empty room", room_id=room_id, turn_id=turn.id)
        return turn

    def relay_system_turn(self, room_id: str, content: str) -> Turn:
        """Inject system-authored content, e.g. a tool result, into a room."""
        return self.relay(room_id, Turn(content=content, role=Role.SYSTEM))
