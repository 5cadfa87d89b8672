"""Orchestrator - FastAPI Application.

The Orchestrator provides:
- Real-time WebSocket channel for rooms, turns and prompt tests
- Tool gateway HTTP routes
- Provider listing, room inspection and critic helpers
"""

import asyncio
import json
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from shared.config import Settings, get_settings
from shared.logging import bind_connection, get_logger, setup_logging, unbind_connection
from shared.models import CriticResult, ErrorEvent
from tool_gateway import ToolGateway
from orchestrator.conversation import ERROR_EVENT, ConversationOrchestrator
from orchestrator.critic import CriticService
from orchestrator.harness import PromptTestHarness
from orchestrator.llm import ProviderRegistry
from orchestrator.rooms import ClientConnection, RoomManager
from orchestrator.tool_routes import router as tool_router
from orchestrator.turn_log import InMemoryTurnLog

logger = get_logger(__name__)


JOIN_ROOM_EVENT = "join-room"
LEAVE_ROOM_EVENT = "leave-room"
SEND_MESSAGE_EVENT = "send-message"
TEST_PROMPT_EVENT = "test-prompt"


@dataclass
class Services:
    """Components shared by the HTTP and WebSocket handlers."""
    settings: Settings
    rooms: RoomManager
    providers: ProviderRegistry
    turn_log: InMemoryTurnLog
    orchestrator: ConversationOrchestrator
    harness: PromptTestHarness
    gateway: ToolGateway
    critic: CriticService
    tasks: set[asyncio.Task] = field(default_factory=set)

    def spawn(self, coro) -> asyncio.Task:
        """Run ``coro`` independently of the connection that started it."""
        task = asyncio.create_task(coro)
        self.tasks.add(task)
        task.add_done_callback(self.tasks.discard)
        return task


def build_services(
    settings: Settings,
    providers: Optional[ProviderRegistry] = None,
    gateway: Optional[ToolGateway] = None
) -> Services:
    """Wire the application's components together."""
    providers = providers or ProviderRegistry.from_settings(settings.providers)
    gateway = gateway or ToolGateway(
        client_name=settings.tool_gateway.client_name,
        client_version=settings.tool_gateway.client_version
    )
    rooms = RoomManager()
    turn_log = InMemoryTurnLog(max_turns=settings.server.turn_log_limit)

    return Services(
        settings=settings,
        rooms=rooms,
        providers=providers,
        turn_log=turn_log,
        orchestrator=ConversationOrchestrator(rooms, providers, turn_log),
        harness=PromptTestHarness(providers),
        gateway=gateway,
        critic=CriticService(providers.critic),
    )


# Request Models
class CriticCheckRequest(BaseModel):
    """Agent steps to check for contradictions."""
    steps: list[dict[str, Any]] = Field(default_factory=list)


class TitleRequest(BaseModel):
    """Goal to summarize as a title."""
    goal: str = ""


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    services: Services = app.state.services
    settings = services.settings

    setup_logging(settings.log_level, json_output=settings.is_production)
    logger.info(
        "Starting Orchestrator",
        environment=settings.environment,
        providers=services.providers.describe()
    )

    yield

    tasks = list(services.tasks)
    logger.info("Shutting down Orchestrator", in_flight=len(tasks))
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)


async def _write_events(websocket: WebSocket, connection: ClientConnection) -> None:
    """Drain a connection's outbox onto its socket; drop the socket once the client is closed."""
    try:
        while not (connection.closed and connection.outbox.empty()):
            message = await connection.outbox.get()
            await websocket.send_json(message)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
    except (WebSocketDisconnect, RuntimeError, OSError) as e:
        logger.debug("Socket writer stopped", connection_id=connection.id, error=str(e))
        connection.close()


def _room_id(data: Any) -> Optional[str]:
    if isinstance(data, dict):
        data = data.get("roomId")
    return data if isinstance(data, str) and data else None


def handle_frame(services: Services, connection: ClientConnection, frame: Any) -> None:
    """Route one inbound frame to its handler."""
    if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
        connection.deliver(ERROR_EVENT, ErrorEvent(message="Malformed frame").to_wire())
        return

    event = frame["event"]
    data = frame.get("data")

    if event in (JOIN_ROOM_EVENT, LEAVE_ROOM_EVENT):
        room_id = _room_id(data)
        if room_id is None:
            connection.deliver(ERROR_EVENT, ErrorEvent(message="roomId is required").to_wire())
        elif event == JOIN_ROOM_EVENT:
            services.rooms.join(connection, room_id)
        else:
            services.rooms.leave(connection, room_id)
    elif event == SEND_MESSAGE_EVENT:
        services.spawn(services.orchestrator.handle_send_message(connection, data))
    elif event == TEST_PROMPT_EVENT:
        services.spawn(services.harness.handle_test_prompt(connection, data))
    else:
        connection.deliver(ERROR_EVENT, ErrorEvent(message=f"Unknown event: {event}").to_wire())


def create_app(
    settings: Optional[Settings] = None,
    services: Optional[Services] = None
) -> FastAPI:
    """Create the FastAPI application."""
    settings = settings or (services.settings if services else get_settings())
    services = services or build_services(settings)

    app = FastAPI(
        title="Chat Orchestrator",
        description="Room-based chat orchestration with pluggable LLM providers and MCP tools",
        version="0.1.0",
        lifespan=lifespan
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.server.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(tool_router)

    @app.get("/health", tags=["System"])
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", **services.rooms.get_stats()}

    @app.get("/providers", tags=["Providers"])
    async def list_providers():
        """Selectable provider tags with their backend and model."""
        return {"providers": services.providers.describe()}

    @app.get("/rooms", tags=["Rooms"])
    async def list_rooms():
        """Rooms with recorded turns."""
        return {"rooms": services.turn_log.summaries()}

    @app.get("/rooms/{room_id}", tags=["Rooms"])
    async def get_room(room_id: str):
        """Room title and turn log."""
        turns = services.turn_log.turns(room_id)
        if not turns:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Room not found"
            )
        return {
            "id": room_id,
            "title": services.turn_log.title(room_id),
            "turns": [t.to_wire() for t in turns],
        }

    @app.post("/critic/check", response_model=CriticResult, tags=["Critic"])
    async def critic_check(request: CriticCheckRequest):
        """Check agent steps for contradictions."""
        try:
            return await services.critic.check_steps(request.steps)
        except Exception as e:
            logger.error("Critic check failed", error=str(e), exc_info=True)
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail="Critic check failed"
            )

    @app.post("/critic/title", tags=["Critic"])
    async def critic_title(request: TitleRequest):
        """Generate a short title for a goal."""
        return {"title": await services.critic.generate_title(request.goal)}

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        """Real-time channel; frames are ``{"event": ..., "data": ...}``."""
        await websocket.accept()
        connection = ClientConnection(max_pending=services.settings.server.outbox_limit)
        bind_connection(connection.id)
        writer = asyncio.create_task(_write_events(websocket, connection))
        logger.info("Client connected", connection_id=connection.id)

        try:
            while True:
                text = await websocket.receive_text()
                try:
                    frame = json.loads(text)
                except ValueError:
                    connection.deliver(ERROR_EVENT, ErrorEvent(message="Malformed frame").to_wire())
                    continue
                handle_frame(services, connection, frame)
        except WebSocketDisconnect:
            pass
        except RuntimeError:
            # Raised by receive once the writer has dropped an overflowed client
            if not connection.overflowed:
                raise
        finally:
            connection.close()
            services.rooms.leave_all(connection)
            writer.cancel()
            logger.info("Client disconnected", connection_id=connection.id, overflowed=connection.overflowed)
            unbind_connection()

    return app


def main():
    """Run the Orchestrator server."""
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "orchestrator.main:create_app",
        factory=True,
        host=settings.server.host,
        port=settings.server.port,
        reload=settings.environment == "development"
    )


if __name__ == "__main__":
    main()
