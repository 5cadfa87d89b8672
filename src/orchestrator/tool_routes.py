"""HTTP routes for the tool gateway."""

from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import Field

from shared.logging import get_logger
from shared.models import WireModel
from tool_gateway import ToolGatewayError, ToolTargetError, result_to_text

logger = get_logger(__name__)

router = APIRouter(prefix="/tool-gateway", tags=["Tools"])


class ConnectRequest(WireModel):
    """Tool server target: ``url`` or ``command`` + ``args``."""
    url: Optional[Any] = None
    command: Optional[Any] = None
    args: Optional[Any] = None

    def target(self) -> dict[str, Any]:
        return self.model_dump(include={"url", "command", "args"}, exclude_none=True)


class CallRequest(ConnectRequest):
    """Capability invocation, optionally relayed into a room."""
    capability_name: Optional[Any] = Field(default=None, alias="capabilityName")
    capability_args: Optional[Any] = Field(default=None, alias="capabilityArgs")
    room_id: Optional[str] = Field(default=None, alias="roomId")


def get_services(request: Request):
    """Dependency returning the application's service container."""
    return request.app.state.services


@router.post("/connect")
async def connect(body: ConnectRequest, services=Depends(get_services)):
    """List the capabilities of a tool server."""
    try:
        listing = await services.gateway.list_capabilities(body.target())
    except ToolTargetError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    except ToolGatewayError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=e.message)

    return listing.to_wire()


@router.post("/call")
async def call(body: CallRequest, services=Depends(get_services)):
    """
    Invoke a capability on a tool server.

    When ``roomId`` is given the result is also relayed into that room as
    a system turn.
    """
    try:
        result = await services.gateway.invoke_capability(
            body.target(),
            body.capability_name,
            body.capability_args
        )
    except ToolTargetError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    except ToolGatewayError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=e.message)

    if body.room_id:
        turn = services.orchestrator.relay_system_turn(body.room_id, result_to_text(result))
        logger.info("Tool result relayed", room_id=body.room_id, turn_id=turn.id)

    return result
