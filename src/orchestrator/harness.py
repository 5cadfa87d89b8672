"""Test-harness channel.

A session-less path for dry-running a prompt or message sequence against a
provider. Nothing is broadcast, nothing is recorded; the single result or
error goes back to the requesting connection only.
"""

from typing import Any, Optional

from pydantic import ValidationError

from shared.logging import get_logger
from shared.models import ChatMessage, ErrorEvent, HarnessPayload
from orchestrator.composer import to_chat_message
from orchestrator.conversation import validation_details
from orchestrator.llm import ProviderRegistry
from orchestrator.rooms import ClientConnection

logger = get_logger(__name__)


RESULT_EVENT = "test-prompt-result"
ERROR_EVENT = "test-prompt-error"
MISSING_INPUT = "Invalid payload: provide messages[] or prompt+role"


class HarnessError(Exception):
    """A test-prompt request that cannot be dispatched."""

    def __init__(self, message: str, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


def build_messages(payload: HarnessPayload) -> list[ChatMessage]:
    """
    Build the provider input for a test-prompt request.

    An explicit non-empty ``messages`` list wins; otherwise ``prompt`` and
    ``role`` must both be present.

    Raises:
        HarnessError: If neither form is satisfiable
    """
    if payload.messages:
        return [
            to_chat_message(m.role, m.content, name=m.name, sub_role=m.sub_role)
            for m in payload.messages
        ]
    if isinstance(payload.prompt, str) and payload.role:
        return [to_chat_message(payload.role, payload.prompt)]
    raise HarnessError(MISSING_INPUT)


class PromptTestHarness:
    """Single-shot provider invocation outside of any room."""

    def __init__(self, providers: ProviderRegistry, log: Any = None) -> None:
        self.providers = providers
        self.log = log or logger

    async def run(self, data: Any) -> str:
        """
        Validate ``data`` and invoke the selected provider once.

        Returns:
            Final response content as text

        Raises:
            HarnessError: On invalid input (no provider call is made)
            Exception: Provider errors propagate unchanged
        """
        try:
            payload = HarnessPayload.model_validate(data if data is not None else {})
        except ValidationError as e:
            raise HarnessError("Invalid payload", validation_details(e))

        messages = build_messages(payload)
        response = await self.providers.invoke(payload.provider, messages)
        return response.text

    async def handle_test_prompt(
        self,
        connection: ClientConnection,
        data: Any
    ) -> Optional[str]:
        """Entry point for the ``test-prompt`` event; replies are unicast."""
        try:
            content = await self.run(data)
        except HarnessError as e:
            self.log.info("Rejected test-prompt", connection_id=connection.id, reason=e.message)
            connection.deliver(ERROR_EVENT, ErrorEvent(message=e.message, details=e.details).to_wire())
            return None
        except Exception as e:
            self.log.error(
                "Test prompt failed",
                connection_id=connection.id,
                error=str(e),
                exc_info=True
            )
            connection.deliver(
                ERROR_EVENT,
                ErrorEvent(message=str(e) or "Failed to process prompt").to_wire()
            )
            return None

        connection.deliver(RESULT_EVENT, {"content": content})
        return content
