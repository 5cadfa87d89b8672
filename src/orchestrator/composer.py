"""Message composition for provider calls.

Builds the ordered provider input for a turn. Composition is pure: no I/O,
no shared state, same arguments give the same output.
"""

from typing import Any, Iterable, Optional

from shared.models import ChatMessage, Role


SKILLS_CONTEXT_HEADER = "[Context from selected skills]\n\n"
SKILLS_CONTEXT_SEPARATOR = "\n\n---\n\n"


def to_chat_message(
    role: Any,
    content: str,
    name: Optional[str] = None,
    sub_role: Optional[str] = None
) -> ChatMessage:
    """Map a role tag to a provider message; unknown tags become user messages."""
    parsed = Role.parse(role)
    if parsed == Role.FUNCTION_RESULT:
        return ChatMessage(role=parsed, content=content, name=name or "function")
    if parsed == Role.GENERIC_CHAT:
        return ChatMessage(role=parsed, content=content, sub_role=sub_role or "user")
    return ChatMessage(role=parsed, content=content)


def skills_message(skills_context: Optional[str]) -> Optional[ChatMessage]:
    """Wrap non-blank skills context as a system message."""
    if not skills_context or not skills_context.strip():
        return None
    return ChatMessage(
        role=Role.SYSTEM,
        content=f"{SKILLS_CONTEXT_HEADER}{skills_context}{SKILLS_CONTEXT_SEPARATOR}",
    )


def compose(
    user_content: str,
    skills_context: Optional[str] = None,
    history: Optional[Iterable[Any]] = None
) -> list[ChatMessage]:
    """
    Build the provider input for one user turn.

    Args:
        user_content: Text of the user turn
        skills_context: Optional markdown context from selected skills
        history: Optional client-supplied prior turns (objects with
            ``role`` and ``content``), placed between the skills context
            and the user turn; only user, assistant and system entries
            are kept

    Returns:
        ``[system(skills)?] + history + [user]``
    """
    messages: list[ChatMessage] = []

    system = skills_message(skills_context)
    if system is not None:
        messages.append(system)

    for entry in history or ():
        try:
            role = Role(entry.role)
        except ValueError:
            continue
        if role in (Role.USER, Role.ASSISTANT, Role.SYSTEM):
            messages.append(ChatMessage(role=role, content=entry.content))

    messages.append(ChatMessage(role=Role.USER, content=user_content))
    return messages
