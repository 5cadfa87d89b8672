"""Fact-checking and title generation on the critic backend.

The critic backend is low-temperature and non-streaming. It is reachable
only through these helpers, never through a client's provider selection.
"""

import json
import re
from typing import Any, Optional

from shared.logging import get_logger
from shared.models import ChatMessage, CriticResult, Role
from orchestrator.llm import LLMBackend

logger = get_logger(__name__)


CRITIC_PROMPT = """You are a Fact-Check Critic for a multi-agent workflow. Your job is to detect contradictions between agents' outputs.

Given a sequence of agent steps with their observations and outputs, identify any contradictions:
- Numerical mismatches between steps
- Logical inconsistencies between steps
- Factual conflicts such as different dates, names or values for the same entity

Respond with a JSON block only:
```json
{
  "contradictions": ["Step 2 contradicts Step 1: Agent B reported 3 items but Agent A output 5."],
  "severity": "high"
}
```

Severity: "low" = minor inconsistencies, "medium" = notable conflicts, "high" = critical contradictions that invalidate the chain.
If no contradictions found, return: {"contradictions": [], "severity": "low"}"""

TITLE_PROMPT = (
    "You generate short, human-readable titles (2-6 words) for agent run goals. "
    "Output ONLY the title, no quotes, no explanation."
)

UNTITLED = "Untitled"

_FENCED_JSON = re.compile(r"```(?:json)?\s*([\s\S]*?)```")


def extract_json(content: str) -> Optional[dict[str, Any]]:
    """Parse a JSON object from a reply, preferring a fenced block."""
    match = _FENCED_JSON.search(content)
    raw = match.group(1).strip() if match else content.strip()
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def _is_complete(step: dict[str, Any]) -> bool:
    return step.get("status") == "complete" and bool(step.get("output") or step.get("observation"))


def attribute_step(
    contradictions: list[str],
    severity: str,
    position: int,
    index: int
) -> CriticResult:
    """
    Findings for the step labelled ``Step {position}`` in the critic prompt.

    ``index`` is the step's position in the caller's list. A step is flagged
    when any contradiction mentions its label.
    """
    label = re.compile(rf"\bstep {position}\b", re.IGNORECASE)
    if any(label.search(c) for c in contradictions):
        return CriticResult(contradictions=contradictions, severity=severity, step_index=index)
    return CriticResult(step_index=index)


class CriticService:
    """Runs the critic backend over agent steps and goals."""

    def __init__(self, backend: LLMBackend) -> None:
        self.backend = backend

    async def check_steps(self, steps: list[dict[str, Any]]) -> CriticResult:
        """
        Look for contradictions between completed agent steps.

        Args:
            steps: Step records with ``agent_id``, ``status``, ``observation``
                and ``output``

        Returns:
            Contradictions and overall severity; fewer than two completed
            steps yields an empty, low-severity result
        """
        indexed = [(i, s) for i, s in enumerate(steps) if _is_complete(s)]
        completed = [s for _, s in indexed]
        if len(completed) < 2:
            return CriticResult()

        summary = "\n\n".join(
            f"Step {i + 1} ({s.get('agent_id', 'agent')}):\n"
            f"Observation: {s.get('observation') or 'N/A'}\n"
            f"Output: {json.dumps(s.get('output') or {}, default=str)}"
            for i, s in enumerate(completed)
        )
        response = await self.backend.complete([
            ChatMessage(role=Role.SYSTEM, content=CRITIC_PROMPT),
            ChatMessage(
                role=Role.USER,
                content=f"Analyze these agent steps for contradictions:\n\n{summary}\n\nRespond with JSON only.",
            ),
        ])

        parsed = extract_json(response.text) or {}
        contradictions = [str(c) for c in parsed.get("contradictions") or []]
        severity = parsed.get("severity")
        if severity not in ("low", "medium", "high"):
            severity = "low"
        return CriticResult(
            contradictions=contradictions,
            severity=severity,
            steps=[
                attribute_step(contradictions, severity, position, index)
                for position, (index, _) in enumerate(indexed, start=1)
            ],
        )

    async def generate_title(self, goal: str) -> str:
        """Short title for ``goal``; ``"Untitled"`` on blank input or failure."""
        if not goal or not goal.strip():
            return UNTITLED

        try:
            response = await self.backend.complete([
                ChatMessage(role=Role.SYSTEM, content=TITLE_PROMPT),
                ChatMessage(
                    role=Role.USER,
                    content=f"Generate a concise title for this goal:\n\n{goal.strip()}",
                ),
            ])
        except Exception as e:
            logger.error("Title generation failed", error=str(e))
            return UNTITLED

        title = response.text.strip().strip("\"'")[:80]
        return title or UNTITLED
