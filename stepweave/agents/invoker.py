"""Agent invocation collaborator used by ``agent`` steps."""

from __future__ import annotations

import logging
from typing import Any, Protocol, Sequence, Union, runtime_checkable

from pydantic_ai import Agent

logger = logging.getLogger(__name__)

Prompt = Union[str, Sequence[Any]]


@runtime_checkable
class AgentInvoker(Protocol):
    """Anything that can turn a prompt into output of an expected type."""

    async def invoke(self, prompt: Prompt, output_type: Any) -> Any:
        """Run the agent and return its raw output."""


class PydanticAIInvoker:
    """Invoke a pydantic-ai ``Agent`` with a per-run output type.

    A string prompt is sent as the user prompt; a sequence is treated as a
    pydantic-ai message history.
    """

    def __init__(self, agent: Agent, **run_kwargs: Any) -> None:
        self.agent = agent
        self._run_kwargs = run_kwargs

    @property
    def name(self) -> str:
        return getattr(self.agent, "name", None) or "agent"

    async def invoke(self, prompt: Prompt, output_type: Any) -> Any:
        logger.debug(f"Invoking agent {self.name} with output_type={output_type}")
        if isinstance(prompt, str):
            result = await self.agent.run(
                prompt, output_type=output_type, **self._run_kwargs
            )
        else:
            result = await self.agent.run(
                message_history=list(prompt),
                output_type=output_type,
                **self._run_kwargs,
            )
        return result.output


def as_invoker(agent: Any) -> AgentInvoker:
    """Return ``agent`` as an :class:`AgentInvoker`, wrapping pydantic-ai agents."""
    if isinstance(agent, Agent):
        return PydanticAIInvoker(agent)
    if isinstance(agent, AgentInvoker):
        return agent
    raise TypeError(
        f"Expected a pydantic-ai Agent or an object with invoke(), got {type(agent).__name__}"
    )
