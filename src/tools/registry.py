from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING

import structlog

from src.infra.errors import AgentError, DuplicateToolError, UnknownToolError

if TYPE_CHECKING:
    from src.agent.policy import Authority
    from src.tools.base import BaseTool

logger = structlog.get_logger()


class ToolRegistry:
    """Process-wide registry for agent tools.

    Populated once at start-up, then frozen: the tool surface offered to the
    model is fixed per deployment. resolve() is the single name lookup point.
    """

    def __init__(self) -> None:
        self._tools: dict[str, BaseTool] = {}
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def register(self, tool: BaseTool) -> None:
        """Register a tool. Raises DuplicateToolError if name already registered."""
        if self._frozen:
            raise AgentError(
                f"Registry is frozen; cannot register {tool.name}",
                code="REGISTRY_FROZEN",
            )
        if tool.name in self._tools:
            raise DuplicateToolError(tool.name)
        self._tools[tool.name] = tool
        logger.info("tool_registered", tool_name=tool.name, authority=tool.authority.value)

    def freeze(self) -> None:
        self._frozen = True
        logger.info("tool_registry_frozen", tool_count=len(self._tools))

    def resolve(self, name: str) -> BaseTool:
        """Get a tool by name. Raises UnknownToolError if not found."""
        tool = self._tools.get(name)
        if tool is None:
            raise UnknownToolError(name)
        return tool

    def list_tools(self) -> list[BaseTool]:
        """Return all registered tools in registration order."""
        return list(self._tools.values())

    def get_tools_schema(
        self, authorities: Iterable[Authority] | None = None
    ) -> list[dict]:
        """Return tools in OpenAI function calling format.

        When authorities is given, only tools whose action kind is granted
        are offered. The guardrail still decides every call.

        Output format:
        [{"type": "function", "function": {"name": ..., "description": ..., "parameters": ...}}]
        """
        granted = set(authorities) if authorities is not None else None
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.parameters,
                },
            }
            for tool in self._tools.values()
            if granted is None or tool.authority in granted
        ]
