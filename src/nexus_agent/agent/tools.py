"""Tool interface and registry.

Every capability the model can invoke is a ``Tool`` subclass with a
Pydantic input model. The registry validates raw model arguments against
that model before dispatching, so a tool's ``execute`` always receives a
well-typed parameter object.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator, Mapping
from typing import Any, ClassVar

from pydantic import BaseModel, ValidationError

from nexus_agent.errors import ToolInputError, ToolNotFound

logger = logging.getLogger(__name__)


class Tool(ABC):
    """A named, schema-typed capability invocable by the agent loop."""

    name: ClassVar[str]
    description: ClassVar[str]
    category: ClassVar[str] = "general"
    input_model: ClassVar[type[BaseModel]]

    @abstractmethod
    async def execute(self, params: Any) -> Any:
        """Run the tool.

        Args:
            params: An instance of ``input_model``.

        Returns:
            A JSON-serializable result.
        """

    @classmethod
    def input_schema(cls) -> dict[str, Any]:
        return cls.input_model.model_json_schema()

    @classmethod
    def info(cls) -> ToolInfo:
        return ToolInfo(
            name=cls.name,
            description=cls.description,
            category=cls.category,
            parameters=cls.input_schema(),
        )


class ToolInfo(BaseModel):
    """Public description of a tool, as listed by the API."""

    name: str
    description: str
    category: str
    parameters: dict[str, Any]


class ToolRegistry:
    """Map of tool name to tool instance."""

    def __init__(self, tools: Iterable[Tool] = ()) -> None:
        self._tools: dict[str, Tool] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            msg = f"Tool {tool.name!r} is already registered"
            raise ValueError(msg)
        self._tools[tool.name] = tool

    def get(self, name: str) -> Tool:
        try:
            return self._tools[name]
        except KeyError:
            raise ToolNotFound(name) from None

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[Tool]:
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)

    async def dispatch(self, name: str, raw_args: Mapping[str, Any] | None) -> Any:
        """Validate arguments and execute a tool.

        Raises:
            ToolNotFound: If no tool has this name.
            ToolInputError: If the arguments do not match the tool's schema.
        """
        tool = self.get(name)
        try:
            params = tool.input_model.model_validate(dict(raw_args or {}))
        except ValidationError as exc:
            raise ToolInputError(f"Invalid arguments for {name}: {exc}") from exc

        logger.debug("Dispatching tool %s", name)
        return await tool.execute(params)

    def anthropic_specs(self) -> list[dict[str, Any]]:
        """Tool definitions in the Anthropic Messages API format."""
        return [
            {
                "name": tool.name,
                "description": tool.description,
                "input_schema": tool.input_schema(),
            }
            for tool in self._tools.values()
        ]

    def describe(self) -> list[ToolInfo]:
        return [tool.info() for tool in self._tools.values()]

    def grouped(self) -> dict[str, list[ToolInfo]]:
        groups: dict[str, list[ToolInfo]] = {}
        for info in self.describe():
            groups.setdefault(info.category, []).append(info)
        return groups
