"""Built-in tool contract and registry."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Callable, Coroutine

from pydantic import BaseModel

from ..config import ToolsConfig
from ..services.file_manager import FileManager
from .schema import ToolValidationError as ToolValidationError
from .schema import build_model, validate_arguments

logger = logging.getLogger(__name__)

ToolExecute = Callable[[dict[str, Any]], Coroutine[Any, Any, Any]]
ToolFormatter = Callable[[dict[str, Any]], str]


def _default_to_llm(result: Any) -> str:
    if isinstance(result, str):
        return result
    return json.dumps(result, default=str)


@dataclass(frozen=True)
class Tool:
    """A capability offered to the model.

    ``parameters`` is a JSON-schema ``object`` description; it is sent to the
    backend as-is and also drives argument validation before ``execute``.
    ``read_only`` only informs how a permission prompt is rendered.
    """

    name: str
    description: str
    parameters: dict[str, Any]
    execute: ToolExecute
    to_llm: Callable[[Any], str] = _default_to_llm
    read_only: bool = False
    format_title: ToolFormatter | None = None
    format_question: ToolFormatter | None = None
    _model: type[BaseModel] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_model", build_model(self.parameters, name=f"{self.name}_args"))

    def validate(self, arguments: Any) -> dict[str, Any]:
        return validate_arguments(self._model, arguments)

    async def run(self, arguments: Any) -> Any:
        """Validate ``arguments`` and execute. Raises ``ToolValidationError`` on bad input."""
        return await self.execute(self.validate(arguments))

    def definition(self) -> dict[str, Any]:
        return {"name": self.name, "description": self.description, "parameters": self.parameters}


@dataclass
class ToolContext:
    """Shared collaborators handed to each built-in tool factory."""

    files: FileManager
    config: ToolsConfig

    @property
    def working_dir(self) -> str:
        return self.config.working_dir

    def resolve(self, path: str) -> str:
        """Resolve ``path`` against the working directory."""
        if "\x00" in path:
            raise ValueError("Path contains null bytes")
        expanded = os.path.expanduser(path)
        if not os.path.isabs(expanded):
            expanded = os.path.join(self.working_dir, expanded)
        return os.path.normpath(expanded)


class ToolRegistry:
    """Name-keyed map of tools. Registration order is preserved."""

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            raise ValueError(f"Tool already registered: {tool.name}")
        self._tools[tool.name] = tool

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def has_tool(self, name: str) -> bool:
        return name in self._tools

    def list_tools(self) -> list[str]:
        return list(self._tools.keys())

    def definitions(self) -> list[dict[str, Any]]:
        return [tool.definition() for tool in self._tools.values()]

    def __len__(self) -> int:
        return len(self._tools)


def register_default_tools(registry: ToolRegistry, context: ToolContext) -> None:
    """Register all built-in tools."""
    from . import bash, edit, glob_tool, read, write

    for module in [read, write, edit, bash, glob_tool]:
        registry.register(module.build(context))
    logger.debug("Registered built-in tools: %s", ", ".join(registry.list_tools()))
