"""Read file contents tool."""

from __future__ import annotations

from typing import Any

from ..services.file_manager import ReadResult, format_with_line_numbers
from ..text import split_lines
from . import Tool, ToolContext

_MAX_OUTPUT = 100_000

DEFINITION: dict[str, Any] = {
    "name": "read",
    "description": (
        "Read the contents of a file. Returns numbered lines. "
        "A file must be read before it can be written or edited."
    ),
    "parameters": {
        "type": "object",
        "properties": {
            "file_path": {"type": "string", "description": "File path (relative to working directory or absolute)"},
            "offset": {"type": "integer", "description": "Line number to start reading from (1-based). Optional."},
            "limit": {"type": "integer", "description": "Maximum number of lines to read. Optional."},
        },
        "required": ["file_path"],
    },
}


def to_llm(result: ReadResult) -> str:
    if result.total_lines <= 1 and not result.content:
        return "<system-reminder>The file exists but is empty.</system-reminder>"
    content = format_with_line_numbers("\n".join(split_lines(result.content)), start_line=result.start_line)
    if len(content) > _MAX_OUTPUT:
        content = content[:_MAX_OUTPUT] + "\n... (truncated)"
    return content


def build(context: ToolContext) -> Tool:
    async def execute(args: dict[str, Any]) -> ReadResult:
        offset = args.get("offset")
        return await context.files.read(
            context.resolve(args["file_path"]),
            offset=max(0, offset - 1) if offset is not None else None,
            limit=args.get("limit"),
        )

    return Tool(
        name=DEFINITION["name"],
        description=DEFINITION["description"],
        parameters=DEFINITION["parameters"],
        execute=execute,
        to_llm=to_llm,
        read_only=True,
        format_title=lambda args: f"Read {args.get('file_path', '')}",
        format_question=lambda args: f"Allow reading {args.get('file_path', '')}?",
    )
