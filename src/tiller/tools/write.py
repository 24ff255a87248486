"""Write/create file tool."""

from __future__ import annotations

from typing import Any

from ..services.file_manager import WriteResult, format_with_line_numbers
from ..text import split_lines
from . import Tool, ToolContext

SNIPPET_LINES = 50

DEFINITION: dict[str, Any] = {
    "name": "write",
    "description": (
        "Write content to a file. Creates parent directories if needed. Overwrites existing files, "
        "which must have been read first."
    ),
    "parameters": {
        "type": "object",
        "properties": {
            "file_path": {"type": "string", "description": "File path (relative to working directory or absolute)"},
            "content": {"type": "string", "description": "The content to write to the file"},
        },
        "required": ["file_path", "content"],
    },
}


def snippet(result: WriteResult) -> str:
    """Numbered excerpt of the new content around the first changed hunk."""
    start = result.structured_patch[0].new_start if result.structured_patch else 1
    lines = split_lines(result.content)
    first = max(1, start)
    return format_with_line_numbers("\n".join(lines[first - 1 :]), start_line=first, max_lines=SNIPPET_LINES)


def to_llm(result: WriteResult) -> str:
    if result.type == "create":
        return f"File created successfully at: {result.file_path}"
    return (
        f"The file {result.file_path} has been updated. "
        f"Here's the result of running `cat -n` on a snippet of the edited file:\n{snippet(result)}"
    )


def build(context: ToolContext) -> Tool:
    async def execute(args: dict[str, Any]) -> WriteResult:
        return await context.files.write(context.resolve(args["file_path"]), args["content"])

    return Tool(
        name=DEFINITION["name"],
        description=DEFINITION["description"],
        parameters=DEFINITION["parameters"],
        execute=execute,
        to_llm=to_llm,
        format_title=lambda args: f"Write {args.get('file_path', '')}",
        format_question=lambda args: f"Allow writing {len(str(args.get('content', '')))} characters to "
        f"{args.get('file_path', '')}?",
    )
