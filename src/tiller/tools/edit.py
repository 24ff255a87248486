"""Edit file via exact string replacement."""

from __future__ import annotations

from typing import Any

from ..services.file_manager import WriteResult
from . import Tool, ToolContext
from .write import to_llm

DEFINITION: dict[str, Any] = {
    "name": "edit",
    "description": (
        "Edit a file by replacing an exact string with new text. "
        "The old_string must appear exactly once in the file (must be unique). "
        "Use replace_all=true to replace all occurrences. The file must have been read first."
    ),
    "parameters": {
        "type": "object",
        "properties": {
            "file_path": {"type": "string", "description": "File path (relative to working directory or absolute)"},
            "old_string": {"type": "string", "description": "The exact text to find and replace"},
            "new_string": {"type": "string", "description": "The replacement text"},
            "replace_all": {
                "type": "boolean",
                "description": "If true, replace all occurrences. Default false (must be unique).",
            },
        },
        "required": ["file_path", "old_string", "new_string"],
    },
}


def build(context: ToolContext) -> Tool:
    async def execute(args: dict[str, Any]) -> WriteResult:
        if args["old_string"] == args["new_string"]:
            raise ValueError("No changes to make: old_string and new_string are exactly the same.")
        return await context.files.edit(
            context.resolve(args["file_path"]),
            args["old_string"],
            args["new_string"],
            replace_all=bool(args.get("replace_all") or False),
        )

    return Tool(
        name=DEFINITION["name"],
        description=DEFINITION["description"],
        parameters=DEFINITION["parameters"],
        execute=execute,
        to_llm=to_llm,
        format_title=lambda args: f"Edit {args.get('file_path', '')}",
        format_question=lambda args: f"Allow editing {args.get('file_path', '')}?",
    )
