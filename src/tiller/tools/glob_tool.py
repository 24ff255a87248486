"""File pattern matching tool using glob."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from . import Tool, ToolContext

_MAX_RESULTS = 500

DEFINITION: dict[str, Any] = {
    "name": "glob",
    "description": (
        "Find files matching a glob pattern. Returns matching file paths sorted by modification time (newest first)."
    ),
    "parameters": {
        "type": "object",
        "properties": {
            "pattern": {"type": "string", "description": 'Glob pattern (e.g. "**/*.py", "src/**/*.ts")'},
            "path": {
                "type": "string",
                "description": "Directory to search in. Defaults to working directory.",
            },
        },
        "required": ["pattern"],
    },
}


@dataclass
class GlobResult:
    files: list[str] = field(default_factory=list)
    truncated: bool = False


def _mtime(path: Path) -> float:
    try:
        return path.stat().st_mtime
    except OSError:
        return 0.0


def find_files(base: Path, pattern: str) -> GlobResult:
    if "\x00" in pattern:
        raise ValueError("Pattern contains null bytes")
    if not base.is_dir():
        raise FileNotFoundError(f"Directory not found: {base}")

    matches = [p for p in base.glob(pattern) if p.is_file()]
    matches.sort(key=_mtime, reverse=True)
    return GlobResult(
        files=[str(p) for p in matches[:_MAX_RESULTS]],
        truncated=len(matches) > _MAX_RESULTS,
    )


def to_llm(result: GlobResult) -> str:
    if not result.files:
        return "No files found"
    text = "\n".join(result.files)
    if result.truncated:
        text += f"\n(Results are truncated to the {_MAX_RESULTS} most recently modified files.)"
    return text


def build(context: ToolContext) -> Tool:
    async def execute(args: dict[str, Any]) -> GlobResult:
        base = Path(context.resolve(args.get("path") or context.working_dir))
        return find_files(base, args["pattern"])

    return Tool(
        name=DEFINITION["name"],
        description=DEFINITION["description"],
        parameters=DEFINITION["parameters"],
        execute=execute,
        to_llm=to_llm,
        read_only=True,
        format_title=lambda args: f"Glob {args.get('pattern', '')}",
        format_question=lambda args: f"Allow searching for {args.get('pattern', '')}?",
    )
