"""Shell command execution tool."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from ..config import ToolsConfig
from . import Tool, ToolContext

logger = logging.getLogger(__name__)

_MAX_OUTPUT = 100_000

DEFINITION: dict[str, Any] = {
    "name": "bash",
    "description": (
        "Execute a shell command and return stdout, stderr, and exit code. "
        "Commands run in the working directory. Default timeout is 120 seconds."
    ),
    "parameters": {
        "type": "object",
        "properties": {
            "command": {"type": "string", "description": "The shell command to execute"},
            "timeout": {
                "type": "integer",
                "description": "Timeout in seconds (default 120, max 600)",
            },
            "description": {
                "type": "string",
                "description": "Short description of what the command does, shown to the user",
            },
        },
        "required": ["command"],
    },
}


class CommandFailedError(Exception):
    """The command exited non-zero or was interrupted."""


@dataclass
class BashResult:
    stdout: str
    stderr: str
    exit_code: int
    interrupted: bool = False


def _truncate(text: str) -> str:
    if len(text) > _MAX_OUTPUT:
        return text[:_MAX_OUTPUT] + "\n... (truncated)"
    return text


def _decode(data: bytes | None) -> str:
    return _truncate((data or b"").decode("utf-8", errors="replace"))


def to_llm(result: BashResult) -> str:
    parts = []
    if result.stdout:
        parts.append(f"<stdout>\n{result.stdout.rstrip()}\n</stdout>")
    if result.stderr:
        parts.append(f"<stderr>\n{result.stderr.rstrip()}\n</stderr>")
    parts.append(f"<exit_code>{result.exit_code}</exit_code>")
    text = "\n".join(parts)
    if result.interrupted:
        raise CommandFailedError(f"Command was interrupted (timed out).\n{text}")
    if result.exit_code != 0:
        raise CommandFailedError(f"Command failed with exit code {result.exit_code}.\n{text}")
    return text


async def _stop(proc: asyncio.subprocess.Process, grace: float) -> None:
    """SIGTERM, then SIGKILL if the process outlives ``grace`` seconds."""
    if proc.returncode is not None:
        return
    try:
        proc.terminate()
    except ProcessLookupError:
        return
    try:
        await asyncio.wait_for(proc.wait(), timeout=grace)
    except asyncio.TimeoutError:
        logger.warning("Process %d ignored SIGTERM, killing", proc.pid)
        try:
            proc.kill()
        except ProcessLookupError:
            return
        await proc.wait()


async def run_command(command: str, config: ToolsConfig, timeout: int | None = None) -> BashResult:
    timeout = min(max(1, timeout or config.bash_timeout), config.bash_max_timeout)
    proc = await asyncio.create_subprocess_exec(
        config.shell,
        "-c",
        command,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        cwd=config.working_dir,
    )
    communicate = asyncio.ensure_future(proc.communicate())
    try:
        stdout, stderr = await asyncio.wait_for(asyncio.shield(communicate), timeout=timeout)
    except asyncio.TimeoutError:
        logger.info("Command timed out after %ds: %.200s", timeout, command)
        await _stop(proc, config.bash_kill_grace)
        try:
            # Grandchildren may still hold the pipes open.
            stdout, stderr = await asyncio.wait_for(communicate, timeout=max(1.0, config.bash_kill_grace))
        except asyncio.TimeoutError:
            stdout, stderr = b"", b""
        return BashResult(
            stdout=_decode(stdout),
            stderr=_decode(stderr) + f"\nCommand timed out after {timeout}s",
            exit_code=proc.returncode if proc.returncode is not None else -1,
            interrupted=True,
        )
    except asyncio.CancelledError:
        if proc.returncode is None:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
        communicate.cancel()
        raise

    return BashResult(stdout=_decode(stdout), stderr=_decode(stderr), exit_code=proc.returncode or 0)


def build(context: ToolContext) -> Tool:
    async def execute(args: dict[str, Any]) -> BashResult:
        return await run_command(args["command"], context.config, timeout=args.get("timeout"))

    return Tool(
        name=DEFINITION["name"],
        description=DEFINITION["description"],
        parameters=DEFINITION["parameters"],
        execute=execute,
        to_llm=to_llm,
        format_title=lambda args: str(args.get("description") or "Run command"),
        format_question=lambda args: f"Allow running `{args.get('command', '')}`?",
    )
