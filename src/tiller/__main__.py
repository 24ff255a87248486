"""CLI entry point for Tiller."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

from . import __version__
from .config import AppConfig, _get_config_path, load_config


def _configure_logging(config: AppConfig, debug: bool) -> None:
    """Log to a file under the data dir; the terminal belongs to the UI."""
    config.app.data_dir.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(config.app.data_dir / "tiller.log", encoding="utf-8")
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root = logging.getLogger()
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if debug else logging.WARNING)
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _load_config_or_exit(config_path: Path | None) -> AppConfig:
    path = config_path or _get_config_path()
    try:
        return load_config(path)
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)


async def _run(config: AppConfig, model: str | None, prompt: str | None) -> None:
    from .cli.repl import run_cli
    from .services.engine import Engine
    from .services.file_manager import FileManager
    from .services.protocol import ProtocolClient
    from .services.providers import CodexProvider
    from .tools import ToolContext, ToolRegistry, register_default_tools
    from .tools.policy import parse_approval_mode

    registry = ToolRegistry()
    register_default_tools(registry, ToolContext(files=FileManager(), config=config.tools))

    client = ProtocolClient(config.ai)
    provider = CodexProvider(config.ai, client, approval_mode=parse_approval_mode(config.safety.approval_mode))
    engine = Engine(
        [provider],
        registry,
        safety=config.safety,
        preferred_model=model or config.ai.model,
        web_search=config.ai.web_search,
    )
    try:
        await run_cli(engine, registry, initial_prompt=prompt)
    finally:
        await client.aclose()


def main() -> None:
    parser = argparse.ArgumentParser(prog="tiller", description="Terminal coding agent with gated tool execution")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--debug", action="store_true", help="Write debug logs to <data_dir>/tiller.log")
    parser.add_argument("--config", type=Path, default=None, help="Path to config.yaml")
    parser.add_argument("--model", default=None, help="Model to start with")
    parser.add_argument(
        "--approval-mode",
        choices=["ask", "allow-edits", "auto"],
        default=None,
        help="ask: prompt before every tool call; allow-edits: write and edit run without a prompt; auto: never prompt",
    )
    parser.add_argument("prompt", nargs="?", default=None, help="Initial prompt to send")
    args = parser.parse_args()

    config = _load_config_or_exit(args.config)
    if args.approval_mode:
        config.safety.approval_mode = args.approval_mode
    debug = args.debug or config.app.debug or os.environ.get("TILLER_DEBUG") == "1"
    _configure_logging(config, debug)

    try:
        asyncio.run(_run(config, args.model, args.prompt))
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
