"""Configuration loader: YAML file with environment variable fallbacks."""

from __future__ import annotations

import os
import stat
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .prompts import DEFAULT_INSTRUCTIONS

DEFAULT_BASE_URL = "https://chatgpt.com/backend-api/codex"
DEFAULT_MODEL = "gpt-5-codex-medium"

_FALSE_VALUES = ("false", "0", "no", "off")


@dataclass
class AIConfig:
    base_url: str = DEFAULT_BASE_URL
    token: str = ""
    token_command: str = ""
    model: str = DEFAULT_MODEL
    instructions: str = DEFAULT_INSTRUCTIONS
    web_search: bool = True
    verify_ssl: bool = True
    request_timeout: int = 120  # seconds; per-chunk read timeout
    connect_timeout: int = 5


@dataclass
class SafetyConfig:
    approval_mode: str = "ask"
    approval_timeout: int = 0  # seconds; 0 = wait for a decision indefinitely
    allowed_tools: list[str] = field(default_factory=list)


@dataclass
class ToolsConfig:
    working_dir: str = field(default_factory=os.getcwd)
    shell: str = "/bin/bash"
    bash_timeout: int = 120
    bash_max_timeout: int = 600
    bash_kill_grace: float = 5.0


@dataclass
class AppSettings:
    data_dir: Path = field(default_factory=lambda: Path.home() / ".tiller")
    debug: bool = False


@dataclass
class AppConfig:
    ai: AIConfig
    app: AppSettings = field(default_factory=AppSettings)
    safety: SafetyConfig = field(default_factory=SafetyConfig)
    tools: ToolsConfig = field(default_factory=ToolsConfig)


def _get_config_path(data_dir: Path | None = None) -> Path:
    if data_dir:
        return data_dir / "config.yaml"
    return Path(os.environ.get("TILLER_DATA_DIR", str(Path.home() / ".tiller"))).expanduser() / "config.yaml"


def _as_bool(raw: Any) -> bool:
    return str(raw).lower() not in _FALSE_VALUES


def _clamped_int(raw: Any, default: int, lo: int, hi: int) -> int:
    try:
        val = int(raw)
    except (ValueError, TypeError):
        val = default
    return max(lo, min(val, hi))


def load_config(config_path: Path | None = None) -> AppConfig:
    raw: dict[str, Any] = {}
    path = config_path or _get_config_path()

    if path.exists():
        with open(path) as f:
            raw = yaml.safe_load(f) or {}

    ai_raw = raw.get("ai", {}) or {}
    token = ai_raw.get("token") or os.environ.get("TILLER_TOKEN", "")
    token_command = ai_raw.get("token_command") or os.environ.get("TILLER_TOKEN_COMMAND", "")
    if not token and not token_command:
        raise ValueError(
            f"AI token or token_command is required. Set 'ai.token' or 'ai.token_command' "
            f"in config.yaml ({path}) or TILLER_TOKEN / TILLER_TOKEN_COMMAND environment variable."
        )

    user_instructions = ai_raw.get("instructions") or os.environ.get("TILLER_INSTRUCTIONS", "")
    instructions = DEFAULT_INSTRUCTIONS
    if user_instructions:
        instructions += "\n\n<user_instructions>\n" + user_instructions + "\n</user_instructions>"

    ai = AIConfig(
        base_url=(ai_raw.get("base_url") or os.environ.get("TILLER_BASE_URL", DEFAULT_BASE_URL)).rstrip("/"),
        token=token,
        token_command=token_command,
        model=ai_raw.get("model") or os.environ.get("TILLER_MODEL", DEFAULT_MODEL),
        instructions=instructions,
        web_search=_as_bool(ai_raw.get("web_search", os.environ.get("TILLER_WEB_SEARCH", "true"))),
        verify_ssl=_as_bool(ai_raw.get("verify_ssl", os.environ.get("TILLER_VERIFY_SSL", "true"))),
        request_timeout=_clamped_int(
            ai_raw.get("request_timeout", os.environ.get("TILLER_REQUEST_TIMEOUT", 120)), 120, 10, 600
        ),
        connect_timeout=_clamped_int(ai_raw.get("connect_timeout", 5), 5, 1, 60),
    )

    app_raw = raw.get("app", {}) or {}
    data_dir = Path(os.path.expanduser(str(app_raw.get("data_dir", path.parent))))
    app_settings = AppSettings(
        data_dir=data_dir,
        debug=_as_bool(app_raw.get("debug", os.environ.get("TILLER_DEBUG", "false"))),
    )

    safety_raw = raw.get("safety", {}) or {}
    allowed_tools = safety_raw.get("allowed_tools", [])
    if not isinstance(allowed_tools, list):
        allowed_tools = []
    safety = SafetyConfig(
        approval_mode=str(
            safety_raw.get("approval_mode", os.environ.get("TILLER_APPROVAL_MODE", "ask"))
        ).strip(),
        approval_timeout=_clamped_int(safety_raw.get("approval_timeout", 0), 0, 0, 3600),
        allowed_tools=[str(t) for t in allowed_tools],
    )

    tools_raw = raw.get("tools", {}) or {}
    bash_max_timeout = _clamped_int(tools_raw.get("bash_max_timeout", 600), 600, 1, 3600)
    try:
        kill_grace = max(0.0, float(tools_raw.get("bash_kill_grace", 5.0)))
    except (ValueError, TypeError):
        kill_grace = 5.0
    tools = ToolsConfig(
        working_dir=os.path.abspath(os.path.expanduser(str(tools_raw.get("working_dir", os.getcwd())))),
        shell=str(tools_raw.get("shell", os.environ.get("TILLER_SHELL", "/bin/bash"))),
        bash_timeout=_clamped_int(tools_raw.get("bash_timeout", 120), 120, 1, bash_max_timeout),
        bash_max_timeout=bash_max_timeout,
        bash_kill_grace=kill_grace,
    )

    if path.exists():
        try:
            path.chmod(stat.S_IRUSR | stat.S_IWUSR)  # 0600, may hold a token
        except OSError:
            pass  # May fail on Windows or non-owned files

    return AppConfig(ai=ai, app=app_settings, safety=safety, tools=tools)
