"""Backend credentials: static tokens or tokens obtained from a command."""

from __future__ import annotations

import base64
import json
import logging
import shlex
import subprocess

logger = logging.getLogger(__name__)

_ACCOUNT_CLAIM = "https://api.openai.com/auth"


class TokenProviderError(Exception):
    """Raised when the token command fails."""


class TokenProvider:
    """Supplies the bearer token, running ``token_command`` when configured.

    Usage::

        provider = TokenProvider(token="", command="codex-token --print")
        key = provider.get_token()     # runs command on first call
        key = provider.get_token()     # returns cached value
        key = provider.refresh()       # forces re-run, returns new key
    """

    def __init__(self, token: str = "", command: str = "") -> None:
        self._command = command
        self._cached_token: str | None = token or None

    @property
    def can_refresh(self) -> bool:
        return bool(self._command)

    def get_token(self) -> str:
        if self._cached_token:
            return self._cached_token
        return self.refresh()

    def refresh(self) -> str:
        """Execute the command and return a fresh token."""
        if not self._command:
            raise TokenProviderError("No token_command configured")
        logger.info("Running token_command to obtain token")
        try:
            result = subprocess.run(
                shlex.split(self._command),
                capture_output=True,
                text=True,
                timeout=30,
            )
        except FileNotFoundError as e:
            raise TokenProviderError(f"token_command not found: {e}") from e
        except subprocess.TimeoutExpired as e:
            raise TokenProviderError("token_command timed out after 30s") from e

        if result.returncode != 0:
            stderr = result.stderr.strip()
            raise TokenProviderError(
                f"token_command exited with code {result.returncode}" + (f": {stderr}" if stderr else "")
            )

        token = result.stdout.strip()
        if not token:
            raise TokenProviderError("token_command returned empty output")

        self._cached_token = token
        return token


def extract_account_id(token: str) -> str | None:
    """Return the ChatGPT account id claim of a JWT, or None for other tokens."""
    parts = token.split(".")
    if len(parts) != 3:
        return None
    payload = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(payload.encode("ascii")))
    except (ValueError, UnicodeDecodeError):
        return None
    if not isinstance(claims, dict):
        return None
    auth = claims.get(_ACCOUNT_CLAIM)
    if isinstance(auth, dict) and isinstance(auth.get("chatgpt_account_id"), str):
        return auth["chatgpt_account_id"]
    return None
