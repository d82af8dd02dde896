"""Helper configuration: defaults, JSON config file, environment, CLI.

Precedence, lowest first::

    built-in defaults < $CREDVAULT_HOME/config.json < CREDVAULT_* env < CLI options

The config file may set ``backend``, ``timeout``, ``cache_timeout``,
``store_file``, ``socket_path`` and ``fallback_env``.  The store passphrase
is only ever read from the environment.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, SecretStr, ValidationError

from credvault.constants import (
    DEFAULT_BACKEND_TIMEOUT,
    DEFAULT_CACHE_TIMEOUT,
    get_backend_name,
    get_backend_timeout,
    get_cache_timeout,
    get_config_file,
    get_credvault_home,
    get_passphrase,
    get_socket_path,
    get_store_file,
)
from credvault.errors import ConfigError

BackendName = Literal["auto", "keychain", "file", "cache"]

FILE_KEYS: tuple[str, ...] = (
    "backend",
    "timeout",
    "cache_timeout",
    "store_file",
    "socket_path",
    "fallback_env",
)


class HelperConfig(BaseModel):
    """Resolved settings for one helper invocation."""

    backend: BackendName = "auto"
    """Which store to use; ``auto`` prefers the keychain, then the file."""

    timeout: float = Field(default=DEFAULT_BACKEND_TIMEOUT, gt=0)
    """Upper bound in seconds on each backend call."""

    cache_timeout: int = Field(default=DEFAULT_CACHE_TIMEOUT, gt=0)
    """Lifetime in seconds of cache-backend entries."""

    store_file: Path
    """Encrypted store location for the file backend."""

    socket_path: Path
    """Cache daemon socket."""

    fallback_env: bool = True
    """Whether ``get`` may resolve tokens from GITHUB_PAT* variables."""

    passphrase: Optional[SecretStr] = None
    """Passphrase for the encrypted store (environment only)."""

    def display_dict(self) -> dict[str, Any]:
        """Settings safe to print: the passphrase is reduced to a flag."""
        return {
            "home": str(get_credvault_home()),
            "backend": self.backend,
            "timeout": self.timeout,
            "cache_timeout": self.cache_timeout,
            "store_file": str(self.store_file),
            "socket_path": str(self.socket_path),
            "fallback_env": self.fallback_env,
            "passphrase_set": self.passphrase is not None,
        }


def load_json(path: str | Path) -> dict[str, Any]:
    """Load a JSON file, returning empty dict on missing/invalid file.

    Args:
        path: Path to JSON file to load.

    Returns:
        Dictionary containing JSON data, or empty dict if file is missing/invalid.
    """
    try:
        with open(path) as f:
            data = json.load(f)
        if isinstance(data, dict):
            return data
    except (FileNotFoundError, json.JSONDecodeError, OSError):
        pass
    return {}


def _env_overrides() -> dict[str, Any]:
    env: dict[str, Any] = {}
    if os.environ.get("CREDVAULT_BACKEND"):
        env["backend"] = get_backend_name()
    if os.environ.get("CREDVAULT_TIMEOUT"):
        env["timeout"] = get_backend_timeout()
    if os.environ.get("CREDVAULT_CACHE_TIMEOUT"):
        env["cache_timeout"] = get_cache_timeout()
    if os.environ.get("CREDVAULT_STORE_FILE"):
        env["store_file"] = get_store_file()
    if os.environ.get("CREDVAULT_SOCKET"):
        env["socket_path"] = get_socket_path()
    if os.environ.get("CREDVAULT_FALLBACK_ENV"):
        env["fallback_env"] = os.environ["CREDVAULT_FALLBACK_ENV"] not in ("0", "false", "False")
    return env


def load_config(overrides: Optional[dict[str, Any]] = None, config_file: Optional[Path] = None) -> HelperConfig:
    """Resolve the effective configuration.

    Args:
        overrides: CLI-level values; ``None`` entries are ignored.
        config_file: Alternate config file (defaults to $CREDVAULT_HOME/config.json).

    Raises:
        ConfigError: If the merged values do not validate.
    """
    home = get_credvault_home()
    data: dict[str, Any] = {
        "store_file": home / "credentials.enc",
        "socket_path": home / "cache" / "socket",
    }

    file_data = load_json(config_file if config_file is not None else get_config_file())
    data.update({k: v for k, v in file_data.items() if k in FILE_KEYS})
    data.update(_env_overrides())
    data.update({k: v for k, v in (overrides or {}).items() if v is not None})

    passphrase = get_passphrase()
    if passphrase:
        data["passphrase"] = passphrase

    try:
        return HelperConfig.model_validate(data)
    except ValidationError as exc:
        fields = sorted({str(err["loc"][0]) for err in exc.errors() if err.get("loc")})
        raise ConfigError(f"Invalid configuration for: {', '.join(fields)}") from None
