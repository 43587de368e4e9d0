"""XDG config loading/saving."""

from __future__ import annotations

import os
import sys
from contextlib import suppress
from pathlib import Path
from typing import Literal, cast

from pydantic import BaseModel, ConfigDict, Field, field_validator

if sys.version_info >= (3, 11):
    import tomllib
else:  # pragma: no cover
    import tomli as tomllib

from consolesupervisor.console.models import ProcessMode, ProcessOptions

DEFAULT_CONFIG_PATH = Path("~/.config/consolesupervisor/config.toml").expanduser()
DEFAULT_SHELL = "/bin/sh"
DEFAULT_SHELL_ARGS = ["-c"]
DEFAULT_MODE: Literal["pipe", "pty"] = "pipe"
DEFAULT_POLL_INTERVAL = 0.05
DEFAULT_TERMINATE_TIMEOUT = 2.0
DEFAULT_READ_CHUNK_SIZE = 4096
DEFAULT_PTY_COLS = 120
DEFAULT_PTY_ROWS = 30
DEFAULT_ENCODING = "utf-8"
DEFAULT_LOG_LEVEL = "INFO"
SHELL_ENV = "CONSOLESUPERVISOR_SHELL"

_VALID_MODES = {"pipe", "pty"}
_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARN", "WARNING", "ERROR"}


class SupervisorConfig(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    shell: str = DEFAULT_SHELL
    shell_args: list[str] = Field(default_factory=lambda: list(DEFAULT_SHELL_ARGS))
    default_mode: Literal["pipe", "pty"] = DEFAULT_MODE
    default_cwd: str = ""
    poll_interval_seconds: float = Field(default=DEFAULT_POLL_INTERVAL, ge=0.005, le=5.0)
    terminate_timeout_seconds: float = Field(default=DEFAULT_TERMINATE_TIMEOUT, ge=0.0, le=60.0)
    read_chunk_size: int = Field(default=DEFAULT_READ_CHUNK_SIZE, ge=64, le=1_048_576)
    pty_cols: int = Field(default=DEFAULT_PTY_COLS, ge=1, le=1000)
    pty_rows: int = Field(default=DEFAULT_PTY_ROWS, ge=1, le=1000)
    encoding: str = DEFAULT_ENCODING
    log_level: str = DEFAULT_LOG_LEVEL
    environment: dict[str, str] = Field(default_factory=dict)

    @field_validator("shell")
    @classmethod
    def _validate_shell(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Shell cannot be empty")
        return value.strip()

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in _VALID_LOG_LEVELS:
            raise ValueError(f"Invalid log level: {value}")
        return normalized

    @field_validator("encoding")
    @classmethod
    def _validate_encoding(cls, value: str) -> str:
        import codecs

        try:
            codecs.lookup(value)
        except LookupError as exc:
            raise ValueError(f"Unknown encoding: {value}") from exc
        return value


def get_config_path(path: str | Path | None = None) -> Path:
    if path is None:
        return DEFAULT_CONFIG_PATH
    return Path(path).expanduser()


def default_options(config: SupervisorConfig) -> ProcessOptions:
    return ProcessOptions(
        cwd=config.default_cwd or None,
        env=dict(config.environment),
        mode=ProcessMode(config.default_mode),
        shell=config.shell,
        shell_args=tuple(config.shell_args),
        encoding=config.encoding,
        pty_size=(config.pty_rows, config.pty_cols),
    )


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def _toml_scalar(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return repr(value)
    if isinstance(value, str):
        return f'"{_escape(value)}"'
    if isinstance(value, list):
        return "[" + ", ".join(_toml_scalar(item) for item in value) + "]"
    raise TypeError(f"Unsupported TOML scalar type: {type(value)!r}")


def _as_number(value: object) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    return None


def _normalize_environment(value: object) -> dict[str, str]:
    if not isinstance(value, dict):
        return {}
    normalized: dict[str, str] = {}
    for key, item in value.items():
        if not isinstance(key, str) or not key.strip() or "=" in key:
            continue
        if isinstance(item, bool) or not isinstance(item, (str, int, float)):
            continue
        normalized[key.strip()] = str(item)
    return normalized


def _sanitize(raw: dict[str, object]) -> SupervisorConfig:
    cfg = SupervisorConfig()

    shell = raw.get("shell", cfg.shell)
    if isinstance(shell, str) and shell.strip():
        cfg.shell = shell
    env_shell = os.getenv(SHELL_ENV, "").strip()
    if env_shell:
        cfg.shell = env_shell

    shell_args = raw.get("shell_args", cfg.shell_args)
    if isinstance(shell_args, list) and all(isinstance(item, str) for item in shell_args):
        cfg.shell_args = list(shell_args)

    default_mode = raw.get("default_mode", cfg.default_mode)
    if isinstance(default_mode, str) and default_mode in _VALID_MODES:
        cfg.default_mode = cast(Literal["pipe", "pty"], default_mode)

    default_cwd = raw.get("default_cwd", cfg.default_cwd)
    if isinstance(default_cwd, str):
        cfg.default_cwd = default_cwd

    poll_interval = _as_number(raw.get("poll_interval_seconds"))
    if poll_interval is not None and 0.005 <= poll_interval <= 5.0:
        cfg.poll_interval_seconds = poll_interval

    terminate_timeout = _as_number(raw.get("terminate_timeout_seconds"))
    if terminate_timeout is not None and 0.0 <= terminate_timeout <= 60.0:
        cfg.terminate_timeout_seconds = terminate_timeout

    chunk_size = raw.get("read_chunk_size", cfg.read_chunk_size)
    if isinstance(chunk_size, int) and not isinstance(chunk_size, bool) and 64 <= chunk_size <= 1_048_576:
        cfg.read_chunk_size = chunk_size

    for key in ("pty_cols", "pty_rows"):
        value = raw.get(key)
        if isinstance(value, int) and not isinstance(value, bool) and 1 <= value <= 1000:
            setattr(cfg, key, value)

    encoding = raw.get("encoding", cfg.encoding)
    if isinstance(encoding, str):
        with suppress(ValueError):
            cfg.encoding = encoding

    log_level = raw.get("log_level", cfg.log_level)
    if isinstance(log_level, str):
        with suppress(ValueError):
            cfg.log_level = log_level

    cfg.environment = _normalize_environment(raw.get("environment", {}))
    return cfg


def load_config(path: str | Path | None = None) -> SupervisorConfig:
    resolved = get_config_path(path)
    if not resolved.exists():
        return _sanitize({})
    try:
        with resolved.open("rb") as handle:
            raw = tomllib.load(handle)
    except (tomllib.TOMLDecodeError, OSError):
        return _sanitize({})
    if not isinstance(raw, dict):
        return _sanitize({})
    return _sanitize(raw)


def save_config(config: SupervisorConfig, path: str | Path | None = None) -> Path:
    resolved = get_config_path(path)
    resolved.parent.mkdir(parents=True, exist_ok=True)

    lines = [
        f"shell = {_toml_scalar(config.shell)}",
        f"shell_args = {_toml_scalar(list(config.shell_args))}",
        f"default_mode = {_toml_scalar(config.default_mode)}",
        f"default_cwd = {_toml_scalar(config.default_cwd)}",
        f"poll_interval_seconds = {_toml_scalar(float(config.poll_interval_seconds))}",
        f"terminate_timeout_seconds = {_toml_scalar(float(config.terminate_timeout_seconds))}",
        f"read_chunk_size = {_toml_scalar(config.read_chunk_size)}",
        f"pty_cols = {_toml_scalar(config.pty_cols)}",
        f"pty_rows = {_toml_scalar(config.pty_rows)}",
        f"encoding = {_toml_scalar(config.encoding)}",
        f"log_level = {_toml_scalar(config.log_level)}",
    ]

    if config.environment:
        lines.append("")
        lines.append("[environment]")
        for key, value in sorted(config.environment.items()):
            lines.append(f'"{_escape(key)}" = {_toml_scalar(value)}')

    resolved.write_text("\n".join(lines) + "\n", encoding="utf-8")
    with suppress(OSError):
        resolved.chmod(0o600)
    return resolved
