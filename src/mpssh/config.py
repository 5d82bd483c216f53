"""Configuration loader for mpssh."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

DEFAULT_CONFIG_PATH = Path("~/.config/mpssh/config.yaml").expanduser()
DEFAULT_HOST_FILE = "hostlist.txt"
DEFAULT_CHILDREN = 100
MAX_CHILDREN = 1024
DEFAULT_LINE_LENGTH = 120


@dataclass
class Config:
    """Settings for one mpssh run."""

    command: str | None = None
    script: Path | None = None
    script_args: list[str] = field(default_factory=list)
    host_file: str = DEFAULT_HOST_FILE
    user: str | None = None
    label: str | None = None
    max_children: int = DEFAULT_CHILDREN
    delay: float = 0.0
    connect_timeout: int = 30
    host_key_check: bool = True
    ssh_path: str = "ssh"
    blind: bool = False
    print_exit: bool = False
    verbose: bool = False
    show_user: bool = False
    outdir: Path | None = None
    line_length: int = DEFAULT_LINE_LENGTH
    source_path: Path | None = None  # Path to the YAML file the defaults came from

    def effective_children(self, host_count: int) -> int:
        """Concurrency bound for a run over `host_count` hosts."""
        children = self.max_children or DEFAULT_CHILDREN
        return max(1, min(children, MAX_CHILDREN, host_count))

    def validate(self) -> None:
        """Check option combinations. Raises ValueError on the first problem."""
        if self.command is None and self.script is None:
            raise ValueError("command missing")
        if self.command is not None and self.script is not None:
            raise ValueError("a command and a script are mutually exclusive")
        if self.script is not None and not self.script.is_file():
            raise ValueError(f"script not found: {self.script}")
        if self.max_children < 0:
            raise ValueError("bad number of parallel sessions")
        if self.delay < 0:
            raise ValueError("delay can't be negative")
        if self.connect_timeout <= 0:
            raise ValueError("connect timeout must be positive")
        if self.line_length < 2:
            raise ValueError("line length too small")
        if self.blind and self.outdir is None:
            raise ValueError("can't use blind mode without an output directory")
        if self.blind and self.print_exit:
            raise ValueError("blind mode is not compatible with printing exit codes")
        if self.outdir is not None:
            if not self.outdir.is_dir() or not os.access(self.outdir, os.R_OK | os.W_OK | os.X_OK):
                raise ValueError(f"can't access output dir: {self.outdir}")


def load_config(config_path: str | Path | None = None) -> Config:
    """Load defaults from a YAML file.

    With no path the default location is used if it exists, otherwise
    built-in defaults are returned.
    """
    if config_path is None:
        if not DEFAULT_CONFIG_PATH.exists():
            return Config()
        config_path = DEFAULT_CONFIG_PATH

    config_path = Path(config_path).expanduser().resolve()

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    if not isinstance(raw, dict):
        raise ValueError(f"{config_path}: expected a mapping at top level")

    config = _parse_defaults(raw)
    config.source_path = config_path
    return config


def _parse_defaults(raw: dict[str, Any]) -> Config:
    """Parse the defaults section."""
    defaults_raw = raw.get("defaults") or {}
    if not isinstance(defaults_raw, dict):
        raise ValueError("'defaults' must be a mapping")

    known = {f.name for f in fields(Config)} - {"command", "script_args", "source_path"}
    unknown = set(defaults_raw) - known
    if unknown:
        raise ValueError(f"Unknown settings: {', '.join(sorted(unknown))}")

    config = Config()
    for key, value in defaults_raw.items():
        setattr(config, key, _coerce(key, value, getattr(config, key)))
    return config


def _coerce(key: str, value: Any, default: Any) -> Any:
    """Convert a raw YAML value to the type of the setting."""
    if value is None:
        return None
    if key in ("outdir", "script"):
        return Path(str(value)).expanduser()
    if isinstance(default, bool):
        if not isinstance(value, bool):
            raise ValueError(f"'{key}' must be true or false")
        return value
    if isinstance(default, int):
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"'{key}' must be an integer")
        return value
    if isinstance(default, float):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"'{key}' must be a number")
        return float(value)
    return str(value)
