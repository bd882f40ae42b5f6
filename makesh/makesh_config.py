from __future__ import annotations

import json
import os
from dataclasses import dataclass, fields, replace
from datetime import date, datetime
from pathlib import Path
from typing import Any, Mapping, Optional, Tuple

import yaml
import tomllib


# --------------------------
# Deserialization
# --------------------------

def _norm_text(data: bytes | bytearray | str) -> str:
    if isinstance(data, (bytes, bytearray)):
        return data.decode("utf-8", errors="replace")
    return data


def detect_format(path: str | os.PathLike) -> Optional[str]:
    """Returns 'json', 'yaml' or 'toml' based on the file extension."""
    ext = Path(path).suffix.lower()
    if ext == ".json":
        return "json"
    if ext in (".yaml", ".yml"):
        return "yaml"
    if ext == ".toml":
        return "toml"
    return None


def deserialize(data: bytes | bytearray | str, *, fmt: str) -> Any:
    """
    Decode configuration text.
    Supported fmt: 'json', 'yaml', 'toml'.
    """
    text = _norm_text(data)
    if fmt == "json":
        return json.loads(text)
    if fmt == "yaml":
        return yaml.safe_load(text)
    if fmt == "toml":
        return tomllib.loads(text)
    raise ValueError(f"Unsupported configuration format: {fmt!r}")


# --------------------------
# Optimizer configuration
# --------------------------

DEFAULT_LEAF_NAMES = ("Android.mk", "CleanSpec.mk")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Accepts a datetime, an ISO-8601 string or epoch seconds."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, bool):
        raise ValueError(f"Invalid timestamp: {value!r}")
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value)
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.strip())
        except ValueError:
            raise ValueError(f"Invalid timestamp: {value!r}") from None
    raise ValueError(f"Invalid timestamp: {value!r}")


@dataclass(frozen=True)
class OptimizerConfig:
    """Process-wide settings, fixed before any command is optimized."""
    shell_date_timestamp: Optional[datetime] = None
    leaf_names: Tuple[str, ...] = DEFAULT_LEAF_NAMES
    index_root: Optional[str] = None
    index_enabled: bool = True
    shell: str = "/bin/sh"
    log_level: str = "WARNING"

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> 'OptimizerConfig':
        if data is None:
            return cls()
        if not isinstance(data, Mapping):
            raise ValueError(f"Configuration must be a mapping, not {type(data).__name__}")
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown configuration keys: {', '.join(unknown)}")
        kwargs = dict(data)
        if "shell_date_timestamp" in kwargs:
            kwargs["shell_date_timestamp"] = parse_timestamp(kwargs["shell_date_timestamp"])
        if "leaf_names" in kwargs:
            names = kwargs["leaf_names"]
            if isinstance(names, str) or not all(isinstance(n, str) for n in names or ()):
                raise ValueError("leaf_names must be a list of file names")
            kwargs["leaf_names"] = tuple(names)
        if "index_enabled" in kwargs and not isinstance(kwargs["index_enabled"], bool):
            raise ValueError("index_enabled must be a boolean")
        for key in ("index_root", "shell", "log_level"):
            if key in kwargs and kwargs[key] is not None and not isinstance(kwargs[key], str):
                raise ValueError(f"{key} must be a string")
        return cls(**kwargs)

    def with_overrides(self, **changes: Any) -> 'OptimizerConfig':
        """Returns a copy with the non-None keyword values applied."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})

    def index_options(self) -> dict:
        return {"root": self.index_root, "enabled": self.index_enabled}


def load_config(path: str | os.PathLike) -> OptimizerConfig:
    fmt = detect_format(path)
    if fmt is None:
        raise ValueError(f"Unsupported configuration file type: {path}")
    data = deserialize(Path(path).read_bytes(), fmt=fmt)
    return OptimizerConfig.from_mapping(data)


__all__ = [
    "DEFAULT_LEAF_NAMES",
    "OptimizerConfig",
    "detect_format",
    "deserialize",
    "load_config",
    "parse_timestamp",
]
