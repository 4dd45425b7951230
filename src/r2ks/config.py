"""Run configuration, optionally loaded from YAML."""

import numbers
import os
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

supported_modes = ["threads", "processes"]

_int_fields = ("pivot", "num_workers")
_bool_fields = ("two_tailed", "include_self", "show_progress", "strict")


@dataclass
class R2KSConfig:
    filename: Optional[str] = None
    pivot: int = 0
    two_tailed: bool = False
    num_workers: int = 1
    mode: str = "threads"
    include_self: bool = True
    show_progress: bool = True
    strict: bool = False
    poll_interval: float = 1.0

    def validate(self) -> "R2KSConfig":
        """Check value types and ranges; returns ``self`` for chaining."""
        for name in _int_fields:
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, numbers.Integral):
                raise ValueError(f"{name} must be an integer, got {value!r}")
        for name in _bool_fields:
            value = getattr(self, name)
            if not isinstance(value, bool):
                raise ValueError(f"{name} must be true or false, got {value!r}")
        if self.filename is not None and not isinstance(self.filename, (str, os.PathLike)):
            raise ValueError(f"filename must be a path, got {self.filename!r}")
        if not isinstance(self.mode, str):
            raise ValueError(f"mode must be a string, got {self.mode!r}")
        if isinstance(self.poll_interval, bool) or not isinstance(self.poll_interval, numbers.Real):
            raise ValueError(f"poll_interval must be a number, got {self.poll_interval!r}")
        if self.pivot < 0:
            raise ValueError(f"pivot must be non-negative, got {self.pivot}")
        if self.num_workers < 1:
            raise ValueError(f"num_workers must be >= 1, got {self.num_workers}")
        if self.mode not in supported_modes:
            raise ValueError(f"Unsupported mode: {self.mode}; supported: {supported_modes}")
        if self.poll_interval <= 0:
            raise ValueError(f"poll_interval must be positive, got {self.poll_interval}")
        return self

    def update(self, **overrides: Any) -> "R2KSConfig":
        """Copy with every non-None override applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def load_config(config_path: Union[str, os.PathLike]) -> R2KSConfig:
    """Load a YAML mapping of ``R2KSConfig`` fields."""
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r") as f:
        raw = yaml.safe_load(f) or {}

    if not isinstance(raw, dict):
        raise ValueError(f"Configuration must be a mapping, got {type(raw).__name__}")

    known = {f.name for f in fields(R2KSConfig)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ValueError(f"Unknown configuration keys: {unknown}")

    return R2KSConfig(**raw).validate()
