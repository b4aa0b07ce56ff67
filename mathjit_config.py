"""Runtime settings for the evaluator, with environment overrides."""

import os
from dataclasses import dataclass, fields, replace

from mathjit_errors import ConfigError

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


@dataclass(frozen=True)
class Settings:
    max_call_depth: int = 200
    max_sum_iterations: int = 10_000_000
    opt_level: int = 2
    verbose: bool = False
    timings: bool = False

    def __post_init__(self):
        if self.max_call_depth < 1:
            raise ConfigError(f"max_call_depth must be positive, got {self.max_call_depth}")
        if self.max_sum_iterations < 1:
            raise ConfigError(f"max_sum_iterations must be positive, got {self.max_sum_iterations}")
        if not 0 <= self.opt_level <= 3:
            raise ConfigError(f"opt_level must be between 0 and 3, got {self.opt_level}")

    @classmethod
    def from_env(cls, environ=None) -> "Settings":
        environ = os.environ if environ is None else environ
        values = {}
        for field in fields(cls):
            raw = environ.get(f"MATHJIT_{field.name.upper()}")
            if raw is not None:
                values[field.name] = _convert(field.name, field.type, raw)
        return cls(**values)

    def override(self, **changes) -> "Settings":
        return replace(self, **{k: v for k, v in changes.items() if v is not None})


def _convert(name: str, kind, raw: str):
    if kind in (bool, "bool"):
        value = raw.strip().lower()
        if value in _TRUE:
            return True
        if value in _FALSE:
            return False
        raise ConfigError(f"MATHJIT_{name.upper()}: expected a boolean, got {raw!r}")
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"MATHJIT_{name.upper()}: expected an integer, got {raw!r}") from None
