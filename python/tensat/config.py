"""
Global defaults for saturation runs.

The limits default to the ones used by egg's runner and can be overridden with environment variables.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

__all__ = ["ITER_LIMIT", "LOG_LEVEL", "NODE_LIMIT", "TIME_LIMIT", "Budget"]


def _env_number(name: str, default: float, cast: type[int] | type[float]) -> float:
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return cast(value)
    except ValueError as err:
        msg = f"Environment variable {name} must be a number, got {value!r}"
        raise ValueError(msg) from err


ITER_LIMIT = int(_env_number("TENSAT_ITER_LIMIT", 30, int))
NODE_LIMIT = int(_env_number("TENSAT_NODE_LIMIT", 10_000, int))
# In seconds
TIME_LIMIT = float(_env_number("TENSAT_TIME_LIMIT", 5.0, float))
LOG_LEVEL = os.environ.get("TENSAT_LOG_LEVEL", "WARNING")


@dataclass(frozen=True)
class Budget:
    """
    Limits checked at every round boundary of a saturation run. `None` disables a limit.
    """

    iter_limit: int | None = ITER_LIMIT
    node_limit: int | None = NODE_LIMIT
    time_limit: float | None = TIME_LIMIT

    def __post_init__(self) -> None:
        for name in ("iter_limit", "node_limit", "time_limit"):
            value = getattr(self, name)
            if value is not None and value < 0:
                msg = f"{name} must be non-negative, got {value}"
                raise ValueError(msg)

    @classmethod
    def unbounded(cls) -> Budget:
        return cls(None, None, None)
