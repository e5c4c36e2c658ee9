"""
Environment-variable helpers shared by the env-driven configuration
dataclasses (`ModelParams.from_env`, `ScenarioConfig.from_env`).

All helpers fall back to the default when the variable is unset or malformed.
"""

from __future__ import annotations

import os

ENV_PREFIX = "RAMET_"


def env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(ENV_PREFIX + name, str(default)))
    except Exception:
        return float(default)


def env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(ENV_PREFIX + name, str(default)))
    except Exception:
        return int(default)


def env_bool(name: str, default: bool = False) -> bool:
    try:
        return int(os.getenv(ENV_PREFIX + name, "1" if default else "0")) == 1
    except Exception:
        return bool(default)


def env_str(name: str, default: str) -> str:
    val = os.getenv(ENV_PREFIX + name)
    if val is None or not val.strip():
        return default
    return val.strip()


def env_range(name: str, default: tuple[float, float]) -> tuple[float, float]:
    """Parse "lo,hi" into a float pair; falls back to default on any problem."""
    raw = os.getenv(ENV_PREFIX + name, "").strip()
    if not raw:
        return (float(default[0]), float(default[1]))
    try:
        lo, hi = (float(x) for x in raw.split(","))
    except Exception:
        return (float(default[0]), float(default[1]))
    return (lo, hi)


def diag_enabled(diag: bool | None = None) -> bool:
    """Explicit flag wins; otherwise RAMET_DIAG (0/1, default 0)."""
    if diag is not None:
        return bool(diag)
    return env_bool("DIAG", False)
