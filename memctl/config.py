from __future__ import annotations

import json
import os
import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import Any

DEFAULT_CONFIG_PATH = Path("~/.config/memctl/config.json").expanduser()
DEFAULT_API_URL = "http://127.0.0.1:3000/api/v1"

CONFIG_ENV_OVERRIDES = {
    "api_url": "MEMCTL_API_URL",
    "token": "MEMCTL_TOKEN",
    "org": "MEMCTL_ORG",
    "project": "MEMCTL_PROJECT",
    "rate_limit": "MEMCTL_RATE_LIMIT",
    "request_timeout_s": "MEMCTL_REQUEST_TIMEOUT_S",
    "git_timeout_s": "MEMCTL_GIT_TIMEOUT_S",
    "claim_ttl_minutes": "MEMCTL_CLAIM_TTL_MINUTES",
    "capacity_warn_ratio": "MEMCTL_CAPACITY_WARN_RATIO",
    "block_on_soft_full": "MEMCTL_BLOCK_ON_SOFT_FULL",
    "auto_extract_git": "MEMCTL_AUTO_EXTRACT_GIT",
    "stale_session_hours": "MEMCTL_STALE_SESSION_HOURS",
}

_INT_KEYS = {"rate_limit", "claim_ttl_minutes", "stale_session_hours"}
_FLOAT_KEYS = {"request_timeout_s", "git_timeout_s", "capacity_warn_ratio"}
_BOOL_KEYS = {"block_on_soft_full", "auto_extract_git"}


def get_config_path(path: Path | None = None) -> Path:
    candidate = path or Path(os.getenv("MEMCTL_CONFIG", DEFAULT_CONFIG_PATH))
    return candidate.expanduser()


def read_config_file(path: Path | None = None) -> dict[str, Any]:
    config_path = get_config_path(path)
    if not config_path.exists():
        return {}
    raw = config_path.read_text()
    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError("invalid config json") from exc
    if not isinstance(data, dict):
        raise ValueError("config must be an object")
    return data


def write_config_file(data: dict[str, Any], path: Path | None = None) -> Path:
    config_path = get_config_path(path)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(json.dumps(data, ensure_ascii=False, indent=2) + "\n")
    return config_path


def get_env_overrides() -> dict[str, str]:
    overrides: dict[str, str] = {}
    for key, env_var in CONFIG_ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value is not None:
            overrides[key] = value
    return overrides


@dataclass
class MemctlConfig:
    api_url: str = DEFAULT_API_URL
    token: str | None = None
    org: str | None = None
    project: str | None = None
    # Write-class calls allowed per session process.
    rate_limit: int = 500
    request_timeout_s: float = 10.0
    git_timeout_s: float = 3.0
    claim_ttl_minutes: int = 30
    capacity_warn_ratio: float = 0.8
    block_on_soft_full: bool = False
    auto_extract_git: bool = True
    stale_session_hours: int = 2


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    if value.lower() in {"1", "true", "yes", "on"}:
        return True
    if value.lower() in {"0", "false", "off", "no"}:
        return False
    return default


def _parse_int(value: object, default: int, *, key: str) -> int:
    if value is None:
        return default
    try:
        parsed = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid int for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default
    if parsed <= 0:
        warnings.warn(f"Invalid int for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default
    return parsed


def _parse_float(value: object, default: float, *, key: str) -> float:
    if value is None:
        return default
    try:
        parsed = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid float for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default
    if parsed <= 0:
        warnings.warn(f"Invalid float for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default
    return parsed


def _coerce_bool(value: object, default: bool, *, key: str) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        return _parse_bool(value, default)
    warnings.warn(f"Invalid bool for {key}: {value!r}", RuntimeWarning, stacklevel=2)
    return default


def load_config(path: Path | None = None) -> MemctlConfig:
    cfg = MemctlConfig()
    config_path = get_config_path(path)
    if config_path.exists():
        try:
            data = json.loads(config_path.read_text())
        except json.JSONDecodeError:
            data = {}
        if isinstance(data, dict):
            cfg = _apply_dict(cfg, data)
    cfg = _apply_dict(cfg, get_env_overrides())
    return cfg


def _apply_dict(cfg: MemctlConfig, data: dict[str, Any]) -> MemctlConfig:
    for key, value in data.items():
        if not hasattr(cfg, key):
            continue
        if key in _INT_KEYS:
            setattr(cfg, key, _parse_int(value, getattr(cfg, key), key=key))
            continue
        if key in _FLOAT_KEYS:
            setattr(cfg, key, _parse_float(value, getattr(cfg, key), key=key))
            continue
        if key in _BOOL_KEYS:
            setattr(cfg, key, _coerce_bool(value, getattr(cfg, key), key=key))
            continue
        if value is None:
            setattr(cfg, key, None)
            continue
        if not isinstance(value, str):
            warnings.warn(f"Invalid string for {key}: {value!r}", RuntimeWarning, stacklevel=2)
            continue
        setattr(cfg, key, value.strip() or None)
    if not cfg.api_url:
        cfg.api_url = DEFAULT_API_URL
    return cfg
