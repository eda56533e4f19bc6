from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml
from dotenv import dotenv_values

from .logging_utils import parse_log_level
from .services import DEFAULT_PROMOTION_SETTLE_SECONDS, clamp_settle_seconds

CONFIG_FILENAME = "golden-axe.yml"
DOTENV_FILENAME = ".env"
ENV_PREFIX = "GOLDEN_AXE_"
DEFAULT_STATE_FILE = ".golden-axe/titles.sqlite3"
DEFAULT_WEBHOOK_HOST = "0.0.0.0"
DEFAULT_WEBHOOK_PORT = 8080
DEFAULT_REQUEST_TIMEOUT_SECONDS = 10.0
DEFAULT_POLL_TIMEOUT_SECONDS = 30

CONFIG_KEYS = (
    "token",
    "mode",
    "domain",
    "debug_chat",
    "log",
    "log_file",
    "state_file",
    "webhook_host",
    "webhook_port",
    "promotion_settle_seconds",
    "request_timeout_seconds",
    "poll_timeout_seconds",
)


class ConfigError(Exception):
    """Raised when golden-axe configuration is missing or invalid."""


class BotMode(str, Enum):
    POLL = "poll"
    WEBHOOK = "webhook"


@dataclass(frozen=True)
class BotConfig:
    root: Path
    token: str
    mode: BotMode
    domain: Optional[str]
    debug_chat: Optional[int]
    log_level: int
    log_file: Optional[Path]
    state_file: Path
    webhook_host: str
    webhook_port: int
    promotion_settle_seconds: float
    request_timeout_seconds: float
    poll_timeout_seconds: int

    @classmethod
    def from_raw(cls, *, root: Path, raw: Mapping[str, Any]) -> "BotConfig":
        cfg: Mapping[str, Any] = raw if isinstance(raw, Mapping) else {}

        token = _optional_str(cfg.get("token"))
        if token is None:
            raise ConfigError(f"{ENV_PREFIX}TOKEN must be set")

        mode_raw = str(cfg.get("mode") or BotMode.POLL.value).strip().lower()
        try:
            mode = BotMode(mode_raw)
        except ValueError as exc:
            raise ConfigError("mode must be 'poll' or 'webhook'") from exc

        domain = _optional_str(cfg.get("domain"))
        if domain is not None:
            domain = domain.rstrip("/")
            for scheme in ("https://", "http://"):
                if domain.startswith(scheme):
                    domain = domain[len(scheme) :]
        if mode is BotMode.WEBHOOK and not domain:
            raise ConfigError(f"{ENV_PREFIX}DOMAIN is required in webhook mode")

        debug_chat_raw = cfg.get("debug_chat")
        debug_chat: Optional[int] = None
        if debug_chat_raw is not None and str(debug_chat_raw).strip():
            try:
                debug_chat = int(str(debug_chat_raw).strip())
            except ValueError as exc:
                raise ConfigError("debug_chat must be an integer chat id") from exc

        try:
            log_level = parse_log_level(cfg.get("log"), default=logging.INFO)
        except ValueError as exc:
            raise ConfigError(str(exc)) from exc

        log_file_value = _optional_str(cfg.get("log_file"))
        log_file = _resolve_path(root, log_file_value) if log_file_value else None

        state_file_value = cfg.get("state_file", DEFAULT_STATE_FILE)
        if state_file_value is None:
            state_file_value = DEFAULT_STATE_FILE
        if not isinstance(state_file_value, str) or not state_file_value.strip():
            raise ConfigError("state_file must be a string path")

        webhook_host = _optional_str(cfg.get("webhook_host")) or DEFAULT_WEBHOOK_HOST
        webhook_port = _parse_int(
            cfg.get("webhook_port"), default=DEFAULT_WEBHOOK_PORT, key="webhook_port"
        )
        if not 0 < webhook_port < 65536:
            raise ConfigError("webhook_port must be between 1 and 65535")

        settle = _parse_float(
            cfg.get("promotion_settle_seconds"),
            default=DEFAULT_PROMOTION_SETTLE_SECONDS,
            key="promotion_settle_seconds",
        )
        request_timeout = _parse_float(
            cfg.get("request_timeout_seconds"),
            default=DEFAULT_REQUEST_TIMEOUT_SECONDS,
            key="request_timeout_seconds",
        )
        if request_timeout <= 0:
            raise ConfigError("request_timeout_seconds must be > 0")
        poll_timeout = _parse_int(
            cfg.get("poll_timeout_seconds"),
            default=DEFAULT_POLL_TIMEOUT_SECONDS,
            key="poll_timeout_seconds",
        )
        if poll_timeout < 0:
            raise ConfigError("poll_timeout_seconds must be >= 0")

        return cls(
            root=root,
            token=token,
            mode=mode,
            domain=domain,
            debug_chat=debug_chat,
            log_level=log_level,
            log_file=log_file,
            state_file=_resolve_path(root, state_file_value.strip()),
            webhook_host=webhook_host,
            webhook_port=webhook_port,
            promotion_settle_seconds=clamp_settle_seconds(settle),
            request_timeout_seconds=request_timeout,
            poll_timeout_seconds=poll_timeout,
        )

    @property
    def webhook_url_base(self) -> Optional[str]:
        return f"https://{self.domain}" if self.domain else None


def load_config(root: Path, env: Optional[Mapping[str, str]] = None) -> BotConfig:
    """Merge ``golden-axe.yml``, ``.env`` and ``GOLDEN_AXE_*`` variables.

    Later sources win: the YAML file is overridden by ``.env`` entries,
    which are overridden by the process environment.
    """
    root = root.resolve()
    merged: dict[str, Any] = dict(_load_yaml_dict(root / CONFIG_FILENAME))
    dotenv_path = root / DOTENV_FILENAME
    if dotenv_path.exists():
        merged.update(_prefixed(dotenv_values(dotenv_path)))
    merged.update(_prefixed(os.environ if env is None else env))
    return BotConfig.from_raw(root=root, raw=merged)


def _load_yaml_dict(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"Failed to read config file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Config file must be a mapping: {path}")
    unknown = sorted(str(key) for key in data if key not in CONFIG_KEYS)
    if unknown:
        raise ConfigError(f"Unknown keys in {path}: {', '.join(unknown)}")
    return data


def _prefixed(values: Mapping[str, Optional[str]]) -> dict[str, str]:
    result: dict[str, str] = {}
    for name, value in values.items():
        if value is None or not name.startswith(ENV_PREFIX):
            continue
        key = name[len(ENV_PREFIX) :].lower()
        if key in CONFIG_KEYS:
            result[key] = value
    return result


def _resolve_path(root: Path, value: str) -> Path:
    path = Path(value).expanduser()
    return path if path.is_absolute() else root / path


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _parse_int(value: Any, *, default: int, key: str) -> int:
    if value is None or (isinstance(value, str) and not value.strip()):
        return default
    if isinstance(value, bool):
        raise ConfigError(f"{key} must be an integer")
    try:
        return int(str(value).strip())
    except ValueError as exc:
        raise ConfigError(f"{key} must be an integer") from exc


def _parse_float(value: Any, *, default: float, key: str) -> float:
    if value is None or (isinstance(value, str) and not value.strip()):
        return default
    if isinstance(value, bool):
        raise ConfigError(f"{key} must be a number")
    try:
        return float(str(value).strip())
    except ValueError as exc:
        raise ConfigError(f"{key} must be a number") from exc
