"""Configuration for textstream.

Config discovery (first match wins):
  1. ``--config`` flag
  2. ``./textstream.yaml``
  3. ``~/.config/textstream/config.yaml``
  4. Built-in defaults
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from textstream.retry import RetryPolicy
from textstream.types import DeliveryMode, TypingMode

_logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Config data structures
# ---------------------------------------------------------------------------

@dataclass
class StreamerConfig:
    """Everything a ``TextStreamer`` needs besides its callbacks."""

    endpoint: str = "http://localhost:5173/api/llm/openai/text2text/streaming"
    typing_mode: TypingMode = TypingMode.WORD
    mode: DeliveryMode = DeliveryMode.ANIMATED
    speed_ms: float = 80
    timeout: float = 120.0
    headers: dict[str, str] = field(default_factory=dict)
    retry: RetryPolicy = field(default_factory=RetryPolicy)


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

_SEARCH_PATHS = [
    Path("./textstream.yaml"),
    Path.home() / ".config" / "textstream" / "config.yaml",
]


def _parse_enum(enum_cls: Any, raw: Any, default: Any) -> Any:
    if raw is None:
        return default
    try:
        return enum_cls(raw)
    except ValueError:
        _logger.warning(
            "Invalid %s %r, using %s", enum_cls.__name__, raw, default.value,
        )
        return default


def _parse_retry(raw: dict[str, Any] | None) -> RetryPolicy:
    if not raw:
        return RetryPolicy()
    defaults = RetryPolicy()
    try:
        return RetryPolicy(
            base_delay_ms=float(raw.get("base_delay_ms", defaults.base_delay_ms)),
            max_delay_ms=float(raw.get("max_delay_ms", defaults.max_delay_ms)),
            max_attempts=int(raw.get("max_attempts", defaults.max_attempts)),
        )
    except (TypeError, ValueError) as e:
        _logger.warning("Invalid retry config (%s), using defaults", e)
        return defaults


def parse_config(raw: dict[str, Any]) -> StreamerConfig:
    """Build a ``StreamerConfig`` from an already-loaded mapping."""
    defaults = StreamerConfig()
    return StreamerConfig(
        endpoint=raw.get("endpoint", defaults.endpoint),
        typing_mode=_parse_enum(TypingMode, raw.get("typing_mode"), defaults.typing_mode),
        mode=_parse_enum(DeliveryMode, raw.get("mode"), defaults.mode),
        speed_ms=float(raw.get("speed_ms", defaults.speed_ms)),
        timeout=float(raw.get("timeout", defaults.timeout)),
        headers={str(k): str(v) for k, v in (raw.get("headers") or {}).items()},
        retry=_parse_retry(raw.get("retry")),
    )


def load_config(path: str | Path | None = None) -> StreamerConfig:
    """Load configuration from YAML.

    Parameters
    ----------
    path:
        Explicit config path.  If *None*, search default locations.
    """
    config_path: Path | None = None

    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            _logger.warning("Config file not found: %s, using defaults", path)
            return StreamerConfig()
    else:
        for candidate in _SEARCH_PATHS:
            if candidate.exists():
                config_path = candidate
                break

    if config_path is None:
        _logger.info("No config file found, using defaults")
        return StreamerConfig()

    _logger.info("Loading config from %s", config_path)
    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    return parse_config(raw)
