"""Project-level .env settings reader/writer, translated into PipelineConfig."""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path

from texmd.config import PipelineConfig, ReferenceMode

logger = logging.getLogger(__name__)

# Project root .env (next to pyproject.toml)
_ENV_FILE = Path(__file__).resolve().parent.parent / ".env"
DEFAULT_PORT = 8770
DEFAULT_HOST = "localhost"

# .env key -> boolean PipelineConfig field
BOOL_KEYS: dict[str, str] = {
    "TEXMD_CONVERT_ENVIRONMENTS": "convert_environments",
    "TEXMD_CONVERT_EQNARRAY": "convert_legacy_array_env",
    "TEXMD_REMOVE_LABELS": "remove_labels",
    "TEXMD_EXPAND_MACROS": "expand_macros",
    "TEXMD_CONVERT_CITATIONS": "convert_citations",
    "TEXMD_STRIP_SIZING": "strip_sizing_commands",
    "TEXMD_UNIFY_PROSE": "unify_prose_command",
    "TEXMD_NUMBER_EQUATIONS": "number_equations",
}

# Non-boolean keys accepted by `texmd config set`
VALUE_KEYS = (
    "TEXMD_EXTRA_ENVIRONMENTS",
    "TEXMD_REFERENCE_MODE",
    "TEXMD_LABEL_BASE",
    "TEXMD_PORT",
    "TEXMD_WORKERS",
    "TEXMD_LOG_LEVEL",
)

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}
_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def env_path() -> Path:
    """Return the .env file path."""
    return _ENV_FILE


def read_config() -> dict[str, str]:
    """Read all KEY=value lines from the project .env file."""
    config: dict[str, str] = {}
    if not _ENV_FILE.exists():
        return config
    for line in _ENV_FILE.read_text().splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        match = re.match(r"^([A-Z_][A-Z0-9_]*)=(.*)$", line)
        if match:
            key = match.group(1)
            value = match.group(2).strip("\"'")
            config[key] = value
    return config


def write_key(key: str, value: str) -> None:
    """Set a single key in the .env file (create if missing, update if exists)."""
    lines: list[str] = []
    found = False
    if _ENV_FILE.exists():
        for line in _ENV_FILE.read_text().splitlines():
            if re.match(rf"^{re.escape(key)}=", line):
                lines.append(f"{key}={value}")
                found = True
            else:
                lines.append(line)
    if not found:
        lines.append(f"{key}={value}")
    _ENV_FILE.write_text("\n".join(lines) + "\n")


def get_key(key: str) -> str | None:
    """Get a single key value, checking .env then os.environ."""
    config = read_config()
    if key in config:
        return config[key]
    return os.environ.get(key) or None


def get_port(default: int = DEFAULT_PORT) -> int:
    """Resolve TEXMD_PORT from config/env, with validation and fallback."""
    raw = get_key("TEXMD_PORT")
    if raw is None:
        return default
    try:
        port = int(raw)
    except ValueError:
        return default
    if not (1 <= port <= 65535):
        return default
    return port


def get_service_url(host: str = DEFAULT_HOST) -> str:
    """Return the local service base URL using the configured TEXMD_PORT."""
    return f"http://{host}:{get_port()}"


def known_keys() -> list[str]:
    return sorted([*BOOL_KEYS, *VALUE_KEYS])


def validate_setting(key: str, value: str) -> str | None:
    """Return why ``key=value`` cannot be stored, or None when it can."""
    if key not in BOOL_KEYS and key not in VALUE_KEYS:
        return f"Unknown setting {key} (known: {', '.join(known_keys())})"
    raw = value.strip()
    if key in BOOL_KEYS:
        if raw.lower() not in _TRUE | _FALSE:
            return f"{key} expects a boolean (true/false)"
    elif key == "TEXMD_REFERENCE_MODE":
        modes = [m.value for m in ReferenceMode]
        if raw.lower() not in modes:
            return f"{key} must be one of: {', '.join(modes)}"
    elif key == "TEXMD_LOG_LEVEL":
        if raw.upper() not in _LOG_LEVELS:
            return f"{key} must be one of: {', '.join(sorted(_LOG_LEVELS))}"
    elif key in ("TEXMD_LABEL_BASE", "TEXMD_PORT", "TEXMD_WORKERS"):
        try:
            number = int(raw)
        except ValueError:
            return f"{key} expects an integer"
        if key == "TEXMD_PORT" and not (1 <= number <= 65535):
            return f"{key} must be between 1 and 65535"
        if key == "TEXMD_WORKERS" and number < 1:
            return f"{key} must be at least 1"
    return None


def _parse_bool(key: str, raw: str, default: bool) -> bool:
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    logger.warning("Ignoring %s=%r (expected a boolean)", key, raw)
    return default


def load_pipeline_config(base: PipelineConfig | None = None) -> PipelineConfig:
    """Build a PipelineConfig from TEXMD_* settings.

    Unset keys keep the values of ``base``; malformed values are logged
    and ignored.
    """
    config = base or PipelineConfig()
    changes: dict[str, object] = {}

    for key, field_name in BOOL_KEYS.items():
        raw = get_key(key)
        if raw is not None:
            changes[field_name] = _parse_bool(key, raw, getattr(config, field_name))

    raw = get_key("TEXMD_EXTRA_ENVIRONMENTS")
    if raw is not None:
        changes["extra_environments"] = frozenset(
            name.strip() for name in raw.split(",") if name.strip()
        )

    raw = get_key("TEXMD_REFERENCE_MODE")
    if raw is not None:
        try:
            changes["reference_mode"] = ReferenceMode(raw.strip().lower())
        except ValueError:
            logger.warning("Ignoring TEXMD_REFERENCE_MODE=%r", raw)

    raw = get_key("TEXMD_LABEL_BASE")
    if raw is not None:
        try:
            changes["label_counter_base"] = int(raw)
        except ValueError:
            logger.warning("Ignoring TEXMD_LABEL_BASE=%r (expected an integer)", raw)

    return config.with_changes(**changes) if changes else config
