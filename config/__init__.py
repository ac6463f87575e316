"""Configuration management."""
import os
import yaml
from pathlib import Path

_config = None
_DEFAULT_CONFIG = Path(__file__).parent / "default_config.yaml"


def load_config(path=None):
    """Load config from YAML, merging defaults with optional overrides."""
    global _config

    with open(_DEFAULT_CONFIG) as f:
        config = yaml.safe_load(f)

    if path and Path(path).exists():
        with open(path) as f:
            overrides = yaml.safe_load(f) or {}
        config = _deep_merge(config, overrides)

    # Environment variable overrides; only numeric settings are coerced
    env_map = {
        "ALERT_MONITOR_DB_PATH": (("database", "path"), str),
        "ALERT_MONITOR_TICK_INTERVAL": (("orchestrator", "interval_seconds"), _number),
        "ALERT_MONITOR_LOG_LEVEL": (("logging", "level"), str),
        "ALERT_MONITOR_COOLDOWN_MINUTES": (("cooldown", "default_minutes"), _number),
        "ALERT_MONITOR_WHATSAPP_API_KEY": (("channels", "whatsapp", "api_key"), str),
    }
    for env_key, (config_path, cast) in env_map.items():
        val = os.environ.get(env_key)
        if val:
            d = config
            for k in config_path[:-1]:
                d = d.setdefault(k, {})
            d[config_path[-1]] = cast(val)

    _validate_config(config)
    _config = config
    return config


def get_config():
    """Return cached config, loading defaults if needed."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def _deep_merge(base, override):
    """Recursively merge override into base dict."""
    result = base.copy()
    for key, val in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(val, dict):
            result[key] = _deep_merge(result[key], val)
        else:
            result[key] = val
    return result


def _validate_config(config):
    """Basic config validation."""
    required_sections = ["database", "orchestrator", "cooldown", "dispatch", "channels",
                         "realtime", "logging", "web"]
    for section in required_sections:
        if section not in config:
            raise ValueError(f"Missing required config section: {section}")

    positive = [
        ("orchestrator", "interval_seconds"),
        ("orchestrator", "lookback_minutes"),
        ("orchestrator", "max_parallel"),
        ("orchestrator", "tick_deadline_seconds"),
        ("dispatch", "channel_timeout"),
        ("realtime", "buffer_size"),
    ]
    for section, key in positive:
        value = config[section].get(key)
        if not isinstance(value, (int, float)) or value <= 0:
            raise ValueError(f"{section}.{key} must be a positive number, got {value!r}")

    minutes = config["cooldown"].get("default_minutes", 0)
    if not isinstance(minutes, (int, float)) or minutes < 0:
        raise ValueError(f"cooldown.default_minutes must be >= 0, got {minutes!r}")


def _number(val):
    """Parse an env value as int, then float; leave it as text for validation to reject."""
    try:
        return int(val)
    except ValueError:
        try:
            return float(val)
        except ValueError:
            return val
