# utils.py

import os
import re
import yaml
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

# --- Custom Exceptions ---
# Lookups of unknown rule or opportunity ids return None/False instead of raising.
class ConfigError(Exception):
    """Custom exception for configuration file errors."""
    pass

class ValidationError(Exception):
    """Raised when a rule or opportunity definition is malformed."""
    pass

class ConditionError(ValidationError):
    """Raised when a rule condition cannot be parsed or evaluated."""
    pass


# --- Time helpers ---
def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Accepts datetimes, epoch seconds or ISO-8601 strings (a trailing 'Z' is allowed)
    and returns a timezone-aware UTC datetime. Naive values are assumed to be UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)):
        dt = datetime.fromtimestamp(value, tz=timezone.utc)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            raise ValidationError(f"Invalid timestamp: {value!r}")
    else:
        raise ValidationError(f"Invalid timestamp: {value!r}")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


# --- Currency-like values ---
_LEADING_NUMBER = re.compile(r"^-?\d+(?:\.\d+)?")

def parse_numeric(value: Any) -> Optional[float]:
    """
    Parses loosely typed currency strings. '$', ',' and whitespace are stripped and the
    leading number is read, so '$500-2000' is 500 and '$1,000-5,000' is 1000.
    Returns None when no number can be read.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = re.sub(r"[$,\s]", "", str(value))
    match = _LEADING_NUMBER.match(text)
    if not match:
        return None
    return float(match.group(0))

def parse_decimal(value: Any) -> Optional[Decimal]:
    """Decimal variant of parse_numeric, used for summing execution costs."""
    if value is None or isinstance(value, bool):
        return None
    text = re.sub(r"[$,\s]", "", str(value))
    match = _LEADING_NUMBER.match(text)
    if not match:
        return None
    try:
        return Decimal(match.group(0))
    except InvalidOperation:
        return None


# --- Configuration Loading ---
ENGINE_DEFAULTS = {
    'tick_interval_s': 30.0,
    'max_concurrent_executions': 5,
    'cooldown_s': 3600.0,
    'condition_mode': 'all',
    'complete_opportunity_on_success': False,
    'execution_timeout_s': None,
}

def validate_config(config):
    """Validates the structure of the engine config file."""
    if not isinstance(config, dict):
        raise ConfigError("CRITICAL ERROR: config.yaml must contain a mapping at the top level.")
    if "engine" not in config or not isinstance(config["engine"], dict):
        raise ConfigError("CRITICAL ERROR: Missing or invalid section 'engine' in config.yaml.")

    engine = config['engine']
    required_keys = ['tick_interval_s', 'max_concurrent_executions', 'cooldown_s']
    for key in required_keys:
        if key not in engine:
            raise ConfigError(f"CRITICAL ERROR: Missing required key '{key}' in 'engine'.")

    try:
        if float(engine['tick_interval_s']) <= 0:
            raise ConfigError("CRITICAL ERROR: 'engine.tick_interval_s' must be positive.")
        if int(engine['max_concurrent_executions']) < 1:
            raise ConfigError("CRITICAL ERROR: 'engine.max_concurrent_executions' must be at least 1.")
        if float(engine['cooldown_s']) < 0:
            raise ConfigError("CRITICAL ERROR: 'engine.cooldown_s' cannot be negative.")
    except (TypeError, ValueError) as e:
        raise ConfigError(f"CRITICAL ERROR: Non-numeric value in 'engine' section: {e}")

    mode = engine.get('condition_mode', 'all')
    if mode not in ('all', 'any'):
        raise ConfigError(f"CRITICAL ERROR: 'engine.condition_mode' must be 'all' or 'any', got {mode!r}.")

    executor_mode = (config.get('executor') or {}).get('mode', 'dry_run')
    if executor_mode != 'dry_run':
        raise ConfigError(f"CRITICAL ERROR: Unsupported executor mode {executor_mode!r}.")

    for section in ('rules', 'opportunities'):
        if config.get(section) is not None and not isinstance(config[section], list):
            raise ConfigError(f"CRITICAL ERROR: Section '{section}' must be a list.")

    return True

def engine_settings(config: Dict[str, Any]) -> Dict[str, Any]:
    """Returns the 'engine' section with defaults filled in."""
    settings = dict(ENGINE_DEFAULTS)
    settings.update((config or {}).get('engine') or {})
    return settings

def load_config(filepath: str = None):
    """Loads and validates the configuration file."""
    if filepath is None:
        base_dir = os.path.dirname(os.path.abspath(__file__))  # project root
        filepath = os.path.join(base_dir, "config", "config.yaml")
    try:
        with open(filepath, 'r') as f:
            config = yaml.safe_load(f)
        validate_config(config)
        return config
    except FileNotFoundError:
        raise ConfigError(f"CRITICAL ERROR: Configuration file '{filepath}' not found.")
    except yaml.YAMLError as e:
        raise ConfigError(f"CRITICAL ERROR: Could not decode '{filepath}'. YAML error: {e}")
