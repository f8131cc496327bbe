import json
import os
import re
from typing import Any, Dict

from jsonschema import ValidationError, validate as jsonschema_validate

from upgrade_core.models import Settings


DEFAULT_CONFIG_FILE = '/etc/docker-unattended-upgrade/config.json'

CONFIG_SCHEMA = {
    'type': 'object',
    'properties': {
        'probe_entrypoint': {'type': 'string', 'minLength': 1},
        'probe_name_prefix': {'type': 'string', 'minLength': 1},
        'rate_limit_threshold': {'type': 'integer', 'minimum': 0},
        'decision_policy': {'type': 'string', 'enum': ['sequential', 'blocked-wins']},
        'restart_timeout': {'type': ['integer', 'null'], 'minimum': 1},
        'metrics_textfile': {'type': ['string', 'null']},
        'webhook_url': {'type': ['string', 'null']},
        'probers': {'type': 'array', 'items': {'type': 'string'}, 'minItems': 1},
    },
    'additionalProperties': False,
}


def resolve_env_vars(config_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively resolve ${VAR} environment variables in a dict."""
    resolved: Dict[str, Any] = {}

    def replace_env_var(match):
        var_name = match.group(1)
        return os.getenv(var_name, match.group(0))

    for key, value in config_dict.items():
        if isinstance(value, str):
            resolved[key] = re.sub(r"\$\{([^}]+)\}", replace_env_var, value)
        elif isinstance(value, dict):
            resolved[key] = resolve_env_vars(value)
        else:
            resolved[key] = value
    return resolved


def _env_int(name: str, default):
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def load_settings(config_file: str, logger) -> Settings:
    """Load settings from an optional JSON file, then apply environment overrides.

    Raises ValidationError / ValueError on an invalid file.
    """
    config: Dict[str, Any] = {}
    if config_file and os.path.exists(config_file):
        with open(config_file, 'r') as f:
            config = json.load(f)
        try:
            jsonschema_validate(config, CONFIG_SCHEMA)
        except ValidationError as e:
            logger.debug(f"Configuration validation error: {e.message}")
            raise
        config = resolve_env_vars(config)
        logger.debug(f"Loaded configuration from {config_file}")
    else:
        logger.debug("No configuration file found; using defaults")

    settings = Settings(**config)
    settings.probe_entrypoint = os.getenv('PROBE_ENTRYPOINT', settings.probe_entrypoint)
    settings.decision_policy = os.getenv('DECISION_POLICY', settings.decision_policy)
    settings.rate_limit_threshold = _env_int('RATE_LIMIT_THRESHOLD', settings.rate_limit_threshold)
    settings.restart_timeout = _env_int('RESTART_TIMEOUT', settings.restart_timeout)
    settings.metrics_textfile = os.getenv('METRICS_TEXTFILE', settings.metrics_textfile)
    settings.webhook_url = os.getenv('WEBHOOK_URL', settings.webhook_url)
    return settings
