# sake/core/config.py

import copy
import json
import logging
from importlib import resources
from pathlib import Path
from typing import Any

import jsonschema
from jsonschema import Draft7Validator

from sake.core.io import atomic_write_text

SCHEMA: dict[str, Any] = json.loads(
    resources.files("sake.schema").joinpath("config.v1.schema.json").read_text(encoding="utf-8")
)

log = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "sake" / "config.json"

_default_properties = Draft7Validator.VALIDATORS["properties"]


def _set_defaults(validator, properties, instance, schema):
    """
    jsonschema hook: fill in each property's 'default' before running the
    stock Draft 7 `properties` check, so nested sections get their defaults too.
    """
    if not isinstance(instance, dict):
        return
    for prop, subschema in properties.items():
        if "default" in subschema:
            instance.setdefault(prop, copy.deepcopy(subschema["default"]))

    yield from _default_properties(validator, properties, instance, schema)


_DefaultingValidator = jsonschema.validators.extend(Draft7Validator, {"properties": _set_defaults})


def _deep_update(base: dict[str, Any], updates: dict[str, Any]) -> None:
    for k, v in updates.items():
        if isinstance(v, dict) and isinstance(base.get(k), dict):
            _deep_update(base[k], v)
        else:
            base[k] = v


def default_config() -> dict[str, Any]:
    config: dict[str, Any] = {}
    for _ in _DefaultingValidator(SCHEMA).iter_errors(config):
        pass
    return config


def load_config(config_path: Path = DEFAULT_CONFIG_PATH) -> dict[str, Any]:
    """
    Load the user's config file on top of the schema defaults.

    A missing file means defaults only. A file that is not JSON or fails the
    schema is reported and ignored rather than stopping the command.
    """
    config = default_config()
    config_path = Path(config_path).expanduser()

    if not config_path.is_file():
        log.debug("No config at %s; using defaults.", config_path)
        return config

    validator = Draft7Validator(SCHEMA)
    try:
        user_config = json.loads(config_path.read_text(encoding="utf-8"))
        validator.validate(user_config)
    except json.JSONDecodeError as e:
        log.error("Error parsing %s: %s", config_path, e)
        log.warning("Using default configuration.")
        return config
    except jsonschema.ValidationError as e:
        log.error("Configuration validation error in %s: %s", config_path, e.message)
        log.warning("Using default configuration.")
        return config

    _deep_update(config, user_config)
    validator.validate(config)
    log.debug("Configuration loaded from %s", config_path)
    return config


def generate_default_config(config_path: Path = DEFAULT_CONFIG_PATH) -> bool:
    """Write the defaults to *config_path*, overwriting whatever is there."""
    try:
        atomic_write_text(config_path, json.dumps(default_config(), indent=4) + "\n")
    except OSError as e:
        log.error("Failed to write default config to %s: %s", config_path, e)
        return False
    log.info("Default configuration written to %s", config_path)
    return True
