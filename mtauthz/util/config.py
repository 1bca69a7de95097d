"""
Configuration utilities for mtauthz.
Provides environment lookups, duration parsing and JSON/YAML loading for
configuration and declarative policy files.
"""

import json
import os
import re
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import yaml

from ..errors import PolicyValidationError
from ..policy.conditions import condition_from_dict
from ..policy.types import PolicyDefinition, PolicyEffect, PolicyPriority, PolicyRule


ENV_PREFIX = "MTAUTHZ_"


def load_config_from_env(prefix: str = ENV_PREFIX) -> Dict[str, str]:
    """
    Load configuration from environment variables with given prefix.
    """
    config = {}

    for key, value in os.environ.items():
        if key.startswith(prefix):
            config[key[len(prefix):].lower()] = value

    return config


def get_config_value(key: str, default: Any = None,
                     cast_type: Optional[type] = None,
                     env_prefix: str = ENV_PREFIX) -> Any:
    """
    Get configuration value from environment or return default.
    Optionally cast to specified type; a failed cast returns the default.
    """
    value = os.environ.get(f"{env_prefix}{key.upper()}", default)

    if value is None or cast_type is None:
        return value

    try:
        if cast_type == bool:
            if isinstance(value, str):
                return value.lower() in ('true', '1', 'yes', 'on')
            return bool(value)
        elif cast_type == list:
            if isinstance(value, str):
                return [item.strip() for item in value.split(',') if item.strip()]
            return list(value) if value else []
        elif cast_type == timedelta:
            return to_timedelta(value)
        else:
            return cast_type(value)
    except (ValueError, TypeError):
        return default


def parse_duration_string(duration_str: str) -> timedelta:
    """
    Parse duration string like '30s', '5m', '2h', '1d' into timedelta.
    """
    if not isinstance(duration_str, str):
        raise ValueError("Duration must be a string")

    duration_str = duration_str.strip().lower()

    match = re.match(r'^(\d+(?:\.\d+)?)\s*(ms|[smhd])$', duration_str)
    if not match:
        raise ValueError(f"Invalid duration format: {duration_str}")

    value, unit = match.groups()
    value = float(value)

    if unit == 'ms':
        return timedelta(milliseconds=value)
    elif unit == 's':
        return timedelta(seconds=value)
    elif unit == 'm':
        return timedelta(minutes=value)
    elif unit == 'h':
        return timedelta(hours=value)
    return timedelta(days=value)


def to_timedelta(value: Union[timedelta, int, float, str]) -> timedelta:
    """Accept a timedelta, a number of seconds or a duration string."""
    if isinstance(value, timedelta):
        return value
    if isinstance(value, bool):
        raise ValueError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return timedelta(seconds=value)
    if isinstance(value, str) and re.match(r'^\s*\d+(\.\d+)?\s*$', value):
        return timedelta(seconds=float(value))
    return parse_duration_string(value)


def merge_configs(*configs: Dict[str, Any]) -> Dict[str, Any]:
    """
    Merge multiple configuration dictionaries.
    Later configs override earlier ones.
    """
    result = {}

    for config in configs:
        if isinstance(config, dict):
            result.update(config)

    return result


def normalize_config_key(key: str) -> str:
    """Normalize configuration key to standard format."""
    return key.lower().replace('-', '_')


def load_config_file(file_path: Union[str, Path]) -> Dict[str, Any]:
    """Load configuration from a file (JSON or YAML)."""
    path = Path(file_path)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {file_path}")

    file_ext = path.suffix.lower()

    with open(path, 'r', encoding='utf-8') as f:
        if file_ext == '.json':
            data = json.load(f)
        elif file_ext in ('.yaml', '.yml'):
            data = yaml.safe_load(f)
        else:
            raise ValueError(f"Unsupported configuration file format: {file_ext}")

    return data or {}


def rule_from_dict(data: Mapping[str, Any]) -> PolicyRule:
    try:
        effect = PolicyEffect(data.get('effect', 'allow'))
        priority = data.get('priority')
        return PolicyRule(
            permissions=list(data.get('permissions') or []),
            effect=effect,
            conditions=[condition_from_dict(c) for c in data.get('conditions') or []],
            priority=PolicyPriority(priority) if priority is not None else None,
            description=data.get('description', "")
        )
    except ValueError as e:
        raise PolicyValidationError(f"Invalid policy rule: {e}") from e


def policy_from_dict(data: Mapping[str, Any]) -> PolicyDefinition:
    """
    Build a PolicyDefinition from its dictionary form, the inverse of
    PolicyDefinition.to_dict(). Custom conditions cannot be expressed this way.
    """
    if not isinstance(data, Mapping) or not data.get('id'):
        raise PolicyValidationError("Policy definition requires an id")
    try:
        priority = PolicyPriority(data.get('priority', 'normal'))
    except ValueError as e:
        raise PolicyValidationError(f"Invalid priority for policy {data['id']}: {e}") from e

    return PolicyDefinition(
        id=data['id'],
        rules=[rule_from_dict(r) for r in data.get('rules') or []],
        name=data.get('name', ""),
        description=data.get('description', ""),
        priority=priority,
        enabled=bool(data.get('enabled', True)),
        tenant_id=data.get('tenant_id', data.get('tenantId')),
        metadata=dict(data.get('metadata') or {})
    )


def load_policies_file(file_path: Union[str, Path]) -> List[PolicyDefinition]:
    """
    Load policy definitions from a JSON or YAML file.

    The file holds either a list of policies or a mapping with a
    ``policies`` key.
    """
    data = load_config_file(file_path)
    if isinstance(data, Mapping):
        data = data.get('policies', [])
    if not isinstance(data, list):
        raise PolicyValidationError(f"Policy file must contain a list of policies: {file_path}")
    return [policy_from_dict(item) for item in data]
