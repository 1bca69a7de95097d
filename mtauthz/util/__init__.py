"""
Utility modules for mtauthz.
"""

from .config import (
    load_config_from_env,
    get_config_value,
    parse_duration_string,
    to_timedelta,
    merge_configs,
    load_config_file,
    policy_from_dict,
    load_policies_file,
)

__all__ = [
    "load_config_from_env",
    "get_config_value",
    "parse_duration_string",
    "to_timedelta",
    "merge_configs",
    "load_config_file",
    "policy_from_dict",
    "load_policies_file",
]
