"""
Configuration module for mtauthz.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

from ..util.config import (
    ENV_PREFIX,
    load_config_file,
    load_config_from_env,
    merge_configs,
    normalize_config_key,
    to_timedelta,
)


BINDING_SUBJECT_TYPES = ("user", "group", "service")


class CheckStrategy(Enum):
    """How MTAuthz.check_permission combines the resolver and the policy engine."""
    RESOLVER = "resolver"  # permission resolver only
    POLICY = "policy"      # policy engine only
    ALL = "all"            # both must allow
    ANY = "any"            # either may allow; an explicit policy deny still wins


@dataclass
class Config:
    """Configuration for an MTAuthz instance"""
    rbac_cache_ttl: timedelta = field(default_factory=lambda: timedelta(seconds=60))
    permission_cache_ttl: timedelta = field(default_factory=lambda: timedelta(0))
    check_strategy: CheckStrategy = CheckStrategy.RESOLVER
    default_subject_type: str = "user"
    register_system_roles: bool = True

    def __post_init__(self):
        self.rbac_cache_ttl = to_timedelta(self.rbac_cache_ttl)
        self.permission_cache_ttl = to_timedelta(self.permission_cache_ttl)
        if isinstance(self.check_strategy, str):
            self.check_strategy = CheckStrategy(self.check_strategy.lower())
        self.default_subject_type = str(getattr(self.default_subject_type, "value", self.default_subject_type)).lower()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], *overrides: Optional[Mapping[str, Any]]) -> "Config":
        """
        Create configuration from one or more mappings. Later mappings override
        earlier ones; unknown keys are ignored.
        """
        known = {f for f in cls.__dataclass_fields__}
        merged = merge_configs(*(
            {normalize_config_key(key): value for key, value in source.items()}
            for source in (data,) + overrides if source
        ))
        values = {key: value for key, value in merged.items() if key in known}
        if isinstance(values.get('register_system_roles'), str):
            values['register_system_roles'] = values['register_system_roles'].lower() in ('true', '1', 'yes', 'on')
        return cls(**values)

    @classmethod
    def from_env(cls, prefix: str = ENV_PREFIX,
                 defaults: Optional[Mapping[str, Any]] = None) -> "Config":
        """Create configuration from environment variables, over optional defaults"""
        return cls.from_dict(defaults or {}, load_config_from_env(prefix))

    @classmethod
    def from_file(cls, file_path: Union[str, Path]) -> "Config":
        """Create configuration from a JSON or YAML file, optionally nested under ``mtauthz``."""
        data = load_config_file(file_path)
        if isinstance(data.get('mtauthz'), Mapping):
            data = data['mtauthz']
        return cls.from_dict(data)

    def validate(self) -> bool:
        """Validate the configuration"""
        if self.rbac_cache_ttl < timedelta(0):
            raise ValueError("rbac_cache_ttl must not be negative")
        if self.permission_cache_ttl < timedelta(0):
            raise ValueError("permission_cache_ttl must not be negative")
        if not isinstance(self.check_strategy, CheckStrategy):
            raise ValueError(f"check_strategy must be one of: {[s.value for s in CheckStrategy]}")
        if self.default_subject_type not in BINDING_SUBJECT_TYPES:
            raise ValueError(f"default_subject_type must be one of: {list(BINDING_SUBJECT_TYPES)}")
        return True

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            'rbac_cache_ttl': self.rbac_cache_ttl.total_seconds(),
            'permission_cache_ttl': self.permission_cache_ttl.total_seconds(),
            'check_strategy': self.check_strategy.value,
            'default_subject_type': self.default_subject_type,
            'register_system_roles': self.register_system_roles
        }
