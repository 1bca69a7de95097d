"""
Fluent builders for policy definitions.

    policy = (PolicyBuilder("office-hours")
              .for_tenant("t1")
              .priority("high")
              .rule(lambda r: r.permissions("report:read").allow().where_equals("subject.attributes.dept", "finance"))
              .deny("report:delete")
              .build())
"""

from typing import Any, Callable, Dict, List, Optional, Union

from ..errors import PolicyValidationError
from .conditions import FieldCondition, FieldOperator, PolicyCondition, condition_from_dict
from .types import PolicyDefinition, PolicyEffect, PolicyPriority, PolicyRule


def _coerce_priority(priority: Union[PolicyPriority, str]) -> PolicyPriority:
    if isinstance(priority, PolicyPriority):
        return priority
    try:
        return PolicyPriority(priority)
    except ValueError:
        valid = ", ".join(p.value for p in PolicyPriority)
        raise PolicyValidationError(f"Priority must be one of: {valid}", field="priority")


def _check_permissions(permissions) -> List[str]:
    if not permissions:
        raise PolicyValidationError("At least one permission is required", field="permissions")
    for permission in permissions:
        if not isinstance(permission, str) or not permission:
            raise PolicyValidationError("Permissions must be non-empty strings", field="permissions")
    return list(permissions)


class RuleBuilder:
    """Builds a single PolicyRule."""

    def __init__(self):
        self._permissions: List[str] = []
        self._effect = PolicyEffect.ALLOW
        self._conditions: List[PolicyCondition] = []
        self._priority: Optional[PolicyPriority] = None
        self._description = ""

    def permissions(self, *permissions: str) -> 'RuleBuilder':
        self._permissions = _check_permissions(permissions)
        return self

    def allow(self) -> 'RuleBuilder':
        self._effect = PolicyEffect.ALLOW
        return self

    def deny(self) -> 'RuleBuilder':
        self._effect = PolicyEffect.DENY
        return self

    def when(self, condition: Union[PolicyCondition, Dict[str, Any]]) -> 'RuleBuilder':
        self._conditions.append(condition_from_dict(condition))
        return self

    def where_equals(self, field_path: str, value: Any) -> 'RuleBuilder':
        return self.when(FieldCondition(field=field_path, operator=FieldOperator.EQ, value=value))

    def where_contains(self, field_path: str, value: Any) -> 'RuleBuilder':
        return self.when(FieldCondition(field=field_path, operator=FieldOperator.CONTAINS, value=value))

    def where_in(self, field_path: str, values: List[Any]) -> 'RuleBuilder':
        if not isinstance(values, (list, tuple)):
            raise PolicyValidationError("where_in requires a list of values", field="value")
        return self.when(FieldCondition(field=field_path, operator=FieldOperator.IN, value=list(values)))

    def priority(self, priority: Union[PolicyPriority, str]) -> 'RuleBuilder':
        self._priority = _coerce_priority(priority)
        return self

    def describe(self, description: str) -> 'RuleBuilder':
        self._description = description
        return self

    def build(self) -> PolicyRule:
        if not self._permissions:
            raise PolicyValidationError("A rule needs at least one permission", field="permissions")
        return PolicyRule(
            permissions=list(self._permissions),
            effect=self._effect,
            conditions=list(self._conditions),
            priority=self._priority,
            description=self._description,
        )


class PolicyBuilder:
    """Builds a PolicyDefinition."""

    def __init__(self, policy_id: str):
        if not isinstance(policy_id, str) or not policy_id:
            raise PolicyValidationError("Policy id must be a non-empty string", field="id")
        self._id = policy_id
        self._name = policy_id
        self._description = ""
        self._rules: List[PolicyRule] = []
        self._priority = PolicyPriority.NORMAL
        self._enabled = True
        self._tenant_id: Optional[str] = None
        self._metadata: Dict[str, Any] = {}

    def name(self, name: str) -> 'PolicyBuilder':
        self._name = name
        return self

    def description(self, description: str) -> 'PolicyBuilder':
        self._description = description
        return self

    def priority(self, priority: Union[PolicyPriority, str]) -> 'PolicyBuilder':
        self._priority = _coerce_priority(priority)
        return self

    def enable(self) -> 'PolicyBuilder':
        self._enabled = True
        return self

    def disable(self) -> 'PolicyBuilder':
        self._enabled = False
        return self

    def for_tenant(self, tenant_id: Optional[str]) -> 'PolicyBuilder':
        self._tenant_id = tenant_id or None
        return self

    def add_rule(self, rule: PolicyRule) -> 'PolicyBuilder':
        if not isinstance(rule, PolicyRule):
            raise PolicyValidationError("add_rule expects a PolicyRule", field="rules")
        _check_permissions(rule.permissions)
        self._rules.append(rule)
        return self

    def rule(self, build: Callable[[RuleBuilder], RuleBuilder]) -> 'PolicyBuilder':
        return self.add_rule(build(RuleBuilder()).build())

    def allow(self, *permissions: str) -> 'PolicyBuilder':
        return self.add_rule(PolicyRule(permissions=_check_permissions(permissions),
                                        effect=PolicyEffect.ALLOW))

    def deny(self, *permissions: str) -> 'PolicyBuilder':
        return self.add_rule(PolicyRule(permissions=_check_permissions(permissions),
                                        effect=PolicyEffect.DENY))

    def metadata(self, **metadata: Any) -> 'PolicyBuilder':
        self._metadata.update(metadata)
        return self

    def build(self) -> PolicyDefinition:
        return PolicyDefinition(
            id=self._id,
            name=self._name,
            description=self._description,
            rules=list(self._rules),
            priority=self._priority,
            enabled=self._enabled,
            tenant_id=self._tenant_id,
            metadata=dict(self._metadata),
        )


def policy(policy_id: str) -> PolicyBuilder:
    return PolicyBuilder(policy_id)


def rule() -> RuleBuilder:
    return RuleBuilder()


def allow_policy(policy_id: str, permissions: List[str],
                 tenant_id: Optional[str] = None) -> PolicyDefinition:
    """Single-rule allow policy at normal priority."""
    return PolicyBuilder(policy_id).allow(*permissions).for_tenant(tenant_id).build()


def deny_policy(policy_id: str, permissions: List[str],
                tenant_id: Optional[str] = None) -> PolicyDefinition:
    """Single-rule deny policy at critical priority."""
    return (PolicyBuilder(policy_id)
            .deny(*permissions)
            .priority(PolicyPriority.CRITICAL)
            .for_tenant(tenant_id)
            .build())
