"""
Policy compilation.

Compiling validates a definition and produces a read-only CompiledPolicy
whose rules carry a pre-bound evaluator for their conditions.
"""

from collections.abc import Mapping
from typing import Any, Iterable, List, Optional, Sequence, Tuple, Union

from ..errors import PolicyValidationError
from ..permission.utils import is_valid_permission_pattern
from .conditions import PolicyCondition, condition_from_dict, evaluate_conditions
from .types import (
    PRIORITY_VALUES,
    CompiledPolicy,
    CompiledRule,
    PolicyDefinition,
    PolicyEffect,
    PolicyPriority,
    PolicyRule,
)


def get_priority_value(priority: Union[PolicyPriority, str, None]) -> int:
    """Map a named priority to its numeric value; unknown names map to normal."""
    if isinstance(priority, PolicyPriority):
        return PRIORITY_VALUES[priority]
    try:
        return PRIORITY_VALUES[PolicyPriority(priority)]
    except ValueError:
        return PRIORITY_VALUES[PolicyPriority.NORMAL]


def _coerce_effect(effect: Any, policy_id: str, index: int) -> PolicyEffect:
    if isinstance(effect, PolicyEffect):
        return effect
    try:
        return PolicyEffect(effect)
    except ValueError:
        raise PolicyValidationError(
            f"Policy {policy_id} rule {index}: effect must be 'allow' or 'deny', got {effect!r}",
            field="effect",
        )


def _coerce_conditions(conditions: Optional[Sequence[Any]], policy_id: str,
                       index: int) -> Tuple[PolicyCondition, ...]:
    compiled = []
    for condition in conditions or ():
        if isinstance(condition, PolicyCondition):
            compiled.append(condition)
        elif isinstance(condition, Mapping):
            compiled.append(condition_from_dict(condition))
        else:
            raise PolicyValidationError(
                f"Policy {policy_id} rule {index}: unsupported condition {condition!r}",
                field="conditions",
            )
    return tuple(compiled)


def _make_evaluator(conditions: Tuple[PolicyCondition, ...]):
    async def evaluate(context) -> bool:
        return await evaluate_conditions(conditions, context)
    return evaluate


def compile_rule(rule: PolicyRule, index: int, policy: PolicyDefinition) -> CompiledRule:
    if not isinstance(rule, PolicyRule):
        raise PolicyValidationError(f"Policy {policy.id} rule {index} must be a PolicyRule",
                                    field="rules")

    if not rule.permissions or isinstance(rule.permissions, str):
        raise PolicyValidationError(
            f"Policy {policy.id} rule {index}: permissions must be a non-empty list",
            field="permissions",
        )
    for pattern in rule.permissions:
        if not is_valid_permission_pattern(pattern):
            raise PolicyValidationError(
                f"Policy {policy.id} rule {index}: invalid permission pattern {pattern!r}",
                field="permissions",
            )

    effect = _coerce_effect(rule.effect, policy.id, index)
    conditions = _coerce_conditions(rule.conditions, policy.id, index)
    priority = rule.priority if rule.priority is not None else policy.priority

    return CompiledRule(
        permissions=frozenset(rule.permissions),
        effect=effect,
        conditions=conditions,
        priority=get_priority_value(priority),
        index=index,
        evaluate=_make_evaluator(conditions),
        description=rule.description,
    )


def compile_policy(policy: PolicyDefinition) -> CompiledPolicy:
    """
    Validate and compile a policy definition.

    Rules keep their declared index; ordering across policies is decided by
    the engine at evaluation time.

    Raises:
        PolicyValidationError: On a missing id, a rule without permissions,
            an invalid effect, an invalid permission pattern or an
            unsupported condition
    """
    if not isinstance(policy, PolicyDefinition):
        raise PolicyValidationError("Policy must be a PolicyDefinition", field="policy")
    if not isinstance(policy.id, str) or not policy.id:
        raise PolicyValidationError("Policy id must be a non-empty string", field="id")
    if not isinstance(policy.rules, (list, tuple)):
        raise PolicyValidationError(f"Policy {policy.id}: rules must be a list", field="rules")

    rules = tuple(compile_rule(rule, i, policy) for i, rule in enumerate(policy.rules))

    return CompiledPolicy(
        id=policy.id,
        name=policy.name or policy.id,
        rules=rules,
        priority=get_priority_value(policy.priority),
        enabled=policy.enabled,
        tenant_id=policy.tenant_id,
    )


def compile_policies(policies: Iterable[PolicyDefinition]) -> List[CompiledPolicy]:
    """Compile several policies, highest priority first."""
    compiled = []
    for policy in policies:
        try:
            compiled.append(compile_policy(policy))
        except PolicyValidationError as e:
            raise PolicyValidationError(
                f"Failed to compile policy {getattr(policy, 'id', None)}: {e.message}",
                field="policy",
                cause=e,
            )
    # sorted() is stable so equal priorities keep input order
    return sorted(compiled, key=lambda p: -p.priority)


def merge_policies(policies: Sequence[PolicyDefinition], policy_id: str,
                   name: str = "") -> PolicyDefinition:
    """
    Merge several policies into one carrying every rule and the highest
    priority among them.

    Each rule that did not set its own priority is pinned to the priority of
    the policy it came from, so merging does not reorder evaluation.
    """
    if not policies:
        raise PolicyValidationError("Cannot merge an empty list of policies", field="policies")
    if not policy_id:
        raise PolicyValidationError("Merged policy id must be a non-empty string", field="id")

    rules: List[PolicyRule] = []
    highest = PolicyPriority.LOW
    for policy in policies:
        if get_priority_value(policy.priority) > get_priority_value(highest):
            highest = policy.priority
        for rule in policy.rules:
            rules.append(PolicyRule(
                permissions=list(rule.permissions),
                effect=rule.effect,
                conditions=list(rule.conditions),
                priority=rule.priority if rule.priority is not None else policy.priority,
                description=rule.description,
            ))

    return PolicyDefinition(id=policy_id, name=name or policy_id, rules=rules,
                            priority=highest, enabled=True)
