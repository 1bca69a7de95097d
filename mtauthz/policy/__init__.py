"""
Condition-based policy engine.
"""

from .types import (
    PolicyEffect,
    PolicyPriority,
    PolicyRule,
    PolicyDefinition,
    CompiledRule,
    CompiledPolicy,
    PolicyEvaluationContext,
    PolicyEvaluationResult,
    PolicyProvider,
)
from .conditions import (
    ConditionType,
    FieldRoot,
    FieldOperator,
    IPOperator,
    PolicyCondition,
    FieldCondition,
    TimeCondition,
    IPCondition,
    CustomCondition,
    evaluate_condition,
    evaluate_conditions,
    field_condition,
    time_condition,
    ip_condition,
    ip_in,
    ip_not_in,
    custom_condition,
    condition_from_dict,
)
from .compiler import get_priority_value, compile_policy, compile_policies, merge_policies
from .engine import PolicyEngine, create_policy_engine
from .builder import PolicyBuilder, RuleBuilder, policy, rule, allow_policy, deny_policy

__all__ = [
    "PolicyEffect",
    "PolicyPriority",
    "PolicyRule",
    "PolicyDefinition",
    "CompiledRule",
    "CompiledPolicy",
    "PolicyEvaluationContext",
    "PolicyEvaluationResult",
    "PolicyProvider",
    "ConditionType",
    "FieldRoot",
    "FieldOperator",
    "IPOperator",
    "PolicyCondition",
    "FieldCondition",
    "TimeCondition",
    "IPCondition",
    "CustomCondition",
    "evaluate_condition",
    "evaluate_conditions",
    "field_condition",
    "time_condition",
    "ip_condition",
    "ip_in",
    "ip_not_in",
    "custom_condition",
    "condition_from_dict",
    "get_priority_value",
    "compile_policy",
    "compile_policies",
    "merge_policies",
    "PolicyEngine",
    "create_policy_engine",
    "PolicyBuilder",
    "RuleBuilder",
    "policy",
    "rule",
    "allow_policy",
    "deny_policy",
]
