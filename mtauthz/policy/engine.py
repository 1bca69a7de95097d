"""
Policy evaluation engine.
"""

import itertools
import logging
import threading
from typing import Dict, Iterable, List, Optional, Tuple

from ..permission.utils import matches_any
from .compiler import compile_policy
from .types import (
    CompiledPolicy,
    CompiledRule,
    PolicyDefinition,
    PolicyEffect,
    PolicyEvaluationContext,
    PolicyEvaluationResult,
)


logger = logging.getLogger(__name__)


class PolicyEngine:
    """
    Holds compiled policies and evaluates them against a context.

    Evaluation order is deterministic. Rules of every applicable policy are
    walked by:
      1. policy priority, descending
      2. rule priority, descending
      3. deny before allow
      4. policy registration order
      5. rule declaration order
    The first rule whose permission patterns cover the requested code and
    whose conditions all pass decides the effect. No match means deny.
    """

    def __init__(self):
        self._policies: Dict[str, PolicyDefinition] = {}
        self._compiled: Dict[str, CompiledPolicy] = {}
        self._order: Dict[str, int] = {}
        self._counter = itertools.count()
        self._lock = threading.RLock()

    def add_policy(self, policy: PolicyDefinition) -> CompiledPolicy:
        """
        Compile and register a policy, replacing any policy with the same id.

        Raises:
            PolicyValidationError: If the policy does not compile
        """
        compiled = compile_policy(policy)
        with self._lock:
            self._policies[policy.id] = policy
            self._compiled[policy.id] = compiled
            if policy.id not in self._order:
                self._order[policy.id] = next(self._counter)
        logger.debug(f"Policy added: {policy.id} ({len(compiled.rules)} rules)")
        return compiled

    def add_policies(self, policies: Iterable[PolicyDefinition]) -> None:
        for policy in policies:
            self.add_policy(policy)

    def remove_policy(self, policy_id: str) -> bool:
        with self._lock:
            if policy_id not in self._policies:
                return False
            del self._policies[policy_id]
            del self._compiled[policy_id]
            del self._order[policy_id]
        logger.debug(f"Policy removed: {policy_id}")
        return True

    def get_policy(self, policy_id: str) -> Optional[PolicyDefinition]:
        with self._lock:
            return self._policies.get(policy_id)

    def list_policies(self, tenant_id: Optional[str] = None) -> List[PolicyDefinition]:
        """List policies in registration order, optionally those applying to a tenant."""
        with self._lock:
            policies = sorted(self._policies.values(), key=lambda p: self._order[p.id])
        if tenant_id is None:
            return policies
        return [p for p in policies if p.applies_to(tenant_id)]

    def compile(self, policy: PolicyDefinition) -> CompiledPolicy:
        return compile_policy(policy)

    def clear(self) -> None:
        with self._lock:
            self._policies.clear()
            self._compiled.clear()
            self._order.clear()

    def __len__(self) -> int:
        return len(self._policies)

    def _ordered_rules(self, tenant_id: str,
                       extra: Iterable[CompiledPolicy]) -> List[Tuple[CompiledPolicy, CompiledRule]]:
        with self._lock:
            candidates = [(p, self._order[p.id]) for p in self._compiled.values()]
            base = max(self._order.values(), default=-1) + 1
        candidates.extend((p, base + i) for i, p in enumerate(extra))

        entries = []
        for policy, seq in candidates:
            if not policy.applies_to(tenant_id):
                continue
            for rule in policy.rules:
                key = (
                    -policy.priority,
                    -rule.priority,
                    0 if rule.effect is PolicyEffect.DENY else 1,
                    seq,
                    rule.index,
                )
                entries.append((key, policy, rule))
        entries.sort(key=lambda entry: entry[0])
        return [(policy, rule) for _, policy, rule in entries]

    async def evaluate(self, context: PolicyEvaluationContext,
                       extra_policies: Optional[Iterable[PolicyDefinition]] = None) -> PolicyEvaluationResult:
        """
        Evaluate registered policies (plus any extra ones, e.g. from a
        PolicyProvider) for the context's permission code.

        Extra policies that fail to compile are logged and skipped.
        """
        extra = self._compile_extra(extra_policies or ())
        path: List[str] = []
        seen = set()

        for policy, rule in self._ordered_rules(context.tenant.id, extra):
            if policy.id not in seen:
                seen.add(policy.id)
                path.append(f"policy:{policy.id}")

            if not matches_any(context.permission, rule.permissions):
                continue
            path.append(f"rule:{policy.id}:{rule.index}")

            try:
                passed = await rule.evaluate(context)
            except Exception as e:
                logger.error(f"Rule {policy.id}:{rule.index} failed to evaluate: {e}")
                passed = False

            if passed:
                return PolicyEvaluationResult(
                    effect=rule.effect,
                    matched_policy=policy.id,
                    matched_rule=rule.index,
                    evaluation_path=path,
                )

        return PolicyEvaluationResult(effect=PolicyEffect.DENY, evaluation_path=path)

    @staticmethod
    def _compile_extra(policies: Iterable[PolicyDefinition]) -> List[CompiledPolicy]:
        compiled = []
        for policy in policies:
            try:
                compiled.append(compile_policy(policy))
            except Exception as e:
                logger.error(f"Skipping invalid policy {getattr(policy, 'id', policy)!r}: {e}")
        return compiled

    async def is_allowed(self, context: PolicyEvaluationContext) -> bool:
        return (await self.evaluate(context)).allowed

    def collect_permissions(self, tenant_id: str, effect: PolicyEffect = PolicyEffect.ALLOW) -> set:
        """Union of the permission patterns of every applicable rule with the given effect."""
        permissions = set()
        for _, rule in self._ordered_rules(tenant_id, ()):
            if rule.effect is effect:
                permissions.update(rule.permissions)
        return permissions


def create_policy_engine(policies: Optional[Iterable[PolicyDefinition]] = None) -> PolicyEngine:
    engine = PolicyEngine()
    if policies:
        engine.add_policies(policies)
    return engine
