"""
Policy data model for the condition-based policy engine.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Tuple

from ..core.types import RequestContext, SubjectContext, TenantContext


class PolicyEffect(Enum):
    ALLOW = "allow"
    DENY = "deny"


class PolicyPriority(Enum):
    """Named priority levels; higher numeric value is evaluated first."""
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def numeric(self) -> int:
        return PRIORITY_VALUES[self]


PRIORITY_VALUES: Dict[PolicyPriority, int] = {
    PolicyPriority.LOW: 10,
    PolicyPriority.NORMAL: 50,
    PolicyPriority.HIGH: 100,
    PolicyPriority.CRITICAL: 1000,
}


@dataclass
class PolicyRule:
    """
    A single allow/deny rule.

    Conditions are AND-combined. A rule without an explicit priority inherits
    the priority of its policy.
    """
    permissions: List[str]
    effect: PolicyEffect = PolicyEffect.ALLOW
    conditions: List[Any] = field(default_factory=list)
    priority: Optional[PolicyPriority] = None
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation. Custom conditions are omitted."""
        conditions = []
        for condition in self.conditions:
            to_dict = getattr(condition, 'to_dict', None)
            if callable(to_dict):
                data = to_dict()
                if data is not None:
                    conditions.append(data)
        result = {
            'permissions': list(self.permissions),
            'effect': self.effect.value,
            'conditions': conditions,
            'description': self.description
        }
        if self.priority is not None:
            result['priority'] = self.priority.value
        return result


@dataclass
class PolicyDefinition:
    """A named, prioritized set of rules, global when tenant_id is None."""
    id: str
    rules: List[PolicyRule] = field(default_factory=list)
    name: str = ""
    description: str = ""
    priority: PolicyPriority = PolicyPriority.NORMAL
    enabled: bool = True
    tenant_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def applies_to(self, tenant_id: str) -> bool:
        return self.tenant_id is None or self.tenant_id == tenant_id

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'rules': [rule.to_dict() for rule in self.rules],
            'priority': self.priority.value,
            'enabled': self.enabled,
            'tenant_id': self.tenant_id,
            'metadata': self.metadata
        }


RuleEvaluator = Callable[['PolicyEvaluationContext'], Any]


@dataclass(frozen=True)
class CompiledRule:
    permissions: FrozenSet[str]
    effect: PolicyEffect
    conditions: Tuple[Any, ...]
    priority: int
    index: int
    evaluate: RuleEvaluator = field(compare=False, repr=False)
    description: str = ""


@dataclass(frozen=True)
class CompiledPolicy:
    """Read-only, evaluation-ready form of a PolicyDefinition."""
    id: str
    name: str
    rules: Tuple[CompiledRule, ...]
    priority: int
    enabled: bool
    tenant_id: Optional[str] = None

    def applies_to(self, tenant_id: str) -> bool:
        return self.enabled and (self.tenant_id is None or self.tenant_id == tenant_id)


@dataclass
class PolicyEvaluationContext:
    """Everything a condition may read."""
    tenant: TenantContext
    subject: SubjectContext
    permission: str
    request: RequestContext = field(default_factory=RequestContext)
    resource: Optional[Dict[str, Any]] = None
    environment: Optional[Dict[str, Any]] = None

    @property
    def resource_name(self) -> str:
        return self.permission.split(":", 1)[0]


@dataclass
class PolicyEvaluationResult:
    effect: PolicyEffect
    matched_policy: Optional[str] = None
    matched_rule: Optional[int] = None
    evaluation_path: List[str] = field(default_factory=list)

    @property
    def allowed(self) -> bool:
        return self.effect is PolicyEffect.ALLOW

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            'effect': self.effect.value,
            'matched_policy': self.matched_policy,
            'matched_rule': self.matched_rule,
            'evaluation_path': list(self.evaluation_path)
        }


class PolicyProvider(ABC):
    """
    Source of externally managed policies, evaluated together with the
    policies registered on the engine.
    """

    @abstractmethod
    async def get_policies(self, tenant_id: str, subject_id: str) -> List[PolicyDefinition]:
        """Return the policies that apply to a subject in a tenant."""
        pass

    @abstractmethod
    async def invalidate(self, tenant_id: str, subject_id: Optional[str] = None) -> None:
        """Drop any cached policies for a tenant or a single subject."""
        pass
