"""
Policy conditions.

Each condition kind is its own type with an async ``evaluate(context)``.
Evaluation never raises: a malformed condition, a missing field, a type
mismatch, an invalid regex or CIDR, or a failing custom predicate all
evaluate to False.
"""

import ipaddress
import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, is_dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

from ..common.utils import ensure_utc, maybe_await, parse_iso_datetime
from ..errors import PolicyValidationError


logger = logging.getLogger(__name__)


class ConditionType(Enum):
    FIELD = "field"
    TIME = "time"
    IP = "ip"
    CUSTOM = "custom"


class FieldRoot(Enum):
    """Roots a field path may start from."""
    SUBJECT = "subject"
    TENANT = "tenant"
    RESOURCE = "resource"
    REQUEST = "request"
    ENVIRONMENT = "environment"


class FieldOperator(Enum):
    EQ = "eq"
    NEQ = "neq"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    IN = "in"
    NOT_IN = "notIn"
    CONTAINS = "contains"
    STARTS_WITH = "startsWith"
    ENDS_WITH = "endsWith"
    MATCHES = "matches"
    EXISTS = "exists"
    NOT_EXISTS = "notExists"


class IPOperator(Enum):
    EQ = "eq"
    IN = "in"
    NOT_IN = "notIn"
    IP_IN = "ipIn"
    IP_NOT_IN = "ipNotIn"


_MISSING = object()


def lookup_path(value: Any, path: Sequence[str]) -> Any:
    """
    Walk a dotted path through mappings, dataclass fields and list indices.

    Returns None when any segment is missing. Enum members are returned as
    their value so conditions can compare against plain strings.
    """
    current = value
    for part in path:
        if current is None:
            return None
        if isinstance(current, Mapping):
            current = current.get(part)
        elif is_dataclass(current) and not isinstance(current, type):
            if part not in {f.name for f in fields(current)}:
                return None
            current = getattr(current, part)
        elif isinstance(current, (list, tuple)) and part.isdigit():
            index = int(part)
            current = current[index] if index < len(current) else None
        else:
            return None
    if isinstance(current, Enum):
        return current.value
    return current


def resolve_field(field_path: str, context: Any) -> Any:
    """Resolve ``root.path.to.value`` against an evaluation context."""
    root_name, _, rest = field_path.partition(".")
    try:
        root = FieldRoot(root_name)
    except ValueError:
        return _MISSING
    source = getattr(context, root.value, None)
    if not rest:
        return lookup_path(source, [])
    return lookup_path(source, rest.split("."))


def _kind(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, datetime):
        return "datetime"
    if isinstance(value, (list, tuple, set, frozenset)):
        return "array"
    if isinstance(value, Mapping):
        return "object"
    return type(value).__name__


def _same(a: Any, b: Any) -> bool:
    """Equality that never crosses types (True is not 1)."""
    kind = _kind(a)
    if kind != _kind(b):
        return False
    if kind == "datetime":
        return ensure_utc(a) == ensure_utc(b)
    return a == b


def _ordered(a: Any, b: Any) -> bool:
    kind = _kind(a)
    if kind != _kind(b) or kind not in ("number", "string", "datetime"):
        return False
    if kind == "number" and (a != a or b != b):
        return False
    return True


def compare_values(actual: Any, operator: FieldOperator, expected: Any) -> bool:
    """Apply a field operator. Type mismatches yield False."""
    if operator is FieldOperator.EXISTS:
        return actual is not None
    if operator is FieldOperator.NOT_EXISTS:
        return actual is None

    if operator is FieldOperator.EQ:
        return _same(actual, expected)
    if operator is FieldOperator.NEQ:
        return _kind(actual) == _kind(expected) and not _same(actual, expected)

    if operator in (FieldOperator.GT, FieldOperator.GTE, FieldOperator.LT, FieldOperator.LTE):
        if not _ordered(actual, expected):
            return False
        if isinstance(actual, datetime):
            actual, expected = ensure_utc(actual), ensure_utc(expected)
        if operator is FieldOperator.GT:
            return actual > expected
        if operator is FieldOperator.GTE:
            return actual >= expected
        if operator is FieldOperator.LT:
            return actual < expected
        return actual <= expected

    if operator in (FieldOperator.IN, FieldOperator.NOT_IN):
        if not isinstance(expected, (list, tuple, set, frozenset)):
            return False
        found = any(_same(actual, candidate) for candidate in expected)
        return found if operator is FieldOperator.IN else not found

    if operator is FieldOperator.CONTAINS:
        if isinstance(actual, (list, tuple, set, frozenset)):
            return any(_same(item, expected) for item in actual)
        if isinstance(actual, str) and isinstance(expected, str):
            return expected in actual
        return False

    if operator in (FieldOperator.STARTS_WITH, FieldOperator.ENDS_WITH):
        if not isinstance(actual, str) or not isinstance(expected, str):
            return False
        if operator is FieldOperator.STARTS_WITH:
            return actual.startswith(expected)
        return actual.endswith(expected)

    if operator is FieldOperator.MATCHES:
        if not isinstance(actual, str) or not isinstance(expected, str):
            return False
        try:
            return re.search(expected, actual) is not None
        except re.error:
            return False

    return False


def match_ip(address: Any, pattern: Any) -> bool:
    """
    Match a parsed client address against an exact address, a dotted
    wildcard (``192.168.1.*``) or a CIDR block.
    """
    if not isinstance(pattern, str) or not pattern:
        return False

    if "/" in pattern:
        try:
            network = ipaddress.ip_network(pattern, strict=False)
        except ValueError:
            return False
        return address.version == network.version and address in network

    if "*" in pattern:
        if address.version != 4:
            return False
        octets = str(address).split(".")
        parts = pattern.split(".")
        if len(parts) > 4:
            return False
        for i, part in enumerate(parts):
            if part == "*":
                if i == len(parts) - 1:
                    return True
                continue
            if not part.isdigit() or int(part) != int(octets[i]):
                return False
        return len(parts) == 4

    try:
        return ipaddress.ip_address(pattern) == address
    except ValueError:
        return False


class PolicyCondition(ABC):
    """Base class for condition kinds."""

    type: ConditionType

    async def evaluate(self, context: Any) -> bool:
        try:
            return await self._evaluate(context)
        except Exception as e:
            logger.warning(f"Condition {self.type.value} failed to evaluate: {e}")
            return False

    @abstractmethod
    async def _evaluate(self, context: Any) -> bool:
        pass

    def to_dict(self) -> Optional[Dict[str, Any]]:
        """Convert to dictionary representation, None if not serializable."""
        return None


@dataclass
class FieldCondition(PolicyCondition):
    """Compare a value in the evaluation context against an expected value."""
    field: str
    operator: Any
    value: Any = None
    type: ConditionType = field(default=ConditionType.FIELD, init=False, repr=False)

    async def _evaluate(self, context: Any) -> bool:
        if not isinstance(self.field, str) or not self.field:
            return False
        try:
            operator = FieldOperator(self.operator.value if isinstance(self.operator, Enum)
                                     else self.operator)
        except ValueError:
            return False

        actual = resolve_field(self.field, context)
        if actual is _MISSING:
            return False
        return compare_values(actual, operator, self.value)

    def to_dict(self) -> Dict[str, Any]:
        operator = self.operator.value if isinstance(self.operator, Enum) else self.operator
        return {'type': 'field', 'field': self.field, 'operator': operator, 'value': self.value}


@dataclass
class TimeCondition(PolicyCondition):
    """
    Time window evaluated against the request timestamp carried in the
    context, never the wall clock.

    after/before are ISO instants, day_of_week uses Sunday=0 and hour_range
    is [start, end) in UTC hours. Constraints that are set are AND-combined.
    """
    after: Optional[Any] = None
    before: Optional[Any] = None
    day_of_week: Optional[List[int]] = None
    hour_range: Optional[Sequence[int]] = None
    type: ConditionType = field(default=ConditionType.TIME, init=False, repr=False)

    async def _evaluate(self, context: Any) -> bool:
        request = getattr(context, 'request', None)
        now = getattr(request, 'timestamp', None)
        if not isinstance(now, datetime):
            return False
        now = ensure_utc(now)

        if self.after is not None:
            after = parse_iso_datetime(self.after)
            if after is None or now < after:
                return False

        if self.before is not None:
            before = parse_iso_datetime(self.before)
            if before is None or now > before:
                return False

        if self.day_of_week is not None:
            days = self.day_of_week
            if not isinstance(days, (list, tuple, set, frozenset)):
                return False
            if not all(_kind(d) == "number" and d in range(7) for d in days):
                return False
            # datetime.weekday() is Monday=0
            if (now.weekday() + 1) % 7 not in days:
                return False

        if self.hour_range is not None:
            hours = self.hour_range
            if not isinstance(hours, (list, tuple)) or len(hours) != 2:
                return False
            start, end = hours
            if _kind(start) != "number" or _kind(end) != "number":
                return False
            if not (0 <= start < end <= 24):
                return False
            if not (start <= now.hour < end):
                return False

        return True

    def to_dict(self) -> Dict[str, Any]:
        value: Dict[str, Any] = {}
        if self.after is not None:
            value['after'] = self.after.isoformat() if isinstance(self.after, datetime) else self.after
        if self.before is not None:
            value['before'] = self.before.isoformat() if isinstance(self.before, datetime) else self.before
        if self.day_of_week is not None:
            value['dayOfWeek'] = list(self.day_of_week)
        if self.hour_range is not None:
            value['hourRange'] = list(self.hour_range)
        return {'type': 'time', 'value': value}


@dataclass
class IPCondition(PolicyCondition):
    """
    Client IP allow/block lists.

    A missing or unparseable client IP fails ``eq``/``in`` but passes
    ``notIn``: block lists fail open, allow lists fail closed.
    """
    operator: Any
    value: Any
    type: ConditionType = field(default=ConditionType.IP, init=False, repr=False)

    async def _evaluate(self, context: Any) -> bool:
        try:
            operator = IPOperator(self.operator.value if isinstance(self.operator, Enum)
                                  else self.operator)
        except ValueError:
            return False

        if operator is IPOperator.EQ:
            if not isinstance(self.value, str):
                return False
            patterns = [self.value]
        else:
            if not isinstance(self.value, (list, tuple, set, frozenset)):
                return False
            patterns = list(self.value)

        blocking = operator in (IPOperator.NOT_IN, IPOperator.IP_NOT_IN)

        request = getattr(context, 'request', None)
        client_ip = getattr(request, 'ip', None)
        try:
            address = ipaddress.ip_address(client_ip) if client_ip else None
        except ValueError:
            address = None
        if address is None:
            return blocking

        matched = any(match_ip(address, pattern) for pattern in patterns)
        return not matched if blocking else matched

    def to_dict(self) -> Dict[str, Any]:
        operator = self.operator.value if isinstance(self.operator, Enum) else self.operator
        value = list(self.value) if isinstance(self.value, (set, frozenset, tuple)) else self.value
        return {'type': 'ip', 'operator': operator, 'value': value}


@dataclass
class CustomCondition(PolicyCondition):
    """Arbitrary sync or async predicate; only a literal True passes."""
    fn: Callable[[Any], Any]
    name: str = "custom"
    type: ConditionType = field(default=ConditionType.CUSTOM, init=False, repr=False)

    async def evaluate(self, context: Any) -> bool:
        if not callable(self.fn):
            return False
        try:
            return await self._evaluate(context)
        except Exception as e:
            logger.warning(f"Custom condition {self.name} raised, treating as false: {e}")
            return False

    async def _evaluate(self, context: Any) -> bool:
        result = await maybe_await(self.fn(context))
        return result is True


async def evaluate_condition(condition: Any, context: Any) -> bool:
    """Evaluate any condition object; anything that is not a condition is False."""
    if isinstance(condition, Mapping):
        try:
            condition = condition_from_dict(condition)
        except PolicyValidationError:
            return False
    if not isinstance(condition, PolicyCondition):
        return False
    return await condition.evaluate(context)


async def evaluate_conditions(conditions: Sequence[Any], context: Any) -> bool:
    """AND-combine conditions, stopping at the first failure."""
    for condition in conditions:
        if not await evaluate_condition(condition, context):
            return False
    return True


def field_condition(field_path: str, operator: Any, value: Any = None) -> FieldCondition:
    return FieldCondition(field=field_path, operator=operator, value=value)


def time_condition(after: Optional[Any] = None,
                   before: Optional[Any] = None,
                   day_of_week: Optional[List[int]] = None,
                   hour_range: Optional[Sequence[int]] = None) -> TimeCondition:
    return TimeCondition(after=after, before=before, day_of_week=day_of_week, hour_range=hour_range)


def ip_condition(operator: Any, value: Any) -> IPCondition:
    return IPCondition(operator=operator, value=value)


def ip_in(*patterns: str) -> IPCondition:
    return IPCondition(operator=IPOperator.IN, value=list(patterns))


def ip_not_in(*patterns: str) -> IPCondition:
    return IPCondition(operator=IPOperator.NOT_IN, value=list(patterns))


def custom_condition(fn: Callable[[Any], Any], name: str = "custom") -> CustomCondition:
    return CustomCondition(fn=fn, name=name)


def _first(data: Mapping, *keys: str) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    return None


def condition_from_dict(data: Mapping) -> PolicyCondition:
    """
    Build a condition from its dictionary form.

    Time constraints may sit at the top level or under ``value`` and accept
    both ``dayOfWeek``/``hourRange`` and ``day_of_week``/``hour_range``.

    Raises:
        PolicyValidationError: If the type is unknown or a custom condition
            has no callable
    """
    if isinstance(data, PolicyCondition):
        return data
    if not isinstance(data, Mapping):
        raise PolicyValidationError("Condition must be a mapping", field="conditions")

    kind = data.get('type')
    if kind == ConditionType.FIELD.value:
        return FieldCondition(field=data.get('field'), operator=data.get('operator'),
                              value=data.get('value'))
    if kind == ConditionType.TIME.value:
        spec = data.get('value') if isinstance(data.get('value'), Mapping) else data
        return TimeCondition(
            after=_first(spec, 'after'),
            before=_first(spec, 'before'),
            day_of_week=_first(spec, 'dayOfWeek', 'day_of_week'),
            hour_range=_first(spec, 'hourRange', 'hour_range'),
        )
    if kind == ConditionType.IP.value:
        return IPCondition(operator=data.get('operator'), value=data.get('value'))
    if kind == ConditionType.CUSTOM.value:
        fn = data.get('fn')
        if not callable(fn):
            raise PolicyValidationError("Custom condition requires a callable 'fn'", field="fn")
        return CustomCondition(fn=fn, name=data.get('name', 'custom'))

    raise PolicyValidationError(f"Unknown condition type: {kind!r}", field="type")
