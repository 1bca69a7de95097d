"""
Tests for policy condition evaluation.
"""

import pytest
from datetime import datetime, timezone

from mtauthz.core.types import RequestContext, SubjectContext, TenantContext
from mtauthz.errors import PolicyValidationError
from mtauthz.policy import (
    CustomCondition,
    FieldCondition,
    FieldOperator,
    IPCondition,
    PolicyEvaluationContext,
    TimeCondition,
    condition_from_dict,
    custom_condition,
    evaluate_condition,
    evaluate_conditions,
    field_condition,
    ip_in,
    ip_not_in,
    time_condition,
)


# Wednesday 2025-01-15 10:30 UTC
WEDNESDAY_MORNING = datetime(2025, 1, 15, 10, 30, tzinfo=timezone.utc)


@pytest.fixture
def context():
    """Evaluation context with a fixed timestamp and client IP"""
    return PolicyEvaluationContext(
        tenant=TenantContext(id="t1", metadata={"plan": "pro"}),
        subject=SubjectContext(
            id="u1",
            roles=["editor"],
            attributes={"department": "finance", "level": 3, "tags": ["a", "b"]},
        ),
        permission="report:read",
        request=RequestContext(timestamp=WEDNESDAY_MORNING, ip="192.168.1.20"),
        resource={"owner_id": "u1", "amount": 250, "status": "draft"},
        environment={"region": "eu"},
    )


class TestFieldConditions:
    """Test field comparisons"""

    @pytest.mark.asyncio
    async def test_equality_on_each_root(self, context):
        assert await field_condition("subject.id", "eq", "u1").evaluate(context)
        assert await field_condition("tenant.metadata.plan", "eq", "pro").evaluate(context)
        assert await field_condition("resource.status", "eq", "draft").evaluate(context)
        assert await field_condition("environment.region", "eq", "eu").evaluate(context)
        assert await field_condition("request.ip", "eq", "192.168.1.20").evaluate(context)

    @pytest.mark.asyncio
    async def test_enum_values_compare_as_strings(self, context):
        assert await field_condition("subject.type", "eq", "user").evaluate(context)

    @pytest.mark.asyncio
    async def test_string_field_against_number_is_false(self, context):
        condition = FieldCondition(field="resource.status", operator=FieldOperator.GT, value=5)
        assert await condition.evaluate(context) is False
        assert await field_condition("resource.status", "eq", 5).evaluate(context) is False

    @pytest.mark.asyncio
    async def test_neq_requires_same_type(self, context):
        assert await field_condition("resource.amount", "neq", 100).evaluate(context)
        assert not await field_condition("resource.amount", "neq", "100").evaluate(context)

    @pytest.mark.asyncio
    async def test_ordering_operators(self, context):
        assert await field_condition("resource.amount", "gt", 200).evaluate(context)
        assert await field_condition("resource.amount", "gte", 250).evaluate(context)
        assert await field_condition("resource.amount", "lt", 300).evaluate(context)
        assert not await field_condition("resource.amount", "lte", 249).evaluate(context)

    @pytest.mark.asyncio
    async def test_bool_is_not_a_number(self, context):
        context.resource["flag"] = True
        assert not await field_condition("resource.flag", "eq", 1).evaluate(context)
        assert await field_condition("resource.flag", "eq", True).evaluate(context)

    @pytest.mark.asyncio
    async def test_collection_operators(self, context):
        assert await field_condition("subject.roles", "contains", "editor").evaluate(context)
        assert await field_condition("subject.attributes.department", "in",
                                     ["finance", "hr"]).evaluate(context)
        assert await field_condition("subject.attributes.department", "notIn", ["hr"]).evaluate(context)
        assert await field_condition("subject.attributes.tags.1", "eq", "b").evaluate(context)
        assert not await field_condition("subject.attributes.department", "in", "finance").evaluate(context)

    @pytest.mark.asyncio
    async def test_string_operators(self, context):
        assert await field_condition("environment.region", "startsWith", "e").evaluate(context)
        assert await field_condition("environment.region", "endsWith", "u").evaluate(context)
        assert await field_condition("resource.status", "matches", "^dr").evaluate(context)
        assert not await field_condition("resource.status", "matches", "(").evaluate(context)

    @pytest.mark.asyncio
    async def test_exists(self, context):
        assert await field_condition("resource.owner_id", "exists").evaluate(context)
        assert await field_condition("resource.missing", "notExists").evaluate(context)
        assert not await field_condition("resource.missing", "exists").evaluate(context)

    @pytest.mark.asyncio
    async def test_unknown_root_or_operator_is_false(self, context):
        assert not await field_condition("session.id", "exists").evaluate(context)
        assert not await field_condition("subject.id", "like", "u1").evaluate(context)


class TestTimeConditions:
    """Test time windows evaluated against the request timestamp"""

    @pytest.mark.asyncio
    async def test_hour_range(self, context):
        assert await time_condition(hour_range=[9, 17]).evaluate(context)
        assert not await time_condition(hour_range=[11, 17]).evaluate(context)
        assert not await time_condition(hour_range=[17, 9]).evaluate(context)

    @pytest.mark.asyncio
    async def test_day_of_week_uses_sunday_zero(self, context):
        assert await time_condition(day_of_week=[3]).evaluate(context)
        assert not await time_condition(day_of_week=[0, 6]).evaluate(context)

    @pytest.mark.asyncio
    async def test_after_and_before(self, context):
        assert await time_condition(after="2025-01-01T00:00:00Z",
                                    before="2025-02-01T00:00:00Z").evaluate(context)
        assert not await time_condition(after="2025-01-16T00:00:00Z").evaluate(context)
        assert not await time_condition(after="not a date").evaluate(context)

    @pytest.mark.asyncio
    async def test_empty_time_condition_passes(self, context):
        assert await TimeCondition().evaluate(context)


class TestIPConditions:
    """Test client IP matching"""

    @pytest.mark.asyncio
    async def test_cidr_wildcard_and_exact(self, context):
        assert await ip_in("10.0.0.0/8", "192.168.1.0/24").evaluate(context)
        assert await ip_in("192.168.1.*").evaluate(context)
        assert await ip_in("192.168.*").evaluate(context)
        assert await IPCondition(operator="eq", value="192.168.1.20").evaluate(context)
        assert not await ip_in("192.168.2.*").evaluate(context)

    @pytest.mark.asyncio
    async def test_block_list(self, context):
        assert not await ip_not_in("192.168.0.0/16").evaluate(context)
        assert await ip_not_in("10.0.0.0/8").evaluate(context)

    @pytest.mark.asyncio
    async def test_missing_ip(self, context):
        context.request.ip = None
        assert not await ip_in("0.0.0.0/0").evaluate(context)
        assert await ip_not_in("10.0.0.0/8").evaluate(context)

    @pytest.mark.asyncio
    async def test_malformed_value_is_false(self, context):
        assert not await IPCondition(operator="in", value="192.168.1.0/24").evaluate(context)
        assert not await ip_in("not-an-ip").evaluate(context)


class TestCustomConditions:
    """Test custom predicates"""

    @pytest.mark.asyncio
    async def test_sync_and_async_predicates(self, context):
        async def is_owner(ctx):
            return ctx.resource["owner_id"] == ctx.subject.id

        assert await custom_condition(is_owner).evaluate(context)
        assert await custom_condition(lambda ctx: True).evaluate(context)

    @pytest.mark.asyncio
    async def test_only_literal_true_passes(self, context):
        assert not await custom_condition(lambda ctx: 1).evaluate(context)
        assert not await custom_condition(lambda ctx: "yes").evaluate(context)

    @pytest.mark.asyncio
    async def test_raising_predicate_is_false(self, context):
        def boom(ctx):
            raise ValueError("boom")

        assert await CustomCondition(fn=boom).evaluate(context) is False


class TestConditionComposition:
    """Test dictionary conditions and AND-combination"""

    def test_condition_from_dict(self):
        condition = condition_from_dict({"type": "time", "value": {"hourRange": [9, 17]}})
        assert isinstance(condition, TimeCondition)
        assert condition.hour_range == [9, 17]

        condition = condition_from_dict({"type": "time", "day_of_week": [1, 2]})
        assert condition.day_of_week == [1, 2]

        with pytest.raises(PolicyValidationError):
            condition_from_dict({"type": "geo"})
        with pytest.raises(PolicyValidationError):
            condition_from_dict({"type": "custom"})

    def test_to_dict_round_trip_for_field(self):
        data = field_condition("subject.id", "eq", "u1").to_dict()
        assert data == {"type": "field", "field": "subject.id", "operator": "eq", "value": "u1"}

    @pytest.mark.asyncio
    async def test_evaluate_conditions_is_and(self, context):
        passing = field_condition("subject.id", "eq", "u1")
        failing = field_condition("subject.id", "eq", "u2")
        assert await evaluate_conditions([passing, {"type": "ip", "operator": "in",
                                                    "value": ["192.168.0.0/16"]}], context)
        assert not await evaluate_conditions([passing, failing], context)
        assert await evaluate_conditions([], context)

    @pytest.mark.asyncio
    async def test_non_conditions_are_false(self, context):
        assert not await evaluate_condition("subject.id == u1", context)
        assert not await evaluate_condition({"type": "unknown"}, context)
