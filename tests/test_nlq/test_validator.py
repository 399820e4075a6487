import pytest

from nlq.errors import PolicyViolation
from nlq.plan import QueryPlan
from nlq.policy import MUTATING_OPERATIONS, SENSITIVE_FRAGMENTS, RoleClass, role_class_for
from nlq.validator import (
    READ_ONLY_MESSAGE,
    SELECT_REQUIRED_MESSAGE,
    SENSITIVE_FIELD_MESSAGE,
    validate,
    validate_plan,
)

ROLES = ("STUDENT", "MENTOR", "INSTRUCTOR", "ADMIN")


# ── Role classes ─────────────────────────────────────────────────────────


class TestRoleClass:
    def test_instructor_and_admin_are_elevated(self):
        assert role_class_for("INSTRUCTOR") is RoleClass.ELEVATED
        assert role_class_for("ADMIN") is RoleClass.ELEVATED

    def test_everyone_else_is_restricted(self):
        for role in ("STUDENT", "MENTOR", "SUB_ADMIN", ""):
            assert role_class_for(role) is RoleClass.RESTRICTED


# ── Text rules ───────────────────────────────────────────────────────────


class TestValidateReadOnly:
    @pytest.mark.parametrize("role", ROLES)
    @pytest.mark.parametrize("op", MUTATING_OPERATIONS)
    def test_mutations_rejected_for_every_role(self, role, op):
        candidate = f'db.course.{op}({{ where: {{ id: "c1" }}, select: {{ id: true }} }})'

        with pytest.raises(PolicyViolation) as exc_info:
            validate(candidate, role)

        assert exc_info.value.code == "read_only"
        assert exc_info.value.message == READ_ONLY_MESSAGE
        assert exc_info.value.query == candidate

    def test_update_many_scenario(self):
        with pytest.raises(PolicyViolation, match="read-only"):
            validate('db.user.updateMany({ data: { role: "ADMIN" } })', "STUDENT")

    def test_field_named_like_an_operation_is_not_a_mutation(self):
        validate("db.course.findMany({ select: { createdAt: true, updatedAt: true } })", "STUDENT")


class TestValidateSelectRequired:
    @pytest.mark.parametrize("op", ("findMany", "findFirst", "findUnique"))
    def test_find_without_select_rejected(self, op):
        candidate = f'db.course.{op}({{ where: {{ createdById: "u1" }} }})'

        with pytest.raises(PolicyViolation) as exc_info:
            validate(candidate, "INSTRUCTOR")

        assert exc_info.value.code == "select_required"
        assert exc_info.value.message == SELECT_REQUIRED_MESSAGE

    def test_find_with_select_passes(self):
        validate('db.course.findMany({ where: { createdById: "u1" }, select: { id: true } })', "STUDENT")

    def test_count_needs_no_select(self):
        validate("db.course.count()", "STUDENT")

    def test_group_by_needs_no_select(self):
        validate('db.attendance.groupBy({ by: ["attended"], _count: { _all: true } })', "MENTOR")


class TestValidateSensitiveFields:
    @pytest.mark.parametrize("fragment", SENSITIVE_FRAGMENTS)
    def test_every_fragment_rejected_in_any_case(self, fragment):
        for variant in (fragment, fragment.upper(), fragment.swapcase()):
            candidate = f"db.user.findMany({{ select: {{ {variant}: true }} }})"
            with pytest.raises(PolicyViolation) as exc_info:
                validate(candidate, "ADMIN")
            assert exc_info.value.code == "sensitive_field"

    def test_password_scenario(self):
        with pytest.raises(PolicyViolation) as exc_info:
            validate("db.user.findMany({ select: { password: true } })", "INSTRUCTOR")

        assert exc_info.value.message == SENSITIVE_FIELD_MESSAGE

    def test_sensitive_fragment_inside_string_value_rejected(self):
        with pytest.raises(PolicyViolation):
            validate('db.doubt.findMany({ where: { title: "api key" }, select: { id: true } })', "STUDENT")


class TestValidateRuleOrder:
    def test_mutation_reported_before_sensitive_field(self):
        with pytest.raises(PolicyViolation) as exc_info:
            validate('db.user.update({ where: { id: "1" }, data: { password: "x" } })', "ADMIN")

        assert exc_info.value.code == "read_only"

    def test_missing_select_reported_before_sensitive_field(self):
        with pytest.raises(PolicyViolation) as exc_info:
            validate('db.user.findMany({ where: { password: "x" } })', "ADMIN")

        assert exc_info.value.code == "select_required"


# ── Plan rules ───────────────────────────────────────────────────────────


class TestValidatePlan:
    def test_read_plan_passes(self):
        plan = QueryPlan("course", "findMany", {"select": {"id": True, "title": True}})
        validate_plan(plan, "STUDENT")

    def test_mutating_operation_rejected(self):
        plan = QueryPlan("course", "deleteMany", {})

        with pytest.raises(PolicyViolation) as exc_info:
            validate_plan(plan, "ADMIN")

        assert exc_info.value.code == "read_only"

    def test_unknown_operation_rejected(self):
        plan = QueryPlan("course", "executeRaw", {})

        with pytest.raises(PolicyViolation) as exc_info:
            validate_plan(plan, "ADMIN", "db.course.executeRaw({})")

        assert exc_info.value.code == "operation_not_allowed"
        assert exc_info.value.query == "db.course.executeRaw({})"

    def test_find_plan_without_select_rejected(self):
        plan = QueryPlan("course", "findFirst", {"where": {"id": "c1"}})

        with pytest.raises(PolicyViolation) as exc_info:
            validate_plan(plan, "STUDENT")

        assert exc_info.value.code == "select_required"

    def test_nested_sensitive_key_rejected(self):
        plan = QueryPlan(
            "course",
            "findMany",
            {"select": {"createdBy": {"select": {"oneTimePassword": True}}}},
        )

        with pytest.raises(PolicyViolation) as exc_info:
            validate_plan(plan, "ADMIN")

        assert exc_info.value.code == "sensitive_field"

    def test_sensitive_group_by_field_rejected(self):
        plan = QueryPlan("user", "groupBy", {"by": ["password"]})

        with pytest.raises(PolicyViolation):
            validate_plan(plan, "ADMIN")

    def test_sensitive_order_by_key_rejected(self):
        plan = QueryPlan("user", "findMany", {"select": {"id": True}, "orderBy": [{"Password": "asc"}]})

        with pytest.raises(PolicyViolation):
            validate_plan(plan, "INSTRUCTOR")
