"""Deterministic security checks for candidate queries.

`validate` works on the candidate text alone, using substring rules. It is
the policy gate every candidate passes before anything else happens.
`validate_plan` repeats the same policy over the parsed QueryPlan so that a
field or operation cannot slip through by splitting or re-casing its name.
Neither function performs I/O.
"""

from collections.abc import Iterator
from typing import Any

from .errors import PolicyViolation
from .plan import QueryPlan
from .policy import RoleClass, SecurityPolicy, policy_for

READ_ONLY_MESSAGE = (
    "Only read operations are allowed. This system is read-only for data integrity."
)
SELECT_REQUIRED_MESSAGE = "Read queries must use select to specify fields for security"
SENSITIVE_FIELD_MESSAGE = "Query contains sensitive fields that are not allowed"

_PLAN_KEY_ARGS = ("select", "where", "orderBy", "by", "_count", "_avg", "_sum", "_min", "_max", "having")


def validate(candidate: str, role: str | RoleClass) -> None:
    """Raise PolicyViolation if the candidate text breaks the policy.

    Rules, first match wins:
      1. a mutating call shape, for every role;
      2. a list/find call without a `select:` projection;
      3. a sensitive field fragment, in any casing.
    """
    policy = policy_for(role)

    if any(f".{op}(" in candidate for op in policy.blocked_operations):
        raise PolicyViolation(READ_ONLY_MESSAGE, "read_only", candidate)

    is_projected = any(f".{op}(" in candidate for op in policy.projected_operations)
    if is_projected and "select:" not in candidate:
        raise PolicyViolation(SELECT_REQUIRED_MESSAGE, "select_required", candidate)

    lowered = candidate.lower()
    if any(fragment.lower() in lowered for fragment in policy.sensitive_fragments):
        raise PolicyViolation(SENSITIVE_FIELD_MESSAGE, "sensitive_field", candidate)


def validate_plan(plan: QueryPlan, role: str | RoleClass, candidate: str | None = None) -> None:
    """Apply the policy to a parsed plan's operation tag and field names."""
    policy = policy_for(role)

    if plan.operation in policy.blocked_operations:
        raise PolicyViolation(READ_ONLY_MESSAGE, "read_only", candidate)
    if plan.operation not in policy.allowed_operations:
        raise PolicyViolation(
            f"Operation '{plan.operation}' is not allowed. "
            f"Use one of: {', '.join(policy.allowed_operations)}",
            "operation_not_allowed",
            candidate,
        )

    if plan.operation in policy.projected_operations and "select" not in plan.args:
        raise PolicyViolation(SELECT_REQUIRED_MESSAGE, "select_required", candidate)

    if _has_sensitive_key(plan, policy):
        raise PolicyViolation(SENSITIVE_FIELD_MESSAGE, "sensitive_field", candidate)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _has_sensitive_key(plan: QueryPlan, policy: SecurityPolicy) -> bool:
    fragments = [f.lower() for f in policy.sensitive_fragments]
    names = [plan.collection]
    for arg in _PLAN_KEY_ARGS:
        if arg in plan.args:
            names.extend(_field_names(plan.args[arg]))
    return any(fragment in name.lower() for name in names for fragment in fragments)


def _field_names(value: Any) -> Iterator[str]:
    """Yield every object key, and every string in a `by`-style list, recursively."""
    if isinstance(value, dict):
        for key, inner in value.items():
            yield key
            yield from _field_names(inner)
    elif isinstance(value, list):
        for item in value:
            if isinstance(item, str):
                yield item
            else:
                yield from _field_names(item)
