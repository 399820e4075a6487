import logging
from typing import Any

from db.access import DataAccessError, ReadOnlyDataAccess

from .errors import ExecutionError
from .plan import CandidateSyntaxError, parse_candidate
from .policy import RoleClass
from .validator import validate_plan

logger = logging.getLogger("courselens.executor")

# Query operation tag -> capability method.
OPERATIONS = {
    "findMany": "find_many",
    "findFirst": "find_first",
    "findUnique": "find_unique",
    "count": "count",
    "aggregate": "aggregate",
    "groupBy": "group_by",
}


async def execute(
    candidate: str,
    data_access: ReadOnlyDataAccess,
    role: str | RoleClass,
) -> Any:
    """Run a validated candidate against the read-only data-access capability.

    The candidate is parsed, never evaluated. Parsing and data-access
    failures surface as ExecutionError so the correction loop can feed the
    message back to the model. A plan that breaks the policy raises
    PolicyViolation.
    """
    try:
        plan = parse_candidate(candidate)
    except CandidateSyntaxError as exc:
        raise ExecutionError(f"Invalid query syntax: {exc}", candidate) from exc

    validate_plan(plan, role, candidate)

    method = getattr(data_access, OPERATIONS[plan.operation])
    try:
        result = await method(plan.collection, plan.args)
    except DataAccessError as exc:
        raise ExecutionError(str(exc), candidate) from exc
    except Exception as exc:
        logger.warning("Unexpected %s while executing %s", type(exc).__name__, candidate)
        raise ExecutionError(str(exc) or type(exc).__name__, candidate) from exc

    logger.debug("Executed %s.%s", plan.collection, plan.operation)
    return result
