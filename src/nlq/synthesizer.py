import logging
import re

from db.schema import SCHEMA_CONTEXT, render_schema
from llm.base import ModelGateway

from .errors import SynthesisError
from .identity import Identity
from .plan import SENTINEL
from .policy import policy_for

logger = logging.getLogger("courselens.synthesizer")

GENERATION_TEMPERATURE = 0.2
CORRECTION_TEMPERATURE = 0.1
QUERY_MAX_OUTPUT_TOKENS = 1024

GENERATION_PROMPT = """\
You are a Prisma query generator for a learning management system. \
Generate ONLY a safe Prisma query based on the user's request.

FIRST: Check if the user's query needs clarification for specific course/assignment selection.

IF THE QUERY IS TOO GENERAL AND NEEDS CLARIFICATION:
- If the user asks about "my course" but teaches or attends several courses, generate a query that lists their courses first
- If the user asks about mentors, students or assignments without naming a course, list the available courses first

EXAMPLES OF QUERIES NEEDING CLARIFICATION:
- "Who are the mentors in my course?" -> db.course.findMany({{ where: {{ createdById: "{user_id}" }}, select: {{ id: true, title: true }} }})
- "What assignments are due?" -> db.course.findMany({{ where: {{ enrolledUsers: {{ some: {{ username: "{username}" }} }} }}, select: {{ id: true, title: true }} }})

SECURITY RULES BASED ON USER ROLE:
{role_rules}

CRITICAL PRISMA SYNTAX RULES:
1. For counting relations, use _count: {{ select: {{ relationName: true }} }} in select
2. For relation fields in select, use: relationName: {{ select: {{ field: true }} }}
3. NEVER use count: true inside a relation select - this is INVALID
4. For simple counts, use db.model.count()
5. For aggregations, use db.model.aggregate() or db.model.groupBy()
6. Do NOT use include; nest selects instead

IMPORTANT WHERE CLAUSE RULES:
1. NEVER use empty strings in where clauses: {{ where: {{ id: "" }} }} is INVALID
2. For null checks, use {{ field: {{ equals: null }} }} or {{ field: {{ not: null }} }}
3. Always use meaningful values in where clauses
4. For optional filters, omit the where clause entirely rather than using empty values

SENSITIVE FIELDS TO NEVER SELECT OR FILTER ON:
- password, oneTimePassword (from User)
- Any field containing "token", "password", "secret", "key" or "auth"

PRISMA SCHEMA:
{schema}

ADDITIONAL CONTEXT:
{schema_context}
{previous_context}
User query: "{question}"

IMPORTANT: Return ONLY the Prisma query code, nothing else. No explanations, no markdown, no additional text.
- Do NOT include a "prisma" prefix
- Do NOT include the "await" keyword
- Start directly with "db."
- End after the closing parenthesis

Query:"""

CORRECTION_PROMPT = """\
You are a Prisma query generator. The previous query failed with an error. \
Generate a CORRECTED Prisma query.

ORIGINAL USER REQUEST: "{question}"

FAILED QUERY:
{failed_candidate}

ERROR MESSAGE:
{error_message}

SECURITY RULES (SAME AS BEFORE):
{role_rules}
- Current user ID: "{user_id}", username: "{username}"

CRITICAL FIXES NEEDED:
1. Fix the exact error mentioned in the error message
2. Ensure proper Prisma syntax (use _count: {{ select: {{ relation: true }} }} for counting)
3. Never use count: true inside relation selects
4. Use proper where clauses with valid values
5. For read operations, always include select with safe fields

PRISMA SCHEMA:
{schema}

CORRECTED QUERY (return ONLY the corrected Prisma query, starting with "db."):"""

_FENCE_RE = re.compile(r"```(?:javascript|js)?")
_AWAIT_RE = re.compile(r"^await\s+")
_PRISMA_RE = re.compile(r"^prisma\s*")
_LEADING_BLANK_RE = re.compile(r"^\s*[\r\n]+")
_SENTINEL_RE = re.compile(rf"(?<![\w$]){re.escape(SENTINEL)}\.")

_OPENERS = "([{"
_CLOSERS = ")]}"
_QUOTES = "\"'`"


def build_generation_prompt(
    question: str,
    identity: Identity,
    previous_context: str | None = None,
) -> str:
    policy = policy_for(identity.role)
    context = f"\nPrevious context: {previous_context}\n" if previous_context else ""
    return GENERATION_PROMPT.format(
        user_id=identity.id,
        username=identity.username,
        role_rules=policy.prompt_rules(identity.id, identity.username, identity.role)
        + f"\n7. Current user name: {identity.display_name or identity.username}",
        schema=render_schema(),
        schema_context=SCHEMA_CONTEXT,
        previous_context=context,
        question=question,
    )


def build_correction_prompt(
    question: str,
    failed_candidate: str,
    error_message: str,
    identity: Identity,
) -> str:
    policy = policy_for(identity.role)
    return CORRECTION_PROMPT.format(
        question=question,
        failed_candidate=failed_candidate,
        error_message=error_message,
        role_rules=policy.correction_rules(),
        user_id=identity.id,
        username=identity.username,
        schema=render_schema(),
    )


def _statement_end(text: str, start: int) -> int:
    """Index just past the statement beginning at `start`.

    Stops at a top-level `;` (excluded) or at the parenthesis closing the
    call's argument list (included). Quotes and nested brackets are skipped.
    """
    depth = 0
    quote: str | None = None
    called = False
    i = start
    while i < len(text):
        ch = text[i]
        if quote:
            if ch == "\\":
                i += 2
                continue
            if ch == quote:
                quote = None
        elif ch in _QUOTES:
            quote = ch
        elif ch in _OPENERS:
            depth += 1
            if ch == "(":
                called = True
        elif ch in _CLOSERS:
            depth -= 1
            if depth <= 0 and called:
                return i + 1
        elif ch == ";" and depth <= 0:
            return i
        i += 1
    return len(text)


def extract_candidate(completion: str) -> str:
    """Reduce a raw model completion to a single `db.` query expression.

    Idempotent: extracting an already extracted candidate returns it unchanged.
    """
    text = _FENCE_RE.sub("", completion.strip())
    text = _AWAIT_RE.sub("", text.strip())
    text = _PRISMA_RE.sub("", text)
    text = _LEADING_BLANK_RE.sub("", text).strip()

    match = _SENTINEL_RE.search(text)
    if match is not None:
        text = text[match.start():_statement_end(text, match.start())].strip()

    if not text.startswith(f"{SENTINEL}."):
        raise SynthesisError("Invalid query format", query=text or None)
    return text


async def generate_candidate(
    gateway: ModelGateway,
    prompt: str,
    temperature: float = GENERATION_TEMPERATURE,
) -> str:
    """One gateway call followed by candidate extraction."""
    completion = await gateway.generate(
        prompt,
        max_output_tokens=QUERY_MAX_OUTPUT_TOKENS,
        temperature=temperature,
    )
    candidate = extract_candidate(completion)
    logger.debug("Extracted candidate: %s", candidate)
    return candidate
