from unittest.mock import AsyncMock

import pytest

from nlq.errors import SynthesisError
from nlq.identity import Identity
from nlq.synthesizer import (
    build_correction_prompt,
    build_generation_prompt,
    extract_candidate,
    generate_candidate,
)


def _identity(role="STUDENT") -> Identity:
    return Identity(id="user-1", username="alice", role=role, displayName="Alice Doe")


# ── extract_candidate ────────────────────────────────────────────────────


class TestExtractCandidate:
    def test_plain_query_unchanged(self):
        query = 'db.course.findMany({ where: { createdById: "user-1" }, select: { id: true } })'
        assert extract_candidate(query) == query

    def test_strips_code_fences(self):
        completion = "```javascript\ndb.course.count()\n```"
        assert extract_candidate(completion) == "db.course.count()"

    def test_strips_js_fence(self):
        assert extract_candidate("```js\ndb.user.count();\n```") == "db.user.count()"

    def test_strips_await_and_prisma_prefix(self):
        assert extract_candidate("await db.course.count()") == "db.course.count()"
        assert extract_candidate("prisma db.course.count()") == "db.course.count()"

    def test_takes_query_out_of_surrounding_prose(self):
        completion = (
            "Here is the query you asked for:\n\n"
            "db.class.findMany({ select: { id: true, title: true } });\n"
            "It lists every class."
        )
        assert extract_candidate(completion) == "db.class.findMany({ select: { id: true, title: true } })"

    def test_stops_after_argument_list_closes(self):
        completion = "db.course.count() and then db.user.count()"
        assert extract_candidate(completion) == "db.course.count()"

    def test_semicolon_and_parens_inside_strings_are_kept(self):
        query = 'db.doubt.findMany({ where: { title: { contains: "a; b) c" } }, select: { id: true } })'
        assert extract_candidate(query + ";") == query

    def test_no_sentinel_is_invalid_format(self):
        with pytest.raises(SynthesisError, match="Invalid query format"):
            extract_candidate("SELECT * FROM users")

    def test_sentinel_must_be_a_whole_word(self):
        with pytest.raises(SynthesisError):
            extract_candidate("mydb.course.count()")

    def test_empty_completion_is_invalid_format(self):
        with pytest.raises(SynthesisError):
            extract_candidate("")

    @pytest.mark.parametrize("completion", [
        "db.course.count()",
        "```javascript\nawait db.course.findMany({ select: { id: true } });\n```",
        "Sure!\ndb.user.findFirst({ where: { username: 'x;y' }, select: { id: true } }); // done",
        "db.course.findMany({ select: { id: true }",
        "prisma\n\ndb.attendance.groupBy({ by: ['attended'] })",
    ])
    def test_idempotent(self, completion):
        once = extract_candidate(completion)
        assert extract_candidate(once) == once


# ── Prompts ──────────────────────────────────────────────────────────────


class TestGenerationPrompt:
    def test_contains_identity_question_and_schema(self):
        prompt = build_generation_prompt("How many classes do I have?", _identity())

        assert 'Current user ID: "user-1"' in prompt
        assert 'username: "alice"' in prompt
        assert "Alice Doe" in prompt
        assert 'User query: "How many classes do I have?"' in prompt
        assert "model Course" in prompt
        assert "Key Relationships to Remember" in prompt
        assert 'Start directly with "db."' in prompt

    def test_restricted_rules_for_students(self):
        prompt = build_generation_prompt("q", _identity("STUDENT"))
        assert "STUDENT/MENTOR RESTRICTIONS" in prompt
        assert "INSTRUCTOR/ADMIN PRIVILEGES" not in prompt

    def test_elevated_rules_for_instructors(self):
        prompt = build_generation_prompt("q", _identity("INSTRUCTOR"))
        assert "INSTRUCTOR/ADMIN PRIVILEGES" in prompt

    def test_previous_context_only_when_given(self):
        assert "Previous context" not in build_generation_prompt("q", _identity())
        prompt = build_generation_prompt("q", _identity(), "User: hi\nAssistant: hello")
        assert "Previous context: User: hi" in prompt

    def test_clarification_guidance_present(self):
        prompt = build_generation_prompt("Who are the mentors in my course?", _identity("INSTRUCTOR"))
        assert "NEEDS CLARIFICATION" in prompt
        assert 'createdById: "user-1"' in prompt


class TestCorrectionPrompt:
    def test_carries_question_candidate_and_error(self):
        prompt = build_correction_prompt(
            "List my courses",
            "db.course.findMany({ select: { name: true } })",
            "Unknown field `name` on model `Course`",
            _identity(),
        )

        assert 'ORIGINAL USER REQUEST: "List my courses"' in prompt
        assert "db.course.findMany({ select: { name: true } })" in prompt
        assert "Unknown field `name` on model `Course`" in prompt
        assert "CANNOT perform" in prompt


# ── generate_candidate ───────────────────────────────────────────────────


class TestGenerateCandidate:
    async def test_calls_gateway_and_extracts(self):
        gateway = AsyncMock()
        gateway.generate = AsyncMock(return_value="```js\ndb.course.count()\n```")

        candidate = await generate_candidate(gateway, "prompt", temperature=0.1)

        assert candidate == "db.course.count()"
        gateway.generate.assert_awaited_once_with("prompt", max_output_tokens=1024, temperature=0.1)

    async def test_unusable_completion_raises(self):
        gateway = AsyncMock()
        gateway.generate = AsyncMock(return_value="I cannot help with that.")

        with pytest.raises(SynthesisError):
            await generate_candidate(gateway, "prompt")
