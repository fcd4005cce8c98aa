"""
Guardrail boundary for the query path.

Content policy lives outside the core: callers supply either ready-made
verdicts or a Guardrail implementation. Collection access is a pure function
of (role, collection tags) applied at the service boundary.
"""

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

AccessRule = Callable[[str, frozenset[str]], bool]

WILDCARD_TAG = "*"


@dataclass(frozen=True)
class GuardrailVerdict:
    valid: bool
    reason: str | None = None
    violations: list[str] = field(default_factory=list)

    @classmethod
    def allow(cls) -> "GuardrailVerdict":
        return cls(valid=True)

    @classmethod
    def deny(cls, reason: str, violations: list[str] | None = None) -> "GuardrailVerdict":
        return cls(valid=False, reason=reason, violations=violations or [reason])


@runtime_checkable
class Guardrail(Protocol):
    async def validate_input(self, question: str, user_id: str | None = None) -> GuardrailVerdict:
        """Verdict on a question before any retrieval or generation."""

    async def validate_output(self, answer: str) -> GuardrailVerdict:
        """Verdict on a generated answer."""

    def sanitize(self, answer: str) -> str:
        """Rewrite an answer whose output verdict was not valid."""


class PassthroughGuardrail:
    """Accepts everything."""

    async def validate_input(self, question: str, user_id: str | None = None) -> GuardrailVerdict:
        return GuardrailVerdict.allow()

    async def validate_output(self, answer: str) -> GuardrailVerdict:
        return GuardrailVerdict.allow()

    def sanitize(self, answer: str) -> str:
        return answer


def tag_access_rule(role_tags: Mapping[str, Iterable[str]]) -> AccessRule:
    """
    Build an AccessRule from a role -> allowed tags mapping.

    A role may read a collection when it shares at least one tag with it.
    The ``*`` tag grants every collection; unknown roles get nothing.
    """
    allowed = {role: frozenset(tags) for role, tags in role_tags.items()}

    def rule(role: str, collection_tags: frozenset[str]) -> bool:
        tags = allowed.get(role, frozenset())
        return WILDCARD_TAG in tags or bool(tags & collection_tags)

    return rule
