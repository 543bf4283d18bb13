"""Scope enforcement: keep implementation detail out of coarse tiers.

Each detail category has text markers and the coarsest tier allowed to carry
it. A tier's default scope forbids every category whose coarsest tier is
finer than its own, so the forbidden set only grows going up the tree.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Literal

from tiertrack.todos.errors import ErrorDetail, ValidationError
from tiertrack.todos.types import (
    ABSTRACTION_COARSENESS,
    DETAIL_COARSENESS,
    AbstractionLevel,
    DetailLevel,
    Scope,
    Todo,
    TodoTier,
    tier_depth,
)

logger = logging.getLogger(__name__)

ScopeMode = Literal["warn", "block"]

SCOPE_VIOLATIONS_KEY = "scope_violations"


class ViolationType(StrEnum):
    FORBIDDEN_DETAIL = "forbidden_detail"
    ABSTRACTION_VIOLATION = "abstraction_violation"
    DETAIL_LEVEL_VIOLATION = "detail_level_violation"


@dataclass(frozen=True)
class DetailCategory:
    name: str
    coarsest_tier: TodoTier
    patterns: tuple[re.Pattern[str], ...]
    label: str


def _patterns(*sources: str, flags: int = re.IGNORECASE) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(s, flags) for s in sources)


DETAIL_CATEGORIES: dict[str, DetailCategory] = {
    c.name: c
    for c in (
        DetailCategory(
            "specific_technologies",
            TodoTier.PHASE,
            _patterns(
                r"\bvue(?:\.js)?\b",
                r"\breact\b",
                r"\btypescript\b",
                r"\bjavascript\b",
                r"\bpostgres(?:ql)?\b",
                r"\bdjango\b",
            ),
            "a specific technology",
        ),
        DetailCategory(
            "implementation",
            TodoTier.PHASE,
            _patterns(r"\bimplement(?:ation|ing|s)?\b", r"\bfunctions?\b", r"\bclass(?:es)?\b"),
            "implementation language",
        ),
        DetailCategory(
            "implementation_details",
            TodoTier.SESSION,
            _patterns(r"\bstep\s+\d+\b", r"\bfirst\s+do\b", r"\bthen\s+do\b"),
            "implementation details",
        ),
        DetailCategory(
            "specific_apis",
            TodoTier.SESSION,
            _patterns(
                r"\.(?:get|post|put|patch|delete)\(",
                r"\bapi\.\w+",
                r"\b(?:GET|POST|PUT|PATCH|DELETE)\s+/\S*",
            ),
            "a specific API call",
        ),
        DetailCategory(
            "detailed_implementation_steps",
            TodoTier.TASK,
            _patterns(
                r"\bstep\s+\d+:",
                r"\b(?:first|second|third):",
                r"^\s*\d+\.\s+\S",
                flags=re.IGNORECASE | re.MULTILINE,
            ),
            "step-by-step instructions",
        ),
        DetailCategory(
            "file_paths",
            TodoTier.TASK,
            _patterns(
                r"(?:\.{0,2}/)?(?:[\w.-]+/)+[\w.-]+\.\w{1,6}\b",
                # bare ".js" is left out so "vue.js" reads as a technology
                r"\b[\w-]+\.(?:py|ts|tsx|jsx|mjs|vue|json|toml|ya?ml|md|css|scss|html|sql)\b",
            ),
            "a file path",
        ),
        DetailCategory(
            "code_identifiers",
            TodoTier.TASK,
            _patterns(
                r"\b[A-Za-z_]\w*\(\)",
                r"\b[a-z]+(?:[A-Z][a-z0-9]+)+\b",
                r"`[^`\n]+`",
                flags=0,
            ),
            "a code identifier",
        ),
        DetailCategory(
            "code",
            TodoTier.TASK,
            _patterns(r"```", r"\bfunction\s+\w+", r"\bconst\s+\w+\s*="),
            "code",
        ),
        DetailCategory(
            "code_snippets",
            TodoTier.TASK,
            _patterns(r"```[\s\S]*?```"),
            "a code snippet",
        ),
        DetailCategory(
            "specific_code",
            TodoTier.TASK,
            _patterns(
                r"\bconst\s+\w+\s*=\s*\{",
                r"\bexport\s+function\b",
                r"\bdef\s+\w+\(",
                r"\bclass\s+\w+\s*[:(]",
            ),
            "specific code",
        ),
    )
}

_DEFAULT_ALLOWED: dict[TodoTier, tuple[str, ...]] = {
    TodoTier.FEATURE: ("objectives", "phases", "major_milestones"),
    TodoTier.PHASE: ("objectives", "sessions", "dependencies", "high_level_tasks"),
    TodoTier.SESSION: ("objectives", "tasks", "dependencies", "approach"),
    TodoTier.TASK: ("all",),
}

_DEFAULT_LEVELS: dict[TodoTier, tuple[AbstractionLevel, DetailLevel]] = {
    TodoTier.FEATURE: (AbstractionLevel.HIGH, DetailLevel.HIGH_LEVEL),
    TodoTier.PHASE: (AbstractionLevel.MEDIUM_HIGH, DetailLevel.FOCUSED),
    TodoTier.SESSION: (AbstractionLevel.MEDIUM, DetailLevel.FOCUSED),
    TodoTier.TASK: (AbstractionLevel.LOW, DetailLevel.GRANULAR),
}

_MEDIUM_LEVEL_SUBJECT = re.compile(r"\b(?:session|task|phase)s?\b", re.IGNORECASE)
_MEDIUM_LEVEL_ACTION = re.compile(r"\b(?:implement|create|build)\w*\b", re.IGNORECASE)
_GRANULAR_MARKERS = re.compile(
    r"\b(?:step|first|then|finally|code|function|class)\b", re.IGNORECASE
)


def forbidden_for_tier(tier: TodoTier) -> list[str]:
    depth = tier_depth(tier)
    return [
        name
        for name, category in DETAIL_CATEGORIES.items()
        if tier_depth(category.coarsest_tier) > depth
    ]


@dataclass(frozen=True)
class ScopeViolation:
    type: ViolationType
    description: str
    detail_type: str | None = None
    location: str | None = None
    offset: int | None = None
    excerpt: str | None = None
    suggestion: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "detail_type": self.detail_type,
            "location": self.location,
            "offset": self.offset,
            "excerpt": self.excerpt,
            "description": self.description,
            "suggestion": self.suggestion,
        }


@dataclass
class ScopeValidation:
    violations: list[ScopeViolation] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.violations


@dataclass(frozen=True)
class ScopeCorrection:
    type: Literal["move_detail", "summarize_detail", "adjust_scope"]
    detail: str
    reason: str
    suggested_location: str | None = None
    suggested_summary: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "detail": self.detail,
            "reason": self.reason,
            "suggested_location": self.suggested_location,
            "suggested_summary": self.suggested_summary,
        }


def _texts(todo: Todo) -> list[tuple[str, str]]:
    return [("title", todo.title or ""), ("description", todo.description or "")]


class ScopeEngine:
    """Assigns, checks and enforces todo scopes. Holds no storage."""

    def default_scope(self, tier: TodoTier) -> Scope:
        abstraction, detail_level = _DEFAULT_LEVELS[tier]
        return Scope(
            level=tier,
            abstraction=abstraction,
            detail_level=detail_level,
            allowed_details=list(_DEFAULT_ALLOWED[tier]),
            forbidden_details=forbidden_for_tier(tier),
        )

    def assign_scope(self, todo: Todo, parent: Todo | None = None) -> Scope:
        """Default scope for the todo's tier, narrowed by the parent's extras.

        Restrictions the parent carries beyond its own tier default (extra
        forbidden categories, dropped allowed categories) carry down; a
        child never gains what the parent gave up.
        """
        scope = self.default_scope(todo.tier)
        if parent is None:
            return scope

        scope.inherited_from = parent.id
        parent_scope = parent.scope or self.default_scope(parent.tier)
        parent_default = self.default_scope(parent.tier)

        extra_forbidden = [
            d
            for d in parent_scope.forbidden_details
            if d not in parent_default.forbidden_details
        ]
        for detail in extra_forbidden:
            if detail not in scope.forbidden_details:
                scope.forbidden_details.append(detail)

        dropped = set(parent_default.allowed_details) - set(parent_scope.allowed_details)
        scope.allowed_details = [
            d
            for d in scope.allowed_details
            if d not in dropped and d not in scope.forbidden_details
        ]
        return scope

    def detect_scope_creep(
        self, todo: Todo, scope: Scope | None = None
    ) -> list[ScopeViolation]:
        """Scan title and description for detail too fine for the scope."""
        scope = scope or todo.scope
        if scope is None:
            return []

        violations: list[ScopeViolation] = []
        for detail_type in scope.forbidden_details:
            category = DETAIL_CATEGORIES.get(detail_type)
            if category is None:
                logger.debug("unknown_detail_category", extra={"detail_type": detail_type})
                continue
            hit = self._first_match(todo, category.patterns)
            if hit is None:
                continue
            location, match = hit
            violations.append(
                ScopeViolation(
                    type=ViolationType.FORBIDDEN_DETAIL,
                    detail_type=detail_type,
                    location=location,
                    offset=match.start(),
                    excerpt=match.group(0).strip()[:80],
                    description=(
                        f"{todo.tier} todo mentions {category.label} "
                        f"({detail_type}), which belongs at {category.coarsest_tier} level"
                    ),
                    suggestion=f"move this detail to a {category.coarsest_tier}-level todo",
                )
            )

        text = " ".join(t for _, t in _texts(todo))
        if (
            scope.abstraction == AbstractionLevel.HIGH
            and _MEDIUM_LEVEL_SUBJECT.search(text)
            and _MEDIUM_LEVEL_ACTION.search(text)
        ):
            violations.append(
                ScopeViolation(
                    type=ViolationType.ABSTRACTION_VIOLATION,
                    description="high-level todo contains medium-level details",
                    suggestion="describe the outcome, leave the breakdown to child todos",
                )
            )

        if scope.detail_level == DetailLevel.HIGH_LEVEL:
            hit = self._first_match(todo, (_GRANULAR_MARKERS,))
            if hit is not None:
                location, match = hit
                violations.append(
                    ScopeViolation(
                        type=ViolationType.DETAIL_LEVEL_VIOLATION,
                        location=location,
                        offset=match.start(),
                        excerpt=match.group(0),
                        description="high-level todo contains granular details",
                        suggestion="summarize the detail or move it down a tier",
                    )
                )
        return violations

    def validate(self, todo: Todo, parent: Todo | None = None) -> ScopeValidation:
        scope = todo.scope or self.assign_scope(todo, parent)
        violations: list[ScopeViolation] = []

        if scope.level != todo.tier:
            violations.append(
                ScopeViolation(
                    type=ViolationType.ABSTRACTION_VIOLATION,
                    detail_type="scope_level",
                    description=f"scope level {scope.level} does not match tier {todo.tier}",
                    suggestion=f"reassign the default {todo.tier} scope",
                )
            )

        if parent is not None:
            parent_scope = parent.scope or self.default_scope(parent.tier)
            if (
                ABSTRACTION_COARSENESS[scope.abstraction]
                > ABSTRACTION_COARSENESS[parent_scope.abstraction]
            ):
                violations.append(
                    ScopeViolation(
                        type=ViolationType.ABSTRACTION_VIOLATION,
                        detail_type="coarseness",
                        description=(
                            f"abstraction {scope.abstraction} is coarser than "
                            f"parent {parent.id} ({parent_scope.abstraction})"
                        ),
                        suggestion="a child may not be more abstract than its parent",
                    )
                )
            if DETAIL_COARSENESS[scope.detail_level] > DETAIL_COARSENESS[parent_scope.detail_level]:
                violations.append(
                    ScopeViolation(
                        type=ViolationType.DETAIL_LEVEL_VIOLATION,
                        detail_type="coarseness",
                        description=(
                            f"detail level {scope.detail_level} is coarser than "
                            f"parent {parent.id} ({parent_scope.detail_level})"
                        ),
                        suggestion="a child may not be less detailed than its parent",
                    )
                )

        violations.extend(self.detect_scope_creep(todo, scope))
        return ScopeValidation(violations=violations)

    def enforce_scope(
        self, todo: Todo, parent: Todo | None = None, mode: ScopeMode = "warn"
    ) -> ScopeValidation:
        """Apply policy before a save.

        Assigns a scope when the todo has none. ``block`` raises
        ValidationError on any violation; ``warn`` records the violations in
        ``todo.metadata["scope_violations"]`` and lets the save proceed.
        """
        if todo.scope is None:
            todo.scope = self.assign_scope(todo, parent)
        result = self.validate(todo, parent)

        if result.valid:
            todo.metadata.pop(SCOPE_VIOLATIONS_KEY, None)
            return result

        if mode == "block":
            raise ValidationError(
                f"scope violations in {todo.id}",
                [
                    ErrorDetail(
                        field=v.location or "scope",
                        reason=v.description,
                        suggestion=v.suggestion,
                    )
                    for v in result.violations
                ],
            )

        todo.metadata[SCOPE_VIOLATIONS_KEY] = [v.to_dict() for v in result.violations]
        logger.warning(
            "scope_violations_recorded",
            extra={
                "todo.id": todo.id,
                "violation.count": len(result.violations),
                "violation.types": sorted({v.detail_type or v.type.value for v in result.violations}),
            },
        )
        return result

    def suggest_corrections(
        self, violations: list[ScopeViolation]
    ) -> list[ScopeCorrection]:
        corrections: list[ScopeCorrection] = []
        for violation in violations:
            if violation.type == ViolationType.FORBIDDEN_DETAIL and violation.detail_type:
                category = DETAIL_CATEGORIES.get(violation.detail_type)
                corrections.append(
                    ScopeCorrection(
                        type="move_detail",
                        detail=violation.excerpt or violation.detail_type,
                        suggested_location=(
                            f"{category.coarsest_tier}-level todo" if category else None
                        ),
                        reason="detail is too granular for this tier",
                    )
                )
            elif violation.detail_type in ("scope_level", "coarseness"):
                corrections.append(
                    ScopeCorrection(
                        type="adjust_scope",
                        detail=violation.description,
                        reason="scope must match the tier and never coarsen downward",
                    )
                )
            else:
                summary = violation.excerpt or violation.description
                corrections.append(
                    ScopeCorrection(
                        type="summarize_detail",
                        detail=violation.description,
                        suggested_summary=summary[:50],
                        reason="detail should be summarized at this abstraction level",
                    )
                )
        return corrections

    @staticmethod
    def _first_match(
        todo: Todo, patterns: tuple[re.Pattern[str], ...]
    ) -> tuple[str, re.Match[str]] | None:
        for location, text in _texts(todo):
            if not text:
                continue
            for pattern in patterns:
                match = pattern.search(text)
                if match:
                    return location, match
        return None
