"""
Route access policy.

An ``AccessPolicy`` is an ordered list of ``RouteRule`` entries. The first
rule whose pattern (and, if given, method set) matches the request decides
the requirement; requests that match nothing fall back to the policy
default, which is "authenticated".

Patterns are either an exact path (``/api/me``) or a prefix pattern ending
in ``/**`` (``/api/admin/**``), which matches the prefix itself and anything
below it.
"""

from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, Iterable, Optional, Sequence, Tuple

from identity_gateway.auth.claims import AuthorizationFacts
from identity_gateway.auth.cookies import AUTH_ROUTE_PREFIX


class Decision(str, Enum):
    """Outcome of evaluating a request against the policy."""

    PERMIT = "permit"
    DENY_UNAUTHENTICATED = "deny_unauthenticated"
    DENY_FORBIDDEN = "deny_forbidden"


class RequirementKind(str, Enum):
    PUBLIC = "public"
    AUTHENTICATED = "authenticated"
    ROLE = "role"


@dataclass(frozen=True)
class Requirement:
    """What a caller must present to reach a route."""

    kind: RequirementKind
    role: Optional[str] = None

    @classmethod
    def public(cls) -> "Requirement":
        return cls(RequirementKind.PUBLIC)

    @classmethod
    def authenticated(cls) -> "Requirement":
        return cls(RequirementKind.AUTHENTICATED)

    @classmethod
    def role(cls, role: str) -> "Requirement":
        """
        Require a role from the derived role set.

        Args:
            role: Full role name including its prefix, e.g. ``ROLE_ADMIN``
        """
        if not role:
            raise ValueError("Role requirement needs a role name")
        return cls(RequirementKind.ROLE, role)

    @property
    def is_public(self) -> bool:
        return self.kind is RequirementKind.PUBLIC


class RouteRule:
    """
    Maps a path pattern (and optionally a set of methods) to a requirement.

    Args:
        pattern: Exact path or prefix pattern ending in ``/**``
        requirement: Requirement applied when the rule matches
        methods: HTTP methods the rule applies to (all methods when None)
    """

    def __init__(
        self,
        pattern: str,
        requirement: Requirement,
        methods: Optional[Iterable[str]] = None,
    ):
        if not pattern.startswith("/"):
            raise ValueError(f"Route pattern must start with '/': {pattern!r}")
        if "**" in pattern and not pattern.endswith("/**"):
            raise ValueError(f"Wildcard is only supported as a trailing '/**': {pattern!r}")

        self.pattern = pattern
        self.requirement = requirement
        self.methods: Optional[FrozenSet[str]] = (
            frozenset(m.upper() for m in methods) if methods else None
        )
        self._prefix = pattern[:-3] if pattern.endswith("/**") else None

    def matches(self, method: str, path: str) -> bool:
        if self.methods is not None and method.upper() not in self.methods:
            return False

        if self._prefix is None:
            return path == self.pattern

        # "/api/admin/**" covers "/api/admin" and "/api/admin/..."
        return path == self._prefix or path.startswith(self._prefix + "/")

    def __repr__(self) -> str:
        methods = sorted(self.methods) if self.methods else "*"
        return f"RouteRule({self.pattern!r}, {self.requirement.kind.value}, methods={methods})"


class AccessPolicy:
    """Ordered route rules with a default for unmatched requests."""

    def __init__(
        self,
        rules: Sequence[RouteRule],
        default: Optional[Requirement] = None,
    ):
        self.rules: Tuple[RouteRule, ...] = tuple(rules)
        self.default = default or Requirement.authenticated()

    def requirement_for(self, method: str, path: str) -> Requirement:
        """Return the requirement of the first matching rule."""
        for rule in self.rules:
            if rule.matches(method, path):
                return rule.requirement
        return self.default

    def evaluate(
        self,
        method: str,
        path: str,
        facts: Optional[AuthorizationFacts],
    ) -> Decision:
        """
        Decide whether a request may proceed.

        Missing authentication is reported before missing roles, so an
        anonymous caller always gets DENY_UNAUTHENTICATED.

        Args:
            method: HTTP method
            path: Request path
            facts: Facts from a verified token, or None for anonymous callers
        """
        return self.decide(self.requirement_for(method, path), facts)

    @staticmethod
    def decide(requirement: Requirement, facts: Optional[AuthorizationFacts]) -> Decision:
        if requirement.is_public:
            return Decision.PERMIT

        if facts is None:
            return Decision.DENY_UNAUTHENTICATED

        if requirement.kind is RequirementKind.ROLE and not facts.has_role(requirement.role):
            return Decision.DENY_FORBIDDEN

        return Decision.PERMIT


def default_policy() -> AccessPolicy:
    """
    Rule table for the gateway's own routes.

    Token lifecycle routes are public: the refresh endpoint is authorized by
    its cookie, not by a bearer token.
    """
    return AccessPolicy(
        rules=[
            RouteRule("/health", Requirement.public(), methods=["GET"]),
            RouteRule("/docs", Requirement.public(), methods=["GET"]),
            RouteRule("/redoc", Requirement.public(), methods=["GET"]),
            RouteRule("/openapi.json", Requirement.public(), methods=["GET"]),
            RouteRule(f"{AUTH_ROUTE_PREFIX}/**", Requirement.public()),
            RouteRule("/api/me", Requirement.authenticated()),
            RouteRule("/api/admin/**", Requirement.role("ROLE_ADMIN")),
        ],
        default=Requirement.authenticated(),
    )


__all__ = [
    "Decision",
    "Requirement",
    "RequirementKind",
    "RouteRule",
    "AccessPolicy",
    "default_policy",
]
