"""
Claims extraction for Keycloak-issued tokens.

Turns verified token claims into the gateway's authorization facts:

- realm roles come from ``realm_access.roles``
- client roles come from ``resource_access.<client_id>.roles``
- both are prefixed with ``ROLE_`` and merged into one role set

The nested structures are parsed once into ``RoleClaims``. A missing or
malformed field is treated as empty; it is never an error.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional

ROLE_PREFIX = "ROLE_"


@dataclass(frozen=True)
class RoleClaims:
    """Typed view of Keycloak's role claims."""

    realm_roles: FrozenSet[str] = frozenset()
    resource_roles: Mapping[str, FrozenSet[str]] = field(
        default_factory=lambda: MappingProxyType({})
    )


@dataclass(frozen=True)
class AuthorizationFacts:
    """
    Authorization facts derived from a single verified token.

    Built fresh for every request and discarded with it.
    """

    subject_id: str
    role_set: FrozenSet[str]
    raw_claims: Mapping[str, Any]

    def has_role(self, role: str) -> bool:
        return role in self.role_set


def _string_set(value: Any) -> FrozenSet[str]:
    """Keep the string entries of a list-like claim, drop everything else."""
    if not isinstance(value, (list, tuple, set, frozenset)):
        return frozenset()
    return frozenset(item for item in value if isinstance(item, str) and item)


def parse_role_claims(claims: Mapping[str, Any]) -> RoleClaims:
    """
    Parse realm and per-client role claims.

    Args:
        claims: Verified token claims

    Returns:
        RoleClaims with empty sets wherever the source was absent or malformed
    """
    realm_access = claims.get("realm_access")
    realm_roles = frozenset()
    if isinstance(realm_access, Mapping):
        realm_roles = _string_set(realm_access.get("roles"))

    resource_roles: Dict[str, FrozenSet[str]] = {}
    resource_access = claims.get("resource_access")
    if isinstance(resource_access, Mapping):
        for client_id, client_access in resource_access.items():
            if not isinstance(client_access, Mapping):
                continue
            roles = _string_set(client_access.get("roles"))
            if roles:
                resource_roles[str(client_id)] = roles

    return RoleClaims(
        realm_roles=realm_roles,
        resource_roles=MappingProxyType(resource_roles),
    )


def prefixed(roles: Iterable[str], prefix: str = ROLE_PREFIX) -> FrozenSet[str]:
    return frozenset(f"{prefix}{role}" for role in roles)


def derive_role_set(role_claims: RoleClaims) -> FrozenSet[str]:
    """Flatten realm and every client's roles into one prefixed set."""
    role_set = set(prefixed(role_claims.realm_roles))
    for roles in role_claims.resource_roles.values():
        role_set.update(prefixed(roles))
    return frozenset(role_set)


def extract_authorization_facts(claims: Mapping[str, Any]) -> Optional[AuthorizationFacts]:
    """
    Derive authorization facts from verified claims.

    Returns None when the token carries no usable subject, in which case the
    caller must treat the request as unauthenticated.
    """
    subject_id = claims.get("sub")
    if not isinstance(subject_id, str) or not subject_id:
        return None

    return AuthorizationFacts(
        subject_id=subject_id,
        role_set=derive_role_set(parse_role_claims(claims)),
        raw_claims=MappingProxyType(dict(claims)),
    )


__all__ = [
    "ROLE_PREFIX",
    "RoleClaims",
    "AuthorizationFacts",
    "parse_role_claims",
    "derive_role_set",
    "extract_authorization_facts",
]
