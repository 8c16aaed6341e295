"""
Access Policy Package

Route-level authorization for the gateway:

- evaluator: ordered route rules, requirements and decisions
- middleware: bearer token verification and policy enforcement per request
"""

from .evaluator import AccessPolicy, Decision, Requirement, RouteRule, default_policy
from .middleware import AccessPolicyMiddleware, get_authorization_facts

__all__ = [
    "AccessPolicy",
    "Decision",
    "Requirement",
    "RouteRule",
    "default_policy",
    "AccessPolicyMiddleware",
    "get_authorization_facts",
]
