"""
Access policy enforcement for inbound requests.

The middleware resolves the requirement for each request first. Public
routes pass straight through without touching the Authorization header.
For everything else the bearer token is verified against the realm JWKS,
turned into authorization facts and evaluated against the policy.
"""

import logging
from typing import Optional

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response
from starlette.types import ASGIApp

from identity_gateway.auth.claims import AuthorizationFacts, extract_authorization_facts
from identity_gateway.auth.verifier import AccessTokenVerifier, extract_bearer_token
from identity_gateway.errors import TokenVerificationError
from identity_gateway.models import ErrorResponse
from identity_gateway.policy.evaluator import AccessPolicy, Decision

logger = logging.getLogger(__name__)


def _deny(decision: Decision) -> JSONResponse:
    if decision is Decision.DENY_UNAUTHENTICATED:
        body = ErrorResponse(error="unauthenticated", message="A valid bearer token is required")
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content=body.model_dump(),
            headers={"WWW-Authenticate": "Bearer"},
        )

    body = ErrorResponse(error="forbidden", message="Insufficient role for this resource")
    return JSONResponse(status_code=status.HTTP_403_FORBIDDEN, content=body.model_dump())


class AccessPolicyMiddleware(BaseHTTPMiddleware):
    """
    Enforces an AccessPolicy in front of every route.

    Args:
        app: ASGI application
        policy: Ordered route rules
        verifier: Access token verifier (JWKS-backed)
    """

    def __init__(self, app: ASGIApp, policy: AccessPolicy, verifier: AccessTokenVerifier) -> None:
        super().__init__(app)
        self.policy = policy
        self.verifier = verifier

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        method = request.method
        path = request.url.path

        requirement = self.policy.requirement_for(method, path)
        if requirement.is_public:
            request.state.authorization = None
            return await call_next(request)

        facts = await self._authorize(request)
        decision = self.policy.decide(requirement, facts)

        if decision is not Decision.PERMIT:
            logger.info(
                "Request denied by access policy",
                extra={
                    "path": path,
                    "method": method,
                    "decision": decision.value,
                    "subject_id": facts.subject_id if facts else None,
                },
            )
            return _deny(decision)

        request.state.authorization = facts
        return await call_next(request)

    async def _authorize(self, request: Request) -> Optional[AuthorizationFacts]:
        """Verify the bearer token, if any, and derive facts from it."""
        token = extract_bearer_token(request.headers.get("Authorization"))
        if not token:
            return None

        try:
            claims = await self.verifier.verify_access_token(token)
        except TokenVerificationError as e:
            logger.info(f"Bearer token rejected: {e}", extra={"path": request.url.path})
            return None

        return extract_authorization_facts(claims)


# ============================================================================
# Dependencies
# ============================================================================

def get_authorization_facts(request: Request) -> AuthorizationFacts:
    """
    Dependency returning the facts established by AccessPolicyMiddleware.

    Raises:
        HTTPException: 401 if the route was reached without verified facts
    """
    facts = getattr(request.state, "authorization", None)
    if facts is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authentication token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return facts


__all__ = ["AccessPolicyMiddleware", "get_authorization_facts"]
