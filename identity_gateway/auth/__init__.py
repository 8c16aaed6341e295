"""
Authentication Package

Token lifecycle for a browser front end authenticating against Keycloak
with the OAuth 2.0 authorization code flow.

Modules:
- claims: role claim parsing and authorization facts
- cookies: refresh token cookie codec
- state: signed state-binding cookie for the callback
- token_client: Keycloak token endpoint client
- orchestrator: login, callback, refresh and logout sequencing
- verifier: access token verification against the realm JWKS
- routes: /api/auth/* endpoints

The flow:
1. Browser calls /api/auth/login and is redirected to Keycloak
2. Keycloak redirects back to /api/auth/callback with a code
3. The gateway exchanges the code, sets the refresh cookie and hands the
   access token to the front end in a URL fragment
4. The front end calls /api/auth/refresh to rotate tokens before expiry
"""
