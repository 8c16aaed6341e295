"""
Password Reset Package

Single-use, time-limited reset tokens redeemed through the Keycloak admin
API.

Modules:
- store: reset token stores (in-process and Redis)
- service: issue and redemption logic
- directory: Keycloak admin REST client
- notifier: token delivery
- routes: /api/auth/reset-password-request and /api/auth/reset-password
"""
