"""Keycloak identity gateway: token lifecycle, access policy and password reset."""

__version__ = "1.0.0"
