"""
Authentication package for the DualGuard client.

This package contains credential storage and the token manager that performs
the refresh step and session sign-out.
"""
