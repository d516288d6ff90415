"""
DualGuard API client.

Async client for the DualGuard competitive smart-contract audit platform:
authenticated request pipeline with token refresh, credential stores, and
API wrappers for auth, contests, issues and users.
"""

__version__ = "0.1.0"
