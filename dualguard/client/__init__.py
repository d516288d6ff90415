"""
DualGuard client package: configuration, the authenticated API client and
the entity API wrappers built on it.
"""
