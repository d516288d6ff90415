"""
Shared components for the DualGuard client: exceptions, models, events and logging.
"""
