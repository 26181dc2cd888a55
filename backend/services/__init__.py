"""
Service layer package.

Each module encapsulates domain logic independent of HTTP concerns.
"""

__all__ = [
    "activity_log",
    "bulk_service",
    "common",
    "identity_provider",
    "optimistic_state",
    "setup_service",
]
