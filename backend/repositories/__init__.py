"""Repository package exposing all repository modules."""

from . import activity_repo, health_repo, users_repo

__all__ = [
    "activity_repo",
    "health_repo",
    "users_repo",
]
