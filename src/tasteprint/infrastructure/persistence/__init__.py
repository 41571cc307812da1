"""Persistence layer: database handle, document tables and the profile store."""

from tasteprint.infrastructure.persistence.database import Database
from tasteprint.infrastructure.persistence.repositories import ProfileStore

__all__ = ["Database", "ProfileStore"]
