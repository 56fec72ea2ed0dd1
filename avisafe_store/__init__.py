"""
AviSafe Store — SQLAlchemy persistence for missions, fleet, policy and assessments.
"""

from .db import Base, DatabaseService

__all__ = ["Base", "DatabaseService"]
