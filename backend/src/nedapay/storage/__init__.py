"""Persistence layer."""

from nedapay.storage.db import Database, db
from nedapay.storage.models import Base

__all__ = ["Base", "Database", "db"]
