"""
SQLAlchemy ORM models package.

All models are imported here so that:
  1. Base.metadata knows every table when create_all runs
  2. Other modules can import from keystone.models directly
"""

from keystone.models.user import User  # noqa: F401
from keystone.models.stored_file import StoredFile  # noqa: F401
