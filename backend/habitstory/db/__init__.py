"""Database utilities and models."""

from habitstory.db.base import Base
from habitstory.db import models  # noqa: F401  (imported for side effects)

__all__ = ["Base"]
