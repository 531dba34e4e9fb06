"""Database utilities and models."""

from smallsteps.db.base import Base
from smallsteps.db import models  # noqa: F401  (imported for side effects)

__all__ = ["Base"]
