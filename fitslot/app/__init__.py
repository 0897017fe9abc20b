"""Application package.

Small explicit initializer for `fitslot.app`: re-exports the store handle
module and the ORM models.
"""

from .core import db
from .domain import models

__all__ = ["db", "models"]
