"""Expose commonly used ORM models at package level.

These re-exports are intentional so callers can import from
``models`` (e.g. `from models import User`). The `F401` noqa suppresses
unused-import warnings for the explicit re-exports.
"""

from .ai_request_logs import AIRequestLog  # noqa: F401
from .interviews import Interview  # noqa: F401
from .users import User  # noqa: F401
