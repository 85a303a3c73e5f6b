"""Database helpers for the authentication core."""
from __future__ import annotations

from . import models as _models
from .base import (
    Base,
    create_all,
    create_engine,
    create_session,
    dispose_engine,
    get_engine,
    metadata,
)
from .models import *  # noqa: F401,F403
from .session import session_scope

__all__ = [
    "Base",
    "create_all",
    "create_engine",
    "create_session",
    "dispose_engine",
    "get_engine",
    "metadata",
    "session_scope",
] + _models.__all__
