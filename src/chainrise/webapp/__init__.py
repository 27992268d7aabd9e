"""ChainRise web backend: FastAPI routes over SQLModel persistence."""
from __future__ import annotations

from . import persistence
from .application import app

__all__ = ["app", "persistence"]
