"""Color Highlighting API Module."""

from .routes import api

__all__ = ["api"]
