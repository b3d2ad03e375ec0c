"""Lambda handlers for the form submission pipeline."""

from .api_handler import api_handler
from .export_handler import export_handler

__all__ = ["api_handler", "export_handler"]
