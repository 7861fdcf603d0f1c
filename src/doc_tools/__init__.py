"""
Document tools service package.

This module provides a FastAPI application exposing PDF and office-document
tools (merge, split, rotate, protect, unlock and format conversions) under
`/api/*`. A health endpoint is available at `/health`.
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
