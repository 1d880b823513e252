"""
PDF to Image service package.

This module provides a FastAPI application that rasterizes PDF pages into
PNG images. Documents arrive by multipart upload (`/convert`) or by remote
URL (`/fetch-and-convert`); generated pages are served from `/download`.
"""

__all__ = ["__version__"]

__version__ = "1.0.0"
