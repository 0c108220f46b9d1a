# inframon/__init__.py
"""Inframon: multi-node system metrics with a single master registry."""
__version__ = "0.3.0"

__all__ = ["__version__"]
