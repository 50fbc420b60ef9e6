"""
Top-level package for the REST Platform API.

This file makes ``rest_platform_api`` a Python package so that modules
within ``app`` can be imported using fully qualified names like
``rest_platform_api.app.main``.

The package provides no public exports; all functionality lives in
submodules under ``app``.
"""

__all__ = []
