"""
Application package initializer.

This package contains the main entrypoint for the API and all of its
submodules.  Configuration, logging, errors and persistence live in
``core``; request and response models in ``schemas``; business logic,
including application package import and export, in ``services``;
HTTP routes in ``api/<version>/endpoints``.
"""

from .main import app  # noqa: F401
