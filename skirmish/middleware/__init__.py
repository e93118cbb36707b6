"""Middleware package for the Skirmish encounter engine."""

from skirmish.middleware.error_handler import setup_error_handlers

__all__ = [
    "setup_error_handlers",
]
