"""Credential and session services for the Fortalis authentication core."""

from .logging import setup_logging

setup_logging()

__all__ = ["setup_logging"]
