"""CLI module for the upload intake."""

from .main import IntakeCLI, main

__all__ = ["IntakeCLI", "main"]
