"""Relational storage for the knowledge engine."""

from .client import Database

__all__ = ["Database"]
