"""
Knowledge graph and hybrid retrieval engine.

Entry point for hosts:

    db = Database.from_settings()
    service = KnowledgeQueryService.from_database(db)
"""

from .db import Database
from .kernel.errors import (
    ConflictError,
    InvalidReferenceError,
    KnowledgeError,
    NotFoundError,
    RetrievalError,
    ValidationError,
)
from .service import KnowledgeQueryService, Page

__version__ = "0.1.0"

__all__ = [
    "ConflictError",
    "Database",
    "InvalidReferenceError",
    "KnowledgeError",
    "KnowledgeQueryService",
    "NotFoundError",
    "Page",
    "RetrievalError",
    "ValidationError",
]
