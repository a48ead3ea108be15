"""
Query embeddings.

The engine never calls an embedding model. Item vectors are precomputed by
ingestion; the query vector comes with the request or from a provider the
host injects.
"""

from typing import Protocol


class EmbeddingError(Exception):
    """Error while obtaining a query embedding."""

    pass


class QueryEmbeddingProvider(Protocol):
    async def embed_query(self, text: str) -> list[float]:
        """Return the embedding of `text`, raising EmbeddingError on failure."""
        ...
