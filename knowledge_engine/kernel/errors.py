from __future__ import annotations

import re
from typing import Any


_ERROR_CODE_RE = re.compile(r"^[a-z][a-z0-9_]*(\.[a-z][a-z0-9_]*)*$")


class KnowledgeError(Exception):
    """Base typed error for the knowledge engine.

    Goals:
    - Stable `code` for programmatic handling by the transport layer.
    - Human-readable `message` for UI surfaces.
    - Optional `meta` payload for debugging (safe-to-expose only).

    Every expected failure of an engine operation is one of the subclasses
    below; anything else reaching a caller is a bug.
    """

    retryable: bool = False

    def __init__(
        self,
        *,
        code: str,
        message: str,
        status_code: int = 500,
        meta: dict[str, Any] | None = None,
    ) -> None:
        if not _ERROR_CODE_RE.fullmatch(code):
            raise ValueError(
                "Invalid error code. Expected dot-separated lowercase tokens, "
                f"got: {code!r}"
            )
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = int(status_code)
        self.meta = dict(meta or {})

    def to_public_dict(self, *, request_id: str | None) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "detail": self.message,
            "code": self.code,
        }
        if request_id:
            payload["request_id"] = request_id
        if self.meta:
            payload["meta"] = self.meta
        return payload


class ValidationError(KnowledgeError):
    def __init__(
        self,
        *,
        message: str = "Validation error",
        code: str = "request.validation_error",
        meta: dict[str, Any] | None = None,
        status_code: int = 422,
    ):
        super().__init__(code=code, message=message, status_code=status_code, meta=meta)


class InvalidReferenceError(KnowledgeError):
    def __init__(
        self,
        *,
        message: str = "Invalid reference",
        code: str = "graph.invalid_reference",
        meta: dict[str, Any] | None = None,
    ):
        super().__init__(code=code, message=message, status_code=422, meta=meta)


class NotFoundError(KnowledgeError):
    def __init__(self, *, message: str = "Not found", code: str = "resource.not_found", meta: dict[str, Any] | None = None):
        super().__init__(code=code, message=message, status_code=404, meta=meta)


class ConflictError(KnowledgeError):
    retryable = True

    def __init__(
        self,
        *,
        message: str = "Conflict",
        code: str = "request.conflict",
        meta: dict[str, Any] | None = None,
    ):
        super().__init__(code=code, message=message, status_code=409, meta=meta)


class RetrievalError(KnowledgeError):
    """The store or index could not be reached. Never means "no results"."""

    retryable = True

    def __init__(
        self,
        *,
        message: str = "Store or index unavailable",
        code: str = "retrieval.unavailable",
        meta: dict[str, Any] | None = None,
        status_code: int = 503,
    ):
        super().__init__(code=code, message=message, status_code=status_code, meta=meta)
