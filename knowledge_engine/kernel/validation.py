from __future__ import annotations

from knowledge_engine.kernel.errors import ValidationError


def require_organization_id(organization_id: str | None) -> str:
    """Return the stripped organization id or raise before any store access."""
    if organization_id is None or not str(organization_id).strip():
        raise ValidationError(
            message="organization_id is required",
            meta={"field": "organization_id"},
        )
    return str(organization_id).strip()


def require_int_in_range(value: int, *, field: str, minimum: int, maximum: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(
            message=f"{field} must be an integer",
            meta={"field": field},
        )
    if value < minimum or value > maximum:
        raise ValidationError(
            message=f"{field} must be between {minimum} and {maximum}",
            meta={"field": field, "value": value, "min": minimum, "max": maximum},
        )
    return value
