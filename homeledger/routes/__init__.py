from __future__ import annotations

from typing import Any, Optional

from fastapi import HTTPException
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Request bodies arrive camelCase from the web client."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def as_number(value: Any, field: str = "amount") -> float:
    # bool is an int subclass; "true" is not an amount
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise HTTPException(status_code=400, detail=f"{field} must be a number")
    return float(value)


def require_fields(body: BaseModel, *fields: str) -> None:
    missing = [f for f in fields if getattr(body, f) in (None, "")]
    if missing:
        raise HTTPException(status_code=400, detail=f"Missing required fields: {', '.join(missing)}")


def clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None
