"""Common Pydantic schemas."""

from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


class Money(BaseModel):
    """Money representation with amount in minor units."""

    amount: int = Field(..., ge=0, description="Amount in minor units (e.g., cents)")
    currency: str = Field(..., min_length=3, max_length=3, pattern=r"^[A-Z]{3}$", description="ISO 4217 currency code")


class Violation(BaseModel):
    """Validation error violation."""

    field: str = Field(..., description="Dotted path to the invalid field")
    message: str = Field(..., description="Validation error message")
    code: Optional[str] = Field(None, description="Validation error type")


class Problem(BaseModel):
    """RFC 9457 Problem Details response."""

    type: Optional[str] = Field(None, description="Problem type URI")
    title: str = Field(..., description="Short human-readable summary")
    status: int = Field(..., description="HTTP status code")
    detail: Optional[str] = Field(None, description="Human-readable explanation")
    instance: Optional[str] = Field(None, description="URI reference for this occurrence")
    code: Optional[str] = Field(None, description="Application-specific error code")
    retryable: Optional[bool] = Field(None, description="Whether the operation can be retried")
    violations: Optional[List[Violation]] = Field(None, description="Validation errors")


class PaginatedResponse(BaseModel):
    """Base class for paginated responses."""

    next_cursor: Optional[str] = Field(None, description="Cursor for next page")


def normalize_currency(value: str) -> str:
    return value.strip().upper()


class CurrencyMixin(BaseModel):
    """Upper-cases an optional ``currency`` field on request schemas."""

    @field_validator("currency", mode="before", check_fields=False)
    @classmethod
    def _upper_currency(cls, v):
        if isinstance(v, str):
            return normalize_currency(v)
        return v
