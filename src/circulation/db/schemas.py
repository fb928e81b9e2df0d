"""Pydantic schemas for data validation.

Input schemas for the records the circulation engine creates. Status
enums live here so the ORM models and the services share one vocabulary.
"""

from datetime import date
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as SchemaError

from ..errors import ValidationError


class BookStatus(str, Enum):
    """Availability of a single physical copy."""

    AVAILABLE = "available"
    BORROWED = "borrowed"


# ============================================================================
# Books
# ============================================================================


class BookCreate(BaseModel):
    """Schema for acquiring a new book."""

    title: str = Field(..., min_length=1, max_length=500)
    author: str = Field(..., min_length=1, max_length=500)
    isbn: Optional[str] = Field(None, max_length=17)
    published_date: Optional[date] = None
    genre: Optional[str] = Field(None, max_length=100)
    shelf_location: Optional[str] = Field(None, max_length=50)

    @field_validator("title", "author", mode="before")
    @classmethod
    def strip_text(cls, v):
        """Trim surrounding whitespace."""
        return v.strip() if isinstance(v, str) else v

    @field_validator("isbn", "genre", "shelf_location", mode="before")
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        """Treat empty optional strings as missing."""
        if v is None:
            return None
        v = str(v).strip()
        return v if v else None


# ============================================================================
# Borrowers
# ============================================================================


class BorrowerCreate(BaseModel):
    """Schema for registering a borrower."""

    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., min_length=3, max_length=200)
    date_of_birth: Optional[date] = None
    membership_date: Optional[date] = None

    @field_validator("first_name", "last_name", mode="before")
    @classmethod
    def strip_names(cls, v):
        """Trim surrounding whitespace."""
        return v.strip() if isinstance(v, str) else v

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, v):
        """Lowercase and check the address has a local part and a domain."""
        if not isinstance(v, str):
            return v
        v = v.strip().lower()
        local, _, domain = v.partition("@")
        if not local or not domain or "@" in domain:
            raise ValueError("email must look like name@domain")
        return v

    @field_validator("date_of_birth")
    @classmethod
    def born_in_past(cls, v: Optional[date]) -> Optional[date]:
        """Reject birth dates in the future."""
        if v and v > date.today():
            raise ValueError("date_of_birth cannot be in the future")
        return v


def parse_input(schema: type[BaseModel], **fields) -> BaseModel:
    """Build an input schema, raising the circulation ValidationError on bad data."""
    try:
        return schema(**fields)
    except SchemaError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ValidationError(problems) from e
