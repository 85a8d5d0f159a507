"""
Base schemas with standardized field types for consistent API responses.
"""

from decimal import Decimal
from typing import Annotated

from pydantic import BaseModel, ConfigDict, PlainSerializer


def _money_to_str(value: Decimal) -> str:
    return format(Decimal(value).quantize(Decimal("0.01")), "f")


# Money leaves the API as a fixed two-decimal string, never a float.
MoneyStr = Annotated[Decimal, PlainSerializer(_money_to_str, return_type=str)]


class StandardizedModel(BaseModel):
    """Base model for ORM-backed responses."""

    model_config = ConfigDict(use_enum_values=True, populate_by_name=True, from_attributes=True)
