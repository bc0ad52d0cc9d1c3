import datetime as dt
from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator
from pydantic_core import PydanticCustomError

from widget_config import WidgetConfig


class AccountIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    currency: Optional[str] = Field(default=None, pattern=r"^[A-Za-z]{3}$")

    @field_validator("currency")
    @classmethod
    def _upper(cls, value: Optional[str]) -> Optional[str]:
        return value.upper() if value else value


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    icon: Optional[str] = Field(default=None, max_length=64)


class RenameIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)


class TransactionIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    date: date
    payee: Optional[str] = Field(default=None, max_length=200)
    is_temporary: bool = False
    amount_cents: int
    category_id: Optional[str] = None
    sub_category_id: Optional[str] = None

    @field_validator("sub_category_id")
    @classmethod
    def _sub_category_needs_category(
        cls, value: Optional[str], info: ValidationInfo
    ) -> Optional[str]:
        if value and not info.data.get("category_id"):
            raise PydanticCustomError(
                "sub_category_without_category", "Sub-category requires a category"
            )
        return value


class TransactionUpdate(BaseModel):
    """Partial edit; only fields present in the payload are applied."""

    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    date: Optional[dt.date] = None
    payee: Optional[str] = Field(default=None, max_length=200)
    is_temporary: Optional[bool] = None
    amount_cents: Optional[int] = None
    category_id: Optional[str] = None
    sub_category_id: Optional[str] = None

    @field_validator("title", "date", "amount_cents", "is_temporary")
    @classmethod
    def _required_stay_set(cls, value, info: ValidationInfo):
        # only runs for fields present in the payload
        if value is None:
            raise PydanticCustomError(
                "required_field_cleared",
                "{field} cannot be cleared",
                {"field": info.field_name},
            )
        return value


class WidgetIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    x: int = Field(default=0, ge=0)
    y: int = Field(default=0, ge=0)
    width: int = Field(default=1, ge=1)
    height: int = Field(default=1, ge=1)
    config: WidgetConfig


class WidgetUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    x: Optional[int] = Field(default=None, ge=0)
    y: Optional[int] = Field(default=None, ge=0)
    width: Optional[int] = Field(default=None, ge=1)
    height: Optional[int] = Field(default=None, ge=1)
    config: Optional[WidgetConfig] = None
